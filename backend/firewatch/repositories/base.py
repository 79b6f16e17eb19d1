# backend/firewatch/repositories/base.py
"""
Storage interfaces the ingestion core depends on.

Two implementations ship with the project: ``sql`` (async SQLAlchemy, the
production path) and ``memory`` (process-local, used for tests and
single-node demos). The core never imports either directly.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from ..schemas import (
    CodeRecord,
    DataReceptionItem,
    DetectorRef,
    DeviceLink,
    FireHistoryItem,
    MarketRef,
    MarketStatus,
    ReceiverRef,
    RepeaterRef,
)


class DeviceRepository(ABC):
    @abstractmethod
    async def find_receivers(self, mac_address: str) -> List[ReceiverRef]:
        """All receivers whose normalised MAC equals ``mac_address``."""

    @abstractmethod
    async def find_repeater(self, receiver_mac: str, repeater_id: str) -> Optional[RepeaterRef]:
        ...

    @abstractmethod
    async def find_detector(
        self, receiver_mac: str, repeater_id: str, detector_id: str
    ) -> Optional[DetectorRef]:
        ...

    @abstractmethod
    async def list_markets(self) -> List[MarketRef]:
        ...

    @abstractmethod
    async def list_receivers(self) -> List[ReceiverRef]:
        ...

    @abstractmethod
    async def list_device_links(self) -> List[DeviceLink]:
        ...

    @abstractmethod
    async def set_market_status(self, market_id: int, status: MarketStatus, at: datetime) -> None:
        ...


class CodeRepository(ABC):
    @abstractmethod
    async def list_codes(self) -> List[CodeRecord]:
        ...


class FireHistoryRepository(ABC):
    @abstractmethod
    async def add(self, item: FireHistoryItem) -> FireHistoryItem:
        """Persist ``item`` and return it with its newly assigned id."""

    @abstractmethod
    async def get(self, item_id: int) -> Optional[FireHistoryItem]:
        ...

    @abstractmethod
    async def query(
        self,
        start: datetime,
        end: datetime,
        market_name: Optional[str] = None,
        market_id: Optional[int] = None,
        event_class: Optional[str] = None,
        false_alarm_status: Optional[str] = None,
        process_status: Optional[str] = None,
    ) -> List[FireHistoryItem]:
        """Rows with ``start <= registered_at <= end``, newest first."""

    @abstractmethod
    async def update_reconciliation(
        self, item_id: int, false_alarm_status: str, note: Optional[str]
    ) -> Optional[FireHistoryItem]:
        ...

    @abstractmethod
    async def update_processing(
        self, item_id: int, process_status: str, note: Optional[str]
    ) -> Optional[FireHistoryItem]:
        ...

    @abstractmethod
    async def delete(self, item_id: int) -> bool:
        """Return False when the id did not exist."""

    @abstractmethod
    async def recent(
        self,
        limit: int,
        statuses: Iterable[str],
        event_class: Optional[str] = None,
        process_status: Optional[str] = None,
    ) -> List[FireHistoryItem]:
        """``process_status`` narrows fault rows to one maintenance state."""


class DataReceptionRepository(ABC):
    @abstractmethod
    async def add(self, item: DataReceptionItem) -> DataReceptionItem:
        ...

    @abstractmethod
    async def query(
        self,
        start: datetime,
        end: datetime,
        market_name: Optional[str] = None,
        receiver_id: Optional[str] = None,
    ) -> List[DataReceptionItem]:
        ...

    @abstractmethod
    async def delete(self, item_id: int) -> bool:
        ...

    @abstractmethod
    async def purge_before(self, cutoff: datetime) -> int:
        """Delete rows registered before ``cutoff``; return how many went."""
