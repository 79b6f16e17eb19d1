# backend/firewatch/repositories/sql.py
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select, update, delete, desc, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from ..errors import StorageError
from ..identity import normalize_mac
from ..models.code import CommonCode
from ..models.device import Market, Receiver, Repeater, Detector, Transmitter, Alarm
from ..models.history import FireHistory, DataReception
from .base import (
    CodeRepository,
    DataReceptionRepository,
    DeviceRepository,
    FireHistoryRepository,
)
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

logger = logging.getLogger(__name__)

# Columns on the item schemas that are never persisted
_DISPLAY_ONLY = {"id", "receiver_status_name", "repeater_status_name"}


def _mac_key(column):
    """SQL twin of normalize_mac(): upper-case, no ':' or '-'."""
    return func.upper(func.replace(func.replace(column, ":", ""), "-", ""))


def _contains(text: str) -> str:
    """ILIKE pattern matching ``text`` literally anywhere; escape char is '\\'."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class _SqlRepository:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _storage_error(self, action: str, e: SQLAlchemyError) -> StorageError:
        logger.error(f"❌ DB Error ({action}): {e}")
        return StorageError(f"{action} failed: {e.__class__.__name__}")


# ============================================================================
# CONFIG DB
# ============================================================================
class SqlDeviceRepository(_SqlRepository, DeviceRepository):
    async def find_receivers(self, mac_address: str) -> List[ReceiverRef]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Receiver, Market.name)
                    .join(Market, Receiver.market_id == Market.id)
                    .where(_mac_key(Receiver.mac_address) == normalize_mac(mac_address))
                )
                return [
                    ReceiverRef(id=r.id, market_id=r.market_id, market_name=name, mac_address=r.mac_address)
                    for r, name in result.all()
                ]
        except SQLAlchemyError as e:
            raise self._storage_error("find_receivers", e)

    async def find_repeater(self, receiver_mac: str, repeater_id: str) -> Optional[RepeaterRef]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Repeater).where(
                        _mac_key(Repeater.receiver_mac) == normalize_mac(receiver_mac),
                        Repeater.repeater_id == repeater_id,
                    )
                )
                row = result.scalars().first()
                return RepeaterRef.model_validate(row) if row else None
        except SQLAlchemyError as e:
            raise self._storage_error("find_repeater", e)

    async def find_detector(self, receiver_mac: str, repeater_id: str, detector_id: str) -> Optional[DetectorRef]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Detector)
                    .options(selectinload(Detector.stores))
                    .where(
                        _mac_key(Detector.receiver_mac) == normalize_mac(receiver_mac),
                        Detector.repeater_id == repeater_id,
                        Detector.detector_id == detector_id,
                    )
                )
                row = result.scalars().first()
                if row is None:
                    return None
                return DetectorRef(
                    id=row.id,
                    market_id=row.market_id,
                    receiver_mac=row.receiver_mac,
                    repeater_id=row.repeater_id,
                    detector_id=row.detector_id,
                    mode=row.mode,
                    store_names=[s.name for s in row.stores],
                )
        except SQLAlchemyError as e:
            raise self._storage_error("find_detector", e)

    async def list_markets(self) -> List[MarketRef]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(Market).order_by(Market.id))
                return [
                    MarketRef(
                        id=m.id,
                        name=m.name,
                        usage_status=m.usage_status,
                        status=MarketStatus(m.status or MarketStatus.NORMAL.value),
                        status_updated_at=m.status_updated_at,
                    )
                    for m in result.scalars().all()
                ]
        except SQLAlchemyError as e:
            raise self._storage_error("list_markets", e)

    async def list_receivers(self) -> List[ReceiverRef]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Receiver, Market.name).join(Market, Receiver.market_id == Market.id)
                )
                return [
                    ReceiverRef(id=r.id, market_id=r.market_id, market_name=name, mac_address=r.mac_address)
                    for r, name in result.all()
                ]
        except SQLAlchemyError as e:
            raise self._storage_error("list_receivers", e)

    async def list_device_links(self) -> List[DeviceLink]:
        links: List[DeviceLink] = []
        try:
            async with self.session_factory() as db:
                for kind, model in (
                    ("repeater", Repeater),
                    ("detector", Detector),
                    ("transmitter", Transmitter),
                    ("alarm", Alarm),
                ):
                    result = await db.execute(select(model))
                    links.extend(
                        DeviceLink(
                            kind=kind,
                            id=row.id,
                            market_id=row.market_id,
                            receiver_mac=row.receiver_mac,
                            repeater_id=row.repeater_id,
                        )
                        for row in result.scalars().all()
                    )
            return links
        except SQLAlchemyError as e:
            raise self._storage_error("list_device_links", e)

    async def set_market_status(self, market_id: int, status: MarketStatus, at: datetime) -> None:
        try:
            async with self.session_factory() as db:
                await db.execute(
                    update(Market)
                    .where(Market.id == market_id)
                    .values(status=status.value, status_updated_at=at)
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise self._storage_error("set_market_status", e)


class SqlCodeRepository(_SqlRepository, CodeRepository):
    async def list_codes(self) -> List[CodeRecord]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(CommonCode).order_by(CommonCode.code))
                return [CodeRecord.model_validate(c) for c in result.scalars().all()]
        except SQLAlchemyError as e:
            raise self._storage_error("list_codes", e)


# ============================================================================
# DATA DB
# ============================================================================
class SqlFireHistoryRepository(_SqlRepository, FireHistoryRepository):
    async def add(self, item: FireHistoryItem) -> FireHistoryItem:
        try:
            async with self.session_factory() as db:
                row = FireHistory(**item.model_dump(exclude=_DISPLAY_ONLY))
                db.add(row)
                await db.commit()
                await db.refresh(row)
                return FireHistoryItem.model_validate(row)
        except SQLAlchemyError as e:
            raise self._storage_error("fire_history.add", e)

    async def get(self, item_id: int) -> Optional[FireHistoryItem]:
        try:
            async with self.session_factory() as db:
                row = await db.get(FireHistory, item_id)
                return FireHistoryItem.model_validate(row) if row else None
        except SQLAlchemyError as e:
            raise self._storage_error("fire_history.get", e)

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
        stmt = select(FireHistory).where(FireHistory.registered_at.between(start, end))
        if market_name:
            stmt = stmt.where(FireHistory.market_name.ilike(_contains(market_name), escape="\\"))
        if market_id is not None:
            stmt = stmt.where(FireHistory.market_id == market_id)
        if event_class:
            stmt = stmt.where(FireHistory.event_class == event_class)
        if false_alarm_status:
            stmt = stmt.where(FireHistory.false_alarm_status == false_alarm_status)
        if process_status:
            stmt = stmt.where(FireHistory.process_status == process_status)
        stmt = stmt.order_by(desc(FireHistory.registered_at), desc(FireHistory.id))
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                return [FireHistoryItem.model_validate(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise self._storage_error("fire_history.query", e)

    async def update_reconciliation(
        self, item_id: int, false_alarm_status: str, note: Optional[str]
    ) -> Optional[FireHistoryItem]:
        try:
            async with self.session_factory() as db:
                row = await db.get(FireHistory, item_id)
                if row is None:
                    return None
                row.false_alarm_status = false_alarm_status
                row.note = note
                await db.commit()
                await db.refresh(row)
                return FireHistoryItem.model_validate(row)
        except SQLAlchemyError as e:
            raise self._storage_error("fire_history.reconcile", e)

    async def update_processing(
        self, item_id: int, process_status: str, note: Optional[str]
    ) -> Optional[FireHistoryItem]:
        try:
            async with self.session_factory() as db:
                row = await db.get(FireHistory, item_id)
                if row is None:
                    return None
                row.process_status = process_status
                row.note = note
                await db.commit()
                await db.refresh(row)
                return FireHistoryItem.model_validate(row)
        except SQLAlchemyError as e:
            raise self._storage_error("fire_history.process", e)

    async def delete(self, item_id: int) -> bool:
        try:
            async with self.session_factory() as db:
                result = await db.execute(delete(FireHistory).where(FireHistory.id == item_id))
                await db.commit()
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise self._storage_error("fire_history.delete", e)

    async def recent(
        self,
        limit: int,
        statuses: Iterable[str],
        event_class: Optional[str] = None,
        process_status: Optional[str] = None,
    ) -> List[FireHistoryItem]:
        stmt = select(FireHistory).where(FireHistory.false_alarm_status.in_(list(statuses)))
        if event_class:
            stmt = stmt.where(FireHistory.event_class == event_class)
        if process_status:
            stmt = stmt.where(FireHistory.process_status == process_status)
        stmt = stmt.order_by(desc(FireHistory.registered_at), desc(FireHistory.id)).limit(limit)
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                return [FireHistoryItem.model_validate(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise self._storage_error("fire_history.recent", e)


class SqlDataReceptionRepository(_SqlRepository, DataReceptionRepository):
    async def add(self, item: DataReceptionItem) -> DataReceptionItem:
        try:
            async with self.session_factory() as db:
                row = DataReception(**item.model_dump(exclude={"id"}))
                db.add(row)
                await db.commit()
                await db.refresh(row)
                return DataReceptionItem.model_validate(row)
        except SQLAlchemyError as e:
            raise self._storage_error("data_reception.add", e)

    async def query(
        self,
        start: datetime,
        end: datetime,
        market_name: Optional[str] = None,
        receiver_id: Optional[str] = None,
    ) -> List[DataReceptionItem]:
        stmt = select(DataReception).where(DataReception.registered_at.between(start, end))
        if market_name:
            stmt = stmt.where(DataReception.market_name.ilike(_contains(market_name), escape="\\"))
        if receiver_id:
            stmt = stmt.where(DataReception.receiver_id.ilike(_contains(receiver_id), escape="\\"))
        stmt = stmt.order_by(desc(DataReception.registered_at), desc(DataReception.id))
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                return [DataReceptionItem.model_validate(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise self._storage_error("data_reception.query", e)

    async def delete(self, item_id: int) -> bool:
        try:
            async with self.session_factory() as db:
                result = await db.execute(delete(DataReception).where(DataReception.id == item_id))
                await db.commit()
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise self._storage_error("data_reception.delete", e)

    async def purge_before(self, cutoff: datetime) -> int:
        try:
            async with self.session_factory() as db:
                result = await db.execute(delete(DataReception).where(DataReception.registered_at < cutoff))
                await db.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise self._storage_error("data_reception.purge", e)
