# backend/firewatch/repositories/memory.py
import itertools
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..identity import normalize_mac
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
    UsageStatus,
)


class MemoryDeviceRepository(DeviceRepository):
    def __init__(self):
        self.markets: Dict[int, MarketRef] = {}
        self.receivers: List[ReceiverRef] = []
        self.repeaters: List[RepeaterRef] = []
        self.detectors: List[DetectorRef] = []
        self.links: List[DeviceLink] = []
        self._ids = itertools.count(1)

    # --- seeding helpers (the CRUD side lives outside the core) ---
    def add_market(self, name: str, usage_status: str = UsageStatus.ACTIVE, market_id: Optional[int] = None) -> MarketRef:
        if market_id is None:
            market_id = next(self._ids)
            while market_id in self.markets:
                market_id = next(self._ids)
        elif market_id in self.markets:
            raise ValueError(f"Market id {market_id} already exists")
        market = MarketRef(id=market_id, name=name, usage_status=usage_status)
        self.markets[market.id] = market
        return market

    def add_receiver(self, market_id: int, mac_address: str) -> ReceiverRef:
        market = self.markets[market_id]
        receiver = ReceiverRef(
            id=next(self._ids), market_id=market_id, market_name=market.name, mac_address=mac_address
        )
        self.receivers.append(receiver)
        return receiver

    def add_repeater(self, market_id: int, receiver_mac: str, repeater_id: str) -> RepeaterRef:
        repeater = RepeaterRef(
            id=next(self._ids), market_id=market_id, receiver_mac=receiver_mac, repeater_id=repeater_id
        )
        self.repeaters.append(repeater)
        self.links.append(DeviceLink(
            kind="repeater", id=repeater.id, market_id=market_id, receiver_mac=receiver_mac, repeater_id=repeater_id
        ))
        return repeater

    def add_detector(
        self, market_id: int, receiver_mac: str, repeater_id: str, detector_id: str,
        store_names: Optional[List[str]] = None,
    ) -> DetectorRef:
        detector = DetectorRef(
            id=next(self._ids), market_id=market_id, receiver_mac=receiver_mac,
            repeater_id=repeater_id, detector_id=detector_id, store_names=store_names or [],
        )
        self.detectors.append(detector)
        self.links.append(DeviceLink(
            kind="detector", id=detector.id, market_id=market_id, receiver_mac=receiver_mac, repeater_id=repeater_id
        ))
        return detector

    def add_link(self, kind: str, market_id: int, receiver_mac: str, repeater_id: Optional[str] = None) -> DeviceLink:
        link = DeviceLink(kind=kind, id=next(self._ids), market_id=market_id, receiver_mac=receiver_mac, repeater_id=repeater_id)
        self.links.append(link)
        return link

    # --- DeviceRepository ---
    async def find_receivers(self, mac_address: str) -> List[ReceiverRef]:
        key = normalize_mac(mac_address)
        return [r.model_copy() for r in self.receivers if normalize_mac(r.mac_address) == key]

    async def find_repeater(self, receiver_mac: str, repeater_id: str) -> Optional[RepeaterRef]:
        key = normalize_mac(receiver_mac)
        for r in self.repeaters:
            if normalize_mac(r.receiver_mac) == key and r.repeater_id == repeater_id:
                return r.model_copy()
        return None

    async def find_detector(self, receiver_mac: str, repeater_id: str, detector_id: str) -> Optional[DetectorRef]:
        key = normalize_mac(receiver_mac)
        for d in self.detectors:
            if (normalize_mac(d.receiver_mac) == key and d.repeater_id == repeater_id
                    and d.detector_id == detector_id):
                return d.model_copy()
        return None

    async def list_markets(self) -> List[MarketRef]:
        return [m.model_copy() for m in self.markets.values()]

    async def list_receivers(self) -> List[ReceiverRef]:
        return [r.model_copy() for r in self.receivers]

    async def list_device_links(self) -> List[DeviceLink]:
        return [l.model_copy() for l in self.links]

    async def set_market_status(self, market_id: int, status: MarketStatus, at: datetime) -> None:
        market = self.markets.get(market_id)
        if market is not None:
            market.status = status
            market.status_updated_at = at


class MemoryCodeRepository(CodeRepository):
    def __init__(self, codes: Optional[Iterable[CodeRecord]] = None):
        self.codes: Dict[str, CodeRecord] = {c.code: c for c in (codes or [])}

    def put(self, code: str, name: str, severity: Optional[str] = None, group_code: Optional[str] = None) -> CodeRecord:
        record = CodeRecord(code=code, name=name, severity=severity, group_code=group_code, status=UsageStatus.ACTIVE)
        self.codes[code] = record
        return record

    async def list_codes(self) -> List[CodeRecord]:
        return [c.model_copy() for c in self.codes.values()]


class MemoryFireHistoryRepository(FireHistoryRepository):
    def __init__(self):
        self.rows: Dict[int, FireHistoryItem] = {}
        # next() on a count is atomic under the GIL, so ids never collide
        self._ids = itertools.count(1)

    async def add(self, item: FireHistoryItem) -> FireHistoryItem:
        stored = item.model_copy(update={"id": next(self._ids)})
        self.rows[stored.id] = stored
        return stored.model_copy()

    async def get(self, item_id: int) -> Optional[FireHistoryItem]:
        row = self.rows.get(item_id)
        return row.model_copy() if row else None

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
        result = []
        for row in self.rows.values():
            if not (start <= row.registered_at <= end):
                continue
            if market_name and market_name.lower() not in row.market_name.lower():
                continue
            if market_id is not None and row.market_id != market_id:
                continue
            if event_class and row.event_class != event_class:
                continue
            if false_alarm_status and row.false_alarm_status != false_alarm_status:
                continue
            if process_status and row.process_status != process_status:
                continue
            result.append(row.model_copy())
        result.sort(key=lambda r: (r.registered_at, r.id), reverse=True)
        return result

    async def update_reconciliation(
        self, item_id: int, false_alarm_status: str, note: Optional[str]
    ) -> Optional[FireHistoryItem]:
        row = self.rows.get(item_id)
        if row is None:
            return None
        row.false_alarm_status = false_alarm_status
        row.note = note
        return row.model_copy()

    async def update_processing(
        self, item_id: int, process_status: str, note: Optional[str]
    ) -> Optional[FireHistoryItem]:
        row = self.rows.get(item_id)
        if row is None:
            return None
        row.process_status = process_status
        row.note = note
        return row.model_copy()

    async def delete(self, item_id: int) -> bool:
        return self.rows.pop(item_id, None) is not None

    async def recent(
        self,
        limit: int,
        statuses: Iterable[str],
        event_class: Optional[str] = None,
        process_status: Optional[str] = None,
    ) -> List[FireHistoryItem]:
        wanted = set(statuses)
        rows = [
            r for r in self.rows.values()
            if r.false_alarm_status in wanted
            and (event_class is None or r.event_class == event_class)
            and (process_status is None or r.process_status == process_status)
        ]
        rows.sort(key=lambda r: (r.registered_at, r.id), reverse=True)
        return [r.model_copy() for r in rows[:limit]]


class MemoryDataReceptionRepository(DataReceptionRepository):
    def __init__(self):
        self.rows: Dict[int, DataReceptionItem] = {}
        self._ids = itertools.count(1)

    async def add(self, item: DataReceptionItem) -> DataReceptionItem:
        stored = item.model_copy(update={"id": next(self._ids)})
        self.rows[stored.id] = stored
        return stored.model_copy()

    async def query(
        self,
        start: datetime,
        end: datetime,
        market_name: Optional[str] = None,
        receiver_id: Optional[str] = None,
    ) -> List[DataReceptionItem]:
        result = [
            r.model_copy() for r in self.rows.values()
            if start <= r.registered_at <= end
            and (not market_name or market_name.lower() in (r.market_name or "").lower())
            and (not receiver_id or receiver_id.lower() in r.receiver_id.lower())
        ]
        result.sort(key=lambda r: (r.registered_at, r.id), reverse=True)
        return result

    async def delete(self, item_id: int) -> bool:
        return self.rows.pop(item_id, None) is not None

    async def purge_before(self, cutoff: datetime) -> int:
        expired = [i for i, r in self.rows.items() if r.registered_at < cutoff]
        for item_id in expired:
            del self.rows[item_id]
        return len(expired)
