# ==============================================================================
# == backend/firewatch/service.py - Device event ingestion core               ==
# ==============================================================================
import logging
from datetime import datetime
from functools import partial
from typing import Callable, Dict, Iterable, List, Optional

from .aggregator import MarketStatusAggregator
from .classifier import EventClassifier
from .config import Settings, settings as default_settings
from .errors import DeviceIntegrityError, FireWatchError, NotFoundError, ValidationError
from .identity import DeviceDirectory
from .ledger import FireHistoryLedger
from .reception import DataReceptionLog
from .registry import StatusCodeRegistry
from .repositories.base import (
    CodeRepository,
    DataReceptionRepository,
    DeviceRepository,
    FireHistoryRepository,
)
from .schemas import (
    BulkDeleteResult,
    CodeClassification,
    DashboardEvent,
    DashboardSnapshot,
    DashboardStat,
    DataReceptionFilter,
    DataReceptionItem,
    EventClass,
    FalseAlarmStatus,
    FireHistoryFilter,
    FireHistoryItem,
    IngestOutcome,
    IngestResult,
    IntegrityIssue,
    MarketStatus,
    MarketStatusView,
    ProcessStatus,
    RawEvent,
    ReceiverRef,
)

logger = logging.getLogger(__name__)

# Ledger rows still counted as live on the dashboard
_OPEN_STATUSES = (FalseAlarmStatus.REGISTERED, FalseAlarmStatus.FIRE)


class FireWatchService:
    def __init__(
        self,
        devices: DeviceRepository,
        codes: CodeRepository,
        fire_history: FireHistoryRepository,
        reception: DataReceptionRepository,
        *,
        config: Settings = default_settings,
        notifier=None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.directory = DeviceDirectory(devices)
        self.registry = StatusCodeRegistry(codes)
        self.classifier = EventClassifier(self.registry)
        self.aggregator = MarketStatusAggregator()
        self.ledger = FireHistoryLedger(fire_history, max_range_days=config.FIRE_HISTORY_MAX_RANGE_DAYS)
        self.reception = DataReceptionLog(
            reception,
            default_range_days=config.RECEPTION_DEFAULT_RANGE_DAYS,
            max_range_days=config.RECEPTION_MAX_RANGE_DAYS,
            retention_days=config.RECEPTION_RETENTION_DAYS,
        )
        self.notifier = notifier
        self.clock = clock

    async def start(self):
        """Load the code table once and restore persisted market status."""
        await self.registry.load_or_degrade()
        self.aggregator.restore(await self.directory.list_markets())

    # =========================================================================
    # INGESTION
    # =========================================================================
    async def ingest(self, event: RawEvent, registrar: Optional[str] = None) -> IngestResult:
        received_at = self.clock()

        # 1. Validate; a malformed packet is still audited before the error surfaces
        try:
            normalized = self.classifier.validate(event)
        except ValidationError as e:
            logger.warning(f"⚠️ Rejected packet from {event.receiver_mac!r}: {e.message}")
            await self._audit(event, received_at, None, failed=True)
            raise

        # 2. Resolve the market through the receiver MAC
        try:
            receiver = await self.directory.resolve_receiver(normalized.receiver_mac)
        except (NotFoundError, DeviceIntegrityError) as e:
            logger.warning(f"⚠️ Unresolved packet from {normalized.receiver_mac}: {e.message}")
            await self._audit(event, received_at, None, failed=True)
            raise

        reception_item = await self._audit(event, received_at, receiver)

        # 3. Classify
        classified = self.classifier.classify(normalized)
        timestamp = normalized.timestamp or received_at
        stores = await self._check_device_chain(normalized, receiver)

        # 4. Live status first, then the durable record; a change is persisted under the market lock
        status = await self.aggregator.update(
            receiver.market_id, classified.severity, timestamp, receiver.market_name,
            on_change=partial(self._on_status_change, receiver),
        )

        ledger_item = None
        if classified.creates_ledger_entry:
            entry = self.classifier.build_ledger_entry(
                classified, receiver, registrar or self.config.SYSTEM_REGISTRAR, received_at
            )
            ledger_item = await self.ledger.append(entry)
            await self._notify({
                "type": "alert",
                "id": ledger_item.id,
                "market_id": receiver.market_id,
                "market_name": receiver.market_name,
                "event_class": ledger_item.event_class,
                "receiver_mac": ledger_item.receiver_mac,
                "repeater_id": ledger_item.repeater_id,
                "detector_id": ledger_item.detector_id,
                "stores": stores,
                "time": ledger_item.registered_at.isoformat(),
            })

        return IngestResult(
            ledger_entry_id=ledger_item.id if ledger_item else None,
            reception_id=reception_item.id if reception_item else None,
            market_id=receiver.market_id,
            market_name=receiver.market_name,
            market_status=status,
            severity=classified.severity.label,
            degraded=classified.degraded,
        )

    async def ingest_batch(self, events: Iterable[RawEvent], registrar: Optional[str] = None) -> List[IngestOutcome]:
        """Events are processed in order and independently; one failure never stops the rest."""
        outcomes: List[IngestOutcome] = []
        for index, event in enumerate(events):
            try:
                result = await self.ingest(event, registrar)
                outcomes.append(IngestOutcome(index=index, ok=True, result=result))
            except FireWatchError as e:
                outcomes.append(IngestOutcome(index=index, ok=False, error=e.message, error_type=type(e).__name__))
            except Exception as e:
                logger.error(f"❌ Unexpected error ingesting event #{index}: {e}", exc_info=True)
                outcomes.append(IngestOutcome(index=index, ok=False, error=str(e), error_type="InternalError"))
        failed = sum(1 for o in outcomes if not o.ok)
        if failed:
            logger.warning(f"⚠️ Batch ingest: {failed}/{len(outcomes)} events failed")
        return outcomes

    async def _audit(
        self, event: RawEvent, received_at: datetime, receiver: Optional[ReceiverRef], failed: bool = False
    ) -> Optional[DataReceptionItem]:
        try:
            item = await self.reception.append(event, received_at, receiver, failed=failed)
        except FireWatchError as e:
            # Classification must go on even when the audit store is down
            logger.error(f"❌ Reception log write failed for {event.receiver_mac!r}: {e.message}")
            return None
        await self._notify({
            "type": "reception",
            "receiver_id": item.receiver_id,
            "repeater_id": item.repeater_id,
            "log_type": item.log_type,
            "received_data": item.received_data,
            "time": item.registered_at.isoformat(),
        })
        return item

    async def _check_device_chain(self, event: RawEvent, receiver: ReceiverRef) -> List[str]:
        """Warn about repeaters/detectors missing from the registry; returns linked store names."""
        if not event.repeater_id:
            return []
        repeater = await self.directory.resolve_repeater(receiver.mac_address, event.repeater_id)
        if repeater is None:
            logger.warning(f"⚠️ [{receiver.market_name}] Unregistered repeater {receiver.mac_address}/{event.repeater_id}")
        elif repeater.market_id != receiver.market_id:
            logger.warning(
                f"⚠️ Repeater {receiver.mac_address}/{event.repeater_id} belongs to market "
                f"{repeater.market_id}, receiver to {receiver.market_id}"
            )
        if not event.detector_id:
            return []
        detector = await self.directory.resolve_detector(receiver.mac_address, event.repeater_id, event.detector_id)
        if detector is None:
            logger.warning(
                f"⚠️ [{receiver.market_name}] Unregistered detector "
                f"{receiver.mac_address}/{event.repeater_id}/{event.detector_id}"
            )
            return []
        return detector.store_names

    async def _on_status_change(self, receiver: ReceiverRef, status: MarketStatus, at: datetime):
        try:
            await self.directory.repository.set_market_status(receiver.market_id, status, at)
        except FireWatchError as e:
            logger.error(f"❌ Could not persist status of market {receiver.market_id}: {e.message}")
        await self._notify({
            "type": "market_status",
            "market_id": receiver.market_id,
            "market_name": receiver.market_name,
            "status": status.value,
            "time": at.isoformat(),
        })

    async def _notify(self, message: dict):
        if self.notifier is None:
            return
        try:
            await self.notifier.broadcast(message)
        except Exception as e:
            logger.error(f"❌ Notify error ({message.get('type')}): {e}")

    # =========================================================================
    # FIRE HISTORY
    # =========================================================================
    async def query_fire_history(self, flt: FireHistoryFilter) -> List[FireHistoryItem]:
        return [self._with_labels(item) for item in await self.ledger.query(flt)]

    async def reconcile_fire_history(self, item_id: int, decision: str, note: Optional[str]) -> FireHistoryItem:
        return self._with_labels(await self.ledger.reconcile(item_id, decision, note))

    async def process_device_fault(self, item_id: int, decision: str, note: Optional[str]) -> FireHistoryItem:
        return self._with_labels(await self.ledger.process_fault(item_id, decision, note))

    async def delete_fire_history(self, ids: Iterable[int]) -> BulkDeleteResult:
        return await self.ledger.bulk_delete(ids)

    def _with_labels(self, item: FireHistoryItem) -> FireHistoryItem:
        return item.model_copy(update={
            "receiver_status_name": self.registry.resolve(item.receiver_status),
            "repeater_status_name": self.registry.resolve(item.repeater_status),
        })

    # =========================================================================
    # DATA RECEPTION
    # =========================================================================
    async def query_data_reception(self, flt: DataReceptionFilter) -> List[DataReceptionItem]:
        return await self.reception.query(flt, today=self.clock().date())

    async def delete_data_reception(self, ids: Iterable[int]) -> BulkDeleteResult:
        return await self.reception.bulk_delete(ids)

    # =========================================================================
    # MARKET STATUS
    # =========================================================================
    async def sync_markets(self):
        """Pick up markets created since start-up; existing live status is left alone."""
        for m in await self.directory.list_markets():
            self.aggregator.register(m.id, m.name, m.usage_status)

    async def get_market_status(self, market_name: str) -> MarketStatus:
        status = self.aggregator.status_of_name(market_name)
        if status is None:
            await self.sync_markets()
            status = self.aggregator.status_of_name(market_name)
        if status is None:
            raise NotFoundError(f"현장을 찾을 수 없습니다: {market_name}", field="marketName")
        return status

    async def get_market_views(self, active_only: bool = False) -> List[MarketStatusView]:
        await self.sync_markets()
        return self.aggregator.snapshot(active_only=active_only)

    async def get_all_market_statuses(self, active_only: bool = False) -> Dict[str, MarketStatus]:
        statuses: Dict[str, MarketStatus] = {}
        for view in await self.get_market_views(active_only):
            if view.market_name not in statuses:
                statuses[view.market_name] = self.aggregator.status_of_name(view.market_name)
        return statuses

    # =========================================================================
    # DASHBOARD
    # =========================================================================
    async def dashboard_snapshot(self) -> DashboardSnapshot:
        """Read-only picture for the periodic dashboard poll; nothing is reclassified."""
        markets = await self.get_market_views(active_only=True)
        active_ids = {m.market_id for m in markets}
        limit = self.config.DASHBOARD_RECENT_LIMIT
        comm_codes = set(self.config.COMM_ERROR_CODES)

        fires = await self.ledger.recent(limit, _OPEN_STATUSES, EventClass.FIRE)
        # Handled faults (처리) drop off the dashboard
        faults = await self.ledger.recent(limit, _OPEN_STATUSES, EventClass.FAULT, ProcessStatus.PENDING)

        fire_events = [self._dashboard_event(r) for r in fires if r.market_id in active_ids]
        fault_events, comm_events = [], []
        for row in faults:
            if row.market_id not in active_ids:
                continue
            if row.receiver_status in comm_codes or row.repeater_status in comm_codes:
                comm_events.append(self._dashboard_event(row))
            else:
                fault_events.append(self._dashboard_event(row))

        return DashboardSnapshot(
            generated_at=self.clock(),
            stats=[
                DashboardStat(label="화재발생", value=len(fire_events), type="fire"),
                DashboardStat(label="고장발생", value=len(fault_events), type="fault"),
                DashboardStat(label="통신 이상", value=len(comm_events), type="error"),
            ],
            fire_events=fire_events,
            fault_events=fault_events,
            comm_events=comm_events,
            markets=markets,
        )

    def _dashboard_event(self, row: FireHistoryItem) -> DashboardEvent:
        # Prefer the code that actually carried the alarm
        code = row.error_code or row.receiver_status
        if not row.error_code and row.repeater_status:
            repeater_severity = self.registry.classify_code(row.repeater_status).severity
            receiver_severity = self.registry.classify_code(row.receiver_status).severity if row.receiver_status else None
            if receiver_severity is None or repeater_severity > receiver_severity:
                code = row.repeater_status
        return DashboardEvent(
            id=row.id,
            market_id=row.market_id,
            market_name=row.market_name,
            receiver_mac=row.receiver_mac,
            repeater_id=row.repeater_id,
            code=code,
            code_name=self.registry.resolve(code),
            detail=self._event_detail(row),
            time=row.registered_at,
        )

    @staticmethod
    def _event_detail(row: FireHistoryItem) -> str:
        if row.device_type:
            return f"{row.device_type} {row.device_id or '-'} 에러"
        return row.detector_info_chamber or row.detector_info_temp or f"감지기 {row.detector_id or '-'}"

    # =========================================================================
    # CODES / DEVICES
    # =========================================================================
    async def reload_codes(self) -> Dict[str, str]:
        return await self.registry.load()

    def resolve_code(self, code: str) -> CodeClassification:
        return self.registry.classify_code(code)

    async def check_integrity(self) -> List[IntegrityIssue]:
        return await self.directory.check_integrity()


# ============================================================================
# FACTORY
# ============================================================================
def create_service(config: Settings = default_settings, notifier=None) -> FireWatchService:
    """Wire the core to the configured storage backend."""
    if config.STORAGE_BACKEND == "memory":
        from .repositories.memory import (
            MemoryCodeRepository,
            MemoryDataReceptionRepository,
            MemoryDeviceRepository,
            MemoryFireHistoryRepository,
        )
        logger.warning("⚠️ Using in-memory storage, nothing survives a restart")
        return FireWatchService(
            MemoryDeviceRepository(),
            MemoryCodeRepository(),
            MemoryFireHistoryRepository(),
            MemoryDataReceptionRepository(),
            config=config,
            notifier=notifier,
        )

    if config.STORAGE_BACKEND != "sql":
        raise ValueError(f"Unknown STORAGE_BACKEND {config.STORAGE_BACKEND!r}")

    from .database import create_session_factory, get_config_engine, get_data_engine
    from .repositories.sql import (
        SqlCodeRepository,
        SqlDataReceptionRepository,
        SqlDeviceRepository,
        SqlFireHistoryRepository,
    )
    config_sessions = create_session_factory(get_config_engine())
    data_sessions = create_session_factory(get_data_engine())
    return FireWatchService(
        SqlDeviceRepository(config_sessions),
        SqlCodeRepository(config_sessions),
        SqlFireHistoryRepository(data_sessions),
        SqlDataReceptionRepository(data_sessions),
        config=config,
        notifier=notifier,
    )
