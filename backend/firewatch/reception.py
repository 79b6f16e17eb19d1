# backend/firewatch/reception.py
import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, TYPE_CHECKING

from .ledger import bulk_delete, day_bounds
from .schemas import BulkDeleteResult, DataReceptionFilter, DataReceptionItem, LogType, RawEvent, ReceiverRef

if TYPE_CHECKING:
    from .repositories.base import DataReceptionRepository

logger = logging.getLogger(__name__)


class DataReceptionLog:
    """Raw packet audit trail. Payload fields are stored as received and never parsed here."""

    def __init__(
        self,
        repository: "DataReceptionRepository",
        default_range_days: int = 7,
        max_range_days: Optional[int] = 31,
        retention_days: int = 7,
    ):
        self.repository = repository
        self.default_range_days = default_range_days
        self.max_range_days = max_range_days
        self.retention_days = retention_days

    async def append(
        self,
        event: RawEvent,
        received_at: datetime,
        receiver: Optional[ReceiverRef] = None,
        failed: bool = False,
    ) -> DataReceptionItem:
        item = DataReceptionItem(
            market_id=receiver.market_id if receiver else None,
            market_name=receiver.market_name if receiver else None,
            log_type=LogType.CLASSIFY_FAILED if failed else (event.log_type or LogType.STATUS),
            receiver_id=(event.receiver_mac or "").strip(),
            repeater_id=event.repeater_id,
            received_data=event.received_data,
            comm_status=event.comm_status,
            battery_status=event.battery_status,
            chamber_status=event.chamber_status,
            registered_at=event.timestamp or received_at,
        )
        return await self.repository.add(item)

    async def query(self, flt: DataReceptionFilter, today: Optional[date] = None) -> List[DataReceptionItem]:
        today = today or date.today()
        end_date = flt.end_date or today
        start_date = flt.start_date or (end_date - timedelta(days=self.default_range_days))
        start, end = day_bounds(start_date, end_date, self.max_range_days)
        return await self.repository.query(
            start, end, market_name=flt.market_name or None, receiver_id=flt.receiver_id or None
        )

    async def bulk_delete(self, ids: Iterable[int]) -> BulkDeleteResult:
        result = await bulk_delete(ids, self.repository.delete)
        logger.info(
            f"🗑️ Data reception delete: {len(result.deleted)} deleted, "
            f"{len(result.not_found)} not found, {len(result.failed)} failed"
        )
        return result

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        if self.retention_days <= 0:
            return 0
        cutoff = (now or datetime.now()) - timedelta(days=self.retention_days)
        removed = await self.repository.purge_before(cutoff)
        if removed:
            logger.info(f"🧹 Purged {removed} reception rows older than {cutoff:%Y-%m-%d %H:%M}")
        return removed

    async def run_retention_sweep(self, interval_seconds: int):
        """Background loop; errors are logged and the loop keeps going."""
        logger.info(f"🔄 Started reception retention sweep (every {interval_seconds}s, keep {self.retention_days}d)")
        while True:
            try:
                await self.purge_expired()
            except Exception as e:
                logger.error(f"Error in retention sweep: {e}")
            await asyncio.sleep(interval_seconds)
