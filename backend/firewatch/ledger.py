# backend/firewatch/ledger.py
import asyncio
import logging
from datetime import date, datetime, time
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple, TYPE_CHECKING

from .errors import NotFoundError, RangeTooWideError, ValidationError
from .schemas import (
    BulkDeleteResult,
    EventClass,
    FalseAlarmStatus,
    FireHistoryFilter,
    FireHistoryItem,
    ProcessStatus,
)

if TYPE_CHECKING:
    from .repositories.base import FireHistoryRepository

logger = logging.getLogger(__name__)


def day_bounds(start_date: date, end_date: date, max_days: Optional[int]) -> Tuple[datetime, datetime]:
    """
    Inclusive [start 00:00, end 23:59:59.999999] window for a date range.
    Raises before any storage access when the range is inverted or too wide.
    """
    if end_date < start_date:
        raise ValidationError("시작일은 종료일보다 클 수 없습니다.", field="startDate")
    span = (end_date - start_date).days
    if max_days is not None and span > max_days:
        raise RangeTooWideError(max_days, span)
    return datetime.combine(start_date, time.min), datetime.combine(end_date, time.max)


async def bulk_delete(ids: Iterable[int], delete_one: Callable[[int], Awaitable[bool]]) -> BulkDeleteResult:
    """
    One delete per id, dispatched concurrently. Nothing is rolled back:
    each id is reported as deleted, not found or failed.
    """
    unique_ids = sorted(set(ids))
    outcomes = await asyncio.gather(*(delete_one(i) for i in unique_ids), return_exceptions=True)

    result = BulkDeleteResult()
    for item_id, outcome in zip(unique_ids, outcomes):
        if isinstance(outcome, BaseException):
            logger.error(f"❌ Delete {item_id} failed: {outcome}")
            result.failed[item_id] = str(outcome)
        elif outcome:
            result.deleted.append(item_id)
        else:
            result.not_found.append(item_id)
    return result


class FireHistoryLedger:
    def __init__(self, repository: "FireHistoryRepository", max_range_days: int = 31):
        self.repository = repository
        self.max_range_days = max_range_days

    async def append(self, item: FireHistoryItem) -> FireHistoryItem:
        if item.event_class not in (EventClass.FIRE, EventClass.FAULT):
            raise ValidationError(f"ledger entries must be fire or fault, got {item.event_class!r}")
        stored = await self.repository.add(item)
        logger.warning(
            f"🔥 [{stored.market_name}] {stored.event_class.upper()} #{stored.id} "
            f"receiver={stored.receiver_mac} repeater={stored.repeater_id or '-'}"
        )
        return stored

    async def query(self, flt: FireHistoryFilter) -> List[FireHistoryItem]:
        if flt.fire_only and flt.fault_only:
            raise ValidationError("fireOnly and faultOnly cannot both be set", field="fireOnly")
        if flt.false_alarm_status and flt.false_alarm_status not in (
            FalseAlarmStatus.REGISTERED, *FalseAlarmStatus.DECISIONS
        ):
            raise ValidationError(f"unknown falseAlarmStatus {flt.false_alarm_status!r}", field="falseAlarmStatus")
        if flt.process_status and flt.process_status not in ProcessStatus.DECISIONS:
            raise ValidationError(f"unknown processStatus {flt.process_status!r}", field="processStatus")

        start, end = day_bounds(flt.start_date, flt.end_date, self.max_range_days)
        return await self.repository.query(
            start,
            end,
            market_name=flt.market_name or None,
            market_id=flt.market_id,
            event_class=flt.event_class,
            false_alarm_status=flt.false_alarm_status,
            process_status=flt.process_status,
        )

    async def reconcile(self, item_id: int, decision: str, note: Optional[str]) -> FireHistoryItem:
        """Set the operator's verdict. Re-applying the same verdict is allowed and changes nothing."""
        if decision not in FalseAlarmStatus.DECISIONS:
            raise ValidationError(
                f"decision must be one of {FalseAlarmStatus.DECISIONS}, got {decision!r}", field="decision"
            )
        item = await self.repository.update_reconciliation(item_id, decision, note)
        if item is None:
            raise NotFoundError(f"화재 이력 {item_id} 을(를) 찾을 수 없습니다.", field="id")
        logger.info(f"✓ Fire history #{item_id} reconciled as {decision}")
        return item

    async def process_fault(self, item_id: int, decision: str, note: Optional[str]) -> FireHistoryItem:
        """Mark a fault row as handled (처리) or reopen it (미처리). Fire rows are rejected."""
        if decision not in ProcessStatus.DECISIONS:
            raise ValidationError(
                f"decision must be one of {ProcessStatus.DECISIONS}, got {decision!r}", field="decision"
            )
        current = await self.repository.get(item_id)
        if current is None:
            raise NotFoundError(f"화재 이력 {item_id} 을(를) 찾을 수 없습니다.", field="id")
        if current.event_class != EventClass.FAULT:
            raise ValidationError(f"#{item_id} is a {current.event_class} entry, not a device fault", field="id")

        item = await self.repository.update_processing(item_id, decision, note)
        if item is None:
            raise NotFoundError(f"화재 이력 {item_id} 을(를) 찾을 수 없습니다.", field="id")
        logger.info(f"🔧 Fault #{item_id} ({item.device_type} {item.device_id}) marked {decision}")
        return item

    async def bulk_delete(self, ids: Iterable[int]) -> BulkDeleteResult:
        result = await bulk_delete(ids, self.repository.delete)
        logger.info(
            f"🗑️ Fire history delete: {len(result.deleted)} deleted, "
            f"{len(result.not_found)} not found, {len(result.failed)} failed"
        )
        return result

    async def recent(
        self,
        limit: int,
        statuses: Iterable[str],
        event_class: Optional[str] = None,
        process_status: Optional[str] = None,
    ) -> List[FireHistoryItem]:
        return await self.repository.recent(limit, statuses, event_class, process_status)
