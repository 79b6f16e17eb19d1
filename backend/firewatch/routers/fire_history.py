# ==============================================================================
# == backend/firewatch/routers/fire_history.py - Fire/fault ledger            ==
# ==============================================================================
import logging
from datetime import date, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_service
from ..schemas import (
    BulkDeleteRequest,
    BulkDeleteResult,
    FireHistoryFilter,
    FireHistoryItem,
    ProcessRequest,
    ReconcileRequest,
)
from ..service import FireWatchService

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/fire-history",
    tags=["Fire History"]
)


@router.get("", response_model=List[FireHistoryItem])
async def query_fire_history(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    market_name: Optional[str] = Query(None, alias="marketName"),
    market_id: Optional[int] = Query(None, alias="marketId"),
    fire_only: bool = Query(False, alias="fireOnly"),
    fault_only: bool = Query(False, alias="faultOnly"),
    false_alarm_status: Optional[str] = Query(None, alias="falseAlarmStatus"),
    process_status: Optional[str] = Query(None, alias="processStatus"),
    service: FireWatchService = Depends(get_service),
):
    # Same default window as the history screen: the last month up to today
    end_date = end_date or date.today()
    start_date = start_date or end_date - timedelta(days=service.config.FIRE_HISTORY_DEFAULT_RANGE_DAYS)
    flt = FireHistoryFilter(
        start_date=start_date,
        end_date=end_date,
        market_name=market_name,
        market_id=market_id,
        fire_only=fire_only,
        fault_only=fault_only,
        false_alarm_status=false_alarm_status,
        process_status=process_status,
    )
    return await service.query_fire_history(flt)


@router.put("/{item_id}/reconcile", response_model=FireHistoryItem)
async def reconcile_fire_history(
    item_id: int,
    request: ReconcileRequest,
    service: FireWatchService = Depends(get_service),
):
    return await service.reconcile_fire_history(item_id, request.decision, request.note)


@router.put("/{item_id}/process", response_model=FireHistoryItem)
async def process_device_fault(
    item_id: int,
    request: ProcessRequest,
    service: FireWatchService = Depends(get_service),
):
    """Fault rows only: 처리 once the device has been serviced, 미처리 to reopen."""
    return await service.process_device_fault(item_id, request.decision, request.note)


@router.post("/delete", response_model=BulkDeleteResult)
async def delete_fire_history(
    request: BulkDeleteRequest,
    service: FireWatchService = Depends(get_service),
):
    return await service.delete_fire_history(request.ids)
