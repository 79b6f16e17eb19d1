# ==============================================================================
# == backend/firewatch/routers/markets.py - Live market status & dashboard    ==
# ==============================================================================
from typing import Dict, List

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_service
from ..schemas import DashboardSnapshot, MarketStatus, MarketStatusView
from ..service import FireWatchService

router = APIRouter(
    prefix="/api",
    tags=["Markets"]
)


@router.get("/markets", response_model=List[MarketStatusView])
async def list_markets(
    active_only: bool = Query(False, alias="activeOnly"),
    service: FireWatchService = Depends(get_service),
):
    return await service.get_market_views(active_only)


@router.get("/markets/status", response_model=Dict[str, MarketStatus])
async def get_all_market_statuses(
    active_only: bool = Query(False, alias="activeOnly"),
    service: FireWatchService = Depends(get_service),
):
    return await service.get_all_market_statuses(active_only)


@router.get("/markets/{market_name}/status")
async def get_market_status(
    market_name: str,
    service: FireWatchService = Depends(get_service),
):
    status = await service.get_market_status(market_name)
    return {"marketName": market_name, "status": status.value}


@router.get("/dashboard", response_model=DashboardSnapshot)
async def get_dashboard(service: FireWatchService = Depends(get_service)):
    """Polled by the dashboard; reads live state only."""
    return await service.dashboard_snapshot()
