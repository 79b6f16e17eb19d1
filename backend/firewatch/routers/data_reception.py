# backend/firewatch/routers/data_reception.py
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_service
from ..schemas import BulkDeleteRequest, BulkDeleteResult, DataReceptionFilter, DataReceptionItem
from ..service import FireWatchService

router = APIRouter(
    prefix="/api/data-reception",
    tags=["Data Reception"]
)


@router.get("", response_model=List[DataReceptionItem])
async def query_data_reception(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    market_name: Optional[str] = Query(None, alias="marketName"),
    receiver_id: Optional[str] = Query(None, alias="receiverId"),
    service: FireWatchService = Depends(get_service),
):
    flt = DataReceptionFilter(
        start_date=start_date,
        end_date=end_date,
        market_name=market_name,
        receiver_id=receiver_id,
    )
    return await service.query_data_reception(flt)


@router.post("/delete", response_model=BulkDeleteResult)
async def delete_data_reception(
    request: BulkDeleteRequest,
    service: FireWatchService = Depends(get_service),
):
    return await service.delete_data_reception(request.ids)
