# ==============================================================================
# == backend/firewatch/routers/events.py - Device packet ingestion            ==
# ==============================================================================
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_service
from ..schemas import BatchIngestRequest, IngestOutcome, IngestResult, RawEvent
from ..service import FireWatchService

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/events",
    tags=["Events"]
)


@router.post("", response_model=IngestResult)
async def ingest_event(
    event: RawEvent,
    registrar: Optional[str] = Query(None),
    service: FireWatchService = Depends(get_service),
):
    return await service.ingest(event, registrar)


@router.post("/batch", response_model=List[IngestOutcome])
async def ingest_batch(
    request: BatchIngestRequest,
    service: FireWatchService = Depends(get_service),
):
    """Per-event outcomes; a bad packet never fails the whole batch."""
    return await service.ingest_batch(request.events, request.registrar)
