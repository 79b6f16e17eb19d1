# backend/firewatch/routers/codes.py
import logging
from typing import Dict, List

from fastapi import APIRouter, Depends

from ..dependencies import get_service
from ..schemas import CodeClassification, IntegrityIssue
from ..service import FireWatchService

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api",
    tags=["Codes & Devices"]
)


@router.get("/codes", response_model=Dict[str, str])
async def get_code_map(service: FireWatchService = Depends(get_service)):
    return service.registry.code_map()


@router.post("/codes/reload", response_model=Dict[str, str])
async def reload_codes(service: FireWatchService = Depends(get_service)):
    # 503 on failure; the previously loaded table stays in use
    codes = await service.reload_codes()
    logger.info(f"🔄 Status codes reloaded on request ({len(codes)} codes)")
    return codes


@router.get("/codes/{code}", response_model=CodeClassification)
async def resolve_code(code: str, service: FireWatchService = Depends(get_service)):
    return service.resolve_code(code)


@router.get("/devices/integrity", response_model=List[IntegrityIssue])
async def check_integrity(service: FireWatchService = Depends(get_service)):
    return await service.check_integrity()
