# backend/firewatch/dependencies.py
from fastapi import Request

from .service import FireWatchService


def get_service(request: Request) -> FireWatchService:
    return request.app.state.service
