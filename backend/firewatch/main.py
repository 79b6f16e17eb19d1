# ==============================================================================
# == backend/firewatch/main.py - Market Fire-Watch API                        ==
# ==============================================================================

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .database import dispose_engines, get_config_engine, get_data_engine, init_models
from .errors import FireWatchError
from .routers import codes, data_reception, events, fire_history, markets
from .service import FireWatchService, create_service
from .websocket import manager as ws_manager

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - API - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(settings.LOG_FILE, encoding='utf-8'),
            logging.StreamHandler()
        ]
    )


# ============================================================================
# LIFESPAN MANAGEMENT
# ============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Market Fire-Watch starting...")
    background = []
    bridge = None

    try:
        if app.state.service is None:
            if settings.STORAGE_BACKEND == "sql":
                await init_models(get_config_engine(), get_data_engine())
                logger.info("✓ Config/Data databases initialized")
            app.state.service = create_service(notifier=ws_manager)

        service: FireWatchService = app.state.service
        await service.start()

        if settings.RECEPTION_RETENTION_DAYS > 0:
            background.append(asyncio.create_task(
                service.reception.run_retention_sweep(settings.RECEPTION_SWEEP_INTERVAL)
            ))

        if settings.MQTT_ENABLED:
            from mqtt_bridge import MQTTBridge
            bridge = MQTTBridge(service)
            bridge.start()
            logger.info("✓ Background MQTT Service started")

        logger.info("=" * 60)
        logger.info("🎉 System ready to serve!")
        logger.info("=" * 60)

        yield

    finally:
        logger.info("🛑 Shutting down...")
        for task in background:
            task.cancel()
        if bridge is not None:
            bridge.stop()
        await ws_manager.close()
        await dispose_engines()
        logger.info("✅ Shutdown complete")


# ============================================================================
# APP SETUP
# ============================================================================
def create_app(service: Optional[FireWatchService] = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        lifespan=lifespan,
        version="1.0.0"
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(FireWatchError)
    async def firewatch_error_handler(request: Request, exc: FireWatchError):
        if exc.status_code >= 500:
            logger.error(f"❌ {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error": type(exc).__name__, "field": exc.field},
        )

    app.include_router(events.router)
    app.include_router(fire_history.router)
    app.include_router(data_reception.router)
    app.include_router(markets.router)
    app.include_router(codes.router)

    # ========================================================================
    # WEBSOCKET & HEALTH CHECK
    # ========================================================================
    @app.websocket("/ws/updates")
    async def websocket_endpoint(websocket: WebSocket):
        await ws_manager.connect(websocket)
        try:
            while True:
                data = await websocket.receive_text()
                if data == "ping":
                    await websocket.send_json({"type": "pong"})
        except WebSocketDisconnect:
            ws_manager.disconnect(websocket)

    @app.get("/api/health")
    async def health_check(request: Request):
        service: Optional[FireWatchService] = request.app.state.service
        return {
            "status": "ok",
            "time": time.time(),
            "storage": settings.STORAGE_BACKEND,
            "codes_loaded": bool(service and service.registry.loaded),
        }

    return app


configure_logging()
app = create_app()
