"""
SmartOps mobile sync service

Offline event replay and biometric enrollment API for SmartOps mobile
clients. The template worker runs inside this process and is started and
stopped by the application lifespan.
"""
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.database import engine, Base
from app.core.logging_config import setup_logging, get_logger
from app.core.metrics import init_metrics, get_metrics, get_content_type
from app.middleware.logging_middleware import RequestLoggingMiddleware
from app.api.v1.offline_events import router as offline_events_router
from app.api.v1.biometrics import router as biometrics_router, users_router as biometric_users_router
from app.services.template_worker import (
    get_template_worker,
    initialize_template_worker,
    shutdown_template_worker,
)

APP_VERSION = "1.0.0"
SERVICE_NAME = "SmartOps Mobile Sync API"
MOBILE_PREFIX = f"{settings.API_V1_PREFIX}/mobile"

setup_logging(log_level=settings.LOG_LEVEL, log_dir=settings.LOG_DIR)
logger = get_logger(__name__)

init_metrics(version=APP_VERSION)


def _prepare_storage() -> None:
    """Create the tables and the blob root; both are idempotent."""
    Base.metadata.create_all(bind=engine)
    os.makedirs(settings.BLOB_STORAGE_DIR, exist_ok=True)
    logger.info(
        "Storage ready",
        extra={
            "event_type": "storage_init",
            "database": engine.url.render_as_string(hide_password=True),
            "blob_root": settings.BLOB_STORAGE_DIR,
        }
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: storage, then the template worker (when enabled).
    Shutdown: stop the worker and drain in-flight template generation.
    """
    logger.info(
        "Application starting",
        extra={
            "event_type": "app_startup",
            "version": APP_VERSION,
            "worker_enabled": settings.BIOMETRIC_WORKER_ENABLED,
        }
    )
    _prepare_storage()
    await initialize_template_worker()

    yield

    logger.info("Application shutting down", extra={"event_type": "app_shutdown"})
    await shutdown_template_worker()
    logger.info("Application shutdown complete", extra={"event_type": "app_shutdown_complete"})


app = FastAPI(
    title=SERVICE_NAME,
    description="Offline event synchronization and biometric enrollment for SmartOps mobile clients",
    version=APP_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(HTTPException)
async def cors_http_exception_handler(request: Request, exc: HTTPException):
    """Keep CORS headers on error responses so mobile web views can read the detail."""
    origin = request.headers.get("origin", "")
    allowed = settings.cors_origins_list

    headers = dict(exc.headers or {})
    if origin and (origin in allowed or "*" in allowed):
        headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Credentials"] = "true"

    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


app.include_router(offline_events_router, prefix=MOBILE_PREFIX)
app.include_router(biometrics_router, prefix=MOBILE_PREFIX)
app.include_router(biometric_users_router, prefix=settings.API_V1_PREFIX)


def _worker_health() -> Optional[dict]:
    if not settings.BIOMETRIC_WORKER_ENABLED:
        return None
    status = get_template_worker().get_status()
    return {
        "running": status.running,
        "in_flight": status.in_flight,
        "ticks": status.ticks,
        "last_tick": status.last_tick.isoformat() if status.last_tick else None,
    }


@app.get("/")
async def root():
    return {"name": SERVICE_NAME, "version": APP_VERSION, "status": "running"}


@app.get("/health")
async def health_check():
    """Liveness plus template worker progress (no authentication required)"""
    return {"status": "healthy", "template_worker": _worker_health()}


@app.get("/metrics")
async def prometheus_metrics():
    return Response(content=get_metrics(), media_type=get_content_type())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
