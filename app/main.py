from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api import router
from app.live import router as live_router
from app.schemas import ErrorResponse
from datastore.memory import build_default_store
from logging_config import configure_logging
from services.hub import build_default_hub
from services.intake import build_default_intake
from services.readings import build_default_reading_service

logger = logging.getLogger(__name__)


def _clear_factories() -> None:
    build_default_intake.cache_clear()
    build_default_reading_service.cache_clear()
    build_default_hub.cache_clear()
    build_default_store.cache_clear()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    intake = build_default_intake()
    await intake.start()
    try:
        yield
    finally:
        await intake.stop()
        _clear_factories()


async def http_error_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=str(exc.detail)).model_dump(),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled error serving %s", request.url.path, exc_info=exc, extra={"reason": type(exc).__name__}
    )
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="Internal server error").model_dump(),
    )


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Telemetry Relay",
        description="Relays device temperature and LED telemetry from MQTT to live dashboards.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)
    app.include_router(live_router)
    return app

app = create_app()
