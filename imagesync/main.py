"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from imagesync.api.health import router as health_router
from imagesync.api.sync import router as sync_router
from imagesync.api.webhook import router as webhook_router
from imagesync.config import Settings
from imagesync.database import create_engine, ensure_sqlite_dir, init_schema
from imagesync.exceptions import (
    InternalServerError,
    InvalidReference,
    LedgerWriteError,
    RemoteUnavailable,
)
from imagesync.services.app_services import build_services

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from imagesync.services.trigger_service import TriggerService

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


async def _periodic_full_sync(trigger: TriggerService, interval_seconds: int) -> None:
    """Run a full sync every interval_seconds until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await trigger.full_sync()
        except Exception as exc:
            logger.error("Scheduled full sync failed: %s", exc, exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting imagesync (debug=%s)", settings.debug)

    ensure_sqlite_dir(settings.database_url)

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        await init_schema(engine)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    try:
        services = build_services(settings, engine, session_factory)
    except Exception as exc:
        logger.critical("Failed to initialize sync services: %s.", exc)
        raise
    app.state.ledger = services.ledger
    app.state.storage = services.storage
    app.state.reconciler = services.reconciler
    app.state.trigger = services.trigger

    timer: asyncio.Task[None] | None = None
    if settings.sync_interval_seconds > 0:
        timer = asyncio.create_task(
            _periodic_full_sync(services.trigger, settings.sync_interval_seconds)
        )
        logger.info("Scheduled full sync every %d s", settings.sync_interval_seconds)

    yield

    if timer is not None:
        timer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await timer

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("imagesync stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="imagesync",
        description="Reconciles row-linked Drive image folders into object storage",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings

    app.include_router(health_router)
    app.include_router(sync_router)
    app.include_router(webhook_router)

    # Global exception handlers

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(InvalidReference)
    async def invalid_reference_handler(
        request: Request, exc: InvalidReference
    ) -> JSONResponse:
        logger.warning("InvalidReference in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(RemoteUnavailable)
    async def remote_unavailable_handler(
        request: Request, exc: RemoteUnavailable
    ) -> JSONResponse:
        logger.error("RemoteUnavailable in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(LedgerWriteError)
    async def ledger_error_handler(request: Request, exc: LedgerWriteError) -> JSONResponse:
        logger.error(
            "LedgerWriteError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Sync ledger temporarily unavailable"},
        )

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Database temporarily unavailable"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "imagesync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
