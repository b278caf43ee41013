"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from backend.api.health import router as health_router
from backend.api.pages import router as pages_router
from backend.api.sync import router as sync_router
from backend.config import Settings, load_repo_configs
from backend.database import create_engine, create_schema
from backend.exceptions import (
    ConfigError,
    InternalServerError,
    StoreError,
    SyncInProgressError,
    UpstreamFetchError,
)
from backend.github.client import GitHubClient
from backend.services.log_service import SyncLogBroadcaster
from backend.services.record_service import SyncRecordStore
from backend.services.scheduler_service import SyncScheduler
from backend.services.status_service import StatusService
from backend.services.sync_service import SyncOrchestrator
from backend.storage.factory import create_object_store
from backend.storage.kv import SqlKeyValueStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Mapping

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from backend.storage.base import ObjectStore

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
    logging.getLogger("httpx").setLevel(logging.WARNING)


def init_app_state(
    app: FastAPI,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    object_store: ObjectStore | None,
    github: GitHubClient,
    environ: Mapping[str, str] | None = None,
) -> None:
    """Wire the sync services onto ``app.state``."""
    repos = load_repo_configs(settings, environ)
    records = SyncRecordStore(SqlKeyValueStore(session_factory))
    broadcaster = SyncLogBroadcaster()
    orchestrator = SyncOrchestrator(
        repos,
        releases=github,
        object_store=object_store,
        records=records,
        broadcaster=broadcaster,
        timeout_seconds=settings.sync_timeout_seconds,
    )
    status_service = StatusService(
        repos,
        records,
        object_store,
        stale_after=timedelta(minutes=settings.stale_sync_minutes),
        guard=orchestrator.guard,
    )

    app.state.session_factory = session_factory
    app.state.object_store = object_store
    app.state.github = github
    app.state.records = records
    app.state.broadcaster = broadcaster
    app.state.orchestrator = orchestrator
    app.state.status_service = status_service
    app.state.scheduler = SyncScheduler(
        orchestrator,
        status_service,
        check_interval_seconds=settings.check_interval_seconds,
        tick_seconds=settings.scheduler_tick_seconds,
    )

    logger.info(
        "Mirroring %d repositories: %s",
        len(repos),
        ", ".join(config.repo for config in repos) or "none",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime()
    _configure_logging(settings.debug)
    logger.info("Starting release mirror (debug=%s)", settings.debug)

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        await create_schema(engine)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    try:
        object_store = create_object_store(settings)
    except Exception as exc:
        logger.critical("Failed to initialize object storage: %s.", exc)
        raise

    github = GitHubClient.from_settings(settings)
    init_app_state(app, settings, session_factory, object_store, github)

    scheduler: SyncScheduler = app.state.scheduler
    orchestrator: SyncOrchestrator = app.state.orchestrator
    if not settings.scheduler_enabled:
        logger.info("Sync scheduler disabled")
    elif object_store is None:
        logger.error("Sync scheduler not started: object storage is not configured")
    elif not orchestrator.repos:
        logger.warning("Sync scheduler not started: no repositories configured")
    else:
        scheduler.start()

    yield

    try:
        await scheduler.stop()
    except Exception as exc:
        logger.error("Error during scheduler shutdown: %s", exc, exc_info=True)

    try:
        await orchestrator.shutdown(timeout=settings.shutdown_grace_seconds)
    except Exception as exc:
        logger.error("Error while stopping sync passes: %s", exc, exc_info=True)

    try:
        await github.aclose()
    except Exception as exc:
        logger.error("Error during GitHub client shutdown: %s", exc, exc_info=True)

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("Release mirror stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="Release Mirror",
        description="Mirrors GitHub release assets into object storage",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings

    app.include_router(health_router)
    app.include_router(sync_router)
    app.include_router(pages_router)

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

    @app.exception_handler(ConfigError)
    async def config_error_handler(request: Request, exc: ConfigError) -> JSONResponse:
        logger.warning("ConfigError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    @app.exception_handler(SyncInProgressError)
    async def sync_in_progress_handler(
        request: Request, exc: SyncInProgressError
    ) -> JSONResponse:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        logger.error("StoreError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=503,
            content={"detail": "Storage temporarily unavailable"},
        )

    @app.exception_handler(UpstreamFetchError)
    async def upstream_error_handler(request: Request, exc: UpstreamFetchError) -> JSONResponse:
        logger.error("UpstreamFetchError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=502, content={"detail": str(exc)})

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
        "backend.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
