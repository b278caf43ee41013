"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.deps import get_object_store, get_orchestrator, get_session
from backend.services.sync_service import SyncOrchestrator
from backend.storage.base import ObjectStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    object_store: str
    repos: int
    is_syncing: bool


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    session: Annotated[AsyncSession, Depends(get_session)],
    object_store: Annotated[ObjectStore | None, Depends(get_object_store)],
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> HealthResponse:
    """Health check endpoint for monitoring and load balancers."""
    db_status = "ok"
    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check database query failed", exc_info=True)
        db_status = "error"

    store_status = "configured" if object_store is not None else "not_configured"
    healthy = db_status == "ok" and object_store is not None
    return HealthResponse(
        status="ok" if healthy else "degraded",
        version="0.1.0",
        database=db_status,
        object_store=store_status,
        repos=len(orchestrator.repos),
        is_syncing=orchestrator.is_syncing,
    )
