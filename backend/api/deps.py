"""Shared API dependencies: services and the DB session from app state."""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.github.client import GitHubClient
from backend.services.log_service import SyncLogBroadcaster
from backend.services.record_service import SyncRecordStore
from backend.services.status_service import StatusService
from backend.services.sync_service import SyncOrchestrator
from backend.storage.base import ObjectStore


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def get_records(request: Request) -> SyncRecordStore:
    records: SyncRecordStore = request.app.state.records
    return records


def get_object_store(request: Request) -> ObjectStore | None:
    object_store: ObjectStore | None = request.app.state.object_store
    return object_store


def get_github(request: Request) -> GitHubClient:
    github: GitHubClient = request.app.state.github
    return github


def get_orchestrator(request: Request) -> SyncOrchestrator:
    orchestrator: SyncOrchestrator = request.app.state.orchestrator
    return orchestrator


def get_status_service(request: Request) -> StatusService:
    status_service: StatusService = request.app.state.status_service
    return status_service


def get_broadcaster(request: Request) -> SyncLogBroadcaster:
    broadcaster: SyncLogBroadcaster = request.app.state.broadcaster
    return broadcaster
