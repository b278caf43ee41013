"""Sync API endpoints: status, manual trigger, live log and record queries."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sse_starlette.sse import EventSourceResponse

from backend.api.deps import (
    get_broadcaster,
    get_github,
    get_object_store,
    get_orchestrator,
    get_records,
    get_status_service,
)
from backend.exceptions import RepoNotConfiguredError
from backend.github.client import GitHubClient
from backend.schemas.sync import (
    NeedsSyncResponse,
    RateLimitResponse,
    StatusResponse,
    SyncRecord,
)
from backend.services.log_service import SyncLogBroadcaster
from backend.services.record_service import SyncRecordStore
from backend.services.status_service import StatusService
from backend.services.sync_service import SyncOrchestrator
from backend.storage.base import ObjectStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from backend.config import RepoConfig
    from backend.github.base import RateLimit

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"])

_LOG_POLL_SECONDS = 15.0


def _rate_limit_response(rate_limit: RateLimit | None) -> RateLimitResponse | None:
    if rate_limit is None:
        return None
    return RateLimitResponse(
        limit=rate_limit.limit, remaining=rate_limit.remaining, reset=rate_limit.reset
    )


def _find_repo(orchestrator: SyncOrchestrator, owner: str, name: str) -> RepoConfig:
    repo = f"{owner}/{name}"
    for config in orchestrator.repos:
        if config.repo == repo:
            return config
    raise RepoNotConfiguredError(repo)


async def build_status(
    orchestrator: SyncOrchestrator,
    status_service: StatusService,
    github: GitHubClient,
    object_store: ObjectStore | None,
) -> StatusResponse:
    """Heal records (skipped while a pass holds the guard) and collect the status view."""
    await status_service.refresh()
    repos = await status_service.repo_statuses()

    rate_limit = github.rate_limit
    if rate_limit is None:
        rate_limit = await github.fetch_rate_limit()

    error = None if object_store is not None else "Object storage is not configured"
    info = None
    if not orchestrator.repos:
        info = "No repositories configured. Set REPOS or REPO_1, REPO_2, ..."

    return StatusResponse(
        repos=repos,
        last_check=orchestrator.last_check,
        api_rate_limit=_rate_limit_response(rate_limit),
        error=error,
        info=info,
        is_syncing=orchestrator.is_syncing,
    )


@router.get("/api/status", response_model=StatusResponse)
async def status(
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
    status_service: Annotated[StatusService, Depends(get_status_service)],
    github: Annotated[GitHubClient, Depends(get_github)],
    object_store: Annotated[ObjectStore | None, Depends(get_object_store)],
) -> StatusResponse:
    """Sync state of every configured repository."""
    return await build_status(orchestrator, status_service, github, object_store)


@router.get("/api/github-rate", response_model=RateLimitResponse)
async def github_rate(
    github: Annotated[GitHubClient, Depends(get_github)],
) -> RateLimitResponse:
    """Current GitHub API quota."""
    rate_limit = _rate_limit_response(await github.fetch_rate_limit())
    if rate_limit is None:
        raise HTTPException(status_code=502, detail="GitHub rate limit unavailable")
    return rate_limit


@router.api_route("/sync", methods=["GET", "POST"])
async def trigger_sync(
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
    repo: Annotated[str | None, Query(max_length=200)] = None,
) -> StreamingResponse:
    """Start a sync pass and stream its progress as plain text, one line per event."""
    lines = orchestrator.start_sync(repo, trigger="manual")

    async def body() -> AsyncIterator[str]:
        async for line in lines:
            yield f"{line}\n"

    return StreamingResponse(
        body(),
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/api/sync-logs-stream")
async def sync_logs_stream(
    request: Request,
    broadcaster: Annotated[SyncLogBroadcaster, Depends(get_broadcaster)],
    repo: Annotated[str | None, Query(max_length=200)] = None,
) -> EventSourceResponse:
    """Server-sent events carrying every progress line, optionally for one repository."""

    async def event_generator() -> AsyncIterator[dict[str, str]]:
        async with broadcaster.subscription(repo) as subscription:
            yield {"comment": "connected"}
            while not await request.is_disconnected():
                try:
                    line = await asyncio.wait_for(
                        subscription.queue.get(), timeout=_LOG_POLL_SECONDS
                    )
                except TimeoutError:
                    continue
                yield {"event": "log", "data": line}
        logger.debug("Log stream subscriber disconnected")

    return EventSourceResponse(event_generator())


@router.get("/api/repos/{owner}/{name}", response_model=SyncRecord)
async def get_repo_record(
    owner: str,
    name: str,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
    records: Annotated[SyncRecordStore, Depends(get_records)],
) -> SyncRecord:
    """Stored sync record of a configured repository."""
    config = _find_repo(orchestrator, owner, name)
    record = await records.get(config.repo)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No sync record for {config.repo}")
    return record


@router.get("/api/repos/{owner}/{name}/needs-sync", response_model=NeedsSyncResponse)
async def needs_sync(
    owner: str,
    name: str,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
    github: Annotated[GitHubClient, Depends(get_github)],
    tag: Annotated[str | None, Query(max_length=200)] = None,
) -> NeedsSyncResponse:
    """Would a pass re-sync this repository? Uses the latest release when ``tag`` is omitted."""
    config = _find_repo(orchestrator, owner, name)
    release = None
    if not tag:
        release = await github.fetch_latest_release(config.repo)
        tag = release.tag
    result = await orchestrator.decider.needs_sync(config.repo, tag, config.path, release=release)
    return NeedsSyncResponse(repo=config.repo, tag=tag, path=config.path, needs_sync=result)
