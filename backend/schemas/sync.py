"""Sync record and status schemas."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class SyncStatus(StrEnum):
    """Lifecycle state of a repository's sync record."""

    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


class SyncRecord(BaseModel):
    """Persisted sync state of one repository.

    Serialized with camelCase aliases (``lastUpdate``, ``filePaths``) so that
    records written by earlier deployments stay readable.
    """

    model_config = ConfigDict(populate_by_name=True)

    repo: str
    version: str | None = None
    status: SyncStatus = SyncStatus.PENDING
    path: str = ""
    last_update: datetime | None = Field(default=None, alias="lastUpdate")
    file_paths: list[str] = Field(default_factory=list, alias="filePaths")
    error: str | None = None
    message: str | None = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class RepoStatusResponse(BaseModel):
    """One configured repository as shown on the status surfaces."""

    repo: str
    path: str
    version: str | None = None
    status: SyncStatus
    last_update: datetime | None = None
    file_count: int = Field(default=0, ge=0)
    message: str = ""


class RateLimitResponse(BaseModel):
    """GitHub API rate-limit snapshot."""

    limit: int
    remaining: int
    reset: datetime


class StatusResponse(BaseModel):
    """Response of the JSON status endpoint."""

    repos: list[RepoStatusResponse]
    last_check: datetime | None = None
    api_rate_limit: RateLimitResponse | None = None
    error: str | None = None
    info: str | None = None
    is_syncing: bool = False


class NeedsSyncResponse(BaseModel):
    """Diagnostic answer to "does this repository need a re-sync"."""

    repo: str
    tag: str
    path: str
    needs_sync: bool
