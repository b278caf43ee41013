"""Sync record persistence: one JSON record per repository in the key-value store."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from backend.exceptions import StoreError
from backend.schemas.sync import SyncRecord, SyncStatus
from backend.services.datetime_service import now_utc

if TYPE_CHECKING:
    from collections.abc import Callable

    from backend.storage.base import KeyValueStore

logger = logging.getLogger(__name__)


def record_key(repo: str) -> str:
    """Key under which the record of ``repo`` is stored."""
    return f"repo:{repo}"


class SyncRecordStore:
    """Typed access to sync records.

    Nothing is cached: every operation reads the backing store again, so a
    decision is always taken against the latest committed state. Failures of
    the backing store and undecodable records raise ``StoreError``.
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    async def get(self, repo: str) -> SyncRecord | None:
        raw = await self._kv.get(record_key(repo))
        if raw is None:
            return None
        try:
            return SyncRecord.model_validate_json(raw)
        except ValidationError as exc:
            raise StoreError(f"Corrupt sync record for {repo}: {exc}") from exc

    async def put(self, repo: str, record: SyncRecord) -> None:
        """Overwrite the record of ``repo``. No merging happens here."""
        await self._kv.put(record_key(repo), record.to_json())
        logger.debug("Saved sync record for %s: %s", repo, record.status)

    async def update(
        self,
        repo: str,
        transform: Callable[[SyncRecord | None], SyncRecord | None],
    ) -> SyncRecord | None:
        """Read-modify-write the record of ``repo``.

        ``transform`` receives a copy of the current record (or None) and
        returns the record to write, or None to leave the store untouched.
        Returns what was written, or None.
        """
        current = await self.get(repo)
        updated = transform(current.model_copy(deep=True) if current is not None else None)
        if updated is None:
            return None
        await self.put(repo, updated)
        return updated

    async def clear_file_list(self, repo: str) -> SyncRecord | None:
        """Forget which files belong to ``repo`` and mark it as syncing.

        Runs before any destructive step so that a crash mid-sync never leaves
        a ``synced`` record pointing at deleted files. No-op without a record.
        """

        def _clear(record: SyncRecord | None) -> SyncRecord | None:
            if record is None:
                return None
            record.file_paths = []
            record.status = SyncStatus.SYNCING
            record.last_update = now_utc()
            record.error = None
            record.message = None
            return record

        return await self.update(repo, _clear)

    async def mark_synced(
        self, repo: str, version: str, path: str, file_paths: list[str]
    ) -> SyncRecord:
        record = SyncRecord(
            repo=repo,
            version=version,
            status=SyncStatus.SYNCED,
            path=path,
            last_update=now_utc(),
            file_paths=list(file_paths),
        )
        await self.put(repo, record)
        return record

    async def mark_error(self, repo: str, path: str, message: str) -> SyncRecord | None:
        """Record a failed attempt.

        The version is dropped so the next pass cannot mistake the repository
        for current; recorded file paths are kept because those objects still
        exist and stay attributable for the next purge.
        """

        def _fail(record: SyncRecord | None) -> SyncRecord:
            return SyncRecord(
                repo=repo,
                version=None,
                status=SyncStatus.ERROR,
                path=path,
                last_update=now_utc(),
                file_paths=record.file_paths if record is not None else [],
                error=message,
            )

        return await self.update(repo, _fail)
