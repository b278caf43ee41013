"""Status reads with self-healing of stale or inconsistent sync records."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from backend.exceptions import StoreError
from backend.schemas.sync import RepoStatusResponse, SyncStatus
from backend.services.datetime_service import is_older_than, now_utc
from backend.services.update_service import list_owned_objects

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from backend.config import RepoConfig
    from backend.schemas.sync import SyncRecord
    from backend.services.record_service import SyncRecordStore
    from backend.services.sync_service import SyncGuard
    from backend.storage.base import ObjectStore

logger = logging.getLogger(__name__)

PATH_CHANGED_MESSAGE = "Storage path changed, re-sync needed"
STALE_SYNC_MESSAGE = "Sync timed out, please retry"
FILES_MISSING_MESSAGE = "No mirrored files found, re-sync needed"


class StatusService:
    """Reads sync records for display and repairs what a crash left behind.

    Healing rules, applied to every configured repository on refresh:

    - the configured path differs from the recorded one: ``pending``;
    - ``syncing`` for longer than the staleness window: ``error``;
    - ``synced`` with an empty file list: the list is recovered from the
      object store, or the record goes back to ``pending`` when nothing
      owned is found.

    Healing never runs concurrently with a pass: ``refresh`` takes the sync
    guard and skips when a pass holds it, and each write re-checks that the
    record is still the one the repair was computed from.
    """

    def __init__(
        self,
        repos: Sequence[RepoConfig],
        records: SyncRecordStore,
        object_store: ObjectStore | None,
        stale_after: timedelta = timedelta(minutes=20),
        guard: SyncGuard | None = None,
    ) -> None:
        self._repos = list(repos)
        self._records = records
        self._object_store = object_store
        self._stale_after = stale_after
        self._guard = guard

    async def refresh(self, now: datetime | None = None) -> bool:
        """Heal every record under the sync guard; returns False when a pass holds it."""
        if self._guard is None:
            await self.heal_all(now)
            return True
        if not self._guard.try_acquire():
            logger.debug("Record healing skipped: a sync is in progress")
            return False
        try:
            await self.heal_all(now)
        finally:
            self._guard.release()
        return True

    async def heal_all(self, now: datetime | None = None) -> None:
        """Heal the record of every configured repository. The caller holds the guard."""
        for config in self._repos:
            try:
                await self.heal(config, now)
            except StoreError as exc:
                logger.error("Failed to check sync record of %s: %s", config.repo, exc)

    async def heal(self, config: RepoConfig, now: datetime | None = None) -> SyncRecord | None:
        """Repair the record of one repository; returns the record as stored afterwards."""
        original = await self._records.get(config.repo)
        if original is None:
            return None
        record = original.model_copy(deep=True)
        reference = now if now is not None else now_utc()
        changed = False

        if record.path != config.path and record.status is not SyncStatus.PENDING:
            logger.info(
                "Storage path of %s changed from %r to %r, marking pending",
                config.repo,
                record.path,
                config.path,
            )
            record.status = SyncStatus.PENDING
            record.message = PATH_CHANGED_MESSAGE
            changed = True

        if (
            record.status is SyncStatus.SYNCING
            and record.last_update is not None
            and is_older_than(record.last_update, self._stale_after, reference)
        ):
            logger.warning(
                "%s has been syncing since %s, marking failed", config.repo, record.last_update
            )
            record.status = SyncStatus.ERROR
            record.error = STALE_SYNC_MESSAGE
            record.message = STALE_SYNC_MESSAGE
            changed = True

        if record.status is SyncStatus.SYNCED and not record.file_paths:
            changed = await self._recover_file_paths(config, record) or changed

        if not changed:
            return record

        def _apply(current: SyncRecord | None) -> SyncRecord | None:
            if current is None or current.model_dump() != original.model_dump():
                return None
            return record

        if await self._records.update(config.repo, _apply) is None:
            logger.info("Sync record of %s changed while healing, leaving it alone", config.repo)
            return await self._records.get(config.repo)
        return record

    async def _recover_file_paths(self, config: RepoConfig, record: SyncRecord) -> bool:
        owned_keys: list[str] = []
        if self._object_store is not None:
            try:
                owned = await list_owned_objects(self._object_store, config.repo, config.path)
            except StoreError as exc:
                logger.error("Failed to list mirrored files of %s: %s", config.repo, exc)
            else:
                owned_keys = [obj.key for obj in owned]

        if owned_keys:
            record.file_paths = owned_keys
            logger.info("Recovered file list of %s: %d files", config.repo, len(owned_keys))
        else:
            record.status = SyncStatus.PENDING
            record.message = FILES_MISSING_MESSAGE
            logger.info("%s is marked synced but has no files, marking pending", config.repo)
        return True

    async def repo_statuses(self) -> list[RepoStatusResponse]:
        """One entry per configured repository, in configuration order."""
        statuses: list[RepoStatusResponse] = []
        for config in self._repos:
            try:
                record = await self._records.get(config.repo)
            except StoreError as exc:
                logger.error("Failed to load sync record of %s: %s", config.repo, exc)
                statuses.append(
                    RepoStatusResponse(
                        repo=config.repo,
                        path=config.path,
                        status=SyncStatus.ERROR,
                        message=f"Failed to load status: {exc}",
                    )
                )
                continue
            statuses.append(_to_response(config, record))
        return statuses


def _to_response(config: RepoConfig, record: SyncRecord | None) -> RepoStatusResponse:
    if record is None:
        return RepoStatusResponse(
            repo=config.repo,
            path=config.path,
            status=SyncStatus.PENDING,
            message="Not synced yet",
        )

    if record.status is SyncStatus.SYNCED:
        message = "Up to date"
    elif record.status is SyncStatus.ERROR:
        message = record.error or "Sync failed"
    elif record.status is SyncStatus.SYNCING:
        message = "Sync in progress"
    else:
        message = record.message or "Waiting for sync"

    return RepoStatusResponse(
        repo=config.repo,
        path=config.path,
        version=record.version,
        status=record.status,
        last_update=record.last_update,
        file_count=len(record.file_paths),
        message=message,
    )
