"""Removal of a repository's previously mirrored objects before a re-upload."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from backend.exceptions import StoreError
from backend.services.ownership_service import belongs_to, claimed_by_other_repo, has_repo_token
from backend.storage.base import storage_prefix

if TYPE_CHECKING:
    from collections.abc import Sequence

    from backend.schemas.sync import SyncRecord
    from backend.services.record_service import SyncRecordStore
    from backend.storage.base import ObjectStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PurgeResult:
    """Outcome of one purge."""

    scanned: int = 0
    deleted: int = 0
    failed: int = 0


class FileReconciler:
    """Delete the objects a repository owns under its storage path."""

    def __init__(
        self,
        object_store: ObjectStore,
        records: SyncRecordStore,
        all_repos: Sequence[str],
    ) -> None:
        self._object_store = object_store
        self._records = records
        self._all_repos = list(all_repos)

    async def purge(
        self,
        repo: str,
        storage_path: str,
        recorded: Sequence[str] | None = None,
        previous_path: str | None = None,
    ) -> PurgeResult:
        """Delete the old objects of ``repo``, best effort.

        A key is deleted when it is in the recorded file list, when its file
        name carries the repository token, or when the ownership heuristics
        claim it for ``repo`` and for no other configured repository. Keys
        claimed by two repositories are left alone.

        ``recorded`` overrides the file list read from the sync record (the
        orchestrator passes the list it saw before clearing it). When
        ``previous_path`` differs from ``storage_path`` that location is
        scanned as well.

        The record's file list is cleared at the end even when some deletes
        failed.

        Raises:
            StoreError: The object store could not be listed.
        """
        if recorded is None:
            record = await self._records.get(repo)
            recorded = record.file_paths if record is not None else []
        recorded_keys = set(recorded)

        prefixes = [storage_prefix(storage_path)]
        if previous_path is not None and storage_prefix(previous_path) not in prefixes:
            prefixes.append(storage_prefix(previous_path))

        marked: dict[str, None] = {}
        scanned = 0
        for prefix in prefixes:
            objects = await self._object_store.list_objects(prefix)
            scanned += len(objects)
            for obj in objects:
                if self._should_delete(obj.key, obj.file_name, repo, recorded_keys):
                    marked[obj.key] = None

        deleted = failed = 0
        for key in marked:
            try:
                await self._object_store.delete_object(key)
            except StoreError as exc:
                failed += 1
                logger.error("Failed to delete %s for %s: %s", key, repo, exc)
                continue
            deleted += 1
            logger.info("Deleted %s", key)

        await self._records.update(repo, _drop_file_paths)

        result = PurgeResult(scanned=scanned, deleted=deleted, failed=failed)
        logger.info(
            "Purged %s: %d scanned, %d deleted, %d failed",
            repo,
            result.scanned,
            result.deleted,
            result.failed,
        )
        return result

    def _should_delete(
        self, key: str, file_name: str, repo: str, recorded_keys: set[str]
    ) -> bool:
        if key in recorded_keys:
            return True

        _, _, name = repo.partition("/")
        if has_repo_token(file_name, name):
            return True

        if not belongs_to(key, repo):
            return False

        other = claimed_by_other_repo(key, repo, self._all_repos)
        if other is not None:
            logger.info("Leaving %s alone: claimed by both %s and %s", key, repo, other)
            return False
        return True


def _drop_file_paths(record: SyncRecord | None) -> SyncRecord | None:
    if record is None or not record.file_paths:
        return None
    record.file_paths = []
    return record
