"""Update decision: does a repository need to be re-synced?"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from backend.exceptions import StoreError, UpstreamFetchError
from backend.schemas.sync import SyncStatus
from backend.services.asset_service import filter_valid_assets
from backend.services.ownership_service import belongs_to
from backend.storage.base import storage_prefix

if TYPE_CHECKING:
    from backend.github.base import ReleaseInfo, ReleaseSource
    from backend.schemas.sync import SyncRecord
    from backend.services.record_service import SyncRecordStore
    from backend.storage.base import ObjectStore, StoredObject

logger = logging.getLogger(__name__)


async def list_owned_objects(
    object_store: ObjectStore, repo: str, storage_path: str
) -> list[StoredObject]:
    """Objects under the storage path of ``repo`` that its ownership rules claim."""
    objects = await object_store.list_objects(storage_prefix(storage_path))
    return [obj for obj in objects if belongs_to(obj.key, repo)]


class UpdateDecider:
    """Combine the stored record, the live bucket listing and the upstream release.

    Errs toward re-work: when state cannot be read the answer is "sync".
    """

    def __init__(
        self,
        records: SyncRecordStore,
        object_store: ObjectStore | None,
        releases: ReleaseSource | None = None,
    ) -> None:
        self._records = records
        self._object_store = object_store
        self._releases = releases

    async def needs_sync(
        self,
        repo: str,
        current_tag: str,
        storage_path: str,
        release: ReleaseInfo | None = None,
    ) -> bool:
        """Decide whether ``repo`` must be re-synced to ``current_tag``.

        ``release`` is the already fetched latest release; when omitted the
        release source is asked for it, and if that fails the asset-count
        comparison is skipped.
        """
        try:
            return await self._decide(repo, current_tag, storage_path, release)
        except StoreError as exc:
            logger.error("Storage check for %s failed, assuming re-sync needed: %s", repo, exc)
            return True

    async def _decide(
        self,
        repo: str,
        current_tag: str,
        storage_path: str,
        release: ReleaseInfo | None,
    ) -> bool:
        record = await self._records.get(repo)
        if record is None:
            logger.info("No sync record for %s, first sync", repo)
            return True

        if record.path != storage_path:
            logger.info(
                "Storage path of %s changed from %r to %r, re-sync needed",
                repo,
                record.path,
                storage_path,
            )
            return True

        if record.status is SyncStatus.SYNCED and not record.file_paths:
            logger.info("%s is marked synced but records no files, re-sync needed", repo)
            return True

        expected = await self._expected_asset_count(repo, release)
        if expected is not None and self._object_store is not None:
            if await self._live_listing_incomplete(
                self._object_store, record, expected, storage_path
            ):
                return True

        if record.version == current_tag:
            logger.info("%s is already at %s", repo, current_tag)
            return False

        logger.info("%s needs update from %s to %s", repo, record.version, current_tag)
        return True

    async def _expected_asset_count(self, repo: str, release: ReleaseInfo | None) -> int | None:
        if release is None and self._releases is not None:
            try:
                release = await self._releases.fetch_latest_release(repo)
            except UpstreamFetchError as exc:
                logger.warning("Cannot compare asset counts for %s: %s", repo, exc)
                return None
        if release is None:
            return None
        return len(filter_valid_assets(release.assets))

    async def _live_listing_incomplete(
        self,
        object_store: ObjectStore,
        record: SyncRecord,
        expected: int,
        storage_path: str,
    ) -> bool:
        repo = record.repo
        owned = await list_owned_objects(object_store, repo, storage_path)
        actual = len(owned)

        if actual == 0:
            logger.info("No files of %s found in storage, re-sync needed", repo)
            return True
        if expected > 0 and actual < expected:
            logger.info("%s has %d of %d files in storage, re-sync needed", repo, actual, expected)
            return True

        if len(record.file_paths) != actual:
            live_keys = [obj.key for obj in owned]

            def _heal(current: SyncRecord | None) -> SyncRecord | None:
                # Only the record the listing was compared against may be rewritten.
                if current is None or current.model_dump() != record.model_dump():
                    return None
                current.file_paths = live_keys
                return current

            if await self._records.update(repo, _heal) is not None:
                logger.info("Recovered file list of %s from storage: %d files", repo, actual)
        return False
