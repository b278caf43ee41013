"""Release assets: platform classification, storage naming and upload."""

from __future__ import annotations

import logging
import re
from enum import StrEnum
from typing import TYPE_CHECKING

from backend.exceptions import StoreError, UploadError
from backend.schemas.sync import SyncRecord, SyncStatus
from backend.services.datetime_service import now_utc
from backend.services.ownership_service import belongs_to, split_repo
from backend.storage.base import storage_prefix

if TYPE_CHECKING:
    from collections.abc import Iterable

    from backend.github.base import AssetRef, ReleaseSource
    from backend.services.record_service import SyncRecordStore
    from backend.storage.base import ObjectStore

logger = logging.getLogger(__name__)


class Platform(StrEnum):
    """Platform folder an asset is filed under."""

    ANDROID = "Android"
    WINDOWS = "Windows"
    MACOS = "macOS"
    LINUX = "Linux"
    OTHER = "Other"


# Evaluated in order; the first matching rule wins.
_PLATFORM_RULES: tuple[tuple[Platform, tuple[str, ...], tuple[str, ...]], ...] = (
    (Platform.ANDROID, ("android", "mobile"), (".apk",)),
    (Platform.WINDOWS, ("windows", "win", "desktop"), (".exe", ".msi")),
    (Platform.MACOS, ("macos", "darwin", "mac"), (".dmg", ".pkg")),
    (Platform.LINUX, ("linux",), (".deb", ".rpm", ".appimage")),
)

_EXCLUDED_SUFFIXES = (".sha256", ".asc")
_SOURCE_ARCHIVE = re.compile(r"source[ _-]code", re.IGNORECASE)


def classify_asset(file_name: str) -> Platform:
    """Map an asset file name to its platform (case-insensitive, total)."""
    lowered = file_name.lower()
    for platform, markers, extensions in _PLATFORM_RULES:
        if any(marker in lowered for marker in markers) or lowered.endswith(extensions):
            return platform
    return Platform.OTHER


def is_valid_asset(name: str) -> bool:
    """Source archives, checksums and signatures are not mirrored.

    ``Source code`` is matched with any case and with ``-`` or ``_`` in place
    of the space, so re-uploaded archives such as ``app-Source-code.zip``
    are caught as well.
    """
    return _SOURCE_ARCHIVE.search(name) is None and not name.endswith(_EXCLUDED_SUFFIXES)


def filter_valid_assets(assets: Iterable[AssetRef]) -> list[AssetRef]:
    return [asset for asset in assets if is_valid_asset(asset.name)]


def _insert_repo_token(file_name: str, repo_name: str) -> str:
    stem, dot, extension = file_name.rpartition(".")
    if dot and stem:
        return f"{stem}_{repo_name}.{extension}"
    return f"{file_name}_{repo_name}"


def build_storage_key(storage_path: str, platform: Platform, file_name: str, repo: str) -> str:
    """Deterministic object key for an asset of ``repo``.

    ``{storage_path}/{platform}/{file_name}`` with the platform folder left
    out for ``Other``. The file name gets a ``_{repo_name}`` token before its
    extension unless it already names the repository in a way the ownership
    rules recognise, so same-named assets of different repositories never
    collide and every key stays attributable to its repository.
    """
    _, repo_name = split_repo(repo)
    base = storage_prefix(storage_path)
    if platform is not Platform.OTHER:
        base += f"{platform.value}/"

    if repo_name and repo_name in file_name and belongs_to(base + file_name, repo):
        return base + file_name
    return base + _insert_repo_token(file_name, repo_name)


class AssetUploader:
    """Download one release asset and store it under its mirror key."""

    def __init__(
        self,
        releases: ReleaseSource,
        object_store: ObjectStore,
        records: SyncRecordStore,
    ) -> None:
        self._releases = releases
        self._object_store = object_store
        self._records = records

    async def upload(self, asset: AssetRef, repo: str, storage_path: str) -> str | None:
        """Mirror ``asset`` and record its key in the sync record of ``repo``.

        Returns the object key, or None when the asset was fetched for a
        different repository (nothing is downloaded in that case).

        Raises:
            DownloadError: The asset could not be downloaded.
            UploadError: The object store rejected the write.
        """
        if asset.source_repo and asset.source_repo != repo:
            logger.warning(
                "Skipping asset %s: it belongs to %s, not %s", asset.name, asset.source_repo, repo
            )
            return None

        platform = classify_asset(asset.name)
        key = build_storage_key(storage_path, platform, asset.name, repo)

        logger.info("Downloading %s from %s", asset.name, repo)
        body = await self._releases.download_asset(asset)
        try:
            await self._object_store.put_object(key, body)
        except StoreError as exc:
            raise UploadError(asset.name, str(exc)) from exc
        finally:
            body.close()
        logger.info("Uploaded %s to %s", asset.name, key)

        try:
            await self._records.update(
                repo, lambda record: _append_key(record, repo, storage_path, key)
            )
        except StoreError as exc:
            # The object is stored; the final record save still lists it.
            logger.error("Failed to record %s for %s: %s", key, repo, exc)
        return key


def _append_key(
    record: SyncRecord | None, repo: str, storage_path: str, key: str
) -> SyncRecord | None:
    if not belongs_to(key, repo):
        logger.warning("Not recording %s: it is not attributable to %s", key, repo)
        return None
    if record is None:
        return SyncRecord(
            repo=repo,
            status=SyncStatus.SYNCING,
            path=storage_path,
            last_update=now_utc(),
            file_paths=[key],
        )
    if key in record.file_paths:
        return None
    record.file_paths.append(key)
    return record
