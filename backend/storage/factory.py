"""Build the configured object store."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from backend.storage.local import LocalObjectStore
from backend.storage.s3 import S3ObjectStore

if TYPE_CHECKING:
    from backend.config import Settings
    from backend.storage.base import ObjectStore

logger = logging.getLogger(__name__)


def create_object_store(settings: Settings) -> ObjectStore | None:
    """Return the object store selected by ``STORAGE_BACKEND``, or None if unset."""
    if settings.storage_backend == "s3":
        logger.info("Using S3 object store (bucket=%s)", settings.s3_bucket)
        return S3ObjectStore.from_settings(settings)
    if settings.storage_backend == "local":
        logger.info("Using local object store at %s", settings.local_storage_dir)
        return LocalObjectStore(settings.local_storage_dir)
    logger.warning("No object store configured; sync is disabled")
    return None
