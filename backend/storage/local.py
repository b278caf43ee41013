"""Object store backed by a local directory tree."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO

from backend.exceptions import StoreError
from backend.storage.base import StoredObject

logger = logging.getLogger(__name__)


class LocalObjectStore:
    """Store objects as files below ``root``; keys are POSIX relative paths."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _resolve(self, key: str) -> Path:
        """Resolve a key within root, rejecting traversal attempts."""
        target = key.lstrip("/")
        if not target:
            raise StoreError("Empty object key")
        full_path = (self.root / target).resolve()
        if not full_path.is_relative_to(self.root.resolve()):
            raise StoreError(f"Invalid object key: {key}")
        return full_path

    async def list_objects(self, prefix: str = "") -> list[StoredObject]:
        try:
            return await asyncio.to_thread(self._list, prefix)
        except OSError as exc:
            raise StoreError(f"Failed to list objects under {prefix!r}: {exc}") from exc

    def _list(self, prefix: str) -> list[StoredObject]:
        if not self.root.exists():
            return []
        objects: list[StoredObject] = []
        for root, dirs, files in os.walk(self.root):
            dirs[:] = [d for d in dirs if not d.startswith(".")]
            for filename in files:
                if filename.startswith("."):
                    continue
                full = Path(root) / filename
                key = full.relative_to(self.root).as_posix()
                if key.startswith(prefix):
                    objects.append(StoredObject(key=key, size=full.stat().st_size))
        objects.sort(key=lambda obj: obj.key)
        return objects

    async def get_object(self, key: str) -> bytes | None:
        path = self._resolve(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreError(f"Failed to read {key}: {exc}") from exc

    async def put_object(self, key: str, body: bytes | BinaryIO) -> None:
        path = self._resolve(key)
        try:
            await asyncio.to_thread(self._write, path, body)
        except OSError as exc:
            raise StoreError(f"Failed to write {key}: {exc}") from exc

    @staticmethod
    def _write(path: Path, body: bytes | BinaryIO) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".upload-")
        try:
            with os.fdopen(fd, "wb") as out:
                if isinstance(body, bytes):
                    out.write(body)
                else:
                    shutil.copyfileobj(body, out)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def delete_object(self, key: str) -> None:
        path = self._resolve(key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as exc:
            raise StoreError(f"Failed to delete {key}: {exc}") from exc
