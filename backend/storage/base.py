"""Storage protocols shared by the object store and record store backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO, Protocol, runtime_checkable


@dataclass(frozen=True)
class StoredObject:
    """An entry listed from the object store."""

    key: str
    size: int = 0

    @property
    def file_name(self) -> str:
        return self.key.rsplit("/", 1)[-1]


@runtime_checkable
class ObjectStore(Protocol):
    """Bucket-like blob store the release assets are mirrored into.

    Implementations raise ``StoreError`` for any backend failure. A missing
    key is not a failure: ``get_object`` returns None and ``delete_object``
    is a no-op.
    """

    async def list_objects(self, prefix: str = "") -> list[StoredObject]:
        """List every object whose key starts with ``prefix``."""
        ...

    async def get_object(self, key: str) -> bytes | None:
        """Return the object body, or None when the key does not exist."""
        ...

    async def put_object(self, key: str, body: bytes | BinaryIO) -> None:
        """Write ``body`` under ``key``, replacing any existing object."""
        ...

    async def delete_object(self, key: str) -> None:
        """Delete ``key``."""
        ...


@runtime_checkable
class KeyValueStore(Protocol):
    """String-to-string store with per-key atomic reads and writes."""

    async def get(self, key: str) -> str | None:
        """Return the stored value, or None when absent."""
        ...

    async def put(self, key: str, value: str) -> None:
        """Store ``value`` under ``key`` (last write wins)."""
        ...


def storage_prefix(path: str) -> str:
    """Turn a configured storage path into an object key prefix.

    ``"/downloads/tools"`` becomes ``"downloads/tools/"``; an empty path maps
    to the bucket root (``""``).
    """
    prefix = path.strip().lstrip("/")
    if prefix and not prefix.endswith("/"):
        prefix += "/"
    return prefix
