"""Key-value record store backed by the ``sync_status`` table."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from backend.exceptions import StoreError
from backend.models.sync import SyncStatusEntry
from backend.services.datetime_service import format_iso, now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


class SqlKeyValueStore:
    """Each call opens its own session, so every read sees the latest commit."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, key: str) -> str | None:
        try:
            async with self._session_factory() as session:
                entry = await session.get(SyncStatusEntry, key)
                return entry.value if entry is not None else None
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read {key}: {exc}") from exc

    async def put(self, key: str, value: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.merge(
                    SyncStatusEntry(key=key, value=value, updated_at=format_iso(now_utc()))
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to write {key}: {exc}") from exc
