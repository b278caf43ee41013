"""Database engine, session management and schema bootstrap."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from backend.models.base import Base

if TYPE_CHECKING:
    from backend.config import Settings


def create_engine(
    settings: Settings,
) -> tuple[
    AsyncEngine,
    async_sessionmaker[AsyncSession],
]:
    """Create async engine and session factory.

    Returns (engine, session_factory) tuple. For SQLite URLs the database
    directory is created first.
    """
    db_url = settings.database_url
    if db_url.startswith("sqlite") and "///" in db_url:
        db_path = db_url.split("///", 1)[-1]
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(db_url, echo=settings.debug)
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_factory


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet. Existing records are kept."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
