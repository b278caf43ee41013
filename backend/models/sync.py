"""Sync status model: the key-value table holding one record per repository."""

from __future__ import annotations

from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base


class SyncStatusEntry(Base):
    """Raw key-value entry. ``value`` is the JSON-encoded sync record."""

    __tablename__ = "sync_status"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)
