"""SQLAlchemy ORM models for the release mirror."""

from backend.models.base import Base
from backend.models.sync import SyncStatusEntry

__all__ = [
    "Base",
    "SyncStatusEntry",
]
