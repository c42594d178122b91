"""SQLAlchemy ORM models for imagesync."""

from imagesync.models.base import Base
from imagesync.models.sync_record import SyncRecord, SyncStatus

__all__ = [
    "Base",
    "SyncRecord",
    "SyncStatus",
]
