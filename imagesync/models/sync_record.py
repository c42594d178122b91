"""Image sync ledger model."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from sqlalchemy import DateTime, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from imagesync.models.base import Base
from imagesync.services.datetime_service import now_utc


class SyncStatus(StrEnum):
    """Lifecycle status of a ledger record."""

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class SyncRecord(Base):
    """One row per remote file: where it was stored and what hash was confirmed there."""

    __tablename__ = "image_sync_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    remote_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    remote_folder_id: Mapped[str] = mapped_column(Text, nullable=False)
    target_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    table_id: Mapped[int] = mapped_column(Integer, nullable=False)
    row_id: Mapped[int] = mapped_column(Integer, nullable=False)
    field_name: Mapped[str] = mapped_column(Text, nullable=False)
    original_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stored_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=SyncStatus.PENDING)
    content_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, onupdate=now_utc
    )

    __table_args__ = (
        Index("idx_image_sync_folder", "remote_folder_id"),
        Index("idx_image_sync_target_key", "target_key"),
        Index("idx_image_sync_owner", "table_id", "row_id", "field_name"),
        Index("idx_image_sync_status", "status"),
    )
