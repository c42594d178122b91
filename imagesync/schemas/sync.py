"""Sync, webhook and ledger schemas."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class WebhookEvent(BaseModel):
    """Inbound Baserow row webhook payload."""

    table_id: int
    event_type: str
    database_id: int | None = None
    workspace_id: int | None = None
    event_id: str | None = None
    items: list[dict[str, Any]] = Field(default_factory=list)
    old_items: list[dict[str, Any]] = Field(default_factory=list)
    row_ids: list[int] = Field(default_factory=list)


class WebhookAck(BaseModel):
    """Immediate webhook acknowledgement; processing continues in the background."""

    received: bool = True
    event_type: str


class RowSyncRequest(BaseModel):
    """Manually reconcile one row field from a folder reference."""

    table_id: int = Field(ge=1)
    row_id: int = Field(ge=1)
    field_name: str = Field(min_length=1)
    folder_ref: str = Field(min_length=1, description="Drive folder URL or folder id")


class RowSyncResponse(BaseModel):
    """Outcome of one reconcile pass."""

    folder_id: str
    refs: list[str]
    processed: int
    skipped: int
    recovered: int
    failed: int
    errors: list[str] = Field(default_factory=list)


class EvictResponse(BaseModel):
    table_id: int
    row_id: int
    field_name: str | None = None
    deleted_objects: int


class SyncSummaryResponse(BaseModel):
    """Counters of a full-database sync."""

    started_at: str
    duration_ms: int
    tables_processed: int
    tables_succeeded: int
    tables_failed: int
    rows_processed: int
    rows_succeeded: int
    rows_failed: int
    fields_synced: int
    images_processed: int
    images_skipped: int
    images_recovered: int
    images_failed: int


class SyncRecordResponse(BaseModel):
    """One ledger record."""

    remote_id: str
    remote_folder_id: str
    file_name: str
    table_id: int
    row_id: int
    field_name: str
    status: str
    target_key: str | None = None
    target_ref: str | None = None
    original_size: int | None = None
    stored_size: int | None = None
    content_hash: str | None = None
    last_error: str | None = None
    last_attempt_at: str | None = None


class SyncRecordListResponse(BaseModel):
    items: list[SyncRecordResponse]


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    records: dict[str, int] = Field(default_factory=dict)
