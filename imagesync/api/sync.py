"""Manual sync endpoints: full sync, single row field, eviction, ledger listing."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from imagesync.api.deps import get_ledger, get_trigger, require_sync_token
from imagesync.schemas.sync import (
    EvictResponse,
    RowSyncRequest,
    RowSyncResponse,
    SyncRecordListResponse,
    SyncRecordResponse,
    SyncSummaryResponse,
)
from imagesync.services.datetime_service import format_iso
from imagesync.services.ledger_service import HashLedger, LedgerEntry, OwnerRef
from imagesync.services.trigger_service import TriggerService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/sync", tags=["sync"], dependencies=[Depends(require_sync_token)]
)


def _record_response(entry: LedgerEntry) -> SyncRecordResponse:
    return SyncRecordResponse(
        remote_id=entry.remote_id,
        remote_folder_id=entry.remote_folder_id,
        file_name=entry.file_name,
        table_id=entry.table_id,
        row_id=entry.row_id,
        field_name=entry.field_name,
        status=str(entry.status),
        target_key=entry.target_key,
        target_ref=entry.target_ref,
        original_size=entry.original_size,
        stored_size=entry.stored_size,
        content_hash=entry.content_hash,
        last_error=entry.last_error,
        last_attempt_at=format_iso(entry.last_attempt_at) if entry.last_attempt_at else None,
    )


@router.api_route("", methods=["GET", "POST"], response_model=SyncSummaryResponse)
async def full_sync(
    trigger: Annotated[TriggerService, Depends(get_trigger)],
) -> SyncSummaryResponse:
    """Mirror every table and reconcile every image field."""
    summary = await trigger.full_sync()
    return SyncSummaryResponse(**summary.as_dict())


@router.post("/row", response_model=RowSyncResponse)
async def sync_row(
    body: RowSyncRequest,
    trigger: Annotated[TriggerService, Depends(get_trigger)],
) -> RowSyncResponse:
    """Reconcile one row field against a folder reference."""
    report = await trigger.sync_row_field(
        body.table_id, body.row_id, body.field_name, body.folder_ref
    )
    return RowSyncResponse(
        folder_id=report.folder_id,
        refs=report.refs,
        processed=report.processed,
        skipped=report.skipped,
        recovered=report.recovered,
        failed=report.failed,
        errors=report.errors,
    )


@router.delete("/row/{table_id}/{row_id}", response_model=EvictResponse)
async def evict_row(
    table_id: int,
    row_id: int,
    trigger: Annotated[TriggerService, Depends(get_trigger)],
    field_name: Annotated[str | None, Query()] = None,
) -> EvictResponse:
    """Drop a row's ledger records and stored objects."""
    deleted = await trigger.evict_row(table_id, row_id, field_name)
    return EvictResponse(
        table_id=table_id, row_id=row_id, field_name=field_name, deleted_objects=deleted
    )


@router.get("/records", response_model=SyncRecordListResponse)
async def list_records(
    ledger: Annotated[HashLedger, Depends(get_ledger)],
    table_id: Annotated[int, Query()],
    row_id: Annotated[int, Query()],
    field_name: Annotated[str | None, Query()] = None,
) -> SyncRecordListResponse:
    """List ledger records of one row (optionally one field)."""
    entries = await ledger.list_by_owner(OwnerRef(table_id, row_id, field_name))
    return SyncRecordListResponse(items=[_record_response(e) for e in entries])
