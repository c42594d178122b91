"""Trigger surface: turns webhook events, full syncs and manual requests into reconcile calls.

This is the only caller of ``Reconciler.sync`` and ``Reconciler.evict_owner``.
It also keeps the local table mirror current and publishes each reconciled
reference list onto the owning row.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from imagesync.clients.base import Row
from imagesync.exceptions import RemoteUnavailable, SyncError
from imagesync.services.datetime_service import format_iso, now_utc
from imagesync.services.ledger_service import OwnerRef
from imagesync.services.mirror_service import mirror_table_name

if TYPE_CHECKING:
    from imagesync.clients.base import Field, RowStore, Table
    from imagesync.schemas.sync import WebhookEvent
    from imagesync.services.mirror_service import MirrorService
    from imagesync.services.reconcile_service import Reconciler, SyncReport

logger = logging.getLogger(__name__)

SOURCE_REFS_FIELD_SUFFIX = " R2 URLs"


@dataclass
class SyncSummary:
    """Counters for one full sync or one webhook event."""

    started_at: str = ""
    duration_ms: int = 0
    tables_processed: int = 0
    tables_succeeded: int = 0
    tables_failed: int = 0
    rows_processed: int = 0
    rows_succeeded: int = 0
    rows_failed: int = 0
    fields_synced: int = 0
    images_processed: int = 0
    images_skipped: int = 0
    images_recovered: int = 0
    images_failed: int = 0

    def add_report(self, report: SyncReport) -> None:
        self.fields_synced += 1
        self.images_processed += report.processed
        self.images_skipped += report.skipped
        self.images_recovered += report.recovered
        self.images_failed += report.failed

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def image_fields(fields: list[Field]) -> list[Field]:
    """Image fields of a table, excluding the write-back reference fields."""
    return [
        f for f in fields if f.is_image_field and not f.name.endswith(SOURCE_REFS_FIELD_SUFFIX)
    ]


def folder_ref_of(value: Any) -> str | None:
    """Image fields hold a folder link as text; anything else is not a folder reference."""
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class TriggerService:
    """Routes row events to the reconciler and mirrors rows locally."""

    def __init__(
        self,
        *,
        reconciler: Reconciler,
        rows: RowStore,
        mirror: MirrorService,
        database_id: int | None = None,
        write_back_to_source: bool = False,
    ) -> None:
        self.reconciler = reconciler
        self.rows = rows
        self.mirror = mirror
        self.database_id = database_id
        self.write_back_to_source = write_back_to_source
        self._full_sync_lock = asyncio.Lock()

    async def _resolve_table(self, table_id: int, database_id: int | None = None) -> Table:
        database_id = database_id or self.database_id
        if database_id is None:
            msg = "BASEROW_DATABASE_ID not configured"
            raise RemoteUnavailable(msg)
        for table in await self.rows.list_tables(database_id):
            if table.id == table_id:
                return table
        msg = f"Table {table_id} not found in database {database_id}"
        raise RemoteUnavailable(msg)

    async def _publish(
        self,
        table_name: str,
        fields: list[Field],
        owner: OwnerRef,
        refs: list[str],
    ) -> None:
        """Write refs to the mirror row and, when enabled, back onto the source row."""
        field_name = owner.field_name
        if field_name is None:
            msg = "Publishing references requires an owner with a field name"
            raise ValueError(msg)
        await self.mirror.write_refs(table_name, owner.row_id, field_name, refs)
        if not self.write_back_to_source:
            return
        target = f"{field_name}{SOURCE_REFS_FIELD_SUFFIX}"
        if not any(f.name == target for f in fields):
            logger.debug("No %r field on table %d; skipping write-back", target, owner.table_id)
            return
        await self.rows.update_scalar(owner.table_id, owner.row_id, target, json.dumps(refs))

    async def _sync_field(
        self,
        table_name: str,
        fields: list[Field],
        owner: OwnerRef,
        folder_ref: str,
        summary: SyncSummary,
    ) -> None:
        try:
            report = await self.reconciler.sync(folder_ref, owner)
        except SyncError as exc:
            logger.error("Image sync failed for %s: %s", owner, exc)
            summary.images_failed += 1
            return
        summary.add_report(report)
        # An empty listing leaves previously published references in place.
        if report.total:
            await self._publish(table_name, fields, owner, report.refs)

    async def _sync_row(
        self,
        table: Table,
        table_name: str,
        fields: list[Field],
        row: Row,
        summary: SyncSummary,
        old_values: dict[str, Any] | None = None,
    ) -> None:
        summary.rows_processed += 1
        try:
            await self.mirror.upsert_row(table_name, row, fields)
            for field in image_fields(fields):
                folder_ref = folder_ref_of(row.values.get(field.name))
                if folder_ref is None:
                    continue
                if old_values is not None and old_values.get(field.name) == row.values.get(
                    field.name
                ):
                    continue
                owner = OwnerRef(table.id, row.id, field.name)
                await self._sync_field(table_name, fields, owner, folder_ref, summary)
        except Exception as exc:
            logger.error("Error syncing row %d of table %s: %s", row.id, table.name, exc)
            summary.rows_failed += 1
            return
        summary.rows_succeeded += 1

    async def handle_event(self, event: WebhookEvent) -> SyncSummary:
        """Apply one row webhook event."""
        summary = SyncSummary(started_at=format_iso(now_utc()))
        started = time.monotonic()
        logger.info("Handling %s for table %d", event.event_type, event.table_id)

        if event.event_type in ("rows.created", "rows.updated"):
            table = await self._resolve_table(event.table_id, event.database_id)
            fields = await self.rows.list_fields(table.id)
            table_name = await self.mirror.ensure_table(table, fields)
            old_by_id = {int(item["id"]): item for item in event.old_items if "id" in item}
            for item in event.items:
                row = Row.from_api(item)
                old_values = None
                if event.event_type == "rows.updated":
                    old_values = old_by_id.get(row.id, {})
                await self._sync_row(table, table_name, fields, row, summary, old_values)
        elif event.event_type == "rows.deleted":
            try:
                table = await self._resolve_table(event.table_id, event.database_id)
            except RemoteUnavailable as exc:
                logger.warning("Cannot resolve table %d for deletion: %s", event.table_id, exc)
            else:
                await self.mirror.delete_rows(mirror_table_name(table), event.row_ids)
            for row_id in event.row_ids:
                await self.reconciler.evict_owner(OwnerRef(event.table_id, row_id))
                summary.rows_processed += 1
                summary.rows_succeeded += 1
        else:
            logger.info("Ignoring webhook event type %r", event.event_type)

        summary.duration_ms = int((time.monotonic() - started) * 1000)
        return summary

    async def full_sync(self) -> SyncSummary:
        """Mirror every table of the configured database and reconcile every image field."""
        if not self.rows.configured or self.database_id is None:
            msg = "Baserow credentials not configured (BASEROW_API_TOKEN, BASEROW_DATABASE_ID)"
            raise RemoteUnavailable(msg)

        async with self._full_sync_lock:
            summary = SyncSummary(started_at=format_iso(now_utc()))
            started = time.monotonic()
            tables = await self.rows.list_tables(self.database_id)
            logger.info("Starting full sync of %d tables", len(tables))

            for table in tables:
                summary.tables_processed += 1
                try:
                    fields = await self.rows.list_fields(table.id)
                    table_name = await self.mirror.ensure_table(table, fields)
                    rows = await self.rows.list_rows(table.id)
                    logger.info("Table %s: %d rows", table.name, len(rows))
                    for row in rows:
                        await self._sync_row(table, table_name, fields, row, summary)
                except Exception as exc:
                    logger.error("Error syncing table %s: %s", table.name, exc)
                    summary.tables_failed += 1
                    continue
                summary.tables_succeeded += 1

            summary.duration_ms = int((time.monotonic() - started) * 1000)
            logger.info(
                "Full sync finished in %d ms: %d/%d tables, %d/%d rows, "
                "%d images processed, %d skipped, %d failed",
                summary.duration_ms,
                summary.tables_succeeded,
                summary.tables_processed,
                summary.rows_succeeded,
                summary.rows_processed,
                summary.images_processed,
                summary.images_skipped,
                summary.images_failed,
            )
            return summary

    async def sync_row_field(
        self, table_id: int, row_id: int, field_name: str, folder_ref: str
    ) -> SyncReport:
        """Manually reconcile one row field, then publish the references when possible."""
        owner = OwnerRef(table_id, row_id, field_name)
        report = await self.reconciler.sync(folder_ref, owner)
        if not report.total or not self.rows.configured:
            return report
        try:
            table = await self._resolve_table(table_id)
            fields = await self.rows.list_fields(table_id)
            await self._publish(mirror_table_name(table), fields, owner, report.refs)
        except RemoteUnavailable as exc:
            logger.warning("References for %s not published: %s", owner, exc)
        return report

    async def evict_row(self, table_id: int, row_id: int, field_name: str | None = None) -> int:
        return await self.reconciler.evict_owner(OwnerRef(table_id, row_id, field_name))
