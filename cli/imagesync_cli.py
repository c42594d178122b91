"""Operator CLI: run syncs and inspect the ledger in-process, without the HTTP server."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import TYPE_CHECKING

from imagesync.config import Settings
from imagesync.database import create_engine, ensure_sqlite_dir, init_schema
from imagesync.exceptions import SyncError
from imagesync.main import _configure_logging
from imagesync.services.app_services import AppServices, build_services
from imagesync.services.datetime_service import format_iso
from imagesync.services.ledger_service import OwnerRef

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    ServicesFactory = Callable[
        [Settings, AsyncEngine, async_sessionmaker[AsyncSession]], AppServices
    ]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imagesync",
        description="Reconcile Drive image folders into object storage",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the ledger schema")
    subparsers.add_parser("full-sync", help="Mirror every table and sync every image field")

    sync_folder = subparsers.add_parser("sync-folder", help="Reconcile one row field")
    sync_folder.add_argument("--table", type=int, required=True, help="Table id")
    sync_folder.add_argument("--row", type=int, required=True, help="Row id")
    sync_folder.add_argument("--field", required=True, help="Image field name")
    sync_folder.add_argument("--folder", required=True, help="Drive folder URL or id")

    evict = subparsers.add_parser("evict", help="Delete a row's records and stored objects")
    evict.add_argument("--table", type=int, required=True, help="Table id")
    evict.add_argument("--row", type=int, required=True, help="Row id")
    evict.add_argument("--field", help="Only this field (default: every field of the row)")

    records = subparsers.add_parser("records", help="List ledger records of a row")
    records.add_argument("--table", type=int, required=True, help="Table id")
    records.add_argument("--row", type=int, required=True, help="Row id")
    records.add_argument("--field", help="Only this field")
    return parser


async def run_command(
    args: argparse.Namespace,
    settings: Settings,
    services_factory: ServicesFactory = build_services,
) -> int:
    """Execute one parsed command. Returns the process exit code."""
    ensure_sqlite_dir(settings.database_url)
    engine, session_factory = create_engine(settings)
    try:
        await init_schema(engine)
        if args.command == "init-db":
            print(f"Ledger schema ready at {settings.database_url}")
            return 0

        services = services_factory(settings, engine, session_factory)

        if args.command == "full-sync":
            summary = await services.trigger.full_sync()
            print(json.dumps(summary.as_dict(), indent=2))
            return 1 if summary.tables_failed or summary.rows_failed else 0

        if args.command == "sync-folder":
            report = await services.trigger.sync_row_field(
                args.table, args.row, args.field, args.folder
            )
            print(
                f"Folder {report.folder_id}: {report.processed} processed, "
                f"{report.skipped} unchanged, {report.recovered} recovered, "
                f"{report.failed} failed"
            )
            for ref in report.refs:
                print(f"  {ref}")
            for error in report.errors:
                print(f"  Error: {error}")
            return 1 if report.failed else 0

        if args.command == "evict":
            deleted = await services.trigger.evict_row(args.table, args.row, args.field)
            print(f"Evicted {deleted} object(s)")
            return 0

        if args.command == "records":
            owner = OwnerRef(args.table, args.row, args.field)
            entries = await services.ledger.list_by_owner(owner)
            for entry in entries:
                attempted = format_iso(entry.last_attempt_at) if entry.last_attempt_at else "-"
                print(
                    f"{entry.status:<9} {entry.field_name}/{entry.file_name} "
                    f"{entry.target_key or '-'} {attempted}"
                )
                if entry.last_error:
                    print(f"          error: {entry.last_error}")
            print(f"{len(entries)} record(s)")
            return 0
    finally:
        await engine.dispose()

    print(f"Error: unknown command {args.command}")
    return 2


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    settings = Settings()
    _configure_logging(settings.debug or args.verbose)
    try:
        code = asyncio.run(run_command(args, settings))
    except SyncError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
