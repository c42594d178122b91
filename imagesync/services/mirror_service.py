"""Local SQL mirror of source tables and write-back of reconciled references."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import inspect, text

from imagesync.services.naming_service import sanitize_identifier

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

    from imagesync.clients.base import Field, Row, Table

logger = logging.getLogger(__name__)

# Baserow field type -> column type. Anything unlisted is stored as TEXT.
FIELD_TYPE_MAP = {
    "text": "TEXT",
    "long_text": "TEXT",
    "number": "REAL",
    "rating": "INTEGER",
    "boolean": "INTEGER",
    "date": "TEXT",
    "last_modified": "TEXT",
    "created_on": "TEXT",
    "url": "TEXT",
    "email": "TEXT",
    "phone_number": "TEXT",
    "link_row": "TEXT",
    "file": "TEXT",
    "single_select": "TEXT",
    "multiple_select": "TEXT",
    "formula": "TEXT",
    "lookup": "TEXT",
    "uuid": "TEXT",
    "autonumber": "INTEGER",
    "count": "INTEGER",
    "rollup": "TEXT",
}

# Columns every mirror table carries; source fields mapping onto them are skipped.
_SYSTEM_COLUMNS = ("id", "order", "created_at", "updated_at")

REFS_COLUMN_SUFFIX = "_r2_urls"


def column_type(field_type: str) -> str:
    return FIELD_TYPE_MAP.get(field_type, "TEXT")


def mirror_table_name(table: Table) -> str:
    return sanitize_identifier(f"table_{table.id}_{table.name}")


def refs_column(field_name: str) -> str:
    """Mirror column holding the JSON list of stored references for an image field."""
    return sanitize_identifier(field_name) + REFS_COLUMN_SUFFIX


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _field_columns(fields: list[Field]) -> dict[str, Field]:
    """Map sanitized column name -> field, dropping system and duplicate names."""
    columns: dict[str, Field] = {}
    for field in fields:
        name = sanitize_identifier(field.name)
        if name in _SYSTEM_COLUMNS or name in columns:
            logger.debug("Skipping field %r: column %s already taken", field.name, name)
            continue
        columns[name] = field
    return columns


def _column_value(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


async def _existing_columns(conn: AsyncConnection, table_name: str) -> set[str] | None:
    """Column names of table_name, or None when the table does not exist."""

    def _inspect(sync_conn: Any) -> set[str] | None:
        inspector = inspect(sync_conn)
        if not inspector.has_table(table_name):
            return None
        return {col["name"] for col in inspector.get_columns(table_name)}

    return await conn.run_sync(_inspect)


class MirrorService:
    """Keeps ``table_<id>_<name>`` mirrors of source tables in the local database."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    async def ensure_table(self, table: Table, fields: list[Field]) -> str:
        """Create the mirror table or add any missing columns. Returns its name."""
        table_name = mirror_table_name(table)
        columns = _field_columns(fields)
        async with self.engine.begin() as conn:
            existing = await _existing_columns(conn, table_name)
            if existing is None:
                definitions = [
                    "id INTEGER PRIMARY KEY",
                    f"{_quote('order')} TEXT",
                    *(f"{_quote(name)} {column_type(f.type)}" for name, f in columns.items()),
                    "created_at TEXT DEFAULT CURRENT_TIMESTAMP",
                    "updated_at TEXT DEFAULT CURRENT_TIMESTAMP",
                ]
                await conn.execute(
                    text(
                        f"CREATE TABLE IF NOT EXISTS {_quote(table_name)} "
                        f"({', '.join(definitions)})"
                    )
                )
                logger.info("Created mirror table %s (%d fields)", table_name, len(columns))
                return table_name

            for name, field in columns.items():
                if name in existing:
                    continue
                await conn.execute(
                    text(
                        f"ALTER TABLE {_quote(table_name)} "
                        f"ADD COLUMN {_quote(name)} {column_type(field.type)}"
                    )
                )
                logger.info("Added column %s to mirror table %s", name, table_name)
        return table_name

    async def upsert_row(self, table_name: str, row: Row, fields: list[Field]) -> None:
        """Insert or update one source row in its mirror table."""
        columns = _field_columns(fields)
        params: dict[str, Any] = {"p_id": row.id, "p_order": row.order}
        names = ["id", "order"]
        for index, (name, field) in enumerate(columns.items()):
            names.append(name)
            params[f"p{index}"] = _column_value(row.values.get(field.name))
        placeholders = [":p_id", ":p_order", *(f":p{i}" for i in range(len(columns)))]
        assignments = [f"{_quote(n)} = excluded.{_quote(n)}" for n in names[1:]]
        assignments.append("updated_at = CURRENT_TIMESTAMP")

        stmt = text(
            f"INSERT INTO {_quote(table_name)} ({', '.join(_quote(n) for n in names)}) "
            f"VALUES ({', '.join(placeholders)}) "
            f"ON CONFLICT (id) DO UPDATE SET {', '.join(assignments)}"
        )
        async with self.engine.begin() as conn:
            await conn.execute(stmt, params)

    async def delete_rows(self, table_name: str, row_ids: list[int]) -> int:
        """Remove rows from a mirror table. Missing tables are ignored."""
        if not row_ids:
            return 0
        deleted = 0
        async with self.engine.begin() as conn:
            if await _existing_columns(conn, table_name) is None:
                return 0
            for row_id in row_ids:
                result = await conn.execute(
                    text(f"DELETE FROM {_quote(table_name)} WHERE id = :row_id"),
                    {"row_id": row_id},
                )
                deleted += result.rowcount or 0
        return deleted

    async def write_refs(
        self, table_name: str, row_id: int, field_name: str, refs: list[str]
    ) -> None:
        """Store refs as a JSON array in ``<field>_r2_urls`` of the mirror row."""
        column = refs_column(field_name)
        async with self.engine.begin() as conn:
            existing = await _existing_columns(conn, table_name)
            if existing is None:
                logger.warning("Mirror table %s missing; references not written", table_name)
                return
            if column not in existing:
                await conn.execute(
                    text(f"ALTER TABLE {_quote(table_name)} ADD COLUMN {_quote(column)} TEXT")
                )
            await conn.execute(
                text(
                    f"UPDATE {_quote(table_name)} SET {_quote(column)} = :refs, "
                    "updated_at = CURRENT_TIMESTAMP WHERE id = :row_id"
                ),
                {"refs": json.dumps(refs), "row_id": row_id},
            )

    async def read_row(self, table_name: str, row_id: int) -> dict[str, Any] | None:
        async with self.engine.connect() as conn:
            if await _existing_columns(conn, table_name) is None:
                return None
            result = await conn.execute(
                text(f"SELECT * FROM {_quote(table_name)} WHERE id = :row_id"),
                {"row_id": row_id},
            )
            row = result.mappings().first()
        return dict(row) if row is not None else None
