"""Hash ledger: durable sync records keyed by remote file identity."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from imagesync.exceptions import LedgerWriteError
from imagesync.models.sync_record import SyncRecord, SyncStatus
from imagesync.services.datetime_service import now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
    from sqlalchemy.sql.elements import ColumnElement

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OwnerRef:
    """The row/field a folder of images belongs to.

    ``field_name=None`` addresses every field of the row and is only
    meaningful for eviction.
    """

    table_id: int
    row_id: int
    field_name: str | None = None

    def __str__(self) -> str:
        suffix = f"/{self.field_name}" if self.field_name is not None else ""
        return f"{self.table_id}/{self.row_id}{suffix}"


@dataclass
class LedgerEntry:
    """Plain-data view of one ``SyncRecord`` row."""

    remote_id: str
    remote_folder_id: str
    table_id: int
    row_id: int
    field_name: str
    file_name: str
    status: SyncStatus = SyncStatus.PENDING
    target_key: str | None = None
    target_ref: str | None = None
    original_size: int | None = None
    stored_size: int | None = None
    content_hash: str | None = None
    last_error: str | None = None
    last_attempt_at: datetime | None = None

    @property
    def owner(self) -> OwnerRef:
        return OwnerRef(self.table_id, self.row_id, self.field_name)

    @classmethod
    def from_model(cls, row: SyncRecord) -> LedgerEntry:
        values = {f.name: getattr(row, f.name) for f in fields(cls)}
        values["status"] = SyncStatus(row.status)
        return cls(**values)

    def as_values(self) -> dict[str, Any]:
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values["status"] = str(self.status)
        return values


# Columns never rewritten when an existing identity is updated.
_IMMUTABLE_COLUMNS = frozenset({"id", "remote_id", "created_at"})


def _owner_clause(owner: OwnerRef) -> ColumnElement[bool]:
    clause = (SyncRecord.table_id == owner.table_id) & (SyncRecord.row_id == owner.row_id)
    if owner.field_name is not None:
        clause = clause & (SyncRecord.field_name == owner.field_name)
    return clause


class HashLedger:
    """Persists one ``SyncRecord`` per remote file.

    Every operation runs in its own session and transaction, so concurrent
    sync passes for different owners never share state through this object.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, remote_id: str) -> LedgerEntry | None:
        """Return the most recently written record for remote_id."""
        stmt = (
            select(SyncRecord)
            .where(SyncRecord.remote_id == remote_id)
            .order_by(SyncRecord.id.desc())
            .limit(1)
        )
        try:
            async with self._session_factory() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            msg = f"Ledger lookup failed for {remote_id}: {exc}"
            raise LedgerWriteError(msg) from exc
        return LedgerEntry.from_model(row) if row is not None else None

    async def upsert(self, entry: LedgerEntry) -> None:
        """Insert or fully overwrite the record for entry.remote_id in one statement."""
        values = entry.as_values()
        now = now_utc()
        values["updated_at"] = now
        try:
            async with self._session_factory() as session:
                dialect = session.get_bind().dialect.name
                insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
                stmt = insert(SyncRecord).values(created_at=now, **values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[SyncRecord.remote_id],
                    set_={k: v for k, v in values.items() if k not in _IMMUTABLE_COLUMNS},
                )
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            msg = f"Ledger upsert failed for {entry.remote_id}: {exc}"
            raise LedgerWriteError(msg) from exc

    async def list_by_owner(self, owner: OwnerRef) -> list[LedgerEntry]:
        stmt = select(SyncRecord).where(_owner_clause(owner)).order_by(SyncRecord.file_name)
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            msg = f"Ledger listing failed for owner {owner}: {exc}"
            raise LedgerWriteError(msg) from exc
        return [LedgerEntry.from_model(r) for r in rows]

    async def delete_by_owner(self, owner: OwnerRef) -> list[str]:
        """Remove every record of owner and return the target keys they referenced."""
        try:
            async with self._session_factory() as session:
                keys_stmt = select(SyncRecord.target_key).where(
                    _owner_clause(owner), SyncRecord.target_key.is_not(None)
                )
                keys = [k for k in (await session.execute(keys_stmt)).scalars().all() if k]
                await session.execute(delete(SyncRecord).where(_owner_clause(owner)))
                await session.commit()
        except SQLAlchemyError as exc:
            msg = f"Ledger delete failed for owner {owner}: {exc}"
            raise LedgerWriteError(msg) from exc
        logger.info("Removed ledger records for %s (%d keys)", owner, len(keys))
        return keys

    async def status_counts(self) -> dict[str, int]:
        stmt = select(SyncRecord.status, func.count()).group_by(SyncRecord.status)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            counts = {str(status): int(count) for status, count in result.all()}
        return {str(s): counts.get(str(s), 0) for s in SyncStatus}
