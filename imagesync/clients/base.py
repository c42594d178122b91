"""Collaborator protocols and data classes shared by the HTTP clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class RemoteFile:
    """A file listed in a remote folder. Identity is ``remote_id``."""

    remote_id: str
    name: str
    mime_type: str
    content_hash: str | None = None
    size: int | None = None

    @property
    def is_image(self) -> bool:
        return self.mime_type.lower().startswith("image/")


@dataclass
class Field:
    """A column of a source table."""

    id: int
    name: str
    type: str
    primary: bool = False

    @property
    def is_image_field(self) -> bool:
        return self.type == "file" or "image" in self.name.lower()


@dataclass
class Table:
    """A table of the source database."""

    id: int
    name: str
    database_id: int | None = None


@dataclass
class Row:
    """A source row: its id, ordering key and user-named values."""

    id: int
    order: str | None = None
    values: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> Row:
        values = {k: v for k, v in payload.items() if k not in ("id", "order")}
        order = payload.get("order")
        return cls(
            id=int(payload["id"]), order=None if order is None else str(order), values=values
        )


@runtime_checkable
class RemoteSource(Protocol):
    """Protocol for the remote file listing/download collaborator."""

    async def list_files(self, folder_id: str) -> list[RemoteFile]:
        """List files in a folder, sorted by name."""
        ...

    async def download(self, remote_id: str, max_bytes: int | None = None) -> bytes:
        """Download a file's bytes. Raises SizeExceeded past max_bytes."""
        ...


@runtime_checkable
class RowStore(Protocol):
    """Protocol for the row-oriented source-of-truth database."""

    @property
    def configured(self) -> bool: ...

    async def list_tables(self, database_id: int) -> list[Table]: ...

    async def list_fields(self, table_id: int) -> list[Field]: ...

    async def list_rows(self, table_id: int) -> list[Row]: ...

    async def update_scalar(
        self, table_id: int, row_id: int, column: str, value: Any
    ) -> None: ...

    async def delete_rows(self, table_id: int, row_ids: list[int]) -> None: ...
