"""Baserow REST client (supports self-hosted instances via BASEROW_API_URL)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

import httpx

from imagesync.clients.base import Field, Row, Table
from imagesync.exceptions import RemoteUnavailable

if TYPE_CHECKING:
    from imagesync.config import Settings

logger = logging.getLogger(__name__)


class BaserowClient:
    """Thin wrapper over the Baserow database API."""

    def __init__(
        self,
        *,
        api_url: str,
        token: str,
        page_size: int = 200,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.page_size = page_size
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> BaserowClient:
        return cls(
            api_url=settings.baserow_api_url,
            token=settings.baserow_api_token,
            page_size=settings.baserow_page_size,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.token)

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
    ) -> Any:
        if not self.token:
            msg = "BASEROW_API_TOKEN not configured"
            raise RemoteUnavailable(msg)

        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self.timeout
            ) as http_client:
                resp = await http_client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers={"Authorization": f"Token {self.token}"},
                )
        except httpx.HTTPError as exc:
            msg = f"Baserow request {method} {endpoint} failed: {exc!r}"
            raise RemoteUnavailable(msg) from exc

        if resp.status_code >= 400:
            message = f"Baserow API error: {resp.status_code}"
            try:
                payload = resp.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                message += f" - {payload.get('error') or payload.get('detail') or resp.text}"
            else:
                message += f" - {resp.text[:200]}"
            raise RemoteUnavailable(message)

        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    async def list_tables(self, database_id: int) -> list[Table]:
        """Fetch all tables of a database."""
        data = await self._request("GET", f"/database/tables/database/{database_id}/")
        return [
            Table(id=int(t["id"]), name=str(t["name"]), database_id=t.get("database"))
            for t in data or []
        ]

    async def list_fields(self, table_id: int) -> list[Field]:
        """Fetch all fields of a table."""
        data = await self._request("GET", f"/database/fields/table/{table_id}/")
        return [
            Field(
                id=int(f["id"]),
                name=str(f["name"]),
                type=str(f.get("type", "text")),
                primary=bool(f.get("primary", False)),
            )
            for f in data or []
        ]

    async def list_rows(self, table_id: int) -> list[Row]:
        """Fetch every row of a table, following pagination."""
        rows: list[Row] = []
        cursor: dict[str, str] = {}
        while True:
            params = {"size": str(self.page_size), "user_field_names": "true", **cursor}
            data = await self._request("GET", f"/database/rows/table/{table_id}/", params=params)
            rows.extend(Row.from_api(item) for item in data.get("results", []))

            next_url = data.get("next")
            if not next_url:
                break
            # The next link carries either page= or offset= depending on the instance.
            query = parse_qs(urlparse(next_url).query)
            cursor = {k: query[k][0] for k in ("page", "offset") if k in query}
            if not cursor:
                logger.warning("Baserow next link without page/offset: %s", next_url)
                break
        return rows

    async def get_row(self, table_id: int, row_id: int) -> Row:
        data = await self._request(
            "GET",
            f"/database/rows/table/{table_id}/{row_id}/",
            params={"user_field_names": "true"},
        )
        return Row.from_api(data)

    async def update_scalar(self, table_id: int, row_id: int, column: str, value: Any) -> None:
        """Set one field of one row."""
        await self._request(
            "PATCH",
            f"/database/rows/table/{table_id}/{row_id}/",
            params={"user_field_names": "true"},
            json={column: value},
        )

    async def delete_rows(self, table_id: int, row_ids: list[int]) -> None:
        if not row_ids:
            return
        await self._request(
            "POST",
            f"/database/rows/table/{table_id}/batch-delete/",
            json={"items": row_ids},
        )
