"""Google Drive v3 client: folder listing and file download over httpx."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

import httpx
import jwt

from imagesync.clients.base import RemoteFile
from imagesync.exceptions import InternalServerError, RemoteUnavailable, SizeExceeded

if TYPE_CHECKING:
    from imagesync.config import Settings

logger = logging.getLogger(__name__)

DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
DRIVE_READONLY_SCOPE = "https://www.googleapis.com/auth/drive.readonly"
LIST_PAGE_SIZE = 100
_TOKEN_REFRESH_MARGIN_SECONDS = 300


class GoogleDriveClient:
    """Lists and downloads files using an API key or a service account."""

    def __init__(
        self,
        *,
        api_key: str = "",
        service_account: dict[str, Any] | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.service_account = service_account
        self.timeout = timeout
        self._transport = transport
        self._access_token: str | None = None
        self._access_token_expires_at = 0.0

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> GoogleDriveClient:
        service_account: dict[str, Any] | None = None
        if settings.google_service_account_json:
            try:
                service_account = json.loads(settings.google_service_account_json)
            except json.JSONDecodeError as exc:
                msg = "GOOGLE_SERVICE_ACCOUNT_JSON is not valid JSON"
                raise InternalServerError(msg) from exc
            if not isinstance(service_account, dict) or not {
                "client_email",
                "private_key",
            } <= service_account.keys():
                msg = "GOOGLE_SERVICE_ACCOUNT_JSON lacks client_email/private_key"
                raise InternalServerError(msg)
        return cls(
            api_key=settings.google_drive_api_key,
            service_account=service_account,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key or self.service_account)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    async def _auth(self) -> tuple[dict[str, str], dict[str, str]]:
        """Return (query params, headers) that authenticate a Drive request."""
        if self.api_key:
            return {"key": self.api_key}, {}
        if self.service_account:
            token = await self._service_account_token(self.service_account)
            return {}, {"Authorization": f"Bearer {token}"}
        msg = "Google Drive credentials not configured"
        raise RemoteUnavailable(msg)

    async def _service_account_token(self, account: dict[str, Any]) -> str:
        """Exchange a signed RS256 assertion for an access token, cached until near expiry."""
        now = time.time()
        if self._access_token and now < self._access_token_expires_at:
            return self._access_token

        issued_at = int(now)
        claims = {
            "iss": account["client_email"],
            "scope": DRIVE_READONLY_SCOPE,
            "aud": account.get("token_uri", GOOGLE_TOKEN_URL),
            "iat": issued_at,
            "exp": issued_at + 3600,
        }
        headers = {}
        if account.get("private_key_id"):
            headers["kid"] = account["private_key_id"]
        try:
            assertion = jwt.encode(
                claims, account["private_key"], algorithm="RS256", headers=headers
            )
        except (jwt.PyJWTError, ValueError, TypeError) as exc:
            msg = f"Failed to sign service account assertion: {exc}"
            raise RemoteUnavailable(msg) from exc

        try:
            async with self._client() as http_client:
                resp = await http_client.post(
                    claims["aud"],
                    data={
                        "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                        "assertion": assertion,
                    },
                )
        except httpx.HTTPError as exc:
            msg = f"Token exchange failed: {exc!r}"
            raise RemoteUnavailable(msg) from exc
        if resp.status_code != 200:
            msg = f"Token exchange failed: {resp.status_code} - {resp.text[:200]}"
            raise RemoteUnavailable(msg)

        data = resp.json()
        token = data.get("access_token")
        if not token:
            msg = "Token response missing access_token"
            raise RemoteUnavailable(msg)
        expires_in = int(data.get("expires_in", 3600))
        self._access_token = str(token)
        self._access_token_expires_at = now + max(expires_in - _TOKEN_REFRESH_MARGIN_SECONDS, 0)
        return self._access_token

    async def list_files(self, folder_id: str) -> list[RemoteFile]:
        """List non-trashed files directly under folder_id, sorted by name then id."""
        auth_params, headers = await self._auth()
        files: list[RemoteFile] = []
        page_token: str | None = None

        async with self._client() as http_client:
            while True:
                params = {
                    "q": f"'{folder_id}' in parents and trashed=false",
                    "fields": "files(id,name,mimeType,md5Checksum,size),nextPageToken",
                    "pageSize": str(LIST_PAGE_SIZE),
                    **auth_params,
                }
                if page_token:
                    params["pageToken"] = page_token
                try:
                    resp = await http_client.get(
                        f"{DRIVE_API_BASE}/files", params=params, headers=headers
                    )
                except httpx.HTTPError as exc:
                    msg = f"Drive listing failed for folder {folder_id}: {exc!r}"
                    raise RemoteUnavailable(msg) from exc
                if resp.status_code != 200:
                    msg = f"Drive API error: {resp.status_code} - {resp.text[:200]}"
                    raise RemoteUnavailable(msg)

                data = resp.json()
                for item in data.get("files", []):
                    raw_size = item.get("size")
                    files.append(
                        RemoteFile(
                            remote_id=item["id"],
                            name=item.get("name", ""),
                            mime_type=item.get("mimeType", ""),
                            content_hash=item.get("md5Checksum"),
                            size=int(raw_size) if raw_size is not None else None,
                        )
                    )
                page_token = data.get("nextPageToken")
                if not page_token:
                    break

        files.sort(key=lambda f: (f.name, f.remote_id))
        logger.debug("Listed %d files in Drive folder %s", len(files), folder_id)
        return files

    async def download(self, remote_id: str, max_bytes: int | None = None) -> bytes:
        """Download file content, aborting once more than max_bytes have arrived."""
        auth_params, headers = await self._auth()
        params = {"alt": "media", **auth_params}
        chunks: list[bytes] = []
        received = 0

        try:
            async with (
                self._client() as http_client,
                http_client.stream(
                    "GET", f"{DRIVE_API_BASE}/files/{remote_id}", params=params, headers=headers
                ) as resp,
            ):
                if resp.status_code != 200:
                    await resp.aread()
                    msg = f"Failed to download file {remote_id}: {resp.status_code}"
                    raise RemoteUnavailable(msg)
                async for chunk in resp.aiter_bytes():
                    received += len(chunk)
                    if max_bytes is not None and received > max_bytes:
                        raise SizeExceeded(received, max_bytes)
                    chunks.append(chunk)
        except httpx.HTTPError as exc:
            msg = f"Failed to download file {remote_id}: {exc!r}"
            raise RemoteUnavailable(msg) from exc

        return b"".join(chunks)
