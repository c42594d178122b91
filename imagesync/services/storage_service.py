"""Target writer: S3-compatible object storage (Cloudflare R2, AWS S3, MinIO)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from imagesync.exceptions import TargetWriteError
from imagesync.services.datetime_service import format_iso, now_utc, parse_datetime
from imagesync.services.naming_service import rewrite_extension, sanitize_file_name, slugify

if TYPE_CHECKING:
    from imagesync.config import Settings
    from imagesync.services.ledger_service import OwnerRef

logger = logging.getLogger(__name__)

META_REMOTE_ID = "remote-file-id"
META_CONTENT_HASH = "content-hash"
META_SYNCED_AT = "synced-at"

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


@dataclass
class ObjectHead:
    """Metadata of a stored object as returned by a HEAD probe."""

    key: str
    size: int
    content_type: str | None
    remote_id: str | None
    content_hash: str | None
    synced_at: datetime | None


def object_metadata(remote_id: str, content_hash: str | None) -> dict[str, str]:
    """Metadata written alongside every object so drift can be detected from the store alone."""
    metadata = {META_REMOTE_ID: remote_id, META_SYNCED_AT: format_iso(now_utc())}
    if content_hash:
        metadata[META_CONTENT_HASH] = content_hash
    return metadata


def build_object_key(owner: OwnerRef, file_name: str, mime_type: str | None = None) -> str:
    """Derive the deterministic key ``<table>/<row>/<field-slug>/<file>``.

    The file extension is rewritten to match mime_type when given.
    """
    if owner.field_name is None:
        msg = "Object keys require an owner field"
        raise ValueError(msg)
    name = sanitize_file_name(file_name)
    if mime_type:
        name = rewrite_extension(name, mime_type)
    return f"{owner.table_id}/{owner.row_id}/{slugify(owner.field_name)}/{name}"


class ObjectStorage:
    """Put/head/delete against one bucket. boto3 calls run in worker threads."""

    def __init__(
        self,
        client: Any,
        bucket: str,
        *,
        prefix: str = "",
        public_base_url: str = "",
    ) -> None:
        self.s3 = client
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.public_base_url = public_base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> ObjectStorage:
        client = boto3.client(
            "s3",
            endpoint_url=settings.storage_endpoint_url,
            aws_access_key_id=settings.storage_access_key_id or None,
            aws_secret_access_key=settings.storage_secret_access_key or None,
            region_name=settings.storage_region,
            config=Config(
                connect_timeout=settings.storage_timeout_seconds,
                read_timeout=settings.storage_timeout_seconds,
                retries={"max_attempts": 2, "mode": "standard"},
            ),
        )
        return cls(
            client,
            settings.storage_bucket,
            prefix=settings.storage_prefix,
            public_base_url=settings.public_base_url,
        )

    def _make_key(self, key: str) -> str:
        """Convert a logical key to a bucket key with prefix."""
        key = key.lstrip("/")
        return f"{self.prefix}/{key}" if self.prefix else key

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{self._make_key(key)}"

    async def put(
        self, key: str, data: bytes, mime_type: str, metadata: dict[str, str]
    ) -> None:
        """Write (overwrite) an object."""
        try:
            await asyncio.to_thread(
                self.s3.put_object,
                Bucket=self.bucket,
                Key=self._make_key(key),
                Body=data,
                ContentType=mime_type,
                Metadata=metadata,
            )
        except (ClientError, BotoCoreError) as exc:
            msg = f"Failed to write object {key}: {exc}"
            raise TargetWriteError(msg) from exc
        logger.debug("Stored %s (%d bytes, %s)", key, len(data), mime_type)

    async def head(self, key: str) -> ObjectHead | None:
        """Probe an object. Returns None when it does not exist."""
        try:
            resp = await asyncio.to_thread(
                self.s3.head_object, Bucket=self.bucket, Key=self._make_key(key)
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES:
                return None
            msg = f"Failed to probe object {key}: {exc}"
            raise TargetWriteError(msg) from exc
        except BotoCoreError as exc:
            msg = f"Failed to probe object {key}: {exc}"
            raise TargetWriteError(msg) from exc

        metadata = {k.lower(): v for k, v in (resp.get("Metadata") or {}).items()}
        synced_at: datetime | None = None
        raw_synced = metadata.get(META_SYNCED_AT)
        if raw_synced:
            try:
                synced_at = parse_datetime(raw_synced)
            except ValueError:
                logger.debug("Unparseable %s on %s: %r", META_SYNCED_AT, key, raw_synced)
        return ObjectHead(
            key=key,
            size=int(resp.get("ContentLength", 0)),
            content_type=resp.get("ContentType"),
            remote_id=metadata.get(META_REMOTE_ID),
            content_hash=metadata.get(META_CONTENT_HASH),
            synced_at=synced_at,
        )

    async def delete(self, key: str) -> bool:
        """Best-effort delete. Failures are logged and reported as False."""
        try:
            await asyncio.to_thread(
                self.s3.delete_object, Bucket=self.bucket, Key=self._make_key(key)
            )
        except (ClientError, BotoCoreError) as exc:
            logger.warning("Failed to delete object %s: %s", key, exc)
            return False
        return True
