"""Reconciler: keep one owner's stored images in step with a remote folder.

Per file the pass is: consult the ledger and the drift detector, then either
reuse the recorded reference or download, transform, upload and record the
result. A failure on one file is recorded in the ledger and never stops the
others; only an unresolvable folder reference, a folder that cannot be listed
and ledger failures escape ``sync()``.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from imagesync.exceptions import InvalidReference, LedgerWriteError, SizeExceeded
from imagesync.models.sync_record import SyncStatus
from imagesync.services.datetime_service import now_utc
from imagesync.services.drift_service import DecisionKind, assess
from imagesync.services.ledger_service import LedgerEntry
from imagesync.services.naming_service import extract_folder_id
from imagesync.services.storage_service import build_object_key, object_metadata

if TYPE_CHECKING:
    from imagesync.clients.base import RemoteFile, RemoteSource
    from imagesync.services.ledger_service import HashLedger, OwnerRef
    from imagesync.services.storage_service import ObjectStorage
    from imagesync.services.transform_service import TransformPipeline, TransformPolicy

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome of one sync pass for one owner."""

    folder_id: str
    refs: list[str] = field(default_factory=list)
    processed: int = 0
    skipped: int = 0
    recovered: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.processed + self.skipped + self.recovered + self.failed


class Reconciler:
    """Stateless orchestrator; all cross-call state lives in the ledger and the store."""

    def __init__(
        self,
        *,
        ledger: HashLedger,
        storage: ObjectStorage,
        source: RemoteSource,
        pipeline: TransformPipeline,
        policy: TransformPolicy,
    ) -> None:
        self.ledger = ledger
        self.storage = storage
        self.source = source
        self.pipeline = pipeline
        self.policy = policy

    async def sync(self, folder_ref: str, owner: OwnerRef) -> SyncReport:
        """Reconcile every image in folder_ref for owner and return the accessible references."""
        if owner.field_name is None:
            msg = "sync() requires an owner with a field name"
            raise ValueError(msg)
        folder_id = extract_folder_id(folder_ref)
        if folder_id is None:
            msg = f"Invalid Google Drive folder reference: {folder_ref}"
            raise InvalidReference(msg)

        files = await self.source.list_files(folder_id)
        images = [f for f in files if f.is_image]
        report = SyncReport(folder_id=folder_id)
        if not images:
            # A temporarily empty folder must not look like "delete everything".
            logger.info("No images in folder %s for %s; nothing to do", folder_id, owner)
            return report

        keys = _KeyClaims(
            reserved={
                r.target_key: r.remote_id
                for r in await self.ledger.list_by_owner(owner)
                if r.target_key
            }
        )
        for remote in images:
            await self._sync_file(remote, folder_id, owner, owner.field_name, keys, report)

        logger.info(
            "Synced %s from folder %s: %d processed, %d unchanged, %d recovered, %d failed",
            owner,
            folder_id,
            report.processed,
            report.skipped,
            report.recovered,
            report.failed,
        )
        return report

    async def evict_owner(self, owner: OwnerRef) -> int:
        """Drop every record of owner and delete their objects. Returns deletes attempted."""
        keys = list(dict.fromkeys(await self.ledger.delete_by_owner(owner)))
        for key in keys:
            await self.storage.delete(key)
        logger.info("Evicted %d objects for %s", len(keys), owner)
        return len(keys)

    async def _sync_file(
        self,
        remote: RemoteFile,
        folder_id: str,
        owner: OwnerRef,
        field_name: str,
        keys: _KeyClaims,
        report: SyncReport,
    ) -> None:
        entry = LedgerEntry(
            remote_id=remote.remote_id,
            remote_folder_id=folder_id,
            table_id=owner.table_id,
            row_id=owner.row_id,
            field_name=field_name,
            file_name=remote.name,
            content_hash=remote.content_hash,
        )
        record: LedgerEntry | None = None
        attempted_key: str | None = None

        try:
            record = await self.ledger.get(remote.remote_id)
            decision = await assess(record, remote, owner, self.storage)

            if (
                not decision.needs_processing
                and record is not None
                and record.target_key is not None
            ):
                keys.claimed.add(record.target_key)
                ref = record.target_ref or self.storage.public_url(record.target_key)
                report.refs.append(ref)
                if decision.kind == DecisionKind.UNCHANGED:
                    report.skipped += 1
                    logger.debug("Unchanged: %s (%s)", remote.name, remote.remote_id)
                    return
                record.status = SyncStatus.PROCESSED
                record.target_ref = ref
                record.content_hash = remote.content_hash
                record.last_error = None
                record.last_attempt_at = now_utc()
                await self.ledger.upsert(record)
                report.recovered += 1
                logger.info(
                    "Recovered previous upload for %s -> %s", remote.name, record.target_key
                )
                return

            logger.info(
                "Processing %s (%s): %s", remote.name, remote.remote_id, decision.describe()
            )
            if record is None:
                # Nothing is confirmed written yet.
                await self.ledger.upsert(replace(entry, content_hash=None))

            if remote.size is not None and remote.size > self.policy.max_image_size:
                raise SizeExceeded(remote.size, self.policy.max_image_size)

            data = await self.source.download(
                remote.remote_id, max_bytes=self.policy.max_image_size
            )
            entry.original_size = len(data)
            result = await self.pipeline.transform(data, remote.mime_type)

            attempted_key = keys.claim(
                build_object_key(owner, remote.name, result.mime_type), remote.remote_id
            )
            await self.storage.put(
                attempted_key,
                result.data,
                result.mime_type,
                object_metadata(remote.remote_id, remote.content_hash),
            )

            ref = self.storage.public_url(attempted_key)
            entry.status = SyncStatus.PROCESSED
            entry.target_key = attempted_key
            entry.target_ref = ref
            entry.stored_size = result.size
            entry.last_attempt_at = now_utc()
            await self.ledger.upsert(entry)
            report.refs.append(ref)
            report.processed += 1
            logger.info(
                "Processed image: %s -> %s (%d -> %d bytes)",
                remote.name,
                attempted_key,
                result.original_size,
                result.size,
            )

            if (
                record is not None
                and record.owner == owner
                and record.target_key
                and record.target_key != attempted_key
                and keys.releasable(record.target_key, remote.remote_id)
            ):
                await self.storage.delete(record.target_key)
        except LedgerWriteError:
            raise
        except Exception as exc:
            await self._record_failure(entry, record, owner, attempted_key, exc)
            report.failed += 1
            report.errors.append(f"{remote.name}: {exc}")

    async def _record_failure(
        self,
        entry: LedgerEntry,
        record: LedgerEntry | None,
        owner: OwnerRef,
        attempted_key: str | None,
        exc: Exception,
    ) -> None:
        """Persist a failed attempt, keeping any previous key so a later pass can recover it.

        The stored hash always describes what the recorded key actually holds:
        the previous record's hash when its key is kept, nothing otherwise.
        """
        logger.warning("Failed to process image %s (%s): %s", entry.file_name, entry.remote_id, exc)
        entry.content_hash = None
        if attempted_key is None and record is not None and record.owner == owner:
            attempted_key = record.target_key
            entry.target_ref = record.target_ref
            entry.content_hash = record.content_hash
        elif attempted_key is not None:
            entry.target_ref = self.storage.public_url(attempted_key)
        if isinstance(exc, SizeExceeded):
            entry.original_size = exc.size
        entry.status = SyncStatus.FAILED
        entry.target_key = attempted_key
        entry.stored_size = None
        entry.last_error = str(exc) or type(exc).__name__
        entry.last_attempt_at = now_utc()
        await self.ledger.upsert(entry)


@dataclass
class _KeyClaims:
    """Object keys in use during one pass.

    ``reserved`` maps keys already recorded in the ledger for the owner to the
    remote file holding them; ``claimed`` holds keys taken earlier in the pass.
    """

    reserved: dict[str, str] = field(default_factory=dict)
    claimed: set[str] = field(default_factory=set)

    def taken(self, key: str, remote_id: str) -> bool:
        return key in self.claimed or self.reserved.get(key, remote_id) != remote_id

    def claim(self, key: str, remote_id: str) -> str:
        if self.taken(key, remote_id):
            stem, ext = posixpath.splitext(key)
            key = f"{stem}-{remote_id[:8]}{ext}"
        self.claimed.add(key)
        return key

    def releasable(self, key: str, remote_id: str) -> bool:
        """True when key no longer backs anything but remote_id's previous upload."""
        return not self.taken(key, remote_id)
