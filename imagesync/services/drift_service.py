"""Drift detection: decide whether a ledger record can be trusted for a remote file.

The decision table, evaluated in order:

1. no record                                   -> FRESH
2. record still ``pending`` (interrupted pass) -> FRESH
3. record belongs to another owner             -> DRIFT(owner_changed)
4. ``failed`` record whose object exists with the current remote hash
                                               -> RECOVERED, otherwise RETRY
5. ``processed`` record without a target key   -> DRIFT(missing_key)
6. object missing from the store               -> DRIFT(orphaned_record)
7. stored hash differs from the record's hash  -> DRIFT(out_of_band_mutation)
8. remote hash absent or differs from record   -> CHANGED
9. otherwise                                   -> UNCHANGED
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from imagesync.models.sync_record import SyncStatus

if TYPE_CHECKING:
    from imagesync.clients.base import RemoteFile
    from imagesync.services.ledger_service import LedgerEntry, OwnerRef
    from imagesync.services.storage_service import ObjectHead


class TargetProbe(Protocol):
    async def head(self, key: str) -> ObjectHead | None: ...


class DecisionKind(StrEnum):
    """Outcome of comparing a ledger record with the remote file and the store."""

    FRESH = "fresh"
    DRIFT = "drift"
    CHANGED = "changed"
    RETRY = "retry"
    UNCHANGED = "unchanged"
    RECOVERED = "recovered"


class DriftReason(StrEnum):
    MISSING_KEY = "missing_key"
    ORPHANED_RECORD = "orphaned_record"
    OUT_OF_BAND_MUTATION = "out_of_band_mutation"
    OWNER_CHANGED = "owner_changed"


@dataclass(frozen=True)
class Decision:
    kind: DecisionKind
    reason: DriftReason | None = None
    head: ObjectHead | None = None

    @property
    def needs_processing(self) -> bool:
        return self.kind not in (DecisionKind.UNCHANGED, DecisionKind.RECOVERED)

    def describe(self) -> str:
        return f"{self.kind}({self.reason})" if self.reason else str(self.kind)


async def assess(
    record: LedgerEntry | None,
    remote: RemoteFile,
    owner: OwnerRef,
    probe: TargetProbe,
) -> Decision:
    """Classify one remote file against its ledger record and the target store."""
    if record is None or record.status == SyncStatus.PENDING:
        return Decision(DecisionKind.FRESH)

    if record.owner != owner:
        return Decision(DecisionKind.DRIFT, DriftReason.OWNER_CHANGED)

    if record.status == SyncStatus.FAILED:
        # A failed attempt may still have uploaded the object. Reuse it only if
        # it carries the current remote hash; a stale object must be rewritten.
        if record.target_key and remote.content_hash:
            head = await probe.head(record.target_key)
            if head is not None and head.content_hash == remote.content_hash:
                return Decision(DecisionKind.RECOVERED, head=head)
        return Decision(DecisionKind.RETRY)

    if not record.target_key:
        return Decision(DecisionKind.DRIFT, DriftReason.MISSING_KEY)

    head = await probe.head(record.target_key)
    if head is None:
        return Decision(DecisionKind.DRIFT, DriftReason.ORPHANED_RECORD)
    if head.content_hash != record.content_hash:
        return Decision(DecisionKind.DRIFT, DriftReason.OUT_OF_BAND_MUTATION, head=head)
    if remote.content_hash is None or remote.content_hash != record.content_hash:
        return Decision(DecisionKind.CHANGED, head=head)
    return Decision(DecisionKind.UNCHANGED, head=head)
