"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients
  (credential parsing failures, config validation, etc.). The global handler
  logs the full message at ERROR and returns a generic "Internal server error"
  (500) to the client.
- ``SyncError`` and its subclasses: the reconciliation taxonomy. Per-file
  errors (``RemoteUnavailable``, ``SizeExceeded``, ``TargetWriteError``) are
  caught at the reconciler's per-file boundary and recorded in the ledger.
  ``InvalidReference``, ``LedgerWriteError`` and a failed folder listing
  (``RemoteUnavailable``) escape ``sync()``.
- ``TransformError`` never escapes the transform pipeline; it falls back to
  the original bytes.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``imagesync/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class SyncError(Exception):
    """Base class for reconciliation errors."""


class InvalidReference(SyncError):
    """A folder reference cannot be resolved to a remote folder identity."""


class RemoteUnavailable(SyncError):
    """Listing or downloading from the remote source (or row store) failed."""


class SizeExceeded(SyncError):
    """A raw file exceeds the hard size ceiling."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"File size {size} exceeds maximum {limit}")
        self.size = size
        self.limit = limit


class TransformError(SyncError):
    """Decoding or re-encoding an image failed."""


class TargetWriteError(SyncError):
    """Writing an object to the target store failed."""


class LedgerWriteError(SyncError):
    """Persisting a sync record failed."""
