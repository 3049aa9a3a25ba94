"""Exception hierarchy shared by all recordsync components.

The classes map onto how each failure is handled:
- ValidationError: bad input, never retried, surfaced immediately
- TransientNetworkError: retried up to the bound, then queued or dropped
- PermissionDeniedError: never retried, surfaced immediately
- LocalStorageError: fatal to the enclosing operation, always reported
- StaleDataWarning: non-fatal, emitted when expired mirrored data is served
"""

from __future__ import annotations


class RecordSyncError(Exception):
    """Base exception for recordsync errors."""


class ValidationError(RecordSyncError):
    """Input rejected before (or by) the remote store."""


class TransientNetworkError(RecordSyncError):
    """Remote call failed for a reason that may go away on retry."""


class PermissionDeniedError(RecordSyncError):
    """Remote store refused the call for the current credentials.

    Distinct from the builtin ``PermissionError``, which is an ``OSError``
    and would otherwise be treated as a connectivity failure.
    """


class LocalStorageError(RecordSyncError):
    """Durable local store failed to read or write."""


class RemoteError(RecordSyncError):
    """Remote store returned an error that fits no other category."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteNotFoundError(RemoteError):
    """Remote document does not exist."""


class RecordNotFoundError(RecordSyncError):
    """Record is neither stored locally nor reachable remotely."""

    def __init__(self, collection: str, record_id: str) -> None:
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"Record {collection}/{record_id} not found")


class OfflineCacheMissError(RecordSyncError):
    """Cache miss while offline with no mirrored copy to fall back on."""


class StaleDataWarning(UserWarning):
    """Expired mirrored data was served in place of fresh data."""
