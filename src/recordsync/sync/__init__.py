"""Pending operation queue and its drain loop.

Architecture:
    RecordRepository ─queue_operation─► LocalStore.pending_operations
                                              │
    NetworkMonitor ─online─► SyncManager.drain ─► RemoteStore
"""

from recordsync.sync.manager import NON_RETRYABLE_ERRORS, SyncManager
from recordsync.sync.retry import NETWORK_EXCEPTIONS, is_transient, retry_with_backoff
from recordsync.sync.types import SyncResult, SyncStatus

__all__ = [
    "NETWORK_EXCEPTIONS",
    "NON_RETRYABLE_ERRORS",
    "SyncManager",
    "SyncResult",
    "SyncStatus",
    "is_transient",
    "retry_with_backoff",
]
