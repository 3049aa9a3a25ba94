"""Result types for sync operations.

This module provides:
- SyncResult: Outcome of one drain cycle (never persisted)
- SyncStatus: Snapshot for "unsynced changes" indicators
"""

from __future__ import annotations

from dataclasses import dataclass, field

ALREADY_SYNCING = "Sync already in progress"
NO_CONNECTION = "No internet connection"
NOT_AUTHENTICATED = "User not authenticated"


@dataclass
class SyncResult:
    """Result of one drain of the pending operation queue.

    Attributes:
        success: True iff no operation was dropped and the drain completed.
        synced_count: Operations confirmed by the remote store.
        failed_count: Operations dropped (retries exhausted or rejected).
        errors: Human-readable error messages, one per failure.
    """

    success: bool = True
    synced_count: int = 0
    failed_count: int = 0
    errors: list[str] = field(default_factory=list)

    @classmethod
    def skipped(cls, reason: str) -> SyncResult:
        """Zeroed result for a drain that did not run."""
        return cls(success=False, errors=[reason])


@dataclass
class SyncStatus:
    """Current sync state as shown to the user."""

    is_online: bool
    is_syncing: bool
    pending_operations_count: int
    last_sync_time: float | None

    @property
    def has_unsynced_changes(self) -> bool:
        return self.pending_operations_count > 0
