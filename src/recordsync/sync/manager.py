"""Pending operation queue and drain loop.

This module provides:
- SyncManager: queues writes that could not reach the remote store and
  replays them once the store is reachable again

Drain rules:
    - Single-flight: a drain started while another is running returns
      immediately with "Sync already in progress" and touches nothing.
    - Preconditions: online and authenticated, otherwise the drain returns
      without touching the queue.
    - Operations replay strictly in enqueue order against the snapshot
      taken when the drain starts. Operations queued mid-drain wait for
      the next drain.
    - Once an operation on a document stays queued, later operations on
      the same document are skipped for this drain so they never overtake it.
    - Each remote call goes through retry_with_backoff (transient errors
      only). A failed operation has its retry count bumped; at
      MAX_OPERATION_RETRIES it is dropped and counted as failed. Permission,
      validation and not-found errors drop it immediately.
    - Failures are collected into SyncResult.errors, never raised. A local
      store failure aborts the drain and is reported the same way.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from recordsync.core.config import RetryPolicy
from recordsync.core.errors import (
    LocalStorageError,
    PermissionDeniedError,
    RemoteNotFoundError,
    ValidationError,
)
from recordsync.core.models import MAX_OPERATION_RETRIES, PendingOperation
from recordsync.core.types import OperationType
from recordsync.sync.retry import retry_with_backoff
from recordsync.sync.types import (
    ALREADY_SYNCING,
    NO_CONNECTION,
    NOT_AUTHENTICATED,
    SyncResult,
    SyncStatus,
)

if TYPE_CHECKING:
    from recordsync.network import NetworkMonitor, NetworkState
    from recordsync.remote.base import RemoteStore
    from recordsync.store import LocalStore

logger = logging.getLogger(__name__)

# Errors that will fail the same way on every retry
NON_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    PermissionDeniedError,
    ValidationError,
    RemoteNotFoundError,
)


class SyncManager:
    """Owns the pending operation log and drains it against the remote store.

    Usage:
        manager = SyncManager(store, remote, monitor, is_authenticated=remote.is_authenticated)
        manager.queue_operation(OperationType.CREATE, "transactions", "txn_1", {...})
        stop_auto_sync = manager.start_auto_sync()
        ...
        result = manager.drain()
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore,
        network: NetworkMonitor,
        is_authenticated: Callable[[], bool],
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the sync manager.

        Args:
            store: Durable store holding the pending operation log.
            remote: Remote store operations are replayed against.
            network: Connectivity monitor gating every drain.
            is_authenticated: Returns True when remote calls may be made.
            retry_policy: Backoff policy for each remote call.
            clock: Time source for enqueue and last-sync timestamps.
            sleep: Sleep function used between retries.
        """
        self._store = store
        self._remote = remote
        self._network = network
        self._is_authenticated = is_authenticated
        self._retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._sleep = sleep

        self._sync_lock = threading.Lock()
        self._auto_sync_thread: threading.Thread | None = None
        self._auto_sync_lock = threading.Lock()

    @property
    def is_syncing(self) -> bool:
        return self._sync_lock.locked()

    def can_reach_remote(self) -> bool:
        """True when remote calls are allowed (online and authenticated)."""
        return self._network.is_online() and self._is_authenticated()

    # === Queue ===

    def queue_operation(
        self,
        type: OperationType | str,
        collection: str,
        document_id: str,
        data: dict[str, Any] | None = None,
    ) -> PendingOperation:
        """Append a write to the pending log.

        The operation is durable when this returns.

        Raises:
            LocalStorageError: If the local store cannot record it.
        """
        operation = PendingOperation.create(
            OperationType(type),
            collection,
            document_id,
            data,
            enqueued_at=self._clock(),
        )
        self._store.enqueue(operation)
        logger.info(
            "Queued %s %s/%s for sync", operation.type.value, collection, document_id
        )
        return operation

    def pending_operations(self) -> list[PendingOperation]:
        return self._store.list_pending()

    def pending_count(self) -> int:
        return self._store.count_pending()

    # === Drain ===

    def drain(self) -> SyncResult:
        """Replay pending operations against the remote store.

        Returns:
            SyncResult for this drain.
        """
        if not self._sync_lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping")
            return SyncResult.skipped(ALREADY_SYNCING)

        try:
            if not self._network.is_online():
                logger.info("No internet connection, skipping sync")
                return SyncResult.skipped(NO_CONNECTION)

            if not self._is_authenticated():
                logger.info("User not authenticated, skipping sync")
                return SyncResult.skipped(NOT_AUTHENTICATED)

            return self._drain_snapshot()
        finally:
            self._sync_lock.release()

    # Alias kept for callers using the "force sync" wording
    force_sync = drain

    def _drain_snapshot(self) -> SyncResult:
        result = SyncResult()
        aborted = False

        try:
            operations = self._store.list_pending()
            if operations:
                logger.info("Syncing %d pending operations...", len(operations))

            blocked: set[tuple[str, str]] = set()
            for operation in operations:
                key = (operation.collection, operation.document_id)
                if key in blocked:
                    logger.debug("Skipping %r until earlier writes succeed", operation)
                    continue

                try:
                    self._apply(operation)
                except Exception as e:
                    if self._handle_failure(operation, e, result):
                        blocked.add(key)
                    continue

                self._store.dequeue(operation.id)
                result.synced_count += 1
                logger.debug("Synced %r", operation)

            if result.synced_count > 0:
                self._store.set_last_sync_time(self._clock())

        except LocalStorageError as e:
            logger.error("Sync aborted by local storage failure: %s", e)
            result.errors.append(f"Sync error: {e}")
            aborted = True

        result.success = result.failed_count == 0 and not aborted

        if result.synced_count or result.failed_count:
            logger.info(
                "Sync finished: %d synced, %d failed",
                result.synced_count,
                result.failed_count,
            )
        return result

    def _apply(self, operation: PendingOperation) -> None:
        """Perform the remote call matching an operation."""
        collection = operation.collection
        document_id = operation.document_id
        label = f"{operation.type.value.capitalize()} {collection}/{document_id}"

        if operation.type is OperationType.CREATE:
            retry_with_backoff(
                lambda: self._remote.create(collection, document_id, operation.payload),
                self._retry_policy,
                label,
                self._sleep,
            )
        elif operation.type is OperationType.UPDATE:
            retry_with_backoff(
                lambda: self._remote.update(collection, document_id, operation.payload),
                self._retry_policy,
                label,
                self._sleep,
            )
        elif operation.type is OperationType.DELETE:
            try:
                retry_with_backoff(
                    lambda: self._remote.delete(collection, document_id),
                    self._retry_policy,
                    label,
                    self._sleep,
                )
            except RemoteNotFoundError:
                logger.debug("%s: already gone on remote", label)
        else:
            raise ValidationError(f"Unknown operation type: {operation.type}")

    def _handle_failure(
        self,
        operation: PendingOperation,
        error: Exception,
        result: SyncResult,
    ) -> bool:
        """Record a failed operation.

        Returns:
            True if the operation stays queued.
        """
        if isinstance(error, LocalStorageError):
            raise error

        if isinstance(error, NON_RETRYABLE_ERRORS):
            self._store.dequeue(operation.id)
            result.failed_count += 1
            result.errors.append(f"Operation {operation.id}: {error}")
            logger.error("Dropped %r: %s", operation, error)
            return False

        retry_count = operation.retry_count + 1
        if retry_count >= MAX_OPERATION_RETRIES:
            self._store.dequeue(operation.id)
            result.failed_count += 1
            result.errors.append(
                f"Operation {operation.id}: {error} (dropped after {retry_count} attempts)"
            )
            logger.error("Removed %r after %d failed attempts: %s", operation, retry_count, error)
            return False

        self._store.set_retry_count(operation.id, retry_count)
        result.errors.append(
            f"Operation {operation.id}: {error} "
            f"(attempt {retry_count}/{MAX_OPERATION_RETRIES}, will retry)"
        )
        logger.warning(
            "Failed to sync %r (attempt %d/%d): %s",
            operation,
            retry_count,
            MAX_OPERATION_RETRIES,
            error,
        )
        return True

    def retry_operation(self, operation_id: str) -> SyncResult | None:
        """Reset an operation's retry budget and drain if online.

        Returns:
            The drain result, or None when offline.

        Raises:
            KeyError: If no such operation is queued.
        """
        if not self._store.set_retry_count(operation_id, 0):
            raise KeyError(operation_id)
        if self._network.is_online():
            return self.drain()
        return None

    # === Status ===

    def get_sync_status(self) -> SyncStatus:
        return SyncStatus(
            is_online=self._network.is_online(),
            is_syncing=self.is_syncing,
            pending_operations_count=self._store.count_pending(),
            last_sync_time=self._store.get_last_sync_time(),
        )

    def clear_offline_data(self) -> None:
        """Drop all offline data, including unsynced operations."""
        self._store.clear_all()

    # === Auto-sync ===

    def start_auto_sync(self) -> Callable[[], None]:
        """Drain automatically whenever connectivity comes back.

        Returns:
            Function that stops auto-sync.
        """

        def on_network_change(state: NetworkState) -> None:
            if state.is_online:
                logger.info("Connection restored, starting auto-sync...")
                self._trigger_auto_sync()

        return self._network.subscribe(on_network_change)

    def _trigger_auto_sync(self) -> None:
        with self._auto_sync_lock:
            if self._auto_sync_thread and self._auto_sync_thread.is_alive():
                return
            self._auto_sync_thread = threading.Thread(
                target=self._auto_sync,
                name="AutoSync",
                daemon=True,
            )
            self._auto_sync_thread.start()

    def _auto_sync(self) -> None:
        try:
            result = self.drain()
            if result.synced_count > 0:
                logger.info("Auto-sync completed: %d operations synced", result.synced_count)
        except Exception:
            logger.exception("Auto-sync failed")

    def join_auto_sync(self, timeout: float | None = None) -> None:
        """Wait for an in-flight auto-sync drain to finish."""
        thread = self._auto_sync_thread
        if thread is not None:
            thread.join(timeout)
