"""Local-first repository for one remote collection.

This module provides:
- RecordRepository: create/read/update/delete that keep working offline

Write path:
    1. Validate (ValidationError is raised, nothing is stored)
    2. Write the record to the local store; this is the durability boundary
    3. If online and nothing is queued for the record yet, push it to the
       remote store (transient errors retried)
    4. Otherwise, or if the push failed, queue a pending operation for it

    The caller gets success as soon as step 2 completes. A record created
    offline keeps its local id, which is also its remote document key.

    If the remote store rejects the write outright (validation or
    permission), the local change is rolled back and the error raised.

Read path:
    Local store first; on a local miss while online, fetch from the remote
    store and keep a local copy. Offline misses return None immediately.
    Records with queued operations are never overwritten by remote copies.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from recordsync.core.errors import (
    PermissionDeniedError,
    RecordNotFoundError,
    RemoteNotFoundError,
    ValidationError,
)
from recordsync.core.types import OperationType
from recordsync.records.ids import generate_local_id
from recordsync.sync.retry import retry_with_backoff

if TYPE_CHECKING:
    from recordsync.core.config import RetryPolicy
    from recordsync.network import NetworkMonitor
    from recordsync.remote.base import Document, RemoteStore
    from recordsync.store import LocalStore
    from recordsync.sync.manager import SyncManager

logger = logging.getLogger(__name__)

# Remote rejections that must reach the caller instead of being queued
REJECTIONS: tuple[type[Exception], ...] = (PermissionDeniedError, ValidationError)


def sanitize(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Drop None values (recursively in nested dicts and lists of dicts)."""
    cleaned: dict[str, Any] = {}
    for key, value in payload.items():
        if value is None:
            continue
        if isinstance(value, Mapping):
            value = sanitize(value)
        elif isinstance(value, list):
            value = [sanitize(v) if isinstance(v, Mapping) else v for v in value]
        cleaned[key] = value
    return cleaned


class RecordRepository:
    """Local-first access to one collection.

    Subclasses set ``collection``/``namespace``/``id_prefix`` and override
    ``validate``.
    """

    collection: str = ""
    namespace: str = ""
    id_prefix: str = "rec"

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore,
        sync: SyncManager,
        network: NetworkMonitor,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._remote = remote
        self._sync = sync
        self._network = network
        self._retry_policy = retry_policy
        self._clock = clock
        self._sleep = sleep

    def validate(self, data: Mapping[str, Any]) -> None:
        """Raise ValidationError for unusable input. Accepts anything by default."""

    def _now_iso(self) -> str:
        return datetime.fromtimestamp(self._clock(), UTC).isoformat()

    def _remote_call(self, func: Callable[[], Any], context: str) -> Any:
        return retry_with_backoff(func, self._retry_policy, context, self._sleep)

    # === Writes ===

    def create(self, data: Mapping[str, Any]) -> str:
        """Create a record.

        Returns:
            The record id (also its remote document key).

        Raises:
            ValidationError: Invalid input or rejected by the remote store.
            PermissionDeniedError: Rejected by the remote store.
            LocalStorageError: The local write failed.
        """
        self.validate(data)

        record_id = generate_local_id(self.id_prefix, self._clock())
        now = self._now_iso()
        record = {**data, "id": record_id, "created_at": now, "updated_at": now}
        self._store.put(self.namespace, record)

        payload = sanitize(record)
        if self._push(
            record_id,
            lambda: self._remote.create(self.collection, record_id, payload),
            f"Create {self.collection}/{record_id}",
            rollback=lambda: self._store.remove(self.namespace, record_id),
        ):
            return record_id

        self._sync.queue_operation(OperationType.CREATE, self.collection, record_id, payload)
        return record_id

    def update(self, record_id: str, updates: Mapping[str, Any]) -> dict[str, Any]:
        """Merge updates into an existing record.

        Returns:
            The merged record.

        Raises:
            RecordNotFoundError: The record is unknown locally and remotely.
        """
        existing = self.get(record_id)
        if existing is None:
            raise RecordNotFoundError(self.collection, record_id)

        merged = {**existing, **updates, "id": record_id, "updated_at": self._now_iso()}
        self.validate(merged)
        self._store.put(self.namespace, merged)

        payload = sanitize(merged)
        if self._push(
            record_id,
            lambda: self._remote.update(self.collection, record_id, payload),
            f"Update {self.collection}/{record_id}",
            rollback=lambda: self._store.put(self.namespace, existing),
        ):
            return merged

        self._sync.queue_operation(OperationType.UPDATE, self.collection, record_id, payload)
        return merged

    def delete(self, record_id: str) -> None:
        """Delete a record locally and (eventually) remotely."""
        existing = self._store.get_by_id(self.namespace, record_id)
        self._store.remove(self.namespace, record_id)

        def rollback() -> None:
            if existing is not None:
                self._store.put(self.namespace, existing)

        if self._push(
            record_id,
            lambda: self._delete_remote(record_id),
            f"Delete {self.collection}/{record_id}",
            rollback=rollback,
        ):
            return

        self._sync.queue_operation(OperationType.DELETE, self.collection, record_id)

    def _delete_remote(self, record_id: str) -> None:
        try:
            self._remote.delete(self.collection, record_id)
        except RemoteNotFoundError:
            logger.debug("%s/%s already gone on remote", self.collection, record_id)

    def _pending_ids(self) -> set[str]:
        """Ids of records in this collection with queued operations."""
        return {
            op.document_id
            for op in self._sync.pending_operations()
            if op.collection == self.collection
        }

    def _push(
        self,
        record_id: str,
        func: Callable[[], Any],
        context: str,
        rollback: Callable[[], Any],
    ) -> bool:
        """Try a remote write right away.

        A record with queued operations is never written directly; the new
        write has to go behind them.

        Returns:
            True if the remote store confirmed the write; False if it has to
            be queued.
        """
        if not self._sync.can_reach_remote():
            logger.debug("%s: remote unreachable, queueing", context)
            return False

        if record_id in self._pending_ids():
            logger.debug("%s: earlier writes still queued, queueing", context)
            return False

        try:
            self._remote_call(func, context)
        except REJECTIONS:
            rollback()
            raise
        except Exception as e:
            logger.warning("%s failed, keeping local copy for later sync: %s", context, e)
            return False
        return True

    # === Reads ===

    def get(self, record_id: str) -> dict[str, Any] | None:
        """Get a record, local copy first.

        Returns:
            The record, or None if unknown (or offline and not cached).
        """
        local = self._store.get_by_id(self.namespace, record_id)
        if local is not None:
            return local

        if not self._sync.can_reach_remote() or record_id in self._pending_ids():
            return None

        try:
            remote = self._remote_call(
                lambda: self._remote.get(self.collection, record_id),
                f"Get {self.collection}/{record_id}",
            )
        except Exception as e:
            logger.warning("Failed to fetch %s/%s: %s", self.collection, record_id, e)
            return None

        if remote is None:
            return None

        record = {**remote, "id": record_id}
        self._store.put(self.namespace, record)
        return record

    def get_all(self) -> list[dict[str, Any]]:
        """List records, local copies first.

        The remote store is only consulted when nothing is stored locally.
        """
        local = self._store.get_all(self.namespace)
        if local or not self._sync.can_reach_remote():
            return local

        try:
            documents = self._remote_call(
                lambda: self._remote.list(self.collection),
                f"List {self.collection}",
            )
        except Exception as e:
            logger.warning("Failed to fetch %s: %s", self.collection, e)
            return []

        return self._apply_snapshot(documents)

    def refresh_from_remote(self) -> int:
        """Replace local copies with the remote collection.

        Records with unsynced local writes are kept.

        Returns:
            Number of records stored, or 0 when offline.
        """
        if not self._sync.can_reach_remote():
            logger.info("Cannot refresh %s: remote unreachable", self.collection)
            return 0

        documents = self._remote_call(
            lambda: self._remote.list(self.collection),
            f"List {self.collection}",
        )
        records = self._apply_snapshot(documents)
        logger.info("Refreshed %d %s from remote", len(records), self.collection)
        return len(records)

    def subscribe(self, callback: Callable[[list[dict[str, Any]]], None]) -> Callable[[], None]:
        """Follow the collection.

        Offline, the callback receives the local copies once. Online, every
        remote snapshot is stored locally and then passed on.

        Returns:
            Function that ends the subscription.
        """
        if not self._network.is_online():
            callback(self._store.get_all(self.namespace))
            return lambda: None

        def on_snapshot(documents: list[Document]) -> None:
            callback(self._apply_snapshot(documents))

        return self._remote.subscribe(self.collection, on_snapshot)

    def _apply_snapshot(self, documents: list[Document]) -> list[dict[str, Any]]:
        """Store a remote snapshot, keeping the local state of unsynced records.

        A record with queued operations keeps its local copy, or stays gone
        when it was deleted locally.
        """
        unsynced_ids = self._pending_ids()
        records = [
            dict(doc)
            for doc in documents
            if doc.get("id") and doc["id"] not in unsynced_ids
        ]
        for local in self._store.get_all(self.namespace):
            if local["id"] in unsynced_ids:
                records.append(local)

        self._store.replace_all(self.namespace, records)
        return records
