"""Durable local store for offline records.

This module provides:
- LocalStore: SQLite-backed storage that survives process restarts

The store holds four kinds of data:
- Record namespaces (``transactions``, ``resources``, ...): JSON documents
  keyed by their ``id`` and kept in insertion order
- The pending operation log: writes waiting for the remote store, in
  enqueue order
- The critical data mirror: durable copies of high/critical cache entries
- Key-value sync state (last successful sync time)

Durability:
    The connection runs in autocommit mode with WAL journaling, so every
    call commits before it returns. Each call is atomic for a single entry;
    there are no multi-entry transactions except ``replace_all``, which
    swaps a whole namespace at once.

    Every sqlite3 failure, including quota exhaustion (SQLITE_FULL), and
    every serialization failure is raised as LocalStorageError.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from recordsync.core.errors import LocalStorageError
from recordsync.core.models import MirroredEntry, PendingOperation, StorageInfo
from recordsync.core.serialization import encode_json
from recordsync.core.types import OperationType

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)


def dumps(value: Any) -> str:
    """Serialize a value for storage.

    Raises:
        LocalStorageError: If the value cannot be represented as JSON.
    """
    try:
        return encode_json(value)
    except (TypeError, ValueError) as e:
        raise LocalStorageError(f"Failed to serialize value: {e}") from e


def loads(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise LocalStorageError(f"Corrupt stored value: {e}") from e


class LocalStore:
    """SQLite-based durable store for records, pending operations and mirrors."""

    def __init__(self, db_path: Path, quota_bytes: int | None = None) -> None:
        """Open (or create) the local store.

        Args:
            db_path: Path to SQLite database file.
            quota_bytes: Optional size cap; writes beyond it raise
                LocalStorageError.
        """
        self._db_path = Path(db_path)
        self._lock = threading.RLock()

        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                isolation_level=None,  # Autocommit mode
            )
        except (OSError, sqlite3.Error) as e:
            raise LocalStorageError(f"Cannot open local store at {self._db_path}: {e}") from e

        self._conn.row_factory = sqlite3.Row

        with self._guard("initialize"):
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables()
            if quota_bytes is not None:
                self._apply_quota(quota_bytes)

        logger.debug("Opened local store at %s", self._db_path)

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS records (
                namespace TEXT NOT NULL,
                id TEXT NOT NULL,
                data TEXT NOT NULL,
                updated_at REAL NOT NULL,
                PRIMARY KEY (namespace, id)
            );

            CREATE TABLE IF NOT EXISTS pending_operations (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                type TEXT NOT NULL,
                collection TEXT NOT NULL,
                document_id TEXT NOT NULL,
                payload TEXT NOT NULL,
                enqueued_at REAL NOT NULL,
                retry_count INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS critical_data (
                key TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                timestamp REAL NOT NULL,
                ttl REAL NOT NULL,
                priority TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );
        """)

    def _apply_quota(self, quota_bytes: int) -> None:
        page_size = self._conn.execute("PRAGMA page_size").fetchone()[0]
        max_pages = max(1, quota_bytes // page_size)
        self._conn.execute(f"PRAGMA max_page_count = {int(max_pages)}")
        logger.debug("Local store quota set to %d bytes (%d pages)", quota_bytes, max_pages)

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        """Serialize access and translate sqlite3 failures."""
        with self._lock:
            try:
                yield
            except sqlite3.Error as e:
                logger.error("Local store failed to %s: %s", action, e)
                raise LocalStorageError(f"Failed to {action}: {e}") from e

    @property
    def path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> LocalStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # === Record namespaces ===

    def put(self, namespace: str, value: dict[str, Any]) -> None:
        """Insert or overwrite a record, keyed by its ``id`` field.

        Overwriting keeps the record's original position in ``get_all``.

        Raises:
            LocalStorageError: If the record has no id, cannot be
                serialized, or the write fails.
        """
        record_id = value.get("id")
        if not record_id:
            raise LocalStorageError(f"Cannot store record without id in {namespace}")

        data = dumps(value)
        with self._guard(f"write {namespace}/{record_id}"):
            self._conn.execute(
                """
                INSERT INTO records (namespace, id, data, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(namespace, id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (namespace, str(record_id), data, time.time()),
            )

    def get_all(self, namespace: str) -> list[dict[str, Any]]:
        """List all records of a namespace in insertion order."""
        with self._guard(f"read {namespace}"):
            rows = self._conn.execute(
                "SELECT data FROM records WHERE namespace = ? ORDER BY rowid",
                (namespace,),
            ).fetchall()
        return [loads(row["data"]) for row in rows]

    def get_by_id(self, namespace: str, record_id: str) -> dict[str, Any] | None:
        """Get a single record, or None if it is not stored."""
        with self._guard(f"read {namespace}/{record_id}"):
            row = self._conn.execute(
                "SELECT data FROM records WHERE namespace = ? AND id = ?",
                (namespace, record_id),
            ).fetchone()
        if row is None:
            return None
        result: dict[str, Any] = loads(row["data"])
        return result

    def remove(self, namespace: str, record_id: str) -> bool:
        """Remove a record.

        Returns:
            True if a record was removed.
        """
        with self._guard(f"remove {namespace}/{record_id}"):
            cursor = self._conn.execute(
                "DELETE FROM records WHERE namespace = ? AND id = ?",
                (namespace, record_id),
            )
        return cursor.rowcount > 0

    def replace_all(self, namespace: str, values: Iterable[dict[str, Any]]) -> int:
        """Replace the whole content of a namespace in one transaction.

        Used when a full remote snapshot arrives.

        Returns:
            Number of records written.
        """
        now = time.time()
        rows = []
        for value in values:
            record_id = value.get("id")
            if not record_id:
                raise LocalStorageError(f"Cannot store record without id in {namespace}")
            rows.append((namespace, str(record_id), dumps(value), now))

        with self._guard(f"replace {namespace}"):
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                self._conn.execute("DELETE FROM records WHERE namespace = ?", (namespace,))
                self._conn.executemany(
                    """
                    INSERT OR REPLACE INTO records (namespace, id, data, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    rows,
                )
            except sqlite3.Error:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

        logger.debug("Replaced %s with %d records", namespace, len(rows))
        return len(rows)

    def clear_namespace(self, namespace: str) -> int:
        """Remove all records of a namespace."""
        with self._guard(f"clear {namespace}"):
            cursor = self._conn.execute("DELETE FROM records WHERE namespace = ?", (namespace,))
        return cursor.rowcount

    def namespaces(self) -> list[str]:
        """List namespaces that currently hold records."""
        with self._guard("list namespaces"):
            rows = self._conn.execute(
                "SELECT DISTINCT namespace FROM records ORDER BY namespace"
            ).fetchall()
        return [row["namespace"] for row in rows]

    # === Pending operation log ===

    def enqueue(self, operation: PendingOperation) -> None:
        """Append an operation to the pending log.

        The operation is durable once this call returns.
        """
        payload = dumps(operation.payload)
        with self._guard(f"enqueue operation {operation.id}"):
            self._conn.execute(
                """
                INSERT INTO pending_operations
                (id, type, collection, document_id, payload, enqueued_at, retry_count)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    operation.id,
                    operation.type.value,
                    operation.collection,
                    operation.document_id,
                    payload,
                    operation.enqueued_at,
                    operation.retry_count,
                ),
            )
        logger.debug("Enqueued %r", operation)

    def list_pending(self) -> list[PendingOperation]:
        """List pending operations in enqueue order."""
        with self._guard("read pending operations"):
            rows = self._conn.execute(
                "SELECT * FROM pending_operations ORDER BY seq"
            ).fetchall()
        return [
            PendingOperation(
                id=row["id"],
                type=OperationType(row["type"]),
                collection=row["collection"],
                document_id=row["document_id"],
                payload=loads(row["payload"]),
                enqueued_at=row["enqueued_at"],
                retry_count=row["retry_count"],
            )
            for row in rows
        ]

    def get_pending(self, operation_id: str) -> PendingOperation | None:
        for operation in self.list_pending():
            if operation.id == operation_id:
                return operation
        return None

    def dequeue(self, operation_id: str) -> bool:
        """Remove an operation from the pending log.

        Returns:
            True if the operation was present.
        """
        with self._guard(f"dequeue operation {operation_id}"):
            cursor = self._conn.execute(
                "DELETE FROM pending_operations WHERE id = ?", (operation_id,)
            )
        return cursor.rowcount > 0

    def set_retry_count(self, operation_id: str, retry_count: int) -> bool:
        """Update the retry count of a pending operation.

        Returns:
            True if the operation was present.
        """
        with self._guard(f"update operation {operation_id}"):
            cursor = self._conn.execute(
                "UPDATE pending_operations SET retry_count = ? WHERE id = ?",
                (retry_count, operation_id),
            )
        return cursor.rowcount > 0

    def count_pending(self) -> int:
        with self._guard("count pending operations"):
            row = self._conn.execute("SELECT COUNT(*) FROM pending_operations").fetchone()
        return int(row[0])

    def clear_pending(self) -> int:
        with self._guard("clear pending operations"):
            cursor = self._conn.execute("DELETE FROM pending_operations")
        logger.info("Cleared %d pending operations", cursor.rowcount)
        return cursor.rowcount

    # === Critical data mirror ===

    def save_critical(self, key: str, entry: MirroredEntry) -> None:
        """Persist a mirrored cache entry (overwrites)."""
        data = dumps(entry.data)
        with self._guard(f"save critical data {key}"):
            self._conn.execute(
                """
                INSERT OR REPLACE INTO critical_data (key, data, timestamp, ttl, priority)
                VALUES (?, ?, ?, ?, ?)
                """,
                (key, data, entry.timestamp, entry.ttl, entry.priority.value),
            )

    def get_critical(self, key: str) -> MirroredEntry | None:
        with self._guard(f"read critical data {key}"):
            row = self._conn.execute(
                "SELECT * FROM critical_data WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        return MirroredEntry.from_dict(
            {
                "data": loads(row["data"]),
                "timestamp": row["timestamp"],
                "ttl": row["ttl"],
                "priority": row["priority"],
            }
        )

    def remove_critical(self, key: str) -> bool:
        with self._guard(f"remove critical data {key}"):
            cursor = self._conn.execute("DELETE FROM critical_data WHERE key = ?", (key,))
        return cursor.rowcount > 0

    def list_critical(self) -> list[str]:
        """List keys present in the critical data mirror."""
        with self._guard("list critical data"):
            rows = self._conn.execute("SELECT key FROM critical_data ORDER BY key").fetchall()
        return [row["key"] for row in rows]

    def clear_critical(self) -> int:
        with self._guard("clear critical data"):
            cursor = self._conn.execute("DELETE FROM critical_data")
        return cursor.rowcount

    # === Sync state ===

    def get_state(self, key: str) -> str | None:
        """Get a sync state value."""
        with self._guard(f"read state {key}"):
            row = self._conn.execute(
                "SELECT value FROM sync_state WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        """Set a sync state value."""
        with self._guard(f"write state {key}"):
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                (key, value),
            )

    def get_last_sync_time(self) -> float | None:
        """Get timestamp of last successful sync."""
        value = self.get_state("last_sync_at")
        return float(value) if value else None

    def set_last_sync_time(self, timestamp: float | None = None) -> None:
        """Set timestamp of last successful sync (default: now)."""
        self.set_state("last_sync_at", str(time.time() if timestamp is None else timestamp))

    # === Maintenance ===

    def storage_info(self) -> StorageInfo:
        """Summarize what the store holds and how much space it uses."""
        with self._guard("read storage info"):
            page_count = self._conn.execute("PRAGMA page_count").fetchone()[0]
            page_size = self._conn.execute("PRAGMA page_size").fetchone()[0]
        return StorageInfo(
            size_bytes=int(page_count) * int(page_size),
            namespaces=self.namespaces(),
            pending_count=self.count_pending(),
            critical_count=len(self.list_critical()),
        )

    def clear_all(self) -> None:
        """Drop every record, pending operation, mirror and sync state."""
        with self._guard("clear offline data"):
            self._conn.executescript("""
                DELETE FROM records;
                DELETE FROM pending_operations;
                DELETE FROM critical_data;
                DELETE FROM sync_state;
            """)
        logger.info("Cleared all offline data in %s", self._db_path)
