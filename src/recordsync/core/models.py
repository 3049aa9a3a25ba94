"""Persistent data models shared by the store and the sync layers.

This module provides:
- PendingOperation: a write waiting to reach the remote store
- MirroredEntry: a cache entry copied into durable storage
- StorageInfo: size summary of the local store
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from recordsync.core.types import CachePriority, OperationType

MAX_OPERATION_RETRIES = 5


@dataclass
class PendingOperation:
    """A queued write that has not been confirmed by the remote store.

    Attributes:
        id: Unique operation id.
        type: Create, update or delete.
        collection: Remote collection name.
        document_id: Remote document key (local id for offline creates).
        payload: JSON-serializable document body (empty for deletes).
        enqueued_at: Epoch seconds when the operation was queued.
        retry_count: Failed drain attempts so far.
    """

    id: str
    type: OperationType
    collection: str
    document_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    enqueued_at: float = 0.0
    retry_count: int = 0

    @classmethod
    def create(
        cls,
        type: OperationType,
        collection: str,
        document_id: str,
        payload: dict[str, Any] | None = None,
        enqueued_at: float | None = None,
    ) -> PendingOperation:
        """Create a new operation with a fresh unique id."""
        op_type = OperationType(type)
        return cls(
            id=f"{op_type.value}_{collection}_{document_id}_{uuid.uuid4().hex[:12]}",
            type=op_type,
            collection=collection,
            document_id=document_id,
            payload=dict(payload or {}),
            enqueued_at=time.time() if enqueued_at is None else enqueued_at,
            retry_count=0,
        )

    @property
    def exhausted(self) -> bool:
        """Check if the operation has used up its retry budget."""
        return self.retry_count >= MAX_OPERATION_RETRIES

    def __repr__(self) -> str:
        return (
            f"PendingOperation({self.type.value} {self.collection}/{self.document_id}, "
            f"id={self.id}, retries={self.retry_count})"
        )


@dataclass
class MirroredEntry:
    """Durable copy of a high/critical cache entry."""

    data: Any
    timestamp: float
    ttl: float
    priority: CachePriority = CachePriority.MEDIUM

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "timestamp": self.timestamp,
            "ttl": self.ttl,
            "priority": self.priority.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MirroredEntry:
        return cls(
            data=data["data"],
            timestamp=float(data["timestamp"]),
            ttl=float(data["ttl"]),
            priority=CachePriority(data.get("priority", CachePriority.MEDIUM.value)),
        )


@dataclass
class StorageInfo:
    """Summary of what the local store currently holds."""

    size_bytes: int
    namespaces: list[str]
    pending_count: int
    critical_count: int
