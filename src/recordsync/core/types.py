"""Shared enums for recordsync.

This module defines types used across the store, cache and sync layers.
"""

from __future__ import annotations

from enum import Enum


class OperationType(str, Enum):
    """Kind of write carried by a pending operation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class CachePriority(str, Enum):
    """Priority tier of a cache entry.

    HIGH and CRITICAL entries are mirrored into durable storage.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def is_mirrored(self) -> bool:
        """Check if entries of this tier survive eviction and restarts."""
        return self in (CachePriority.HIGH, CachePriority.CRITICAL)


class Namespace(str, Enum):
    """Well-known local store namespaces.

    Record namespaces are free-form strings; these are the ones the engine
    itself reads and writes.
    """

    PENDING_OPERATIONS = "pending_operations"
    CRITICAL_DATA = "critical_data"
    RESOURCES = "resources"
    TRANSACTIONS = "transactions"
    MULTI_TRANSACTIONS = "multi_transactions"
    HISTORY = "history"
    BORROWERS = "borrowers"
    AGENCIES = "agencies"
    USER_DATA = "user_data"
