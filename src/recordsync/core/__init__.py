"""Core module - Shared config, errors, enums and persistent models."""

from recordsync.core.config import (
    CacheConfig,
    EngineConfig,
    RemoteConfig,
    RetryPolicy,
)
from recordsync.core.errors import (
    LocalStorageError,
    OfflineCacheMissError,
    PermissionDeniedError,
    RecordNotFoundError,
    RecordSyncError,
    RemoteError,
    RemoteNotFoundError,
    StaleDataWarning,
    TransientNetworkError,
    ValidationError,
)
from recordsync.core.models import (
    MAX_OPERATION_RETRIES,
    MirroredEntry,
    PendingOperation,
    StorageInfo,
)
from recordsync.core.types import CachePriority, Namespace, OperationType

__all__ = [
    # Config
    "CacheConfig",
    "EngineConfig",
    "RemoteConfig",
    "RetryPolicy",
    # Errors
    "LocalStorageError",
    "OfflineCacheMissError",
    "PermissionDeniedError",
    "RecordNotFoundError",
    "RecordSyncError",
    "RemoteError",
    "RemoteNotFoundError",
    "StaleDataWarning",
    "TransientNetworkError",
    "ValidationError",
    # Models
    "MAX_OPERATION_RETRIES",
    "MirroredEntry",
    "PendingOperation",
    "StorageInfo",
    # Types
    "CachePriority",
    "Namespace",
    "OperationType",
]
