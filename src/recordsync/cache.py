"""Read-through cache with a durable mirror.

This module provides:
- KeyValueStore: minimal interface shared by both cache layers
- CriticalDataStore: persistent layer over the local store's critical_data
- CacheManager: in-memory TTL+LRU layer decorating a persistent layer
- CacheJanitor: periodic purge of expired entries (APScheduler)

Layering:
    CacheManager (memory, TTL + LRU, size-bounded)
        │  high/critical entries are written through
        ▼
    CriticalDataStore (LocalStore "critical_data", survives restarts)

Invariants:
    - Resident size never exceeds max_cache_size once set() returns
    - Expired entries are evicted before any live entry
"""

from __future__ import annotations

import json
import logging
import threading
import time
import warnings
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from recordsync.core.config import CacheConfig
from recordsync.core.errors import OfflineCacheMissError, StaleDataWarning
from recordsync.core.models import MirroredEntry
from recordsync.core.types import CachePriority

if TYPE_CHECKING:
    from recordsync.network import NetworkMonitor
    from recordsync.store import LocalStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ENTRY_SIZE = 1024


def estimate_size(data: Any) -> int:
    """Approximate in-memory size of a value (2 bytes per JSON character)."""
    try:
        return len(json.dumps(data, default=str)) * 2
    except (TypeError, ValueError):
        return DEFAULT_ENTRY_SIZE


class KeyValueStore(Protocol[T]):
    """Minimal keyed storage shared by the cache layers."""

    def get(self, key: str) -> T | None: ...

    def set(self, key: str, value: T) -> None: ...

    def delete(self, key: str) -> bool: ...


class CriticalDataStore:
    """Persistent KeyValueStore over LocalStore's critical data mirror."""

    def __init__(self, store: LocalStore) -> None:
        self._store = store

    def get(self, key: str) -> MirroredEntry | None:
        return self._store.get_critical(key)

    def set(self, key: str, value: MirroredEntry) -> None:
        self._store.save_critical(key, value)

    def delete(self, key: str) -> bool:
        return self._store.remove_critical(key)

    def keys(self) -> list[str]:
        return self._store.list_critical()


@dataclass
class CacheEntry(Generic[T]):
    """Resident cache entry.

    Attributes:
        data: Cached value.
        written_at: Epoch seconds when the value was written.
        ttl: Lifetime in seconds.
        priority: Priority tier.
        size_bytes: Approximate size used for capacity accounting.
        access_count: Number of hits.
        last_accessed_at: Epoch seconds of the latest hit (LRU key).
    """

    data: T
    written_at: float
    ttl: float
    priority: CachePriority
    size_bytes: int
    access_count: int = 0
    last_accessed_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now - self.written_at > self.ttl


@dataclass
class CacheEntryStats:
    key: str
    size_bytes: int
    age: float
    access_count: int
    priority: CachePriority


@dataclass
class CacheStats:
    """Snapshot of cache usage."""

    size_bytes: int
    count: int
    hits: int
    misses: int
    entries: list[CacheEntryStats] = field(default_factory=list)

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class CacheManager(Generic[T]):
    """Size-bounded TTL+LRU cache with durable mirroring of important entries.

    Usage:
        cache = CacheManager(CriticalDataStore(store), network=monitor)
        cache.set("resources:all", resources, ttl=600, priority=CachePriority.HIGH)
        resources = cache.get_or_fetch("resources:all", api.list_resources)
    """

    def __init__(
        self,
        backing: KeyValueStore[MirroredEntry],
        network: NetworkMonitor | None = None,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the cache.

        Args:
            backing: Persistent layer for high/critical entries.
            network: Connectivity monitor for get_or_fetch (None = always online).
            config: Size and TTL defaults.
            clock: Time source (injectable for tests).
        """
        self._backing = backing
        self._network = network
        self._config = config or CacheConfig()
        self._clock = clock

        self._entries: dict[str, CacheEntry[T]] = {}
        self._size = 0
        self._hits = 0
        self._misses = 0
        self._lock = threading.RLock()

    @property
    def max_cache_size(self) -> int:
        return self._config.max_cache_size

    @property
    def size(self) -> int:
        """Current resident size in bytes."""
        return self._size

    def __len__(self) -> int:
        return len(self._entries)

    # === Writes ===

    def set(
        self,
        key: str,
        data: T,
        ttl: float | None = None,
        priority: CachePriority | str | None = None,
    ) -> None:
        """Cache a value.

        High/critical values are also written to the durable mirror.

        Raises:
            LocalStorageError: If mirroring fails.
        """
        ttl = self._config.default_ttl if ttl is None else ttl
        tier = CachePriority(priority) if priority is not None else CachePriority.MEDIUM
        now = self._clock()

        with self._lock:
            self._insert(key, data, now, ttl, tier)

        if tier.is_mirrored:
            self._backing.set(
                key, MirroredEntry(data=data, timestamp=now, ttl=ttl, priority=tier)
            )

    def _insert(
        self,
        key: str,
        data: T,
        written_at: float,
        ttl: float,
        priority: CachePriority,
    ) -> None:
        self._discard(key)

        size = estimate_size(data)
        if size > self._config.max_cache_size:
            logger.warning(
                "Not caching %s in memory: %d bytes exceeds cache size %d",
                key,
                size,
                self._config.max_cache_size,
            )
            return

        self._ensure_space(size)
        self._entries[key] = CacheEntry(
            data=data,
            written_at=written_at,
            ttl=ttl,
            priority=priority,
            size_bytes=size,
            last_accessed_at=self._clock(),
        )
        self._size += size

    def _discard(self, key: str) -> CacheEntry[T] | None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._size -= entry.size_bytes
        return entry

    def _ensure_space(self, required: int) -> None:
        """Make room for an entry: expired entries first, then LRU."""
        limit = self._config.max_cache_size
        if self._size + required <= limit:
            return

        self._purge_expired_locked()

        if self._size + required <= limit:
            return

        by_last_access = sorted(self._entries.items(), key=lambda item: item[1].last_accessed_at)
        for key, _entry in by_last_access:
            self._discard(key)
            logger.debug("Evicted %s (LRU)", key)
            if self._size + required <= limit:
                break

    # === Reads ===

    def get(self, key: str) -> T | None:
        """Get a live value, hydrating from the durable mirror on a miss.

        Returns:
            The cached value, or None on a miss.
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_expired(now):
                self._discard(key)
                entry = None

            if entry is not None:
                entry.access_count += 1
                entry.last_accessed_at = now
                self._hits += 1
                return entry.data

        mirrored = self._backing.get(key)
        if mirrored is not None and not mirrored.is_expired(now):
            with self._lock:
                self._insert(key, mirrored.data, mirrored.timestamp, mirrored.ttl, mirrored.priority)
                self._hits += 1
            logger.debug("Restored %s from durable mirror", key)
            data: T = mirrored.data
            return data

        with self._lock:
            self._misses += 1
        return None

    def has(self, key: str) -> bool:
        """Check for a live resident entry (the mirror is not consulted)."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], T],
        ttl: float | None = None,
        priority: CachePriority | str | None = None,
    ) -> T:
        """Read through the cache, falling back to stale mirrored data.

        Args:
            key: Cache key.
            fetch_fn: Loads a fresh value when online.
            ttl: TTL for the fetched value.
            priority: Priority for the fetched value.

        Returns:
            Cached, fetched or (as a last resort) stale mirrored value.

        Raises:
            OfflineCacheMissError: Offline with nothing cached.
            Exception: Whatever fetch_fn raised, when no mirror exists.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        if self._network is not None and not self._network.is_online():
            stale = self._stale(key, "offline")
            if stale is not None:
                return stale.data
            raise OfflineCacheMissError(f"No cached data available offline for {key}")

        try:
            data = fetch_fn()
        except Exception as e:
            stale = self._stale(key, f"fetch failed: {e}")
            if stale is not None:
                return stale.data
            raise

        self.set(key, data, ttl=ttl, priority=priority)
        return data

    def _stale(self, key: str, reason: str) -> MirroredEntry | None:
        """Look up a mirrored copy regardless of age."""
        mirrored = self._backing.get(key)
        if mirrored is None:
            return None

        if mirrored.is_expired(self._clock()):
            message = f"Serving stale data for {key} ({reason})"
            logger.warning(message)
            warnings.warn(message, StaleDataWarning, stacklevel=3)
        return mirrored

    # === Maintenance ===

    def delete(self, key: str, purge_mirror: bool = False) -> bool:
        """Remove an entry from memory (and optionally from the mirror)."""
        with self._lock:
            removed = self._discard(key) is not None
        if purge_mirror:
            removed = self._backing.delete(key) or removed
        return removed

    def clear(self) -> None:
        """Drop every resident entry. The durable mirror is kept."""
        with self._lock:
            self._entries.clear()
            self._size = 0

    def purge_expired(self) -> int:
        """Remove expired resident entries.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            return self._purge_expired_locked()

    def _purge_expired_locked(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._discard(key)
        if expired:
            logger.debug("Purged %d expired cache entries", len(expired))
        return len(expired)

    def stats(self) -> CacheStats:
        """Get cache statistics, most accessed entries first."""
        now = self._clock()
        with self._lock:
            entries = [
                CacheEntryStats(
                    key=key,
                    size_bytes=entry.size_bytes,
                    age=now - entry.written_at,
                    access_count=entry.access_count,
                    priority=entry.priority,
                )
                for key, entry in self._entries.items()
            ]
            entries.sort(key=lambda e: e.access_count, reverse=True)
            return CacheStats(
                size_bytes=self._size,
                count=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                entries=entries,
            )


class CacheJanitor:
    """Purges expired cache entries on a fixed interval."""

    def __init__(self, cache: CacheManager[Any], interval: float = 60.0) -> None:
        self._cache = cache
        self._interval = interval
        self._scheduler: BackgroundScheduler | None = None

    def _purge_job(self) -> None:
        try:
            self._cache.purge_expired()
        except Exception:
            logger.exception("Error during scheduled cache purge")

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self._purge_job,
            trigger=IntervalTrigger(seconds=self._interval),
            id="cache_purge",
            name="Expired cache purge",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Cache janitor started (every %.0fs)", self._interval)

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Cache janitor stopped")

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def run_now(self) -> int:
        """Purge immediately (manual trigger)."""
        return self._cache.purge_expired()
