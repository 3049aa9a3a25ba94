"""Wiring of the offline engine.

This module provides:
- OfflineEngine: builds the local store, network monitor, sync manager,
  cache and record services from one EngineConfig and runs their
  background parts

Architecture:
    TransactionService ─┐
    UserDataService ────┼─► LocalStore ◄── SyncManager ──► RemoteStore
                        │                       ▲
    CacheManager ───────┘ (critical mirror)     │ (auto-sync on reconnect)
                                          NetworkMonitor
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from recordsync.cache import CacheJanitor, CacheManager, CriticalDataStore
from recordsync.network import NetworkMonitor, NetworkState, http_probe
from recordsync.records import TransactionService, UserDataService
from recordsync.remote import HttpRemoteStore
from recordsync.store import LocalStore
from recordsync.sync import SyncManager, SyncStatus

if TYPE_CHECKING:
    from recordsync.core.config import EngineConfig
    from recordsync.core.models import StorageInfo
    from recordsync.network import Probe
    from recordsync.remote.base import RemoteStore

logger = logging.getLogger(__name__)


class OfflineEngine:
    """Everything needed to read and write records with or without a connection.

    Usage:
        config = EngineConfig.from_dict(load_config())
        with OfflineEngine(config) as engine:
            engine.transactions.create_transaction({...})
            print(engine.status().pending_operations_count)
    """

    def __init__(
        self,
        config: EngineConfig,
        remote: RemoteStore | None = None,
        probe: Probe | None = None,
        is_authenticated: Callable[[], bool] | None = None,
        initial_state: NetworkState | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Engine configuration.
            remote: Remote store (default: HttpRemoteStore from config.remote).
            probe: Connectivity probe (default: the server's health endpoint).
            is_authenticated: Auth check (default: the remote store's own).
            initial_state: Starting network state (default: unknown).
            clock: Time source shared by all components.
            sleep: Sleep function used between retries.

        Raises:
            ValueError: If neither ``remote`` nor ``config.remote`` is given.
        """
        if remote is None:
            if config.remote is None:
                raise ValueError("No remote store configured")
            remote = HttpRemoteStore(config.remote)
            self._owns_remote = True
        else:
            self._owns_remote = False

        if probe is None and config.remote is not None:
            probe = http_probe(config.remote.health_url, verify_ssl=config.remote.verify_ssl)

        if is_authenticated is None:
            is_authenticated = getattr(remote, "is_authenticated", lambda: True)

        self.config = config
        self.remote = remote
        self._polls_network = probe is not None

        config.data_dir.mkdir(parents=True, exist_ok=True)
        self.store = LocalStore(config.db_path, quota_bytes=config.quota_bytes)
        self.network = NetworkMonitor(
            probe=probe,
            poll_interval=config.poll_interval,
            initial_state=initial_state,
        )
        self.sync = SyncManager(
            self.store,
            remote,
            self.network,
            is_authenticated=is_authenticated,
            retry_policy=config.retry,
            clock=clock,
            sleep=sleep,
        )

        self.critical = CriticalDataStore(self.store)
        self.cache: CacheManager[Any] = CacheManager(
            self.critical,
            network=self.network,
            config=config.cache,
            clock=clock,
        )
        self.janitor = CacheJanitor(self.cache, interval=config.cache.cleanup_interval)

        self.transactions = TransactionService(
            self.store, remote, self.sync, self.network, config.retry, clock, sleep
        )
        self.users = UserDataService(
            self.store, remote, self.sync, self.network, config.retry, clock, sleep
        )

        self._stop_auto_sync: Callable[[], None] | None = None

    @property
    def running(self) -> bool:
        return self._stop_auto_sync is not None

    def start(self) -> None:
        """Start connectivity polling, cache cleanup and auto-sync."""
        if self.running:
            return
        self._stop_auto_sync = self.sync.start_auto_sync()
        if self._polls_network:
            self.network.start()
        self.janitor.start()
        logger.info("Offline engine started (data: %s)", self.config.data_dir)

    def stop(self) -> None:
        """Stop background work. The engine can still be used synchronously."""
        if self._stop_auto_sync is None:
            return
        self._stop_auto_sync()
        self._stop_auto_sync = None
        self.janitor.stop()
        self.network.stop()
        self.sync.join_auto_sync(timeout=5.0)
        logger.info("Offline engine stopped")

    def close(self) -> None:
        """Stop background work and release the database and HTTP client."""
        self.stop()
        self.store.close()
        if self._owns_remote and isinstance(self.remote, HttpRemoteStore):
            self.remote.close()

    def __enter__(self) -> OfflineEngine:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def status(self) -> SyncStatus:
        return self.sync.get_sync_status()

    def storage_info(self) -> StorageInfo:
        return self.store.storage_info()
