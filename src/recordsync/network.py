"""Connectivity monitoring.

This module provides:
- NetworkState: snapshot of the current connection
- NetworkMonitor: synchronous ``is_online()`` plus change subscriptions
- http_probe: health-endpoint probe built on httpx

Connectivity can be fed three ways:
- ``set_state()`` from whatever platform signal the host application has
- ``check_connection()`` to run the probe once on demand
- ``start()`` to poll the probe from a background thread

Subscribers are invoked on every transition (at least once); a subscriber
that raises is logged and does not affect the others.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from recordsync.core.config import DEFAULT_POLL_INTERVAL

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkState:
    """Connection snapshot.

    Attributes:
        is_connected: A network interface is up.
        is_internet_reachable: The remote side answered (None = unknown).
        connection_type: Free-form type such as "wifi" or "cellular".
    """

    is_connected: bool
    is_internet_reachable: bool | None = None
    connection_type: str | None = None

    @property
    def is_online(self) -> bool:
        return self.is_connected and self.is_internet_reachable is True

    @classmethod
    def online(cls, connection_type: str | None = None) -> NetworkState:
        return cls(is_connected=True, is_internet_reachable=True, connection_type=connection_type)

    @classmethod
    def offline(cls) -> NetworkState:
        return cls(is_connected=False, is_internet_reachable=False)


NetworkListener = Callable[[NetworkState], None]
Probe = Callable[[], bool]


def http_probe(url: str, timeout: float = 5.0, verify_ssl: bool = True) -> Probe:
    """Build a probe that checks a health endpoint.

    Args:
        url: Health endpoint URL.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates.

    Returns:
        Callable returning True when the endpoint answers 200.
    """

    def probe() -> bool:
        try:
            response = httpx.get(url, timeout=timeout, verify=verify_ssl)
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    return probe


class NetworkMonitor:
    """Tracks connectivity and notifies subscribers on transitions.

    Usage:
        monitor = NetworkMonitor(probe=http_probe("https://records.example.com/health"))
        unsubscribe = monitor.subscribe(lambda state: print(state.is_online))
        monitor.start()
        ...
        monitor.stop()
        unsubscribe()
    """

    def __init__(
        self,
        probe: Probe | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        initial_state: NetworkState | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            probe: Connectivity check used by check_connection() and polling.
            poll_interval: Seconds between probes when started.
            initial_state: Starting state (default: unknown, i.e. offline).
        """
        self._probe = probe
        self._poll_interval = poll_interval
        self._state: NetworkState | None = initial_state
        self._listeners: dict[int, NetworkListener] = {}
        self._next_token = 0
        self._lock = threading.RLock()

        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    @property
    def state(self) -> NetworkState | None:
        """Get the last known state (None before the first report)."""
        return self._state

    def is_online(self) -> bool:
        """Check connectivity without blocking."""
        state = self._state
        return state is not None and state.is_online

    def is_slow_connection(self) -> bool:
        """Check if the current connection is cellular."""
        state = self._state
        return state is not None and state.is_online and state.connection_type == "cellular"

    def subscribe(self, listener: NetworkListener) -> Callable[[], None]:
        """Register a transition listener.

        Returns:
            Function that removes the listener.
        """
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._listeners[token] = listener

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return unsubscribe

    def set_state(self, state: NetworkState) -> None:
        """Report a new connectivity state.

        Listeners are notified only if the state changed.
        """
        with self._lock:
            changed = state != self._state
            self._state = state
        if changed:
            logger.info("Network is now %s", "online" if state.is_online else "offline")
            self._notify(state)

    def check_connection(self) -> bool:
        """Run the probe once, store and broadcast the result.

        Listeners are always notified, even if nothing changed.

        Returns:
            True if online after the check.
        """
        if self._probe is None:
            return self.is_online()

        try:
            reachable = bool(self._probe())
        except Exception as e:
            logger.warning("Connectivity probe failed: %s", e)
            reachable = False

        state = NetworkState(
            is_connected=reachable,
            is_internet_reachable=reachable,
            connection_type=self._state.connection_type if self._state else None,
        )
        with self._lock:
            self._state = state
        self._notify(state)
        return state.is_online

    def _notify(self, state: NetworkState) -> None:
        with self._lock:
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("Network listener failed")

    # === Background polling ===

    def start(self) -> None:
        """Start polling the probe in a background thread."""
        if self._probe is None:
            raise RuntimeError("NetworkMonitor needs a probe to poll")
        if self._thread and self._thread.is_alive():
            logger.warning("NetworkMonitor already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            name="NetworkMonitor",
            daemon=True,
        )
        self._thread.start()
        logger.info("NetworkMonitor started (every %.0fs)", self._poll_interval)

    def stop(self) -> None:
        """Stop the polling thread."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None
            logger.info("NetworkMonitor stopped")

    def _poll_loop(self) -> None:
        assert self._probe is not None
        while not self._stop_event.is_set():
            try:
                reachable = bool(self._probe())
            except Exception as e:
                logger.debug("Connectivity probe failed: %s", e)
                reachable = False

            previous = self._state
            self.set_state(
                NetworkState(
                    is_connected=reachable,
                    is_internet_reachable=reachable,
                    connection_type=previous.connection_type if previous else None,
                )
            )
            self._stop_event.wait(self._poll_interval)
