"""Shared fixtures: an in-memory remote store, a fake clock and wired components."""

from __future__ import annotations

import copy
import threading
from collections import defaultdict
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

from recordsync.core.errors import RemoteNotFoundError
from recordsync.network import NetworkMonitor, NetworkState
from recordsync.store import LocalStore
from recordsync.sync import SyncManager

Snapshot = list[dict[str, Any]]


class FakeRemoteStore:
    """In-memory RemoteStore that records every call.

    Failures can be scripted per method:
        remote.fail("create", TransientNetworkError("down"))   # next call only
        remote.fail_always("update", PermissionDeniedError("no"))
        remote.recover()
    """

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.calls: list[tuple[Any, ...]] = []
        self.authenticated = True

        self._errors: dict[str, list[Exception]] = defaultdict(list)
        self._persistent: dict[str, Exception] = {}
        self._subscribers: dict[str, list[Callable[[Snapshot], None]]] = defaultdict(list)

        # Set ``block`` to hold every call until it is set; ``entered`` fires
        # when a call is waiting.
        self.block: threading.Event | None = None
        self.entered = threading.Event()

    # === Scripting ===

    def fail(self, method: str, *errors: Exception) -> None:
        self._errors[method].extend(errors)

    def fail_always(self, method: str, error: Exception) -> None:
        self._persistent[method] = error

    def recover(self) -> None:
        self._errors.clear()
        self._persistent.clear()

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == method]

    def _call(self, method: str, *args: Any) -> None:
        self.calls.append((method, *args))
        if self.block is not None:
            self.entered.set()
            self.block.wait(timeout=5.0)
        if self._errors[method]:
            raise self._errors[method].pop(0)
        if method in self._persistent:
            raise self._persistent[method]

    # === RemoteStore ===

    def is_authenticated(self) -> bool:
        return self.authenticated

    def create(self, collection: str, document_id: str | None, payload: dict[str, Any]) -> str:
        self._call("create", collection, document_id, copy.deepcopy(payload))
        if document_id is None:
            document_id = f"remote-{len(self.collections[collection]) + 1}"
        self.collections[collection][document_id] = {**copy.deepcopy(payload), "id": document_id}
        self._notify(collection)
        return document_id

    def update(self, collection: str, document_id: str, payload: dict[str, Any]) -> None:
        self._call("update", collection, document_id, copy.deepcopy(payload))
        if document_id not in self.collections[collection]:
            raise RemoteNotFoundError("Document not found", 404)
        self.collections[collection][document_id].update(copy.deepcopy(payload))
        self._notify(collection)

    def delete(self, collection: str, document_id: str) -> None:
        self._call("delete", collection, document_id)
        if self.collections[collection].pop(document_id, None) is None:
            raise RemoteNotFoundError("Document not found", 404)
        self._notify(collection)

    def get(self, collection: str, document_id: str) -> dict[str, Any] | None:
        self._call("get", collection, document_id)
        document = self.collections[collection].get(document_id)
        return copy.deepcopy(document) if document is not None else None

    def list(self, collection: str) -> Snapshot:
        self._call("list", collection)
        return [copy.deepcopy(doc) for doc in self.collections[collection].values()]

    def subscribe(self, collection: str, callback: Callable[[Snapshot], None]) -> Callable[[], None]:
        self._subscribers[collection].append(callback)
        callback(self.list(collection))

        def unsubscribe() -> None:
            if callback in self._subscribers[collection]:
                self._subscribers[collection].remove(callback)

        return unsubscribe

    def _notify(self, collection: str) -> None:
        snapshot = [copy.deepcopy(doc) for doc in self.collections[collection].values()]
        for callback in list(self._subscribers[collection]):
            callback(snapshot)

    # === Test helpers ===

    def seed(self, collection: str, *documents: dict[str, Any]) -> None:
        """Put documents on the remote side without recording a call."""
        for document in documents:
            self.collections[collection][document["id"]] = copy.deepcopy(document)


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Sleep replacement that returns immediately and keeps the delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def store(tmp_path: Path) -> Generator[LocalStore, None, None]:
    """Create a LocalStore in a temporary directory."""
    s = LocalStore(tmp_path / "offline.db")
    yield s
    s.close()


@pytest.fixture
def monitor() -> NetworkMonitor:
    """Monitor that starts online; flip it with set_state()."""
    return NetworkMonitor(initial_state=NetworkState.online("wifi"))


@pytest.fixture
def sync_manager(
    store: LocalStore,
    remote: FakeRemoteStore,
    monitor: NetworkMonitor,
    clock: FakeClock,
    sleeper: SleepRecorder,
) -> SyncManager:
    return SyncManager(
        store,
        remote,
        monitor,
        is_authenticated=remote.is_authenticated,
        clock=clock,
        sleep=sleeper,
    )
