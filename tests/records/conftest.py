"""Fixtures for record service tests."""

from __future__ import annotations

from typing import Any

import pytest

from recordsync.network import NetworkMonitor
from recordsync.records import TransactionService, UserDataService
from recordsync.store import LocalStore
from recordsync.sync import SyncManager


def borrow(**overrides: Any) -> dict[str, Any]:
    """Valid transaction input."""
    data: dict[str, Any] = {
        "resource_id": "res-1",
        "user_id": "user-1",
        "type": "borrow",
        "quantity": 2,
        "status": "active",
        "borrower_name": "Juan Dela Cruz",
        "notes": None,
    }
    data.update(overrides)
    return data


def remote_transaction(document_id: str, **overrides: Any) -> dict[str, Any]:
    """A transaction as the remote store returns it."""
    return {
        **borrow(notes="from server"),
        "id": document_id,
        "created_at": "2023-01-01T00:00:00+00:00",
        "updated_at": "2023-01-01T00:00:00+00:00",
        **overrides,
    }


@pytest.fixture
def service(
    store: LocalStore,
    remote,  # type: ignore[no-untyped-def]
    sync_manager: SyncManager,
    monitor: NetworkMonitor,
    clock,  # type: ignore[no-untyped-def]
    sleeper,  # type: ignore[no-untyped-def]
) -> TransactionService:
    return TransactionService(store, remote, sync_manager, monitor, clock=clock, sleep=sleeper)


@pytest.fixture
def users(
    store: LocalStore,
    remote,  # type: ignore[no-untyped-def]
    sync_manager: SyncManager,
    monitor: NetworkMonitor,
    clock,  # type: ignore[no-untyped-def]
    sleeper,  # type: ignore[no-untyped-def]
) -> UserDataService:
    return UserDataService(store, remote, sync_manager, monitor, clock=clock, sleep=sleeper)
