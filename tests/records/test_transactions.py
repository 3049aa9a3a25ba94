"""Tests for the local-first transaction service."""

from __future__ import annotations

import re

import pytest

from recordsync.core.errors import (
    PermissionDeniedError,
    RecordNotFoundError,
    TransientNetworkError,
    ValidationError,
)
from recordsync.core.types import OperationType
from recordsync.network import NetworkMonitor, NetworkState
from recordsync.records import (
    MultiTransactionRecord,
    TransactionRecord,
    TransactionService,
    TransactionStatus,
    TransactionType,
)
from recordsync.store import LocalStore
from recordsync.sync import SyncManager
from tests.conftest import FakeClock, FakeRemoteStore, SleepRecorder
from tests.records.conftest import borrow, remote_transaction

LOCAL_ID = re.compile(r"^txn_\d{13}_[0-9a-z]{9}$")


class TestOfflineCreate:
    """Creating while offline, then syncing on reconnect."""

    def test_offline_create_then_drain(
        self,
        service: TransactionService,
        sync_manager: SyncManager,
        monitor: NetworkMonitor,
        remote: FakeRemoteStore,
    ) -> None:
        """The record is usable at once and reaches the remote store on drain."""
        monitor.set_state(NetworkState.offline())

        transaction_id = service.create_transaction(borrow())

        assert LOCAL_ID.match(transaction_id)
        assert sync_manager.pending_count() == 1
        assert remote.calls == []
        local = service.get_transaction(transaction_id)
        assert local is not None
        assert local.borrower_name == "Juan Dela Cruz"

        monitor.set_state(NetworkState.online())
        result = sync_manager.drain()

        assert result.success is True
        assert result.synced_count == 1
        assert sync_manager.pending_count() == 0
        creates = remote.calls_to("create")
        assert len(creates) == 1
        _, collection, document_id, payload = creates[0]
        assert collection == "transactions"
        assert document_id == transaction_id
        assert payload["resource_id"] == "res-1"
        assert payload["quantity"] == 2
        assert "notes" not in payload

    def test_queued_payload_matches_local_record(
        self, service: TransactionService, monitor: NetworkMonitor, store: LocalStore
    ) -> None:
        monitor.set_state(NetworkState.offline())

        transaction_id = service.create_transaction(borrow())

        operation = store.list_pending()[0]
        assert operation.type is OperationType.CREATE
        assert operation.collection == "transactions"
        assert operation.document_id == transaction_id
        assert operation.payload["id"] == transaction_id
        assert operation.payload["created_at"] == "2023-11-14T22:13:20+00:00"

    def test_not_authenticated_queues(
        self, service: TransactionService, remote: FakeRemoteStore, sync_manager: SyncManager
    ) -> None:
        remote.authenticated = False

        service.create_transaction(borrow())

        assert remote.calls == []
        assert sync_manager.pending_count() == 1


class TestOnlineCreate:
    """Creating while the remote store is reachable."""

    def test_pushes_immediately(
        self, service: TransactionService, remote: FakeRemoteStore, sync_manager: SyncManager
    ) -> None:
        transaction_id = service.create_transaction(borrow())

        assert remote.calls_to("create")[0][2] == transaction_id
        assert transaction_id in remote.collections["transactions"]
        assert sync_manager.pending_count() == 0

    def test_defaults(self, service: TransactionService) -> None:
        data = borrow()
        del data["status"], data["type"]

        transaction = service.get_transaction(service.create_transaction(data))

        assert transaction is not None
        assert transaction.status is TransactionStatus.PENDING
        assert transaction.type is TransactionType.BORROW

    def test_accepts_enum_members(self, service: TransactionService) -> None:
        transaction_id = service.create_transaction(
            borrow(type=TransactionType.CHECKOUT, status=TransactionStatus.APPROVED)
        )

        transaction = service.get_transaction(transaction_id)
        assert transaction is not None
        assert transaction.type is TransactionType.CHECKOUT

    def test_transient_failure_falls_back_to_queue(
        self,
        service: TransactionService,
        remote: FakeRemoteStore,
        sync_manager: SyncManager,
        sleeper: SleepRecorder,
    ) -> None:
        """Once retries are used up the write is queued, not lost."""
        remote.fail_always("create", TransientNetworkError("503"))

        transaction_id = service.create_transaction(borrow())

        assert len(remote.calls_to("create")) == 4
        assert sleeper.delays == [0.5, 1.0, 2.0]
        assert service.get_transaction(transaction_id) is not None
        assert sync_manager.pending_operations()[0].document_id == transaction_id

    @pytest.mark.parametrize(
        "error", [PermissionDeniedError("denied"), ValidationError("rejected by server")]
    )
    def test_remote_rejection_is_raised_and_rolled_back(
        self,
        service: TransactionService,
        remote: FakeRemoteStore,
        sync_manager: SyncManager,
        store: LocalStore,
        error: Exception,
    ) -> None:
        remote.fail("create", error)

        with pytest.raises(type(error)):
            service.create_transaction(borrow())

        assert store.get_all("transactions") == []
        assert sync_manager.pending_count() == 0


class TestValidation:
    """Tests for input validation."""

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"resource_id": ""}, "Resource ID is required"),
            ({"user_id": None}, "User ID is required"),
            ({"quantity": 0}, "Valid quantity is required"),
            ({"quantity": -1}, "Valid quantity is required"),
            ({"quantity": "2"}, "Valid quantity is required"),
            ({"quantity": True}, "Valid quantity is required"),
            ({"borrower_name": ""}, "Borrower name is required"),
            ({"type": "steal"}, "Invalid transaction type"),
            ({"status": "lost"}, "Invalid transaction status"),
            ({"returned_condition": "broken"}, "Invalid resource condition"),
        ],
    )
    def test_invalid_input(
        self,
        service: TransactionService,
        remote: FakeRemoteStore,
        store: LocalStore,
        sync_manager: SyncManager,
        overrides: dict,
        message: str,
    ) -> None:
        """Invalid input is rejected before anything is stored or sent."""
        with pytest.raises(ValidationError, match=message):
            service.create_transaction(borrow(**overrides))

        assert remote.calls == []
        assert store.get_all("transactions") == []
        assert sync_manager.pending_count() == 0

    def test_missing_field(self, service: TransactionService) -> None:
        data = borrow()
        del data["resource_id"]

        with pytest.raises(ValidationError, match="Resource ID is required"):
            service.create_transaction(data)


class TestUpdate:
    """Tests for update_transaction."""

    def test_online_update(
        self, service: TransactionService, remote: FakeRemoteStore, clock: FakeClock
    ) -> None:
        transaction_id = service.create_transaction(borrow())
        clock.advance(60)

        updated = service.update_transaction(
            transaction_id, {"status": "completed", "returned_quantity": 2}
        )

        assert isinstance(updated, TransactionRecord)
        assert updated.status is TransactionStatus.COMPLETED
        assert updated.updated_at == "2023-11-14T22:14:20+00:00"
        assert updated.created_at == "2023-11-14T22:13:20+00:00"
        assert remote.collections["transactions"][transaction_id]["status"] == "completed"
        assert service.get_transaction(transaction_id).returned_quantity == 2

    def test_offline_update_queues_full_record(
        self,
        service: TransactionService,
        monitor: NetworkMonitor,
        store: LocalStore,
    ) -> None:
        transaction_id = service.create_transaction(borrow())
        monitor.set_state(NetworkState.offline())

        service.update_transaction(transaction_id, {"status": "completed"})

        operation = store.list_pending()[0]
        assert operation.type is OperationType.UPDATE
        assert operation.payload["status"] == "completed"
        assert operation.payload["resource_id"] == "res-1"
        assert service.get_transaction(transaction_id).status is TransactionStatus.COMPLETED

    def test_update_after_offline_create_syncs_in_order(
        self,
        service: TransactionService,
        monitor: NetworkMonitor,
        sync_manager: SyncManager,
        remote: FakeRemoteStore,
    ) -> None:
        monitor.set_state(NetworkState.offline())
        transaction_id = service.create_transaction(borrow())
        service.update_transaction(transaction_id, {"status": "completed"})
        monitor.set_state(NetworkState.online())

        result = sync_manager.drain()

        assert result.synced_count == 2
        assert [call[0] for call in remote.calls] == ["create", "update"]
        assert remote.collections["transactions"][transaction_id]["status"] == "completed"

    def test_id_cannot_change(self, service: TransactionService) -> None:
        transaction_id = service.create_transaction(borrow())

        updated = service.update_transaction(transaction_id, {"id": "other", "quantity": 5})

        assert updated.id == transaction_id
        assert updated.quantity == 5

    def test_invalid_update_is_rejected(self, service: TransactionService) -> None:
        transaction_id = service.create_transaction(borrow())

        with pytest.raises(ValidationError):
            service.update_transaction(transaction_id, {"quantity": 0})

        assert service.get_transaction(transaction_id).quantity == 2

    def test_missing_record(self, service: TransactionService) -> None:
        with pytest.raises(RecordNotFoundError):
            service.update_transaction("txn_missing", {"status": "completed"})

    def test_remote_rejection_restores_previous(
        self, service: TransactionService, remote: FakeRemoteStore
    ) -> None:
        transaction_id = service.create_transaction(borrow())
        remote.fail("update", PermissionDeniedError("read only"))

        with pytest.raises(PermissionDeniedError):
            service.update_transaction(transaction_id, {"status": "cancelled"})

        assert service.get_transaction(transaction_id).status is TransactionStatus.ACTIVE


class TestReads:
    """Tests for local-first reads."""

    def test_get_prefers_local(self, service: TransactionService, remote: FakeRemoteStore) -> None:
        transaction_id = service.create_transaction(borrow())
        remote.calls.clear()

        assert service.get_transaction(transaction_id) is not None
        assert remote.calls == []

    def test_get_falls_back_to_remote_and_caches(
        self, service: TransactionService, remote: FakeRemoteStore, store: LocalStore
    ) -> None:
        remote.seed("transactions", remote_transaction("srv-1"))

        transaction = service.get_transaction("srv-1")

        assert transaction is not None
        assert transaction.notes == "from server"
        assert store.get_by_id("transactions", "srv-1") is not None

    def test_get_offline_miss(
        self, service: TransactionService, monitor: NetworkMonitor, remote: FakeRemoteStore
    ) -> None:
        remote.seed("transactions", remote_transaction("srv-1"))
        monitor.set_state(NetworkState.offline())

        assert service.get_transaction("srv-1") is None
        assert remote.calls == []

    def test_get_remote_failure_returns_none(
        self, service: TransactionService, remote: FakeRemoteStore
    ) -> None:
        remote.fail_always("get", TransientNetworkError("down"))

        assert service.get_transaction("srv-1") is None

    def test_get_all_newest_first(self, service: TransactionService, clock: FakeClock) -> None:
        first = service.create_transaction(borrow())
        clock.advance(10)
        second = service.create_transaction(borrow(user_id="user-2"))

        assert [t.id for t in service.get_all_transactions()] == [second, first]

    def test_get_all_fetches_when_empty(
        self, service: TransactionService, remote: FakeRemoteStore, store: LocalStore
    ) -> None:
        remote.seed("transactions", remote_transaction("a"), remote_transaction("b"))

        assert {t.id for t in service.get_all_transactions()} == {"a", "b"}
        assert len(store.get_all("transactions")) == 2

    def test_get_all_offline_empty(
        self, service: TransactionService, monitor: NetworkMonitor
    ) -> None:
        monitor.set_state(NetworkState.offline())

        assert service.get_all_transactions() == []

    def test_filters(self, service: TransactionService) -> None:
        service.create_transaction(borrow(user_id="ana", status="active"))
        service.create_transaction(borrow(user_id="ana", status="completed"))
        service.create_transaction(borrow(user_id="ben", status="active"))

        assert len(service.get_transactions_by_user("ana")) == 2
        assert {t.user_id for t in service.get_active_transactions()} == {"ana", "ben"}
        assert all(t.is_active for t in service.get_active_transactions())


class TestDelete:
    def test_offline_delete_is_queued(
        self,
        service: TransactionService,
        monitor: NetworkMonitor,
        sync_manager: SyncManager,
        remote: FakeRemoteStore,
    ) -> None:
        transaction_id = service.create_transaction(borrow())
        monitor.set_state(NetworkState.offline())

        service.delete_transaction(transaction_id)

        assert service.get_transaction(transaction_id) is None
        assert sync_manager.pending_operations()[0].type is OperationType.DELETE

        monitor.set_state(NetworkState.online())
        sync_manager.drain()
        assert transaction_id not in remote.collections["transactions"]

    def test_online_delete(self, service: TransactionService, remote: FakeRemoteStore) -> None:
        transaction_id = service.create_transaction(borrow())

        service.delete_transaction(transaction_id)

        assert transaction_id not in remote.collections["transactions"]


class TestWriteOrdering:
    """Writes to a record with queued operations wait behind them."""

    def test_online_delete_after_offline_create(
        self,
        service: TransactionService,
        monitor: NetworkMonitor,
        remote: FakeRemoteStore,
        sync_manager: SyncManager,
    ) -> None:
        monitor.set_state(NetworkState.offline())
        transaction_id = service.create_transaction(borrow())
        monitor.set_state(NetworkState.online())

        service.delete_transaction(transaction_id)

        assert remote.calls == []
        assert [op.type for op in sync_manager.pending_operations()] == [
            OperationType.CREATE,
            OperationType.DELETE,
        ]

        result = sync_manager.drain()

        assert result.synced_count == 2
        assert transaction_id not in remote.collections["transactions"]
        assert service.get_transaction(transaction_id) is None

    def test_online_update_after_offline_update(
        self,
        service: TransactionService,
        monitor: NetworkMonitor,
        remote: FakeRemoteStore,
        sync_manager: SyncManager,
    ) -> None:
        """The latest update wins on the remote store, as it does locally."""
        transaction_id = service.create_transaction(borrow())
        monitor.set_state(NetworkState.offline())
        service.update_transaction(transaction_id, {"status": "completed"})
        monitor.set_state(NetworkState.online())

        service.update_transaction(transaction_id, {"status": "cancelled"})

        assert remote.collections["transactions"][transaction_id]["status"] == "active"
        sync_manager.drain()
        assert remote.collections["transactions"][transaction_id]["status"] == "cancelled"
        assert service.get_transaction(transaction_id).status is TransactionStatus.CANCELLED

    def test_other_records_still_push_immediately(
        self,
        service: TransactionService,
        monitor: NetworkMonitor,
        remote: FakeRemoteStore,
    ) -> None:
        monitor.set_state(NetworkState.offline())
        service.create_transaction(borrow())
        monitor.set_state(NetworkState.online())

        other_id = service.create_transaction(borrow(user_id="user-2"))

        assert other_id in remote.collections["transactions"]


class TestRemoteSnapshots:
    """Tests for refresh_from_remote and subscriptions."""

    def test_refresh_keeps_unsynced_records(
        self,
        service: TransactionService,
        monitor: NetworkMonitor,
        remote: FakeRemoteStore,
    ) -> None:
        """A refresh must not wipe records that have not reached the server."""
        monitor.set_state(NetworkState.offline())
        local_id = service.create_transaction(borrow())
        remote.seed("transactions", remote_transaction("srv-1"))
        monitor.set_state(NetworkState.online())

        assert service.refresh_from_remote() == 2
        assert {t.id for t in service.get_all_transactions()} == {local_id, "srv-1"}

    def test_refresh_drops_synced_records_gone_remotely(
        self, service: TransactionService, remote: FakeRemoteStore, store: LocalStore
    ) -> None:
        transaction_id = service.create_transaction(borrow())
        remote.collections["transactions"].clear()

        service.refresh_from_remote()

        assert store.get_by_id("transactions", transaction_id) is None

    def test_refresh_keeps_unsynced_update(
        self,
        service: TransactionService,
        remote: FakeRemoteStore,
        sync_manager: SyncManager,
    ) -> None:
        """An older remote copy must not replace a queued local edit."""
        transaction_id = service.create_transaction(borrow())
        remote.fail_always("update", TransientNetworkError("503"))
        service.update_transaction(transaction_id, {"status": "completed"})
        remote.recover()

        service.refresh_from_remote()

        assert service.get_transaction(transaction_id).status is TransactionStatus.COMPLETED
        assert sync_manager.pending_count() == 1

        service.update_transaction(transaction_id, {"notes": "returned early"})
        sync_manager.drain()
        synced = remote.collections["transactions"][transaction_id]
        assert synced["status"] == "completed"
        assert synced["notes"] == "returned early"

    def test_refresh_does_not_restore_unsynced_delete(
        self,
        service: TransactionService,
        monitor: NetworkMonitor,
        store: LocalStore,
    ) -> None:
        transaction_id = service.create_transaction(borrow())
        monitor.set_state(NetworkState.offline())
        service.delete_transaction(transaction_id)
        monitor.set_state(NetworkState.online())

        service.refresh_from_remote()

        assert store.get_by_id("transactions", transaction_id) is None
        assert service.get_transaction(transaction_id) is None

    def test_refresh_offline(self, service: TransactionService, monitor: NetworkMonitor) -> None:
        monitor.set_state(NetworkState.offline())

        assert service.refresh_from_remote() == 0

    def test_subscribe_offline_gets_cache_once(
        self, service: TransactionService, monitor: NetworkMonitor
    ) -> None:
        service.create_transaction(borrow())
        monitor.set_state(NetworkState.offline())
        snapshots: list[list[TransactionRecord]] = []

        unsubscribe = service.subscribe_transactions(snapshots.append)
        unsubscribe()

        assert len(snapshots) == 1
        assert len(snapshots[0]) == 1

    def test_subscribe_online_follows_remote(
        self, service: TransactionService, remote: FakeRemoteStore, store: LocalStore
    ) -> None:
        """Every remote snapshot replaces the local namespace."""
        remote.seed("transactions", remote_transaction("srv-1"))
        snapshots: list[list[TransactionRecord]] = []

        unsubscribe = service.subscribe_transactions(snapshots.append)
        remote.create("transactions", "srv-2", remote_transaction("srv-2"))
        unsubscribe()
        remote.create("transactions", "srv-3", remote_transaction("srv-3"))

        assert [[t.id for t in snapshot] for snapshot in snapshots] == [
            ["srv-1"],
            ["srv-1", "srv-2"],
        ]
        assert [r["id"] for r in store.get_all("transactions")] == ["srv-1", "srv-2"]


class TestMultiTransactions:
    """Tests for multi-resource transactions."""

    def _multi(self, **overrides):  # type: ignore[no-untyped-def]
        data = {
            "user_id": "user-1",
            "borrower_name": "Juan",
            "type": "borrow",
            "status": "active",
            "items": [
                {"resource_id": "res-1", "quantity": 1},
                {"resource_id": "res-2", "quantity": 3, "status": "pending"},
            ],
        }
        data.update(overrides)
        return data

    def test_create_and_get(self, service: TransactionService, remote: FakeRemoteStore) -> None:
        transaction_id = service.create_multi_transaction(self._multi())

        record = service.get_multi_transaction(transaction_id)

        assert isinstance(record, MultiTransactionRecord)
        assert LOCAL_ID.match(transaction_id)
        assert record.total_quantity == 4
        assert [item.status for item in record.items] == [
            TransactionStatus.ACTIVE,
            TransactionStatus.PENDING,
        ]
        assert all(item.id for item in record.items)
        assert transaction_id in remote.collections["multi_transactions"]

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"user_id": ""}, "User ID is required"),
            ({"borrower_name": None}, "Borrower name is required"),
            ({"items": []}, "At least one item is required"),
            ({"items": [{"resource_id": "", "quantity": 1}]}, "Item 1: Resource ID is required"),
            ({"items": [{"resource_id": "r", "quantity": 0}]}, "Item 1: Valid quantity is required"),
        ],
    )
    def test_validation(
        self, service: TransactionService, overrides: dict, message: str
    ) -> None:
        with pytest.raises(ValidationError, match=message):
            service.create_multi_transaction(self._multi(**overrides))

    def test_offline_create_and_update(
        self,
        service: TransactionService,
        monitor: NetworkMonitor,
        sync_manager: SyncManager,
        remote: FakeRemoteStore,
    ) -> None:
        monitor.set_state(NetworkState.offline())
        transaction_id = service.create_multi_transaction(self._multi())

        updated = service.update_multi_transaction(
            transaction_id, {"items": [{"resource_id": "res-9", "quantity": 2}]}
        )

        assert [item.resource_id for item in updated.items] == ["res-9"]
        assert updated.items[0].status is TransactionStatus.ACTIVE
        assert sync_manager.pending_count() == 2

        monitor.set_state(NetworkState.online())
        assert sync_manager.drain().synced_count == 2
        items = remote.collections["multi_transactions"][transaction_id]["items"]
        assert items[0]["resource_id"] == "res-9"

    def test_get_all(self, service: TransactionService, clock: FakeClock) -> None:
        first = service.create_multi_transaction(self._multi())
        clock.advance(1)
        second = service.create_multi_transaction(self._multi())

        assert [r.id for r in service.get_all_multi_transactions()] == [second, first]
