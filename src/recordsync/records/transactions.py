"""Resource transactions (borrow, return, ...) with offline support.

This module provides:
- TransactionRecord / MultiTransactionRecord: typed views of stored records
- TransactionService: create/update/read that work with or without a
  connection, built on RecordRepository
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import TYPE_CHECKING, Any

from recordsync.core.errors import ValidationError
from recordsync.core.types import Namespace
from recordsync.records.base import RecordRepository
from recordsync.records.ids import generate_item_id

if TYPE_CHECKING:
    from recordsync.core.config import RetryPolicy
    from recordsync.network import NetworkMonitor
    from recordsync.remote.base import RemoteStore
    from recordsync.store import LocalStore
    from recordsync.sync.manager import SyncManager

logger = logging.getLogger(__name__)

TRANSACTIONS_COLLECTION = "transactions"
MULTI_TRANSACTIONS_COLLECTION = "multi_transactions"


class TransactionType(str, Enum):
    BORROW = "borrow"
    RETURN = "return"
    CHECKOUT = "checkout"
    CHECKIN = "checkin"
    TRANSFER = "transfer"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    OVERDUE = "overdue"


class ResourceCondition(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    NEEDS_REPAIR = "needs_repair"


def _enum_value(enum: type[Enum], value: Any, label: str) -> Any:
    """Normalize an enum member or raw string, rejecting unknown values."""
    if value is None:
        return None
    try:
        return enum(value).value
    except ValueError:
        raise ValidationError(f"Invalid {label}: {value}") from None


def _known_fields(cls: type, data: Mapping[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _is_positive_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


@dataclass
class TransactionRecord:
    """A single-resource transaction.

    Dates are ISO 8601 strings, as stored.
    """

    id: str
    resource_id: str
    user_id: str
    type: TransactionType
    quantity: int
    status: TransactionStatus
    borrower_name: str
    notes: str | None = None
    due_date: str | None = None
    returned_date: str | None = None
    returned_quantity: int | None = None
    returned_condition: ResourceCondition | None = None
    return_notes: str | None = None
    borrower_picture: str | None = None
    borrower_contact: str | None = None
    borrower_department: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status is TransactionStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["status"] = self.status.value
        if self.returned_condition is not None:
            data["returned_condition"] = self.returned_condition.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TransactionRecord:
        values = _known_fields(cls, data)
        values["type"] = TransactionType(values["type"])
        values["status"] = TransactionStatus(values["status"])
        if values.get("returned_condition") is not None:
            values["returned_condition"] = ResourceCondition(values["returned_condition"])
        return cls(**values)


@dataclass
class TransactionItem:
    """One resource line of a multi-resource transaction."""

    id: str
    resource_id: str
    quantity: int
    status: TransactionStatus
    due_date: str | None = None
    returned_date: str | None = None
    returned_quantity: int | None = None
    returned_condition: ResourceCondition | None = None
    return_notes: str | None = None
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        if self.returned_condition is not None:
            data["returned_condition"] = self.returned_condition.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TransactionItem:
        values = _known_fields(cls, data)
        values["status"] = TransactionStatus(values["status"])
        if values.get("returned_condition") is not None:
            values["returned_condition"] = ResourceCondition(values["returned_condition"])
        return cls(**values)


@dataclass
class MultiTransactionRecord:
    """A transaction covering several resources at once."""

    id: str
    user_id: str
    type: TransactionType
    status: TransactionStatus
    borrower_name: str
    items: list[TransactionItem] = field(default_factory=list)
    notes: str | None = None
    borrower_picture: str | None = None
    borrower_contact: str | None = None
    borrower_department: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["status"] = self.status.value
        data["items"] = [item.to_dict() for item in self.items]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MultiTransactionRecord:
        values = _known_fields(cls, data)
        values["type"] = TransactionType(values["type"])
        values["status"] = TransactionStatus(values["status"])
        values["items"] = [TransactionItem.from_dict(item) for item in values.get("items") or []]
        return cls(**values)


class _TransactionRepository(RecordRepository):
    collection = TRANSACTIONS_COLLECTION
    namespace = Namespace.TRANSACTIONS.value
    id_prefix = "txn"

    def validate(self, data: Mapping[str, Any]) -> None:
        if not data.get("resource_id"):
            raise ValidationError("Resource ID is required")
        if not data.get("user_id"):
            raise ValidationError("User ID is required")
        if not _is_positive_number(data.get("quantity")):
            raise ValidationError("Valid quantity is required")
        if not data.get("borrower_name"):
            raise ValidationError("Borrower name is required")
        _enum_value(TransactionType, data.get("type"), "transaction type")
        _enum_value(TransactionStatus, data.get("status"), "transaction status")
        _enum_value(ResourceCondition, data.get("returned_condition"), "resource condition")


class _MultiTransactionRepository(RecordRepository):
    collection = MULTI_TRANSACTIONS_COLLECTION
    namespace = Namespace.MULTI_TRANSACTIONS.value
    id_prefix = "txn"

    def validate(self, data: Mapping[str, Any]) -> None:
        if not data.get("user_id"):
            raise ValidationError("User ID is required")
        if not data.get("borrower_name"):
            raise ValidationError("Borrower name is required")
        _enum_value(TransactionType, data.get("type"), "transaction type")
        _enum_value(TransactionStatus, data.get("status"), "transaction status")

        items = data.get("items")
        if not items:
            raise ValidationError("At least one item is required")
        for index, item in enumerate(items):
            if not item.get("resource_id"):
                raise ValidationError(f"Item {index + 1}: Resource ID is required")
            if not _is_positive_number(item.get("quantity")):
                raise ValidationError(f"Item {index + 1}: Valid quantity is required")


def _normalize(data: Mapping[str, Any]) -> dict[str, Any]:
    """Turn enum members into their stored string values."""
    normalized = dict(data)
    for key in ("type", "status", "returned_condition"):
        value = normalized.get(key)
        if isinstance(value, Enum):
            normalized[key] = value.value
    return normalized


class TransactionService:
    """Transactions and multi-resource transactions, local-first.

    Writes always land in the local store first and succeed offline; they
    reach the remote store right away when possible, otherwise on the next
    sync. Reads are served from the local store when it has the record.

    Usage:
        service = TransactionService(store, remote, sync, monitor)
        txn_id = service.create_transaction({
            "resource_id": "res-1",
            "user_id": "user-1",
            "type": "borrow",
            "quantity": 2,
            "status": "active",
            "borrower_name": "Juan",
        })
        service.update_transaction(txn_id, {"status": "completed"})
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore,
        sync: SyncManager,
        network: NetworkMonitor,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._clock = clock
        self._transactions = _TransactionRepository(
            store, remote, sync, network, retry_policy, clock, sleep
        )
        self._multi = _MultiTransactionRepository(
            store, remote, sync, network, retry_policy, clock, sleep
        )

    # === Single-resource transactions ===

    def create_transaction(self, data: Mapping[str, Any]) -> str:
        """Create a transaction.

        Args:
            data: Transaction fields without id and timestamps. ``status``
                defaults to "pending".

        Returns:
            The transaction id, usable before the record reaches the remote
            store.

        Raises:
            ValidationError: Missing resource/user/borrower or bad quantity.
        """
        payload = _normalize(data)
        payload.setdefault("status", TransactionStatus.PENDING.value)
        payload.setdefault("type", TransactionType.BORROW.value)
        transaction_id = self._transactions.create(payload)
        logger.info("Created transaction %s", transaction_id)
        return transaction_id

    def update_transaction(self, transaction_id: str, updates: Mapping[str, Any]) -> TransactionRecord:
        updates = {k: v for k, v in _normalize(updates).items() if k not in ("id", "created_at")}
        record = self._transactions.update(transaction_id, updates)
        return TransactionRecord.from_dict(record)

    def get_transaction(self, transaction_id: str) -> TransactionRecord | None:
        record = self._transactions.get(transaction_id)
        return TransactionRecord.from_dict(record) if record else None

    def get_all_transactions(self) -> list[TransactionRecord]:
        """All transactions, newest first."""
        records = sorted(
            self._transactions.get_all(),
            key=lambda r: r.get("created_at") or "",
            reverse=True,
        )
        return [TransactionRecord.from_dict(r) for r in records]

    def get_transactions_by_user(self, user_id: str) -> list[TransactionRecord]:
        return [t for t in self.get_all_transactions() if t.user_id == user_id]

    def get_active_transactions(self) -> list[TransactionRecord]:
        return [t for t in self.get_all_transactions() if t.is_active]

    def delete_transaction(self, transaction_id: str) -> None:
        self._transactions.delete(transaction_id)

    def subscribe_transactions(
        self, callback: Callable[[list[TransactionRecord]], None]
    ) -> Callable[[], None]:
        """Receive the transaction list now (offline) or on every remote change."""
        return self._transactions.subscribe(
            lambda records: callback([TransactionRecord.from_dict(r) for r in records])
        )

    # === Multi-resource transactions ===

    def create_multi_transaction(self, data: Mapping[str, Any]) -> str:
        """Create a multi-resource transaction.

        Items without an id get one; items without a status inherit the
        transaction's.

        Raises:
            ValidationError: Missing user/borrower, no items, or a bad item.
        """
        payload = _normalize(data)
        payload.setdefault("status", TransactionStatus.PENDING.value)
        payload.setdefault("type", TransactionType.BORROW.value)
        payload["items"] = self._prepare_items(payload.get("items") or [], payload["status"])
        transaction_id = self._multi.create(payload)
        logger.info(
            "Created multi-transaction %s with %d items", transaction_id, len(payload["items"])
        )
        return transaction_id

    def _prepare_items(self, items: list[Any], status: str) -> list[dict[str, Any]]:
        now = self._clock()
        prepared = []
        for index, item in enumerate(items):
            entry = item.to_dict() if isinstance(item, TransactionItem) else _normalize(item)
            entry.setdefault("id", generate_item_id(index, now))
            entry.setdefault("status", status)
            prepared.append(entry)
        return prepared

    def update_multi_transaction(
        self, transaction_id: str, updates: Mapping[str, Any]
    ) -> MultiTransactionRecord:
        updates = {k: v for k, v in _normalize(updates).items() if k not in ("id", "created_at")}
        if "items" in updates:
            status = updates.get("status")
            if status is None:
                existing = self._multi.get(transaction_id) or {}
                status = existing.get("status", TransactionStatus.PENDING.value)
            updates["items"] = self._prepare_items(updates["items"], status)
        record = self._multi.update(transaction_id, updates)
        return MultiTransactionRecord.from_dict(record)

    def get_multi_transaction(self, transaction_id: str) -> MultiTransactionRecord | None:
        record = self._multi.get(transaction_id)
        return MultiTransactionRecord.from_dict(record) if record else None

    def get_all_multi_transactions(self) -> list[MultiTransactionRecord]:
        records = sorted(
            self._multi.get_all(),
            key=lambda r: r.get("created_at") or "",
            reverse=True,
        )
        return [MultiTransactionRecord.from_dict(r) for r in records]

    def delete_multi_transaction(self, transaction_id: str) -> None:
        self._multi.delete(transaction_id)

    def subscribe_multi_transactions(
        self, callback: Callable[[list[MultiTransactionRecord]], None]
    ) -> Callable[[], None]:
        return self._multi.subscribe(
            lambda records: callback([MultiTransactionRecord.from_dict(r) for r in records])
        )

    # === Refresh ===

    def refresh_from_remote(self) -> int:
        """Pull both collections from the remote store.

        Returns:
            Total number of records stored locally (0 when offline).
        """
        return self._transactions.refresh_from_remote() + self._multi.refresh_from_remote()
