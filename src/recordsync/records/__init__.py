"""Domain records with local-first reads and writes."""

from recordsync.records.base import RecordRepository, sanitize
from recordsync.records.ids import generate_item_id, generate_local_id
from recordsync.records.transactions import (
    MultiTransactionRecord,
    ResourceCondition,
    TransactionItem,
    TransactionRecord,
    TransactionService,
    TransactionStatus,
    TransactionType,
)
from recordsync.records.users import UserDataService

__all__ = [
    # Base
    "RecordRepository",
    "generate_item_id",
    "generate_local_id",
    "sanitize",
    # Transactions
    "MultiTransactionRecord",
    "ResourceCondition",
    "TransactionItem",
    "TransactionRecord",
    "TransactionService",
    "TransactionStatus",
    "TransactionType",
    # Users
    "UserDataService",
]
