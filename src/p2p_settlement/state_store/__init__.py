"""
State Store (SQLite-based).

Lightweight persistent DB for tracking:
- Receipts parsed from bank notification emails
- Payouts awaiting a matching receipt
- Transactions and their settlement state
- Remote transaction mirror (status monitor)

Enforces uniqueness on email_id and one receipt per payout.
"""

from .records import (
    PAYOUT_STATUS_APPROVED,
    PAYOUT_STATUS_PENDING_MATCH,
    PayoutRecord,
    ReceiptRecord,
    RemoteTransactionRecord,
    TransactionRecord,
    TransactionStatus,
)
from .repositories import (
    PayoutRepository,
    ReceiptRepository,
    RemoteTransactionRepository,
    TransactionRepository,
)
from .sqlite_store import StateStore

__all__ = [
    "StateStore",
    "ReceiptRepository",
    "PayoutRepository",
    "TransactionRepository",
    "RemoteTransactionRepository",
    "ReceiptRecord",
    "PayoutRecord",
    "TransactionRecord",
    "RemoteTransactionRecord",
    "TransactionStatus",
    "PAYOUT_STATUS_APPROVED",
    "PAYOUT_STATUS_PENDING_MATCH",
]
