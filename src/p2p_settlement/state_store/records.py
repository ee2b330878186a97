"""
Persisted record types.

Timestamps are stored as ISO-8601 UTC strings ("2025-06-09T14:10:18.000000Z") and
exposed on records as timezone-aware datetimes.
"""

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..schemas.receipt import ReceiptStatus, TransferType


class TransactionStatus(str, Enum):
    """
    Trade lifecycle.

    Only receipt_received -> release_money -> completed|failed is driven by
    this pipeline; earlier states are set by upstream order handling.
    """

    PENDING = "pending"
    CHAT_STARTED = "chat_started"
    WAITING_PAYMENT = "waiting_payment"
    PAYMENT_RECEIVED = "payment_received"
    RECEIPT_RECEIVED = "receipt_received"
    RELEASE_MONEY = "release_money"
    COMPLETED = "completed"
    FAILED = "failed"


# Payout platform status codes
PAYOUT_STATUS_APPROVED = 1
PAYOUT_STATUS_PENDING_MATCH = 5


def format_timestamp(value: datetime) -> str:
    """
    Aware datetime -> ISO UTC string. Naive datetimes are taken as UTC.

    Fixed microsecond precision keeps stored strings sortable.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_timestamp(value: str | None) -> datetime | None:
    """ISO string -> aware UTC datetime (None passes through)."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _optional(row: sqlite3.Row, key: str) -> Any:
    """Column added by a later migration; None if the schema predates it."""
    return row[key] if key in row.keys() else None


@dataclass
class ReceiptRecord:
    """One receipt per inbound email (email_id is the idempotency key)."""

    id: int
    email_id: str
    file_hash: str | None
    file_path: str | None
    status: ReceiptStatus
    amount: int
    transfer_type: TransferType | None
    sender_name: str | None
    recipient_name: str | None
    recipient_phone: str | None
    recipient_bank: str | None
    recipient_card: str | None
    commission: int | None
    transaction_date: datetime | None
    payout_id: int | None
    is_processed: bool
    raw_text: str | None
    parsed_data: dict[str, Any]
    confidence: float | None
    email_subject: str | None
    email_received_at: datetime | None
    created_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ReceiptRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            email_id=row["email_id"],
            file_hash=row["file_hash"],
            file_path=row["file_path"],
            status=ReceiptStatus(row["status"]),
            amount=row["amount"] or 0,
            transfer_type=TransferType(row["transfer_type"]) if row["transfer_type"] else None,
            sender_name=row["sender_name"],
            recipient_name=row["recipient_name"],
            recipient_phone=row["recipient_phone"],
            recipient_bank=row["recipient_bank"],
            recipient_card=row["recipient_card"],
            commission=row["commission"],
            transaction_date=parse_timestamp(row["transaction_date"]),
            payout_id=row["payout_id"],
            is_processed=bool(row["is_processed"]),
            raw_text=row["raw_text"],
            parsed_data=json.loads(row["parsed_data"]) if row["parsed_data"] else {},
            confidence=_optional(row, "confidence"),
            email_subject=_optional(row, "email_subject"),
            email_received_at=parse_timestamp(_optional(row, "email_received_at")),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )


@dataclass
class PayoutRecord:
    """A pending fiat transfer request tied to a trade."""

    id: int
    platform_payout_id: str
    status: int
    wallet: str | None  # recipient phone for SBP payouts
    recipient_card: str | None
    amount: float | None
    amount_trader: dict[str, float] = field(default_factory=dict)
    transaction_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def amount_in(self, currency_code: str) -> float | None:
        """Amount in the trader's currency, falling back to the plain amount."""
        value = self.amount_trader.get(currency_code)
        if value is not None:
            return float(value)
        return self.amount

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PayoutRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            platform_payout_id=row["platform_payout_id"],
            status=row["status"],
            wallet=row["wallet"],
            recipient_card=row["recipient_card"],
            amount=row["amount"],
            amount_trader=json.loads(row["amount_trader"]) if row["amount_trader"] else {},
            transaction_id=row["transaction_id"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )


@dataclass
class TransactionRecord:
    """A trade on the trading platform, driven to a terminal state here."""

    id: int
    status: TransactionStatus
    order_id: str | None
    advertisement_id: str | None
    recipient_card: str | None
    receipt_received_at: datetime | None
    approved_at: datetime | None
    completed_at: datetime | None
    failure_reason: str | None
    created_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "TransactionRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            status=TransactionStatus(row["status"]),
            order_id=row["order_id"],
            advertisement_id=row["advertisement_id"],
            recipient_card=row["recipient_card"],
            receipt_received_at=parse_timestamp(row["receipt_received_at"]),
            approved_at=parse_timestamp(row["approved_at"]),
            completed_at=parse_timestamp(row["completed_at"]),
            failure_reason=row["failure_reason"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )


# Fields compared by the status monitor to decide whether a record changed
REMOTE_TRACKED_FIELDS = (
    "status",
    "status_text",
    "amount",
    "amount_usdt",
    "fee",
    "fee_usdt",
    "tx_hash",
    "description",
)


@dataclass
class RemoteTransactionRecord:
    """Local mirror of a payout platform transaction."""

    account: str
    remote_id: str
    status: int | None = None
    status_text: str | None = None
    amount: float | None = None
    amount_usdt: float | None = None
    fee: float | None = None
    fee_usdt: float | None = None
    tx_hash: str | None = None
    description: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)
    first_seen: datetime | None = None
    last_seen: datetime | None = None

    def tracked_values(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in REMOTE_TRACKED_FIELDS}

    def changed_fields(self, other: "RemoteTransactionRecord") -> list[str]:
        """Names of tracked fields whose values differ from `other`."""
        mine = self.tracked_values()
        theirs = other.tracked_values()
        return [name for name in REMOTE_TRACKED_FIELDS if mine[name] != theirs[name]]

    def to_dict(self) -> dict[str, Any]:
        data = {"account": self.account, "remote_id": self.remote_id}
        data.update(self.tracked_values())
        return data

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "RemoteTransactionRecord":
        """Create from database row."""
        return cls(
            account=row["account"],
            remote_id=row["remote_id"],
            status=row["status"],
            status_text=row["status_text"],
            amount=row["amount"],
            amount_usdt=row["amount_usdt"],
            fee=row["fee"],
            fee_usdt=row["fee_usdt"],
            tx_hash=row["tx_hash"],
            description=row["description"],
            raw=json.loads(row["raw_json"]) if row["raw_json"] else {},
            first_seen=parse_timestamp(row["first_seen"]),
            last_seen=parse_timestamp(row["last_seen"]),
        )
