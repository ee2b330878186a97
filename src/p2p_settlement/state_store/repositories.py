"""
Repository interfaces.

Services depend on these, not on StateStore, so they can be tested with
in-memory fakes or mocks. StateStore implements all of them.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from ..schemas.receipt import ReceiptFields, ReceiptStatus
from .records import (
    PayoutRecord,
    ReceiptRecord,
    RemoteTransactionRecord,
    TransactionRecord,
)


class ReceiptRepository(ABC):
    """Receipts keyed by email id."""

    @abstractmethod
    def get_receipt(self, receipt_id: int) -> ReceiptRecord | None: ...

    @abstractmethod
    def get_receipt_by_email_id(self, email_id: str) -> ReceiptRecord | None: ...

    @abstractmethod
    def get_receipt_by_payout(self, payout_id: int) -> ReceiptRecord | None: ...

    @abstractmethod
    def create_receipt(
        self,
        email_id: str,
        status: ReceiptStatus,
        fields: ReceiptFields,
        file_hash: str | None = None,
        file_path: str | None = None,
        raw_text: str | None = None,
        parsed_data: dict[str, Any] | None = None,
        confidence: float | None = None,
        email_subject: str | None = None,
        email_received_at: datetime | None = None,
    ) -> tuple[ReceiptRecord, bool]:
        """
        Insert a receipt unless one already exists for email_id.

        Returns:
            Tuple of (record, created). On conflict the existing record is
            returned unchanged with created=False.
        """

    @abstractmethod
    def update_receipt_parse(
        self,
        receipt_id: int,
        status: ReceiptStatus,
        fields: ReceiptFields,
        raw_text: str | None,
        parsed_data: dict[str, Any],
        confidence: float | None,
    ) -> None:
        """Replace parse results of an unlinked receipt (re-parse)."""

    @abstractmethod
    def link_receipt_to_payout(self, receipt_id: int, payout_id: int) -> bool:
        """
        Set receipt.payout_id and mark it processed.

        Write-once: returns False if the receipt already has a payout or the
        payout already has a receipt.
        """

    @abstractmethod
    def commit_match(
        self, receipt_id: int, payout_id: int, transaction_id: int, at: datetime
    ) -> bool:
        """
        Link the receipt to the payout and move the transaction to
        receipt_received, atomically.

        Returns False, with nothing written, if either side is already taken.
        """

    @abstractmethod
    def list_unmatched_receipts(self, limit: int | None = None) -> list[ReceiptRecord]:
        """SUCCESS receipts with a positive amount and no payout, oldest first."""

    @abstractmethod
    def list_failed_receipts(self, limit: int | None = None) -> list[ReceiptRecord]: ...


class PayoutRepository(ABC):
    """Payout requests mirrored from the payout platform."""

    @abstractmethod
    def get_payout(self, payout_id: int) -> PayoutRecord | None: ...

    @abstractmethod
    def get_payout_by_platform_id(self, platform_payout_id: str) -> PayoutRecord | None: ...

    @abstractmethod
    def get_payout_by_transaction(self, transaction_id: int) -> PayoutRecord | None: ...

    @abstractmethod
    def list_match_candidates(self, status: int) -> list[PayoutRecord]:
        """
        Payouts in `status` with a transaction and no linked receipt.

        Ordered oldest first (created_at, then id).
        """

    @abstractmethod
    def update_payout_status(self, payout_id: int, status: int) -> None: ...


class TransactionRepository(ABC):
    """Trades and their settlement state."""

    @abstractmethod
    def get_transaction(self, transaction_id: int) -> TransactionRecord | None: ...

    @abstractmethod
    def mark_receipt_received(self, transaction_id: int, at: datetime) -> None:
        """Set receipt_received_at and status receipt_received."""

    @abstractmethod
    def mark_approved(self, transaction_id: int, at: datetime) -> None:
        """Set approved_at and status release_money."""

    @abstractmethod
    def list_awaiting_approval(self) -> list[TransactionRecord]:
        """receipt_received transactions without approved_at."""

    @abstractmethod
    def list_release_candidates(self) -> list[TransactionRecord]:
        """release_money transactions with approved_at set."""

    @abstractmethod
    def mark_completed(self, transaction_id: int, at: datetime) -> bool:
        """release_money -> completed. False if the row was not in release_money."""

    @abstractmethod
    def mark_failed(self, transaction_id: int, reason: str) -> bool:
        """release_money -> failed. False if the row was not in release_money."""


class RemoteTransactionRepository(ABC):
    """Mirror of payout platform transactions."""

    @abstractmethod
    def get_remote_transaction(
        self, account: str, remote_id: str
    ) -> RemoteTransactionRecord | None: ...

    @abstractmethod
    def save_remote_transaction(self, record: RemoteTransactionRecord) -> None:
        """Insert or replace the tracked fields of a mirrored record."""

    @abstractmethod
    def touch_remote_transaction(self, account: str, remote_id: str) -> None:
        """Refresh last_seen of an unchanged record."""
