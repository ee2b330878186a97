"""Matching engine for linking bank receipts to pending payouts.

A receipt matches a payout when all of these hold:
- Amount: |receipt amount - payout amount| <= tolerance
- Identity: recipient phone (digit containment) or card last four digits
- Time: the receipt is not older than the payout request

Candidates are scanned oldest payout first and the first survivor wins.
A receipt is linked to at most one payout, and a payout to at most one receipt.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from ..schemas.receipt import ReceiptStatus, card_last4
from ..state_store.records import utcnow

if TYPE_CHECKING:
    from ..config import MatchingConfig
    from ..state_store.records import PayoutRecord, ReceiptRecord, TransactionRecord
    from ..state_store.repositories import (
        PayoutRepository,
        ReceiptRepository,
        TransactionRepository,
    )

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str | None) -> str:
    """Digits only, without the leading 7/8 of an 11-digit national number."""
    if not phone:
        return ""
    digits = _NON_DIGITS.sub("", phone)
    if len(digits) == 11 and digits[0] in "78":
        digits = digits[1:]
    return digits


def phones_match(receipt_phone: str | None, wallet: str | None) -> bool:
    """Either normalized number contains the other. Empty never matches."""
    a = normalize_phone(receipt_phone)
    b = normalize_phone(wallet)
    if not a or not b:
        return False
    return a in b or b in a


def cards_match(receipt_card: str | None, payout_card: str | None) -> bool:
    """Last four digits are equal."""
    a = card_last4(receipt_card)
    b = card_last4(payout_card)
    return a is not None and a == b


@dataclass
class MatchResult:
    """Outcome of one try_match call."""

    matched: bool
    receipt_id: int | None = None
    payout_id: int | None = None
    transaction_id: int | None = None
    reason: str = ""

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "matched": self.matched,
            "receipt_id": self.receipt_id,
            "payout_id": self.payout_id,
            "transaction_id": self.transaction_id,
            "reason": self.reason,
        }


class MatchingEngine:
    """Engine for matching parsed receipts to pending payouts.

    Matching is deterministic: candidates come back ordered by payout
    created_at then id, so when several payouts qualify the oldest wins.
    "No match" is the normal outcome of most passes and is not an error.
    """

    def __init__(
        self,
        receipts: ReceiptRepository,
        payouts: PayoutRepository,
        transactions: TransactionRepository,
        config: MatchingConfig,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the matching engine.

        Args:
            receipts: Receipt repository (write-once payout link, match commit).
            payouts: Payout repository (candidate source).
            transactions: Transaction repository (candidate transactions).
            config: Matching configuration (tolerance, pending status, currency).
            clock: Source of "now" for receipt_received_at.
        """
        self.receipts = receipts
        self.payouts = payouts
        self.transactions = transactions
        self.config = config
        self.clock = clock

    def try_match(self, receipt: ReceiptRecord) -> MatchResult:
        """Find and commit at most one payout for a receipt.

        Args:
            receipt: A stored receipt.

        Returns:
            MatchResult; matched=False with a reason when nothing was committed.
        """
        if receipt.payout_id is not None:
            return MatchResult(False, receipt.id, reason="receipt already matched")
        if receipt.status != ReceiptStatus.SUCCESS or receipt.amount <= 0:
            return MatchResult(False, receipt.id, reason="receipt not eligible")

        candidates = self.payouts.list_match_candidates(self.config.pending_payout_status)
        if not candidates:
            logger.debug("No pending payouts to match receipt %s against", receipt.id)
            return MatchResult(False, receipt.id, reason="no pending payouts")

        for payout in candidates:
            transaction = (
                self.transactions.get_transaction(payout.transaction_id)
                if payout.transaction_id is not None
                else None
            )
            if transaction is None:
                continue
            if transaction.receipt_received_at is not None:
                continue
            if not self._amount_matches(receipt, payout):
                continue
            if not self._identity_matches(receipt, payout, transaction):
                continue
            if not self._time_matches(receipt, payout):
                continue

            return self._commit(receipt, payout, transaction)

        logger.debug(
            "Receipt %s (amount %s) matched none of %d pending payout(s)",
            receipt.id,
            receipt.amount,
            len(candidates),
        )
        return MatchResult(False, receipt.id, reason="no matching payout")

    def match_unmatched(self, limit: int | None = None) -> list[MatchResult]:
        """Run try_match over every unmatched successful receipt, oldest first.

        Receipts are committed one at a time; a payout taken by an earlier
        receipt in this pass is no longer a candidate for later ones.
        """
        results = []
        for receipt in self.receipts.list_unmatched_receipts(limit=limit):
            result = self.try_match(receipt)
            if result.matched:
                results.append(result)
        return results

    def _amount_matches(self, receipt: ReceiptRecord, payout: PayoutRecord) -> bool:
        expected = payout.amount_in(self.config.currency_code)
        if expected is None:
            return False
        return abs(expected - receipt.amount) <= self.config.amount_tolerance

    def _identity_matches(
        self,
        receipt: ReceiptRecord,
        payout: PayoutRecord,
        transaction: TransactionRecord,
    ) -> bool:
        if receipt.recipient_phone:
            return phones_match(receipt.recipient_phone, payout.wallet)
        if receipt.recipient_card:
            return cards_match(
                receipt.recipient_card, payout.recipient_card or transaction.recipient_card
            )
        return False

    def _time_matches(self, receipt: ReceiptRecord, payout: PayoutRecord) -> bool:
        # A receipt without a date cannot prove it postdates the payout
        if receipt.transaction_date is None or payout.created_at is None:
            return False
        return receipt.transaction_date >= payout.created_at

    def _commit(
        self,
        receipt: ReceiptRecord,
        payout: PayoutRecord,
        transaction: TransactionRecord,
    ) -> MatchResult:
        if not self.receipts.commit_match(receipt.id, payout.id, transaction.id, self.clock()):
            logger.warning(
                "Lost match race for receipt %s -> payout %s", receipt.id, payout.id
            )
            return MatchResult(False, receipt.id, reason="link already taken")

        logger.info(
            "Matched receipt %s to payout %s (transaction %s, amount %s)",
            receipt.id,
            payout.platform_payout_id,
            transaction.id,
            receipt.amount,
        )
        return MatchResult(
            True,
            receipt.id,
            payout_id=payout.id,
            transaction_id=transaction.id,
            reason="matched",
        )
