"""Settlement orchestration: approval on match, then timed asset release.

Transaction flow driven here:

    receipt_received --approve--> release_money --grace period--> completed | failed

The grace period is measured from `approved_at`. Approval failures leave the
transaction in receipt_received for retry_pending_approvals(); release
failures are terminal (failed, with a reason) except "order not in
progress", which means the asset was already released and counts as success.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from ..payout_client import PayoutPlatformError, PayoutPlatformTimeoutError
from ..state_store.records import TransactionStatus, utcnow
from ..trading_client import (
    OrderNotInProgressError,
    TradingPlatformError,
    TradingPlatformTimeoutError,
)

if TYPE_CHECKING:
    from ..config import SettlementConfig
    from ..matching import MatchResult
    from ..payout_client import PayoutClient
    from ..state_store.records import PayoutRecord, ReceiptRecord, TransactionRecord
    from ..state_store.repositories import (
        PayoutRepository,
        ReceiptRepository,
        TransactionRepository,
    )
    from ..storage import PdfStore
    from ..trading_client import TradingClient

logger = logging.getLogger(__name__)

RELEASE_FAILURE_PREFIX = "Fund release failed"


@dataclass
class ReleaseSummary:
    """Result of one release pass."""

    checked: int = 0
    waiting: int = 0
    completed: int = 0
    failed: int = 0
    skipped_in_flight: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SettlementOrchestrator:
    """Approves matched payouts and releases assets after the grace period.

    Work on a transaction id is single-flight within the process: approval
    and release both claim the id first, and a second caller that finds it
    claimed skips it. The claim set is in-memory, so only one process may run
    the orchestrator against a store.
    """

    def __init__(
        self,
        receipts: ReceiptRepository,
        payouts: PayoutRepository,
        transactions: TransactionRepository,
        pdf_store: PdfStore,
        payout_client: PayoutClient,
        trading_client: TradingClient,
        config: SettlementConfig,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            receipts: Receipt repository (proof PDF lookup).
            payouts: Payout repository (approved status).
            transactions: Transaction repository (state transitions).
            pdf_store: Blob store holding the receipt PDFs.
            payout_client: Payout platform client (approve).
            trading_client: Trading platform client (release, chat, ads).
            config: Settlement configuration.
            clock: Source of "now".
        """
        self.receipts = receipts
        self.payouts = payouts
        self.transactions = transactions
        self.pdf_store = pdf_store
        self.payout_client = payout_client
        self.trading_client = trading_client
        self.config = config
        self.clock = clock

        self._in_flight: set[int] = set()
        self._in_flight_lock = threading.Lock()

    # === Single-flight ===

    @contextmanager
    def _claim(self, transaction_id: int) -> Iterator[bool]:
        """Yield True if this caller owns the transaction id until exit."""
        with self._in_flight_lock:
            if transaction_id in self._in_flight:
                owned = False
            else:
                self._in_flight.add(transaction_id)
                owned = True
        try:
            yield owned
        finally:
            if owned:
                with self._in_flight_lock:
                    self._in_flight.discard(transaction_id)

    def is_in_flight(self, transaction_id: int) -> bool:
        with self._in_flight_lock:
            return transaction_id in self._in_flight

    # === Approval ===

    def on_match(self, result: MatchResult) -> bool:
        """Approve the payout of a freshly committed match.

        Returns:
            True if the payout was approved and the transaction moved to
            release_money.
        """
        if not result.matched or result.payout_id is None or result.transaction_id is None:
            return False

        payout = self.payouts.get_payout(result.payout_id)
        transaction = self.transactions.get_transaction(result.transaction_id)
        receipt = (
            self.receipts.get_receipt(result.receipt_id)
            if result.receipt_id is not None
            else self.receipts.get_receipt_by_payout(result.payout_id)
        )
        if payout is None or transaction is None or receipt is None:
            logger.error("Match %s refers to missing records", result.to_dict())
            return False

        return self._approve(transaction, payout, receipt)

    def retry_pending_approvals(self) -> int:
        """Re-attempt approval of matched transactions that were never approved.

        Returns:
            Number of transactions approved in this pass.
        """
        approved = 0
        for transaction in self.transactions.list_awaiting_approval():
            payout = self.payouts.get_payout_by_transaction(transaction.id)
            if payout is None:
                continue
            receipt = self.receipts.get_receipt_by_payout(payout.id)
            if receipt is None:
                continue
            if self._approve(transaction, payout, receipt):
                approved += 1

        if approved:
            logger.info("Approval retry: %d transaction(s) approved", approved)
        return approved

    def _approve(
        self,
        transaction: TransactionRecord,
        payout: PayoutRecord,
        receipt: ReceiptRecord,
    ) -> bool:
        with self._claim(transaction.id) as owned:
            if not owned:
                logger.debug("Transaction %s already in flight, skipping approval", transaction.id)
                return False

            # Re-read under the claim: another pass may have approved it already
            current = self.transactions.get_transaction(transaction.id)
            if current is None or current.approved_at is not None:
                return False

            if not receipt.file_path:
                logger.warning("Receipt %s has no stored PDF, cannot approve", receipt.id)
                return False
            try:
                proof = self.pdf_store.load(receipt.file_path)
            except OSError as e:
                logger.error("Cannot load PDF of receipt %s: %s", receipt.id, e)
                return False

            try:
                accepted = self.payout_client.approve_payout(payout.platform_payout_id, proof)
            except PayoutPlatformTimeoutError as e:
                logger.warning(
                    "Approval of payout %s timed out, will retry: %s", payout.platform_payout_id, e
                )
                return False
            except PayoutPlatformError as e:
                logger.warning(
                    "Approval of payout %s failed, will retry: %s", payout.platform_payout_id, e
                )
                return False

            if not accepted:
                logger.warning("Payout %s approval not accepted", payout.platform_payout_id)
                return False

            now = self.clock()
            self.payouts.update_payout_status(payout.id, self.config.approved_payout_status)
            self.transactions.mark_approved(transaction.id, now)
            logger.info(
                "Payout %s approved; transaction %s releases after %ss",
                payout.platform_payout_id,
                transaction.id,
                self.config.grace_period_seconds,
            )

        self._notify_counterparty(current)
        return True

    def _notify_counterparty(self, transaction: TransactionRecord) -> None:
        """Post-match chat message and ad removal. Failures never change state."""
        if self.config.post_match_message and transaction.order_id:
            try:
                self.trading_client.send_chat_message(
                    transaction.order_id, self.config.post_match_message
                )
            except TradingPlatformError as e:
                logger.warning("Chat message for order %s failed: %s", transaction.order_id, e)

        if self.config.delete_advertisement and transaction.advertisement_id:
            try:
                self.trading_client.delete_advertisement(transaction.advertisement_id)
            except TradingPlatformError as e:
                logger.warning(
                    "Removing advertisement %s failed: %s", transaction.advertisement_id, e
                )

    # === Timed release ===

    def process_releases(self, now: datetime | None = None) -> ReleaseSummary:
        """Release assets for approved transactions past the grace period."""
        now = now or self.clock()
        grace = timedelta(seconds=self.config.grace_period_seconds)
        summary = ReleaseSummary()

        for transaction in self.transactions.list_release_candidates():
            summary.checked += 1

            if transaction.approved_at is None or now - transaction.approved_at < grace:
                summary.waiting += 1
                continue

            with self._claim(transaction.id) as owned:
                if not owned:
                    summary.skipped_in_flight += 1
                    continue

                # Re-read under the claim: a pass that just finished may have settled it
                current = self.transactions.get_transaction(transaction.id)
                if current is None or current.status != TransactionStatus.RELEASE_MONEY:
                    summary.skipped_in_flight += 1
                    continue

                if self._release(current, now):
                    summary.completed += 1
                else:
                    summary.failed += 1

        if summary.completed or summary.failed:
            logger.info(
                "Release pass: %d completed, %d failed, %d waiting",
                summary.completed,
                summary.failed,
                summary.waiting,
            )
        return summary

    def _release(self, transaction: TransactionRecord, now: datetime) -> bool:
        """Release one transaction and record its terminal state."""
        if not transaction.order_id:
            self._fail(transaction, "transaction has no order id")
            return False

        try:
            self.trading_client.release_assets(transaction.order_id)
        except OrderNotInProgressError:
            logger.info(
                "Order %s is not in progress, treating as already released",
                transaction.order_id,
            )
        except TradingPlatformTimeoutError as e:
            self._fail(transaction, f"timeout: {e}")
            return False
        except Exception as e:
            self._fail(transaction, str(e))
            return False

        if self.transactions.mark_completed(transaction.id, now):
            logger.info("Transaction %s completed (order %s)", transaction.id, transaction.order_id)
        return True

    def _fail(self, transaction: TransactionRecord, message: str) -> None:
        reason = f"{RELEASE_FAILURE_PREFIX}: {message}"
        logger.error("Transaction %s: %s", transaction.id, reason)
        self.transactions.mark_failed(transaction.id, reason)
