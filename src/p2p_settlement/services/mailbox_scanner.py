"""Mailbox scanner: bank notification emails -> stored receipts.

For each configured mailbox the scanner searches recent messages from the
bank sender that carry an attachment, stores the PDF, parses it and persists
one receipt per email id. Successful receipts are matched right away; a
receipt whose payout shows up later is retried on the next scan.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from ..confidence import ConfidenceScorer, parse_extended
from ..extractors.base import ParseError, TextExtractionError
from ..schemas.receipt import ReceiptFields, ReceiptStatus, project_fields
from ..state_store.records import utcnow

if TYPE_CHECKING:
    from ..config import MailboxConfig
    from ..extractors.base import TextExtractor
    from ..extractors.tbank_receipt import ReceiptParser
    from ..mailbox_client import MailboxAttachment, MailboxClient
    from ..matching import MatchingEngine, MatchResult
    from ..state_store.records import ReceiptRecord
    from ..state_store.repositories import ReceiptRepository
    from ..storage import PdfStore

logger = logging.getLogger(__name__)

PDF_EXTENSION = ".pdf"


@dataclass
class ScanSummary:
    """Result of one mailbox scan."""

    total_emails: int = 0
    processed: int = 0
    new_receipts: int = 0
    matched: int = 0
    approved: int = 0
    failed_parses: int = 0
    errors: list[str] = field(default_factory=list)
    skipped: bool = False  # another scan was already running

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ReparseSummary:
    """Result of re-parsing FAILED receipts."""

    checked: int = 0
    reparsed: int = 0
    still_failed: int = 0
    matched: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class _ParseOutcome:
    status: ReceiptStatus
    fields: ReceiptFields
    raw_text: str
    parsed_data: dict[str, Any]
    confidence: float | None


def find_pdf_attachment(attachments: list[MailboxAttachment]) -> MailboxAttachment | None:
    """First attachment with a .pdf filename and a payload."""
    for attachment in attachments:
        if attachment.filename and attachment.filename.lower().endswith(PDF_EXTENSION):
            if attachment.data:
                return attachment
    return None


class MailboxScanner:
    """Scans bank notification mailboxes and feeds receipts to matching.

    Only one scan runs at a time: an overlapping call returns immediately
    with `skipped=True` rather than queueing.
    """

    def __init__(
        self,
        mailboxes: dict[str, MailboxClient],
        parser: ReceiptParser,
        text_extractor: TextExtractor,
        pdf_store: PdfStore,
        receipts: ReceiptRepository,
        matcher: MatchingEngine,
        config: MailboxConfig,
        on_match: Callable[[MatchResult], bool] | None = None,
        scorer: ConfidenceScorer | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the scanner.

        Args:
            mailboxes: Mailbox client per account address.
            parser: Receipt parser.
            text_extractor: PDF to text extractor.
            pdf_store: Blob store for raw PDFs.
            receipts: Receipt repository.
            matcher: Matching engine.
            config: Mailbox configuration.
            on_match: Called with every committed match; returns True when
                the payout was approved.
            scorer: Confidence scorer for parsed receipts.
            clock: Source of "now" for the look-back window.
        """
        self.mailboxes = mailboxes
        self.parser = parser
        self.text_extractor = text_extractor
        self.pdf_store = pdf_store
        self.receipts = receipts
        self.matcher = matcher
        self.config = config
        self.on_match = on_match
        self.scorer = scorer or ConfidenceScorer()
        self.clock = clock

        self._lock = threading.Lock()
        self._scanning = False

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    def scan(self) -> ScanSummary:
        """Run one scan over every configured mailbox."""
        with self._lock:
            if self._scanning:
                logger.info("Mailbox scan already in progress, skipping")
                return ScanSummary(skipped=True)
            self._scanning = True

        summary = ScanSummary()
        try:
            for account, client in self.mailboxes.items():
                self._scan_account(account, client, summary)
        finally:
            with self._lock:
                self._scanning = False

        logger.info(
            "Scan complete: %d emails, %d processed, %d new, %d matched, %d failed parses, %d errors",
            summary.total_emails,
            summary.processed,
            summary.new_receipts,
            summary.matched,
            summary.failed_parses,
            len(summary.errors),
        )
        return summary

    def _scan_account(self, account: str, client: MailboxClient, summary: ScanSummary) -> None:
        after = self.clock() - timedelta(days=self.config.look_back_days)
        try:
            refs = client.search_messages(
                sender=self.config.bank_sender,
                after=after,
                has_attachment=True,
                max_results=self.config.max_per_cycle,
            )
        except Exception as e:
            # Abort only this account; the next scheduled scan retries it
            logger.error("Mailbox search failed for %s: %s", account, e)
            summary.errors.append(f"{account}: {e}")
            return

        logger.debug("Mailbox %s: %d candidate message(s)", account, len(refs))
        summary.total_emails += len(refs)

        for ref in refs:
            try:
                if self._process_message(client, ref.id, summary):
                    summary.processed += 1
            except Exception as e:
                logger.exception("Failed to process message %s in %s", ref.id, account)
                summary.errors.append(f"{account}/{ref.id}: {e}")

    def _process_message(self, client: MailboxClient, message_id: str, summary: ScanSummary) -> bool:
        """Handle one email. Returns False when the message was skipped."""
        existing = self.receipts.get_receipt_by_email_id(message_id)
        if existing is not None:
            logger.debug("Email %s already stored as receipt %s", message_id, existing.id)
            if existing.payout_id is None and existing.status == ReceiptStatus.SUCCESS:
                self._match(existing, summary)
            return True

        message = client.get_message(message_id)
        attachment = find_pdf_attachment(client.get_attachments(message_id))
        if attachment is None:
            logger.warning("No PDF attachment in email %s (%s)", message_id, message.subject)
            return False

        pdf_bytes = attachment.decode()
        file_hash, path = self.pdf_store.save(pdf_bytes)
        outcome = self._parse(pdf_bytes)

        record, created = self.receipts.create_receipt(
            email_id=message_id,
            status=outcome.status,
            fields=outcome.fields,
            file_hash=file_hash,
            file_path=str(path),
            raw_text=outcome.raw_text,
            parsed_data=outcome.parsed_data,
            confidence=outcome.confidence,
            email_subject=message.subject,
            email_received_at=message.received_at,
        )
        if not created:
            # Stored by a concurrent writer between the lookup and the insert
            return True

        summary.new_receipts += 1
        if outcome.status == ReceiptStatus.SUCCESS:
            logger.info(
                "Saved receipt %s: %s RUB from %s",
                record.id,
                record.amount,
                record.sender_name,
            )
            self._match(record, summary)
        else:
            summary.failed_parses += 1
            logger.warning(
                "Saved receipt %s as FAILED: %s",
                record.id,
                outcome.parsed_data.get("message"),
            )
        return True

    def _parse(self, pdf_bytes: bytes) -> _ParseOutcome:
        """Extract and parse; failures become a FAILED outcome, never an exception."""
        text = ""
        try:
            text = self.text_extractor.extract(pdf_bytes)
            result = parse_extended(text, parser=self.parser, scorer=self.scorer)
        except TextExtractionError as e:
            return _ParseOutcome(
                status=ReceiptStatus.FAILED,
                fields=ReceiptFields(),
                raw_text=text,
                parsed_data={"error": "TEXT_EXTRACTION_FAILED", "message": str(e)},
                confidence=None,
            )
        except ParseError as e:
            return _ParseOutcome(
                status=ReceiptStatus.FAILED,
                fields=ReceiptFields(),
                raw_text=text,
                parsed_data=e.to_dict(),
                confidence=None,
            )

        for warning in result.warnings:
            logger.warning("Receipt parse warning: %s", warning)

        return _ParseOutcome(
            status=ReceiptStatus.SUCCESS,
            fields=project_fields(result.receipt),
            raw_text=text,
            parsed_data=result.to_dict(),
            confidence=result.confidence,
        )

    def _match(self, receipt: ReceiptRecord, summary: ScanSummary | ReparseSummary) -> None:
        result = self.matcher.try_match(receipt)
        if not result.matched:
            return
        summary.matched += 1
        if self.on_match is not None and self.on_match(result):
            if isinstance(summary, ScanSummary):
                summary.approved += 1

    def reparse_failed(self, limit: int | None = None) -> ReparseSummary:
        """Re-run the parser over stored PDFs of FAILED receipts.

        Receipts that now parse are updated in place (same email id) and
        matched. Receipts without a stored PDF are left alone.
        """
        summary = ReparseSummary()

        for receipt in self.receipts.list_failed_receipts(limit=limit):
            summary.checked += 1
            if not receipt.file_path:
                summary.still_failed += 1
                continue

            try:
                pdf_bytes = self.pdf_store.load(receipt.file_path)
            except OSError as e:
                logger.error("Cannot load PDF for receipt %s: %s", receipt.id, e)
                summary.errors.append(f"receipt {receipt.id}: {e}")
                continue

            outcome = self._parse(pdf_bytes)
            if outcome.status != ReceiptStatus.SUCCESS:
                summary.still_failed += 1
                continue

            self.receipts.update_receipt_parse(
                receipt.id,
                status=outcome.status,
                fields=outcome.fields,
                raw_text=outcome.raw_text,
                parsed_data=outcome.parsed_data,
                confidence=outcome.confidence,
            )
            summary.reparsed += 1
            logger.info("Receipt %s re-parsed successfully", receipt.id)

            updated = self.receipts.get_receipt(receipt.id)
            if updated is not None:
                self._match(updated, summary)

        return summary
