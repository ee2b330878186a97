"""
Receipt confidence scoring and validation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from ..extractors.tbank_receipt import SUCCESS_MARKER, ReceiptParser
from ..schemas.receipt import (
    ByPhone,
    ParsedReceipt,
    ReceiptExtras,
    ReceiptStatus,
    ToCard,
    ToPlatformUser,
    transfer_type_of,
)

BANK_MARKERS = ("Тинькофф", "Т-Банк")
SHORT_TEXT_LENGTH = 100
LOW_CONFIDENCE = 0.7


@dataclass
class ConfidenceWeights:
    """Weights of the receipt checklist."""

    amount: float = 2.0
    datetime: float = 2.0
    status: float = 2.0
    sender: float = 1.0
    transfer_type: float = 1.0
    success_marker: float = 1.0
    bank_marker: float = 1.0
    operation_id: float = 0.5
    receipt_number: float = 0.5
    variant_field: float = 1.0


@dataclass
class ExtendedParseResult:
    """Parsed receipt with audit extras and a confidence assessment."""

    receipt: ParsedReceipt
    extras: ReceiptExtras
    confidence: float
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "transfer_type": transfer_type_of(self.receipt).value,
            "extras": self.extras.to_dict(),
            "confidence": round(self.confidence, 3),
            "warnings": self.warnings,
        }


def _variant_field(receipt: ParsedReceipt) -> str | None:
    """The identity field each transfer kind must carry."""
    if isinstance(receipt, ByPhone):
        return receipt.recipient_phone
    if isinstance(receipt, ToPlatformUser):
        return receipt.recipient_card_suffix
    if isinstance(receipt, ToCard):
        return receipt.recipient_card_masked
    raise TypeError(f"Not a parsed receipt: {type(receipt).__name__}")


def has_bank_marker(text: str) -> bool:
    return any(marker in text for marker in BANK_MARKERS)


class ConfidenceScorer:
    """
    Weighted checklist over a parsed receipt and its source text.

    The score is the sum of weights of satisfied checks divided by the sum of
    all weights, so it always lies in [0, 1].
    """

    def __init__(self, weights: Optional[ConfidenceWeights] = None):
        self.weights = weights or ConfidenceWeights()

    def score(
        self,
        receipt: ParsedReceipt,
        text: str,
        extras: Optional[ReceiptExtras] = None,
    ) -> float:
        w = self.weights
        extras = extras or ReceiptExtras()

        checks = [
            (receipt.amount > 0, w.amount),
            (receipt.transaction_datetime is not None, w.datetime),
            (receipt.status == ReceiptStatus.SUCCESS, w.status),
            (bool(receipt.sender), w.sender),
            (transfer_type_of(receipt) is not None, w.transfer_type),
            (SUCCESS_MARKER in text, w.success_marker),
            (has_bank_marker(text), w.bank_marker),
            (extras.operation_id is not None, w.operation_id),
            (extras.receipt_number is not None, w.receipt_number),
            (bool(_variant_field(receipt)), w.variant_field),
        ]

        max_score = sum(weight for _, weight in checks)
        score = sum(weight for ok, weight in checks if ok)
        return score / max_score if max_score > 0 else 0.0

    def collect_warnings(self, text: str, confidence: float) -> list[str]:
        warnings = []
        if len(text) < SHORT_TEXT_LENGTH:
            warnings.append("Text length is suspiciously short")
        if not has_bank_marker(text):
            warnings.append("Bank name not found in text")
        if confidence < LOW_CONFIDENCE:
            warnings.append("Low parsing confidence")
        return warnings


def validate_receipt(receipt: ParsedReceipt, now: Optional[datetime] = None) -> list[str]:
    """
    Validate a parsed receipt.

    Returns:
        List of validation errors (empty if valid)
    """
    now = now or datetime.now(timezone.utc)
    errors: list[str] = []

    if receipt.amount <= 0:
        errors.append("Invalid amount")
    if not receipt.sender:
        errors.append("Missing sender")
    if receipt.transaction_datetime > now:
        errors.append("Receipt date is in the future")

    if isinstance(receipt, ByPhone):
        if not receipt.recipient_phone:
            errors.append("Missing recipient phone for phone transfer")
    elif isinstance(receipt, ToPlatformUser):
        if not receipt.recipient_name:
            errors.append("Missing recipient name for platform transfer")
        if not receipt.recipient_card_suffix:
            errors.append("Missing recipient card for platform transfer")
    elif isinstance(receipt, ToCard):
        if not receipt.recipient_card_masked:
            errors.append("Missing recipient card for card transfer")
    else:
        raise TypeError(f"Not a parsed receipt: {type(receipt).__name__}")

    return errors


def parse_extended(
    text: str,
    parser: Optional[ReceiptParser] = None,
    scorer: Optional[ConfidenceScorer] = None,
) -> ExtendedParseResult:
    """
    Parse receipt text and score it.

    Raises:
        ParseError: If the receipt itself cannot be parsed
    """
    parser = parser or ReceiptParser()
    scorer = scorer or ConfidenceScorer()

    receipt = parser.parse(text)
    extras = parser.parse_extras(text)
    confidence = scorer.score(receipt, text, extras)

    return ExtendedParseResult(
        receipt=receipt,
        extras=extras,
        confidence=confidence,
        warnings=scorer.collect_warnings(text, confidence),
    )
