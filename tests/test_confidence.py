"""Tests for receipt confidence scoring and validation."""

from datetime import datetime, timedelta, timezone

import pytest

from p2p_settlement.confidence import (
    ConfidenceScorer,
    ConfidenceWeights,
    parse_extended,
    validate_receipt,
)
from p2p_settlement.extractors import ReceiptParser, StatusNotSuccess
from p2p_settlement.schemas.receipt import BANK_TZ, ByPhone, ReceiptExtras, ToCard

from .conftest import SAMPLE_RECEIPT_BY_PHONE, SAMPLE_RECEIPT_TO_CLIENT


class TestConfidenceScorer:
    """Tests for the weighted checklist."""

    @pytest.fixture
    def scorer(self):
        return ConfidenceScorer()

    def test_complete_receipt_scores_one(self, scorer):
        """Every check satisfied gives full confidence."""
        parser = ReceiptParser()
        receipt = parser.parse(SAMPLE_RECEIPT_BY_PHONE)
        extras = parser.parse_extras(SAMPLE_RECEIPT_BY_PHONE)

        assert scorer.score(receipt, SAMPLE_RECEIPT_BY_PHONE, extras) == pytest.approx(1.0)

    def test_missing_operation_id_lowers_score(self, scorer):
        parser = ReceiptParser()
        receipt = parser.parse(SAMPLE_RECEIPT_TO_CLIENT)
        extras = parser.parse_extras(SAMPLE_RECEIPT_TO_CLIENT)

        assert scorer.score(receipt, SAMPLE_RECEIPT_TO_CLIENT, extras) == pytest.approx(11.5 / 12)

    def test_score_stays_in_range(self, scorer):
        """A bare receipt with no extras and no markers still scores in [0, 1]."""
        receipt = ToCard(
            transaction_datetime=datetime(2025, 8, 1, 21, 45, tzinfo=BANK_TZ),
            amount=0,
            sender="",
            recipient_card_masked="",
        )

        score = scorer.score(receipt, "", ReceiptExtras())

        assert 0.0 <= score < 0.5

    def test_custom_weights(self):
        """Zero weights for the bank marker make it irrelevant."""
        scorer = ConfidenceScorer(ConfidenceWeights(bank_marker=0.0))
        parser = ReceiptParser()
        text = SAMPLE_RECEIPT_BY_PHONE.replace("Т-Банк", "Банк")
        receipt = parser.parse(text)

        assert scorer.score(receipt, text, parser.parse_extras(text)) == pytest.approx(1.0)

    def test_warnings(self, scorer):
        warnings = scorer.collect_warnings("short", 0.5)

        assert "Text length is suspiciously short" in warnings
        assert "Bank name not found in text" in warnings
        assert "Low parsing confidence" in warnings

    def test_no_warnings_for_clean_receipt(self, scorer):
        assert scorer.collect_warnings(SAMPLE_RECEIPT_BY_PHONE, 1.0) == []


class TestParseExtended:
    """Parse, extras and scoring in one call."""

    def test_result_dict(self):
        result = parse_extended(SAMPLE_RECEIPT_BY_PHONE)
        data = result.to_dict()

        assert data["transfer_type"] == "BY_PHONE"
        assert data["confidence"] == 1.0
        assert data["warnings"] == []
        assert data["extras"]["operation_id"] == "A5160141012345"

    def test_parse_errors_propagate(self):
        with pytest.raises(StatusNotSuccess):
            parse_extended("Т-Банк\n09.06.2025 17:10:18\nСумма\n100 ₽\n")


class TestValidateReceipt:
    """Semantic checks on parsed receipts."""

    def _receipt(self, **overrides) -> ByPhone:
        values = {
            "transaction_datetime": datetime(2025, 6, 9, 17, 10, 18, tzinfo=BANK_TZ),
            "amount": 4500,
            "sender": "Иван И.",
            "recipient_phone": "+7 (912) 345-67-89",
        }
        values.update(overrides)
        return ByPhone(**values)

    def test_valid(self):
        assert validate_receipt(self._receipt()) == []

    def test_invalid_amount(self):
        assert "Invalid amount" in validate_receipt(self._receipt(amount=0))

    def test_future_date(self):
        future = datetime.now(timezone.utc) + timedelta(days=1)
        errors = validate_receipt(self._receipt(transaction_datetime=future))
        assert "Receipt date is in the future" in errors

    def test_reference_time(self):
        """`now` is injectable for deterministic checks."""
        now = datetime(2025, 6, 9, 0, 0, tzinfo=timezone.utc)
        assert "Receipt date is in the future" in validate_receipt(self._receipt(), now=now)

    def test_missing_phone(self):
        errors = validate_receipt(self._receipt(recipient_phone=""))
        assert "Missing recipient phone for phone transfer" in errors
