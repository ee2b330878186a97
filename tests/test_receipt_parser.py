"""Tests for the bank receipt parser."""

from datetime import datetime, timezone

import pytest

from p2p_settlement.extractors import (
    AmountNotFound,
    DateTimeNotFound,
    ParseError,
    ReceiptParser,
    RecipientCardNotFound,
    RecipientNotFound,
    RecipientPhoneNotFound,
    SenderNotFound,
    StatusNotSuccess,
    UnknownTransferType,
)
from p2p_settlement.schemas.receipt import (
    BANK_TZ,
    ByPhone,
    ReceiptStatus,
    ToCard,
    ToPlatformUser,
    TransferType,
    card_last4,
    compute_file_hash,
    project_fields,
    transfer_type_of,
)

from .conftest import (
    SAMPLE_RECEIPT_BY_PHONE,
    SAMPLE_RECEIPT_BY_PHONE_COLUMNS,
    SAMPLE_RECEIPT_TO_CARD,
    SAMPLE_RECEIPT_TO_CLIENT,
)


@pytest.fixture
def parser() -> ReceiptParser:
    return ReceiptParser()


class TestByPhone:
    """Transfers by phone number."""

    def test_parses_sequential_layout(self, parser):
        """All fields come out of the label/value layout."""
        receipt = parser.parse(SAMPLE_RECEIPT_BY_PHONE)

        assert isinstance(receipt, ByPhone)
        assert receipt.amount == 4500
        assert receipt.sender == "Иван Иванович И."
        assert receipt.recipient_phone == "+7 (912) 345-67-89"
        assert receipt.recipient_name == "Петр П."
        assert receipt.recipient_bank == "Сбербанк"
        assert receipt.commission == 0
        assert receipt.status == ReceiptStatus.SUCCESS
        assert receipt.transaction_datetime == datetime(2025, 6, 9, 17, 10, 18, tzinfo=BANK_TZ)

    def test_parses_column_layout(self, parser):
        """Labels block followed by values block gives the same fields."""
        receipt = parser.parse(SAMPLE_RECEIPT_BY_PHONE_COLUMNS)

        assert isinstance(receipt, ByPhone)
        assert receipt.sender == "Иван Иванович И."
        assert receipt.recipient_phone == "+7 (912) 345-67-89"
        assert receipt.recipient_name == "Петр П."
        assert receipt.recipient_bank == "Сбербанк"

    def test_timestamp_is_bank_local(self, parser):
        """17:10 Moscow time is 14:10 UTC."""
        receipt = parser.parse(SAMPLE_RECEIPT_BY_PHONE)
        utc = receipt.transaction_datetime.astimezone(timezone.utc)
        assert (utc.hour, utc.minute) == (14, 10)

    def test_missing_phone(self, parser):
        text = SAMPLE_RECEIPT_BY_PHONE.replace("+7 (912) 345-67-89", "скрыт")
        with pytest.raises(RecipientPhoneNotFound):
            parser.parse(text)


class TestToPlatformUser:
    """Transfers to another client of the bank."""

    def test_parses_receipt(self, parser):
        receipt = parser.parse(SAMPLE_RECEIPT_TO_CLIENT)

        assert isinstance(receipt, ToPlatformUser)
        assert receipt.amount == 12000
        assert receipt.sender == "Мария Сергеевна К."
        assert receipt.recipient_name == "Алексей Б."
        assert receipt.recipient_card_suffix == "4207"
        assert receipt.commission is None

    def test_timestamp_without_seconds(self, parser):
        receipt = parser.parse(SAMPLE_RECEIPT_TO_CLIENT)
        assert receipt.transaction_datetime == datetime(2025, 7, 15, 9, 5, 0, tzinfo=BANK_TZ)

    def test_missing_card(self, parser):
        text = SAMPLE_RECEIPT_TO_CLIENT.replace("*4207", "")
        with pytest.raises(RecipientCardNotFound):
            parser.parse(text)

    def test_missing_recipient(self, parser):
        text = SAMPLE_RECEIPT_TO_CLIENT.replace("Получатель\nАлексей Б.\n", "")
        with pytest.raises(RecipientNotFound):
            parser.parse(text)


class TestToCard:
    """Transfers to a card number."""

    def test_parses_receipt(self, parser):
        receipt = parser.parse(SAMPLE_RECEIPT_TO_CARD)

        assert isinstance(receipt, ToCard)
        assert receipt.amount == 10000
        assert receipt.sender == "Ольга Н."
        assert receipt.recipient_card_masked == "220070******1234"
        assert receipt.commission == 50

    def test_amount_excludes_total(self, parser):
        """'Итого' includes the commission and must not be taken as the amount."""
        receipt = parser.parse(SAMPLE_RECEIPT_TO_CARD)
        assert receipt.amount == 10000

    def test_missing_card_mask(self, parser):
        text = SAMPLE_RECEIPT_TO_CARD.replace("220070******1234", "2200 70** **** 1234")
        with pytest.raises(RecipientCardNotFound):
            parser.parse(text)


class TestParseFailures:
    """Each missing required field has its own error."""

    def test_not_successful(self, parser):
        text = SAMPLE_RECEIPT_BY_PHONE.replace("Успешно", "В обработке")
        with pytest.raises(StatusNotSuccess):
            parser.parse(text)

    def test_no_datetime(self, parser):
        with pytest.raises(DateTimeNotFound):
            parser.parse("Успешно\nСумма\n100 ₽\n")

    def test_no_amount(self, parser):
        with pytest.raises(AmountNotFound):
            parser.parse("Успешно\n09.06.2025 17:10\n")

    def test_no_sender(self, parser):
        with pytest.raises(SenderNotFound):
            parser.parse("Успешно\n09.06.2025 17:10\nСумма\n100 ₽\nПо номеру телефона\n")

    def test_unknown_transfer_type(self, parser):
        text = SAMPLE_RECEIPT_BY_PHONE.replace("По номеру телефона", "Между своими счетами")
        with pytest.raises(UnknownTransferType):
            parser.parse(text)

    def test_error_codes(self):
        """Errors carry a stable code and a default message."""
        error = AmountNotFound()
        assert isinstance(error, ParseError)
        assert error.to_dict() == {
            "error": "AMOUNT_NOT_FOUND",
            "message": "Transfer amount not found.",
        }

    def test_custom_message(self):
        assert SenderNotFound("nothing here").to_dict()["message"] == "nothing here"


class TestDateTimeExtraction:
    """Ordered date/time patterns."""

    def test_spaced_variant(self, parser):
        result = parser.extract_datetime("09 . 06 . 2025 17 : 10 : 18")
        assert result == datetime(2025, 6, 9, 17, 10, 18, tzinfo=BANK_TZ)

    def test_comma_between_date_and_time(self, parser):
        result = parser.extract_datetime("09.06.2025, 17:10")
        assert result == datetime(2025, 6, 9, 17, 10, 0, tzinfo=BANK_TZ)

    def test_comma_with_seconds(self, parser):
        result = parser.extract_datetime("Дата 09.06.2025,17:10:18")
        assert result == datetime(2025, 6, 9, 17, 10, 18, tzinfo=BANK_TZ)

    def test_date_only_defaults_to_noon(self, parser):
        result = parser.extract_datetime("Дата операции 09.06.2025")
        assert result == datetime(2025, 6, 9, 12, 0, 0, tzinfo=BANK_TZ)

    def test_skips_impossible_date(self, parser):
        result = parser.extract_datetime("31.02.2025 10:00:00\n01.03.2025 11:00:00")
        assert result == datetime(2025, 3, 1, 11, 0, 0, tzinfo=BANK_TZ)

    def test_custom_timezone(self):
        parser = ReceiptParser(tz=timezone.utc)
        assert parser.extract_datetime("09.06.2025 17:10:18").tzinfo == timezone.utc

    def test_none_when_absent(self, parser):
        assert parser.extract_datetime("no dates here") is None


class TestAmountExtraction:
    """Amount before the currency glyph."""

    def test_nbsp_grouping(self, parser):
        assert parser.extract_amount("Сумма\n1 250 000 ₽") == 1250000

    def test_ocr_glyph_substitute(self, parser):
        assert parser.extract_amount("Сумма 4 500 i") == 4500

    def test_amount_before_label(self, parser):
        assert parser.extract_amount("4 500 ₽ Сумма") == 4500


class TestSenderExtraction:
    """Sender name patterns and denylist."""

    def test_glued_to_label(self, parser):
        assert parser.extract_sender("Успешно\nИван И.Отправитель\n") == "Иван И."

    def test_space_before_label(self, parser):
        assert parser.extract_sender("Успешно\nИван И. Отправитель\n") == "Иван И."

    def test_line_before_label(self, parser):
        assert parser.extract_sender("Успешно\nИван И.\nОтправитель\n") == "Иван И."

    def test_label_name_rejected(self, parser):
        """A field label directly above 'Отправитель' is not a name."""
        assert parser.extract_sender("Комиссия\nОтправитель\nАнна К.\n") == "Анна К."

    def test_too_short(self, parser):
        assert parser.extract_sender("Отправитель\nЯ\n") is None


class TestExtras:
    """Audit-only fields."""

    def test_phone_receipt_extras(self, parser):
        extras = parser.parse_extras(SAMPLE_RECEIPT_BY_PHONE)

        assert extras.total == 4500
        assert extras.operation_id == "A5160141012345"
        assert extras.sbp_code == "123456789"
        assert extras.receipt_number == "1-23-456-789-012"
        assert extras.sender_account == "****1234"

    def test_missing_extras_are_none(self, parser):
        extras = parser.parse_extras(SAMPLE_RECEIPT_TO_CLIENT)
        assert extras.operation_id is None
        assert extras.sbp_code is None
        assert extras.receipt_number == "1-10-200-300-400"


class TestFieldProjection:
    """Union -> flat storage columns."""

    def test_phone_projection(self, parser):
        fields = project_fields(parser.parse(SAMPLE_RECEIPT_BY_PHONE))

        assert fields.transfer_type == TransferType.BY_PHONE
        assert fields.recipient_phone == "+7 (912) 345-67-89"
        assert fields.recipient_card is None

    def test_card_projection(self, parser):
        fields = project_fields(parser.parse(SAMPLE_RECEIPT_TO_CARD))

        assert fields.transfer_type == TransferType.TO_CARD
        assert fields.recipient_card == "220070******1234"
        assert fields.recipient_phone is None
        assert fields.recipient_name is None

    def test_client_projection(self, parser):
        fields = project_fields(parser.parse(SAMPLE_RECEIPT_TO_CLIENT))

        assert fields.recipient_card == "4207"
        assert fields.recipient_name == "Алексей Б."

    def test_rejects_non_receipt(self):
        with pytest.raises(TypeError):
            project_fields({"amount": 1})
        with pytest.raises(TypeError):
            transfer_type_of("receipt")

    def test_card_last4(self):
        assert card_last4("220070******1234") == "1234"
        assert card_last4("4207") == "4207"
        assert card_last4("*12") is None
        assert card_last4(None) is None

    def test_file_hash_is_sha256(self):
        assert len(compute_file_hash(b"pdf")) == 64
        assert compute_file_hash(b"pdf") == compute_file_hash(b"pdf")
