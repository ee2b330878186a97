"""
T-Bank transfer receipt parser.

Turns the text layer of a bank transfer receipt into a typed ParsedReceipt.
Pure function over text: no I/O, no clock.

Receipts come in two text layouts depending on the PDF generator:
- sequential: each label is followed by its value
- columns: all labels first, then all values in the same order

Supported transfer kinds:
- "По номеру телефона"  -> ByPhone
- "Клиенту Т-Банка"     -> ToPlatformUser
- "На карту"            -> ToCard
"""

import logging
import re
from collections.abc import Callable
from datetime import datetime, timezone

from ..schemas.receipt import (
    BANK_TZ,
    ByPhone,
    ParsedReceipt,
    ReceiptExtras,
    ToCard,
    ToPlatformUser,
    TransferType,
)
from .base import (
    AmountNotFound,
    DateTimeNotFound,
    RecipientCardNotFound,
    RecipientNotFound,
    RecipientPhoneNotFound,
    SenderNotFound,
    StatusNotSuccess,
    UnknownTransferType,
)

logger = logging.getLogger(__name__)

SUCCESS_MARKER = "Успешно"
NO_COMMISSION_MARKER = "Без комиссии"
SENDER_LABEL = "Отправитель"

# Date and time are separated by whitespace or a comma: "09.06.2025, 17:10"
_DATE = r"(\d{2})\.(\d{2})\.(\d{4})"
_SPACED_DATE = r"(\d{2})\s*\.\s*(\d{2})\s*\.\s*(\d{4})"
_SEP = r"(?:\s*,\s*|\s+)"

# Date/time patterns (first match wins)
DATETIME_PATTERNS = [
    # 09.06.2025 17:10:18
    re.compile(_DATE + _SEP + r"(\d{2}):(\d{2}):(\d{2})"),
    # 09.06.2025 17:10
    re.compile(_DATE + _SEP + r"(\d{2}):(\d{2})"),
    # 09 . 06 . 2025 17 : 10 : 18
    re.compile(_SPACED_DATE + _SEP + r"(\d{2})\s*:\s*(\d{2})\s*:\s*(\d{2})"),
    # 09 . 06 . 2025 17 : 10
    re.compile(_SPACED_DATE + _SEP + r"(\d{2})\s*:\s*(\d{2})"),
]
DATE_ONLY_PATTERN = re.compile(_DATE)
DATE_ONLY_HOUR = 12

# Integer with space-grouped thousands: "4 500", "1 250 000"
_GROUPED_INT = r"(\d+(?:[ \u00a0\u202f\u2009]+\d+)*)"
# Ruble glyph, or "i" as some PDF fonts render it
_RUB = r"[₽i]"

# "Сумма" is the transferred amount; "Итого" includes commission and is not used
AMOUNT_PATTERNS = [
    re.compile(rf"Сумма\s*\n?\s*{_GROUPED_INT}\s*{_RUB}"),
    re.compile(rf"{_GROUPED_INT}\s*{_RUB}\s*Сумма"),
]
TOTAL_PATTERN = re.compile(rf"Итого[ \t]*\n?[ \t]*{_GROUPED_INT}[ \t]*{_RUB}")
COMMISSION_PATTERN = re.compile(rf"Комиссия[ \t]*\n?[ \t]*{_GROUPED_INT}")

# Person name as printed on receipts: "Иван Иванович И."
_NAME = r"[А-ЯЁ][а-яё]+(?: [А-ЯЁ][а-яё]*\.?)*"
NAME_LINE = re.compile(rf"^{_NAME}$")

SENDER_PATTERNS = [
    # "Иван И.Отправитель"
    re.compile(rf"(?<![А-Яа-яЁё])({_NAME})Отправитель"),
    # "Иван И. Отправитель"
    re.compile(rf"(?<![А-Яа-яЁё])({_NAME}) +Отправитель"),
    # "Иван И.\nОтправитель"
    re.compile(rf"(?<![А-Яа-яЁё])({_NAME})[ \t]*\n[ \t]*Отправитель"),
    # "Отправитель\nИван И."
    re.compile(rf"Отправитель[ \t]*\n?[ \t]*({_NAME})"),
]

# Field labels that can never be a person name
SENDER_DENYLIST = frozenset(
    {
        "Телефон",
        "Карта",
        "Счет",
        "Банк",
        "Получатель",
        "Отправитель",
        "Сумма",
        "Комиссия",
        "Итого",
        "Статус",
        "Перевод",
        "Успешно",
    }
)
MIN_SENDER_LENGTH = 3

TRANSFER_TYPE_MARKERS = [
    ("По номеру телефона", TransferType.BY_PHONE),
    ("Клиенту Т-Банка", TransferType.TO_PLATFORM_USER),
    ("На карту", TransferType.TO_CARD),
]

# Labels of the detail block, in print order
FIELD_LABELS = (
    "Комиссия",
    "Отправитель",
    "Телефон получателя",
    "Получатель",
    "Банк получателя",
    "Счет списания",
    "Карта получателя",
)
# Footer lines that end the detail block
FOOTER_PREFIXES = ("Идентификатор операции", "СБП", "Квитанция", "Служба")
LABEL_WINDOW = 10

PHONE_PATTERN = re.compile(r"\+7\s*\(\d{3}\)\s*\d{3}-\d{2}-\d{2}")
CARD_SUFFIX_PATTERN = re.compile(r"Карта получателя\s*\*\s*(\d{4})")
CARD_MASK_PATTERN = re.compile(r"Карта получателя[\s\S]*?(\d{6}\*{6}\d{4})")

OPERATION_ID_PATTERN = re.compile(r"Идентификатор операции\s+(\S+)")
SBP_CODE_PATTERN = re.compile(r"СБП\s*\n\s*(\d+)")
RECEIPT_NUMBER_PATTERN = re.compile(r"Квитанция\s*№\s*([\d-]+)")


def _to_int(grouped: str) -> int:
    """Parse '4 500' -> 4500."""
    return int(re.sub(r"\s+", "", grouped))


def _lines(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


def _is_name(line: str) -> bool:
    return bool(NAME_LINE.match(line))


def _is_sender_name(name: str) -> bool:
    name = name.strip()
    if len(name) < MIN_SENDER_LENGTH:
        return False
    return name.split()[0] not in SENDER_DENYLIST


def _is_column_layout(lines: list[str]) -> bool:
    """True if the labels are printed as one consecutive block."""
    indices = sorted(lines.index(label) for label in FIELD_LABELS if label in lines)
    if len(indices) < 2:
        return False
    return all(b - a == 1 for a, b in zip(indices, indices[1:]))


def _value_after_label(
    lines: list[str],
    label: str,
    predicate: Callable[[str], bool],
) -> str | None:
    """
    Find the value printed for a label.

    Column layout: the value sits at the label's position in the values block.
    Sequential layout: the first non-label line after the label that satisfies
    the predicate, stopping at the receipt footer.
    Inline ("Получатель Иван И."): the remainder of the label's line.
    """
    if label not in lines:
        for line in lines:
            if line.startswith(label + " "):
                value = line[len(label) :].strip()
                if value and predicate(value):
                    return value
        return None

    label_idx = lines.index(label)

    if _is_column_layout(lines):
        present = sorted(lines.index(lb) for lb in FIELD_LABELS if lb in lines)
        position = present.index(label_idx)
        value_idx = present[-1] + 1 + position
        if value_idx < len(lines) and predicate(lines[value_idx]):
            return lines[value_idx]

    for line in lines[label_idx + 1 : label_idx + 1 + LABEL_WINDOW]:
        if line in FIELD_LABELS:
            continue
        if line.startswith(FOOTER_PREFIXES):
            break
        if predicate(line):
            return line

    return None


class ReceiptParser:
    """
    Parser for T-Bank transfer receipts.

    Usage:
        parser = ReceiptParser()
        receipt = parser.parse(text)   # raises ParseError subclasses
    """

    def __init__(self, tz: timezone = BANK_TZ):
        """
        Args:
            tz: Timezone of the wall-clock time printed on receipts
        """
        self.tz = tz

    def parse(self, text: str) -> ParsedReceipt:
        """
        Parse receipt text.

        Raises:
            StatusNotSuccess, DateTimeNotFound, AmountNotFound, SenderNotFound,
            UnknownTransferType, RecipientPhoneNotFound, RecipientNotFound,
            RecipientCardNotFound
        """
        if SUCCESS_MARKER not in text:
            raise StatusNotSuccess()

        transaction_datetime = self.extract_datetime(text)
        if transaction_datetime is None:
            raise DateTimeNotFound()

        amount = self.extract_amount(text)
        if amount is None:
            raise AmountNotFound()

        sender = self.extract_sender(text)
        if sender is None:
            raise SenderNotFound()

        transfer_type = self.detect_transfer_type(text)
        if transfer_type is None:
            raise UnknownTransferType()

        commission = self.extract_commission(text)

        if transfer_type == TransferType.BY_PHONE:
            receipt = self._parse_by_phone(text, transaction_datetime, amount, sender, commission)
        elif transfer_type == TransferType.TO_PLATFORM_USER:
            receipt = self._parse_to_platform_user(
                text, transaction_datetime, amount, sender, commission
            )
        else:
            receipt = self._parse_to_card(text, transaction_datetime, amount, sender, commission)

        logger.debug(
            "Parsed %s receipt: amount=%s sender=%s",
            transfer_type.value,
            amount,
            sender,
        )
        return receipt

    def extract_datetime(self, text: str) -> datetime | None:
        """Extract the transfer timestamp. Date-only receipts default to noon."""
        for pattern in DATETIME_PATTERNS:
            for match in pattern.finditer(text):
                day, month, year, hour, minute = (int(g) for g in match.groups()[:5])
                second = int(match.group(6)) if pattern.groups >= 6 else 0
                try:
                    return datetime(year, month, day, hour, minute, second, tzinfo=self.tz)
                except ValueError:
                    continue

        for match in DATE_ONLY_PATTERN.finditer(text):
            day, month, year = (int(g) for g in match.groups())
            try:
                return datetime(year, month, day, DATE_ONLY_HOUR, 0, 0, tzinfo=self.tz)
            except ValueError:
                continue

        return None

    def extract_amount(self, text: str) -> int | None:
        """Extract the transferred amount (not the total)."""
        for pattern in AMOUNT_PATTERNS:
            match = pattern.search(text)
            if match:
                return _to_int(match.group(1))
        return None

    def extract_sender(self, text: str) -> str | None:
        """Extract the sender name."""
        for pattern in SENDER_PATTERNS:
            for match in pattern.finditer(text):
                name = match.group(1).strip()
                if _is_sender_name(name):
                    return name

        value = _value_after_label(
            _lines(text),
            SENDER_LABEL,
            lambda line: _is_name(line) and _is_sender_name(line),
        )
        return value

    def detect_transfer_type(self, text: str) -> TransferType | None:
        for marker, transfer_type in TRANSFER_TYPE_MARKERS:
            if marker in text:
                return transfer_type
        return None

    def extract_commission(self, text: str) -> int | None:
        """Commission: explicit amount, 0 for "Без комиссии", None if not printed."""
        match = COMMISSION_PATTERN.search(text)
        if match:
            return _to_int(match.group(1))
        if NO_COMMISSION_MARKER in text:
            return 0
        return None

    def parse_extras(self, text: str) -> ReceiptExtras:
        """Extract optional audit fields. Never fails."""
        extras = ReceiptExtras()

        match = TOTAL_PATTERN.search(text)
        if match:
            extras.total = _to_int(match.group(1))

        match = OPERATION_ID_PATTERN.search(text)
        if match:
            extras.operation_id = match.group(1)

        match = SBP_CODE_PATTERN.search(text)
        if match:
            extras.sbp_code = match.group(1)

        match = RECEIPT_NUMBER_PATTERN.search(text)
        if match:
            extras.receipt_number = match.group(1)

        extras.sender_account = _value_after_label(
            _lines(text), "Счет списания", lambda line: "****" in line
        )

        return extras

    # Variant extractors

    def _parse_by_phone(
        self,
        text: str,
        transaction_datetime: datetime,
        amount: int,
        sender: str,
        commission: int | None,
    ) -> ByPhone:
        label_pos = text.find("Телефон получателя")
        phone_match = PHONE_PATTERN.search(text, label_pos if label_pos >= 0 else 0)
        if not phone_match:
            raise RecipientPhoneNotFound()

        lines = _lines(text)
        recipient_name = _value_after_label(
            lines,
            "Получатель",
            lambda line: _is_name(line) and "банк" not in line.lower(),
        )
        recipient_bank = _value_after_label(
            lines, "Банк получателя", lambda line: "банк" in line.lower()
        )

        return ByPhone(
            transaction_datetime=transaction_datetime,
            amount=amount,
            sender=sender,
            recipient_phone=phone_match.group(0),
            recipient_name=recipient_name,
            recipient_bank=recipient_bank,
            commission=commission,
        )

    def _parse_to_platform_user(
        self,
        text: str,
        transaction_datetime: datetime,
        amount: int,
        sender: str,
        commission: int | None,
    ) -> ToPlatformUser:
        recipient_name = _value_after_label(
            _lines(text),
            "Получатель",
            lambda line: not line.startswith(FOOTER_PREFIXES) and not line.startswith("*"),
        )
        if not recipient_name:
            raise RecipientNotFound()

        card_match = CARD_SUFFIX_PATTERN.search(text)
        if not card_match:
            raise RecipientCardNotFound()

        return ToPlatformUser(
            transaction_datetime=transaction_datetime,
            amount=amount,
            sender=sender,
            recipient_name=recipient_name,
            recipient_card_suffix=card_match.group(1),
            commission=commission,
        )

    def _parse_to_card(
        self,
        text: str,
        transaction_datetime: datetime,
        amount: int,
        sender: str,
        commission: int | None,
    ) -> ToCard:
        card_match = CARD_MASK_PATTERN.search(text)
        if not card_match:
            raise RecipientCardNotFound()

        return ToCard(
            transaction_datetime=transaction_datetime,
            amount=amount,
            sender=sender,
            recipient_card_masked=card_match.group(1),
            commission=commission,
        )
