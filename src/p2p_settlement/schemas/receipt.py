"""
Parsed receipt types (CRITICAL).

A bank receipt is exactly one of three transfer shapes. They are modelled as
a closed union of independent dataclasses rather than a base class with
optional fields, so a phone receipt can never carry a card mask and vice
versa. Every consumer dispatches with isinstance and raises on anything else.

    ParsedReceipt = ByPhone | ToPlatformUser | ToCard

Common fields (present on every variant):
- transaction_datetime: aware datetime of the transfer (bank local time)
- amount: integer rubles, commission excluded
- sender: sender display name ("Иван Иванович И.")
- status: always ReceiptStatus.SUCCESS (failures are ParseError, not receipts)
- commission: int, 0 for an explicit "no commission" marker, None if absent
"""

import hashlib
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import ClassVar, Union

# Receipts print bank-local wall-clock time (Moscow, no DST).
BANK_TZ = timezone(timedelta(hours=3), name="MSK")


class ReceiptStatus(str, Enum):
    """Status of a stored receipt."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class TransferType(str, Enum):
    """Transfer kind printed on the receipt."""

    BY_PHONE = "BY_PHONE"
    TO_PLATFORM_USER = "TO_PLATFORM_USER"
    TO_CARD = "TO_CARD"


@dataclass
class ByPhone:
    """Transfer by phone number (SBP)."""

    transfer_type: ClassVar[TransferType] = TransferType.BY_PHONE

    transaction_datetime: datetime
    amount: int
    sender: str
    recipient_phone: str  # "+7 (912) 345-67-89"
    recipient_name: str | None = None
    recipient_bank: str | None = None
    commission: int | None = None
    status: ReceiptStatus = ReceiptStatus.SUCCESS


@dataclass
class ToPlatformUser:
    """Transfer to another client of the same bank."""

    transfer_type: ClassVar[TransferType] = TransferType.TO_PLATFORM_USER

    transaction_datetime: datetime
    amount: int
    sender: str
    recipient_name: str
    recipient_card_suffix: str  # last 4 digits
    commission: int | None = None
    status: ReceiptStatus = ReceiptStatus.SUCCESS


@dataclass
class ToCard:
    """Transfer to a card number."""

    transfer_type: ClassVar[TransferType] = TransferType.TO_CARD

    transaction_datetime: datetime
    amount: int
    sender: str
    recipient_card_masked: str  # "220070******1234"
    commission: int | None = None
    status: ReceiptStatus = ReceiptStatus.SUCCESS


ParsedReceipt = Union[ByPhone, ToPlatformUser, ToCard]


@dataclass
class ReceiptExtras:
    """Optional receipt fields kept for audit only (never used for matching)."""

    total: int | None = None
    operation_id: str | None = None
    sbp_code: str | None = None
    receipt_number: str | None = None
    sender_account: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ReceiptFields:
    """
    Flat, nullable projection of a ParsedReceipt for storage.

    Only the columns belonging to the matched variant are set; a receipt that
    failed to parse is stored with every field None.
    """

    transfer_type: TransferType | None = None
    transaction_date: datetime | None = None
    amount: int = 0
    sender_name: str | None = None
    commission: int | None = None
    recipient_name: str | None = None
    recipient_phone: str | None = None
    recipient_bank: str | None = None
    recipient_card: str | None = None


def transfer_type_of(receipt: ParsedReceipt) -> TransferType:
    """Return the discriminant of a parsed receipt."""
    if isinstance(receipt, (ByPhone, ToPlatformUser, ToCard)):
        return receipt.transfer_type
    raise TypeError(f"Not a parsed receipt: {type(receipt).__name__}")


def project_fields(receipt: ParsedReceipt) -> ReceiptFields:
    """Project a parsed receipt onto the storage columns."""
    fields = ReceiptFields(
        transfer_type=transfer_type_of(receipt),
        transaction_date=receipt.transaction_datetime,
        amount=receipt.amount,
        sender_name=receipt.sender,
        commission=receipt.commission,
    )

    if isinstance(receipt, ByPhone):
        fields.recipient_phone = receipt.recipient_phone
        fields.recipient_name = receipt.recipient_name
        fields.recipient_bank = receipt.recipient_bank
    elif isinstance(receipt, ToPlatformUser):
        fields.recipient_name = receipt.recipient_name
        fields.recipient_card = receipt.recipient_card_suffix
    elif isinstance(receipt, ToCard):
        fields.recipient_card = receipt.recipient_card_masked
    else:
        raise TypeError(f"Not a parsed receipt: {type(receipt).__name__}")

    return fields


def card_last4(card: str | None) -> str | None:
    """Last four digits of a card number, suffix or mask. None if fewer than 4 digits."""
    if not card:
        return None
    digits = "".join(ch for ch in card if ch.isdigit())
    if len(digits) < 4:
        return None
    return digits[-4:]


def compute_file_hash(file_bytes: bytes) -> str:
    """
    Compute SHA256 hash of file bytes.

    Used as the content address of stored PDFs.
    """
    return hashlib.sha256(file_bytes).hexdigest()
