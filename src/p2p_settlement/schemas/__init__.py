"""
Schemas for parsed receipts and content hashing.
"""

from .receipt import (
    BANK_TZ,
    ByPhone,
    ParsedReceipt,
    ReceiptExtras,
    ReceiptFields,
    ReceiptStatus,
    ToCard,
    ToPlatformUser,
    TransferType,
    card_last4,
    compute_file_hash,
    project_fields,
    transfer_type_of,
)

__all__ = [
    "BANK_TZ",
    "ByPhone",
    "ParsedReceipt",
    "ReceiptExtras",
    "ReceiptFields",
    "ReceiptStatus",
    "ToCard",
    "ToPlatformUser",
    "TransferType",
    "card_last4",
    "compute_file_hash",
    "project_fields",
    "transfer_type_of",
]
