"""
Receipt text extraction and parsing.

Provides:
- PdfTextExtractor: PDF bytes -> text (pdfplumber)
- ReceiptParser: text -> ParsedReceipt (T-Bank transfer receipts)
- ParseError hierarchy for receipts that cannot be parsed
"""

from .base import (
    AmountNotFound,
    DateTimeNotFound,
    ParseError,
    RecipientCardNotFound,
    RecipientNotFound,
    RecipientPhoneNotFound,
    SenderNotFound,
    StatusNotSuccess,
    TextExtractionError,
    TextExtractor,
    UnknownTransferType,
)
from .pdf_text import PdfTextExtractor
from .tbank_receipt import ReceiptParser

__all__ = [
    "ReceiptParser",
    "PdfTextExtractor",
    "TextExtractor",
    "TextExtractionError",
    "ParseError",
    "StatusNotSuccess",
    "DateTimeNotFound",
    "AmountNotFound",
    "SenderNotFound",
    "UnknownTransferType",
    "RecipientPhoneNotFound",
    "RecipientNotFound",
    "RecipientCardNotFound",
]
