"""
Base text extractor interface and receipt parse errors.
"""

from abc import ABC, abstractmethod


class TextExtractionError(Exception):
    """Raised when a PDF cannot be turned into text."""

    pass


class ParseError(Exception):
    """
    Base class for receipt parse failures.

    `code` is the stable identifier stored with a FAILED receipt.
    """

    code = "PARSE_ERROR"

    def __init__(self, message: str | None = None):
        self.message = message or self.__doc__.strip().splitlines()[0]
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class StatusNotSuccess(ParseError):
    """Success marker not found in receipt."""

    code = "STATUS_NOT_SUCCESS"


class DateTimeNotFound(ParseError):
    """Transfer date and time not found."""

    code = "DATETIME_NOT_FOUND"


class AmountNotFound(ParseError):
    """Transfer amount not found."""

    code = "AMOUNT_NOT_FOUND"


class SenderNotFound(ParseError):
    """Sender name not found."""

    code = "SENDER_NOT_FOUND"


class UnknownTransferType(ParseError):
    """Transfer type could not be determined."""

    code = "UNKNOWN_TRANSFER_TYPE"


class RecipientPhoneNotFound(ParseError):
    """Recipient phone not found."""

    code = "RECIPIENT_PHONE_NOT_FOUND"


class RecipientNotFound(ParseError):
    """Recipient name not found."""

    code = "RECIPIENT_NOT_FOUND"


class RecipientCardNotFound(ParseError):
    """Recipient card not found."""

    code = "RECIPIENT_CARD_NOT_FOUND"


class TextExtractor(ABC):
    """
    Turns a PDF byte buffer into plain text.

    Implementations must not interpret the text; that is the parser's job.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Extractor name for logging."""
        pass

    @abstractmethod
    def extract(self, pdf_bytes: bytes) -> str:
        """
        Extract text from a PDF.

        Raises:
            TextExtractionError: If the bytes are not a readable PDF
        """
        pass
