"""
PDF text extraction via pdfplumber.

Bank receipts are single-page, text-layer PDFs; no OCR is needed.
"""

import io
import logging

import pdfplumber

from .base import TextExtractionError, TextExtractor

logger = logging.getLogger(__name__)


class PdfTextExtractor(TextExtractor):
    """Extract the text layer of every page, joined by newlines."""

    @property
    def name(self) -> str:
        return "pdfplumber"

    def extract(self, pdf_bytes: bytes) -> str:
        if not pdf_bytes:
            raise TextExtractionError("Empty PDF buffer")

        try:
            with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
                pages = [page.extract_text() or "" for page in pdf.pages]
        except Exception as e:
            raise TextExtractionError(f"Failed to read PDF: {e}") from e

        text = "\n".join(pages).strip()
        logger.debug("Extracted %d chars from %d page(s)", len(text), len(pages))
        return text
