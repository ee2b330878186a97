"""
Blob storage for raw receipt PDFs.
"""

from .pdf_store import PdfStore

__all__ = ["PdfStore"]
