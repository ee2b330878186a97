"""
Content-addressed blob store for receipt PDFs.

Layout: <root>/<hash[:2]>/<hash>.pdf, hash = SHA256 of the PDF bytes.
Saving the same bytes twice is a no-op that returns the same path.
"""

import logging
import os
import tempfile
from pathlib import Path

from ..schemas.receipt import compute_file_hash

logger = logging.getLogger(__name__)


class PdfStore:
    """Raw PDF storage used for audit and as approval proof."""

    def __init__(self, root: Path | str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, file_hash: str) -> Path:
        return self.root / file_hash[:2] / f"{file_hash}.pdf"

    def exists(self, file_hash: str) -> bool:
        return self.path_for(file_hash).exists()

    def save(self, data: bytes) -> tuple[str, Path]:
        """
        Store PDF bytes.

        Returns:
            Tuple of (sha256 hex digest, file path)
        """
        file_hash = compute_file_hash(data)
        path = self.path_for(file_hash)

        if path.exists():
            logger.debug("PDF %s already stored", file_hash[:12])
            return file_hash, path

        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.info("Stored PDF %s (%d bytes)", file_hash[:12], len(data))
        return file_hash, path

    def load(self, ref: Path | str) -> bytes:
        """
        Load PDF bytes by path or by hash.

        Raises:
            FileNotFoundError: If nothing is stored under the reference
        """
        path = Path(ref)
        if not path.exists():
            path = self.path_for(str(ref))
        with open(path, "rb") as f:
            return f.read()
