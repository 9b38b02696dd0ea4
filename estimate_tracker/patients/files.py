"""
Storage keys and checks for cost-estimate PDFs.
"""
import re
import time
from typing import Optional

MAX_PDF_BYTES = 10 * 1024 * 1024
PDF_CONTENT_TYPE = "application/pdf"

_UNSAFE_CHARACTERS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_filename(filename: str) -> str:
    """Replace every character other than letters, digits, ``.`` and ``-`` with ``_``."""
    return _UNSAFE_CHARACTERS.sub("_", filename)


def is_pdf_filename(filename: str) -> bool:
    return filename.lower().endswith(".pdf")


def build_pdf_key(owner_id: str, filename: str, timestamp_ms: Optional[int] = None) -> str:
    """
    Storage key of a cost estimate: ``<owner>/<epoch-ms>-<sanitized filename>``.
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{owner_id}/{timestamp_ms}-{sanitize_filename(filename)}"
