"""Content type detection and text extraction for uploaded files."""

import io
import logging
from typing import Literal

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from backend.app.errors import InsufficientContent, UnsupportedMediaType

logger = logging.getLogger(__name__)

ContentKind = Literal["pdf", "text"]

PDF_MAGIC = b"%PDF-"
UTF8_BOM = b"\xef\xbb\xbf"
_SNIFF_BYTES = 8192


def detect_content_type(data: bytes) -> ContentKind:
    """Detect the actual content type from the byte signature.

    The caller-declared MIME type is never trusted: a mislabeled upload is
    classified by what it contains.

    Raises:
        UnsupportedMediaType: If the bytes are neither PDF nor UTF-8 text
    """
    if data.startswith(PDF_MAGIC):
        return "pdf"

    head = data[:_SNIFF_BYTES]
    if b"\x00" in head:
        raise UnsupportedMediaType()

    try:
        head.decode("utf-8")
    except UnicodeDecodeError as e:
        # A multi-byte sequence may be cut at the sniff boundary
        if e.start < len(head) - 3:
            raise UnsupportedMediaType() from e

    return "text"


def extract_text(data: bytes, kind: ContentKind) -> str:
    """Extract plain text from file bytes.

    Raises:
        UnsupportedMediaType: If the bytes cannot be parsed as the detected type
    """
    if kind == "pdf":
        try:
            reader = PdfReader(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
        except (PdfReadError, ValueError, KeyError) as e:
            logger.warning(f"PDF parsing failed: {e}")
            raise UnsupportedMediaType("Could not read PDF file.") from e
        return "\n\n".join(page.strip() for page in pages if page.strip())

    if data.startswith(UTF8_BOM):
        data = data[len(UTF8_BOM) :]
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise UnsupportedMediaType() from e


def ensure_sufficient_content(text: str, min_chars: int = 50) -> None:
    """Reject text with too little signal to embed meaningfully.

    Raises:
        InsufficientContent: If fewer than min_chars non-whitespace characters
    """
    meaningful = sum(1 for char in text if not char.isspace())
    if meaningful < min_chars:
        raise InsufficientContent()


def summarize_text(text: str, max_chars: int = 280) -> str | None:
    """Build a short extractive summary from the leading sentences."""
    flat = " ".join(text.split())
    if not flat:
        return None
    if len(flat) <= max_chars:
        return flat

    window = flat[:max_chars]
    cut = max(window.rfind(". "), window.rfind("? "), window.rfind("! "))
    if cut >= max_chars // 3:
        return window[: cut + 1]
    return window.rsplit(" ", 1)[0] + "..."
