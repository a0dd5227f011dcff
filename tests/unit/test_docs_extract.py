"""Unit tests for content type detection and text extraction."""

import io

import pytest
from pypdf import PdfWriter

from backend.app.docs.extract import (
    detect_content_type,
    ensure_sufficient_content,
    extract_text,
    summarize_text,
)
from backend.app.errors import InsufficientContent, UnsupportedMediaType


def _blank_pdf() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def test_pdf_detected_by_magic_bytes() -> None:
    assert detect_content_type(_blank_pdf()) == "pdf"


def test_utf8_text_detected_as_text() -> None:
    assert detect_content_type("Héllo wörld, lecture notes".encode()) == "text"


def test_binary_bytes_rejected() -> None:
    with pytest.raises(UnsupportedMediaType) as exc_info:
        detect_content_type(b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR")

    assert exc_info.value.status_code == 415


def test_invalid_utf8_rejected() -> None:
    with pytest.raises(UnsupportedMediaType):
        detect_content_type(b"\xff\xfe\xfa not really text at all")


def test_multibyte_character_cut_at_sniff_boundary_is_text() -> None:
    data = b"a" * 8191 + "é".encode()

    assert detect_content_type(data) == "text"


def test_text_extraction_strips_bom() -> None:
    data = b"\xef\xbb\xbf# Week 1\n\nCell biology"

    assert extract_text(data, "text") == "# Week 1\n\nCell biology"


def test_blank_pdf_extracts_no_text() -> None:
    assert extract_text(_blank_pdf(), "pdf") == ""


def test_corrupt_pdf_rejected() -> None:
    with pytest.raises(UnsupportedMediaType):
        extract_text(b"%PDF-1.4\nthis is not a real pdf body", "pdf")


def test_insufficient_content_counts_non_whitespace() -> None:
    with pytest.raises(InsufficientContent) as exc_info:
        ensure_sufficient_content("a  b  c " * 5, min_chars=50)

    assert exc_info.value.status_code == 422
    ensure_sufficient_content("x" * 50, min_chars=50)


def test_summary_keeps_short_text_whole() -> None:
    assert summarize_text("  Cells divide.\n\nThey grow.  ") == "Cells divide. They grow."


def test_summary_cuts_at_sentence_boundary() -> None:
    text = "Mitosis is the process of cell division. " * 20

    summary = summarize_text(text, max_chars=280)

    assert summary is not None
    assert len(summary) <= 280
    assert summary.endswith(".")


def test_summary_of_empty_text_is_none() -> None:
    assert summarize_text("   ") is None
