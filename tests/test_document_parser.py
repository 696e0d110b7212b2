"""
Tests for document normalisation, paragraph sampling and PDF text extraction.
"""
import fitz
import pytest

from lectern.services.document_parser import (
    extract_pdf_text,
    normalize_text,
    sample_paragraphs,
    split_paragraphs,
)


# ---------------------------------------------------------------------------
# PDF helpers
# ---------------------------------------------------------------------------

def _make_pdf(pages):
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


# ---------------------------------------------------------------------------
# normalize_text
# ---------------------------------------------------------------------------

def test_normalize_collapses_whitespace_and_keeps_paragraphs():
    raw = "First   line\t\twith  gaps  \r\n\r\n\r\n\r\nSecond paragraph\x00 here\x07"
    doc = normalize_text(raw)
    assert doc.text == "First line with gaps\n\nSecond paragraph here"
    assert doc.char_count == len(doc.text)
    assert doc.word_count == 7


def test_normalize_empty_input():
    doc = normalize_text("  \n\n\t ")
    assert doc.text == ""
    assert doc.approx_page_count == 0
    assert doc.word_count == 0


def test_page_estimate_rounds_up():
    assert normalize_text("x" * 10).approx_page_count == 1
    assert normalize_text("x" * 3001).approx_page_count == 2


def test_long_document_is_sampled():
    paragraphs = [f"Paragraph {i} " + ("word " * 60) for i in range(200)]
    doc = normalize_text("\n\n".join(paragraphs), max_chars=5000)
    assert doc.strategy == "sampled"
    excerpt = doc.breakdown_input(max_chars=5000)
    assert len(excerpt) <= 5000
    # Sampling reaches the end of the document, not just the start
    assert "Paragraph 0 " in excerpt
    numbers = [int(p.split()[1]) for p in split_paragraphs(excerpt)]
    assert numbers == sorted(numbers)
    assert max(numbers) > 150


def test_short_document_uses_full_text():
    doc = normalize_text("One.\n\nTwo.")
    assert doc.strategy == "full"
    assert doc.breakdown_input() == "One.\n\nTwo."


def test_sample_paragraphs_returns_all_when_it_fits():
    assert sample_paragraphs("a\n\nb", 100) == "a\n\nb"


# ---------------------------------------------------------------------------
# extract_pdf_text
# ---------------------------------------------------------------------------

def test_extract_pdf_text_layer():
    data = _make_pdf(["Mitochondria produce ATP.", "Ribosomes build proteins."])
    text, pages = extract_pdf_text(data)
    assert pages == 2
    assert "Mitochondria produce ATP." in text
    assert "Ribosomes build proteins." in text


def test_extract_image_only_pdf_gives_empty_text():
    text, pages = extract_pdf_text(_make_pdf([""]))
    assert text == ""
    assert pages == 1


def test_extract_garbage_raises_runtime_error():
    with pytest.raises(RuntimeError):
        extract_pdf_text(b"this is not a pdf")
