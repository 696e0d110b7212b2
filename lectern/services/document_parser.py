"""
Document normalisation and PDF text extraction.

``normalize_text`` turns pasted or extracted text into the canonical form the
rest of the pipeline works on: control characters removed, whitespace
collapsed, paragraph boundaries (blank lines) preserved.

``extract_pdf_text`` pulls the text layer out of a PDF with PyMuPDF.  An empty
result is not an error here; the ingestion layer uses it as the signal to try
the vision analyzer instead.
"""
from __future__ import annotations

import dataclasses
import logging
import math
import re
from typing import List, Tuple

import fitz  # PyMuPDF

from lectern.config import settings
from lectern.utils.helpers import strip_control_chars

logger = logging.getLogger(__name__)

CHARS_PER_PAGE = 3000


@dataclasses.dataclass
class NormalizedDocument:
    """Canonical text plus the counts the breakdown step needs."""

    text: str
    approx_page_count: int
    char_count: int
    word_count: int
    # "full" when the text fits the breakdown prompt, "sampled" otherwise
    strategy: str = "full"

    def breakdown_input(self, max_chars: int = None) -> str:
        """Text handed to the breakdown prompt for this document."""
        limit = max_chars or settings.BREAKDOWN_MAX_CHARS
        if self.strategy == "full":
            return self.text
        return sample_paragraphs(self.text, limit)


def split_paragraphs(text: str) -> List[str]:
    """Split on blank lines; drops empty paragraphs."""
    return [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]


def normalize_text(raw: str, max_chars: int = None) -> NormalizedDocument:
    """
    Clean *raw* into a ``NormalizedDocument``.

    - NUL and other control characters removed (newline and tab survive)
    - ``\\r\\n`` / ``\\r`` turned into ``\\n``
    - runs of spaces/tabs collapsed to one space, lines right-trimmed
    - runs of blank lines collapsed to a single blank line
    """
    limit = max_chars or settings.BREAKDOWN_MAX_CHARS
    text = (raw or "").replace("\r\n", "\n").replace("\r", "\n")
    text = strip_control_chars(text)
    text = re.sub(r"[ \t\f\v\u00a0]+", " ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = re.sub(r"\n{3,}", "\n\n", text).strip()

    char_count = len(text)
    return NormalizedDocument(
        text=text,
        approx_page_count=max(1, math.ceil(char_count / CHARS_PER_PAGE)) if text else 0,
        char_count=char_count,
        word_count=len(text.split()),
        strategy="full" if char_count <= limit else "sampled",
    )


def sample_paragraphs(text: str, max_chars: int) -> str:
    """
    Evenly strided excerpt of *text* that fits in *max_chars*.

    Paragraphs are taken at regular intervals from start to end so the
    breakdown prompt sees every region of a long document, in order.
    """
    paragraphs = split_paragraphs(text)
    if not paragraphs:
        return text[:max_chars]

    total = sum(len(p) + 2 for p in paragraphs)
    if total <= max_chars:
        return "\n\n".join(paragraphs)

    # Budget each paragraph slot evenly, then walk the document with a stride
    avg = max(1, total // len(paragraphs))
    slots = max(1, max_chars // avg)
    step = len(paragraphs) / slots
    picked: List[str] = []
    used = 0
    per_slot = max(200, max_chars // slots)
    for k in range(slots):
        para = paragraphs[min(len(paragraphs) - 1, math.floor(k * step))]
        if len(para) > per_slot:
            para = para[:per_slot].rsplit(" ", 1)[0] + " …"
        if used + len(para) + 2 > max_chars:
            break
        if picked and picked[-1] == para:
            continue
        picked.append(para)
        used += len(para) + 2
    return "\n\n".join(picked)


def extract_pdf_text(data: bytes) -> Tuple[str, int]:
    """
    Extract the text layer of a PDF.

    Returns:
        ``(text, page_count)``; pages are joined with blank lines and the
        result is whitespace-collapsed.  ``text`` is "" for image-only PDFs.

    Raises:
        RuntimeError: Password-protected or unreadable file.
    """
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise RuntimeError(f"Cannot open PDF file: {exc}") from exc

    try:
        if doc.needs_pass:
            raise RuntimeError(
                "PDF is password-protected. Please provide an unlocked copy."
            )
        page_count = doc.page_count
        pages = [page.get_text("text") for page in doc]
    finally:
        doc.close()

    text = normalize_text("\n\n".join(pages)).text
    logger.info("Extracted %d chars from %d PDF pages", len(text), page_count)
    return text, page_count
