"""
Turn user input into lecture source text.

Order of attempts for a PDF: text layer → vision model → failure.  Pasted
text only goes through the normalizer.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Optional

from lectern.exceptions import EmptyExtractionError, MalformedModelOutputError
from lectern.models.database_models import SourceKind
from lectern.services.breakdown import Breakdown
from lectern.services.document_parser import extract_pdf_text, normalize_text
from lectern.services.vision import PdfVisionAnalyzer

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class IngestResult:
    text: str
    page_count: int
    source_kind: str
    # Present when the vision model already produced the outline
    breakdown: Optional[Breakdown] = None


def breakdown_to_text(breakdown: Breakdown) -> str:
    """Readable source text for a lecture built from a vision breakdown."""
    parts = [f"# {breakdown.topic}"] if breakdown.topic else []
    for candidate in breakdown.subtopics:
        parts.append(f"## {candidate.title}\n\n{candidate.overview}".strip())
    return "\n\n".join(parts)


def ingest_text(raw: str) -> IngestResult:
    """
    Raises:
        EmptyExtractionError: nothing left after normalisation.
    """
    doc = normalize_text(raw)
    if not doc.text:
        raise EmptyExtractionError("Content is empty after normalisation.")
    return IngestResult(
        text=doc.text,
        page_count=doc.approx_page_count,
        source_kind=SourceKind.TEXT.value,
    )


async def ingest_pdf(
    data: bytes,
    analyzer: Optional[PdfVisionAnalyzer] = None,
    model_hint: Optional[str] = None,
) -> IngestResult:
    """
    Extract lecture text from a PDF, falling back to the vision analyzer.

    Raises:
        RuntimeError: unreadable or password-protected PDF.
        EmptyExtractionError: no text layer and no usable vision result.
        UpstreamTimeoutError: the vision analyzer timed out (retryable).
    """
    text, pages = await asyncio.to_thread(extract_pdf_text, data)
    if text.strip():
        return IngestResult(text=text, page_count=pages, source_kind=SourceKind.PDF.value)

    if analyzer is None:
        raise EmptyExtractionError("Document contains no extractable text.")

    logger.info("PDF has no text layer (%d pages), trying vision analyzer", pages)
    try:
        breakdown = await analyzer.analyze(data, model_hint=model_hint)
    except MalformedModelOutputError as exc:
        raise EmptyExtractionError(
            f"Document contains no extractable text and vision analysis failed: {exc}"
        ) from exc

    return IngestResult(
        text=breakdown_to_text(breakdown),
        page_count=pages,
        source_kind=SourceKind.VISION.value,
        breakdown=breakdown,
    )
