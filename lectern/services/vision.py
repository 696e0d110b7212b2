"""
Vision fallback for PDFs without a text layer (scans, slide exports).

The PDF is stored in the blob store, its pages are rendered to PNG in a
worker thread, and the rendered pages are sent to the vision model, which
returns a breakdown ``{topic, subtopics}`` directly.  Rendering is polled for
readiness and abandoned after ``VISION_READY_TIMEOUT`` seconds.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from typing import List, Optional

import fitz  # PyMuPDF

from lectern.config import settings
from lectern.exceptions import MalformedModelOutputError, UpstreamTimeoutError
from lectern.services.blob_store import LocalBlobStore
from lectern.services.breakdown import Breakdown, coerce_breakdown
from lectern.services.llm import OllamaLLMService

logger = logging.getLogger(__name__)

_VISION_PROMPT = """\
The images are the pages of a document, in order.

Identify the overall topic and produce an exhaustive, sequential breakdown of
the document into between 8 and 15 subtopics (never more than 15), covering
it from start to finish. For each subtopic give: title, importance ("high",
"medium" or "low"), difficulty (1, 2 or 3) and overview (one or two sentences
describing the content of that part of the document).

Respond ONLY with valid JSON. No explanation, no markdown:
{"topic": "...", "subtopics": [{"title": "...", "importance": "medium", "difficulty": 2, "overview": "..."}]}\
"""


def render_pages(path: str, max_pages: int, zoom: float = 1.5) -> List[str]:
    """Render the first *max_pages* pages as base64 PNG strings."""
    try:
        doc = fitz.open(path)
    except Exception as exc:
        raise RuntimeError(f"Cannot open PDF file: {exc}") from exc
    try:
        images = []
        for page in doc:
            if page.number >= max_pages:
                break
            pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom))
            images.append(base64.b64encode(pix.tobytes("png")).decode("ascii"))
        return images
    finally:
        doc.close()


class PdfVisionAnalyzer:
    """Produce a breakdown for an image-only PDF using the vision model."""

    VISION_PROMPT = _VISION_PROMPT

    def __init__(
        self,
        llm: OllamaLLMService,
        blob_store: Optional[LocalBlobStore] = None,
        ready_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        max_pages: Optional[int] = None,
    ) -> None:
        self.llm = llm
        self.blob_store = blob_store or LocalBlobStore()
        self.ready_timeout = ready_timeout or settings.VISION_READY_TIMEOUT
        self.poll_interval = poll_interval or settings.VISION_POLL_INTERVAL
        self.max_pages = max_pages or settings.VISION_MAX_PAGES

    async def _wait_until_ready(self, job: asyncio.Task) -> List[str]:
        """
        Poll the rendering job until it finishes.

        Raises:
            UpstreamTimeoutError: the job did not finish within ready_timeout.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.ready_timeout
        while not job.done():
            if loop.time() >= deadline:
                job.cancel()
                raise UpstreamTimeoutError(
                    f"document was not ready after {self.ready_timeout:.0f} s"
                )
            await asyncio.sleep(self.poll_interval)
        return job.result()

    async def analyze(self, data: bytes, model_hint: Optional[str] = None) -> Breakdown:
        """
        Breakdown of the PDF in *data*.

        Raises:
            UpstreamTimeoutError: page rendering did not finish in time.
            MalformedModelOutputError: the vision model returned no usable JSON.
        """
        path = await self.blob_store.save_bytes(data, ".pdf")
        try:
            job = asyncio.ensure_future(asyncio.to_thread(render_pages, path, self.max_pages))
            images = await self._wait_until_ready(job)
            if not images:
                raise MalformedModelOutputError("PDF has no pages to analyze")
            logger.info("Vision: rendered %d page(s), asking the vision model", len(images))

            parsed = await self.llm.generate_json_with_images(
                self.VISION_PROMPT, images, model_hint=model_hint
            )
            breakdown = coerce_breakdown(parsed)
            if breakdown is None:
                raise MalformedModelOutputError("vision model returned no usable breakdown")
            return breakdown
        finally:
            self.blob_store.delete(path)
