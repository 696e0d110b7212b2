"""
Per-subtopic explanation generation, streamed or in one piece.

The streamed variant emits ``chunk`` events while the model writes, then
stores the sanitized full text and emits ``done`` carrying it, so the client
can replace its merged chunks with the canonical version.
"""
from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lectern.exceptions import ModelUnavailableError
from lectern.models.database_models import Subtopic
from lectern.models.schemas import ExplanationStyle
from lectern.services import lecture_store
from lectern.services.context_slicer import slice_context
from lectern.services.section_writer import SectionWriter
from lectern.utils.markdown import sanitize_explanation

logger = logging.getLogger(__name__)


async def write_explanation(
    db: AsyncSession,
    subtopic: Subtopic,
    writer: SectionWriter,
    style: ExplanationStyle = ExplanationStyle.DEFAULT,
    model_hint: Optional[str] = None,
    persist: bool = True,
) -> str:
    """Generate (and by default store) the explanation for one subtopic."""
    lecture = subtopic.lecture
    context = slice_context(lecture.original_content, subtopic.title, subtopic.overview)
    text = await writer.write(
        lecture.title,
        subtopic.title,
        subtopic.overview,
        context,
        style=style,
        model_hint=model_hint,
    )
    if persist:
        await lecture_store.save_explanation(db, subtopic.id, text)
        await db.commit()
        subtopic.explanation = text
    return text


class ExplanationStreamer:
    """Async generator of ``chunk`` / ``done`` / ``error`` events for one subtopic."""

    def __init__(
        self,
        subtopic_id: int,
        owner_id: str,
        session_factory: async_sessionmaker,
        writer: SectionWriter,
        style: ExplanationStyle = ExplanationStyle.DEFAULT,
        model_hint: Optional[str] = None,
    ) -> None:
        self.subtopic_id = subtopic_id
        self.owner_id = owner_id
        self.session_factory = session_factory
        self.writer = writer
        self.style = style
        self.model_hint = model_hint

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        try:
            async with self.session_factory() as db:
                subtopic = await lecture_store.get_subtopic(db, self.subtopic_id, self.owner_id)
                if subtopic is None:
                    raise LookupError(f"Subtopic {self.subtopic_id} not found.")
                lecture_title = subtopic.lecture.title
                title = subtopic.title
                overview = subtopic.overview
                context = slice_context(subtopic.lecture.original_content, title, overview)

            parts = []
            async for chunk in self.writer.stream(
                lecture_title, title, overview, context,
                style=self.style, model_hint=self.model_hint,
            ):
                parts.append(chunk)
                yield {"type": "chunk", "delta": chunk}

            text = sanitize_explanation("".join(parts), title)
            if not text:
                raise ModelUnavailableError("model returned an empty explanation")

            async with self.session_factory() as db:
                await lecture_store.save_explanation(db, self.subtopic_id, text)
                await db.commit()
            logger.info("Explanation stored for subtopic %d (%d chars)", self.subtopic_id, len(text))
            yield {"type": "done", "explanation": text}

        except Exception as exc:
            logger.error(
                "Explanation stream failed for subtopic %d: %s",
                self.subtopic_id, exc, exc_info=True,
            )
            yield {"type": "error", "error": str(exc) or "stream failed"}
