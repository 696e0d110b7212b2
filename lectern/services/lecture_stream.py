"""
Progressive lecture construction, exposed as an async generator of events.

Phases
------
idle → breakdown_pending → selecting → emitting_subtopics → done | failed

A reconnecting client first receives every subtopic already stored, then the
stream resumes at the first position not yet persisted.  The resolved
breakdown and selection are cached on the lecture, so a reconnect continues
the same outline.

Usage
-----
    streamer = LectureStreamer(lecture_id, owner_id, AsyncSessionLocal, llm)
    async for event in streamer.events():
        ...
"""
from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from lectern.config import settings
from lectern.exceptions import EmptyExtractionError
from lectern.models.database_models import Subtopic
from lectern.models.schemas import SubtopicResponse
from lectern.services import lecture_store
from lectern.services.breakdown import Breakdown, BreakdownGenerator
from lectern.services.document_parser import normalize_text
from lectern.services.explanation_stream import write_explanation
from lectern.services.llm import OllamaLLMService
from lectern.services.section_writer import SectionWriter
from lectern.services.subtopic_selector import SubtopicSelector

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stream phase enum
# ---------------------------------------------------------------------------

class StreamPhase(str, enum.Enum):
    IDLE = "idle"
    BREAKDOWN_PENDING = "breakdown_pending"
    SELECTING = "selecting"
    EMITTING_SUBTOPICS = "emitting_subtopics"
    DONE = "done"
    FAILED = "failed"


def subtopic_event(subtopic: Subtopic) -> Dict[str, Any]:
    return {
        "type": "subtopic",
        "subtopic": SubtopicResponse.model_validate(subtopic).model_dump(),
    }


# ---------------------------------------------------------------------------
# Streamer
# ---------------------------------------------------------------------------

class LectureStreamer:
    """Builds one lecture's subtopics and reports each as soon as it is stored."""

    def __init__(
        self,
        lecture_id: int,
        owner_id: str,
        session_factory: async_sessionmaker,
        llm: OllamaLLMService,
        model_hint: Optional[str] = None,
        pregenerate: bool = False,
        pacing: Optional[float] = None,
    ) -> None:
        self.lecture_id = lecture_id
        self.owner_id = owner_id
        self.session_factory = session_factory
        self.model_hint = model_hint
        self.pregenerate = pregenerate
        self.pacing = settings.STREAM_PACING_SECONDS if pacing is None else pacing
        self.breakdown_generator = BreakdownGenerator(llm)
        self.selector = SubtopicSelector(llm)
        self.section_writer = SectionWriter(llm)
        self.phase = StreamPhase.IDLE

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield ``subtopic`` / ``title`` events, then exactly one ``done`` or
        ``error``.  Nothing follows the terminal event.
        """
        try:
            async for event in self._run():
                yield event
        except Exception as exc:
            logger.error(
                "Lecture stream %d failed during %s: %s",
                self.lecture_id, self.phase.value, exc, exc_info=True,
            )
            self.phase = StreamPhase.FAILED
            yield {"type": "error", "error": str(exc) or "stream failed"}
            return

        self.phase = StreamPhase.DONE
        yield {"type": "done"}

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _run(self) -> AsyncIterator[Dict[str, Any]]:
        async with self.session_factory() as db:
            lecture = await lecture_store.get_lecture(db, self.lecture_id, self.owner_id)
            if lecture is None:
                raise LookupError(f"Lecture {self.lecture_id} not found.")
            existing: List[Subtopic] = list(lecture.subtopics)
            content = lecture.original_content
            title = lecture.title
            cached = lecture.breakdown_json

        # Catch-up for reconnecting clients
        for subtopic in existing:
            yield subtopic_event(subtopic)

        self.phase = StreamPhase.BREAKDOWN_PENDING
        if cached and cached.get("subtopics"):
            breakdown = Breakdown.from_dict(cached)
            selected_indices = cached.get("selected")
        else:
            doc = normalize_text(content)
            if not doc.text:
                raise EmptyExtractionError("Lecture has no content to break down.")
            breakdown = await self.breakdown_generator.generate(
                doc.breakdown_input(), model_hint=self.model_hint, fallback_text=doc.text
            )
            selected_indices = None

        if not breakdown.subtopics:
            raise EmptyExtractionError("Breakdown produced no subtopics.")

        # Only replace the placeholder; a title the user set is kept
        if breakdown.topic and title == settings.PLACEHOLDER_TITLE and breakdown.topic != title:
            async with self.session_factory() as db:
                await lecture_store.update_title(db, self.lecture_id, breakdown.topic)
                await db.commit()
            yield {"type": "title", "title": breakdown.topic}

        self.phase = StreamPhase.SELECTING
        if selected_indices is None:
            selected_indices = await self.selector.select_indices(
                breakdown.subtopics, model_hint=self.model_hint
            )
            cache = breakdown.to_dict()
            cache["selected"] = selected_indices
            async with self.session_factory() as db:
                await lecture_store.save_breakdown(db, self.lecture_id, cache)
                await db.commit()
        selected = [breakdown.subtopics[i] for i in sorted(selected_indices)]

        self.phase = StreamPhase.EMITTING_SUBTOPICS
        for order in range(len(existing), len(selected)):
            async with self.session_factory() as db:
                rows = await lecture_store.create_subtopics(
                    db, self.lecture_id, [selected[order]], start_order=order
                )
                await db.commit()
            for row in rows:
                yield subtopic_event(row)
            if self.pacing:
                await asyncio.sleep(self.pacing)

        if self.pregenerate:
            async for event in self._pregenerate():
                yield event

    async def _pregenerate(self) -> AsyncIterator[Dict[str, Any]]:
        """
        Write explanations for every subtopic still missing one, concurrently.

        A failing subtopic is logged and left without an explanation; the
        refreshed subtopics are re-emitted in document order.
        """
        async with self.session_factory() as db:
            subtopics = await lecture_store.list_subtopics(db, self.lecture_id)
        pending = [s.id for s in subtopics if not s.explanation]
        if not pending:
            return

        semaphore = asyncio.Semaphore(min(len(pending), settings.PREGENERATE_CONCURRENCY))

        async def _one(subtopic_id: int) -> None:
            async with semaphore:
                try:
                    async with self.session_factory() as db:
                        subtopic = await lecture_store.get_subtopic(db, subtopic_id)
                        await write_explanation(
                            db, subtopic, self.section_writer, model_hint=self.model_hint
                        )
                except Exception as exc:
                    logger.warning(
                        "Pre-generation failed for subtopic %d: %s", subtopic_id, exc
                    )

        await asyncio.gather(*(_one(sid) for sid in pending))

        async with self.session_factory() as db:
            refreshed = await lecture_store.list_subtopics(db, self.lecture_id)
        for subtopic in refreshed:
            yield subtopic_event(subtopic)
