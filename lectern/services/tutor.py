"""
Lecture tutor: answers a learner's question grounded in the lecture text.

Grounding is the current subtopic's explanation when the question is asked
from a subtopic (falling back to its context slice), otherwise the slice of
the source document most relevant to the question itself.  The last few
turns since the learner's reset are included so follow-ups make sense.

``ChatStreamer`` stores the question before generating and the answer after,
and emits ``chunk`` events, then ``done`` (with the full answer) or ``error``.
"""
from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import async_sessionmaker

from lectern.config import settings
from lectern.exceptions import ModelUnavailableError
from lectern.models.database_models import Lecture, Subtopic, TutorMessage
from lectern.services import lecture_store
from lectern.services.context_slicer import slice_context
from lectern.services.llm import OllamaLLMService
from lectern.services.section_writer import split_at_word_boundary
from lectern.utils.markdown import unwrap_fences

logger = logging.getLogger(__name__)

_TUTOR_PROMPT = """\
You are an expert academic tutor for the lecture "{lecture_title}".
Be clear, direct and encouraging. Answer from the lesson content below; when
it does not cover the question, answer from general knowledge without
commenting on what the lesson lacks. No meta commentary or disclaimers.

LESSON CONTENT
---
{context}
---
{history}
STUDENT QUESTION
{question}\
"""


def grounding_for(lecture: Lecture, question: str, subtopic: Optional[Subtopic] = None) -> str:
    if subtopic is not None:
        body = subtopic.explanation or slice_context(
            lecture.original_content, subtopic.title, subtopic.overview
        )
        return f"## {subtopic.title}\n\n{body}"
    return slice_context(lecture.original_content, question)


def format_history(messages: Sequence[TutorMessage]) -> str:
    if not messages:
        return ""
    lines = ["EARLIER IN THIS CONVERSATION"]
    for message in messages:
        speaker = "Student" if message.role == "user" else "Tutor"
        lines.append(f"{speaker}: {message.text.strip()}")
    return "\n".join(lines) + "\n\n"


class Tutor:
    TUTOR_PROMPT = _TUTOR_PROMPT

    def __init__(self, llm: OllamaLLMService) -> None:
        self.llm = llm

    def build_prompt(
        self,
        lecture_title: str,
        context: str,
        question: str,
        history: Sequence[TutorMessage] = (),
    ) -> str:
        return self.TUTOR_PROMPT.format(
            lecture_title=lecture_title,
            context=context or "(no lesson content)",
            history=format_history(history),
            question=question,
        )

    async def answer(self, prompt: str, model_hint: Optional[str] = None) -> str:
        """
        Full answer in one call.

        Raises:
            ModelUnavailableError: the model returned nothing.
        """
        raw = await self.llm.generate_text(prompt, model_hint=model_hint, max_tokens=800)
        text = unwrap_fences(raw or "").strip()
        if not text:
            raise ModelUnavailableError("model returned an empty answer")
        return text

    async def stream(self, prompt: str, model_hint: Optional[str] = None) -> AsyncIterator[str]:
        pending = ""
        async for delta in self.llm.stream_text(prompt, model_hint=model_hint, max_tokens=800):
            pending += delta.replace("\x00", "")
            ready, pending = split_at_word_boundary(pending)
            if ready:
                yield ready
        if pending:
            yield pending


async def load_history(db, lecture_id: int, user_id: str) -> List[TutorMessage]:
    return await lecture_store.list_tutor_messages(
        db, lecture_id, user_id, limit=settings.TUTOR_HISTORY_TURNS
    )


class ChatStreamer:
    """Async generator of ``chunk`` / ``done`` / ``error`` events for one question."""

    def __init__(
        self,
        lecture_id: int,
        user_id: str,
        question: str,
        session_factory: async_sessionmaker,
        tutor: Tutor,
        subtopic_id: Optional[int] = None,
        persist: bool = True,
        model_hint: Optional[str] = None,
    ) -> None:
        self.lecture_id = lecture_id
        self.user_id = user_id
        self.question = question
        self.session_factory = session_factory
        self.tutor = tutor
        self.subtopic_id = subtopic_id
        self.persist = persist
        self.model_hint = model_hint

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        try:
            async with self.session_factory() as db:
                lecture = await lecture_store.get_lecture(db, self.lecture_id, self.user_id)
                if lecture is None:
                    raise LookupError(f"Lecture {self.lecture_id} not found.")
                subtopic = next(
                    (s for s in lecture.subtopics if s.id == self.subtopic_id), None
                )
                history = await load_history(db, self.lecture_id, self.user_id)
                prompt = self.tutor.build_prompt(
                    lecture.title,
                    grounding_for(lecture, self.question, subtopic),
                    self.question,
                    history,
                )
                if self.persist:
                    await lecture_store.add_tutor_message(
                        db, self.lecture_id, self.user_id, "user", self.question, self.subtopic_id
                    )
                    await db.commit()

            parts = []
            async for chunk in self.tutor.stream(prompt, model_hint=self.model_hint):
                parts.append(chunk)
                yield {"type": "chunk", "delta": chunk}

            text = unwrap_fences("".join(parts)).strip()
            if not text:
                raise ModelUnavailableError("model returned an empty answer")

            if self.persist:
                async with self.session_factory() as db:
                    await lecture_store.add_tutor_message(
                        db, self.lecture_id, self.user_id, "ai", text, self.subtopic_id
                    )
                    await db.commit()
            yield {"type": "done", "response": text}

        except Exception as exc:
            logger.error(
                "Tutor stream failed for lecture %d: %s", self.lecture_id, exc, exc_info=True
            )
            yield {"type": "error", "error": str(exc) or "stream failed"}
