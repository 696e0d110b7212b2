"""
Quiz readiness: make sure a subtopic holds ``QUIZ_REQUIRED`` questions.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from lectern.config import settings
from lectern.models.database_models import QuizQuestion, Subtopic
from lectern.services import lecture_store
from lectern.services.context_slicer import slice_context
from lectern.services.quiz_writer import QuizWriter

logger = logging.getLogger(__name__)


async def ensure_quiz(
    db: AsyncSession,
    subtopic: Subtopic,
    writer: QuizWriter,
    model_hint: Optional[str] = None,
    required: Optional[int] = None,
) -> Tuple[List[QuizQuestion], int]:
    """
    Return ``(questions, generated_count)`` for *subtopic*.

    When the subtopic already holds enough questions they are returned as-is
    and the model is not called.  Otherwise only the missing number is
    generated and stored.
    """
    required = required or settings.QUIZ_REQUIRED
    existing = await lecture_store.list_questions(db, subtopic.id)
    if len(existing) >= required:
        return existing[:required], 0

    lecture = subtopic.lecture
    grounding = slice_context(
        lecture.original_content,
        subtopic.title,
        subtopic.overview,
    )
    if subtopic.explanation:
        grounding = f"{grounding}\n\n{subtopic.explanation}"

    missing = required - len(existing)
    candidates = await writer.generate(
        grounding,
        subtopic.title,
        subtopic.overview,
        avoid_prompts=[q.prompt for q in existing],
        count=missing,
        model_hint=model_hint,
    )
    inserted, _ = await lecture_store.upsert_quiz_questions(
        db, subtopic.id, candidates, mode="append", limit=missing
    )
    await db.commit()

    questions = await lecture_store.list_questions(db, subtopic.id)
    if len(questions) < required:
        logger.warning(
            "Quiz: subtopic %d has %d/%d questions after generation",
            subtopic.id, len(questions), required,
        )
    return questions[:required], inserted
