"""
Persistence for lectures, subtopics, quiz questions and learner activity
(tutor conversations, quiz attempts and progress).

All writes that can race (two streams persisting the same subtopic position,
two quiz requests storing the same question) use INSERT ... ON CONFLICT DO
NOTHING, so the second writer silently becomes a no-op.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, insert as generic_insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from lectern.config import settings
from lectern.models.database_models import (
    Lecture,
    QuizAttempt,
    QuizProgress,
    QuizQuestion,
    QuizReset,
    Subtopic,
    TutorMessage,
    TutorReset,
)
from lectern.services.breakdown import SubtopicCandidate
from lectern.services.quiz_writer import QuizCandidate, filter_near_duplicates
from lectern.utils.helpers import strip_nul

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Insert-ignore
# ---------------------------------------------------------------------------

def _insert_ignore(db: AsyncSession, model, values: Dict[str, Any], conflict_cols: List[str]):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model).values(**values).on_conflict_do_nothing(
            index_elements=conflict_cols
        )
    if dialect == "sqlite":
        return sqlite.insert(model).values(**values).on_conflict_do_nothing(
            index_elements=conflict_cols
        )
    return generic_insert(model).values(**values).prefix_with("IGNORE")


# ---------------------------------------------------------------------------
# Lectures
# ---------------------------------------------------------------------------

async def create_lecture(
    db: AsyncSession,
    owner_id: str,
    content: str,
    source_kind: str,
    page_count: Optional[int] = None,
    breakdown: Optional[Dict[str, Any]] = None,
) -> Lecture:
    """Create the lecture row with the placeholder title; no subtopics yet."""
    lecture = Lecture(
        owner_id=owner_id,
        title=settings.PLACEHOLDER_TITLE,
        original_content=strip_nul(content),
        source_kind=source_kind,
        page_count=page_count,
        breakdown_json=breakdown,
    )
    db.add(lecture)
    await db.flush()
    logger.info("Created lecture id=%d owner=%s kind=%s", lecture.id, owner_id, source_kind)
    return lecture


async def get_lecture(
    db: AsyncSession,
    lecture_id: int,
    owner_id: Optional[str] = None,
    with_questions: bool = False,
) -> Optional[Lecture]:
    stmt = select(Lecture).where(Lecture.id == lecture_id)
    if owner_id is not None:
        stmt = stmt.where(Lecture.owner_id == owner_id)
    if with_questions:
        stmt = stmt.options(selectinload(Lecture.subtopics).selectinload(Subtopic.questions))
    else:
        stmt = stmt.options(selectinload(Lecture.subtopics))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_lectures(db: AsyncSession, owner_id: str) -> List[Tuple[Lecture, int]]:
    """Owner's lectures, newest first, with their subtopic counts."""
    counts = (
        select(Subtopic.lecture_id, func.count(Subtopic.id).label("n"))
        .group_by(Subtopic.lecture_id)
        .subquery()
    )
    result = await db.execute(
        select(Lecture, func.coalesce(counts.c.n, 0))
        .outerjoin(counts, counts.c.lecture_id == Lecture.id)
        .where(Lecture.owner_id == owner_id)
        .order_by(Lecture.created_at.desc(), Lecture.id.desc())
    )
    return [(row[0], int(row[1])) for row in result.all()]


async def update_title(db: AsyncSession, lecture_id: int, title: str) -> None:
    await db.execute(
        update(Lecture).where(Lecture.id == lecture_id).values(title=strip_nul(title)[:512])
    )


async def save_breakdown(db: AsyncSession, lecture_id: int, breakdown: Dict[str, Any]) -> None:
    await db.execute(
        update(Lecture).where(Lecture.id == lecture_id).values(breakdown_json=breakdown)
    )


async def delete_lecture(db: AsyncSession, lecture: Lecture) -> None:
    subtopic_ids = select(Subtopic.id).where(Subtopic.lecture_id == lecture.id)
    for model in (QuizAttempt, QuizProgress, QuizReset):
        await db.execute(delete(model).where(model.subtopic_id.in_(subtopic_ids)))
    for model in (TutorMessage, TutorReset):
        await db.execute(delete(model).where(model.lecture_id == lecture.id))
    await db.delete(lecture)
    await db.flush()
    logger.info("Deleted lecture id=%d", lecture.id)


# ---------------------------------------------------------------------------
# Subtopics
# ---------------------------------------------------------------------------

async def list_subtopics(db: AsyncSession, lecture_id: int) -> List[Subtopic]:
    result = await db.execute(
        select(Subtopic).where(Subtopic.lecture_id == lecture_id).order_by(Subtopic.order)
    )
    return list(result.scalars().all())


async def get_subtopic(
    db: AsyncSession,
    subtopic_id: int,
    owner_id: Optional[str] = None,
) -> Optional[Subtopic]:
    """Subtopic with its lecture loaded; None if missing or owned by someone else."""
    stmt = (
        select(Subtopic)
        .join(Lecture, Lecture.id == Subtopic.lecture_id)
        .where(Subtopic.id == subtopic_id)
        .options(selectinload(Subtopic.lecture))
    )
    if owner_id is not None:
        stmt = stmt.where(Lecture.owner_id == owner_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def create_subtopics(
    db: AsyncSession,
    lecture_id: int,
    candidates: Sequence[SubtopicCandidate],
    start_order: int = 0,
) -> List[Subtopic]:
    """
    Persist *candidates* at ``order = start_order, start_order + 1, ...``.

    Positions already taken (a concurrent stream got there first) are left
    alone; the stored row at each position is returned either way.
    """
    orders = []
    for offset, candidate in enumerate(candidates):
        order = start_order + offset
        orders.append(order)
        await db.execute(
            _insert_ignore(
                db,
                Subtopic,
                {
                    "lecture_id": lecture_id,
                    "order": order,
                    "title": strip_nul(candidate.title)[:512],
                    "importance": candidate.importance,
                    "difficulty": candidate.difficulty,
                    "overview": strip_nul(candidate.overview),
                },
                ["lecture_id", "order"],
            )
        )
    if not orders:
        return []
    result = await db.execute(
        select(Subtopic)
        .where(Subtopic.lecture_id == lecture_id, Subtopic.order.in_(orders))
        .order_by(Subtopic.order)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def save_explanation(db: AsyncSession, subtopic_id: int, text: str) -> None:
    await db.execute(
        update(Subtopic).where(Subtopic.id == subtopic_id).values(explanation=strip_nul(text))
    )


# ---------------------------------------------------------------------------
# Quiz questions
# ---------------------------------------------------------------------------

async def list_questions(db: AsyncSession, subtopic_id: int) -> List[QuizQuestion]:
    result = await db.execute(
        select(QuizQuestion)
        .where(QuizQuestion.subtopic_id == subtopic_id)
        .order_by(QuizQuestion.id)
    )
    return list(result.scalars().all())


async def upsert_quiz_questions(
    db: AsyncSession,
    subtopic_id: int,
    items: Iterable[QuizCandidate],
    mode: str = "append",
    threshold: Optional[float] = None,
    limit: Optional[int] = None,
) -> Tuple[int, int]:
    """
    Store *items* for a subtopic.

    ``append`` keeps existing questions and drops any item that is a
    near-duplicate of one of them (or of an earlier item in the batch).
    ``replace`` deletes existing questions first.  Exact repeats that a
    concurrent writer stored in the meantime are ignored by the database.
    At most *limit* rows are written when given.

    Returns ``(inserted, skipped)``.
    """
    items = list(items)
    if mode == "replace":
        question_ids = select(QuizQuestion.id).where(QuizQuestion.subtopic_id == subtopic_id)
        for model in (QuizAttempt, QuizProgress):
            await db.execute(delete(model).where(model.question_id.in_(question_ids)))
        await db.execute(delete(QuizQuestion).where(QuizQuestion.subtopic_id == subtopic_id))
        existing_prompts: List[str] = []
    else:
        existing_prompts = [q.prompt for q in await list_questions(db, subtopic_id)]

    fresh = filter_near_duplicates(items, existing_prompts, threshold)
    inserted = 0
    for candidate in fresh:
        if limit is not None and inserted >= limit:
            break
        result = await db.execute(
            _insert_ignore(
                db,
                QuizQuestion,
                {
                    "subtopic_id": subtopic_id,
                    "prompt": candidate.prompt,
                    "prompt_hash": candidate.prompt_hash,
                    "options": list(candidate.options),
                    "answer_index": candidate.answer_index,
                    "explanation": candidate.explanation,
                },
                ["subtopic_id", "prompt_hash"],
            )
        )
        if result.rowcount:
            inserted += 1

    skipped = len(items) - inserted
    logger.info(
        "Quiz upsert subtopic=%d mode=%s inserted=%d skipped=%d",
        subtopic_id, mode, inserted, skipped,
    )
    return inserted, skipped


# ---------------------------------------------------------------------------
# Tutor conversations
# ---------------------------------------------------------------------------

async def add_tutor_message(
    db: AsyncSession,
    lecture_id: int,
    user_id: str,
    role: str,
    text: str,
    subtopic_id: Optional[int] = None,
) -> TutorMessage:
    message = TutorMessage(
        lecture_id=lecture_id,
        user_id=user_id,
        subtopic_id=subtopic_id,
        role=role,
        text=strip_nul(text),
    )
    db.add(message)
    await db.flush()
    return message


async def _last_reset_marker(db: AsyncSession, model, column, **filters) -> int:
    stmt = select(func.max(column))
    for name, value in filters.items():
        stmt = stmt.where(getattr(model, name) == value)
    return (await db.execute(stmt)).scalar() or 0


async def list_tutor_messages(
    db: AsyncSession,
    lecture_id: int,
    user_id: str,
    limit: Optional[int] = None,
) -> List[TutorMessage]:
    """
    Conversation since the user's last reset, oldest first.  With *limit*
    only the most recent messages are returned (still oldest first).
    """
    after = await _last_reset_marker(
        db, TutorReset, TutorReset.last_message_id, lecture_id=lecture_id, user_id=user_id
    )
    stmt = (
        select(TutorMessage)
        .where(
            TutorMessage.lecture_id == lecture_id,
            TutorMessage.user_id == user_id,
            TutorMessage.id > after,
        )
        .order_by(TutorMessage.id.desc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return list(reversed(result.scalars().all()))


async def reset_tutor(db: AsyncSession, lecture_id: int, user_id: str) -> TutorReset:
    """Start a fresh conversation; earlier messages are kept but hidden."""
    last_id = (
        await db.execute(
            select(func.max(TutorMessage.id)).where(
                TutorMessage.lecture_id == lecture_id, TutorMessage.user_id == user_id
            )
        )
    ).scalar() or 0
    marker = TutorReset(lecture_id=lecture_id, user_id=user_id, last_message_id=last_id)
    db.add(marker)
    await db.flush()
    logger.info("Tutor reset lecture=%d user=%s after message %d", lecture_id, user_id, last_id)
    return marker


# ---------------------------------------------------------------------------
# Quiz attempts and progress
# ---------------------------------------------------------------------------

async def get_question(
    db: AsyncSession, subtopic_id: int, question_id: int
) -> Optional[QuizQuestion]:
    result = await db.execute(
        select(QuizQuestion).where(
            QuizQuestion.id == question_id, QuizQuestion.subtopic_id == subtopic_id
        )
    )
    return result.scalar_one_or_none()


async def record_attempt(
    db: AsyncSession, user_id: str, question: QuizQuestion, selected_index: int
) -> QuizAttempt:
    attempt = QuizAttempt(
        user_id=user_id,
        subtopic_id=question.subtopic_id,
        question_id=question.id,
        selected_index=selected_index,
        is_correct=selected_index == question.answer_index,
    )
    db.add(attempt)
    await db.flush()
    return attempt


async def attempt_score(db: AsyncSession, user_id: str, subtopic_id: int) -> Tuple[int, int]:
    """``(attempts, correct)`` since the user's last quiz reset."""
    after = await _last_reset_marker(
        db, QuizReset, QuizReset.last_attempt_id, subtopic_id=subtopic_id, user_id=user_id
    )
    result = await db.execute(
        select(QuizAttempt.is_correct).where(
            QuizAttempt.user_id == user_id,
            QuizAttempt.subtopic_id == subtopic_id,
            QuizAttempt.id > after,
        )
    )
    outcomes = [bool(v) for v in result.scalars().all()]
    return len(outcomes), sum(outcomes)


async def update_progress(
    db: AsyncSession,
    user_id: str,
    subtopic_id: int,
    updates: Sequence[Dict[str, Any]],
) -> int:
    """
    Apply per-question state changes.  Each update holds ``question_id`` and
    any of ``selected_index`` / ``revealed``.  Updates for questions outside
    the subtopic are ignored.  Returns the number applied.
    """
    valid = {q.id for q in await list_questions(db, subtopic_id)}
    applied = 0
    for change in updates:
        question_id = change.get("question_id")
        if question_id not in valid:
            continue
        await db.execute(
            _insert_ignore(
                db,
                QuizProgress,
                {"user_id": user_id, "subtopic_id": subtopic_id, "question_id": question_id, "revealed": False},
                ["user_id", "question_id"],
            )
        )
        values = {k: change[k] for k in ("selected_index", "revealed") if k in change}
        if values.get("revealed", False) is None:
            del values["revealed"]
        if values:
            await db.execute(
                update(QuizProgress)
                .where(QuizProgress.user_id == user_id, QuizProgress.question_id == question_id)
                .values(**values)
            )
        applied += 1
    return applied


async def list_progress(db: AsyncSession, user_id: str, subtopic_id: int) -> List[QuizProgress]:
    result = await db.execute(
        select(QuizProgress)
        .where(QuizProgress.user_id == user_id, QuizProgress.subtopic_id == subtopic_id)
        .order_by(QuizProgress.question_id)
    )
    return list(result.scalars().all())


async def reset_quiz_progress(db: AsyncSession, user_id: str, subtopic_id: int) -> QuizReset:
    """Clear visible progress; attempts stay but stop counting toward the score."""
    last_id = (
        await db.execute(
            select(func.max(QuizAttempt.id)).where(
                QuizAttempt.user_id == user_id, QuizAttempt.subtopic_id == subtopic_id
            )
        )
    ).scalar() or 0
    await db.execute(
        delete(QuizProgress).where(
            QuizProgress.user_id == user_id, QuizProgress.subtopic_id == subtopic_id
        )
    )
    marker = QuizReset(user_id=user_id, subtopic_id=subtopic_id, last_attempt_id=last_id)
    db.add(marker)
    await db.flush()
    logger.info("Quiz reset subtopic=%d user=%s after attempt %d", subtopic_id, user_id, last_id)
    return marker
