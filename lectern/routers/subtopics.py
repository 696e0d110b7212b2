"""
Subtopic endpoints: explanations and quizzes.

Route summary
-------------
GET  /{id}                       one subtopic
GET  /{id}/explanation/stream    SSE: chunk events, then done (stored) or error
POST /{id}/explanation           explanation in one response
PUT  /{id}/explanation           store a client-reconciled explanation
POST /{id}/quiz                  ensure the subtopic holds its quiz questions
POST /{id}/questions             append or replace questions, up to QUIZ_REQUIRED
POST /{id}/quiz/attempts         record an answer; correctness decided here
GET  /{id}/quiz/progress         per-question state and score since the last reset
POST /{id}/quiz/progress         update per-question state
POST /{id}/quiz/reset            clear progress and restart the score
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lectern.config import settings
from lectern.database import get_db, get_session_factory
from lectern.dependencies.auth import get_current_user_id, get_owned_subtopic
from lectern.dependencies.services import get_quiz_writer, get_section_writer
from lectern.exceptions import ModelUnavailableError
from lectern.models.database_models import Subtopic
from lectern.models.schemas import (
    ExplanationResponse,
    ExplanationUpdateRequest,
    QuestionsUpsertRequest,
    QuestionsUpsertResponse,
    QuizAttemptRequest,
    QuizAttemptResponse,
    QuizProgressEntry,
    QuizProgressRequest,
    QuizProgressResponse,
    QuizQuestionResponse,
    QuizResponse,
    ResetResponse,
    SubtopicResponse,
)
from lectern.services import lecture_store
from lectern.services.explanation_stream import ExplanationStreamer, write_explanation
from lectern.services.quiz_service import ensure_quiz
from lectern.services.quiz_writer import QuizCandidate, QuizWriter
from lectern.services.section_writer import SectionWriter, parse_style
from lectern.utils.markdown import sanitize_explanation
from lectern.utils.sse import sse_response

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{subtopic_id}", response_model=SubtopicResponse)
async def get_subtopic(subtopic: Subtopic = Depends(get_owned_subtopic)) -> SubtopicResponse:
    return SubtopicResponse.model_validate(subtopic)


# ---------------------------------------------------------------------------
# Explanations
# ---------------------------------------------------------------------------

@router.get("/{subtopic_id}/explanation/stream")
async def stream_explanation(
    subtopic: Subtopic = Depends(get_owned_subtopic),
    user_id: str = Depends(get_current_user_id),
    style: Optional[str] = Query(None, description="default | simplified | detailed | example"),
    model: Optional[str] = Query(None, description="Preferred generation model"),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    writer: SectionWriter = Depends(get_section_writer),
):
    streamer = ExplanationStreamer(
        subtopic.id,
        user_id,
        session_factory,
        writer,
        style=parse_style(style),
        model_hint=model,
    )
    return sse_response(streamer.events())


@router.post("/{subtopic_id}/explanation", response_model=ExplanationResponse)
async def generate_explanation(
    subtopic: Subtopic = Depends(get_owned_subtopic),
    style: Optional[str] = Query(None),
    model: Optional[str] = Query(None),
    persist: bool = Query(True, description="Store the result on the subtopic"),
    db: AsyncSession = Depends(get_db),
    writer: SectionWriter = Depends(get_section_writer),
) -> ExplanationResponse:
    """Non-streaming explanation; 502 when the model returns nothing usable."""
    parsed_style = parse_style(style)
    try:
        text = await write_explanation(
            db, subtopic, writer, style=parsed_style, model_hint=model, persist=persist
        )
    except ModelUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(exc),
        )
    return ExplanationResponse(
        subtopic_id=subtopic.id,
        markdown=text,
        style=parsed_style,
        persisted=persist,
    )


@router.put("/{subtopic_id}/explanation", response_model=SubtopicResponse)
async def put_explanation(
    body: ExplanationUpdateRequest,
    subtopic: Subtopic = Depends(get_owned_subtopic),
    db: AsyncSession = Depends(get_db),
) -> SubtopicResponse:
    text = sanitize_explanation(body.explanation, subtopic.title)
    if not text:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Explanation is empty after sanitation.",
        )
    subtopic.explanation = text
    await db.flush()
    return SubtopicResponse.model_validate(subtopic)


# ---------------------------------------------------------------------------
# Quizzes
# ---------------------------------------------------------------------------

@router.post("/{subtopic_id}/quiz", response_model=QuizResponse)
async def ensure_subtopic_quiz(
    subtopic: Subtopic = Depends(get_owned_subtopic),
    model: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    writer: QuizWriter = Depends(get_quiz_writer),
) -> QuizResponse:
    """
    Return the subtopic's quiz, generating only the missing questions.

    A subtopic that already holds its questions is answered without calling
    the model.
    """
    questions, generated = await ensure_quiz(db, subtopic, writer, model_hint=model)
    return QuizResponse(
        subtopic_id=subtopic.id,
        generated=generated,
        questions=[QuizQuestionResponse.model_validate(q) for q in questions],
    )


@router.post("/{subtopic_id}/questions", response_model=QuestionsUpsertResponse)
async def upsert_questions(
    body: QuestionsUpsertRequest,
    subtopic: Subtopic = Depends(get_owned_subtopic),
    db: AsyncSession = Depends(get_db),
) -> QuestionsUpsertResponse:
    candidates = [
        QuizCandidate(
            prompt=q.prompt.strip(),
            options=[o.strip() for o in q.options],
            answer_index=q.answer_index,
            explanation=q.explanation.strip(),
        )
        for q in body.questions
    ]
    # A subtopic holds at most QUIZ_REQUIRED questions
    required = settings.QUIZ_REQUIRED
    if body.mode == "replace":
        limit = required
    else:
        limit = max(0, required - len(await lecture_store.list_questions(db, subtopic.id)))

    if limit == 0:
        inserted, skipped = 0, len(candidates)
    else:
        inserted, skipped = await lecture_store.upsert_quiz_questions(
            db, subtopic.id, candidates, mode=body.mode, limit=limit
        )
    questions = await lecture_store.list_questions(db, subtopic.id)
    return QuestionsUpsertResponse(
        subtopic_id=subtopic.id,
        inserted=inserted,
        skipped=skipped,
        questions=[QuizQuestionResponse.model_validate(q) for q in questions],
    )


# ---------------------------------------------------------------------------
# Quiz attempts and progress
# ---------------------------------------------------------------------------

async def _progress_response(db: AsyncSession, user_id: str, subtopic_id: int) -> QuizProgressResponse:
    rows = await lecture_store.list_progress(db, user_id, subtopic_id)
    attempts, correct = await lecture_store.attempt_score(db, user_id, subtopic_id)
    return QuizProgressResponse(
        subtopic_id=subtopic_id,
        progress=[QuizProgressEntry.model_validate(r) for r in rows],
        attempts=attempts,
        correct=correct,
    )


@router.post(
    "/{subtopic_id}/quiz/attempts",
    response_model=QuizAttemptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_attempt(
    body: QuizAttemptRequest,
    subtopic: Subtopic = Depends(get_owned_subtopic),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> QuizAttemptResponse:
    question = await lecture_store.get_question(db, subtopic.id, body.question_id)
    if question is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Question {body.question_id} not found in subtopic {subtopic.id}.",
        )
    attempt = await lecture_store.record_attempt(db, user_id, question, body.selected_index)
    return QuizAttemptResponse(
        id=attempt.id,
        question_id=question.id,
        selected_index=attempt.selected_index,
        is_correct=attempt.is_correct,
        correct_index=question.answer_index,
    )


@router.get("/{subtopic_id}/quiz/progress", response_model=QuizProgressResponse)
async def get_progress(
    subtopic: Subtopic = Depends(get_owned_subtopic),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> QuizProgressResponse:
    return await _progress_response(db, user_id, subtopic.id)


@router.post("/{subtopic_id}/quiz/progress", response_model=QuizProgressResponse)
async def update_progress(
    body: QuizProgressRequest,
    subtopic: Subtopic = Depends(get_owned_subtopic),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> QuizProgressResponse:
    # Only fields the caller actually sent are applied
    updates = [u.model_dump(exclude_unset=True) for u in body.updates]
    await lecture_store.update_progress(db, user_id, subtopic.id, updates)
    return await _progress_response(db, user_id, subtopic.id)


@router.post("/{subtopic_id}/quiz/reset", response_model=ResetResponse)
async def reset_progress(
    subtopic: Subtopic = Depends(get_owned_subtopic),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ResetResponse:
    await lecture_store.reset_quiz_progress(db, user_id, subtopic.id)
    return ResetResponse()
