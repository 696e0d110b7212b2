"""
Lecture tutor endpoints.

Route summary
-------------
POST /{id}/chat            ask the tutor; SSE with ?stream=true, JSON otherwise
GET  /{id}/chat/history    conversation since the last reset
POST /{id}/chat/reset      start a fresh conversation
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lectern.database import get_db, get_session_factory
from lectern.dependencies.auth import get_current_user_id, get_owned_lecture
from lectern.dependencies.services import get_tutor
from lectern.exceptions import ModelUnavailableError
from lectern.models.database_models import Lecture
from lectern.models.schemas import (
    ChatHistoryResponse,
    ChatRequest,
    ChatResponse,
    ResetResponse,
    TutorMessageResponse,
)
from lectern.services import lecture_store
from lectern.services.tutor import ChatStreamer, Tutor, grounding_for, load_history
from lectern.utils.sse import sse_response

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{lecture_id}/chat")
async def ask_tutor(
    body: ChatRequest,
    lecture: Lecture = Depends(get_owned_lecture),
    user_id: str = Depends(get_current_user_id),
    stream: bool = Query(False, description="Answer as server-sent events"),
    model: Optional[str] = Query(None, description="Preferred generation model"),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    tutor: Tutor = Depends(get_tutor),
):
    subtopic = None
    if body.subtopic_id is not None:
        subtopic = next((s for s in lecture.subtopics if s.id == body.subtopic_id), None)
        if subtopic is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Subtopic {body.subtopic_id} not found in lecture {lecture.id}.",
            )

    if stream:
        streamer = ChatStreamer(
            lecture.id,
            user_id,
            body.question,
            session_factory,
            tutor,
            subtopic_id=body.subtopic_id,
            persist=body.persist,
            model_hint=model,
        )
        return sse_response(streamer.events())

    history = await load_history(db, lecture.id, user_id)
    prompt = tutor.build_prompt(
        lecture.title, grounding_for(lecture, body.question, subtopic), body.question, history
    )
    if body.persist:
        await lecture_store.add_tutor_message(
            db, lecture.id, user_id, "user", body.question, body.subtopic_id
        )
        # Keep the question even when the model fails below
        await db.commit()
    try:
        answer = await tutor.answer(prompt, model_hint=model)
    except ModelUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))

    if body.persist:
        await lecture_store.add_tutor_message(db, lecture.id, user_id, "ai", answer, body.subtopic_id)
    return ChatResponse(lecture_id=lecture.id, response=answer)


@router.get("/{lecture_id}/chat/history", response_model=ChatHistoryResponse)
async def chat_history(
    lecture: Lecture = Depends(get_owned_lecture),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ChatHistoryResponse:
    messages = await lecture_store.list_tutor_messages(db, lecture.id, user_id)
    return ChatHistoryResponse(
        lecture_id=lecture.id,
        messages=[TutorMessageResponse.model_validate(m) for m in messages],
    )


@router.post("/{lecture_id}/chat/reset", response_model=ResetResponse)
async def reset_chat(
    lecture: Lecture = Depends(get_owned_lecture),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ResetResponse:
    await lecture_store.reset_tutor(db, lecture.id, user_id)
    return ResetResponse()
