"""
Lecture endpoints.

Route summary
-------------
POST   /              create a lecture from JSON {content} or a multipart PDF
GET    /              list the caller's lectures
GET    /{id}          lecture with ordered subtopics and stored questions
PATCH  /{id}          rename
DELETE /{id}          delete with subtopics and questions
GET    /{id}/stream   SSE: build the lecture progressively
"""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.datastructures import UploadFile

from lectern.database import get_db, get_session_factory
from lectern.dependencies.auth import get_current_user_id, get_owned_lecture
from lectern.dependencies.services import get_vision_analyzer
from lectern.exceptions import EmptyExtractionError
from lectern.models.database_models import Lecture
from lectern.models.schemas import (
    LectureCreateRequest,
    LectureCreateResponse,
    LectureDetailResponse,
    LectureRenameRequest,
    LectureSummary,
)
from lectern.routers.documents import ingest_pdf_upload
from lectern.services import lecture_store
from lectern.services.blob_store import LocalBlobStore, get_blob_store
from lectern.services.ingestion import ingest_text
from lectern.services.lecture_stream import LectureStreamer
from lectern.services.llm import OllamaLLMService, get_llm_service
from lectern.services.vision import PdfVisionAnalyzer
from lectern.utils.sse import sse_response

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=LectureCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_lecture(
    request: Request,
    model: Optional[str] = Query(None, description="Preferred model for vision fallback"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
    analyzer: PdfVisionAnalyzer = Depends(get_vision_analyzer),
) -> LectureCreateResponse:
    """
    Create a lecture and return its id before any subtopic exists.

    Accepts either ``application/json`` ``{"content": "..."}`` or a
    ``multipart/form-data`` upload with a ``file`` field (PDF).  Open
    ``GET /api/lectures/{id}/stream`` next to build the subtopics.
    """
    content_type = request.headers.get("content-type", "")
    breakdown = None

    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Multipart upload must include a 'file' field.",
            )
        result = await ingest_pdf_upload(upload, blob_store, analyzer, model_hint=model)
        if result.breakdown is not None:
            breakdown = result.breakdown.to_dict()
    else:
        try:
            body = LectureCreateRequest.model_validate(await request.json())
        except (ValueError, ValidationError) as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Invalid body: {exc}",
            )
        try:
            result = ingest_text(body.content)
        except EmptyExtractionError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=str(exc),
            )

    lecture = await lecture_store.create_lecture(
        db,
        owner_id=user_id,
        content=result.text,
        source_kind=result.source_kind,
        page_count=result.page_count,
        breakdown=breakdown,
    )
    return LectureCreateResponse(
        lecture_id=lecture.id,
        title=lecture.title,
        source_kind=lecture.source_kind,
        page_count=lecture.page_count,
    )


# ---------------------------------------------------------------------------
# Read / update / delete
# ---------------------------------------------------------------------------

@router.get("", response_model=List[LectureSummary])
async def list_lectures(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> List[LectureSummary]:
    rows = await lecture_store.list_lectures(db, user_id)
    return [
        LectureSummary(
            id=lecture.id,
            title=lecture.title,
            source_kind=lecture.source_kind,
            page_count=lecture.page_count,
            subtopic_count=count,
            created_at=lecture.created_at,
        )
        for lecture, count in rows
    ]


@router.get("/{lecture_id}", response_model=LectureDetailResponse)
async def get_lecture(lecture: Lecture = Depends(get_owned_lecture)) -> LectureDetailResponse:
    return LectureDetailResponse.model_validate(lecture)


@router.patch("/{lecture_id}", response_model=LectureDetailResponse)
async def rename_lecture(
    body: LectureRenameRequest,
    lecture: Lecture = Depends(get_owned_lecture),
    db: AsyncSession = Depends(get_db),
) -> LectureDetailResponse:
    lecture.title = body.title.replace("\x00", "")
    await db.flush()
    return LectureDetailResponse.model_validate(lecture)


@router.delete("/{lecture_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_lecture(
    lecture: Lecture = Depends(get_owned_lecture),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await lecture_store.delete_lecture(db, lecture)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# GET /{id}/stream
# ---------------------------------------------------------------------------

@router.get("/{lecture_id}/stream")
async def stream_lecture(
    lecture: Lecture = Depends(get_owned_lecture),
    user_id: str = Depends(get_current_user_id),
    model: Optional[str] = Query(None, description="Preferred generation model"),
    pregenerate: bool = Query(False, description="Also write every explanation"),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    llm: OllamaLLMService = Depends(get_llm_service),
):
    """
    Server-sent events: ``subtopic`` for each stored subtopic (already
    persisted ones first), ``title`` when the topic resolves, then one
    ``done`` or ``error``.
    """
    streamer = LectureStreamer(
        lecture.id,
        user_id,
        session_factory,
        llm,
        model_hint=model,
        pregenerate=pregenerate,
    )
    return sse_response(streamer.events())
