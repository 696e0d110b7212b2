"""
Authentication and ownership dependencies for FastAPI routes.

Identity comes from the X-User-Id header set by the frontend's auth layer;
Lectern never sees credentials.
"""
from __future__ import annotations

import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from lectern.database import get_db
from lectern.models.database_models import Lecture, Subtopic
from lectern.services import lecture_store

logger = logging.getLogger(__name__)


async def get_current_user_id(
    x_user_id: str = Header(..., alias="X-User-Id"),
) -> str:
    """Extract the authenticated user ID from the request header. Raises 401 if missing."""
    if not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header.",
        )
    return x_user_id


async def get_owned_lecture(
    lecture_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> Lecture:
    """
    Verify that the lecture belongs to the current user.
    Returns the Lecture (subtopics loaded) or raises 404.
    """
    lecture = await lecture_store.get_lecture(db, lecture_id, user_id, with_questions=True)
    if lecture is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Lecture {lecture_id} not found.",
        )
    return lecture


async def get_owned_subtopic(
    subtopic_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> Subtopic:
    """Subtopic (with its lecture loaded) owned by the current user, or 404."""
    subtopic = await lecture_store.get_subtopic(db, subtopic_id, user_id)
    if subtopic is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Subtopic {subtopic_id} not found.",
        )
    return subtopic
