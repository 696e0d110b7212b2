"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from datetime import datetime, timezone
import logging

from lectern.database import get_db
from lectern.models.schemas import HealthCheckResponse
from lectern.services.llm import OllamaLLMService, get_llm_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    llm: OllamaLLMService = Depends(get_llm_service),
):
    """
    Health check endpoint to verify system status.

    Returns:
        HealthCheckResponse with status of database and Ollama
    """
    # Check database connection
    db_status = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        db_status = "error"

    # Check Ollama connection
    ollama_status = "ok" if await llm.check_health() else "error"

    # Overall status
    overall_status = "healthy" if db_status == "ok" and ollama_status == "ok" else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        database=db_status,
        ollama=ollama_status,
        timestamp=datetime.now(timezone.utc),
    )
