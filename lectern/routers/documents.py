"""
Document extraction endpoint.

POST /extract    PDF upload to normalised text (vision fallback for scans)
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status

from lectern.config import settings
from lectern.dependencies.auth import get_current_user_id
from lectern.dependencies.services import get_vision_analyzer
from lectern.exceptions import EmptyExtractionError, FileTooLargeError, UpstreamTimeoutError
from lectern.models.schemas import ExtractResponse
from lectern.services.blob_store import LocalBlobStore, get_blob_store
from lectern.services.ingestion import IngestResult, ingest_pdf
from lectern.services.vision import PdfVisionAnalyzer

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Shared upload handling
# ---------------------------------------------------------------------------

async def ingest_pdf_upload(
    file: UploadFile,
    blob_store: LocalBlobStore,
    analyzer: Optional[PdfVisionAnalyzer],
    model_hint: Optional[str] = None,
) -> IngestResult:
    """Validate, read and ingest an uploaded PDF; maps failures to HTTP errors."""
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Upload must include a filename.",
        )

    file_ext = Path(file.filename).suffix.lower()
    if file_ext not in settings.SUPPORTED_FILE_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"Unsupported file type '{file_ext}'. "
                f"Accepted: {', '.join(settings.SUPPORTED_FILE_TYPES)}"
            ),
        )

    try:
        data = await blob_store.read_upload(file)
    except FileTooLargeError as exc:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=str(exc),
        )

    try:
        return await ingest_pdf(data, analyzer, model_hint=model_hint)
    except RuntimeError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        )
    except EmptyExtractionError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        )
    except UpstreamTimeoutError as exc:
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=str(exc),
        )


# ---------------------------------------------------------------------------
# POST /extract
# ---------------------------------------------------------------------------

@router.post("/extract", response_model=ExtractResponse)
async def extract_document(
    file: UploadFile = File(...),
    model: Optional[str] = Query(None, description="Preferred vision model"),
    user_id: str = Depends(get_current_user_id),
    blob_store: LocalBlobStore = Depends(get_blob_store),
    analyzer: PdfVisionAnalyzer = Depends(get_vision_analyzer),
) -> ExtractResponse:
    """
    Extract the text of a PDF without creating a lecture.

    - 413 when the file exceeds MAX_FILE_SIZE
    - 422 when neither the text layer nor the vision model yields content
    - 504 when the vision fallback times out (retryable)
    """
    result = await ingest_pdf_upload(file, blob_store, analyzer, model_hint=model)
    logger.info(
        "Extracted %r for %s: %d chars via %s",
        file.filename, user_id, len(result.text), result.source_kind,
    )
    return ExtractResponse(
        filename=file.filename,
        pages=result.page_count,
        content=result.text,
        source_kind=result.source_kind,
    )
