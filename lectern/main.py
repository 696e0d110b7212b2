"""
Main FastAPI application for Lectern backend.
Handles CORS, request logging middleware, lifespan events, and router registration.
"""
import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lectern.config import settings
from lectern.database import close_db, init_db
from lectern.routers import chat, documents, health, lectures, subtopics
from lectern.services.llm import llm_service

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("Starting Lectern backend")

    # Database is required; raises on failure
    await init_db()

    # Ollama is optional at startup; generation fails per request until it is up
    if await llm_service.check_health():
        logger.info("Ollama reachable at %s (model %s)", settings.OLLAMA_BASE_URL, settings.OLLAMA_LLM_MODEL)
    else:
        logger.warning("Ollama is not running. Start it with: ollama serve")

    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    logger.info("Upload directory: %s", os.path.abspath(settings.UPLOAD_DIR))
    logger.info("Lectern backend ready on http://%s:%d", settings.HOST, settings.PORT)

    yield  # server is running

    logger.info("Shutting down Lectern backend")
    await close_db()


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Lectern API",
    description=(
        "**Lectern** turns a document into a streamed lecture.\n\n"
        "Key endpoints:\n"
        "- `POST /api/lectures` create a lecture from text or a PDF\n"
        "- `GET  /api/lectures/{id}/stream` build its subtopics (SSE)\n"
        "- `GET  /api/subtopics/{id}/explanation/stream` write one section (SSE)\n"
        "- `POST /api/subtopics/{id}/quiz` make the section quiz-ready\n"
        "- `POST /api/lectures/{id}/chat` ask the lecture tutor\n"
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches an ``X-Process-Time`` header (milliseconds) to every response.
    For streams the time covers the headers, not the whole body.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    # Skip noisy health-check polling from the frontend
    if request.url.path not in ("/api/health/", "/"):
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Global exception handler
# ---------------------------------------------------------------------------

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error": str(exc),
            "path": str(request.url.path),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,     prefix="/api/health",    tags=["Health"])
app.include_router(documents.router,  prefix="/api/documents", tags=["Documents"])
app.include_router(lectures.router,   prefix="/api/lectures",  tags=["Lectures"])
app.include_router(subtopics.router,  prefix="/api/subtopics", tags=["Subtopics"])
app.include_router(chat.router,       prefix="/api/lectures",  tags=["Tutor"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root: basic service info."""
    return {
        "name": "Lectern API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/api/health/",
        "endpoints": {
            "documents": "/api/documents",
            "lectures": "/api/lectures",
            "subtopics": "/api/subtopics",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lectern.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
