"""
Shared fixtures for Lectern backend tests.

Each test gets its own SQLite database file (aiosqlite) and a scripted fake
model gateway injected through ``app.dependency_overrides``.
"""
from __future__ import annotations

import os
import tempfile
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Override settings *before* any lectern module is imported.  Set
# TEST_DATABASE_URL to run against PostgreSQL; otherwise every test gets its
# own SQLite file.
TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")
_TMP_ROOT = tempfile.mkdtemp(prefix="lectern-tests-")
os.environ["DATABASE_URL"] = TEST_DATABASE_URL or (
    f"sqlite+aiosqlite:///{os.path.join(_TMP_ROOT, 'global.db')}"
)
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_ROOT, "uploads")
os.environ["STREAM_PACING_SECONDS"] = "0"
os.environ["VISION_POLL_INTERVAL"] = "0.01"
os.environ["SELECTION_STRATEGY"] = "model"

from lectern.database import Base, get_db, get_session_factory  # noqa: E402
from lectern.main import app  # noqa: E402
from lectern.services.llm import get_llm_service  # noqa: E402
from tests.fakes import FakeLLM  # noqa: E402


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh database per test; yields a session factory bound to it."""
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    engine = create_async_engine(url, echo=False, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    if TEST_DATABASE_URL:
        # Shared server: leave it empty for the next test
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest_asyncio.fixture
async def client(session_factory, fake_llm) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the DB, stream session
    factory and model gateway overridden.
    """

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_llm_service] = lambda: fake_llm

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

AUTH_HEADERS = {"X-User-Id": "test-user-1"}

AUTH_HEADERS_USER2 = {"X-User-Id": "test-user-2"}
