"""
Async HTTP client for the Lectern API.

Usage
-----
    async with LectureClient("http://localhost:8000", user_id="u1") as client:
        lecture_id = await client.create_lecture(text)
        async for event in client.stream_lecture(lecture_id):
            ...
"""
from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from lectern.client.sse import iter_sse_events

logger = logging.getLogger(__name__)


class LectureClient:
    """Thin wrapper over ``httpx.AsyncClient`` that speaks the Lectern API."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        user_id: str = "anonymous",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ) -> None:
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers={"X-User-Id": user_id},
            transport=transport,
            # Streams may stay silent while the model thinks
            timeout=httpx.Timeout(timeout, read=None),
        )

    async def __aenter__(self) -> "LectureClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Lectures
    # ------------------------------------------------------------------

    async def create_lecture(self, content: str) -> int:
        resp = await self._http.post("/api/lectures", json={"content": content})
        resp.raise_for_status()
        return resp.json()["lectureId"]

    async def upload_pdf(self, filename: str, data: bytes) -> int:
        resp = await self._http.post(
            "/api/lectures",
            files={"file": (filename, data, "application/pdf")},
        )
        resp.raise_for_status()
        return resp.json()["lectureId"]

    async def get_lecture(self, lecture_id: int) -> Dict[str, Any]:
        resp = await self._http.get(f"/api/lectures/{lecture_id}")
        resp.raise_for_status()
        return resp.json()

    async def stream_lecture(
        self,
        lecture_id: int,
        model: Optional[str] = None,
        pregenerate: bool = False,
    ) -> AsyncIterator[Dict[str, Any]]:
        params: Dict[str, Any] = {"pregenerate": str(pregenerate).lower()}
        if model:
            params["model"] = model
        async for event in self._stream(f"/api/lectures/{lecture_id}/stream", params):
            yield event

    # ------------------------------------------------------------------
    # Subtopics
    # ------------------------------------------------------------------

    async def get_subtopic(self, subtopic_id: int) -> Dict[str, Any]:
        resp = await self._http.get(f"/api/subtopics/{subtopic_id}")
        resp.raise_for_status()
        return resp.json()

    async def stream_explanation(
        self,
        subtopic_id: int,
        style: Optional[str] = None,
        model: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        params = {k: v for k, v in (("style", style), ("model", model)) if v}
        async for event in self._stream(f"/api/subtopics/{subtopic_id}/explanation/stream", params):
            yield event

    async def save_explanation(self, subtopic_id: int, text: str) -> Dict[str, Any]:
        resp = await self._http.put(
            f"/api/subtopics/{subtopic_id}/explanation", json={"explanation": text}
        )
        resp.raise_for_status()
        return resp.json()

    async def ensure_quiz(self, subtopic_id: int, model: Optional[str] = None) -> Dict[str, Any]:
        params = {"model": model} if model else None
        resp = await self._http.post(f"/api/subtopics/{subtopic_id}/quiz", params=params)
        resp.raise_for_status()
        return resp.json()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _stream(self, path: str, params: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        async with self._http.stream("GET", path, params=params) as resp:
            resp.raise_for_status()
            async for event in iter_sse_events(resp.aiter_lines()):
                yield event
