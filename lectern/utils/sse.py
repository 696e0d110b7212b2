"""
Server-sent event framing shared by the lecture and explanation streams.

Every event is one ``data: <json>`` line followed by a blank line.
"""
from __future__ import annotations

import json
from typing import Any, AsyncIterator, Dict

from fastapi.responses import StreamingResponse

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_event(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False, default=str)}\n\n"


async def _encode_all(events: AsyncIterator[Dict[str, Any]]) -> AsyncIterator[str]:
    async for event in events:
        yield encode_event(event)


def sse_response(events: AsyncIterator[Dict[str, Any]]) -> StreamingResponse:
    """Wrap an async generator of event dicts as a ``text/event-stream`` response."""
    return StreamingResponse(
        _encode_all(events),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
