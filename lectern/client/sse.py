"""
Parse a ``text/event-stream`` body into event dicts.
"""
from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List

logger = logging.getLogger(__name__)


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[Dict[str, Any]]:
    """
    Yield one dict per event from an async iterator of body lines.

    ``data:`` lines of one event are joined with newlines before decoding;
    comments (``:``) and other fields are ignored.  Undecodable events are
    logged and skipped.
    """
    data: List[str] = []
    async for line in lines:
        line = line.rstrip("\r")
        if not line:
            if data:
                payload = "\n".join(data)
                data = []
                try:
                    yield json.loads(payload)
                except json.JSONDecodeError:
                    logger.warning("Skipping undecodable SSE payload: %r", payload[:120])
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            value = line[5:]
            data.append(value[1:] if value.startswith(" ") else value)

    if data:
        try:
            yield json.loads("\n".join(data))
        except json.JSONDecodeError:
            logger.warning("Skipping truncated SSE payload at end of stream")
