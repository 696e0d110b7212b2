"""
Tolerant decoding of JSON embedded in model output.

Models wrap JSON in prose, markdown fences, or mangle it with trailing commas
and Python literals.  ``decode_model_json`` tries three tiers in order and
returns the first value that parses, or ``None``:

1. the whole text
2. the first fenced code block (```json or a bare fence)
3. the first balanced ``{...}`` region, found with a string-aware scan

Each tier also retries once after ``repair_json`` has fixed common mangling.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n?([\s\S]*?)```", re.IGNORECASE)


def try_json(text: str) -> Tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except (json.JSONDecodeError, ValueError, TypeError):
        return False, None


def repair_json(text: str) -> str:
    """Repair the most common JSON mangling patterns from LLMs."""
    # Trailing commas before ] or }
    text = re.sub(r",(\s*[}\]])", r"\1", text)
    # Python → JSON literals
    text = re.sub(r"\bTrue\b", "true", text)
    text = re.sub(r"\bFalse\b", "false", text)
    text = re.sub(r"\bNone\b", "null", text)
    return text.strip()


def _parse(text: str) -> Tuple[bool, Any]:
    ok, val = try_json(text)
    if ok:
        return True, val
    repaired = repair_json(text)
    if repaired != text:
        return try_json(repaired)
    return False, None


def extract_fenced(text: str) -> Optional[str]:
    """Body of the first ```json / ``` fenced block, or None."""
    match = _FENCE_RE.search(text)
    if not match:
        return None
    return match.group(1).strip()


def extract_balanced(text: str, open_b: str = "{", close_b: str = "}") -> Optional[str]:
    """
    Find the first complete balanced open_b … close_b structure in *text*.

    Brackets inside quoted strings are ignored and backslash escapes honoured.
    Returns the matched fragment, or None if no structure closes.
    """
    start = text.find(open_b)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape_next = False

    for i, ch in enumerate(text[start:], start=start):
        if escape_next:
            escape_next = False
            continue
        if ch == "\\" and in_string:
            escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == open_b:
            depth += 1
        elif ch == close_b:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def decode_model_json(text: Optional[str]) -> Optional[Any]:
    """Decode JSON from messy model output; ``None`` when every tier fails."""
    if not text or not text.strip():
        return None
    text = text.strip()

    # Tier 1: direct parse
    ok, val = _parse(text)
    if ok:
        return val

    # Tier 2: fenced code block
    fenced = extract_fenced(text)
    if fenced:
        ok, val = _parse(fenced)
        if ok:
            return val

    # Tier 3: first balanced object in surrounding prose
    fragment = extract_balanced(text)
    if fragment:
        ok, val = _parse(fragment)
        if ok:
            return val

    logger.warning("decode_model_json: all tiers failed. Preview: %s", text[:300])
    return None
