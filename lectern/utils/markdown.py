"""
Clean-up of model-written markdown before it is shown or stored.

Models often wrap an answer in a code fence, indent it as a code block, open
with "Sure, here is..." or repeat the section title as a heading.  These
helpers remove that without touching the body.
"""
from __future__ import annotations

import re
from typing import Optional

from lectern.utils.helpers import strip_nul

_PLAIN_FENCE_TAGS = {"", "md", "markdown", "text", "plain", "plaintext", "txt"}
_FENCE_LINE_RE = re.compile(r"^\s*```+\s*([A-Za-z0-9_+-]*)\s*$")
_HEADING_RE = re.compile(r"^(#{1,6})\s+(.*?)\s*#*\s*$")

_PREAMBLE_RE = re.compile(
    r"^\s*(?:"
    r"of course\b"
    r"|sure\b"
    r"|certainly\b"
    r"|absolutely\b"
    r"|here(?:'s| is| are)\b"
    r"|this (?:guide|section|explanation|lesson) (?:covers|explains|will)\b"
    r"|in this (?:section|lesson|explanation),? (?:we|you|i)(?: will|'ll)\b"
    r"|crafting (?:a |the )?(?:learning module|explanation)\b"
    r")[^\n]*(?:\n|$)",
    re.IGNORECASE,
)


def _norm_title(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", text.lower()).strip()


def _unwrap_once(text: str) -> str:
    stripped = text.strip("\n")
    lines = stripped.split("\n")

    # Whole response wrapped in a single plain/markdown fence
    if len(lines) >= 2:
        first = _FENCE_LINE_RE.match(lines[0])
        last = _FENCE_LINE_RE.match(lines[-1])
        if first and last and not last.group(1) and first.group(1).lower() in _PLAIN_FENCE_TAGS:
            inner = lines[1:-1]
            if not any(_FENCE_LINE_RE.match(line) for line in inner):
                return "\n".join(inner).strip("\n")

    # Whole response indented as a code block
    body = [line for line in lines if line.strip()]
    if body and all(line.startswith("    ") or line.startswith("\t") for line in body):
        return "\n".join(
            line[4:] if line.startswith("    ") else line[1:] if line.startswith("\t") else line
            for line in lines
        )

    # A single stray fence line (opened and never closed, or the reverse)
    fence_lines = [i for i, line in enumerate(lines) if _FENCE_LINE_RE.match(line)]
    if len(fence_lines) == 1:
        idx = fence_lines[0]
        tag = _FENCE_LINE_RE.match(lines[idx]).group(1).lower()
        if tag in _PLAIN_FENCE_TAGS:
            del lines[idx]
            return "\n".join(lines).strip("\n")

    return stripped


def unwrap_fences(text: str) -> str:
    """
    Remove a wrapping fence, block indentation or a stray fence line.

    Applied until nothing changes, so ``unwrap_fences(unwrap_fences(x))``
    equals ``unwrap_fences(x)``.  Fences tagged with a real language are kept.
    """
    current = text or ""
    while True:
        nxt = _unwrap_once(current)
        if nxt == current:
            return current
        current = nxt


def strip_preamble(text: str, subtopic_title: Optional[str] = None) -> str:
    """
    Drop a leading heading that repeats the title (or any leading H1) and a
    leading meta sentence such as "Sure, here is the explanation".
    """
    out = (text or "").lstrip()
    title_key = _norm_title(subtopic_title) if subtopic_title else ""

    for _ in range(3):
        before = out
        first_line, _, rest = out.partition("\n")

        heading = _HEADING_RE.match(first_line)
        if heading:
            level = len(heading.group(1))
            heading_key = _norm_title(heading.group(2))
            if level == 1 or (title_key and heading_key == title_key):
                out = rest.lstrip()
                continue

        bold_title = re.match(r"^\*\*(.+?)\*\*\s*$", first_line)
        if bold_title and title_key and _norm_title(bold_title.group(1)) == title_key:
            out = rest.lstrip()
            continue

        out = _PREAMBLE_RE.sub("", out, count=1).lstrip()
        if out == before:
            break
    return out


def sanitize_explanation(text: str, subtopic_title: Optional[str] = None) -> str:
    """Full clean-up applied to explanation text before it is persisted."""
    cleaned = unwrap_fences(strip_nul(text).replace("\r\n", "\n"))
    return strip_preamble(cleaned, subtopic_title).strip()
