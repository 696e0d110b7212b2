"""
Breakdown generation: the model-produced outline of a document.

The model is asked for a topic and 8-15 sequential subtopics.  Its JSON goes
through the tolerant decoder; anything unusable counts as a failed attempt.
After ``BREAKDOWN_ATTEMPTS`` failures the document gets a single synthetic
"Overview" subtopic so a lecture always has at least one section.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, List, Optional

from lectern.config import settings
from lectern.services.llm import OllamaLLMService
from lectern.utils.helpers import strip_nul

logger = logging.getLogger(__name__)

FALLBACK_TITLE = "Overview"
FALLBACK_OVERVIEW_CHARS = 500

_IMPORTANCE_ALIASES = {
    "high": "high",
    "critical": "high",
    "core": "high",
    "medium": "medium",
    "med": "medium",
    "moderate": "medium",
    "normal": "medium",
    "low": "low",
    "minor": "low",
}


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

_BREAKDOWN_PROMPT = """\
You are an expert teacher preparing a lecture from the document below.

---
{document}
---

Produce an exhaustive, sequential breakdown of the document into subtopics.
Rules:
- Cover the whole document from start to finish, in the order it is written.
- Do not merge unrelated topics into one subtopic.
- Produce between 8 and 15 subtopics. Never exceed 15.
- For each subtopic give: title (short), importance ("high", "medium" or \
"low"), difficulty (1 = introductory, 2 = intermediate, 3 = advanced), and \
overview (one or two sentences about what the section teaches).
- Also give a short overall lecture topic.

Respond ONLY with valid JSON. No explanation, no markdown:
{{"topic": "...", "subtopics": [{{"title": "...", "importance": "high", "difficulty": 1, "overview": "..."}}]}}\
"""


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class SubtopicCandidate:
    """One outline entry before selection."""

    title: str
    importance: str = "medium"
    difficulty: int = 2
    overview: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclasses.dataclass
class Breakdown:
    topic: Optional[str]
    subtopics: List[SubtopicCandidate]
    is_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "subtopics": [s.to_dict() for s in self.subtopics],
            "is_fallback": self.is_fallback,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Breakdown":
        return cls(
            topic=data.get("topic"),
            subtopics=[SubtopicCandidate(**s) for s in data.get("subtopics", [])],
            is_fallback=bool(data.get("is_fallback", False)),
        )


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------

def normalize_importance(value: Any) -> str:
    return _IMPORTANCE_ALIASES.get(str(value or "").strip().lower(), "medium")


def clamp_difficulty(value: Any) -> int:
    """Parse *value* as int, clamped to [1, 3]; returns 2 on error."""
    try:
        return max(1, min(3, int(round(float(value)))))
    except (TypeError, ValueError):
        return 2


def coerce_candidate(raw: Any, position: int) -> Optional[SubtopicCandidate]:
    """
    Build a candidate from one model item; *position* is 1-based.

    A bare string is taken as the title.  Non-dict, non-string items are
    dropped.
    """
    if isinstance(raw, str):
        raw = {"title": raw}
    if not isinstance(raw, dict):
        return None

    title = strip_nul(str(raw.get("title") or raw.get("name") or "")).strip()
    overview = raw.get("overview") or raw.get("summary") or raw.get("description") or ""
    return SubtopicCandidate(
        title=title or f"Section {position}",
        importance=normalize_importance(raw.get("importance")),
        difficulty=clamp_difficulty(raw.get("difficulty")),
        overview=strip_nul(str(overview)).strip(),
    )


def coerce_breakdown(parsed: Any) -> Optional[Breakdown]:
    """Turn decoded model JSON into a ``Breakdown``; None if it has no subtopics."""
    topic = None
    items: Any = None
    if isinstance(parsed, dict):
        topic = parsed.get("topic") or parsed.get("title")
        for key in ("subtopics", "sections", "topics", "items"):
            if isinstance(parsed.get(key), list):
                items = parsed[key]
                break
    elif isinstance(parsed, list):
        items = parsed

    if not items:
        return None

    candidates = [
        c for c in (coerce_candidate(item, i) for i, item in enumerate(items, start=1)) if c
    ]
    if not candidates:
        return None

    topic = strip_nul(str(topic)).strip() if topic else None
    return Breakdown(topic=topic or None, subtopics=candidates)


def fallback_breakdown(document_text: str) -> Breakdown:
    """Single "Overview" subtopic built from the start of the document."""
    return Breakdown(
        topic=None,
        subtopics=[
            SubtopicCandidate(
                title=FALLBACK_TITLE,
                importance="high",
                difficulty=1,
                overview=strip_nul(document_text)[:FALLBACK_OVERVIEW_CHARS],
            )
        ],
        is_fallback=True,
    )


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class BreakdownGenerator:
    """Ask the model for an outline, retrying on unusable output."""

    BREAKDOWN_PROMPT = _BREAKDOWN_PROMPT

    def __init__(self, llm: OllamaLLMService, attempts: Optional[int] = None) -> None:
        self.llm = llm
        self.attempts = attempts or settings.BREAKDOWN_ATTEMPTS

    async def generate(
        self,
        document_text: str,
        model_hint: Optional[str] = None,
        fallback_text: Optional[str] = None,
    ) -> Breakdown:
        """
        Return the document's breakdown; never raises for bad model output.

        *fallback_text* is used for the synthetic overview when the prompt
        was given a sampled excerpt rather than the full document.
        """
        prompt = self.BREAKDOWN_PROMPT.format(document=document_text)
        for attempt in range(1, self.attempts + 1):
            parsed = await self.llm.generate_json(prompt, model_hint=model_hint, max_tokens=2500)
            breakdown = coerce_breakdown(parsed)
            if breakdown:
                logger.info(
                    "Breakdown: %d candidates on attempt %d/%d",
                    len(breakdown.subtopics),
                    attempt,
                    self.attempts,
                )
                return breakdown
            logger.warning("Breakdown: unusable model output on attempt %d/%d", attempt, self.attempts)

        logger.error("Breakdown: all %d attempts failed, using overview fallback", self.attempts)
        return fallback_breakdown(fallback_text if fallback_text is not None else document_text)
