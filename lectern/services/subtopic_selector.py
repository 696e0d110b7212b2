"""
Cap a breakdown at ``MAX_SUBTOPICS`` while keeping coverage of the document.

Two strategies, tried in order when the breakdown is too long:

1. model-assisted: the model picks exactly N indices; accepted only if every
   index is an int in range and N distinct indices remain
2. stride: ``floor(k * len / N)`` for k in [0, N), de-duplicated

Either way the chosen indices are sorted ascending, so the final subtopics
keep the document's order.
"""
from __future__ import annotations

import json
import logging
from typing import Any, List, Optional

from lectern.config import settings
from lectern.services.breakdown import SubtopicCandidate
from lectern.services.llm import OllamaLLMService

logger = logging.getLogger(__name__)

_SELECT_PROMPT = """\
A lecture outline has {total} candidate subtopics, listed in document order:

{candidates}

Choose exactly {count} of them so that the chosen subtopics together cover as
much of the whole document as possible (beginning, middle and end).

Respond ONLY with valid JSON. No explanation, no markdown:
{{"indices": [0, 3, 5]}}\
"""


def stride_indices(total: int, count: int) -> List[int]:
    """Evenly spaced indices over ``range(total)``; ascending and distinct."""
    if count <= 0 or total <= 0:
        return []
    if count >= total:
        return list(range(total))
    return sorted({(k * total) // count for k in range(count)})


def validate_indices(raw: Any, total: int, count: int) -> Optional[List[int]]:
    """
    Accept the model's answer only if it names exactly *count* distinct ints
    in ``[0, total)``.  Returns the sorted indices or None.
    """
    if isinstance(raw, dict):
        raw = raw.get("indices")
    if not isinstance(raw, list):
        return None
    picked = []
    for value in raw:
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        if value < 0 or value >= total:
            return None
        picked.append(value)
    unique = sorted(set(picked))
    if len(unique) != count:
        return None
    return unique


class SubtopicSelector:
    """Reduce a candidate list to at most ``max_subtopics`` entries."""

    SELECT_PROMPT = _SELECT_PROMPT

    def __init__(
        self,
        llm: Optional[OllamaLLMService] = None,
        max_subtopics: Optional[int] = None,
        strategy: Optional[str] = None,
    ) -> None:
        self.llm = llm
        self.max_subtopics = max_subtopics or settings.MAX_SUBTOPICS
        self.strategy = strategy or settings.SELECTION_STRATEGY

    async def select_indices(
        self,
        candidates: List[SubtopicCandidate],
        model_hint: Optional[str] = None,
    ) -> List[int]:
        total = len(candidates)
        if total <= self.max_subtopics:
            return list(range(total))

        count = self.max_subtopics
        if self.strategy == "model" and self.llm is not None:
            listing = "\n".join(
                json.dumps({"index": i, "title": c.title, "overview": c.overview[:200]})
                for i, c in enumerate(candidates)
            )
            parsed = await self.llm.generate_json(
                self.SELECT_PROMPT.format(total=total, candidates=listing, count=count),
                model_hint=model_hint,
                max_tokens=300,
            )
            indices = validate_indices(parsed, total, count)
            if indices is not None:
                logger.info("Selector: model picked %d of %d candidates", count, total)
                return indices
            logger.warning("Selector: invalid model selection, using stride fallback")

        return stride_indices(total, count)

    async def select(
        self,
        candidates: List[SubtopicCandidate],
        model_hint: Optional[str] = None,
    ) -> List[SubtopicCandidate]:
        """Selected candidates in original document order."""
        indices = await self.select_indices(candidates, model_hint=model_hint)
        return [candidates[i] for i in indices]
