"""
Pick the paragraphs of a document most relevant to one subtopic.

Pure and deterministic: the same inputs always give the same slice, so
explanations and quizzes for a subtopic are grounded in the same text.
"""
from __future__ import annotations

from typing import List, Set

from lectern.config import settings
from lectern.services.document_parser import split_paragraphs
from lectern.utils.helpers import STOPWORDS, tokenize


def query_terms(*texts: str) -> Set[str]:
    """Tokens of length >= 3 that are not stopwords."""
    terms: Set[str] = set()
    for text in texts:
        terms.update(t for t in tokenize(text) if len(t) >= 3 and t not in STOPWORDS)
    return terms


def score_paragraphs(paragraphs: List[str], terms: Set[str]) -> List[float]:
    """
    Distinct query terms present in each paragraph, plus 0.5 when the
    previous paragraph also mentions at least one term.
    """
    overlaps = [len(terms & set(tokenize(p))) for p in paragraphs]
    scores: List[float] = []
    for i, overlap in enumerate(overlaps):
        score = float(overlap)
        if overlap and i > 0 and overlaps[i - 1] > 0:
            score += 0.5
        scores.append(score)
    return scores


def slice_context(
    document: str,
    title: str,
    overview: str = "",
    budget: int = None,
) -> str:
    """
    Return at most *budget* characters of *document* relevant to the subtopic.

    Highest-scoring paragraphs are taken first, each with its neighbours,
    until the budget is spent.  The result keeps document order.  When no
    paragraph mentions any query term, the document prefix is returned.
    """
    budget = budget or settings.CONTEXT_CHAR_BUDGET
    paragraphs = split_paragraphs(document or "")
    if not paragraphs:
        return (document or "")[:budget]

    terms = query_terms(title, overview)
    scores = score_paragraphs(paragraphs, terms) if terms else [0.0] * len(paragraphs)

    ranked = sorted(
        (i for i, s in enumerate(scores) if s > 0),
        key=lambda i: (-scores[i], i),
    )
    if not ranked:
        return _prefix_slice(paragraphs, budget)

    chosen: dict = {}
    used = 0
    for hit in ranked:
        for idx in (hit, hit - 1, hit + 1):
            if idx < 0 or idx >= len(paragraphs) or idx in chosen:
                continue
            para = paragraphs[idx]
            cost = len(para) + (2 if chosen else 0)
            if used + cost > budget:
                if not chosen and idx == hit:
                    # Oversized first hit: keep a truncated copy
                    chosen[idx] = para[:budget]
                    used = budget
                continue
            chosen[idx] = para
            used += cost
        if used >= budget:
            break

    return "\n\n".join(chosen[i] for i in sorted(chosen))


def _prefix_slice(paragraphs: List[str], budget: int) -> str:
    return "\n\n".join(paragraphs)[:budget]
