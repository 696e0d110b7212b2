"""
Tests for capping a breakdown at MAX_SUBTOPICS.
"""
import pytest

from lectern.services.breakdown import SubtopicCandidate
from lectern.services.subtopic_selector import (
    SubtopicSelector,
    stride_indices,
    validate_indices,
)
from tests.fakes import FakeLLM


def _candidates(n):
    return [SubtopicCandidate(title=f"T{i}", overview=f"about {i}") for i in range(n)]


# ---------------------------------------------------------------------------
# Stride
# ---------------------------------------------------------------------------

def test_stride_twenty_to_fifteen():
    assert stride_indices(20, 15) == [0, 1, 2, 4, 5, 6, 8, 9, 10, 12, 13, 14, 16, 17, 18]


def test_stride_covers_start_and_end_region():
    picked = stride_indices(100, 15)
    assert len(picked) == 15
    assert picked[0] == 0
    assert picked[-1] >= 90
    assert picked == sorted(set(picked))


def test_stride_small_inputs():
    assert stride_indices(5, 15) == [0, 1, 2, 3, 4]
    assert stride_indices(0, 15) == []


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def test_validate_accepts_exact_distinct_in_range():
    assert validate_indices({"indices": [4, 0, 2]}, total=5, count=3) == [0, 2, 4]


@pytest.mark.parametrize(
    "raw",
    [
        {"indices": [0, 1]},  # too few
        {"indices": [0, 1, 1]},  # duplicates leave too few
        {"indices": [0, 1, 9]},  # out of range
        {"indices": [0, 1, -1]},
        {"indices": [0, 1, "2"]},
        {"indices": [0, 1, True]},
        {"picked": [0, 1, 2]},
        "0,1,2",
        None,
    ],
)
def test_validate_rejects_bad_answers(raw):
    assert validate_indices(raw, total=5, count=3) is None


# ---------------------------------------------------------------------------
# Selector
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_short_breakdown_is_untouched_without_model_call():
    llm = FakeLLM()
    selector = SubtopicSelector(llm, max_subtopics=15, strategy="model")
    candidates = _candidates(12)
    assert await selector.select(candidates) == candidates
    assert llm.calls["select"] == 0


@pytest.mark.asyncio
async def test_model_selection_is_sorted():
    llm = FakeLLM()
    llm.script("select", '{"indices": [19, 0, 5, 3, 7, 9, 11, 13, 15, 17, 1, 2, 4, 6, 8]}')
    selector = SubtopicSelector(llm, max_subtopics=15, strategy="model")
    picked = await selector.select(_candidates(20))
    titles = [c.title for c in picked]
    assert len(titles) == 15
    assert titles == [f"T{i}" for i in sorted([19, 0, 5, 3, 7, 9, 11, 13, 15, 17, 1, 2, 4, 6, 8])]


@pytest.mark.asyncio
async def test_invalid_model_selection_falls_back_to_stride():
    llm = FakeLLM()
    llm.script("select", '{"indices": [0, 1, 2]}')
    selector = SubtopicSelector(llm, max_subtopics=15, strategy="model")
    indices = await selector.select_indices(_candidates(20))
    assert indices == stride_indices(20, 15)
    assert llm.calls["select"] == 1


@pytest.mark.asyncio
async def test_stride_strategy_skips_model():
    llm = FakeLLM()
    selector = SubtopicSelector(llm, max_subtopics=15, strategy="stride")
    indices = await selector.select_indices(_candidates(40))
    assert indices == stride_indices(40, 15)
    assert llm.calls["select"] == 0
