"""
Tests for quiz question validation, de-duplication, shuffling and fallback.
"""
import json
import random

import pytest

from lectern.services.quiz_writer import (
    TRUE_FALSE_OPTIONS,
    QuizCandidate,
    QuizWriter,
    clean_question,
    fallback_questions,
    filter_near_duplicates,
    is_near_duplicate,
    normalize_prompt,
    shuffle_options,
)
from tests.fakes import SAMPLE_DOCUMENT, FakeLLM, quiz_payload


def _candidate(prompt="Which pigment absorbs light?", answer=2):
    return QuizCandidate(
        prompt=prompt,
        options=["Rubisco", "Glucose", "Chlorophyll", "Stomata"],
        answer_index=answer,
        explanation="Chlorophyll absorbs light.",
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def test_clean_question_accepts_aliases():
    raw = {
        "question": "  What is fixed?  ",
        "options": ["CO2", "O2", "N2", "H2"],
        "answer_index": 0,
        "explain": "CO2 is fixed.",
    }
    candidate = clean_question(raw)
    assert candidate.prompt == "What is fixed?"
    assert candidate.answer_index == 0
    assert candidate.explanation == "CO2 is fixed."


@pytest.mark.parametrize(
    "raw",
    [
        {"prompt": "Q", "options": ["a", "b", "c"], "answerIndex": 0, "explanation": "e"},
        {"prompt": "Q", "options": ["a", "b", "c", " "], "answerIndex": 0, "explanation": "e"},
        {"prompt": "Q", "options": ["a", "b", "c", "d"], "answerIndex": 4, "explanation": "e"},
        {"prompt": "Q", "options": ["a", "b", "c", "d"], "answerIndex": "1", "explanation": "e"},
        {"prompt": "Q", "options": ["a", "b", "c", "d"], "answerIndex": True, "explanation": "e"},
        {"prompt": "", "options": ["a", "b", "c", "d"], "answerIndex": 0, "explanation": "e"},
        {"prompt": "Q", "options": ["a", "b", "c", "d"], "answerIndex": 0, "explanation": ""},
        "not a dict",
    ],
)
def test_clean_question_rejects_invalid(raw):
    assert clean_question(raw) is None


# ---------------------------------------------------------------------------
# Near-duplicates
# ---------------------------------------------------------------------------

def test_normalized_prompt_ignores_case_space_and_trailing_punctuation():
    assert normalize_prompt("  What IS   fixed?? ") == normalize_prompt("what is fixed")


def test_near_duplicate_by_word_overlap():
    existing = ["Which pigment inside chloroplasts absorbs sunlight?"]
    assert is_near_duplicate("Which pigment inside chloroplasts absorbs the sunlight", existing, 0.6)
    assert not is_near_duplicate("Where does the Calvin cycle take place?", existing, 0.6)


def test_filter_checks_existing_and_batch():
    batch = [
        _candidate("Which pigment absorbs light energy?"),
        _candidate("Which pigment absorbs light energy"),  # same prompt, batch duplicate
        _candidate("Where does carbon fixation happen?"),
        _candidate("What does the stroma contain?"),
    ]
    kept = filter_near_duplicates(batch, ["What does the stroma contain"], 0.6)
    assert [c.prompt for c in kept] == [
        "Which pigment absorbs light energy?",
        "Where does carbon fixation happen?",
    ]


# ---------------------------------------------------------------------------
# Shuffle
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("seed", range(50))
def test_shuffle_keeps_options_and_never_puts_answer_first(seed):
    for answer in range(4):
        original = _candidate(answer=answer)
        shuffled = shuffle_options(original, random.Random(seed))
        assert sorted(shuffled.options) == sorted(original.options)
        assert shuffled.answer_index in (1, 2, 3)
        assert shuffled.correct_option == original.correct_option


def test_shuffle_is_reproducible_with_seed():
    a = shuffle_options(_candidate(), random.Random(7))
    b = shuffle_options(_candidate(), random.Random(7))
    assert a == b


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------

def test_fallback_builds_true_false_questions():
    made = fallback_questions(SAMPLE_DOCUMENT, count=2, rng=random.Random(1))
    assert len(made) == 2
    for q in made:
        assert q.prompt.startswith("According to the lesson, is the following statement true?")
        assert sorted(q.options) == sorted(TRUE_FALSE_OPTIONS)
        assert q.correct_option == "True"
        assert q.answer_index != 0


def test_fallback_without_sentences_is_empty():
    assert fallback_questions("Too short.", count=2) == []


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_writer_returns_requested_count():
    llm = FakeLLM()
    writer = QuizWriter(llm, rng=random.Random(3))
    questions = await writer.generate(SAMPLE_DOCUMENT, "Light absorption", count=2)
    assert len(questions) == 2
    assert all(q.answer_index != 0 for q in questions)
    assert llm.calls["quiz"] == 1
    # One spare question is requested
    assert "Write 3 multiple-choice questions" in llm.prompts["quiz"][0]


@pytest.mark.asyncio
async def test_writer_avoids_existing_prompts():
    llm = FakeLLM()
    llm.script(
        "quiz",
        quiz_payload(["Which pigment absorbs light inside chloroplasts?"]),
        quiz_payload(["Which organelle holds chlorophyll molecules?"]),
    )
    writer = QuizWriter(llm, rng=random.Random(3), attempts=2)
    questions = await writer.generate(
        SAMPLE_DOCUMENT,
        "Light absorption",
        avoid_prompts=["Which pigment absorbs light inside chloroplasts"],
        count=1,
    )
    assert [q.prompt for q in questions] == ["Which organelle holds chlorophyll molecules?"]
    assert llm.calls["quiz"] == 2
    assert "Do not repeat or rephrase" in llm.prompts["quiz"][0]


@pytest.mark.asyncio
async def test_writer_drops_ungrounded_questions_then_falls_back():
    llm = FakeLLM()
    off_topic = {
        "questions": [
            {
                "prompt": "Who painted the Mona Lisa?",
                "options": ["Leonardo", "Monet", "Picasso", "Dali"],
                "answerIndex": 0,
                "explanation": "Leonardo painted it.",
            }
        ]
    }
    llm.script("quiz", json.dumps(off_topic))
    writer = QuizWriter(llm, rng=random.Random(5), attempts=2)
    questions = await writer.generate(SAMPLE_DOCUMENT, "Light absorption", count=2)
    assert len(questions) == 2
    assert all(q.prompt.startswith("According to the lesson") for q in questions)
    assert llm.calls["quiz"] == 2


@pytest.mark.asyncio
async def test_writer_survives_garbage_output():
    llm = FakeLLM()
    llm.script("quiz", "no questions today")
    writer = QuizWriter(llm, rng=random.Random(5), attempts=2)
    questions = await writer.generate(SAMPLE_DOCUMENT, "Light absorption", count=1)
    assert len(questions) == 1
