"""
Quiz writer: multiple-choice questions grounded in a subtopic's source text.

Model output is validated item by item (invalid items are dropped, never
repaired), near-duplicates are filtered with a Jaccard test over significant
words, and options are shuffled so the correct answer is never first.
"""
from __future__ import annotations

import dataclasses
import logging
import random
import re
from typing import Any, Iterable, List, Optional

from lectern.config import settings
from lectern.services.llm import OllamaLLMService
from lectern.utils.helpers import extract_keywords, generate_hash, jaccard, significant_words, strip_nul

logger = logging.getLogger(__name__)

TRUE_FALSE_PROMPT = "According to the lesson, is the following statement true?"
TRUE_FALSE_OPTIONS = ["True", "False", "Not stated", "Only in a special case"]

_QUIZ_PROMPT = """\
You are writing quiz questions for the lecture section "{subtopic_title}".
Section summary: {overview}

Source material:
---
{context}
---

Write {count} multiple-choice questions that test understanding of the source
material. Each question has exactly 4 options and exactly one correct answer.
Do not ask about anything the source material does not state.
{avoid_block}
Respond ONLY with valid JSON. No explanation, no markdown:
{{"questions": [{{"prompt": "...", "options": ["...", "...", "...", "..."], "answerIndex": 0, "explanation": "..."}}]}}\
"""


@dataclasses.dataclass
class QuizCandidate:
    prompt: str
    options: List[str]
    answer_index: int
    explanation: str

    @property
    def prompt_hash(self) -> str:
        return generate_hash(normalize_prompt(self.prompt))

    @property
    def correct_option(self) -> str:
        return self.options[self.answer_index]


def normalize_prompt(prompt: str) -> str:
    """Case/space/trailing-punctuation-insensitive form used for hashing."""
    text = re.sub(r"\s+", " ", prompt.strip().lower())
    return text.rstrip(" ?.!:")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def clean_question(raw: Any) -> Optional[QuizCandidate]:
    """
    Validate one model item; return None if anything is off.

    Accepts ``question`` for ``prompt`` and ``explain`` for ``explanation``.
    Requires exactly 4 non-empty options and an int ``answerIndex`` in 0..3.
    """
    if not isinstance(raw, dict):
        return None

    prompt = raw.get("prompt") or raw.get("question")
    explanation = raw.get("explanation") or raw.get("explain")
    options = raw.get("options")
    answer = raw.get("answerIndex", raw.get("answer_index"))

    if not isinstance(prompt, str) or not prompt.strip():
        return None
    if not isinstance(explanation, str) or not explanation.strip():
        return None
    if not isinstance(options, list) or len(options) != 4:
        return None
    if not all(isinstance(o, str) and o.strip() for o in options):
        return None
    if isinstance(answer, bool) or not isinstance(answer, int) or not 0 <= answer <= 3:
        return None

    return QuizCandidate(
        prompt=strip_nul(prompt).strip(),
        options=[strip_nul(o).strip() for o in options],
        answer_index=answer,
        explanation=strip_nul(explanation).strip(),
    )


def is_grounded(candidate: QuizCandidate, grounding: str) -> bool:
    """True when the question shares at least one keyword with the source text."""
    if not grounding:
        return True
    source_words = significant_words(grounding)
    keywords = extract_keywords(candidate.prompt + " " + candidate.correct_option)
    if not keywords:
        return True
    return any(k in source_words for k in keywords)


# ---------------------------------------------------------------------------
# Near-duplicate filter
# ---------------------------------------------------------------------------

def is_near_duplicate(prompt: str, others: Iterable[str], threshold: float = None) -> bool:
    limit = settings.QUIZ_DUP_THRESHOLD if threshold is None else threshold
    words = significant_words(prompt)
    key = normalize_prompt(prompt)
    for other in others:
        if normalize_prompt(other) == key:
            return True
        if jaccard(words, significant_words(other)) >= limit:
            return True
    return False


def filter_near_duplicates(
    candidates: Iterable[QuizCandidate],
    existing_prompts: Iterable[str],
    threshold: float = None,
) -> List[QuizCandidate]:
    """
    Keep candidates that are not near-duplicates of a stored prompt or of a
    prompt already accepted earlier in the same batch.
    """
    seen = list(existing_prompts)
    accepted: List[QuizCandidate] = []
    for candidate in candidates:
        if is_near_duplicate(candidate.prompt, seen, threshold):
            logger.debug("Quiz: dropping near-duplicate %r", candidate.prompt[:80])
            continue
        accepted.append(candidate)
        seen.append(candidate.prompt)
    return accepted


# ---------------------------------------------------------------------------
# Shuffle
# ---------------------------------------------------------------------------

def shuffle_options(candidate: QuizCandidate, rng: random.Random = None) -> QuizCandidate:
    """
    Fisher-Yates shuffle of the options with the answer index remapped.

    If the correct option lands at position 0 it is swapped with a random
    position in 1..3, so the correct answer is never first.
    """
    rng = rng or random.Random()
    order = list(range(len(candidate.options)))
    for i in range(len(order) - 1, 0, -1):
        j = rng.randint(0, i)
        order[i], order[j] = order[j], order[i]

    answer = order.index(candidate.answer_index)
    if answer == 0:
        swap = rng.randint(1, len(order) - 1)
        order[0], order[swap] = order[swap], order[0]
        answer = swap

    return QuizCandidate(
        prompt=candidate.prompt,
        options=[candidate.options[i] for i in order],
        answer_index=answer,
        explanation=candidate.explanation,
    )


# ---------------------------------------------------------------------------
# Deterministic fallback
# ---------------------------------------------------------------------------

def _declarative_sentences(text: str) -> List[str]:
    sentences = re.split(r"(?<=[.!])\s+", re.sub(r"\s+", " ", text or ""))
    out = []
    for sentence in sentences:
        sentence = sentence.strip()
        words = sentence.split()
        if 8 <= len(words) <= 24 and sentence.endswith(".") and not sentence.startswith("#"):
            out.append(sentence)
    return out


def fallback_questions(
    grounding: str,
    avoid_prompts: Iterable[str] = (),
    count: int = 1,
    rng: random.Random = None,
) -> List[QuizCandidate]:
    """
    True/False-style questions built from statements in the source text.

    Used when the model produced nothing usable so the subtopic can still
    become quiz-ready.
    """
    avoid = list(avoid_prompts)
    made: List[QuizCandidate] = []
    for sentence in _declarative_sentences(grounding):
        if len(made) >= count:
            break
        prompt = f'{TRUE_FALSE_PROMPT} "{sentence}"'
        if is_near_duplicate(prompt, avoid):
            continue
        candidate = QuizCandidate(
            prompt=prompt,
            options=list(TRUE_FALSE_OPTIONS),
            answer_index=0,
            explanation=f'The lesson states: "{sentence}"',
        )
        made.append(shuffle_options(candidate, rng))
        avoid.append(prompt)
    return made


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------

class QuizWriter:
    QUIZ_PROMPT = _QUIZ_PROMPT

    def __init__(
        self,
        llm: OllamaLLMService,
        rng: Optional[random.Random] = None,
        threshold: Optional[float] = None,
        attempts: Optional[int] = None,
    ) -> None:
        self.llm = llm
        self.rng = rng or random.Random()
        self.threshold = settings.QUIZ_DUP_THRESHOLD if threshold is None else threshold
        self.attempts = attempts or settings.QUIZ_ATTEMPTS

    def build_prompt(self, context: str, subtopic_title: str, overview: str,
                     avoid_prompts: List[str], count: int) -> str:
        avoid_block = ""
        if avoid_prompts:
            listed = "\n".join(f"- {p}" for p in avoid_prompts)
            avoid_block = f"Do not repeat or rephrase these existing questions:\n{listed}\n"
        return self.QUIZ_PROMPT.format(
            subtopic_title=subtopic_title,
            overview=overview or subtopic_title,
            context=context,
            count=count,
            avoid_block=avoid_block,
        )

    async def generate(
        self,
        context: str,
        subtopic_title: str,
        overview: str = "",
        avoid_prompts: Iterable[str] = (),
        count: int = 2,
        model_hint: Optional[str] = None,
    ) -> List[QuizCandidate]:
        """
        Up to *count* validated, de-duplicated, shuffled questions.

        Asks for one spare question so a near-duplicate does not leave the
        batch short.  Falls back to statement questions from *context*.
        """
        avoid = list(avoid_prompts)
        accepted: List[QuizCandidate] = []

        for attempt in range(1, self.attempts + 1):
            need = count - len(accepted)
            if need <= 0:
                break
            parsed = await self.llm.generate_json(
                self.build_prompt(context, subtopic_title, overview, avoid, need + 1),
                model_hint=model_hint,
                max_tokens=1500,
            )
            items = parsed.get("questions") if isinstance(parsed, dict) else parsed
            if not isinstance(items, list):
                logger.warning("Quiz: unusable model output on attempt %d/%d", attempt, self.attempts)
                continue

            valid = [c for c in (clean_question(item) for item in items) if c]
            grounded = [c for c in valid if is_grounded(c, context)]
            fresh = filter_near_duplicates(grounded, avoid, self.threshold)
            for candidate in fresh[:need]:
                accepted.append(shuffle_options(candidate, self.rng))
                avoid.append(candidate.prompt)
            logger.info(
                "Quiz: attempt %d kept %d/%d items for %r",
                attempt, len(fresh[:need]), len(items), subtopic_title,
            )

        if len(accepted) < count:
            accepted.extend(
                fallback_questions(context, avoid, count - len(accepted), self.rng)
            )
        return accepted
