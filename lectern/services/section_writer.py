"""
Section writer: prose explanation for one subtopic.

Two entry points share one prompt builder:

``SectionWriter.write``   full explanation in one call (250-450 words)
``SectionWriter.stream``  word-boundary deltas as the model produces them
                          (180-300 words, so the first paint arrives sooner)

Output is cleaned with ``sanitize_explanation`` before it is stored.
"""
from __future__ import annotations

import logging
from typing import AsyncIterator, Optional

from lectern.exceptions import ModelUnavailableError
from lectern.models.schemas import ExplanationStyle
from lectern.services.llm import OllamaLLMService
from lectern.utils.markdown import sanitize_explanation

logger = logging.getLogger(__name__)

STYLE_HINTS = {
    ExplanationStyle.DEFAULT: "Use a balanced, concise explanation.",
    ExplanationStyle.SIMPLIFIED: "Explain as simply as possible for a beginner.",
    ExplanationStyle.DETAILED: "Go a bit deeper on nuances and edge cases.",
    ExplanationStyle.EXAMPLE: "Center the explanation around a concrete, realistic example.",
}

_SECTION_PROMPT = """\
You are writing one section of a lecture titled "{lecture_title}".

Section: {subtopic_title}
What this section covers: {overview}

Source material (quote facts only from here):
---
{context}
---

Write the explanation for this section in markdown, {min_words}-{max_words} words.
{style_hint}
Start directly with the content. Do not restate the section title, do not add
a heading for it, and do not open with phrases like "Sure" or "Here is".
Do not wrap the answer in a code block.\
"""


def parse_style(value: Optional[str]) -> ExplanationStyle:
    """Map a query-string style to the enum; unknown values mean default."""
    try:
        return ExplanationStyle((value or "default").strip().lower())
    except ValueError:
        return ExplanationStyle.DEFAULT


def split_at_word_boundary(buffer: str):
    """
    Split *buffer* into ``(ready, remainder)`` where *ready* ends on whitespace.

    ``remainder`` is the trailing partial word still waiting for more text.
    """
    cut = max(buffer.rfind(" "), buffer.rfind("\n"), buffer.rfind("\t"))
    if cut == -1:
        return "", buffer
    return buffer[: cut + 1], buffer[cut + 1 :]


class SectionWriter:
    SECTION_PROMPT = _SECTION_PROMPT

    def __init__(self, llm: OllamaLLMService) -> None:
        self.llm = llm

    def build_prompt(
        self,
        lecture_title: str,
        subtopic_title: str,
        overview: str,
        context: str,
        style: ExplanationStyle = ExplanationStyle.DEFAULT,
        streaming: bool = False,
    ) -> str:
        min_words, max_words = (180, 300) if streaming else (250, 450)
        return self.SECTION_PROMPT.format(
            lecture_title=lecture_title,
            subtopic_title=subtopic_title,
            overview=overview or subtopic_title,
            context=context,
            min_words=min_words,
            max_words=max_words,
            style_hint=STYLE_HINTS[style],
        )

    async def write(
        self,
        lecture_title: str,
        subtopic_title: str,
        overview: str,
        context: str,
        style: ExplanationStyle = ExplanationStyle.DEFAULT,
        model_hint: Optional[str] = None,
    ) -> str:
        """
        Sanitized explanation text.

        Raises:
            ModelUnavailableError: the model returned nothing usable.
        """
        prompt = self.build_prompt(lecture_title, subtopic_title, overview, context, style)
        raw = await self.llm.generate_text(prompt, model_hint=model_hint, max_tokens=1200)
        text = sanitize_explanation(raw, subtopic_title)
        if not text:
            raise ModelUnavailableError(f"empty explanation for {subtopic_title!r}")
        return text

    async def stream(
        self,
        lecture_title: str,
        subtopic_title: str,
        overview: str,
        context: str,
        style: ExplanationStyle = ExplanationStyle.DEFAULT,
        model_hint: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """
        Yield raw deltas re-chunked on whitespace.

        Every chunk but the last ends in whitespace, so a client appending
        chunks never sees half a word.  Sanitation happens once the full text
        is known (see ``explanation_stream``).
        """
        prompt = self.build_prompt(
            lecture_title, subtopic_title, overview, context, style, streaming=True
        )
        pending = ""
        async for delta in self.llm.stream_text(prompt, model_hint=model_hint, max_tokens=700):
            pending += delta.replace("\x00", "")
            ready, pending = split_at_word_boundary(pending)
            if ready:
                yield ready
        if pending:
            yield pending
