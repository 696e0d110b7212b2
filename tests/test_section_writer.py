"""
Tests for the section writer (prompting, sanitation and streamed re-chunking).
"""
import pytest

from lectern.exceptions import ModelUnavailableError
from lectern.models.schemas import ExplanationStyle
from lectern.services.section_writer import SectionWriter, parse_style, split_at_word_boundary
from tests.fakes import FakeLLM


def test_parse_style_defaults_on_unknown():
    assert parse_style("Simplified") == ExplanationStyle.SIMPLIFIED
    assert parse_style(None) == ExplanationStyle.DEFAULT
    assert parse_style("poetic") == ExplanationStyle.DEFAULT


def test_split_at_word_boundary():
    assert split_at_word_boundary("hello wor") == ("hello ", "wor")
    assert split_at_word_boundary("partial") == ("", "partial")
    assert split_at_word_boundary("line\nnext") == ("line\n", "next")


def test_prompt_word_ranges_and_style_hint():
    writer = SectionWriter(FakeLLM())
    full = writer.build_prompt("Lecture", "Calvin", "", "ctx", ExplanationStyle.EXAMPLE)
    streamed = writer.build_prompt("Lecture", "Calvin", "", "ctx", streaming=True)
    assert "250-450 words" in full
    assert "concrete, realistic example" in full
    assert "180-300 words" in streamed
    # Missing overview falls back to the title
    assert "What this section covers: Calvin" in full


@pytest.mark.asyncio
async def test_write_sanitizes_output():
    llm = FakeLLM()
    llm.script("section", "```markdown\nSure! Here is the section.\n## Calvin\nCarbon is fixed.\n```")
    text = await SectionWriter(llm).write("Lecture", "Calvin", "overview", "ctx")
    assert text == "Carbon is fixed."


@pytest.mark.asyncio
async def test_write_empty_output_raises():
    llm = FakeLLM()
    llm.script("section", "")
    with pytest.raises(ModelUnavailableError):
        await SectionWriter(llm).write("Lecture", "Calvin", "overview", "ctx")


@pytest.mark.asyncio
async def test_stream_never_splits_words():
    llm = FakeLLM()
    llm.stream_chunks = ["Chloro", "phyll abs", "orbs li", "ght\x00."]
    chunks = [c async for c in SectionWriter(llm).stream("L", "T", "", "ctx")]
    assert "".join(chunks) == "Chlorophyll absorbs light."
    for chunk in chunks[:-1]:
        assert chunk[-1].isspace()
    assert llm.calls["stream"] == 1
