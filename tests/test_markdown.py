"""
Tests for fence unwrapping and preamble stripping of explanation text.
"""
import pytest

from lectern.utils.markdown import sanitize_explanation, strip_preamble, unwrap_fences


# ---------------------------------------------------------------------------
# unwrap_fences
# ---------------------------------------------------------------------------

def test_unwraps_markdown_fence():
    assert unwrap_fences("```markdown\n# Title\n\nBody text.\n```") == "# Title\n\nBody text."


def test_unwraps_fence_around_indented_block():
    assert unwrap_fences("```\n    Body line\n```") == "Body line"


def test_keeps_language_code_block():
    text = "Intro.\n\n```python\nprint('hi')\n```\n\nOutro."
    assert unwrap_fences(text) == text


def test_dedents_indented_block():
    assert unwrap_fences("    Line one\n    Line two") == "Line one\nLine two"


def test_drops_single_stray_fence():
    assert unwrap_fences("```\nBody without closing fence") == "Body without closing fence"


@pytest.mark.parametrize(
    "text",
    [
        "```\n    indented inside fence\n```",
        "```md\n```\nBody\n```\n```",
        "Plain text.",
        "",
        "```python\nx = 1\n```",
    ],
)
def test_unwrap_is_idempotent(text):
    once = unwrap_fences(text)
    assert unwrap_fences(once) == once


# ---------------------------------------------------------------------------
# strip_preamble
# ---------------------------------------------------------------------------

def test_strips_meta_opener():
    text = "Sure, here is the explanation you asked for.\nLight is absorbed by chlorophyll."
    assert strip_preamble(text) == "Light is absorbed by chlorophyll."


@pytest.mark.parametrize(
    "opener",
    [
        "Of course! Let me explain.",
        "Certainly.",
        "Here's a concise overview:",
        "This section covers the Calvin cycle.",
        "In this section, we will look at carbon fixation.",
        "Crafting a learning module on the Calvin cycle...",
    ],
)
def test_strips_known_openers(opener):
    assert strip_preamble(f"{opener}\nBody.") == "Body."


def test_strips_heading_repeating_title():
    text = "## The Calvin Cycle\n\nCarbon is fixed in the stroma."
    assert strip_preamble(text, "The Calvin cycle") == "Carbon is fixed in the stroma."


def test_strips_leading_h1_and_bold_title():
    assert strip_preamble("# Anything\nBody.", "Other") == "Body."
    assert strip_preamble("**Calvin Cycle**\nBody.", "Calvin cycle") == "Body."


def test_keeps_unrelated_subheading():
    text = "## Key steps\nBody."
    assert strip_preamble(text, "Calvin cycle") == text


def test_sanitize_combines_both():
    raw = "```markdown\nSure, here it is:\n## Calvin Cycle\nCarbon fixation.\x00\n```"
    assert sanitize_explanation(raw, "Calvin cycle") == "Carbon fixation."


def test_sanitize_is_idempotent():
    raw = "```\nCertainly!\n# Title\nBody text here.\n```"
    once = sanitize_explanation(raw, "Title")
    assert sanitize_explanation(once, "Title") == once
