"""
Tests for tolerant decoding of model JSON.
"""
from lectern.utils.json_decoder import (
    decode_model_json,
    extract_balanced,
    extract_fenced,
    repair_json,
)


def test_plain_json_decodes():
    assert decode_model_json('{"a": 1, "b": [1, 2]}') == {"a": 1, "b": [1, 2]}


def test_bare_list_decodes():
    assert decode_model_json("[1, 2, 3]") == [1, 2, 3]


def test_fenced_json_block():
    text = 'Here is the outline:\n```json\n{"topic": "Cells"}\n```\nHope it helps.'
    assert decode_model_json(text) == {"topic": "Cells"}


def test_bare_fence_without_language():
    text = '```\n{"topic": "Cells"}\n```'
    assert decode_model_json(text) == {"topic": "Cells"}


def test_object_embedded_in_prose():
    text = 'Sure! The answer is {"indices": [0, 2, 4]} as requested.'
    assert decode_model_json(text) == {"indices": [0, 2, 4]}


def test_trailing_commas_and_python_literals_repaired():
    text = '{"ok": True, "missing": None, "items": [1, 2,],}'
    assert decode_model_json(text) == {"ok": True, "missing": None, "items": [1, 2]}


def test_braces_inside_strings_do_not_confuse_scan():
    text = 'prefix {"title": "Sets {and} maps", "n": 1} suffix'
    assert decode_model_json(text) == {"title": "Sets {and} maps", "n": 1}


def test_escaped_quote_inside_string():
    fragment = extract_balanced('x {"q": "say \\"hi\\" {"} y')
    assert fragment == '{"q": "say \\"hi\\" {"}'


def test_garbage_returns_none():
    assert decode_model_json("I cannot help with that.") is None
    assert decode_model_json("") is None
    assert decode_model_json(None) is None


def test_unclosed_object_returns_none():
    assert decode_model_json('{"topic": "Cells", "subtopics": [') is None


def test_extract_fenced_none_without_fence():
    assert extract_fenced("no fence here") is None


def test_repair_json_leaves_valid_json_alone():
    assert repair_json('{"a": [1, 2]}') == '{"a": [1, 2]}'
