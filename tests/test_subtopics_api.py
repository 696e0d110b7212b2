"""
API tests for subtopic explanations (streamed and one-shot) and quizzes.
"""
import pytest
from httpx import AsyncClient

from lectern.exceptions import ModelUnavailableError
from tests.conftest import AUTH_HEADERS, AUTH_HEADERS_USER2
from tests.fakes import DEFAULT_SECTION, SAMPLE_DOCUMENT, parse_sse


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _subtopic_ids(client: AsyncClient):
    resp = await client.post("/api/lectures", json={"content": SAMPLE_DOCUMENT}, headers=AUTH_HEADERS)
    lecture_id = resp.json()["lectureId"]
    await client.get(f"/api/lectures/{lecture_id}/stream", headers=AUTH_HEADERS)
    detail = (await client.get(f"/api/lectures/{lecture_id}", headers=AUTH_HEADERS)).json()
    return [s["id"] for s in detail["subtopics"]]


def _question(prompt, answer=1):
    return {
        "prompt": prompt,
        "options": ["Chlorophyll", "Rubisco", "Glucose", "Stomata"],
        "answer_index": answer,
        "explanation": "From the lesson.",
    }


# ---------------------------------------------------------------------------
# Explanations
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_subtopic(client: AsyncClient):
    sid = (await _subtopic_ids(client))[0]
    resp = await client.get(f"/api/subtopics/{sid}", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["title"] == "Part 1"
    assert (await client.get(f"/api/subtopics/{sid}", headers=AUTH_HEADERS_USER2)).status_code == 404


@pytest.mark.asyncio
async def test_explanation_stream_chunks_then_done(client: AsyncClient, fake_llm):
    sid = (await _subtopic_ids(client))[0]

    resp = await client.get(f"/api/subtopics/{sid}/explanation/stream", headers=AUTH_HEADERS)

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    events = parse_sse(resp.text)
    chunks = [e["delta"] for e in events if e["type"] == "chunk"]
    assert "".join(chunks) == "Chlorophyll absorbs light in chloroplasts."
    assert events[-1] == {"type": "done", "explanation": "Chlorophyll absorbs light in chloroplasts."}

    stored = (await client.get(f"/api/subtopics/{sid}", headers=AUTH_HEADERS)).json()
    assert stored["explanation"] == "Chlorophyll absorbs light in chloroplasts."


@pytest.mark.asyncio
async def test_explanation_stream_sanitizes_stored_text(client: AsyncClient, fake_llm):
    sid = (await _subtopic_ids(client))[0]
    fake_llm.stream_chunks = ["```markdown\n", "Sure, here is the section.\n", "## Part 1\n", "Real body."]

    events = parse_sse(
        (await client.get(f"/api/subtopics/{sid}/explanation/stream", headers=AUTH_HEADERS)).text
    )

    assert events[-1] == {"type": "done", "explanation": "Real body."}


@pytest.mark.asyncio
async def test_explanation_stream_error_event(client: AsyncClient, fake_llm):
    sid = (await _subtopic_ids(client))[0]
    fake_llm.stream_error = ModelUnavailableError("model backend timed out")

    events = parse_sse(
        (await client.get(f"/api/subtopics/{sid}/explanation/stream", headers=AUTH_HEADERS)).text
    )

    assert events == [{"type": "error", "error": "model backend timed out"}]
    stored = (await client.get(f"/api/subtopics/{sid}", headers=AUTH_HEADERS)).json()
    assert stored["explanation"] is None


@pytest.mark.asyncio
async def test_explanation_stream_passes_style(client: AsyncClient, fake_llm):
    sid = (await _subtopic_ids(client))[0]
    await client.get(
        f"/api/subtopics/{sid}/explanation/stream",
        params={"style": "simplified"},
        headers=AUTH_HEADERS,
    )
    assert "as simply as possible" in fake_llm.prompts["stream"][0]


@pytest.mark.asyncio
async def test_post_explanation_persists_by_default(client: AsyncClient, fake_llm):
    sid = (await _subtopic_ids(client))[0]

    resp = await client.post(f"/api/subtopics/{sid}/explanation", headers=AUTH_HEADERS)

    assert resp.status_code == 200
    body = resp.json()
    assert body["markdown"] == DEFAULT_SECTION
    assert body["style"] == "default"
    assert body["persisted"] is True
    stored = (await client.get(f"/api/subtopics/{sid}", headers=AUTH_HEADERS)).json()
    assert stored["explanation"] == DEFAULT_SECTION


@pytest.mark.asyncio
async def test_post_explanation_without_persist(client: AsyncClient, fake_llm):
    sid = (await _subtopic_ids(client))[0]

    resp = await client.post(
        f"/api/subtopics/{sid}/explanation",
        params={"persist": "false", "style": "example"},
        headers=AUTH_HEADERS,
    )

    assert resp.status_code == 200
    assert resp.json()["persisted"] is False
    assert resp.json()["style"] == "example"
    stored = (await client.get(f"/api/subtopics/{sid}", headers=AUTH_HEADERS)).json()
    assert stored["explanation"] is None


@pytest.mark.asyncio
async def test_post_explanation_empty_model_output_is_bad_gateway(client: AsyncClient, fake_llm):
    sid = (await _subtopic_ids(client))[0]
    fake_llm.script("section", "")
    resp = await client.post(f"/api/subtopics/{sid}/explanation", headers=AUTH_HEADERS)
    assert resp.status_code == 502


@pytest.mark.asyncio
async def test_put_explanation_is_sanitized(client: AsyncClient):
    sid = (await _subtopic_ids(client))[0]

    resp = await client.put(
        f"/api/subtopics/{sid}/explanation",
        json={"explanation": "```\nSure, here you go.\nEdited text.\n```"},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 200
    assert resp.json()["explanation"] == "Edited text."

    resp = await client.put(
        f"/api/subtopics/{sid}/explanation", json={"explanation": "```\n```"}, headers=AUTH_HEADERS
    )
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Quizzes
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_quiz_is_generated_once(client: AsyncClient, fake_llm):
    sid = (await _subtopic_ids(client))[0]

    first = await client.post(f"/api/subtopics/{sid}/quiz", headers=AUTH_HEADERS)
    assert first.status_code == 200
    body = first.json()
    assert body["generated"] == 2
    assert len(body["questions"]) == 2
    for q in body["questions"]:
        assert len(q["options"]) == 4
        assert q["answer_index"] in (1, 2, 3)
        assert q["options"][q["answer_index"]] == "Chlorophyll"
    assert fake_llm.calls["quiz"] == 1

    second = await client.post(f"/api/subtopics/{sid}/quiz", headers=AUTH_HEADERS)
    assert second.json()["generated"] == 0
    assert [q["id"] for q in second.json()["questions"]] == [q["id"] for q in body["questions"]]
    assert fake_llm.calls["quiz"] == 1


@pytest.mark.asyncio
async def test_quiz_tops_up_missing_questions(client: AsyncClient, fake_llm):
    sid = (await _subtopic_ids(client))[0]
    await client.post(
        f"/api/subtopics/{sid}/questions",
        json={"questions": [_question("Where does the Calvin cycle run?")]},
        headers=AUTH_HEADERS,
    )

    resp = await client.post(f"/api/subtopics/{sid}/quiz", headers=AUTH_HEADERS)

    body = resp.json()
    assert body["generated"] == 1
    assert len(body["questions"]) == 2
    assert body["questions"][0]["prompt"] == "Where does the Calvin cycle run?"
    assert "Where does the Calvin cycle run?" in fake_llm.prompts["quiz"][0]


@pytest.mark.asyncio
async def test_question_upsert_skips_near_duplicates(client: AsyncClient):
    sid = (await _subtopic_ids(client))[0]
    url = f"/api/subtopics/{sid}/questions"

    first = await client.post(
        url, json={"questions": [_question("Which pigment absorbs light inside chloroplasts?")]},
        headers=AUTH_HEADERS,
    )
    assert first.json()["inserted"] == 1

    second = await client.post(
        url,
        json={
            "questions": [
                _question("which pigment absorbs the light inside chloroplasts"),
                _question("Where does the Calvin cycle run?"),
                _question("Where does the Calvin cycle run?"),
            ]
        },
        headers=AUTH_HEADERS,
    )
    body = second.json()
    assert body["inserted"] == 1
    assert body["skipped"] == 2
    assert len(body["questions"]) == 2


@pytest.mark.asyncio
async def test_question_append_stops_at_required_count(client: AsyncClient):
    sid = (await _subtopic_ids(client))[0]
    url = f"/api/subtopics/{sid}/questions"

    first = await client.post(
        url,
        json={
            "questions": [
                _question("What does chlorophyll absorb?"),
                _question("Where does the Calvin cycle run?"),
                _question("Which gas leaves through the stomata?"),
            ]
        },
        headers=AUTH_HEADERS,
    )
    assert first.json()["inserted"] == 2
    assert len(first.json()["questions"]) == 2

    second = await client.post(
        url,
        json={"questions": [_question("Which enzyme fixes carbon dioxide?")]},
        headers=AUTH_HEADERS,
    )
    body = second.json()
    assert body["inserted"] == 0
    assert body["skipped"] == 1
    assert [q["prompt"] for q in body["questions"]] == [
        "What does chlorophyll absorb?",
        "Where does the Calvin cycle run?",
    ]


@pytest.mark.asyncio
async def test_question_replace_mode(client: AsyncClient):
    sid = (await _subtopic_ids(client))[0]
    url = f"/api/subtopics/{sid}/questions"
    await client.post(
        url,
        json={"questions": [_question("First question here?"), _question("Second question here?")]},
        headers=AUTH_HEADERS,
    )

    resp = await client.post(
        url,
        json={"mode": "replace", "questions": [_question("First question here?")]},
        headers=AUTH_HEADERS,
    )

    body = resp.json()
    assert body["inserted"] == 1
    assert [q["prompt"] for q in body["questions"]] == ["First question here?"]


@pytest.mark.asyncio
async def test_question_upsert_validates_shape(client: AsyncClient):
    sid = (await _subtopic_ids(client))[0]
    bad = _question("Too few options?")
    bad["options"] = ["a", "b", "c"]
    resp = await client.post(
        f"/api/subtopics/{sid}/questions", json={"questions": [bad]}, headers=AUTH_HEADERS
    )
    assert resp.status_code == 422
