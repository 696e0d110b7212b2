"""
End-to-end tests: the Python client and learner session against the app.
"""
import pytest
from httpx import ASGITransport, AsyncClient

from lectern.client.api import LectureClient
from lectern.client.session import ExplanationStatus, LearnSession
from lectern.client.sse import iter_sse_events
from lectern.main import app
from tests.fakes import DEFAULT_SECTION, SAMPLE_DOCUMENT


async def _lines(*items):
    for item in items:
        yield item


# ---------------------------------------------------------------------------
# SSE parsing
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_iter_sse_events_skips_comments_and_bad_payloads():
    lines = _lines(
        ": keep-alive",
        'data: {"type": "chunk", "delta": "a"}',
        "",
        "data: not json",
        "",
        'data: {"type":',
        'data:  "done"}',
        "",
    )
    events = [e async for e in iter_sse_events(lines)]
    assert events == [{"type": "chunk", "delta": "a"}, {"type": "done"}]


@pytest.mark.asyncio
async def test_iter_sse_events_flushes_unterminated_event():
    events = [e async for e in iter_sse_events(_lines('data: {"type": "done"}'))]
    assert events == [{"type": "done"}]


# ---------------------------------------------------------------------------
# Client against the app
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_client_builds_lecture_and_explanations(client: AsyncClient, fake_llm):
    # ``client`` installs the dependency overrides the app needs
    transport = ASGITransport(app=app)
    async with LectureClient("http://test", user_id="test-user-1", transport=transport) as api:
        lecture_id = await api.create_lecture(SAMPLE_DOCUMENT)

        session = LearnSession(api)
        kinds = []
        async for event in api.stream_lecture(lecture_id):
            kinds.append(event["type"])
            if event["type"] == "subtopic":
                session.add_subtopic(event["subtopic"])
        assert kinds[-1] == "done"
        assert len(session.subtopic_ids) == 8

        first = session.subtopic_ids[0]
        await session.navigate(first)
        for task in list(session._background):
            await task

        state = session.state(first)
        assert state.status == ExplanationStatus.DONE
        assert state.text == "Chlorophyll absorbs light in chloroplasts."
        assert session.state(session.subtopic_ids[1]).status == ExplanationStatus.DONE
        assert fake_llm.calls["stream"] == 2

        stored = await api.get_subtopic(first)
        assert stored["explanation"] == state.text

        quiz = await session.request_quiz(first)
        assert len(quiz) == 2

        saved = await api.save_explanation(first, DEFAULT_SECTION)
        assert saved["explanation"] == DEFAULT_SECTION

        lecture = await api.get_lecture(lecture_id)
        assert lecture["title"] == "Photosynthesis Basics"
