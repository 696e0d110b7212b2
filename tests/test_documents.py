"""
Tests for PDF extraction, the vision fallback and PDF-backed lectures.
"""
import json

import fitz
import pytest
from httpx import AsyncClient

from tests.conftest import AUTH_HEADERS
from tests.fakes import breakdown_payload, parse_sse


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _pdf(text: str = "") -> bytes:
    doc = fitz.open()
    page = doc.new_page()
    if text:
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


def _upload(data: bytes, filename: str = "notes.pdf"):
    return {"file": (filename, data, "application/pdf")}


# ---------------------------------------------------------------------------
# POST /api/documents/extract
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_extract_text_layer(client: AsyncClient, fake_llm):
    resp = await client.post(
        "/api/documents/extract",
        files=_upload(_pdf("Enzymes lower activation energy.")),
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["filename"] == "notes.pdf"
    assert data["pages"] == 1
    assert data["source_kind"] == "pdf"
    assert "Enzymes lower activation energy." in data["content"]
    assert fake_llm.calls["vision"] == 0


@pytest.mark.asyncio
async def test_extract_rejects_unsupported_type(client: AsyncClient):
    resp = await client.post(
        "/api/documents/extract",
        files={"file": ("notes.txt", b"plain text", "text/plain")},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 400
    assert "Unsupported file type" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_extract_unreadable_pdf(client: AsyncClient):
    resp = await client.post(
        "/api/documents/extract", files=_upload(b"%PDF-garbage"), headers=AUTH_HEADERS
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_image_only_pdf_without_vision_result_is_unprocessable(client: AsyncClient, fake_llm):
    fake_llm.vision_response = None
    resp = await client.post("/api/documents/extract", files=_upload(_pdf()), headers=AUTH_HEADERS)
    assert resp.status_code == 422
    assert fake_llm.calls["vision"] == 1
    assert len(fake_llm.vision_images) == 1


@pytest.mark.asyncio
async def test_image_only_pdf_uses_vision_breakdown(client: AsyncClient, fake_llm):
    fake_llm.vision_response = json.loads(breakdown_payload(3, topic="Scanned Notes"))
    resp = await client.post("/api/documents/extract", files=_upload(_pdf()), headers=AUTH_HEADERS)
    assert resp.status_code == 200
    data = resp.json()
    assert data["source_kind"] == "vision"
    assert data["content"].startswith("# Scanned Notes")
    assert "## Part 3" in data["content"]


# ---------------------------------------------------------------------------
# POST /api/lectures (multipart)
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_pdf_lecture_from_text_layer(client: AsyncClient, fake_llm):
    resp = await client.post(
        "/api/lectures",
        files=_upload(_pdf("Enzymes lower activation energy.")),
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 201
    assert resp.json()["source_kind"] == "pdf"
    assert resp.json()["page_count"] == 1


@pytest.mark.asyncio
async def test_vision_lecture_reuses_vision_breakdown(client: AsyncClient, fake_llm):
    fake_llm.vision_response = json.loads(breakdown_payload(5, topic="Scanned Notes"))
    resp = await client.post("/api/lectures", files=_upload(_pdf()), headers=AUTH_HEADERS)
    assert resp.status_code == 201
    lecture_id = resp.json()["lectureId"]
    assert resp.json()["source_kind"] == "vision"

    stream = await client.get(f"/api/lectures/{lecture_id}/stream", headers=AUTH_HEADERS)
    events = parse_sse(stream.text)

    assert {"type": "title", "title": "Scanned Notes"} in events
    assert len([e for e in events if e["type"] == "subtopic"]) == 5
    assert events[-1]["type"] == "done"
    # The outline came from the vision model; no text breakdown call
    assert fake_llm.calls["breakdown"] == 0


@pytest.mark.asyncio
async def test_lecture_upload_rejects_unsupported_type(client: AsyncClient):
    resp = await client.post(
        "/api/lectures",
        files={"file": ("slides.pptx", b"PK..", "application/octet-stream")},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 400
