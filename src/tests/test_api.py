from __future__ import annotations

import httpx
import pytest

from src.app.dependencies import get_meeting_store, reset_dependency_caches
from src.app.main import app
from src.rag.events import EventFrame, FrameDecoder
from src.rag.offline import OfflineSummarizer
from src.rag.types import SearchResult

pytestmark = pytest.mark.anyio

HOUSING_MEETINGS = [
    {
        "id": "m-1",
        "program": "Housing",
        "agency": "Chicago City Council",
        "meeting_or_assignment_name": "Affordable Housing Ordinance Hearing",
        "effective_meeting_date": "2024-03-12T18:00:00Z",
        "submission_notes": "Council members debated the housing policy for new developments.",
    },
    {
        "id": "m-2",
        "program": "Planning",
        "agency": "Detroit Planning Commission",
        "meeting_or_assignment_name": "Zoning Review Session",
        "effective_meeting_date": "2024-01-20T17:00:00Z",
        "document_notes_content": "The commission reviewed a housing policy amendment.",
    },
]


def get_client() -> httpx.AsyncClient:
    reset_dependency_caches()
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


def seed(rows: list[dict]) -> None:
    store = get_meeting_store()
    store.add_rows(rows)


def decode(body: bytes) -> list[EventFrame]:
    decoder = FrameDecoder()
    return decoder.feed(body) + decoder.close()


async def test_health_endpoint() -> None:
    async with get_client() as client:
        response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Request-ID"]


async def test_housing_policy_end_to_end_in_search_only_mode() -> None:
    async with get_client() as client:
        seed(HOUSING_MEETINGS)
        search_response = await client.post("/search", json={"query": "housing policy"})
        assert search_response.status_code == 200
        assert search_response.headers["content-type"].startswith("text/event-stream")
        search_frames = decode(search_response.content)

        events = [frame.event for frame in search_frames]
        assert events[0] == "search-started"
        assert "step" in events
        assert events[-2:] == ["results", "complete"]
        results = search_frames[-2].data
        assert [item["score"] for item in results] == [0.9, 0.85]
        assert [item["id"] for item in results] == ["m-1", "m-2"]

        chat_response = await client.post(
            "/chat", json={"query": "housing policy", "searchResults": results}
        )
    assert chat_response.status_code == 200
    chat_frames = decode(chat_response.content)
    assert chat_frames[0].event == "ai-started"
    text = "".join(frame.data["text"] for frame in chat_frames if frame.event == "chunk")
    expected = OfflineSummarizer().summarize(
        "housing policy", [SearchResult.from_dict(item) for item in results]
    )
    assert text == expected
    assert "Affordable Housing Ordinance Hearing" in text
    assert "Zoning Review Session" in text
    complete = chat_frames[-1]
    assert complete.event == "complete"
    assert complete.data["model"] == "search-only-mode"
    assert complete.data["fullResponse"] == text


async def test_zero_results_end_to_end() -> None:
    async with get_client() as client:
        search_response = await client.post("/search", json={"query": "no such topic"})
        search_frames = decode(search_response.content)
        assert search_frames[-2].event == "results"
        assert search_frames[-2].data == []

        chat_response = await client.post(
            "/chat", json={"query": "no such topic", "searchResults": []}
        )
    complete = decode(chat_response.content)[-1]
    assert complete.event == "complete"
    assert "No matching meeting records were found" in complete.data["fullResponse"]


async def test_search_rejects_blank_query_before_streaming() -> None:
    async with get_client() as client:
        response = await client.post("/search", json={"query": "   "})
    assert response.status_code == 422
    assert not response.headers["content-type"].startswith("text/event-stream")


async def test_search_rejects_limit_above_maximum() -> None:
    async with get_client() as client:
        response = await client.post("/search", json={"query": "housing", "limit": 500})
    assert response.status_code == 422
    assert "limit" in response.json()["detail"]


async def test_chat_requires_query() -> None:
    async with get_client() as client:
        response = await client.post("/chat", json={"searchResults": []})
    assert response.status_code == 422


async def test_search_applies_filters() -> None:
    async with get_client() as client:
        seed(HOUSING_MEETINGS)
        response = await client.post(
            "/search",
            json={
                "query": "housing policy",
                "filters": {"agencies": ["Detroit Planning Commission"], "date_from": ""},
            },
        )
    frames = decode(response.content)
    assert [item["id"] for item in frames[-2].data] == ["m-2"]


async def test_filters_endpoint_lists_programs_and_agencies() -> None:
    async with get_client() as client:
        seed(HOUSING_MEETINGS)
        response = await client.get("/filters")
    assert response.status_code == 200
    assert response.json() == {
        "programs": ["Housing", "Planning"],
        "agencies": ["Chicago City Council", "Detroit Planning Commission"],
    }


async def test_stats_reports_degraded_mode() -> None:
    async with get_client() as client:
        response = await client.get("/stats")
    assert response.status_code == 200
    payload = response.json()
    assert payload["degraded"] is True
    assert payload["store"]["backend"] == "memory"


async def test_metrics_count_stream_events() -> None:
    async with get_client() as client:
        await client.post("/search", json={"query": "housing"})
        response = await client.get("/metrics")
    assert response.status_code == 200
    assert 'stream_events_total{stage="search",event="search-started"}' in response.text
