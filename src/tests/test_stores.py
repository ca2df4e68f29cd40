from __future__ import annotations

import json
import sys
import types
from dataclasses import dataclass, field
from typing import Any

import pytest

from src.rag.errors import ProviderExhausted, StoreError
from src.rag.llm import ProviderSet, _gemini_sdk, _openai_delta, build_provider
from src.store.base import CachedMeetingStore
from src.store.caching import ttl_memoize
from src.store.memory import InMemoryMeetingStore, load_seed_rows
from src.store.sql import SQLMeetingStore, build_search_query
from src.store.supabase import build_ilike_filter

pytestmark = pytest.mark.anyio

ROWS = [
    {
        "id": "m-1",
        "program": "Housing",
        "agency": "Chicago City Council",
        "meeting_or_assignment_name": "Affordable Housing Hearing",
        "effective_meeting_date": "2024-01-10T18:00:00Z",
        "submission_notes": "Rent stabilization at 100% of median income.",
    },
    {
        "id": "m-2",
        "program": "Housing",
        "agency": "Detroit City Council",
        "meeting_or_assignment_name": "Zoning Update",
        "effective_meeting_date": "2024-04-02T17:00:00Z",
        "document_notes_content": "Discussion of rent limits and zoning_overlay rules.",
    },
    {
        "id": "m-3",
        "program": "Parks",
        "agency": "Detroit City Council",
        "meeting_or_assignment_name": "Parks Budget",
        "effective_meeting_date": "2024-02-15T17:00:00Z",
        "submission_notes": "Playground repairs.",
    },
]


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@dataclass
class CountingStore:
    rows: list[dict[str, Any]]
    calls: int = 0
    fail: bool = False
    seen: list[tuple[str, int]] = field(default_factory=list)

    async def search(self, text: str, limit: int) -> list[dict[str, Any]]:
        self.calls += 1
        self.seen.append((text, limit))
        if self.fail:
            raise StoreError("offline")
        return self.rows[:limit]

    async def facets(self) -> dict[str, list[str]]:
        return {"programs": ["Housing"], "agencies": []}

    def stats(self) -> dict[str, Any]:
        return {"backend": "counting"}


async def test_ttl_memoize_expires_entries() -> None:
    clock = FakeClock()
    calls: list[int] = []

    @ttl_memoize(10, clock=clock)
    async def lookup(value: int) -> int:
        calls.append(value)
        return value * 2

    assert await lookup(2) == 4
    assert await lookup(2) == 4
    assert calls == [2]

    clock.now = 11
    assert await lookup(2) == 4
    assert calls == [2, 2]
    assert lookup.cache_size() == 1
    lookup.cache_clear()
    assert lookup.cache_size() == 0


async def test_ttl_memoize_does_not_cache_failures() -> None:
    attempts: list[str] = []

    @ttl_memoize(60)
    async def flaky(name: str) -> str:
        attempts.append(name)
        if len(attempts) == 1:
            raise StoreError("offline")
        return name

    with pytest.raises(StoreError):
        await flaky("housing")
    assert await flaky("housing") == "housing"
    assert len(attempts) == 2


async def test_cached_store_normalizes_query_and_copies_rows() -> None:
    inner = CountingStore([dict(row) for row in ROWS])
    store = CachedMeetingStore(inner, ttl=300)

    first = await store.search("Housing ", 5)
    first[0]["program"] = "mutated"
    second = await store.search("housing", 5)

    assert inner.calls == 1
    assert second[0]["program"] == "Housing"
    assert store.stats()["cached_queries"] == 1
    store.clear()
    await store.search("housing", 5)
    assert inner.calls == 2


async def test_memory_store_orders_by_meeting_date() -> None:
    store = InMemoryMeetingStore()
    store.add_rows(ROWS)

    rows = await store.search("RENT", 10)

    assert [row["id"] for row in rows] == ["m-2", "m-1"]
    assert await store.search("   ", 10) == []
    assert (await store.facets())["agencies"] == ["Chicago City Council", "Detroit City Council"]


def test_load_seed_rows_reports_bad_files(tmp_path) -> None:
    missing = tmp_path / "missing.json"
    with pytest.raises(StoreError):
        load_seed_rows(missing)

    wrong_shape = tmp_path / "seed.json"
    wrong_shape.write_text(json.dumps({"id": 1}), encoding="utf-8")
    with pytest.raises(StoreError):
        load_seed_rows(wrong_shape)

    good = tmp_path / "good.json"
    good.write_text(json.dumps(ROWS), encoding="utf-8")
    assert len(load_seed_rows(good)) == 3


async def test_sql_store_searches_sqlite(tmp_path) -> None:
    store = SQLMeetingStore(f"sqlite:///{tmp_path / 'meetings.db'}")
    assert store.insert_rows(ROWS) == 3

    rows = await store.search("rent", 10)
    assert [row["id"] for row in rows] == ["m-2", "m-1"]

    assert [row["id"] for row in await store.search("100%", 10)] == ["m-1"]
    assert [row["id"] for row in await store.search("g_o", 10)] == ["m-2"]
    assert await store.search("zzz", 10) == []

    facets = await store.facets()
    assert facets == {
        "programs": ["Housing", "Parks"],
        "agencies": ["Chicago City Council", "Detroit City Council"],
    }


async def test_sql_store_wraps_query_errors(tmp_path) -> None:
    store = SQLMeetingStore(f"sqlite:///{tmp_path / 'empty.db'}")

    with pytest.raises(StoreError):
        await store.search("rent", 10)


def test_search_query_escapes_like_wildcards() -> None:
    sql, params = build_search_query("meetings", "50%_off", 5)

    assert "ESCAPE" in sql
    assert params == {"pattern": "%50\\%\\_off%", "limit": 5}
    with pytest.raises(StoreError):
        build_search_query("meetings; drop", "x", 5)


def test_ilike_filter_covers_every_text_column() -> None:
    assert build_ilike_filter("housing") == (
        '(document_notes_content.ilike."*housing*",'
        'submission_notes.ilike."*housing*",'
        'meeting_or_assignment_name.ilike."*housing*")'
    )


def test_openai_delta_parsing() -> None:
    line = "data: " + json.dumps({"choices": [{"delta": {"content": "Hi"}}]})

    assert _openai_delta(line) == "Hi"
    assert _openai_delta(": ping") == ""
    assert _openai_delta("data: {broken") == ""
    assert _openai_delta("data: [DONE]") is None


def provider_kwargs(**overrides: Any) -> dict[str, Any]:
    values: dict[str, Any] = {
        "api_key_openai": None,
        "api_key_gemini": None,
        "openai_base_url": "https://api.openai.com/v1/",
        "openai_model": "gpt-4o-mini",
        "gemini_model": "gemini-1.5-flash",
        "ollama_base_url": None,
        "ollama_model": "llama3",
        "temperature": 0.2,
        "max_tokens": 512,
        "timeout": 30.0,
    }
    values.update(overrides)
    return values


def test_build_provider_requires_credentials() -> None:
    assert build_provider("openai", **provider_kwargs()) is None
    assert build_provider("gemini", **provider_kwargs()) is None
    assert build_provider("ollama", **provider_kwargs()) is None
    assert build_provider("unknown", **provider_kwargs(api_key_openai="sk")) is None

    openai = build_provider("OpenAI", **provider_kwargs(api_key_openai="sk"))
    assert openai is not None
    assert openai.identifier == "gpt-4o-mini"
    assert openai.base_url == "https://api.openai.com/v1"

    ollama = build_provider("ollama", **provider_kwargs(ollama_base_url="http://localhost:11434/"))
    assert ollama is not None and ollama.base_url == "http://localhost:11434"


def test_empty_provider_set_is_exhausted() -> None:
    with pytest.raises(ProviderExhausted):
        ProviderSet().ordered()


async def test_ttl_memoize_prunes_expired_distinct_keys() -> None:
    clock = FakeClock()

    @ttl_memoize(1, clock=clock)
    async def lookup(value: int) -> int:
        return value

    for value in range(50):
        await lookup(value)
    assert lookup.cache_size() == 50

    clock.now = 100
    await lookup(-1)

    assert lookup.cache_size() == 1


@dataclass
class FakeGeminiChunk:
    text: str


class FakeGenerativeModel:
    def __init__(self, name: str) -> None:
        self.name = name

    async def generate_content_async(self, prompt: str, **kwargs: Any):
        async def chunks():
            for text in ("Council ", "voted."):
                yield FakeGeminiChunk(text)

        return chunks()


async def test_gemini_sdk_is_configured_once(monkeypatch) -> None:
    configured: list[str] = []
    sdk = types.ModuleType("google.generativeai")
    sdk.configure = lambda api_key: configured.append(api_key)
    sdk.GenerativeModel = FakeGenerativeModel
    package = types.ModuleType("google")
    package.generativeai = sdk
    monkeypatch.setitem(sys.modules, "google", package)
    monkeypatch.setitem(sys.modules, "google.generativeai", sdk)
    _gemini_sdk.cache_clear()

    provider = build_provider("gemini", **provider_kwargs(api_key_gemini="gm-key"))
    assert provider is not None
    try:
        first = [text async for text in provider.stream_completion("prompt")]
        second = [text async for text in provider.stream_completion("prompt")]
    finally:
        _gemini_sdk.cache_clear()

    assert first == second == ["Council ", "voted."]
    assert configured == ["gm-key"]
