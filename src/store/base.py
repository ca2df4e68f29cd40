from __future__ import annotations

"""Meeting store capability shared by every backend."""

import copy
from typing import Any, Protocol

from src.store.caching import ttl_memoize

MATCH_COLUMNS = ("document_notes_content", "submission_notes", "meeting_or_assignment_name")


class MeetingStore(Protocol):
    """Keyword search over meeting rows."""

    async def search(self, text: str, limit: int) -> list[dict[str, Any]]:
        ...

    async def facets(self) -> dict[str, list[str]]:
        ...

    def stats(self) -> dict[str, Any]:
        ...


def collect_facets(rows: list[dict[str, Any]]) -> dict[str, list[str]]:
    """Return the distinct programs and agencies found in ``rows``."""
    programs = {str(row["program"]).strip() for row in rows if row.get("program")}
    agencies = {str(row["agency"]).strip() for row in rows if row.get("agency")}
    return {
        "programs": sorted(value for value in programs if value),
        "agencies": sorted(value for value in agencies if value),
    }


def _search_key(text: str, limit: int) -> str:
    return f"{text.strip().lower()}\x1f{limit}"


class CachedMeetingStore:
    """Wrap a store so repeated lookups within ``ttl`` seconds are served from memory."""

    def __init__(self, inner: MeetingStore, ttl: float) -> None:
        self.inner = inner
        self.ttl = ttl
        self._search = ttl_memoize(ttl, key=_search_key)(inner.search)
        self._facets = ttl_memoize(ttl, key=lambda: "facets")(inner.facets)

    async def search(self, text: str, limit: int) -> list[dict[str, Any]]:
        rows = await self._search(text, limit)
        return copy.deepcopy(rows)

    async def facets(self) -> dict[str, list[str]]:
        return await self._facets()

    def clear(self) -> None:
        self._search.cache_clear()
        self._facets.cache_clear()

    def stats(self) -> dict[str, Any]:
        payload = dict(self.inner.stats())
        payload["cache_ttl"] = self.ttl
        payload["cached_queries"] = self._search.cache_size()
        return payload
