from __future__ import annotations

"""Meeting store backed by a Supabase (PostgREST) table."""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from src.rag.errors import StoreError
from src.store.base import MATCH_COLUMNS, collect_facets

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SupabaseMeetingStore:
    """Keyword search through the PostgREST ``or=(...ilike...)`` filter."""
    url: str
    api_key: str
    table: str = "meetings"
    timeout: float = 15.0

    async def search(self, text: str, limit: int) -> list[dict[str, Any]]:
        needle = text.strip()
        if not needle:
            return []
        params = {
            "select": "*",
            "or": build_ilike_filter(needle),
            "order": "effective_meeting_date.desc.nullslast",
            "limit": str(limit),
        }
        data = await self._get(params)
        if not isinstance(data, list):
            raise StoreError("Unexpected meeting search response")
        return [row for row in data if isinstance(row, dict)]

    async def facets(self) -> dict[str, list[str]]:
        data = await self._get({"select": "program,agency"})
        if not isinstance(data, list):
            raise StoreError("Unexpected meeting facet response")
        return collect_facets([row for row in data if isinstance(row, dict)])

    async def _get(self, params: dict[str, str]) -> Any:
        endpoint = f"{self.url.rstrip('/')}/rest/v1/{self.table}"
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
            "x-client-info": "docsy-search/0.1.0",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(endpoint, params=params, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as exc:
            detail = _error_detail(exc.response)
            logger.error(
                "supabase_query_failed",
                extra={"status": exc.response.status_code, "detail": detail},
            )
            raise StoreError(f"Meeting search failed: {detail}") from exc
        except httpx.HTTPError as exc:
            raise StoreError(f"Meeting search failed: {type(exc).__name__}") from exc
        except ValueError as exc:
            raise StoreError("Meeting search returned invalid JSON") from exc

    def stats(self) -> dict[str, Any]:
        return {"backend": "supabase", "table": self.table}


def build_ilike_filter(needle: str) -> str:
    """Build the PostgREST ``or`` filter matching any text column."""
    escaped = needle.replace("\\", "\\\\").replace('"', '\\"')
    clauses = [f'{column}.ilike."*{escaped}*"' for column in MATCH_COLUMNS]
    return "(" + ",".join(clauses) + ")"


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return f"HTTP {response.status_code}"
