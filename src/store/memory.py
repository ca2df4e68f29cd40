from __future__ import annotations

"""In-memory meeting store for local development and tests."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from src.rag.errors import StoreError
from src.store.base import MATCH_COLUMNS, collect_facets


@dataclass
class InMemoryMeetingStore:
    """Simple keyword store with case-insensitive substring matching."""
    rows: list[dict[str, Any]] = field(default_factory=list)

    def add_rows(self, rows: Iterable[dict[str, Any]]) -> int:
        """Store raw meeting rows."""
        added = 0
        for row in rows:
            self.rows.append(dict(row))
            added += 1
        return added

    async def search(self, text: str, limit: int) -> list[dict[str, Any]]:
        """Return matching rows, most recent meeting first."""
        needle = text.strip().lower()
        if not needle:
            return []
        matches = [row for row in self.rows if self._matches(row, needle)]
        # sorted() is stable, so rows from the same day keep insertion order
        matches = sorted(
            matches,
            key=lambda row: str(row.get("effective_meeting_date") or ""),
            reverse=True,
        )
        return [dict(row) for row in matches[:limit]]

    async def facets(self) -> dict[str, list[str]]:
        return collect_facets(self.rows)

    def _matches(self, row: dict[str, Any], needle: str) -> bool:
        for column in MATCH_COLUMNS:
            value = row.get(column)
            if value and needle in str(value).lower():
                return True
        return False

    def stats(self) -> dict[str, Any]:
        """Return basic stats for the store."""
        return {"backend": "memory", "row_count": len(self.rows)}


def load_seed_rows(path: str | Path) -> list[dict[str, Any]]:
    """Load a JSON array of meeting rows from disk."""
    seed_path = Path(path)
    try:
        data = json.loads(seed_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise StoreError(f"Unable to load meeting seed file {seed_path}: {exc}") from exc
    if not isinstance(data, list) or any(not isinstance(item, dict) for item in data):
        raise StoreError("Meeting seed file must contain a JSON array of objects")
    return data
