from __future__ import annotations

"""Search stage: query the meeting store and stream ranked results."""

import hashlib
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator

from src.rag.errors import StoreError
from src.rag.events import EventFrame
from src.rag.types import Query, ResultMetadata, SearchFilters, SearchResult, utc_timestamp
from src.store.base import MeetingStore

logger = logging.getLogger(__name__)

PLACEHOLDER_TOP_SCORE = 0.9
PLACEHOLDER_STEP = 0.05


def step_frame(label: str, progress: int) -> EventFrame:
    """Build a progress ``step`` frame."""
    return EventFrame(
        "step",
        {"step": label, "progress": progress, "timestamp": utc_timestamp()},
    )


def error_frame(error: str, details: str | None = None) -> EventFrame:
    """Build a terminal ``error`` frame."""
    payload: dict[str, Any] = {"error": error}
    if details:
        payload["details"] = details
    return EventFrame("error", payload)


def query_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def map_meeting_row(row: dict[str, Any], fallback_date: str, position: int = 0) -> SearchResult:
    """Map a raw meeting row into the result schema, unscored.

    Rows without an id are keyed by their position in the store response.
    """
    raw_id = row.get("id")
    row_id = f"row-{position}" if raw_id is None or str(raw_id).strip() == "" else str(raw_id)
    submission_notes = row.get("submission_notes")
    content = submission_notes or row.get("document_notes_content") or ""
    has_analysis = row.get("has_analysis")
    metadata = ResultMetadata(
        program=str(row.get("program") or "Unknown"),
        agency=str(row.get("agency") or "Unknown"),
        assignment_name=str(row.get("meeting_or_assignment_name") or "Unknown Meeting"),
        meeting_date=str(row.get("effective_meeting_date") or fallback_date),
        document_type="Meeting Notes" if submission_notes else "Document",
        google_doc_url=row.get("google_doc_url"),
        has_analysis=bool(has_analysis) if has_analysis is not None else None,
    )
    return SearchResult(
        id=row_id,
        text=str(content),
        score=0.0,
        metadata=metadata,
        search_type="keyword",
    )


def native_score(row: dict[str, Any]) -> float | None:
    """Return the store-provided relevance, clamped to [0, 1], if any."""
    for key in ("score", "similarity"):
        value = row.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        return min(1.0, max(0.0, float(value)))
    return None


def placeholder_score(index: int) -> float:
    return max(0.0, round(PLACEHOLDER_TOP_SCORE - PLACEHOLDER_STEP * index, 4))


def rank_rows(rows: list[dict[str, Any]], fallback_date: str) -> list[SearchResult]:
    """Score rows and order them by non-increasing score.

    Rows without a native score get a placeholder derived from their position
    in the store response. Ties keep store order; duplicate ids keep the first
    occurrence.
    """
    seen: set[str] = set()
    scored: list[SearchResult] = []
    for position, row in enumerate(rows):
        result = map_meeting_row(row, fallback_date, position)
        if result.id in seen:
            continue
        seen.add(result.id)
        score = native_score(row)
        if score is None:
            score = placeholder_score(len(scored))
        scored.append(
            SearchResult(
                id=result.id,
                text=result.text,
                score=score,
                metadata=result.metadata,
                search_type=result.search_type,
            )
        )
    scored.sort(key=lambda item: item.score, reverse=True)
    return scored


def apply_filters(results: list[SearchResult], filters: SearchFilters) -> list[SearchResult]:
    """Drop results outside the program, agency and date filters."""
    if not filters.active:
        return results
    programs = {value.strip().lower() for value in filters.programs if value.strip()}
    agencies = {value.strip().lower() for value in filters.agencies if value.strip()}
    kept: list[SearchResult] = []
    for result in results:
        metadata = result.metadata
        if programs and metadata.program.lower() not in programs:
            continue
        if agencies and metadata.agency.lower() not in agencies:
            continue
        day = metadata.meeting_date[:10]
        if filters.date_from and day < filters.date_from[:10]:
            continue
        if filters.date_to and day > filters.date_to[:10]:
            continue
        kept.append(result)
    return kept


@dataclass
class SearchStage:
    """Runs one search request as a sequence of event frames."""
    store: MeetingStore
    max_limit: int = 50

    async def run(
        self,
        query: Query,
        request_id: str | None = None,
        search_method: str | None = None,
    ) -> AsyncIterator[EventFrame]:
        started_at = utc_timestamp()
        started: dict[str, Any] = {"query": query.text, "timestamp": started_at}
        if query.filters.active:
            started["filters"] = query.filters.to_dict()
        if search_method:
            started["search_method"] = search_method
        yield EventFrame("search-started", started)
        logger.info(
            "search_started",
            extra={
                "request_id": request_id,
                "query_length": len(query.text),
                "query_hash": query_hash(query.text),
                "limit": query.limit,
                "filters": query.filters.to_dict(),
            },
        )

        yield step_frame("Searching meeting notes...", 10)
        fetch_limit = query.limit
        if query.filters.active:
            fetch_limit = min(query.limit * 5, self.max_limit * 5)
        try:
            rows = await self.store.search(query.text, fetch_limit)
        except StoreError as exc:
            logger.error(
                "search_store_failed",
                extra={"request_id": request_id, "detail": str(exc)},
            )
            yield error_frame("Failed to search meetings", str(exc))
            return

        yield step_frame(f"Found {len(rows)} relevant meetings", 30)
        yield step_frame("Processing results...", 60)
        results = rank_rows(rows, fallback_date=started_at)
        yield step_frame("Formatting results...", 70)
        results = apply_filters(results, query.filters)
        yield step_frame("Processing and ranking results...", 85)
        results = results[: query.limit]

        yield step_frame("Search complete!", 100)
        yield EventFrame("results", [result.to_dict() for result in results])
        yield EventFrame("complete", {"timestamp": utc_timestamp()})
        logger.info(
            "search_complete",
            extra={
                "request_id": request_id,
                "rows": len(rows),
                "results": len(results),
                "top_score": results[0].score if results else None,
            },
        )
