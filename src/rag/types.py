from __future__ import annotations

"""Core data types for meeting search and generation."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

SearchType = Literal["semantic", "keyword", "hybrid"]


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class SearchFilters:
    """Optional structured filters applied to a search."""
    programs: tuple[str, ...] = ()
    agencies: tuple[str, ...] = ()
    date_from: str | None = None
    date_to: str | None = None

    @property
    def active(self) -> bool:
        return bool(self.programs or self.agencies or self.date_from or self.date_to)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.programs:
            payload["programs"] = list(self.programs)
        if self.agencies:
            payload["agencies"] = list(self.agencies)
        if self.date_from:
            payload["date_from"] = self.date_from
        if self.date_to:
            payload["date_to"] = self.date_to
        return payload


@dataclass(frozen=True)
class Query:
    """User query captured at submission time."""
    text: str
    filters: SearchFilters = field(default_factory=SearchFilters)
    limit: int = 10


@dataclass(frozen=True)
class ResultMetadata:
    """Meeting metadata attached to a search result."""
    program: str
    agency: str
    assignment_name: str
    meeting_date: str
    document_type: str
    google_doc_url: str | None = None
    has_analysis: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "program": self.program,
            "agency": self.agency,
            "assignment_name": self.assignment_name,
            "meeting_date": self.meeting_date,
            "document_type": self.document_type,
        }
        if self.google_doc_url is not None:
            payload["google_doc_url"] = self.google_doc_url
        if self.has_analysis is not None:
            payload["has_analysis"] = self.has_analysis
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResultMetadata":
        has_analysis = data.get("has_analysis")
        return cls(
            program=str(data.get("program") or "Unknown"),
            agency=str(data.get("agency") or "Unknown"),
            assignment_name=str(data.get("assignment_name") or "Unknown Meeting"),
            meeting_date=str(data.get("meeting_date") or ""),
            document_type=str(data.get("document_type") or "Document"),
            google_doc_url=data.get("google_doc_url"),
            has_analysis=bool(has_analysis) if has_analysis is not None else None,
        )


@dataclass(frozen=True)
class SearchResult:
    """Ranked meeting record returned by the search stage."""
    id: str
    text: str
    score: float
    metadata: ResultMetadata
    search_type: SearchType = "keyword"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "score": self.score,
            "metadata": self.metadata.to_dict(),
            "search_type": self.search_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SearchResult":
        return cls(
            id=str(data["id"]),
            text=str(data.get("text") or ""),
            score=float(data.get("score") or 0.0),
            metadata=ResultMetadata.from_dict(data.get("metadata") or {}),
            search_type=data.get("search_type") or "keyword",
        )
