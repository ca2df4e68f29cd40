from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.rag.types import SearchFilters, SearchResult


class FiltersPayload(BaseModel):
    programs: list[str] = Field(default_factory=list)
    agencies: list[str] = Field(default_factory=list)
    date_from: str | None = None
    date_to: str | None = None
    search_method: Literal["semantic", "keyword", "hybrid"] = "hybrid"

    @field_validator("date_from", "date_to", mode="before")
    @classmethod
    def _blank_dates(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def to_filters(self) -> SearchFilters:
        return SearchFilters(
            programs=tuple(value for value in self.programs if value.strip()),
            agencies=tuple(value for value in self.agencies if value.strip()),
            date_from=self.date_from,
            date_to=self.date_to,
        )


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    filters: FiltersPayload | None = None
    limit: int | None = Field(default=None, ge=1)

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Query is required")
        return value.strip()


class ResultMetadataPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    program: str = "Unknown"
    agency: str = "Unknown"
    assignment_name: str = "Unknown Meeting"
    meeting_date: str = ""
    document_type: str = "Document"
    google_doc_url: str | None = None
    has_analysis: bool | None = None


class SearchResultPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    text: str = ""
    score: float = Field(default=0.0, ge=0.0, le=1.0)
    metadata: ResultMetadataPayload = Field(default_factory=ResultMetadataPayload)
    search_type: Literal["semantic", "keyword", "hybrid"] = "keyword"

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    def to_result(self) -> SearchResult:
        return SearchResult.from_dict(self.model_dump())


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(min_length=1)
    search_results: list[SearchResultPayload] = Field(
        default_factory=list, alias="searchResults"
    )

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Query is required")
        return value.strip()


class FiltersResponse(BaseModel):
    programs: list[str]
    agencies: list[str]


class StatsResponse(BaseModel):
    store: dict[str, Any]
    primary_provider: str | None = None
    secondary_provider: str | None = None
    degraded: bool
