from __future__ import annotations

"""SQL-backed meeting store using SQLAlchemy Core."""

import asyncio
import re
from typing import Any, Iterable

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from src.rag.errors import StoreError
from src.store.base import MATCH_COLUMNS

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

MEETING_COLUMNS = (
    "id",
    "program",
    "agency",
    "meeting_or_assignment_name",
    "effective_meeting_date",
    "submission_notes",
    "document_notes_content",
    "google_doc_url",
    "has_analysis",
)


class SQLMeetingStore:
    """Keyword search over a meetings table with parameterised LIKE clauses."""

    def __init__(self, connection_uri: str, table: str = "meetings") -> None:
        self.table = _validate_identifier(table)
        try:
            self._engine: Engine = create_engine(connection_uri)
        except Exception as exc:  # pragma: no cover - driver-specific
            raise StoreError(f"Unable to open meeting database: {exc}") from exc

    async def search(self, text_value: str, limit: int) -> list[dict[str, Any]]:
        """Run the keyword query in a worker thread."""
        needle = text_value.strip().lower()
        if not needle:
            return []
        sql, params = build_search_query(self.table, needle, limit)
        return await asyncio.to_thread(self._fetch, sql, params)

    async def facets(self) -> dict[str, list[str]]:
        table = _quote_identifier(self.table)
        queries = {
            "programs": f"SELECT DISTINCT \"program\" AS value FROM {table} "
            "WHERE \"program\" IS NOT NULL ORDER BY value",
            "agencies": f"SELECT DISTINCT \"agency\" AS value FROM {table} "
            "WHERE \"agency\" IS NOT NULL ORDER BY value",
        }
        result: dict[str, list[str]] = {}
        for name, sql in queries.items():
            rows = await asyncio.to_thread(self._fetch, sql, {})
            result[name] = [str(row["value"]) for row in rows if str(row["value"]).strip()]
        return result

    def _fetch(self, sql: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            with self._engine.connect() as connection:
                result = connection.execute(text(sql), params)
                return [dict(row) for row in result.mappings()]
        except Exception as exc:
            raise StoreError(f"Meeting query failed: {type(exc).__name__}") from exc

    def insert_rows(self, rows: Iterable[dict[str, Any]]) -> int:
        """Insert meeting rows, creating the table when it is missing."""
        self.ensure_table()
        columns = ", ".join(_quote_identifier(column) for column in MEETING_COLUMNS)
        placeholders = ", ".join(f":{column}" for column in MEETING_COLUMNS)
        sql = f"INSERT INTO {_quote_identifier(self.table)} ({columns}) VALUES ({placeholders})"
        payload = [{column: row.get(column) for column in MEETING_COLUMNS} for row in rows]
        if not payload:
            return 0
        with self._engine.begin() as connection:
            connection.execute(text(sql), payload)
        return len(payload)

    def ensure_table(self) -> None:
        sql = (
            f"CREATE TABLE IF NOT EXISTS {_quote_identifier(self.table)} ("
            "\"id\" VARCHAR(64) PRIMARY KEY, "
            "\"program\" VARCHAR(255), "
            "\"agency\" VARCHAR(255), "
            "\"meeting_or_assignment_name\" VARCHAR(512), "
            "\"effective_meeting_date\" VARCHAR(64), "
            "\"submission_notes\" TEXT, "
            "\"document_notes_content\" TEXT, "
            "\"google_doc_url\" VARCHAR(1024), "
            "\"has_analysis\" BOOLEAN)"
        )
        with self._engine.begin() as connection:
            connection.execute(text(sql))

    def stats(self) -> dict[str, Any]:
        return {"backend": "sql", "table": self.table}


def build_search_query(table: str, needle: str, limit: int) -> tuple[str, dict[str, Any]]:
    """Build the keyword query and its bound parameters."""
    table_name = _validate_identifier(table)
    clauses = [
        f"lower({_quote_identifier(column)}) LIKE :pattern ESCAPE '\\'"
        for column in MATCH_COLUMNS
    ]
    sql = (
        f"SELECT * FROM {_quote_identifier(table_name)} "
        f"WHERE {' OR '.join(clauses)} "
        "ORDER BY \"effective_meeting_date\" DESC LIMIT :limit"
    )
    return sql, {"pattern": f"%{_escape_like(needle)}%", "limit": limit}


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _validate_identifier(value: str) -> str:
    if not value or not _IDENTIFIER_RE.match(value):
        raise StoreError("Invalid table identifier for meeting store")
    return value


def _quote_identifier(value: str) -> str:
    return f"\"{value}\""
