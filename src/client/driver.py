from __future__ import annotations

"""Pipeline driver: run search, then generation, and settle the turn."""

import asyncio
import logging
from typing import Any

import httpx

from src.client.consumer import StreamConsumer
from src.client.state import ConversationState, Message, TurnOutcome, TurnPhase
from src.rag.errors import QueryValidationError
from src.rag.events import EventFrame
from src.rag.types import SearchFilters

logger = logging.getLogger(__name__)

SEARCH_FAILURE = "I'm sorry, I couldn't search the meeting records: {details}. Please try again."
GENERATION_FAILURE = "I'm sorry, I couldn't generate a response: {details}. Please try again."
STREAM_ENDED = "the connection closed before the response finished"


class PipelineDriver:
    """Client sequencer for the two streaming stages.

    Only one turn is active at a time; submitting a new query cancels the
    previous turn's task and its late frames are ignored.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        state: ConversationState | None = None,
        search_path: str = "/search",
        chat_path: str = "/chat",
        headers: dict[str, str] | None = None,
    ) -> None:
        self.client = client
        self.state = state or ConversationState()
        self.consumer = StreamConsumer(self.state)
        self.search_path = search_path
        self.chat_path = chat_path
        self.headers = headers or {}
        self._active: asyncio.Task[Message | None] | None = None

    async def submit(
        self,
        query: str,
        filters: SearchFilters | None = None,
        limit: int | None = None,
    ) -> Message | None:
        """Run one turn; returns the assistant message, or ``None`` if superseded."""
        text = query.strip()
        if not text:
            raise QueryValidationError("Query is required")
        if self._active is not None and not self._active.done():
            self._active.cancel()
        turn_id = self.state.begin_turn(text)
        task = asyncio.create_task(self._run_turn(turn_id, text, filters, limit))
        self._active = task
        try:
            return await task
        except asyncio.CancelledError:
            if not self.state.is_current(turn_id):
                return None
            raise

    async def _run_turn(
        self,
        turn_id: int,
        query: str,
        filters: SearchFilters | None,
        limit: int | None,
    ) -> Message | None:
        """Run both stages; any unexpected failure still settles the turn."""
        try:
            return await self._run_stages(turn_id, query, filters, limit)
        except Exception as exc:
            logger.exception("turn_crashed", extra={"turn_id": turn_id})
            if not self.state.is_current(turn_id):
                return None
            template = (
                GENERATION_FAILURE if self.state.phase is TurnPhase.GENERATING else SEARCH_FAILURE
            )
            return self._fail(template, f"unexpected client error ({type(exc).__name__})")

    async def _run_stages(
        self,
        turn_id: int,
        query: str,
        filters: SearchFilters | None,
        limit: int | None,
    ) -> Message | None:
        payload: dict[str, Any] = {"query": query}
        if filters is not None and filters.active:
            payload["filters"] = filters.to_dict()
        if limit is not None:
            payload["limit"] = limit

        terminal = await self._run_stage(turn_id, self.search_path, payload)
        if not self.state.is_current(turn_id):
            return None
        if terminal is None:
            return self._fail(SEARCH_FAILURE, STREAM_ENDED)
        if terminal.event == "error":
            return self._fail(SEARCH_FAILURE, _details(terminal))

        result_payload = self.state.result_payload or []
        results = list(self.state.results or [])
        self.state.start_generation()
        terminal = await self._run_stage(
            turn_id,
            self.chat_path,
            {"query": query, "searchResults": result_payload},
        )
        if not self.state.is_current(turn_id):
            return None
        if terminal is None:
            return self._fail(GENERATION_FAILURE, STREAM_ENDED)
        if terminal.event == "error":
            return self._fail(GENERATION_FAILURE, _details(terminal))

        data = terminal.data if isinstance(terminal.data, dict) else {}
        content = data.get("fullResponse")
        if not isinstance(content, str):
            content = self.state.typing_buffer
        message = Message.create("assistant", content, results=results)
        self.state.settle(TurnOutcome.SUCCESS, message)
        logger.info(
            "turn_complete",
            extra={"turn_id": turn_id, "model": data.get("model"), "results": len(results)},
        )
        return message

    async def _run_stage(
        self,
        turn_id: int,
        path: str,
        payload: dict[str, Any],
    ) -> EventFrame | None:
        try:
            async with self.client.stream(
                "POST", path, json=payload, headers=self.headers
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    return EventFrame("error", _http_error_payload(response))
                return await self.consumer.consume(response.aiter_bytes(), turn_id)
        except httpx.HTTPError as exc:
            logger.warning("stage_request_failed", extra={"path": path, "detail": type(exc).__name__})
            return EventFrame(
                "error",
                {"error": "Connection failed", "details": f"could not reach the server ({type(exc).__name__})"},
            )

    def _fail(self, template: str, details: str) -> Message:
        message = Message.create("assistant", template.format(details=details))
        self.state.settle(TurnOutcome.ERROR, message)
        logger.info("turn_failed", extra={"turn_id": self.state.turn_id, "detail": details})
        return message


def _details(frame: EventFrame) -> str:
    data = frame.data if isinstance(frame.data, dict) else {}
    details = data.get("details") or data.get("error") or "unknown error"
    return str(details)


def _http_error_payload(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        body = None
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, list):
        detail = "; ".join(str(item.get("msg", item)) for item in detail if isinstance(item, dict))
    return {
        "error": f"HTTP {response.status_code}",
        "details": str(detail) if detail else f"server responded with HTTP {response.status_code}",
    }
