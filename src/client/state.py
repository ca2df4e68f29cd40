from __future__ import annotations

"""Conversation state updated by the stream consumer."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from src.rag.types import SearchResult


class TurnPhase(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    GENERATING = "generating"
    SETTLED = "settled"


class TurnOutcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressStep:
    """One progress update reported by a stage."""
    label: str
    progress: int
    timestamp: str

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "ProgressStep":
        progress = int(data.get("progress") or 0)
        return cls(
            label=str(data.get("step") or data.get("label") or ""),
            progress=min(100, max(0, progress)),
            timestamp=str(data.get("timestamp") or datetime.now(timezone.utc).isoformat()),
        )


@dataclass(frozen=True)
class Message:
    """A chat message; assistant messages may carry the turn's search results."""
    id: str
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime
    results: tuple[SearchResult, ...] | None = None

    @classmethod
    def create(
        cls,
        role: Literal["user", "assistant"],
        content: str,
        results: list[SearchResult] | None = None,
    ) -> "Message":
        return cls(
            id=uuid.uuid4().hex,
            role=role,
            content=content,
            timestamp=datetime.now(timezone.utc),
            results=tuple(results) if results is not None else None,
        )


@dataclass
class ConversationState:
    """Client-side state for one conversation.

    Messages and the per-turn progress log are append-only. Every turn gets a
    new token; updates carrying an older token are ignored.
    """
    messages: list[Message] = field(default_factory=list)
    phase: TurnPhase = TurnPhase.IDLE
    outcome: TurnOutcome | None = None
    turn_id: int = 0
    progress_log: list[ProgressStep] = field(default_factory=list)
    last_progress_log: list[ProgressStep] = field(default_factory=list)
    typing_buffer: str = ""
    results: list[SearchResult] | None = None
    result_payload: list[dict[str, Any]] | None = None

    def begin_turn(self, query: str) -> int:
        """Append the user message and reset transient state."""
        self.turn_id += 1
        self.messages.append(Message.create("user", query))
        self.phase = TurnPhase.SEARCHING
        self.outcome = None
        self.progress_log = []
        self.typing_buffer = ""
        self.results = None
        self.result_payload = None
        return self.turn_id

    def is_current(self, turn_id: int) -> bool:
        return turn_id == self.turn_id

    @property
    def busy(self) -> bool:
        return self.phase in {TurnPhase.SEARCHING, TurnPhase.GENERATING}

    def record_step(self, step: ProgressStep) -> None:
        self.progress_log.append(step)

    def set_results(self, payload: list[dict[str, Any]]) -> None:
        results = [SearchResult.from_dict(item) for item in payload]
        self.result_payload = payload
        self.results = results

    def start_generation(self) -> None:
        self.phase = TurnPhase.GENERATING

    def append_chunk(self, text: str) -> None:
        self.typing_buffer += text

    @property
    def current_progress(self) -> int:
        return self.progress_log[-1].progress if self.progress_log else 0

    def settle(self, outcome: TurnOutcome, message: Message) -> None:
        """Finish the turn, keeping its progress log for display."""
        self.messages.append(message)
        self.last_progress_log = list(self.progress_log)
        self.progress_log = []
        self.typing_buffer = ""
        self.phase = TurnPhase.SETTLED
        self.outcome = outcome
