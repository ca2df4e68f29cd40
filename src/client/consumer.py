from __future__ import annotations

"""Client-side consumer that turns stage byte streams into state updates."""

import logging
from dataclasses import dataclass
from typing import AsyncIterable

from src.client.state import ConversationState, ProgressStep
from src.rag.events import EventFrame, FrameDecoder

logger = logging.getLogger(__name__)

TERMINAL_EVENTS = frozenset({"complete", "error"})


@dataclass
class StreamConsumer:
    """Feed one stage stream through a frame decoder and dispatch frames."""
    state: ConversationState

    async def consume(
        self,
        chunks: AsyncIterable[bytes],
        turn_id: int,
    ) -> EventFrame | None:
        """Return the terminal frame, or ``None`` if none arrived or the turn was replaced."""
        decoder = FrameDecoder()
        async for chunk in chunks:
            if not self.state.is_current(turn_id):
                logger.info("stream_superseded", extra={"turn_id": turn_id})
                return None
            for frame in decoder.feed(chunk):
                if self.dispatch(frame, turn_id):
                    return frame
        for frame in decoder.close():
            if self.dispatch(frame, turn_id):
                return frame
        return None

    def dispatch(self, frame: EventFrame, turn_id: int) -> bool:
        """Apply one frame to the state; return True for a terminal frame."""
        if not self.state.is_current(turn_id):
            return False
        event = frame.event
        data = frame.data
        if event in TERMINAL_EVENTS:
            return True
        try:
            self._apply(event, data)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning(
                "frame_payload_invalid",
                extra={"event": event, "detail": f"{type(exc).__name__}: {exc}"},
            )
        return False

    def _apply(self, event: str, data: object) -> None:
        if event == "step":
            if isinstance(data, dict):
                self.state.record_step(ProgressStep.from_payload(data))
            else:
                logger.warning("frame_payload_invalid", extra={"event": event})
        elif event == "results":
            if isinstance(data, list) and all(isinstance(item, dict) for item in data):
                self.state.set_results(data)
            else:
                logger.warning("frame_payload_invalid", extra={"event": event})
        elif event == "chunk":
            text = data.get("text") if isinstance(data, dict) else None
            if isinstance(text, str):
                self.state.append_chunk(text)
            else:
                logger.warning("frame_payload_invalid", extra={"event": event})
        else:
            logger.debug("frame_ignored", extra={"event": event})
