from __future__ import annotations

"""Event frame codec for the server-sent event streams.

A frame is an ``event: <name>`` line followed by a ``data: <json>`` line and a
blank line. The decoder accepts arbitrary byte chunks, keeps the trailing
partial line for the next call and yields frames as soon as the ``data:`` line
paired with the current event name is complete.

The current event name is not reset after a ``data:`` line; it persists until
the next ``event:`` line, so a bare ``data:`` line following a finished frame is
decoded as a continuation frame with the same name. This mirrors the upstream
browser client and is kept on purpose.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from src.rag.errors import FrameDecodeError

logger = logging.getLogger(__name__)

_EVENT_PREFIX = b"event:"
_DATA_PREFIX = b"data:"


@dataclass(frozen=True)
class EventFrame:
    """A named event with a JSON payload."""
    event: str
    data: Any


def encode_frame(event: str, data: Any) -> bytes:
    """Serialize a single event frame."""
    if not event or "\n" in event or "\r" in event:
        raise ValueError("Event name must be a non-empty single line")
    payload = json.dumps(data, ensure_ascii=False, default=str)
    return f"event: {event}\ndata: {payload}\n\n".encode("utf-8")


def decode_chunk(
    pending: bytes,
    chunk: bytes,
    current_event: str | None,
) -> tuple[list[EventFrame], bytes, str | None]:
    """Decode complete frames from ``pending + chunk``.

    Returns the frames, the leftover bytes of the last incomplete line and the
    event name to carry into the next call.
    """
    buffer = pending + chunk
    lines = buffer.split(b"\n")
    leftover = lines.pop()
    frames: list[EventFrame] = []
    for raw_line in lines:
        line = raw_line.rstrip(b"\r")
        if not line or line.startswith(b":"):
            continue
        if line.startswith(_EVENT_PREFIX):
            current_event = _field_value(line, _EVENT_PREFIX)
            continue
        if line.startswith(_DATA_PREFIX):
            try:
                frames.append(_decode_data_line(line, current_event))
            except FrameDecodeError as exc:
                logger.warning(
                    "frame_decode_failed",
                    extra={"event": current_event, "detail": str(exc)},
                )
            continue
        logger.debug("frame_line_ignored", extra={"length": len(line)})
    return frames, leftover, current_event


def _field_value(line: bytes, prefix: bytes) -> str:
    value = line[len(prefix):]
    if value.startswith(b" "):
        value = value[1:]
    return value.decode("utf-8", errors="replace")


def _decode_data_line(line: bytes, current_event: str | None) -> EventFrame:
    if current_event is None:
        raise FrameDecodeError("data line without a preceding event line")
    raw = _field_value(line, _DATA_PREFIX)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise FrameDecodeError(f"invalid JSON payload: {exc.msg}") from exc
    return EventFrame(event=current_event, data=data)


@dataclass
class FrameDecoder:
    """Incremental decoder that carries the partial line and event name."""
    pending: bytes = b""
    current_event_name: str | None = None
    frames_decoded: int = field(default=0)

    def feed(self, chunk: bytes) -> list[EventFrame]:
        """Decode every frame completed by ``chunk``."""
        frames, self.pending, self.current_event_name = decode_chunk(
            self.pending, chunk, self.current_event_name
        )
        self.frames_decoded += len(frames)
        return frames

    def close(self) -> list[EventFrame]:
        """Flush a final line that arrived without a trailing newline."""
        if not self.pending:
            return []
        return self.feed(b"\n")


def encode_frames(frames: Iterable[EventFrame]) -> bytes:
    """Serialize several frames back to back."""
    return b"".join(encode_frame(frame.event, frame.data) for frame in frames)
