"""Claude stream-json decoder.

Turns the CLI's stdout byte stream into ``StreamEvent`` objects. Chunks may
split lines (and multi-byte characters) anywhere; only complete lines are
decoded.
"""

from __future__ import annotations

import json
import logging

from convoy.cli_backends.models import EventType, StreamEvent

logger = logging.getLogger(__name__)


class ClaudeStreamParser:
    """Incremental decoder for newline-delimited JSON output."""

    NEWLINE = b"\n"

    # Wire names that differ from the enum value
    TYPE_ALIASES: dict[str, EventType] = {
        "tool-use": EventType.TOOL_USE,
        "tool-result": EventType.TOOL_RESULT,
        "input-request": EventType.INPUT_REQUEST,
        "content-block-start": EventType.CONTENT_BLOCK_START,
        "content-block-delta": EventType.CONTENT_BLOCK_DELTA,
        "content-block-stop": EventType.CONTENT_BLOCK_STOP,
        "message-start": EventType.MESSAGE_START,
        "message-delta": EventType.MESSAGE_DELTA,
        "message-stop": EventType.MESSAGE_STOP,
    }

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> bytes:
        """Bytes of the current incomplete line."""
        return bytes(self._buffer)

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        """Consume a chunk and return the events of every completed line.

        Args:
            chunk: Raw bytes (or already-decoded text) from stdout

        Returns:
            Events in line order; blank lines produce nothing
        """
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        self._buffer.extend(chunk)

        events: list[StreamEvent] = []
        while True:
            idx = self._buffer.find(self.NEWLINE)
            if idx < 0:
                break
            raw_line = bytes(self._buffer[:idx])
            del self._buffer[: idx + 1]
            event = self.parse_line(raw_line.decode("utf-8", errors="replace"))
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[StreamEvent]:
        """Decode a trailing unterminated line at end of stream."""
        if not self._buffer:
            return []
        raw_line = bytes(self._buffer)
        self._buffer.clear()
        event = self.parse_line(raw_line.decode("utf-8", errors="replace"))
        return [event] if event is not None else []

    def parse_line(self, line: str) -> StreamEvent | None:
        """Decode one line. Malformed input becomes a text event, never an error."""
        line = line.rstrip("\r")
        if not line.strip():
            return None

        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Non-JSON output line: %.200s", line)
            return StreamEvent(type=EventType.TEXT, content=line)

        if not isinstance(obj, dict) or not isinstance(obj.get("type"), str):
            return StreamEvent(type=EventType.TEXT, content=line)

        return StreamEvent(type=self._normalize_type(obj["type"]), raw=obj)

    def _normalize_type(self, type_name: str) -> EventType:
        """Map a wire discriminator to EventType (UNKNOWN if unrecognized)."""
        normalized = type_name.strip().lower()
        if normalized in self.TYPE_ALIASES:
            return self.TYPE_ALIASES[normalized]
        try:
            return EventType(normalized)
        except ValueError:
            logger.debug("Unknown stream event type: %s", type_name)
            return EventType.UNKNOWN
