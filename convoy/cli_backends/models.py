"""Typed protocol events decoded from the Claude CLI stream-json output.

The CLI writes one JSON object per line on stdout. Each object carries a
``type`` discriminator; the raw object is kept on the event so callers can
reach fields this module does not model. Helper methods pull out the parts
the orchestration layer cares about (text, tool calls, questions, usage).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class EventType(StrEnum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TEXT = "text"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    CONTENT_BLOCK_START = "content_block_start"
    CONTENT_BLOCK_DELTA = "content_block_delta"
    CONTENT_BLOCK_STOP = "content_block_stop"
    MESSAGE_START = "message_start"
    MESSAGE_DELTA = "message_delta"
    MESSAGE_STOP = "message_stop"
    INPUT_REQUEST = "input_request"
    ERROR = "error"
    RESULT = "result"
    UNKNOWN = "unknown"


RATE_LIMIT_SUBTYPE = "rate_limit"
ASK_USER_TOOL = "AskUserQuestion"


@dataclass(frozen=True)
class ToolUse:
    """A tool invocation requested by the assistant."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    tool_use_id: str
    content: str = ""
    is_error: bool = False


@dataclass(frozen=True)
class QuestionOption:
    label: str
    description: str = ""


@dataclass(frozen=True)
class Question:
    """One question of an ask-user interrupt."""

    question: str
    header: str = ""
    options: tuple[QuestionOption, ...] = ()
    multi_select: bool = False
    allow_free_text: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Question:
        options = tuple(
            QuestionOption(
                label=str(opt.get("label", "")),
                description=str(opt.get("description", "")),
            )
            if isinstance(opt, dict)
            else QuestionOption(label=str(opt))
            for opt in data.get("options") or []
        )
        return cls(
            question=str(data.get("question", "")),
            header=str(data.get("header", "")),
            options=options,
            multi_select=bool(data.get("multiSelect", data.get("multi_select", False))),
            allow_free_text=bool(
                data.get("allowFreeText", data.get("allow_free_text", False))
            ),
        )


@dataclass(frozen=True)
class Usage:
    """Usage and cost totals reported by a ``result`` event."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    total_cost_usd: float = 0.0
    duration_ms: int = 0
    num_turns: int = 0


@dataclass(frozen=True)
class StreamEvent:
    """One decoded line of CLI output."""

    type: EventType
    raw: dict[str, Any] = field(default_factory=dict)
    # Verbatim line for text events (non-JSON output)
    content: str = ""

    @property
    def type_name(self) -> str:
        """Discriminator as written on the wire (kept for unknown types)."""
        return str(self.raw.get("type", self.type.value))

    @property
    def subtype(self) -> str | None:
        value = self.raw.get("error_type", self.raw.get("subtype"))
        return str(value) if value is not None else None

    @property
    def is_rate_limit(self) -> bool:
        return self.type is EventType.ERROR and self.subtype == RATE_LIMIT_SUBTYPE

    @property
    def retry_after(self) -> int | None:
        value = self.raw.get("retry_after")
        if isinstance(value, bool) or not isinstance(value, int | float):
            return None
        return max(0, int(value))

    @property
    def session_id(self) -> str | None:
        value = self.raw.get("session_id")
        return value if isinstance(value, str) and value else None

    @property
    def is_error_result(self) -> bool:
        return self.type is EventType.RESULT and bool(self.raw.get("is_error"))

    def _message_blocks(self) -> list[dict[str, Any]]:
        message = self.raw.get("message")
        if not isinstance(message, dict):
            return []
        blocks = message.get("content")
        if isinstance(blocks, str):
            return [{"type": "text", "text": blocks}]
        if not isinstance(blocks, list):
            return []
        return [b for b in blocks if isinstance(b, dict)]

    def text(self) -> str:
        """Extract displayable text carried by this event ("" if none).

        ``result`` events are excluded; their text duplicates the assistant
        message and is read through ``result_text``.
        """
        if self.type is EventType.TEXT:
            return self.content or str(self.raw.get("content", ""))
        if self.type is EventType.ASSISTANT:
            return "".join(
                str(b.get("text", ""))
                for b in self._message_blocks()
                if b.get("type") == "text"
            )
        if self.type is EventType.CONTENT_BLOCK_DELTA:
            delta = self.raw.get("delta")
            if isinstance(delta, dict) and isinstance(delta.get("text"), str):
                return delta["text"]
        return ""

    def result_text(self) -> str:
        if self.type is not EventType.RESULT:
            return ""
        value = self.raw.get("result")
        return value if isinstance(value, str) else ""

    def tool_uses(self) -> list[ToolUse]:
        """Tool calls at top level or nested in an assistant message."""
        if self.type is EventType.TOOL_USE:
            blocks = [self.raw]
        elif self.type is EventType.ASSISTANT:
            blocks = [b for b in self._message_blocks() if b.get("type") == "tool_use"]
        else:
            return []
        uses = []
        for block in blocks:
            tool_input = block.get("input")
            uses.append(
                ToolUse(
                    id=str(block.get("id", "")),
                    name=str(block.get("name", "")),
                    input=tool_input if isinstance(tool_input, dict) else {},
                )
            )
        return uses

    def tool_results(self) -> list[ToolResult]:
        """Tool results at top level or nested in a user message."""
        if self.type is EventType.TOOL_RESULT:
            blocks = [self.raw]
        elif self.type is EventType.USER:
            blocks = [
                b for b in self._message_blocks() if b.get("type") == "tool_result"
            ]
        else:
            return []
        return [
            ToolResult(
                tool_use_id=str(block.get("tool_use_id", "")),
                content=_flatten_content(block.get("content")),
                is_error=bool(block.get("is_error", False)),
            )
            for block in blocks
        ]

    def questions(self) -> list[Question]:
        """Questions of an ask-user interrupt ([] for other events)."""
        if self.type is EventType.INPUT_REQUEST:
            raw_questions = self.raw.get("questions")
            if not isinstance(raw_questions, list):
                return []
            return [Question.from_dict(q) for q in raw_questions if isinstance(q, dict)]
        for tool in self.tool_uses():
            if tool.name == ASK_USER_TOOL:
                raw_questions = tool.input.get("questions")
                if isinstance(raw_questions, list):
                    return [
                        Question.from_dict(q)
                        for q in raw_questions
                        if isinstance(q, dict)
                    ]
        return []

    def usage(self) -> Usage | None:
        if self.type is not EventType.RESULT:
            return None
        raw_usage = self.raw.get("usage")
        raw_usage = raw_usage if isinstance(raw_usage, dict) else {}
        return Usage(
            input_tokens=int(raw_usage.get("input_tokens") or 0),
            output_tokens=int(raw_usage.get("output_tokens") or 0),
            cache_read_tokens=int(raw_usage.get("cache_read_input_tokens") or 0),
            cache_creation_tokens=int(
                raw_usage.get("cache_creation_input_tokens") or 0
            ),
            total_cost_usd=float(self.raw.get("total_cost_usd") or 0.0),
            duration_ms=int(self.raw.get("duration_ms") or 0),
            num_turns=int(self.raw.get("num_turns") or 0),
        )


def _flatten_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            str(item.get("text", "")) if isinstance(item, dict) else str(item)
            for item in content
        )
    return "" if content is None else str(content)


class InstanceEventKind(StrEnum):
    DATA = "data"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class InstanceEvent:
    """Item on a CLI instance's event channel.

    ``request_id`` identifies the turn that produced it so late events of a
    cancelled or superseded turn can be told apart.
    """

    kind: InstanceEventKind
    request_id: str
    data: StreamEvent | None = None
    error: str | None = None


@dataclass(frozen=True)
class ConversationEvent:
    """An instance event re-tagged with its conversation id by the manager."""

    conversation_id: str
    event: InstanceEvent


@dataclass(frozen=True)
class ConnectionStatus:
    success: bool
    version: str | None = None
    error: str | None = None
