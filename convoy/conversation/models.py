"""Conversation-level types: request state, queued messages and host updates."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from convoy.cli_backends.models import Question, Usage
from convoy.config import RequestOptions


class RequestState(StrEnum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    ERROR = "error"


@dataclass
class QueuedMessage:
    """A message waiting for the in-flight request to finish."""

    content: str
    context: dict[str, Any] | None = None
    options: RequestOptions | None = None
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class AskUserRequest:
    """Questions raised mid-turn, and how they were answered."""

    questions: list[Question]
    request_id: str
    tool_use_id: str | None = None
    auto_accepted: bool = False
    selected: list[str] = field(default_factory=list)


class SendStatus(StrEnum):
    SENT = "sent"
    QUEUED = "queued"


@dataclass(frozen=True)
class SendReceipt:
    status: SendStatus
    message_id: str
    request_id: str | None = None


# Updates published on ConversationController.updates


@dataclass(frozen=True)
class StateChanged:
    conversation_id: str
    state: RequestState
    previous: RequestState


@dataclass(frozen=True)
class ContentDelta:
    conversation_id: str
    text: str


@dataclass(frozen=True)
class TurnCompleted:
    conversation_id: str
    content: str
    usage: Usage | None = None
    cancelled: bool = False


@dataclass(frozen=True)
class TurnFailed:
    """A turn ended without a result; ``content`` is the original prompt."""

    conversation_id: str
    message: str
    content: str = ""


@dataclass(frozen=True)
class InputRequested:
    conversation_id: str
    request: AskUserRequest


@dataclass(frozen=True)
class RateLimitStatus:
    conversation_id: str
    waiting: bool
    countdown: int = 0
    message: str = ""


@dataclass(frozen=True)
class QueueChanged:
    conversation_id: str
    messages: tuple[QueuedMessage, ...]


@dataclass(frozen=True)
class FileChangesUpdated:
    conversation_id: str
    turn: int
    changed_files: tuple[str, ...]


ConversationUpdate = (
    StateChanged
    | ContentDelta
    | TurnCompleted
    | TurnFailed
    | InputRequested
    | RateLimitStatus
    | QueueChanged
    | FileChangesUpdated
)
