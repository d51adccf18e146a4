"""Per-conversation request handling on top of the process manager."""

from __future__ import annotations

from convoy.conversation.controller import ConversationController
from convoy.conversation.models import (
    AskUserRequest,
    ConversationUpdate,
    QueuedMessage,
    RequestState,
    SendReceipt,
    SendStatus,
)

__all__ = [
    "AskUserRequest",
    "ConversationController",
    "ConversationUpdate",
    "QueuedMessage",
    "RequestState",
    "SendReceipt",
    "SendStatus",
]
