"""Prompt assembly: conversation history plus the current request."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import re

from convoy.config import HISTORY_LIMIT, HISTORY_TRUNCATE

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"

HISTORY_HEADER = "=== Previous conversation ==="
REQUEST_HEADER = "=== Current request ==="

CONTINUE_PREFIX = re.compile(r"^\s*(?:--continue|-c)\s+", re.IGNORECASE)


@dataclass
class Message:
    """Single message in conversation history."""

    role: str  # "user" | "assistant"
    content: str
    timestamp: datetime


def strip_continue_prefix(text: str) -> tuple[bool, str]:
    """Detect a leading ``--continue``/``-c`` flag typed by the user.

    Returns (continue_requested, remaining_text).
    """
    match = CONTINUE_PREFIX.match(text)
    if not match:
        return False, text
    return True, text[match.end() :]


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "... [truncated]"


def build_prompt(
    messages: list[Message],
    request: str,
    limit: int = HISTORY_LIMIT,
    truncate: int = HISTORY_TRUNCATE,
) -> str:
    """Build the prompt for a fresh CLI process from history.

    Args:
        messages: Conversation history, oldest first (current request excluded)
        request: The message being sent now
        limit: Max history messages to include
        truncate: Max characters kept per history message

    Returns:
        ``request`` alone when there is no usable history, else a prompt with
        the history and request sections
    """
    recent = [m for m in messages if m.content.strip()][-limit:] if limit else []
    if not recent:
        return request

    lines = [HISTORY_HEADER]
    for msg in recent:
        label = "User" if msg.role == ROLE_USER else "Assistant"
        lines.append(f"{label}: {_truncate(msg.content, truncate)}")
        lines.append("")
    lines.append(REQUEST_HEADER)
    lines.append(request)
    return "\n".join(lines)
