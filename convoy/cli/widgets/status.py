from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from textual.reactive import reactive
from textual.widgets import Static

from convoy.cli_backends.claude.rate_limit import format_wait_time
from convoy.cli_backends.models import ConnectionStatus
from convoy.conversation.models import (
    ConversationUpdate,
    QueueChanged,
    RateLimitStatus,
    RequestState,
    StateChanged,
)

STATE_LABELS = {
    RequestState.IDLE: "Ready",
    RequestState.SENDING: "Sending...",
    RequestState.STREAMING: "Claude is responding...",
    RequestState.ERROR: "[red]Error[/]",
}


@dataclass(frozen=True)
class StatusSnapshot:
    state: RequestState = RequestState.IDLE
    queued: int = 0
    rate_limit_countdown: int = 0
    connection: ConnectionStatus | None = None


class ConversationStatus(Static):
    """One-line status for a conversation: state, queue, rate limit, CLI."""

    status = reactive(StatusSnapshot())

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)

    def watch_status(self, new_status: StatusSnapshot) -> None:
        self.update(self._describe(new_status))

    def apply(self, update: ConversationUpdate) -> None:
        """Fold a controller update into the displayed status."""
        current = self.status
        match update:
            case StateChanged(state=state):
                self.status = StatusSnapshot(
                    state, current.queued, current.rate_limit_countdown, current.connection
                )
            case QueueChanged(messages=messages):
                self.status = StatusSnapshot(
                    current.state,
                    len(messages),
                    current.rate_limit_countdown,
                    current.connection,
                )
            case RateLimitStatus(waiting=waiting, countdown=countdown):
                self.status = StatusSnapshot(
                    current.state,
                    current.queued,
                    countdown if waiting else 0,
                    current.connection,
                )

    def set_connection(self, connection: ConnectionStatus) -> None:
        current = self.status
        self.status = StatusSnapshot(
            current.state, current.queued, current.rate_limit_countdown, connection
        )

    def _describe(self, status: StatusSnapshot) -> str:
        """Render the status line."""
        if status.connection is not None and not status.connection.success:
            return f"[yellow]❗ claude CLI unavailable: {status.connection.error}[/]"

        if status.rate_limit_countdown > 0:
            parts = [
                "⏳ Rate limited, retrying in "
                + format_wait_time(status.rate_limit_countdown)
            ]
        else:
            parts = [STATE_LABELS[status.state]]
        if status.queued:
            parts.append(f"{status.queued} queued")
        if status.connection is not None and status.connection.version:
            parts.append(f"claude {status.connection.version}")
        return " · ".join(parts)
