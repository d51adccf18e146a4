"""Tests for the ConversationStatus widget."""

from __future__ import annotations

from textual.app import App, ComposeResult

from convoy.cli.widgets.status import ConversationStatus, StatusSnapshot
from convoy.cli_backends.models import ConnectionStatus
from convoy.conversation.models import (
    QueueChanged,
    QueuedMessage,
    RateLimitStatus,
    RequestState,
    StateChanged,
)


class StatusApp(App):
    def compose(self) -> ComposeResult:
        yield ConversationStatus(id="status")


class TestDescribe:
    """Test _describe rendering."""

    def test_idle(self):
        widget = ConversationStatus()
        assert widget._describe(StatusSnapshot()) == "Ready"

    def test_streaming_with_queue(self):
        widget = ConversationStatus()
        text = widget._describe(StatusSnapshot(RequestState.STREAMING, queued=2))
        assert text == "Claude is responding... · 2 queued"

    def test_rate_limit_countdown_replaces_state(self):
        widget = ConversationStatus()
        text = widget._describe(
            StatusSnapshot(RequestState.SENDING, rate_limit_countdown=90)
        )
        assert text == "⏳ Rate limited, retrying in 1m 30s"

    def test_version_shown(self):
        widget = ConversationStatus()
        connection = ConnectionStatus(success=True, version="1.2.3")
        text = widget._describe(StatusSnapshot(connection=connection))
        assert text == "Ready · claude 1.2.3"

    def test_warns_when_cli_unavailable(self):
        """Verify warning when the CLI connection check failed."""
        widget = ConversationStatus()
        connection = ConnectionStatus(success=False, error="not logged in")
        text = widget._describe(StatusSnapshot(RequestState.STREAMING, connection=connection))
        assert "❗ claude CLI unavailable: not logged in" in text


class TestApply:
    """Test folding controller updates into the widget."""

    async def test_updates_fold_into_status(self):
        app = StatusApp()
        async with app.run_test() as pilot:
            widget = app.query_one(ConversationStatus)

            widget.apply(StateChanged("c", RequestState.STREAMING, RequestState.SENDING))
            widget.apply(QueueChanged("c", (QueuedMessage("a"), QueuedMessage("b"))))
            widget.apply(RateLimitStatus("c", waiting=True, countdown=12))
            await pilot.pause()

            assert widget.status == StatusSnapshot(
                RequestState.STREAMING, queued=2, rate_limit_countdown=12
            )

            widget.apply(RateLimitStatus("c", waiting=False, countdown=0))
            widget.set_connection(ConnectionStatus(success=True, version="2.0.1"))
            await pilot.pause()

            assert widget.status.rate_limit_countdown == 0
            assert widget.status.connection.version == "2.0.1"
