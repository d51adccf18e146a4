"""In-memory stand-in for ProcessManager used by controller tests."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from convoy.cli_backends.models import (
    ConversationEvent,
    EventType,
    InstanceEvent,
    InstanceEventKind,
    StreamEvent,
)
from convoy.config import RequestOptions
from convoy.errors import ConvoyError


@dataclass
class SentPrompt:
    conversation_id: str
    prompt: str
    options: RequestOptions
    request_id: str


class FakeManager:
    """Records prompts and lets tests play CLI events back."""

    def __init__(self) -> None:
        self.sent: list[SentPrompt] = []
        self.inputs: list[str] = []
        self.cancelled: list[str] = []
        self.running = False
        self.stdin = False
        self.fail_with: ConvoyError | None = None
        self._channels: dict[str, asyncio.Queue[ConversationEvent]] = {}

    def channel(self, conversation_id: str) -> asyncio.Queue[ConversationEvent]:
        return self._channels.setdefault(conversation_id, asyncio.Queue())

    async def send_prompt(
        self,
        conversation_id: str,
        prompt: str,
        options: RequestOptions | None = None,
        *,
        request_id: str | None = None,
    ) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(
            SentPrompt(conversation_id, prompt, options or RequestOptions(), request_id)
        )
        self.running = True
        self.stdin = bool(options and options.interactive)
        return request_id

    def cancel_request(self, conversation_id: str) -> None:
        self.cancelled.append(conversation_id)
        self.running = False
        self.stdin = False

    def send_user_input(self, conversation_id: str, text: str) -> bool:
        if not self.stdin:
            return False
        self.inputs.append(text)
        return True

    def is_running(self, conversation_id: str) -> bool:
        return self.running

    def stdin_open(self, conversation_id: str) -> bool:
        return self.stdin

    @property
    def last(self) -> SentPrompt:
        return self.sent[-1]

    def data(self, raw: dict, request_id: str | None = None) -> InstanceEvent:
        """Data event for the latest turn (or ``request_id``)."""
        return InstanceEvent(
            InstanceEventKind.DATA,
            request_id or self.last.request_id,
            data=StreamEvent(type=EventType(raw["type"]), raw=raw),
        )

    def complete(self, request_id: str | None = None) -> InstanceEvent:
        self.running = False
        self.stdin = False
        return InstanceEvent(InstanceEventKind.COMPLETE, request_id or self.last.request_id)

    def error(self, message: str, request_id: str | None = None) -> InstanceEvent:
        self.running = False
        self.stdin = False
        return InstanceEvent(
            InstanceEventKind.ERROR, request_id or self.last.request_id, error=message
        )


def drain(queue: asyncio.Queue) -> list:
    """Everything currently on an updates queue."""
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


async def wait_until(predicate, timeout: float = 5.0) -> None:
    """Poll ``predicate`` until true; fails the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
