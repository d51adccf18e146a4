"""Bounded, editable outbound message queue."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from convoy.config import MAX_QUEUE_SIZE, RequestOptions
from convoy.conversation.models import QueuedMessage
from convoy.errors import QueueFullError


class MessageQueue:
    """FIFO of messages waiting for the conversation to become idle."""

    def __init__(self, conversation_id: str, max_size: int = MAX_QUEUE_SIZE) -> None:
        self._conversation_id = conversation_id
        self._max_size = max_size
        self._messages: list[QueuedMessage] = []

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def is_full(self) -> bool:
        return len(self._messages) >= self._max_size

    @property
    def messages(self) -> tuple[QueuedMessage, ...]:
        """Snapshot of the queue, head first."""
        return tuple(self._messages)

    def enqueue(
        self,
        content: str,
        context: dict[str, Any] | None = None,
        options: RequestOptions | None = None,
    ) -> QueuedMessage:
        """Append a message.

        Raises:
            QueueFullError: If the queue already holds ``max_size`` messages
        """
        if self.is_full:
            raise QueueFullError(self._conversation_id, self._max_size)
        message = QueuedMessage(content=content, context=context, options=options)
        self._messages.append(message)
        return message

    def pop_next(self) -> QueuedMessage | None:
        return self._messages.pop(0) if self._messages else None

    def remove(self, message_id: str) -> bool:
        for i, message in enumerate(self._messages):
            if message.id == message_id:
                del self._messages[i]
                return True
        return False

    def update(self, message_id: str, content: str) -> bool:
        """Edit a queued message before dispatch."""
        for message in self._messages:
            if message.id == message_id:
                message.content = content
                return True
        return False

    def reorder(self, from_index: int, to_index: int) -> bool:
        """Move the message at ``from_index`` to ``to_index``.

        Returns:
            False for out-of-range indexes or when both are equal
        """
        size = len(self._messages)
        if not (0 <= from_index < size and 0 <= to_index < size):
            return False
        if from_index == to_index:
            return False
        message = self._messages.pop(from_index)
        self._messages.insert(to_index, message)
        return True

    def clear(self) -> None:
        self._messages.clear()

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[QueuedMessage]:
        return iter(list(self._messages))
