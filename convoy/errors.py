"""Exceptions raised by the orchestration layer."""

from __future__ import annotations


class ConvoyError(Exception):
    """Base class for all convoy errors."""


class ConfigError(ConvoyError):
    """Invalid executable or local configuration."""


class SpawnError(ConvoyError):
    """The CLI process could not be created. Never retried automatically."""

    def __init__(self, conversation_id: str, reason: str) -> None:
        super().__init__(f"[{conversation_id}] Failed to start Claude CLI: {reason}")
        self.conversation_id = conversation_id
        self.reason = reason


class InstanceBusyError(ConvoyError):
    """A prompt was sent to an instance that already has a live process."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"[{conversation_id}] Claude CLI is already running")
        self.conversation_id = conversation_id


class CapacityError(ConvoyError):
    """Instance cap reached and every instance is busy."""

    def __init__(self, conversation_id: str, max_instances: int) -> None:
        super().__init__(
            f"[{conversation_id}] Maximum CLI instances ({max_instances}) reached. "
            "Please close some chat sessions."
        )
        self.conversation_id = conversation_id
        self.max_instances = max_instances


class QueueFullError(ConvoyError):
    """The outbound message queue is at its configured maximum."""

    def __init__(self, conversation_id: str, max_size: int) -> None:
        super().__init__(
            f"[{conversation_id}] Message queue is full ({max_size} messages)"
        )
        self.conversation_id = conversation_id
        self.max_size = max_size
