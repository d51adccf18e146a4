"""Countdown-and-retry after a rate limit."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import logging

from convoy.cli_backends.claude.rate_limit import format_wait_time
from convoy.config import RATE_LIMIT_TICK

StatusCallback = Callable[[bool, int, str], None]
RetryCallback = Callable[[], Awaitable[None]]


class RateLimitWait:
    """Counts down ``retry_after`` seconds, then calls ``on_retry`` once.

    ``on_status(waiting, countdown, message)`` is called on every tick and
    when the wait ends or is cancelled.
    """

    def __init__(
        self,
        on_status: StatusCallback,
        on_retry: RetryCallback,
        *,
        tick: float = RATE_LIMIT_TICK,
        logger: logging.Logger | None = None,
    ) -> None:
        self._on_status = on_status
        self._on_retry = on_retry
        self._tick = tick
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._task: asyncio.Task[None] | None = None
        self._waiting = False
        self._countdown = 0
        self._message = ""

    @property
    def waiting(self) -> bool:
        return self._waiting

    @property
    def countdown(self) -> int:
        return self._countdown

    @property
    def message(self) -> str:
        return self._message

    def start(self, retry_after: int, message: str = "") -> None:
        """Begin (or restart) the countdown."""
        if self._task is not None:
            self._task.cancel()
        self._waiting = True
        self._countdown = max(0, int(retry_after))
        self._message = message
        self._logger.info("Rate limited, retrying in %ss", self._countdown)
        self._task = asyncio.create_task(self._run())

    def status_text(self) -> str:
        if not self._waiting:
            return ""
        return (
            f"Rate limit reached. Waiting {format_wait_time(self._countdown)} "
            "before retrying..."
        )

    async def _run(self) -> None:
        while self._countdown > 0:
            self._on_status(True, self._countdown, self.status_text())
            await asyncio.sleep(self._tick)
            self._countdown -= 1

        self._task = None
        self._waiting = False
        self._on_status(False, 0, "Retrying request...")
        await self._on_retry()

    def cancel(self) -> bool:
        """Abandon the wait without retrying.

        Returns:
            True if a wait was active
        """
        if not self._waiting:
            return False
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._waiting = False
        self._countdown = 0
        self._on_status(False, 0, self._message)
        return True
