"""ClaudeSession - owns one Claude CLI process for one conversation."""

from __future__ import annotations

import asyncio
import codecs
from contextlib import suppress
import logging
import time
from uuid import uuid4

from convoy.cli_backends.claude.command import (
    build_cli_args,
    child_environment,
    resolve_executable,
)
from convoy.cli_backends.claude.parser import ClaudeStreamParser
from convoy.cli_backends.claude.rate_limit import RateLimitDetector
from convoy.cli_backends.models import (
    RATE_LIMIT_SUBTYPE,
    EventType,
    InstanceEvent,
    InstanceEventKind,
    StreamEvent,
)
from convoy.config import TERMINATE_GRACE, RequestOptions
from convoy.errors import InstanceBusyError, SpawnError


class ClaudeSession:
    """Runs one CLI turn at a time and publishes its events on ``events``.

    Every event of a turn carries the turn's request id. A cancelled turn
    publishes nothing further.
    """

    READ_SIZE = 64 * 1024
    ERROR_TAIL = 500

    def __init__(
        self,
        conversation_id: str,
        *,
        terminate_grace: float = TERMINATE_GRACE,
        detector: RateLimitDetector | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.conversation_id = conversation_id
        self.events: asyncio.Queue[InstanceEvent] = asyncio.Queue()
        self._terminate_grace = terminate_grace
        self._detector = detector or RateLimitDetector()
        self._logger = logger if logger is not None else logging.getLogger(__name__)

        self._process: asyncio.subprocess.Process | None = None
        self._watch_task: asyncio.Task[None] | None = None
        self._request_id: str | None = None
        self._running = False
        self._received_result = False
        self._stdin_open = False
        self._last_activity = time.monotonic()
        self._reapers: set[asyncio.Task[None]] = set()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def received_result(self) -> bool:
        return self._received_result

    @property
    def stdin_open(self) -> bool:
        return self._stdin_open

    @property
    def last_activity(self) -> float:
        """Monotonic time of the last byte sent or received."""
        return self._last_activity

    @property
    def request_id(self) -> str | None:
        return self._request_id

    def _touch(self) -> None:
        self._last_activity = time.monotonic()

    async def start(
        self,
        prompt: str,
        options: RequestOptions | None = None,
        *,
        request_id: str | None = None,
    ) -> str:
        """Spawn the CLI for one turn and write the prompt.

        Args:
            prompt: Prompt body, written to stdin followed by a newline
            options: Flags for this turn; ``interactive`` keeps stdin open
            request_id: Turn id stamped on every event (generated if omitted)

        Returns:
            The request id of the turn

        Raises:
            InstanceBusyError: If a process is already running
            SpawnError: If the process could not be created
            ConfigError: If the executable configuration is invalid
        """
        if self._running:
            raise InstanceBusyError(self.conversation_id)

        options = options or RequestOptions()
        argv = resolve_executable(
            options.executable, build_cli_args(options), options.working_dir
        )
        request_id = request_id or uuid4().hex

        self._running = True
        self._received_result = False
        self._request_id = request_id
        self._touch()
        self._logger.debug("[%s] Spawning %s", self.conversation_id, argv)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(options.working_dir) if options.working_dir else None,
                env=child_environment(),
            )
        except OSError as e:
            if self._request_id == request_id:
                self._running = False
                self._request_id = None
            raise SpawnError(self.conversation_id, str(e)) from e

        if self._request_id != request_id:
            # Cancelled while the process was being created
            self._terminate(process)
            return request_id

        self._process = process
        self._stdin_open = True
        self._watch_task = asyncio.create_task(self._watch(process, request_id))
        await self._write_prompt(process, prompt, keep_open=options.interactive)
        return request_id

    async def _write_prompt(
        self, process: asyncio.subprocess.Process, prompt: str, keep_open: bool
    ) -> None:
        assert process.stdin is not None
        try:
            process.stdin.write(f"{prompt}\n".encode())
            await process.stdin.drain()
            self._touch()
        except (BrokenPipeError, ConnectionResetError) as e:
            self._logger.warning(
                "[%s] Failed to write prompt: %s", self.conversation_id, e
            )
            keep_open = False

        if not keep_open:
            self._close_stdin(process)

    def _close_stdin(self, process: asyncio.subprocess.Process) -> None:
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        if process is self._process:
            self._stdin_open = False

    def send_user_input(self, text: str) -> bool:
        """Write one line to stdin if it is still open.

        Returns:
            True if written, False if stdin is closed (logged)
        """
        process = self._process
        if (
            process is None
            or not self._stdin_open
            or process.stdin is None
            or process.stdin.is_closing()
        ):
            self._logger.warning(
                "[%s] Cannot send user input: stdin is closed", self.conversation_id
            )
            return False

        try:
            process.stdin.write(f"{text}\n".encode())
        except (BrokenPipeError, ConnectionResetError) as e:
            self._logger.warning(
                "[%s] Failed to send user input: %s", self.conversation_id, e
            )
            self._stdin_open = False
            return False
        self._touch()
        return True

    def _emit(self, event: InstanceEvent) -> None:
        self.events.put_nowait(event)

    def _emit_data(self, request_id: str, event: StreamEvent) -> None:
        if event.type is EventType.RESULT:
            self._received_result = True
        self._emit(InstanceEvent(InstanceEventKind.DATA, request_id, data=event))

    async def _watch(self, process: asyncio.subprocess.Process, request_id: str) -> None:
        """Pump stdout/stderr until EOF, then publish completion or error."""
        parser = ClaudeStreamParser()
        stderr_parts: list[str] = []

        async def read_stdout() -> None:
            assert process.stdout is not None
            while chunk := await process.stdout.read(self.READ_SIZE):
                self._touch()
                for event in parser.feed(chunk):
                    self._emit_data(request_id, event)
            for event in parser.flush():
                self._emit_data(request_id, event)

        async def read_stderr() -> None:
            assert process.stderr is not None
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            reported = False
            while chunk := await process.stderr.read(self.READ_SIZE):
                self._touch()
                stderr_parts.append(decoder.decode(chunk))
                if reported:
                    continue
                info = self._detector.detect("".join(stderr_parts))
                if info.is_rate_limited:
                    reported = True
                    self._logger.info(
                        "[%s] Rate limit detected, retry after %ss",
                        self.conversation_id,
                        info.retry_after_seconds,
                    )
                    self._emit_data(
                        request_id,
                        StreamEvent(
                            type=EventType.ERROR,
                            raw={
                                "type": "error",
                                "error_type": RATE_LIMIT_SUBTYPE,
                                "retry_after": info.retry_after_seconds,
                                "content": info.message,
                            },
                        ),
                    )
            stderr_parts.append(decoder.decode(b"", final=True))

        try:
            await asyncio.gather(read_stdout(), read_stderr())
            returncode = await process.wait()
        except OSError as e:
            self._logger.error("[%s] Stream failure: %s", self.conversation_id, e)
            self._reset(process)
            self._emit(
                InstanceEvent(
                    InstanceEventKind.ERROR,
                    request_id,
                    error=f"Claude CLI stream failed: {e}",
                )
            )
            return

        received_result = self._received_result
        self._reset(process)
        self._logger.debug(
            "[%s] Process exited with %s", self.conversation_id, returncode
        )

        if returncode == 0 or (returncode < 0 and received_result):
            self._emit(InstanceEvent(InstanceEventKind.COMPLETE, request_id))
            return

        if returncode < 0:
            message = f"Claude CLI terminated by signal {-returncode}"
        else:
            message = f"Claude CLI exited with code {returncode}"
        tail = "".join(stderr_parts).strip()[-self.ERROR_TAIL :]
        if tail:
            message = f"{message}: {tail}"
        self._emit(InstanceEvent(InstanceEventKind.ERROR, request_id, error=message))

    def _reset(self, process: asyncio.subprocess.Process) -> None:
        if process is not self._process:
            return
        self._process = None
        self._watch_task = None
        self._request_id = None
        self._running = False
        self._stdin_open = False

    def cancel(self) -> None:
        """Terminate the current turn, if any. Safe to call repeatedly."""
        process = self._process
        task = self._watch_task
        was_running = self._running

        self._process = None
        self._watch_task = None
        self._request_id = None
        self._running = False
        self._received_result = False
        self._stdin_open = False

        if task is not None and not task.done():
            task.cancel()
        if process is not None and process.returncode is None:
            self._terminate(process)
        if was_running:
            self._logger.debug("[%s] Request cancelled", self.conversation_id)

    def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        with suppress(ProcessLookupError):
            process.terminate()
        reaper = asyncio.get_running_loop().create_task(self._reap(process))
        self._reapers.add(reaper)
        reaper.add_done_callback(self._reapers.discard)

    async def _reap(self, process: asyncio.subprocess.Process) -> None:
        try:
            await asyncio.wait_for(process.wait(), self._terminate_grace)
        except TimeoutError:
            self._logger.warning(
                "[%s] Process ignored SIGTERM, killing", self.conversation_id
            )
            with suppress(ProcessLookupError):
                process.kill()
            await process.wait()
        # The pipe transports only close once both pipes reach EOF
        with suppress(TimeoutError):
            await asyncio.wait_for(
                self._drain(process.stdout, process.stderr), self._terminate_grace
            )

    @staticmethod
    async def _drain(*streams: asyncio.StreamReader | None) -> None:
        for stream in streams:
            if stream is not None:
                await stream.read()

    def close(self) -> None:
        """Tear down the instance (used by the process manager)."""
        self.cancel()

    async def wait_closed(self) -> None:
        """Wait until every terminated process has been reaped."""
        while self._reapers:
            await asyncio.gather(*self._reapers, return_exceptions=True)
