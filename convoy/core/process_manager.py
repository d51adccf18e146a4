"""ProcessManager - registry of Claude CLI sessions keyed by conversation id."""

from __future__ import annotations

import asyncio
from contextlib import suppress
import logging
from pathlib import Path
import re
import time
import types

from convoy.cli_backends.claude.command import child_environment, resolve_executable
from convoy.cli_backends.claude.session import ClaudeSession
from convoy.cli_backends.models import (
    ConnectionStatus,
    ConversationEvent,
    InstanceEvent,
    InstanceEventKind,
)
from convoy.config import ExecutableConfig, ManagerConfig, RequestOptions
from convoy.errors import CapacityError, ConfigError

VERSION_PATTERN = re.compile(r"(\d+\.\d+\.\d+)")


class ProcessManager:
    """Owns every ClaudeSession and fans their events out per conversation.

    The registry is only mutated here. Events of each session are re-tagged
    with the conversation id and put on that conversation's channel, which
    outlives individual sessions (eviction, re-creation).
    """

    def __init__(
        self,
        config: ManagerConfig | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config or ManagerConfig()
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._instances: dict[str, ClaudeSession] = {}
        self._forwarders: dict[str, asyncio.Task[None]] = {}
        self._channels: dict[str, asyncio.Queue[ConversationEvent]] = {}
        self._sweep_task: asyncio.Task[None] | None = None
        # Forwarders and process reaping of destroyed instances
        self._teardown: set[asyncio.Task[None]] = set()

    async def __aenter__(self) -> ProcessManager:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def config(self) -> ManagerConfig:
        return self._config

    @property
    def instance_count(self) -> int:
        return len(self._instances)

    @property
    def active_instance_count(self) -> int:
        return sum(1 for instance in self._instances.values() if instance.running)

    def has_instance(self, conversation_id: str) -> bool:
        return conversation_id in self._instances

    def start(self) -> None:
        """Start the background idle sweep (no-op if already started)."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def close(self) -> None:
        """Stop the sweep, destroy every instance and wait for their processes."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None
        self.destroy_all()
        await self.wait_destroyed()

    async def wait_destroyed(self) -> None:
        """Wait until every destroyed instance has been reaped."""
        while self._teardown:
            await asyncio.gather(*self._teardown, return_exceptions=True)

    def _track_teardown(self, task: asyncio.Task[None]) -> None:
        self._teardown.add(task)
        task.add_done_callback(self._teardown.discard)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.sweep_interval)
            self.sweep_idle()

    def sweep_idle(self) -> list[str]:
        """Destroy instances idle for longer than the idle timeout.

        Returns:
            Conversation ids whose instance was destroyed
        """
        now = time.monotonic()
        stale = [
            conversation_id
            for conversation_id, instance in self._instances.items()
            if not instance.running
            and now - instance.last_activity > self._config.idle_timeout
        ]
        for conversation_id in stale:
            self._logger.info("[%s] Evicting idle CLI instance", conversation_id)
            self.destroy_instance(conversation_id)
        return stale

    def channel(self, conversation_id: str) -> asyncio.Queue[ConversationEvent]:
        """Event channel for a conversation (data, complete and error events)."""
        if conversation_id not in self._channels:
            self._channels[conversation_id] = asyncio.Queue()
        return self._channels[conversation_id]

    def release_channel(self, conversation_id: str) -> None:
        self._channels.pop(conversation_id, None)

    def _evict_oldest_idle(self) -> str | None:
        idle = [
            (instance.last_activity, conversation_id)
            for conversation_id, instance in self._instances.items()
            if not instance.running
        ]
        if not idle:
            return None
        _, victim = min(idle)
        self._logger.info("[%s] Evicting oldest idle CLI instance", victim)
        self.destroy_instance(victim)
        return victim

    def _get_or_create(self, conversation_id: str) -> ClaudeSession:
        instance = self._instances.get(conversation_id)
        if instance is not None:
            return instance

        if len(self._instances) >= self._config.max_instances:
            self._evict_oldest_idle()
        if len(self._instances) >= self._config.max_instances:
            raise CapacityError(conversation_id, self._config.max_instances)

        instance = ClaudeSession(
            conversation_id,
            terminate_grace=self._config.terminate_grace,
            logger=self._logger,
        )
        self._instances[conversation_id] = instance
        self._forwarders[conversation_id] = asyncio.create_task(
            self._forward(conversation_id, instance)
        )
        self._logger.debug("[%s] Created CLI instance", conversation_id)
        return instance

    async def _forward(self, conversation_id: str, instance: ClaudeSession) -> None:
        channel = self.channel(conversation_id)
        while True:
            event = await instance.events.get()
            channel.put_nowait(ConversationEvent(conversation_id, event))

    async def send_prompt(
        self,
        conversation_id: str,
        prompt: str,
        options: RequestOptions | None = None,
        *,
        request_id: str | None = None,
    ) -> str:
        """Send a prompt on the conversation's instance, creating it if needed.

        Returns:
            Request id stamped on the events of this turn

        Raises:
            CapacityError: If at the instance cap with no idle instance to evict
            SpawnError: If the CLI could not be started
            InstanceBusyError: If the conversation already has a turn running
        """
        instance = self._get_or_create(conversation_id)
        return await instance.start(prompt, options, request_id=request_id)

    def send_user_input(self, conversation_id: str, text: str) -> bool:
        instance = self._instances.get(conversation_id)
        if instance is None:
            self._logger.warning("[%s] No CLI instance for user input", conversation_id)
            return False
        return instance.send_user_input(text)

    def cancel_request(self, conversation_id: str) -> None:
        instance = self._instances.get(conversation_id)
        if instance is None:
            self._logger.debug("[%s] No CLI instance to cancel", conversation_id)
            return
        instance.cancel()

    def is_running(self, conversation_id: str) -> bool:
        instance = self._instances.get(conversation_id)
        if instance is None:
            self._logger.debug("[%s] No CLI instance", conversation_id)
            return False
        return instance.running

    def stdin_open(self, conversation_id: str) -> bool:
        instance = self._instances.get(conversation_id)
        return instance is not None and instance.stdin_open

    def destroy_instance(self, conversation_id: str) -> None:
        """Tear down one instance. Safe to call twice or for unknown ids.

        Events the instance already published still reach the channel. A
        turn that was running is ended with an error event, so the
        conversation never waits on a process that is gone.
        """
        instance = self._instances.pop(conversation_id, None)
        forwarder = self._forwarders.pop(conversation_id, None)
        if forwarder is not None:
            forwarder.cancel()
            self._track_teardown(forwarder)
        if instance is None:
            return

        channel = self.channel(conversation_id)
        while not instance.events.empty():
            channel.put_nowait(
                ConversationEvent(conversation_id, instance.events.get_nowait())
            )
        request_id = instance.request_id if instance.running else None
        instance.close()
        self._track_teardown(asyncio.create_task(instance.wait_closed()))
        if request_id is not None:
            channel.put_nowait(
                ConversationEvent(
                    conversation_id,
                    InstanceEvent(
                        InstanceEventKind.ERROR,
                        request_id,
                        error="Claude CLI instance was destroyed",
                    ),
                )
            )
        self._logger.debug("[%s] Destroyed CLI instance", conversation_id)

    def destroy_all(self) -> None:
        for conversation_id in list(self._instances):
            self.destroy_instance(conversation_id)

    async def check_connection(
        self,
        executable: ExecutableConfig | None = None,
        working_dir: Path | None = None,
    ) -> ConnectionStatus:
        """Probe the CLI with ``--version``; independent of any conversation."""
        timeout = self._config.connection_timeout
        try:
            argv = resolve_executable(
                executable or ExecutableConfig(),
                ["--version"],
                working_dir,
            )
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(working_dir) if working_dir else None,
                env=child_environment(),
            )
        except (ConfigError, OSError) as e:
            self._logger.warning("Claude CLI connection check failed: %s", e)
            return ConnectionStatus(success=False, error=str(e))

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except TimeoutError:
            with suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            return ConnectionStatus(success=False, error=f"Timed out after {timeout:g}s")

        if process.returncode == 0:
            output = stdout.decode(errors="replace").strip()
            match = VERSION_PATTERN.search(output)
            return ConnectionStatus(
                success=True, version=match.group(1) if match else output
            )

        error = stderr.decode(errors="replace").strip()
        return ConnectionStatus(
            success=False, error=error or f"Exit code: {process.returncode}"
        )
