"""ConvoyService - one controller per conversation over a shared process manager."""

from __future__ import annotations

from enum import Flag, auto
import logging
import types

from convoy.cli_backends.models import ConnectionStatus
from convoy.config import ConvoySettings
from convoy.conversation.controller import ConversationController
from convoy.core.process_manager import ProcessManager
from convoy.file_changes.tracker import FileChangeTracker


class Capability(Flag):
    """Optional features a host can query instead of probing for methods."""

    NONE = 0
    STATUS = auto()  # state, queue and rate-limit updates
    SESSION_OVERRIDE = auto()  # per-conversation model / auto-accept
    FILE_CHANGES = auto()  # snapshot, diff, revert and history


class ConvoyService:
    """Entry point for hosts: conversations, connection checks, teardown."""

    def __init__(
        self,
        settings: ConvoySettings | None = None,
        *,
        manager: ProcessManager | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._settings = settings or ConvoySettings()
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._manager = manager or ProcessManager(
            self._settings.manager, logger=self._logger
        )
        self._conversations: dict[str, ConversationController] = {}

    async def __aenter__(self) -> ConvoyService:
        self._manager.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def settings(self) -> ConvoySettings:
        return self._settings

    @property
    def manager(self) -> ProcessManager:
        return self._manager

    @property
    def capabilities(self) -> Capability:
        caps = Capability.STATUS | Capability.SESSION_OVERRIDE
        if self._settings.track_file_changes:
            caps |= Capability.FILE_CHANGES
        return caps

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @property
    def conversation_ids(self) -> list[str]:
        return list(self._conversations)

    def conversation(self, conversation_id: str) -> ConversationController:
        """Get or create the controller for a conversation (started on creation)."""
        controller = self._conversations.get(conversation_id)
        if controller is not None:
            return controller

        tracker = None
        if self._settings.track_file_changes:
            tracker = FileChangeTracker(
                self._settings.defaults.working_dir, logger=self._logger
            )
        controller = ConversationController(
            conversation_id,
            self._manager,
            settings=self._settings.conversation,
            defaults=self._settings.defaults,
            tracker=tracker,
            logger=self._logger,
        )
        controller.start()
        self._conversations[conversation_id] = controller
        return controller

    async def close_conversation(self, conversation_id: str) -> None:
        """Tear down one conversation: controller, process, channel, records."""
        controller = self._conversations.pop(conversation_id, None)
        if controller is not None:
            await controller.close()
            if controller.file_changes is not None:
                controller.file_changes.clear()
        self._manager.destroy_instance(conversation_id)
        self._manager.release_channel(conversation_id)

    async def check_connection(self) -> ConnectionStatus:
        defaults = self._settings.defaults
        return await self._manager.check_connection(
            defaults.executable, defaults.working_dir
        )

    async def close(self) -> None:
        for conversation_id in list(self._conversations):
            await self.close_conversation(conversation_id)
        await self._manager.close()
