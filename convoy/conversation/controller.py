"""ConversationController - per-conversation request state machine.

Drives one conversation on top of the ProcessManager: idle -> sending ->
streaming -> idle, with a bounded message queue, ask-user interrupts,
rate-limit countdown/retry and cancellation. Everything the host needs to
render goes out on ``updates``.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from datetime import datetime
import logging
import types
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from convoy.cli_backends.claude.rate_limit import RateLimitDetector
from convoy.cli_backends.models import (
    ASK_USER_TOOL,
    EventType,
    InstanceEvent,
    InstanceEventKind,
    Question,
    StreamEvent,
    Usage,
)
from convoy.config import ConversationSettings, RequestOptions
from convoy.conversation.context import (
    ROLE_ASSISTANT,
    ROLE_USER,
    Message,
    build_prompt,
    strip_continue_prefix,
)
from convoy.conversation.models import (
    AskUserRequest,
    ContentDelta,
    ConversationUpdate,
    FileChangesUpdated,
    InputRequested,
    QueueChanged,
    QueuedMessage,
    RateLimitStatus,
    RequestState,
    SendReceipt,
    SendStatus,
    StateChanged,
    TurnCompleted,
    TurnFailed,
)
from convoy.conversation.queue import MessageQueue
from convoy.conversation.rate_limit import RateLimitWait
from convoy.errors import ConvoyError

if TYPE_CHECKING:
    from convoy.core.process_manager import ProcessManager
    from convoy.file_changes.tracker import FileChangeTracker


class ConversationController:
    """Routes one conversation's messages to its CLI instance."""

    def __init__(
        self,
        conversation_id: str,
        manager: ProcessManager,
        *,
        settings: ConversationSettings | None = None,
        defaults: RequestOptions | None = None,
        tracker: FileChangeTracker | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.conversation_id = conversation_id
        self._manager = manager
        self._settings = settings or ConversationSettings()
        self._defaults = defaults or RequestOptions()
        self._tracker = tracker
        self._logger = logger if logger is not None else logging.getLogger(__name__)

        self.updates: asyncio.Queue[ConversationUpdate] = asyncio.Queue()
        self._state = RequestState.IDLE
        self._last_error: str | None = None
        self._queue = MessageQueue(conversation_id, self._settings.max_queue_size)
        self._history: list[Message] = []
        self._detector = RateLimitDetector(self._settings.default_retry_seconds)
        self._rate_limit = RateLimitWait(
            self._on_rate_limit_status,
            self._retry_after_rate_limit,
            tick=self._settings.rate_limit_tick,
            logger=self._logger,
        )
        self._consumer: asyncio.Task[None] | None = None

        # Current turn
        self._active_request_id: str | None = None
        self._current_content = ""
        self._current_prompt = ""
        self._current_options: RequestOptions | None = None
        self._accumulated: list[str] = []
        self._usage: Usage | None = None
        self._error_result_text = ""

        # Ask-user interrupt
        self._pending_input: AskUserRequest | None = None
        self._turn_ended_while_waiting = False
        self._pending_answer: str | None = None
        self._auto_answer_task: asyncio.Task[None] | None = None

        # Session
        self._cli_session_id: str | None = None
        self._model_override: str | None = None
        self._auto_accept_override: bool | None = None

    async def __aenter__(self) -> ConversationController:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        await self.close()

    def start(self) -> None:
        """Start consuming this conversation's event channel."""
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume())

    async def close(self) -> None:
        """Stop consuming and abandon any in-flight request."""
        self._rate_limit.cancel()
        if self._state in (RequestState.SENDING, RequestState.STREAMING):
            self._manager.cancel_request(self.conversation_id)
        self._reset_turn()
        if self._consumer is not None:
            self._consumer.cancel()
            with suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None

    # -- Read model ---------------------------------------------------------

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def is_busy(self) -> bool:
        """True while a new message would be queued rather than sent."""
        return (
            self._state is not RequestState.IDLE
            or self._pending_input is not None
            or self._rate_limit.waiting
        )

    @property
    def awaiting_input(self) -> bool:
        return self._pending_input is not None

    @property
    def pending_input(self) -> AskUserRequest | None:
        return self._pending_input

    @property
    def rate_limit(self) -> RateLimitWait:
        return self._rate_limit

    @property
    def queued_messages(self) -> tuple[QueuedMessage, ...]:
        return self._queue.messages

    @property
    def history(self) -> tuple[Message, ...]:
        return tuple(self._history)

    @property
    def cli_session_id(self) -> str | None:
        return self._cli_session_id

    @property
    def file_changes(self) -> FileChangeTracker | None:
        return self._tracker

    @property
    def auto_accept(self) -> bool:
        if self._auto_accept_override is not None:
            return self._auto_accept_override
        return self._settings.auto_accept

    # -- Session overrides ----------------------------------------------------

    def set_model(self, model: str | None) -> None:
        """Override the model for this conversation (None restores the default)."""
        self._model_override = model

    def set_auto_accept(self, enabled: bool | None) -> None:
        """Override auto-accept for this conversation (None uses settings)."""
        self._auto_accept_override = enabled

    # -- Sending --------------------------------------------------------------

    async def send_message(
        self,
        content: str,
        context: dict[str, Any] | None = None,
        options: RequestOptions | None = None,
    ) -> SendReceipt:
        """Send a message now if idle, otherwise queue it.

        Raises:
            QueueFullError: If the message had to be queued and the queue is full
            ConvoyError: If the request could not be started (state is ERROR)
        """
        continue_requested, content = strip_continue_prefix(content)
        if continue_requested:
            options = (options or RequestOptions()).model_copy(
                update={"continue_last_session": True}
            )

        if self.is_busy:
            queued = self._queue.enqueue(content, context, options)
            self._logger.debug(
                "[%s] Queued message %s (%d waiting)",
                self.conversation_id,
                queued.id,
                len(self._queue),
            )
            self._emit_queue()
            return SendReceipt(SendStatus.QUEUED, queued.id)

        message = QueuedMessage(content=content, context=context, options=options)
        request_id = await self._dispatch(message, raise_errors=True)
        return SendReceipt(SendStatus.SENT, message.id, request_id)

    def _request_options(self, overrides: RequestOptions | None) -> RequestOptions:
        options = self._defaults.merged(overrides)
        explicit_model = overrides is not None and "model" in overrides.model_fields_set
        if self._model_override and not explicit_model:
            options = options.model_copy(update={"model": self._model_override})
        return options

    def _build_prompt(self, content: str, options: RequestOptions) -> str:
        if (
            not self._settings.include_history
            or options.resume_session_id
            or options.continue_last_session
        ):
            return content
        return build_prompt(
            self._history,
            content,
            limit=self._settings.history_limit,
            truncate=self._settings.history_truncate,
        )

    async def _dispatch(self, message: QueuedMessage, raise_errors: bool) -> str | None:
        options = self._request_options(message.options)
        prompt = self._build_prompt(message.content, options)
        self._history.append(Message(ROLE_USER, message.content, datetime.now()))
        self._current_content = message.content
        if self._tracker is not None:
            if self._tracker.working_dir is None and options.working_dir is not None:
                self._tracker.working_dir = options.working_dir
            self._tracker.begin_turn(message.content)
        return await self._launch(prompt, options, raise_errors=raise_errors)

    async def _launch(
        self, prompt: str, options: RequestOptions, raise_errors: bool = False
    ) -> str | None:
        """Hand one prompt to the process manager under a fresh request id."""
        request_id = uuid4().hex
        self._active_request_id = request_id
        self._current_prompt = prompt
        self._current_options = options
        self._set_state(RequestState.SENDING)

        try:
            await self._manager.send_prompt(
                self.conversation_id, prompt, options, request_id=request_id
            )
        except ConvoyError as e:
            self._logger.error("[%s] Failed to send prompt: %s", self.conversation_id, e)
            if self._active_request_id == request_id:
                await self._fail(str(e))
            if raise_errors:
                raise
            return None
        return request_id

    async def _drain_queue(self) -> None:
        """Dispatch the head of the queue once nothing is in flight."""
        if self.is_busy:
            return
        message = self._queue.pop_next()
        if message is None:
            return
        self._emit_queue()
        await self._dispatch(message, raise_errors=False)

    # -- Queue editing --------------------------------------------------------

    def remove_queued(self, message_id: str) -> bool:
        removed = self._queue.remove(message_id)
        if removed:
            self._emit_queue()
        return removed

    def update_queued(self, message_id: str, content: str) -> bool:
        updated = self._queue.update(message_id, content)
        if updated:
            self._emit_queue()
        return updated

    def reorder_queue(self, from_index: int, to_index: int) -> bool:
        moved = self._queue.reorder(from_index, to_index)
        if moved:
            self._emit_queue()
        return moved

    def clear_queue(self) -> None:
        if len(self._queue):
            self._queue.clear()
            self._emit_queue()

    # -- User interaction -----------------------------------------------------

    async def send_user_input(self, text: str) -> bool:
        """Answer a pending question, or pass a line to a running process.

        Returns:
            False if there was nothing to answer and stdin was closed
        """
        if self._pending_input is None:
            return self._manager.send_user_input(self.conversation_id, text)
        return await self._answer(text)

    async def respond_to_question(self, answers: list[str]) -> bool:
        return await self.send_user_input(", ".join(answers))

    async def cancel_request(self) -> bool:
        """Abandon the in-flight request and return to idle immediately.

        Returns:
            False if nothing was in flight
        """
        if self._state not in (RequestState.SENDING, RequestState.STREAMING):
            return False

        self._rate_limit.cancel()
        self._manager.cancel_request(self.conversation_id)
        content = "".join(self._accumulated)
        self._reset_turn()
        self._set_state(RequestState.IDLE)
        self._logger.info("[%s] Request cancelled", self.conversation_id)
        if content:
            self._history.append(Message(ROLE_ASSISTANT, content, datetime.now()))
        self._emit(TurnCompleted(self.conversation_id, content, cancelled=True))

        await self._finalize_file_changes()
        await self._drain_queue()
        return True

    async def cancel_rate_limit(self) -> bool:
        """Stop waiting for a rate limit; the request is reported as failed."""
        message = self._rate_limit.message
        if not self._rate_limit.cancel():
            return False
        content = self._current_content
        self._reset_turn()
        self._set_state(RequestState.IDLE)
        self._emit(
            TurnFailed(
                self.conversation_id,
                message or "Rate limit wait cancelled",
                content=content,
            )
        )
        await self._finalize_file_changes()
        await self._drain_queue()
        return True

    async def acknowledge_error(self) -> bool:
        """Leave the error state and resume sending queued messages."""
        if self._state is not RequestState.ERROR:
            return False
        self._last_error = None
        self._set_state(RequestState.IDLE)
        await self._drain_queue()
        return True

    async def reset_session(self) -> None:
        """Start over: drop the queue, history and CLI session."""
        self._rate_limit.cancel()
        if self._state in (RequestState.SENDING, RequestState.STREAMING):
            self._manager.cancel_request(self.conversation_id)
        self._reset_turn()
        self._queue.clear()
        self._emit_queue()
        self._history.clear()
        self._cli_session_id = None
        self._last_error = None
        self._set_state(RequestState.IDLE)

    # -- Event handling ------------------------------------------------------

    async def _consume(self) -> None:
        channel = self._manager.channel(self.conversation_id)
        while True:
            item = await channel.get()
            try:
                await self.handle_event(item.event)
            except Exception:
                self._logger.exception(
                    "[%s] Failed to handle %s event", self.conversation_id, item.event.kind
                )

    async def handle_event(self, event: InstanceEvent) -> None:
        """Apply one instance event; events of other turns are ignored."""
        if event.request_id != self._active_request_id:
            self._logger.debug(
                "[%s] Ignoring %s event of stale request %s",
                self.conversation_id,
                event.kind,
                event.request_id,
            )
            return

        match event.kind:
            case InstanceEventKind.DATA:
                if event.data is not None:
                    await self._handle_data(event.data)
            case InstanceEventKind.COMPLETE:
                await self._handle_complete()
            case InstanceEventKind.ERROR:
                await self._handle_error(event.error or "Unknown error")

    async def _handle_data(self, data: StreamEvent) -> None:
        if self._state is RequestState.SENDING:
            self._set_state(RequestState.STREAMING)

        if data.is_rate_limit:
            retry_after = data.retry_after
            if retry_after is None:
                retry_after = self._settings.default_retry_seconds
            self._start_rate_limit(retry_after, str(data.raw.get("content", "")))
            return

        if data.session_id and data.type in (EventType.SYSTEM, EventType.RESULT):
            self._cli_session_id = data.session_id

        if data.type is EventType.RESULT:
            self._usage = data.usage()
            if data.is_error_result:
                self._error_result_text = data.result_text()
            elif not self._accumulated and data.result_text():
                self._append_text(data.result_text())

        text = data.text()
        if text:
            self._append_text(text)

        for tool in data.tool_uses():
            if tool.name == ASK_USER_TOOL:
                self._request_input(data.questions(), tool.id)
            elif self._tracker is not None:
                await self._tracker.on_tool_use(tool)

        if data.type is EventType.INPUT_REQUEST:
            self._request_input(data.questions(), None)

        if self._tracker is not None:
            for result in data.tool_results():
                await self._tracker.on_tool_result(result)

    def _append_text(self, text: str) -> None:
        self._accumulated.append(text)
        self._emit(ContentDelta(self.conversation_id, text))

    async def _handle_complete(self) -> None:
        if self._pending_input is not None:
            # The answer will resume the session in a new process
            self._turn_ended_while_waiting = True
            self._active_request_id = None
            self._logger.debug(
                "[%s] Turn ended while waiting for user input", self.conversation_id
            )
            return

        if self._pending_answer is not None:
            answer, self._pending_answer = self._pending_answer, None
            await self._resume_with_answer(answer)
            return

        content = "".join(self._accumulated)
        usage = self._usage
        await self._finalize_file_changes()
        if content:
            self._history.append(Message(ROLE_ASSISTANT, content, datetime.now()))
        self._reset_turn()
        self._set_state(RequestState.IDLE)
        self._emit(TurnCompleted(self.conversation_id, content, usage=usage))
        await self._drain_queue()

    async def _handle_error(self, message: str) -> None:
        detect_text = "\n".join(t for t in (message, self._error_result_text) if t)
        info = self._detector.detect(detect_text)
        if info.is_rate_limited:
            self._start_rate_limit(info.retry_after_seconds, info.message)
            return
        await self._fail(message)

    async def _fail(self, message: str) -> None:
        content = self._current_content
        self._logger.error("[%s] Request failed: %s", self.conversation_id, message)
        self._reset_turn()
        self._last_error = message
        self._set_state(RequestState.ERROR)
        self._emit(TurnFailed(self.conversation_id, message, content=content))
        await self._finalize_file_changes()

    async def _finalize_file_changes(self) -> None:
        if self._tracker is None:
            return
        changed = await self._tracker.finalize_turn()
        if changed:
            self._emit(
                FileChangesUpdated(
                    self.conversation_id,
                    self._tracker.current_turn,
                    tuple(str(record.path) for record in changed),
                )
            )

    # -- Ask-user ------------------------------------------------------------

    def _request_input(self, questions: list[Question], tool_use_id: str | None) -> None:
        if not questions or self._active_request_id is None:
            return
        request = AskUserRequest(
            questions=questions,
            request_id=self._active_request_id,
            tool_use_id=tool_use_id,
        )
        self._pending_input = request

        if self.auto_accept:
            request.auto_accepted = True
            request.selected = [q.options[0].label for q in questions if q.options]
            self._logger.info(
                "[%s] Auto-accepting: %s", self.conversation_id, request.selected
            )
            self._emit(InputRequested(self.conversation_id, request))
            self._auto_answer_task = asyncio.create_task(
                self._auto_answer(request, ", ".join(request.selected))
            )
            return

        self._emit(InputRequested(self.conversation_id, request))

    async def _auto_answer(self, request: AskUserRequest, answer: str) -> None:
        if self._settings.auto_accept_delay:
            await asyncio.sleep(self._settings.auto_accept_delay)
        if self._pending_input is request:
            await self._answer(answer)

    async def _answer(self, text: str) -> bool:
        self._pending_input = None
        if self._manager.is_running(self.conversation_id) and self._manager.stdin_open(
            self.conversation_id
        ):
            if self._manager.send_user_input(self.conversation_id, text):
                self._history.append(Message(ROLE_USER, text, datetime.now()))
                return True

        if self._turn_ended_while_waiting:
            self._turn_ended_while_waiting = False
            await self._resume_with_answer(text)
        else:
            # Process still running with stdin closed: resume once it ends
            self._pending_answer = text
        return True

    async def _resume_with_answer(self, text: str) -> None:
        options = self._current_options or self._request_options(None)
        if self._cli_session_id:
            options = options.model_copy(
                update={
                    "resume_session_id": self._cli_session_id,
                    "continue_last_session": False,
                }
            )
        else:
            options = options.model_copy(update={"continue_last_session": True})
        self._history.append(Message(ROLE_USER, text, datetime.now()))
        self._logger.debug("[%s] Resuming with user answer", self.conversation_id)
        await self._launch(text, options)

    # -- Rate limit ----------------------------------------------------------

    def _start_rate_limit(self, retry_after: int, message: str) -> None:
        # The failing call is abandoned; the same prompt is resent after the wait
        self._manager.cancel_request(self.conversation_id)
        self._active_request_id = None
        self._accumulated.clear()
        self._pending_input = None
        self._set_state(RequestState.SENDING)
        self._rate_limit.start(retry_after, message)

    def _on_rate_limit_status(self, waiting: bool, countdown: int, message: str) -> None:
        self._emit(RateLimitStatus(self.conversation_id, waiting, countdown, message))

    async def _retry_after_rate_limit(self) -> None:
        if self._current_options is None:
            return
        self._logger.info("[%s] Retrying after rate limit", self.conversation_id)
        await self._launch(self._current_prompt, self._current_options)

    # -- Helpers -------------------------------------------------------------

    def _reset_turn(self) -> None:
        self._active_request_id = None
        self._current_content = ""
        self._current_prompt = ""
        self._current_options = None
        self._accumulated.clear()
        self._usage = None
        self._error_result_text = ""
        self._pending_input = None
        self._turn_ended_while_waiting = False
        self._pending_answer = None
        task, self._auto_answer_task = self._auto_answer_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _set_state(self, state: RequestState) -> None:
        if state is self._state:
            return
        previous, self._state = self._state, state
        self._logger.debug(
            "[%s] State %s -> %s", self.conversation_id, previous, state
        )
        self._emit(StateChanged(self.conversation_id, state, previous))

    def _emit_queue(self) -> None:
        self._emit(QueueChanged(self.conversation_id, self._queue.messages))

    def _emit(self, update: ConversationUpdate) -> None:
        self.updates.put_nowait(update)
