"""FileChangeTracker - snapshot, diff and revert files edited by CLI tools.

Before a write/edit tool runs, the file's current content is captured as the
original. When the tool result arrives the new content is captured and diffed.
Records then stay pending until the user reverts or accepts them.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
import difflib
from enum import StrEnum
import logging
from pathlib import Path

from convoy.cli_backends.models import ToolResult, ToolUse
from convoy.file_changes.history import (
    SessionChangesHistory,
    TurnChanges,
    build_history,
    preview,
)

FILE_TOOLS = frozenset({"Edit", "MultiEdit", "Write", "NotebookEdit"})
PATH_KEYS = ("file_path", "notebook_path")


class ChangeKind(StrEnum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


def _read_text(path: Path) -> str | None:
    """File content, or None if it does not exist. Bytes round-trip exactly."""
    try:
        return path.read_bytes().decode("utf-8", errors="surrogateescape")
    except FileNotFoundError:
        return None


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content.encode("utf-8", errors="surrogateescape"))


def count_line_changes(original: str, modified: str) -> tuple[int, int]:
    """(added, removed) line counts of a line diff."""
    matcher = difflib.SequenceMatcher(
        None, original.splitlines(), modified.splitlines(), autojunk=False
    )
    added = removed = 0
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag in ("replace", "delete"):
            removed += i2 - i1
        if tag in ("replace", "insert"):
            added += j2 - j1
    return added, removed


@dataclass(eq=False)
class FileChangeRecord:
    path: Path
    original: str | None  # None: file did not exist
    turn: int
    tool_use_id: str = ""
    modified: str | None = None  # None: file missing after the tool ran
    captured: bool = False
    kind: ChangeKind = ChangeKind.MODIFIED
    lines_added: int = 0
    lines_removed: int = 0
    reverted: bool = False
    accepted: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    modified_at: datetime | None = None

    @property
    def is_new(self) -> bool:
        return self.original is None

    @property
    def has_changes(self) -> bool:
        return self.captured and self.original != self.modified

    def unified_diff(self, context: int = 3) -> str:
        diff = difflib.unified_diff(
            (self.original or "").splitlines(),
            (self.modified or "").splitlines(),
            fromfile=f"a/{self.path.name}" if not self.is_new else "/dev/null",
            tofile=f"b/{self.path.name}" if self.modified is not None else "/dev/null",
            lineterm="",
            n=context,
        )
        return "\n".join(diff)


@dataclass(frozen=True)
class RevertResult:
    path: Path
    success: bool
    conflict: bool = False
    message: str = ""


@dataclass(frozen=True)
class ChangesSummary:
    files_created: int = 0
    files_modified: int = 0
    files_deleted: int = 0
    lines_added: int = 0
    lines_removed: int = 0

    @property
    def total_files(self) -> int:
        return self.files_created + self.files_modified + self.files_deleted


class FileChangeTracker:
    """Per-conversation record of files changed by the CLI's tools."""

    def __init__(
        self,
        working_dir: Path | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._working_dir = working_dir
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._turn = 0
        self._turn_prompt = ""
        self._turn_started = datetime.now()
        # Records opened in the current turn, by path and by tool-use id
        self._open: dict[Path, FileChangeRecord] = {}
        self._by_tool: dict[str, FileChangeRecord] = {}
        self._pending: list[FileChangeRecord] = []
        self._turns: list[TurnChanges] = []

    @property
    def current_turn(self) -> int:
        return self._turn

    @property
    def pending_changes(self) -> list[FileChangeRecord]:
        return list(self._pending)

    @property
    def working_dir(self) -> Path | None:
        return self._working_dir

    @working_dir.setter
    def working_dir(self, value: Path | None) -> None:
        self._working_dir = value

    def begin_turn(self, prompt: str) -> int:
        """Start a new turn; returns its number (1-based)."""
        if self._open:
            self._logger.warning(
                "Turn %d started with %d unfinalized file records",
                self._turn + 1,
                len(self._open),
            )
        self._turn += 1
        self._turn_prompt = prompt
        self._turn_started = datetime.now()
        return self._turn

    @staticmethod
    def is_file_tool(tool: ToolUse) -> bool:
        return tool.name in FILE_TOOLS

    def _resolve(self, raw_path: str) -> Path:
        path = Path(raw_path).expanduser()
        if not path.is_absolute() and self._working_dir is not None:
            path = self._working_dir / path
        return path

    async def on_tool_use(self, tool: ToolUse) -> FileChangeRecord | None:
        """Capture the original content before a write/edit tool runs."""
        if not self.is_file_tool(tool):
            return None
        raw_path = next(
            (tool.input[k] for k in PATH_KEYS if isinstance(tool.input.get(k), str)),
            None,
        )
        if not raw_path:
            return None

        path = self._resolve(raw_path)
        record = self._open.get(path)
        if record is None:
            try:
                original = await asyncio.to_thread(_read_text, path)
            except OSError as e:
                self._logger.warning("Cannot snapshot %s: %s", path, e)
                return None
            record = FileChangeRecord(
                path=path, original=original, turn=self._turn, tool_use_id=tool.id
            )
            self._open[path] = record
            self._logger.debug("Captured original of %s (new=%s)", path, record.is_new)
        if tool.id:
            self._by_tool[tool.id] = record
        return record

    async def on_tool_result(self, result: ToolResult) -> FileChangeRecord | None:
        """Capture the modified content once the matching tool has run."""
        record = self._by_tool.pop(result.tool_use_id, None)
        if record is None:
            return None
        if result.is_error:
            self._logger.debug("Tool failed for %s, nothing captured", record.path)
            return record
        await self._capture(record)
        return record

    async def _capture(self, record: FileChangeRecord) -> None:
        try:
            modified = await asyncio.to_thread(_read_text, record.path)
        except OSError as e:
            self._logger.warning("Cannot read %s after edit: %s", record.path, e)
            return
        record.modified = modified
        record.captured = True
        record.modified_at = datetime.now()
        if record.original is None:
            record.kind = ChangeKind.CREATED
        elif modified is None:
            record.kind = ChangeKind.DELETED
        else:
            record.kind = ChangeKind.MODIFIED
        record.lines_added, record.lines_removed = count_line_changes(
            record.original or "", modified or ""
        )

    async def finalize_turn(self) -> list[FileChangeRecord]:
        """Close the current turn's records and move changed ones to pending.

        Records whose tool result never arrived are captured now; records
        without an actual change are dropped.
        """
        records = list(self._open.values())
        self._open.clear()
        self._by_tool.clear()

        changed = []
        for record in records:
            if not record.captured:
                await self._capture(record)
            if record.has_changes:
                changed.append(record)

        if changed:
            self._turns.append(
                TurnChanges(
                    turn=self._turn,
                    prompt=preview(self._turn_prompt),
                    timestamp=self._turn_started,
                    records=tuple(changed),
                )
            )
            self._pending.extend(changed)
            self._logger.info(
                "Turn %d changed %d file(s)", self._turn, len(changed)
            )
        return changed

    def _is_pending(self, record: FileChangeRecord) -> bool:
        return any(r is record for r in self._pending)

    async def revert_file(self, record: FileChangeRecord) -> RevertResult:
        """Restore the original content of one file.

        Fails without touching disk if the file no longer matches the content
        captured after the edit.
        """
        if not self._is_pending(record):
            return RevertResult(record.path, False, message="No pending change")

        try:
            current = await asyncio.to_thread(_read_text, record.path)
        except OSError as e:
            return RevertResult(record.path, False, message=str(e))
        if current != record.modified:
            self._logger.warning("Revert conflict on %s", record.path)
            return RevertResult(
                record.path,
                False,
                conflict=True,
                message=f"{record.path} was modified after the change was captured",
            )

        try:
            if record.original is None:
                await asyncio.to_thread(record.path.unlink, missing_ok=True)
            else:
                await asyncio.to_thread(_write_text, record.path, record.original)
        except OSError as e:
            self._logger.error("Failed to revert %s: %s", record.path, e)
            return RevertResult(record.path, False, message=str(e))

        record.reverted = True
        self._pending = [r for r in self._pending if r is not record]
        self._logger.info("Reverted %s", record.path)
        return RevertResult(record.path, True)

    async def revert_selected(self, records: list[FileChangeRecord]) -> int:
        """Revert each record independently; returns the number reverted."""
        results = [await self.revert_file(record) for record in records]
        return sum(1 for result in results if result.success)

    async def revert_all(self) -> int:
        # Newest first so stacked edits of one file unwind in order
        return await self.revert_selected(list(reversed(self._pending)))

    def accept_file(self, record: FileChangeRecord) -> bool:
        """Keep the change on disk and drop the pending record."""
        if not self._is_pending(record):
            return False
        record.accepted = True
        self._pending = [r for r in self._pending if r is not record]
        return True

    def accept_selected(self, records: list[FileChangeRecord]) -> int:
        return sum(1 for record in records if self.accept_file(record))

    def accept_all(self) -> int:
        return self.accept_selected(list(self._pending))

    def summary(self) -> ChangesSummary:
        """Counts over pending changes."""
        kinds = [r.kind for r in self._pending]
        return ChangesSummary(
            files_created=kinds.count(ChangeKind.CREATED),
            files_modified=kinds.count(ChangeKind.MODIFIED),
            files_deleted=kinds.count(ChangeKind.DELETED),
            lines_added=sum(r.lines_added for r in self._pending),
            lines_removed=sum(r.lines_removed for r in self._pending),
        )

    def history(self) -> SessionChangesHistory:
        return build_history(self._turns)

    def clear(self) -> None:
        """Forget everything (session teardown)."""
        self._open.clear()
        self._by_tool.clear()
        self._pending.clear()
        self._turns.clear()
        self._turn = 0
        self._turn_prompt = ""
