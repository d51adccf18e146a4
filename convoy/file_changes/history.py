"""Session-wide file change history: by turn and by file."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from convoy.file_changes.tracker import FileChangeRecord

PROMPT_PREVIEW = 100
REVERTED_STATE = "reverted"


def preview(prompt: str, limit: int = PROMPT_PREVIEW) -> str:
    prompt = " ".join(prompt.split())
    return prompt if len(prompt) <= limit else prompt[:limit] + "..."


@dataclass(frozen=True)
class TurnChanges:
    """Files changed by one turn."""

    turn: int
    prompt: str
    timestamp: datetime
    records: tuple[FileChangeRecord, ...]

    @property
    def lines_added(self) -> int:
        return sum(r.lines_added for r in self.records)

    @property
    def lines_removed(self) -> int:
        return sum(r.lines_removed for r in self.records)


@dataclass(frozen=True)
class FileHistory:
    """Latest state and cumulative deltas of one file over the session."""

    path: Path
    change_count: int
    final_state: str  # ChangeKind value, or "reverted"
    lines_added: int
    lines_removed: int
    last_modified: datetime


@dataclass(frozen=True)
class SessionChangesHistory:
    turns: tuple[TurnChanges, ...]
    files: tuple[FileHistory, ...]

    @property
    def total_turns(self) -> int:
        return len(self.turns)

    @property
    def total_files(self) -> int:
        return len(self.files)

    @property
    def lines_added(self) -> int:
        return sum(f.lines_added for f in self.files)

    @property
    def lines_removed(self) -> int:
        return sum(f.lines_removed for f in self.files)


def build_history(turns: Iterable[TurnChanges]) -> SessionChangesHistory:
    """Aggregate turn entries (chronological) into per-file summaries.

    Files are sorted by change count, most changed first.
    """
    turns = tuple(sorted(turns, key=lambda t: t.turn))
    by_file: dict[Path, list[FileChangeRecord]] = {}
    for entry in turns:
        for record in entry.records:
            by_file.setdefault(record.path, []).append(record)

    files = []
    for path, records in by_file.items():
        latest = records[-1]
        files.append(
            FileHistory(
                path=path,
                change_count=len(records),
                final_state=REVERTED_STATE if latest.reverted else latest.kind.value,
                lines_added=sum(r.lines_added for r in records),
                lines_removed=sum(r.lines_removed for r in records),
                last_modified=latest.modified_at or latest.created_at,
            )
        )
    files.sort(key=lambda f: (-f.change_count, str(f.path)))
    return SessionChangesHistory(turns=turns, files=tuple(files))
