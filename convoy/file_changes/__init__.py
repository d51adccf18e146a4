"""Tracking of files changed by the CLI's write/edit tools."""

from __future__ import annotations

from convoy.file_changes.history import FileHistory, SessionChangesHistory, TurnChanges
from convoy.file_changes.tracker import (
    ChangeKind,
    ChangesSummary,
    FileChangeRecord,
    FileChangeTracker,
    RevertResult,
)

__all__ = [
    "ChangeKind",
    "ChangesSummary",
    "FileChangeRecord",
    "FileChangeTracker",
    "FileHistory",
    "RevertResult",
    "SessionChangesHistory",
    "TurnChanges",
]
