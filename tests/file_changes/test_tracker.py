"""Tests for FileChangeTracker: capture, revert and accept."""

from __future__ import annotations

from pathlib import Path

import pytest

from convoy.cli_backends.models import ToolResult, ToolUse
from convoy.file_changes.tracker import (
    ChangeKind,
    FileChangeTracker,
    count_line_changes,
)


@pytest.fixture
def tracker(tmp_path: Path) -> FileChangeTracker:
    return FileChangeTracker(tmp_path)


async def tool_turn(tracker, tool_id, name, path, write, prompt="edit", is_error=False):
    """One turn: tool_use, disk change, tool_result, finalize."""
    tracker.begin_turn(prompt)
    await tracker.on_tool_use(ToolUse(tool_id, name, {"file_path": str(path)}))
    write()
    await tracker.on_tool_result(ToolResult(tool_id, "ok", is_error=is_error))
    return await tracker.finalize_turn()


class TestCapture:
    async def test_modified_file(self, tracker, tmp_path: Path):
        target = tmp_path / "app.py"
        target.write_text("a\nb\nc\n")

        (record,) = await tool_turn(
            tracker, "t1", "Edit", target, lambda: target.write_text("a\nB\nc\nd\n")
        )

        assert record.kind is ChangeKind.MODIFIED
        assert record.original == "a\nb\nc\n"
        assert record.modified == "a\nB\nc\nd\n"
        assert (record.lines_added, record.lines_removed) == (2, 1)
        assert record.turn == 1

    async def test_created_file(self, tracker, tmp_path: Path):
        target = tmp_path / "new.txt"

        (record,) = await tool_turn(
            tracker, "t1", "Write", target, lambda: target.write_text("x\n")
        )

        assert record.kind is ChangeKind.CREATED
        assert record.is_new is True

    async def test_relative_path_resolved_against_working_dir(
        self, tracker, tmp_path: Path
    ):
        target = tmp_path / "rel.txt"
        tracker.begin_turn("p")

        record = await tracker.on_tool_use(ToolUse("t1", "Write", {"file_path": "rel.txt"}))

        assert record.path == target

    async def test_non_file_tools_ignored(self, tracker):
        tracker.begin_turn("p")

        assert await tracker.on_tool_use(ToolUse("t1", "Bash", {"command": "ls"})) is None
        assert await tracker.on_tool_use(ToolUse("t2", "Edit", {})) is None

    async def test_unchanged_file_dropped(self, tracker, tmp_path: Path):
        target = tmp_path / "same.txt"
        target.write_text("same")

        changed = await tool_turn(tracker, "t1", "Edit", target, lambda: None)

        assert changed == []
        assert tracker.pending_changes == []

    async def test_failed_tool_result_captured_at_finalize(self, tracker, tmp_path: Path):
        """
        Contract: A failed tool result captures nothing; finalize still diffs disk
        If fail: Partial writes by a failing tool escape review
        """
        target = tmp_path / "f.txt"
        target.write_text("before")

        changed = await tool_turn(
            tracker, "t1", "Edit", target, lambda: None, is_error=True
        )

        assert changed == []

    async def test_first_original_kept_across_edits_in_turn(
        self, tracker, tmp_path: Path
    ):
        """
        Contract: Several edits to one file in a turn keep the pre-turn original
        If fail: Revert restores an intermediate state instead of the original
        """
        target = tmp_path / "multi.txt"
        target.write_text("v0")
        tracker.begin_turn("p")

        await tracker.on_tool_use(ToolUse("t1", "Edit", {"file_path": str(target)}))
        target.write_text("v1")
        await tracker.on_tool_result(ToolResult("t1"))
        await tracker.on_tool_use(ToolUse("t2", "Edit", {"file_path": str(target)}))
        target.write_text("v2")
        await tracker.on_tool_result(ToolResult("t2"))
        (record,) = await tracker.finalize_turn()

        assert record.original == "v0"
        assert record.modified == "v2"

    async def test_notebook_path_key(self, tracker, tmp_path: Path):
        target = tmp_path / "nb.ipynb"
        tracker.begin_turn("p")

        record = await tracker.on_tool_use(
            ToolUse("t1", "NotebookEdit", {"notebook_path": str(target)})
        )

        assert record is not None
        assert record.path == target


class TestRevert:
    async def test_revert_restores_original(self, tracker, tmp_path: Path):
        target = tmp_path / "app.py"
        target.write_text("original")
        (record,) = await tool_turn(
            tracker, "t1", "Edit", target, lambda: target.write_text("changed")
        )

        result = await tracker.revert_file(record)

        assert result.success is True
        assert target.read_text() == "original"
        assert record.reverted is True
        assert tracker.pending_changes == []

    async def test_revert_created_file_deletes_it(self, tracker, tmp_path: Path):
        target = tmp_path / "new.txt"
        (record,) = await tool_turn(
            tracker, "t1", "Write", target, lambda: target.write_text("x")
        )

        assert (await tracker.revert_file(record)).success is True
        assert not target.exists()

    async def test_revert_deleted_file_recreates_it(self, tracker, tmp_path: Path):
        target = tmp_path / "gone.txt"
        target.write_text("keep me")
        (record,) = await tool_turn(tracker, "t1", "Edit", target, target.unlink)

        assert record.kind is ChangeKind.DELETED
        assert (await tracker.revert_file(record)).success is True
        assert target.read_text() == "keep me"

    async def test_conflict_when_file_changed_since(self, tracker, tmp_path: Path):
        """
        Contract: Revert refuses when disk no longer matches the captured edit
        If fail: Reverting silently destroys the user's later edits
        """
        target = tmp_path / "app.py"
        target.write_text("original")
        (record,) = await tool_turn(
            tracker, "t1", "Edit", target, lambda: target.write_text("changed")
        )
        target.write_text("user edit")

        result = await tracker.revert_file(record)

        assert result.success is False
        assert result.conflict is True
        assert target.read_text() == "user edit"
        assert tracker.pending_changes == [record]

    async def test_revert_all_newest_first(self, tracker, tmp_path: Path):
        a = tmp_path / "a.txt"
        b = tmp_path / "b.txt"
        a.write_text("a0")
        await tool_turn(tracker, "t1", "Edit", a, lambda: a.write_text("a1"))
        await tool_turn(tracker, "t2", "Write", b, lambda: b.write_text("b1"))
        await tool_turn(tracker, "t3", "Edit", a, lambda: a.write_text("a2"))

        assert await tracker.revert_all() == 3

        assert a.read_text() == "a0"
        assert not b.exists()

    async def test_revert_twice_fails(self, tracker, tmp_path: Path):
        target = tmp_path / "x.txt"
        (record,) = await tool_turn(
            tracker, "t1", "Write", target, lambda: target.write_text("x")
        )
        await tracker.revert_file(record)

        assert (await tracker.revert_file(record)).success is False


class TestAccept:
    async def test_accept_keeps_disk_and_clears_pending(self, tracker, tmp_path: Path):
        target = tmp_path / "x.txt"
        (record,) = await tool_turn(
            tracker, "t1", "Write", target, lambda: target.write_text("x")
        )

        assert tracker.accept_file(record) is True
        assert tracker.accept_file(record) is False
        assert record.accepted is True
        assert target.read_text() == "x"
        assert tracker.pending_changes == []

    async def test_accept_all(self, tracker, tmp_path: Path):
        for i in range(3):
            path = tmp_path / f"f{i}.txt"
            await tool_turn(tracker, f"t{i}", "Write", path, lambda p=path: p.write_text("x"))

        assert tracker.accept_all() == 3
        assert tracker.summary().total_files == 0


class TestSummary:
    async def test_summary_counts(self, tracker, tmp_path: Path):
        existing = tmp_path / "e.txt"
        existing.write_text("1\n2\n")
        created = tmp_path / "c.txt"
        await tool_turn(tracker, "t1", "Edit", existing, lambda: existing.write_text("1\n"))
        await tool_turn(tracker, "t2", "Write", created, lambda: created.write_text("a\nb\nc\n"))

        summary = tracker.summary()

        assert summary.files_modified == 1
        assert summary.files_created == 1
        assert summary.total_files == 2
        assert summary.lines_added == 3
        assert summary.lines_removed == 1

    async def test_unified_diff(self, tracker, tmp_path: Path):
        target = tmp_path / "d.txt"
        target.write_text("old\n")
        (record,) = await tool_turn(
            tracker, "t1", "Edit", target, lambda: target.write_text("new\n")
        )

        diff = record.unified_diff()

        assert diff.splitlines()[:2] == ["--- a/d.txt", "+++ b/d.txt"]
        assert "-old" in diff
        assert "+new" in diff

    async def test_clear(self, tracker, tmp_path: Path):
        target = tmp_path / "x.txt"
        await tool_turn(tracker, "t1", "Write", target, lambda: target.write_text("x"))

        tracker.clear()

        assert tracker.current_turn == 0
        assert tracker.pending_changes == []
        assert tracker.history().total_turns == 0


@pytest.mark.parametrize(
    "original, modified, expected",
    [
        ("", "a\nb\n", (2, 0)),
        ("a\nb\n", "", (0, 2)),
        ("a\nb\nc\n", "a\nX\nc\n", (1, 1)),
        ("same\n", "same\n", (0, 0)),
    ],
)
def test_count_line_changes(original, modified, expected):
    assert count_line_changes(original, modified) == expected
