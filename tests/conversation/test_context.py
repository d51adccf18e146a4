"""Tests for prompt assembly from conversation history."""

from __future__ import annotations

from datetime import datetime

import pytest

from convoy.conversation.context import (
    HISTORY_HEADER,
    REQUEST_HEADER,
    ROLE_ASSISTANT,
    ROLE_USER,
    Message,
    build_prompt,
    strip_continue_prefix,
)


def msg(role: str, content: str) -> Message:
    return Message(role, content, datetime(2026, 1, 1))


class TestBuildPrompt:
    def test_no_history_returns_request(self):
        assert build_prompt([], "hello") == "hello"

    def test_history_sections(self):
        prompt = build_prompt(
            [msg(ROLE_USER, "hi"), msg(ROLE_ASSISTANT, "hello!")], "next"
        )

        assert prompt == "\n".join(
            [
                HISTORY_HEADER,
                "User: hi",
                "",
                "Assistant: hello!",
                "",
                REQUEST_HEADER,
                "next",
            ]
        )

    def test_limit_keeps_most_recent(self):
        history = [msg(ROLE_USER, f"m{i}") for i in range(5)]

        prompt = build_prompt(history, "now", limit=2)

        assert "m2" not in prompt
        assert "User: m3" in prompt
        assert "User: m4" in prompt

    def test_long_messages_truncated(self):
        """
        Contract: History entries are cut at ``truncate`` chars with a marker
        If fail: One long answer blows the prompt past the CLI's limits
        """
        prompt = build_prompt([msg(ROLE_ASSISTANT, "x" * 50)], "now", truncate=10)

        assert "Assistant: " + "x" * 10 + "... [truncated]" in prompt

    def test_blank_history_ignored(self):
        assert build_prompt([msg(ROLE_ASSISTANT, "  ")], "now") == "now"

    def test_zero_limit_disables_history(self):
        assert build_prompt([msg(ROLE_USER, "a")], "now", limit=0) == "now"


class TestContinuePrefix:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("--continue fix it", (True, "fix it")),
            ("-c fix it", (True, "fix it")),
            ("  -C  fix it", (True, "fix it")),
            ("fix -c it", (False, "fix -c it")),
            ("--continued story", (False, "--continued story")),
            ("-c", (False, "-c")),
        ],
    )
    def test_prefix(self, text, expected):
        assert strip_continue_prefix(text) == expected
