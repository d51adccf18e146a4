"""Shared fixtures for CLI backends tests."""

from __future__ import annotations

import pytest

from convoy.cli_backends.claude.parser import ClaudeStreamParser
from convoy.cli_backends.claude.rate_limit import RateLimitDetector


@pytest.fixture
def claude_parser() -> ClaudeStreamParser:
    """Create a fresh stream parser."""
    return ClaudeStreamParser()


@pytest.fixture
def detector() -> RateLimitDetector:
    """Create a rate-limit detector with the default retry delay."""
    return RateLimitDetector()
