"""Shared fixtures for conversation tests."""

from __future__ import annotations

import pytest

from convoy.config import ConversationSettings
from convoy.conversation.controller import ConversationController

from tests.conversation.fakes import FakeManager


@pytest.fixture
def fake_manager() -> FakeManager:
    return FakeManager()


@pytest.fixture
def settings() -> ConversationSettings:
    """Fast timings so countdowns and auto-accept finish within a test."""
    return ConversationSettings(
        max_queue_size=3, rate_limit_tick=0.01, auto_accept_delay=0.01
    )


@pytest.fixture
async def controller(fake_manager, settings):
    instance = ConversationController("conv-1", fake_manager, settings=settings)
    yield instance
    await instance.close()
