"""Shared fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
import textwrap

import pytest

from convoy.config import ExecutableConfig, ScriptType


@pytest.fixture
def fake_cli(tmp_path: Path) -> Callable[[str], ExecutableConfig]:
    """Write a stand-in CLI script and return an executable config running it."""

    def make(body: str, name: str = "fake_claude.py") -> ExecutableConfig:
        script = tmp_path / name
        script.write_text(textwrap.dedent(body), encoding="utf-8")
        return ExecutableConfig(
            type="script", script=str(script), script_type=ScriptType.PYTHON
        )

    return make
