"""Tests for the settings check of scripts/verify_cli.py."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path

import pytest

from convoy.config import LOCAL_CONFIG_DIR, LOCAL_CONFIG_FILE

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "verify_cli.py"


@pytest.fixture(scope="module")
def verify_cli():
    spec = importlib.util.spec_from_file_location("verify_cli", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    spec.loader.exec_module(module)
    return module


def write_local(workspace: Path, text: str) -> None:
    path = workspace / LOCAL_CONFIG_DIR / LOCAL_CONFIG_FILE
    path.parent.mkdir(parents=True)
    path.write_text(text)


class TestCheckSettings:
    def test_missing_file_warns(self, verify_cli, tmp_path: Path):
        """
        Contract: No local settings file -> warning, defaults still usable
        If fail: A fresh workspace either fails the check or hides the missing file
        """
        result, settings = verify_cli.check_settings(tmp_path)

        assert result.status is verify_cli.Status.WARN
        assert settings is not None
        assert LOCAL_CONFIG_FILE in result.help_text

    def test_valid_file_ok(self, verify_cli, tmp_path: Path):
        write_local(tmp_path, '{"manager": {"maxInstances": 2}}')

        result, settings = verify_cli.check_settings(tmp_path)

        assert result.status is verify_cli.Status.OK
        assert settings.manager.max_instances == 2

    def test_invalid_file_errors(self, verify_cli, tmp_path: Path):
        write_local(tmp_path, "{not json")

        result, settings = verify_cli.check_settings(tmp_path)

        assert result.status is verify_cli.Status.ERROR
        assert settings is None


class TestPrintResult:
    def test_warning_shows_help(self, verify_cli, capsys):
        result = verify_cli.CheckResult(verify_cli.Status.WARN, "No local settings", "hint")

        verify_cli.print_result("Settings", result)

        assert capsys.readouterr().out == "  [!] Settings: No local settings\n      hint\n"
