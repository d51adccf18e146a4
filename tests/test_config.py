"""Tests for settings loading and request option merging."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from convoy.config import (
    LOCAL_CONFIG_DIR,
    LOCAL_CONFIG_FILE,
    MAX_INSTANCES,
    ConvoySettings,
    PermissionMode,
    RequestOptions,
    ScriptType,
)
from convoy.errors import ConfigError


def write_local(workspace: Path, data) -> None:
    path = workspace / LOCAL_CONFIG_DIR / LOCAL_CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data) if not isinstance(data, str) else data)


class TestLoad:
    def test_defaults_without_file(self, tmp_path: Path):
        settings = ConvoySettings.load(tmp_path)

        assert settings.manager.max_instances == MAX_INSTANCES
        assert settings.defaults.working_dir == tmp_path
        assert settings.track_file_changes is True

    def test_camel_case_keys(self, tmp_path: Path):
        """
        Contract: Local config accepts camelCase keys
        If fail: Settings shared with the editor extension are ignored
        """
        write_local(
            tmp_path,
            {
                "manager": {"maxInstances": 2, "idleTimeout": 30},
                "conversation": {"autoAccept": True},
                "defaults": {
                    "model": "opus",
                    "permissionMode": "plan",
                    "executable": {"type": "script", "script": "bin/claude.ps1"},
                },
            },
        )

        settings = ConvoySettings.load(tmp_path)

        assert settings.manager.max_instances == 2
        assert settings.manager.idle_timeout == 30
        assert settings.conversation.auto_accept is True
        assert settings.defaults.model == "opus"
        assert settings.defaults.permission_mode is PermissionMode.PLAN
        assert settings.defaults.executable.script == "bin/claude.ps1"

    def test_relative_working_dir_resolved(self, tmp_path: Path):
        write_local(tmp_path, {"defaults": {"working_dir": "sub"}})

        assert ConvoySettings.load(tmp_path).defaults.working_dir == tmp_path / "sub"

    @pytest.mark.parametrize(
        "data",
        ["{not json", [1, 2], {"manager": {"max_instances": 0}}],
    )
    def test_invalid_file_raises(self, tmp_path: Path, data):
        write_local(tmp_path, data)

        with pytest.raises(ConfigError):
            ConvoySettings.load(tmp_path)

    def test_script_type_value(self, tmp_path: Path):
        write_local(
            tmp_path,
            {"defaults": {"executable": {"type": "script", "script": "c", "scriptType": "node"}}},
        )

        executable = ConvoySettings.load(tmp_path).defaults.executable
        assert executable.script_type is ScriptType.NODE


class TestMerged:
    def test_only_explicit_fields_override(self):
        """
        Contract: Per-message options override defaults field by field
        If fail: Sending with one option resets every configured default
        """
        defaults = RequestOptions(model="sonnet", max_turns=3, allowed_tools=["Read"])

        merged = defaults.merged(RequestOptions(max_turns=9))

        assert merged.model == "sonnet"
        assert merged.max_turns == 9
        assert merged.allowed_tools == ["Read"]

    def test_none_keeps_defaults(self):
        defaults = RequestOptions(model="sonnet")

        assert defaults.merged(None) == defaults

    def test_nested_executable_stays_typed(self):
        defaults = RequestOptions()

        merged = defaults.merged(
            RequestOptions.model_validate({"executable": {"command": "/opt/claude"}})
        )

        assert merged.executable.command == "/opt/claude"
        assert merged.executable.type == "command"
