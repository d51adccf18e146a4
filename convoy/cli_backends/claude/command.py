"""Claude CLI invocation: argument building and executable resolution."""

from __future__ import annotations

import os
from pathlib import Path
import sys

from convoy.config import ExecutableConfig, RequestOptions, ScriptType
from convoy.errors import ConfigError

# Always present: structured streaming output with full event detail
BASE_ARGS = ("--output-format", "stream-json", "--verbose")

# Debugger/embedding variables that break a child node process
SCRUBBED_ENV = ("NODE_OPTIONS", "ELECTRON_RUN_AS_NODE", "VSCODE_INSPECTOR_OPTIONS")

SCRIPT_EXTENSIONS: dict[str, ScriptType] = {
    ".bat": ScriptType.BATCH,
    ".cmd": ScriptType.BATCH,
    ".ps1": ScriptType.POWERSHELL,
    ".sh": ScriptType.SHELL,
    ".bash": ScriptType.SHELL,
    ".js": ScriptType.NODE,
    ".mjs": ScriptType.NODE,
    ".cjs": ScriptType.NODE,
    ".py": ScriptType.PYTHON,
}


def _format_number(value: float) -> str:
    return f"{value:g}"


def build_cli_args(options: RequestOptions) -> list[str]:
    """Map request options to CLI flags.

    ``resume_session_id`` wins over ``continue_last_session``; a replacement
    system prompt is dropped when resuming since the session already has one.
    """
    args = list(BASE_ARGS)

    resuming = bool(options.resume_session_id)
    if resuming:
        args += ["--resume", options.resume_session_id]
    elif options.continue_last_session:
        args.append("--continue")

    if options.model:
        args += ["--model", options.model]
    if options.system_prompt and not resuming:
        args += ["--system-prompt", options.system_prompt]
    for tool in options.allowed_tools:
        args += ["--allowedTools", tool]
    if options.max_turns and options.max_turns > 0:
        args += ["--max-turns", str(options.max_turns)]
    if options.max_budget_usd and options.max_budget_usd > 0:
        args += ["--max-budget-usd", _format_number(options.max_budget_usd)]
    if options.fallback_model:
        args += ["--fallback-model", options.fallback_model]
    if options.append_system_prompt:
        args += ["--append-system-prompt", options.append_system_prompt]
    for tool in options.disallowed_tools:
        args += ["--disallowedTools", tool]
    if options.permission_mode:
        args += ["--permission-mode", options.permission_mode.value]
    for beta in options.betas:
        args += ["--betas", beta]
    for directory in options.add_dirs:
        args += ["--add-dir", directory]
    if options.mcp_config:
        args += ["--mcp-config", options.mcp_config]
    if options.agents:
        args += ["--agents", options.agents]
    if options.settings:
        args += ["--settings", options.settings]
    if options.dangerously_skip_permissions:
        args.append("--dangerously-skip-permissions")
    return args


def detect_script_type(script: str) -> ScriptType | None:
    return SCRIPT_EXTENSIONS.get(Path(script).suffix.lower())


def interpreter_for(script_type: ScriptType | None) -> list[str]:
    """Interpreter prefix for a script type ([] runs the script directly)."""
    windows = sys.platform == "win32"
    match script_type:
        case ScriptType.BATCH:
            return ["cmd.exe", "/c"]
        case ScriptType.POWERSHELL:
            return ["powershell.exe", "-ExecutionPolicy", "Bypass", "-File"]
        case ScriptType.SHELL:
            return ["bash.exe" if windows else "/bin/bash"]
        case ScriptType.NODE:
            return ["node"]
        case ScriptType.PYTHON:
            return [sys.executable or ("python" if windows else "python3")]
        case _:
            return []


def resolve_executable(
    executable: ExecutableConfig,
    args: list[str],
    working_dir: Path | None = None,
) -> list[str]:
    """Full argv for the configured executable.

    Raises:
        ConfigError: If a script executable has no script path
    """
    if executable.type == "command":
        return [executable.command or "claude", *args]

    if not executable.script:
        raise ConfigError("Script executable configured without a script path")

    script = Path(executable.script)
    if not script.is_absolute() and working_dir is not None:
        script = working_dir / script
    script_type = executable.script_type or detect_script_type(executable.script)
    return [*interpreter_for(script_type), str(script), *args]


def child_environment() -> dict[str, str]:
    env = dict(os.environ)
    for name in SCRUBBED_ENV:
        env.pop(name, None)
    return env
