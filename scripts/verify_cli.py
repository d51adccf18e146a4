#!/usr/bin/env python3
"""CLI Verification Script for convoy

Checks that the claude CLI is installed and answers ``--version`` the way
the process manager probes it, and that the workspace's local settings load.

Usage:
    python scripts/verify_cli.py
    python scripts/verify_cli.py --workspace path/to/project --verbose
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
import shutil
import sys

from convoy.config import LOCAL_CONFIG_DIR, LOCAL_CONFIG_FILE, ConvoySettings
from convoy.core.process_manager import ProcessManager
from convoy.errors import ConfigError


class Status(Enum):
    OK = "✓"
    ERROR = "✗"
    WARN = "!"


@dataclass
class CheckResult:
    status: Status
    message: str
    help_text: str | None = None


def check_settings(workspace: Path) -> tuple[CheckResult, ConvoySettings | None]:
    """Load local settings for the workspace."""
    try:
        settings = ConvoySettings.load(workspace)
    except ConfigError as e:
        return CheckResult(Status.ERROR, "Local settings invalid", str(e)), None
    local = workspace / LOCAL_CONFIG_DIR / LOCAL_CONFIG_FILE
    if not local.is_file():
        return (
            CheckResult(
                Status.WARN,
                "No local settings, using defaults",
                f"Optional: create {local}",
            ),
            settings,
        )
    return CheckResult(Status.OK, f"Settings loaded from {local}"), settings


def check_claude_cli(settings: ConvoySettings) -> CheckResult:
    """Check that the configured Claude CLI runs and reports a version."""
    executable = settings.defaults.executable
    if executable.type == "command" and not shutil.which(executable.command):
        return CheckResult(
            Status.ERROR,
            f"{executable.command} not found",
            "Install: npm install -g @anthropic-ai/claude-code",
        )

    manager = ProcessManager(settings.manager)
    status = asyncio.run(
        manager.check_connection(executable, settings.defaults.working_dir)
    )
    if not status.success:
        return CheckResult(
            Status.ERROR,
            "Claude CLI installed but --version failed",
            f"Error: {status.error}",
        )
    return CheckResult(Status.OK, f"Claude CLI found (v{status.version})")


def print_result(name: str, result: CheckResult, verbose: bool = False) -> None:
    print(f"  [{result.status.value}] {name}: {result.message}")
    if result.help_text and (verbose or result.status is not Status.OK):
        print(f"      {result.help_text}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Verify the Claude CLI setup")
    parser.add_argument("--workspace", type=Path, default=Path.cwd())
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    print("Checking convoy requirements...\n")
    results: list[tuple[str, CheckResult]] = []

    settings_result, settings = check_settings(args.workspace)
    results.append(("Settings", settings_result))
    if settings is not None:
        results.append(("Claude CLI", check_claude_cli(settings)))

    for name, result in results:
        print_result(name, result, args.verbose)

    failed = [name for name, result in results if result.status is Status.ERROR]
    print()
    if failed:
        print(f"{len(failed)} check(s) failed: {', '.join(failed)}")
        return 1
    print("All checks passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
