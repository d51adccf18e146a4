"""Configuration for the Claude CLI orchestration layer.

Module constants hold the defaults; the pydantic models below are what the
rest of the package passes around. Local overrides live in
``<workspace>/.convoy/claude.local.json`` and accept camelCase or snake_case
keys.
"""

from __future__ import annotations

from enum import StrEnum
import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from convoy.errors import ConfigError

# Executable
DEFAULT_COMMAND = "claude"

# Process manager
MAX_INSTANCES = 5
IDLE_TIMEOUT = 300.0  # seconds without activity before eviction
SWEEP_INTERVAL = 60.0
CONNECTION_TIMEOUT = 10.0
TERMINATE_GRACE = 5.0  # SIGTERM -> SIGKILL

# Conversation
MAX_QUEUE_SIZE = 10
DEFAULT_RETRY_SECONDS = 60
RATE_LIMIT_TICK = 1.0
AUTO_ACCEPT_DELAY = 0.5
HISTORY_LIMIT = 10
HISTORY_TRUNCATE = 2000

LOCAL_CONFIG_DIR = ".convoy"
LOCAL_CONFIG_FILE = "claude.local.json"


class PermissionMode(StrEnum):
    DEFAULT = "default"
    PLAN = "plan"
    ACCEPT_EDITS = "accept-edits"


class ScriptType(StrEnum):
    BATCH = "batch"
    POWERSHELL = "powershell"
    SHELL = "shell"
    NODE = "node"
    PYTHON = "python"


class _Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class ExecutableConfig(_Model):
    """How the CLI is launched: a command on PATH or an interpreted script."""

    type: Literal["command", "script"] = "command"
    command: str = DEFAULT_COMMAND
    script: str | None = None
    script_type: ScriptType | None = None


class RequestOptions(_Model):
    """Per-turn options, mapped 1:1 to CLI flags."""

    working_dir: Path | None = None
    model: str | None = None
    system_prompt: str | None = None
    append_system_prompt: str | None = None
    allowed_tools: list[str] = Field(default_factory=list)
    disallowed_tools: list[str] = Field(default_factory=list)
    resume_session_id: str | None = None
    continue_last_session: bool = False
    max_turns: int | None = None
    max_budget_usd: float | None = None
    fallback_model: str | None = None
    permission_mode: PermissionMode | None = None
    betas: list[str] = Field(default_factory=list)
    add_dirs: list[str] = Field(default_factory=list)
    mcp_config: str | None = None
    agents: str | None = None
    settings: str | None = None
    dangerously_skip_permissions: bool = False
    executable: ExecutableConfig = Field(default_factory=ExecutableConfig)
    # Keep stdin open after the prompt so send_user_input can answer questions
    interactive: bool = False

    def merged(self, overrides: RequestOptions | None) -> RequestOptions:
        """Return a copy with every field explicitly set on ``overrides`` applied."""
        data = self.model_dump()
        if overrides is not None:
            data.update(overrides.model_dump(exclude_unset=True))
        return type(self).model_validate(data)


class ManagerConfig(_Model):
    max_instances: int = Field(default=MAX_INSTANCES, ge=1)
    idle_timeout: float = Field(default=IDLE_TIMEOUT, ge=0)
    sweep_interval: float = Field(default=SWEEP_INTERVAL, gt=0)
    connection_timeout: float = Field(default=CONNECTION_TIMEOUT, gt=0)
    terminate_grace: float = Field(default=TERMINATE_GRACE, ge=0)


class ConversationSettings(_Model):
    max_queue_size: int = Field(default=MAX_QUEUE_SIZE, ge=1)
    auto_accept: bool = False
    auto_accept_delay: float = Field(default=AUTO_ACCEPT_DELAY, ge=0)
    default_retry_seconds: int = Field(default=DEFAULT_RETRY_SECONDS, ge=0)
    rate_limit_tick: float = Field(default=RATE_LIMIT_TICK, gt=0)
    include_history: bool = True
    history_limit: int = Field(default=HISTORY_LIMIT, ge=0)
    history_truncate: int = Field(default=HISTORY_TRUNCATE, ge=1)


class ConvoySettings(_Model):
    """Top-level settings bundle used by ConvoyService."""

    manager: ManagerConfig = Field(default_factory=ManagerConfig)
    conversation: ConversationSettings = Field(default_factory=ConversationSettings)
    defaults: RequestOptions = Field(default_factory=RequestOptions)
    track_file_changes: bool = True

    @classmethod
    def load(cls, workspace: Path | str) -> ConvoySettings:
        """Load local settings for a workspace, falling back to defaults.

        Args:
            workspace: Workspace root directory

        Returns:
            Settings with ``defaults.working_dir`` pointing at the workspace
            unless the file sets one.

        Raises:
            ConfigError: If the local config file exists but is invalid
        """
        root = Path(workspace)
        path = root / LOCAL_CONFIG_DIR / LOCAL_CONFIG_FILE
        data: dict = {}
        if path.is_file():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigError(f"Cannot read {path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"{path} must contain a JSON object")

        try:
            settings = cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings in {path}: {e}") from e

        if settings.defaults.working_dir is None:
            settings.defaults.working_dir = root
        elif not settings.defaults.working_dir.is_absolute():
            settings.defaults.working_dir = root / settings.defaults.working_dir
        return settings
