"""Configuration — Pydantic models for agentpty settings."""

from __future__ import annotations

import json
import os
from typing import Any

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, ValidationError

from agentpty.errors import ConfigurationError


class SessionConfig(BaseModel):
    """Capacity policy of the session registry.

    Fixed at registry construction. ``check()`` rejects combinations under
    which automatic eviction cannot keep the registry bounded.
    """

    max_sessions: int = Field(default=20, description="Hard cap on live sessions")
    warning_threshold: int = Field(
        default=15, description="Session count at which a capacity warning is emitted"
    )
    protected_count: int = Field(
        default=8,
        description="Most-recently-used running sessions exempt from LRU eviction",
    )
    grace_period_ms: int = Field(
        default=50,
        description="Delay before the final read after a process is seen to exit",
    )

    def check(self) -> SessionConfig:
        """Validate the limits, raising ConfigurationError on a bad combination."""
        if self.max_sessions < 1:
            raise ConfigurationError(f"max_sessions must be >= 1, got {self.max_sessions}")
        if self.protected_count < 0:
            raise ConfigurationError(
                f"protected_count must be >= 0, got {self.protected_count}"
            )
        if self.grace_period_ms < 0:
            raise ConfigurationError(
                f"grace_period_ms must be >= 0, got {self.grace_period_ms}"
            )
        if self.protected_count >= self.max_sessions:
            raise ConfigurationError(
                f"protected_count ({self.protected_count}) must be lower than "
                f"max_sessions ({self.max_sessions}) or nothing can be evicted"
            )
        if not 0 < self.warning_threshold <= self.max_sessions:
            raise ConfigurationError(
                f"warning_threshold ({self.warning_threshold}) must be between 1 "
                f"and max_sessions ({self.max_sessions})"
            )
        return self


class OutputConfig(BaseModel):
    """Default output caps applied when a tool call does not set its own."""

    max_output_lines: int = Field(default=1000)
    max_output_tokens: int = Field(default=10_000)


class ToolDefaults(BaseModel):
    """Default yield times of the terminal tools."""

    exec_yield_time_ms: int = Field(default=10_000)
    write_yield_time_ms: int = Field(default=250)
    shell: str | None = Field(
        default=None, description="Shell used for commands. Defaults to bash, then /bin/sh."
    )


class AgentptyConfig(BaseModel):
    """Top-level agentpty configuration."""

    sessions: SessionConfig = Field(default_factory=SessionConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    tools: ToolDefaults = Field(default_factory=ToolDefaults)
    base_dir: str = Field(
        default=".", description="Directory relative workdirs are resolved against"
    )

    @classmethod
    def load(cls, config_path: str | None = None) -> AgentptyConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            AGENTPTY_MAX_SESSIONS       - Hard cap on live sessions
            AGENTPTY_WARNING_THRESHOLD  - Session count that triggers a warning
            AGENTPTY_PROTECTED_COUNT    - MRU sessions exempt from eviction
            AGENTPTY_GRACE_PERIOD_MS    - Post-exit grace period before the last read
            AGENTPTY_BASE_DIR           - Base directory for relative workdirs
            AGENTPTY_SHELL              - Shell used to run commands

        Raises:
            ConfigurationError: the file or an env var is malformed, or the
                resulting session limits are inconsistent.
        """
        load_dotenv(find_dotenv(usecwd=True), override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                try:
                    config_data = json.load(f)
                except json.JSONDecodeError as e:
                    raise ConfigurationError(f"{config_path} is not valid JSON: {e}") from e
            if not isinstance(config_data, dict):
                raise ConfigurationError(f"{config_path} must contain a JSON object")

        sessions = _section(config_data, "sessions")
        for env_name, key in (
            ("AGENTPTY_MAX_SESSIONS", "max_sessions"),
            ("AGENTPTY_WARNING_THRESHOLD", "warning_threshold"),
            ("AGENTPTY_PROTECTED_COUNT", "protected_count"),
            ("AGENTPTY_GRACE_PERIOD_MS", "grace_period_ms"),
        ):
            value = os.environ.get(env_name)
            if value:
                try:
                    sessions[key] = int(value)
                except ValueError:
                    raise ConfigurationError(
                        f"{env_name} must be an integer, got {value!r}"
                    ) from None
        config_data["sessions"] = sessions

        env_base_dir = os.environ.get("AGENTPTY_BASE_DIR")
        if env_base_dir:
            config_data["base_dir"] = env_base_dir

        tools = _section(config_data, "tools")
        env_shell = os.environ.get("AGENTPTY_SHELL")
        if env_shell:
            tools["shell"] = env_shell
        config_data["tools"] = tools
        config_data["output"] = _section(config_data, "output")

        try:
            config = cls.model_validate(config_data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
        config.sessions.check()
        return config


def _section(config_data: dict[str, Any], name: str) -> dict[str, Any]:
    """Return a config section as a dict, treating a missing or null one as empty."""
    section = config_data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"'{name}' must be an object, got {type(section).__name__}")
    return section
