"""Pydantic v2 models for run, model and provider configuration."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from agentwire.constants import (
    DEFAULT_EXECUTABLE,
    DEFAULT_TIMEOUT_MS,
    DriverKind,
    OutputFormat,
    PermissionMode,
)


class RunConfig(BaseModel):
    """Everything a driver needs for one run. Read-only once built."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    prompt: str = Field(description="Prompt text written to the agent")
    cwd: Path | None = Field(
        default=None,
        description="Working directory; defaults to the current directory at spawn",
    )
    executable: str = Field(
        default=DEFAULT_EXECUTABLE,
        description="Agent executable name or path",
    )
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Environment variables overlaid on os.environ",
    )
    timeout_ms: int = Field(
        default=DEFAULT_TIMEOUT_MS,
        gt=0,
        description="Wall-clock timeout for the whole run",
    )
    output_format: OutputFormat = Field(
        default="stream-json",
        description="Agent output format",
    )
    verbose: bool = Field(default=False, description="Verbose logging for this run")
    args: tuple[str, ...] = Field(
        default=(),
        description="Extra CLI arguments (model, max turns, tools, ...)",
    )

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000

    def resolved_cwd(self) -> Path:
        return self.cwd if self.cwd is not None else Path.cwd()

    def resolved_env(self) -> dict[str, str]:
        """``os.environ`` with the configured overlay applied."""
        return {**os.environ, **self.env}


class AgentSettings(BaseModel):
    """Per-model settings that become agent CLI flags."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    max_turns: int | None = Field(default=None, ge=1)
    system_prompt: str | None = Field(
        default=None, description="Replaces the agent's default system prompt"
    )
    append_system_prompt: str | None = Field(
        default=None, description="Appended to the agent's system prompt"
    )
    allowed_tools: list[str] | None = Field(
        default=None, description="Tool names or patterns like 'Bash(npm install)'"
    )
    disallowed_tools: list[str] | None = Field(default=None)
    permission_mode: PermissionMode | None = Field(default=None)
    mcp_config: str | None = Field(default=None, description="MCP config file path")
    permission_prompt_tool: str | None = Field(
        default=None, description="MCP tool for permission prompts (mcp__server__tool)"
    )
    cwd: Path | None = Field(default=None)
    executable: str | None = Field(default=None)
    timeout_ms: int | None = Field(default=None, gt=0)
    verbose: bool | None = Field(default=None)
    env: dict[str, str] | None = Field(default=None)
    session_id: str | None = Field(
        default=None, description="Session to resume"
    )
    continue_session: bool = Field(
        default=False,
        alias="continue",
        description="Continue the most recent conversation",
    )
    driver: DriverKind | None = Field(
        default=None, description="Execution strategy: in-process SDK or subprocess"
    )

    def to_cli_args(self, model_id: str | None = None) -> list[str]:
        """Build the configuration-derived agent CLI flags."""
        args: list[str] = []
        if model_id:
            args.extend(["--model", model_id])
        if self.max_turns is not None:
            args.extend(["--max-turns", str(self.max_turns)])
        if self.system_prompt:
            args.extend(["--system-prompt", self.system_prompt])
        if self.append_system_prompt:
            args.extend(["--append-system-prompt", self.append_system_prompt])
        if self.allowed_tools:
            args.extend(["--allowedTools", ",".join(self.allowed_tools)])
        if self.disallowed_tools:
            args.extend(["--disallowedTools", ",".join(self.disallowed_tools)])
        if self.permission_mode and self.permission_mode != "default":
            args.extend(["--permission-mode", self.permission_mode])
        if self.mcp_config:
            args.extend(["--mcp-config", self.mcp_config])
        if self.permission_prompt_tool:
            args.extend(["--permission-prompt-tool", self.permission_prompt_tool])
        if self.session_id:
            args.extend(["--resume", self.session_id])
        if self.continue_session:
            args.append("--continue")
        if self.verbose:
            args.append("--verbose")
        return args

    def to_run_config(
        self,
        prompt: str,
        model_id: str | None = None,
        output_format: OutputFormat = "stream-json",
    ) -> RunConfig:
        """Combine these settings with a prompt into a :class:`RunConfig`."""
        return RunConfig(
            prompt=prompt,
            cwd=self.cwd,
            executable=self.executable or DEFAULT_EXECUTABLE,
            env=self.env or {},
            timeout_ms=self.timeout_ms or DEFAULT_TIMEOUT_MS,
            output_format=output_format,
            verbose=bool(self.verbose),
            args=tuple(self.to_cli_args(model_id)),
        )


class ProviderSettings(BaseModel):
    """Provider-wide defaults, applied where model settings are silent."""

    model_config = ConfigDict(extra="forbid")

    executable: str | None = None
    cwd: Path | None = None
    env: dict[str, str] | None = None
    timeout_ms: int | None = Field(default=None, gt=0)
    verbose: bool | None = None
    permission_mode: PermissionMode | None = None
    mcp_config: str | None = None
    allowed_tools: list[str] | None = None
    disallowed_tools: list[str] | None = None
    driver: DriverKind | None = None
    model: str | None = Field(
        default=None, description="Default model id for the command line"
    )

    def merge(self, settings: AgentSettings | None = None) -> AgentSettings:
        """Return *settings* with unset fields filled from these defaults."""
        settings = settings or AgentSettings()
        defaults = self.model_dump(exclude_none=True, exclude={"model"})
        missing = {
            key: value
            for key, value in defaults.items()
            if getattr(settings, key) is None
        }
        return settings.model_copy(update=missing)
