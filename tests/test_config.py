"""Tests for agentwire config models and parser."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pytest
import yaml
from pydantic import ValidationError

from agentwire.config.models import AgentSettings, ProviderSettings, RunConfig
from agentwire.config.parser import ConfigError, load_settings

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: Any) -> Path:
    """Write *data* as YAML and return the file path."""
    path.write_text(yaml.dump(data), encoding="utf-8")
    return path


# ===================================================================
# RunConfig
# ===================================================================


class TestRunConfig:
    def test_defaults(self) -> None:
        cfg = RunConfig(prompt="hi")
        assert cfg.executable == "claude"
        assert cfg.timeout_ms == 300_000
        assert cfg.timeout_s == 300.0
        assert cfg.output_format == "stream-json"
        assert cfg.args == ()
        assert cfg.resolved_cwd() == Path.cwd()

    def test_frozen(self) -> None:
        cfg = RunConfig(prompt="hi")
        with pytest.raises(ValidationError):
            cfg.prompt = "other"  # type: ignore[misc]

    def test_rejects_non_positive_timeout(self) -> None:
        with pytest.raises(ValidationError):
            RunConfig(prompt="hi", timeout_ms=0)

    def test_rejects_unknown_format(self) -> None:
        with pytest.raises(ValidationError):
            RunConfig(prompt="hi", output_format="xml")  # type: ignore[arg-type]

    def test_env_overlay(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AGENTWIRE_BASE", "base")
        cfg = RunConfig(prompt="hi", env={"AGENTWIRE_EXTRA": "x"})
        env = cfg.resolved_env()
        assert env["AGENTWIRE_BASE"] == "base"
        assert env["AGENTWIRE_EXTRA"] == "x"
        assert "AGENTWIRE_EXTRA" not in os.environ


# ===================================================================
# AgentSettings
# ===================================================================


class TestAgentSettings:
    def test_empty_settings_only_add_model(self) -> None:
        assert AgentSettings().to_cli_args("sonnet") == ["--model", "sonnet"]
        assert AgentSettings().to_cli_args() == []

    def test_flag_order(self) -> None:
        settings = AgentSettings(
            max_turns=3,
            system_prompt="sys",
            append_system_prompt="more",
            allowed_tools=["Read", "Bash(git log:*)"],
            disallowed_tools=["Write"],
            permission_mode="acceptEdits",
            mcp_config="mcp.json",
            permission_prompt_tool="mcp__auth__prompt",
            session_id="abc",
            continue_session=True,
            verbose=True,
        )
        assert settings.to_cli_args("opus") == [
            "--model", "opus",
            "--max-turns", "3",
            "--system-prompt", "sys",
            "--append-system-prompt", "more",
            "--allowedTools", "Read,Bash(git log:*)",
            "--disallowedTools", "Write",
            "--permission-mode", "acceptEdits",
            "--mcp-config", "mcp.json",
            "--permission-prompt-tool", "mcp__auth__prompt",
            "--resume", "abc",
            "--continue",
            "--verbose",
        ]

    def test_default_permission_mode_is_omitted(self) -> None:
        assert "--permission-mode" not in AgentSettings(permission_mode="default").to_cli_args()

    def test_continue_alias(self) -> None:
        settings = AgentSettings.model_validate({"continue": True})
        assert settings.continue_session

    def test_unknown_setting_rejected(self) -> None:
        with pytest.raises(ValidationError):
            AgentSettings.model_validate({"max_turn": 3})

    def test_to_run_config(self, tmp_path: Path) -> None:
        settings = AgentSettings(
            cwd=tmp_path, executable="/opt/claude", timeout_ms=500, env={"A": "1"}, max_turns=2
        )
        cfg = settings.to_run_config("do it", "haiku")
        assert cfg.prompt == "do it"
        assert cfg.cwd == tmp_path
        assert cfg.executable == "/opt/claude"
        assert cfg.timeout_ms == 500
        assert cfg.env == {"A": "1"}
        assert cfg.args == ("--model", "haiku", "--max-turns", "2")


# ===================================================================
# ProviderSettings
# ===================================================================


class TestProviderSettingsMerge:
    def test_fills_unset_fields(self) -> None:
        provider = ProviderSettings(executable="/bin/claude", timeout_ms=1000, driver="process")
        merged = provider.merge(AgentSettings(max_turns=2))
        assert merged.executable == "/bin/claude"
        assert merged.timeout_ms == 1000
        assert merged.driver == "process"
        assert merged.max_turns == 2

    def test_model_settings_win(self) -> None:
        provider = ProviderSettings(timeout_ms=1000, permission_mode="plan")
        merged = provider.merge(AgentSettings(timeout_ms=5, permission_mode="acceptEdits"))
        assert merged.timeout_ms == 5
        assert merged.permission_mode == "acceptEdits"

    def test_merge_without_settings(self) -> None:
        merged = ProviderSettings(verbose=True).merge()
        assert merged.verbose is True


# ===================================================================
# Parser
# ===================================================================


class TestLoadSettings:
    def test_no_default_file_gives_defaults(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        assert load_settings() == ProviderSettings()

    def test_default_file_in_cwd(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        _write_yaml(tmp_path / "agentwire.yaml", {"model": "sonnet", "driver": "process"})
        monkeypatch.chdir(tmp_path)
        settings = load_settings()
        assert settings.model == "sonnet"
        assert settings.driver == "process"

    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "nope.yaml")

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "agentwire.yaml"
        path.write_text("", encoding="utf-8")
        assert load_settings(path) == ProviderSettings()

    def test_bad_yaml_reports_location(self, tmp_path: Path) -> None:
        path = tmp_path / "agentwire.yaml"
        path.write_text("model: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid YAML.*line"):
            load_settings(path)

    def test_non_mapping(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "agentwire.yaml", ["a", "b"])
        with pytest.raises(ConfigError, match="Expected a YAML mapping"):
            load_settings(path)

    def test_unknown_key(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "agentwire.yaml", {"timeout": 5})
        with pytest.raises(ConfigError, match="timeout: Unknown setting"):
            load_settings(path)

    def test_invalid_value(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "agentwire.yaml", {"driver": "rpc"})
        with pytest.raises(ConfigError, match="driver: Invalid value"):
            load_settings(path)

    def test_relative_cwd_resolved_against_config_dir(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "agentwire.yaml", {"cwd": "work"})
        settings = load_settings(path)
        assert settings.cwd == (tmp_path / "work").resolve()

    def test_sibling_env_file_loaded(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        # Registers the variable with monkeypatch so teardown removes it.
        monkeypatch.setenv("AGENTWIRE_TEST_TOKEN", "placeholder")
        monkeypatch.delenv("AGENTWIRE_TEST_TOKEN")
        (tmp_path / ".env").write_text("AGENTWIRE_TEST_TOKEN=secret\n", encoding="utf-8")
        path = _write_yaml(tmp_path / "agentwire.yaml", {"verbose": True})
        load_settings(path)
        assert os.environ["AGENTWIRE_TEST_TOKEN"] == "secret"
