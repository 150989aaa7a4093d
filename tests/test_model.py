"""Tests for the generation facade and provider."""

from __future__ import annotations

import asyncio
import math
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import patch

import pytest
from claude_agent_sdk import AssistantMessage, ResultMessage, SystemMessage, TextBlock

from agentwire.cancel import CancelToken
from agentwire.config.models import AgentSettings, ProviderSettings, RunConfig
from agentwire.drivers import Driver, RunResult, create_driver
from agentwire.errors import AgentError
from agentwire.model import AgentModel, Provider, create_provider, parse_json_response

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _messages(text: str, subtype: str = "success") -> list[Any]:
    return [
        SystemMessage(subtype="init", data={"session_id": "m-1"}),
        AssistantMessage(content=[TextBlock(text=text)], model="opus"),
        ResultMessage(
            subtype=subtype,
            duration_ms=10,
            duration_api_ms=8,
            is_error=subtype != "success",
            num_turns=1,
            session_id="m-1",
            total_cost_usd=0.003,
            result=text,
        ),
    ]


def _fake_query(messages: list[Any], *, hang: bool = False) -> Any:
    async def _query(*, prompt: str, options: Any) -> AsyncIterator[Any]:
        for message in messages:
            yield message
        if hang:
            await asyncio.sleep(30)

    return _query


class _Recorder:
    """Driver factory that remembers what it was asked to build."""

    def __init__(self) -> None:
        self.calls: list[tuple[RunConfig, str]] = []

    def __call__(self, config: RunConfig, kind: str) -> Driver:
        self.calls.append((config, kind))
        return create_driver(config, kind)  # type: ignore[arg-type]


class _ExplodingDriver:
    def __init__(self, config: RunConfig, kind: str) -> None:
        self.config = config

    async def execute(self) -> RunResult:
        raise OSError("disk on fire")

    async def execute_streaming(self) -> AsyncIterator[Any]:
        raise OSError("disk on fire")
        yield

    def kill(self) -> None:
        pass


# ------------------------------------------------------------------ #
# JSON responses
# ------------------------------------------------------------------ #


class TestParseJsonResponse:
    def test_bare_json(self) -> None:
        assert parse_json_response('  {"a": 1} ') == {"a": 1}

    def test_fenced_json(self) -> None:
        assert parse_json_response('Here you go:\n```json\n{"a": [1, 2]}\n```') == {"a": [1, 2]}

    def test_fence_without_language(self) -> None:
        assert parse_json_response("```\n[1, 2]\n```") == [1, 2]

    def test_invalid(self) -> None:
        with pytest.raises(ValueError):
            parse_json_response("not json")


# ------------------------------------------------------------------ #
# generate()
# ------------------------------------------------------------------ #


class TestGenerate:
    async def test_returns_text_and_metadata(self) -> None:
        recorder = _Recorder()
        model = AgentModel("opus", AgentSettings(max_turns=2), driver_factory=recorder)
        with patch("agentwire.drivers.sdk.query", new=_fake_query(_messages("Hello!"))):
            result = await model.generate("Say hello")

        assert result.text == "Hello!"
        assert result.finish_reason == "stop"
        assert result.session_id == "m-1"
        assert result.model_id == "opus"
        assert result.raw_prompt == "Say hello"
        assert result.run.total_cost_usd == 0.003
        assert result.object is None
        assert result.warnings == []
        assert math.isnan(result.usage.prompt_tokens)

        config, kind = recorder.calls[0]
        assert kind == "sdk"
        assert config.prompt == "Say hello"
        assert config.args == ("--model", "opus", "--max-turns", "2")

    async def test_driver_kind_from_settings(self) -> None:
        recorder = _Recorder()
        model = AgentModel("opus", AgentSettings(driver="process"), driver_factory=recorder)
        model._make_driver("hi")
        assert recorder.calls[0][1] == "process"

    async def test_message_list_prompt(self) -> None:
        model = AgentModel("opus")
        with patch("agentwire.drivers.sdk.query", new=_fake_query(_messages("ok"))):
            result = await model.generate(
                [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "Hi"}]
            )
        assert result.raw_prompt == "System: Be brief.\n\nUser: Hi"

    async def test_schema_object(self) -> None:
        schema = {"type": "object", "properties": {"n": {"type": "integer"}}}
        model = AgentModel("opus")
        with patch("agentwire.drivers.sdk.query", new=_fake_query(_messages('```json\n{"n": 3}\n```'))):
            result = await model.generate("Count", schema=schema)

        assert result.object == {"n": 3}
        assert "IMPORTANT: Respond with valid JSON" in result.raw_prompt
        assert '"integer"' in result.raw_prompt

    async def test_schema_parse_failure_warns(self) -> None:
        model = AgentModel("opus")
        with patch("agentwire.drivers.sdk.query", new=_fake_query(_messages("no json here"))):
            result = await model.generate("Count", schema={"type": "object"})

        assert result.object is None
        assert result.text == "no json here"
        assert len(result.warnings) == 1
        assert result.warnings[0].startswith("Failed to parse JSON response")

    async def test_error_result_raises(self) -> None:
        model = AgentModel("opus")
        with (
            patch("agentwire.drivers.sdk.query", new=_fake_query(_messages("x", "error_max_turns"))),
            pytest.raises(AgentError) as exc_info,
        ):
            await model.generate("hi")
        assert exc_info.value.kind == "invalid_response"

    async def test_unexpected_exception_wrapped(self) -> None:
        model = AgentModel("opus", driver_factory=_ExplodingDriver)
        with pytest.raises(AgentError) as exc_info:
            await model.generate("hi")
        assert exc_info.value.kind == "process_error"
        assert isinstance(exc_info.value.details, OSError)

    async def test_cancel_token(self) -> None:
        model = AgentModel("opus")
        token = CancelToken()
        with patch("agentwire.drivers.sdk.query", new=_fake_query(_messages("x")[:1], hang=True)):
            task = asyncio.create_task(model.generate("hi", cancel=token))
            await asyncio.sleep(0.05)
            token.cancel()
            with pytest.raises(AgentError) as exc_info:
                await task
        assert exc_info.value.kind == "timeout_error"
        assert exc_info.value.details["cancelled"] is True

    async def test_cancel_before_start(self) -> None:
        model = AgentModel("opus")
        token = CancelToken()
        token.cancel()
        with (
            patch("agentwire.drivers.sdk.query", new=_fake_query(_messages("x")[:1], hang=True)),
            pytest.raises(AgentError) as exc_info,
        ):
            await model.generate("hi", cancel=token)
        assert exc_info.value.kind == "timeout_error"

    async def test_timeout_setting(self) -> None:
        model = AgentModel("opus", AgentSettings(timeout_ms=50))
        with (
            patch("agentwire.drivers.sdk.query", new=_fake_query(_messages("x")[:1], hang=True)),
            pytest.raises(AgentError) as exc_info,
        ):
            await model.generate("hi")
        assert exc_info.value.kind == "timeout_error"
        assert exc_info.value.details == {"timeout": 50}


# ------------------------------------------------------------------ #
# stream()
# ------------------------------------------------------------------ #


class TestStream:
    async def test_events(self) -> None:
        model = AgentModel("opus")
        with patch("agentwire.drivers.sdk.query", new=_fake_query(_messages("Streamed"))):
            events = [e async for e in model.stream("hi")]

        assert [e.type for e in events] == ["response-metadata", "text-delta", "finish"]
        assert events[0].model_id == "opus"
        assert events[0].session_id == "m-1"
        assert events[1].text_delta == "Streamed"
        assert events[2].finish_reason == "stop"

    async def test_cancel_yields_error_event(self) -> None:
        model = AgentModel("opus")
        token = CancelToken()
        events: list[Any] = []
        with patch("agentwire.drivers.sdk.query", new=_fake_query(_messages("x")[:1], hang=True)):
            async for event in model.stream("hi", cancel=token):
                events.append(event)
                if event.type == "response-metadata":
                    token.cancel()

        assert [e.type for e in events] == ["response-metadata", "error"]
        assert events[-1].kind == "timeout_error"

    async def test_failure_yields_error_event(self) -> None:
        model = AgentModel("opus", driver_factory=_ExplodingDriver)
        events = [e async for e in model.stream("hi")]
        assert [e.type for e in events] == ["error"]


# ------------------------------------------------------------------ #
# Provider
# ------------------------------------------------------------------ #


class TestProvider:
    def test_defaults_merge_into_model_settings(self) -> None:
        provider = create_provider(executable="/opt/claude", driver="process", timeout_ms=9)
        model = provider.language_model("opus", AgentSettings(timeout_ms=1))
        assert isinstance(model, AgentModel)
        assert model.model_id == "opus"
        assert model.provider == "claude-code"
        assert model.settings.executable == "/opt/claude"
        assert model.settings.driver == "process"
        assert model.settings.timeout_ms == 1

    def test_aliases(self) -> None:
        provider = create_provider()
        assert isinstance(provider, Provider)
        assert provider("sonnet").model_id == "sonnet"
        assert provider.chat_model("haiku").model_id == "haiku"

    def test_default_model(self) -> None:
        provider = create_provider(ProviderSettings(model="sonnet"))
        assert provider.language_model().model_id == "sonnet"

    def test_settings_plus_overrides(self) -> None:
        provider = create_provider(ProviderSettings(model="sonnet"), verbose=True)
        assert provider.settings.model == "sonnet"
        assert provider.settings.verbose is True
