"""Generation facade: one agent run per call, aggregated or streamed."""

from __future__ import annotations

import contextlib
import json
import logging
import re
import uuid
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from agentwire.aggregate import aggregate_result
from agentwire.cancel import CancelToken
from agentwire.config.models import AgentSettings, ProviderSettings, RunConfig
from agentwire.constants import PROVIDER_NAME, DriverKind, FinishReason
from agentwire.drivers import Driver, RunResult, create_driver
from agentwire.errors import AgentError
from agentwire.prompt import PromptInput, convert_to_prompt
from agentwire.stream import StreamEvent, StreamProjector, Usage

logger = logging.getLogger(__name__)

#: Appended after the schema when a structured response is requested.
JSON_ONLY_INSTRUCTION = (
    "Your response should be ONLY the JSON object, without any additional text, "
    "code blocks, or formatting. Do not wrap it in ```json``` blocks."
)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")

DriverFactory = Callable[[RunConfig, DriverKind], Driver]


def parse_json_response(text: str) -> Any:
    """Decode *text* as JSON, unwrapping a fenced code block if present.

    Raises:
        ValueError: The text is not valid JSON.
    """
    cleaned = text.strip()
    match = _FENCE_RE.search(cleaned)
    if match:
        cleaned = match.group(1).strip() or cleaned
    return json.loads(cleaned)


def with_schema_instruction(prompt: str, schema: Mapping[str, Any]) -> str:
    return (
        f"{prompt}\n\nIMPORTANT: Respond with valid JSON that matches this schema:\n"
        f"{json.dumps(schema, indent=2)}\n\n{JSON_ONLY_INSTRUCTION}"
    )


@dataclass
class GenerateResult:
    """Outcome of :meth:`AgentModel.generate`."""

    text: str
    finish_reason: FinishReason
    run: RunResult
    raw_prompt: str
    model_id: str | None
    object: Any = None
    usage: Usage = field(default_factory=Usage)
    warnings: list[str] = field(default_factory=list)
    response_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def session_id(self) -> str | None:
        return self.run.session_id


class AgentModel:
    """A model id plus settings; every call starts a fresh agent run."""

    def __init__(
        self,
        model_id: str | None,
        settings: AgentSettings | None = None,
        provider: str = PROVIDER_NAME,
        *,
        driver_factory: DriverFactory = create_driver,
    ) -> None:
        self.model_id = model_id
        self.settings = settings or AgentSettings()
        self.provider = provider
        self._driver_factory = driver_factory

    def __repr__(self) -> str:
        return f"AgentModel({self.provider}:{self.model_id or 'default'})"

    def build_prompt(
        self, prompt: PromptInput, schema: Mapping[str, Any] | None = None
    ) -> str:
        text = convert_to_prompt(prompt)
        if schema is not None:
            text = with_schema_instruction(text, schema)
        return text

    def _make_driver(self, prompt: str) -> Driver:
        config = self.settings.to_run_config(prompt, self.model_id)
        return self._driver_factory(config, self.settings.driver or "sdk")

    async def generate(
        self,
        prompt: PromptInput,
        *,
        schema: Mapping[str, Any] | None = None,
        cancel: CancelToken | None = None,
    ) -> GenerateResult:
        """Run the agent to completion and return its final answer.

        With a *schema* the answer is also decoded as JSON into
        ``result.object``; a decode failure only adds a warning.

        Raises:
            AgentError: The run failed, timed out, was cancelled or ended
                without a successful result.
        """
        raw_prompt = self.build_prompt(prompt, schema)
        driver = self._make_driver(raw_prompt)
        unsubscribe = cancel.on_cancel(driver.kill) if cancel is not None else None
        try:
            run = await driver.execute()
            aggregated = aggregate_result(run)
        except AgentError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error during Claude Code execution")
            raise AgentError(
                "process_error",
                f"Unexpected error during Claude Code execution: {exc}",
                details=exc,
            ) from exc
        finally:
            if unsubscribe is not None:
                unsubscribe()

        result = GenerateResult(
            text=aggregated.text,
            finish_reason=aggregated.finish_reason,
            run=run,
            raw_prompt=raw_prompt,
            model_id=self.model_id,
        )
        if schema is not None:
            try:
                result.object = parse_json_response(aggregated.text)
            except ValueError as exc:
                logger.warning("Response was not valid JSON: %s", exc)
                result.warnings.append(f"Failed to parse JSON response: {exc}")
        return result

    async def stream(
        self,
        prompt: PromptInput,
        *,
        schema: Mapping[str, Any] | None = None,
        cancel: CancelToken | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield stream events for one run; failures arrive as an error event."""
        raw_prompt = self.build_prompt(prompt, schema)
        driver = self._make_driver(raw_prompt)
        unsubscribe = cancel.on_cancel(driver.kill) if cancel is not None else None
        projector = StreamProjector(model_id=self.model_id)
        try:
            async with contextlib.aclosing(
                projector.project(driver.execute_streaming())
            ) as events:
                async for event in events:
                    yield event
        finally:
            if unsubscribe is not None:
                unsubscribe()


class Provider:
    """Factory for :class:`AgentModel` sharing provider-wide defaults."""

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        *,
        driver_factory: DriverFactory = create_driver,
    ) -> None:
        self.settings = settings or ProviderSettings()
        self._driver_factory = driver_factory

    def language_model(
        self, model_id: str | None = None, settings: AgentSettings | None = None
    ) -> AgentModel:
        return AgentModel(
            model_id or self.settings.model,
            self.settings.merge(settings),
            driver_factory=self._driver_factory,
        )

    chat_model = language_model
    __call__ = language_model


def create_provider(settings: ProviderSettings | None = None, **defaults: Any) -> Provider:
    """Build a :class:`Provider` from a settings object or keyword defaults."""
    if settings is None:
        settings = ProviderSettings(**defaults)
    elif defaults:
        settings = settings.model_copy(update=defaults)
    return Provider(settings)
