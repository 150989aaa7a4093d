"""agentwire run — send one prompt to the agent and print its answer."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click

from agentwire.config.models import AgentSettings
from agentwire.config.parser import ConfigError, load_settings
from agentwire.errors import AgentError
from agentwire.model import AgentModel, create_provider
from agentwire.stream import FinishEvent, StreamErrorEvent, TextDeltaEvent

logger = logging.getLogger(__name__)


async def _generate(model: AgentModel, prompt: str) -> None:
    result = await model.generate(prompt)
    click.echo(result.text)
    logger.info(
        "Finished (%s), session %s, cost %s",
        result.finish_reason,
        result.session_id,
        result.run.total_cost_usd,
    )


async def _stream(model: AgentModel, prompt: str) -> int:
    """Print deltas as they arrive; returns the process exit code."""
    async for event in model.stream(prompt):
        match event:
            case TextDeltaEvent():
                click.echo(event.text_delta, nl=False)
            case FinishEvent():
                click.echo()
                logger.info("Finished (%s), session %s", event.finish_reason, event.session_id)
            case StreamErrorEvent():
                click.echo()
                click.echo(f"Error: {event.error}", err=True)
                return 1
    return 0


# ------------------------------------------------------------------ #
# Click command
# ------------------------------------------------------------------ #


@click.command()
@click.argument("prompt")
@click.option("-m", "--model", "model_id", type=str, default=None, help="Model id or alias.")
@click.option(
    "-f", "--config", "config_file", type=click.Path(), help="Config file path."
)
@click.option(
    "--driver",
    type=click.Choice(["sdk", "process"]),
    default=None,
    help="Run in-process through the SDK or as a CLI subprocess.",
)
@click.option("--stream", "stream", is_flag=True, help="Print text as it arrives.")
@click.option(
    "--timeout", "timeout_ms", type=click.IntRange(min=1), default=None,
    help="Run timeout in milliseconds.",
)
@click.option("--max-turns", type=click.IntRange(min=1), default=None, help="Agent turn limit.")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output.")
def run(
    prompt: str,
    model_id: str | None,
    config_file: str | None,
    driver: str | None,
    stream: bool,
    timeout_ms: int | None,
    max_turns: int | None,
    verbose: bool,
) -> None:
    """Send PROMPT to the agent and print the answer (use - to read stdin)."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    if prompt == "-":
        prompt = click.get_text_stream("stdin").read()
    if not prompt.strip():
        click.echo("Error: prompt is empty", err=True)
        raise SystemExit(1)

    try:
        defaults = load_settings(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    overrides = {
        "driver": driver,
        "timeout_ms": timeout_ms,
        "max_turns": max_turns,
        "verbose": True if verbose else None,
    }
    settings = AgentSettings(**{k: v for k, v in overrides.items() if v is not None})
    model = create_provider(defaults)(model_id, settings)

    if stream:
        if asyncio.run(_stream(model, prompt)):
            raise SystemExit(1)
        return

    try:
        asyncio.run(_generate(model, prompt))
    except AgentError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc
