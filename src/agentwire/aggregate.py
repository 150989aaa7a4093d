"""Reduce a completed run to its final text."""

from __future__ import annotations

from dataclasses import dataclass

from agentwire.constants import FinishReason
from agentwire.drivers.base import RunResult
from agentwire.errors import AgentError
from agentwire.records.models import AssistantRecord, ResultRecord
from agentwire.records.text import extract_text


def map_finish_reason(subtype: str | None) -> FinishReason:
    match subtype:
        case "success":
            return "stop"
        case "error_max_turns":
            return "length"
        case "error_during_execution":
            return "error"
    return "unknown"


@dataclass
class AggregatedText:
    """Final answer of a successful run."""

    text: str
    finish_reason: FinishReason
    result: ResultRecord
    session_id: str | None


def aggregate_result(run: RunResult) -> AggregatedText:
    """Pick the final text out of a run's message log.

    The last assistant record's text wins; the terminal record's own
    ``result`` string is the fallback.

    Raises:
        AgentError: ``process_error`` for a failed run, ``invalid_response``
            when the run did not end in a successful result record.
    """
    if not run.success:
        raise AgentError(
            "process_error",
            run.error or "Claude Code execution failed",
            details=run,
            session_id=run.session_id,
        )

    terminal = next(
        (m for m in reversed(run.messages) if isinstance(m, ResultRecord)), None
    )
    if terminal is None or not terminal.is_success:
        raise AgentError(
            "invalid_response",
            "No valid result found in Claude Code response",
            details=run.messages,
            session_id=run.session_id,
        )

    last_assistant = next(
        (m for m in reversed(run.messages) if isinstance(m, AssistantRecord)), None
    )
    text = extract_text(last_assistant) if last_assistant is not None else ""
    if not text and terminal.result:
        text = terminal.result

    return AggregatedText(
        text=text,
        finish_reason=map_finish_reason(terminal.subtype),
        result=terminal,
        session_id=run.session_id,
    )
