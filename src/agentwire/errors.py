"""Classified errors raised by drivers, the aggregator and the facade."""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ErrorKind = Literal[
    "process_error",
    "timeout_error",
    "parsing_error",
    "session_error",
    "permission_error",
    "invalid_response",
]

#: Agent stderr wording that identifies a failed session lookup.
_SESSION_RE = re.compile(
    r"no conversation found|session (?:id )?not found|invalid session", re.IGNORECASE
)

#: Agent stderr wording that identifies a refused permission.
_PERMISSION_RE = re.compile(r"permission (?:denied|required)|not permitted", re.IGNORECASE)


class AgentError(Exception):
    """A classified failure from one agent run.

    ``kind`` tells callers how the run failed; ``details`` carries whatever
    diagnostic payload was at hand (captured stdout/stderr, the message log,
    the underlying exception).
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        code: str | None = None,
        details: Any = None,
        session_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind: ErrorKind = kind
        self.message = message
        self.code = code
        self.details = details
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Claude Code Error ({self.kind}): {self.message}"

    def __repr__(self) -> str:
        return f"AgentError(kind={self.kind!r}, message={self.message!r})"

    def to_payload(self) -> ErrorPayload:
        """Render this error in the wire shape used by API facades."""
        details = self.details
        if isinstance(details, BaseException):
            details = repr(details)
        return ErrorPayload(
            error=ErrorBody(
                type=self.kind,
                message=self.message,
                code=self.code,
                details=details,
                session_id=self.session_id,
            )
        )


class ErrorBody(BaseModel):
    """Inner object of an :class:`ErrorPayload`."""

    model_config = ConfigDict(populate_by_name=True)

    type: ErrorKind
    message: str
    code: str | None = None
    details: Any = None
    session_id: str | None = Field(default=None, alias="sessionId")


class ErrorPayload(BaseModel):
    """``{"error": {...}}`` envelope for serialised agent errors."""

    error: ErrorBody


def error_to_message(payload: ErrorPayload) -> str:
    """Human-readable one-liner for a serialised error."""
    return f"Claude Code Error ({payload.error.type}): {payload.error.message}"


def is_agent_error(obj: object) -> bool:
    return isinstance(obj, AgentError)


def classify_failure(stderr_text: str) -> ErrorKind:
    """Map the agent's own failure output onto an error kind."""
    if _SESSION_RE.search(stderr_text):
        return "session_error"
    if _PERMISSION_RE.search(stderr_text):
        return "permission_error"
    return "process_error"


def format_stderr_preview(stderr_text: str, max_lines: int = 5) -> str:
    """Extract and format the last N non-empty lines from stderr output."""
    lines = [line for line in stderr_text.split("\n") if line.strip()]
    last = lines[-max_lines:] if len(lines) > max_lines else lines
    return "\n  ".join(last)
