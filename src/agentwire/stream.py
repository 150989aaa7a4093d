"""Projects a record stream into text deltas and one terminal event."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import math
import uuid
from collections.abc import AsyncGenerator, AsyncIterator
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag

from agentwire.aggregate import map_finish_reason
from agentwire.constants import FinishReason
from agentwire.drivers.base import StreamChunk
from agentwire.errors import AgentError, ErrorKind
from agentwire.records.models import AssistantRecord, ResultRecord, SystemRecord
from agentwire.records.text import extract_text

logger = logging.getLogger(__name__)


class Usage(BaseModel):
    """Token usage; the agent does not report it, so both counts are NaN."""

    prompt_tokens: float = math.nan
    completion_tokens: float = math.nan


class _StreamEventBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ResponseMetadataEvent(_StreamEventBase):
    """Emitted once when the agent announces its session."""

    type: Literal["response-metadata"] = "response-metadata"
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    model_id: str | None = None
    session_id: str | None = None


class TextDeltaEvent(_StreamEventBase):
    """New assistant text since the previous delta."""

    type: Literal["text-delta"] = "text-delta"
    text_delta: str


class FinishEvent(_StreamEventBase):
    """Normal end of the stream."""

    type: Literal["finish"] = "finish"
    finish_reason: FinishReason
    usage: Usage = Field(default_factory=Usage)
    session_id: str | None = None
    total_cost_usd: float | None = None


class StreamErrorEvent(_StreamEventBase):
    """Abnormal end of the stream."""

    type: Literal["error"] = "error"
    error: str
    kind: ErrorKind | None = None


def _stream_event_discriminator(v: Any) -> str:
    if isinstance(v, dict):
        return str(v.get("type", ""))
    return str(getattr(v, "type", ""))


StreamEvent = Annotated[
    Annotated[ResponseMetadataEvent, Tag("response-metadata")]
    | Annotated[TextDeltaEvent, Tag("text-delta")]
    | Annotated[FinishEvent, Tag("finish")]
    | Annotated[StreamErrorEvent, Tag("error")],
    Discriminator(_stream_event_discriminator),
]
"""Discriminated union of all stream event types."""


class StreamState(enum.Enum):
    AWAITING_START = "awaiting_start"
    STREAMING = "streaming"
    DONE = "done"


class StreamProjector:
    """Projects one run's chunks into stream events.

    Events come out as: at most one ``response-metadata``, any number of
    ``text-delta``, then exactly one ``finish`` or ``error``. A delta is
    only emitted when the newly extracted assistant text extends what was
    already emitted; text that is shorter or diverges emits nothing.
    """

    def __init__(self, model_id: str | None = None) -> None:
        self._model_id = model_id
        self._state = StreamState.AWAITING_START
        self._emitted = ""
        self._used = False

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def text(self) -> str:
        """All text emitted as deltas so far."""
        return self._emitted

    def _advance(self, text: str) -> str:
        if len(text) <= len(self._emitted) or not text.startswith(self._emitted):
            return ""
        delta = text[len(self._emitted):]
        self._emitted = text
        return delta

    async def project(
        self, chunks: AsyncGenerator[StreamChunk, None]
    ) -> AsyncIterator[StreamEvent]:
        """Consume *chunks* once, yielding stream events."""
        if self._used:
            msg = "StreamProjector consumes exactly one stream"
            raise RuntimeError(msg)
        self._used = True

        terminal: ResultRecord | None = None
        try:
            async with contextlib.aclosing(chunks) as source:
                async for chunk in source:
                    record = chunk.record
                    if (
                        self._state is StreamState.AWAITING_START
                        and isinstance(record, SystemRecord)
                        and record.subtype == "init"
                    ):
                        self._state = StreamState.STREAMING
                        yield ResponseMetadataEvent(
                            model_id=self._model_id, session_id=record.session_id
                        )
                    elif isinstance(record, AssistantRecord):
                        self._state = StreamState.STREAMING
                        delta = self._advance(extract_text(record))
                        if delta:
                            yield TextDeltaEvent(text_delta=delta)

                    if isinstance(record, ResultRecord):
                        terminal = record
                        break
                    if chunk.done:
                        break
        except asyncio.CancelledError:
            self._state = StreamState.DONE
            raise
        except AgentError as exc:
            self._state = StreamState.DONE
            yield StreamErrorEvent(error=exc.message, kind=exc.kind)
            return
        except Exception:
            self._state = StreamState.DONE
            logger.exception("Unexpected error during streaming")
            yield StreamErrorEvent(error="Unexpected error during streaming", kind="process_error")
            return

        self._state = StreamState.DONE
        yield FinishEvent(
            finish_reason=map_finish_reason(terminal.subtype if terminal else None),
            session_id=terminal.session_id if terminal else None,
            total_cost_usd=terminal.total_cost_usd if terminal else None,
        )
