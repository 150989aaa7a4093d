"""Driver contract shared by the subprocess and SDK execution strategies."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol, TypeVar, runtime_checkable

from agentwire.config.models import RunConfig
from agentwire.errors import AgentError
from agentwire.records.models import Record, ResultRecord, SystemRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: Seconds an interrupted source may spend closing before the error is raised;
#: slower cleanup finishes in the background.
_CLOSE_GRACE = 0.1


@dataclass
class StreamChunk:
    """One record from a streaming run; ``done`` marks the terminal record."""

    record: Record
    done: bool


@dataclass
class RunResult:
    """Outcome of a completed run."""

    messages: list[Record]
    session_id: str | None
    success: bool
    error: str | None = None
    exit_code: int | None = None
    duration_ms: float | None = None
    total_cost_usd: float | None = None


@runtime_checkable
class Driver(Protocol):
    """Minimal protocol every execution strategy satisfies."""

    async def execute(self) -> RunResult:
        """Run to completion and return the collected records."""
        ...

    def execute_streaming(self) -> AsyncIterator[StreamChunk]:
        """Yield records as they arrive, ending at the terminal record."""
        ...

    def kill(self) -> None:
        """Stop the run. Safe to call at any time, any number of times."""
        ...


@dataclass
class RunTally:
    """Record log plus the metadata picked out of it so far."""

    messages: list[Record] = field(default_factory=list)
    session_id: str | None = None
    duration_ms: float | None = None
    total_cost_usd: float | None = None

    def observe(self, record: Record) -> None:
        self.messages.append(record)
        match record:
            case SystemRecord(session_id=str(session_id)) if self.session_id is None:
                self.session_id = session_id
            case ResultRecord():
                if record.total_cost_usd is not None:
                    self.total_cost_usd = record.total_cost_usd
                if record.duration_ms is not None:
                    self.duration_ms = record.duration_ms
                if self.session_id is None and record.session_id:
                    self.session_id = record.session_id

    def to_result(self, exit_code: int | None = 0) -> RunResult:
        return RunResult(
            messages=self.messages,
            session_id=self.session_id,
            success=True,
            exit_code=exit_code,
            duration_ms=self.duration_ms,
            total_cost_usd=self.total_cost_usd,
        )


async def _next_item(source: AsyncIterator[T]) -> T:
    return await anext(source)


async def _settle(step: asyncio.Task[T], source: AsyncIterator[T]) -> None:
    """Let a cancelled step unwind, then close its source."""
    await asyncio.gather(step, return_exceptions=True)
    await source.aclose()


async def _once(factory: Callable[[], Awaitable[T]]) -> AsyncIterator[T]:
    yield await factory()


class BaseDriver:
    """Timeout, abort and one-shot bookkeeping common to both drivers.

    Subclasses provide ``execute()`` and ``_stream_source()``; the latter
    yields records lazily and cleans up its own resources when closed.
    """

    #: Name used in log lines and error messages.
    label = "Claude Code"

    def __init__(self, config: RunConfig) -> None:
        self._config = config
        self._abort = asyncio.Event()
        self._started = False
        self._killed = False
        self._timed_out = False
        self._deadline = 0.0
        self._closing: set[asyncio.Task[None]] = set()

    @property
    def config(self) -> RunConfig:
        return self._config

    @property
    def killed(self) -> bool:
        """True once ``kill()`` ran, whether by the caller or a timeout."""
        return self._killed

    @property
    def timed_out(self) -> bool:
        return self._timed_out

    def kill(self) -> None:
        if self._killed:
            return
        self._killed = True
        self._abort.set()
        self._terminate()

    def _terminate(self) -> None:
        """Strategy-specific stop hook, run once by ``kill()``."""

    def _stream_source(self) -> AsyncIterator[Record]:
        raise NotImplementedError

    # ------------------------------------------------------------------ #
    # Shared plumbing
    # ------------------------------------------------------------------ #

    def _claim(self) -> None:
        """Mark the driver as started and fix the run deadline."""
        if self._started:
            msg = f"{type(self).__name__} drives exactly one run"
            raise RuntimeError(msg)
        self._started = True
        self._deadline = asyncio.get_running_loop().time() + self._config.timeout_s
        if self._killed:
            raise self._interrupted_error()

    async def wait_closed(self) -> None:
        """Wait for source cleanup still running after an interrupted run."""
        while self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    def _failure(self, exc: Exception, action: str) -> AgentError:
        """Classify an unexpected exception raised while running."""
        logger.error("%s %s failed: %s", self.label, action, exc)
        return AgentError("process_error", f"{self.label} {action} failed", details=exc)

    def _interrupted_error(self) -> AgentError:
        details = {"timeout": self._config.timeout_ms}
        if self._timed_out:
            return AgentError(
                "timeout_error", f"{self.label} run timed out", details=details
            )
        return AgentError(
            "timeout_error",
            f"{self.label} run was cancelled",
            details={**details, "cancelled": True},
        )

    async def _guarded(self, source: AsyncIterator[T]) -> AsyncIterator[T]:
        """Re-yield *source*, racing every step against deadline and abort."""
        loop = asyncio.get_running_loop()
        aborted = asyncio.ensure_future(self._abort.wait())
        step: asyncio.Task[T] | None = None
        try:
            while True:
                step = asyncio.create_task(_next_item(source))
                remaining = max(self._deadline - loop.time(), 0.0)
                done, _ = await asyncio.wait(
                    {step, aborted},
                    timeout=remaining,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if step in done and aborted not in done:
                    finished, step = step, None
                    try:
                        item = finished.result()
                    except StopAsyncIteration:
                        return
                    yield item
                    continue

                if aborted not in done:
                    self._timed_out = True
                    logger.warning(
                        "%s run exceeded %d ms, terminating",
                        self.label,
                        self._config.timeout_ms,
                    )
                    self.kill()
                raise self._interrupted_error()
        finally:
            aborted.cancel()
            if step is None:
                await source.aclose()
            else:
                step.cancel()
                await self._close_within_grace(step, source)

    async def _close_within_grace(
        self, step: asyncio.Task[T], source: AsyncIterator[T]
    ) -> None:
        closing = asyncio.create_task(_settle(step, source))
        done, _ = await asyncio.wait({closing}, timeout=_CLOSE_GRACE)
        if closing in done:
            closing.result()
            return
        logger.debug("%s source still closing; finishing in the background", self.label)
        self._closing.add(closing)
        closing.add_done_callback(self._closing.discard)

    async def _bounded(self, factory: Callable[[], Awaitable[T]]) -> T:
        """Await ``factory()`` under the same deadline and abort as a source step."""
        async with contextlib.aclosing(self._guarded(_once(factory))) as items:
            async for item in items:
                return item
        msg = "bounded call produced no value"
        raise RuntimeError(msg)

    async def execute_streaming(self) -> AsyncIterator[StreamChunk]:
        """Yield ``StreamChunk``s, stopping right after the terminal record."""
        self._claim()
        try:
            async with contextlib.aclosing(self._guarded(self._stream_source())) as records:
                async for record in records:
                    done = isinstance(record, ResultRecord)
                    yield StreamChunk(record=record, done=done)
                    if done:
                        return
        except AgentError:
            raise
        except Exception as exc:
            raise self._failure(exc, "streaming") from exc
        if self._killed:
            raise self._interrupted_error()
