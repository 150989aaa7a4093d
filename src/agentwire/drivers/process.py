"""Runs the agent CLI as a subprocess and decodes its output."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import shlex
from collections.abc import AsyncIterator

from pydantic import ValidationError

from agentwire.config.models import RunConfig
from agentwire.drivers.base import BaseDriver, RunResult, RunTally
from agentwire.errors import AgentError, classify_failure, format_stderr_preview
from agentwire.records.models import Record, ResultRecord
from agentwire.records.ndjson import LineBuffer

logger = logging.getLogger(__name__)

#: Bytes requested per stdout read.
_CHUNK_SIZE = 65_536

#: Seconds to wait for the agent to exit on its own after its last record.
_EXIT_WAIT = 5.0

#: Seconds to wait after SIGTERM before SIGKILL.
_SIGTERM_WAIT = 3.0


async def _read_stderr(proc: asyncio.subprocess.Process) -> bytes:
    if proc.stderr is None:
        return b""
    return await proc.stderr.read()


async def _read_stdout(proc: asyncio.subprocess.Process) -> AsyncIterator[bytes]:
    if proc.stdout is None:
        return
    while True:
        chunk = await proc.stdout.read(_CHUNK_SIZE)
        if not chunk:
            return
        yield chunk


class ProcessDriver(BaseDriver):
    """Owns one agent CLI subprocess for one run.

    The prompt goes in on stdin (EOF ends it). stdout is decoded record by
    record; stderr is kept only for error details.
    """

    def __init__(self, config: RunConfig) -> None:
        super().__init__(config)
        self._process: asyncio.subprocess.Process | None = None

    @property
    def pid(self) -> int | None:
        """PID of the agent subprocess, once spawned."""
        return self._process.pid if self._process is not None else None

    def build_args(self) -> list[str]:
        """CLI arguments, excluding the executable itself."""
        fmt = self._config.output_format
        args = ["-p", "--output-format", fmt, *self._config.args]
        # Print mode refuses stream-json output without --verbose.
        if fmt == "stream-json" and "--verbose" not in args:
            args.append("--verbose")
        return args

    def _terminate(self) -> None:
        proc = self._process
        if proc is None or proc.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()

    # ------------------------------------------------------------------ #
    # Aggregated run
    # ------------------------------------------------------------------ #

    async def execute(self) -> RunResult:
        """Run the agent to exit and return every record it produced."""
        self._claim()
        proc = await self._bounded(self._spawn)
        stderr_task = asyncio.create_task(_read_stderr(proc))
        stream_json = self._config.output_format == "stream-json"
        buffer = LineBuffer(verbose=self._config.verbose)
        tally = RunTally()
        stdout = bytearray()

        try:
            async with contextlib.aclosing(self._guarded(_read_stdout(proc))) as chunks:
                async for chunk in chunks:
                    stdout.extend(chunk)
                    if stream_json:
                        for record in buffer.feed(chunk):
                            tally.observe(record)
            if stream_json:
                for record in buffer.flush():
                    tally.observe(record)
            stderr_bytes = await stderr_task
            returncode = await proc.wait()
        finally:
            stderr_task.cancel()

        if self._killed:
            raise self._interrupted_error()

        stdout_text = stdout.decode(errors="replace")
        stderr_text = stderr_bytes.decode(errors="replace")
        if returncode != 0:
            raise self._exit_error(returncode, stdout_text, stderr_text, tally.session_id)
        if not stream_json:
            tally = self._parse_non_streaming(stdout_text, stderr_text)
        return tally.to_result(exit_code=returncode)

    def _parse_non_streaming(self, stdout_text: str, stderr_text: str) -> RunTally:
        """Wrap ``json`` or ``text`` output into a single result record."""
        tally = RunTally()
        if self._config.output_format == "text":
            tally.observe(
                ResultRecord(subtype="success", result=stdout_text, is_error=False, num_turns=1)
            )
            return tally

        try:
            data = json.loads(stdout_text)
            if not isinstance(data, dict):
                msg = f"expected a JSON object, got {type(data).__name__}"
                raise ValueError(msg)
            subtype = data.get("subtype")
            record = ResultRecord.model_validate(
                {
                    **data,
                    "type": "result",
                    "subtype": subtype if isinstance(subtype, str) else "success",
                }
            )
        except (ValueError, ValidationError) as exc:
            raise AgentError(
                "parsing_error",
                "Failed to parse Claude Code output",
                details={"error": str(exc), "stdout": stdout_text, "stderr": stderr_text},
            ) from exc
        tally.observe(record)
        return tally

    def _exit_error(
        self,
        returncode: int,
        stdout_text: str,
        stderr_text: str,
        session_id: str | None = None,
    ) -> AgentError:
        preview = format_stderr_preview(stderr_text)
        if preview:
            logger.error("%s exited with code %d. Stderr:\n  %s", self.label, returncode, preview)
        else:
            logger.error("%s exited with code %d", self.label, returncode)
        return AgentError(
            classify_failure(stderr_text),
            f"Claude Code process failed with exit code {returncode}",
            code=str(returncode),
            details={"stdout": stdout_text, "stderr": stderr_text},
            session_id=session_id,
        )

    # ------------------------------------------------------------------ #
    # Streaming run
    # ------------------------------------------------------------------ #

    async def _stream_source(self) -> AsyncIterator[Record]:
        proc = await self._spawn()
        stderr_task = asyncio.create_task(_read_stderr(proc))
        buffer = LineBuffer(verbose=self._config.verbose)
        stdout = bytearray()
        finished = False
        try:
            while proc.stdout is not None:
                chunk = await proc.stdout.read(_CHUNK_SIZE)
                if not chunk:
                    break
                stdout.extend(chunk)
                for record in buffer.feed(chunk):
                    if isinstance(record, ResultRecord):
                        finished = True
                    yield record
            for record in buffer.flush():
                yield record
            finished = True
            returncode = await proc.wait()
            if returncode != 0 and not self._killed:
                stderr_text = (await stderr_task).decode(errors="replace")
                raise self._exit_error(
                    returncode, stdout.decode(errors="replace"), stderr_text
                )
        finally:
            stderr_task.cancel()
            if not finished:
                # Consumer left before the run ended.
                self._terminate()
            await self._reap(proc)

    # ------------------------------------------------------------------ #
    # Process management
    # ------------------------------------------------------------------ #

    async def _spawn(self) -> asyncio.subprocess.Process:
        config = self._config
        args = self.build_args()
        logger.log(
            logging.INFO if config.verbose else logging.DEBUG,
            "Executing: %s",
            shlex.join([config.executable, *args]),
        )
        try:
            proc = await asyncio.create_subprocess_exec(
                config.executable,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(config.resolved_cwd()),
                env=config.resolved_env(),
                start_new_session=True,
            )
        except OSError as exc:
            logger.error("Failed to spawn %s: %s", config.executable, exc)
            raise AgentError(
                "process_error", "Failed to start Claude Code process", details=exc
            ) from exc

        self._process = proc
        if self._killed:
            self._terminate()
        await self._write_prompt(proc)
        return proc

    async def _write_prompt(self, proc: asyncio.subprocess.Process) -> None:
        if proc.stdin is None:
            return
        try:
            proc.stdin.write(self._config.prompt.encode())
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.warning("%s closed stdin before the prompt was written: %s", self.label, exc)
        finally:
            proc.stdin.close()

    async def _reap(self, proc: asyncio.subprocess.Process) -> None:
        """Wait for exit, escalating to SIGTERM and then SIGKILL."""
        if proc.returncode is not None:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=_EXIT_WAIT)
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=_SIGTERM_WAIT)
            except TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
