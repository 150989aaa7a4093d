"""Runs the agent in-process through ``claude_agent_sdk.query``."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    CLIJSONDecodeError,
    CLINotFoundError,
    ProcessError,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
    query,
)

from agentwire.constants import DEFAULT_EXECUTABLE
from agentwire.drivers.base import BaseDriver, RunResult, RunTally
from agentwire.errors import AgentError, classify_failure
from agentwire.records.models import (
    AssistantRecord,
    Record,
    ResultRecord,
    SystemRecord,
    UserRecord,
    parse_record,
)

logger = logging.getLogger(__name__)


def _split_tools(value: str) -> list[str]:
    return [name.strip() for name in value.split(",") if name.strip()]


#: Flags that take one value: flag -> (option name, converter).
_VALUE_FLAGS: dict[str, tuple[str, Callable[[str], Any]]] = {
    "--model": ("model", str),
    "--max-turns": ("max_turns", int),
    "--system-prompt": ("system_prompt", str),
    "--append-system-prompt": ("append_system_prompt", str),
    "--allowedTools": ("allowed_tools", _split_tools),
    "--disallowedTools": ("disallowed_tools", _split_tools),
    "--permission-mode": ("permission_mode", str),
    "--mcp-config": ("mcp_servers", str),
    "--permission-prompt-tool": ("permission_prompt_tool_name", str),
    "--resume": ("resume", str),
}

#: Flags that take no value: flag -> option name.
_SWITCH_FLAGS: dict[str, str] = {
    "--continue": "continue_conversation",
}


def sdk_options_from_args(args: Sequence[str]) -> dict[str, Any]:
    """Translate agent CLI flags into ``ClaudeAgentOptions`` keyword arguments.

    Unrecognised flags are skipped. A value flag without a value, or with a
    value its converter rejects, is skipped and the value left in place.
    """
    options: dict[str, Any] = {}
    i = 0
    while i < len(args):
        arg = args[i]
        if arg in _SWITCH_FLAGS:
            options[_SWITCH_FLAGS[arg]] = True
        elif arg in _VALUE_FLAGS and i + 1 < len(args) and args[i + 1]:
            name, convert = _VALUE_FLAGS[arg]
            try:
                options[name] = convert(args[i + 1])
            except ValueError:
                logger.debug("Ignoring %s with unusable value %r", arg, args[i + 1])
            else:
                i += 1
        i += 1
    return options


def _block_to_dict(block: Any) -> dict[str, Any]:
    match block:
        case TextBlock():
            return {"type": "text", "text": block.text}
        case ThinkingBlock():
            return {"type": "thinking", "thinking": block.thinking, "signature": block.signature}
        case ToolUseBlock():
            return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
        case ToolResultBlock():
            return {
                "type": "tool_result",
                "tool_use_id": block.tool_use_id,
                "content": block.content,
                "is_error": block.is_error,
            }
    return {"type": type(block).__name__}


def convert_sdk_message(message: Any, session_id: str | None = None) -> Record | None:
    """Convert a native SDK message into a record.

    *session_id* is stamped on assistant and user records, which the SDK
    does not tag itself. Messages with no record counterpart (partial
    stream events) yield ``None``.
    """
    match message:
        case SystemMessage():
            data = message.data if isinstance(message.data, dict) else {}
            record = parse_record({**data, "type": "system", "subtype": message.subtype})
            if record is None:
                sid = data.get("session_id")
                record = SystemRecord(
                    subtype=message.subtype,
                    session_id=sid if isinstance(sid, str) else None,
                )
            return record
        case AssistantMessage():
            payload = {
                "role": "assistant",
                "content": [_block_to_dict(b) for b in message.content],
                "model": message.model,
            }
            return AssistantRecord(message=payload, session_id=session_id)
        case UserMessage():
            content = message.content
            if not isinstance(content, str):
                content = [_block_to_dict(b) for b in content]
            return UserRecord(message={"role": "user", "content": content}, session_id=session_id)
        case ResultMessage():
            return ResultRecord(
                subtype=message.subtype,
                is_error=message.is_error,
                num_turns=message.num_turns,
                duration_ms=message.duration_ms,
                duration_api_ms=message.duration_api_ms,
                total_cost_usd=message.total_cost_usd,
                session_id=message.session_id,
                result=message.result if message.subtype == "success" else None,
            )
    return None


class SDKDriver(BaseDriver):
    """Runs one agent query in-process with the same contract as the CLI driver."""

    label = "Claude Code SDK"

    def build_options(self) -> ClaudeAgentOptions:
        config = self._config
        kwargs = sdk_options_from_args(config.args)
        append = kwargs.pop("append_system_prompt", None)
        if append:
            custom = kwargs.get("system_prompt")
            if custom:
                kwargs["system_prompt"] = f"{custom}\n\n{append}"
            else:
                kwargs["system_prompt"] = {
                    "type": "preset",
                    "preset": "claude_code",
                    "append": append,
                }
        kwargs["cwd"] = str(config.resolved_cwd())
        if config.env:
            kwargs["env"] = dict(config.env)
        if config.executable != DEFAULT_EXECUTABLE:
            kwargs["cli_path"] = config.executable
        return ClaudeAgentOptions(**kwargs)

    async def execute(self) -> RunResult:
        """Drain the query and return every record it produced."""
        self._claim()
        tally = RunTally()
        try:
            async with contextlib.aclosing(self._guarded(self._stream_source())) as records:
                async for record in records:
                    tally.observe(record)
        except AgentError:
            raise
        except Exception as exc:
            raise self._failure(exc, "execution") from exc
        if self._killed:
            raise self._interrupted_error()
        return tally.to_result(exit_code=0)

    async def _stream_source(self) -> AsyncIterator[Record]:
        options = self.build_options()
        logger.log(
            logging.INFO if self._config.verbose else logging.DEBUG,
            "Executing Claude Code SDK query with options: %s",
            options,
        )
        session_id: str | None = None
        async with contextlib.aclosing(query(prompt=self._config.prompt, options=options)) as messages:
            async for message in messages:
                record = convert_sdk_message(message, session_id)
                if record is None:
                    continue
                if self._config.verbose:
                    logger.info("Received SDK message: %s", record.type)
                if isinstance(record, SystemRecord) and session_id is None:
                    session_id = record.session_id
                yield record

    def _failure(self, exc: Exception, action: str) -> AgentError:
        logger.error("%s %s failed: %s", self.label, action, exc)
        if isinstance(exc, CLINotFoundError):
            return AgentError("process_error", "Claude Code executable not found", details=exc)
        if isinstance(exc, ProcessError):
            stderr_text = exc.stderr or ""
            return AgentError(
                classify_failure(stderr_text),
                f"Claude Code process failed with exit code {exc.exit_code}",
                code=str(exc.exit_code) if exc.exit_code is not None else None,
                details={"stderr": stderr_text},
            )
        if isinstance(exc, CLIJSONDecodeError):
            return AgentError("parsing_error", "Failed to parse Claude Code output", details=exc)
        return AgentError("process_error", f"{self.label} {action} failed", details=exc)
