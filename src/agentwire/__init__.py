"""agentwire — Claude Code agent driver with aggregated and streaming runs."""

from agentwire.aggregate import AggregatedText, aggregate_result, map_finish_reason
from agentwire.cancel import CancelToken
from agentwire.config import AgentSettings, ProviderSettings, RunConfig
from agentwire.drivers import (
    Driver,
    ProcessDriver,
    RunResult,
    SDKDriver,
    StreamChunk,
    create_driver,
)
from agentwire.errors import AgentError, ErrorPayload, error_to_message, is_agent_error
from agentwire.model import (
    AgentModel,
    GenerateResult,
    Provider,
    create_provider,
    parse_json_response,
)
from agentwire.records import LineBuffer, Record, extract_text
from agentwire.stream import StreamEvent, StreamProjector

__version__ = "0.1.0"

__all__ = [
    "AgentError",
    "AgentModel",
    "AgentSettings",
    "AggregatedText",
    "CancelToken",
    "Driver",
    "ErrorPayload",
    "GenerateResult",
    "LineBuffer",
    "ProcessDriver",
    "Provider",
    "ProviderSettings",
    "Record",
    "RunConfig",
    "RunResult",
    "SDKDriver",
    "StreamChunk",
    "StreamEvent",
    "StreamProjector",
    "aggregate_result",
    "create_driver",
    "create_provider",
    "error_to_message",
    "extract_text",
    "is_agent_error",
    "map_finish_reason",
    "parse_json_response",
]
