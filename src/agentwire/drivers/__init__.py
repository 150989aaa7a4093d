"""Execution drivers running one agent call via subprocess or in-process SDK."""

from __future__ import annotations

from agentwire.config.models import RunConfig
from agentwire.constants import DriverKind
from agentwire.drivers.base import Driver, RunResult, StreamChunk
from agentwire.drivers.process import ProcessDriver
from agentwire.drivers.sdk import SDKDriver

__all__ = [
    "Driver",
    "ProcessDriver",
    "RunResult",
    "SDKDriver",
    "StreamChunk",
    "create_driver",
]


def create_driver(config: RunConfig, kind: DriverKind = "sdk") -> Driver:
    """Build the driver for *kind*; each instance serves exactly one run."""
    match kind:
        case "sdk":
            return SDKDriver(config)
        case "process":
            return ProcessDriver(config)
    msg = f"Unknown driver kind: {kind!r}"
    raise ValueError(msg)
