"""Shared constants and type aliases for the agentwire runtime."""

from __future__ import annotations

from typing import Literal

#: Agent CLI resolved through ``PATH`` when no executable is configured.
DEFAULT_EXECUTABLE = "claude"

#: Wall-clock budget for one run, in milliseconds (5 minutes).
DEFAULT_TIMEOUT_MS = 300_000

#: Provider identifier reported by the generation facade.
PROVIDER_NAME = "claude-code"

OutputFormat = Literal["text", "json", "stream-json"]

PermissionMode = Literal["default", "acceptEdits", "bypassPermissions", "plan"]

DriverKind = Literal["sdk", "process"]

FinishReason = Literal["stop", "length", "error", "unknown"]
