"""Pydantic v2 models for the agent's NDJSON event records."""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    ValidationError,
)

logger = logging.getLogger(__name__)

#: ``type`` values with a dedicated record model.
RECORD_TYPES = frozenset({"system", "assistant", "user", "result"})


class _RecordBase(BaseModel):
    """Common envelope shared by every record.

    Unknown fields are kept so the message log round-trips whatever the
    agent emitted.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    session_id: str | None = Field(default=None, description="Agent session id")


class SystemRecord(_RecordBase):
    """First record of a run: session and environment description."""

    type: Literal["system"] = "system"
    subtype: str = Field(default="init", description="System event subtype")
    cwd: str | None = Field(default=None, description="Agent working directory")
    tools: list[str] = Field(default_factory=list, description="Available tools")
    model: str | None = Field(default=None, description="Active model name")
    permission_mode: str | None = Field(
        default=None, alias="permissionMode", description="Tool permission mode"
    )
    api_key_source: str | None = Field(default=None, alias="apiKeySource")
    mcp_servers: list[dict[str, Any]] = Field(default_factory=list)


class AssistantRecord(_RecordBase):
    """A model turn; ``message`` shape varies (see ``records.text``)."""

    type: Literal["assistant"] = "assistant"
    message: Any = Field(default=None, description="Nested message payload")


class UserRecord(_RecordBase):
    """A user turn, usually tool results fed back to the model."""

    type: Literal["user"] = "user"
    message: Any = Field(default=None, description="Nested message payload")


class ResultRecord(_RecordBase):
    """Terminal record of a run.

    Metrics are ``None`` when the source did not report them (plain-text
    output has no session, cost or timing data).
    """

    type: Literal["result"] = "result"
    subtype: str = Field(description="success, error_max_turns or error_during_execution")
    is_error: bool = False
    num_turns: int | None = None
    duration_ms: float | None = None
    duration_api_ms: float | None = None
    total_cost_usd: float | None = None
    result: str | None = Field(
        default=None, description="Final answer, only present on success"
    )

    @property
    def is_success(self) -> bool:
        return self.subtype == "success"


class OtherRecord(_RecordBase):
    """Any record whose ``type`` this library does not interpret."""

    type: str


def _record_discriminator(v: Any) -> str:
    """Extract the discriminator value from raw data or a model instance."""
    if isinstance(v, dict):
        tag = v.get("type")
    else:
        tag = getattr(v, "type", None)
    return tag if tag in RECORD_TYPES else "other"


Record = Annotated[
    Annotated[SystemRecord, Tag("system")]
    | Annotated[AssistantRecord, Tag("assistant")]
    | Annotated[UserRecord, Tag("user")]
    | Annotated[ResultRecord, Tag("result")]
    | Annotated[OtherRecord, Tag("other")],
    Discriminator(_record_discriminator),
]
"""Discriminated union of all record types."""

_RECORD_ADAPTER: TypeAdapter[Record] = TypeAdapter(Record)


def parse_record(data: Any) -> Record | None:
    """Validate one decoded JSON value into a :data:`Record`.

    Returns ``None`` for values that are not records (non-objects, missing
    ``type``, fields of the wrong shape).
    """
    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        return None
    try:
        return _RECORD_ADAPTER.validate_python(data)
    except ValidationError as exc:
        logger.debug("Dropping %s record that failed validation: %s", data["type"], exc)
        return None


def record_to_dict(record: Record) -> dict[str, Any]:
    """Dump a record back to its wire shape (original field names)."""
    return record.model_dump(by_alias=True, exclude_none=True)
