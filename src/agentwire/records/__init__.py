"""Agent event records: models, NDJSON decoding and text extraction."""

from agentwire.records.models import (
    AssistantRecord,
    OtherRecord,
    Record,
    ResultRecord,
    SystemRecord,
    UserRecord,
    parse_record,
    record_to_dict,
)
from agentwire.records.ndjson import LineBuffer
from agentwire.records.text import TEXT_RULES, extract_message_text, extract_text

__all__ = [
    "TEXT_RULES",
    "AssistantRecord",
    "LineBuffer",
    "OtherRecord",
    "Record",
    "ResultRecord",
    "SystemRecord",
    "UserRecord",
    "extract_message_text",
    "extract_text",
    "parse_record",
    "record_to_dict",
]
