"""Primary-text extraction from assistant and user records.

A message payload arrives in one of several shapes. Each rule below
recognises one shape and returns its text, or ``None`` to pass; the first
rule that answers wins.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from agentwire.records.models import AssistantRecord, Record, UserRecord

TextRule = Callable[[Any], str | None]


def text_from_string(payload: Any) -> str | None:
    match payload:
        case str():
            return payload
    return None


def text_from_content_parts(payload: Any) -> str | None:
    """Concatenate the ``text`` parts of a ``content`` array, in order."""
    match payload:
        case {"content": list(parts)}:
            return "".join(
                part["text"]
                for part in parts
                if isinstance(part, dict)
                and part.get("type") == "text"
                and isinstance(part.get("text"), str)
            )
    return None


def text_from_text_field(payload: Any) -> str | None:
    match payload:
        case {"text": str(text)}:
            return text
    return None


def text_from_content_string(payload: Any) -> str | None:
    match payload:
        case {"content": str(content)}:
            return content
    return None


#: Extraction rules in precedence order.
TEXT_RULES: tuple[TextRule, ...] = (
    text_from_string,
    text_from_content_parts,
    text_from_text_field,
    text_from_content_string,
)


def extract_message_text(payload: Any) -> str:
    """Apply :data:`TEXT_RULES` to a raw message payload."""
    try:
        for rule in TEXT_RULES:
            text = rule(payload)
            if text is not None:
                return text
    except (TypeError, ValueError, KeyError):
        pass
    return ""


def extract_text(record: Record) -> str:
    """Return the primary text carried by an assistant or user record.

    Other record types carry no message text and yield ``""``.
    """
    if not isinstance(record, AssistantRecord | UserRecord):
        return ""
    return extract_message_text(record.message)
