"""Flatten role-tagged chat messages into the single prompt the agent reads."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

#: Prompt input: plain text or a list of ``{"role": ..., "content": ...}``.
PromptInput = str | Sequence[Mapping[str, Any]]


def _dump(value: Any) -> str:
    return json.dumps(value, default=str)


def _format_part(part: Mapping[str, Any]) -> str:
    kind = part.get("type")
    match kind:
        case "text":
            return str(part.get("text", ""))
        case "image":
            image = part.get("image")
            label = image.get("type") if isinstance(image, Mapping) else None
            return f"[Image: {label or 'image'}]"
        case "file":
            file = part.get("file")
            name = file.get("name") if isinstance(file, Mapping) else None
            return f"[File: {name or 'file'}]"
        case "tool-call":
            return f"[Tool Call: {part.get('toolName')}({_dump(part.get('args'))})]"
    return f"[{kind}: {_dump(dict(part))}]"


def _format_content(role_label: str, content: Any) -> str:
    if isinstance(content, str):
        return f"{role_label}: {content}"
    if isinstance(content, list):
        parts = [_format_part(p) if isinstance(p, Mapping) else str(p) for p in content]
        return f"{role_label}: {' '.join(parts)}"
    return f"{role_label}: {_dump(content)}"


def _format_assistant(message: Mapping[str, Any]) -> str:
    content = message.get("content")
    tool_calls = message.get("toolCalls")
    if not isinstance(content, (str, list)) and isinstance(tool_calls, list):
        calls = " ".join(
            f"[Tool Call: {c.get('toolName')}({_dump(c.get('args'))})]" for c in tool_calls
        )
        return f"Assistant: {calls}"
    return _format_content("Assistant", content)


def convert_to_prompt(prompt: PromptInput) -> str:
    """Render *prompt* as ``Role: text`` sections separated by blank lines.

    Images and files become placeholders, tool calls are written inline as
    ``[Tool Call: name(args)]`` and tool results as their JSON.
    """
    if isinstance(prompt, str):
        return prompt

    sections: list[str] = []
    for message in prompt:
        role = message.get("role")
        match role:
            case "system":
                sections.append(f"System: {message.get('content')}")
            case "user":
                sections.append(_format_content("User", message.get("content")))
            case "assistant":
                sections.append(_format_assistant(message))
            case "tool":
                sections.append(f"Tool Result: {_dump(message.get('content'))}")
            case _:
                sections.append(f"{role}: {_dump(dict(message))}")
    return "\n\n".join(sections)
