"""Conversation → Cortex CLI message conversion.

The CLI accepts only plain ``{"role", "content"}`` text entries, so structured
parts are flattened: non-text inputs become placeholders, tool calls become a
trailing marker on the assistant turn, and tool results become a user turn
that names the originating call.
"""

from __future__ import annotations

from collections.abc import Mapping
import json
from typing import TYPE_CHECKING, Any

from cortexlink.models import ImagePart, TextPart, ToolCallPart, ToolResultPart

if TYPE_CHECKING:
    from cortexlink.models import ContentPart, Message


def _part_type(part: Any) -> str:
    if isinstance(part, TextPart):
        return "text"
    if isinstance(part, ImagePart):
        return "image"
    if isinstance(part, ToolCallPart):
        return "tool-call"
    if isinstance(part, ToolResultPart):
        return "tool-result"
    if isinstance(part, Mapping):
        return str(part.get("type", "unknown"))
    return "unknown"


def _field(part: Any, attr: str, *aliases: str) -> Any:
    """Read *attr* from a part dataclass, or *attr*/*aliases* from a mapping part."""
    if isinstance(part, Mapping):
        for key in (attr, *aliases):
            if key in part:
                return part[key]
        return None
    return getattr(part, attr, None)


def _dump(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


def _unsupported(kind: str) -> str:
    label = kind.capitalize() if kind else "Unknown"
    return f"[{label} content not supported]"


def _tool_call_marker(part: Any) -> str:
    name = _field(part, "tool_name", "toolName", "name")
    args = _field(part, "args", "input", "arguments")
    return f"[tool call: {name}({_dump(args if args is not None else {})})]"


def _tool_result_output(part: Any) -> Any:
    output = _field(part, "output", "result")
    # AI-SDK wraps values as {"type": "json", "value": ...}.
    if isinstance(output, Mapping) and "value" in output and output.get("type") in {
        "json",
        "text",
    }:
        return output["value"]
    return output


def _flatten(content: str | list[ContentPart]) -> tuple[str, list[str]]:
    """Return ``(text, tool_call_markers)`` for one message's content."""
    if isinstance(content, str):
        return content, []

    chunks: list[str] = []
    markers: list[str] = []
    for part in content:
        kind = _part_type(part)
        if kind == "text":
            text = _field(part, "text")
            chunks.append(text if isinstance(text, str) else "")
        elif kind == "tool-call":
            markers.append(_tool_call_marker(part))
        else:
            chunks.append(_unsupported(kind))
    return "\n".join(c for c in chunks if c), markers


def convert_to_cli_messages(messages: list[Message]) -> list[dict[str, str]]:
    """Convert role-tagged messages into the CLI's text message list."""
    converted: list[dict[str, str]] = []
    for message in messages:
        if message.role == "tool":
            if isinstance(message.content, str):
                converted.append(
                    {"role": "user", "content": f"[tool result]: {message.content}"}
                )
                continue
            for part in message.content:
                if _part_type(part) != "tool-result":
                    text = _field(part, "text")
                    if isinstance(text, str) and text:
                        converted.append({"role": "user", "content": f"[tool result]: {text}"})
                    continue
                call_id = _field(part, "tool_call_id", "toolCallId")
                name = _field(part, "tool_name", "toolName")
                converted.append(
                    {
                        "role": "user",
                        "content": f"[tool result for {call_id} ({name})]: "
                        f"{_dump(_tool_result_output(part))}",
                    }
                )
            continue

        text, markers = _flatten(message.content)
        if markers:
            text = "\n".join([text, *markers]) if text else "\n".join(markers)
        converted.append({"role": message.role, "content": text})
    return converted


def create_prompt_from_messages(messages: list[Message]) -> str:
    """Flatten a conversation into one role-labelled prompt string."""
    sections: list[str] = []
    for entry in convert_to_cli_messages(messages):
        role = entry["role"]
        if role == "system":
            sections.append(entry["content"])
        else:
            sections.append(f"{role.capitalize()}: {entry['content']}")
    return "\n\n".join(s for s in sections if s)


def escape_shell_arg(value: Any) -> str:
    """Quote *value* for a POSIX shell; non-strings become ``''``."""
    if not isinstance(value, str):
        return "''"
    return "'" + value.replace("'", "'\\''") + "'"
