"""JSON extraction from free-form and streaming model output.

Model text may wrap JSON in prose or markdown fences, and the CLI's
``stream-json`` mode interleaves event lines with terminal noise. These helpers
recover structured values without trusting the surrounding text.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from cortexlink.errors import StructuredOutputError
from cortexlink.models import FinishReason, ParsedResponse, Usage

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL | re.IGNORECASE)
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_$][\w$]*)\s*:")
_EXCERPT_CHARS = 200


def _loads(text: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return False, None


def _scan_balanced(text: str, opener: str, closer: str) -> str | None:
    """Return the first balanced ``opener...closer`` span, string- and escape-aware."""
    start = text.find(opener)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if escaped:
            escaped = False
            continue
        if ch == "\\":
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def extract_json_text(text: Any) -> str | None:
    """Return the raw JSON candidate embedded in *text*, or None."""
    if not isinstance(text, str) or not text.strip():
        return None

    candidate = text.strip()
    ok, _ = _loads(candidate)
    if ok:
        return candidate

    fence = _FENCE_RE.match(candidate)
    if fence:
        candidate = fence.group(1).strip()
        ok, _ = _loads(candidate)
        if ok:
            return candidate

    found = _scan_balanced(candidate, "{", "}")
    if found is None:
        found = _scan_balanced(candidate, "[", "]")
    return found


def extract_json(text: Any) -> Any | None:
    """Locate and parse the JSON value embedded in *text*; None when absent."""
    candidate = extract_json_text(text)
    if candidate is None:
        return None
    ok, value = _loads(candidate)
    return value if ok else None


def is_valid_json(text: Any) -> bool:
    """Return True when *text* is a complete JSON document."""
    if not isinstance(text, str) or not text:
        return False
    ok, _ = _loads(text)
    return ok


def extract_stream_json(text: Any) -> list[Any]:
    """Parse newline-delimited JSON, skipping blank and unparsable lines."""
    if not isinstance(text, str):
        return []
    values: list[Any] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        ok, value = _loads(stripped)
        if ok:
            values.append(value)
    return values


def parse_with_fallback(text: str) -> Any:
    """Parse *text* as JSON, quoting bare identifier keys once on failure.

    Raises:
        StructuredOutputError: when the repaired text still does not parse.
    """
    ok, value = _loads(text)
    if ok:
        return value

    repaired = _BARE_KEY_RE.sub(r'\1"\2":', text)
    try:
        return json.loads(repaired)
    except json.JSONDecodeError as e:
        excerpt = text[:_EXCERPT_CHARS]
        if len(text) > _EXCERPT_CHARS:
            excerpt += "..."
        raise StructuredOutputError(
            f"Could not parse model output as JSON: {e.msg} (excerpt: {excerpt!r})",
            excerpt=excerpt,
            hint="Ask for JSON only, without prose or comments.",
        ) from e


def _assistant_text(event: dict[str, Any]) -> str:
    message = event.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    items = content if isinstance(content, list) else [content]
    chunks: list[str] = []
    for item in items:
        if isinstance(item, dict) and item.get("type") == "text":
            text = item.get("text")
            if isinstance(text, str):
                chunks.append(text)
        elif isinstance(item, str):
            chunks.append(item)
    return "".join(chunks)


def _as_int(value: Any) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


def parse_stream_events(text: str) -> ParsedResponse:
    """Fold ``stream-json`` event lines into one response.

    A ``result`` payload wins over concatenated ``assistant`` text; ``usage``
    counters are mapped from snake_case; an ``error`` event (or a ``result``
    with ``subtype == "error"``) forces ``finish_reason="error"``. Output with
    no recognized event yields empty text and ``"stop"``.
    """
    result_text = ""
    assistant_text = ""
    usage: Usage | None = None
    finish_reason: FinishReason = "stop"
    error_message: str | None = None

    for line in text.splitlines():
        start = line.find("{")
        if start == -1:
            continue
        ok, event = _loads(line[start:].strip())
        if not ok:
            logger.debug("Skipping unparsable stream line: %.100s", line)
            continue
        if not isinstance(event, dict):
            continue

        kind = event.get("type")
        if kind == "result":
            payload = event.get("result")
            if isinstance(payload, str) and payload:
                result_text = payload
            if event.get("subtype") == "error" or event.get("is_error") is True:
                finish_reason = "error"
                error_message = error_message or result_text or None
        elif kind == "assistant":
            assistant_text += _assistant_text(event)
        elif kind == "usage":
            counters = event.get("usage")
            if isinstance(counters, dict):
                usage = Usage(
                    prompt_tokens=_as_int(counters.get("prompt_tokens")),
                    completion_tokens=_as_int(counters.get("completion_tokens")),
                )
        elif kind == "error":
            finish_reason = "error"
            detail = event.get("error") or event.get("message")
            if isinstance(detail, dict):
                detail = detail.get("message")
            if isinstance(detail, str) and detail:
                error_message = detail

    return ParsedResponse(
        text=result_text or assistant_text,
        usage=usage,
        finish_reason=finish_reason,
        error_message=error_message,
    )
