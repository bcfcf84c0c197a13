"""Domain models shared by the converter, extractor and CLI adapter."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from pydantic import BaseModel

from cortexlink.errors import ConfigurationError

Role = Literal["system", "user", "assistant", "tool"]
FinishReason = Literal["stop", "error", "length", "tool-calls", "other"]
ResponseSchemaInput = Union[type[BaseModel], dict[str, Any]]

_ROLES = ("system", "user", "assistant", "tool")


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    """Image input; the CLI backend cannot consume it."""

    image: bytes | str
    media_type: str | None = None


@dataclass(frozen=True)
class ToolCallPart:
    """A tool call previously requested by the model."""

    tool_call_id: str
    tool_name: str
    args: Any = None


@dataclass(frozen=True)
class ToolResultPart:
    """The output of a tool call, fed back to the model."""

    tool_call_id: str
    tool_name: str
    output: Any = None


#: Parts may also be AI-SDK style mappings such as ``{"type": "text", "text": "..."}``.
ContentPart = Union[TextPart, ImagePart, ToolCallPart, ToolResultPart, Mapping[str, Any]]


@dataclass(frozen=True)
class Message:
    """A role-tagged conversational turn."""

    role: Role
    content: str | list[ContentPart] = ""

    def __post_init__(self) -> None:
        """Reject roles the converter cannot represent."""
        if self.role not in _ROLES:
            raise ConfigurationError(
                f"Unknown message role: {self.role!r}",
                hint="Use one of 'system', 'user', 'assistant', 'tool'.",
            )
        if not isinstance(self.content, (str, list)):
            raise ConfigurationError(
                "Message content must be a string or a list of parts",
                hint="Pass content='...' or content=[TextPart('...')].",
            )


@dataclass(frozen=True)
class ResponseFormat:
    """Structured-output request: a JSON Schema or a pydantic model class."""

    schema: ResponseSchemaInput
    name: str | None = None

    def __post_init__(self) -> None:
        """Validate the schema input early for clear errors."""
        if not (
            isinstance(self.schema, dict)
            or (isinstance(self.schema, type) and issubclass(self.schema, BaseModel))
        ):
            raise ConfigurationError(
                "response_format.schema must be a Pydantic model class or JSON schema dict",
                hint="Pass a BaseModel subclass or a dict following JSON Schema.",
            )

    def schema_json(self) -> dict[str, Any]:
        """Return JSON Schema for the backend."""
        if isinstance(self.schema, dict):
            return self.schema
        return self.schema.model_json_schema()

    def schema_model(self) -> type[BaseModel] | None:
        """Return the Pydantic class when one was provided."""
        if isinstance(self.schema, type) and issubclass(self.schema, BaseModel):
            return self.schema
        return None


@dataclass(frozen=True)
class CallOptions:
    """Per-request input for ``generate()``."""

    messages: list[Message]
    response_format: ResponseFormat | None = None
    #: Overrides ``Config.model`` for this call.
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None

    def __post_init__(self) -> None:
        """Validate option shapes early for clear errors."""
        if not isinstance(self.messages, list) or not all(
            isinstance(m, Message) for m in self.messages
        ):
            raise ConfigurationError(
                "messages must be a list of Message objects",
                hint="Pass messages=[Message(role='user', content='...')].",
            )
        if self.max_tokens is not None and (
            not isinstance(self.max_tokens, int) or self.max_tokens <= 0
        ):
            raise ConfigurationError(
                "max_tokens must be a positive integer",
                hint="Pass max_tokens=8192 or leave it unset.",
            )
        if self.temperature is not None and not 0 <= self.temperature <= 2:
            raise ConfigurationError(
                f"temperature must be within [0, 2], got {self.temperature}",
            )


@dataclass(frozen=True)
class ProcessResult:
    """Snapshot of one finished subprocess run."""

    exit_code: int | None
    stdout: str
    stderr: str


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class ParsedResponse:
    """A standardized response from one backend generation."""

    text: str = ""
    usage: Usage | None = None
    finish_reason: FinishReason = "stop"
    #: Parsed JSON (or a validated model instance) for structured requests.
    structured: Any = None
    #: Text of an explicit ``error`` event, when the stream carried one.
    error_message: str | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ConnectionConfig:
    """Resolved connection name plus its settings section, if any."""

    name: str | None
    settings: dict[str, Any] | None = None
