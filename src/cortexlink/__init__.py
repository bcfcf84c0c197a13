"""cortexlink: the Cortex Code CLI as a language-model backend.

Public API:
    - generate(): Single-call convenience wrapper
    - CortexCliProvider: The subprocess-backed provider
    - Config: Configuration dataclass
    - CallOptions, Message, ResponseFormat: Request shapes
"""

from __future__ import annotations

import logging

from cortexlink.config import Config
from cortexlink.connection import ConnectionResolver
from cortexlink.errors import (
    APIError,
    CliError,
    CliErrorMetadata,
    ConfigurationError,
    CortexLinkError,
    StructuredOutputError,
)
from cortexlink.models import (
    CallOptions,
    ConnectionConfig,
    ImagePart,
    Message,
    ParsedResponse,
    ResponseFormat,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    Usage,
)
from cortexlink.providers.cli import CortexCliProvider
from cortexlink.retry import RetryPolicy

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("cortexlink")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("cortexlink").addHandler(logging.NullHandler())


async def generate(
    prompt: str,
    *,
    config: Config,
    system: str | None = None,
    response_format: ResponseFormat | None = None,
) -> ParsedResponse:
    """Run a single prompt through a fresh Cortex CLI provider.

    Example:
        config = Config(model="claude-sonnet-4-5")
        response = await generate("Summarize RFC 2119", config=config)
        print(response.text)
    """
    messages: list[Message] = []
    if system:
        messages.append(Message(role="system", content=system))
    messages.append(Message(role="user", content=prompt))
    provider = CortexCliProvider(config)
    return await provider.generate(
        CallOptions(messages=messages, response_format=response_format)
    )


__all__ = [
    "APIError",
    "CallOptions",
    "CliError",
    "CliErrorMetadata",
    "Config",
    "ConfigurationError",
    "ConnectionConfig",
    "ConnectionResolver",
    "CortexCliProvider",
    "CortexLinkError",
    "ImagePart",
    "Message",
    "ParsedResponse",
    "ResponseFormat",
    "RetryPolicy",
    "StructuredOutputError",
    "TextPart",
    "ToolCallPart",
    "ToolResultPart",
    "Usage",
    "generate",
]
