"""Provider protocol: minimal interface for model backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, NoReturn, Protocol, runtime_checkable

if TYPE_CHECKING:
    from cortexlink.models import CallOptions, ParsedResponse


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by providers."""

    structured_outputs: bool
    conversation: bool
    tool_calls: bool = False
    streaming: bool = False
    image_inputs: bool = False


@runtime_checkable
class Provider(Protocol):
    """Minimal provider protocol: generate, stream, capabilities."""

    @property
    def provider_name(self) -> str:
        """Stable provider identifier."""
        ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Feature capabilities for option validation."""
        ...

    async def generate(self, options: CallOptions) -> ParsedResponse:
        """Generate one complete response."""
        ...

    async def stream(self, options: CallOptions) -> NoReturn:
        """Always raise: no provider streams (``capabilities.streaming`` is False)."""
        ...
