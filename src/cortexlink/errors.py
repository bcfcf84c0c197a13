"""Exception hierarchy for cortexlink."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Iterator

ErrorCode = Literal[
    "TIMEOUT_ERROR",
    "CONNECTION_ERROR",
    "AUTHENTICATION_ERROR",
    "INSTALLATION_ERROR",
]

RETRYABLE_CODES: frozenset[str] = frozenset({"TIMEOUT_ERROR", "CONNECTION_ERROR"})

#: Exit codes that mean the process was terminated from outside:
#: 124 (``timeout(1)``), 137 (SIGKILL) and 143 (SIGTERM).
RETRYABLE_EXIT_CODES: frozenset[int] = frozenset({124, 137, 143})


class CortexLinkError(Exception):
    """Base exception for all cortexlink errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(CortexLinkError):
    """Configuration or call options failed validation."""


class StructuredOutputError(CortexLinkError):
    """Model output could not be parsed as JSON, even after repair."""

    def __init__(
        self, message: str, *, excerpt: str = "", hint: str | None = None
    ) -> None:
        super().__init__(message, hint=hint)
        self.excerpt = excerpt


class APIError(CortexLinkError):
    """Backend call failed.

    Providers attach retry metadata so core execution can perform bounded
    retries without brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.provider = provider
        self.phase = phase


@dataclass(frozen=True)
class CliErrorMetadata:
    """Structured context attached to every CLI failure."""

    code: ErrorCode | None = None
    exit_code: int | None = None
    stderr: str | None = None
    stdout: str | None = None
    connection: str | None = None
    timeout_s: float | None = None
    prompt_excerpt: str | None = None
    command: str | None = None

    @property
    def is_retryable(self) -> bool:
        """Derive retryability from the error code, then the exit code."""
        if self.code is not None:
            return self.code in RETRYABLE_CODES
        if self.exit_code is not None:
            return self.exit_code in RETRYABLE_EXIT_CODES
        return False


class CliError(APIError):
    """A CLI backend call failed; ``metadata`` carries the classification."""

    def __init__(
        self,
        message: str,
        *,
        metadata: CliErrorMetadata | None = None,
        hint: str | None = None,
        phase: str | None = None,
    ) -> None:
        self.metadata = metadata or CliErrorMetadata()
        super().__init__(
            message,
            hint=hint,
            retryable=self.metadata.is_retryable,
            provider="cortex-cli",
            phase=phase,
        )

    @property
    def code(self) -> ErrorCode | None:
        """Taxonomy code, or None for unclassified failures."""
        return self.metadata.code

    @property
    def exit_code(self) -> int | None:
        """Process exit code when the failure came from a finished run."""
        return self.metadata.exit_code

    @property
    def is_retryable(self) -> bool:
        """Whether a caller may safely re-run the same request."""
        return self.metadata.is_retryable


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
