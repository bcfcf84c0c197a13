"""Construction and classification helpers for CLI errors.

Every CLI failure is built here so the error shape (code, exit code, output
excerpts, derived retryability) stays identical across call sites.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from cortexlink.errors import CliError, CliErrorMetadata, ErrorCode

StderrKind = Literal["authentication", "connection", "timeout", "unknown"]


@dataclass(frozen=True)
class StderrClassification:
    """Heuristic reading of a failed run's stderr."""

    kind: StderrKind
    message: str


# Order matters: text matching several categories resolves to the first rule.
_STDERR_RULES: tuple[tuple[StderrKind, tuple[str, ...], str], ...] = (
    (
        "authentication",
        ("authentication failed", "invalid credentials", "unauthorized", "401"),
        "Authentication failed. Check the connection credentials for the Cortex CLI.",
    ),
    (
        "connection",
        ("connection refused", "could not connect", "network error", "econnrefused"),
        "Could not connect to Snowflake. Check network access and the connection settings.",
    ),
    (
        "timeout",
        ("timeout", "timed out", "deadline exceeded"),
        "The Cortex CLI request timed out.",
    ),
)

_KIND_TO_CODE: dict[StderrKind, ErrorCode] = {
    "authentication": "AUTHENTICATION_ERROR",
    "connection": "CONNECTION_ERROR",
    "timeout": "TIMEOUT_ERROR",
}


def parse_error_from_stderr(stderr: str) -> StderrClassification:
    """Classify raw stderr text with ordered, case-insensitive keyword rules."""
    lowered = stderr.lower()
    for kind, needles, message in _STDERR_RULES:
        if any(needle in lowered for needle in needles):
            return StderrClassification(kind=kind, message=message)
    return StderrClassification(kind="unknown", message=stderr.strip())


def classify_error(
    *, code: ErrorCode | None = None, exit_code: int | None = None
) -> CliErrorMetadata:
    """Return metadata for a code and/or exit code, with derived retryability."""
    return CliErrorMetadata(code=code, exit_code=exit_code)


def create_cli_error(
    message: str,
    *,
    metadata: CliErrorMetadata | None = None,
    hint: str | None = None,
    phase: str = "generate",
) -> CliError:
    """Central constructor for every CLI failure."""
    return CliError(message, metadata=metadata, hint=hint, phase=phase)


_HINTS: dict[ErrorCode, str] = {
    "AUTHENTICATION_ERROR": (
        "Run `cortex connection test` or refresh the credentials in connections.toml."
    ),
    "TIMEOUT_ERROR": "Raise Config.timeout_s for long generations.",
    "INSTALLATION_ERROR": (
        "Install the Cortex Code CLI and make sure `cortex` is on PATH "
        "(or set CORTEXLINK_CLI_PATH)."
    ),
}


def create_authentication_error(
    message: str,
    *,
    connection: str | None = None,
    stderr: str = "",
    stdout: str | None = None,
    exit_code: int | None = None,
    command: str | None = None,
) -> CliError:
    return create_cli_error(
        message,
        metadata=CliErrorMetadata(
            code="AUTHENTICATION_ERROR",
            exit_code=exit_code,
            stderr=stderr,
            stdout=stdout,
            connection=connection,
            command=command,
        ),
        hint=_HINTS["AUTHENTICATION_ERROR"],
    )


def create_connection_error(
    message: str,
    *,
    connection: str | None = None,
    stderr: str = "",
    stdout: str | None = None,
    exit_code: int | None = None,
    command: str | None = None,
) -> CliError:
    return create_cli_error(
        message,
        metadata=CliErrorMetadata(
            code="CONNECTION_ERROR",
            exit_code=exit_code,
            stderr=stderr,
            stdout=stdout,
            connection=connection,
            command=command,
        ),
    )


def create_timeout_error(
    message: str,
    *,
    timeout_s: float | None = None,
    prompt_excerpt: str | None = None,
    stderr: str = "",
) -> CliError:
    return create_cli_error(
        message,
        metadata=CliErrorMetadata(
            code="TIMEOUT_ERROR",
            timeout_s=timeout_s,
            prompt_excerpt=prompt_excerpt,
            stderr=stderr,
        ),
        hint=_HINTS["TIMEOUT_ERROR"],
    )


def create_installation_error(message: str, *, stderr: str = "") -> CliError:
    return create_cli_error(
        message,
        metadata=CliErrorMetadata(code="INSTALLATION_ERROR", stderr=stderr),
        hint=_HINTS["INSTALLATION_ERROR"],
        phase="availability",
    )


def error_from_failed_run(
    *,
    exit_code: int | None,
    stderr: str,
    stdout: str,
    connection: str | None,
    command: str,
) -> CliError:
    """Map a non-zero exit into the taxonomy using stderr heuristics.

    Every classification carries the same metadata: exit code, both output
    streams, the connection and the command line.
    """
    if stderr:
        found = parse_error_from_stderr(stderr)
    else:
        found = StderrClassification(
            kind="unknown", message=f"Cortex CLI exited with code {exit_code}"
        )

    code = _KIND_TO_CODE.get(found.kind)
    return create_cli_error(
        f"{found.message}\n\nCommand: {command}",
        metadata=CliErrorMetadata(
            code=code,
            exit_code=exit_code,
            stderr=stderr,
            stdout=stdout,
            connection=connection,
            command=command,
        ),
        hint=_HINTS.get(code) if code is not None else None,
    )


def get_error_metadata(error: object) -> CliErrorMetadata | None:
    """Return CLI metadata for *error*, or None for anything else."""
    if isinstance(error, CliError):
        return error.metadata
    return None


def _has_code(error: object, code: ErrorCode) -> bool:
    metadata = get_error_metadata(error)
    return metadata is not None and metadata.code == code


def is_authentication_error(error: object) -> bool:
    return _has_code(error, "AUTHENTICATION_ERROR")


def is_connection_error(error: object) -> bool:
    return _has_code(error, "CONNECTION_ERROR")


def is_timeout_error(error: object) -> bool:
    return _has_code(error, "TIMEOUT_ERROR")


def is_installation_error(error: object) -> bool:
    return _has_code(error, "INSTALLATION_ERROR")
