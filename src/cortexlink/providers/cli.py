"""Cortex Code CLI provider.

Each ``generate()`` call runs one ``cortex`` subprocess in ``stream-json``
mode, buffers its output, and folds the event lines into a
``ParsedResponse``. Failures surface as ``CliError`` with a taxonomy code so
callers can decide whether to retry.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from enum import Enum
import json
import logging
import re
import shutil
from typing import TYPE_CHECKING, Any, NoReturn

from pydantic import ValidationError

from cortexlink.connection import ConnectionResolver
from cortexlink.errors import CliErrorMetadata, StructuredOutputError
from cortexlink.extraction import (
    extract_json_text,
    parse_stream_events,
    parse_with_fallback,
)
from cortexlink.models import ProcessResult
from cortexlink.providers._errors import (
    create_cli_error,
    create_connection_error,
    create_installation_error,
    create_timeout_error,
    error_from_failed_run,
)
from cortexlink.providers.base import ProviderCapabilities
from cortexlink.providers.messages import convert_to_cli_messages, escape_shell_arg
from cortexlink.retry import retry_async
from cortexlink.schema import sanitize_schema

if TYPE_CHECKING:
    from cortexlink.config import Config
    from cortexlink.models import (
        CallOptions,
        ConnectionConfig,
        ParsedResponse,
        ResponseFormat,
    )

logger = logging.getLogger(__name__)

AUTO_MODEL = "auto"
MODEL_PREFIX = "cortex/"
_DIRECT_MODEL_MARKERS = ("claude", "anthropic")

STREAMING_UNSUPPORTED_MESSAGE = (
    "Streaming is not supported by the Cortex CLI provider. Use generate() instead."
)

_VERSION_RE = re.compile(r"(\d+\.\d+\.\d+)")
# Upper bound for ``--version``; applies even when generation has no timeout.
VERSION_CHECK_TIMEOUT_S = 10.0
_PROMPT_PREVIEW_CHARS = 500

_ESCAPE_PATTERNS = (
    re.compile(r"\x1b\[[0-9;?]*[A-Za-z]"),  # CSI: colors, cursor movement
    re.compile(r"\x1b\][^\x07]*\x07"),  # OSC terminated by BEL
    re.compile(r"\x1b\][^\x1b]*(?:\x1b\\)?"),  # OSC terminated by ST
    re.compile(r"\]0;[^\n\x07]*"),  # bare window-title sequences
)


class AdapterState(Enum):
    IDLE = "idle"
    CHECKING_AVAILABILITY = "checking_availability"
    BUILDING_ARGS = "building_args"
    SPAWNED = "spawned"
    COLLECTING_OUTPUT = "collecting_output"
    PARSED = "parsed"
    FAILED = "failed"


@dataclass(frozen=True)
class CliAvailability:
    """Outcome of the ``--version`` probe."""

    available: bool
    version: str | None = None
    path: str | None = None


def strip_escape_codes(text: str) -> str:
    """Remove ANSI/OSC terminal control sequences."""
    for pattern in _ESCAPE_PATTERNS:
        text = pattern.sub("", text)
    return text


def resolve_cli_model(model_id: str) -> str:
    """Map a requested model id onto one the CLI accepts.

    The ``cortex/`` prefix is dropped. The CLI drives Claude models directly;
    any other id is replaced by ``auto`` so the CLI picks a model itself.
    """
    model = model_id.strip()
    if model.startswith(MODEL_PREFIX):
        model = model[len(MODEL_PREFIX) :]
    lowered = model.lower()
    if lowered == AUTO_MODEL or any(m in lowered for m in _DIRECT_MODEL_MARKERS):
        return model
    logger.debug("Model %r is not driven directly by the CLI; using %r", model, AUTO_MODEL)
    return AUTO_MODEL


def _normalize_exit_code(returncode: int | None) -> int | None:
    # asyncio reports signal deaths as -N; shells report 128 + N.
    if returncode is not None and returncode < 0:
        return 128 - returncode
    return returncode


def _decode(data: bytes | None) -> str:
    return data.decode("utf-8", errors="replace") if data else ""


class CortexCliProvider:
    """Language-model provider backed by the ``cortex`` command-line tool."""

    def __init__(
        self, config: Config, *, resolver: ConnectionResolver | None = None
    ) -> None:
        self.config = config
        self._resolver = resolver or ConnectionResolver(config.connection)
        self._connection: ConnectionConfig | None = None
        self._availability: CliAvailability | None = None
        self.state = AdapterState.IDLE

    @property
    def provider_name(self) -> str:
        return "cortex-cli"

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            structured_outputs=True,
            conversation=True,
            tool_calls=False,
            streaming=False,
            image_inputs=False,
        )

    @property
    def connection(self) -> ConnectionConfig:
        """Resolved connection, computed on first use and then cached."""
        if self._connection is None:
            self._connection = self._resolver.resolve()
            logger.debug("Resolved connection: %s", self._connection.name)
        return self._connection

    def _set_state(self, state: AdapterState) -> None:
        logger.debug("CLI adapter: %s -> %s", self.state.value, state.value)
        self.state = state

    # --- Availability ---------------------------------------------------

    def reset_availability_cache(self) -> None:
        """Forget the memoized probe result (next call probes again)."""
        self._availability = None

    async def _spawn(self, *argv: str) -> asyncio.subprocess.Process:
        return await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.config.working_directory,
        )

    async def _read_version(self, path: str) -> bytes | None:
        """Return ``path --version`` output, or None unless it exits 0 in time."""
        timeout = VERSION_CHECK_TIMEOUT_S
        if self.config.timeout_s is not None:
            timeout = min(timeout, self.config.timeout_s)
        try:
            proc = await self._spawn(path, "--version")
        except OSError as exc:
            logger.debug("Version probe for %s failed: %s", path, exc)
            return None
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            logger.debug("Version probe for %s timed out after %ss", path, timeout)
            return None
        if proc.returncode != 0:
            return None
        return stdout

    async def check_availability(self) -> CliAvailability:
        """Locate the executable and run ``--version`` once per adapter."""
        if self._availability is not None:
            return self._availability

        path = shutil.which(self.config.executable)
        availability = CliAvailability(available=False)
        if path is not None:
            stdout = await self._read_version(path)
            if stdout is not None:
                match = _VERSION_RE.search(_decode(stdout))
                availability = CliAvailability(
                    available=True,
                    version=match.group(1) if match else None,
                    path=path,
                )

        self._availability = availability
        return availability

    async def _require_executable(self) -> str:
        if self.config.skip_cli_check:
            return self.config.executable
        availability = await self.check_availability()
        if not availability.available or availability.path is None:
            raise create_installation_error(
                f"Cortex Code CLI ({self.config.executable!r}) is not installed "
                "or not available in PATH."
            )
        logger.debug("Cortex CLI available, version %s", availability.version or "unknown")
        return availability.path

    # --- Request building -------------------------------------------------

    def build_request_body(self, options: CallOptions) -> dict[str, Any]:
        """Build the JSON request passed through ``--print``."""
        body: dict[str, Any] = {
            "model": resolve_cli_model(options.model or self.config.model),
            "messages": convert_to_cli_messages(options.messages),
        }
        if options.response_format is not None:
            body["response_format"] = {
                "type": "json",
                "schema": sanitize_schema(options.response_format.schema_json()),
            }
        if options.max_tokens is not None:
            body["max_tokens"] = options.max_tokens
        if options.temperature is not None:
            body["temperature"] = options.temperature
        return body

    def build_cli_args(self, options: CallOptions) -> list[str]:
        """Build argv (without the executable) for one generation."""
        args: list[str] = []
        connection = self.connection.name
        if connection:
            args += ["-c", connection]
        if self.config.plan:
            args.append("--plan")
        if self.config.no_mcp:
            args.append("--no-mcp")
        if self.config.dangerously_allow_all_tool_calls:
            args.append("--dangerously-allow-all-tool-calls")
        if self.config.skills_file:
            args += ["--skills-file", self.config.skills_file]

        body = self.build_request_body(options)
        args += [
            "--output-format",
            "stream-json",
            "--model",
            body["model"],
            "--print",
            json.dumps(body),
        ]
        return args

    @staticmethod
    def describe_command(executable: str, args: list[str]) -> str:
        """Shell-quoted command line for diagnostics, with the prompt truncated."""
        *head, prompt = args
        if len(prompt) > _PROMPT_PREVIEW_CHARS:
            prompt = prompt[:_PROMPT_PREVIEW_CHARS] + "...[truncated]"
        return " ".join(escape_shell_arg(a) for a in (executable, *head, prompt))

    # --- Execution ----------------------------------------------------------

    async def _run(self, executable: str, args: list[str]) -> ProcessResult:
        try:
            proc = await self._spawn(executable, *args)
        except OSError as exc:
            raise create_connection_error(
                f"Failed to start the Cortex CLI: {exc}",
                connection=self.connection.name,
                stderr=str(exc),
            ) from exc

        # Cancelling the awaiting task leaves the child running; only the
        # timeout path below kills it.
        self._set_state(AdapterState.COLLECTING_OUTPUT)
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.config.timeout_s
            )
        except asyncio.TimeoutError as exc:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise create_timeout_error(
                f"Cortex CLI timed out after {self.config.timeout_s}s",
                timeout_s=self.config.timeout_s,
                prompt_excerpt=args[-1][:200],
            ) from exc

        return ProcessResult(
            exit_code=_normalize_exit_code(proc.returncode),
            stdout=_decode(stdout),
            stderr=_decode(stderr),
        )

    def _apply_structured(
        self, parsed: ParsedResponse, response_format: ResponseFormat
    ) -> None:
        candidate = extract_json_text(parsed.text) or parsed.text
        try:
            value = parse_with_fallback(candidate)
        except StructuredOutputError as exc:
            # Leave the raw text for the caller to inspect.
            logger.debug("Structured output did not parse: %s", exc)
            parsed.warnings.append(str(exc))
            return

        parsed.text = json.dumps(value)
        model = response_format.schema_model()
        if model is None:
            parsed.structured = value
            return
        try:
            parsed.structured = model.model_validate(value)
        except ValidationError as exc:
            logger.debug("Structured output failed %s validation: %s", model.__name__, exc)
            parsed.warnings.append(f"{model.__name__} validation failed: {exc}")
            parsed.structured = value

    async def _generate_once(self, options: CallOptions) -> ParsedResponse:
        try:
            self._set_state(AdapterState.CHECKING_AVAILABILITY)
            executable = await self._require_executable()

            self._set_state(AdapterState.BUILDING_ARGS)
            args = self.build_cli_args(options)
            command = self.describe_command(executable, args)
            logger.debug("Running: %s", command)

            self._set_state(AdapterState.SPAWNED)
            result = await self._run(executable, args)
            exit_code, stdout, stderr = result.exit_code, result.stdout, result.stderr
            logger.debug(
                "Cortex CLI exited with %s (stdout %d chars, stderr %d chars)",
                exit_code,
                len(stdout),
                len(stderr),
            )

            if exit_code != 0:
                raise error_from_failed_run(
                    exit_code=exit_code,
                    stderr=stderr,
                    stdout=stdout,
                    connection=self.connection.name,
                    command=command,
                )

            parsed = parse_stream_events(strip_escape_codes(stdout))
            if parsed.finish_reason == "error":
                detail = parsed.error_message or parsed.text or "no details"
                raise create_cli_error(
                    f"Cortex CLI returned an error response: {detail}\n\nCommand: {command}",
                    metadata=CliErrorMetadata(
                        exit_code=exit_code,
                        stderr=stderr,
                        stdout=stdout,
                        connection=self.connection.name,
                        command=command,
                    ),
                )

            if options.response_format is not None:
                self._apply_structured(parsed, options.response_format)
        except Exception:
            self._set_state(AdapterState.FAILED)
            raise

        self._set_state(AdapterState.PARSED)
        return parsed

    async def generate(self, options: CallOptions) -> ParsedResponse:
        """Run one generation, retrying per ``Config.retry``."""
        return await retry_async(
            lambda: self._generate_once(options), policy=self.config.retry
        )

    async def stream(self, options: CallOptions) -> NoReturn:
        """Streaming is unsupported; fails immediately without spawning."""
        del options
        raise create_cli_error(STREAMING_UNSUPPORTED_MESSAGE, phase="stream")
