"""Configuration: frozen Config for the Cortex CLI adapter."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Any

from dotenv import load_dotenv

from cortexlink.errors import ConfigurationError
from cortexlink.retry import RetryPolicy

load_dotenv()

DEFAULT_EXECUTABLE = "cortex"
DEFAULT_TIMEOUT_S = 60.0

_CLI_PATH_ENV = "CORTEXLINK_CLI_PATH"
_SKIP_CHECK_ENV = "CORTEXLINK_SKIP_CLI_CHECK"
_TIMEOUT_ENV = "CORTEXLINK_TIMEOUT_S"

# Marks a field the caller left unset, so env overrides never replace an
# explicit value that happens to equal the default.
_UNSET: Any = object()


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on"}


def _env_timeout() -> float:
    raw = os.environ.get(_TIMEOUT_ENV, "").strip()
    if not raw:
        return DEFAULT_TIMEOUT_S
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"{_TIMEOUT_ENV} must be a number, got {raw!r}",
            hint="Use seconds, e.g. CORTEXLINK_TIMEOUT_S=120.",
        ) from e


@dataclass(frozen=True)
class Config:
    """Immutable configuration for one Cortex CLI adapter.

    Only ``model`` is required. The connection is resolved from the
    environment and the Snowflake TOML files when not given explicitly.

    Example:
        config = Config(model="claude-sonnet-4-5", connection="dev")
    """

    model: str
    #: Explicit connection name; beats env vars and config files.
    connection: str | None = None
    #: Resolved from ``CORTEXLINK_CLI_PATH``, then ``"cortex"``, when not given.
    executable: str = _UNSET
    plan: bool = False
    no_mcp: bool = False
    dangerously_allow_all_tool_calls: bool = False
    skills_file: str | None = None
    working_directory: str | None = None
    #: Per-run wall clock limit; ``None`` waits forever. Resolved from
    #: ``CORTEXLINK_TIMEOUT_S``, then 60s, when not given.
    timeout_s: float | None = _UNSET
    #: Skip the ``--version`` probe (also via ``CORTEXLINK_SKIP_CLI_CHECK=1``).
    skip_cli_check: bool = False
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        """Apply environment overrides and validate configuration."""
        if not isinstance(self.model, str) or not self.model.strip():
            raise ConfigurationError(
                f"Invalid model id: {self.model!r}",
                hint="Pass a model such as 'claude-sonnet-4-5' or 'auto'.",
            )

        if self.executable is _UNSET:
            override = os.environ.get(_CLI_PATH_ENV, "").strip()
            object.__setattr__(self, "executable", override or DEFAULT_EXECUTABLE)

        if not self.skip_cli_check and _env_flag(_SKIP_CHECK_ENV):
            object.__setattr__(self, "skip_cli_check", True)

        if self.timeout_s is _UNSET:
            object.__setattr__(self, "timeout_s", _env_timeout())

        if self.timeout_s is not None and self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s}",
                hint="Pass timeout_s=None to wait without a limit.",
            )
