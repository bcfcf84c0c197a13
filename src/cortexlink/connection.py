"""Snowflake connection resolution for the Cortex CLI.

Resolution order for the connection name:

1. Explicit value passed by the caller.
2. ``SNOWFLAKE_CONNECTION_NAME``, ``SNOWFLAKE_CONNECTION``,
   ``SNOWFLAKE_DEFAULT_CONNECTION_NAME`` (first non-empty wins, trusted as-is).
3. The first ``connections.toml`` found in the search locations.
4. ``config.toml``, but only when no ``connections.toml`` exists anywhere.

Search locations: ``$SNOWFLAKE_HOME``, ``~/.snowflake``, then the per-OS
directory (``~/Library/Application Support/snowflake`` on macOS,
``%USERPROFILE%\\AppData\\Local\\snowflake`` on Windows,
``${XDG_CONFIG_HOME:-~/.config}/snowflake`` elsewhere).

Files are scanned line by line rather than parsed as strict TOML so that a
file another tool left half-edited still yields its usable sections. Read
errors never propagate.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
import re
import sys
from typing import Any

from cortexlink.models import ConnectionConfig

logger = logging.getLogger(__name__)

CONNECTION_ENV_VARS: tuple[str, ...] = (
    "SNOWFLAKE_CONNECTION_NAME",
    "SNOWFLAKE_CONNECTION",
    "SNOWFLAKE_DEFAULT_CONNECTION_NAME",
)
HOME_ENV_VAR = "SNOWFLAKE_HOME"

CONNECTIONS_FILE = "connections.toml"
CONFIG_FILE = "config.toml"

_DEFAULT_NAME_RE = re.compile(
    r"""^\s*default_connection_name\s*=\s*["']([^"']+)["']""", re.MULTILINE
)
_HEADER_RE = re.compile(r"^\s*\[([^\[\]]+)\]\s*(?:#.*)?$")
_KEY_VALUE_RE = re.compile(r"""^\s*([A-Za-z0-9_.\-]+|"[^"]+"|'[^']+')\s*=\s*(.*)$""")
_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?$")


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.debug("Could not read %s: %s", path, exc)
        return None


def _unquote(token: str) -> str:
    token = token.strip()
    if len(token) >= 2 and token[0] == token[-1] and token[0] in "\"'":
        return token[1:-1]
    return token


def _header_names(header: str) -> list[str]:
    """Split a table header on dots that sit outside quotes."""
    names: list[str] = []
    current = ""
    quote: str | None = None
    for ch in header.strip():
        if quote:
            if ch == quote:
                quote = None
            else:
                current += ch
        elif ch in "\"'":
            quote = ch
        elif ch == ".":
            names.append(current.strip())
            current = ""
        else:
            current += ch
    names.append(current.strip())
    return names


def _section_matches(header: str, name: str) -> bool:
    parts = _header_names(header)
    return parts == [name] or parts == ["connections", name]


def _coerce_value(raw: str) -> Any:
    value = raw.strip()
    if value[:1] in {'"', "'"}:
        quote = value[0]
        end = value.find(quote, 1)
        return value[1:end] if end != -1 else value[1:]

    # Inline comment after a bare value.
    value = value.split("#", 1)[0].strip()
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if _INT_RE.match(value):
        return int(value)
    if _FLOAT_RE.match(value):
        return float(value)
    return value


def parse_section(content: str, name: str) -> dict[str, Any] | None:
    """Collect ``key = value`` pairs of the ``[name]``/``[connections.name]`` table."""
    settings: dict[str, Any] = {}
    in_section = False
    found = False
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        header = _HEADER_RE.match(line)
        if header:
            if in_section:
                break
            in_section = _section_matches(header.group(1), name)
            found = found or in_section
            continue
        if not in_section:
            continue
        pair = _KEY_VALUE_RE.match(line)
        if pair:
            settings[_unquote(pair.group(1))] = _coerce_value(pair.group(2))
    if not found or not settings:
        return None
    return settings


def find_default_name(content: str, *, allow_bare_default: bool = True) -> str | None:
    """Return the default connection a file declares, or None."""
    directive = _DEFAULT_NAME_RE.search(content)
    if directive:
        return directive.group(1).strip() or None
    for line in content.splitlines():
        header = _HEADER_RE.match(line)
        if not header:
            continue
        parts = _header_names(header.group(1))
        if parts == ["connections", "default"]:
            return "default"
        if allow_bare_default and parts == ["default"]:
            return "default"
    return None


class ConnectionResolver:
    """Resolve the connection name and its settings, never raising.

    Files are re-read on every call; the adapter caches the final
    ``ConnectionConfig`` instead.
    """

    def __init__(
        self,
        connection: str | None = None,
        *,
        platform: str | None = None,
        environ: dict[str, str] | None = None,
    ) -> None:
        self.connection = connection
        self._platform = platform or sys.platform
        self._environ = environ

    def _env(self, key: str) -> str:
        source = self._environ if self._environ is not None else os.environ
        return (source.get(key) or "").strip()

    def _home(self) -> Path:
        home = self._env("HOME") or self._env("USERPROFILE")
        return Path(home) if home else Path.home()

    def config_locations(self) -> list[Path]:
        """Directories searched for the Snowflake TOML files, in priority order."""
        locations: list[Path] = []
        snowflake_home = self._env(HOME_ENV_VAR)
        if snowflake_home:
            locations.append(Path(snowflake_home).expanduser())

        home = self._home()
        locations.append(home / ".snowflake")

        if self._platform == "darwin":
            locations.append(home / "Library" / "Application Support" / "snowflake")
        elif self._platform.startswith("win"):
            profile = self._env("USERPROFILE")
            base = Path(profile) if profile else home
            locations.append(base / "AppData" / "Local" / "snowflake")
        else:
            xdg = self._env("XDG_CONFIG_HOME")
            locations.append((Path(xdg) if xdg else home / ".config") / "snowflake")
        return locations

    def _first_file(self, filename: str) -> Path | None:
        for location in self.config_locations():
            candidate = location / filename
            try:
                if candidate.is_file():
                    return candidate
            except OSError:
                continue
        return None

    def get_connections_file_path(self) -> Path | None:
        return self._first_file(CONNECTIONS_FILE)

    def get_config_file_path(self) -> Path | None:
        return self._first_file(CONFIG_FILE)

    def get_connection_name(self) -> str | None:
        """Return the connection to use, or None when nothing is configured."""
        if self.connection:
            return self.connection

        for key in CONNECTION_ENV_VARS:
            value = self._env(key)
            if value:
                return value

        connections_file = self.get_connections_file_path()
        if connections_file is not None:
            # An existing connections.toml shadows config.toml even without a default.
            content = _read_text(connections_file)
            return find_default_name(content) if content is not None else None

        for location in self.config_locations():
            candidate = location / CONFIG_FILE
            if not candidate.is_file():
                continue
            content = _read_text(candidate)
            if content is None:
                continue
            name = find_default_name(content, allow_bare_default=False)
            if name:
                return name
        return None

    def get_connection_settings(self, name: str | None = None) -> dict[str, Any] | None:
        """Return the settings table for *name* (default: the resolved name)."""
        name = name or self.get_connection_name()
        if not name:
            return None

        connections_file = self.get_connections_file_path()
        path = connections_file if connections_file is not None else self.get_config_file_path()
        if path is None:
            return None
        content = _read_text(path)
        if content is None:
            return None
        return parse_section(content, name)

    def resolve(self) -> ConnectionConfig:
        name = self.get_connection_name()
        return ConnectionConfig(
            name=name, settings=self.get_connection_settings(name) if name else None
        )
