"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, the fake subprocess
used by adapter tests, and automatic API test skipping. All fixtures here are
autouse unless noted.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass, field
import logging
import os
from typing import Any

import pytest

from cortexlink.schema import clear_schema_cache

# =============================================================================
# Test Doubles
# =============================================================================


@dataclass
class FakeProcess:
    """Stand-in for ``asyncio.subprocess.Process``.

    ``communicate()`` returns the configured output; with ``hang=True`` it
    never returns, so timeout handling can be exercised.
    """

    stdout: bytes = b""
    stderr: bytes = b""
    returncode: int | None = 0
    hang: bool = False
    killed: bool = False
    communicate_calls: int = 0

    async def communicate(self, input: bytes | None = None) -> tuple[bytes, bytes]:  # noqa: A002
        del input
        self.communicate_calls += 1
        if self.hang:
            await asyncio.Event().wait()
        return self.stdout, self.stderr

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9

    async def wait(self) -> int | None:
        return self.returncode


@dataclass
class FakeSpawner:
    """Records argv for every spawn and replays queued processes.

    Queue entries may be ``FakeProcess`` instances or exceptions to raise.
    """

    queue: list[Any] = field(default_factory=list)
    calls: list[tuple[str, ...]] = field(default_factory=list)

    async def __call__(self, *argv: str) -> FakeProcess:
        self.calls.append(argv)
        item = self.queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_cortex_env(request, monkeypatch, tmp_path):
    """Ensure a clean Snowflake/cortexlink environment for each test.

    Clears SNOWFLAKE_* and CORTEXLINK_* env vars and points HOME at an empty
    temporary directory so no real connections.toml is ever read.
    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("SNOWFLAKE_", "CORTEXLINK_")):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)

    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))


@pytest.fixture(autouse=True)
def fresh_schema_cache():
    """Keep schema memoization from leaking between tests."""
    clear_schema_cache()
    yield
    clear_schema_cache()


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("asyncio").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# Shared fixtures (opt-in)
# =============================================================================


@pytest.fixture
def home(tmp_path):
    """The temporary HOME directory installed by ``isolate_cortex_env``."""
    return tmp_path / "home"


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()
