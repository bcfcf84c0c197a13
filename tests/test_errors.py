from __future__ import annotations

import pytest

from cortexlink.errors import (
    APIError,
    CliError,
    CliErrorMetadata,
    CortexLinkError,
)
from cortexlink.providers._errors import (
    classify_error,
    create_authentication_error,
    create_cli_error,
    create_connection_error,
    create_installation_error,
    create_timeout_error,
    error_from_failed_run,
    get_error_metadata,
    is_authentication_error,
    is_connection_error,
    is_installation_error,
    is_timeout_error,
    parse_error_from_stderr,
)

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("code", "retryable"),
    [
        ("TIMEOUT_ERROR", True),
        ("CONNECTION_ERROR", True),
        ("AUTHENTICATION_ERROR", False),
        ("INSTALLATION_ERROR", False),
    ],
)
def test_retryability_follows_code(code: str, retryable: bool) -> None:
    assert classify_error(code=code).is_retryable is retryable  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("exit_code", "retryable"),
    [(124, True), (137, True), (143, True), (1, False), (2, False)],
)
def test_retryability_from_bare_exit_code(exit_code: int, retryable: bool) -> None:
    assert classify_error(exit_code=exit_code).is_retryable is retryable


def test_code_beats_exit_code() -> None:
    assert classify_error(code="AUTHENTICATION_ERROR", exit_code=124).is_retryable is False


def test_missing_metadata_is_not_retryable() -> None:
    assert CliErrorMetadata().is_retryable is False
    err = CliError("boom")
    assert err.is_retryable is False
    assert err.retryable is False


def test_cli_error_hierarchy_and_fields() -> None:
    err = create_timeout_error("slow", timeout_s=5.0, prompt_excerpt="hi")

    assert isinstance(err, APIError)
    assert isinstance(err, CortexLinkError)
    assert err.code == "TIMEOUT_ERROR"
    assert err.retryable is True
    assert err.provider == "cortex-cli"
    assert err.phase == "generate"
    assert err.metadata.timeout_s == 5.0
    assert err.metadata.prompt_excerpt == "hi"
    assert err.hint is not None


def test_stderr_authentication_wins_over_timeout() -> None:
    found = parse_error_from_stderr("401 Unauthorized after request timeout")
    assert found.kind == "authentication"


@pytest.mark.parametrize(
    ("stderr", "kind"),
    [
        ("Error: Invalid credentials for user", "authentication"),
        ("connect ECONNREFUSED 127.0.0.1:443", "connection"),
        ("Network error while contacting account", "connection"),
        ("Deadline exceeded waiting for response", "timeout"),
        ("request TIMED OUT", "timeout"),
    ],
)
def test_stderr_rules_are_case_insensitive(stderr: str, kind: str) -> None:
    assert parse_error_from_stderr(stderr).kind == kind


def test_unmatched_stderr_is_unknown_with_trimmed_text() -> None:
    found = parse_error_from_stderr("  something odd happened \n")
    assert found.kind == "unknown"
    assert found.message == "something odd happened"


def test_failed_run_maps_auth_stderr() -> None:
    err = error_from_failed_run(
        exit_code=1,
        stderr="Authentication failed: bad token",
        stdout="out",
        connection="dev",
        command="cortex --print '{}'",
    )
    assert is_authentication_error(err)
    assert err.is_retryable is False
    assert err.metadata.connection == "dev"
    assert err.metadata.exit_code == 1
    assert err.metadata.stdout == "out"
    assert err.metadata.command == "cortex --print '{}'"
    assert "Command: cortex --print" in str(err)


def test_failed_run_maps_connection_stderr_and_keeps_exit_code() -> None:
    err = error_from_failed_run(
        exit_code=2,
        stderr="Could not connect to Snowflake",
        stdout="partial",
        connection=None,
        command="cortex",
    )
    assert is_connection_error(err)
    assert err.exit_code == 2
    assert err.is_retryable is True
    assert err.metadata.stdout == "partial"
    assert err.metadata.command == "cortex"


@pytest.mark.parametrize(
    ("stderr", "code"),
    [
        ("401 Unauthorized", "AUTHENTICATION_ERROR"),
        ("connection refused", "CONNECTION_ERROR"),
        ("deadline exceeded", "TIMEOUT_ERROR"),
        ("segfault", None),
    ],
)
def test_failed_run_metadata_has_one_shape(stderr: str, code: str | None) -> None:
    err = error_from_failed_run(
        exit_code=1, stderr=stderr, stdout="out", connection="dev", command="cortex -c dev"
    )

    assert err.metadata == CliErrorMetadata(
        code=code,  # type: ignore[arg-type]
        exit_code=1,
        stderr=stderr,
        stdout="out",
        connection="dev",
        command="cortex -c dev",
    )


def test_failed_run_with_timeout_text_is_timeout_error() -> None:
    err = error_from_failed_run(
        exit_code=1, stderr="operation timed out", stdout="", connection=None, command="cortex"
    )
    assert is_timeout_error(err)
    assert err.is_retryable is True


def test_failed_run_without_stderr_is_generic() -> None:
    err = error_from_failed_run(
        exit_code=3, stderr="", stdout="partial", connection=None, command="cortex -x"
    )
    assert err.code is None
    assert err.exit_code == 3
    assert err.is_retryable is False
    assert str(err) == "Cortex CLI exited with code 3\n\nCommand: cortex -x"
    assert err.metadata.stdout == "partial"


def test_failed_run_signal_exit_is_retryable() -> None:
    err = error_from_failed_run(
        exit_code=137, stderr="killed", stdout="", connection=None, command="cortex"
    )
    assert err.code is None
    assert err.is_retryable is True


def test_factories_and_predicates() -> None:
    auth = create_authentication_error("no", connection="dev", stderr="401")
    conn = create_connection_error("down")
    install = create_installation_error("missing")

    assert is_authentication_error(auth)
    assert is_connection_error(conn)
    assert is_installation_error(install)
    assert install.phase == "availability"
    assert not is_timeout_error(auth)
    assert get_error_metadata(ValueError("x")) is None
    assert not is_connection_error(ValueError("x"))


def test_create_cli_error_accepts_phase_and_hint() -> None:
    err = create_cli_error("nope", hint="try again", phase="stream")
    assert err.phase == "stream"
    assert err.hint == "try again"
    assert err.code is None
