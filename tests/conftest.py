"""Shared test fixtures for authgate.

Provides reusable fixtures for isolated config environments, credential
records, mock authorization servers, output state, and CLI runs. These
fixtures are automatically discovered by pytest and available to all test
modules without explicit imports.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from authgate.models import AppConfig, CredentialRecord
from authgate.output import OutputFormat, OutputManager, reset_output, set_output

CLIENT_ID = "7b0c2a3e-5a7f-4f0e-9d59-0a1c1d3c7f21"
SERVER_URL = "https://auth.example.test"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time.  When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale
    ("I/O operation on closed file").  Resetting forces a fresh manager
    to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Points XDG_DATA_HOME into tmp_path, clears the SERVER_URL, CLIENT_ID
    and TOKEN_FILE environment variables, and changes the working
    directory to tmp_path so no real ``.env`` file is picked up.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in ["SERVER_URL", "CLIENT_ID", "TOKEN_FILE", "NO_COLOR"]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """An AppConfig pointing at a fake server and a token file in tmp_path."""
    return AppConfig(
        server_url=SERVER_URL,
        client_id=CLIENT_ID,
        token_file=tmp_path / "tokens.json",
    )


# ---------------------------------------------------------------------------
# Credential fixtures
# ---------------------------------------------------------------------------


def make_record(
    client_id: str = CLIENT_ID,
    access_token: str = "access-token-0123456789",
    refresh_token: str = "refresh-token-0123456789",
    expires_in: int = 3600,
    token_type: str = "Bearer",
) -> CredentialRecord:
    """Build a CredentialRecord expiring *expires_in* seconds from now."""
    return CredentialRecord(
        access_token=access_token,
        refresh_token=refresh_token,
        token_type=token_type,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        client_id=client_id,
    )


@pytest.fixture
def record_factory():
    """The :func:`make_record` builder, for tests that need several records."""
    return make_record


@pytest.fixture
def record() -> CredentialRecord:
    """A valid, unexpired credential for CLIENT_ID."""
    return make_record()


@pytest.fixture
def expired_record() -> CredentialRecord:
    """A credential for CLIENT_ID that expired an hour ago."""
    return make_record(access_token="expired-access-token", expires_in=-3600)


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Set up a quiet output manager for tests that don't care about output.

    Installs a PLAIN-format, quiet OutputManager as the global output
    and resets it after the test completes.
    """
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def plain_output() -> OutputManager:
    """Install a PLAIN, colourless OutputManager so capsys sees exact text."""
    output = OutputManager(format=OutputFormat.PLAIN, no_color=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner.

    Returns a CliRunner instance that captures stdout/stderr and
    provides a consistent interface for invoking Typer apps in tests.
    """
    from typer.testing import CliRunner

    return CliRunner()
