"""Configuration resolution and XDG paths.

This module handles everything authgate needs to know before a flow starts:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.authgate/`` on macOS and Windows. Only the data directory is used,
  for crash logs; see :func:`get_data_dir`.
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables, and a project-local ``.env`` file into one
  immutable :class:`~authgate.models.AppConfig`.
* **Validation** -- :func:`validate_server_url` rejects unusable server
  URLs; risky but legal settings produce warnings instead of errors.

No configuration is kept in module globals: the resolved config is passed
explicitly to every component.
"""

from __future__ import annotations

import os
import platform
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

from dotenv import dotenv_values

from authgate.exceptions import ConfigError
from authgate.models import AppConfig

_APP_NAME = "authgate"

ENV_SERVER_URL = "SERVER_URL"
ENV_CLIENT_ID = "CLIENT_ID"
ENV_TOKEN_FILE = "TOKEN_FILE"

DEFAULT_SERVER_URL = "http://localhost:8080"
DEFAULT_TOKEN_FILE = ".authgate-tokens.json"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/authgate/`` (default ``~/.local/share/authgate/``).
    On macOS/Windows: ``~/.authgate/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Validation ---


def validate_server_url(raw_url: str) -> None:
    """Check that *raw_url* is an absolute http(s) URL with a host.

    Raises:
        ConfigError: Describing the first problem found.
    """
    if not raw_url:
        raise ConfigError("Invalid SERVER_URL: server URL cannot be empty")
    try:
        parts = urlsplit(raw_url)
    except ValueError as exc:
        raise ConfigError(f"Invalid SERVER_URL: invalid URL format: {exc}") from exc
    if parts.scheme not in ("http", "https"):
        raise ConfigError(
            f"Invalid SERVER_URL: URL scheme must be http or https, got: {parts.scheme!r}"
        )
    if not parts.netloc:
        raise ConfigError("Invalid SERVER_URL: URL must include a host")


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def config_warnings(config: AppConfig) -> list[str]:
    """Return human-readable warnings for risky but accepted settings."""
    warnings: list[str] = []
    if config.server_url.lower().startswith("http://"):
        warnings.append(
            "Using HTTP instead of HTTPS. Tokens will be transmitted in plaintext! "
            "This is only safe for local development."
        )
    if not _is_uuid(config.client_id):
        warnings.append(
            f"CLIENT_ID doesn't appear to be a valid UUID: {config.client_id}. "
            "This may cause authentication issues if the server expects UUID format."
        )
    return warnings


# --- Precedence resolution ---


def _read_env_file(env_file: Optional[str]) -> dict[str, Optional[str]]:
    if env_file and Path(env_file).is_file():
        return dict(dotenv_values(env_file))
    return {}


def _pick(
    flag_value: Optional[str],
    key: str,
    default: str,
    file_values: dict[str, Optional[str]],
) -> str:
    """Return the first non-empty of flag, environment, ``.env`` entry, default."""
    # 1. CLI flag
    if flag_value:
        return flag_value
    # 2. Environment variable
    env_value = os.environ.get(key)
    if env_value:
        return env_value
    # 3. .env file
    file_value = file_values.get(key)
    if file_value:
        return file_value
    # 4. Default
    return default


def resolve_config(
    cli_server_url: Optional[str] = None,
    cli_client_id: Optional[str] = None,
    cli_token_file: Optional[str] = None,
    env_file: Optional[str] = ".env",
) -> tuple[AppConfig, list[str]]:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``--server-url``, ``--client-id``, ``--token-file``)
        2. Environment variables (``SERVER_URL``, ``CLIENT_ID``, ``TOKEN_FILE``)
        3. ``.env`` file in the working directory
        4. Defaults

    Empty values count as unset at every level. The ``.env`` file is read
    without touching ``os.environ``.

    Returns:
        A tuple of ``(config, warnings)``.

    Raises:
        ConfigError: If the server URL is invalid or no client id is given.
    """
    file_values = _read_env_file(env_file)
    server_url = _pick(cli_server_url, ENV_SERVER_URL, DEFAULT_SERVER_URL, file_values)
    client_id = _pick(cli_client_id, ENV_CLIENT_ID, "", file_values)
    token_file = _pick(cli_token_file, ENV_TOKEN_FILE, DEFAULT_TOKEN_FILE, file_values)

    validate_server_url(server_url)

    if not client_id:
        raise ConfigError(
            "CLIENT_ID not set. Please provide it via:\n"
            "  1. Command line flag: --client-id <your-client-id>\n"
            "  2. Environment variable: CLIENT_ID=<your-client-id>\n"
            "  3. .env file: CLIENT_ID=<your-client-id>"
        )

    config = AppConfig(
        server_url=server_url,
        client_id=client_id,
        token_file=Path(token_file).expanduser(),
    )
    return config, config_warnings(config)


def resolve_token_file(
    cli_token_file: Optional[str] = None, env_file: Optional[str] = ".env"
) -> Path:
    """Resolve only the token file location, for commands that need no client id."""
    value = _pick(cli_token_file, ENV_TOKEN_FILE, DEFAULT_TOKEN_FILE, _read_env_file(env_file))
    return Path(value).expanduser()
