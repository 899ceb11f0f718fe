"""Errors raised by authgate, each tied to a process exit code.

Only the CLI layer turns these into exits: :func:`authgate.app.main` and the
commands call ``sys.exit`` / ``typer.Exit`` with ``exc.exit_code``. Library
code raises and lets callers decide policy.

::

    AuthgateError                        1
    |-- ConfigError                      1
    |-- AuthError                        3
    |   |-- OAuthError(code, description)
    |   |   `-- RefreshTokenExpiredError
    |   |-- TokenValidationError
    |   |-- AccessTokenRejectedError
    |   `-- DeviceFlowError
    |       |-- AccessDeniedError
    |       `-- DeviceCodeExpiredError
    |-- NotFoundError                    4
    |-- ServerError                      5
    |-- ConnectionError_                 6
    |-- StorageError                     8
    |   `-- LockError
    |       `-- LockTimeoutError
    `-- FlowCancelledError             130
"""

from __future__ import annotations

from authgate.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
    EXIT_STORAGE_ERROR,
)


class AuthgateError(Exception):
    """Root of the hierarchy.

    Subclasses pick their exit code with a class attribute; a single raise
    site may override it through *exit_code*.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(AuthgateError):
    """Bad or missing server URL or client id."""

    exit_code = EXIT_GENERIC_FAILURE


class AuthError(AuthgateError):
    """Authorization did not produce a usable token."""

    exit_code = EXIT_AUTH_FAILURE


class OAuthError(AuthError):
    """A structured ``{"error", "error_description"}`` response from the server.

    The server's code and description are preserved verbatim so that
    diagnostics show exactly what the authorization server said.

    Args:
        code: The RFC 6749 / RFC 8628 error code (e.g. ``"invalid_grant"``).
        description: The optional ``error_description`` text.
        status_code: HTTP status of the response, when known.
    """

    def __init__(self, code: str, description: str = "", status_code: int | None = None):
        self.code = code
        self.description = description
        self.status_code = status_code
        message = f"{code}: {description}" if description else code
        super().__init__(message)


class RefreshTokenExpiredError(OAuthError):
    """The refresh token is no longer usable (``invalid_grant`` / ``invalid_token``).

    The orchestrator treats this as "discard the cached record and start a
    new device flow".
    """


class TokenValidationError(AuthError):
    """The server returned a token response that fails validation."""


class AccessTokenRejectedError(AuthError):
    """The resource server answered 401 for the current access token."""


class DeviceFlowError(AuthError):
    """The device authorization flow ended in a terminal failure."""


class AccessDeniedError(DeviceFlowError):
    """The user explicitly refused the authorization request."""


class DeviceCodeExpiredError(DeviceFlowError):
    """The device code expired before the user completed authorization."""


class NotFoundError(AuthgateError):
    """No token file, or no record in it for the requested client."""

    exit_code = EXIT_NOT_FOUND


class ServerError(AuthgateError):
    """Unexpected HTTP status or an unparseable body from the authorization server."""

    exit_code = EXIT_SERVER_ERROR


class ConnectionError_(AuthgateError):
    """The server could not be reached, even after retries.

    The trailing underscore keeps the builtin ``ConnectionError`` usable.
    """

    exit_code = EXIT_CONNECTION_ERROR


class StorageError(AuthgateError):
    """Raised when the token file cannot be read, parsed, or written.

    When an atomic publish fails and the temporary file cannot be removed
    either, the second failure is kept in :attr:`cleanup_error` and both
    appear in the message.
    """

    exit_code = EXIT_STORAGE_ERROR

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        cleanup_error: BaseException | None = None,
    ):
        super().__init__(message, exit_code)
        self.cleanup_error = cleanup_error


class LockError(StorageError):
    """Raised when the token file lock cannot be created or removed."""


class LockTimeoutError(LockError):
    """Raised when the lock stays held by another process for too long."""


class FlowCancelledError(AuthgateError):
    """Raised when the flow is interrupted by a signal or its deadline.

    Kept outside :class:`AuthError` so that it can never be confused with
    a denial or an expired device code.
    """

    exit_code = EXIT_CANCELLED
