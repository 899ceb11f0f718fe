"""Request/response plumbing for the authorization server endpoints.

:class:`ExchangeClient` wraps :class:`httpx.Client` and talks to the three
endpoints the device flow needs:

- ``POST /oauth/device/code`` -- start a device authorization.
- ``POST /oauth/token`` -- device-grant exchange and refresh-token grant.
- ``GET /oauth/tokeninfo`` -- token introspection with a bearer header.

Every call carries its own timeout, clipped to the remaining time of the
surrounding flow when a ``deadline`` (a :func:`time.monotonic` value) is
given, so no request can outlive the flow that issued it. 5xx responses and
network errors are retried with exponential delay (1 s, 2 s, 4 s, ...),
and setting the client's cancel event ends a delay at once; 4xx responses
are never retried.

Token responses are validated before a
:class:`~authgate.models.CredentialRecord` is built from them, so nothing
invalid ever reaches the store.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from authgate.exceptions import (
    AccessTokenRejectedError,
    ConnectionError_,
    FlowCancelledError,
    OAuthError,
    RefreshTokenExpiredError,
    ServerError,
    TokenValidationError,
)
from authgate.models import (
    MIN_ACCESS_TOKEN_LENGTH,
    AppConfig,
    CredentialRecord,
    DeviceAuthorization,
    DeviceCodeResponse,
    ErrorResponse,
    TokenResponse,
)

logger = logging.getLogger(__name__)

DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
REFRESH_TOKEN_INVALID_CODES = frozenset({"invalid_grant", "invalid_token"})


def validate_token_response(access_token: str, token_type: str, expires_in: int) -> None:
    """Reject token responses that must never become a stored credential.

    Raises:
        TokenValidationError: If the access token is empty or shorter than
            :data:`~authgate.models.MIN_ACCESS_TOKEN_LENGTH`, ``expires_in``
            is not positive, or ``token_type`` is set to anything but
            ``Bearer``.
    """
    if not access_token:
        raise TokenValidationError("access_token is empty")
    if len(access_token) < MIN_ACCESS_TOKEN_LENGTH:
        raise TokenValidationError(f"access_token is too short (length: {len(access_token)})")
    if expires_in <= 0:
        raise TokenValidationError(f"expires_in must be positive, got: {expires_in}")
    # token_type is optional in OAuth 2.0, but when present it must be Bearer
    if token_type and token_type != "Bearer":
        raise TokenValidationError(f"unexpected token_type: {token_type} (expected Bearer)")


def parse_oauth_error(response: httpx.Response) -> Optional[OAuthError]:
    """Return the structured OAuth error in *response*, or ``None`` if there is none."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict) or not body.get("error"):
        return None
    try:
        err = ErrorResponse.model_validate(body)
    except ValidationError:
        return None
    if err.error in REFRESH_TOKEN_INVALID_CODES:
        return RefreshTokenExpiredError(err.error, err.error_description, response.status_code)
    return OAuthError(err.error, err.error_description, response.status_code)


class ExchangeClient:
    """Stateless OAuth endpoint calls for one :class:`~authgate.models.AppConfig`.

    Must be used as a context manager so that the underlying connection
    pool is opened and closed.

    Args:
        config: Server URL, client id, scope, timeouts and retry budget.
        transport: Optional httpx transport, e.g. :class:`httpx.MockTransport`
            in tests.
        cancel_event: Set from another thread to abort a retry delay at once.

    Example::

        with ExchangeClient(config) as client:
            authorization = client.request_device_code()
    """

    def __init__(
        self,
        config: AppConfig,
        transport: Optional[httpx.BaseTransport] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._cancel_event = cancel_event or threading.Event()
        self._client: Optional[httpx.Client] = None

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> ExchangeClient:
        self._client = httpx.Client(
            headers={"Accept": "application/json"},
            verify=self._config.verify_ssl,
            transport=self._transport,
        )
        return self

    def __exit__(self, *args: object) -> None:
        if self._client:
            self._client.close()
            self._client = None

    @property
    def config(self) -> AppConfig:
        return self._config

    # ------------------------------------------------------------------ #
    # Endpoints
    # ------------------------------------------------------------------ #

    def request_device_code(self, deadline: Optional[float] = None) -> DeviceAuthorization:
        """Start a device authorization (:rfc:`8628` section 3.1).

        Returns:
            The in-memory :class:`~authgate.models.DeviceAuthorization`.

        Raises:
            ServerError: On a non-200 status or a body without
                ``device_code`` / ``user_code``.
            ConnectionError_: On transport failure after all retries.
        """
        response = self._send(
            "POST",
            self._config.device_authorization_url,
            timeout=self._config.device_code_timeout,
            deadline=deadline,
            data={"client_id": self._config.client_id, "scope": self._config.scope},
            what="device code request",
        )
        if response.status_code != 200:
            raise ServerError(
                f"device code request failed with status {response.status_code}: "
                f"{response.text}"
            )
        try:
            parsed = DeviceCodeResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise ServerError(f"failed to parse device code response: {exc}") from exc
        return parsed.to_authorization()

    def exchange_device_code(
        self, device_code: str, deadline: Optional[float] = None
    ) -> CredentialRecord:
        """Attempt the device-grant token exchange once.

        Raises:
            OAuthError: The server answered with a structured error such as
                ``authorization_pending`` or ``slow_down``. Interpreting it
                is the polling engine's job.
            TokenValidationError: The success body failed validation.
            ServerError: Unexpected status without an OAuth error body, or
                an unparseable success body.
            ConnectionError_: On transport failure after all retries.
        """
        response = self._send(
            "POST",
            self._config.token_url,
            timeout=self._config.token_exchange_timeout,
            deadline=deadline,
            data={
                "grant_type": DEVICE_CODE_GRANT_TYPE,
                "device_code": device_code,
                "client_id": self._config.client_id,
            },
            what="token exchange",
        )
        if response.status_code != 200:
            oauth_error = parse_oauth_error(response)
            if oauth_error is not None:
                raise oauth_error
            raise ServerError(
                f"token exchange failed with status {response.status_code}: {response.text}"
            )
        return self._record_from(response, previous_refresh_token="")

    def refresh(self, refresh_token: str, deadline: Optional[float] = None) -> CredentialRecord:
        """Exchange *refresh_token* for a new access token.

        When the server omits ``refresh_token`` in its answer the old one is
        carried over unchanged; when it sends one, the new one wins.

        Raises:
            RefreshTokenExpiredError: ``invalid_grant`` or ``invalid_token``.
            OAuthError: Any other structured error.
            TokenValidationError: The success body failed validation.
            ServerError: Unexpected status without an OAuth error body.
            ConnectionError_: On transport failure after all retries.
        """
        response = self._send(
            "POST",
            self._config.token_url,
            timeout=self._config.refresh_timeout,
            deadline=deadline,
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self._config.client_id,
            },
            what="refresh request",
        )
        if response.status_code != 200:
            oauth_error = parse_oauth_error(response)
            if oauth_error is not None:
                raise oauth_error
            raise ServerError(
                f"refresh failed with status {response.status_code}: {response.text}"
            )
        return self._record_from(response, previous_refresh_token=refresh_token)

    def introspect(self, access_token: str, deadline: Optional[float] = None) -> str:
        """Ask the server about *access_token*.

        Returns:
            The raw token info body on HTTP 200.

        Raises:
            AccessTokenRejectedError: On HTTP 401; the token needs a refresh.
            OAuthError: Any other structured error.
            ServerError: Any other non-200 status.
            ConnectionError_: On transport failure after all retries.
        """
        response = self._send(
            "GET",
            self._config.tokeninfo_url,
            timeout=self._config.verification_timeout,
            deadline=deadline,
            headers={"Authorization": f"Bearer {access_token}"},
            what="token verification",
        )
        if response.status_code == 200:
            return response.text
        if response.status_code == 401:
            raise AccessTokenRejectedError(f"access token rejected (401): {response.text}")
        oauth_error = parse_oauth_error(response)
        if oauth_error is not None:
            raise oauth_error
        raise ServerError(f"server returned status {response.status_code}: {response.text}")

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _record_from(
        self, response: httpx.Response, previous_refresh_token: str
    ) -> CredentialRecord:
        try:
            token = TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise ServerError(f"failed to parse token response: {exc}") from exc
        try:
            validate_token_response(token.access_token, token.token_type, token.expires_in)
        except TokenValidationError as exc:
            raise TokenValidationError(f"invalid token response: {exc}") from exc
        return token.to_record(self._config.client_id, previous_refresh_token)

    def _send(
        self,
        method: str,
        url: str,
        timeout: float,
        deadline: Optional[float],
        what: str,
        data: Optional[dict[str, str]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        """Send one request with exponential-backoff retry on 5xx and network errors."""
        assert self._client is not None, "Client not initialised -- use as context manager"

        max_retries = self._config.max_retries
        for attempt in range(max_retries + 1):
            if self._cancel_event.is_set():
                raise FlowCancelledError(f"{what} cancelled")
            kwargs: dict[str, Any] = {"timeout": _call_timeout(timeout, deadline)}
            if data is not None:
                kwargs["data"] = data
            if headers is not None:
                kwargs["headers"] = headers

            delay = 2**attempt  # 1, 2, 4, ...
            can_retry = attempt < max_retries and _fits_before(delay, deadline)
            try:
                response = self._client.request(method, url, **kwargs)
            except httpx.HTTPError as exc:
                if can_retry and isinstance(exc, httpx.TransportError):
                    logger.debug(
                        "%s: %s, retrying in %ss (attempt %d/%d)",
                        what, exc, delay, attempt + 1, max_retries,
                    )
                    self._pause(delay)
                    continue
                raise ConnectionError_(f"{what} failed: {exc}") from exc

            if response.status_code >= 500 and can_retry:
                logger.debug(
                    "%s: server error %d, retrying in %ss (attempt %d/%d)",
                    what, response.status_code, delay, attempt + 1, max_retries,
                )
                self._pause(delay)
                continue
            return response

        raise ServerError(f"{what} failed after all retries")  # pragma: no cover

    def _pause(self, delay: float) -> None:
        if self._cancel_event.wait(delay):
            raise FlowCancelledError("cancelled while waiting to retry")


def _call_timeout(per_call: float, deadline: Optional[float]) -> float:
    """Clip *per_call* to the time left before *deadline*."""
    if deadline is None:
        return per_call
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise FlowCancelledError("flow deadline exceeded")
    return min(per_call, remaining)


def _fits_before(delay: float, deadline: Optional[float]) -> bool:
    return deadline is None or time.monotonic() + delay < deadline
