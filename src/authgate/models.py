"""Canonical Pydantic models shared across all authgate modules.

This is the single source of truth for data shapes in the project. Every other
module imports from here rather than defining its own models. The models fall
into three groups:

**Configuration** -- :class:`AppConfig`, built once by
    :func:`authgate.config.resolve_config` and passed explicitly to every
    component.

**Persisted credentials** -- :class:`CredentialRecord` and
    :class:`CredentialStoreDocument`, the on-disk token file format::

        {"tokens": {"<client_id>": {"access_token": "...", "refresh_token": "...",
                                    "token_type": "Bearer",
                                    "expires_at": "2026-10-18T12:00:00Z",
                                    "client_id": "<client_id>"}}}

**Server responses** -- :class:`DeviceCodeResponse`, :class:`TokenResponse`
    and :class:`ErrorResponse`, plus the in-memory :class:`DeviceAuthorization`
    derived from a device code response.

All models use Pydantic v2. Records are frozen: a refresh produces a new
record rather than mutating the one a caller already holds.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MIN_ACCESS_TOKEN_LENGTH = 10
"""Shortest access token accepted from the server."""

TOKEN_PREVIEW_LENGTH = 50
"""Characters of the access token shown in terminal output."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Configuration ---


class AppConfig(BaseModel):
    """Effective configuration for one invocation.

    Replaces process-wide globals: every component receives the config it
    needs as an argument, so tests can build isolated configurations.

    Example::

        AppConfig(
            server_url="https://auth.example.com",
            client_id="7b0c2a3e-5a7f-4f0e-9d59-0a1c1d3c7f21",
            token_file=Path("/tmp/tokens.json"),
        )
    """

    model_config = ConfigDict(frozen=True)

    server_url: str = Field(
        default="http://localhost:8080", description="Base URL of the OAuth server"
    )
    client_id: str = Field(min_length=1, description="OAuth client identifier")
    token_file: Path = Field(
        default=Path(".authgate-tokens.json"),
        description="Shared multi-client token file",
    )
    scope: str = Field(default="read write", description="Requested OAuth scopes")
    device_code_timeout: float = Field(default=10.0, description="Seconds per device code request")
    token_exchange_timeout: float = Field(default=5.0, description="Seconds per token poll")
    verification_timeout: float = Field(default=10.0, description="Seconds per tokeninfo call")
    refresh_timeout: float = Field(default=10.0, description="Seconds per refresh request")
    max_retries: int = Field(default=3, description="Retries on 5xx and network errors")
    verify_ssl: bool = Field(default=True, description="Verify TLS certificates")

    @field_validator("server_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def device_authorization_url(self) -> str:
        return f"{self.server_url}/oauth/device/code"

    @property
    def token_url(self) -> str:
        return f"{self.server_url}/oauth/token"

    @property
    def tokeninfo_url(self) -> str:
        return f"{self.server_url}/oauth/tokeninfo"


# --- Persisted credentials ---


class CredentialRecord(BaseModel):
    """One OAuth grant for one client identity.

    Validation runs on construction, so a record that fails the token rules
    can never exist and therefore can never be written to the store.

    Attributes:
        access_token: Opaque bearer token, at least
            :data:`MIN_ACCESS_TOKEN_LENGTH` characters.
        refresh_token: Opaque refresh token. Empty only before the server
            has issued one.
        token_type: ``"Bearer"`` or empty.
        expires_at: Absolute UTC expiry. Naive datetimes are read as UTC.
        client_id: The client identity; always equals the key the record is
            stored under.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str = ""
    token_type: str = ""
    expires_at: datetime
    client_id: str = Field(min_length=1)

    @field_validator("access_token")
    @classmethod
    def _check_access_token(cls, value: str) -> str:
        if not value:
            raise ValueError("access_token is empty")
        if len(value) < MIN_ACCESS_TOKEN_LENGTH:
            raise ValueError(f"access_token is too short (length: {len(value)})")
        return value

    @field_validator("refresh_token", "token_type", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Optional[str]) -> str:
        return value or ""

    @field_validator("token_type")
    @classmethod
    def _check_token_type(cls, value: str) -> str:
        if value and value != "Bearer":
            raise ValueError(f"unexpected token_type: {value} (expected Bearer)")
        return value

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` once ``expires_at`` is not in the future."""
        return (now or _utcnow()) >= self.expires_at

    def expires_in(self, now: Optional[datetime] = None) -> timedelta:
        """Remaining lifetime, rounded to whole seconds (negative once expired)."""
        remaining = self.expires_at - (now or _utcnow())
        return timedelta(seconds=round(remaining.total_seconds()))

    def preview(self, limit: int = TOKEN_PREVIEW_LENGTH) -> str:
        """The first *limit* characters of the access token, for display only."""
        return self.access_token[:limit]


class CredentialStoreDocument(BaseModel):
    """The full token file: a mapping from ``client_id`` to :class:`CredentialRecord`.

    ``tokens`` may be ``null`` or missing in a file written by hand; both
    read as an empty mapping.
    """

    tokens: dict[str, CredentialRecord] = Field(default_factory=dict)

    @field_validator("tokens", mode="before")
    @classmethod
    def _null_as_empty(cls, value: object) -> object:
        return value if value is not None else {}

    @model_validator(mode="after")
    def _keys_match_client_ids(self) -> CredentialStoreDocument:
        for key, record in self.tokens.items():
            if record.client_id != key:
                raise ValueError(
                    f"record stored under '{key}' belongs to client '{record.client_id}'"
                )
        return self

    def get(self, client_id: str) -> Optional[CredentialRecord]:
        return self.tokens.get(client_id)

    def put(self, record: CredentialRecord) -> None:
        """Insert or overwrite the record for ``record.client_id`` only."""
        self.tokens[record.client_id] = record


# --- Server responses ---


class ErrorResponse(BaseModel):
    """Structured OAuth error body (:rfc:`6749` section 5.2)."""

    model_config = ConfigDict(extra="ignore")

    error: str
    error_description: str = ""

    @field_validator("error_description", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Optional[str]) -> str:
        return value or ""


class DeviceCodeResponse(BaseModel):
    """Body of a successful device authorization request (:rfc:`8628` section 3.2)."""

    model_config = ConfigDict(extra="ignore")

    device_code: str = Field(min_length=1)
    user_code: str = Field(min_length=1)
    verification_uri: str = ""
    verification_url: str = ""
    verification_uri_complete: str = ""
    expires_in: int = 1800
    interval: int = 0

    def to_authorization(self, now: Optional[datetime] = None) -> DeviceAuthorization:
        """Convert relative lifetimes into an absolute :class:`DeviceAuthorization`."""
        # Some servers (Google) still send the draft name ``verification_url``.
        uri = self.verification_uri or self.verification_url
        return DeviceAuthorization(
            device_code=self.device_code,
            user_code=self.user_code,
            verification_uri=uri,
            verification_uri_complete=self.verification_uri_complete or uri,
            expiry=(now or _utcnow()) + timedelta(seconds=self.expires_in),
            interval=self.interval,
        )


class DeviceAuthorization(BaseModel):
    """An in-flight device authorization. Never persisted.

    Attributes:
        device_code: Secret sent back to the token endpoint while polling.
        user_code: Short code the human types at the verification URI.
        verification_uri: Where the human goes to enter ``user_code``.
        verification_uri_complete: Verification URI with the code embedded.
        expiry: Absolute time after which the device code is useless.
        interval: Server-suggested minimum polling spacing in seconds;
            ``0`` means the server did not say.
    """

    model_config = ConfigDict(frozen=True)

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str = ""
    expiry: datetime
    interval: int = 0


class TokenResponse(BaseModel):
    """Body of a successful token endpoint response.

    Fields default to "absent" values so that an incomplete body parses and
    is then rejected by :func:`authgate.auth.exchange.validate_token_response`
    with a precise message, rather than failing with a generic parse error.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str = ""
    refresh_token: str = ""
    token_type: str = ""
    expires_in: int = 0
    scope: str = ""

    @field_validator("access_token", "refresh_token", "token_type", "scope", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Optional[str]) -> str:
        return value or ""

    @field_validator("expires_in", mode="before")
    @classmethod
    def _none_as_zero(cls, value: Optional[int]) -> int:
        return value or 0

    def to_record(
        self,
        client_id: str,
        previous_refresh_token: str = "",
        now: Optional[datetime] = None,
    ) -> CredentialRecord:
        """Build the :class:`CredentialRecord` this response grants.

        An empty ``refresh_token`` keeps *previous_refresh_token* (fixed
        refresh token servers); a non-empty one replaces it (rotating
        servers).
        """
        return CredentialRecord(
            access_token=self.access_token,
            refresh_token=self.refresh_token or previous_refresh_token,
            token_type=self.token_type,
            expires_at=(now or _utcnow()) + timedelta(seconds=self.expires_in),
            client_id=client_id,
        )
