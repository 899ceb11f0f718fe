"""Tests for the shared pydantic models."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from authgate.models import (
    AppConfig,
    CredentialRecord,
    CredentialStoreDocument,
    DeviceCodeResponse,
    TokenResponse,
)

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def _record(**kwargs: object) -> CredentialRecord:
    defaults: dict[str, object] = {
        "access_token": "access-token-0123456789",
        "refresh_token": "refresh-token",
        "token_type": "Bearer",
        "expires_at": NOW + timedelta(hours=1),
        "client_id": "client-a",
    }
    defaults.update(kwargs)
    return CredentialRecord(**defaults)  # type: ignore[arg-type]


class TestCredentialRecord:
    @pytest.mark.parametrize("token", ["", "short"])
    def test_rejects_bad_access_token(self, token: str) -> None:
        with pytest.raises(ValidationError):
            _record(access_token=token)

    def test_rejects_non_bearer(self) -> None:
        with pytest.raises(ValidationError, match="Bearer"):
            _record(token_type="mac")

    def test_empty_token_type_allowed(self) -> None:
        assert _record(token_type=None).token_type == ""

    def test_naive_expiry_is_utc(self) -> None:
        record = _record(expires_at=datetime(2030, 1, 1, 0, 0))
        assert record.expires_at.tzinfo is not None
        assert record.expires_at == datetime(2030, 1, 1, tzinfo=timezone.utc)

    def test_expiry_helpers(self) -> None:
        record = _record()
        assert not record.is_expired(NOW)
        assert record.is_expired(NOW + timedelta(hours=1))
        assert record.expires_in(NOW) == timedelta(hours=1)
        assert record.expires_in(NOW + timedelta(hours=2)) == timedelta(hours=-1)

    def test_preview_is_clamped(self) -> None:
        record = _record(access_token="x" * 80)
        assert record.preview() == "x" * 50
        assert record.access_token == "x" * 80

    def test_frozen(self) -> None:
        record = _record()
        with pytest.raises(ValidationError):
            record.access_token = "something-else"  # type: ignore[misc]


class TestCredentialStoreDocument:
    def test_missing_tokens(self) -> None:
        assert CredentialStoreDocument.model_validate({}).tokens == {}

    def test_null_tokens(self) -> None:
        assert CredentialStoreDocument.model_validate({"tokens": None}).tokens == {}

    def test_put_only_touches_its_key(self) -> None:
        doc = CredentialStoreDocument()
        doc.put(_record(client_id="a"))
        doc.put(_record(client_id="b", access_token="access-token-for-b"))
        doc.put(_record(client_id="a", access_token="access-token-for-a2"))
        assert doc.get("a").access_token == "access-token-for-a2"
        assert doc.get("b").access_token == "access-token-for-b"
        assert doc.get("missing") is None

    def test_rejects_mismatched_key(self) -> None:
        data = {"tokens": {"a": json.loads(_record(client_id="b").model_dump_json())}}
        with pytest.raises(ValidationError):
            CredentialStoreDocument.model_validate(data)

    def test_json_shape(self) -> None:
        doc = CredentialStoreDocument()
        doc.put(_record())
        data = json.loads(doc.model_dump_json())
        assert set(data["tokens"]["client-a"]) == {
            "access_token",
            "refresh_token",
            "token_type",
            "expires_at",
            "client_id",
        }


class TestDeviceCodeResponse:
    def test_to_authorization(self) -> None:
        auth = DeviceCodeResponse(
            device_code="d",
            user_code="U",
            verification_uri="https://x/device",
            expires_in=600,
            interval=5,
        ).to_authorization(now=NOW)
        assert auth.expiry == NOW + timedelta(seconds=600)
        assert auth.verification_uri_complete == "https://x/device"
        assert auth.interval == 5

    def test_verification_url_alias(self) -> None:
        auth = DeviceCodeResponse(
            device_code="d", user_code="U", verification_url="https://x/device"
        ).to_authorization(now=NOW)
        assert auth.verification_uri == "https://x/device"
        assert auth.interval == 0


class TestTokenResponse:
    def test_rotation_keeps_new_refresh_token(self) -> None:
        record = TokenResponse(
            access_token="access-token-0123456789", refresh_token="new", expires_in=60
        ).to_record("client-a", previous_refresh_token="old", now=NOW)
        assert record.refresh_token == "new"
        assert record.expires_at == NOW + timedelta(seconds=60)

    def test_fixed_mode_keeps_previous(self) -> None:
        record = TokenResponse(
            access_token="access-token-0123456789", expires_in=60
        ).to_record("client-a", previous_refresh_token="old", now=NOW)
        assert record.refresh_token == "old"

    def test_nulls_read_as_absent(self) -> None:
        parsed = TokenResponse.model_validate(
            {"access_token": None, "refresh_token": None, "expires_in": None}
        )
        assert parsed.access_token == ""
        assert parsed.expires_in == 0


class TestAppConfig:
    def test_endpoints(self) -> None:
        config = AppConfig(server_url="https://a.example/", client_id="c")
        assert config.device_authorization_url == "https://a.example/oauth/device/code"
        assert config.token_url == "https://a.example/oauth/token"
        assert config.tokeninfo_url == "https://a.example/oauth/tokeninfo"

    def test_timeouts(self) -> None:
        config = AppConfig(client_id="c")
        assert config.device_code_timeout == 10
        assert config.token_exchange_timeout == 5
        assert config.verification_timeout == 10
        assert config.refresh_timeout == 10

    def test_client_id_required(self) -> None:
        with pytest.raises(ValidationError):
            AppConfig(client_id="")
