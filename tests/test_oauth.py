"""Summary: Tests for OAuth URL builders, payloads, and token endpoint errors.

Importance: Ensures OAuth requests use config values and refresh failures are classified.
Alternatives: Validate OAuth flows manually.
"""

from __future__ import annotations

import io
import json
import socket
import urllib.error

import pytest

from familysync.oauth import (
    OAuthError,
    OAuthTokenResult,
    _client_credentials,
    _parse_error_body,
    _refresh_payload,
    _token_payload,
    build_google_auth_url,
    build_microsoft_auth_url,
    refresh_oauth_token,
)

from conftest import build_config


def _config():
    return build_config("test.db")


class _Response:
    def __init__(self, payload: dict) -> None:
        self._body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "_Response":
        return self

    def __exit__(self, *exc) -> None:
        return None


def test_google_auth_url_requests_offline_access() -> None:
    url = build_google_auth_url(_config(), "state-1")
    assert "client_id=google-client" in url
    assert "access_type=offline" in url
    assert "state=state-1" in url


def test_microsoft_auth_url_includes_client_id() -> None:
    url = build_microsoft_auth_url(_config(), "state-2")
    assert "client_id=ms-client" in url
    assert "offline_access" in url


def test_google_token_payload_includes_redirect_uri() -> None:
    payload = _token_payload(_config(), "google", "code")
    assert payload["redirect_uri"] == "http://localhost:8000/oauth/callback"
    assert payload["grant_type"] == "authorization_code"


def test_refresh_payloads() -> None:
    google = _refresh_payload(_config(), "google", "refresh")
    microsoft = _refresh_payload(_config(), "microsoft", "refresh")
    assert google["grant_type"] == "refresh_token"
    assert "scope" not in google
    assert "Calendars.ReadWrite" in microsoft["scope"]


def test_missing_client_credentials_raise() -> None:
    config = build_config("test.db", google_client_secret="")
    with pytest.raises(ValueError):
        _client_credentials(config, "google")
    with pytest.raises(ValueError):
        _client_credentials(_config(), "yahoo")


def test_token_result_computes_expiry() -> None:
    result = OAuthTokenResult.from_response({"access_token": "a", "expires_in": "3600"})
    assert result.expires_at is not None
    assert result.refresh_token is None


def test_parse_error_body_variants() -> None:
    assert _parse_error_body('{"error": "invalid_grant", "error_description": "Bad"}') == (
        "invalid_grant",
        "invalid_grant: Bad",
    )
    assert _parse_error_body("not json") == (None, None)


def test_invalid_grant_classification() -> None:
    assert OAuthError("x", error_code="invalid_grant").is_invalid_grant
    assert OAuthError("Token request failed: invalid_grant: expired").is_invalid_grant
    assert not OAuthError("Token request failed: server_error", error_code="server_error").is_invalid_grant


def test_refresh_http_error_carries_error_code(monkeypatch: pytest.MonkeyPatch) -> None:
    def _urlopen(request, timeout):
        body = io.BytesIO(b'{"error": "invalid_grant", "error_description": "Token revoked"}')
        raise urllib.error.HTTPError(request.full_url, 400, "Bad Request", None, body)

    monkeypatch.setattr("urllib.request.urlopen", _urlopen)
    with pytest.raises(OAuthError) as excinfo:
        refresh_oauth_token(_config(), "google", "refresh")
    assert excinfo.value.status == 400
    assert excinfo.value.is_invalid_grant


def test_refresh_timeout_is_flagged(monkeypatch: pytest.MonkeyPatch) -> None:
    def _urlopen(request, timeout):
        raise socket.timeout("timed out")

    monkeypatch.setattr("urllib.request.urlopen", _urlopen)
    with pytest.raises(OAuthError) as excinfo:
        refresh_oauth_token(_config(), "microsoft", "refresh")
    assert excinfo.value.timed_out
    assert not excinfo.value.is_invalid_grant


def test_refresh_success_parses_tokens(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, object] = {}

    def _urlopen(request, timeout):
        seen["url"] = request.full_url
        seen["timeout"] = timeout
        return _Response({"access_token": "new", "expires_in": 3599, "token_type": "Bearer"})

    monkeypatch.setattr("urllib.request.urlopen", _urlopen)
    result = refresh_oauth_token(_config(), "google", "refresh")
    assert result.access_token == "new"
    assert seen["url"] == "https://oauth2.googleapis.com/token"
    assert seen["timeout"] == 10.0
