"""Summary: OAuth helper utilities for calendar provider accounts.

Importance: Builds authorization URLs, exchanges codes, and refreshes tokens without extra dependencies.
Alternatives: Use provider SDKs such as google-auth or MSAL for OAuth flows.
"""

from __future__ import annotations

import json
import secrets
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from familysync.config import AppConfig
from familysync.models import utc_now


GOOGLE_SCOPES = (
    "openid email "
    "https://www.googleapis.com/auth/calendar "
    "https://www.googleapis.com/auth/calendar.events"
)
MICROSOFT_SCOPES = "offline_access User.Read https://graph.microsoft.com/Calendars.ReadWrite"


class OAuthError(Exception):
    """Summary: A token endpoint rejected a request or could not be reached.

    Importance: Keeps the provider error code so refresh failures can be classified.
    Alternatives: Raise RuntimeError with the raw response body.
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status: int | None = None,
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status = status
        self.timed_out = timed_out

    @property
    def is_invalid_grant(self) -> bool:
        """Summary: Whether the refresh token was revoked, expired, or otherwise rejected.

        Importance: Separates failures that need the user to reconnect from retryable ones.
        Alternatives: Treat every 400 from the token endpoint as terminal.
        """

        if self.error_code == "invalid_grant":
            return True
        return "invalid_grant" in self.message


@dataclass(frozen=True)
class OAuthTokenResult:
    """Summary: Normalized OAuth token response data.

    Importance: Provides a consistent token representation for storage and refresh logic.
    Alternatives: Store the raw provider response without normalization.
    """

    access_token: str
    refresh_token: str | None
    expires_at: datetime | None
    token_type: str | None
    raw: dict[str, Any]

    @staticmethod
    def from_response(payload: dict[str, Any]) -> "OAuthTokenResult":
        """Summary: Build an OAuthTokenResult from a provider payload.

        Importance: Normalizes expiry and optional fields across providers.
        Alternatives: Use provider-specific token response classes.
        """

        expires_in = payload.get("expires_in")
        expires_at = None
        if isinstance(expires_in, (int, float)) or (isinstance(expires_in, str) and expires_in.isdigit()):
            expires_at = utc_now() + timedelta(seconds=int(expires_in))
        return OAuthTokenResult(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=expires_at,
            token_type=payload.get("token_type"),
            raw=payload,
        )


def create_state_token() -> str:
    """Summary: Generate a CSRF state token.

    Importance: Protects OAuth flows from CSRF attacks.
    Alternatives: Use server-side session storage with pre-generated tokens.
    """

    return secrets.token_urlsafe(24)


def build_google_auth_url(config: AppConfig, state: str) -> str:
    """Summary: Build a Google OAuth authorization URL.

    Importance: Requests offline access so a refresh token is issued for background sync.
    Alternatives: Use the google-auth-oauthlib flow helpers.
    """

    params = {
        "client_id": config.google_client_id,
        "redirect_uri": config.oauth_redirect_uri,
        "response_type": "code",
        "access_type": "offline",
        "prompt": "consent",
        "scope": GOOGLE_SCOPES,
        "state": state,
    }
    return "https://accounts.google.com/o/oauth2/v2/auth?" + urllib.parse.urlencode(params)


def build_microsoft_auth_url(config: AppConfig, state: str) -> str:
    """Summary: Build a Microsoft OAuth authorization URL.

    Importance: Enables Outlook calendar authorization with offline access.
    Alternatives: Use MSAL helpers.
    """

    params = {
        "client_id": config.microsoft_client_id,
        "redirect_uri": config.oauth_redirect_uri,
        "response_type": "code",
        "response_mode": "query",
        "scope": MICROSOFT_SCOPES,
        "state": state,
    }
    return "https://login.microsoftonline.com/common/oauth2/v2.0/authorize?" + urllib.parse.urlencode(params)


def exchange_oauth_code(config: AppConfig, provider: str, code: str) -> OAuthTokenResult:
    """Summary: Exchange an OAuth authorization code for tokens.

    Importance: Completes OAuth flows by retrieving access and refresh tokens.
    Alternatives: Use provider SDKs or external auth services.
    """

    response = _post_form(
        _token_url(config, provider),
        _token_payload(config, provider, code),
        timeout=config.http_timeout_seconds,
    )
    return OAuthTokenResult.from_response(response)


def refresh_oauth_token(config: AppConfig, provider: str, refresh_token: str) -> OAuthTokenResult:
    """Summary: Exchange a refresh token for a new access token.

    Importance: Keeps accounts usable without the user re-running the consent flow.
    Alternatives: Require interactive OAuth whenever the access token expires.
    """

    response = _post_form(
        _token_url(config, provider),
        _refresh_payload(config, provider, refresh_token),
        timeout=config.http_timeout_seconds,
    )
    return OAuthTokenResult.from_response(response)


def _token_url(config: AppConfig, provider: str) -> str:
    if provider == "google":
        return config.google_token_url
    if provider == "microsoft":
        return config.microsoft_token_url
    raise ValueError(f"Unknown OAuth provider: {provider}")


def _token_payload(config: AppConfig, provider: str, code: str) -> dict[str, str]:
    """Summary: Build token request parameters for OAuth code exchange.

    Importance: Ensures provider-specific payloads include required fields.
    Alternatives: Assemble payloads inline inside the exchange function.
    """

    client_id, client_secret = _client_credentials(config, provider)
    payload = {
        "client_id": client_id,
        "client_secret": client_secret,
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": config.oauth_redirect_uri,
    }
    if provider == "microsoft":
        payload["scope"] = MICROSOFT_SCOPES
    return payload


def _refresh_payload(config: AppConfig, provider: str, refresh_token: str) -> dict[str, str]:
    """Summary: Build token request parameters for a refresh grant.

    Importance: Microsoft requires the scope on refresh; Google rejects unknown fields silently.
    Alternatives: Share one payload builder with a grant-type switch.
    """

    client_id, client_secret = _client_credentials(config, provider)
    payload = {
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }
    if provider == "microsoft":
        payload["scope"] = MICROSOFT_SCOPES
    return payload


def _client_credentials(config: AppConfig, provider: str) -> tuple[str, str]:
    if provider == "google":
        client_id, client_secret = config.google_client_id, config.google_client_secret
    elif provider == "microsoft":
        client_id, client_secret = config.microsoft_client_id, config.microsoft_client_secret
    else:
        raise ValueError(f"Unknown OAuth provider: {provider}")
    if not client_id or not client_secret:
        raise ValueError(f"Missing OAuth client credentials for {provider}")
    return client_id, client_secret


def _post_form(url: str, payload: dict[str, str], timeout: float = 10) -> dict[str, Any]:
    """Summary: Send a form-encoded POST request and parse JSON.

    Importance: Converts HTTP, network, and timeout failures into OAuthError.
    Alternatives: Use requests or a provider SDK.
    """

    data = urllib.parse.urlencode(payload).encode("utf-8")
    request = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8")
        error_code, description = _parse_error_body(error_body)
        raise OAuthError(
            f"Token request failed: {description or error_body or exc.reason}",
            error_code=error_code,
            status=exc.code,
        ) from exc
    except (socket.timeout, TimeoutError) as exc:
        raise OAuthError("Token request timed out", timed_out=True) from exc
    except urllib.error.URLError as exc:
        timed_out = isinstance(exc.reason, (socket.timeout, TimeoutError))
        raise OAuthError(f"Token request failed: {exc.reason}", timed_out=timed_out) from exc
    return json.loads(raw)


def _parse_error_body(body: str) -> tuple[str | None, str | None]:
    """Extract (error, error_description) from an OAuth error response."""

    try:
        payload = json.loads(body)
    except ValueError:
        return None, None
    if not isinstance(payload, dict):
        return None, None
    error = payload.get("error")
    if isinstance(error, dict):
        return error.get("code"), error.get("message")
    description = payload.get("error_description")
    if error and description:
        return error, f"{error}: {description}"
    return error, error
