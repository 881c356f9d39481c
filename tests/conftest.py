"""Summary: Shared fixtures for FamilySync tests.

Importance: Provides isolated configs, SQLite stores, and fake provider clients with no network access.
Alternatives: Patch urllib in every test module.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

import pytest

from familysync.config import AppConfig
from familysync.errors import ProviderRequestError
from familysync.models import Account, CalendarEvent, CalendarInfo, utc_now
from familysync.oauth import OAuthTokenResult
from familysync.providers import CalendarProviderClient
from familysync.storage.sqlite_store import SqliteStore
from familysync.token_codec import TokenCodec
from familysync.tokens import TokenStore


class FakeCalendarClient(CalendarProviderClient):
    """In-memory provider client that records every call."""

    provider = "google"

    def __init__(
        self,
        email: str,
        calendars: list[CalendarInfo] | None = None,
        events: dict[str, list[CalendarEvent]] | None = None,
        list_error: ProviderRequestError | None = None,
        failing_calendars: tuple[str, ...] = (),
        write_error: ProviderRequestError | None = None,
    ) -> None:
        self.email = email
        self.calendars = calendars if calendars is not None else [
            CalendarInfo(id=email, account_id="", name="Primary", color="#123456", primary=True)
        ]
        self.events = events or {}
        self.list_error = list_error
        self.failing_calendars = failing_calendars
        self.write_error = write_error
        self.tokens: list[str] = []
        self.list_calls: list[tuple[str, datetime, datetime, int]] = []
        self.inserted: list[tuple[str, CalendarEvent]] = []
        self.patched: list[tuple[str, str, CalendarEvent]] = []
        self.deleted: list[tuple[str, str]] = []

    def list_calendars(self) -> list[CalendarInfo]:
        if self.list_error:
            raise self.list_error
        return list(self.calendars)

    def list_events(
        self, calendar_id: str, time_min: datetime, time_max: datetime, max_results: int
    ) -> list[CalendarEvent]:
        self.list_calls.append((calendar_id, time_min, time_max, max_results))
        if calendar_id in self.failing_calendars:
            raise ProviderRequestError("calendar unavailable", status=500)
        return list(self.events.get(calendar_id, []))[:max_results]

    def insert_event(self, calendar_id: str, event: CalendarEvent) -> CalendarEvent:
        if self.write_error:
            raise self.write_error
        self.inserted.append((calendar_id, event))
        return replace(event, id=f"evt{len(self.inserted)}", calendar_id=calendar_id)

    def patch_event(self, calendar_id: str, event_id: str, event: CalendarEvent) -> CalendarEvent:
        if self.write_error:
            raise self.write_error
        self.patched.append((calendar_id, event_id, event))
        return replace(event, id=event_id, calendar_id=calendar_id)

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        if self.write_error:
            raise self.write_error
        self.deleted.append((calendar_id, event_id))

    def fetch_account_email(self) -> str:
        return self.email


class FakeClientRegistry:
    """Maps account emails to fake clients and acts as a client factory."""

    def __init__(self) -> None:
        self.clients: dict[str, FakeCalendarClient] = {}

    def add(self, email: str, **kwargs) -> FakeCalendarClient:
        client = FakeCalendarClient(email, **kwargs)
        self.clients[email.lower()] = client
        return client

    def factory(self, config: AppConfig, account: Account, access_token: str) -> FakeCalendarClient:
        client = self.clients.get(account.email.lower())
        if client is None:
            client = self.add(account.email)
        client.tokens.append(access_token)
        return client


def build_config(db_path: str, **overrides) -> AppConfig:
    values = dict(
        db_path=db_path,
        api_host="127.0.0.1",
        api_port=8000,
        api_key="",
        default_user_name="Household Owner",
        default_user_email="owner@familysync.test",
        google_client_id="google-client",
        google_client_secret="google-secret",
        microsoft_client_id="ms-client",
        microsoft_client_secret="ms-secret",
        oauth_redirect_uri="http://localhost:8000/oauth/callback",
        token_secret="secret",
    )
    values.update(overrides)
    return AppConfig(**values)


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return build_config(str(tmp_path / "test.db"))


@pytest.fixture
def store(config: AppConfig) -> SqliteStore:
    sqlite_store = SqliteStore(config.db_path)
    sqlite_store.initialize()
    return sqlite_store


@pytest.fixture
def token_store(store: SqliteStore) -> TokenStore:
    return TokenStore(store=store, codec=TokenCodec("secret"))


@pytest.fixture
def fake_clients() -> FakeClientRegistry:
    return FakeClientRegistry()


@pytest.fixture
def connect_account(token_store: TokenStore) -> Callable[..., Account]:
    """Return a helper that stores an account with tokens expiring at a chosen offset."""

    def _connect(
        user_id: int,
        email: str,
        provider: str = "google",
        expires_in: timedelta | None = timedelta(hours=1),
        refresh_token: str | None = "refresh-token",
        access_token: str = "access-token",
    ) -> Account:
        expires_at = utc_now() + expires_in if expires_in is not None else None
        tokens = OAuthTokenResult(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            token_type="Bearer",
            raw={},
        )
        return token_store.connect_account(user_id, provider, email, tokens)

    return _connect
