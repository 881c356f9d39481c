"""Summary: Tests for Google Calendar and Microsoft Graph clients.

Importance: Ensures provider payloads are normalized and HTTP failures are classified.
Alternatives: Test providers only against live APIs.
"""

from __future__ import annotations

import http.client
import io
import json
import socket
import urllib.error
import urllib.parse
from datetime import datetime, timezone

import pytest

from familysync.errors import ProviderRequestError
from familysync.models import Account, CalendarEvent
from familysync.providers import (
    GoogleCalendarClient,
    OutlookCalendarClient,
    build_google_event_body,
    build_graph_event_body,
    build_provider_client,
    parse_google_event,
    parse_graph_event,
)

from conftest import build_config


class _Response:
    def __init__(self, payload: dict | None) -> None:
        self._body = json.dumps(payload).encode("utf-8") if payload is not None else b""

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "_Response":
        return self

    def __exit__(self, *exc) -> None:
        return None


def _account(provider: str) -> Account:
    return Account(
        account_id="acct",
        user_id=1,
        provider=provider,
        email="user@example.com",
        access_token="token",
        refresh_token="refresh",
        expires_at=None,
    )


def test_parse_google_all_day_and_timed_events() -> None:
    all_day = parse_google_event(
        {"id": "1", "summary": "Holiday", "start": {"date": "2026-03-01"}, "end": {"date": "2026-03-02"}},
        "cal",
    )
    timed = parse_google_event(
        {
            "id": "2",
            "start": {"dateTime": "2026-03-01T10:00:00-08:00"},
            "end": {"dateTime": "2026-03-01T11:00:00-08:00"},
            "recurrence": ["RRULE:FREQ=WEEKLY;BYDAY=MO"],
        },
        "cal",
    )
    assert all_day.is_all_day
    assert all_day.start == "2026-03-01"
    assert not timed.is_all_day
    assert timed.title == "Untitled"
    assert timed.rrule == "RRULE:FREQ=WEEKLY;BYDAY=MO"
    assert timed.category == "synced"


def test_google_event_body_for_all_day_and_recurrence() -> None:
    event = CalendarEvent(
        id="",
        calendar_id="primary",
        title="Camp",
        start="2026-07-01T00:00:00",
        end="2026-07-02T00:00:00",
        is_all_day=True,
        rrule="FREQ=DAILY;COUNT=5",
    )
    body = build_google_event_body(event, "America/Los_Angeles")
    assert body["start"] == {"date": "2026-07-01"}
    assert body["recurrence"] == ["RRULE:FREQ=DAILY;COUNT=5"]


def test_google_event_body_for_timed_event_carries_time_zone() -> None:
    event = CalendarEvent(
        id="", calendar_id="primary", title="Dentist", start="2026-03-01T09:00:00", end="2026-03-01T10:00:00"
    )
    body = build_google_event_body(event, "Europe/Berlin")
    assert body["start"] == {"dateTime": "2026-03-01T09:00:00", "timeZone": "Europe/Berlin"}
    assert "recurrence" not in body


def test_graph_event_roundtrip_fields() -> None:
    parsed = parse_graph_event(
        {
            "id": "g1",
            "subject": "Recital",
            "bodyPreview": "Bring flowers",
            "location": {"displayName": "Hall"},
            "start": {"dateTime": "2026-04-01T18:00:00.0000000", "timeZone": "UTC"},
            "end": {"dateTime": "2026-04-01T19:00:00.0000000", "timeZone": "UTC"},
            "isCancelled": True,
        },
        "cal",
    )
    assert parsed.location == "Hall"
    assert parsed.status == "cancelled"
    body = build_graph_event_body(parsed, "UTC")
    assert body["subject"] == "Recital"
    assert body["isAllDay"] is False


def test_build_provider_client_dispatches_by_provider() -> None:
    config = build_config("test.db")
    assert isinstance(build_provider_client(config, _account("google"), "t"), GoogleCalendarClient)
    assert isinstance(build_provider_client(config, _account("microsoft"), "t"), OutlookCalendarClient)
    with pytest.raises(ValueError):
        build_provider_client(config, _account("yahoo"), "t")


def test_google_list_events_query(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, object] = {}

    def _urlopen(request, timeout):
        seen["url"] = request.full_url
        seen["auth"] = request.get_header("Authorization")
        seen["timeout"] = timeout
        return _Response({"items": [{"id": "e1", "summary": "Swim", "start": {"date": "2026-03-05"}}]})

    monkeypatch.setattr("urllib.request.urlopen", _urlopen)
    client = GoogleCalendarClient("token", "https://example.test/calendar/v3", 5, "UTC")
    events = client.list_events(
        "family@group.calendar.google.com",
        datetime(2026, 3, 1, tzinfo=timezone.utc),
        datetime(2026, 7, 1, tzinfo=timezone.utc),
        200,
    )
    parsed = urllib.parse.urlparse(seen["url"])
    query = urllib.parse.parse_qs(parsed.query)
    assert parsed.path == "/calendar/v3/calendars/family%40group.calendar.google.com/events"
    assert query["singleEvents"] == ["true"]
    assert query["orderBy"] == ["startTime"]
    assert query["maxResults"] == ["200"]
    assert seen["auth"] == "Bearer token"
    assert seen["timeout"] == 5
    assert events[0].title == "Swim"
    assert events[0].calendar_id == "family@group.calendar.google.com"


def test_outlook_email_lookup(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "urllib.request.urlopen",
        lambda request, timeout: _Response({"mail": None, "userPrincipalName": "kid@outlook.com"}),
    )
    client = OutlookCalendarClient("token", "https://graph.test/v1.0", 5, "UTC")
    assert client.fetch_account_email() == "kid@outlook.com"


def test_delete_with_empty_body_succeeds(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("urllib.request.urlopen", lambda request, timeout: _Response(None))
    GoogleCalendarClient("token", "https://example.test", 5, "UTC").delete_event("primary", "e1")


def test_http_404_is_not_found(monkeypatch: pytest.MonkeyPatch) -> None:
    def _urlopen(request, timeout):
        raise urllib.error.HTTPError(request.full_url, 404, "Not Found", None, io.BytesIO(b"{}"))

    monkeypatch.setattr("urllib.request.urlopen", _urlopen)
    with pytest.raises(ProviderRequestError) as excinfo:
        GoogleCalendarClient("token", "https://example.test", 5, "UTC").delete_event("primary", "e1")
    assert excinfo.value.status == 404
    assert excinfo.value.is_not_found


def test_timeout_is_flagged(monkeypatch: pytest.MonkeyPatch) -> None:
    def _urlopen(request, timeout):
        raise urllib.error.URLError(socket.timeout("timed out"))

    monkeypatch.setattr("urllib.request.urlopen", _urlopen)
    with pytest.raises(ProviderRequestError) as excinfo:
        OutlookCalendarClient("token", "https://graph.test/v1.0", 5, "UTC").list_calendars()
    assert excinfo.value.timed_out
    assert not excinfo.value.is_not_found


class _BrokenResponse(_Response):
    def read(self) -> bytes:
        raise http.client.IncompleteRead(b"{\"items\": [", 512)


def test_non_json_body_is_provider_error(monkeypatch: pytest.MonkeyPatch) -> None:
    class _HtmlResponse(_Response):
        def read(self) -> bytes:
            return b"<html>502 Bad Gateway</html>"

    monkeypatch.setattr("urllib.request.urlopen", lambda request, timeout: _HtmlResponse(None))
    with pytest.raises(ProviderRequestError) as excinfo:
        GoogleCalendarClient("token", "https://example.test", 5, "UTC").list_calendars()
    assert "not JSON" in excinfo.value.message
    assert excinfo.value.status is None


def test_truncated_body_is_provider_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("urllib.request.urlopen", lambda request, timeout: _BrokenResponse(None))
    with pytest.raises(ProviderRequestError):
        OutlookCalendarClient("token", "https://graph.test/v1.0", 5, "UTC").list_calendars()
