"""Summary: Calendar provider clients for Google Calendar and Microsoft Graph.

Importance: Gives sync and mutations one typed interface over each provider's REST API.
Alternatives: Use googleapiclient and msgraph SDKs directly in the services.
"""

from __future__ import annotations

import http.client
import json
import socket
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from familysync.config import AppConfig
from familysync.errors import ProviderRequestError
from familysync.models import Account, CalendarEvent, CalendarInfo


DEFAULT_CALENDAR_COLOR = "#4285F4"


class CalendarProviderClient(ABC):
    """Summary: Abstract interface for one provider account's calendars.

    Importance: Standardizes calendar listing and event writes across providers and test fakes.
    Alternatives: Couple the orchestrator to a single calendar API.
    """

    provider = ""

    @abstractmethod
    def list_calendars(self) -> list[CalendarInfo]:
        """Summary: List the calendars visible to the account.

        Importance: Sync walks every calendar, not just the primary one.
        Alternatives: Sync only the primary calendar.
        """

    @abstractmethod
    def list_events(
        self, calendar_id: str, time_min: datetime, time_max: datetime, max_results: int
    ) -> list[CalendarEvent]:
        """Summary: List expanded event instances in a time window (first page only).

        Importance: Bounds each sync to a fixed window and page size.
        Alternatives: Follow page tokens until exhausted.
        """

    @abstractmethod
    def insert_event(self, calendar_id: str, event: CalendarEvent) -> CalendarEvent:
        """Create an event and return the provider's copy."""

    @abstractmethod
    def patch_event(self, calendar_id: str, event_id: str, event: CalendarEvent) -> CalendarEvent:
        """Update an event and return the provider's copy."""

    @abstractmethod
    def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete an event."""

    @abstractmethod
    def fetch_account_email(self) -> str:
        """Return the mailbox address the token belongs to."""


class GoogleCalendarClient(CalendarProviderClient):
    """Summary: Google Calendar API v3 client bound to one access token.

    Importance: Provides calendar sync and event writes for Google accounts.
    Alternatives: Use google-api-python-client.
    """

    provider = "google"

    def __init__(self, access_token: str, base_url: str, timeout: float, time_zone: str) -> None:
        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._time_zone = time_zone

    def list_calendars(self) -> list[CalendarInfo]:
        payload = self._call("GET", "/users/me/calendarList")
        return [
            CalendarInfo(
                id=item["id"],
                account_id="",
                name=item.get("summary") or "Unnamed",
                color=item.get("backgroundColor") or DEFAULT_CALENDAR_COLOR,
                primary=bool(item.get("primary", False)),
                source=self.provider,
            )
            for item in payload.get("items", [])
            if item.get("id")
        ]

    def list_events(
        self, calendar_id: str, time_min: datetime, time_max: datetime, max_results: int
    ) -> list[CalendarEvent]:
        query = urllib.parse.urlencode(
            {
                "timeMin": time_min.isoformat(),
                "timeMax": time_max.isoformat(),
                "maxResults": max_results,
                "singleEvents": "true",
                "orderBy": "startTime",
            }
        )
        payload = self._call("GET", f"/calendars/{_quote(calendar_id)}/events?{query}")
        return [
            parse_google_event(item, calendar_id)
            for item in payload.get("items", [])
            if item.get("id")
        ]

    def insert_event(self, calendar_id: str, event: CalendarEvent) -> CalendarEvent:
        body = build_google_event_body(event, self._time_zone)
        payload = self._call("POST", f"/calendars/{_quote(calendar_id)}/events", body)
        return parse_google_event(payload, calendar_id)

    def patch_event(self, calendar_id: str, event_id: str, event: CalendarEvent) -> CalendarEvent:
        body = build_google_event_body(event, self._time_zone)
        payload = self._call(
            "PATCH", f"/calendars/{_quote(calendar_id)}/events/{_quote(event_id)}", body
        )
        return parse_google_event(payload, calendar_id)

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        self._call("DELETE", f"/calendars/{_quote(calendar_id)}/events/{_quote(event_id)}")

    def fetch_account_email(self) -> str:
        payload = self._call("GET", "/calendars/primary")
        return payload.get("id", "")

    def _call(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        return _api_request(
            method, self._base_url + path, self._access_token, body, self._timeout, "Google Calendar"
        )


class OutlookCalendarClient(CalendarProviderClient):
    """Summary: Microsoft Graph calendar client bound to one access token.

    Importance: Provides calendar sync and event writes for Outlook accounts.
    Alternatives: Use the msgraph-sdk package.
    """

    provider = "microsoft"

    def __init__(self, access_token: str, base_url: str, timeout: float, time_zone: str) -> None:
        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._time_zone = time_zone

    def list_calendars(self) -> list[CalendarInfo]:
        payload = self._call("GET", "/me/calendars")
        return [
            CalendarInfo(
                id=item["id"],
                account_id="",
                name=item.get("name") or "Unnamed",
                color=item.get("hexColor") or DEFAULT_CALENDAR_COLOR,
                primary=bool(item.get("isDefaultCalendar", False)),
                source=self.provider,
            )
            for item in payload.get("value", [])
            if item.get("id")
        ]

    def list_events(
        self, calendar_id: str, time_min: datetime, time_max: datetime, max_results: int
    ) -> list[CalendarEvent]:
        query = urllib.parse.urlencode(
            {
                "startDateTime": time_min.isoformat(),
                "endDateTime": time_max.isoformat(),
                "$top": max_results,
                "$orderby": "start/dateTime",
            }
        )
        payload = self._call("GET", f"{self._calendar_path(calendar_id)}/calendarView?{query}")
        return [
            parse_graph_event(item, calendar_id)
            for item in payload.get("value", [])
            if item.get("id")
        ]

    def insert_event(self, calendar_id: str, event: CalendarEvent) -> CalendarEvent:
        body = build_graph_event_body(event, self._time_zone)
        payload = self._call("POST", f"{self._calendar_path(calendar_id)}/events", body)
        return parse_graph_event(payload, calendar_id)

    def patch_event(self, calendar_id: str, event_id: str, event: CalendarEvent) -> CalendarEvent:
        body = build_graph_event_body(event, self._time_zone)
        payload = self._call("PATCH", f"/me/events/{_quote(event_id)}", body)
        return parse_graph_event(payload, calendar_id)

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        self._call("DELETE", f"/me/events/{_quote(event_id)}")

    def fetch_account_email(self) -> str:
        payload = self._call("GET", "/me")
        return payload.get("mail") or payload.get("userPrincipalName") or ""

    def _calendar_path(self, calendar_id: str) -> str:
        if calendar_id == "primary":
            return "/me/calendar"
        return f"/me/calendars/{_quote(calendar_id)}"

    def _call(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        return _api_request(
            method, self._base_url + path, self._access_token, body, self._timeout, "Microsoft Graph"
        )


def build_provider_client(
    config: AppConfig, account: Account, access_token: str
) -> CalendarProviderClient:
    """Summary: Build the client matching an account's provider.

    Importance: Keeps provider selection out of the orchestrator and mutation code.
    Alternatives: Register clients in a provider registry keyed by name.
    """

    if account.provider == "google":
        return GoogleCalendarClient(
            access_token,
            config.google_calendar_base_url,
            config.http_timeout_seconds,
            config.default_time_zone,
        )
    if account.provider == "microsoft":
        return OutlookCalendarClient(
            access_token,
            config.microsoft_graph_base_url,
            config.http_timeout_seconds,
            config.default_time_zone,
        )
    raise ValueError(f"Unsupported calendar provider: {account.provider}")


def parse_google_event(item: dict[str, Any], calendar_id: str) -> CalendarEvent:
    """Summary: Normalize a Google event resource.

    Importance: All-day events carry only a date; timed events a dateTime.
    Alternatives: Store the raw resource.
    """

    start = item.get("start") or {}
    end = item.get("end") or {}
    recurrence = item.get("recurrence") or []
    rrule = next((line for line in recurrence if line.startswith("RRULE")), None)
    return CalendarEvent(
        id=item.get("id", ""),
        calendar_id=calendar_id,
        title=item.get("summary") or "Untitled",
        description=item.get("description") or "",
        location=item.get("location") or "",
        start=start.get("dateTime") or start.get("date") or "",
        end=end.get("dateTime") or end.get("date") or "",
        is_all_day=not start.get("dateTime"),
        category="synced",
        rrule=rrule,
        status=item.get("status") or "confirmed",
    )


def build_google_event_body(event: CalendarEvent, time_zone: str) -> dict[str, Any]:
    body: dict[str, Any] = {
        "summary": event.title,
        "description": event.description,
        "location": event.location,
    }
    if event.is_all_day:
        body["start"] = {"date": event.start.split("T")[0]}
        body["end"] = {"date": event.end.split("T")[0]}
    else:
        body["start"] = {"dateTime": event.start, "timeZone": time_zone}
        body["end"] = {"dateTime": event.end, "timeZone": time_zone}
    if event.rrule:
        rule = event.rrule if event.rrule.startswith("RRULE") else f"RRULE:{event.rrule}"
        body["recurrence"] = [rule]
    return body


def parse_graph_event(item: dict[str, Any], calendar_id: str) -> CalendarEvent:
    start = item.get("start") or {}
    end = item.get("end") or {}
    location = item.get("location") or {}
    return CalendarEvent(
        id=item.get("id", ""),
        calendar_id=calendar_id,
        title=item.get("subject") or "Untitled",
        description=item.get("bodyPreview") or "",
        location=location.get("displayName") or "",
        start=start.get("dateTime") or "",
        end=end.get("dateTime") or "",
        is_all_day=bool(item.get("isAllDay", False)),
        category="synced",
        status="cancelled" if item.get("isCancelled") else "confirmed",
    )


def build_graph_event_body(event: CalendarEvent, time_zone: str) -> dict[str, Any]:
    """Summary: Build a Microsoft Graph event payload.

    Importance: Graph expects structured recurrence patterns, so RRULE strings are not replayed.
    Alternatives: Translate RRULE into Graph's patternedRecurrence.
    """

    start = event.start.split("T")[0] + "T00:00:00" if event.is_all_day else event.start
    end = event.end.split("T")[0] + "T00:00:00" if event.is_all_day else event.end
    return {
        "subject": event.title,
        "body": {"contentType": "text", "content": event.description},
        "location": {"displayName": event.location},
        "isAllDay": event.is_all_day,
        "start": {"dateTime": start, "timeZone": time_zone},
        "end": {"dateTime": end, "timeZone": time_zone},
    }


def _quote(value: str) -> str:
    return urllib.parse.quote(value, safe="")


def _api_request(
    method: str,
    url: str,
    access_token: str,
    body: dict[str, Any] | None,
    timeout: float,
    label: str,
) -> dict[str, Any]:
    """Summary: Issue an authenticated JSON request to a provider API.

    Importance: Wraps HTTP status, network errors, and timeouts in ProviderRequestError.
    Alternatives: Use requests or httpx with a session per account.
    """

    data = json.dumps(body).encode("utf-8") if body is not None else None
    headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
    if data is not None:
        headers["Content-Type"] = "application/json"
    request = urllib.request.Request(url, data=data, headers=headers, method=method)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8", errors="ignore")
        raise ProviderRequestError(
            f"{label} request failed ({exc.code}): {error_body or exc.reason}",
            status=exc.code,
        ) from exc
    except (socket.timeout, TimeoutError) as exc:
        raise ProviderRequestError(f"{label} request timed out", timed_out=True) from exc
    except urllib.error.URLError as exc:
        timed_out = isinstance(exc.reason, (socket.timeout, TimeoutError))
        raise ProviderRequestError(
            f"{label} request failed: {exc.reason}", timed_out=timed_out
        ) from exc
    except (http.client.HTTPException, OSError) as exc:
        raise ProviderRequestError(f"{label} response could not be read: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise ProviderRequestError(f"{label} response was not valid UTF-8") from exc
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProviderRequestError(f"{label} response was not JSON: {raw[:120]}") from exc
    if not isinstance(payload, dict):
        raise ProviderRequestError(f"{label} response was not a JSON object")
    return payload
