"""Summary: Domain model dataclasses for FamilySync.

Importance: Defines the accounts, household, calendar, and snapshot entities shared across services and storage.
Alternatives: Use Pydantic models or ORM classes directly.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


AUTH_ERROR_MISSING_REFRESH_TOKEN = "missing_refresh_token"
AUTH_ERROR_INVALID_GRANT = "invalid_grant"
AUTH_ERROR_REFRESH_FAILED = "refresh_failed"

EVENT_CATEGORIES = (
    "general",
    "school",
    "medical",
    "sports",
    "music",
    "family",
    "work",
    "meal",
    "routine",
    "synced",
)


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def parse_timestamp(value: str | None) -> datetime | None:
    """Summary: Parse a stored ISO timestamp into an aware UTC datetime.

    Importance: Older rows and provider payloads may omit offsets or use a trailing Z.
    Alternatives: Store epoch milliseconds instead of ISO strings.
    """

    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class User:
    """Summary: Represents a household owner.

    Importance: Every account, member list, snapshot, and display is scoped to a user.
    Alternatives: Key data by email only.
    """

    display_name: str
    email: str


@dataclass(frozen=True)
class Account:
    """Summary: One OAuth-authorized connection to an external calendar provider.

    Importance: Holds the credentials and the persisted auth-error state used to render reconnect prompts.
    Alternatives: Keep credentials only in memory and force re-auth on restart.
    """

    account_id: str
    user_id: int
    provider: str
    email: str
    access_token: str
    refresh_token: str | None
    expires_at: datetime | None
    display_name: str | None = None
    auth_error: str | None = None
    auth_error_message: str | None = None
    auth_error_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def needs_reconnect(self) -> bool:
        return self.auth_error in (AUTH_ERROR_MISSING_REFRESH_TOKEN, AUTH_ERROR_INVALID_GRANT)


@dataclass(frozen=True)
class ConnectedAccountRef:
    """Summary: A member-side reference to a connected provider account.

    Importance: The account-to-member linkage lives here, keyed by account id with email as fallback.
    Alternatives: Store a member id on the account record.
    """

    provider: str
    email: str
    account_id: str | None = None
    display_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "ConnectedAccountRef":
        return ConnectedAccountRef(
            provider=payload.get("provider", ""),
            email=payload.get("email", ""),
            account_id=payload.get("account_id"),
            display_name=payload.get("display_name"),
        )


@dataclass(frozen=True)
class HouseholdMember:
    """Summary: A family member that events can be attributed to.

    Importance: Drives per-member filtering and coloring on displays.
    Alternatives: Attribute events to accounts only.
    """

    id: str
    name: str
    color: str
    avatar: str | None = None
    role: str | None = None
    connected_accounts: list[ConnectedAccountRef] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "avatar": self.avatar,
            "role": self.role,
            "connected_accounts": [ref.to_dict() for ref in self.connected_accounts],
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "HouseholdMember":
        return HouseholdMember(
            id=payload["id"],
            name=payload.get("name", ""),
            color=payload.get("color", "#6B7280"),
            avatar=payload.get("avatar"),
            role=payload.get("role"),
            connected_accounts=[
                ConnectedAccountRef.from_dict(item)
                for item in payload.get("connected_accounts") or []
            ],
        )


@dataclass(frozen=True)
class AccountLink:
    """Summary: Account metadata joined with an optional precomputed member link.

    Importance: Feeds attribution and display payloads without exposing credentials.
    Alternatives: Pass full Account records to the presentation layer.
    """

    account_id: str
    provider: str
    email: str
    display_name: str | None = None
    linked_member_id: str | None = None
    auth_error: str | None = None
    auth_error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CalendarInfo:
    """Summary: A provider calendar discovered during sync.

    Importance: Lets displays label and color events by their source calendar.
    Alternatives: Embed calendar metadata in every event only.
    """

    id: str
    account_id: str
    name: str
    color: str
    primary: bool = False
    source: str = "google"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "CalendarInfo":
        return CalendarInfo(
            id=payload["id"],
            account_id=payload.get("account_id", ""),
            name=payload.get("name", "Unnamed"),
            color=payload.get("color", "#4285F4"),
            primary=bool(payload.get("primary", False)),
            source=payload.get("source", "google"),
        )


@dataclass(frozen=True)
class CalendarEvent:
    """Summary: A calendar event mirrored from a provider or created locally.

    Importance: The unit of sync, attribution, and mutation.
    Alternatives: Store raw provider payloads and normalize at render time.
    """

    id: str
    calendar_id: str
    title: str
    start: str
    end: str
    account_id: str | None = None
    description: str = ""
    location: str = ""
    is_all_day: bool = False
    category: str = "general"
    recurrence: str = "none"
    rrule: str | None = None
    assigned_to: list[str] = field(default_factory=list)
    status: str = "confirmed"
    calendar_name: str | None = None
    calendar_color: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["assigned_to"] = list(self.assigned_to)
        return payload

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "CalendarEvent":
        return CalendarEvent(
            id=payload["id"],
            calendar_id=payload.get("calendar_id", ""),
            title=payload.get("title") or "Untitled",
            start=payload.get("start", ""),
            end=payload.get("end", ""),
            account_id=payload.get("account_id"),
            description=payload.get("description") or "",
            location=payload.get("location") or "",
            is_all_day=bool(payload.get("is_all_day", False)),
            category=payload.get("category") or "general",
            recurrence=payload.get("recurrence") or "none",
            rrule=payload.get("rrule"),
            assigned_to=list(payload.get("assigned_to") or []),
            status=payload.get("status") or "confirmed",
            calendar_name=payload.get("calendar_name"),
            calendar_color=payload.get("calendar_color"),
        )


@dataclass(frozen=True)
class CachedSnapshot:
    """Summary: The full aggregated calendar state cached for one user.

    Importance: Displays read this instead of hitting providers on every request.
    Alternatives: Query providers live on every display refresh.
    """

    user_id: int
    calendars: list[CalendarInfo] = field(default_factory=list)
    events: list[CalendarEvent] = field(default_factory=list)
    last_synced_at: datetime | None = None

    @staticmethod
    def empty(user_id: int) -> "CachedSnapshot":
        return CachedSnapshot(user_id=user_id)

    def to_payload(self) -> dict[str, Any]:
        return {
            "calendars": [calendar.to_dict() for calendar in self.calendars],
            "events": [event.to_dict() for event in self.events],
            "last_synced_at": format_timestamp(self.last_synced_at),
        }


@dataclass(frozen=True)
class AccountSkipped:
    """An account that contributed nothing to a sync cycle."""

    account_id: str
    reason: str


@dataclass(frozen=True)
class CalendarSkipped:
    """A calendar whose events were left out of a sync cycle."""

    account_id: str
    calendar_id: str
    reason: str


@dataclass(frozen=True)
class SyncResult:
    """Summary: Outcome of one sync cycle.

    Importance: Callers always receive counts, with skipped work listed rather than raised.
    Alternatives: Raise on the first failing account.
    """

    calendars_count: int
    events_count: int
    skipped_accounts: list[AccountSkipped] = field(default_factory=list)
    skipped_calendars: list[CalendarSkipped] = field(default_factory=list)


@dataclass(frozen=True)
class Display:
    """Summary: A read-mostly rendering target bound to one owner's data.

    Importance: Displays are the main consumer of the cached snapshot.
    Alternatives: Authenticate wall screens as full users.
    """

    display_id: str
    owner_id: int
    name: str
    status: str = "active"
