"""Summary: Storage tests for the SQLite store.

Importance: Ensures households, snapshots, displays, and licenses persist correctly.
Alternatives: Mock storage calls in service tests.
"""

from __future__ import annotations

from datetime import timezone

from familysync.models import (
    CachedSnapshot,
    CalendarEvent,
    CalendarInfo,
    ConnectedAccountRef,
    Display,
    HouseholdMember,
    User,
    utc_now,
)


def test_ensure_user_is_idempotent(store) -> None:
    first = store.ensure_user(User(display_name="Owner", email="owner@example.com"))
    second = store.ensure_user(User(display_name="Other", email="owner@example.com"))
    assert first == second
    assert store.get_user(first).license_valid_until is None


def test_members_roundtrip_preserves_order(store) -> None:
    user_id = store.ensure_user(User(display_name="Owner", email="owner@example.com"))
    members = [
        HouseholdMember(
            id="m2",
            name="Leo",
            color="#00f",
            connected_accounts=[ConnectedAccountRef(provider="google", email="leo@example.com", account_id="a1")],
        ),
        HouseholdMember(id="m1", name="Mia", color="#f00", role="child"),
    ]
    store.save_members(user_id, members)
    assert store.load_members(user_id) == members
    assert store.load_members(user_id + 1) == []


def test_snapshot_is_replaced_wholesale(store) -> None:
    user_id = store.ensure_user(User(display_name="Owner", email="owner@example.com"))
    synced_at = utc_now()
    store.save_snapshot(
        CachedSnapshot(
            user_id=user_id,
            calendars=[CalendarInfo(id="c1", account_id="a1", name="Main", color="#111")],
            events=[
                CalendarEvent(
                    id="e1",
                    calendar_id="c1",
                    title="Swim",
                    start="2026-03-01T10:00:00Z",
                    end="2026-03-01T11:00:00Z",
                    assigned_to=["m1"],
                )
            ],
            last_synced_at=synced_at,
        )
    )
    store.save_snapshot(CachedSnapshot(user_id=user_id, last_synced_at=synced_at))
    snapshot = store.get_snapshot(user_id)
    assert snapshot.events == []
    assert snapshot.calendars == []
    assert snapshot.last_synced_at == synced_at.astimezone(timezone.utc)


def test_snapshot_roundtrip_keeps_event_fields(store) -> None:
    user_id = store.ensure_user(User(display_name="Owner", email="owner@example.com"))
    event = CalendarEvent(
        id="e1",
        calendar_id="c1",
        title="Piano",
        start="2026-03-01T10:00:00Z",
        end="2026-03-01T11:00:00Z",
        account_id="a1",
        category="music",
        rrule="RRULE:FREQ=WEEKLY",
        assigned_to=["m1"],
    )
    store.save_snapshot(CachedSnapshot(user_id=user_id, events=[event], last_synced_at=utc_now()))
    assert store.get_snapshot(user_id).events == [event]


def test_displays_and_licenses(store) -> None:
    user_id = store.ensure_user(User(display_name="Owner", email="owner@example.com"))
    store.save_display(Display(display_id="kitchen", owner_id=user_id, name="Kitchen"))
    store.save_display(Display(display_id="hall", owner_id=user_id, name="Hall", status="inactive"))
    assert store.get_display("kitchen").status == "active"
    assert [display.display_id for display in store.list_displays(user_id)] == ["hall", "kitchen"]
    store.set_license(user_id, "2027-01-01T00:00:00+00:00")
    assert store.get_user(user_id).license_valid_until == "2027-01-01T00:00:00+00:00"


def test_accounts_listed_in_connection_order(store, connect_account) -> None:
    user_id = store.ensure_user(User(display_name="Owner", email="owner@example.com"))
    first = connect_account(user_id, "b@example.com")
    second = connect_account(user_id, "a@example.com", provider="microsoft")
    connect_account(user_id, "b@example.com", access_token="rotated")
    assert [record.account_id for record in store.list_accounts(user_id)] == [
        first.account_id,
        second.account_id,
    ]
    assert [record.account_id for record in store.list_accounts(user_id, "microsoft")] == [
        second.account_id
    ]
    assert store.find_account_by_email(user_id, "google", "B@EXAMPLE.COM").account_id == first.account_id
    assert store.delete_account(user_id, first.account_id)
    assert not store.delete_account(user_id, first.account_id)
