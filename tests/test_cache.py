"""Summary: Tests for the snapshot cache gateway.

Importance: Ensures displays get cached data without extra syncs and survive sync failures.
Alternatives: Sync unconditionally on every display read.
"""

from __future__ import annotations

import sqlite3
from datetime import timedelta

from familysync.cache import CacheGateway
from familysync.models import CachedSnapshot, CalendarEvent, User, utc_now


class _CountingOrchestrator:
    def __init__(self, store, error: Exception | None = None) -> None:
        self.store = store
        self.error = error
        self.calls = 0

    def sync_user(self, user_id: int):
        self.calls += 1
        if self.error:
            raise self.error
        self.store.save_snapshot(
            CachedSnapshot(user_id=user_id, events=[_event("synced")], last_synced_at=utc_now())
        )


class _BrokenStore:
    def get_snapshot(self, user_id: int):
        raise sqlite3.OperationalError("database is locked")


def _event(event_id: str) -> CalendarEvent:
    return CalendarEvent(
        id=event_id, calendar_id="cal", title=event_id, start="2026-03-01", end="2026-03-02"
    )


def _seed(store, age: timedelta, events: list[CalendarEvent]) -> int:
    user_id = store.ensure_user(User(display_name="Owner", email="owner@example.com"))
    store.save_snapshot(
        CachedSnapshot(user_id=user_id, events=events, last_synced_at=utc_now() - age)
    )
    return user_id


def test_fresh_snapshot_does_not_sync(store) -> None:
    user_id = _seed(store, timedelta(minutes=1), [_event("cached")])
    orchestrator = _CountingOrchestrator(store)
    snapshot = CacheGateway(store=store, orchestrator=orchestrator).get_fresh_snapshot(user_id)
    assert orchestrator.calls == 0
    assert [event.id for event in snapshot.events] == ["cached"]


def test_stale_snapshot_syncs_once_and_rereads(store) -> None:
    user_id = _seed(store, timedelta(minutes=10), [_event("cached")])
    orchestrator = _CountingOrchestrator(store)
    snapshot = CacheGateway(store=store, orchestrator=orchestrator).get_fresh_snapshot(user_id)
    assert orchestrator.calls == 1
    assert [event.id for event in snapshot.events] == ["synced"]


def test_empty_snapshot_syncs_even_when_recent(store) -> None:
    user_id = _seed(store, timedelta(seconds=5), [])
    orchestrator = _CountingOrchestrator(store)
    CacheGateway(store=store, orchestrator=orchestrator).get_fresh_snapshot(user_id)
    assert orchestrator.calls == 1


def test_custom_threshold_overrides_default(store) -> None:
    user_id = _seed(store, timedelta(minutes=2), [_event("cached")])
    orchestrator = _CountingOrchestrator(store)
    gateway = CacheGateway(store=store, orchestrator=orchestrator)
    gateway.get_fresh_snapshot(user_id, stale_threshold=timedelta(seconds=30))
    assert orchestrator.calls == 1


def test_sync_failure_returns_stale_snapshot(store) -> None:
    user_id = _seed(store, timedelta(hours=2), [_event("cached")])
    orchestrator = _CountingOrchestrator(store, error=RuntimeError("provider down"))
    snapshot = CacheGateway(store=store, orchestrator=orchestrator).get_fresh_snapshot(user_id)
    assert orchestrator.calls == 1
    assert [event.id for event in snapshot.events] == ["cached"]


def test_storage_failure_returns_empty_snapshot() -> None:
    orchestrator = _CountingOrchestrator(None, error=RuntimeError("no storage"))
    snapshot = CacheGateway(store=_BrokenStore(), orchestrator=orchestrator).get_fresh_snapshot(7)
    assert snapshot == CachedSnapshot.empty(7)


def test_zero_threshold_always_syncs(store) -> None:
    user_id = _seed(store, timedelta(minutes=1), [_event("cached")])
    orchestrator = _CountingOrchestrator(store)
    gateway = CacheGateway(store=store, orchestrator=orchestrator)
    gateway.get_fresh_snapshot(user_id, stale_threshold=timedelta(0))
    assert orchestrator.calls == 1
