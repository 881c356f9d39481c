"""Summary: Read-through access to a user's cached calendar snapshot.

Importance: Displays get fresh data when possible and cached data when providers are down.
Alternatives: Always sync before every read.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import timedelta

from familysync.errors import SyncUnavailable
from familysync.models import CachedSnapshot, utc_now
from familysync.storage.sqlite_store import SqliteStore
from familysync.sync import SyncOrchestrator


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheGateway:
    """Summary: Serves snapshots, syncing first when they are empty or stale.

    Importance: Never fails the caller; availability wins over freshness.
    Alternatives: Surface sync failures to the display.
    """

    store: SqliteStore
    orchestrator: SyncOrchestrator
    stale_threshold_seconds: int = 300

    def get_fresh_snapshot(
        self, user_id: int, stale_threshold: timedelta | None = None
    ) -> CachedSnapshot:
        threshold = (
            timedelta(seconds=self.stale_threshold_seconds)
            if stale_threshold is None
            else stale_threshold
        )
        snapshot = self._read(user_id)
        is_empty = not snapshot.events
        is_stale = (
            snapshot.last_synced_at is None or utc_now() - snapshot.last_synced_at > threshold
        )
        if not (is_empty or is_stale):
            return snapshot
        try:
            self.orchestrator.sync_user(user_id)
        except Exception as exc:
            error = SyncUnavailable(f"Sync failed for user {user_id}: {exc}")
            logger.warning("%s; serving cached snapshot.", error)
            return snapshot
        return self._read(user_id)

    def _read(self, user_id: int) -> CachedSnapshot:
        try:
            snapshot = self.store.get_snapshot(user_id)
        except (sqlite3.Error, ValueError) as exc:
            logger.warning("Snapshot read failed for user %s: %s", user_id, exc)
            return CachedSnapshot.empty(user_id)
        return snapshot or CachedSnapshot.empty(user_id)
