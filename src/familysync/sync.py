"""Summary: Multi-account calendar synchronization into the cached snapshot.

Importance: Produces the aggregated, attributed calendar state that displays read.
Alternatives: Sync each account into its own snapshot and merge at read time.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable

from familysync.attribution import attribute_events
from familysync.config import AppConfig
from familysync.errors import AuthError, ProviderRequestError, SyncCancelled
from familysync.models import (
    Account,
    AccountLink,
    AccountSkipped,
    CachedSnapshot,
    CalendarEvent,
    CalendarInfo,
    CalendarSkipped,
    SyncResult,
    utc_now,
)
from familysync.providers import CalendarProviderClient, build_provider_client
from familysync.storage.sqlite_store import SqliteStore
from familysync.tokens import TokenManager, TokenStore


logger = logging.getLogger(__name__)

ClientFactory = Callable[[AppConfig, Account, str], CalendarProviderClient]


def compute_sync_window(now: datetime, months: int) -> tuple[datetime, datetime]:
    """Summary: Compute the [start, end) window synced for every calendar.

    Importance: Starts on the first day of the current month and ends after the last day of month ``current + months``.
    Alternatives: Sync a rolling window of N days around today.
    """

    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    index = now.month - 1 + months + 1
    end = datetime(now.year + index // 12, index % 12 + 1, 1, tzinfo=timezone.utc)
    return start, end


def account_links(accounts: list[Account]) -> list[AccountLink]:
    """Project accounts to credential-free link records."""

    return [
        AccountLink(
            account_id=account.account_id,
            provider=account.provider,
            email=account.email,
            display_name=account.display_name,
            auth_error=account.auth_error,
            auth_error_message=account.auth_error_message,
        )
        for account in accounts
    ]


@dataclass(frozen=True)
class _AccountOutcome:
    calendars: list[CalendarInfo] = field(default_factory=list)
    events: list[CalendarEvent] = field(default_factory=list)
    skipped_account: AccountSkipped | None = None
    skipped_calendars: list[CalendarSkipped] = field(default_factory=list)


@dataclass
class SyncOrchestrator:
    """Summary: Pulls every account's calendars and events into one snapshot.

    Importance: One broken account or calendar never aborts the cycle; the snapshot is written only after full aggregation.
    Alternatives: Fail the whole sync when any provider call fails.
    """

    store: SqliteStore
    tokens: TokenStore
    token_manager: TokenManager
    config: AppConfig
    client_factory: ClientFactory = build_provider_client

    def sync_user(self, user_id: int, cancel_event: threading.Event | None = None) -> SyncResult:
        """Summary: Run one full sync cycle for a user.

        Importance: Returns counts even when accounts are skipped; raises only on cancellation.
        Alternatives: Return partial results through a callback.
        """

        accounts = self.tokens.list_accounts(user_id)
        if not accounts:
            self.store.save_snapshot(CachedSnapshot(user_id=user_id, last_synced_at=utc_now()))
            logger.info("No connected accounts for user %s; wrote empty snapshot.", user_id)
            return SyncResult(calendars_count=0, events_count=0)

        time_min, time_max = compute_sync_window(utc_now(), self.config.sync_window_months)
        workers = max(1, min(len(accounts), self.config.sync_max_workers))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(self._sync_account, account, time_min, time_max, cancel_event)
                for account in accounts
            ]
            outcomes = [future.result() for future in futures]
        _check_cancelled(cancel_event)

        calendars: list[CalendarInfo] = []
        events: list[CalendarEvent] = []
        skipped_accounts: list[AccountSkipped] = []
        skipped_calendars: list[CalendarSkipped] = []
        for outcome in outcomes:
            calendars.extend(outcome.calendars)
            events.extend(outcome.events)
            skipped_calendars.extend(outcome.skipped_calendars)
            if outcome.skipped_account:
                skipped_accounts.append(outcome.skipped_account)

        members = self.store.load_members(user_id)
        attributed = attribute_events(events, account_links(accounts), members)
        self.store.save_snapshot(
            CachedSnapshot(
                user_id=user_id,
                calendars=calendars,
                events=attributed,
                last_synced_at=utc_now(),
            )
        )
        logger.info(
            "Synced user %s: %s calendars, %s events, %s accounts skipped.",
            user_id,
            len(calendars),
            len(attributed),
            len(skipped_accounts),
        )
        return SyncResult(
            calendars_count=len(calendars),
            events_count=len(attributed),
            skipped_accounts=skipped_accounts,
            skipped_calendars=skipped_calendars,
        )

    def _sync_account(
        self,
        account: Account,
        time_min: datetime,
        time_max: datetime,
        cancel_event: threading.Event | None,
    ) -> _AccountOutcome:
        _check_cancelled(cancel_event)
        try:
            token = self.token_manager.get_valid_token(account)
            client = self.client_factory(self.config, account, token)
            provider_calendars = client.list_calendars()
        except AuthError as exc:
            logger.warning("Skipping account %s: %s", account.account_id, exc.message)
            return _AccountOutcome(skipped_account=AccountSkipped(account.account_id, exc.message))
        except ProviderRequestError as exc:
            logger.warning(
                "Skipping account %s: calendar list failed: %s", account.account_id, exc.message
            )
            return _AccountOutcome(skipped_account=AccountSkipped(account.account_id, exc.message))
        except SyncCancelled:
            raise
        except Exception as exc:
            logger.warning("Skipping account %s: %s", account.account_id, exc)
            return _AccountOutcome(skipped_account=AccountSkipped(account.account_id, str(exc)))

        calendars: list[CalendarInfo] = []
        events: list[CalendarEvent] = []
        skipped: list[CalendarSkipped] = []
        for calendar in provider_calendars:
            _check_cancelled(cancel_event)
            stamped = replace(calendar, account_id=account.account_id)
            try:
                calendar_events = client.list_events(
                    calendar.id, time_min, time_max, self.config.sync_page_size
                )
            except SyncCancelled:
                raise
            except Exception as exc:
                logger.warning(
                    "Skipping calendar %s for account %s: %s",
                    calendar.id,
                    account.account_id,
                    exc,
                )
                skipped.append(CalendarSkipped(account.account_id, calendar.id, str(exc)))
                continue
            calendars.append(stamped)
            events.extend(
                replace(
                    event,
                    account_id=account.account_id,
                    calendar_id=calendar.id,
                    calendar_name=calendar.name,
                    calendar_color=calendar.color,
                )
                for event in calendar_events
            )
        return _AccountOutcome(calendars=calendars, events=events, skipped_calendars=skipped)


def _check_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise SyncCancelled("Sync cycle cancelled")
