"""Summary: Household-aware event mutations with optimistic local application.

Importance: Displays see a change immediately, and the snapshot is reconciled by a full sync afterward.
Alternatives: Write to the provider first and wait for the next sync to show the change.
"""

from __future__ import annotations

import copy
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field, replace

from familysync.attribution import account_id_from_calendar_id, is_external_calendar_id
from familysync.config import AppConfig
from familysync.errors import (
    FamilySyncError,
    NoAccountAvailable,
    NotFound,
    ProviderRequestError,
)
from familysync.models import Account, CalendarEvent, CalendarInfo, HouseholdMember, SyncResult
from familysync.providers import build_provider_client
from familysync.sync import ClientFactory, SyncOrchestrator
from familysync.tokens import TokenManager


logger = logging.getLogger(__name__)


@dataclass
class DisplayState:
    """Summary: The local view a display mutates optimistically.

    Importance: ``events`` is restored in place when a provider write fails.
    Alternatives: Keep optimistic state only in the browser.
    """

    owner_id: int
    events: list[CalendarEvent] = field(default_factory=list)
    accounts: list[Account] = field(default_factory=list)
    members: list[HouseholdMember] = field(default_factory=list)
    provider: str = "google"
    calendars: list[CalendarInfo] = field(default_factory=list)


@dataclass(frozen=True)
class MutationResult:
    success: bool
    event: CalendarEvent | None = None
    sync: SyncResult | None = None


def build_composite_id(provider: str, account_id: str, provider_event_id: str) -> str:
    return f"{provider}-{account_id}-{provider_event_id}"


def parse_composite_id(event_id: str, accounts: list[Account]) -> tuple[Account, str] | None:
    """Summary: Recover the account and provider event id from a composite event id.

    Importance: Account ids may contain dashes, so known accounts are matched by prefix.
    Alternatives: Store a separate account column on every local event.
    """

    for account in accounts:
        prefix = f"{account.provider}-{account.account_id}-"
        if event_id.startswith(prefix) and len(event_id) > len(prefix):
            return account, event_id[len(prefix):]
    return None


def target_calendar_id(calendar_id: str | None, synced_ids: frozenset[str] = frozenset()) -> str:
    """Summary: Map a local calendar id to the provider calendar a write targets.

    Importance: Calendars discovered by sync are written as-is, whatever their id shape
    (Graph ids are opaque base64); local and synthetic primary ids go to ``primary``.
    Alternatives: Require every write to name a provider calendar explicitly.
    """

    if calendar_id and calendar_id in synced_ids:
        return calendar_id
    if not calendar_id or account_id_from_calendar_id(calendar_id):
        return "primary"
    if not is_external_calendar_id(calendar_id):
        return "primary"
    return calendar_id


@dataclass
class MutationService:
    """Summary: Create, update, and delete events across a household's accounts.

    Importance: Applies locally, writes remotely, then reconciles or rolls back.
    Alternatives: Patch the cached snapshot incrementally after each write.
    """

    token_manager: TokenManager
    orchestrator: SyncOrchestrator
    config: AppConfig
    client_factory: ClientFactory = build_provider_client

    def resolve_account(self, state: DisplayState, event: CalendarEvent) -> Account:
        """Summary: Pick the account a mutation is written through.

        Importance: Composite id, explicit account, primary calendar id, assigned member, then any provider account.
        Alternatives: Ask the user to pick an account for every write.
        """

        by_id = {account.account_id: account for account in state.accounts}
        parsed = parse_composite_id(event.id, state.accounts) if event.id else None
        if parsed:
            return parsed[0]
        if event.account_id and event.account_id in by_id:
            return by_id[event.account_id]
        calendar_account = account_id_from_calendar_id(event.calendar_id)
        if calendar_account and calendar_account in by_id:
            return by_id[calendar_account]
        if event.assigned_to:
            account = self._member_account(state, event.assigned_to[0])
            if account:
                return account
        for account in state.accounts:
            if account.provider == state.provider:
                return account
        raise NoAccountAvailable("No connected account is available for this event")

    def create(self, state: DisplayState, event: CalendarEvent) -> MutationResult:
        account = self.resolve_account(state, event)
        previous = copy.deepcopy(state.events)
        optimistic = replace(
            event,
            id=event.id or f"local-{uuid.uuid4().hex[:12]}",
            account_id=account.account_id,
        )
        state.events.append(optimistic)
        try:
            client = self._client(account)
            created = client.insert_event(_write_target(state, account, event), event)
        except Exception:
            state.events[:] = previous
            logger.warning("Create failed for account %s; rolled back.", account.account_id)
            raise
        saved = replace(
            optimistic,
            id=build_composite_id(account.provider, account.account_id, created.id),
            title=created.title or event.title,
        )
        state.events[state.events.index(optimistic)] = saved
        return MutationResult(success=True, event=saved, sync=self._reconcile(state.owner_id))

    def update(self, state: DisplayState, event: CalendarEvent) -> MutationResult:
        index = _find_index(state.events, event.id)
        if index is None:
            raise NotFound(f"Event {event.id} not found")
        account = self.resolve_account(state, event)
        provider_event_id = self._provider_event_id(state, event.id)
        previous = copy.deepcopy(state.events)
        updated = replace(event, account_id=account.account_id)
        state.events[index] = updated
        try:
            client = self._client(account)
            client.patch_event(_write_target(state, account, event), provider_event_id, event)
        except Exception:
            state.events[:] = previous
            logger.warning("Update of %s failed; rolled back.", event.id)
            raise
        return MutationResult(success=True, event=updated, sync=self._reconcile(state.owner_id))

    def delete(self, state: DisplayState, event: CalendarEvent) -> MutationResult:
        """Summary: Remove an event locally and at the provider.

        Importance: A provider 404/410 means the event is already gone and counts as success.
        Alternatives: Surface already-deleted errors to the user.
        """

        account = self.resolve_account(state, event)
        provider_event_id = self._provider_event_id(state, event.id)
        previous = copy.deepcopy(state.events)
        index = _find_index(state.events, event.id)
        if index is not None:
            del state.events[index]
        try:
            client = self._client(account)
            client.delete_event(_write_target(state, account, event), provider_event_id)
        except ProviderRequestError as exc:
            if not exc.is_not_found:
                state.events[:] = previous
                logger.warning("Delete of %s failed; rolled back.", event.id)
                raise
            logger.info("Event %s already deleted at provider.", event.id)
        except Exception:
            state.events[:] = previous
            logger.warning("Delete of %s failed; rolled back.", event.id)
            raise
        return MutationResult(success=True, event=event, sync=self._reconcile(state.owner_id))

    def _client(self, account: Account):
        token = self.token_manager.get_valid_token(account)
        return self.client_factory(self.config, account, token)

    def _provider_event_id(self, state: DisplayState, event_id: str) -> str:
        parsed = parse_composite_id(event_id, state.accounts)
        return parsed[1] if parsed else event_id

    def _member_account(self, state: DisplayState, member_id: str) -> Account | None:
        member = next((item for item in state.members if item.id == member_id), None)
        if not member or not member.connected_accounts:
            return None
        ref = member.connected_accounts[0]
        for account in state.accounts:
            if ref.account_id and account.account_id == ref.account_id:
                return account
        for account in state.accounts:
            if ref.email and account.email.lower() == ref.email.lower():
                return account
        return None

    def _reconcile(self, owner_id: int) -> SyncResult | None:
        try:
            return self.orchestrator.sync_user(owner_id)
        except (FamilySyncError, sqlite3.Error) as exc:
            logger.warning("Reconcile sync failed for user %s: %s", owner_id, exc)
            return None


def _write_target(state: DisplayState, account: Account, event: CalendarEvent) -> str:
    synced_ids = frozenset(
        calendar.id for calendar in state.calendars if calendar.account_id == account.account_id
    )
    return target_calendar_id(event.calendar_id, synced_ids)


def _find_index(events: list[CalendarEvent], event_id: str) -> int | None:
    for index, item in enumerate(events):
        if item.id == event_id:
            return index
    return None
