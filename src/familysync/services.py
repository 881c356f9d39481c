"""Summary: Core application services for FamilySync.

Importance: Orchestrates households, accounts, displays, licenses, and direct calendar access.
Alternatives: Build a full service layer with dependency injection framework.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import secrets
import hashlib
import uuid
from datetime import datetime, timedelta
from typing import Any

from familysync.attribution import attribute_events, build_member_maps, member_for_account
from familysync.cache import CacheGateway
from familysync.config import AppConfig
from familysync.errors import NoAccountAvailable, NotFound, PermissionDenied
from familysync.models import (
    Account,
    AccountLink,
    CalendarEvent,
    ConnectedAccountRef,
    Display,
    HouseholdMember,
    SyncResult,
    User,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from familysync.mutations import DisplayState, MutationResult, MutationService
from familysync.oauth import OAuthTokenResult, exchange_oauth_code
from familysync.providers import build_provider_client
from familysync.storage.sqlite_store import SqliteStore, StoredApiKey, StoredUser
from familysync.sync import ClientFactory, SyncOrchestrator, account_links
from familysync.tokens import TokenManager, TokenStore


logger = logging.getLogger(__name__)

LICENSE_TERM = timedelta(days=365)
DIRECT_READ_MAX_RESULTS = 250
DIRECT_READ_RANGE = timedelta(days=30)


@dataclass(frozen=True)
class UserService:
    """Summary: Manages household owner records.

    Importance: Supports multiple households in one deployment.
    Alternatives: Use an external identity provider.
    """

    store: SqliteStore

    def create_user(self, display_name: str, email: str) -> int:
        return self.store.ensure_user(User(display_name=display_name, email=email))

    def list_users(self) -> list[StoredUser]:
        return self.store.list_users()

    def get_user_by_email(self, email: str) -> StoredUser | None:
        return self.store.get_user_by_email(email)


@dataclass(frozen=True)
class ApiKeyService:
    """Summary: Issues and verifies API keys for users.

    Importance: Enables per-user API authentication tokens.
    Alternatives: Use OAuth or an external auth service.
    """

    store: SqliteStore
    token_secret: str

    def create_api_key(self, user_id: int, label: str | None = None) -> tuple[int, str]:
        """Summary: Create a new API key for a user.

        Importance: Returns a one-time plaintext token for client storage.
        Alternatives: Store raw tokens in the database.
        """

        raw_token = secrets.token_urlsafe(32)
        key_id = self.store.create_api_key(
            user_id=user_id,
            token_hash=self._hash_token(raw_token),
            label=label,
            created_at=utc_now().isoformat(),
        )
        return key_id, raw_token

    def revoke_api_key(self, user_id: int, key_id: int) -> bool:
        return self.store.delete_api_key(user_id, key_id)

    def list_api_keys(self, user_id: int) -> list[StoredApiKey]:
        return self.store.list_api_keys(user_id)

    def resolve_user_id(self, token: str) -> int | None:
        return self.store.get_user_id_by_api_key(self._hash_token(token))

    def _hash_token(self, token: str) -> str:
        """Summary: Hash an API token with a secret salt.

        Importance: Avoids storing raw API keys in the database.
        Alternatives: Use an HSM or external secrets manager.
        """

        salt = self.token_secret or "familysync"
        return hashlib.sha256(f"{salt}:{token}".encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class HouseholdService:
    """Summary: Manages a household's members and their account links.

    Importance: Member links are the only source of event attribution.
    Alternatives: Store the member id on each account record.
    """

    store: SqliteStore
    user_id: int

    def list_members(self) -> list[HouseholdMember]:
        return self.store.load_members(self.user_id)

    def add_member(
        self,
        name: str,
        color: str,
        avatar: str | None = None,
        role: str | None = None,
    ) -> HouseholdMember:
        member = HouseholdMember(
            id=uuid.uuid4().hex[:12], name=name, color=color, avatar=avatar, role=role
        )
        self.store.save_members(self.user_id, self.list_members() + [member])
        logger.info("Added household member %s for user %s.", member.id, self.user_id)
        return member

    def remove_member(self, member_id: str) -> None:
        members = self.list_members()
        remaining = [member for member in members if member.id != member_id]
        if len(remaining) == len(members):
            raise NotFound(f"Member {member_id} not found")
        self.store.save_members(self.user_id, remaining)

    def link_account(self, member_id: str, account: Account) -> HouseholdMember:
        """Summary: Link an account to one member, removing it from every other member.

        Importance: Keeps one member per account so attribution is unambiguous.
        Alternatives: Allow shared accounts and attribute to all linked members.
        """

        members = self.list_members()
        if not any(member.id == member_id for member in members):
            raise NotFound(f"Member {member_id} not found")
        ref = ConnectedAccountRef(
            provider=account.provider,
            email=account.email,
            account_id=account.account_id,
            display_name=account.display_name,
        )
        updated: list[HouseholdMember] = []
        for member in members:
            refs = [item for item in member.connected_accounts if not _same_account(item, account)]
            if member.id == member_id:
                refs.append(ref)
            updated.append(replace(member, connected_accounts=refs))
        self.store.save_members(self.user_id, updated)
        return next(member for member in updated if member.id == member_id)

    def unlink_account(self, account: Account) -> None:
        members = self.list_members()
        updated = [
            replace(
                member,
                connected_accounts=[
                    item for item in member.connected_accounts if not _same_account(item, account)
                ],
            )
            for member in members
        ]
        self.store.save_members(self.user_id, updated)


def _same_account(ref: ConnectedAccountRef, account: Account) -> bool:
    if ref.account_id:
        return ref.account_id == account.account_id
    return ref.provider == account.provider and ref.email.lower() == account.email.lower()


@dataclass(frozen=True)
class AccountService:
    """Summary: Connects, lists, and disconnects provider accounts.

    Importance: Completes OAuth grants into stored accounts and keeps member links consistent.
    Alternatives: Manage accounts directly through TokenStore in the API layer.
    """

    tokens: TokenStore
    household: HouseholdService
    config: AppConfig
    user_id: int
    client_factory: ClientFactory = build_provider_client

    def connect_from_code(self, provider: str, code: str) -> Account:
        """Summary: Exchange an authorization code and store the resulting account.

        Importance: Identifies the mailbox from the provider so reconnects reuse the account id.
        Alternatives: Ask the user to type the account email.
        """

        result = exchange_oauth_code(self.config, provider, code)
        email = self._lookup_email(provider, result)
        return self.tokens.connect_account(self.user_id, provider, email, result)

    def connect(
        self,
        provider: str,
        email: str,
        tokens: OAuthTokenResult,
        display_name: str | None = None,
    ) -> Account:
        return self.tokens.connect_account(self.user_id, provider, email, tokens, display_name)

    def list_accounts(self) -> list[Account]:
        return self.tokens.list_accounts(self.user_id)

    def list_links(self) -> list[AccountLink]:
        """Summary: List accounts with their linked member, without credentials.

        Importance: Feeds display payloads and account settings.
        Alternatives: Return raw Account records.
        """

        return _linked_accounts(self.list_accounts(), self.household.list_members())

    def link_to_member(self, account_id: str, member_id: str) -> HouseholdMember:
        account = self.tokens.get_account(self.user_id, account_id)
        return self.household.link_account(member_id, account)

    def disconnect(self, account_id: str) -> None:
        account = self.tokens.get_account(self.user_id, account_id)
        self.household.unlink_account(account)
        self.tokens.delete_account(self.user_id, account_id)
        logger.info("Disconnected account %s for user %s.", account_id, self.user_id)

    def _lookup_email(self, provider: str, result: OAuthTokenResult) -> str:
        placeholder = Account(
            account_id="",
            user_id=self.user_id,
            provider=provider,
            email="",
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_at=result.expires_at,
        )
        email = self.client_factory(self.config, placeholder, result.access_token).fetch_account_email()
        if not email:
            raise ValueError(f"Could not determine the {provider} account email")
        return email


@dataclass(frozen=True)
class LicenseService:
    """Summary: Grants and checks owner licenses that gate display reads.

    Importance: Displays only render data for owners with an active license.
    Alternatives: Check licenses in an external billing system.
    """

    store: SqliteStore

    def activate(self, user_id: int, now: datetime | None = None) -> datetime:
        valid_until = (now or utc_now()) + LICENSE_TERM
        self.store.set_license(user_id, format_timestamp(valid_until) or "")
        logger.info("Activated license for user %s until %s.", user_id, valid_until.isoformat())
        return valid_until

    def ensure_active(self, user_id: int) -> datetime:
        """Summary: Raise PermissionDenied unless the owner's license is current.

        Importance: Missing and expired licenses produce distinct messages.
        Alternatives: Return a boolean and let callers pick the message.
        """

        user = self.store.get_user(user_id)
        if not user:
            raise NotFound(f"User {user_id} not found")
        valid_until = parse_timestamp(user.license_valid_until)
        if valid_until is None:
            raise PermissionDenied("No active license found for this display owner")
        if valid_until <= utc_now():
            raise PermissionDenied("License expired")
        return valid_until


@dataclass(frozen=True)
class DisplayService:
    """Summary: Resolves displays to owners and serves their calendar data.

    Importance: The display read path and display-scoped mutations share one license gate.
    Alternatives: Authenticate displays as full users.
    """

    store: SqliteStore
    tokens: TokenStore
    cache: CacheGateway
    mutations: MutationService
    orchestrator: SyncOrchestrator
    licenses: LicenseService
    config: AppConfig

    def register(self, owner_id: int, name: str, display_id: str | None = None) -> Display:
        display = Display(
            display_id=display_id or uuid.uuid4().hex[:16], owner_id=owner_id, name=name
        )
        self.store.save_display(display)
        return display

    def list_displays(self, owner_id: int) -> list[Display]:
        return self.store.list_displays(owner_id)

    def resolve(self, display_id: str) -> Display:
        display = self.store.get_display(display_id)
        if not display:
            raise NotFound(f"Display {display_id} not found")
        if display.status != "active":
            raise PermissionDenied("Display is not active")
        self.licenses.ensure_active(display.owner_id)
        return display

    def get_display_data(self, display_id: str) -> dict[str, Any]:
        """Summary: Build the display payload from the owner's (possibly stale) snapshot.

        Importance: Events are re-attributed with the owner's current accounts and members.
        Alternatives: Serve the stored attribution from the last sync.
        """

        display = self.resolve(display_id)
        owner_id = display.owner_id
        snapshot = self.cache.get_fresh_snapshot(owner_id)
        members = self.store.load_members(owner_id)
        links = _linked_accounts(self.tokens.list_accounts(owner_id), members)
        calendar_data = None
        if snapshot.last_synced_at is not None:
            events = attribute_events(snapshot.events, links, members)
            calendar_data = {
                "events": [event.to_dict() for event in events],
                "calendars": [calendar.to_dict() for calendar in snapshot.calendars],
                "accounts": [link.to_dict() for link in links],
                "last_synced_at": format_timestamp(snapshot.last_synced_at),
            }
        return {
            "owner_id": owner_id,
            "display": {
                "display_id": display.display_id,
                "name": display.name,
                "status": display.status,
            },
            "calendar_data": calendar_data,
            "family_members": [member.to_dict() for member in members],
        }

    def sync(self, display_id: str) -> SyncResult:
        display = self.resolve(display_id)
        return self.orchestrator.sync_user(display.owner_id)

    def create_event(self, display_id: str, event: CalendarEvent) -> MutationResult:
        state = self._state(self.resolve(display_id))
        return self.mutations.create(state, event)

    def update_event(self, display_id: str, event: CalendarEvent) -> MutationResult:
        state = self._state(self.resolve(display_id))
        return self.mutations.update(state, event)

    def delete_event(self, display_id: str, event_id: str) -> MutationResult:
        state = self._state(self.resolve(display_id))
        event = next((item for item in state.events if item.id == event_id), None)
        if event is None:
            event = CalendarEvent(id=event_id, calendar_id="", title="", start="", end="")
        return self.mutations.delete(state, event)

    def _state(self, display: Display) -> DisplayState:
        snapshot = self.store.get_snapshot(display.owner_id)
        return DisplayState(
            owner_id=display.owner_id,
            events=list(snapshot.events) if snapshot else [],
            accounts=self.tokens.list_accounts(display.owner_id),
            members=self.store.load_members(display.owner_id),
            provider=self.config.default_provider,
            calendars=list(snapshot.calendars) if snapshot else [],
        )


def _linked_accounts(accounts: list[Account], members: list[HouseholdMember]) -> list[AccountLink]:
    links = account_links(accounts)
    by_account, by_email = build_member_maps([], members)
    return [
        replace(
            link,
            linked_member_id=member_for_account(link.account_id, links, by_account, by_email),
        )
        for link in links
    ]


@dataclass(frozen=True)
class CalendarService:
    """Summary: Direct, single-account provider reads and writes that bypass the cache.

    Importance: Serves ad-hoc ranges and explicit account writes.
    Alternatives: Route every read through the cached snapshot.
    """

    tokens: TokenStore
    token_manager: TokenManager
    config: AppConfig
    user_id: int
    client_factory: ClientFactory = build_provider_client

    def list_events(
        self,
        calendar_id: str | None = None,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        account_id: str | None = None,
    ) -> list[CalendarEvent]:
        """Summary: Read events straight from the provider.

        Importance: Defaults to the primary calendar over the next 30 days.
        Alternatives: Require callers to pass every parameter.
        """

        start = time_min or utc_now()
        end = time_max or start + DIRECT_READ_RANGE
        account = self._account(account_id)
        client = self._client(account)
        events = client.list_events(calendar_id or "primary", start, end, DIRECT_READ_MAX_RESULTS)
        return [replace(event, account_id=account.account_id) for event in events]

    def create_event(
        self, calendar_id: str | None, event: CalendarEvent, account_id: str | None = None
    ) -> CalendarEvent:
        account = self._account(account_id)
        created = self._client(account).insert_event(calendar_id or "primary", event)
        return replace(created, account_id=account.account_id)

    def update_event(
        self,
        calendar_id: str | None,
        event_id: str,
        event: CalendarEvent,
        account_id: str | None = None,
    ) -> CalendarEvent:
        account = self._account(account_id)
        updated = self._client(account).patch_event(calendar_id or "primary", event_id, event)
        return replace(updated, account_id=account.account_id)

    def delete_event(
        self, calendar_id: str | None, event_id: str, account_id: str | None = None
    ) -> None:
        account = self._account(account_id)
        self._client(account).delete_event(calendar_id or "primary", event_id)

    def _account(self, account_id: str | None) -> Account:
        if account_id:
            return self.tokens.get_account(self.user_id, account_id)
        accounts = self.tokens.list_accounts(self.user_id, self.config.default_provider)
        if not accounts:
            raise NoAccountAvailable(f"No {self.config.default_provider} account connected")
        return accounts[0]

    def _client(self, account: Account):
        token = self.token_manager.get_valid_token(account)
        return self.client_factory(self.config, account, token)
