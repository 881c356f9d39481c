"""Summary: Application factory wiring core services.

Importance: Centralizes dependency creation for the CLI and API layers.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass

from familysync.cache import CacheGateway
from familysync.config import AppConfig
from familysync.models import User
from familysync.mutations import MutationService
from familysync.providers import build_provider_client
from familysync.services import (
    AccountService,
    ApiKeyService,
    CalendarService,
    DisplayService,
    HouseholdService,
    LicenseService,
    UserService,
)
from familysync.storage.sqlite_store import SqliteStore
from familysync.sync import ClientFactory, SyncOrchestrator
from familysync.token_codec import TokenCodec
from familysync.tokens import TokenManager, TokenStore


@dataclass(frozen=True)
class AppContext:
    """Summary: Shared application context for building user services.

    Importance: One TokenManager per process so per-account refresh locks are shared.
    Alternatives: Rebuild dependencies for every request.
    """

    store: SqliteStore
    config: AppConfig
    tokens: TokenStore
    token_manager: TokenManager
    orchestrator: SyncOrchestrator
    cache: CacheGateway
    mutations: MutationService
    users: UserService
    api_keys: ApiKeyService
    licenses: LicenseService
    displays: DisplayService
    default_user_id: int
    client_factory: ClientFactory = build_provider_client

    def services_for_user(self, user_id: int) -> "AppServices":
        """Summary: Build user-scoped services from shared context.

        Importance: Enables per-user API tokens and data boundaries.
        Alternatives: Use a multi-tenant database with row-level security.
        """

        household = HouseholdService(store=self.store, user_id=user_id)
        return AppServices(
            household=household,
            accounts=AccountService(
                tokens=self.tokens,
                household=household,
                config=self.config,
                user_id=user_id,
                client_factory=self.client_factory,
            ),
            calendar=CalendarService(
                tokens=self.tokens,
                token_manager=self.token_manager,
                config=self.config,
                user_id=user_id,
                client_factory=self.client_factory,
            ),
            context=self,
            user_id=user_id,
        )


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of user-scoped services.

    Importance: Simplifies passing dependencies to UI or API layers.
    Alternatives: Use a dependency injection container.
    """

    household: HouseholdService
    accounts: AccountService
    calendar: CalendarService
    context: AppContext
    user_id: int

    def sync(self):
        return self.context.orchestrator.sync_user(self.user_id)

    def snapshot(self):
        return self.context.cache.get_fresh_snapshot(self.user_id)


def build_context(config: AppConfig, client_factory: ClientFactory = build_provider_client) -> AppContext:
    """Summary: Build shared context for user-scoped services.

    Importance: Accepts a provider client factory so tests can run without network access.
    Alternatives: Construct dependencies separately per request.
    """

    store = SqliteStore(config.db_path)
    store.initialize()
    tokens = TokenStore(store=store, codec=TokenCodec(config.token_secret))
    token_manager = TokenManager(tokens=tokens, config=config)
    orchestrator = SyncOrchestrator(
        store=store,
        tokens=tokens,
        token_manager=token_manager,
        config=config,
        client_factory=client_factory,
    )
    cache = CacheGateway(
        store=store,
        orchestrator=orchestrator,
        stale_threshold_seconds=config.stale_threshold_seconds,
    )
    mutations = MutationService(
        token_manager=token_manager,
        orchestrator=orchestrator,
        config=config,
        client_factory=client_factory,
    )
    licenses = LicenseService(store=store)
    displays = DisplayService(
        store=store,
        tokens=tokens,
        cache=cache,
        mutations=mutations,
        orchestrator=orchestrator,
        licenses=licenses,
        config=config,
    )
    default_user_id = store.ensure_user(
        User(display_name=config.default_user_name, email=config.default_user_email)
    )
    return AppContext(
        store=store,
        config=config,
        tokens=tokens,
        token_manager=token_manager,
        orchestrator=orchestrator,
        cache=cache,
        mutations=mutations,
        users=UserService(store=store),
        api_keys=ApiKeyService(store=store, token_secret=config.token_secret),
        licenses=licenses,
        displays=displays,
        default_user_id=default_user_id,
        client_factory=client_factory,
    )
