"""Summary: Account credential storage and the access-token lifecycle.

Importance: Every provider call goes through a token obtained here, and every refresh outcome is persisted on the account.
Alternatives: Let each provider client refresh its own credentials.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from familysync.config import AppConfig
from familysync.errors import NotFound, ReauthRequired, TransientAuthFailure
from familysync.models import (
    AUTH_ERROR_INVALID_GRANT,
    AUTH_ERROR_MISSING_REFRESH_TOKEN,
    AUTH_ERROR_REFRESH_FAILED,
    Account,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from familysync.oauth import OAuthError, OAuthTokenResult, refresh_oauth_token
from familysync.storage.sqlite_store import SqliteStore, StoredAccount
from familysync.token_codec import TokenCodec


logger = logging.getLogger(__name__)

REFRESH_MARGIN = timedelta(seconds=60)


@dataclass(frozen=True)
class TokenStore:
    """Summary: Data access for provider accounts and their auth-error state.

    Importance: Keeps credential encoding in one place and gives the rest of the system plain Account records.
    Alternatives: Read account rows directly from SqliteStore in each service.
    """

    store: SqliteStore
    codec: TokenCodec

    def get_account(self, user_id: int, account_id: str) -> Account:
        record = self.store.get_account(user_id, account_id)
        if not record:
            raise NotFound(f"Account {account_id} not found")
        return self._to_account(record)

    def list_accounts(self, user_id: int, provider: str | None = None) -> list[Account]:
        return [self._to_account(record) for record in self.store.list_accounts(user_id, provider)]

    def find_by_email(self, user_id: int, provider: str, email: str) -> Account | None:
        record = self.store.find_account_by_email(user_id, provider, email)
        return self._to_account(record) if record else None

    def save_account(self, account: Account) -> Account:
        """Summary: Persist an account, stamping its update time.

        Importance: Used on OAuth completion and after every refresh attempt.
        Alternatives: Let callers manage updated_at themselves.
        """

        stamped = replace(account, updated_at=utc_now())
        self.store.upsert_account(
            StoredAccount(
                user_id=stamped.user_id,
                account_id=stamped.account_id,
                provider=stamped.provider,
                email=stamped.email,
                display_name=stamped.display_name,
                access_token=self.codec.encode(stamped.access_token) or "",
                refresh_token=self.codec.encode(stamped.refresh_token),
                expires_at=format_timestamp(stamped.expires_at),
                auth_error=stamped.auth_error,
                auth_error_message=stamped.auth_error_message,
                auth_error_at=format_timestamp(stamped.auth_error_at),
                updated_at=format_timestamp(stamped.updated_at),
            )
        )
        return stamped

    def record_auth_error(self, account: Account, kind: str, message: str) -> Account:
        """Summary: Persist an auth failure classification on the account.

        Importance: Lets reads render a reconnect affordance without retrying a doomed refresh.
        Alternatives: Only log auth failures.
        """

        return self.save_account(
            replace(
                account,
                auth_error=kind,
                auth_error_message=message,
                auth_error_at=utc_now(),
            )
        )

    def connect_account(
        self,
        user_id: int,
        provider: str,
        email: str,
        tokens: OAuthTokenResult,
        display_name: str | None = None,
    ) -> Account:
        """Summary: Create or replace an account after an OAuth grant.

        Importance: Reconnecting the same mailbox keeps its account id so member links survive.
        Alternatives: Always create a new account on every grant.
        """

        existing = self.find_by_email(user_id, provider, email)
        account_id = existing.account_id if existing else uuid.uuid4().hex[:20]
        refresh_token = tokens.refresh_token or (existing.refresh_token if existing else None)
        account = Account(
            account_id=account_id,
            user_id=user_id,
            provider=provider,
            email=email,
            access_token=tokens.access_token,
            refresh_token=refresh_token,
            expires_at=tokens.expires_at,
            display_name=display_name or (existing.display_name if existing else None) or email,
        )
        logger.info("Connected %s account %s (%s).", provider, account_id, email)
        return self.save_account(account)

    def delete_account(self, user_id: int, account_id: str) -> bool:
        return self.store.delete_account(user_id, account_id)

    def _to_account(self, record: StoredAccount) -> Account:
        return Account(
            account_id=record.account_id,
            user_id=record.user_id,
            provider=record.provider,
            email=record.email,
            access_token=self.codec.decode(record.access_token) or "",
            refresh_token=self.codec.decode(record.refresh_token),
            expires_at=parse_timestamp(record.expires_at),
            display_name=record.display_name,
            auth_error=record.auth_error,
            auth_error_message=record.auth_error_message,
            auth_error_at=parse_timestamp(record.auth_error_at),
            updated_at=parse_timestamp(record.updated_at),
        )


@dataclass
class TokenManager:
    """Summary: Obtains a valid access token for an account, refreshing and persisting as needed.

    Importance: Centralizes the refresh state machine: valid, refreshed, reauth required, or transient failure.
    Alternatives: Refresh tokens opportunistically inside provider clients.
    """

    tokens: TokenStore
    config: AppConfig
    _locks: dict[tuple[int, str], threading.Lock] = field(default_factory=dict, repr=False)
    _locks_guard: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def get_valid_token(self, account: Account) -> str:
        """Summary: Return a usable access token or raise an AuthError.

        Importance: Callers decide whether to skip the account; no retries happen here.
        Alternatives: Retry refreshes with backoff inside this method.
        """

        if not account.refresh_token:
            self.tokens.record_auth_error(
                account,
                AUTH_ERROR_MISSING_REFRESH_TOKEN,
                "No refresh token stored; reconnect the account.",
            )
            raise ReauthRequired(
                f"Account {account.email} has no refresh token",
                account_id=account.account_id,
                email=account.email,
            )
        if not _expires_soon(account.expires_at):
            return account.access_token
        with self._lock_for(account):
            current = self._reload(account)
            if current.refresh_token and not _expires_soon(current.expires_at):
                return current.access_token
            return self._refresh(current)

    def _refresh(self, account: Account) -> str:
        refresh_token = account.refresh_token or ""
        try:
            result = refresh_oauth_token(self.config, account.provider, refresh_token)
        except OAuthError as exc:
            if exc.is_invalid_grant:
                message = f"Access was revoked or expired for {account.email}; reconnect required."
                self.tokens.record_auth_error(account, AUTH_ERROR_INVALID_GRANT, message)
                logger.warning("Refresh rejected for account %s: %s", account.account_id, exc.message)
                raise ReauthRequired(
                    message, account_id=account.account_id, email=account.email
                ) from exc
            self.tokens.record_auth_error(account, AUTH_ERROR_REFRESH_FAILED, exc.message)
            logger.warning("Refresh failed for account %s: %s", account.account_id, exc.message)
            raise TransientAuthFailure(
                exc.message, account_id=account.account_id, email=account.email
            ) from exc
        except (ValueError, KeyError) as exc:
            message = f"Token refresh failed: {exc}"
            self.tokens.record_auth_error(account, AUTH_ERROR_REFRESH_FAILED, message)
            raise TransientAuthFailure(
                message, account_id=account.account_id, email=account.email
            ) from exc
        refreshed = replace(
            account,
            access_token=result.access_token,
            refresh_token=result.refresh_token or account.refresh_token,
            expires_at=result.expires_at,
            auth_error=None,
            auth_error_message=None,
            auth_error_at=None,
        )
        self.tokens.save_account(refreshed)
        logger.info("Refreshed access token for account %s.", account.account_id)
        return refreshed.access_token

    def _reload(self, account: Account) -> Account:
        try:
            return self.tokens.get_account(account.user_id, account.account_id)
        except NotFound:
            return account

    def _lock_for(self, account: Account) -> threading.Lock:
        key = (account.user_id, account.account_id)
        with self._locks_guard:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]


def _expires_soon(expires_at: datetime | None) -> bool:
    """Summary: Check if a token is expired or within the refresh margin.

    Importance: Avoids handing out tokens that expire mid-request.
    Alternatives: Always refresh tokens before use.
    """

    if expires_at is None:
        return False
    return expires_at <= utc_now() + REFRESH_MARGIN
