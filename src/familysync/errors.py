"""Summary: Error taxonomy for synchronization, token lifecycle, and mutations.

Importance: Lets callers tell terminal auth failures from retryable ones and map errors to responses.
Alternatives: Raise ValueError/RuntimeError everywhere and inspect messages.
"""

from __future__ import annotations


class FamilySyncError(Exception):
    """Base class for FamilySync domain errors."""


class AuthError(FamilySyncError):
    """Summary: Failure to obtain a usable access token for an account.

    Importance: Carries the account identity so callers can render a reconnect prompt.
    Alternatives: Return None from token lookups and lose the failure reason.
    """

    def __init__(self, message: str, account_id: str, email: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.account_id = account_id
        self.email = email


class ReauthRequired(AuthError):
    """Terminal: the user must reconnect the account."""


class TransientAuthFailure(AuthError):
    """Retryable: the refresh failed for a reason other than a revoked grant."""


class ProviderRequestError(FamilySyncError):
    """Summary: A calendar provider HTTP call failed.

    Importance: Preserves status and timeout information for skip and rollback decisions.
    Alternatives: Surface raw urllib exceptions to callers.
    """

    def __init__(
        self, message: str, status: int | None = None, timed_out: bool = False
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.timed_out = timed_out

    @property
    def is_not_found(self) -> bool:
        return self.status in (404, 410)


class NoAccountAvailable(FamilySyncError):
    """No connected account could be resolved as the target of a mutation."""


class NotFound(FamilySyncError):
    """A display, account, member, or event does not exist."""


class PermissionDenied(FamilySyncError):
    """The display is inactive or the owner's license is missing or expired."""


class SyncUnavailable(FamilySyncError):
    """The orchestrator failed; readers degrade to cached data."""


class SyncCancelled(FamilySyncError):
    """A sync cycle was cancelled before its snapshot was written."""
