"""Summary: FastAPI application for FamilySync.

Importance: Exposes display reads, sync, event writes, accounts, and household management over HTTP.
Alternatives: Use a CLI-only workflow or a different web framework.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from familysync.app import AppServices, build_context
from familysync.config import AppConfig
from familysync.errors import (
    AuthError,
    NoAccountAvailable,
    NotFound,
    PermissionDenied,
    ProviderRequestError,
    ReauthRequired,
)
from familysync.models import CalendarEvent, SyncResult, format_timestamp, utc_now
from familysync.mutations import MutationResult
from familysync.oauth import (
    OAuthError,
    build_google_auth_url,
    build_microsoft_auth_url,
    create_state_token,
)
from familysync.providers import build_provider_client
from familysync.sync import ClientFactory


logger = logging.getLogger(__name__)

OAUTH_STATE_TTL = timedelta(minutes=10)


class EventPayload(BaseModel):
    """Summary: Event fields accepted by write endpoints.

    Importance: Keeps event inputs explicit for API clients.
    Alternatives: Accept free-form dictionaries.
    """

    id: str = ""
    calendar_id: str = ""
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
    assigned_to: list[str] = Field(default_factory=list)

    def to_event(self) -> CalendarEvent:
        return CalendarEvent(
            id=self.id,
            calendar_id=self.calendar_id,
            title=self.title,
            start=self.start,
            end=self.end,
            account_id=self.account_id,
            description=self.description,
            location=self.location,
            is_all_day=self.is_all_day,
            category=self.category,
            recurrence=self.recurrence,
            rrule=self.rrule,
            assigned_to=list(self.assigned_to),
        )


class CalendarEventRequest(BaseModel):
    calendar_id: str | None = None
    account_id: str | None = None
    event: EventPayload


class CalendarEventUpdateRequest(BaseModel):
    calendar_id: str | None = None
    account_id: str | None = None
    event_id: str
    event: EventPayload


class CalendarEventDeleteRequest(BaseModel):
    calendar_id: str | None = None
    account_id: str | None = None
    event_id: str


class DisplayCreateRequest(BaseModel):
    name: str
    display_id: str | None = None


class DisplayEventDeleteRequest(BaseModel):
    event_id: str


class AccountLinkRequest(BaseModel):
    account_id: str
    member_id: str


class AccountDisconnectRequest(BaseModel):
    account_id: str


class MemberCreateRequest(BaseModel):
    """Summary: Request payload for adding a household member.

    Importance: Members are the attribution targets for synced events.
    Alternatives: Derive members from connected accounts.
    """

    name: str
    color: str = "#6B7280"
    avatar: str | None = None
    role: str | None = None


class MemberDeleteRequest(BaseModel):
    member_id: str


def create_app(config: AppConfig, client_factory: ClientFactory = build_provider_client) -> FastAPI:
    """Summary: Create a FastAPI app wired to FamilySync services.

    Importance: Ensures the API layer shares the same configuration, storage, and refresh locks.
    Alternatives: Instantiate services globally outside the factory.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    app = FastAPI(title="FamilySync API", version="0.1.0")
    context = build_context(config, client_factory)
    app.state.context = context
    app.state.oauth_states = {}
    _register_error_handlers(app)

    def _register_state(provider: str, state: str, user_id: int) -> None:
        """Summary: Register an OAuth state token.

        Importance: Binds the callback to the provider and user that started the flow.
        Alternatives: Store state in a database or signed cookies.
        """

        app.state.oauth_states[state] = {
            "provider": provider,
            "user_id": user_id,
            "created_at": utc_now(),
        }

    def _consume_state(provider: str, state: str) -> int:
        record = app.state.oauth_states.pop(state, None)
        if not record or record["provider"] != provider:
            raise HTTPException(status_code=400, detail="Invalid OAuth state")
        if utc_now() - record["created_at"] > OAUTH_STATE_TTL:
            raise HTTPException(status_code=400, detail="OAuth state expired")
        return record["user_id"]

    def require_user(x_api_key: str | None = Header(default=None)) -> AppServices:
        """Summary: Resolve the calling user from the X-API-Key header.

        Importance: The admin key maps to the default user; issued keys map to their owners.
        Alternatives: Use OAuth or session-based authentication.
        """

        if x_api_key is None:
            if config.api_key:
                raise HTTPException(status_code=401, detail="Missing API key")
            return context.services_for_user(context.default_user_id)
        if config.api_key and x_api_key == config.api_key:
            return context.services_for_user(context.default_user_id)
        user_id = context.api_keys.resolve_user_id(x_api_key)
        if user_id is None:
            raise HTTPException(status_code=401, detail="Invalid API key")
        return context.services_for_user(user_id)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/displays")
    def register_display(
        payload: DisplayCreateRequest, services: AppServices = Depends(require_user)
    ) -> dict[str, Any]:
        display = context.displays.register(services.user_id, payload.name, payload.display_id)
        return {"display_id": display.display_id, "owner_id": display.owner_id, "name": display.name}

    @app.get("/displays/{display_id}")
    def get_display_data(
        display_id: str, services: AppServices = Depends(require_user)
    ) -> dict[str, Any]:
        """Summary: Serve a display's cached calendar data.

        Importance: Gated on an active display and a current owner license.
        Alternatives: Serve snapshots without license checks.
        """

        return context.displays.get_display_data(display_id)

    @app.post("/displays/{display_id}/sync")
    def sync_display(display_id: str, services: AppServices = Depends(require_user)) -> dict[str, Any]:
        return _sync_payload(context.displays.sync(display_id))

    @app.post("/displays/{display_id}/events")
    def create_display_event(
        display_id: str, payload: EventPayload, services: AppServices = Depends(require_user)
    ) -> dict[str, Any]:
        return _mutation_payload(context.displays.create_event(display_id, payload.to_event()))

    @app.post("/displays/{display_id}/events/update")
    def update_display_event(
        display_id: str, payload: EventPayload, services: AppServices = Depends(require_user)
    ) -> dict[str, Any]:
        return _mutation_payload(context.displays.update_event(display_id, payload.to_event()))

    @app.post("/displays/{display_id}/events/delete")
    def delete_display_event(
        display_id: str,
        payload: DisplayEventDeleteRequest,
        services: AppServices = Depends(require_user),
    ) -> dict[str, Any]:
        return _mutation_payload(context.displays.delete_event(display_id, payload.event_id))

    @app.post("/calendars/sync")
    def sync_calendars(services: AppServices = Depends(require_user)) -> dict[str, Any]:
        """Summary: Run a full sync for the calling user.

        Importance: Always reports counts; skipped accounts are listed, not raised.
        Alternatives: Fail the request when any account fails.
        """

        return _sync_payload(services.sync())

    @app.get("/calendars/events")
    def get_calendar_events(
        calendar_id: str | None = None,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        account_id: str | None = None,
        services: AppServices = Depends(require_user),
    ) -> dict[str, Any]:
        events = services.calendar.list_events(calendar_id, time_min, time_max, account_id)
        return {"events": [event.to_dict() for event in events]}

    @app.post("/calendar-events")
    def create_calendar_event(
        payload: CalendarEventRequest, services: AppServices = Depends(require_user)
    ) -> dict[str, Any]:
        event = services.calendar.create_event(
            payload.calendar_id, payload.event.to_event(), payload.account_id
        )
        return {"success": True, "event": event.to_dict()}

    @app.post("/calendar-events/update")
    def update_calendar_event(
        payload: CalendarEventUpdateRequest, services: AppServices = Depends(require_user)
    ) -> dict[str, Any]:
        event = services.calendar.update_event(
            payload.calendar_id, payload.event_id, payload.event.to_event(), payload.account_id
        )
        return {"success": True, "event": event.to_dict()}

    @app.post("/calendar-events/delete")
    def delete_calendar_event(
        payload: CalendarEventDeleteRequest, services: AppServices = Depends(require_user)
    ) -> dict[str, Any]:
        services.calendar.delete_event(payload.calendar_id, payload.event_id, payload.account_id)
        return {"success": True}

    @app.get("/accounts")
    def list_accounts(services: AppServices = Depends(require_user)) -> list[dict[str, Any]]:
        return [link.to_dict() for link in services.accounts.list_links()]

    @app.post("/accounts/link")
    def link_account(
        payload: AccountLinkRequest, services: AppServices = Depends(require_user)
    ) -> dict[str, Any]:
        member = services.accounts.link_to_member(payload.account_id, payload.member_id)
        return member.to_dict()

    @app.post("/accounts/disconnect")
    def disconnect_account(
        payload: AccountDisconnectRequest, services: AppServices = Depends(require_user)
    ) -> dict[str, Any]:
        services.accounts.disconnect(payload.account_id)
        return {"success": True}

    @app.get("/household/members")
    def list_members(services: AppServices = Depends(require_user)) -> list[dict[str, Any]]:
        return [member.to_dict() for member in services.household.list_members()]

    @app.post("/household/members")
    def add_member(
        payload: MemberCreateRequest, services: AppServices = Depends(require_user)
    ) -> dict[str, Any]:
        member = services.household.add_member(
            payload.name, payload.color, payload.avatar, payload.role
        )
        return member.to_dict()

    @app.post("/household/members/delete")
    def delete_member(
        payload: MemberDeleteRequest, services: AppServices = Depends(require_user)
    ) -> dict[str, Any]:
        services.household.remove_member(payload.member_id)
        return {"success": True}

    @app.post("/license/activate")
    def activate_license(services: AppServices = Depends(require_user)) -> dict[str, Any]:
        valid_until = context.licenses.activate(services.user_id)
        return {"user_id": services.user_id, "valid_until": format_timestamp(valid_until)}

    @app.get("/oauth/google")
    def oauth_google(services: AppServices = Depends(require_user)) -> dict[str, str]:
        state = create_state_token()
        _register_state("google", state, services.user_id)
        return {"url": build_google_auth_url(config, state), "state": state}

    @app.get("/oauth/microsoft")
    def oauth_microsoft(services: AppServices = Depends(require_user)) -> dict[str, str]:
        state = create_state_token()
        _register_state("microsoft", state, services.user_id)
        return {"url": build_microsoft_auth_url(config, state), "state": state}

    @app.get("/oauth/callback", response_class=HTMLResponse)
    def oauth_callback(provider: str, code: str, state: str) -> str:
        """Summary: Complete an OAuth flow and store the connected account.

        Importance: Reconnecting an existing mailbox replaces its credentials and clears auth errors.
        Alternatives: Let clients post tokens directly.
        """

        if provider not in {"google", "microsoft"}:
            raise HTTPException(status_code=400, detail="Unknown provider")
        user_id = _consume_state(provider, state)
        try:
            account = context.services_for_user(user_id).accounts.connect_from_code(provider, code)
        except OAuthError as exc:
            logger.warning("OAuth code exchange failed for %s: %s", provider, exc.message)
            raise HTTPException(status_code=400, detail=exc.message) from exc
        return f"<h1>FamilySync connected {account.email}</h1><p>You can close this window.</p>"

    return app


def _register_error_handlers(app: FastAPI) -> None:
    """Summary: Map domain errors to HTTP responses.

    Importance: Keeps route handlers free of per-error try blocks.
    Alternatives: Catch and convert errors in every route.
    """

    async def _reauth(request: Request, exc: ReauthRequired) -> JSONResponse:
        return JSONResponse(
            status_code=401,
            content={
                "detail": exc.message,
                "code": "reauth_required",
                "account_id": exc.account_id,
                "email": exc.email,
            },
        )

    async def _transient(request: Request, exc: AuthError) -> JSONResponse:
        return JSONResponse(
            status_code=502,
            content={"detail": exc.message, "code": "auth_failed", "account_id": exc.account_id},
        )

    async def _provider(request: Request, exc: ProviderRequestError) -> JSONResponse:
        logger.warning("Provider request failed: %s", exc.message)
        return JSONResponse(
            status_code=502,
            content={"detail": exc.message, "code": "provider_error", "status": exc.status},
        )

    async def _not_found(request: Request, exc: NotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    async def _denied(request: Request, exc: PermissionDenied) -> JSONResponse:
        return JSONResponse(status_code=403, content={"detail": str(exc)})

    async def _no_account(request: Request, exc: NoAccountAvailable) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    async def _value(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    app.add_exception_handler(ReauthRequired, _reauth)
    app.add_exception_handler(AuthError, _transient)
    app.add_exception_handler(ProviderRequestError, _provider)
    app.add_exception_handler(NotFound, _not_found)
    app.add_exception_handler(PermissionDenied, _denied)
    app.add_exception_handler(NoAccountAvailable, _no_account)
    app.add_exception_handler(ValueError, _value)


def _sync_payload(result: SyncResult) -> dict[str, Any]:
    return {
        "success": True,
        "calendars_count": result.calendars_count,
        "events_count": result.events_count,
        "skipped_accounts": [
            {"account_id": item.account_id, "reason": item.reason}
            for item in result.skipped_accounts
        ],
        "skipped_calendars": [
            {"account_id": item.account_id, "calendar_id": item.calendar_id, "reason": item.reason}
            for item in result.skipped_calendars
        ],
    }


def _mutation_payload(result: MutationResult) -> dict[str, Any]:
    return {
        "success": result.success,
        "event": result.event.to_dict() if result.event else None,
        "sync": _sync_payload(result.sync) if result.sync else None,
    }


app = create_app(AppConfig.from_env())
