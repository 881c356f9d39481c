"""Summary: Attribute synced calendar events to household members.

Importance: Lets displays color and filter external events per family member.
Alternatives: Require users to tag every synced event manually.
"""

from __future__ import annotations

import re
from dataclasses import replace

from familysync.models import AccountLink, CalendarEvent, HouseholdMember


_PRIMARY_CALENDAR_PATTERN = re.compile(r"^[a-z]+-primary-(.+)$")


def is_external_calendar_id(calendar_id: str | None) -> bool:
    """Summary: Check whether a calendar id refers to a provider calendar.

    Importance: Local calendars are never written through a provider.
    Alternatives: Store an explicit source flag on every calendar.
    """

    if not calendar_id:
        return False
    if _PRIMARY_CALENDAR_PATTERN.match(calendar_id):
        return True
    return "@" in calendar_id or "#" in calendar_id


def account_id_from_calendar_id(calendar_id: str | None) -> str | None:
    """Extract the account id from a ``{provider}-primary-{account_id}`` calendar id."""

    if not calendar_id:
        return None
    match = _PRIMARY_CALENDAR_PATTERN.match(calendar_id)
    return match.group(1) if match else None


def build_member_maps(
    accounts: list[AccountLink], members: list[HouseholdMember]
) -> tuple[dict[str, str], dict[str, str]]:
    """Summary: Build account-id and email lookup maps to member ids.

    Importance: Account-list linkage wins; member linkage only fills keys not yet present.
    Alternatives: Derive linkage from members only.
    """

    by_account: dict[str, str] = {}
    by_email: dict[str, str] = {}
    for account in accounts:
        if not account.linked_member_id:
            continue
        by_account.setdefault(account.account_id, account.linked_member_id)
        if account.email:
            by_email.setdefault(account.email.lower(), account.linked_member_id)
    for member in members:
        for ref in member.connected_accounts:
            if ref.account_id:
                by_account.setdefault(ref.account_id, member.id)
            if ref.email:
                by_email.setdefault(ref.email.lower(), member.id)
    return by_account, by_email


def member_for_account(
    account_id: str,
    accounts: list[AccountLink],
    by_account: dict[str, str],
    by_email: dict[str, str],
) -> str | None:
    """Resolve a member id by account id, falling back to the account's email."""

    if account_id in by_account:
        return by_account[account_id]
    for account in accounts:
        if account.account_id == account_id and account.email:
            return by_email.get(account.email.lower())
    return None


def attribute_events(
    events: list[CalendarEvent],
    accounts: list[AccountLink],
    members: list[HouseholdMember],
) -> list[CalendarEvent]:
    """Summary: Populate ``assigned_to`` on unassigned events.

    Importance: Deterministic and idempotent; already-assigned events pass through unchanged.
    Alternatives: Re-derive attribution reactively whenever household data changes.
    """

    by_account, by_email = build_member_maps(accounts, members)
    attributed: list[CalendarEvent] = []
    for event in events:
        if event.assigned_to:
            attributed.append(event)
            continue
        member_id = None
        if event.account_id:
            member_id = member_for_account(event.account_id, accounts, by_account, by_email)
        if member_id is None:
            calendar_account = account_id_from_calendar_id(event.calendar_id)
            if calendar_account:
                member_id = member_for_account(calendar_account, accounts, by_account, by_email)
        attributed.append(replace(event, assigned_to=[member_id]) if member_id else event)
    return attributed
