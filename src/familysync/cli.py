"""Summary: Command-line interface for FamilySync.

Importance: Provides a local entry point for syncing, household setup, and display administration.
Alternatives: Manage everything through the HTTP API.
"""

from __future__ import annotations

import argparse
import json
import logging

from familysync.app import build_context
from familysync.config import AppConfig
from familysync.models import format_timestamp
from familysync.oauth import build_google_auth_url, build_microsoft_auth_url, create_state_token


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="FamilySync CLI")
    parser.add_argument(
        "--user-id", type=int, default=None, help="Act as this user instead of the default user"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("sync", help="Sync all connected calendars")
    subparsers.add_parser("snapshot", help="Print the cached snapshot, syncing if stale")
    subparsers.add_parser("list-accounts", help="List connected accounts")

    add_member = subparsers.add_parser("add-member", help="Add a household member")
    add_member.add_argument("name", type=str)
    add_member.add_argument("--color", type=str, default="#6B7280")
    add_member.add_argument("--role", type=str, default=None)

    subparsers.add_parser("list-members", help="List household members")

    link_account = subparsers.add_parser("link-account", help="Link an account to a member")
    link_account.add_argument("account_id", type=str)
    link_account.add_argument("member_id", type=str)

    disconnect = subparsers.add_parser("disconnect", help="Disconnect an account")
    disconnect.add_argument("account_id", type=str)

    create_user = subparsers.add_parser("create-user", help="Create a household owner")
    create_user.add_argument("display_name", type=str)
    create_user.add_argument("email", type=str)

    create_key = subparsers.add_parser("create-api-key", help="Issue an API key")
    create_key.add_argument("--label", type=str, default=None)

    register_display = subparsers.add_parser("register-display", help="Register a display")
    register_display.add_argument("name", type=str)
    register_display.add_argument("--display-id", type=str, default=None)

    subparsers.add_parser("activate-license", help="Activate a one-year license")
    subparsers.add_parser("oauth-google", help="Print Google OAuth URL")
    subparsers.add_parser("oauth-microsoft", help="Print Microsoft OAuth URL")
    return parser


def run_cli(argv: list[str] | None = None) -> None:
    """Summary: Execute CLI commands based on arguments.

    Importance: Drives household setup and sync without a UI.
    Alternatives: Invoke services via an HTTP API.
    """

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    config = AppConfig.from_env()
    context = build_context(config)
    user_id = args.user_id or context.default_user_id
    services = context.services_for_user(user_id)

    if args.command == "sync":
        result = services.sync()
        print(f"Synced {result.calendars_count} calendars, {result.events_count} events.")
        for skipped in result.skipped_accounts:
            print(f"Skipped account {skipped.account_id}: {skipped.reason}")
        for skipped in result.skipped_calendars:
            print(f"Skipped calendar {skipped.calendar_id} ({skipped.account_id}): {skipped.reason}")
        return

    if args.command == "snapshot":
        print(json.dumps(services.snapshot().to_payload(), indent=2))
        return

    if args.command == "list-accounts":
        for link in services.accounts.list_links():
            status = f" [{link.auth_error}]" if link.auth_error else ""
            member = link.linked_member_id or "-"
            print(f"{link.account_id}: {link.provider} {link.email} member={member}{status}")
        return

    if args.command == "add-member":
        member = services.household.add_member(args.name, args.color, role=args.role)
        print(f"Added member {member.id} ({member.name}).")
        return

    if args.command == "list-members":
        for member in services.household.list_members():
            accounts = ", ".join(ref.email for ref in member.connected_accounts) or "no accounts"
            print(f"{member.id}: {member.name} {member.color} ({accounts})")
        return

    if args.command == "link-account":
        member = services.accounts.link_to_member(args.account_id, args.member_id)
        print(f"Linked {args.account_id} to {member.name}.")
        return

    if args.command == "disconnect":
        services.accounts.disconnect(args.account_id)
        print(f"Disconnected {args.account_id}.")
        return

    if args.command == "create-user":
        new_user_id = context.users.create_user(args.display_name, args.email)
        print(f"Created user {new_user_id} ({args.email}).")
        return

    if args.command == "create-api-key":
        key_id, token = context.api_keys.create_api_key(user_id, args.label)
        print(f"API key {key_id}: {token}")
        return

    if args.command == "register-display":
        display = context.displays.register(user_id, args.name, args.display_id)
        print(f"Registered display {display.display_id} for user {user_id}.")
        return

    if args.command == "activate-license":
        valid_until = context.licenses.activate(user_id)
        print(f"License valid until {format_timestamp(valid_until)}.")
        return

    if args.command == "oauth-google":
        print(build_google_auth_url(config, create_state_token()))
        return

    if args.command == "oauth-microsoft":
        print(build_microsoft_auth_url(config, create_state_token()))
        return


if __name__ == "__main__":
    run_cli()
