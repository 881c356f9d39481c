"""Summary: SQLite storage implementation for FamilySync.

Importance: Provides local-first persistence for accounts, households, snapshots, and displays.
Alternatives: Use Firestore, Postgres, or an ORM.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from familysync.models import (
    CachedSnapshot,
    CalendarEvent,
    CalendarInfo,
    Display,
    HouseholdMember,
    User,
    format_timestamp,
    parse_timestamp,
)


@dataclass(frozen=True)
class StoredUser:
    """Summary: User record with database identifier.

    Importance: Owns accounts, households, snapshots, and displays.
    Alternatives: Keep only a single implicit user without records.
    """

    id: int
    display_name: str
    email: str
    license_valid_until: str | None


@dataclass(frozen=True)
class StoredApiKey:
    """Summary: API key metadata (the token itself is only stored hashed).

    Importance: Supports key listing and revocation.
    Alternatives: Store keys in config files.
    """

    id: int
    user_id: int
    label: str | None
    created_at: str


@dataclass(frozen=True)
class StoredAccount:
    """Summary: Account row exactly as persisted, with encoded credentials.

    Importance: Keeps credential decoding out of the storage layer.
    Alternatives: Decode tokens inside SQL helpers.
    """

    user_id: int
    account_id: str
    provider: str
    email: str
    display_name: str | None
    access_token: str
    refresh_token: str | None
    expires_at: str | None
    auth_error: str | None
    auth_error_message: str | None
    auth_error_at: str | None
    updated_at: str | None


_ACCOUNT_COLUMNS = (
    "user_id, account_id, provider, email, display_name, access_token, refresh_token, "
    "expires_at, auth_error, auth_error_message, auth_error_at, updated_at"
)


class SqliteStore:
    """Summary: SQLite-backed storage for FamilySync.

    Importance: Enables local-first persistence with minimal dependencies.
    Alternatives: Use Postgres and SQLAlchemy from day one.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)

    def initialize(self) -> None:
        """Summary: Create tables if they do not exist.

        Importance: Ensures the database is ready before the first sync or request.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    display_name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    license_valid_until TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS api_keys (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    token_hash TEXT NOT NULL UNIQUE,
                    label TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    user_id INTEGER NOT NULL,
                    account_id TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    email TEXT NOT NULL,
                    display_name TEXT,
                    access_token TEXT NOT NULL,
                    refresh_token TEXT,
                    expires_at TEXT,
                    auth_error TEXT,
                    auth_error_message TEXT,
                    auth_error_at TEXT,
                    updated_at TEXT,
                    PRIMARY KEY (user_id, account_id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS households (
                    user_id INTEGER PRIMARY KEY,
                    members TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS cached_snapshots (
                    user_id INTEGER PRIMARY KEY,
                    calendars TEXT NOT NULL,
                    events TEXT NOT NULL,
                    last_synced_at TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS displays (
                    display_id TEXT PRIMARY KEY,
                    owner_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    status TEXT NOT NULL
                )
                """
            )
            connection.commit()

    def ensure_user(self, user: User) -> int:
        """Summary: Ensure a user exists and return their ID.

        Importance: Provides a stable user record for data ownership.
        Alternatives: Omit user records in single-user mode.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "INSERT OR IGNORE INTO users (display_name, email) VALUES (?, ?)",
                (user.display_name, user.email),
            )
            if cursor.rowcount:
                user_id = cursor.lastrowid
            else:
                cursor.execute("SELECT id FROM users WHERE email = ?", (user.email,))
                row = cursor.fetchone()
                user_id = int(row[0]) if row else 0
            connection.commit()
        return int(user_id)

    def get_user(self, user_id: int) -> StoredUser | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT id, display_name, email, license_valid_until FROM users WHERE id = ?",
                (user_id,),
            )
            row = cursor.fetchone()
        return StoredUser(*row) if row else None

    def get_user_by_email(self, email: str) -> StoredUser | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT id, display_name, email, license_valid_until FROM users WHERE email = ?",
                (email,),
            )
            row = cursor.fetchone()
        return StoredUser(*row) if row else None

    def list_users(self) -> list[StoredUser]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT id, display_name, email, license_valid_until FROM users ORDER BY id"
            )
            rows = cursor.fetchall()
        return [StoredUser(*row) for row in rows]

    def set_license(self, user_id: int, valid_until: str) -> None:
        """Summary: Record the license expiry for a user.

        Importance: Gates every display-scoped read.
        Alternatives: Keep licenses in a separate billing service.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "UPDATE users SET license_valid_until = ? WHERE id = ?",
                (valid_until, user_id),
            )
            connection.commit()

    def create_api_key(
        self, user_id: int, token_hash: str, label: str | None, created_at: str
    ) -> int:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "INSERT INTO api_keys (user_id, token_hash, label, created_at) VALUES (?, ?, ?, ?)",
                (user_id, token_hash, label, created_at),
            )
            key_id = cursor.lastrowid
            connection.commit()
        return int(key_id)

    def list_api_keys(self, user_id: int) -> list[StoredApiKey]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT id, user_id, label, created_at FROM api_keys WHERE user_id = ? ORDER BY id",
                (user_id,),
            )
            rows = cursor.fetchall()
        return [StoredApiKey(*row) for row in rows]

    def delete_api_key(self, user_id: int, key_id: int) -> bool:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "DELETE FROM api_keys WHERE id = ? AND user_id = ?",
                (key_id, user_id),
            )
            deleted = cursor.rowcount > 0
            connection.commit()
        return deleted

    def get_user_id_by_api_key(self, token_hash: str) -> int | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute("SELECT user_id FROM api_keys WHERE token_hash = ?", (token_hash,))
            row = cursor.fetchone()
        return int(row[0]) if row else None

    def upsert_account(self, account: StoredAccount) -> None:
        """Summary: Insert or fully replace an account row.

        Importance: Every refresh attempt and error classification rewrites the record.
        Alternatives: Issue column-level UPDATE statements per change.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"""
                INSERT INTO accounts ({_ACCOUNT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, account_id) DO UPDATE SET
                    provider = excluded.provider,
                    email = excluded.email,
                    display_name = excluded.display_name,
                    access_token = excluded.access_token,
                    refresh_token = excluded.refresh_token,
                    expires_at = excluded.expires_at,
                    auth_error = excluded.auth_error,
                    auth_error_message = excluded.auth_error_message,
                    auth_error_at = excluded.auth_error_at,
                    updated_at = excluded.updated_at
                """,
                (
                    account.user_id,
                    account.account_id,
                    account.provider,
                    account.email,
                    account.display_name,
                    account.access_token,
                    account.refresh_token,
                    account.expires_at,
                    account.auth_error,
                    account.auth_error_message,
                    account.auth_error_at,
                    account.updated_at,
                ),
            )
            connection.commit()

    def get_account(self, user_id: int, account_id: str) -> StoredAccount | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE user_id = ? AND account_id = ?",
                (user_id, account_id),
            )
            row = cursor.fetchone()
        return StoredAccount(*row) if row else None

    def list_accounts(self, user_id: int, provider: str | None = None) -> list[StoredAccount]:
        """Summary: List a user's accounts in connection order.

        Importance: Sync iterates these; mutation fallback picks the first match.
        Alternatives: Order by email for stable display.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            if provider is None:
                cursor.execute(
                    f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE user_id = ? ORDER BY rowid",
                    (user_id,),
                )
            else:
                cursor.execute(
                    f"""
                    SELECT {_ACCOUNT_COLUMNS} FROM accounts
                    WHERE user_id = ? AND provider = ?
                    ORDER BY rowid
                    """,
                    (user_id, provider),
                )
            rows = cursor.fetchall()
        return [StoredAccount(*row) for row in rows]

    def find_account_by_email(
        self, user_id: int, provider: str, email: str
    ) -> StoredAccount | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"""
                SELECT {_ACCOUNT_COLUMNS} FROM accounts
                WHERE user_id = ? AND provider = ? AND lower(email) = lower(?)
                """,
                (user_id, provider, email),
            )
            row = cursor.fetchone()
        return StoredAccount(*row) if row else None

    def delete_account(self, user_id: int, account_id: str) -> bool:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "DELETE FROM accounts WHERE user_id = ? AND account_id = ?",
                (user_id, account_id),
            )
            deleted = cursor.rowcount > 0
            connection.commit()
        return deleted

    def save_members(self, user_id: int, members: list[HouseholdMember]) -> None:
        """Summary: Replace a user's household member list.

        Importance: Member order is preserved because attribution is first-match.
        Alternatives: Store one row per member with a position column.
        """

        payload = json.dumps([member.to_dict() for member in members])
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO households (user_id, members) VALUES (?, ?)
                ON CONFLICT(user_id) DO UPDATE SET members = excluded.members
                """,
                (user_id, payload),
            )
            connection.commit()

    def load_members(self, user_id: int) -> list[HouseholdMember]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute("SELECT members FROM households WHERE user_id = ?", (user_id,))
            row = cursor.fetchone()
        if not row:
            return []
        return [HouseholdMember.from_dict(item) for item in json.loads(row[0])]

    def save_snapshot(self, snapshot: CachedSnapshot) -> None:
        """Summary: Overwrite the cached snapshot for a user.

        Importance: Snapshots are replaced wholesale, never patched.
        Alternatives: Store events in their own table and diff on sync.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO cached_snapshots (user_id, calendars, events, last_synced_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    calendars = excluded.calendars,
                    events = excluded.events,
                    last_synced_at = excluded.last_synced_at
                """,
                (
                    snapshot.user_id,
                    json.dumps([calendar.to_dict() for calendar in snapshot.calendars]),
                    json.dumps([event.to_dict() for event in snapshot.events]),
                    format_timestamp(snapshot.last_synced_at),
                ),
            )
            connection.commit()

    def get_snapshot(self, user_id: int) -> CachedSnapshot | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT calendars, events, last_synced_at FROM cached_snapshots WHERE user_id = ?",
                (user_id,),
            )
            row = cursor.fetchone()
        if not row:
            return None
        calendars_raw, events_raw, last_synced_at = row
        return CachedSnapshot(
            user_id=user_id,
            calendars=[CalendarInfo.from_dict(item) for item in json.loads(calendars_raw)],
            events=[CalendarEvent.from_dict(item) for item in json.loads(events_raw)],
            last_synced_at=parse_timestamp(last_synced_at),
        )

    def save_display(self, display: Display) -> None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO displays (display_id, owner_id, name, status) VALUES (?, ?, ?, ?)
                ON CONFLICT(display_id) DO UPDATE SET
                    owner_id = excluded.owner_id,
                    name = excluded.name,
                    status = excluded.status
                """,
                (display.display_id, display.owner_id, display.name, display.status),
            )
            connection.commit()

    def get_display(self, display_id: str) -> Display | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT display_id, owner_id, name, status FROM displays WHERE display_id = ?",
                (display_id,),
            )
            row = cursor.fetchone()
        return Display(*row) if row else None

    def list_displays(self, owner_id: int) -> list[Display]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT display_id, owner_id, name, status FROM displays
                WHERE owner_id = ? ORDER BY name
                """,
                (owner_id,),
            )
            rows = cursor.fetchall()
        return [Display(*row) for row in rows]

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Summary: Context manager for SQLite connections.

        Importance: Each call gets its own connection, so sync worker threads never share one.
        Alternatives: Keep a single long-lived connection with check_same_thread=False.
        """

        connection = sqlite3.connect(self._db_path, timeout=30)
        try:
            yield connection
        finally:
            connection.close()
