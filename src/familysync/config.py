"""Summary: Application configuration for FamilySync.

Importance: Centralizes environment, .env, and config defaults for consistent behavior.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds configuration values for providers, storage, and sync policy.

    Importance: Ensures every service derives settings from a single source of truth.
    Alternatives: Pass individual settings to each component at construction time.
    """

    db_path: str
    api_host: str
    api_port: int
    api_key: str
    default_user_name: str
    default_user_email: str
    google_client_id: str
    google_client_secret: str
    microsoft_client_id: str
    microsoft_client_secret: str
    oauth_redirect_uri: str
    google_token_url: str = "https://oauth2.googleapis.com/token"
    microsoft_token_url: str = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
    google_calendar_base_url: str = "https://www.googleapis.com/calendar/v3"
    microsoft_graph_base_url: str = "https://graph.microsoft.com/v1.0"
    token_secret: str = ""
    stale_threshold_seconds: int = 300
    sync_window_months: int = 3
    sync_page_size: int = 200
    sync_max_workers: int = 4
    http_timeout_seconds: float = 10.0
    default_time_zone: str = "America/Los_Angeles"
    default_provider: str = "google"

    @staticmethod
    def from_env() -> "AppConfig":
        """Summary: Build configuration from defaults, .env, and environment.

        Importance: Keeps all variables defined in config defaults while allowing overrides.
        Alternatives: Parse only environment variables without a defaults file.
        """

        defaults = load_defaults(Path("config") / "defaults.json")
        load_dotenv(Path(".env"))
        return AppConfig(
            db_path=os.getenv("FAMILYSYNC_DB_PATH", defaults["db_path"]),
            api_host=os.getenv("FAMILYSYNC_API_HOST", defaults["api_host"]),
            api_port=int(os.getenv("FAMILYSYNC_API_PORT", defaults["api_port"])),
            api_key=os.getenv("FAMILYSYNC_API_KEY", defaults["api_key"]),
            default_user_name=os.getenv(
                "FAMILYSYNC_DEFAULT_USER_NAME", defaults["default_user_name"]
            ),
            default_user_email=os.getenv(
                "FAMILYSYNC_DEFAULT_USER_EMAIL", defaults["default_user_email"]
            ),
            google_client_id=os.getenv("GOOGLE_CLIENT_ID", defaults["google_client_id"]),
            google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET", defaults["google_client_secret"]),
            microsoft_client_id=os.getenv("MICROSOFT_CLIENT_ID", defaults["microsoft_client_id"]),
            microsoft_client_secret=os.getenv(
                "MICROSOFT_CLIENT_SECRET", defaults["microsoft_client_secret"]
            ),
            oauth_redirect_uri=os.getenv(
                "FAMILYSYNC_OAUTH_REDIRECT_URI", defaults["oauth_redirect_uri"]
            ),
            google_token_url=os.getenv("GOOGLE_TOKEN_URL", defaults["google_token_url"]),
            microsoft_token_url=os.getenv("MICROSOFT_TOKEN_URL", defaults["microsoft_token_url"]),
            google_calendar_base_url=os.getenv(
                "GOOGLE_CALENDAR_BASE_URL", defaults["google_calendar_base_url"]
            ),
            microsoft_graph_base_url=os.getenv(
                "MICROSOFT_GRAPH_BASE_URL", defaults["microsoft_graph_base_url"]
            ),
            token_secret=os.getenv("FAMILYSYNC_TOKEN_SECRET", defaults["token_secret"]),
            stale_threshold_seconds=int(
                os.getenv("FAMILYSYNC_STALE_THRESHOLD_SECONDS", defaults["stale_threshold_seconds"])
            ),
            sync_window_months=int(
                os.getenv("FAMILYSYNC_SYNC_WINDOW_MONTHS", defaults["sync_window_months"])
            ),
            sync_page_size=int(os.getenv("FAMILYSYNC_SYNC_PAGE_SIZE", defaults["sync_page_size"])),
            sync_max_workers=int(
                os.getenv("FAMILYSYNC_SYNC_MAX_WORKERS", defaults["sync_max_workers"])
            ),
            http_timeout_seconds=float(
                os.getenv("FAMILYSYNC_HTTP_TIMEOUT_SECONDS", defaults["http_timeout_seconds"])
            ),
            default_time_zone=os.getenv(
                "FAMILYSYNC_DEFAULT_TIME_ZONE", defaults["default_time_zone"]
            ),
            default_provider=os.getenv("FAMILYSYNC_DEFAULT_PROVIDER", defaults["default_provider"]),
        )


def load_defaults(path: Path) -> dict[str, str]:
    """Summary: Load configuration defaults from JSON.

    Importance: Ensures all variables exist in a single config file.
    Alternatives: Inline defaults in the AppConfig initializer.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def load_dotenv(path: Path) -> None:
    """Summary: Load key-value pairs from a .env file into the environment.

    Importance: Keeps OAuth client secrets out of code while supporting local workflows.
    Alternatives: Use python-dotenv or OS-specific secret stores.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())
