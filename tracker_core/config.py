# =============================================================================
# tracker_core/config.py
# Runtime Configuration for the Sync Core
# =============================================================================
"""
Settings are read from environment variables (a local ``.env`` file is
loaded first) with an optional secrets file in the Streamlit layout:

    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

Environment variables always win over the secrets file. The presence of
both Supabase values is the only switch between a connected-eligible and a
forced local-only startup.
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
import logging

import toml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_SECRETS_PATH = Path(".streamlit") / "secrets.toml"
DEFAULT_DB_PATH = Path("local_data") / "sales_tracker.db"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """Sync core configuration."""
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    storage_bucket: str = "attachments"
    remote_timeout: float = 10.0
    live_updates: bool = True
    poll_interval: float = 15.0
    local_db_path: Path = DEFAULT_DB_PATH
    sync_secret: Optional[str] = None
    gmail_client_secrets: Optional[str] = None
    mail_page_size: int = 50
    mail_broadcast_always: bool = False
    bootstrap_admin_email: Optional[str] = None
    bootstrap_admin_password_hash: Optional[str] = None
    log_level: str = "INFO"

    @property
    def has_remote_credentials(self) -> bool:
        """True when both Supabase URL and key are configured."""
        return bool(self.supabase_url and self.supabase_key)

    @property
    def has_mail_channel(self) -> bool:
        """True when the email channel can be built."""
        return bool(self.sync_secret and self.gmail_client_secrets)


def _read_secrets_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        return toml.load(path)
    except (toml.TomlDecodeError, OSError) as e:
        logger.warning(f"Could not parse secrets file {path}: {e}")
        return {}


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_number(name: str, default, cast):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return cast(value)
    except ValueError:
        logger.warning(f"Ignoring invalid value for {name}: {value!r}")
        return default


def load_settings(
    secrets_path: Optional[Path] = None,
    dotenv: bool = True,
) -> Settings:
    """
    Build Settings from the environment and the optional secrets file.

    Args:
        secrets_path: Secrets file location (default: .streamlit/secrets.toml)
        dotenv: Whether to load a .env file into the environment first

    Returns:
        Settings instance
    """
    if dotenv:
        load_dotenv()

    secrets = _read_secrets_file(secrets_path or DEFAULT_SECRETS_PATH)
    supabase_secrets = secrets.get("supabase", {}) if isinstance(secrets, dict) else {}

    settings = Settings(
        supabase_url=os.getenv("SUPABASE_URL") or supabase_secrets.get("url"),
        supabase_key=os.getenv("SUPABASE_KEY") or supabase_secrets.get("key"),
        storage_bucket=os.getenv("TRACKER_STORAGE_BUCKET", "attachments"),
        remote_timeout=_env_number("TRACKER_REMOTE_TIMEOUT", 10.0, float),
        live_updates=_env_bool("TRACKER_LIVE_UPDATES", True),
        poll_interval=_env_number("TRACKER_POLL_INTERVAL", 15.0, float),
        local_db_path=Path(os.getenv("TRACKER_LOCAL_DB_PATH", str(DEFAULT_DB_PATH))),
        sync_secret=os.getenv("TRACKER_SYNC_SECRET"),
        gmail_client_secrets=os.getenv("TRACKER_GMAIL_CLIENT_SECRETS"),
        mail_page_size=_env_number("TRACKER_MAIL_PAGE_SIZE", 50, int),
        mail_broadcast_always=_env_bool("TRACKER_MAIL_BROADCAST_ALWAYS", False),
        bootstrap_admin_email=os.getenv("TRACKER_BOOTSTRAP_ADMIN_EMAIL"),
        bootstrap_admin_password_hash=os.getenv("TRACKER_BOOTSTRAP_ADMIN_PASSWORD_HASH"),
        log_level=os.getenv("TRACKER_LOG_LEVEL", "INFO"),
    )

    if not settings.has_remote_credentials:
        logger.warning(
            "SUPABASE_URL / SUPABASE_KEY are missing. The sync core will start in local-only mode."
        )

    return settings
