"""Application configuration management."""

import hashlib
import os
import secrets
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


# Fallback session secret when no key material exists (generated once per process)
_ephemeral_session_secret: Optional[str] = None


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_path: str = "/data/caldesk.db"

    # Encryption (remote tokens at rest)
    encryption_key_file: str = "/secrets/encryption.key"

    # Server
    public_url: str = "http://localhost:3000"
    log_level: str = "info"

    # Session
    session_secret_key: Optional[str] = None  # Derived from encryption key if not set
    session_expire_days: int = 7

    # Rate limiting
    rate_limit_per_minute: int = 60

    # Remote calendar
    remote_calendar_id: str = "primary"
    calendar_sync_tag: str = "caldeskSync"
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None

    # Remote call policy
    remote_max_retries: int = 3
    remote_backoff_base_seconds: float = 1.0
    remote_pacing_seconds: float = 0.2
    reconcile_deadline_seconds: float = 30.0

    # Pull sync
    pull_window_days: int = 365
    prune_remote_deleted_ranges: bool = True
    pull_interval_minutes: int = 0  # 0 disables the periodic job

    # Client session
    client_debounce_seconds: float = 1.0
    client_undo_depth: int = 20

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def get_encryption_key() -> bytes:
    """Load encryption key from file."""
    settings = get_settings()
    key_file = settings.encryption_key_file

    if not os.path.exists(key_file):
        raise RuntimeError(f"Encryption key file not found at {key_file}")

    with open(key_file, "rb") as f:
        key = f.read()
        # Only strip trailing newlines; binary keys may legitimately contain whitespace bytes
        while key and key[-1:] in (b"\n", b"\r"):
            key = key[:-1]

    if len(key) < 32:
        raise RuntimeError("Invalid encryption key: must be at least 32 bytes")

    return key


def get_session_secret() -> str:
    """Get session secret key, derived from encryption key if not set."""
    settings = get_settings()
    if settings.session_secret_key:
        return settings.session_secret_key

    try:
        key = get_encryption_key()
        return hashlib.sha256(key + b"session_secret").hexdigest()
    except RuntimeError:
        global _ephemeral_session_secret
        if _ephemeral_session_secret is None:
            _ephemeral_session_secret = secrets.token_urlsafe(32)
        return _ephemeral_session_secret
