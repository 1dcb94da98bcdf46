"""Remote calendar credentials: storage, refresh and client construction."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

import httpx

from caldesk.config import get_settings
from caldesk.database import get_database
from caldesk.encryption import decrypt_value, encrypt_value
from caldesk.sync.google_calendar import GoogleCalendarClient, RemoteAuthError

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


async def store_remote_credentials(
    owner_id: str,
    access_token: str,
    refresh_token: Optional[str] = None,
    expires_in: Optional[int] = None,
    account_email: Optional[str] = None,
) -> None:
    """Store (or replace) an owner's remote calendar tokens."""
    db = await get_database()
    now = datetime.utcnow()

    expiry = None
    if expires_in:
        expiry = (now + timedelta(seconds=expires_in)).isoformat()

    refresh_encrypted = encrypt_value(refresh_token, owner_id) if refresh_token else None

    await db.execute(
        """INSERT INTO remote_credentials
           (owner_id, account_email, access_token_encrypted,
            refresh_token_encrypted, token_expiry, updated_at)
           VALUES (?, ?, ?, ?, ?, ?)
           ON CONFLICT(owner_id) DO UPDATE SET
           account_email = COALESCE(excluded.account_email, remote_credentials.account_email),
           access_token_encrypted = excluded.access_token_encrypted,
           refresh_token_encrypted = COALESCE(
               excluded.refresh_token_encrypted, remote_credentials.refresh_token_encrypted
           ),
           token_expiry = excluded.token_expiry,
           updated_at = excluded.updated_at""",
        (owner_id, account_email, encrypt_value(access_token, owner_id), refresh_encrypted, expiry, now.isoformat()),
    )
    await db.commit()


async def get_remote_credentials(owner_id: str) -> Optional[dict]:
    """Get the stored credential row for an owner."""
    db = await get_database()
    cursor = await db.execute(
        "SELECT * FROM remote_credentials WHERE owner_id = ?", (owner_id,)
    )
    row = await cursor.fetchone()
    if row:
        return dict(row)
    return None


async def has_remote_credentials(owner_id: str) -> bool:
    return await get_remote_credentials(owner_id) is not None


async def clear_remote_credentials(owner_id: str) -> bool:
    """Forget an owner's remote tokens so the UI asks to re-link."""
    db = await get_database()
    cursor = await db.execute(
        "DELETE FROM remote_credentials WHERE owner_id = ?", (owner_id,)
    )
    await db.commit()

    cleared = cursor.rowcount > 0
    if cleared:
        logger.warning(f"Cleared remote credentials for owner {owner_id}; re-link required")
    return cleared


async def list_linked_owners() -> list[str]:
    """Owners that currently have remote credentials."""
    db = await get_database()
    cursor = await db.execute("SELECT owner_id FROM remote_credentials ORDER BY owner_id")
    rows = await cursor.fetchall()
    return [row["owner_id"] for row in rows]


async def refresh_access_token(refresh_token: str) -> dict:
    """Refresh an access token."""
    settings = get_settings()

    async with httpx.AsyncClient() as client:
        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "refresh_token": refresh_token,
                "client_id": settings.google_client_id,
                "client_secret": settings.google_client_secret,
                "grant_type": "refresh_token",
            },
        )

        if response.status_code != 200:
            logger.error(f"Token refresh failed: {response.text}")
            raise ValueError(f"Token refresh failed: {response.text}")

        return response.json()


async def get_valid_access_token(owner_id: str) -> str:
    """Get a valid access token, refreshing if it expires within five minutes."""
    token_data = await get_remote_credentials(owner_id)
    if not token_data:
        raise RemoteAuthError(f"No remote credentials for owner {owner_id}")

    access_token = decrypt_value(token_data["access_token_encrypted"], owner_id)

    expiry = token_data.get("token_expiry")
    if not expiry or datetime.utcnow() < datetime.fromisoformat(expiry) - timedelta(minutes=5):
        return access_token

    if not token_data.get("refresh_token_encrypted"):
        raise RemoteAuthError(f"Access token expired and no refresh token for owner {owner_id}")

    settings = get_settings()
    if not settings.google_client_id or not settings.google_client_secret:
        logger.warning("Google client credentials not configured; using stored access token")
        return access_token

    refresh_token = decrypt_value(token_data["refresh_token_encrypted"], owner_id)
    logger.info(f"Refreshing remote token for owner {owner_id}")

    max_retries = 3
    for attempt in range(max_retries):
        try:
            new_tokens = await refresh_access_token(refresh_token)
            break
        except ValueError as e:
            # Permanent errors (invalid_grant) - don't retry
            if "invalid_grant" in str(e).lower():
                raise RemoteAuthError(f"Refresh token rejected for owner {owner_id}") from e
            if attempt == max_retries - 1:
                logger.error(f"Failed to refresh token after {max_retries} attempts: {e}")
                raise
            wait_time = 2 ** attempt  # Exponential backoff: 1s, 2s
            logger.warning(f"Token refresh attempt {attempt + 1} failed, retrying in {wait_time}s: {e}")
            await asyncio.sleep(wait_time)

    access_token = new_tokens["access_token"]
    await store_remote_credentials(
        owner_id=owner_id,
        access_token=access_token,
        refresh_token=new_tokens.get("refresh_token"),
        expires_in=new_tokens.get("expires_in"),
    )
    return access_token


async def get_remote_client(owner_id: str) -> Optional[GoogleCalendarClient]:
    """
    Build a remote calendar client for an owner.

    Returns None when the owner has not linked a remote calendar.
    Raises RemoteAuthError when the stored credentials are unusable.
    """
    if not await has_remote_credentials(owner_id):
        return None
    access_token = await get_valid_access_token(owner_id)
    return GoogleCalendarClient(access_token)
