"""Calendar API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from caldesk.auth.google import get_remote_credentials
from caldesk.auth.session import User, get_current_user
from caldesk.models import CalendarPayload
from caldesk.store import get_or_create_document
from caldesk.sync.engine import clear_all_events, reconcile
from caldesk.sync.outcome import SyncLogEntry, get_sync_log
from caldesk.sync.pull import pull_sync

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/calendar", tags=["calendar"])


class LinkStatusResponse(BaseModel):
    """Whether the caller has a usable remote calendar link."""
    linked: bool
    account_email: Optional[str] = None


class SyncLogResponse(BaseModel):
    """Sync log response."""
    entries: list[SyncLogEntry]
    total: int
    page: int
    page_size: int


@router.get("", response_model=CalendarPayload)
async def get_calendar(user: User = Depends(get_current_user)):
    """Get the caller's saved events and ranges."""
    document = await get_or_create_document(user.id)
    return document.to_payload()


@router.put("", response_model=CalendarPayload)
async def save_calendar(payload: CalendarPayload, user: User = Depends(get_current_user)):
    """Replace the caller's calendar, reconciling it with the remote calendar."""
    result = await reconcile(user.id, payload.events, payload.ranges)
    return result.document.to_payload()


@router.post("/sync", response_model=CalendarPayload)
async def sync_calendar(user: User = Depends(get_current_user)):
    """Pull remote-side changes into the caller's calendar."""
    result = await pull_sync(user.id)
    return result.document.to_payload()


@router.delete("/events", response_model=CalendarPayload)
async def delete_all_events(user: User = Depends(get_current_user)):
    """Delete every event of the caller; ranges are kept."""
    result = await clear_all_events(user.id)
    return result.document.to_payload()


@router.get("/link", response_model=LinkStatusResponse)
async def get_link_status(user: User = Depends(get_current_user)):
    """Report whether a remote calendar is linked (false means re-link required)."""
    credentials = await get_remote_credentials(user.id)
    if not credentials:
        return LinkStatusResponse(linked=False)
    return LinkStatusResponse(linked=True, account_email=credentials["account_email"])


@router.get("/sync/log", response_model=SyncLogResponse)
async def get_calendar_sync_log(
    user: User = Depends(get_current_user),
    page: int = 1,
    page_size: int = 50,
):
    """Get the caller's recent sync outcomes."""
    page = max(1, page)
    page_size = min(max(1, page_size), 200)
    entries, total = await get_sync_log(user.id, page=page, page_size=page_size)
    return SyncLogResponse(entries=entries, total=total, page=page, page_size=page_size)
