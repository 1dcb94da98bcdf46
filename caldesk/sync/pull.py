"""Pull sync: bring remote-side deletions and foreign events into the local document."""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta

from caldesk.auth.google import clear_remote_credentials
from caldesk.config import get_settings
from caldesk.models import Event, utcnow
from caldesk.store import get_or_create_document, replace_document
from caldesk.sync.engine import resolve_remote_client
from caldesk.sync.google_calendar import (
    GoogleCalendarClient,
    RemoteAuthError,
    local_identity,
    remote_event_to_local,
)
from caldesk.sync.outcome import SyncOutcome, SyncResult, record_outcome

logger = logging.getLogger(__name__)

# Fields refreshed on imported events when the remote copy changes
_IMPORTED_FIELDS = ("start", "end", "title", "description", "creator", "read_only")


def _overlaps(start: datetime, end: datetime, window_start: datetime, window_end: datetime) -> bool:
    first, last = min(start, end), max(start, end)
    return last >= window_start and first <= window_end


def _refresh_imported(event: Event, remote: dict, client: GoogleCalendarClient) -> Event:
    fresh = remote_event_to_local(remote, event.id, client.calendar_id)
    if fresh is None:
        return event
    changes = {
        field: getattr(fresh, field)
        for field in _IMPORTED_FIELDS
        if getattr(fresh, field) != getattr(event, field)
    }
    return event.model_copy(update=changes) if changes else event


async def pull_sync(owner_id: str) -> SyncResult:
    """
    Align the owner's stored document with the remote calendar.

    Local records whose remote counterpart disappeared within the listing
    window are dropped, events created directly in the remote calendar are
    imported, and imported events pick up remote edits. Local records that
    never learned the ID of their remote copy are linked to it again by the
    localId tag. Without remote
    credentials the document is returned unchanged.
    """
    settings = get_settings()
    document = await get_or_create_document(owner_id)
    outcome = SyncOutcome(action="pull")

    client = await resolve_remote_client(owner_id, outcome)
    if client is None:
        await record_outcome(owner_id, outcome)
        return SyncResult(document=document, outcome=outcome)

    now = utcnow()
    window_start = now - timedelta(days=settings.pull_window_days)
    window_end = now + timedelta(days=settings.pull_window_days)

    try:
        listed = await asyncio.to_thread(client.list_events, window_start, window_end)
    except RemoteAuthError as e:
        await clear_remote_credentials(owner_id)
        outcome.status = "relink_required"
        outcome.errors.append(str(e))
        await record_outcome(owner_id, outcome)
        return SyncResult(document=document, outcome=outcome)
    except Exception as e:
        logger.exception(f"Listing remote events failed for owner {owner_id}: {e}")
        outcome.status = "error"
        outcome.errors.append(str(e))
        await record_outcome(owner_id, outcome)
        return SyncResult(document=document, outcome=outcome)

    remote_by_id = {ev["id"]: ev for ev in listed if ev.get("status") != "cancelled"}

    events = []
    for event in document.events:
        if event.remote_event_id and event.remote_event_id not in remote_by_id:
            if _overlaps(event.start, event.end, window_start, window_end):
                outcome.pruned += 1
                continue
        elif event.remote_event_id and not client.is_our_event(remote_by_id[event.remote_event_id]):
            refreshed = _refresh_imported(event, remote_by_id[event.remote_event_id], client)
            if refreshed is not event:
                outcome.updated += 1
            event = refreshed
        events.append(event)

    ranges = []
    for rng in document.ranges:
        if (
            settings.prune_remote_deleted_ranges
            and rng.remote_event_id
            and rng.remote_event_id not in remote_by_id
            and _overlaps(rng.start, rng.end, window_start, window_end)
        ):
            outcome.pruned += 1
            continue
        ranges.append(rng)

    known = {e.remote_event_id for e in events if e.remote_event_id}
    known.update(r.remote_event_id for r in ranges if r.remote_event_id)
    unlinked_events = {e.id: i for i, e in enumerate(events) if not e.remote_event_id}
    unlinked_ranges = {r.id: i for i, r in enumerate(ranges) if not r.remote_event_id}
    for remote_id, remote in remote_by_id.items():
        if remote_id in known:
            continue
        if client.is_our_event(remote):
            # Inserted remotely but the save carrying its ID was lost
            kind, local_id = local_identity(remote)
            if kind == "range" and local_id in unlinked_ranges:
                i = unlinked_ranges.pop(local_id)
                ranges[i] = ranges[i].model_copy(update={"remote_event_id": remote_id})
                outcome.relinked += 1
            elif kind != "range" and local_id in unlinked_events:
                i = unlinked_events.pop(local_id)
                events[i] = events[i].model_copy(
                    update={"remote_event_id": remote_id, "remote_calendar_id": client.calendar_id}
                )
                outcome.relinked += 1
            # Otherwise it was deleted locally; never resurrect it
            continue
        imported = remote_event_to_local(remote, uuid.uuid4().hex, client.calendar_id)
        if imported is not None:
            events.append(imported)
            outcome.imported += 1

    if outcome.pruned or outcome.imported or outcome.updated or outcome.relinked:
        document = await replace_document(owner_id, events, ranges)

    await record_outcome(owner_id, outcome.finalize())
    return SyncResult(document=document, outcome=outcome)
