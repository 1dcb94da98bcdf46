"""Reconciliation of client submissions with the stored document and the remote calendar."""

import asyncio
import logging
import time
from typing import Callable, Optional

import httpx

from caldesk.auth.google import clear_remote_credentials, get_remote_client
from caldesk.config import get_settings
from caldesk.models import Event, Range
from caldesk.store import get_or_create_document, replace_document
from caldesk.sync.google_calendar import (
    GoogleCalendarClient,
    RemoteAuthError,
    RemoteNotFoundError,
    event_to_remote,
    range_to_remote,
)
from caldesk.sync.outcome import SyncOutcome, SyncResult, record_outcome

logger = logging.getLogger(__name__)


class RemotePass:
    """
    Runs the remote calls of one request sequentially.

    Stops issuing calls once the request deadline has passed or the
    credentials were rejected; skipped calls are counted as deferred.
    Failures are recorded on the outcome and never raised.
    """

    def __init__(self, client: GoogleCalendarClient, outcome: SyncOutcome, deadline_seconds: float):
        self.client = client
        self.outcome = outcome
        self.deadline = time.monotonic() + deadline_seconds
        self.auth_error: Optional[RemoteAuthError] = None

    @property
    def calendar_id(self) -> str:
        return self.client.calendar_id

    def available(self) -> bool:
        return self.auth_error is None and time.monotonic() < self.deadline

    async def call(self, record_id: str, func: Callable, *args) -> tuple[bool, object]:
        """Run one adapter call in a worker thread; returns (succeeded, result)."""
        if not self.available():
            self.outcome.deferred += 1
            return False, None

        try:
            return True, await asyncio.to_thread(func, *args)
        except RemoteAuthError as e:
            self.auth_error = e
            self.outcome.record_failure(record_id, e)
        except Exception as e:
            logger.error(f"Remote call failed for record {record_id}: {e}")
            self.outcome.record_failure(record_id, e)
        return False, None


def carry_forward_events(previous: list[Event], incoming: list[Event]) -> list[Event]:
    """Attach the correlation fields already known for each incoming event."""
    previous_by_id = {e.id: e for e in previous}
    merged = []
    for event in incoming:
        prev = previous_by_id.get(event.id)
        if prev is not None:
            event = event.model_copy(update={
                "remote_event_id": prev.remote_event_id or event.remote_event_id,
                "remote_calendar_id": prev.remote_calendar_id or event.remote_calendar_id,
                "read_only": prev.read_only,
            })
        merged.append(event)
    return merged


def carry_forward_ranges(previous: list[Range], incoming: list[Range]) -> list[Range]:
    """Attach known correlation IDs and make sure every range has a color index."""
    previous_by_id = {r.id: r for r in previous}
    merged = []
    for rng in incoming:
        prev = previous_by_id.get(rng.id)
        if prev is not None:
            rng = rng.model_copy(update={
                "remote_event_id": prev.remote_event_id or rng.remote_event_id,
                "color_index": rng.color_index if rng.color_index is not None else prev.color_index,
            })
        merged.append(rng)

    used = [r.color_index for r in merged if r.color_index is not None]
    next_index = max(used) + 1 if used else 0
    for i, rng in enumerate(merged):
        if rng.color_index is None:
            merged[i] = rng.model_copy(update={"color_index": next_index})
            next_index += 1
    return merged


async def _delete_removed(remote: RemotePass, previous: list, incoming: list) -> None:
    incoming_ids = {r.id for r in incoming}
    for record in previous:
        if record.id in incoming_ids or not record.remote_event_id:
            continue
        ok, _ = await remote.call(record.id, remote.client.delete_event, record.remote_event_id)
        if ok:
            remote.outcome.deleted += 1


def _update_or_recreate(client: GoogleCalendarClient, remote_id: str, payload: dict) -> Optional[str]:
    """Update a remote event; recreate it when it is gone. Returns the new ID if recreated."""
    try:
        client.update_event(remote_id, payload)
        return None
    except RemoteNotFoundError:
        logger.info(f"Remote event {remote_id} no longer exists, recreating it")
        return client.insert_event(payload)


async def _push(remote: RemotePass, previous: list, incoming: list, to_remote: Callable) -> list:
    """Insert or update each record remotely; returns records with new remote IDs attached."""
    previous_by_id = {r.id: r for r in previous}
    outcome = remote.outcome
    pushed = []

    for record in incoming:
        if getattr(record, "read_only", False):
            pushed.append(record)
            continue

        payload = to_remote(record)
        if record.remote_event_id:
            prev = previous_by_id.get(record.id)
            if (
                prev is not None
                and prev.remote_event_id == record.remote_event_id
                and to_remote(prev) == payload
            ):
                outcome.unchanged += 1
            else:
                ok, new_id = await remote.call(
                    record.id, _update_or_recreate, remote.client, record.remote_event_id, payload
                )
                if ok and new_id:
                    outcome.created += 1
                    record = record.model_copy(update={"remote_event_id": new_id})
                elif ok:
                    outcome.updated += 1
        else:
            ok, remote_id = await remote.call(record.id, remote.client.insert_event, payload)
            if ok:
                outcome.created += 1
                update = {"remote_event_id": remote_id}
                if isinstance(record, Event):
                    update["remote_calendar_id"] = remote.calendar_id
                record = record.model_copy(update=update)

        pushed.append(record)

    return pushed


async def resolve_remote_client(owner_id: str, outcome: SyncOutcome) -> Optional[GoogleCalendarClient]:
    """Client for the owner, or None in local-only mode or when re-link is required."""
    try:
        client = await get_remote_client(owner_id)
    except RemoteAuthError as e:
        await clear_remote_credentials(owner_id)
        outcome.status = "relink_required"
        outcome.errors.append(str(e))
        return None
    except (ValueError, httpx.HTTPError) as e:
        # Token endpoint unavailable; keep the credentials and save locally
        logger.error(f"Could not obtain remote credentials for owner {owner_id}: {e}")
        outcome.status = "error"
        outcome.errors.append(str(e))
        return None

    if client is None:
        outcome.status = "local_only"
    return client


async def reconcile(
    owner_id: str,
    events: list[Event],
    ranges: list[Range],
    action: str = "reconcile",
) -> SyncResult:
    """
    Merge a client's full calendar into the stored document and the remote calendar.

    The submission is authoritative: records missing from it are deleted
    remotely, the rest are inserted or updated, and the result replaces the
    stored document. Remote failures never fail the save.
    """
    settings = get_settings()
    previous = await get_or_create_document(owner_id)
    outcome = SyncOutcome(action=action)

    events = carry_forward_events(previous.events, events)
    ranges = carry_forward_ranges(previous.ranges, ranges)

    client = await resolve_remote_client(owner_id, outcome)
    if client is not None:
        remote = RemotePass(client, outcome, settings.reconcile_deadline_seconds)

        await _delete_removed(remote, previous.events, events)
        await _delete_removed(remote, previous.ranges, ranges)

        events = await _push(remote, previous.events, events, event_to_remote)
        ranges = await _push(remote, previous.ranges, ranges, range_to_remote)

        if remote.auth_error is not None:
            await clear_remote_credentials(owner_id)
            outcome.status = "relink_required"

    document = await replace_document(owner_id, events, ranges)

    await record_outcome(owner_id, outcome.finalize())
    return SyncResult(document=document, outcome=outcome)


async def clear_all_events(owner_id: str) -> SyncResult:
    """Remove every event of an owner (remote copies included); ranges are kept."""
    previous = await get_or_create_document(owner_id)
    return await reconcile(owner_id, [], previous.ranges, action="clear_events")
