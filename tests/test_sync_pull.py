"""Tests for pull sync from the remote calendar."""

from __future__ import annotations

from datetime import timedelta

import pytest

from caldesk.models import Event, Range, utcnow
from caldesk.store import get_or_create_document, replace_document
from caldesk.sync.google_calendar import RemoteAuthError, RemoteCalendarError


def _event(event_id: str, days_from_now: int = 1, **fields) -> Event:
    start = utcnow().replace(microsecond=0) + timedelta(days=days_from_now)
    return Event(
        id=event_id,
        start=start,
        end=start + timedelta(hours=1),
        title=fields.pop("title", event_id),
        **fields,
    )


def _ours(remote_id: str, local_id: str) -> dict:
    return {
        "id": remote_id,
        "summary": local_id,
        "extendedProperties": {"private": {"caldeskSync": "true", "localId": local_id}},
    }


def _foreign(remote_id: str, summary: str, days_from_now: int = 2, **fields) -> dict:
    start = utcnow().replace(microsecond=0) + timedelta(days=days_from_now)
    return {
        "id": remote_id,
        "summary": summary,
        "start": {"dateTime": start.strftime("%Y-%m-%dT%H:%M:%SZ")},
        "end": {"dateTime": (start + timedelta(hours=1)).strftime("%Y-%m-%dT%H:%M:%SZ")},
        "organizer": {"email": "colleague@example.com"},
        **fields,
    }


@pytest.mark.asyncio
async def test_remote_deletion_removes_local_event(test_db, linked_remote):
    from caldesk.sync.pull import pull_sync

    await replace_document(
        "owner-1",
        [_event("a", remote_event_id="g-a"), _event("b", remote_event_id="g-b"), _event("c")],
        [],
    )
    linked_remote.remote = {"g-b": _ours("g-b", "b")}

    result = await pull_sync("owner-1")

    assert [e.id for e in result.document.events] == ["b", "c"]
    assert result.outcome.pruned == 1
    stored = await get_or_create_document("owner-1")
    assert [e.id for e in stored.events] == ["b", "c"]


@pytest.mark.asyncio
async def test_events_outside_listing_window_are_kept(test_db, linked_remote):
    from caldesk.sync.pull import pull_sync

    await replace_document(
        "owner-1", [_event("old", days_from_now=-2000, remote_event_id="g-old")], []
    )

    result = await pull_sync("owner-1")

    assert [e.id for e in result.document.events] == ["old"]
    assert result.outcome.pruned == 0


@pytest.mark.asyncio
async def test_remote_deletion_removes_local_range(test_db, linked_remote):
    from caldesk.sync.pull import pull_sync

    today = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    await replace_document(
        "owner-1",
        [],
        [
            Range(id="gone", start=today, end=today + timedelta(days=2), remote_event_id="g-r1", color_index=0),
            Range(id="kept", start=today, end=today + timedelta(days=1), color_index=1),
        ],
    )

    result = await pull_sync("owner-1")

    assert [r.id for r in result.document.ranges] == ["kept"]


@pytest.mark.asyncio
async def test_range_pruning_can_be_disabled(test_db, linked_remote, monkeypatch):
    from caldesk.config import get_settings
    from caldesk.sync.pull import pull_sync

    monkeypatch.setattr(get_settings(), "prune_remote_deleted_ranges", False)
    today = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    await replace_document(
        "owner-1",
        [],
        [Range(id="r", start=today, end=today, remote_event_id="g-r", color_index=0)],
    )

    result = await pull_sync("owner-1")

    assert [r.id for r in result.document.ranges] == ["r"]


@pytest.mark.asyncio
async def test_foreign_remote_events_are_imported_read_only(test_db, linked_remote):
    from caldesk.sync.pull import pull_sync

    linked_remote.remote = {
        "g-foreign": _foreign("g-foreign", "Board meeting"),
        "g-cancelled": _foreign("g-cancelled", "Cancelled", status="cancelled"),
    }

    result = await pull_sync("owner-1")

    assert result.outcome.imported == 1
    [imported] = result.document.events
    assert imported.title == "Board meeting"
    assert imported.remote_event_id == "g-foreign"
    assert imported.read_only is True
    assert imported.creator == "colleague@example.com"

    # A second pull does not import it again
    again = await pull_sync("owner-1")
    assert again.outcome.imported == 0
    assert len(again.document.events) == 1


@pytest.mark.asyncio
async def test_own_events_missing_locally_are_not_resurrected(test_db, linked_remote):
    from caldesk.sync.pull import pull_sync

    linked_remote.remote = {"g-stale": _ours("g-stale", "deleted-locally")}

    result = await pull_sync("owner-1")

    assert result.document.events == []
    assert result.outcome.imported == 0


@pytest.mark.asyncio
async def test_local_records_are_linked_to_their_remote_copy(test_db, linked_remote):
    from caldesk.sync.pull import pull_sync

    today = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    await replace_document(
        "owner-1",
        [_event("a")],
        [Range(id="r1", start=today, end=today + timedelta(days=1), color_index=0)],
    )
    event_copy = _ours("g-orphan", "a")
    event_copy["extendedProperties"]["private"]["kind"] = "event"
    range_copy = _ours("g-range", "r1")
    range_copy["extendedProperties"]["private"]["kind"] = "range"
    linked_remote.remote = {"g-orphan": event_copy, "g-range": range_copy}

    result = await pull_sync("owner-1")

    assert result.outcome.relinked == 2
    assert result.outcome.imported == 0
    assert [(e.id, e.remote_event_id) for e in result.document.events] == [("a", "g-orphan")]
    assert result.document.events[0].remote_calendar_id == "primary"
    assert [(r.id, r.remote_event_id) for r in result.document.ranges] == [("r1", "g-range")]
    stored = await get_or_create_document("owner-1")
    assert stored.events[0].remote_event_id == "g-orphan"


@pytest.mark.asyncio
async def test_restored_event_survives_pull_after_remote_delete(test_db, linked_remote):
    from caldesk.sync.engine import reconcile
    from caldesk.sync.pull import pull_sync

    saved = await reconcile("owner-1", [_event("a")], [])
    restored = saved.document.events[0]

    # Delete, save, undo, save
    await reconcile("owner-1", [], [])
    await reconcile("owner-1", [restored], [])

    result = await pull_sync("owner-1")

    assert result.outcome.pruned == 0
    assert [e.id for e in result.document.events] == ["a"]
    assert result.document.events[0].remote_event_id in linked_remote.remote


@pytest.mark.asyncio
async def test_token_refresh_outage_leaves_document_untouched(test_db, monkeypatch):
    from caldesk.sync.pull import pull_sync

    async def unavailable(owner_id):
        raise ValueError("Token refresh failed: 503 backendError")

    monkeypatch.setattr("caldesk.sync.engine.get_remote_client", unavailable)
    await replace_document("owner-1", [_event("a", remote_event_id="g-a")], [])

    result = await pull_sync("owner-1")

    assert result.outcome.status == "error"
    assert [e.id for e in result.document.events] == ["a"]


@pytest.mark.asyncio
async def test_imported_events_pick_up_remote_edits(test_db, linked_remote):
    from caldesk.sync.pull import pull_sync

    linked_remote.remote = {"g-foreign": _foreign("g-foreign", "Board meeting")}
    first = await pull_sync("owner-1")
    local_id = first.document.events[0].id

    linked_remote.remote["g-foreign"]["summary"] = "Board meeting (moved)"
    result = await pull_sync("owner-1")

    assert result.outcome.updated == 1
    assert result.document.events[0].id == local_id
    assert result.document.events[0].title == "Board meeting (moved)"


@pytest.mark.asyncio
async def test_rejected_credentials_require_relink(test_db, linked_remote, monkeypatch):
    from caldesk.sync.pull import pull_sync

    cleared = []

    async def fake_clear(owner_id):
        cleared.append(owner_id)
        return True

    monkeypatch.setattr("caldesk.sync.pull.clear_remote_credentials", fake_clear)
    await replace_document("owner-1", [_event("a", remote_event_id="g-a")], [])
    linked_remote.failures[("list", None)] = RemoteAuthError("revoked", 401)

    result = await pull_sync("owner-1")

    assert cleared == ["owner-1"]
    assert result.outcome.status == "relink_required"
    assert [e.id for e in result.document.events] == ["a"]


@pytest.mark.asyncio
async def test_listing_failure_leaves_document_untouched(test_db, linked_remote):
    from caldesk.sync.pull import pull_sync

    await replace_document("owner-1", [_event("a", remote_event_id="g-a")], [])
    linked_remote.failures[("list", None)] = RemoteCalendarError("backend error", 500)

    result = await pull_sync("owner-1")

    assert result.outcome.status == "error"
    assert [e.id for e in result.document.events] == ["a"]


@pytest.mark.asyncio
async def test_local_only_mode_returns_document(test_db, monkeypatch):
    from caldesk.sync.pull import pull_sync

    async def no_client(owner_id):
        return None

    monkeypatch.setattr("caldesk.sync.engine.get_remote_client", no_client)
    await replace_document("owner-1", [_event("a", remote_event_id="g-a")], [])

    result = await pull_sync("owner-1")

    assert result.outcome.status == "local_only"
    assert [e.id for e in result.document.events] == ["a"]
