"""Optimistic in-memory calendar state for one UI session."""

import asyncio
import logging
import uuid
from collections import deque
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from caldesk.config import get_settings
from caldesk.models import CalendarPayload, Event, Range, utcnow

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle of a calendar session."""
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    SYNCED = "synced"
    DIRTY = "dirty"
    CLOSED = "closed"


class CalendarSession:
    """
    Calendar state backing the UI.

    Mutations apply immediately and schedule a debounced save of the full
    calendar. Nothing is saved until the initial load has finished, so the
    loaded data is never echoed back. Deletions can be undone from bounded
    snapshot stacks.

    The transport needs two coroutines: fetch_calendar() returning a
    CalendarPayload and save_calendar(events, ranges).
    """

    def __init__(
        self,
        api,
        debounce_seconds: Optional[float] = None,
        undo_depth: Optional[int] = None,
    ):
        settings = get_settings()
        self.api = api
        self.debounce_seconds = (
            settings.client_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        depth = settings.client_undo_depth if undo_depth is None else undo_depth

        self.state = SessionState.UNINITIALIZED
        self.events: list[Event] = []
        self.ranges: list[Range] = []
        self.draft_range_start: Optional[datetime] = None

        self._event_undo: deque[list[Event]] = deque(maxlen=depth)
        self._range_undo: deque[list[Range]] = deque(maxlen=depth)
        self._initial_sync_complete = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def initial_sync_complete(self) -> bool:
        return self._initial_sync_complete

    @property
    def save_pending(self) -> bool:
        """True while a save is scheduled or in flight."""
        return self._timer is not None or bool(self._inflight)

    @property
    def can_undo_event_delete(self) -> bool:
        return bool(self._event_undo)

    @property
    def can_undo_range_delete(self) -> bool:
        return bool(self._range_undo)

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """Load the saved calendar; a failed load keeps the local state."""
        if self.state is not SessionState.UNINITIALIZED:
            raise RuntimeError(f"Session already started (state={self.state.value})")

        self.state = SessionState.LOADING
        try:
            payload: CalendarPayload = await self.api.fetch_calendar()
        except Exception as e:
            # Not linked or offline; keep working locally
            logger.info(f"Calendar load failed, continuing with local state: {e}")
        else:
            if self.state is SessionState.CLOSED:
                return
            self.events = list(payload.events)
            self.ranges = list(payload.ranges)

        if self.state is SessionState.CLOSED:
            return
        self._initial_sync_complete = True
        self.state = SessionState.SYNCED

    def close(self) -> None:
        """Tear down the session; a scheduled save never fires afterwards."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.state = SessionState.CLOSED

    async def wait_idle(self) -> None:
        """Wait for saves already in flight to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # -- save scheduling -----------------------------------------------------

    def _changed(self) -> None:
        if not self._initial_sync_complete or self.state is SessionState.CLOSED:
            return

        self.state = SessionState.DIRTY
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.debounce_seconds, self._flush)

    def _flush(self) -> None:
        self._timer = None
        task = asyncio.ensure_future(self._save(self.events, self.ranges))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _save(self, events: list[Event], ranges: list[Range]) -> None:
        try:
            merged = await self.api.save_calendar(events, ranges)
        except Exception as e:
            # The next mutation saves the full state again
            logger.warning(f"Background calendar save failed: {e}")
            merged = None

        if self._timer is not None or self.state is not SessionState.DIRTY:
            return
        if merged is not None and self.events is events and self.ranges is ranges:
            # Adopt server-assigned correlation fields without scheduling another save
            self.events = list(merged.events)
            self.ranges = list(merged.ranges)
        self.state = SessionState.SYNCED

    # -- events --------------------------------------------------------------

    def add_event(self, event: Event) -> None:
        if any(e.id == event.id for e in self.events):
            raise ValueError(f"Duplicate event id: {event.id}")
        self.events = [*self.events, event]
        self._changed()

    def update_event(self, event: Event) -> None:
        """Replace the event with the same id."""
        if not any(e.id == event.id for e in self.events):
            raise KeyError(event.id)
        self.events = [event if e.id == event.id else e for e in self.events]
        self._changed()

    def delete_event(self, event_id: str) -> bool:
        """Delete an event, keeping an undo snapshot. Unknown ids are a no-op."""
        if not any(e.id == event_id for e in self.events):
            return False
        self._event_undo.append(self.events)
        self.events = [e for e in self.events if e.id != event_id]
        self._changed()
        return True

    def undo_delete_event(self) -> bool:
        """Restore the events as they were before the latest deletion."""
        if not self._event_undo:
            return False
        self.events = self._event_undo.pop()
        self._changed()
        return True

    # -- ranges --------------------------------------------------------------

    def _next_color_index(self) -> int:
        used = [r.color_index for r in self.ranges if r.color_index is not None]
        return max(used) + 1 if used else 0

    def add_range(
        self,
        start: datetime,
        end: datetime,
        label: Optional[str] = None,
        range_id: Optional[str] = None,
    ) -> Range:
        if range_id and any(r.id == range_id for r in self.ranges):
            raise ValueError(f"Duplicate range id: {range_id}")
        rng = Range(
            id=range_id or uuid.uuid4().hex,
            start=start,
            end=end,
            label=label,
            created_at=utcnow(),
            color_index=self._next_color_index(),
        )
        self.ranges = [*self.ranges, rng]
        self._changed()
        return rng

    def select_range_endpoint(self, moment: datetime) -> Optional[Range]:
        """
        Pick one endpoint of a new range.

        The first pick is held as the draft start; the second creates the
        range (endpoints in either order) and clears the draft.
        """
        if self.draft_range_start is None:
            self.draft_range_start = moment
            return None

        start, self.draft_range_start = self.draft_range_start, None
        return self.add_range(start, moment)

    def cancel_draft_range(self) -> None:
        self.draft_range_start = None

    def _update_range(self, range_id: str, **changes) -> None:
        if not any(r.id == range_id for r in self.ranges):
            raise KeyError(range_id)
        self.ranges = [
            r.model_copy(update=changes) if r.id == range_id else r
            for r in self.ranges
        ]
        self._changed()

    def rename_range(self, range_id: str, label: str) -> None:
        self._update_range(range_id, label=label or None)

    def update_range_description(self, range_id: str, description: str) -> None:
        self._update_range(range_id, description=description or None)

    def delete_range(self, range_id: str) -> bool:
        if not any(r.id == range_id for r in self.ranges):
            return False
        self._range_undo.append(self.ranges)
        self.ranges = [r for r in self.ranges if r.id != range_id]
        self._changed()
        return True

    def undo_delete_range(self) -> bool:
        """Restore the ranges as they were before the latest deletion."""
        if not self._range_undo:
            return False
        self.ranges = self._range_undo.pop()
        self._changed()
        return True

    def ranges_on(self, day: date) -> list[Range]:
        """Ranges covering a calendar day (UTC), in stored order."""
        if isinstance(day, datetime):
            day = day.astimezone(timezone.utc).date()
        matches = []
        for rng in self.ranges:
            first, last = rng.day_bounds()
            if first <= day <= last:
                matches.append(rng)
        return matches
