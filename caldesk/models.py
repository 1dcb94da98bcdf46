"""Calendar records exchanged with the UI and persisted per owner."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive datetimes are taken to be UTC so instants always compare.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EventColor(str, Enum):
    """Display colors available for events."""
    DEFAULT = "default"
    BLUE = "blue"
    GREEN = "green"
    PINK = "pink"
    PURPLE = "purple"


class Event(BaseModel):
    """A single timed calendar event."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    start: datetime
    end: datetime
    title: str
    color: EventColor = EventColor.DEFAULT
    description: Optional[str] = None
    tags: Optional[list[str]] = None
    creator: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    remote_event_id: Optional[str] = Field(default=None, alias="remoteEventId")
    remote_calendar_id: Optional[str] = Field(default=None, alias="remoteCalendarId")
    read_only: bool = Field(default=False, alias="readOnly")

    normalize_instants = field_validator("start", "end", "created_at")(_as_utc)


class Range(BaseModel):
    """
    An inclusive multi-day span.

    Endpoints may be given in either order; use bounds() before measuring.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    start: datetime
    end: datetime
    label: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    color_index: Optional[int] = Field(default=None, ge=0, alias="colorIndex")
    remote_event_id: Optional[str] = Field(default=None, alias="remoteEventId")

    normalize_instants = field_validator("start", "end", "created_at")(_as_utc)

    def bounds(self) -> tuple[datetime, datetime]:
        """Return (earliest, latest) endpoint."""
        return min(self.start, self.end), max(self.start, self.end)

    def day_bounds(self) -> tuple[date, date]:
        """Return the first and last calendar day covered (UTC)."""
        first, last = self.bounds()
        return first.astimezone(timezone.utc).date(), last.astimezone(timezone.utc).date()

    def span_days(self) -> int:
        """Number of calendar days covered, counting both endpoints."""
        first, last = self.day_bounds()
        return (last - first).days + 1

    def display_label(self) -> str:
        if self.label:
            return self.label
        return f"Range #{(self.color_index or 0) + 1}"


def _ensure_unique_ids(records: list, kind: str) -> None:
    seen = set()
    for record in records:
        if record.id in seen:
            raise ValueError(f"Duplicate {kind} id: {record.id}")
        seen.add(record.id)


class CalendarPayload(BaseModel):
    """Full calendar state as exchanged with the UI."""
    events: list[Event] = Field(default_factory=list)
    ranges: list[Range] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_ids(self):
        _ensure_unique_ids(self.events, "event")
        _ensure_unique_ids(self.ranges, "range")
        return self


class CalendarDocument(CalendarPayload):
    """The persisted calendar of one owner."""
    model_config = ConfigDict(populate_by_name=True)

    owner_id: str = Field(alias="ownerId")

    def to_payload(self) -> CalendarPayload:
        return CalendarPayload(events=self.events, ranges=self.ranges)
