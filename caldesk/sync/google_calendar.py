"""Google Calendar API wrapper."""

import json
import logging
import time
from datetime import date, datetime, time as dt_time, timedelta, timezone
from typing import Optional

from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from caldesk.config import get_settings
from caldesk.models import Event, EventColor, Range

logger = logging.getLogger(__name__)

RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}
AUTH_REASONS = {"authError", "insufficientPermissions", "ACCESS_TOKEN_SCOPE_INSUFFICIENT"}

# Google colorId per event color; "default" leaves the calendar color.
EVENT_COLOR_IDS = {
    EventColor.DEFAULT: None,
    EventColor.BLUE: "9",
    EventColor.GREEN: "10",
    EventColor.PINK: "4",
    EventColor.PURPLE: "3",
}

# Range palette order: amber, blue, purple, green, rose, teal, orange
RANGE_COLOR_IDS = ["5", "9", "3", "10", "4", "7", "6"]


class RemoteCalendarError(Exception):
    """A remote calendar call failed."""

    def __init__(self, message: str, status: Optional[int] = None, reason: str = ""):
        super().__init__(message)
        self.status = status
        self.reason = reason


class RemoteAuthError(RemoteCalendarError):
    """Credentials were rejected; the owner must re-link the remote calendar."""


class RemoteRateLimitError(RemoteCalendarError):
    """Rate limited and out of retry attempts."""


class RemoteNotFoundError(RemoteCalendarError):
    """The remote event does not exist (or no longer exists)."""


def _error_reason(error: HttpError) -> str:
    """Extract the machine-readable reason from a Google API error body."""
    try:
        payload = json.loads(error.content.decode("utf-8"))
    except (AttributeError, UnicodeDecodeError, ValueError):
        return ""
    if not isinstance(payload, dict):
        return ""

    body = payload.get("error")
    if not isinstance(body, dict):
        return ""
    errors = body.get("errors") or []
    if errors and isinstance(errors[0], dict) and errors[0].get("reason"):
        return errors[0]["reason"]
    return body.get("status") or ""


def classify_http_error(error: HttpError) -> RemoteCalendarError:
    """Map a Google HttpError onto the remote error taxonomy."""
    status = error.resp.status
    reason = _error_reason(error)
    message = f"Google Calendar API error {status} ({reason or 'no reason'})"

    if status == 429 or (status == 403 and reason in RATE_LIMIT_REASONS):
        return RemoteRateLimitError(message, status, reason)
    if status == 401 or (status == 403 and reason in AUTH_REASONS):
        return RemoteAuthError(message, status, reason)
    if status in (404, 410):
        return RemoteNotFoundError(message, status, reason)
    return RemoteCalendarError(message, status, reason)


def _rfc3339(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class GoogleCalendarClient:
    """Wrapper around the events API of one remote calendar."""

    def __init__(self, access_token: str, calendar_id: Optional[str] = None):
        """Initialize with access token."""
        self.settings = get_settings()
        self.credentials = Credentials(token=access_token)
        self.service = build("calendar", "v3", credentials=self.credentials)
        self.calendar_id = calendar_id or self.settings.remote_calendar_id
        self.max_retries = max(0, self.settings.remote_max_retries)
        self.backoff_base = self.settings.remote_backoff_base_seconds
        self.pacing = self.settings.remote_pacing_seconds

    def _execute(self, request, action: str):
        """
        Execute an API request under the retry policy.

        Rate-limited calls are retried up to max_retries times after the
        first attempt, with a linear backoff (base * attempt); every other
        failure is raised immediately.
        A pacing delay follows every successful call.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                result = request.execute()
            except HttpError as e:
                error = classify_http_error(e)
                if isinstance(error, RemoteRateLimitError) and attempt <= self.max_retries:
                    delay = self.backoff_base * attempt
                    logger.warning(
                        f"Rate limited during {action}, retrying in {delay}s "
                        f"(retry {attempt}/{self.max_retries})"
                    )
                    time.sleep(delay)
                    continue
                raise error from e
            except RefreshError as e:
                raise RemoteAuthError(f"Token refresh rejected during {action}: {e}") from e

            if self.pacing:
                time.sleep(self.pacing)
            return result

    def list_events(
        self,
        time_min: datetime,
        time_max: datetime,
        max_results: int = 2500,
    ) -> list[dict]:
        """List events overlapping [time_min, time_max), following pagination."""
        request_params = {
            "calendarId": self.calendar_id,
            "maxResults": max_results,
            "singleEvents": False,
            "timeMin": _rfc3339(time_min),
            "timeMax": _rfc3339(time_max),
        }

        all_events = []
        while True:
            result = self._execute(self.service.events().list(**request_params), "list")
            all_events.extend(result.get("items", []))

            page_token = result.get("nextPageToken")
            if not page_token:
                break
            request_params["pageToken"] = page_token

        return all_events

    def insert_event(self, event_data: dict) -> str:
        """Create an event and return its remote ID."""
        private = event_data.setdefault("extendedProperties", {}).setdefault("private", {})
        private[self.settings.calendar_sync_tag] = "true"

        created = self._execute(
            self.service.events().insert(
                calendarId=self.calendar_id,
                body=event_data,
                sendUpdates="none",
            ),
            "insert",
        )
        return created["id"]

    def update_event(self, event_id: str, event_data: dict) -> dict:
        """Patch an existing event with the given fields."""
        return self._execute(
            self.service.events().patch(
                calendarId=self.calendar_id,
                eventId=event_id,
                body=event_data,
                sendUpdates="none",
            ),
            "update",
        )

    def delete_event(self, event_id: str) -> None:
        """Delete an event; an already-deleted event counts as success."""
        try:
            self._execute(
                self.service.events().delete(
                    calendarId=self.calendar_id,
                    eventId=event_id,
                    sendUpdates="none",
                ),
                "delete",
            )
        except RemoteNotFoundError:
            logger.debug(f"Remote event {event_id} already deleted")

    def is_our_event(self, event: dict) -> bool:
        """Check if an event was created by this service."""
        private_props = event.get("extendedProperties", {}).get("private", {})
        return private_props.get(self.settings.calendar_sync_tag) == "true"


def _private_props(local_id: str, kind: str) -> dict:
    settings = get_settings()
    return {
        "private": {
            settings.calendar_sync_tag: "true",
            "localId": local_id,
            "kind": kind,
        }
    }


def local_identity(remote: dict) -> tuple[Optional[str], Optional[str]]:
    """Return the (kind, localId) recorded on a remote event this service created."""
    private_props = remote.get("extendedProperties", {}).get("private", {})
    return private_props.get("kind"), private_props.get("localId")


def event_to_remote(event: Event) -> dict:
    """Build the remote payload for a local event."""
    return {
        "summary": event.title,
        "description": event.description or "",
        "start": {"dateTime": _rfc3339(event.start)},
        "end": {"dateTime": _rfc3339(event.end)},
        "colorId": EVENT_COLOR_IDS[event.color],
        "status": "confirmed",
        "extendedProperties": _private_props(event.id, "event"),
    }


def range_to_remote(rng: Range) -> dict:
    """
    Build the remote payload for a range.

    Ranges become all-day events; the remote end date is exclusive.
    """
    first, last = rng.day_bounds()
    return {
        "summary": rng.display_label(),
        "description": rng.description or "",
        "start": {"date": first.isoformat()},
        "end": {"date": (last + timedelta(days=1)).isoformat()},
        "colorId": RANGE_COLOR_IDS[(rng.color_index or 0) % len(RANGE_COLOR_IDS)],
        "transparency": "transparent",
        "status": "confirmed",
        "extendedProperties": _private_props(rng.id, "range"),
    }


def can_user_edit_event(event: dict) -> bool:
    """
    Determine if the calendar owner can edit this remote event.

    Editable when the owner organized or created it, or guests may modify.
    """
    if event.get("organizer", {}).get("self"):
        return True
    if event.get("creator", {}).get("self"):
        return True
    if event.get("guestsCanModify"):
        return True
    # Events without organizer info live only on the owner's calendar
    return "organizer" not in event


def _parse_remote_time(value: dict) -> Optional[datetime]:
    if value.get("dateTime"):
        parsed = datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    if value.get("date"):
        return datetime.combine(date.fromisoformat(value["date"]), dt_time.min, tzinfo=timezone.utc)
    return None


def remote_event_to_local(remote: dict, local_id: str, calendar_id: str) -> Optional[Event]:
    """Build a local event from a remote one; None if it has no usable times."""
    start = _parse_remote_time(remote.get("start", {}))
    end = _parse_remote_time(remote.get("end", {}))
    if start is None or end is None:
        return None

    created_at = None
    if remote.get("created"):
        created_at = _parse_remote_time({"dateTime": remote["created"]})

    fields = {
        "id": local_id,
        "start": start,
        "end": end,
        "title": remote.get("summary") or "(No title)",
        "description": remote.get("description") or None,
        "creator": remote.get("organizer", {}).get("email"),
        "remote_event_id": remote["id"],
        "remote_calendar_id": calendar_id,
        "read_only": not can_user_edit_event(remote),
    }
    if created_at is not None:
        fields["created_at"] = created_at
    return Event(**fields)
