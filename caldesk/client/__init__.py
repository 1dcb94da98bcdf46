"""Client-side calendar session and its HTTP transport."""

from caldesk.client.api import CalendarApiClient
from caldesk.client.store import CalendarSession, SessionState

__all__ = ["CalendarApiClient", "CalendarSession", "SessionState"]
