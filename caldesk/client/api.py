"""HTTP transport used by the client calendar session."""

import logging
from typing import Optional

import httpx

from caldesk.auth.session import SESSION_COOKIE_NAME
from caldesk.models import CalendarPayload, Event, Range

logger = logging.getLogger(__name__)


class CalendarApiClient:
    """Loads and saves the caller's calendar through the REST API."""

    def __init__(
        self,
        base_url: str,
        session_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        cookies = {SESSION_COOKIE_NAME: session_token} if session_token else None
        self._client = client or httpx.AsyncClient(base_url=base_url, cookies=cookies, timeout=timeout)

    async def fetch_calendar(self) -> CalendarPayload:
        """Load the saved calendar; dates are rehydrated by the models."""
        response = await self._client.get("/api/calendar")
        response.raise_for_status()
        return CalendarPayload.model_validate(response.json())

    async def save_calendar(self, events: list[Event], ranges: list[Range]) -> CalendarPayload:
        """Persist the full calendar state and return the merged result."""
        payload = CalendarPayload(events=events, ranges=ranges)
        response = await self._client.put(
            "/api/calendar",
            json=payload.model_dump(mode="json", by_alias=True),
        )
        response.raise_for_status()
        return CalendarPayload.model_validate(response.json())

    async def aclose(self) -> None:
        await self._client.aclose()
