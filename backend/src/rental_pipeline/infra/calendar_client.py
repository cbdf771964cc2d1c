"""Google Calendar client for video visits.

Creates and deletes calendar events carrying a Google Meet conference via the
Calendar v3 REST API over async httpx. Every public call degrades to ``None``
/ ``False`` on failure so callers never have to handle provider errors.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

import httpx

from rental_pipeline.services.errors import CollaboratorUnavailable

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"


@dataclass(frozen=True)
class MeetingInfo:
    event_id: str
    join_link: str | None


class GoogleCalendarClient:
    """Async Google Calendar client backed by a bearer access token."""

    def __init__(
        self,
        access_token: str,
        calendar_id: str = "primary",
        timeout: float = 10.0,
    ) -> None:
        self._access_token = access_token
        self._calendar_id = calendar_id
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._access_token)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create_meeting(
        self,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        attendees: list[str] | None = None,
    ) -> MeetingInfo | None:
        """Create an event with a Meet conference. Returns None on any failure."""
        if not self.configured:
            logger.info("Google Calendar not configured; skipping meeting creation")
            return None

        body = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": start.isoformat(), "timeZone": "UTC"},
            "end": {"dateTime": end.isoformat(), "timeZone": "UTC"},
            "attendees": [{"email": email} for email in (attendees or []) if email],
            "conferenceData": {
                "createRequest": {
                    "requestId": str(uuid.uuid4()),
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            },
        }

        try:
            data = await self._request(
                "POST",
                f"/calendars/{self._calendar_id}/events",
                params={"conferenceDataVersion": 1, "sendUpdates": "all"},
                json=body,
            )
        except CollaboratorUnavailable as exc:
            logger.warning("Calendar meeting creation failed: %s", exc)
            return None

        event_id = data.get("id")
        if not event_id:
            logger.warning("Calendar response carried no event id")
            return None

        join_link = data.get("hangoutLink") or self._video_entry_point(data)
        logger.info("Calendar event created: %s", event_id)
        return MeetingInfo(event_id=event_id, join_link=join_link)

    async def delete_meeting(self, event_id: str) -> bool:
        """Delete a previously created event. Returns False on any failure."""
        if not self.configured:
            return False
        try:
            await self._request(
                "DELETE",
                f"/calendars/{self._calendar_id}/events/{event_id}",
                params={"sendUpdates": "all"},
            )
        except CollaboratorUnavailable as exc:
            logger.warning("Calendar event %s deletion failed: %s", event_id, exc)
            return False
        logger.info("Calendar event deleted: %s", event_id)
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        """Execute an authenticated request, raising CollaboratorUnavailable on failure."""
        headers = {"Authorization": f"Bearer {self._access_token}"}
        try:
            async with httpx.AsyncClient(
                base_url=GOOGLE_CALENDAR_API, timeout=self._timeout
            ) as client:
                resp = await client.request(method, path, headers=headers, **kwargs)
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise CollaboratorUnavailable(
                f"Google Calendar HTTP {exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            raise CollaboratorUnavailable(f"Google Calendar request failed: {exc}") from exc

        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()

    @staticmethod
    def _video_entry_point(data: dict) -> str | None:
        entry_points = (data.get("conferenceData") or {}).get("entryPoints") or []
        for entry in entry_points:
            if entry.get("entryPointType") == "video":
                return entry.get("uri")
        return None


# ----------------------------------------------------------------------
# Module-level convenience
# ----------------------------------------------------------------------


def get_calendar_client() -> GoogleCalendarClient:
    """Build a client from the configured access token and calendar."""
    from rental_pipeline.app.config import get_settings

    settings = get_settings()
    return GoogleCalendarClient(
        settings.google_calendar_access_token,
        calendar_id=settings.google_calendar_id,
        timeout=settings.calendar_timeout_seconds,
    )
