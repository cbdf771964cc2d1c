"""Tests for GoogleCalendarClient against a mocked Calendar API."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from rental_pipeline.infra.calendar_client import GoogleCalendarClient, MeetingInfo
from rental_pipeline.services.errors import CollaboratorUnavailable

START = datetime(2026, 11, 3, 15, 0, tzinfo=timezone.utc)
END = START + timedelta(hours=1)

_RealAsyncClient = httpx.AsyncClient


def _mock_api(handler):
    """Patch httpx.AsyncClient so every client routes through ``handler``."""

    def _factory(**kwargs):
        return _RealAsyncClient(transport=httpx.MockTransport(handler), **kwargs)

    return patch("rental_pipeline.infra.calendar_client.httpx.AsyncClient", side_effect=_factory)


@pytest.fixture
def client():
    return GoogleCalendarClient("test-token", calendar_id="visits@group.calendar.google.com")


class TestCreateMeeting:
    async def test_not_configured_skips_api(self):
        unconfigured = GoogleCalendarClient("")
        with patch.object(unconfigured, "_request", new=AsyncMock()) as request:
            result = await unconfigured.create_meeting("Visit", "desc", START, END)

        assert result is None
        request.assert_not_awaited()

    async def test_creates_event_with_meet_conference(self, client):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["request"] = request
            return httpx.Response(
                200,
                json={"id": "evt-1", "hangoutLink": "https://meet.google.com/abc-defg-hij"},
            )

        with _mock_api(handler):
            result = await client.create_meeting(
                "Video visit: Loft", "Virtual visit", START, END, ["a@test.com", None, "b@test.com"]
            )

        assert result == MeetingInfo(event_id="evt-1", join_link="https://meet.google.com/abc-defg-hij")

        request = captured["request"]
        assert request.method == "POST"
        assert request.url.path == "/calendar/v3/calendars/visits@group.calendar.google.com/events"
        assert request.url.params["conferenceDataVersion"] == "1"
        assert request.url.params["sendUpdates"] == "all"
        assert request.headers["Authorization"] == "Bearer test-token"

        body = json.loads(request.content)
        assert body["summary"] == "Video visit: Loft"
        assert body["start"]["dateTime"] == START.isoformat()
        assert body["attendees"] == [{"email": "a@test.com"}, {"email": "b@test.com"}]
        create = body["conferenceData"]["createRequest"]
        assert create["conferenceSolutionKey"] == {"type": "hangoutsMeet"}
        assert create["requestId"]

    async def test_join_link_from_entry_points(self, client):
        data = {
            "id": "evt-2",
            "conferenceData": {
                "entryPoints": [
                    {"entryPointType": "phone", "uri": "tel:+1-555-0100"},
                    {"entryPointType": "video", "uri": "https://meet.google.com/xyz"},
                ]
            },
        }
        with patch.object(client, "_request", new=AsyncMock(return_value=data)):
            result = await client.create_meeting("Visit", "desc", START, END)

        assert result.join_link == "https://meet.google.com/xyz"

    async def test_http_error_returns_none(self, client):
        with _mock_api(lambda request: httpx.Response(500, json={"error": "backend"})):
            assert await client.create_meeting("Visit", "desc", START, END) is None

    async def test_network_error_returns_none(self, client):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        with _mock_api(handler):
            assert await client.create_meeting("Visit", "desc", START, END) is None

    async def test_missing_event_id_returns_none(self, client):
        with patch.object(client, "_request", new=AsyncMock(return_value={"status": "confirmed"})):
            assert await client.create_meeting("Visit", "desc", START, END) is None


class TestDeleteMeeting:
    async def test_delete_success(self, client):
        captured = {}

        def handler(request):
            captured["request"] = request
            return httpx.Response(204)

        with _mock_api(handler):
            assert await client.delete_meeting("evt-1") is True

        assert captured["request"].method == "DELETE"
        assert captured["request"].url.path.endswith("/events/evt-1")

    async def test_delete_failure(self, client):
        with _mock_api(lambda request: httpx.Response(410)):
            assert await client.delete_meeting("evt-1") is False

    async def test_delete_not_configured(self):
        assert await GoogleCalendarClient("").delete_meeting("evt-1") is False


class TestRequest:
    async def test_raises_collaborator_unavailable(self, client):
        with _mock_api(lambda request: httpx.Response(401)):
            with pytest.raises(CollaboratorUnavailable, match="HTTP 401"):
                await client._request("GET", "/calendars/primary/events")
