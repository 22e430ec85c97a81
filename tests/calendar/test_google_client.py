"""Tests for GoogleCalendarClient against a mocked Calendar API."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta, timezone

import httpx
import pytest

from agendaboard.calendar.errors import CalendarRequestError, CalendarTransportError
from agendaboard.calendar.google import (
    EVENTS_PAGE_SIZE,
    GOOGLE_CALENDAR_API_BASE_URL,
    GoogleCalendarClient,
    google_event_to_raw_event,
    parse_event_time,
)
from agendaboard.calendar.models import AllDayTime, TimedTime

pytestmark = pytest.mark.unit

TIME_MIN = datetime(2025, 4, 17, 0, 0, tzinfo=timezone(timedelta(hours=9)))
TIME_MAX = datetime(2025, 4, 24, 0, 0, tzinfo=timezone(timedelta(hours=9)))


def _make_client(handler: Callable[[httpx.Request], httpx.Response]) -> GoogleCalendarClient:
    transport = httpx.MockTransport(handler)
    return GoogleCalendarClient(http_client=httpx.AsyncClient(transport=transport))


# ---------------------------------------------------------------------------
# Wire parsing
# ---------------------------------------------------------------------------


class TestParseEventTime:
    def test_date_time_with_offset(self):
        parsed = parse_event_time({"dateTime": "2025-04-17T09:00:00+09:00"})
        assert isinstance(parsed, TimedTime)
        assert parsed.instant.utcoffset() == timedelta(hours=9)

    def test_date_time_with_z_suffix(self):
        parsed = parse_event_time({"dateTime": "2025-04-17T00:00:00Z"})
        assert isinstance(parsed, TimedTime)
        assert parsed.instant == datetime(2025, 4, 17, tzinfo=UTC)

    def test_naive_date_time_uses_time_zone_field(self):
        parsed = parse_event_time({"dateTime": "2025-04-17T09:00:00", "timeZone": "Asia/Tokyo"})
        assert isinstance(parsed, TimedTime)
        assert parsed.instant.utcoffset() == timedelta(hours=9)

    def test_naive_date_time_without_zone_is_utc(self):
        parsed = parse_event_time({"dateTime": "2025-04-17T09:00:00"})
        assert isinstance(parsed, TimedTime)
        assert parsed.instant.utcoffset() == timedelta(0)

    def test_all_day_date(self):
        assert parse_event_time({"date": "2025-04-17"}) == AllDayTime(day=date(2025, 4, 17))

    @pytest.mark.parametrize(
        "payload",
        [None, "2025-04-17", {}, {"date": "17/04/2025"}, {"dateTime": "soon"}],
    )
    def test_unusable_values_become_none(self, payload):
        assert parse_event_time(payload) is None


class TestGoogleEventToRawEvent:
    def test_maps_fields(self):
        event = google_event_to_raw_event(
            {
                "id": "evt-1",
                "summary": " Standup ",
                "start": {"dateTime": "2025-04-17T09:00:00+09:00"},
                "end": {"dateTime": "2025-04-17T09:15:00+09:00"},
            },
            calendar_id="primary",
        )
        assert event is not None
        assert event.id == "evt-1"
        assert event.summary == "Standup"
        assert event.calendar_id == "primary"

    def test_cancelled_dropped(self):
        assert google_event_to_raw_event({"id": "x", "status": "cancelled"}) is None

    def test_missing_id_dropped(self):
        assert google_event_to_raw_event({"summary": "no id"}) is None

    def test_broken_boundaries_kept_as_none(self):
        event = google_event_to_raw_event({"id": "x", "start": {"dateTime": "nope"}})
        assert event is not None
        assert event.start is None
        assert event.end is None


# ---------------------------------------------------------------------------
# fetch()
# ---------------------------------------------------------------------------


class TestFetch:
    async def test_sends_fixed_query_and_bearer_token(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                json={
                    "items": [
                        {
                            "id": "evt-1",
                            "summary": "Standup",
                            "start": {"dateTime": "2025-04-17T09:00:00+09:00"},
                            "end": {"dateTime": "2025-04-17T09:15:00+09:00"},
                        }
                    ]
                },
            )

        client = _make_client(handler)
        try:
            events = await client.fetch("team@example.com", TIME_MIN, TIME_MAX, "ya29.token")
        finally:
            await client.shutdown()

        assert [e.id for e in events] == ["evt-1"]
        request = requests[0]
        assert str(request.url).startswith(
            f"{GOOGLE_CALENDAR_API_BASE_URL}/calendars/team%40example.com/events"
        )
        assert request.headers["Authorization"] == "Bearer ya29.token"
        params = request.url.params
        assert params["timeMin"] == "2025-04-16T15:00:00Z"
        assert params["timeMax"] == "2025-04-23T15:00:00Z"
        assert params["singleEvents"] == "true"
        assert params["orderBy"] == "startTime"
        assert params["showDeleted"] == "false"
        assert params["maxResults"] == str(EVENTS_PAGE_SIZE)
        assert "pageToken" not in params

    async def test_follows_next_page_token(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.params.get("pageToken") == "page-2":
                return httpx.Response(
                    200,
                    json={"items": [{"id": "b", "start": {"date": "2025-04-18"}}]},
                )
            return httpx.Response(
                200,
                json={
                    "items": [{"id": "a", "start": {"date": "2025-04-17"}}],
                    "nextPageToken": "page-2",
                },
            )

        client = _make_client(handler)
        try:
            events = await client.fetch("primary", TIME_MIN, TIME_MAX, "tok")
        finally:
            await client.shutdown()

        assert [e.id for e in events] == ["a", "b"]
        assert len(requests) == 2

    async def test_skips_cancelled_and_non_object_items(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "items": [
                        "garbage",
                        {"id": "gone", "status": "cancelled"},
                        {"id": "kept", "start": {"date": "2025-04-17"}},
                    ]
                },
            )

        client = _make_client(handler)
        try:
            events = await client.fetch("primary", TIME_MIN, TIME_MAX, "tok")
        finally:
            await client.shutdown()

        assert [e.id for e in events] == ["kept"]

    async def test_non_2xx_raises_request_error_with_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"message": "Invalid Credentials"}})

        client = _make_client(handler)
        try:
            with pytest.raises(CalendarRequestError) as exc_info:
                await client.fetch("primary", TIME_MIN, TIME_MAX, "tok")
        finally:
            await client.shutdown()

        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Invalid Credentials"

    async def test_network_failure_raises_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _make_client(handler)
        try:
            with pytest.raises(CalendarTransportError):
                await client.fetch("primary", TIME_MIN, TIME_MAX, "tok")
        finally:
            await client.shutdown()

    async def test_invalid_json_raises_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>")

        client = _make_client(handler)
        try:
            with pytest.raises(CalendarTransportError, match="invalid JSON"):
                await client.fetch("primary", TIME_MIN, TIME_MAX, "tok")
        finally:
            await client.shutdown()

    async def test_items_not_a_list_raises_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"items": {"id": "x"}})

        client = _make_client(handler)
        try:
            with pytest.raises(CalendarTransportError, match="items"):
                await client.fetch("primary", TIME_MIN, TIME_MAX, "tok")
        finally:
            await client.shutdown()


# ---------------------------------------------------------------------------
# list_calendars()
# ---------------------------------------------------------------------------


class TestListCalendars:
    async def test_parses_and_paginates(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/users/me/calendarList")
            if request.url.params.get("pageToken") == "next":
                return httpx.Response(
                    200, json={"items": [{"id": "team@example.com", "summary": "Team"}]}
                )
            return httpx.Response(
                200,
                json={
                    "items": [
                        {
                            "id": "primary@example.com",
                            "summary": "Aiko",
                            "summaryOverride": "Me",
                            "primary": True,
                            "backgroundColor": "#9fe1e7",
                        },
                        {"summary": "no id"},
                    ],
                    "nextPageToken": "next",
                },
            )

        client = _make_client(handler)
        try:
            calendars = await client.list_calendars("tok")
        finally:
            await client.shutdown()

        assert [c.id for c in calendars] == ["primary@example.com", "team@example.com"]
        assert calendars[0].summary == "Me"
        assert calendars[0].primary is True
        assert calendars[0].background_color == "#9fe1e7"
        assert calendars[1].primary is False

    async def test_error_payload_message_surfaced(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"error": {"message": "Insufficient Permission"}})

        client = _make_client(handler)
        try:
            with pytest.raises(CalendarRequestError, match="Insufficient Permission"):
                await client.list_calendars("tok")
        finally:
            await client.shutdown()


class TestShutdown:
    async def test_injected_client_left_open(self):
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))
        )
        client = GoogleCalendarClient(http_client=http_client)
        await client.shutdown()
        assert http_client.is_closed is False
        await http_client.aclose()

    async def test_owned_client_closed(self):
        client = GoogleCalendarClient()
        await client.shutdown()
        assert client._http_client.is_closed is True
