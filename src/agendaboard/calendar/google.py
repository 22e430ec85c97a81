"""Google Calendar API client: calendar list and per-calendar event queries.

The bearer token is passed per call; this client holds no credentials.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, tzinfo
from typing import Any
from urllib.parse import quote
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from agendaboard.calendar.errors import CalendarRequestError, CalendarTransportError
from agendaboard.calendar.models import AllDayTime, CalendarInfo, RawEvent, TimedTime

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
DEFAULT_TIMEOUT_SECONDS = 30.0
EVENTS_PAGE_SIZE = 250


def _safe_google_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        if isinstance(error_payload, str) and error_payload.strip():
            return " ".join(error_payload.split())[:200]

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return "Request failed without an error payload"


def _google_rfc3339(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _coerce_zoneinfo(timezone: str | None) -> tzinfo:
    if not timezone:
        return UTC
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return UTC


def _parse_google_datetime(value: str, *, timezone: str | None = None) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Google Calendar returned an invalid dateTime: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_coerce_zoneinfo(timezone))
    return parsed


def _normalize_optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


def parse_event_time(payload: Any) -> TimedTime | AllDayTime | None:
    """Parse a ``{dateTime, timeZone}`` or ``{date}`` boundary; ``None`` if unusable."""
    if not isinstance(payload, dict):
        return None

    date_time = payload.get("dateTime")
    if isinstance(date_time, str) and date_time.strip():
        try:
            instant = _parse_google_datetime(
                date_time, timezone=_normalize_optional_text(payload.get("timeZone"))
            )
        except ValueError:
            logger.debug("Unparseable dateTime boundary: %r", date_time)
            return None
        return TimedTime(instant=instant)

    date_value = payload.get("date")
    if isinstance(date_value, str) and date_value.strip():
        try:
            return AllDayTime(day=date.fromisoformat(date_value.strip()))
        except ValueError:
            logger.debug("Unparseable date boundary: %r", date_value)
            return None
    return None


def google_event_to_raw_event(
    payload: dict[str, Any],
    *,
    calendar_id: str | None = None,
) -> RawEvent | None:
    """Map one ``events.list`` item to a ``RawEvent``.

    Cancelled events and items without an id yield ``None``. Broken start/end
    values are kept as ``None`` so the expander can reject just that event.
    """
    status_raw = payload.get("status")
    if isinstance(status_raw, str) and status_raw.lower() == "cancelled":
        return None

    event_id = _normalize_optional_text(payload.get("id"))
    if event_id is None:
        logger.warning("Skipping Calendar API item without an id (calendar=%s)", calendar_id)
        return None

    return RawEvent(
        id=event_id,
        summary=_normalize_optional_text(payload.get("summary")),
        start=parse_event_time(payload.get("start")),
        end=parse_event_time(payload.get("end")),
        calendar_id=calendar_id,
    )


class GoogleCalendarClient:
    """Issues authenticated Calendar API requests with a caller-supplied bearer token."""

    def __init__(
        self,
        *,
        base_url: str = GOOGLE_CALENDAR_API_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def _request_google_json(
        self,
        path: str,
        *,
        token: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        normalized_path = path if path.startswith("/") else f"/{path}"
        url = f"{self._base_url}{normalized_path}"
        try:
            response = await self._http_client.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise CalendarTransportError(f"Google Calendar request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise CalendarRequestError(
                status_code=response.status_code,
                message=_safe_google_error_message(response),
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise CalendarTransportError(
                "Google Calendar API returned invalid JSON for a successful response"
            ) from exc

        if not isinstance(payload, dict):
            raise CalendarTransportError(
                "Google Calendar API returned an unexpected JSON payload shape"
            )
        return payload

    async def list_calendars(self, token: str) -> list[CalendarInfo]:
        calendars: list[CalendarInfo] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {}
            if page_token:
                params["pageToken"] = page_token
            payload = await self._request_google_json(
                "/users/me/calendarList", token=token, params=params
            )
            items = payload.get("items", [])
            if not isinstance(items, list):
                raise CalendarTransportError(
                    "Google Calendar calendarList response missing items array"
                )

            for item in items:
                if not isinstance(item, dict):
                    continue
                calendar_id = _normalize_optional_text(item.get("id"))
                if calendar_id is None:
                    continue
                calendars.append(
                    CalendarInfo(
                        id=calendar_id,
                        summary=_normalize_optional_text(item.get("summaryOverride"))
                        or _normalize_optional_text(item.get("summary"))
                        or calendar_id,
                        primary=item.get("primary") is True,
                        background_color=_normalize_optional_text(item.get("backgroundColor")),
                    )
                )

            page_token = _normalize_optional_text(payload.get("nextPageToken"))
            if page_token is None:
                return calendars

    async def fetch(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        token: str,
    ) -> list[RawEvent]:
        """Return the events of one calendar in ``[time_min, time_max)``.

        Recurring events are expanded server-side and ordered by start time.
        """
        normalized_calendar_id = quote(calendar_id, safe="")
        events: list[RawEvent] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {
                "timeMin": _google_rfc3339(time_min),
                "timeMax": _google_rfc3339(time_max),
                "singleEvents": "true",
                "orderBy": "startTime",
                "showDeleted": "false",
                "maxResults": EVENTS_PAGE_SIZE,
            }
            if page_token:
                params["pageToken"] = page_token

            payload = await self._request_google_json(
                f"/calendars/{normalized_calendar_id}/events",
                token=token,
                params=params,
            )
            items = payload.get("items", [])
            if not isinstance(items, list):
                raise CalendarTransportError("Google Calendar events response missing items array")

            for item in items:
                if not isinstance(item, dict):
                    logger.warning("Skipping non-object event item from calendar %s", calendar_id)
                    continue
                event = google_event_to_raw_event(item, calendar_id=calendar_id)
                if event is not None:
                    events.append(event)

            page_token = _normalize_optional_text(payload.get("nextPageToken"))
            if page_token is None:
                break

        logger.debug("Fetched %d event(s) from calendar %s", len(events), calendar_id)
        return events

    async def shutdown(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()
