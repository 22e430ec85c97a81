"""Expand raw events into per-day agenda entries."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import date, timedelta, tzinfo

from agendaboard.calendar.errors import MalformedEventError
from agendaboard.calendar.models import AllDayTime, DayEvent, RawEvent, TimedTime
from agendaboard.calendar.window import format_date_key

logger = logging.getLogger(__name__)

ALL_DAY_START_TIME = "00:00"
ALL_DAY_END_TIME = "23:59"
UNTITLED_SUMMARY = "(untitled)"


def _iter_days(start: date, end: date) -> Iterator[date]:
    for offset in range((end - start).days + 1):
        yield start + timedelta(days=offset)


class EventExpander:
    """Split one ``RawEvent`` into ``(date_key, DayEvent)`` pairs.

    All-day events use the Calendar API's exclusive end date, which is moved
    back one day before iterating. Timed events are bucketed by the calendar
    date of their boundaries, either in the offset they were delivered with or,
    when ``tz`` is given, converted to that zone first.
    """

    def __init__(self, *, tz: tzinfo | None = None) -> None:
        self._tz = tz

    def expand(self, event: RawEvent) -> list[tuple[str, DayEvent]]:
        start, end = event.start, event.end
        if start is None or end is None:
            raise MalformedEventError(event.id, "missing or unparseable start/end")
        if type(start) is not type(end):
            raise MalformedEventError(event.id, "start and end mix date and dateTime values")

        all_day = isinstance(start, AllDayTime)
        if isinstance(start, AllDayTime) and isinstance(end, AllDayTime):
            if end.day < start.day:
                raise MalformedEventError(event.id, "end is before start")
            start_date = start.day
            # A zero-length all-day event still occupies its start date.
            end_date = max(end.day - timedelta(days=1), start_date)
            start_time, end_time = ALL_DAY_START_TIME, ALL_DAY_END_TIME
        else:
            assert isinstance(start, TimedTime) and isinstance(end, TimedTime)
            start_at = start.instant.astimezone(self._tz) if self._tz else start.instant
            end_at = end.instant.astimezone(self._tz) if self._tz else end.instant
            start_date, end_date = start_at.date(), end_at.date()
            start_time, end_time = start_at.strftime("%H:%M"), end_at.strftime("%H:%M")

        if end_date < start_date:
            raise MalformedEventError(event.id, "end is before start")

        is_multi_day = start_date != end_date
        summary = event.summary or UNTITLED_SUMMARY
        return [
            (
                format_date_key(day),
                DayEvent(
                    id=event.id,
                    summary=summary,
                    all_day=all_day,
                    start_time=start_time,
                    end_time=end_time,
                    is_multi_day=is_multi_day,
                    calendar_id=event.calendar_id,
                ),
            )
            for day in _iter_days(start_date, end_date)
        ]

    def expand_safely(self, event: RawEvent) -> list[tuple[str, DayEvent]]:
        """Like ``expand`` but logs and skips malformed events."""
        try:
            return self.expand(event)
        except MalformedEventError as exc:
            logger.warning("Skipping event: %s", exc)
            return []
