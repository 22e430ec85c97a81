"""Sample events shown when nobody is signed in."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, tzinfo

from agendaboard.calendar.models import AllDayTime, RawEvent, TimedTime

PLACEHOLDER_CALENDAR_ID = "sample"

# (id, summary, day offset, start, end) for timed samples
_TIMED_SAMPLES: tuple[tuple[str, str, int, time, time], ...] = (
    ("sample-standup", "Team standup", 0, time(9, 0), time(9, 15)),
    ("sample-lunch", "Lunch with Aiko", 0, time(12, 0), time(13, 0)),
    ("sample-review", "Design review", 1, time(15, 0), time(16, 30)),
    ("sample-dentist", "Dentist", 3, time(10, 30), time(11, 0)),
    ("sample-dinner", "Dinner", 4, time(19, 0), time(21, 0)),
)

# (id, summary, day offset, length in days) for all-day samples
_ALL_DAY_SAMPLES: tuple[tuple[str, str, int, int], ...] = (
    ("sample-holiday", "Holiday", 2, 1),
    ("sample-conference", "Conference", 5, 2),
)


def _at(day: date, clock: time, tz: tzinfo | None) -> datetime:
    naive = datetime.combine(day, clock)
    return naive.replace(tzinfo=tz) if tz is not None else naive.astimezone()


def placeholder_events(start: date, *, tz: tzinfo | None = None) -> list[RawEvent]:
    """Build the fixed sample dataset anchored at *start*."""
    events: list[RawEvent] = []
    for event_id, summary, offset, starts, ends in _TIMED_SAMPLES:
        day = start + timedelta(days=offset)
        events.append(
            RawEvent(
                id=event_id,
                summary=summary,
                start=TimedTime(instant=_at(day, starts, tz)),
                end=TimedTime(instant=_at(day, ends, tz)),
                calendar_id=PLACEHOLDER_CALENDAR_ID,
            )
        )
    for event_id, summary, offset, length in _ALL_DAY_SAMPLES:
        day = start + timedelta(days=offset)
        events.append(
            RawEvent(
                id=event_id,
                summary=summary,
                start=AllDayTime(day=day),
                end=AllDayTime(day=day + timedelta(days=length)),
                calendar_id=PLACEHOLDER_CALENDAR_ID,
            )
        )
    return events
