"""Per-run suppression of same-id, same-day duplicates."""

from __future__ import annotations

from collections import defaultdict

from agendaboard.calendar.models import DayEvent


class Deduplicator:
    """Admit each event id at most once per date key.

    The same id on different days (a multi-day event) is admitted on each day;
    the same id on the same day (e.g. one event visible through two calendars)
    is admitted only the first time. Create a fresh instance per run.
    """

    def __init__(self) -> None:
        self._seen: defaultdict[str, set[str]] = defaultdict(set)

    def should_admit(self, date_key: str, event: DayEvent) -> bool:
        days = self._seen[event.id]
        if date_key in days:
            return False
        days.add(date_key)
        return True

    def __len__(self) -> int:
        return sum(len(days) for days in self._seen.values())
