"""Date window computation with a memoized, periodically cleared cache."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import date, datetime, timedelta

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 3600.0

# Monday=0 ... Sunday=6
_JA_WEEKDAYS = ("月", "火", "水", "木", "金", "土", "日")


class DateWindow:
    """Compute ``length`` consecutive calendar dates starting at ``start``.

    Results are memoized per ``(start, length)``. The whole cache is dropped
    when ``ttl_seconds`` have elapsed since the last clear, so a long-running
    process that keeps moving its start date does not grow without bound.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: dict[tuple[date, int], tuple[date, ...]] = {}
        self._cleared_at = clock()
        self._last: tuple[date, ...] = ()

    def compute(self, start: date, length: int) -> tuple[date, ...]:
        if isinstance(start, datetime):
            start = start.date()
        if length < 1:
            raise ValueError("length must be a positive integer")

        self._expire_if_due()
        key = (start, length)
        cached = self._cache.get(key)
        if cached is None:
            cached = tuple(start + timedelta(days=offset) for offset in range(length))
            self._cache[key] = cached
        self._last = cached
        return cached

    def keys(self, start: date, length: int) -> tuple[str, ...]:
        """Return the window as ``YYYY-MM-DD`` keys."""
        return tuple(format_date_key(day) for day in self.compute(start, length))

    @property
    def last(self) -> tuple[date, ...]:
        """The most recently computed window (empty before the first call)."""
        return self._last

    def __len__(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        self._cache = {}
        self._cleared_at = self._clock()

    def _expire_if_due(self) -> None:
        if self._clock() - self._cleared_at >= self._ttl_seconds:
            logger.debug("Date window cache expired; dropping %d entries", len(self._cache))
            self.clear()


def format_date_key(value: date | datetime) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def format_date_input(value: date | datetime) -> str:
    """Format a date for a ``<input type="date">``-style field."""
    return format_date_key(value)


def parse_date_key(value: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid date key (expected YYYY-MM-DD): {value!r}") from exc


def format_date_label(value: str | date) -> str:
    """Short day label, e.g. ``2025-04-17`` -> ``17日(木)``."""
    day = parse_date_key(value) if isinstance(value, str) else value
    return f"{day.day}日({_JA_WEEKDAYS[day.weekday()]})"
