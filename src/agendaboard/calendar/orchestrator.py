"""Aggregation orchestrator: fetch all calendars, expand, dedupe, bucket.

One run walks ``VALIDATING -> FETCHING -> REDUCING -> COMMITTED | FAILED``:

- Without a session the index is filled from the placeholder dataset.
- The session is checked before every fetch attempt; an invalid one is torn
  down (``SESSION_EXPIRED``).
- Calendars are fetched concurrently; the batch is reduced only after every
  fetch has settled, and any failed fetch fails the attempt.
- Failed attempts are retried with capped exponential backoff. After the
  last attempt, auth-class failures tear the session down
  (``SESSION_EXPIRED``); anything else clears the index (``LOAD_ERROR``).
- Only one run may be in flight; overlapping triggers are ignored.
- A logout, or a sign-in replacing the session, while a run is in flight
  makes that run's result stale: it is discarded instead of committed.

The index, calendars and last error are replaced wholesale, never patched.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Protocol

from opentelemetry import trace

from agendaboard.calendar.dedupe import Deduplicator
from agendaboard.calendar.errors import (
    AgendaError,
    CalendarRequestError,
    SessionExpiredError,
    is_auth_failure,
    sanitize_error_message,
)
from agendaboard.calendar.expander import EventExpander
from agendaboard.calendar.models import (
    CalendarInfo,
    DayEvent,
    DayIndex,
    ErrorKind,
    RawEvent,
    RunError,
    RunOutcome,
    RunState,
    Session,
)
from agendaboard.calendar.placeholder import placeholder_events
from agendaboard.calendar.session import SessionManager
from agendaboard.calendar.token_guard import TokenGuard
from agendaboard.calendar.window import DateWindow, format_date_key
from agendaboard.core.logging import reset_run_context, set_run_context
from agendaboard.core.telemetry import get_tracer

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 7
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_MAX_DELAY_SECONDS = 8.0

_IN_FLIGHT_STATES = {RunState.VALIDATING, RunState.FETCHING, RunState.REDUCING}


class EventFetcher(Protocol):
    """Calendar API surface the orchestrator depends on."""

    async def fetch(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        token: str,
    ) -> list[RawEvent]: ...

    async def list_calendars(self, token: str) -> list[CalendarInfo]: ...


class RunListener:
    """Receives run lifecycle notifications. Override the hooks you need."""

    def on_run_started(self, outcome: RunOutcome, window: tuple[str, ...]) -> None:
        pass

    def on_run_committed(self, outcome: RunOutcome, index: DayIndex) -> None:
        pass

    def on_run_failed(self, outcome: RunOutcome, error: RunError) -> None:
        pass

    def on_run_superseded(self, outcome: RunOutcome) -> None:
        """Called when a session change made the run's result stale."""


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff capped at ``max_delay_s``."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_s: float = DEFAULT_BASE_DELAY_SECONDS
    max_delay_s: float = DEFAULT_MAX_DELAY_SECONDS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_s <= 0:
            raise ValueError("base_delay_s must be positive")
        if self.max_delay_s < self.base_delay_s:
            raise ValueError("max_delay_s must be >= base_delay_s")

    def delay_after(self, attempt: int) -> float:
        """Delay to wait after failed attempt number *attempt* (1-based)."""
        return min(self.base_delay_s * (2 ** (attempt - 1)), self.max_delay_s)


def _bucket_sort_key(event: DayEvent) -> tuple[bool, str]:
    return (not event.all_day, event.start_time)


class AggregationOrchestrator:
    """Owns the day index and drives aggregation runs."""

    def __init__(
        self,
        fetcher: EventFetcher,
        sessions: SessionManager,
        *,
        window: DateWindow | None = None,
        window_days: int = DEFAULT_WINDOW_DAYS,
        guard: TokenGuard | None = None,
        retry: RetryPolicy | None = None,
        tz: tzinfo | None = None,
        sort_by_start_time: bool = True,
        calendar_allowlist: Iterable[str] = (),
        today: Callable[[], date] | None = None,
    ) -> None:
        if window_days < 1:
            raise ValueError("window_days must be a positive integer")
        self._fetcher = fetcher
        self._sessions = sessions
        self._window = window or DateWindow()
        self._window_days = window_days
        self._guard = guard or TokenGuard()
        self._retry = retry or RetryPolicy()
        self._tz = tz
        self._expander = EventExpander(tz=tz)
        self._sort_by_start_time = sort_by_start_time
        self._calendar_allowlist = tuple(calendar_allowlist)
        self._today = today or (lambda: datetime.now(tz).date())
        self._tracer = get_tracer()
        self._listeners: list[RunListener] = []

        self._start_date: date = self._today()
        self._state = RunState.IDLE
        self._in_flight = False
        self._loading = False
        self._index: DayIndex = {}
        self._error: RunError | None = None
        self._calendars: tuple[CalendarInfo, ...] = ()
        self._visible: tuple[str, ...] = ()

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def index(self) -> DayIndex:
        """Committed day index. Treat as read-only; runs replace it wholesale."""
        return self._index

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> RunError | None:
        return self._error

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def start_date(self) -> date:
        return self._start_date

    @property
    def window_days(self) -> int:
        return self._window_days

    @property
    def window_keys(self) -> tuple[str, ...]:
        return self._window.keys(self._start_date, self._window_days)

    @property
    def calendars(self) -> tuple[CalendarInfo, ...]:
        return self._calendars

    @property
    def visible_calendars(self) -> tuple[str, ...]:
        return self._visible

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    def add_listener(self, listener: RunListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: RunListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_visible_calendars(self, calendar_ids: Sequence[str]) -> tuple[str, ...]:
        """Replace the visible calendar set (order preserved, duplicates dropped)."""
        self._visible = tuple(dict.fromkeys(c.strip() for c in calendar_ids if c.strip()))
        return self._visible

    # ------------------------------------------------------------------
    # Session-facing operations
    # ------------------------------------------------------------------

    def sign_in(self, credential: str) -> Session:
        """Sign in, dropping state derived from any session this one replaces."""
        replacing = self._sessions.session is not None
        session = self._sessions.sign_in(credential)
        if replacing:
            self._clear_session_state()
            self._error = None
        return session

    def logout(self) -> None:
        """Tear down the session and drop everything derived from it."""
        self._sessions.logout()
        self._clear_session_state()

    def _clear_session_state(self) -> None:
        self._index = {}
        self._calendars = ()
        self._visible = ()
        self._loading = False

    async def load_calendars(self) -> tuple[CalendarInfo, ...]:
        """Refresh the calendar list and reset the visible set from it."""
        session = self._sessions.session
        if session is None:
            raise SessionExpiredError("Sign in to list calendars")
        if not self._guard.is_session_valid(session):
            self._teardown(RunError(kind=ErrorKind.SESSION_EXPIRED, message="Session expired"))
            return ()

        epoch = self._sessions.epoch
        try:
            calendars = await self._fetcher.list_calendars(session.bearer_token)
        except AgendaError as exc:
            if self._sessions.epoch != epoch:
                return ()
            logger.warning("Calendar list load failed: %s", exc)
            if is_auth_failure(exc):
                self._teardown(self._error_from(exc, ErrorKind.SESSION_EXPIRED))
            else:
                self._error = self._error_from(exc, ErrorKind.API_ERROR)
            return ()

        if self._sessions.epoch != epoch:
            logger.info("Discarding calendar list loaded for a previous session")
            return ()

        self._calendars = tuple(calendars)
        ids = [calendar.id for calendar in calendars]
        if self._calendar_allowlist:
            allowed = set(self._calendar_allowlist)
            ids = [calendar_id for calendar_id in ids if calendar_id in allowed]
        self.set_visible_calendars(ids)
        logger.info("Loaded %d calendar(s); %d visible", len(calendars), len(self._visible))
        return self._calendars

    # ------------------------------------------------------------------
    # Aggregation run
    # ------------------------------------------------------------------

    async def run(
        self,
        start_date: date | None = None,
        *,
        window_days: int | None = None,
    ) -> RunOutcome | None:
        """Run one aggregation. Returns ``None`` when another run is in flight."""
        if self._in_flight:
            logger.info("Aggregation run already in flight (%s); ignoring trigger", self._state)
            return None
        if window_days is not None and window_days < 1:
            raise ValueError("window_days must be a positive integer")

        self._in_flight = True
        outcome = RunOutcome()
        context_token = set_run_context(outcome.run_id)
        try:
            if start_date is not None:
                self._start_date = start_date
            if window_days is not None:
                self._window_days = window_days

            with self._tracer.start_as_current_span("agenda.run") as span:
                span.set_attribute("agenda.run_id", outcome.run_id)
                span.set_attribute("agenda.window_start", format_date_key(self._start_date))
                span.set_attribute("agenda.window_days", self._window_days)
                await self._run(outcome)
                span.set_attribute("agenda.attempts", outcome.attempts)
                span.set_attribute("agenda.outcome", outcome.state.value)
                if outcome.error is not None:
                    span.set_status(trace.Status(trace.StatusCode.ERROR, outcome.error.message))
            return outcome
        finally:
            self._in_flight = False
            self._loading = False
            if self._state in _IN_FLIGHT_STATES:
                self._state = RunState.IDLE
            reset_run_context(context_token)

    async def _run(self, outcome: RunOutcome) -> None:
        days = self._window.compute(self._start_date, self._window_days)
        keys = tuple(format_date_key(day) for day in days)
        self._loading = True
        self._set_state(outcome, RunState.VALIDATING)
        self._emit("on_run_started", outcome, keys)

        session = self._sessions.session
        if session is None:
            logger.info("No session; using placeholder agenda for %s", keys[0])
            outcome.placeholder = True
            self._set_state(outcome, RunState.REDUCING)
            events = placeholder_events(self._start_date, tz=self._tz)
            self._commit(outcome, self._reduce([events], keys))
            return

        if not self._guard.is_session_valid(session):
            self._expire_session(outcome)
            return

        epoch = self._sessions.epoch
        visible = self._visible
        if not visible:
            logger.info("No visible calendars; clearing agenda")
            self._commit(outcome, {})
            return

        time_min, time_max = self._time_bounds(days)
        last_exc: AgendaError | None = None
        for attempt in range(1, self._retry.max_attempts + 1):
            if self._sessions.epoch != epoch:
                self._supersede(outcome)
                return
            session = self._sessions.session
            if not self._guard.is_session_valid(session):
                self._expire_session(outcome)
                return
            outcome.attempts = attempt
            try:
                self._set_state(outcome, RunState.FETCHING)
                batches = await self._fetch_all(visible, time_min, time_max, session.bearer_token)
                if self._sessions.epoch != epoch:
                    self._supersede(outcome)
                    return
                self._set_state(outcome, RunState.REDUCING)
                index = self._reduce(batches, keys)
            except AgendaError as exc:
                last_exc = exc
                logger.warning(
                    "Aggregation attempt %d/%d failed: %s",
                    attempt,
                    self._retry.max_attempts,
                    sanitize_error_message(exc),
                )
                if attempt < self._retry.max_attempts:
                    delay = self._retry.delay_after(attempt)
                    logger.info("Retrying aggregation in %.1fs", delay)
                    await asyncio.sleep(delay)
                continue
            self._commit(outcome, index)
            return

        if self._sessions.epoch != epoch:
            self._supersede(outcome)
            return
        assert last_exc is not None
        if is_auth_failure(last_exc):
            error = self._error_from(last_exc, ErrorKind.SESSION_EXPIRED)
            self._fail(outcome, error, teardown=True)
        else:
            self._fail(outcome, self._error_from(last_exc, ErrorKind.LOAD_ERROR), teardown=False)

    async def _fetch_all(
        self,
        calendar_ids: Sequence[str],
        time_min: datetime,
        time_max: datetime,
        token: str,
    ) -> list[list[RawEvent]]:
        """Fetch every calendar concurrently; batches come back in completion order."""
        completed: list[list[RawEvent]] = []

        async def _fetch_one(calendar_id: str) -> None:
            events = await self._fetcher.fetch(calendar_id, time_min, time_max, token)
            completed.append(events)

        results = await asyncio.gather(
            *(_fetch_one(calendar_id) for calendar_id in calendar_ids),
            return_exceptions=True,
        )
        failures = [result for result in results if isinstance(result, BaseException)]
        if failures:
            for failure in failures:
                if not isinstance(failure, Exception):
                    raise failure
            # Surface an auth-class failure first so classification sees it.
            failures.sort(key=lambda exc: not is_auth_failure(exc))
            logger.debug("%d of %d calendar fetch(es) failed", len(failures), len(calendar_ids))
            raise failures[0]
        return completed

    def _reduce(self, batches: Iterable[Iterable[RawEvent]], keys: tuple[str, ...]) -> DayIndex:
        index: DayIndex = {key: [] for key in keys}
        dedupe = Deduplicator()
        for batch in batches:
            for event in batch:
                for key, day_event in self._expander.expand_safely(event):
                    bucket = index.get(key)
                    if bucket is None:
                        continue
                    if dedupe.should_admit(key, day_event):
                        bucket.append(day_event)
        if self._sort_by_start_time:
            for bucket in index.values():
                bucket.sort(key=_bucket_sort_key)
        return index

    def _time_bounds(self, days: Sequence[date]) -> tuple[datetime, datetime]:
        first = datetime.combine(days[0], time.min)
        after_last = datetime.combine(days[-1] + timedelta(days=1), time.min)
        if self._tz is not None:
            return first.replace(tzinfo=self._tz), after_last.replace(tzinfo=self._tz)
        return first.astimezone(), after_last.astimezone()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _set_state(self, outcome: RunOutcome, state: RunState) -> None:
        self._state = state
        outcome.state = state

    def _commit(self, outcome: RunOutcome, index: DayIndex) -> None:
        self._index = index
        self._error = None
        self._loading = False
        self._set_state(outcome, RunState.COMMITTED)
        logger.info(
            "Committed agenda: %d day(s), %d entr(ies)",
            len(index),
            sum(len(bucket) for bucket in index.values()),
        )
        self._emit("on_run_committed", outcome, index)

    def _fail(self, outcome: RunOutcome, error: RunError, *, teardown: bool) -> None:
        if teardown:
            self._teardown(error)
        else:
            self._index = {}
            self._error = error
        self._loading = False
        outcome.error = error
        self._set_state(outcome, RunState.FAILED)
        logger.error("Aggregation run failed (%s): %s", error.kind, error.message)
        self._emit("on_run_failed", outcome, error)

    def _expire_session(self, outcome: RunOutcome) -> None:
        logger.warning("Session token is no longer valid; signing out")
        error = RunError(kind=ErrorKind.SESSION_EXPIRED, message="Session token is no longer valid")
        self._fail(outcome, error, teardown=True)

    def _supersede(self, outcome: RunOutcome) -> None:
        logger.info("Session changed during run; discarding its result")
        outcome.superseded = True
        self._loading = False
        self._set_state(outcome, RunState.IDLE)
        self._emit("on_run_superseded", outcome)

    def _teardown(self, error: RunError) -> None:
        self.logout()
        self._error = error

    def _error_from(self, exc: BaseException, kind: ErrorKind) -> RunError:
        status_code = exc.status_code if isinstance(exc, CalendarRequestError) else None
        return RunError(kind=kind, message=sanitize_error_message(exc), status_code=status_code)

    def _emit(self, hook: str, *args: object) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, hook)(*args)
            except Exception:
                logger.exception("Run listener %r failed in %s", listener, hook)
