"""Data model for the agenda aggregation engine.

- ``RawEvent``: an event as received from the Calendar API (immutable)
- ``DayEvent``: one per-day entry derived from a ``RawEvent``
- ``DayIndex``: date key -> ordered day entries, rebuilt wholesale per run
- ``Session``: the signed-in identity plus the bearer token driving fetches
- ``RunError`` / ``RunOutcome``: what a finished run reports
"""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class TimedTime(BaseModel):
    """Event boundary at an exact instant."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["timed"] = "timed"
    instant: datetime


class AllDayTime(BaseModel):
    """Event boundary on a calendar date (Calendar API ``date`` field)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["all_day"] = "all_day"
    day: date


EventTime = Annotated[TimedTime | AllDayTime, Field(discriminator="kind")]


class RawEvent(BaseModel):
    """Event payload as delivered by the Calendar API.

    ``start``/``end`` are ``None`` when the wire value was missing or could not
    be parsed; such events are rejected during expansion.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    summary: str | None = None
    start: EventTime | None = None
    end: EventTime | None = None
    calendar_id: str | None = None


class DayEvent(BaseModel):
    """One event as shown on one day of the agenda."""

    model_config = ConfigDict(frozen=True)

    id: str
    summary: str
    all_day: bool
    start_time: str
    end_time: str
    is_multi_day: bool
    calendar_id: str | None = None


DayIndex = dict[str, list[DayEvent]]


class CalendarInfo(BaseModel):
    """Calendar entry from ``GET /calendarList``."""

    model_config = ConfigDict(frozen=True)

    id: str
    summary: str
    primary: bool = False
    background_color: str | None = None


class Identity(BaseModel):
    """Signed-in user as described by the identity token."""

    model_config = ConfigDict(frozen=True)

    name: str
    email: str | None = None


class Session(BaseModel):
    """Signed-in session. Replaced, never mutated in place."""

    model_config = ConfigDict(frozen=True)

    identity: Identity
    id_token: str
    bearer_token: str
    expires_at: datetime


class ErrorKind(StrEnum):
    """Tag attached to the last error surfaced to the UI layer."""

    SESSION_EXPIRED = "SESSION_EXPIRED"
    LOAD_ERROR = "LOAD_ERROR"
    API_ERROR = "API_ERROR"
    AUTH_ERROR = "AUTH_ERROR"


class RunError(BaseModel):
    """Last error recorded by the orchestrator."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    status_code: int | None = None


class RunState(StrEnum):
    """Aggregation run lifecycle."""

    IDLE = "idle"
    VALIDATING = "validating"
    FETCHING = "fetching"
    REDUCING = "reducing"
    COMMITTED = "committed"
    FAILED = "failed"


class RunOutcome(BaseModel):
    """Result of one admitted aggregation run."""

    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: RunState = RunState.IDLE
    attempts: int = 0
    placeholder: bool = False
    superseded: bool = False
    error: RunError | None = None
