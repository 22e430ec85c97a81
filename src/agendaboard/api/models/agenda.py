"""Agenda, calendar and session API models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from agendaboard.calendar.models import (
    CalendarInfo,
    DayEvent,
    Identity,
    RunError,
    RunOutcome,
    RunState,
)


class AgendaDay(BaseModel):
    """One day of the window with its ordered entries."""

    key: str
    label: str
    events: list[DayEvent] = Field(default_factory=list)


class AgendaView(BaseModel):
    """Snapshot of the orchestrator's observable state."""

    start_date: str
    window_days: int
    days: list[AgendaDay]
    loading: bool
    state: RunState
    error: RunError | None = None
    visible_calendars: list[str] = Field(default_factory=list)
    identity: Identity | None = None


class RefreshResult(BaseModel):
    """Outcome of an admitted aggregation run plus the resulting agenda."""

    outcome: RunOutcome
    agenda: AgendaView


class CalendarList(BaseModel):
    calendars: list[CalendarInfo]
    visible_calendars: list[str]


class VisibleCalendarsRequest(BaseModel):
    calendar_ids: list[str]


class SignInRequest(BaseModel):
    """Identity issuer callback, optionally carrying the calendar access grant."""

    credential: str
    access_token: str | None = None
    expires_in: int | str | None = None


class TokenGrantRequest(BaseModel):
    access_token: str
    expires_in: int | str | None = None


class SessionView(BaseModel):
    signed_in: bool
    identity: Identity | None = None
    expires_at: datetime | None = None
