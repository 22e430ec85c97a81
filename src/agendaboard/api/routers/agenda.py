"""Agenda endpoints: read the committed day index and trigger runs.

Provides a single router mounted at ``/api`` covering the agenda and the
calendar list / visibility selection.
"""

from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, Query

from agendaboard.api.deps import get_service
from agendaboard.api.models import ApiResponse
from agendaboard.api.models.agenda import (
    AgendaDay,
    AgendaView,
    CalendarList,
    RefreshResult,
    VisibleCalendarsRequest,
)
from agendaboard.calendar.window import format_date_key, format_date_label
from agendaboard.service import AgendaService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["agenda"])


def build_agenda_view(service: AgendaService) -> AgendaView:
    """Project the orchestrator's state onto the response model."""
    orchestrator = service.orchestrator
    index = orchestrator.index
    session = service.session
    return AgendaView(
        start_date=format_date_key(orchestrator.start_date),
        window_days=orchestrator.window_days,
        days=[
            AgendaDay(key=key, label=format_date_label(key), events=list(index.get(key, [])))
            for key in orchestrator.window_keys
        ],
        loading=orchestrator.loading,
        state=orchestrator.state,
        error=orchestrator.error,
        visible_calendars=list(orchestrator.visible_calendars),
        identity=session.identity if session is not None else None,
    )


def _calendar_list(service: AgendaService) -> CalendarList:
    orchestrator = service.orchestrator
    return CalendarList(
        calendars=list(orchestrator.calendars),
        visible_calendars=list(orchestrator.visible_calendars),
    )


# ---------------------------------------------------------------------------
# Agenda
# ---------------------------------------------------------------------------


@router.get("/agenda", response_model=ApiResponse[AgendaView])
async def get_agenda(
    service: AgendaService = Depends(get_service),
) -> ApiResponse[AgendaView]:
    """Return the committed agenda for the current window."""
    return ApiResponse[AgendaView](data=build_agenda_view(service))


@router.post("/agenda/refresh", response_model=ApiResponse[RefreshResult])
async def refresh_agenda(
    start: date | None = Query(None, description="First day of the window (YYYY-MM-DD)"),
    days: int | None = Query(None, ge=1, description="Window length in days"),
    service: AgendaService = Depends(get_service),
) -> ApiResponse[RefreshResult]:
    """Run one aggregation and return its outcome.

    Responds 409 ``RUN_IN_PROGRESS`` while another run is in flight.
    """
    outcome = await service.refresh(start, window_days=days)
    return ApiResponse[RefreshResult](
        data=RefreshResult(outcome=outcome, agenda=build_agenda_view(service))
    )


# ---------------------------------------------------------------------------
# Calendars
# ---------------------------------------------------------------------------


@router.get("/calendars", response_model=ApiResponse[CalendarList])
async def list_calendars(
    reload: bool = Query(False, description="Fetch the calendar list again first"),
    service: AgendaService = Depends(get_service),
) -> ApiResponse[CalendarList]:
    """Return the loaded calendar list and the visible selection."""
    if reload:
        await service.load_calendars()
    return ApiResponse[CalendarList](data=_calendar_list(service))


@router.put("/calendars/visible", response_model=ApiResponse[CalendarList])
async def set_visible_calendars(
    body: VisibleCalendarsRequest,
    service: AgendaService = Depends(get_service),
) -> ApiResponse[CalendarList]:
    """Replace the visible calendar selection and refresh the agenda."""
    known = {calendar.id for calendar in service.orchestrator.calendars}
    if known:
        unknown = sorted(set(body.calendar_ids) - known)
        if unknown:
            raise ValueError(f"Unknown calendar id(s): {', '.join(unknown)}")
    service.orchestrator.set_visible_calendars(body.calendar_ids)
    outcome = await service.orchestrator.run()
    if outcome is None:
        logger.info("Visibility change saved; refresh skipped while a run is in flight")
    return ApiResponse[CalendarList](data=_calendar_list(service))
