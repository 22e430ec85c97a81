"""AgendaService: wires config, Calendar API client, session and orchestrator.

One instance backs either the CLI ``show`` command or the HTTP API.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Any

import httpx

from agendaboard.calendar.errors import AgendaError
from agendaboard.calendar.google import GoogleCalendarClient
from agendaboard.calendar.models import CalendarInfo, RunOutcome, Session
from agendaboard.calendar.orchestrator import AggregationOrchestrator, RetryPolicy
from agendaboard.calendar.session import SessionManager
from agendaboard.calendar.token_guard import TokenGuard
from agendaboard.calendar.window import DateWindow
from agendaboard.config import AgendaboardConfig
from agendaboard.core.logging import configure_logging
from agendaboard.core.telemetry import init_telemetry

logger = logging.getLogger(__name__)

SERVICE_NAME = "agendaboard"


class RunInProgressError(AgendaError):
    """Raised when a refresh is requested while another run is in flight."""


class AgendaService:
    """Central object for one agendaboard process."""

    def __init__(
        self,
        config: AgendaboardConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        agenda = config.agenda
        tz = agenda.tzinfo
        self.client = GoogleCalendarClient(
            base_url=config.google.api_base_url,
            timeout=config.google.timeout_s,
            http_client=http_client,
        )
        self.sessions = SessionManager(client_id=config.google.client_id)
        self.orchestrator = AggregationOrchestrator(
            self.client,
            self.sessions,
            window=DateWindow(ttl_seconds=agenda.cache.ttl_seconds),
            window_days=agenda.window_days,
            guard=TokenGuard(),
            retry=RetryPolicy(
                max_attempts=agenda.retry.max_attempts,
                base_delay_s=agenda.retry.base_delay_s,
                max_delay_s=agenda.retry.max_delay_s,
            ),
            tz=tz,
            sort_by_start_time=agenda.sort_by_start_time,
            calendar_allowlist=agenda.calendars,
        )

    def configure_process(self) -> None:
        """Install logging and tracing for this process."""
        log = self.config.logging
        configure_logging(
            level=log.level,
            fmt=log.format,
            log_root=Path(log.log_root) if log.log_root else None,
        )
        init_telemetry(SERVICE_NAME)
        logger.info(
            "agendaboard configured (env=%s, window_days=%d)",
            self.config.environment,
            self.config.agenda.window_days,
        )

    @property
    def session(self) -> Session | None:
        return self.sessions.session

    async def refresh(
        self,
        start_date: date | None = None,
        *,
        window_days: int | None = None,
    ) -> RunOutcome:
        outcome = await self.orchestrator.run(start_date, window_days=window_days)
        if outcome is None:
            raise RunInProgressError("An aggregation run is already in progress")
        return outcome

    async def sign_in(
        self,
        credential: str,
        *,
        access_token: str | None = None,
        expires_in: Any = None,
    ) -> Session | None:
        """Sign in with an identity credential, optionally granting calendar access."""
        session = self.orchestrator.sign_in(credential)
        if access_token:
            return await self.grant_access_token(access_token, expires_in)
        return session

    async def grant_access_token(
        self, access_token: str, expires_in: Any = None
    ) -> Session | None:
        """Apply a bearer grant, then reload calendars and the agenda.

        When the calendar list load fails, its error stays the surfaced state
        and no refresh runs. Returns the session, or ``None`` if the load tore
        it down.
        """
        session = self.sessions.grant_access_token(access_token, expires_in)
        previous_error = self.orchestrator.error
        await self.orchestrator.load_calendars()
        if self.sessions.session is None or self.orchestrator.error is not previous_error:
            logger.warning("Calendar list load failed; skipping agenda refresh")
            return self.sessions.session
        outcome = await self.orchestrator.run()
        if outcome is None:
            logger.info("Agenda refresh after token grant skipped; a run is in flight")
        return session

    async def load_calendars(self) -> tuple[CalendarInfo, ...]:
        return await self.orchestrator.load_calendars()

    def logout(self) -> None:
        self.orchestrator.logout()

    async def shutdown(self) -> None:
        await self.client.shutdown()
