"""CLI for agendaboard: print the rolling agenda or serve it over HTTP."""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import date, datetime
from pathlib import Path

import click

from agendaboard.calendar.errors import TokenInvalidError
from agendaboard.calendar.models import DayIndex, RunOutcome, RunState
from agendaboard.calendar.window import format_date_label
from agendaboard.config import CONFIG_FILE_NAME, AgendaboardConfig, ConfigError, load_config
from agendaboard.service import AgendaService

logger = logging.getLogger(__name__)

ALL_DAY_LABEL = "終日"

_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help=f"Path to {CONFIG_FILE_NAME} (or its directory); defaults apply when absent",
)


@click.group()
@click.version_option(version="0.1.0")
def cli() -> None:
    """Agendaboard: a rolling multi-day agenda across Google calendars."""


def _load_config_or_exit(config_path: Path | None) -> AgendaboardConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Invalid configuration: {exc}", err=True)
        sys.exit(1)


def render_agenda(keys: tuple[str, ...], index: DayIndex) -> list[str]:
    """Format the agenda as one header line per day followed by its entries."""
    lines: list[str] = []
    for key in keys:
        lines.append(f"{key} {format_date_label(key)}")
        events = index.get(key, [])
        if not events:
            lines.append("  (no events)")
        for event in events:
            when = ALL_DAY_LABEL if event.all_day else f"{event.start_time}-{event.end_time}"
            suffix = " (multi-day)" if event.is_multi_day else ""
            lines.append(f"  {when:<11} {event.summary}{suffix}")
    return lines


async def _show(
    config: AgendaboardConfig,
    start: date | None,
    days: int | None,
    credential: str | None,
    token: str | None,
) -> tuple[RunOutcome, list[str]]:
    service = AgendaService(config)
    service.configure_process()
    try:
        if credential:
            service.orchestrator.sign_in(credential)
            if token:
                service.sessions.grant_access_token(token)
                await service.load_calendars()
                if service.orchestrator.error is not None:
                    return RunOutcome(state=RunState.FAILED, error=service.orchestrator.error), []
        outcome = await service.refresh(start, window_days=days)
        orchestrator = service.orchestrator
        return outcome, render_agenda(orchestrator.window_keys, orchestrator.index)
    finally:
        await service.shutdown()


@cli.command()
@_config_option
@click.option(
    "--start",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="First day of the window (YYYY-MM-DD); defaults to today",
)
@click.option("--days", type=click.IntRange(min=1), default=None, help="Window length in days")
@click.option(
    "--credential",
    envvar="AGENDABOARD_CREDENTIAL",
    default=None,
    help="Identity token (JWT); without it sample events are shown",
)
@click.option(
    "--token",
    envvar="AGENDABOARD_ACCESS_TOKEN",
    default=None,
    help="Calendar API access token (requires --credential)",
)
def show(
    config_path: Path | None,
    start: datetime | None,
    days: int | None,
    credential: str | None,
    token: str | None,
) -> None:
    """Run one aggregation and print the agenda grouped by day."""
    if token and not credential:
        raise click.UsageError("--token requires --credential")
    config = _load_config_or_exit(config_path)

    try:
        outcome, lines = asyncio.run(
            _show(config, start.date() if start else None, days, credential, token)
        )
    except TokenInvalidError as exc:
        click.echo(f"Sign-in failed: {exc}", err=True)
        sys.exit(1)

    if outcome.placeholder:
        click.echo("Not signed in; showing sample events.")
    for line in lines:
        click.echo(line)

    if outcome.error is not None:
        click.echo(f"Error ({outcome.error.kind}): {outcome.error.message}", err=True)
        sys.exit(1)


@cli.command()
@_config_option
@click.option("--host", default=None, help="Bind address (defaults to api.host)")
@click.option("--port", type=int, default=None, help="Port (defaults to api.port)")
def serve(config_path: Path | None, host: str | None, port: int | None) -> None:
    """Serve the agenda API with uvicorn."""
    import uvicorn

    from agendaboard.api.app import create_app

    config = _load_config_or_exit(config_path)
    service = AgendaService(config)
    service.configure_process()

    bind_host = host or config.api.host
    bind_port = port or config.api.port
    click.echo(f"Serving agendaboard API on http://{bind_host}:{bind_port}")
    uvicorn.run(create_app(service), host=bind_host, port=bind_port, log_config=None)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
