"""Shared fixtures for agenda API tests.

The app is backed by a real ``AgendaService`` whose Calendar API client talks
to ``FakeCalendarApi`` through ``httpx.MockTransport``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx
import pytest
from factories import TEST_CLIENT_ID
from fastapi import FastAPI

from agendaboard.api.app import create_app
from agendaboard.config import Environment, parse_config
from agendaboard.service import AgendaService


class FakeCalendarApi:
    """Minimal stand-in for the calendarList and events.list endpoints."""

    def __init__(self) -> None:
        self.calendars: list[dict[str, Any]] = [
            {"id": "primary", "summary": "Aiko", "primary": True},
            {"id": "team", "summary": "Team"},
        ]
        self.events: dict[str, list[dict[str, Any]]] = {
            "primary": [
                {
                    "id": "standup",
                    "summary": "Standup",
                    "start": {"dateTime": "2025-04-17T09:00:00+09:00"},
                    "end": {"dateTime": "2025-04-17T10:00:00+09:00"},
                }
            ],
            "team": [
                {
                    "id": "offsite",
                    "summary": "Offsite",
                    "start": {"date": "2025-04-17"},
                    "end": {"date": "2025-04-19"},
                }
            ],
        }
        self.status_code = 200
        self.calendar_list_status_code = 200
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(
                self.status_code, json={"error": {"message": "Invalid Credentials"}}
            )
        path = request.url.path
        if path.endswith("/users/me/calendarList"):
            if self.calendar_list_status_code != 200:
                return httpx.Response(
                    self.calendar_list_status_code, json={"error": {"message": "Backend Error"}}
                )
            return httpx.Response(200, json={"items": self.calendars})
        for calendar_id, items in self.events.items():
            if path.endswith(f"/calendars/{calendar_id}/events"):
                return httpx.Response(200, json={"items": items})
        return httpx.Response(404, json={"error": {"message": "Not Found"}})

    def event_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/events")]


@pytest.fixture
def calendar_api() -> FakeCalendarApi:
    return FakeCalendarApi()


@pytest.fixture
def service(calendar_api: FakeCalendarApi) -> AgendaService:
    config = parse_config(
        {
            "agenda": {"timezone": "Asia/Tokyo", "retry": {"max_attempts": 1}},
            "google": {"client_id": TEST_CLIENT_ID},
        },
        environment=Environment.DEVELOPMENT,
    )
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(calendar_api))
    return AgendaService(config, http_client=http_client)


@pytest.fixture
def app(service: AgendaService) -> FastAPI:
    return create_app(service)


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
