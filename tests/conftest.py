"""Shared test fixtures for the agendaboard test suite."""

from __future__ import annotations

from collections.abc import Callable

import pytest
from factories import TEST_CLIENT_ID, FakeFetcher, mint_jwt

from agendaboard.calendar.session import SessionManager


@pytest.fixture
def make_jwt() -> Callable[..., str]:
    return mint_jwt


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def signed_in_sessions() -> SessionManager:
    """A SessionManager holding a fresh session with a granted access token."""
    sessions = SessionManager(client_id=TEST_CLIENT_ID)
    sessions.sign_in(mint_jwt())
    sessions.grant_access_token("ya29.test-access-token", 3600)
    return sessions
