"""FastAPI dependencies for the agenda API.

Routers depend on ``get_service``; ``wire_service`` overrides the stub with the
process's ``AgendaService`` at app creation (tests may override it too).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from agendaboard.service import AgendaService

if TYPE_CHECKING:
    from fastapi import FastAPI


def get_service() -> AgendaService:
    """Dependency stub -- overridden by ``wire_service`` or in tests."""
    raise RuntimeError("AgendaService not initialized")


def wire_service(app: FastAPI, service: AgendaService) -> None:
    """Bind *service* to every route depending on ``get_service``."""
    app.state.service = service
    app.dependency_overrides[get_service] = lambda: service
