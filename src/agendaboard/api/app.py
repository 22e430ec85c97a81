"""Agenda API: FastAPI application factory.

The app factory creates a FastAPI instance with:
- CORS middleware (configurable origins)
- Lifespan handler that closes the Calendar API client on shutdown
- Health endpoint at GET /api/health
- Agenda and session routers
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agendaboard.api.deps import wire_service
from agendaboard.api.middleware import register_error_handlers
from agendaboard.api.routers.agenda import router as agenda_router
from agendaboard.api.routers.session import router as session_router
from agendaboard.service import AgendaService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Release the service's HTTP client when the server stops."""
    yield
    service = getattr(app.state, "service", None)
    if service is not None:
        await service.shutdown()
        logger.info("Agenda service shut down")


def create_app(
    service: AgendaService | None = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    service:
        The process's ``AgendaService``. When omitted, routes fail until
        ``get_service`` is overridden (as tests do).
    cors_origins:
        Allowed CORS origins. Defaults to the service's ``api.cors_origins``,
        or none.
    """
    if cors_origins is None:
        cors_origins = list(service.config.api.cors_origins) if service is not None else []

    app = FastAPI(
        title="Agendaboard API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False

    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_error_handlers(app)

    app.include_router(agenda_router)
    app.include_router(session_router)

    if service is not None:
        wire_service(app, service)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app
