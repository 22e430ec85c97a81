"""Session endpoints: identity sign-in, calendar access grant, logout."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from agendaboard.api.deps import get_service
from agendaboard.api.models import ApiResponse
from agendaboard.api.models.agenda import SessionView, SignInRequest, TokenGrantRequest
from agendaboard.service import AgendaService

router = APIRouter(prefix="/api/session", tags=["session"])


def _session_view(service: AgendaService) -> SessionView:
    session = service.session
    if session is None:
        return SessionView(signed_in=False)
    return SessionView(signed_in=True, identity=session.identity, expires_at=session.expires_at)


@router.get("", response_model=ApiResponse[SessionView])
async def get_session(
    service: AgendaService = Depends(get_service),
) -> ApiResponse[SessionView]:
    return ApiResponse[SessionView](data=_session_view(service))


@router.post("", response_model=ApiResponse[SessionView])
async def sign_in(
    body: SignInRequest,
    service: AgendaService = Depends(get_service),
) -> ApiResponse[SessionView]:
    """Sign in with the identity issuer's credential.

    An undecodable or mismatched credential responds 401 ``AUTH_ERROR``.
    """
    await service.sign_in(
        body.credential,
        access_token=body.access_token,
        expires_in=body.expires_in,
    )
    return ApiResponse[SessionView](data=_session_view(service))


@router.post("/token", response_model=ApiResponse[SessionView])
async def grant_token(
    body: TokenGrantRequest,
    service: AgendaService = Depends(get_service),
) -> ApiResponse[SessionView]:
    """Apply a calendar access grant, then reload calendars and the agenda."""
    await service.grant_access_token(body.access_token, body.expires_in)
    return ApiResponse[SessionView](data=_session_view(service))


@router.delete("", response_model=ApiResponse[SessionView])
async def logout(
    service: AgendaService = Depends(get_service),
) -> ApiResponse[SessionView]:
    service.logout()
    return ApiResponse[SessionView](data=_session_view(service))
