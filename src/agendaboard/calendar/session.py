"""Sign-in session lifecycle: credential callback, bearer grant, logout."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError

from agendaboard.calendar.errors import SessionExpiredError, TokenInvalidError
from agendaboard.calendar.models import Identity, Session
from agendaboard.calendar.token_guard import decode_claims

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN_SECONDS = 3600


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, int | float):
        return int(value) if value > 0 else DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return DEFAULT_EXPIRES_IN_SECONDS
        return parsed if parsed > 0 else DEFAULT_EXPIRES_IN_SECONDS
    return DEFAULT_EXPIRES_IN_SECONDS


def _audience_matches(claim: Any, client_id: str) -> bool:
    if isinstance(claim, str):
        return claim == client_id
    if isinstance(claim, list):
        return client_id in claim
    return False


class SessionManager:
    """Holds the current ``Session`` and the logout epoch.

    Every ``logout()``, and every sign-in that replaces an existing session,
    bumps ``epoch``; work started under an older epoch must discard its result.
    """

    def __init__(
        self,
        *,
        client_id: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client_id = client_id or None
        self._clock = clock or (lambda: datetime.now(UTC))
        self._session: Session | None = None
        self._epoch = 0

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def signed_in(self) -> bool:
        return self._session is not None

    def sign_in(self, credential: str) -> Session:
        """Create a session from the identity issuer's ``{credential}`` callback."""
        if not isinstance(credential, str) or not credential.strip():
            raise TokenInvalidError("Sign-in credential is empty")
        credential = credential.strip()
        try:
            claims = decode_claims(credential)
        except (JWTError, ValueError) as exc:
            raise TokenInvalidError(f"Sign-in credential could not be decoded: {exc}") from exc

        if self._client_id and not _audience_matches(claims.get("aud"), self._client_id):
            raise TokenInvalidError("Sign-in credential was issued for a different client")

        name = claims.get("name") or claims.get("email") or claims.get("sub")
        if not isinstance(name, str) or not name.strip():
            raise TokenInvalidError("Sign-in credential carries no usable name, email or sub")
        email = claims.get("email") if isinstance(claims.get("email"), str) else None

        exp = claims.get("exp")
        if isinstance(exp, int | float) and not isinstance(exp, bool):
            expires_at = datetime.fromtimestamp(exp, UTC)
        else:
            expires_at = self._clock() + timedelta(seconds=DEFAULT_EXPIRES_IN_SECONDS)

        session = Session(
            identity=Identity(name=name.strip(), email=email),
            id_token=credential,
            bearer_token=credential,
            expires_at=expires_at,
        )
        if self._session is not None:
            logger.info("Replacing session for %s", self._session.identity.name)
            self._epoch += 1
        self._session = session
        logger.info("Signed in as %s", session.identity.name)
        return session

    def grant_access_token(self, access_token: str, expires_in: Any = None) -> Session:
        """Apply a bearer-token issuer ``{access_token, expires_in}`` response."""
        if self._session is None:
            raise SessionExpiredError("Cannot apply an access token without a signed-in session")
        if not isinstance(access_token, str) or not access_token.strip():
            raise TokenInvalidError("Access token response is missing a non-empty access_token")

        expires_at = self._clock() + timedelta(seconds=_coerce_expires_in_seconds(expires_in))
        self._session = self._session.model_copy(
            update={"bearer_token": access_token.strip(), "expires_at": expires_at}
        )
        logger.debug("Calendar access token granted until %s", expires_at.isoformat())
        return self._session

    def logout(self) -> None:
        if self._session is not None:
            logger.info("Signing out %s", self._session.identity.name)
        self._session = None
        self._epoch += 1
