"""Freshness checks for identity/bearer tokens before any fetch is attempted."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from jose import JWTError, jwt

from agendaboard.calendar.models import Session

logger = logging.getLogger(__name__)


def decode_claims(token: str) -> dict[str, Any]:
    """Decode a JWT's claims without verifying its signature.

    Raises:
        JWTError: when the token is not a decodable JWT.
    """
    claims = jwt.get_unverified_claims(token)
    if not isinstance(claims, dict):
        raise JWTError("Token claims must decode to a JSON object")
    return claims


def _claim_timestamp(claims: dict[str, Any], name: str) -> float | None:
    value = claims.get(name)
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value)


class TokenGuard:
    """Decide whether a token is still usable right now.

    ``is_valid`` never raises: malformed input is logged and reported as
    invalid.
    """

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))

    def is_valid(self, token: str | None) -> bool:
        if not isinstance(token, str) or not token.strip():
            return False
        try:
            claims = decode_claims(token.strip())
        except (JWTError, ValueError) as exc:
            logger.warning("Unable to decode token claims: %s", exc)
            return False

        now = self._clock().timestamp()
        expires_at = _claim_timestamp(claims, "exp")
        if expires_at is None:
            logger.warning("Token has no usable 'exp' claim")
            return False
        if expires_at <= now:
            logger.info("Token expired at %s", datetime.fromtimestamp(expires_at, UTC).isoformat())
            return False

        # A missing iat is accepted; a future one is not.
        issued_at = _claim_timestamp(claims, "iat")
        if issued_at is not None and issued_at > now:
            logger.warning("Token 'iat' claim is in the future")
            return False
        return True

    def is_session_valid(self, session: Session | None) -> bool:
        if session is None:
            return False
        if session.expires_at <= self._clock():
            logger.info("Session bearer token expired at %s", session.expires_at.isoformat())
            return False
        return self.is_valid(session.id_token)
