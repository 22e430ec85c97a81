"""Error hierarchy for the agenda aggregation engine.

Fetch-level failures (``CalendarRequestError``, ``CalendarTransportError``)
propagate to the orchestrator's retry loop. ``MalformedEventError`` never
leaves the expansion boundary. Credential problems raise
``TokenInvalidError`` / ``SessionExpiredError``.
"""

from __future__ import annotations

import re

ERROR_MESSAGE_MAX_CHARS = 200

_AUTH_MESSAGE_PATTERN = re.compile(
    r"unauthori[sz]ed|unauthenticated|invalid[ _-]?(credentials|token|grant)"
    r"|token (has )?expired|session expired|login required",
    re.IGNORECASE,
)


class AgendaError(RuntimeError):
    """Base error raised by the agenda engine."""


class CalendarRequestError(AgendaError):
    """Raised when the Calendar API answers with a non-2xx status."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Google Calendar API request failed ({status_code}): {message}")


class CalendarTransportError(AgendaError):
    """Raised when a Calendar API request cannot complete or returns unusable JSON."""


class MalformedEventError(AgendaError, ValueError):
    """Raised when a raw event cannot be expanded into day entries."""

    def __init__(self, event_id: str | None, reason: str) -> None:
        self.event_id = event_id
        self.reason = reason
        super().__init__(f"Event {event_id or '<unknown>'} is malformed: {reason}")


class TokenInvalidError(AgendaError):
    """Raised when a sign-in credential cannot be decoded or does not belong to us."""


class SessionExpiredError(AgendaError):
    """Raised when an operation needs a signed-in session and none is usable."""


def is_auth_failure(exc: BaseException) -> bool:
    """Return True when *exc* points at an authentication or session problem."""
    if isinstance(exc, TokenInvalidError | SessionExpiredError):
        return True
    if isinstance(exc, CalendarRequestError) and exc.status_code == 401:
        return True
    return _AUTH_MESSAGE_PATTERN.search(str(exc)) is not None


def redact_credential_values(message: str) -> str:
    """Redact token-looking values from an error message."""
    redacted = message
    # key=value style pairs
    redacted = re.sub(
        r"(?i)\b(client_secret|refresh_token|access_token|id_token|credential|token)"
        r"\s*=\s*([^\s,;]+)",
        r"\1=[REDACTED]",
        redacted,
    )
    # JSON/Python dict style quoted values
    redacted = re.sub(
        r"""(?i)(['"]?(?:client_secret|refresh_token|access_token|id_token|credential|token)"""
        r"""['"]?\s*:\s*)(['"]).*?\2""",
        r'\1"[REDACTED]"',
        redacted,
    )
    # key: value style pairs
    redacted = re.sub(
        r"(?i)\b(client_secret|refresh_token|access_token|id_token|credential|token)"
        r"\s*:\s*([^\s,;'\"]+)",
        r"\1: [REDACTED]",
        redacted,
    )
    # Bearer headers
    redacted = re.sub(r"(?i)\bBearer\s+[A-Za-z0-9._~+/=-]+", "Bearer [REDACTED]", redacted)
    return redacted


def sanitize_error_message(exc: BaseException | str) -> str:
    """Redact, whitespace-normalize and truncate an error for surfacing to callers."""
    raw_message = exc if isinstance(exc, str) else str(exc)
    if not raw_message and not isinstance(exc, str):
        raw_message = type(exc).__name__
    redacted = redact_credential_values(raw_message)
    return " ".join(redacted.split())[:ERROR_MESSAGE_MAX_CHARS]
