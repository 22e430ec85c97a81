"""Agendaboard configuration loading and validation.

Reads ``agendaboard.toml``, resolves ``${VAR}`` references, parses all
sections, and returns a validated AgendaboardConfig dataclass. A missing file
yields the defaults.
"""

from __future__ import annotations

import enum
import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from agendaboard.calendar.google import DEFAULT_TIMEOUT_SECONDS, GOOGLE_CALENDAR_API_BASE_URL

CONFIG_FILE_NAME = "agendaboard.toml"
ENVIRONMENT_VAR = "AGENDABOARD_ENV"

# Pattern matching ${VAR_NAME}: alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_LOG_FORMATS = frozenset({"text", "json"})


class ConfigError(Exception):
    """Raised when agendaboard configuration is malformed or invalid."""


class Environment(enum.StrEnum):
    """Deployment profile selecting the default log level."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"

    @property
    def default_log_level(self) -> str:
        return "DEBUG" if self is Environment.DEVELOPMENT else "ERROR"


@dataclass
class RetryConfig:
    """Run-level retry from [agenda.retry]."""

    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 8.0


@dataclass
class CacheConfig:
    """DateWindow cache from [agenda.cache]."""

    ttl_seconds: float = 3600.0


@dataclass
class AgendaConfig:
    """Aggregation settings from [agenda]."""

    window_days: int = 7
    timezone: str | None = None
    sort_by_start_time: bool = True
    calendars: tuple[str, ...] = ()
    retry: RetryConfig = field(default_factory=RetryConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)

    @property
    def tzinfo(self) -> ZoneInfo | None:
        return ZoneInfo(self.timezone) if self.timezone else None


@dataclass
class GoogleConfig:
    """Calendar API settings from [google]."""

    client_id: str | None = None
    api_base_url: str = GOOGLE_CALENDAR_API_BASE_URL
    timeout_s: float = DEFAULT_TIMEOUT_SECONDS


@dataclass
class LoggingConfig:
    """Logging configuration from [logging]."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class ApiConfig:
    """HTTP surface from [api]."""

    host: str = "127.0.0.1"
    port: int = 8040
    cors_origins: tuple[str, ...] = ()


@dataclass
class AgendaboardConfig:
    """Parsed agendaboard.toml."""

    environment: Environment = Environment.DEVELOPMENT
    agenda: AgendaConfig = field(default_factory=AgendaConfig)
    google: GoogleConfig = field(default_factory=GoogleConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    api: ApiConfig = field(default_factory=ApiConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def resolve_environment(value: str | None = None) -> Environment:
    """Return the deployment profile from *value* or ``AGENDABOARD_ENV``."""
    raw = value if value is not None else os.environ.get(ENVIRONMENT_VAR, "")
    raw = raw.strip().lower()
    if not raw:
        return Environment.DEVELOPMENT
    try:
        return Environment(raw)
    except ValueError:
        allowed = ", ".join(e.value for e in Environment)
        raise ConfigError(
            f"Invalid {ENVIRONMENT_VAR}: {raw!r}. Must be one of: {allowed}"
        ) from None


def _section(data: dict, key: str, path: str) -> dict:
    section = data.get(key, {})
    if not isinstance(section, dict):
        raise ConfigError(f"{path} must be a TOML table")
    return section


def _optional_text(value: Any, path: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{path} must be a string when set")
    return value.strip() or None


def _string_list(value: Any, path: str) -> tuple[str, ...]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"{path} must be a list of strings")
    return tuple(item.strip() for item in value if item.strip())


def _number(value: Any, path: str, *, integer: bool = False) -> Any:
    allowed = (int,) if integer else (int, float)
    if isinstance(value, bool) or not isinstance(value, allowed):
        kind = "an integer" if integer else "a number"
        raise ConfigError(f"{path} must be {kind}, got {value!r}")
    return value


def _parse_agenda(data: dict) -> AgendaConfig:
    section = _section(data, "agenda", "agenda")

    window_days = _number(section.get("window_days", 7), "agenda.window_days", integer=True)
    if window_days <= 0:
        raise ConfigError(
            f"Invalid agenda.window_days: {window_days!r}. Must be a positive integer."
        )

    timezone = _optional_text(section.get("timezone"), "agenda.timezone")
    if timezone is not None:
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigError(f"Unknown agenda.timezone: {timezone!r}") from exc

    sort_by_start_time = section.get("sort_by_start_time", True)
    if not isinstance(sort_by_start_time, bool):
        raise ConfigError("agenda.sort_by_start_time must be a boolean")

    calendars = _string_list(section.get("calendars", []), "agenda.calendars")

    retry_section = _section(section, "retry", "agenda.retry")
    retry = RetryConfig(
        max_attempts=_number(
            retry_section.get("max_attempts", 3), "agenda.retry.max_attempts", integer=True
        ),
        base_delay_s=float(
            _number(retry_section.get("base_delay_s", 1.0), "agenda.retry.base_delay_s")
        ),
        max_delay_s=float(
            _number(retry_section.get("max_delay_s", 8.0), "agenda.retry.max_delay_s")
        ),
    )
    if retry.max_attempts < 1:
        raise ConfigError(
            f"Invalid agenda.retry.max_attempts: {retry.max_attempts!r}. Must be at least 1."
        )
    if retry.base_delay_s <= 0:
        raise ConfigError("agenda.retry.base_delay_s must be positive")
    if retry.max_delay_s < retry.base_delay_s:
        raise ConfigError("agenda.retry.max_delay_s must be >= agenda.retry.base_delay_s")

    cache_section = _section(section, "cache", "agenda.cache")
    ttl = float(_number(cache_section.get("ttl_seconds", 3600), "agenda.cache.ttl_seconds"))
    if ttl <= 0:
        raise ConfigError("agenda.cache.ttl_seconds must be positive")

    return AgendaConfig(
        window_days=window_days,
        timezone=timezone,
        sort_by_start_time=sort_by_start_time,
        calendars=calendars,
        retry=retry,
        cache=CacheConfig(ttl_seconds=ttl),
    )


def _parse_google(data: dict) -> GoogleConfig:
    section = _section(data, "google", "google")
    base_url = _optional_text(section.get("api_base_url"), "google.api_base_url")
    timeout = float(_number(section.get("timeout_s", DEFAULT_TIMEOUT_SECONDS), "google.timeout_s"))
    if timeout <= 0:
        raise ConfigError("google.timeout_s must be positive")
    return GoogleConfig(
        client_id=_optional_text(section.get("client_id"), "google.client_id"),
        api_base_url=(base_url or GOOGLE_CALENDAR_API_BASE_URL).rstrip("/"),
        timeout_s=timeout,
    )


def _parse_logging(data: dict, environment: Environment) -> LoggingConfig:
    section = _section(data, "logging", "logging")
    level = _optional_text(section.get("level"), "logging.level")
    level = level.upper() if level else environment.default_log_level
    if level not in _LOG_LEVELS:
        raise ConfigError(
            f"Invalid logging.level: {level!r}. Must be one of: {', '.join(sorted(_LOG_LEVELS))}"
        )
    fmt = _optional_text(section.get("format"), "logging.format") or "text"
    if fmt not in _LOG_FORMATS:
        raise ConfigError(f"Invalid logging.format: {fmt!r}. Must be 'text' or 'json'")
    return LoggingConfig(
        level=level,
        format=fmt,
        log_root=_optional_text(section.get("log_root"), "logging.log_root"),
    )


def _parse_api(data: dict) -> ApiConfig:
    section = _section(data, "api", "api")
    host = _optional_text(section.get("host"), "api.host") or "127.0.0.1"
    port = _number(section.get("port", 8040), "api.port", integer=True)
    if not 0 < port < 65536:
        raise ConfigError(f"Invalid api.port: {port!r}. Must be between 1 and 65535.")
    return ApiConfig(
        host=host,
        port=port,
        cors_origins=_string_list(section.get("cors_origins", []), "api.cors_origins"),
    )


def parse_config(data: dict, *, environment: Environment | None = None) -> AgendaboardConfig:
    """Validate an already-decoded TOML document."""
    environment = environment or resolve_environment()
    data = resolve_env_vars(data)
    return AgendaboardConfig(
        environment=environment,
        agenda=_parse_agenda(data),
        google=_parse_google(data),
        logging=_parse_logging(data, environment),
        api=_parse_api(data),
    )


def load_config(path: Path | None = None) -> AgendaboardConfig:
    """Load and validate an agendaboard.toml.

    Parameters
    ----------
    path:
        Path to the TOML file, or a directory containing ``agendaboard.toml``.
        ``None`` or a missing file yields the defaults.

    Raises
    ------
    ConfigError
        If the file contains invalid TOML or fails validation.
    """
    if path is None:
        return parse_config({})

    toml_path = Path(path)
    if toml_path.is_dir():
        toml_path = toml_path / CONFIG_FILE_NAME

    if not toml_path.exists():
        return parse_config({})

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)
