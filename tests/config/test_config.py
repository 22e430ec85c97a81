"""Tests for agendaboard.toml loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from agendaboard.calendar.google import GOOGLE_CALENDAR_API_BASE_URL
from agendaboard.config import (
    CONFIG_FILE_NAME,
    ENVIRONMENT_VAR,
    ConfigError,
    Environment,
    load_config,
    parse_config,
    resolve_env_vars,
    resolve_environment,
)

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _clear_environment(monkeypatch):
    monkeypatch.delenv(ENVIRONMENT_VAR, raising=False)


def _write_toml(tmp_path: Path, content: str) -> Path:
    path = tmp_path / CONFIG_FILE_NAME
    path.write_text(content)
    return path


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_none_yields_defaults(self):
        config = load_config()
        assert config.environment is Environment.DEVELOPMENT
        assert config.agenda.window_days == 7
        assert config.agenda.timezone is None
        assert config.agenda.sort_by_start_time is True
        assert config.agenda.calendars == ()
        assert config.agenda.retry.max_attempts == 3
        assert config.agenda.cache.ttl_seconds == 3600.0
        assert config.google.api_base_url == GOOGLE_CALENDAR_API_BASE_URL
        assert config.google.client_id is None
        assert config.api.host == "127.0.0.1"
        assert config.api.port == 8040

    def test_missing_file_yields_defaults(self, tmp_path: Path):
        config = load_config(tmp_path / "missing.toml")
        assert config.agenda.window_days == 7

    def test_directory_path_reads_config_file(self, tmp_path: Path):
        _write_toml(tmp_path, "[agenda]\nwindow_days = 3\n")
        assert load_config(tmp_path).agenda.window_days == 3

    def test_full_document(self, tmp_path: Path):
        path = _write_toml(
            tmp_path,
            """
[agenda]
window_days = 14
timezone = "Asia/Tokyo"
sort_by_start_time = false
calendars = ["primary", " team@example.com ", ""]

[agenda.retry]
max_attempts = 5
base_delay_s = 0.5
max_delay_s = 4

[agenda.cache]
ttl_seconds = 60

[google]
client_id = "abc.apps.googleusercontent.com"
api_base_url = "http://localhost:9999/calendar/v3/"
timeout_s = 5

[logging]
level = "warning"
format = "json"
log_root = "/var/log/agendaboard"

[api]
host = "0.0.0.0"
port = 9000
cors_origins = ["http://localhost:5173"]
""",
        )
        config = load_config(path)

        assert config.agenda.window_days == 14
        assert config.agenda.timezone == "Asia/Tokyo"
        assert str(config.agenda.tzinfo) == "Asia/Tokyo"
        assert config.agenda.sort_by_start_time is False
        assert config.agenda.calendars == ("primary", "team@example.com")
        assert config.agenda.retry.max_attempts == 5
        assert config.agenda.retry.base_delay_s == 0.5
        assert config.agenda.retry.max_delay_s == 4.0
        assert config.agenda.cache.ttl_seconds == 60.0
        assert config.google.client_id == "abc.apps.googleusercontent.com"
        assert config.google.api_base_url == "http://localhost:9999/calendar/v3"
        assert config.google.timeout_s == 5.0
        assert config.logging.level == "WARNING"
        assert config.logging.format == "json"
        assert config.logging.log_root == "/var/log/agendaboard"
        assert config.api.host == "0.0.0.0"
        assert config.api.port == 9000
        assert config.api.cors_origins == ("http://localhost:5173",)

    def test_invalid_toml_raises(self, tmp_path: Path):
        path = _write_toml(tmp_path, "[agenda\nwindow_days = ")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(path)


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


class TestEnvVarResolution:
    def test_resolves_nested_values(self, monkeypatch):
        monkeypatch.setenv("AGENDA_CLIENT", "from-env")
        resolved = resolve_env_vars({"google": {"client_id": "${AGENDA_CLIENT}", "n": 3}})
        assert resolved == {"google": {"client_id": "from-env", "n": 3}}

    def test_resolves_inside_lists(self, monkeypatch):
        monkeypatch.setenv("TEAM_CAL", "team@example.com")
        assert resolve_env_vars(["primary", "${TEAM_CAL}"]) == ["primary", "team@example.com"]

    def test_missing_variables_reported_together(self, monkeypatch):
        monkeypatch.delenv("NOPE_ONE", raising=False)
        monkeypatch.delenv("NOPE_TWO", raising=False)
        with pytest.raises(ConfigError, match="NOPE_ONE, NOPE_TWO"):
            resolve_env_vars("${NOPE_ONE}-${NOPE_TWO}")

    def test_config_file_references_resolved(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("AGENDA_CLIENT", "env-client")
        path = _write_toml(tmp_path, '[google]\nclient_id = "${AGENDA_CLIENT}"\n')
        assert load_config(path).google.client_id == "env-client"


# ---------------------------------------------------------------------------
# Environment profile
# ---------------------------------------------------------------------------


class TestEnvironment:
    def test_default_is_development(self):
        assert resolve_environment() is Environment.DEVELOPMENT

    def test_reads_environment_variable(self, monkeypatch):
        monkeypatch.setenv(ENVIRONMENT_VAR, " Production ")
        assert resolve_environment() is Environment.PRODUCTION

    def test_invalid_value_raises(self):
        with pytest.raises(ConfigError, match=ENVIRONMENT_VAR):
            resolve_environment("staging")

    def test_development_defaults_to_debug(self):
        assert parse_config({}, environment=Environment.DEVELOPMENT).logging.level == "DEBUG"

    def test_production_defaults_to_error(self, monkeypatch):
        monkeypatch.setenv(ENVIRONMENT_VAR, "production")
        assert parse_config({}).logging.level == "ERROR"

    def test_explicit_level_overrides_profile(self):
        config = parse_config({"logging": {"level": "info"}}, environment=Environment.PRODUCTION)
        assert config.logging.level == "INFO"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    @pytest.mark.parametrize(
        ("data", "match"),
        [
            ({"agenda": {"window_days": 0}}, "window_days"),
            ({"agenda": {"window_days": "7"}}, "window_days"),
            ({"agenda": {"window_days": True}}, "window_days"),
            ({"agenda": {"timezone": "Mars/Olympus"}}, "timezone"),
            ({"agenda": {"sort_by_start_time": "yes"}}, "sort_by_start_time"),
            ({"agenda": {"calendars": "primary"}}, "calendars"),
            ({"agenda": {"retry": {"max_attempts": 0}}}, "max_attempts"),
            ({"agenda": {"retry": {"base_delay_s": 0}}}, "base_delay_s"),
            ({"agenda": {"retry": {"base_delay_s": 2, "max_delay_s": 1}}}, "max_delay_s"),
            ({"agenda": {"cache": {"ttl_seconds": -1}}}, "ttl_seconds"),
            ({"agenda": "seven"}, "TOML table"),
            ({"google": {"timeout_s": 0}}, "timeout_s"),
            ({"google": {"client_id": 42}}, "client_id"),
            ({"logging": {"level": "LOUD"}}, "logging.level"),
            ({"logging": {"format": "xml"}}, "logging.format"),
            ({"api": {"port": 70000}}, "api.port"),
        ],
    )
    def test_invalid_values_raise(self, data, match):
        with pytest.raises(ConfigError, match=match):
            parse_config(data, environment=Environment.DEVELOPMENT)

    def test_blank_timezone_is_unset(self):
        config = parse_config({"agenda": {"timezone": "  "}})
        assert config.agenda.timezone is None
        assert config.agenda.tzinfo is None
