import json
import logging

from timetrack.core.config import DEFAULT_DATABASE_URL, get_settings
from timetrack.core.logging import JsonFormatter


def test_settings_defaults(monkeypatch):
    for name in ("DATABASE_URL", "LOG_LEVEL", "LOCK_TIMEOUT_SECONDS", "REDIS_URL", "CACHE_TTL_SECONDS",
                 "CACHE_SOCKET_TIMEOUT_SECONDS"):
        monkeypatch.delenv(name, raising=False)

    settings = get_settings()

    assert settings.database_url == DEFAULT_DATABASE_URL
    assert settings.log_level == "INFO"
    assert settings.lock_timeout_seconds == 5.0
    assert settings.redis_url is None
    assert settings.cache_ttl_seconds == 3600
    assert settings.cache_socket_timeout_seconds == 1.0


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("LOCK_TIMEOUT_SECONDS", "0.25")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
    monkeypatch.setenv("CACHE_TTL_SECONDS", "60")
    monkeypatch.setenv("CACHE_SOCKET_TIMEOUT_SECONDS", "0.5")

    settings = get_settings()

    assert settings.log_level == "DEBUG"
    assert settings.lock_timeout_seconds == 0.25
    assert settings.redis_url == "redis://cache:6379/1"
    assert settings.cache_ttl_seconds == 60
    assert settings.cache_socket_timeout_seconds == 0.5


def test_invalid_numbers_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("LOCK_TIMEOUT_SECONDS", "soon")
    monkeypatch.setenv("CACHE_TTL_SECONDS", "")
    monkeypatch.setenv("CACHE_SOCKET_TIMEOUT_SECONDS", "-1")

    settings = get_settings()

    assert settings.lock_timeout_seconds == 5.0
    assert settings.cache_ttl_seconds == 3600
    assert settings.cache_socket_timeout_seconds == 1.0


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord(
        name="timetrack.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Time entry transition applied",
        args=(),
        exc_info=None,
    )
    record.time_entry_id = "e-1"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "INFO"
    assert payload["message"] == "Time entry transition applied"
    assert payload["extra"] == {"time_entry_id": "e-1"}
