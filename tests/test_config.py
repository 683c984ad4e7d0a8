import logging

from occupancy.config import Settings
from occupancy.core.security import INSECURE_DEFAULT_SECRET, log_security_warnings


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("STALE_PENDING_HOURS", "48")
    monkeypatch.setenv("LEASE_REMINDER_DAYS", "[14, 3]")
    monkeypatch.setenv("LOG_FORMAT", "text")

    settings = Settings(_env_file=None)

    assert settings.stale_pending_hours == 48
    assert settings.lease_reminder_days == [14, 3]
    assert settings.log_format == "text"


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.jwt_algorithm == "HS256"
    assert settings.lease_reminder_days == [30, 15, 7, 1]


def test_insecure_defaults_are_logged(caplog):
    with caplog.at_level(logging.WARNING, logger="occupancy.core.security"):
        log_security_warnings(INSECURE_DEFAULT_SECRET, "sqlite:///./dev.db")

    assert "insecure default" in caplog.text
    assert "SQLite" in caplog.text


def test_security_headers_are_set(client_for):
    response = client_for().get("/health")

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
