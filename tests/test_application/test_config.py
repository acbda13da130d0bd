"""
Tests for settings loading
"""
from agencyflow.config import Settings


def test_env_overrides_defaults(monkeypatch):
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("REPORTS_INTERVAL_MINUTES", "15")
    monkeypatch.setenv("NOTIFICATION_WEBHOOK_URL", "https://hooks.example.com/T1")

    settings = Settings(_env_file=None)

    assert settings.SCHEDULER_ENABLED is False
    assert settings.REPORTS_INTERVAL_MINUTES == 15
    assert settings.NOTIFICATION_WEBHOOK_URL == "https://hooks.example.com/T1"


def test_scheduling_is_utc_only():
    # jobs and time_of_day are UTC throughout; no per-deployment zone to misconfigure
    assert "TIMEZONE" not in Settings.model_fields
    assert Settings(_env_file=None).ARCHIVE_SWEEP_HOUR_UTC == 3


def test_sqlalchemy_url_uses_psycopg_driver():
    settings = Settings(_env_file=None, DATABASE_URL="postgresql://u:p@db:5432/agencyflow")
    assert settings.get_sqlalchemy_url() == "postgresql+psycopg://u:p@db:5432/agencyflow"
    assert settings.get_psycopg_dsn() == "postgresql://u:p@db:5432/agencyflow"
