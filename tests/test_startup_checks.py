"""Tests for startup configuration validation."""
from types import SimpleNamespace

import pytest

from src.startup_checks import DEFAULT_JWT_SECRET, invalid_cron_settings, validate_settings


def _config(**overrides):
    values = dict(
        DATABASE_URL="sqlite+aiosqlite:///./affiliate.db",
        JWT_SECRET=DEFAULT_JWT_SECRET,
        CORS_ORIGINS=["*"],
        ADMIN_API_KEY="admin",
        SENDGRID_API_KEY="sg-key",
        JOB_CONCURRENCY=1,
        DEFAULT_COMMISSION_RATE=5.0,
        PRICE_ALERT_CRON="0 8 * * *",
        TRENDING_CRON="0 2 * * mon",
        MONTHLY_ROLLUP_CRON="0 0 1 * *",
        RETENTION_CRON="0 3 * * *",
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_clean_dev_config_has_no_warnings():
    assert validate_settings(_config()) == []


def test_default_secret_fatal_in_production():
    with pytest.raises(SystemExit):
        validate_settings(_config(DATABASE_URL="postgresql+asyncpg://db/affiliate"))


def test_real_secret_in_production_passes():
    warnings = validate_settings(_config(
        DATABASE_URL="postgresql+asyncpg://db/affiliate",
        JWT_SECRET="s3cret",
        CORS_ORIGINS=["https://app.example.com"],
    ))
    assert warnings == []


def test_wildcard_cors_warned_in_production():
    warnings = validate_settings(_config(DATABASE_URL="postgresql://db/x", JWT_SECRET="s3cret"))
    assert any("CORS_ORIGINS" in w for w in warnings)


def test_invalid_cron_is_fatal():
    config = _config(TRENDING_CRON="every monday")
    assert invalid_cron_settings(config) == ["TRENDING_CRON"]
    with pytest.raises(SystemExit):
        validate_settings(config)


def test_commission_rate_out_of_range_is_fatal():
    with pytest.raises(SystemExit):
        validate_settings(_config(DEFAULT_COMMISSION_RATE=120))


def test_missing_keys_are_warnings():
    warnings = validate_settings(_config(ADMIN_API_KEY="", SENDGRID_API_KEY="", JOB_CONCURRENCY=0))
    assert len(warnings) == 3
