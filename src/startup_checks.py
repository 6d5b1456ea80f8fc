"""Startup validation: catch misconfigurations before the app serves traffic."""
from __future__ import annotations

import logging
import sys

from apscheduler.triggers.cron import CronTrigger

from config.settings import settings

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = "affiliate-dev-secret-change-in-prod"

_CRON_SETTINGS = ("PRICE_ALERT_CRON", "TRENDING_CRON", "MONTHLY_ROLLUP_CRON", "RETENTION_CRON")


def invalid_cron_settings(config=settings) -> list[str]:
    """Names of cadence settings that are not valid crontab expressions."""
    bad = []
    for name in _CRON_SETTINGS:
        try:
            CronTrigger.from_crontab(getattr(config, name), timezone="UTC")
        except ValueError:
            bad.append(name)
    return bad


def validate_settings(config=settings) -> list[str]:
    """Validate configuration. Returns list of warnings (empty = all good).

    Raises SystemExit for critical misconfigurations.
    """
    warnings: list[str] = []
    is_prod = config.DATABASE_URL and "sqlite" not in config.DATABASE_URL

    # Critical: JWT secret must be changed in production
    if is_prod and config.JWT_SECRET == DEFAULT_JWT_SECRET:
        logger.critical("JWT_SECRET is still the default! Set a real secret for production.")
        sys.exit(1)

    # Critical: a bad cadence would silently never fire
    bad_crons = invalid_cron_settings(config)
    if bad_crons:
        logger.critical("Invalid cron expression in: %s", ", ".join(bad_crons))
        sys.exit(1)

    if not 0 <= config.DEFAULT_COMMISSION_RATE <= 100:
        logger.critical("DEFAULT_COMMISSION_RATE must be between 0 and 100")
        sys.exit(1)

    if is_prod and "*" in config.CORS_ORIGINS:
        warnings.append("CORS_ORIGINS is set to *, restrict in production")

    if not config.ADMIN_API_KEY:
        warnings.append("ADMIN_API_KEY not set, admin job and retention endpoints disabled")

    if not config.SENDGRID_API_KEY:
        warnings.append("SENDGRID_API_KEY not set, price alerts will only be logged")

    if config.JOB_CONCURRENCY < 1:
        warnings.append("JOB_CONCURRENCY < 1, treating as 1")

    for w in warnings:
        logger.warning("⚠️  %s", w)

    if not warnings:
        logger.info("✅ All startup checks passed")

    return warnings
