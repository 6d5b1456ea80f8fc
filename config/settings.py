"""App settings: loaded from environment."""
from __future__ import annotations

import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    # API
    API_HOST = os.getenv("API_HOST", "0.0.0.0")
    API_PORT = int(os.getenv("API_PORT", "8000"))

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///affiliate.db")

    # Auth
    JWT_SECRET = os.getenv("JWT_SECRET", "affiliate-dev-secret-change-in-prod")

    # Admin API key (for protected admin endpoints like job triggers)
    ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "")

    # CORS origins (comma-separated, or * for dev)
    CORS_ORIGINS = [
        o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")
    ]

    # Affiliate tags appended to outbound product links
    AMAZON_AFFILIATE_TAG = os.getenv("AMAZON_AFFILIATE_TAG", "smartcompare-20")
    FLIPKART_AFFILIATE_TAG = os.getenv("FLIPKART_AFFILIATE_TAG", "smartcompare")

    # Attribution
    DEFAULT_COMMISSION_RATE = float(os.getenv("DEFAULT_COMMISSION_RATE", "5"))  # percent
    ATTRIBUTION_WINDOW_DAYS = int(os.getenv("ATTRIBUTION_WINDOW_DAYS", "30"))

    # Trending
    TRENDING_WINDOW_DAYS = int(os.getenv("TRENDING_WINDOW_DAYS", "7"))
    TRENDING_TOP_N = int(os.getenv("TRENDING_TOP_N", "50"))

    # Retention
    RETENTION_BATCH_SIZE = int(os.getenv("RETENTION_BATCH_SIZE", "500"))

    # Job cadences (crontab syntax, evaluated in UTC)
    SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    PRICE_ALERT_CRON = os.getenv("PRICE_ALERT_CRON", "0 8 * * *")        # daily 08:00
    TRENDING_CRON = os.getenv("TRENDING_CRON", "0 2 * * mon")            # Mondays 02:00
    MONTHLY_ROLLUP_CRON = os.getenv("MONTHLY_ROLLUP_CRON", "0 0 1 * *")  # 1st of month
    RETENTION_CRON = os.getenv("RETENTION_CRON", "0 3 * * *")            # daily 03:00
    JOB_ITEM_TIMEOUT_SECONDS = float(os.getenv("JOB_ITEM_TIMEOUT_SECONDS", "30"))
    JOB_CONCURRENCY = int(os.getenv("JOB_CONCURRENCY", "1"))

    # Notifications (price alerts)
    SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY", "")
    ALERT_FROM_EMAIL = os.getenv("ALERT_FROM_EMAIL", "alerts@smartcompare.app")

    # Observability
    SENTRY_DSN = os.getenv("SENTRY_DSN", "")
    SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
    SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))

    # Logging
    LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
