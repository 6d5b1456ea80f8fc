"""Notification senders for price alerts.

The alert job only decides *that* and *what* to notify; delivery is
delegated to one of these. SendGrid is used when an API key is configured,
otherwise alerts are just logged.
"""
from __future__ import annotations

import logging
from typing import Protocol

import httpx

from config.settings import settings

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class Notifier(Protocol):
    async def send_price_alert(
        self, recipient: str, product_title: str, old_price: float, new_price: float, url: str
    ) -> None: ...


class LoggingNotifier:
    """Dev/default sender, records the alert in the logs only."""

    async def send_price_alert(self, recipient, product_title, old_price, new_price, url) -> None:
        logger.info(
            "price_drop_detected: recipient=%s product=%r old=%.2f new=%.2f url=%s",
            recipient, product_title, old_price, new_price, url,
        )


class SendGridNotifier:
    """Email delivery through the SendGrid v3 API."""

    def __init__(self, api_key: str, from_email: str, timeout: float = 10.0):
        self.api_key = api_key
        self.from_email = from_email
        self.timeout = timeout

    def _payload(self, recipient, product_title, old_price, new_price, url) -> dict:
        subject = f"Price drop: {product_title}"
        body = (
            f"Good news! {product_title} dropped from {old_price:.2f} to {new_price:.2f}.\n\n"
            f"Buy now: {url}"
        )
        return {
            "personalizations": [{"to": [{"email": recipient}]}],
            "from": {"email": self.from_email},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }

    async def send_price_alert(self, recipient, product_title, old_price, new_price, url) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                SENDGRID_URL,
                json=self._payload(recipient, product_title, old_price, new_price, url),
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            resp.raise_for_status()
        logger.info("Price alert emailed to %s for %r", recipient, product_title)


def build_notifier() -> Notifier:
    if settings.SENDGRID_API_KEY:
        return SendGridNotifier(settings.SENDGRID_API_KEY, settings.ALERT_FROM_EMAIL)
    logger.warning("SENDGRID_API_KEY not set, price alerts will only be logged")
    return LoggingNotifier()
