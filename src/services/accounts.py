"""Affiliate account factory and rate changes.

Password hashing and affiliate-id generation happen here, before the row is
ever added to a session, so the storage layer has no implicit side effects.
"""
from __future__ import annotations

import logging
import re
import secrets
import string
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.auth import hash_password
from src.db.affiliate_tables import AffiliateAccountRow
from src.db.repository import AffiliateAccountRepository, row_to_account
from src.errors import ValidationError
from src.models.affiliate import AffiliateAccount
from src.services.clock import system_clock
from src.services.commission import quantize_money, to_decimal

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_BASE36 = string.digits + string.ascii_lowercase


def generate_affiliate_id(clock=system_clock) -> str:
    """aff_<epoch millis>_<9 random base36 chars>."""
    millis = int(clock.now().timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"aff_{millis}_{suffix}"


def _validate_rate(rate) -> Decimal:
    rate = to_decimal(rate)
    if not rate.is_finite() or rate < 0 or rate > 100:
        raise ValidationError("Commission rate must be between 0 and 100")
    return quantize_money(rate)


async def create_affiliate_account(
    session: AsyncSession,
    name: str,
    email: str,
    password: str,
    commission_rate=None,
    phone: Optional[str] = None,
    clock=system_clock,
) -> AffiliateAccount:
    name = (name or "").strip()
    email = (email or "").strip().lower()
    if not name or len(name) > 50:
        raise ValidationError("Name is required and cannot exceed 50 characters")
    if not _EMAIL_RE.match(email):
        raise ValidationError("Please provide a valid email")
    if not password or len(password) < 6:
        raise ValidationError("Password must be at least 6 characters long")

    existing = await session.execute(
        select(AffiliateAccountRow.id).where(AffiliateAccountRow.email == email)
    )
    if existing.scalar_one_or_none():
        raise ValidationError("Email already registered")

    rate = _validate_rate(
        settings.DEFAULT_COMMISSION_RATE if commission_rate is None else commission_rate
    )
    now = clock.now()
    row = AffiliateAccountRow(
        id=str(uuid.uuid4()),
        affiliate_id=generate_affiliate_id(clock),
        name=name,
        email=email,
        password_hash=hash_password(password),
        phone=phone,
        commission_rate=rate,
        created_at=now,
        updated_at=now,
    )
    session.add(row)
    await session.flush()
    logger.info("Affiliate account created: affiliate=%s", row.affiliate_id)
    return row_to_account(row)


async def change_commission_rate(
    session: AsyncSession, affiliate_id: str, new_rate, clock=system_clock
) -> AffiliateAccount:
    """Explicit rate change. Already-converted clicks keep their commission."""
    rate = _validate_rate(new_rate)
    row = await AffiliateAccountRepository(session).get_row_by_affiliate_id(affiliate_id)
    old_rate = row.commission_rate
    row.commission_rate = rate
    row.updated_at = clock.now()
    await session.flush()
    logger.info(
        "Commission rate changed: affiliate=%s old=%s new=%s", affiliate_id, old_rate, rate
    )
    return row_to_account(row)
