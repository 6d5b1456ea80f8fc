"""Monthly commission rollup.

On the 1st of each month every affiliate's converted commission for the
previous calendar month is summed into one `monthly_earnings` row. Re-running
a month overwrites the same (affiliate_id, month) row, never appends.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.affiliate_tables import AffiliateClickRow, MonthlyEarningRow
from src.models.affiliate import ClickState, MonthlyEarning
from src.services.commission import quantize_money

logger = logging.getLogger(__name__)


def previous_month_bounds(now: datetime) -> tuple[datetime, datetime, str]:
    """First and last moment (inclusive) of the month before `now`, plus its label."""
    this_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    last_moment = this_month - timedelta(microseconds=1)
    first_moment = last_moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return first_moment, last_moment, first_moment.strftime("%Y-%m")


def month_bounds(month: str, tz) -> tuple[datetime, datetime]:
    """Bounds for an explicit YYYY-MM label."""
    start = datetime.strptime(month, "%Y-%m").replace(tzinfo=tz)
    next_month = (start + timedelta(days=32)).replace(day=1)
    return start, next_month - timedelta(microseconds=1)


async def rollup_affiliate(
    session: AsyncSession,
    affiliate_id: str,
    start: datetime,
    end: datetime,
    month: str,
    now: datetime,
) -> MonthlyEarning:
    """Upsert one affiliate's total for [start, end]. Caller commits."""
    result = await session.execute(
        select(
            func.count(AffiliateClickRow.id),
            func.coalesce(func.sum(AffiliateClickRow.commission), 0),
        ).where(
            AffiliateClickRow.affiliate_id == affiliate_id,
            AffiliateClickRow.state == ClickState.CONVERTED,
            AffiliateClickRow.purchased_at >= start,
            AffiliateClickRow.purchased_at <= end,
        )
    )
    purchase_count, total = result.one()
    total = quantize_money(total or 0)

    existing = await session.execute(
        select(MonthlyEarningRow).where(
            MonthlyEarningRow.affiliate_id == affiliate_id,
            MonthlyEarningRow.month == month,
        )
    )
    row = existing.scalar_one_or_none()
    if row is None:
        row = MonthlyEarningRow(affiliate_id=affiliate_id, month=month)
        session.add(row)
    row.total_commission = total
    row.purchase_count = purchase_count or 0
    row.computed_at = now
    await session.flush()

    logger.info(
        "monthly_commission_calculated: affiliate=%s month=%s total=%s purchases=%s",
        affiliate_id, month, total, row.purchase_count,
    )
    return MonthlyEarning(
        affiliate_id=affiliate_id,
        month=month,
        total_commission=total,
        purchase_count=row.purchase_count,
        computed_at=now,
    )


async def get_monthly_earnings(session: AsyncSession, affiliate_id: str) -> list[MonthlyEarning]:
    result = await session.execute(
        select(MonthlyEarningRow)
        .where(MonthlyEarningRow.affiliate_id == affiliate_id)
        .order_by(MonthlyEarningRow.month.desc())
    )
    return [
        MonthlyEarning(
            affiliate_id=r.affiliate_id,
            month=r.month,
            total_commission=Decimal(str(r.total_commission)),
            purchase_count=r.purchase_count,
            computed_at=r.computed_at,
        )
        for r in result.scalars().all()
    ]
