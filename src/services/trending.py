"""
Trending aggregation.

Recomputes a per-product score from a trailing window of ledger activity:

    score = clicks * 0.3 + (conversion_rate * 100) * 0.5 + commission * 0.001

The weights are a product heuristic, kept exactly as tuned. Only the top N
products are written each run; products that drop out keep their previous
row until a later run recomputes them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.db.affiliate_tables import AffiliateClickRow, TrendingScoreRow
from src.models.affiliate import ClickState, TrendingScore
from src.services.clock import system_clock
from src.services.commission import quantize_money, to_decimal

logger = logging.getLogger(__name__)

CLICK_WEIGHT = 0.3
CONVERSION_WEIGHT = 0.5
COMMISSION_WEIGHT = 0.001


def conversion_rate(click_count: int, purchase_count: int) -> float:
    if click_count <= 0:
        return 0.0
    return purchase_count / click_count


def trending_score(click_count: int, purchase_count: int, total_commission) -> float:
    rate = conversion_rate(click_count, purchase_count)
    return (
        click_count * CLICK_WEIGHT
        + (rate * 100) * CONVERSION_WEIGHT
        + float(total_commission) * COMMISSION_WEIGHT
    )


@dataclass
class ProductActivity:
    product_id: str
    click_count: int = 0
    purchase_count: int = 0
    total_commission: Decimal = field(default_factory=lambda: Decimal("0.00"))

    @property
    def conversion_rate(self) -> float:
        return conversion_rate(self.click_count, self.purchase_count)

    @property
    def score(self) -> float:
        return trending_score(self.click_count, self.purchase_count, self.total_commission)


def rank_products(activities: Iterable[ProductActivity], top_n: int) -> list[ProductActivity]:
    """Highest score first; ties go to more commission, then product id."""
    ranked = sorted(
        activities,
        key=lambda a: (-a.score, -a.total_commission, a.product_id),
    )
    return ranked[:max(top_n, 0)]


async def upsert_trending_score(
    session: AsyncSession,
    product_id: str,
    score: float,
    now: datetime,
    activity: Optional[ProductActivity] = None,
) -> TrendingScoreRow:
    row = await session.get(TrendingScoreRow, product_id)
    if row is None:
        row = TrendingScoreRow(product_id=product_id)
        session.add(row)
    row.score = score
    row.computed_at = now
    if activity is not None:
        row.click_count = activity.click_count
        row.purchase_count = activity.purchase_count
        row.total_commission = quantize_money(activity.total_commission)
        row.conversion_rate = activity.conversion_rate
    return row


async def set_trending_scores(
    session: AsyncSession, pairs: list[tuple[str, float]], now: datetime
) -> int:
    """Bulk-set raw scores (recovery/backfill path). Caller commits."""
    for product_id, score in pairs:
        await upsert_trending_score(session, product_id, float(score), now)
    await session.flush()
    return len(pairs)


async def list_trending(session: AsyncSession, limit: int = 20) -> list[TrendingScore]:
    result = await session.execute(
        select(TrendingScoreRow)
        .order_by(TrendingScoreRow.score.desc(), TrendingScoreRow.product_id)
        .limit(limit)
    )
    return [
        TrendingScore(
            product_id=r.product_id,
            score=r.score,
            click_count=r.click_count,
            purchase_count=r.purchase_count,
            total_commission=to_decimal(r.total_commission),
            conversion_rate=r.conversion_rate,
            computed_at=r.computed_at,
        )
        for r in result.scalars().all()
    ]


class TrendingAggregator:
    """Reads the ledger, scores products, writes the top N."""

    def __init__(
        self,
        session: AsyncSession,
        clock=system_clock,
        window_days: int = settings.TRENDING_WINDOW_DAYS,
        top_n: int = settings.TRENDING_TOP_N,
    ):
        self.session = session
        self.clock = clock
        self.window = timedelta(days=window_days)
        self.top_n = top_n

    async def collect(self, now: Optional[datetime] = None) -> list[ProductActivity]:
        """Per-product activity inside the trailing window."""
        now = now or self.clock.now()
        since = now - self.window
        activity: dict[str, ProductActivity] = {}

        clicks = await self.session.execute(
            select(AffiliateClickRow.product_id, func.count(AffiliateClickRow.id))
            .where(AffiliateClickRow.clicked_at >= since, AffiliateClickRow.clicked_at <= now)
            .group_by(AffiliateClickRow.product_id)
        )
        for product_id, count in clicks.all():
            activity[product_id] = ProductActivity(product_id=product_id, click_count=count)

        purchases = await self.session.execute(
            select(
                AffiliateClickRow.product_id,
                func.count(AffiliateClickRow.id),
                func.coalesce(func.sum(AffiliateClickRow.commission), 0),
            )
            .where(
                AffiliateClickRow.state == ClickState.CONVERTED,
                AffiliateClickRow.purchased_at >= since,
                AffiliateClickRow.purchased_at <= now,
            )
            .group_by(AffiliateClickRow.product_id)
        )
        for product_id, count, commission in purchases.all():
            entry = activity.setdefault(product_id, ProductActivity(product_id=product_id))
            entry.purchase_count = count
            entry.total_commission = quantize_money(commission or 0)

        return list(activity.values())

    async def compute(self, now: Optional[datetime] = None) -> list[ProductActivity]:
        return rank_products(await self.collect(now), self.top_n)

    async def run(self) -> list[ProductActivity]:
        """Compute and write in the caller's transaction. Caller commits."""
        now = self.clock.now()
        ranked = await self.compute(now)
        for item in ranked:
            await upsert_trending_score(self.session, item.product_id, item.score, now, item)
        await self.session.flush()
        logger.info("Trending update completed: %d products scored", len(ranked))
        return ranked
