"""Deals API: trending scores."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field, FiniteFloat
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.engine import get_session
from src.errors import ValidationError
from src.services.clock import get_clock
from src.services.trending import list_trending, set_trending_scores

router = APIRouter(prefix="/deals", tags=["deals"])
logger = logging.getLogger(__name__)


class UpdateTrendingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    productIds: list[str] = Field(..., max_length=1000)
    scores: list[FiniteFloat] = Field(..., max_length=1000)


@router.get("/trending")
async def trending_deals(
    limit: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
):
    items = await list_trending(session, limit=limit)
    return {
        "trendingDeals": [
            {
                "productId": t.product_id,
                "score": t.score,
                "clickCount": t.click_count,
                "purchaseCount": t.purchase_count,
                "totalCommission": f"{t.total_commission:.2f}",
                "conversionRate": t.conversion_rate,
                "computedAt": t.computed_at.isoformat(),
            }
            for t in items
        ],
        "count": len(items),
    }


@router.post("/update-trending")
async def update_trending(
    req: UpdateTrendingRequest,
    session: AsyncSession = Depends(get_session),
    clock=Depends(get_clock),
):
    """Set raw scores for a list of products (backfill/recovery)."""
    if len(req.productIds) != len(req.scores):
        raise ValidationError("productIds and scores must have the same length")
    count = await set_trending_scores(session, list(zip(req.productIds, req.scores)), clock.now())
    await session.commit()
    logger.info("Trending scores set manually for %d products", count)
    return {"message": "Trending scores updated", "count": count}
