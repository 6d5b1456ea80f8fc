"""Daily price/target alert scan over the watchlist.

For each watched item with notifications on: find the product's listing on
the watched platform, compare its current price to the item's target (or 10%
under the product's first listed price when no target is set) and notify the
owner when the price is at or below it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.affiliate_tables import AffiliateAccountRow
from src.db.tables import ProductRow, WatchlistRow
from src.errors import NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_DROP_FRACTION = 0.9  # alert at 10% below list price when no target


@dataclass(frozen=True)
class PriceAlert:
    recipient: str
    product_title: str
    old_price: float
    new_price: float
    url: str


def alert_target(item: WatchlistRow, product: ProductRow) -> Optional[float]:
    if item.target_price:
        return float(item.target_price)
    listings = product.platforms or []
    if not listings:
        return None
    return float(listings[0]["current_price"]) * DEFAULT_DROP_FRACTION


async def list_watch_ids(session: AsyncSession) -> list[str]:
    result = await session.execute(
        select(WatchlistRow.id).where(WatchlistRow.notify_on_drop.is_(True)).order_by(WatchlistRow.added_at)
    )
    return list(result.scalars().all())


async def evaluate_watch_item(
    session: AsyncSession, watch_id: str, now: datetime
) -> Optional[PriceAlert]:
    """Decide whether one watch item should alert; bumps its counters if so."""
    item = await session.get(WatchlistRow, watch_id)
    if item is None:
        raise NotFoundError("Watchlist item not found")
    product = await session.get(ProductRow, item.product_id)
    if product is None:
        raise NotFoundError(f"Product {item.product_id} not found")

    listing = product.listing_for(item.platform)
    if listing is None:
        return None

    current_price = float(listing["current_price"])
    target = alert_target(item, product)
    if target is None or current_price > target:
        return None

    owner = await session.get(AffiliateAccountRow, item.user_id)
    if owner is None:
        raise NotFoundError(f"Account {item.user_id} not found")

    item.alerts_sent = (item.alerts_sent or 0) + 1
    item.last_alert_at = now
    await session.flush()

    return PriceAlert(
        recipient=owner.email,
        product_title=product.title,
        old_price=float(item.current_price),
        new_price=current_price,
        url=listing.get("url", ""),
    )
