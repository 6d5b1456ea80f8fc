"""SQLAlchemy ORM base + catalog tables read by the scheduled jobs.

The catalog (products, watchlist) is owned by the wider application; the
affiliate core only reads prices from it and bumps watchlist alert counters.
"""
from __future__ import annotations

import uuid

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, JSON, Enum as SAEnum, Index, UniqueConstraint
)
from sqlalchemy.orm import DeclarativeBase

from src.db.types import UTCDateTime, utcnow
from src.models.affiliate import Platform


class Base(DeclarativeBase):
    pass


class ProductRow(Base):
    __tablename__ = "products"

    id = Column(String(100), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(500), nullable=False, index=True)
    category = Column(String(100), nullable=False, default="general")

    # list[{platform, url, current_price, original_price, in_stock}]
    platforms = Column(JSON, default=list)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow)

    def listing_for(self, platform: Platform | str) -> dict | None:
        """Return the listing for one storefront, if the product is sold there."""
        wanted = platform.value if isinstance(platform, Platform) else str(platform)
        for listing in self.platforms or []:
            if listing.get("platform") == wanted:
                return listing
        return None


class WatchlistRow(Base):
    """A user's price target on one product/platform."""
    __tablename__ = "watchlist"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    product_id = Column(String(100), nullable=False, index=True)
    platform = Column(SAEnum(Platform), nullable=False)
    target_price = Column(Float, nullable=True)
    current_price = Column(Float, nullable=False)  # price when the item was watched
    notify_on_drop = Column(Boolean, default=True, nullable=False)
    alerts_sent = Column(Integer, default=0, nullable=False)
    last_alert_at = Column(UTCDateTime, nullable=True)
    added_at = Column(UTCDateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", "platform", name="uq_watchlist_user_product_platform"),
        Index("ix_watchlist_notify", "notify_on_drop", "target_price"),
    )
