"""
Database tables for affiliate click tracking, conversion attribution,
trending scores and monthly earnings rollups.
"""
import uuid

from sqlalchemy import Column, Integer, String, Float, Numeric, Enum as SAEnum, Index, UniqueConstraint

from src.db.tables import Base
from src.db.types import UTCDateTime, utcnow
from src.models.affiliate import ClickState, Device, Platform


class AffiliateAccountRow(Base):
    """One owner of clicks. Rate is a percentage read at conversion time."""
    __tablename__ = "affiliate_accounts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    affiliate_id = Column(String(80), unique=True, nullable=False, index=True)
    name = Column(String(50), nullable=False)
    email = Column(String(320), unique=True, nullable=False, index=True)
    password_hash = Column(String(256), nullable=False)  # PBKDF2-SHA256
    phone = Column(String(30), nullable=True)
    commission_rate = Column(Numeric(5, 2), nullable=False, default=5)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, nullable=False)


class AffiliateClickRow(Base):
    """Records every referral click and, once attributed, its purchase."""
    __tablename__ = "affiliate_clicks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    affiliate_id = Column(String(80), nullable=False, index=True)
    user_id = Column(String(100), nullable=False)
    product_id = Column(String(100), nullable=False)
    platform = Column(SAEnum(Platform), nullable=False)
    source_url = Column(String(2000), nullable=False)
    redirect_url = Column(String(2000), nullable=False)

    state = Column(SAEnum(ClickState), nullable=False, default=ClickState.CLICKED)
    clicked_at = Column(UTCDateTime, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)  # clicked_at + window, never recomputed

    # Set together, once, on conversion
    purchase_amount = Column(Numeric(12, 2), nullable=True)
    commission = Column(Numeric(12, 2), nullable=True)
    purchased_at = Column(UTCDateTime, nullable=True)

    # Descriptive context
    device = Column(SAEnum(Device), nullable=True)
    user_agent = Column(String(500), nullable=True)
    ip_address = Column(String(45), nullable=True)  # IPv6 support
    referer = Column(String(1000), nullable=True)
    browser = Column(String(100), nullable=True)
    country = Column(String(2), nullable=True)

    __table_args__ = (
        Index("idx_clicks_affiliate_platform_time", "affiliate_id", "platform", "clicked_at"),
        Index("idx_clicks_expiry", "expires_at"),
        Index("idx_clicks_product_time", "product_id", "clicked_at"),
        Index("idx_clicks_state_purchased", "state", "purchased_at"),
    )


class TrendingScoreRow(Base):
    """Derived per-product score. Written only by the trending aggregator."""
    __tablename__ = "trending_scores"

    product_id = Column(String(100), primary_key=True)
    score = Column(Float, nullable=False, default=0.0)
    click_count = Column(Integer, nullable=False, default=0)
    purchase_count = Column(Integer, nullable=False, default=0)
    total_commission = Column(Numeric(14, 2), nullable=False, default=0)
    conversion_rate = Column(Float, nullable=False, default=0.0)
    computed_at = Column(UTCDateTime, nullable=False, default=utcnow)


class MonthlyEarningRow(Base):
    """One immutable commission total per affiliate per calendar month."""
    __tablename__ = "monthly_earnings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    affiliate_id = Column(String(80), nullable=False, index=True)
    month = Column(String(7), nullable=False)  # YYYY-MM
    total_commission = Column(Numeric(14, 2), nullable=False, default=0)
    purchase_count = Column(Integer, nullable=False, default=0)
    computed_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("affiliate_id", "month", name="uq_monthly_earning_affiliate_month"),
    )
