"""Affiliate data models: click records, accounts, derived scores."""
from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from src.errors import ValidationError


class Platform(str, Enum):
    """The closed set of storefronts a click can point at."""
    AMAZON = "amazon"
    FLIPKART = "flipkart"
    MYNTRA = "myntra"
    AJIO = "ajio"
    OTHER = "other"


class ClickState(str, Enum):
    CLICKED = "clicked"
    TRACKED = "tracked"      # enriched with device metadata; does not gate attribution
    CONVERTED = "converted"
    EXPIRED = "expired"


# States a conversion may start from
CONVERTIBLE_STATES = (ClickState.CLICKED, ClickState.TRACKED)


class Device(str, Enum):
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


_AFFILIATE_ID_RE = re.compile(r"^aff_[A-Za-z0-9_]{1,64}$")
_ENTITY_ID_RE = re.compile(r"^[A-Za-z0-9_.:\-]{1,100}$")


def parse_platform(value) -> Platform:
    """Coerce a raw value into a Platform or raise ValidationError."""
    if isinstance(value, Platform):
        return value
    try:
        return Platform(str(value).lower())
    except ValueError:
        allowed = ", ".join(p.value for p in Platform)
        raise ValidationError(f"Unsupported platform '{value}'. Must be one of: {allowed}")


def validate_affiliate_id(value: str) -> str:
    if not isinstance(value, str) or not _AFFILIATE_ID_RE.match(value):
        raise ValidationError("Malformed affiliate id")
    return value


def validate_entity_id(value: str, name: str) -> str:
    if not isinstance(value, str) or not _ENTITY_ID_RE.match(value):
        raise ValidationError(f"Malformed {name}")
    return value


class DeviceMetadata(BaseModel):
    """Descriptive click context. No invariant depends on these fields."""
    model_config = ConfigDict(extra="forbid")

    device: Optional[Device] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    referer: Optional[str] = None
    browser: Optional[str] = None
    country: Optional[str] = None


class ClickRecord(BaseModel):
    id: str
    affiliate_id: str
    user_id: str
    product_id: str
    platform: Platform
    source_url: str
    redirect_url: str
    state: ClickState
    clicked_at: datetime
    expires_at: datetime

    purchase_amount: Optional[Decimal] = None
    commission: Optional[Decimal] = None
    purchased_at: Optional[datetime] = None

    device: Optional[Device] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    referer: Optional[str] = None
    browser: Optional[str] = None
    country: Optional[str] = None

    @property
    def is_converted(self) -> bool:
        return self.state == ClickState.CONVERTED

    def is_expired_at(self, now: datetime) -> bool:
        return now > self.expires_at


class ClickFilters(BaseModel):
    """Optional filters for listing an affiliate's clicks."""
    platform: Optional[Platform] = None
    state: Optional[ClickState] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: int = 100
    offset: int = 0


class AffiliateAccount(BaseModel):
    id: str
    affiliate_id: str
    name: str
    email: str
    commission_rate: Decimal
    created_at: datetime


class TrendingScore(BaseModel):
    product_id: str
    score: float
    click_count: int = 0
    purchase_count: int = 0
    total_commission: Decimal = Decimal("0.00")
    conversion_rate: float = 0.0
    computed_at: datetime


class MonthlyEarning(BaseModel):
    affiliate_id: str
    month: str  # YYYY-MM
    total_commission: Decimal
    purchase_count: int
    computed_at: datetime
