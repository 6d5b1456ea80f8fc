"""Affiliate API: /affiliate endpoints plus the admin commission-rate change."""
from __future__ import annotations

import ipaddress
import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.auth import require_account, require_admin
from src.db.affiliate_tables import AffiliateAccountRow
from src.db.engine import get_session
from src.db.repository import ClickLedger
from src.models.affiliate import Device, DeviceMetadata, Platform
from src.services.accounts import change_commission_rate
from src.services.attribution import AttributionEngine
from src.services.commission import MAX_PURCHASE_AMOUNT
from src.services.rollup import get_monthly_earnings
from src.services.clock import get_clock

router = APIRouter(prefix="/affiliate", tags=["affiliate"])
admin_router = APIRouter(prefix="/api/v1/admin/affiliates", tags=["admin", "affiliate"])
logger = logging.getLogger(__name__)


# ── Schemas ───────────────────────────────────────────────────────────────────

class _StrictBody(BaseModel):
    model_config = ConfigDict(extra="forbid")


def _require_http_url(value: str) -> str:
    if not value.startswith(("http://", "https://")):
        raise ValueError("must be an http(s) URL")
    return value


class GenerateLinkRequest(_StrictBody):
    productId: str = Field(..., min_length=1, max_length=100)
    platform: Platform
    productUrl: str = Field(..., max_length=2048)
    sourceUrl: Optional[str] = Field(None, max_length=2048)

    @field_validator("productUrl")
    @classmethod
    def _http_url(cls, v: str) -> str:
        return _require_http_url(v)


class TrackClickRequest(_StrictBody):
    clickId: str = Field(..., min_length=1, max_length=100)
    userAgent: Optional[str] = Field(None, max_length=512)
    ipAddress: Optional[str] = None
    device: Optional[Device] = None

    @field_validator("ipAddress")
    @classmethod
    def _valid_ip(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            ipaddress.ip_address(v)
        return v


class MarkPurchaseRequest(_StrictBody):
    clickId: str = Field(..., min_length=1, max_length=100)
    purchaseAmount: Decimal = Field(..., gt=0, le=MAX_PURCHASE_AMOUNT)


class CommissionRateRequest(_StrictBody):
    commissionRate: Decimal = Field(..., ge=0, le=100)


def build_affiliate_link(platform: Platform, product_url: str) -> str:
    """Append the storefront's affiliate tag where one is configured."""
    params = {
        Platform.AMAZON: ("tag", settings.AMAZON_AFFILIATE_TAG),
        Platform.FLIPKART: ("affid", settings.FLIPKART_AFFILIATE_TAG),
    }
    if platform not in params:
        return product_url
    key, tag = params[platform]
    separator = "&" if "?" in product_url else "?"
    return f"{product_url}{separator}{key}={tag}"


# ── Endpoints ─────────────────────────────────────────────────────────────────

@router.post("/generate-link")
async def generate_link(
    req: GenerateLinkRequest,
    account: AffiliateAccountRow = Depends(require_account),
    session: AsyncSession = Depends(get_session),
    clock=Depends(get_clock),
):
    """Build a tagged outbound link and open a click record for it."""
    affiliate_link = build_affiliate_link(req.platform, req.productUrl)
    click = await ClickLedger(session, clock=clock).record_click(
        affiliate_id=account.affiliate_id,
        user_id=account.id,
        product_id=req.productId,
        platform=req.platform,
        source_url=req.sourceUrl or "unknown",
        redirect_url=affiliate_link,
    )
    await session.commit()
    return {
        "affiliateLink": affiliate_link,
        "clickId": click.id,
        "platform": click.platform.value,
        "productId": click.product_id,
    }


@router.post("/track-click")
async def track_click(
    req: TrackClickRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
    clock=Depends(get_clock),
):
    """Attach device context to a click and hand back the redirect URL."""
    client_ip = request.client.host if request.client else None
    metadata = DeviceMetadata(
        device=req.device,
        user_agent=req.userAgent,
        ip_address=req.ipAddress or client_ip,
    )
    click = await ClickLedger(session, clock=clock).annotate(req.clickId, metadata)
    await session.commit()
    return {"message": "Click tracked successfully", "redirectUrl": click.redirect_url}


@router.post("/mark-purchase")
async def mark_purchase(
    req: MarkPurchaseRequest,
    session: AsyncSession = Depends(get_session),
    clock=Depends(get_clock),
):
    """Credit a purchase to its click. 404 unknown, 400 expired, 409 duplicate."""
    result = await AttributionEngine(session, clock=clock).convert(req.clickId, req.purchaseAmount)
    await session.commit()
    return {
        "message": "Purchase recorded successfully",
        "clickId": req.clickId,
        "purchaseAmount": float(result.purchase_amount),
        "commission": float(result.commission),
        "commissionRate": float(result.commission_rate),
    }


@router.get("/stats")
async def affiliate_stats(
    account: AffiliateAccountRow = Depends(require_account),
    session: AsyncSession = Depends(get_session),
    clock=Depends(get_clock),
):
    stats = await ClickLedger(session, clock=clock).stats_for_affiliate(account.affiliate_id)
    return {
        "affiliateId": account.affiliate_id,
        "totalClicks": stats["total_clicks"],
        "successfulPurchases": stats["successful_purchases"],
        "conversionRate": f"{stats['conversion_rate'] * 100:.2f}%",
        "totalRevenue": f"{stats['total_revenue']:.2f}",
        "thisMonthEarnings": f"{stats['this_month_earnings']:.2f}",
        "clicksByPlatform": [
            {"platform": platform, "count": count}
            for platform, count in sorted(stats["clicks_by_platform"].items())
        ],
        "commissionRate": float(account.commission_rate),
        "monthlyEarnings": [
            {
                "month": e.month,
                "totalCommission": f"{e.total_commission:.2f}",
                "purchaseCount": e.purchase_count,
            }
            for e in await get_monthly_earnings(session, account.affiliate_id)
        ],
    }


@admin_router.put("/{affiliate_id}/commission-rate")
async def update_commission_rate(
    affiliate_id: str,
    req: CommissionRateRequest,
    admin=Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    clock=Depends(get_clock),
):
    """Change an affiliate's rate. Only purchases recorded afterwards use it."""
    account = await change_commission_rate(session, affiliate_id, req.commissionRate, clock=clock)
    await session.commit()
    return {
        "affiliateId": account.affiliate_id,
        "commissionRate": float(account.commission_rate),
        "updatedAt": clock.now().isoformat(),
    }
