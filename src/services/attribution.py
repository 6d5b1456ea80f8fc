"""
Purchase attribution.

Decides whether a purchase can be credited to a click and what commission
it earns:

1. The click must exist.
2. It must not already be converted (duplicate purchase callbacks).
3. The purchase must land inside the click's attribution window. Records
   that are expired but not yet reaped are rejected here too.
4. commission = amount * rate / 100, half-up to the minor unit, using the
   owning account's *current* rate.
5. The ledger write is a compare-and-set, so a racing duplicate still loses
   even if it passed the checks above.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from src.db.repository import AffiliateAccountRepository, ClickLedger
from src.errors import AlreadyConvertedError, ExpiredAttributionError
from src.models.affiliate import ClickRecord
from src.services.clock import system_clock
from src.services.commission import compute_commission

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttributionResult:
    click: ClickRecord
    purchase_amount: Decimal
    commission: Decimal
    commission_rate: Decimal


class AttributionEngine:
    def __init__(self, session: AsyncSession, clock=system_clock, ledger: ClickLedger | None = None):
        self.session = session
        self.clock = clock
        self.ledger = ledger or ClickLedger(session, clock=clock)
        self.accounts = AffiliateAccountRepository(session)

    async def convert(self, click_id: str, purchase_amount) -> AttributionResult:
        click = await self.ledger.get(click_id)

        if click.is_converted:
            logger.warning("Duplicate purchase callback rejected: click=%s", click_id)
            raise AlreadyConvertedError()

        now = self.clock.now()
        if click.is_expired_at(now):
            logger.info(
                "Purchase outside attribution window: click=%s expired_at=%s",
                click_id, click.expires_at.isoformat(),
            )
            raise ExpiredAttributionError()

        rate = await self.accounts.commission_rate_for(click.affiliate_id)
        # Validates the amount before anything is written
        compute_commission(purchase_amount, rate)

        converted = await self.ledger.convert(click_id, purchase_amount, rate)

        logger.info(
            "purchase_recorded: click=%s affiliate=%s amount=%s commission=%s rate=%s",
            click_id, converted.affiliate_id, converted.purchase_amount,
            converted.commission, rate,
        )
        return AttributionResult(
            click=converted,
            purchase_amount=converted.purchase_amount,
            commission=converted.commission,
            commission_rate=rate,
        )
