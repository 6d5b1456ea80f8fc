"""Click ledger + account repository: DB operations + Pydantic conversion.

The ledger never commits; callers own the transaction. The only write that
needs mutual exclusion is `ClickLedger.convert`, which is a single conditional
UPDATE whose rowcount decides the winner.
"""
from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.db.affiliate_tables import AffiliateAccountRow, AffiliateClickRow
from src.errors import (
    AlreadyConvertedError,
    ExpiredAttributionError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from src.models.affiliate import (
    AffiliateAccount,
    ClickFilters,
    ClickRecord,
    ClickState,
    CONVERTIBLE_STATES,
    DeviceMetadata,
    parse_platform,
    validate_affiliate_id,
    validate_entity_id,
)
from src.services.clock import system_clock
from src.services.commission import compute_commission, quantize_money

logger = logging.getLogger(__name__)

_METADATA_FIELDS = ("device", "user_agent", "ip_address", "referer", "browser", "country")


@contextmanager
def _storage_errors(operation: str, click_id: Optional[str] = None):
    """Wrap driver/ORM failures as InternalError, logging the context."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception(
            "Ledger %s failed (click_id=%s)", operation, click_id,
            extra={"operation": operation, "click_id": click_id},
        )
        raise InternalError() from exc


def _row_to_click(row: AffiliateClickRow) -> ClickRecord:
    """Convert a DB row to a Pydantic ClickRecord."""
    return ClickRecord(
        id=row.id,
        affiliate_id=row.affiliate_id,
        user_id=row.user_id,
        product_id=row.product_id,
        platform=row.platform,
        source_url=row.source_url,
        redirect_url=row.redirect_url,
        state=row.state,
        clicked_at=row.clicked_at,
        expires_at=row.expires_at,
        purchase_amount=row.purchase_amount,
        commission=row.commission,
        purchased_at=row.purchased_at,
        device=row.device,
        user_agent=row.user_agent,
        ip_address=row.ip_address,
        referer=row.referer,
        browser=row.browser,
        country=row.country,
    )


def row_to_account(row: AffiliateAccountRow) -> AffiliateAccount:
    return AffiliateAccount(
        id=row.id,
        affiliate_id=row.affiliate_id,
        name=row.name,
        email=row.email,
        commission_rate=Decimal(str(row.commission_rate)),
        created_at=row.created_at,
    )


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class ClickLedger:
    """Async click lifecycle store backed by SQLAlchemy."""

    def __init__(
        self,
        session: AsyncSession,
        clock=system_clock,
        window_days: int = settings.ATTRIBUTION_WINDOW_DAYS,
    ):
        self.session = session
        self.clock = clock
        self.window = timedelta(days=window_days)

    async def _load(self, click_id: str, *, refresh: bool = False) -> Optional[AffiliateClickRow]:
        return await self.session.get(AffiliateClickRow, click_id, populate_existing=refresh)

    async def record_click(
        self,
        affiliate_id: str,
        user_id: str,
        product_id: str,
        platform,
        source_url: str,
        redirect_url: str,
    ) -> ClickRecord:
        """Create a Clicked record whose attribution window is fixed now."""
        validate_affiliate_id(affiliate_id)
        validate_entity_id(user_id, "user id")
        validate_entity_id(product_id, "product id")
        platform = parse_platform(platform)
        if not source_url or not redirect_url:
            raise ValidationError("Source and redirect URLs are required")

        now = self.clock.now()
        row = AffiliateClickRow(
            id=str(uuid.uuid4()),
            affiliate_id=affiliate_id,
            user_id=user_id,
            product_id=product_id,
            platform=platform,
            source_url=source_url,
            redirect_url=redirect_url,
            state=ClickState.CLICKED,
            clicked_at=now,
            expires_at=now + self.window,
        )
        with _storage_errors("record_click", row.id):
            self.session.add(row)
            await self.session.flush()
        logger.info(
            "Click recorded: click=%s affiliate=%s product=%s platform=%s",
            row.id, affiliate_id, product_id, platform.value,
        )
        return _row_to_click(row)

    async def annotate(
        self, click_id: str, metadata: Union[DeviceMetadata, dict]
    ) -> ClickRecord:
        """Merge device metadata; Clicked becomes Tracked, other states keep theirs.

        `state` is only written by the conditional Clicked -> Tracked UPDATE, so a
        conversion committed after this session loaded the row is never undone.
        """
        if isinstance(metadata, dict):
            metadata = DeviceMetadata(**metadata)
        values = {}
        for field in _METADATA_FIELDS:
            value = getattr(metadata, field)
            if value is not None:
                values[field] = value

        with _storage_errors("annotate", click_id):
            row = await self._load(click_id, refresh=True)
            if row is None or row.state == ClickState.EXPIRED:
                raise NotFoundError("Click record not found")
            if values:
                await self.session.execute(
                    update(AffiliateClickRow)
                    .where(AffiliateClickRow.id == click_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
            await self.session.execute(
                update(AffiliateClickRow)
                .where(AffiliateClickRow.id == click_id, AffiliateClickRow.state == ClickState.CLICKED)
                .values(state=ClickState.TRACKED)
                .execution_options(synchronize_session=False)
            )
            row = await self._load(click_id, refresh=True)
        if row is None:
            raise NotFoundError("Click record not found")
        return _row_to_click(row)

    async def convert(self, click_id: str, purchase_amount, commission_rate) -> ClickRecord:
        """Clicked/Tracked -> Converted as one compare-and-set UPDATE.

        Of two concurrent calls for the same click exactly one sees rowcount 1;
        the other re-reads the row and raises the matching taxonomy error.
        """
        commission = compute_commission(purchase_amount, commission_rate)
        amount = quantize_money(purchase_amount)
        now = self.clock.now()

        with _storage_errors("convert", click_id):
            result = await self.session.execute(
                update(AffiliateClickRow)
                .where(
                    AffiliateClickRow.id == click_id,
                    AffiliateClickRow.state.in_(CONVERTIBLE_STATES),
                    AffiliateClickRow.expires_at >= now,
                )
                .values(
                    state=ClickState.CONVERTED,
                    purchase_amount=amount,
                    commission=commission,
                    purchased_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            row = await self._load(click_id, refresh=True)

        if result.rowcount != 1:
            if row is None:
                raise NotFoundError("Click record not found")
            if row.state == ClickState.CONVERTED:
                raise AlreadyConvertedError()
            if row.state == ClickState.EXPIRED or now > row.expires_at:
                raise ExpiredAttributionError()
            logger.error("Conversion CAS matched no row for click=%s in state %s", click_id, row.state)
            raise InternalError()

        return _row_to_click(row)

    async def get(self, click_id: str) -> ClickRecord:
        with _storage_errors("get", click_id):
            row = await self._load(click_id)
        if row is None:
            raise NotFoundError("Click record not found")
        return _row_to_click(row)

    async def list_by_affiliate(
        self, affiliate_id: str, filters: Optional[ClickFilters] = None
    ) -> list[ClickRecord]:
        """Newest-first listing of one affiliate's clicks."""
        validate_affiliate_id(affiliate_id)
        filters = filters or ClickFilters()
        stmt = select(AffiliateClickRow).where(AffiliateClickRow.affiliate_id == affiliate_id)
        if filters.platform is not None:
            stmt = stmt.where(AffiliateClickRow.platform == filters.platform)
        if filters.state is not None:
            stmt = stmt.where(AffiliateClickRow.state == filters.state)
        if filters.since is not None:
            stmt = stmt.where(AffiliateClickRow.clicked_at >= filters.since)
        if filters.until is not None:
            stmt = stmt.where(AffiliateClickRow.clicked_at < filters.until)
        stmt = (
            stmt.order_by(AffiliateClickRow.clicked_at.desc(), AffiliateClickRow.id)
            .offset(max(filters.offset, 0))
            .limit(max(1, min(filters.limit, 1000)))
        )
        with _storage_errors("list_by_affiliate"):
            result = await self.session.execute(stmt)
        return [_row_to_click(r) for r in result.scalars().all()]

    async def reapable_ids(
        self, now: datetime, limit: Optional[int] = None, after: Optional[str] = None
    ) -> list[str]:
        """Ids of never-converted records whose window closed before `now`.

        Ordered by id; pass the last id of a page as `after` to get the next one.
        """
        stmt = (
            select(AffiliateClickRow.id)
            .where(
                AffiliateClickRow.state != ClickState.CONVERTED,
                AffiliateClickRow.expires_at < now,
            )
            .order_by(AffiliateClickRow.id)
        )
        if after is not None:
            stmt = stmt.where(AffiliateClickRow.id > after)
        if limit is not None:
            stmt = stmt.limit(limit)
        with _storage_errors("reapable_ids"):
            result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def expire_batch(
        self,
        older_than: datetime,
        unconverted_only: bool = True,
        click_ids: Optional[list[str]] = None,
    ) -> int:
        """Transition expired Clicked/Tracked rows to Expired and remove them.

        With unconverted_only=False converted rows past expiry are purged too;
        scheduled jobs never pass that.
        """
        if click_ids is not None and not click_ids:
            return 0
        conditions = [AffiliateClickRow.expires_at < older_than]
        if unconverted_only:
            conditions.append(AffiliateClickRow.state != ClickState.CONVERTED)
        if click_ids is not None:
            conditions.append(AffiliateClickRow.id.in_(click_ids))

        with _storage_errors("expire_batch"):
            await self.session.execute(
                update(AffiliateClickRow)
                .where(*conditions, AffiliateClickRow.state.in_(CONVERTIBLE_STATES))
                .values(state=ClickState.EXPIRED)
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(
                delete(AffiliateClickRow)
                .where(*conditions)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount or 0

    async def stats_for_affiliate(self, affiliate_id: str) -> dict:
        """Totals for the affiliate dashboard."""
        validate_affiliate_id(affiliate_id)
        now = self.clock.now()
        converted = (
            AffiliateClickRow.affiliate_id == affiliate_id,
            AffiliateClickRow.state == ClickState.CONVERTED,
        )
        with _storage_errors("stats_for_affiliate"):
            total_clicks = (await self.session.execute(
                select(func.count(AffiliateClickRow.id))
                .where(AffiliateClickRow.affiliate_id == affiliate_id)
            )).scalar() or 0
            purchases, revenue = (await self.session.execute(
                select(
                    func.count(AffiliateClickRow.id),
                    func.coalesce(func.sum(AffiliateClickRow.commission), 0),
                ).where(*converted)
            )).one()
            this_month = (await self.session.execute(
                select(func.coalesce(func.sum(AffiliateClickRow.commission), 0))
                .where(*converted, AffiliateClickRow.purchased_at >= month_start(now))
            )).scalar()
            by_platform = (await self.session.execute(
                select(AffiliateClickRow.platform, func.count(AffiliateClickRow.id))
                .where(AffiliateClickRow.affiliate_id == affiliate_id)
                .group_by(AffiliateClickRow.platform)
            )).all()

        return {
            "total_clicks": total_clicks,
            "successful_purchases": purchases or 0,
            "conversion_rate": (purchases / total_clicks) if total_clicks else 0.0,
            "total_revenue": quantize_money(revenue or 0),
            "this_month_earnings": quantize_money(this_month or 0),
            "clicks_by_platform": {p.value: c for p, c in by_platform},
        }


class AffiliateAccountRepository:
    """Lookups for affiliate accounts. Creation goes through services.accounts."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_row_by_affiliate_id(self, affiliate_id: str) -> AffiliateAccountRow:
        result = await self.session.execute(
            select(AffiliateAccountRow).where(AffiliateAccountRow.affiliate_id == affiliate_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError("Affiliate account not found")
        return row

    async def get_by_affiliate_id(self, affiliate_id: str) -> AffiliateAccount:
        return row_to_account(await self.get_row_by_affiliate_id(affiliate_id))

    async def get_by_id(self, account_id: str) -> AffiliateAccount:
        row = await self.session.get(AffiliateAccountRow, account_id)
        if row is None:
            raise NotFoundError("Affiliate account not found")
        return row_to_account(row)

    async def commission_rate_for(self, affiliate_id: str) -> Decimal:
        """Snapshot read of the account's current rate."""
        result = await self.session.execute(
            select(AffiliateAccountRow.commission_rate)
            .where(AffiliateAccountRow.affiliate_id == affiliate_id)
        )
        rate = result.scalar_one_or_none()
        if rate is None:
            raise NotFoundError("Affiliate account not found")
        return Decimal(str(rate))

    async def list_affiliate_ids(self) -> list[str]:
        result = await self.session.execute(
            select(AffiliateAccountRow.affiliate_id).order_by(AffiliateAccountRow.created_at)
        )
        return list(result.scalars().all())
