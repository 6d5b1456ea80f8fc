"""Tests for the monthly commission rollup."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from src.db.affiliate_tables import MonthlyEarningRow
from src.services.rollup import (
    get_monthly_earnings,
    month_bounds,
    previous_month_bounds,
    rollup_affiliate,
)

UTC = timezone.utc


class TestMonthBounds:
    def test_previous_month_from_first_of_month(self):
        start, end, label = previous_month_bounds(datetime(2026, 3, 1, 0, 0, tzinfo=UTC))
        assert label == "2026-02"
        assert start == datetime(2026, 2, 1, tzinfo=UTC)
        assert end == datetime(2026, 2, 28, 23, 59, 59, 999999, tzinfo=UTC)

    def test_january_rolls_back_to_december(self):
        start, end, label = previous_month_bounds(datetime(2026, 1, 15, 8, 30, tzinfo=UTC))
        assert label == "2025-12"
        assert start == datetime(2025, 12, 1, tzinfo=UTC)
        assert end.day == 31

    def test_leap_february(self):
        _, end, label = previous_month_bounds(datetime(2028, 3, 1, tzinfo=UTC))
        assert label == "2028-02"
        assert end.day == 29

    def test_explicit_month(self):
        start, end = month_bounds("2026-04", UTC)
        assert start == datetime(2026, 4, 1, tzinfo=UTC)
        assert end == datetime(2026, 4, 30, 23, 59, 59, 999999, tzinfo=UTC)


class TestRollup:
    @pytest.mark.asyncio
    async def test_sums_previous_month_only(self, session, clock, account, make_click, convert_click):
        clock.set(datetime(2026, 1, 31, 23, 0, tzinfo=UTC))
        january = await make_click(account, product_id="jan")
        await convert_click(january.id, 100)  # 5.00, January

        clock.set(datetime(2026, 2, 1, 0, 0, tzinfo=UTC))
        first = await make_click(account, product_id="feb-1")
        await convert_click(first.id, 1000)  # 50.00, first moment of February

        clock.set(datetime(2026, 2, 28, 23, 59, 59, tzinfo=UTC))
        last = await make_click(account, product_id="feb-2")
        await convert_click(last.id, "10.10")  # 0.51

        clock.set(datetime(2026, 3, 1, 0, 0, 30, tzinfo=UTC))
        march = await make_click(account, product_id="mar")
        await convert_click(march.id, 100)

        start, end, month = previous_month_bounds(clock.now())
        earning = await rollup_affiliate(session, account.affiliate_id, start, end, month, clock.now())
        await session.commit()

        assert earning.month == "2026-02"
        assert earning.total_commission == Decimal("50.51")
        assert earning.purchase_count == 2

    @pytest.mark.asyncio
    async def test_rerun_overwrites_same_row(self, session, clock, account, make_click, convert_click):
        clock.set(datetime(2026, 2, 10, tzinfo=UTC))
        click = await make_click(account)
        await convert_click(click.id, 1000)
        clock.set(datetime(2026, 3, 1, tzinfo=UTC))
        start, end, month = previous_month_bounds(clock.now())

        for _ in range(3):
            await rollup_affiliate(session, account.affiliate_id, start, end, month, clock.now())
            await session.commit()

        count = (await session.execute(
            select(func.count(MonthlyEarningRow.id)).where(
                MonthlyEarningRow.affiliate_id == account.affiliate_id,
                MonthlyEarningRow.month == "2026-02",
            )
        )).scalar()
        assert count == 1

        earnings = await get_monthly_earnings(session, account.affiliate_id)
        assert [(e.month, e.total_commission) for e in earnings] == [("2026-02", Decimal("50.00"))]

    @pytest.mark.asyncio
    async def test_no_purchases_records_zero(self, session, clock, account):
        clock.set(datetime(2026, 3, 1, tzinfo=UTC) + timedelta(hours=1))
        start, end, month = previous_month_bounds(clock.now())
        earning = await rollup_affiliate(session, account.affiliate_id, start, end, month, clock.now())
        assert earning.total_commission == Decimal("0.00")
        assert earning.purchase_count == 0
