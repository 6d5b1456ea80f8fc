"""Tests for the click ledger: record, annotate, convert, list, expire."""
from datetime import timedelta
from decimal import Decimal

import pytest

from src.db.affiliate_tables import AffiliateClickRow
from src.db.repository import ClickLedger
from src.errors import (
    AlreadyConvertedError,
    ExpiredAttributionError,
    NotFoundError,
    ValidationError,
)
from src.models.affiliate import ClickFilters, ClickState, DeviceMetadata, Platform


class TestRecordClick:
    @pytest.mark.asyncio
    async def test_new_click_is_clicked_with_thirty_day_window(self, session, clock, account, t0):
        ledger = ClickLedger(session, clock=clock)
        click = await ledger.record_click(
            account.affiliate_id, account.id, "prod-1", "amazon",
            "https://example.com", "https://www.amazon.in/dp/prod-1",
        )
        assert click.state == ClickState.CLICKED
        assert click.platform == Platform.AMAZON
        assert click.clicked_at == t0
        assert click.expires_at == t0 + timedelta(days=30)
        assert click.commission is None
        assert click.purchase_amount is None

    @pytest.mark.asyncio
    async def test_unsupported_platform(self, session, clock, account):
        with pytest.raises(ValidationError):
            await ClickLedger(session, clock=clock).record_click(
                account.affiliate_id, account.id, "prod-1", "ebay", "https://a", "https://b",
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("affiliate_id", ["", "user_123", "aff_", "aff_bad id"])
    async def test_malformed_affiliate_id(self, session, clock, account, affiliate_id):
        with pytest.raises(ValidationError):
            await ClickLedger(session, clock=clock).record_click(
                affiliate_id, account.id, "prod-1", "amazon", "https://a", "https://b",
            )

    @pytest.mark.asyncio
    async def test_malformed_product_id(self, session, clock, account):
        with pytest.raises(ValidationError):
            await ClickLedger(session, clock=clock).record_click(
                account.affiliate_id, account.id, "x" * 101, "amazon", "https://a", "https://b",
            )


class TestAnnotate:
    @pytest.mark.asyncio
    async def test_clicked_becomes_tracked(self, session, clock, account, make_click):
        click = await make_click(account)
        ledger = ClickLedger(session, clock=clock)
        updated = await ledger.annotate(click.id, DeviceMetadata(device="mobile", user_agent="UA/1.0"))
        assert updated.state == ClickState.TRACKED
        assert updated.device.value == "mobile"
        assert updated.user_agent == "UA/1.0"
        assert updated.expires_at == click.expires_at

    @pytest.mark.asyncio
    async def test_empty_fields_do_not_overwrite(self, session, clock, account, make_click):
        click = await make_click(account)
        ledger = ClickLedger(session, clock=clock)
        await ledger.annotate(click.id, {"user_agent": "UA/1.0", "ip_address": "10.0.0.1"})
        updated = await ledger.annotate(click.id, {"ip_address": "10.0.0.2"})
        assert updated.user_agent == "UA/1.0"
        assert updated.ip_address == "10.0.0.2"

    @pytest.mark.asyncio
    async def test_converted_state_is_kept(self, session, clock, account, make_click, convert_click):
        click = await make_click(account)
        await convert_click(click.id, 100)
        updated = await ClickLedger(session, clock=clock).annotate(click.id, {"browser": "firefox"})
        assert updated.state == ClickState.CONVERTED
        assert updated.browser == "firefox"

    @pytest.mark.asyncio
    async def test_conversion_after_load_is_not_undone(self, session, clock, account, make_click, convert_click):
        click = await make_click(account)
        loaded = await session.get(AffiliateClickRow, click.id)
        assert loaded.state == ClickState.CLICKED

        # The purchase commits from another session while this one holds a Clicked row
        await convert_click(click.id, 1000)

        updated = await ClickLedger(session, clock=clock).annotate(click.id, DeviceMetadata(user_agent="UA/2.0"))
        await session.commit()
        assert updated.state == ClickState.CONVERTED
        assert updated.commission == Decimal("50.00")
        assert updated.user_agent == "UA/2.0"

        with pytest.raises(AlreadyConvertedError):
            await convert_click(click.id, 1000)

    @pytest.mark.asyncio
    async def test_unknown_click(self, session, clock):
        with pytest.raises(NotFoundError):
            await ClickLedger(session, clock=clock).annotate("missing", {"device": "desktop"})


class TestConvert:
    @pytest.mark.asyncio
    async def test_sets_purchase_fields_together(self, session, clock, account, make_click, t0):
        click = await make_click(account)
        clock.advance(days=2)
        converted = await ClickLedger(session, clock=clock).convert(click.id, Decimal("1000"), Decimal("5"))
        assert converted.state == ClickState.CONVERTED
        assert converted.purchase_amount == Decimal("1000.00")
        assert converted.commission == Decimal("50.00")
        assert converted.purchased_at == t0 + timedelta(days=2)

    @pytest.mark.asyncio
    async def test_second_convert_loses_and_leaves_values(self, session, session_factory, clock, account, make_click):
        click = await make_click(account)
        ledger = ClickLedger(session, clock=clock)
        first = await ledger.convert(click.id, 1000, 5)
        await session.commit()

        with pytest.raises(AlreadyConvertedError):
            await ledger.convert(click.id, 2000, 10)

        async with session_factory() as s:
            row = await s.get(AffiliateClickRow, click.id)
            assert row.commission == first.commission
            assert Decimal(str(row.purchase_amount)) == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_stale_reader_cannot_double_convert(self, session, session_factory, clock, account, make_click):
        """A caller that read the click before another converted it still loses the CAS."""
        click = await make_click(account)
        async with session_factory() as other:
            stale = await ClickLedger(other, clock=clock).get(click.id)
            assert stale.state == ClickState.CLICKED
            await ClickLedger(session, clock=clock).convert(click.id, 500, 5)
            await session.commit()
            with pytest.raises(AlreadyConvertedError):
                await ClickLedger(other, clock=clock).convert(click.id, 500, 5)

    @pytest.mark.asyncio
    async def test_after_expiry_rejected_and_untouched(self, session, session_factory, clock, account, make_click):
        click = await make_click(account)
        clock.advance(days=30, seconds=1)
        with pytest.raises(ExpiredAttributionError):
            await ClickLedger(session, clock=clock).convert(click.id, 1000, 5)

        async with session_factory() as s:
            row = await s.get(AffiliateClickRow, click.id)
            assert row.state == ClickState.CLICKED
            assert row.commission is None
            assert row.expires_at == click.expires_at

    @pytest.mark.asyncio
    async def test_exactly_at_expiry_still_converts(self, session, clock, account, make_click):
        click = await make_click(account)
        clock.set(click.expires_at)
        converted = await ClickLedger(session, clock=clock).convert(click.id, 10, 5)
        assert converted.state == ClickState.CONVERTED

    @pytest.mark.asyncio
    async def test_unknown_click(self, session, clock):
        with pytest.raises(NotFoundError):
            await ClickLedger(session, clock=clock).convert("nope", 10, 5)

    @pytest.mark.asyncio
    async def test_invalid_amount(self, session, clock, account, make_click):
        click = await make_click(account)
        with pytest.raises(ValidationError):
            await ClickLedger(session, clock=clock).convert(click.id, -5, 5)


class TestListAndStats:
    @pytest.mark.asyncio
    async def test_newest_first_with_filters(self, session, clock, account, make_click):
        first = await make_click(account, product_id="p1", platform="amazon")
        clock.advance(hours=1)
        second = await make_click(account, product_id="p2", platform="flipkart")
        ledger = ClickLedger(session, clock=clock)

        clicks = await ledger.list_by_affiliate(account.affiliate_id)
        assert [c.id for c in clicks] == [second.id, first.id]

        only_flipkart = await ledger.list_by_affiliate(
            account.affiliate_id, ClickFilters(platform=Platform.FLIPKART)
        )
        assert [c.id for c in only_flipkart] == [second.id]

        paged = await ledger.list_by_affiliate(account.affiliate_id, ClickFilters(limit=1, offset=1))
        assert [c.id for c in paged] == [first.id]

    @pytest.mark.asyncio
    async def test_stats(self, session, clock, account, make_click, convert_click):
        a = await make_click(account, platform="amazon")
        await make_click(account, platform="amazon")
        await make_click(account, platform="flipkart")
        await convert_click(a.id, 1000)

        stats = await ClickLedger(session, clock=clock).stats_for_affiliate(account.affiliate_id)
        assert stats["total_clicks"] == 3
        assert stats["successful_purchases"] == 1
        assert stats["conversion_rate"] == pytest.approx(1 / 3)
        assert stats["total_revenue"] == Decimal("50.00")
        assert stats["this_month_earnings"] == Decimal("50.00")
        assert stats["clicks_by_platform"] == {"amazon": 2, "flipkart": 1}


class TestExpireBatch:
    @pytest.mark.asyncio
    async def test_only_expired_unconverted_removed(self, session, session_factory, clock, account, make_click, convert_click):
        stale = await make_click(account, product_id="stale")
        kept = await make_click(account, product_id="kept")
        await convert_click(kept.id, 100)
        clock.advance(days=20)
        fresh = await make_click(account, product_id="fresh")
        clock.advance(days=11)

        deleted = await ClickLedger(session, clock=clock).expire_batch(clock.now())
        await session.commit()
        assert deleted == 1

        async with session_factory() as s:
            assert await s.get(AffiliateClickRow, stale.id) is None
            assert await s.get(AffiliateClickRow, kept.id) is not None
            assert await s.get(AffiliateClickRow, fresh.id) is not None

    @pytest.mark.asyncio
    async def test_admin_purge_includes_converted(self, session, clock, account, make_click, convert_click):
        click = await make_click(account)
        await convert_click(click.id, 100)
        clock.advance(days=31)
        deleted = await ClickLedger(session, clock=clock).expire_batch(clock.now(), unconverted_only=False)
        assert deleted == 1

    @pytest.mark.asyncio
    async def test_empty_id_list_is_noop(self, session, clock):
        assert await ClickLedger(session, clock=clock).expire_batch(clock.now(), click_ids=[]) == 0
