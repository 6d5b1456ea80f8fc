"""Tests for the click retention reaper."""
from dataclasses import asdict

import pytest

from src.db.affiliate_tables import AffiliateClickRow
from src.services.data_retention import RetentionReaper, RetentionResult, run_retention_sweep


class TestRetentionResult:
    def test_default_values(self):
        r = RetentionResult()
        assert r.processed == 0
        assert r.deleted == 0
        assert r.failed == 0
        assert r.failed_ids == []
        assert r.dry_run is False

    def test_serializable(self):
        d = asdict(RetentionResult(processed=3, deleted=2, failed=1, failed_ids=["x"], duration_ms=5))
        assert d["deleted"] == 2
        assert d["failed_ids"] == ["x"]


class TestReaper:
    @pytest.mark.asyncio
    async def test_converted_never_deleted(self, session, session_factory, clock, account, make_click, convert_click):
        converted = await make_click(account, product_id="bought")
        await convert_click(converted.id, 100)
        abandoned = await make_click(account, product_id="abandoned")
        clock.advance(days=60)

        result = await run_retention_sweep(session, clock=clock)
        assert result.processed == 1
        assert result.deleted == 1
        assert result.failed == 0

        async with session_factory() as s:
            assert await s.get(AffiliateClickRow, converted.id) is not None
            assert await s.get(AffiliateClickRow, abandoned.id) is None

    @pytest.mark.asyncio
    async def test_open_window_kept(self, session, session_factory, clock, account, make_click):
        click = await make_click(account)
        clock.advance(days=29)
        result = await run_retention_sweep(session, clock=clock)
        assert result.deleted == 0
        async with session_factory() as s:
            assert await s.get(AffiliateClickRow, click.id) is not None

    @pytest.mark.asyncio
    async def test_tracked_clicks_are_reaped(self, session_factory, clock, account, make_click):
        from src.db.repository import ClickLedger

        click = await make_click(account)
        async with session_factory() as s:
            await ClickLedger(s, clock=clock).annotate(click.id, {"device": "tablet"})
            await s.commit()
        clock.advance(days=31)

        async with session_factory() as s:
            result = await run_retention_sweep(s, clock=clock)
        assert result.deleted == 1

    @pytest.mark.asyncio
    async def test_works_across_chunks(self, session, clock, account, make_click):
        for i in range(7):
            await make_click(account, product_id=f"p{i}")
        clock.advance(days=31)

        result = await RetentionReaper(session, clock=clock, batch_size=3).run()
        await session.commit()
        assert result.processed == 7
        assert result.deleted == 7

    @pytest.mark.asyncio
    async def test_candidates_are_fetched_one_page_at_a_time(self, session, clock, account, make_click):
        for i in range(7):
            await make_click(account, product_id=f"p{i}")
        clock.advance(days=31)

        reaper = RetentionReaper(session, clock=clock, batch_size=3)
        real_page = reaper.ledger.reapable_ids
        page_sizes = []

        async def spy(now, limit=None, after=None):
            ids = await real_page(now, limit=limit, after=after)
            assert limit == 3
            page_sizes.append(len(ids))
            return ids

        reaper.ledger.reapable_ids = spy
        result = await reaper.run()
        await session.commit()
        assert page_sizes == [3, 3, 1, 0]
        assert result.deleted == 7

    @pytest.mark.asyncio
    async def test_dry_run_pages_past_kept_rows(self, session, clock, account, make_click):
        for i in range(5):
            await make_click(account, product_id=f"p{i}")
        clock.advance(days=31)

        result = await RetentionReaper(session, clock=clock, batch_size=2).run(dry_run=True)
        assert result.processed == 5
        assert result.deleted == 0

    @pytest.mark.asyncio
    async def test_dry_run_deletes_nothing(self, session, session_factory, clock, account, make_click):
        click = await make_click(account)
        clock.advance(days=31)
        result = await run_retention_sweep(session, dry_run=True, clock=clock)
        assert result.dry_run is True
        assert result.processed == 1
        assert result.deleted == 0
        async with session_factory() as s:
            assert await s.get(AffiliateClickRow, click.id) is not None

    @pytest.mark.asyncio
    async def test_one_bad_row_does_not_abort_sweep(self, session, session_factory, clock, account, make_click):
        clicks = [await make_click(account, product_id=f"p{i}") for i in range(4)]
        bad_id = clicks[1].id
        clock.advance(days=31)

        reaper = RetentionReaper(session, clock=clock, batch_size=10)
        real_expire = reaper.ledger.expire_batch

        async def flaky_expire(older_than, unconverted_only=True, click_ids=None):
            if click_ids and bad_id in click_ids:
                raise RuntimeError("constraint violation")
            return await real_expire(older_than, unconverted_only=unconverted_only, click_ids=click_ids)

        reaper.ledger.expire_batch = flaky_expire
        result = await reaper.run()
        await session.commit()

        assert result.processed == 4
        assert result.deleted == 3
        assert result.failed == 1
        assert result.failed_ids == [bad_id]
        async with session_factory() as s:
            assert await s.get(AffiliateClickRow, bad_id) is not None
            assert await s.get(AffiliateClickRow, clicks[0].id) is None


class TestRetentionEndpoints:
    @pytest.mark.asyncio
    async def test_requires_admin_key(self, client, admin_headers):
        resp = await client.post("/api/v1/admin/retention/run", headers={"X-Admin-Key": "wrong"})
        assert resp.status_code == 403
        assert resp.json()["error"] == "forbidden"

    @pytest.mark.asyncio
    async def test_run_and_stats(self, client, admin_headers, clock, account, make_click, convert_click):
        keep = await make_click(account, product_id="keep")
        await convert_click(keep.id, 100)
        await make_click(account, product_id="drop")
        clock.advance(days=31)

        stats = (await client.get("/api/v1/admin/retention/stats", headers=admin_headers)).json()
        assert stats["total_clicks"] == 2
        assert stats["converted_clicks"] == 1
        assert stats["reapable_clicks"] == 1

        preview = await client.post("/api/v1/admin/retention/run?dry_run=true", headers=admin_headers)
        assert preview.json()["status"] == "preview"
        assert preview.json()["result"]["deleted"] == 0

        resp = await client.post("/api/v1/admin/retention/run", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "completed"
        assert resp.json()["result"]["deleted"] == 1

        stats = (await client.get("/api/v1/admin/retention/stats", headers=admin_headers)).json()
        assert stats["total_clicks"] == 1
        assert stats["reapable_clicks"] == 0
