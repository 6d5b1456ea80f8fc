"""
Click Retention Service
---
Bounds ledger growth by purging click records that can never convert.

Handles:
- Never-converted clicks whose 30-day attribution window has closed
  (state != converted AND expires_at < now) → transitioned to expired and deleted
- Converted clicks are the commission audit trail and are kept forever

Run via: scheduled task (daily at 3 AM UTC) or manual admin trigger.

Endpoints:
- POST /api/v1/admin/retention/run       Trigger retention sweep
- GET  /api/v1/admin/retention/stats      View retention statistics
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.auth import require_admin
from src.db.affiliate_tables import AffiliateClickRow
from src.db.engine import get_session
from src.db.repository import ClickLedger
from src.models.affiliate import ClickState
from src.services.clock import get_clock, system_clock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin/retention", tags=["admin", "retention"])


@dataclass
class RetentionResult:
    """Results from a retention sweep."""
    processed: int = 0
    deleted: int = 0
    failed: int = 0
    failed_ids: list[str] = field(default_factory=list)
    dry_run: bool = False
    started_at: str = ""
    completed_at: str = ""
    duration_ms: int = 0

    @property
    def succeeded(self) -> int:
        return self.deleted


class RetentionReaper:
    """Deletes expired, never-converted clicks in SAVEPOINT-guarded chunks.

    A chunk that fails is retried one row at a time so a single bad row is
    counted and skipped instead of aborting the sweep.
    """

    def __init__(
        self,
        session: AsyncSession,
        clock=system_clock,
        batch_size: int = settings.RETENTION_BATCH_SIZE,
    ):
        self.session = session
        self.clock = clock
        self.batch_size = max(1, batch_size)
        self.ledger = ClickLedger(session, clock=clock)

    async def _expire(self, now: datetime, click_ids: list[str]) -> int:
        async with self.session.begin_nested():
            return await self.ledger.expire_batch(now, unconverted_only=True, click_ids=click_ids)

    async def _expire_one_by_one(self, now: datetime, click_ids: list[str], result: RetentionResult):
        for click_id in click_ids:
            try:
                result.deleted += await self._expire(now, [click_id])
            except Exception:
                result.failed += 1
                result.failed_ids.append(click_id)
                logger.exception("Retention: could not reap click %s", click_id)

    async def run(self, dry_run: bool = False) -> RetentionResult:
        """Execute the sweep. Core function used by both API and scheduler. Caller commits."""
        start = self.clock.now()
        result = RetentionResult(dry_run=dry_run, started_at=start.isoformat())

        # Keyset paging keeps one chunk of ids in memory; rows that fail stay
        # behind the cursor and are left for the next sweep.
        cursor = None
        while True:
            chunk = await self.ledger.reapable_ids(start, limit=self.batch_size, after=cursor)
            if not chunk:
                break
            cursor = chunk[-1]
            result.processed += len(chunk)
            if dry_run:
                continue
            try:
                result.deleted += await self._expire(start, chunk)
            except Exception:
                logger.warning(
                    "Retention: chunk of %d failed, retrying row by row", len(chunk), exc_info=True
                )
                await self._expire_one_by_one(start, chunk, result)

        end = self.clock.now()
        result.completed_at = end.isoformat()
        result.duration_ms = int((end - start).total_seconds() * 1000)

        logger.info(
            f"Retention sweep {'(DRY RUN) ' if dry_run else ''}"
            f"completed in {result.duration_ms}ms: "
            f"candidates={result.processed} deleted={result.deleted} failed={result.failed}"
        )
        return result


async def run_retention_sweep(
    session: AsyncSession, dry_run: bool = False, clock=system_clock
) -> RetentionResult:
    result = await RetentionReaper(session, clock=clock).run(dry_run=dry_run)
    if dry_run:
        await session.rollback()
    else:
        await session.commit()
    return result


# ── API Endpoints ─────────────────────────────────────────────────────────────

@router.post("/run")
async def trigger_retention_sweep(
    dry_run: bool = Query(False, description="Preview only, don't actually delete"),
    admin=Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    clock=Depends(get_clock),
):
    """Trigger a click retention sweep.

    Admin-only. Pass ?dry_run=true to preview what would be purged.
    In production, this runs automatically via the scheduler at 3 AM UTC daily.
    """
    result = await run_retention_sweep(session, dry_run=dry_run, clock=clock)
    return {
        "status": "preview" if dry_run else "completed",
        "result": {
            "processed": result.processed,
            "deleted": result.deleted,
            "failed": result.failed,
            "duration_ms": result.duration_ms,
        },
    }


@router.get("/stats")
async def retention_stats(
    admin=Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    clock=Depends(get_clock),
):
    """How many click records exist, and how many the next sweep would purge."""
    now = clock.now()
    stats: dict[str, Optional[int] | dict] = {}

    result = await session.execute(select(func.count(AffiliateClickRow.id)))
    stats["total_clicks"] = result.scalar() or 0

    result = await session.execute(
        select(func.count(AffiliateClickRow.id))
        .where(AffiliateClickRow.state == ClickState.CONVERTED)
    )
    stats["converted_clicks"] = result.scalar() or 0

    result = await session.execute(
        select(func.count(AffiliateClickRow.id)).where(
            AffiliateClickRow.state != ClickState.CONVERTED,
            AffiliateClickRow.expires_at < now,
        )
    )
    stats["reapable_clicks"] = result.scalar() or 0

    stats["retention_policy"] = {
        "attribution_window_days": settings.ATTRIBUTION_WINDOW_DAYS,
        "batch_size": settings.RETENTION_BATCH_SIZE,
        "converted_retention": "indefinite",
    }
    return stats
