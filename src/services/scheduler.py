"""Recurring maintenance jobs on APScheduler.

`SchedulerService` is built once at process start with its collaborators
(session factory, clock, notifier) passed in; there is no module-level
scheduler. Each job moves idle -> running -> completed|failed -> idle, and a
trigger that fires while the same job is still running is skipped.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from config.settings import settings
from src.db.repository import AffiliateAccountRepository
from src.middleware.metrics import metrics
from src.services.batch import BatchReport, run_isolated
from src.services.clock import system_clock
from src.services.data_retention import RetentionReaper
from src.services.notifier import LoggingNotifier, Notifier
from src.services.price_alerts import evaluate_watch_item, list_watch_ids
from src.services.rollup import month_bounds, previous_month_bounds, rollup_affiliate
from src.services.trending import ProductActivity, TrendingAggregator, upsert_trending_score

logger = logging.getLogger(__name__)


class JobName(str, Enum):
    PRICE_ALERTS = "price_alerts"
    TRENDING = "trending"
    MONTHLY_ROLLUP = "monthly_rollup"
    RETENTION_REAP = "retention_reap"


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobReport:
    job: str
    outcome: JobState
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    started_at: str = ""
    finished_at: str = ""
    duration_ms: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["outcome"] = self.outcome.value
        return d


@dataclass
class JobStatus:
    name: str
    cron: str
    state: JobState = JobState.IDLE
    last_outcome: Optional[JobState] = None
    last_report: Optional[JobReport] = None
    runs: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "cron": self.cron,
            "state": self.state.value,
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "last_report": self.last_report.to_dict() if self.last_report else None,
            "runs": self.runs,
            "skipped": self.skipped,
        }


@dataclass
class SchedulerConfig:
    price_alert_cron: str = "0 8 * * *"
    trending_cron: str = "0 2 * * mon"
    monthly_rollup_cron: str = "0 0 1 * *"
    retention_cron: str = "0 3 * * *"
    item_timeout: Optional[float] = 30.0
    concurrency: int = 1
    trending_window_days: int = 7
    trending_top_n: int = 50
    retention_batch_size: int = 500
    timezone: str = "UTC"

    @classmethod
    def from_settings(cls, s=settings) -> "SchedulerConfig":
        return cls(
            price_alert_cron=s.PRICE_ALERT_CRON,
            trending_cron=s.TRENDING_CRON,
            monthly_rollup_cron=s.MONTHLY_ROLLUP_CRON,
            retention_cron=s.RETENTION_CRON,
            item_timeout=s.JOB_ITEM_TIMEOUT_SECONDS or None,
            concurrency=s.JOB_CONCURRENCY,
            trending_window_days=s.TRENDING_WINDOW_DAYS,
            trending_top_n=s.TRENDING_TOP_N,
            retention_batch_size=s.RETENTION_BATCH_SIZE,
        )

    def cron_for(self, job: JobName) -> str:
        return {
            JobName.PRICE_ALERTS: self.price_alert_cron,
            JobName.TRENDING: self.trending_cron,
            JobName.MONTHLY_ROLLUP: self.monthly_rollup_cron,
            JobName.RETENTION_REAP: self.retention_cron,
        }[job]


class SchedulerService:
    def __init__(
        self,
        session_factory,
        clock=system_clock,
        notifier: Optional[Notifier] = None,
        config: Optional[SchedulerConfig] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.notifier = notifier or LoggingNotifier()
        self.config = config or SchedulerConfig.from_settings()
        self._scheduler = scheduler or AsyncIOScheduler(timezone=self.config.timezone)
        self._runners: dict[JobName, Callable[..., Awaitable[BatchReport]]] = {
            JobName.PRICE_ALERTS: self._run_price_alerts,
            JobName.TRENDING: self._run_trending,
            JobName.MONTHLY_ROLLUP: self._run_monthly_rollup,
            JobName.RETENTION_REAP: self._run_retention_reap,
        }
        self._jobs: dict[JobName, JobStatus] = {
            name: JobStatus(name=name.value, cron=self.config.cron_for(name)) for name in JobName
        }

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Register every job on its cron cadence and start the loop."""
        for name in JobName:
            self._scheduler.add_job(
                self.run_job,
                trigger=CronTrigger.from_crontab(self.config.cron_for(name), timezone=self.config.timezone),
                args=[name],
                id=name.value,
                name=name.value.replace("_", " "),
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        self._scheduler.start()
        logger.info("Scheduler started with jobs: %s", ", ".join(
            f"{s.name}({s.cron})" for s in self._jobs.values()
        ))

    def stop(self) -> None:
        """Gracefully shut down the scheduler."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    # ── Status ───────────────────────────────────────────────────────────────

    def status(self) -> list[JobStatus]:
        return list(self._jobs.values())

    def job_status(self, name) -> JobStatus:
        return self._jobs[JobName(name)]

    def is_running(self, name) -> bool:
        return self.job_status(name).state == JobState.RUNNING

    # ── Execution ────────────────────────────────────────────────────────────

    async def run_job(self, name, **kwargs) -> Optional[JobReport]:
        """Run one job now. Returns None when skipped because it is already running."""
        job = JobName(name)
        status = self._jobs[job]
        if status.state == JobState.RUNNING:
            status.skipped += 1
            metrics.record_job_skip(job.value)
            logger.warning("Job %s still running, skipping this trigger", job.value, extra={"job": job.value})
            return None

        status.state = JobState.RUNNING
        started = self.clock.now()
        logger.info("Job %s starting", job.value, extra={"job": job.value})
        try:
            batch = await self._runners[job](**kwargs)
        except Exception as exc:
            finished = self.clock.now()
            report = JobReport(
                job=job.value,
                outcome=JobState.FAILED,
                started_at=started.isoformat(),
                finished_at=finished.isoformat(),
                duration_ms=int((finished - started).total_seconds() * 1000),
                error=type(exc).__name__,
            )
            logger.exception("Job %s failed", job.value, extra={"job": job.value})
        else:
            finished = self.clock.now()
            report = JobReport(
                job=job.value,
                outcome=JobState.COMPLETED,
                processed=batch.processed,
                succeeded=batch.succeeded,
                failed=batch.failed,
                started_at=started.isoformat(),
                finished_at=finished.isoformat(),
                duration_ms=int((finished - started).total_seconds() * 1000),
            )
            logger.info(
                "Job %s completed: processed=%d succeeded=%d failed=%d",
                job.value, report.processed, report.succeeded, report.failed,
                extra={"job": job.value},
            )
        finally:
            status.state = JobState.IDLE

        status.last_outcome = report.outcome
        status.last_report = report
        status.runs += 1
        metrics.record_job(report)
        return report

    async def _isolated(self, items, handler, key=str, label="batch") -> BatchReport:
        return await run_isolated(
            items,
            handler,
            key=key,
            timeout=self.config.item_timeout,
            concurrency=self.config.concurrency,
            label=label,
        )

    async def _run_price_alerts(self) -> BatchReport:
        now = self.clock.now()
        async with self.session_factory() as session:
            watch_ids = await list_watch_ids(session)

        async def handle(watch_id: str) -> None:
            async with self.session_factory() as session:
                alert = await evaluate_watch_item(session, watch_id, now)
                if alert is not None:
                    await self.notifier.send_price_alert(
                        alert.recipient, alert.product_title,
                        alert.old_price, alert.new_price, alert.url,
                    )
                await session.commit()

        return await self._isolated(watch_ids, handle, label=JobName.PRICE_ALERTS.value)

    async def _run_trending(self) -> BatchReport:
        now = self.clock.now()
        async with self.session_factory() as session:
            aggregator = TrendingAggregator(
                session,
                clock=self.clock,
                window_days=self.config.trending_window_days,
                top_n=self.config.trending_top_n,
            )
            ranked = await aggregator.compute(now)

        async def handle(activity: ProductActivity) -> None:
            async with self.session_factory() as session:
                await upsert_trending_score(session, activity.product_id, activity.score, now, activity)
                await session.commit()

        return await self._isolated(
            ranked, handle, key=lambda a: a.product_id, label=JobName.TRENDING.value
        )

    async def _run_monthly_rollup(self, month: Optional[str] = None) -> BatchReport:
        now = self.clock.now()
        if month:
            start, end = month_bounds(month, now.tzinfo)
        else:
            start, end, month = previous_month_bounds(now)
        async with self.session_factory() as session:
            affiliate_ids = await AffiliateAccountRepository(session).list_affiliate_ids()

        async def handle(affiliate_id: str) -> None:
            async with self.session_factory() as session:
                await rollup_affiliate(session, affiliate_id, start, end, month, now)
                await session.commit()

        return await self._isolated(affiliate_ids, handle, label=JobName.MONTHLY_ROLLUP.value)

    async def _run_retention_reap(self) -> BatchReport:
        async with self.session_factory() as session:
            reaper = RetentionReaper(
                session, clock=self.clock, batch_size=self.config.retention_batch_size
            )
            result = await reaper.run()
            await session.commit()
        return BatchReport(
            processed=result.processed,
            succeeded=result.deleted,
            failed=result.failed,
            failed_ids=list(result.failed_ids),
        )
