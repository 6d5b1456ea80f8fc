#!/usr/bin/env python3
"""Affiliate ops CLI: run maintenance jobs once, outside the scheduler.

Usage:
  python scripts/jobs_cli.py run trending                 # Recompute trending scores
  python scripts/jobs_cli.py run monthly_rollup 2026-09   # Roll up a specific month
  python scripts/jobs_cli.py run retention_reap
  python scripts/jobs_cli.py create-account NAME EMAIL PASSWORD [RATE]
"""
import asyncio
import json
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def _ensure_tables():
    from src.db.engine import engine
    from src.db.tables import Base
    import src.db.affiliate_tables  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def cmd_run(name: str, month: str | None = None):
    from src.db.engine import async_session, engine
    from src.services.notifier import build_notifier
    from src.services.scheduler import SchedulerService

    await _ensure_tables()
    service = SchedulerService(async_session, notifier=build_notifier())
    kwargs = {"month": month} if month else {}
    report = await service.run_job(name, **kwargs)
    await engine.dispose()
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.outcome.value == "completed" else 1


async def cmd_create_account(name: str, email: str, password: str, rate: str | None = None):
    from src.db.engine import async_session, engine
    from src.services.accounts import create_affiliate_account

    await _ensure_tables()
    async with async_session() as session:
        account = await create_affiliate_account(session, name, email, password, commission_rate=rate)
        await session.commit()
    await engine.dispose()
    print(f"Created {account.affiliate_id} ({account.email}) at {account.commission_rate}%")
    return 0


def main(argv: list[str]) -> int:
    from src.logging_config import setup_logging
    setup_logging()

    if len(argv) >= 2 and argv[0] == "run":
        return asyncio.run(cmd_run(argv[1], argv[2] if len(argv) > 2 else None))
    if len(argv) >= 4 and argv[0] == "create-account":
        return asyncio.run(cmd_create_account(*argv[1:5]))
    print(__doc__)
    return 2


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
