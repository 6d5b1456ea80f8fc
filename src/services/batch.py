"""Per-item isolated batch execution for scheduled jobs.

One item's exception or timeout is logged with its id and counted; the loop
always finishes and reports counts instead of raising.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BatchReport:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_ids: list[str] = field(default_factory=list)


async def run_isolated(
    items: Iterable[T],
    handler: Callable[[T], Awaitable[object]],
    *,
    key: Callable[[T], str] = str,
    timeout: Optional[float] = None,
    concurrency: int = 1,
    label: str = "batch",
) -> BatchReport:
    """Run `handler` over every item with bounded parallelism."""
    report = BatchReport()
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _one(item: T) -> None:
        item_id = key(item)
        async with semaphore:
            try:
                if timeout:
                    await asyncio.wait_for(handler(item), timeout=timeout)
                else:
                    await handler(item)
            except asyncio.TimeoutError:
                report.failed += 1
                report.failed_ids.append(item_id)
                logger.error("%s: item %s timed out after %ss", label, item_id, timeout)
            except Exception:
                report.failed += 1
                report.failed_ids.append(item_id)
                logger.exception("%s: item %s failed", label, item_id)
            else:
                report.succeeded += 1
            finally:
                report.processed += 1

    await asyncio.gather(*(_one(item) for item in items))
    return report
