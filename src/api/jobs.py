"""Admin endpoints for the recurring jobs."""
from __future__ import annotations

import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from src.auth import require_admin
from src.errors import ValidationError
from src.services.scheduler import JobName, SchedulerService

router = APIRouter(prefix="/api/v1/admin/jobs", tags=["admin", "jobs"])

_MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def get_scheduler(request: Request) -> SchedulerService:
    service = getattr(request.app.state, "scheduler", None)
    if service is None:
        raise HTTPException(503, "Scheduler not available")
    return service


@router.get("")
async def list_jobs(admin=Depends(require_admin), service: SchedulerService = Depends(get_scheduler)):
    return {"jobs": [status.to_dict() for status in service.status()]}


@router.post("/{name}/run")
async def run_job(
    name: str,
    month: Optional[str] = Query(None, description="YYYY-MM, monthly_rollup only"),
    admin=Depends(require_admin),
    service: SchedulerService = Depends(get_scheduler),
):
    """Run a job now and wait for its report. 409 if it is already running."""
    try:
        job = JobName(name)
    except ValueError:
        raise HTTPException(404, f"Unknown job '{name}'")

    kwargs = {}
    if month is not None:
        if job != JobName.MONTHLY_ROLLUP:
            raise ValidationError("month only applies to monthly_rollup")
        if not _MONTH_RE.match(month):
            raise ValidationError("month must be YYYY-MM")
        kwargs["month"] = month

    if service.is_running(job):
        raise HTTPException(409, f"Job '{job.value}' is already running")
    report = await service.run_job(job, **kwargs)
    if report is None:
        raise HTTPException(409, f"Job '{job.value}' is already running")
    return report.to_dict()
