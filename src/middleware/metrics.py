"""Prometheus-compatible metrics endpoint, request tracking and job counters."""
from __future__ import annotations

import time
from collections import defaultdict
from threading import Lock

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response


class _Metrics:
    """Thread-safe in-memory metrics collector."""

    def __init__(self):
        self._lock = Lock()
        self.startup_time = time.time()
        self.reset()

    def reset(self):
        with self._lock:
            self.request_count: dict[tuple[str, str, int], int] = defaultdict(int)
            self.request_duration_sum: dict[tuple[str, str], float] = defaultdict(float)
            self.request_duration_count: dict[tuple[str, str], int] = defaultdict(int)
            self.active_requests = 0
            self.job_runs: dict[tuple[str, str], int] = defaultdict(int)
            self.job_items: dict[tuple[str, str], int] = defaultdict(int)
            self.job_skips: dict[str, int] = defaultdict(int)
            self.job_last_duration: dict[str, float] = {}

    def record(self, method: str, path: str, status: int, duration: float):
        with self._lock:
            self.request_count[(method, path, status)] += 1
            self.request_duration_sum[(method, path)] += duration
            self.request_duration_count[(method, path)] += 1

    def record_job(self, report):
        """Count one finished job run (a scheduler JobReport)."""
        outcome = getattr(report.outcome, "value", report.outcome)
        with self._lock:
            self.job_runs[(report.job, outcome)] += 1
            self.job_items[(report.job, "succeeded")] += report.succeeded
            self.job_items[(report.job, "failed")] += report.failed
            self.job_last_duration[report.job] = report.duration_ms / 1000

    def record_job_skip(self, job: str):
        with self._lock:
            self.job_skips[job] += 1

    def inc_active(self):
        with self._lock:
            self.active_requests += 1

    def dec_active(self):
        with self._lock:
            self.active_requests -= 1

    def render(self) -> str:
        lines: list[str] = []
        lines.append("# HELP affiliate_http_requests_total Total HTTP requests")
        lines.append("# TYPE affiliate_http_requests_total counter")
        with self._lock:
            for (method, path, status), count in sorted(self.request_count.items()):
                lines.append(
                    f'affiliate_http_requests_total{{method="{method}",path="{path}",status="{status}"}} {count}'
                )

            lines.append("")
            lines.append("# HELP affiliate_http_request_duration_seconds HTTP request duration")
            lines.append("# TYPE affiliate_http_request_duration_seconds summary")
            for (method, path), total in sorted(self.request_duration_sum.items()):
                count = self.request_duration_count[(method, path)]
                lines.append(
                    f'affiliate_http_request_duration_seconds_sum{{method="{method}",path="{path}"}} {total:.6f}'
                )
                lines.append(
                    f'affiliate_http_request_duration_seconds_count{{method="{method}",path="{path}"}} {count}'
                )

            lines.append("")
            lines.append("# HELP affiliate_active_requests Current in-flight requests")
            lines.append("# TYPE affiliate_active_requests gauge")
            lines.append(f"affiliate_active_requests {self.active_requests}")

            lines.append("")
            lines.append("# HELP affiliate_job_runs_total Scheduled job runs by outcome")
            lines.append("# TYPE affiliate_job_runs_total counter")
            for (job, outcome), count in sorted(self.job_runs.items()):
                lines.append(f'affiliate_job_runs_total{{job="{job}",outcome="{outcome}"}} {count}')

            lines.append("")
            lines.append("# HELP affiliate_job_items_total Items processed by scheduled jobs")
            lines.append("# TYPE affiliate_job_items_total counter")
            for (job, result), count in sorted(self.job_items.items()):
                lines.append(f'affiliate_job_items_total{{job="{job}",result="{result}"}} {count}')

            lines.append("")
            lines.append("# HELP affiliate_job_skipped_total Triggers skipped because the job was still running")
            lines.append("# TYPE affiliate_job_skipped_total counter")
            for job, count in sorted(self.job_skips.items()):
                lines.append(f'affiliate_job_skipped_total{{job="{job}"}} {count}')

            lines.append("")
            lines.append("# HELP affiliate_job_last_duration_seconds Duration of the last run")
            lines.append("# TYPE affiliate_job_last_duration_seconds gauge")
            for job, seconds in sorted(self.job_last_duration.items()):
                lines.append(f'affiliate_job_last_duration_seconds{{job="{job}"}} {seconds:.3f}')

            lines.append("")
            lines.append("# HELP affiliate_uptime_seconds Seconds since process start")
            lines.append("# TYPE affiliate_uptime_seconds gauge")
            lines.append(f"affiliate_uptime_seconds {time.time() - self.startup_time:.1f}")

        return "\n".join(lines) + "\n"


metrics = _Metrics()


def _normalize_path(path: str) -> str:
    """Collapse IDs in paths to reduce cardinality. /affiliates/aff_123_x/... -> /affiliates/:id/..."""
    parts = path.rstrip("/").split("/")
    normalized = []
    for part in parts:
        if part.isdigit() or part.startswith("aff_") or (len(part) > 20 and part.replace("-", "").isalnum()):
            normalized.append(":id")
        else:
            normalized.append(part)
    return "/".join(normalized) or "/"


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return PlainTextResponse(metrics.render(), media_type="text/plain; version=0.0.4")

        metrics.inc_active()
        start = time.perf_counter()
        try:
            response = await call_next(request)
            duration = time.perf_counter() - start
            metrics.record(
                request.method,
                _normalize_path(request.url.path),
                response.status_code,
                duration,
            )
            return response
        except Exception:
            duration = time.perf_counter() - start
            metrics.record(request.method, _normalize_path(request.url.path), 500, duration)
            raise
        finally:
            metrics.dec_active()
