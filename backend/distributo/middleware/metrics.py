"""Metrics endpoint and request tracking middleware.

Tracks: request count, latency, active requests, error rate, and scheduler
sweep outcomes.
"""
import time
import logging
from collections import defaultdict

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import PlainTextResponse, Response

from distributo.schemas.cron import SweepReport

logger = logging.getLogger(__name__)

# Simple in-memory metrics, per process
_metrics: dict[str, float] = defaultdict(float)
_histograms: dict[str, list[float]] = defaultdict(list)

_MAX_SAMPLES = 10_000


class MetricsMiddleware(BaseHTTPMiddleware):
    """Track request metrics."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.time()
        method = request.method
        path = request.url.path

        _metrics["http_requests_active"] += 1

        try:
            response = await call_next(request)
            status = response.status_code
        except Exception:
            status = 500
            _metrics["http_requests_errors_total"] += 1
            raise
        finally:
            duration = time.time() - start
            _metrics["http_requests_active"] -= 1
            _metrics["http_requests_total"] += 1
            _observe("http_request_duration_seconds", duration)

            key = f"http_requests_by_status_{status // 100}xx"
            _metrics[key] += 1

            if duration > 0.5:
                logger.warning("slow_request", extra={
                    "method": method, "path": path,
                    "duration_ms": round(duration * 1000, 2),
                    "status": status,
                })

        return response


def _observe(name: str, value: float) -> None:
    samples = _histograms[name]
    samples.append(value)
    if len(samples) > _MAX_SAMPLES:
        del samples[: len(samples) - _MAX_SAMPLES]


def record_sweep(report: SweepReport) -> None:
    """Fold a scheduler sweep report into the counters."""
    _metrics["scheduler_sweeps_total"] += 1
    _metrics["scheduler_posts_posted_total"] += report.succeeded
    _metrics["scheduler_posts_failed_total"] += report.failed
    _metrics["scheduler_posts_skipped_total"] += report.skipped
    _observe("scheduler_sweep_duration_seconds", report.duration_ms / 1000)


def get_metric(name: str) -> float:
    return _metrics[name]


def _percentile(data: list[float], p: float) -> float:
    if not data:
        return 0.0
    sorted_data = sorted(data)
    idx = int(len(sorted_data) * p / 100)
    return sorted_data[min(idx, len(sorted_data) - 1)]


def _summary(name: str, help_text: str) -> list[str]:
    samples = _histograms.get(name, [])
    return [
        f"# HELP {name} {help_text}",
        f"# TYPE {name} summary",
        f'{name}{{quantile="0.5"}} {_percentile(samples, 50):.6f}',
        f'{name}{{quantile="0.9"}} {_percentile(samples, 90):.6f}',
        f'{name}{{quantile="0.99"}} {_percentile(samples, 99):.6f}',
        f"{name}_count {len(samples)}",
        "",
    ]


def _counter(name: str, help_text: str, kind: str = "counter") -> list[str]:
    return [
        f"# HELP {name} {help_text}",
        f"# TYPE {name} {kind}",
        f"{name} {_metrics[name]:.0f}",
        "",
    ]


def setup_metrics(app: FastAPI) -> None:
    """Register the /metrics endpoint."""

    @app.get("/metrics", tags=["monitoring"], include_in_schema=False)
    async def metrics_endpoint():
        lines = [
            *_counter("http_requests_total", "Total HTTP requests"),
            *_counter("http_requests_active", "Active HTTP requests", kind="gauge"),
            *_counter("http_requests_errors_total", "Total HTTP errors"),
            *_summary("http_request_duration_seconds", "Request duration"),
            "# HELP http_requests_by_status HTTP requests by status class",
            "# TYPE http_requests_by_status counter",
            f'http_requests_by_status{{status="2xx"}} {_metrics["http_requests_by_status_2xx"]:.0f}',
            f'http_requests_by_status{{status="3xx"}} {_metrics["http_requests_by_status_3xx"]:.0f}',
            f'http_requests_by_status{{status="4xx"}} {_metrics["http_requests_by_status_4xx"]:.0f}',
            f'http_requests_by_status{{status="5xx"}} {_metrics["http_requests_by_status_5xx"]:.0f}',
            "",
            *_counter("scheduler_sweeps_total", "Scheduler sweeps run in this process"),
            *_counter("scheduler_posts_posted_total", "Scheduled posts published"),
            *_counter("scheduler_posts_failed_total", "Scheduled post attempts that failed"),
            *_counter("scheduler_posts_skipped_total", "Scheduled posts claimed by another sweep"),
            *_summary("scheduler_sweep_duration_seconds", "Sweep duration"),
        ]
        return PlainTextResponse("\n".join(lines), media_type="text/plain")
