"""Prometheus metrics for the API process and pipeline workers."""

import re
import time

from prometheus_client import Counter, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# --- Metrics ---

APP_INFO = Info("answerwatch", "AnswerWatch application info")
APP_INFO.info({"version": "1.0.0", "name": "answerwatch"})

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

EXECUTION_JOBS = Counter(
    "execution_jobs_total",
    "Prompt x platform jobs by outcome",
    ["status"],  # completed | failed | skipped
)

ANALYSIS_OUTCOMES = Counter(
    "analysis_outcomes_total",
    "Combined analysis runs by terminal state",
    ["state"],  # succeeded | fallback_used
)

PROVIDER_CALLS = Counter(
    "provider_calls_total",
    "Outbound AI provider calls",
    ["provider", "status"],
)

SCHEDULER_CHECKS = Counter(
    "scheduler_checks_total",
    "Per-business scheduler runs",
    ["status"],  # completed | error
)


# --- Middleware ---

# Business and prompt ids in paths would explode label cardinality
_ID_SEGMENT = re.compile(r"/\d+(?=/|$)")


def _normalize_path(path: str) -> str:
    """Replace numeric path segments with {id}."""
    return _ID_SEGMENT.sub("/{id}", path)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect HTTP request metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        REQUEST_COUNT.labels(method=method, path=path, status=response.status_code).inc()
        REQUEST_DURATION.labels(method=method, path=path).observe(duration)

        return response


def metrics_response() -> Response:
    """Generate Prometheus /metrics response."""
    return Response(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
