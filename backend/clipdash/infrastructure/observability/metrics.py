from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

REQUESTS_TOTAL = Counter(
    "total_requests",
    "Total HTTP requests",
    labelnames=("method", "path", "status"),
)
REQUEST_LATENCY_SECONDS = Histogram(
    "request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path"),
)
DB_QUERY_DURATION_SECONDS = Histogram(
    "db_query_duration_seconds",
    "Database query duration in seconds",
    labelnames=("operation",),
)
REDIS_LATENCY_SECONDS = Histogram(
    "redis_latency_seconds",
    "Redis command latency in seconds",
    labelnames=("operation",),
)
WORKER_INVOCATIONS_TOTAL = Counter(
    "worker_invocations_total",
    "Number of worker invocations by trigger and outcome",
    labelnames=("trigger", "outcome"),
)
SCHEDULED_JOBS_CHECKED_TOTAL = Counter(
    "scheduled_jobs_checked_total",
    "Number of due scheduled posts selected by the claimer",
)
CLAIM_CONFLICTS_TOTAL = Counter(
    "claim_conflicts_total",
    "Number of claims lost to a concurrent invocation",
)
PUBLISH_ATTEMPTS_TOTAL = Counter(
    "publish_attempts_total",
    "Number of adapter publish attempts by provider",
    labelnames=("provider",),
)
PUBLISH_FAILURES_TOTAL = Counter(
    "publish_failures_total",
    "Number of failed scheduled posts by provider and error kind",
    labelnames=("provider", "error_kind"),
)
CONTAINER_POLLS_TOTAL = Counter(
    "container_polls_total",
    "Number of two-phase container status checks by outcome",
    labelnames=("outcome",),
)
NOTIFICATIONS_SENT_TOTAL = Counter(
    "notifications_sent_total",
    "Number of notification emails dispatched by type",
    labelnames=("notification_type",),
)
PUBLISH_DURATION_SECONDS = Histogram(
    "publish_duration_seconds",
    "Adapter publish call duration in seconds",
    labelnames=("provider",),
)


def record_request(method: str, path: str, status_code: int, duration_seconds: float) -> None:
    REQUESTS_TOTAL.labels(method=method, path=path, status=str(status_code)).inc()
    REQUEST_LATENCY_SECONDS.labels(method=method, path=path).observe(duration_seconds)


def observe_db_query(duration_seconds: float, operation: str = "sql") -> None:
    DB_QUERY_DURATION_SECONDS.labels(operation=operation).observe(duration_seconds)


def observe_redis_latency(duration_seconds: float, operation: str) -> None:
    REDIS_LATENCY_SECONDS.labels(operation=operation).observe(duration_seconds)


@contextmanager
def measure_redis(operation: str):
    started_at = perf_counter()
    try:
        yield
    finally:
        observe_redis_latency(perf_counter() - started_at, operation=operation)


@contextmanager
def measure_publish(provider: str):
    started_at = perf_counter()
    try:
        yield
    finally:
        PUBLISH_DURATION_SECONDS.labels(provider=provider).observe(perf_counter() - started_at)


def metrics_response() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
