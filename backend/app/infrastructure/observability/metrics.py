from __future__ import annotations

import logging
from contextlib import contextmanager
from time import perf_counter

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

logger = logging.getLogger(__name__)

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
ISSUE_GENERATIONS_TOTAL = Counter(
    "issue_generations_total",
    "Issue generation jobs executed by workers",
)
GENERATION_FAILURES_TOTAL = Counter(
    "generation_failures_total",
    "Issue generation jobs that ended in error",
)
DEGRADED_GENERATIONS_TOTAL = Counter(
    "degraded_generations_total",
    "Issue generation jobs that used at least one fallback",
)
SCHEDULED_ISSUES_CHECKED_TOTAL = Counter(
    "scheduled_issues_checked_total",
    "Scheduled issues scanned by the publisher",
)

# Worker processes cannot expose their own registry, so their counters are
# accumulated in Redis and folded into the API registry on scrape.
BACKGROUND_COUNTERS: dict[str, tuple[str, Counter]] = {
    "issue_generations_total": ("metrics:issue_generations_total", ISSUE_GENERATIONS_TOTAL),
    "generation_failures_total": ("metrics:generation_failures_total", GENERATION_FAILURES_TOTAL),
    "degraded_generations_total": ("metrics:degraded_generations_total", DEGRADED_GENERATIONS_TOTAL),
    "scheduled_issues_checked_total": ("metrics:scheduled_issues_checked_total", SCHEDULED_ISSUES_CHECKED_TOTAL),
}
_last_background_counter_values: dict[str, float] = {metric_name: 0.0 for metric_name in BACKGROUND_COUNTERS}


def record_request(method: str, path: str, status_code: int, duration_seconds: float) -> None:
    REQUESTS_TOTAL.labels(method=method, path=path, status=str(status_code)).inc()
    REQUEST_LATENCY_SECONDS.labels(method=method, path=path).observe(duration_seconds)


def observe_db_query(duration_seconds: float, operation: str = "sql") -> None:
    DB_QUERY_DURATION_SECONDS.labels(operation=operation).observe(duration_seconds)


def observe_redis_latency(duration_seconds: float, operation: str) -> None:
    REDIS_LATENCY_SECONDS.labels(operation=operation).observe(duration_seconds)


def increment_background_counter(metric_name: str, amount: int = 1) -> None:
    entry = BACKGROUND_COUNTERS.get(metric_name)
    if entry is None:
        return
    redis_key, _ = entry
    try:
        from app.infrastructure.cache.redis_client import get_redis_client

        redis_client = get_redis_client()
        with measure_redis("metrics_background_counter_incr"):
            redis_client.incrby(redis_key, amount)
    except Exception as exc:
        logger.debug("background_counter_write_failed metric=%s error=%s", metric_name, exc)


def _sync_background_counters_from_redis() -> None:
    try:
        from app.infrastructure.cache.redis_client import get_redis_client

        redis_client = get_redis_client()
        with measure_redis("metrics_background_counter_sync"):
            raw_values = redis_client.mget([redis_key for redis_key, _ in BACKGROUND_COUNTERS.values()])
    except Exception as exc:
        logger.debug("background_counter_sync_failed error=%s", exc)
        return

    for idx, (metric_name, (_, collector)) in enumerate(BACKGROUND_COUNTERS.items()):
        raw_value = raw_values[idx] if raw_values else None
        current_value = float(raw_value or 0.0)
        delta = current_value - _last_background_counter_values.get(metric_name, 0.0)
        if delta > 0:
            collector.inc(delta)
        _last_background_counter_values[metric_name] = current_value


@contextmanager
def measure_redis(operation: str):
    started_at = perf_counter()
    try:
        yield
    finally:
        observe_redis_latency(perf_counter() - started_at, operation=operation)


def metrics_response() -> Response:
    _sync_background_counters_from_redis()
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
