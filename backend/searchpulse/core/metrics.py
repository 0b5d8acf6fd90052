from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest


http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests.",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds.",
    ["method", "path"],
)

search_sync_runs_total = Counter(
    "search_sync_runs_total",
    "Search analytics sync runs by outcome.",
    ["status"],
)

search_sync_duration_seconds = Histogram(
    "search_sync_duration_seconds",
    "Search analytics sync duration in seconds.",
)

search_metric_rows_upserted_total = Counter(
    "search_metric_rows_upserted_total",
    "Metric rows written per series.",
    ["series"],
)

search_metric_rows_swept_total = Counter(
    "search_metric_rows_swept_total",
    "Metric rows deleted by retention per series.",
    ["series"],
)

search_opportunities_detected_total = Counter(
    "search_opportunities_detected_total",
    "Opportunities flagged per detection pass and type.",
    ["opportunity_type"],
)

celery_task_duration_seconds = Histogram(
    "celery_task_duration_seconds",
    "Celery task duration in seconds.",
    ["task_name", "queue_name"],
)

tasks_in_progress = Gauge(
    "tasks_in_progress",
    "Celery tasks currently executing.",
    ["queue_name"],
)


def render_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
