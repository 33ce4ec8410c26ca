"""
Prometheus metrics for the couple API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Log batch outcome counter (result)
- Purged duplicate message counter

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# result: saved, validation_error, storage_error
log_batch_outcomes_total = Counter(
    "log_batch_outcomes_total",
    "Total log batch submissions by outcome",
    labelnames=["result"]
)

duplicate_messages_purged_total = Counter(
    "duplicate_messages_purged_total",
    "Duplicate chat message rows deleted by purge"
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Route template when known (e.g. /api/diaries/{diary_id}), else raw path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_log_batch_outcome(result: str) -> None:
    log_batch_outcomes_total.labels(result=result).inc()


def record_purged_duplicates(removed: int) -> None:
    if removed > 0:
        duplicate_messages_purged_total.inc(removed)


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
