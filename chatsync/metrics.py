"""
Prometheus metrics for the chat service.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Ingestion record counter (kind, result)
- Realtime event counter (event), send failure counter and subscriber gauge

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

# HTTP request counter with labels for method, path, and status code
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# Request latency histogram in seconds
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# Ingestion outcomes per record
# kind: messages, statuses
# result: inserted, duplicate, updated, unchanged, failed
ingest_records_total = Counter(
    "ingest_records_total",
    "Ingested records by batch kind and outcome",
    labelnames=["kind", "result"]
)

realtime_events_total = Counter(
    "realtime_events_total",
    "Realtime events published",
    labelnames=["event"]
)

realtime_send_failures_total = Counter(
    "realtime_send_failures_total",
    "Realtime sends that failed and dropped the subscriber"
)

realtime_subscribers = Gauge(
    "realtime_subscribers",
    "Currently connected realtime subscribers"
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    # Normalize path to avoid high-cardinality labels
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


def record_ingest_outcome(kind: str, result: str, count: int = 1) -> None:
    if count:
        ingest_records_total.labels(kind=kind, result=result).inc(count)


def record_realtime_event(event: str) -> None:
    realtime_events_total.labels(event=event).inc()


def record_realtime_failure() -> None:
    realtime_send_failures_total.inc()


def set_realtime_subscribers(count: int) -> None:
    realtime_subscribers.set(count)


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
