"""
Prometheus metrics for the relay.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Webhook event counter (kind, result)
- Outbound message counter (result)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

# HTTP request counter with labels for method, route path, and status code
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

# Per-event webhook outcomes
# kind: message, status
# result: created, duplicate, applied, unmatched, skipped
webhook_events_total = Counter(
    "webhook_events_total",
    "Total webhook events by kind and outcome",
    labelnames=["kind", "result"]
)

# Outbound send outcomes
# result: sent, failed, not_configured
outbound_messages_total = Counter(
    "outbound_messages_total",
    "Total outbound send attempts by outcome",
    labelnames=["result"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Route template (e.g. /api/messages/{phone_number}) to keep
            phone numbers out of label values
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    http_requests_total.labels(
        method=method,
        path=path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=path
    ).observe(latency_seconds)


def record_webhook_event(kind: str, result: str) -> None:
    webhook_events_total.labels(kind=kind, result=result).inc()


def record_outbound_message(result: str) -> None:
    outbound_messages_total.labels(result=result).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
