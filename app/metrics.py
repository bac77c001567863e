"""
Prometheus metrics for the WhatsApp webhook service.

This module provides:
- HTTP request counter (method, path, status)
- Webhook delivery counter (result)
- Webhook event counter (kind, outcome)
- Request latency histogram (method, path)

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

# result: ok, invalid_signature, bad_format, processing_error
webhook_requests_total = Counter(
    "whatsapp_webhook_requests_total",
    "Total WhatsApp webhook deliveries by result",
    labelnames=["result"]
)

# kind: message, status, business_status; outcome: see EventOutcome
webhook_events_total = Counter(
    "whatsapp_webhook_events_total",
    "Total normalized WhatsApp webhook events by kind and outcome",
    labelnames=["kind", "outcome"]
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
        path: Request path
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


def record_webhook_outcome(result: str) -> None:
    """Record the overall result of one webhook delivery."""
    webhook_requests_total.labels(result=result).inc()


def record_event_outcome(kind: str, outcome: str) -> None:
    """Record the outcome of one normalized event."""
    webhook_events_total.labels(kind=kind, outcome=outcome).inc()


def get_metrics() -> bytes:
    """Prometheus text exposition of all metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
