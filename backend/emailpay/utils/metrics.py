"""
Prometheus metrics for observability
"""

import re
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.core import CollectorRegistry

# Create a custom registry to avoid conflicts
metrics_registry = CollectorRegistry()

# HTTP request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["path", "method", "status"],
    registry=metrics_registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["path", "method"],
    registry=metrics_registry,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Transaction metrics
transactions_created_total = Counter(
    "emailpay_transactions_created_total",
    "Total email transactions created",
    ["asset"],
    registry=metrics_registry,
)

transaction_outcomes_total = Counter(
    "emailpay_transaction_outcomes_total",
    "Total email transactions reaching a terminal state",
    ["status"],  # completed, failed, expired
    registry=metrics_registry,
)

# Email metrics
emails_dispatched_total = Counter(
    "emailpay_emails_dispatched_total",
    "Total inbound emails dispatched",
    ["intent"],  # send, balance, verify, unknown
    registry=metrics_registry,
)

notifications_failed_total = Counter(
    "emailpay_notifications_failed_total",
    "Total reply emails that could not be sent",
    registry=metrics_registry,
)


def record_http_request(
    path: str,
    method: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """
    Record HTTP request metrics.
    
    Args:
        path: Request path (normalized)
        method: HTTP method
        status_code: Response status code
        duration_seconds: Request duration in seconds
    """
    normalized_path = _normalize_path(path)
    
    http_requests_total.labels(
        path=normalized_path,
        method=method.upper(),
        status=str(status_code),
    ).inc()
    
    http_request_duration_seconds.labels(
        path=normalized_path,
        method=method.upper(),
    ).observe(duration_seconds)


def record_transaction_created(asset: str) -> None:
    transactions_created_total.labels(asset=asset).inc()


def record_transaction_outcome(status: str) -> None:
    """
    Record a terminal transaction state.
    
    Args:
        status: completed, failed or expired
    """
    transaction_outcomes_total.labels(status=status).inc()


def record_email_dispatched(intent: str) -> None:
    emails_dispatched_total.labels(intent=intent).inc()


def record_notification_failed() -> None:
    notifications_failed_total.inc()


def _normalize_path(path: str) -> str:
    """
    Normalize path for metrics (replace emails and ids with placeholders).
    
    Examples:
        /api/v1/wallets/alice@example.com/balance -> /api/v1/wallets/{email}/balance
        /api/v1/transactions/123e4567-... -> /api/v1/transactions/{id}
    """
    path = re.sub(r'/[^/]+@[^/]+', '/{email}', path)

    # Replace UUIDs
    path = re.sub(
        r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}',
        '{id}',
        path,
        flags=re.IGNORECASE,
    )

    # Replace numeric IDs (if any remain)
    path = re.sub(r'/\d+', '/{id}', path)
    
    return path


def get_metrics_output() -> bytes:
    """Get Prometheus metrics output"""
    return generate_latest(metrics_registry)
