"""Prometheus metrics for the invoicer API.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- Accounting backend calls by operation and outcome
- Invoice totals

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Accounting backend metrics
accounting_requests_total = Counter(
    "accounting_requests_total",
    "Total accounting backend operations",
    ["operation", "status"],  # success, unreachable, transport_error, rejected
)

accounting_request_duration_seconds = Histogram(
    "accounting_request_duration_seconds",
    "Accounting backend operation duration in seconds",
    ["operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# Invoice metrics
invoice_total_amount = Histogram(
    "invoice_total_amount",
    "Total amount of created invoices",
    buckets=(1_000, 10_000, 50_000, 100_000, 500_000, 1_000_000, 10_000_000),
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
