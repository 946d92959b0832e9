"""
Prometheus metrics for the catalog backend.

RED metrics for the HTTP surface plus catalog-specific counters: supplier
calls, fallbacks, cache efficiency, search volume and inventory data quality.
"""

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    REGISTRY,
)

# Use the default registry
metrics_registry = REGISTRY

# HTTP Metrics (RED - Rate, Errors, Duration)
http_requests_total = Counter(
    "catalog_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
    registry=metrics_registry,
)

http_request_duration_seconds = Histogram(
    "catalog_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=metrics_registry,
)

http_requests_in_progress = Gauge(
    "catalog_http_requests_in_progress",
    "Number of HTTP requests in progress",
    ["method", "endpoint"],
    registry=metrics_registry,
)

# Supplier Metrics
supplier_request_duration_seconds = Histogram(
    "supplier_request_duration_seconds",
    "Remote supplier API duration in seconds",
    ["supplier", "endpoint"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
    registry=metrics_registry,
)

supplier_request_errors_total = Counter(
    "supplier_request_errors_total",
    "Total remote supplier request errors",
    ["supplier", "error_type"],  # error_type: timeout, transport, http_4xx, http_5xx
    registry=metrics_registry,
)

supplier_fallbacks_total = Counter(
    "supplier_fallbacks_total",
    "Product lookups served from the fallback representation",
    ["supplier", "reason"],
    registry=metrics_registry,
)

# Cache Metrics
cache_hits_total = Counter(
    "catalog_cache_hits_total",
    "Total cache hits",
    ["cache_type"],
    registry=metrics_registry,
)

cache_misses_total = Counter(
    "catalog_cache_misses_total",
    "Total cache misses",
    ["cache_type"],
    registry=metrics_registry,
)

# Search Metrics
search_requests_total = Counter(
    "catalog_search_requests_total",
    "Total canonical style searches",
    ["outcome"],  # direct_hit, results, empty
    registry=metrics_registry,
)

search_results_count = Histogram(
    "catalog_search_results_count",
    "Number of canonical styles matched before pagination",
    buckets=[0, 1, 5, 10, 20, 50, 100, 500],
    registry=metrics_registry,
)

# Data quality
inventory_total_mismatches_total = Counter(
    "inventory_total_mismatches_total",
    "Inventory rows whose totalQty differs from the sum of warehouse quantities",
    ["supplier"],
    registry=metrics_registry,
)


def cache_type_for_key(key: str) -> str:
    """Metric label for a cache key: the namespace before the first colon."""
    return key.split(":", 1)[0] if key else "unknown"
