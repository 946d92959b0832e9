"""
Observability infrastructure for the catalog backend.

Provides:
- Structured logging with correlation IDs, supplier tags and credential scrubbing
- Sentry error reporting (opt-in)
- Prometheus metrics
- Request instrumentation middleware
"""

from .logging import get_logger, correlation_id_context, get_correlation_id, setup_logging, supplier_context
from .metrics import (
    metrics_registry,
    cache_hits_total,
    cache_misses_total,
    inventory_total_mismatches_total,
    search_requests_total,
    supplier_fallbacks_total,
    supplier_request_duration_seconds,
    supplier_request_errors_total,
)

__all__ = [
    "get_logger",
    "correlation_id_context",
    "get_correlation_id",
    "setup_logging",
    "supplier_context",
    "metrics_registry",
    "cache_hits_total",
    "cache_misses_total",
    "inventory_total_mismatches_total",
    "search_requests_total",
    "supplier_fallbacks_total",
    "supplier_request_duration_seconds",
    "supplier_request_errors_total",
]
