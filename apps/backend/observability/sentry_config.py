"""
Sentry error tracking for the catalog backend.

Disabled unless SENTRY_DSN is set. Supplier outages and client errors are
reported through metrics and logs, not as Sentry events.
"""

import logging
import os
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from .logging import get_correlation_id, get_logger

logger = get_logger(__name__)

# Exception class names that never become Sentry events
IGNORED_ERRORS = {
    "ValidationError",
    "ResourceNotFoundError",
    "ConflictError",
    "UpstreamUnavailableError",
}


def init_sentry() -> bool:
    """
    Initialize Sentry error tracking. Returns True when enabled.

    Environment variables:
    - SENTRY_DSN: Sentry Data Source Name (required)
    - SENTRY_ENVIRONMENT: Environment name (development, staging, production)
    - SENTRY_RELEASE: Release version (e.g., git commit SHA)
    - SENTRY_TRACES_SAMPLE_RATE: Fraction of transactions to trace (0.0-1.0)
    - SENTRY_ENABLE: Set to "false" to disable Sentry
    """
    sentry_dsn = os.getenv("SENTRY_DSN")
    sentry_enable = os.getenv("SENTRY_ENABLE", "true").lower() == "true"

    if not sentry_dsn or not sentry_enable:
        logger.info("Sentry is disabled (SENTRY_DSN not set or SENTRY_ENABLE=false)")
        return False

    environment = os.getenv("SENTRY_ENVIRONMENT") or os.getenv("ENVIRONMENT", "development")
    release = os.getenv("SENTRY_RELEASE") or "unknown"
    traces_sample_rate = float(
        os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.2" if environment == "production" else "0.0")
    )

    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=environment,
        release=f"canonical-catalog-backend@{release}",
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=traces_sample_rate,
        send_default_pii=False,
        attach_stacktrace=True,
        max_breadcrumbs=50,
        before_send=before_send_hook,
    )

    logger.info(
        "Sentry initialized",
        extra={"environment": environment, "release": release, "traces_sample_rate": traces_sample_rate},
    )
    return True


def before_send_hook(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Drop expected catalog errors and tag events with the request correlation ID."""
    exc_info = hint.get("exc_info") if hint else None
    if exc_info and type(exc_info[1]).__name__ in IGNORED_ERRORS:
        return None

    correlation_id = get_correlation_id()
    if correlation_id:
        event.setdefault("tags", {})["correlation_id"] = correlation_id
    return event


def capture_exception(exc: BaseException, **kwargs) -> None:
    """
    Capture an exception with catalog context.

    Args:
        exc: Exception to capture
        **kwargs: tags and extra dicts (e.g. supplier, supplier_part_id)
    """
    with sentry_sdk.new_scope() as scope:
        correlation_id = get_correlation_id()
        if correlation_id:
            scope.set_tag("correlation_id", correlation_id)
        for key, value in kwargs.get("tags", {}).items():
            scope.set_tag(key, value)
        for key, value in kwargs.get("extra", {}).items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exc)
