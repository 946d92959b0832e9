"""
Structured logging for the catalog backend.

Every record carries the request correlation ID and, inside a supplier
fetch, the supplier and part being fetched. Supplier credentials are
scrubbed from structured fields and from rendered messages (SOAP envelopes,
basic-auth URLs, Authorization headers).

Usage:
    from observability import get_logger, supplier_context

    logger = get_logger(__name__)
    with supplier_context("REMOTE", "B00760"):
        logger.warning("Fallback served")
"""

import logging
import os
import re
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional, Tuple

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "canonical-catalog-backend"
REDACTED = "[REDACTED]"

_correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
_supplier_ctx: ContextVar[Optional[Tuple[str, str]]] = ContextVar("supplier_fetch", default=None)

_SECRET_PATTERNS = (
    (re.compile(r"(<(?:\w+:)?(?:password|id)>)[^<]*(</(?:\w+:)?(?:password|id)>)", re.IGNORECASE), r"\1" + REDACTED + r"\2"),
    (re.compile(r"(https?://)[^/\s:@]+:[^/\s@]+@", re.IGNORECASE), r"\1" + REDACTED + "@"),
    (re.compile(r"(authorization['\"]?\s*[:=]\s*['\"]?(?:basic|bearer)\s+)[A-Za-z0-9+/=._-]+", re.IGNORECASE), r"\1" + REDACTED),
)


def get_correlation_id() -> Optional[str]:
    return _correlation_id_ctx.get()


def generate_correlation_id() -> str:
    return f"req-{uuid.uuid4().hex[:16]}"


class correlation_id_context:
    """Set the correlation ID for the enclosed block (one HTTP request)."""

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or generate_correlation_id()
        self.token = None

    def __enter__(self):
        self.token = _correlation_id_ctx.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        _correlation_id_ctx.reset(self.token)


class supplier_context:
    """Tag records logged inside one supplier fetch with supplier and part id.

    Context variables are copied per task, so concurrent fetches started with
    asyncio.gather keep their own tags.
    """

    def __init__(self, supplier: str, supplier_part_id: str):
        self.value = (supplier, supplier_part_id)
        self.token = None

    def __enter__(self):
        self.token = _supplier_ctx.set(self.value)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _supplier_ctx.reset(self.token)


def scrub_secrets(text: str) -> str:
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class ContextFilter(logging.Filter):
    """Adds correlation_id, supplier and supplier_part_id to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "none"
        current = _supplier_ctx.get()
        if current and not hasattr(record, "supplier"):
            record.supplier, record.supplier_part_id = current
        return True


class SensitiveDataFilter(logging.Filter):
    """Redacts supplier credentials from record fields and message text."""

    SENSITIVE_KEYS = {
        "password", "api_key", "secret", "authorization", "auth",
        "account_number", "ssactivewear_api_key", "ssactivewear_account_number",
    }

    def filter(self, record: logging.LogRecord) -> bool:
        for key in list(record.__dict__.keys()):
            if key.lower() in self.SENSITIVE_KEYS:
                setattr(record, key, REDACTED)

        if record.args:
            record.msg = record.getMessage()
            record.args = None
        if isinstance(record.msg, str):
            record.msg = scrub_secrets(record.msg)
        return True


class CatalogJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["correlation_id"] = getattr(record, "correlation_id", "none")
        log_record["environment"] = os.getenv("ENVIRONMENT", "development")
        log_record["service"] = SERVICE_NAME
        if hasattr(record, "supplier"):
            log_record["supplier"] = record.supplier
            log_record["supplier_part_id"] = getattr(record, "supplier_part_id", None)
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)


def build_handler(log_format: str) -> logging.Handler:
    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(
            CatalogJsonFormatter(
                "%(timestamp)s %(level)s %(logger)s %(correlation_id)s %(message)s",
                rename_fields={"timestamp": "@timestamp"},
            )
        )
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(correlation_id)s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
    handler.addFilter(ContextFilter())
    handler.addFilter(SensitiveDataFilter())
    return handler


def setup_logging() -> None:
    """
    Configure the root logger.

    Environment variables:
    - LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL
    - LOG_FORMAT: json or text (json by default in production)
    - ENVIRONMENT: development, staging, production
    """
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format = os.getenv("LOG_FORMAT", "json" if os.getenv("ENVIRONMENT") == "production" else "text")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(build_handler(log_format))
    root_logger.setLevel(log_level)

    # httpx logs every supplier request URL at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
