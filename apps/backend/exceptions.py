"""
Custom exception hierarchy for the catalog backend.

All catalog errors inherit from CatalogError so routes can render them
uniformly and callers can catch the whole family at once.

Exception Hierarchy:
    CatalogError (base)
    ├── ValidationError
    ├── ResourceNotFoundError
    ├── ConflictError
    └── ExternalServiceError
        └── UpstreamUnavailableError

Usage:
    from exceptions import ConflictError, ValidationError

    raise ValidationError("styleNumber is required", detail={"field": "style_number"})

    try:
        await registry.ensure_canonical_style_link(...)
    except ConflictError as e:
        logger.warning(f"Link rejected: {e}")
"""

from typing import Any, Dict, Optional


class CatalogError(Exception):
    """
    Base exception for all catalog errors.

    Attributes:
        message: Human-readable error message
        detail: Optional dict with additional error context
        status_code: Suggested HTTP status code (for API errors)
    """

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for JSON serialization."""
        result = {
            "error": self.__class__.__name__,
            "message": self.message,
        }
        if self.detail:
            result["detail"] = self.detail
        return result


class ValidationError(CatalogError):
    """
    Raised when input validation fails. Never retried.

    Examples:
        raise ValidationError("styleNumber is required")
        raise ValidationError("Not a remote supplier part", detail={"supplier_part_id": "PC43"})
    """

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail, status_code=400)


class ResourceNotFoundError(CatalogError):
    """
    Raised when a requested resource doesn't exist.

    Examples:
        raise ResourceNotFoundError("Canonical style not found", detail={"canonical_style_id": 12})
    """

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail, status_code=404)


class ConflictError(CatalogError):
    """
    Raised when a supplier part is already linked to a different canonical style,
    or a style already carries a link for the same supplier.

    Examples:
        raise ConflictError("Part already linked", detail={"supplier_part_id": "PC43"})
    """

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail, status_code=409)


class ExternalServiceError(CatalogError):
    """
    Base exception for external service failures.
    """

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[Dict[str, Any]] = None,
        service_name: Optional[str] = None,
    ):
        if service_name and detail is None:
            detail = {"service": service_name}
        elif service_name and detail:
            detail["service"] = service_name

        super().__init__(message, detail=detail, status_code=502)


class UpstreamUnavailableError(ExternalServiceError):
    """
    Raised when a remote supplier cannot be reached or keeps failing after retries.

    The upstream HTTP status (when one was received) is preserved for diagnostics.

    Examples:
        raise UpstreamUnavailableError("S&S REST exhausted retries", upstream_status=503)
    """

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[Dict[str, Any]] = None,
        upstream_status: Optional[int] = None,
        supplier: Optional[str] = None,
    ):
        detail = dict(detail or {})
        if upstream_status is not None:
            detail["upstream_status"] = upstream_status
        if supplier:
            detail["supplier"] = supplier
        super().__init__(message, detail=detail, service_name="supplier")
        self.upstream_status = upstream_status
