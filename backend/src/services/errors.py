"""Service-level exceptions mapped onto HTTP responses by the API layer."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base error carrying an HTTP status and a stable error code."""

    status_code: int = 500
    error: str = "internal_error"

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class InputValidationError(ServiceError):
    """Request rejected before any side effect."""

    status_code = 400
    error = "validation_error"


class NotFoundError(ServiceError):
    status_code = 404
    error = "not_found"


class ConflictError(ServiceError):
    """Optimistic concurrency check failed or a finalized row was modified."""

    status_code = 409
    error = "version_conflict"


class ExternalServiceError(ServiceError):
    status_code = 502
    error = "upstream_error"


__all__ = [
    "ServiceError",
    "InputValidationError",
    "NotFoundError",
    "ConflictError",
    "ExternalServiceError",
]
