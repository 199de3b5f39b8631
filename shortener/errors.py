"""Error taxonomy for the URL shortener.

Two layers of exceptions live here:

- ``ServiceError`` subclasses are what the service layer raises. Each one
  carries an ``ErrorCode`` and the HTTP status the API maps it to, so route
  handlers never translate errors by hand.
- Collaborator exceptions (``StoreError``, ``CacheError`` and friends) are
  raised by the store and cache adapters. The service layer decides which of
  them become ``ConflictError``/``NotFoundError`` and which are wrapped into
  ``InternalError``.

Status mapping::

    ValidationError         400  validation_failed
    UnauthorizedError       401  unauthorized
    NotFoundError           404  not_found
    ConflictError           409  conflict
    ExpiredError            410  expired
    RateLimitExceededError  429  rate_limit_exceeded
    InternalError           500  internal_error
"""

from typing import Any

from shortener.enums import ErrorCode

__all__ = [
    "ServiceError",
    "ValidationError",
    "UnauthorizedError",
    "NotFoundError",
    "ConflictError",
    "ExpiredError",
    "RateLimitExceededError",
    "InternalError",
    "StoreError",
    "RecordNotFoundError",
    "DuplicateRecordError",
    "CacheError",
]


class ServiceError(Exception):
    """Base class for errors surfaced to API callers."""

    code: ErrorCode = ErrorCode.INTERNAL
    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


class ValidationError(ServiceError):
    code = ErrorCode.VALIDATION
    status_code = 400

    def __init__(self, field: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, {**(details or {}), "field": field})
        self.field = field


class UnauthorizedError(ServiceError):
    code = ErrorCode.UNAUTHORIZED
    status_code = 401


class NotFoundError(ServiceError):
    code = ErrorCode.NOT_FOUND
    status_code = 404

    def __init__(self, resource: str) -> None:
        super().__init__(f"{resource} not found", {"resource": resource})


class ConflictError(ServiceError):
    code = ErrorCode.CONFLICT
    status_code = 409

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(
            f"{resource} '{identifier}' already exists",
            {"resource": resource, "identifier": identifier},
        )


class ExpiredError(ServiceError):
    code = ErrorCode.EXPIRED
    status_code = 410

    def __init__(self, resource: str) -> None:
        super().__init__(f"{resource} has expired", {"resource": resource})


class RateLimitExceededError(ServiceError):
    code = ErrorCode.RATE_LIMIT
    status_code = 429

    def __init__(self, limit: int, window_seconds: float) -> None:
        super().__init__(
            f"Rate limit exceeded: {limit} requests per {window_seconds:g}s",
            {"limit": limit, "window_seconds": window_seconds},
        )


class InternalError(ServiceError):
    code = ErrorCode.INTERNAL
    status_code = 500


# ============================================================================
# COLLABORATOR ERRORS
# ============================================================================


class StoreError(Exception):
    """The durable store failed in a way the caller cannot act on."""


class RecordNotFoundError(StoreError):
    def __init__(self, short_id: str) -> None:
        super().__init__(f"URL with ID '{short_id}' not found")
        self.short_id = short_id


class DuplicateRecordError(StoreError):
    def __init__(self, short_id: str) -> None:
        super().__init__(f"URL with ID '{short_id}' already exists")
        self.short_id = short_id


class CacheError(Exception):
    """The cache backend failed; callers treat this as best-effort."""
