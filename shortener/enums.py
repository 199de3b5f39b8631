"""Shared enums for the URL shortener service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "RequestStatus", "CacheStatus", "ErrorCode", "SortField", "SortOrder"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class ErrorCode(StrEnum):
    """Machine-readable error codes returned in error bodies."""

    VALIDATION = "validation_failed"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    EXPIRED = "expired"
    RATE_LIMIT = "rate_limit_exceeded"
    INTERNAL = "internal_error"


class SortField(StrEnum):
    """Columns a URL listing may be ordered by."""

    CREATED_AT = "created_at"
    CLICK_COUNT = "click_count"
    LAST_ACCESSED_AT = "last_accessed_at"


class SortOrder(StrEnum):
    ASC = "asc"
    DESC = "desc"
