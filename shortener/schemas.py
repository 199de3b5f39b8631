"""Pydantic schemas for records, requests and responses.

This module defines the domain record shared by the store, the cache and the
service layer, plus the models used for API input validation and output
serialization.

Schema Hierarchy
=================
::
    URLRecord (Domain)
    ├─ id, original_url, description, expires_at
    ├─ created_at, updated_at, click_count, is_active
    ├─ last_accessed_at, owner_key
    └─ short_url, qr_code_url (derived, never serialized)

    CreateURLRequest (Input)
    ├─ original_url: str
    ├─ custom_id: str | None
    ├─ expires_at: datetime | None
    └─ description: str | None

    UpdateURLRequest (Input, only supplied fields apply)
    ├─ original_url, description, expires_at
    └─ is_active

    URLListOptions (Input)
    └─ page, limit, sort, order, is_active

    URLResponse / URLListResponse / PaginationMeta (Output)
    ErrorResponse / HealthResponse (Output)

How to Use
===========
**Step 1 — Build a record**::
    record = URLRecord(id="abc123", original_url="https://example.com", ...)

**Step 2 — Cache it**::
    payload = record.model_dump_json()      # derived links are excluded
    record = URLRecord.model_validate_json(payload)

**Step 3 — Serialize for the API**::
    return URLResponse.from_record(record)

Key Behaviours
===============
- All datetimes are timezone-aware; naive values are taken to be UTC.
- A record is accessible iff it is active and its expiry (if any) is in the future.
- owner_key never appears in API responses.
"""

import datetime
import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shortener.enums import ErrorCode, HealthStatus, SortField, SortOrder

__all__ = [
    "utcnow",
    "URLRecord",
    "CreateURLRequest",
    "UpdateURLRequest",
    "URLListOptions",
    "PaginationMeta",
    "URLResponse",
    "URLListResponse",
    "ErrorResponse",
    "HealthResponse",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
]

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


class URLRecord(BaseModel):
    """A short URL as stored and cached."""

    id: str
    original_url: str
    description: str | None = None
    expires_at: datetime.datetime | None = None
    created_at: datetime.datetime
    updated_at: datetime.datetime
    click_count: int = 0
    is_active: bool = True
    last_accessed_at: datetime.datetime | None = None
    owner_key: str

    short_url: str | None = Field(default=None, exclude=True)
    qr_code_url: str | None = Field(default=None, exclude=True)

    model_config = ConfigDict(from_attributes=True)

    @field_validator("expires_at", "created_at", "updated_at", "last_accessed_at")
    @classmethod
    def ensure_timezone(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        return _as_utc(v)

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    def is_accessible(self, now: datetime.datetime | None = None) -> bool:
        return self.is_active and not self.is_expired(now)

    def with_links(self, base_url: str, api_prefix: str) -> "URLRecord":
        base = base_url.rstrip("/")
        return self.model_copy(
            update={
                "short_url": f"{base}/{self.id}",
                "qr_code_url": f"{base}{api_prefix}/urls/{self.id}/qr",
            }
        )


class CreateURLRequest(BaseModel):
    original_url: str
    custom_id: str | None = None
    expires_at: datetime.datetime | None = None
    description: str | None = None


class UpdateURLRequest(BaseModel):
    original_url: str | None = None
    description: str | None = None
    expires_at: datetime.datetime | None = None
    is_active: bool | None = None


class URLListOptions(BaseModel):
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE
    sort: SortField = SortField.CREATED_AT
    order: SortOrder = SortOrder.DESC
    is_active: bool | None = None

    def normalized(self) -> "URLListOptions":
        """Clamp page to >= 1 and limit to [1, MAX_PAGE_SIZE]; non-positive limits fall back to the default."""
        page = self.page if self.page >= 1 else 1
        if self.limit <= 0:
            limit = DEFAULT_PAGE_SIZE
        else:
            limit = min(self.limit, MAX_PAGE_SIZE)
        return self.model_copy(update={"page": page, "limit": limit})

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PaginationMeta(BaseModel):
    current_page: int
    per_page: int
    total_pages: int
    total_count: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total_count: int) -> "PaginationMeta":
        total_pages = max(1, math.ceil(total_count / limit))
        return cls(
            current_page=page,
            per_page=limit,
            total_pages=total_pages,
            total_count=total_count,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class URLResponse(BaseModel):
    id: str
    short_url: str
    original_url: str
    qr_code_url: str
    description: str | None = None
    expires_at: datetime.datetime | None = None
    created_at: datetime.datetime
    updated_at: datetime.datetime
    click_count: int
    is_active: bool
    last_accessed_at: datetime.datetime | None = None

    @classmethod
    def from_record(cls, record: URLRecord) -> "URLResponse":
        return cls(
            id=record.id,
            short_url=record.short_url or "",
            original_url=record.original_url,
            qr_code_url=record.qr_code_url or "",
            description=record.description,
            expires_at=record.expires_at,
            created_at=record.created_at,
            updated_at=record.updated_at,
            click_count=record.click_count,
            is_active=record.is_active,
            last_accessed_at=record.last_accessed_at,
        )


class URLListResponse(BaseModel):
    urls: list[URLResponse]
    pagination: PaginationMeta


class ErrorResponse(BaseModel):
    error: ErrorCode
    message: str
    details: dict[str, Any] | None = None


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
