"""URL Shortener Service Layer - Core Business Logic

This module implements identifier allocation and resolution on top of two
injected collaborators: a durable ``URLStore`` (source of truth) and a
``URLCache`` (best-effort accelerator). Click accounting after a redirect is
handed to a ``BackgroundDispatcher`` so the caller never waits for it.

Architecture Overview
==================
::
    ┌─────────────────────────────────────────────────────────────┐
    │                    Service Layer                            │
    │  ┌─────────────────┐  ┌─────────────────┐  ┌──────────────┐ │
    │  │   URLService    │  │ Identifier Codec│  │ Validation   │ │
    │  │                 │  │                 │  │              │ │
    │  │ • Create URLs   │  │ • Random IDs    │  │ • URLs       │ │
    │  │ • Resolve URLs  │  │ • Base62        │  │ • Custom IDs │ │
    │  │ • Owner edits   │  │                 │  │ • Reserved   │ │
    │  └─────────────────┘  └─────────────────┘  └──────────────┘ │
    └─────────────────────────────────────────────────────────────┘
                │                    │                    │
                ▼                    ▼                    ▼
    ┌─────────────────┐  ┌─────────────────┐  ┌─────────────────┐
    │    URLStore     │  │    URLCache     │  │   Background    │
    │   (PostgreSQL)  │  │     (Redis)     │  │   Dispatcher    │
    └─────────────────┘  └─────────────────┘  └─────────────────┘

Request Flow Diagrams
=====================

URL Creation Flow
-----------------
::
    ┌─────────────┐
    │ POST /urls  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Validate URL │
    │ & Custom ID  │
    └──────┬──────┘
    CUSTOM? │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Random  │  │ exists? │
│ ID, up  │  │ -> 409  │
│ to N    │  │         │
│ tries   │  │         │
└────┬────┘  └────┬────┘
     └─────┬──────┘
           ▼
    ┌─────────────┐
    │ store.create │
    │ (dup -> 409) │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ cache.set    │
    │ (best-effort)│
    └─────────────┘

Resolve Flow
------------
::
    ┌─────────────┐
    │ resolve(id) │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ cache.get    │
    └──────┬──────┘
    HIT & ACCESSIBLE?
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ store.  │  │ Return  │
│ get_by_ │  │ record  │
│ id      │  └─────────┘
└────┬────┘
     ▼
  missing / inactive -> NotFound
  expired            -> Expired
  otherwise          -> cache.set, return

Redirect Click Accounting
-------------------------
::
    resolve(id) ──► submit("click:<id>") ──► return to caller
                          │
                          ▼  (background)
                 store.increment_click(id)
                          │
                          ▼
                   cache.delete(id)

Key Behaviours
===============
- Required store calls run under STORE_TIMEOUT_SECONDS; a timeout or store
  failure becomes InternalError, while "no such row" and "duplicate id" map
  to NotFound and Conflict.
- Cache calls run under CACHE_TIMEOUT_SECONDS and never fail the caller.
- A cached record that is no longer accessible is evicted and the lookup
  falls through to the store.
- Update and Delete load records regardless of is_active so an owner can
  re-enable a disabled link.
- Update writes only the patched columns, so an overlapping Delete or sweep
  is never undone.
- Update and Delete clear the cache twice: at once, then again after
  CACHE_REINVALIDATE_DELAY_SECONDS to drop a read-through that raced the write.

Usage Examples
=============
```python
service = URLService(store, cache, dispatcher, settings)

record = await service.create_short_url(CreateURLRequest(original_url="https://example.com"), "sk_owner")
record = await service.resolve_for_redirect(record.id)
urls, pagination = await service.list_urls("sk_owner", URLListOptions(page=2))
```
"""

import asyncio
import hmac
import logging
import time
from collections.abc import Awaitable
from typing import TypeVar

from prometheus_client import Counter, Histogram

from shortener import codec
from shortener.background import BackgroundDispatcher
from shortener.cache import URLCache
from shortener.config import Settings
from shortener.enums import CacheStatus, RequestStatus
from shortener.errors import (
    CacheError,
    ConflictError,
    DuplicateRecordError,
    ExpiredError,
    InternalError,
    NotFoundError,
    RecordNotFoundError,
    ServiceError,
    StoreError,
    UnauthorizedError,
)
from shortener.schemas import (
    CreateURLRequest,
    PaginationMeta,
    UpdateURLRequest,
    URLListOptions,
    URLRecord,
    utcnow,
)
from shortener.store import URLStore
from shortener.validation import validate_custom_id, validate_description, validate_original_url

__all__ = ["URLService", "owner_matches"]

T = TypeVar("T")

RESOURCE = "Short URL"


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

URL_CREATION_REQUESTS_TOTAL = Counter(
    "url_shortener_creation_requests_total",
    "Total URL creation requests",
    ["status"],
)
URL_CREATION_DURATION = Histogram(
    "url_shortener_creation_duration_seconds",
    "Time taken to create short URLs",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
URL_LOOKUP_REQUESTS_TOTAL = Counter(
    "url_shortener_lookup_requests_total",
    "Total URL lookup requests",
    ["status", "cache_hit"],
)
URL_LOOKUP_DURATION = Histogram(
    "url_shortener_lookup_duration_seconds",
    "Time taken to lookup URLs",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)
URL_REDIRECT_REQUESTS_TOTAL = Counter(
    "url_shortener_redirect_requests_total",
    "Total URL redirect requests",
)
CACHE_HITS_TOTAL = Counter(
    "url_shortener_cache_hits_total",
    "Total cache hits for URL lookups",
)
CACHE_MISSES_TOTAL = Counter(
    "url_shortener_cache_misses_total",
    "Total cache misses for URL lookups",
)
CACHE_ERRORS_TOTAL = Counter(
    "url_shortener_cache_errors_total",
    "Cache operations that failed or timed out",
    ["operation"],
)
ID_COLLISIONS_TOTAL = Counter(
    "url_shortener_id_collisions_total",
    "Random identifiers rejected because they were already taken",
)
EXPIRED_URLS_SWEPT_TOTAL = Counter(
    "url_shortener_expired_urls_swept_total",
    "URLs deactivated by the expiry sweep",
)


def owner_matches(expected: str, presented: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), presented.encode("utf-8"))


# ============================================================================
# CORE SERVICE CLASS
# ============================================================================


class URLService:
    """Core service class for URL shortening operations.

    The service holds no mutable state of its own beyond references to its
    collaborators, so one instance is shared by every request.

    Example:
        >>> service = URLService(store, cache, dispatcher, settings)
        >>> record = await service.create_short_url(request, owner_key="sk_owner")
        >>> record.short_url
        'http://localhost:8080/aZ3k9Q'
    """

    def __init__(
        self,
        store: URLStore,
        cache: URLCache,
        dispatcher: BackgroundDispatcher,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._dispatcher = dispatcher
        self._settings = settings
        self._logger = logger or logging.getLogger("shortener")

    @property
    def settings(self) -> Settings:
        return self._settings

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def create_short_url(self, request: CreateURLRequest, owner_key: str) -> URLRecord:
        """Create a new short URL owned by ``owner_key``.

        Raises:
            ValidationError: Bad URL, description or custom identifier.
            ConflictError: The custom identifier is taken, or lost a race at insert time.
            InternalError: The store failed, or no free random identifier was found.
        """
        start_time = time.perf_counter()

        try:
            original_url = validate_original_url(request.original_url, self._settings.MAX_URL_LENGTH)
            description = validate_description(request.description, self._settings.MAX_DESCRIPTION_LENGTH)

            if request.custom_id:
                short_id = validate_custom_id(request.custom_id)
                if await self._required(self._store.exists(short_id), "check identifier availability"):
                    raise ConflictError(RESOURCE, short_id)
            else:
                short_id = await self._allocate_random_id()

            now = utcnow()
            record = URLRecord(
                id=short_id,
                original_url=original_url,
                description=description,
                expires_at=request.expires_at,
                created_at=now,
                updated_at=now,
                click_count=0,
                is_active=True,
                last_accessed_at=None,
                owner_key=owner_key,
            )

            try:
                await self._required(self._store.create(record), "create URL")
            except DuplicateRecordError as exc:
                raise ConflictError(RESOURCE, short_id) from exc

            await self._cache_set(record)

        except ServiceError as exc:
            URL_CREATION_DURATION.observe(time.perf_counter() - start_time)
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.warning(f"URL creation failed: {exc}")
            raise

        duration = time.perf_counter() - start_time
        URL_CREATION_DURATION.observe(duration)
        URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"URL created successfully: {short_id} in {duration:.3f}s")
        return self._present(record)

    async def resolve(self, short_id: str) -> URLRecord:
        """Return the accessible record for ``short_id``, cache first.

        Raises:
            NotFoundError: Unknown or inactive identifier.
            ExpiredError: The record exists and is active but its expiry has passed.
            InternalError: The store failed or timed out.
        """
        start_time = time.perf_counter()

        cached = await self._cache_get(short_id)
        if cached is not None:
            if cached.is_accessible():
                CACHE_HITS_TOTAL.inc()
                URL_LOOKUP_DURATION.observe(time.perf_counter() - start_time)
                URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=CacheStatus.HIT).inc()
                self._logger.debug(f"Cache hit for {short_id}")
                return self._present(cached)
            # Stale entry for a disabled or expired link.
            await self._cache_delete(short_id)

        CACHE_MISSES_TOTAL.inc()
        try:
            record = await self._required(self._store.get_by_id(short_id), "retrieve URL")
            if record is None or not record.is_active:
                raise NotFoundError(RESOURCE)
            if record.is_expired():
                raise ExpiredError(RESOURCE)
        except ServiceError:
            URL_LOOKUP_DURATION.observe(time.perf_counter() - start_time)
            URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR, cache_hit=CacheStatus.MISS).inc()
            raise

        await self._cache_set(record)

        URL_LOOKUP_DURATION.observe(time.perf_counter() - start_time)
        URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=CacheStatus.MISS).inc()
        self._logger.debug(f"Database hit and cached for {short_id}")
        return self._present(record)

    async def resolve_for_redirect(self, short_id: str) -> URLRecord:
        """Resolve ``short_id`` and schedule click accounting without waiting for it."""
        record = await self.resolve(short_id)
        URL_REDIRECT_REQUESTS_TOTAL.inc()
        self._dispatcher.submit(f"click:{short_id}", self._record_click(short_id))
        return record

    async def get_url_stats(self, short_id: str, owner_key: str) -> URLRecord:
        record = await self.resolve(short_id)
        if not owner_matches(record.owner_key, owner_key):
            raise UnauthorizedError("You don't have permission to view this URL's stats")
        return record

    async def update_url(self, short_id: str, patch: UpdateURLRequest, owner_key: str) -> URLRecord:
        """Apply the fields present in ``patch``; omitted fields are left unchanged."""
        record = await self._load_owned(short_id, owner_key, "update")

        changes = patch.model_dump(exclude_unset=True)
        updates: dict = {}
        if changes.get("original_url") is not None:
            updates["original_url"] = validate_original_url(
                changes["original_url"], self._settings.MAX_URL_LENGTH
            )
        if "description" in changes:
            updates["description"] = validate_description(
                changes["description"], self._settings.MAX_DESCRIPTION_LENGTH
            )
        if "expires_at" in changes:
            updates["expires_at"] = changes["expires_at"]
        if changes.get("is_active") is not None:
            updates["is_active"] = changes["is_active"]
        updates["updated_at"] = utcnow()

        # Re-validate so incoming datetimes are normalised like stored ones.
        record = URLRecord.model_validate({**record.model_dump(), **updates})

        try:
            await self._required(self._store.update(record, fields=updates.keys()), "update URL")
        except RecordNotFoundError as exc:
            raise NotFoundError(RESOURCE) from exc

        await self._invalidate(short_id)

        # Columns outside the patch may have moved since the load.
        stored = await self._required(self._store.get_by_id(short_id), "retrieve URL")
        if stored is None:
            raise NotFoundError(RESOURCE)

        self._logger.info(f"URL updated: {short_id} fields={sorted(updates)}")
        return self._present(stored)

    async def delete_url(self, short_id: str, owner_key: str) -> None:
        await self._load_owned(short_id, owner_key, "delete")

        try:
            await self._required(self._store.soft_delete(short_id), "delete URL")
        except RecordNotFoundError as exc:
            raise NotFoundError(RESOURCE) from exc

        await self._invalidate(short_id)
        self._logger.info(f"URL deactivated: {short_id}")

    async def list_urls(self, owner_key: str, options: URLListOptions) -> tuple[list[URLRecord], PaginationMeta]:
        options = options.normalized()
        records, total_count = await self._required(
            self._store.list(owner_key, options), "retrieve URL list"
        )
        pagination = PaginationMeta.build(options.page, options.limit, total_count)
        return [self._present(record) for record in records], pagination

    async def sweep_expired(self) -> int:
        """Deactivate every accessible record whose expiry has passed; returns how many."""
        swept = await self._required(self._store.expire_sweep(utcnow()), "clean up expired URLs")
        if swept:
            EXPIRED_URLS_SWEPT_TOTAL.inc(swept)
            self._logger.info(f"Expired URLs deactivated: {swept}")
        return swept

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    def _present(self, record: URLRecord) -> URLRecord:
        return record.with_links(self._settings.BASE_URL, self._settings.API_PREFIX)

    async def _allocate_random_id(self) -> str:
        attempts = self._settings.ID_GENERATION_MAX_ATTEMPTS
        length = self._settings.DEFAULT_ID_LENGTH

        for attempt in range(1, attempts + 1):
            try:
                candidate = codec.generate_random(length)
            except codec.RandomSourceError as exc:
                self._logger.error(f"Random source unavailable: {exc}")
                raise InternalError("Failed to generate short ID") from exc

            if not await self._required(self._store.exists(candidate), "check identifier availability"):
                return candidate

            ID_COLLISIONS_TOTAL.inc()
            self._logger.debug(f"Identifier collision on attempt {attempt}: {candidate}")

        self._logger.error(f"No free identifier of length {length} after {attempts} attempts")
        raise InternalError(f"Failed to generate unique ID after {attempts} attempts")

    async def _load_owned(self, short_id: str, owner_key: str, action: str) -> URLRecord:
        record = await self._required(self._store.get_by_id(short_id), "retrieve URL")
        if record is None:
            raise NotFoundError(RESOURCE)
        if not owner_matches(record.owner_key, owner_key):
            raise UnauthorizedError(f"You don't have permission to {action} this URL")
        return record

    async def _record_click(self, short_id: str) -> None:
        # Failures propagate to the dispatcher, which logs and counts them.
        try:
            async with asyncio.timeout(self._settings.STORE_TIMEOUT_SECONDS):
                await self._store.increment_click(short_id)
        finally:
            await self._cache_delete(short_id)

    async def _invalidate(self, short_id: str) -> None:
        await self._cache_delete(short_id)
        self._dispatcher.submit(f"invalidate:{short_id}", self._invalidate_later(short_id))

    async def _invalidate_later(self, short_id: str) -> None:
        # A read-through that loaded the old row before the write can still
        # land in the cache after the first delete.
        await asyncio.sleep(self._settings.CACHE_REINVALIDATE_DELAY_SECONDS)
        await self._cache_delete(short_id)

    async def _required(self, operation: Awaitable[T], action: str) -> T:
        """Await a store call that the current operation cannot do without."""
        try:
            async with asyncio.timeout(self._settings.STORE_TIMEOUT_SECONDS):
                return await operation
        except (RecordNotFoundError, DuplicateRecordError):
            raise
        except TimeoutError as exc:
            self._logger.error(f"Store timed out trying to {action}")
            raise InternalError(f"Failed to {action}") from exc
        except StoreError as exc:
            self._logger.error(f"Store failed to {action}: {exc}")
            raise InternalError(f"Failed to {action}") from exc

    async def _cache_get(self, short_id: str) -> URLRecord | None:
        try:
            async with asyncio.timeout(self._settings.CACHE_TIMEOUT_SECONDS):
                return await self._cache.get(short_id)
        except (CacheError, TimeoutError) as exc:
            CACHE_ERRORS_TOTAL.labels(operation="get").inc()
            self._logger.warning(f"Cache read failed for {short_id}: {exc!r}")
            return None

    async def _cache_set(self, record: URLRecord) -> None:
        try:
            async with asyncio.timeout(self._settings.CACHE_TIMEOUT_SECONDS):
                await self._cache.set(record.id, record, self._settings.CACHE_TTL_SECONDS)
        except (CacheError, TimeoutError) as exc:
            CACHE_ERRORS_TOTAL.labels(operation="set").inc()
            self._logger.warning(f"Cache write failed for {record.id}: {exc!r}")

    async def _cache_delete(self, short_id: str) -> None:
        try:
            async with asyncio.timeout(self._settings.CACHE_TIMEOUT_SECONDS):
                await self._cache.delete(short_id)
        except (CacheError, TimeoutError) as exc:
            CACHE_ERRORS_TOTAL.labels(operation="delete").inc()
            self._logger.warning(f"Cache invalidation failed for {short_id}: {exc!r}")
