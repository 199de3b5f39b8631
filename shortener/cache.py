"""Redis-backed cache for URL records.

This module provides the cache capability interface consumed by the service
layer and its Redis implementation, plus the client factory used at startup.

Flow Diagram — Cache Operations
=============================
::
    ┌─────────────┐
    │ URLService  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ RedisURL    │
    │ Cache       │
    └──────┬──────┘
     get  │  set / delete
    ┌─────┴─────┐
    ▼            ▼
┌─────────┐  ┌─────────┐
│ GET     │  │ SET EX  │
│ url:<id>│  │ DEL     │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Create the client on startup**::
    client = create_redis_client(settings.REDIS_URL)
    cache = RedisURLCache(client)

**Step 2 — Read and write records**::
    await cache.set("abc123", record, ttl_seconds=300)
    record = await cache.get("abc123")   # None on miss

**Step 3 — Cleanup on shutdown**::
    await client.aclose()

Key Behaviours
===============
- Payloads are the JSON form of URLRecord; derived links are never cached.
- A payload that no longer decodes is reported as a miss.
- Every Redis failure surfaces as CacheError so callers can treat the cache
  as best-effort without catching driver exceptions.

Classes:
    URLCache:  Capability interface used by the service layer.
    RedisURLCache:  Redis implementation.

Functions:
    create_redis_client():  Builds a redis.asyncio client from a URL.
"""

import abc
import logging

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from shortener.errors import CacheError
from shortener.schemas import URLRecord

__all__ = ["URLCache", "RedisURLCache", "create_redis_client"]

logger = logging.getLogger(__name__)


def create_redis_client(redis_url: str) -> redis.Redis:
    return redis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
    )


class URLCache(abc.ABC):
    """Key-value accelerator in front of the durable store."""

    @abc.abstractmethod
    async def set(self, short_id: str, record: URLRecord, ttl_seconds: int) -> None: ...

    @abc.abstractmethod
    async def get(self, short_id: str) -> URLRecord | None:
        """Return the cached record, or None on a miss."""

    @abc.abstractmethod
    async def delete(self, short_id: str) -> None: ...

    @abc.abstractmethod
    async def increment_counter(self, key: str, ttl_seconds: int) -> int:
        """Increment ``key`` and (re)arm its expiry; returns the new value."""


class RedisURLCache(URLCache):
    def __init__(self, client: redis.Redis, key_prefix: str = "url") -> None:
        self._client = client
        self._key_prefix = key_prefix

    def _key(self, short_id: str) -> str:
        return f"{self._key_prefix}:{short_id}"

    async def set(self, short_id: str, record: URLRecord, ttl_seconds: int) -> None:
        try:
            await self._client.set(self._key(short_id), record.model_dump_json(), ex=ttl_seconds)
        except RedisError as exc:
            raise CacheError(f"failed to set cache for {short_id}: {exc}") from exc

    async def get(self, short_id: str) -> URLRecord | None:
        try:
            cached_data = await self._client.get(self._key(short_id))
        except RedisError as exc:
            raise CacheError(f"failed to get cache for {short_id}: {exc}") from exc

        if not cached_data:
            return None

        try:
            return URLRecord.model_validate_json(cached_data)
        except PydanticValidationError as exc:
            logger.warning(f"Cache deserialization error for {short_id}: {exc}")
            return None

    async def delete(self, short_id: str) -> None:
        try:
            await self._client.delete(self._key(short_id))
        except RedisError as exc:
            raise CacheError(f"failed to delete cache for {short_id}: {exc}") from exc

    async def increment_counter(self, key: str, ttl_seconds: int) -> int:
        pipe = self._client.pipeline(transaction=True)
        pipe.incr(key)
        pipe.expire(key, ttl_seconds)
        try:
            count, _ = await pipe.execute()
        except RedisError as exc:
            raise CacheError(f"failed to increment counter {key}: {exc}") from exc
        return int(count)
