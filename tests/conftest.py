"""Shared pytest fixtures: in-memory store and cache, service, app and HTTP client."""

import asyncio
import datetime
from collections.abc import Iterable
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from shortener.background import BackgroundDispatcher
from shortener.cache import URLCache
from shortener.config import Settings
from shortener.dependencies import ServiceManager
from shortener.enums import SortOrder
from shortener.errors import CacheError, DuplicateRecordError, RecordNotFoundError, StoreError
from shortener.main import create_app
from shortener.schemas import URLListOptions, URLRecord, utcnow
from shortener.store import EDITABLE_FIELDS, URLStore
from shortener.url_service import URLService

OWNER_KEY = "owner-a"
OTHER_KEY = "owner-b"

_EPOCH = datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)


# ============================================================================
# IN-MEMORY COLLABORATORS
# ============================================================================


class InMemoryURLStore(URLStore):
    """Dict-backed store with the same error contract as SQLAlchemyURLStore."""

    def __init__(self) -> None:
        self.records: dict[str, URLRecord] = {}
        self.error: Exception | None = None
        self.delay: float = 0.0
        self.increment_calls = 0

    async def _io(self) -> None:
        # Yield so concurrent callers interleave like real network calls.
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

    async def create(self, record: URLRecord) -> None:
        await self._io()
        if record.id in self.records:
            raise DuplicateRecordError(record.id)
        self.records[record.id] = record.model_copy()

    async def get_by_id(self, short_id: str) -> URLRecord | None:
        await self._io()
        record = self.records.get(short_id)
        return record.model_copy() if record is not None else None

    async def update(self, record: URLRecord, fields: Iterable[str] = EDITABLE_FIELDS) -> None:
        await self._io()
        stored = self.records.get(record.id)
        if stored is None:
            raise RecordNotFoundError(record.id)
        changes = {name: getattr(record, name) for name in fields if name in EDITABLE_FIELDS}
        changes["updated_at"] = record.updated_at
        self.records[record.id] = stored.model_copy(update=changes)

    async def soft_delete(self, short_id: str) -> None:
        await self._io()
        stored = self.records.get(short_id)
        if stored is None:
            raise RecordNotFoundError(short_id)
        self.records[short_id] = stored.model_copy(update={"is_active": False, "updated_at": utcnow()})

    async def list(self, owner_key: str, options: URLListOptions) -> tuple[list[URLRecord], int]:
        await self._io()
        matching = [
            r
            for r in self.records.values()
            if r.owner_key == owner_key and (options.is_active is None or r.is_active == options.is_active)
        ]
        matching.sort(key=lambda r: r.id)
        field = options.sort.value
        matching.sort(
            key=lambda r: getattr(r, field) if getattr(r, field) is not None else _EPOCH,
            reverse=options.order is SortOrder.DESC,
        )
        page = matching[options.offset : options.offset + options.limit]
        return [r.model_copy() for r in page], len(matching)

    async def exists(self, short_id: str) -> bool:
        await self._io()
        return short_id in self.records

    async def increment_click(self, short_id: str) -> None:
        await self._io()
        self.increment_calls += 1
        stored = self.records.get(short_id)
        if stored is None or not stored.is_active:
            raise RecordNotFoundError(short_id)
        self.records[short_id] = stored.model_copy(
            update={"click_count": stored.click_count + 1, "last_accessed_at": utcnow()}
        )

    async def touch_last_accessed(self, short_id: str) -> None:
        await self._io()
        stored = self.records.get(short_id)
        if stored is None or not stored.is_active:
            raise RecordNotFoundError(short_id)
        self.records[short_id] = stored.model_copy(update={"last_accessed_at": utcnow()})

    async def expire_sweep(self, now: datetime.datetime) -> int:
        await self._io()
        swept = 0
        for short_id, record in list(self.records.items()):
            if record.is_active and record.expires_at is not None and record.expires_at <= now:
                self.records[short_id] = record.model_copy(update={"is_active": False, "updated_at": now})
                swept += 1
        return swept


class InMemoryURLCache(URLCache):
    """Dict-backed cache storing the same JSON payloads as RedisURLCache."""

    def __init__(self) -> None:
        self.entries: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.counters: dict[str, int] = {}
        self.failing = False
        self.delay: float = 0.0

    async def _io(self) -> None:
        await asyncio.sleep(self.delay)
        if self.failing:
            raise CacheError("cache unavailable")

    async def set(self, short_id: str, record: URLRecord, ttl_seconds: int) -> None:
        await self._io()
        self.entries[short_id] = record.model_dump_json()
        self.ttls[short_id] = ttl_seconds

    async def get(self, short_id: str) -> URLRecord | None:
        await self._io()
        payload = self.entries.get(short_id)
        return URLRecord.model_validate_json(payload) if payload is not None else None

    async def delete(self, short_id: str) -> None:
        await self._io()
        self.entries.pop(short_id, None)
        self.ttls.pop(short_id, None)

    async def increment_counter(self, key: str, ttl_seconds: int) -> int:
        await self._io()
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        APP_ENV="test",
        BASE_URL="http://sho.rt",
        API_PREFIX="/api/v1",
        API_KEYS=[OWNER_KEY, OTHER_KEY],
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        REDIS_URL="redis://localhost:6379/15",
        RATE_LIMIT_PER_MINUTE=1000,
        STORE_TIMEOUT_SECONDS=1.0,
        CACHE_TIMEOUT_SECONDS=0.2,
        CACHE_REINVALIDATE_DELAY_SECONDS=0.05,
    )


@pytest.fixture
def store() -> InMemoryURLStore:
    return InMemoryURLStore()


@pytest.fixture
def cache() -> InMemoryURLCache:
    return InMemoryURLCache()


@pytest_asyncio.fixture
async def dispatcher() -> AsyncGenerator[BackgroundDispatcher, None]:
    dispatcher = BackgroundDispatcher()
    yield dispatcher
    await dispatcher.close(timeout=1.0)


@pytest.fixture
def url_service(
    store: InMemoryURLStore,
    cache: InMemoryURLCache,
    dispatcher: BackgroundDispatcher,
    settings: Settings,
) -> URLService:
    return URLService(store, cache, dispatcher, settings)


@pytest.fixture
def make_record(store: InMemoryURLStore) -> Callable[..., URLRecord]:
    """Seed the store directly, bypassing validation."""

    def _make(short_id: str, owner_key: str = OWNER_KEY, **overrides) -> URLRecord:
        now = utcnow()
        data = {
            "id": short_id,
            "original_url": f"https://example.com/{short_id}",
            "created_at": now,
            "updated_at": now,
            "owner_key": owner_key,
        }
        data.update(overrides)
        record = URLRecord(**data)
        store.records[short_id] = record
        return record

    return _make


@pytest_asyncio.fixture
async def manager(
    settings: Settings, store: InMemoryURLStore, cache: InMemoryURLCache
) -> AsyncGenerator[ServiceManager, None]:
    manager = ServiceManager(settings, store=store, cache=cache)
    yield manager
    await manager.cleanup()


@pytest_asyncio.fixture
async def client(settings: Settings, manager: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(settings, manager)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"X-API-Key": OWNER_KEY}


@pytest.fixture
def other_auth_headers() -> dict[str, str]:
    return {"X-API-Key": OTHER_KEY}


@pytest.fixture
def failing_store_error() -> StoreError:
    return StoreError("connection refused: SELECT * FROM urls")
