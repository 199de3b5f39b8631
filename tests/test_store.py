"""SQLAlchemyURLStore tests against in-memory SQLite."""

import datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from shortener.database import close_db, create_session_factory, init_db
from shortener.enums import SortField, SortOrder
from shortener.errors import DuplicateRecordError, RecordNotFoundError, StoreError
from shortener.schemas import URLListOptions, URLRecord, utcnow
from shortener.store import SQLAlchemyURLStore

OWNER = "owner-a"
OTHER = "owner-b"


def _engine() -> AsyncEngine:
    return create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = _engine()
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def sql_store(engine: AsyncEngine) -> SQLAlchemyURLStore:
    return SQLAlchemyURLStore(create_session_factory(engine))


def build_record(short_id: str, owner_key: str = OWNER, **overrides) -> URLRecord:
    now = utcnow()
    data = {
        "id": short_id,
        "original_url": f"https://example.com/{short_id}",
        "created_at": now,
        "updated_at": now,
        "owner_key": owner_key,
    }
    data.update(overrides)
    return URLRecord(**data)


@pytest.mark.asyncio
async def test_create_and_get(sql_store: SQLAlchemyURLStore) -> None:
    expires_at = utcnow() + datetime.timedelta(days=1)
    record = build_record("abc123", description="docs", expires_at=expires_at)

    await sql_store.create(record)
    loaded = await sql_store.get_by_id("abc123")

    assert loaded is not None
    assert loaded.original_url == "https://example.com/abc123"
    assert loaded.description == "docs"
    assert loaded.owner_key == OWNER
    assert loaded.click_count == 0
    assert loaded.is_active is True
    assert loaded.expires_at == expires_at
    assert loaded.created_at.tzinfo is not None


@pytest.mark.asyncio
async def test_create_duplicate(sql_store: SQLAlchemyURLStore) -> None:
    await sql_store.create(build_record("dup123"))

    with pytest.raises(DuplicateRecordError):
        await sql_store.create(build_record("dup123", owner_key=OTHER))

    loaded = await sql_store.get_by_id("dup123")
    assert loaded.owner_key == OWNER


@pytest.mark.asyncio
async def test_get_unknown(sql_store: SQLAlchemyURLStore) -> None:
    assert await sql_store.get_by_id("nope12") is None


@pytest.mark.asyncio
async def test_get_returns_inactive_records(sql_store: SQLAlchemyURLStore) -> None:
    await sql_store.create(build_record("off123", is_active=False))

    loaded = await sql_store.get_by_id("off123")

    assert loaded is not None
    assert loaded.is_active is False


@pytest.mark.asyncio
async def test_exists(sql_store: SQLAlchemyURLStore) -> None:
    await sql_store.create(build_record("here12"))
    await sql_store.soft_delete("here12")

    assert await sql_store.exists("here12") is True
    assert await sql_store.exists("gone12") is False


@pytest.mark.asyncio
async def test_update_preserves_click_accounting(sql_store: SQLAlchemyURLStore) -> None:
    record = build_record("upd123")
    await sql_store.create(record)
    await sql_store.increment_click("upd123")

    # ``record`` still carries click_count=0 from before the click.
    edited = record.model_copy(update={"description": "edited", "updated_at": utcnow()})
    await sql_store.update(edited)

    loaded = await sql_store.get_by_id("upd123")
    assert loaded.description == "edited"
    assert loaded.click_count == 1
    assert loaded.last_accessed_at is not None


@pytest.mark.asyncio
async def test_update_writes_only_named_fields(sql_store: SQLAlchemyURLStore) -> None:
    record = build_record("part12", description="before")
    await sql_store.create(record)
    await sql_store.soft_delete("part12")

    # ``record`` still says is_active=True from before the delete.
    edited = record.model_copy(update={"description": "after", "updated_at": utcnow()})
    await sql_store.update(edited, fields=["description"])

    loaded = await sql_store.get_by_id("part12")
    assert loaded.description == "after"
    assert loaded.is_active is False
    assert loaded.updated_at == edited.updated_at


@pytest.mark.asyncio
async def test_update_unknown(sql_store: SQLAlchemyURLStore) -> None:
    with pytest.raises(RecordNotFoundError):
        await sql_store.update(build_record("nope12"))


@pytest.mark.asyncio
async def test_soft_delete(sql_store: SQLAlchemyURLStore) -> None:
    await sql_store.create(build_record("del123"))

    await sql_store.soft_delete("del123")

    loaded = await sql_store.get_by_id("del123")
    assert loaded.is_active is False


@pytest.mark.asyncio
async def test_soft_delete_unknown(sql_store: SQLAlchemyURLStore) -> None:
    with pytest.raises(RecordNotFoundError):
        await sql_store.soft_delete("nope12")


@pytest.mark.asyncio
async def test_increment_click(sql_store: SQLAlchemyURLStore) -> None:
    record = build_record("clk123")
    await sql_store.create(record)
    before = utcnow()

    await sql_store.increment_click("clk123")
    await sql_store.increment_click("clk123")

    loaded = await sql_store.get_by_id("clk123")
    assert loaded.click_count == 2
    assert loaded.last_accessed_at >= before.replace(microsecond=0)
    assert loaded.updated_at == record.updated_at


@pytest.mark.asyncio
async def test_increment_click_inactive_or_unknown(sql_store: SQLAlchemyURLStore) -> None:
    await sql_store.create(build_record("off123", is_active=False))

    with pytest.raises(RecordNotFoundError):
        await sql_store.increment_click("off123")
    with pytest.raises(RecordNotFoundError):
        await sql_store.increment_click("nope12")


@pytest.mark.asyncio
async def test_touch_last_accessed(sql_store: SQLAlchemyURLStore) -> None:
    await sql_store.create(build_record("tch123"))

    await sql_store.touch_last_accessed("tch123")

    loaded = await sql_store.get_by_id("tch123")
    assert loaded.last_accessed_at is not None
    assert loaded.click_count == 0


@pytest.mark.asyncio
async def test_list_pages_through_owner_records(sql_store: SQLAlchemyURLStore) -> None:
    base = utcnow()
    for i in range(25):
        await sql_store.create(build_record(f"id{i:04d}", created_at=base + datetime.timedelta(seconds=i)))
    await sql_store.create(build_record("other1", owner_key=OTHER))

    first, total = await sql_store.list(OWNER, URLListOptions(page=1, limit=10))
    last, _ = await sql_store.list(OWNER, URLListOptions(page=3, limit=10))

    assert total == 25
    assert [r.id for r in first] == [f"id{i:04d}" for i in range(24, 14, -1)]
    assert [r.id for r in last] == [f"id{i:04d}" for i in range(4, -1, -1)]


@pytest.mark.asyncio
async def test_list_sort_and_filter(sql_store: SQLAlchemyURLStore) -> None:
    await sql_store.create(build_record("aaa111", click_count=5))
    await sql_store.create(build_record("bbb222", click_count=50))
    await sql_store.create(build_record("ccc333", click_count=5))
    await sql_store.create(build_record("ddd444", click_count=500, is_active=False))

    by_clicks, total = await sql_store.list(
        OWNER, URLListOptions(sort=SortField.CLICK_COUNT, order=SortOrder.ASC, is_active=True)
    )

    assert total == 3
    # Ties are broken by id.
    assert [r.id for r in by_clicks] == ["aaa111", "ccc333", "bbb222"]

    inactive, inactive_total = await sql_store.list(OWNER, URLListOptions(is_active=False))
    assert inactive_total == 1
    assert inactive[0].id == "ddd444"


@pytest.mark.asyncio
async def test_expire_sweep(sql_store: SQLAlchemyURLStore) -> None:
    now = utcnow()
    await sql_store.create(build_record("exp001", expires_at=now - datetime.timedelta(minutes=5)))
    await sql_store.create(build_record("exp002", expires_at=now))
    await sql_store.create(build_record("fresh1", expires_at=now + datetime.timedelta(minutes=5)))
    await sql_store.create(build_record("never1"))
    await sql_store.create(build_record("offexp", expires_at=now - datetime.timedelta(days=1), is_active=False))

    swept = await sql_store.expire_sweep(now)

    assert swept == 2
    assert (await sql_store.get_by_id("exp001")).is_active is False
    assert (await sql_store.get_by_id("exp002")).is_active is False
    assert (await sql_store.get_by_id("fresh1")).is_active is True
    assert (await sql_store.get_by_id("never1")).is_active is True
    assert await sql_store.expire_sweep(now) == 0


@pytest.mark.asyncio
async def test_database_errors_become_store_errors() -> None:
    engine = _engine()
    # No tables created.
    store = SQLAlchemyURLStore(create_session_factory(engine))
    try:
        with pytest.raises(StoreError):
            await store.get_by_id("abc123")
        with pytest.raises(StoreError):
            await store.exists("abc123")
        with pytest.raises(StoreError):
            await store.expire_sweep(utcnow())
    finally:
        await close_db(engine)


@pytest.mark.asyncio
async def test_init_db_creates_tables(engine: AsyncEngine) -> None:
    async with engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())

    assert {"urls", "click_events"} <= set(tables)
