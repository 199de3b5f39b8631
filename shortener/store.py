"""Durable store for URL records.

``URLStore`` is the capability interface the service layer depends on;
``SQLAlchemyURLStore`` implements it on PostgreSQL (or any async SQLAlchemy
dialect) with one short-lived session per operation.

Error Contract
==============
::
    create            -> DuplicateRecordError | StoreError
    get_by_id         -> None when unknown (inactive rows are returned)
    update            -> RecordNotFoundError | StoreError
    soft_delete       -> RecordNotFoundError | StoreError
    increment_click   -> RecordNotFoundError (unknown or inactive) | StoreError
    touch_last_accessed -> RecordNotFoundError (unknown or inactive) | StoreError
    list / exists / expire_sweep -> StoreError
"""

import abc
import datetime
from collections.abc import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.enums import SortOrder
from shortener.errors import DuplicateRecordError, RecordNotFoundError, StoreError
from shortener.models import URL
from shortener.schemas import URLListOptions, URLRecord, utcnow

__all__ = ["EDITABLE_FIELDS", "URLStore", "SQLAlchemyURLStore"]

# Columns an owner may change through update()
EDITABLE_FIELDS = ("original_url", "description", "expires_at", "is_active")


class URLStore(abc.ABC):
    """Authoritative mapping from short identifier to URL record."""

    @abc.abstractmethod
    async def create(self, record: URLRecord) -> None: ...

    @abc.abstractmethod
    async def get_by_id(self, short_id: str) -> URLRecord | None: ...

    @abc.abstractmethod
    async def update(self, record: URLRecord, fields: Iterable[str] = EDITABLE_FIELDS) -> None:
        """Persist ``fields`` of ``record`` plus ``updated_at``.

        Only the named columns are written, so a concurrent delete, sweep or
        redirect is never rolled back by an edit that did not touch it.
        """

    @abc.abstractmethod
    async def soft_delete(self, short_id: str) -> None: ...

    @abc.abstractmethod
    async def list(self, owner_key: str, options: URLListOptions) -> tuple[list[URLRecord], int]:
        """Return one page of the owner's records and the owner's total count."""

    @abc.abstractmethod
    async def exists(self, short_id: str) -> bool:
        """True if the id was ever assigned, active or not."""

    @abc.abstractmethod
    async def increment_click(self, short_id: str) -> None:
        """Add one click and stamp ``last_accessed_at`` in a single write."""

    @abc.abstractmethod
    async def touch_last_accessed(self, short_id: str) -> None: ...

    @abc.abstractmethod
    async def expire_sweep(self, now: datetime.datetime) -> int:
        """Deactivate every active record whose expiry is at or before ``now``."""


class SQLAlchemyURLStore(URLStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, record: URLRecord) -> None:
        async with self._session_factory() as session:
            session.add(URL(**record.model_dump()))
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateRecordError(record.id) from exc
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError(f"failed to create URL: {exc}") from exc

    async def get_by_id(self, short_id: str) -> URLRecord | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(URL).where(URL.id == short_id))
                row = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to get URL: {exc}") from exc

        return URLRecord.model_validate(row) if row is not None else None

    async def update(self, record: URLRecord, fields: Iterable[str] = EDITABLE_FIELDS) -> None:
        values = {name: getattr(record, name) for name in fields if name in EDITABLE_FIELDS}
        values["updated_at"] = record.updated_at
        stmt = update(URL).where(URL.id == record.id).values(**values)
        await self._execute_single_row(stmt, record.id, "update URL")

    async def soft_delete(self, short_id: str) -> None:
        stmt = update(URL).where(URL.id == short_id).values(is_active=False, updated_at=utcnow())
        await self._execute_single_row(stmt, short_id, "delete URL")

    async def list(self, owner_key: str, options: URLListOptions) -> tuple[list[URLRecord], int]:
        conditions = [URL.owner_key == owner_key]
        if options.is_active is not None:
            conditions.append(URL.is_active == options.is_active)

        sort_column = getattr(URL, options.sort.value)
        ordering = sort_column.asc() if options.order is SortOrder.ASC else sort_column.desc()

        try:
            async with self._session_factory() as session:
                total_count = await session.scalar(select(func.count()).select_from(URL).where(*conditions))
                result = await session.execute(
                    select(URL)
                    .where(*conditions)
                    .order_by(ordering, URL.id.asc())
                    .limit(options.limit)
                    .offset(options.offset)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to list URLs: {exc}") from exc

        return [URLRecord.model_validate(row) for row in rows], int(total_count or 0)

    async def exists(self, short_id: str) -> bool:
        try:
            async with self._session_factory() as session:
                found = await session.scalar(select(URL.id).where(URL.id == short_id).limit(1))
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to check URL existence: {exc}") from exc
        return found is not None

    async def increment_click(self, short_id: str) -> None:
        stmt = (
            update(URL)
            .where(URL.id == short_id, URL.is_active.is_(True))
            .values(click_count=URL.click_count + 1, last_accessed_at=utcnow())
        )
        await self._execute_single_row(stmt, short_id, "increment click count")

    async def touch_last_accessed(self, short_id: str) -> None:
        stmt = (
            update(URL)
            .where(URL.id == short_id, URL.is_active.is_(True))
            .values(last_accessed_at=utcnow())
        )
        await self._execute_single_row(stmt, short_id, "update last accessed")

    async def expire_sweep(self, now: datetime.datetime) -> int:
        stmt = (
            update(URL)
            .where(URL.expires_at.is_not(None), URL.expires_at <= now, URL.is_active.is_(True))
            .values(is_active=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to expire URLs: {exc}") from exc
        return result.rowcount

    async def _execute_single_row(self, stmt, short_id: str, action: str) -> None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt.execution_options(synchronize_session=False))
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to {action}: {exc}") from exc

        if result.rowcount == 0:
            raise RecordNotFoundError(short_id)
