"""SQLAlchemy ORM models for the URL shortener.

This module defines the database schema using SQLAlchemy declarative models
with the indexes the listing and sweep queries rely on.

Data Model Layout
=================
::
    urls table
    ├─ id (VARCHAR(255) PRIMARY KEY)
    ├─ original_url (TEXT NOT NULL)
    ├─ description (TEXT NULL)
    ├─ expires_at (TIMESTAMPTZ NULL, INDEXED)
    ├─ created_at (TIMESTAMPTZ NOT NULL, INDEXED)
    ├─ updated_at (TIMESTAMPTZ NOT NULL)
    ├─ click_count (BIGINT DEFAULT 0, INDEXED)
    ├─ is_active (BOOLEAN DEFAULT TRUE, INDEXED)
    ├─ last_accessed_at (TIMESTAMPTZ NULL)
    └─ owner_key (VARCHAR(255) NOT NULL, INDEXED)

    click_events table (raw per-click rows, reserved for analytics)
    ├─ id (BIGSERIAL PRIMARY KEY)
    ├─ url_id (FK -> urls.id, ON DELETE CASCADE)
    ├─ ip_address, user_agent, referer
    ├─ country, city, browser, os, device
    └─ clicked_at, processed_at

Key Behaviours
===============
- id is the short identifier itself; it is never reused, even after a soft delete.
- Timestamps are written by the service layer, not by database defaults, so
  every backend (including SQLite in tests) stores the same values.
- click_count only moves forward, via an atomic UPDATE in the store.

Classes:
    URL:  A shortened URL mapping with click tracking.
    ClickEvent:  A single raw click, kept for future analytics.
"""

import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base

__all__ = ["URL", "ClickEvent"]


class URL(Base):
    __tablename__ = "urls"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    click_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    last_accessed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    owner_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<URL(id='{self.id}', clicks={self.click_count}, active={self.is_active})>"


class ClickEvent(Base):
    __tablename__ = "click_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    url_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("urls.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False, index=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    referer: Mapped[str | None] = mapped_column(Text, nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    city: Mapped[str | None] = mapped_column(String(200), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(100), nullable=True)
    os: Mapped[str | None] = mapped_column(String(100), nullable=True)
    device: Mapped[str | None] = mapped_column(String(100), nullable=True)
    clicked_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    processed_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ClickEvent(id={self.id}, url_id='{self.url_id}')>"
