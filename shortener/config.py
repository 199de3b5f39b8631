"""Configuration management for the URL shortener service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortener.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    ttl = settings.CACHE_TTL_SECONDS

**Step 3 — Override in tests**::
    settings = Settings(API_KEYS=["owner-a", "owner-b"], BASE_URL="http://sho.rt")

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- List values (API_KEYS) are read from the environment as JSON arrays.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Public addresses
    BASE_URL: str = "http://localhost:8080"
    API_PREFIX: str = "/api/v1"

    # Accepted X-API-Key values; the key doubles as the owner key of created URLs
    API_KEYS: list[str] = ["sk_dev_key"]

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://urlshortener:urlshortener@db:5432/urlshortener"
    AUTO_CREATE_TABLES: bool = True

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_KEY_PREFIX: str = "url"
    CACHE_TTL_SECONDS: int = 300

    # Identifier allocation
    DEFAULT_ID_LENGTH: int = 6
    ID_GENERATION_MAX_ATTEMPTS: int = 10

    # Input bounds
    MAX_URL_LENGTH: int = 2048
    MAX_DESCRIPTION_LENGTH: int = 255

    # Backend call budgets
    STORE_TIMEOUT_SECONDS: float = 2.0
    CACHE_TIMEOUT_SECONDS: float = 0.5

    # Second cache delete after an edit; must exceed STORE_TIMEOUT + CACHE_TIMEOUT
    # so a read-through that loaded the old row has already written it back
    CACHE_REINVALIDATE_DELAY_SECONDS: float = 3.0

    # Rate limiting (in-process sliding window)
    RATE_LIMIT_PER_MINUTE: int = 60
    RATE_LIMIT_WINDOW_SECONDS: float = 60.0
    RATE_LIMIT_SWEEP_INTERVAL_SECONDS: float = 300.0

    # QR codes are rendered by an external image service
    QR_SERVICE_URL: str = "https://api.qrserver.com/v1/create-qr-code/"
    QR_DEFAULT_SIZE: int = 200
    QR_MIN_SIZE: int = 50
    QR_MAX_SIZE: int = 1000

    REDIRECT_CACHE_MAX_AGE_SECONDS: int = 300

    # Background work
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 300
    BACKGROUND_DRAIN_TIMEOUT_SECONDS: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
