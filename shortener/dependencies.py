"""Dependency injection around an explicitly owned service manager.

The ``ServiceManager`` owns every long-lived resource (engine, Redis client,
store, cache, background dispatcher, rate limiter and the ``URLService``).
One instance is created per application by ``create_app`` and stored on
``app.state``; route handlers reach it through the dependency functions below
instead of a module-level singleton, so tests can run isolated apps side by
side.
"""

import asyncio
import hmac
import logging
import time
import uuid
from dataclasses import dataclass, field

import redis.asyncio as redis
from fastapi import Depends, Header, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from shortener.background import BackgroundDispatcher
from shortener.cache import RedisURLCache, URLCache, create_redis_client
from shortener.config import Settings, get_settings
from shortener.database import close_db, create_engine_from_settings, create_session_factory, init_db
from shortener.enums import HealthStatus
from shortener.errors import UnauthorizedError
from shortener.rate_limit import SlidingWindowRateLimiter
from shortener.store import SQLAlchemyURLStore, URLStore
from shortener.url_service import URLService

__all__ = [
    "ServiceManager",
    "RequestContext",
    "get_service_manager",
    "get_request_context",
    "get_url_service",
    "require_api_key",
]

HEALTH_PROBE_ID = "__health__"


# ============================================================================
# SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Owner of the shared resources of one application instance.

    Store and cache may be injected (tests); otherwise ``initialize()`` builds
    the SQLAlchemy store and the Redis cache from settings.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: URLStore | None = None,
        cache: URLCache | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.logger = self._setup_logger()
        self.store = store
        self.cache = cache
        self._owns_store = store is None
        self._owns_cache = cache is None
        self.engine: AsyncEngine | None = None
        self.redis: redis.Redis | None = None
        self.dispatcher = BackgroundDispatcher(self.logger)
        self.rate_limiter = SlidingWindowRateLimiter(
            self.settings.RATE_LIMIT_PER_MINUTE,
            self.settings.RATE_LIMIT_WINDOW_SECONDS,
            self.settings.RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
        )
        self.url_service: URLService | None = None
        self._initialized = False
        self._lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _setup_logger(self) -> logging.Logger:
        logger = logging.getLogger("shortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def initialize(self) -> None:
        """Build shared resources once; later calls return immediately."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            if self._owns_store:
                self.engine = create_engine_from_settings(self.settings)
                if self.settings.AUTO_CREATE_TABLES:
                    await init_db(self.engine)
                self.store = SQLAlchemyURLStore(create_session_factory(self.engine))

            if self._owns_cache:
                self.redis = create_redis_client(self.settings.REDIS_URL)
                self.cache = RedisURLCache(self.redis, key_prefix=self.settings.CACHE_KEY_PREFIX)

            if self.dispatcher.closed:
                self.dispatcher = BackgroundDispatcher(self.logger)

            self.url_service = URLService(self.store, self.cache, self.dispatcher, self.settings, self.logger)
            self.rate_limiter.start()
            self._initialized = True
            self.logger.info(f"{self.settings.APP_NAME} initialized ({self.settings.APP_ENV})")

    async def cleanup(self) -> None:
        """Drain background effects, then release everything ``initialize()`` built."""
        async with self._lock:
            if not self._initialized:
                return

            await self.dispatcher.close(self.settings.BACKGROUND_DRAIN_TIMEOUT_SECONDS)
            await self.rate_limiter.close()

            if self.redis is not None:
                await self.redis.aclose()
                self.redis = None
                self.cache = None
            if self.engine is not None:
                await close_db(self.engine)
                self.engine = None
                self.store = None

            self.url_service = None
            self._initialized = False
            self.logger.info(f"{self.settings.APP_NAME} shut down")

    async def check_database(self) -> HealthStatus:
        try:
            async with asyncio.timeout(self.settings.STORE_TIMEOUT_SECONDS):
                if self.engine is not None:
                    async with self.engine.connect() as conn:
                        await conn.execute(text("SELECT 1"))
                else:
                    await self.store.exists(HEALTH_PROBE_ID)
        except Exception as e:
            self.logger.error(f"Database health check failed: {e!r}")
            return HealthStatus.UNHEALTHY
        return HealthStatus.HEALTHY

    async def check_cache(self) -> HealthStatus:
        try:
            async with asyncio.timeout(self.settings.CACHE_TIMEOUT_SECONDS):
                if self.redis is not None:
                    await self.redis.ping()
                else:
                    await self.cache.get(HEALTH_PROBE_ID)
        except Exception as e:
            self.logger.error(f"Cache health check failed: {e!r}")
            return HealthStatus.UNHEALTHY
        return HealthStatus.HEALTHY


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


class RequestLoggerAdapter(logging.LoggerAdapter):
    """Adds request fields to each record, keeping any per-call ``extra``."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


@dataclass
class RequestContext:
    """Per-request tracking data plus access to the shared manager.

    Attributes:
        service_manager: Manager owning the shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: str | None = None
    user_agent: str | None = None
    client_ip: str | None = None
    start_time: float = field(default_factory=time.time)

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        return RequestLoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager(request: Request) -> ServiceManager:
    manager: ServiceManager = request.app.state.service_manager
    await manager.initialize()
    return manager


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        service_manager=manager,
        request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
    )


def get_url_service(manager: ServiceManager = Depends(get_service_manager)) -> URLService:
    return manager.url_service


def require_api_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    manager: ServiceManager = Depends(get_service_manager),
) -> str:
    """Authenticate the caller; the accepted key is the caller's owner key."""
    if not x_api_key:
        raise UnauthorizedError("API key is required")

    presented = x_api_key.encode("utf-8")
    if not any(hmac.compare_digest(presented, key.encode("utf-8")) for key in manager.settings.API_KEYS):
        raise UnauthorizedError("Invalid API key")
    return x_api_key
