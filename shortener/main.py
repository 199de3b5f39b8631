"""FastAPI application entry point for the URL shortener service.

This module builds the FastAPI application with middleware, error handlers,
lifecycle management and route registration.

Application Lifecycle Diagram
===========================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ create_app() │
    │ + manager    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ CORS + rate │
    │ limit       │
    │ middleware  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Include     │
    │ routes      │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ startup:    │
    │ initialize()│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ shutdown:   │
    │ cleanup()   │
    └─────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortener.main:app --host 0.0.0.0 --port 8080

**Step 2 — Make API calls**::
    curl http://localhost:8080/health

    curl -X POST http://localhost:8080/api/v1/urls \
         -H "Content-Type: application/json" \
         -H "X-API-Key: sk_dev_key" \
         -d '{"original_url": "https://example.com"}'

**Step 3 — Build an isolated app (tests)**::
    manager = ServiceManager(settings, store=fake_store, cache=fake_cache)
    app = create_app(settings, manager)

Key Behaviours
===============
- Every error body has the shape {"error", "message", "details"}.
- Request validation failures are reported as 400 validation_failed.
- /health and /metrics are exempt from rate limiting.
- Shutdown drains pending click accounting before closing connections.
"""

__all__ = ["app", "create_app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortener.config import Settings, get_settings
from shortener.dependencies import ServiceManager
from shortener.enums import ErrorCode
from shortener.errors import RateLimitExceededError, ServiceError
from shortener.rate_limit import client_identity
from shortener.routes import api_router, health_router, redirect_router
from shortener.schemas import ErrorResponse

RATE_LIMIT_EXEMPT_PATHS = frozenset({"/health", "/metrics"})


def error_response(error: ServiceError) -> JSONResponse:
    body = ErrorResponse(error=error.code, message=error.message, details=error.details or None)
    return JSONResponse(status_code=error.status_code, content=body.model_dump(mode="json"))


def _register_exception_handlers(app: FastAPI, manager: ServiceManager) -> None:
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        if exc.status_code >= 500:
            manager.logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")),
                "message": err.get("msg", "Invalid value"),
            }
            for err in exc.errors()
        ]
        body = ErrorResponse(error=ErrorCode.VALIDATION, message="Invalid request", details={"errors": errors})
        return JSONResponse(status_code=400, content=body.model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        manager.logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc!r}")
        body = ErrorResponse(error=ErrorCode.INTERNAL, message="Internal server error")
        return JSONResponse(status_code=500, content=body.model_dump(mode="json"))


def create_app(settings: Settings | None = None, manager: ServiceManager | None = None) -> FastAPI:
    if settings is None:
        settings = manager.settings if manager is not None else get_settings()
    if manager is None:
        manager = ServiceManager(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        await manager.initialize()
        yield
        # Shutdown
        await manager.cleanup()

    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="URL shortener with owner-managed links and cached redirects",
        lifespan=lifespan,
    )
    app.state.service_manager = manager

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if request.url.path in RATE_LIMIT_EXEMPT_PATHS:
            return await call_next(request)

        limiter = manager.rate_limiter
        if not limiter.allow(client_identity(request)):
            return error_response(RateLimitExceededError(limiter.limit, limiter.window_seconds))
        return await call_next(request)

    # Added last so CORS headers also reach rate-limited responses.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(app, manager)

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_respect_env_var=False,
    ).instrument(app).expose(app)

    app.include_router(health_router)
    app.include_router(api_router, prefix=settings.API_PREFIX)
    # Catch-all /{short_id}; registered last so it never shadows other routes.
    app.include_router(redirect_router)
    return app


app = create_app()
