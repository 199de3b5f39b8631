"""FastAPI route definitions for the URL shortener REST API.

This module provides all HTTP endpoints with dependency injection and response
serialization. Errors are raised as ``ServiceError`` subclasses and rendered by
the exception handlers registered in ``shortener.main``.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   {API_PREFIX}/urls                 (X-API-Key)
        ├─ CreateURLRequest (request body)
        └─ URLResponse (201) or 400/401/409

    GET    {API_PREFIX}/urls                 (X-API-Key)
        └─ URLListResponse (200) or 400/401

    GET    {API_PREFIX}/urls/:id             (X-API-Key, owner)
        └─ URLResponse (200) or 401/404/410

    PUT    {API_PREFIX}/urls/:id             (X-API-Key, owner)
        ├─ UpdateURLRequest (request body)
        └─ URLResponse (200) or 400/401/404

    DELETE {API_PREFIX}/urls/:id             (X-API-Key, owner)
        └─ 204 or 401/404

    GET    {API_PREFIX}/urls/:id/qr?size=N
        └─ 301 Redirect to QR image or 404/410

    GET    /:id
        └─ 301 Redirect or 404/410

How to Use
===========
**Step 1 — Include the routers (order matters)**::
    app.include_router(health_router)
    app.include_router(api_router, prefix=settings.API_PREFIX)
    app.include_router(redirect_router)   # catch-all, must come last

**Step 2 — Access endpoints**::
    POST http://localhost:8080/api/v1/urls
    X-API-Key: sk_dev_key
    {"original_url": "https://example.com", "custom_id": "my-link"}

    GET http://localhost:8080/my-link

Key Behaviours
===============
- All endpoints use async/await for non-blocking I/O.
- The API key that created a URL is the only key allowed to view stats,
  edit or delete it.
- Redirects are 301 with a public Cache-Control header; click accounting
  happens in the background.
"""

from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import RedirectResponse

from shortener.config import Settings
from shortener.dependencies import (
    RequestContext,
    ServiceManager,
    get_request_context,
    get_service_manager,
    get_url_service,
    require_api_key,
)
from shortener.enums import HealthStatus, SortField, SortOrder
from shortener.schemas import (
    CreateURLRequest,
    HealthResponse,
    UpdateURLRequest,
    URLListOptions,
    URLListResponse,
    URLResponse,
)
from shortener.url_service import URLService

__all__ = ["health_router", "api_router", "redirect_router", "qr_image_url"]

health_router = APIRouter()
api_router = APIRouter()
redirect_router = APIRouter()


def qr_image_url(settings: Settings, short_url: str, size: str | None) -> str:
    """Build the external QR-image URL; size is clamped, non-numeric sizes use the default."""
    try:
        pixels = int(size) if size is not None else settings.QR_DEFAULT_SIZE
    except ValueError:
        pixels = settings.QR_DEFAULT_SIZE
    pixels = max(settings.QR_MIN_SIZE, min(settings.QR_MAX_SIZE, pixels))

    query = urlencode({"size": f"{pixels}x{pixels}", "data": short_url})
    return f"{settings.QR_SERVICE_URL}?{query}"


@health_router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    ctx: RequestContext = Depends(get_request_context),
    manager: ServiceManager = Depends(get_service_manager),
) -> HealthResponse:
    db_status = await manager.check_database()
    cache_status = await manager.check_cache()

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    ctx.logger.info(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@api_router.post("/urls", response_model=URLResponse, status_code=201, tags=["urls"])
async def create_url(
    payload: CreateURLRequest,
    owner_key: str = Depends(require_api_key),
    ctx: RequestContext = Depends(get_request_context),
    service: URLService = Depends(get_url_service),
) -> URLResponse:
    ctx.logger.info(
        f"URL shortening requested: {payload.original_url}",
        extra={"operation": "create_short_url", "target_url": payload.original_url, "custom_id": payload.custom_id},
    )
    record = await service.create_short_url(payload, owner_key)
    ctx.logger.info(
        f"URL shortened successfully: {record.id}",
        extra={"operation": "create_short_url", "short_id": record.id, "duration_ms": ctx.get_duration()},
    )
    return URLResponse.from_record(record)


@api_router.get("/urls", response_model=URLListResponse, tags=["urls"])
async def list_urls(
    page: int = Query(1),
    limit: int = Query(20),
    sort: SortField = Query(SortField.CREATED_AT),
    order: SortOrder = Query(SortOrder.DESC),
    is_active: bool | None = Query(None),
    owner_key: str = Depends(require_api_key),
    service: URLService = Depends(get_url_service),
) -> URLListResponse:
    options = URLListOptions(page=page, limit=limit, sort=sort, order=order, is_active=is_active)
    records, pagination = await service.list_urls(owner_key, options)
    return URLListResponse(urls=[URLResponse.from_record(r) for r in records], pagination=pagination)


@api_router.get("/urls/{short_id}", response_model=URLResponse, tags=["urls"])
async def get_url_stats(
    short_id: str,
    owner_key: str = Depends(require_api_key),
    ctx: RequestContext = Depends(get_request_context),
    service: URLService = Depends(get_url_service),
) -> URLResponse:
    ctx.logger.info(
        f"Stats requested for short ID: {short_id}",
        extra={"operation": "get_url_stats", "short_id": short_id},
    )
    record = await service.get_url_stats(short_id, owner_key)
    return URLResponse.from_record(record)


@api_router.put("/urls/{short_id}", response_model=URLResponse, tags=["urls"])
async def update_url(
    short_id: str,
    payload: UpdateURLRequest,
    owner_key: str = Depends(require_api_key),
    ctx: RequestContext = Depends(get_request_context),
    service: URLService = Depends(get_url_service),
) -> URLResponse:
    record = await service.update_url(short_id, payload, owner_key)
    ctx.logger.info(
        f"URL updated: {short_id}",
        extra={
            "operation": "update_url",
            "short_id": short_id,
            "fields": sorted(payload.model_dump(exclude_unset=True)),
            "duration_ms": ctx.get_duration(),
        },
    )
    return URLResponse.from_record(record)


@api_router.delete("/urls/{short_id}", status_code=204, tags=["urls"])
async def delete_url(
    short_id: str,
    owner_key: str = Depends(require_api_key),
    ctx: RequestContext = Depends(get_request_context),
    service: URLService = Depends(get_url_service),
) -> Response:
    await service.delete_url(short_id, owner_key)
    ctx.logger.info(
        f"URL deleted: {short_id}",
        extra={"operation": "delete_url", "short_id": short_id, "duration_ms": ctx.get_duration()},
    )
    return Response(status_code=204)


@api_router.get("/urls/{short_id}/qr", tags=["qr"])
async def get_qr_code(
    short_id: str,
    size: str | None = Query(None),
    service: URLService = Depends(get_url_service),
) -> RedirectResponse:
    record = await service.resolve(short_id)
    return RedirectResponse(qr_image_url(service.settings, record.short_url, size), status_code=301)


@redirect_router.get("/{short_id}", tags=["redirect"])
async def redirect_to_url(
    short_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: URLService = Depends(get_url_service),
) -> RedirectResponse:
    record = await service.resolve_for_redirect(short_id)
    ctx.logger.info(
        f"Redirect successful: {short_id} -> {record.original_url}",
        extra={"operation": "redirect", "short_id": short_id, "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(
        record.original_url,
        status_code=301,
        headers={"Cache-Control": f"public, max-age={ctx.settings.REDIRECT_CACHE_MAX_AGE_SECONDS}"},
    )
