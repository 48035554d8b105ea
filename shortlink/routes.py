"""FastAPI routes: the redirect endpoint and the health check.

API Endpoint Overview
=====================
::
    GET  /api/health
        └─ HealthResponse (200 healthy / 503 degraded)
    GET  /{code}
        └─ 301 / 307 Redirect, 404 unknown, 410 deleted or expired

Request Flow — GET /{code}
==========================
::
    ┌─────────────┐
    │ Host header │──► missing → 400
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ resolver.   │──► NotFoundError → 404
    │ resolve()   │──► GoneError     → 410
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ 301 if      │
    │ permanent,  │
    │ else 307    │
    └─────────────┘

Key Behaviours
===============
- The click event is queued by the resolver; the response never waits for it.
- Errors are rendered by the ShortlinkError handler in ``shortlink.main`` as
  ``{"error": {"code", "message", "details"}}``.
- The health check is registered before ``/{code}`` so it is never treated as
  a short code.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from shortlink.cache import CacheService
from shortlink.database import get_db
from shortlink.dependencies import get_cache, get_click_queue, get_request_domain, get_resolver
from shortlink.enums import CheckStatus, HealthStatus
from shortlink.queue import ClickQueue
from shortlink.resolver import RedirectResolver
from shortlink.schemas import ComponentCheck, HealthChecks, HealthResponse

__all__ = ["router"]

logger = logging.getLogger(__name__)

router = APIRouter()

APP_VERSION = "1.0.0"


@router.get("/api/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    db: AsyncSession = Depends(get_db),
    click_queue: ClickQueue = Depends(get_click_queue),
    cache: CacheService = Depends(get_cache),
) -> JSONResponse:
    logger.debug("Health check requested")

    try:
        await db.execute(text("SELECT 1"))
        database = ComponentCheck(status=CheckStatus.OK)
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        database = ComponentCheck(status=CheckStatus.ERROR, message="Database connection failed")

    if click_queue.closed:
        queue_check = ComponentCheck(status=CheckStatus.ERROR, message="Click queue is closed")
    else:
        queue_check = ComponentCheck(
            status=CheckStatus.OK, message=f"{click_queue.qsize()}/{click_queue.capacity} events queued"
        )

    if await cache.health_check():
        cache_check = ComponentCheck(status=CheckStatus.OK)
    else:
        cache_check = ComponentCheck(status=CheckStatus.ERROR, message="Cache unreachable")

    status = HealthStatus.from_checks(database.status, queue_check.status, cache_check.status)
    if status is not HealthStatus.HEALTHY:
        logger.warning(f"Health check completed: {status.value}")

    body = HealthResponse(
        status=status,
        version=APP_VERSION,
        checks=HealthChecks(database=database, click_queue=queue_check, cache=cache_check),
    )
    return JSONResponse(
        status_code=200 if status is HealthStatus.HEALTHY else 503,
        content=body.model_dump(mode="json"),
    )


@router.get("/{code}", tags=["redirect"])
async def redirect_to_url(
    code: str,
    request: Request,
    domain: str = Depends(get_request_domain),
    resolver: RedirectResolver = Depends(get_resolver),
) -> RedirectResponse:
    redirect = await resolver.resolve(
        domain,
        code,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
    )
    logger.debug(f"Redirect {domain}/{code} -> {redirect.url} (permanent={redirect.permanent})")
    return RedirectResponse(url=redirect.url, status_code=301 if redirect.permanent else 307)
