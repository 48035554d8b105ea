"""FastAPI application entry point for the shortlink redirect service.

Application Lifecycle Diagram
=============================
::
    ┌──────────────┐
    │  uvicorn     │
    │  startup     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ init_db()    │
    │ initialize() │  cache, stores, queue, resolver, worker
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ Serve HTTP   │  GET /{code}, GET /api/health, GET /metrics
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ cleanup()    │  drain clicks, flush refills, close cache + db
    └──────────────┘

How to Use
===========
**Run with uvicorn**::
    uvicorn shortlink.main:app --host 0.0.0.0 --port 8000

**Follow a short link**::
    curl -i -H "Host: s.example.com" http://localhost:8000/abc123

Key Behaviours
===============
- Shutdown waits for queued click events to be persisted or dropped.
- ShortlinkError subclasses are rendered as
  ``{"error": {"code", "message", "details"}}`` with their own status code.
- Prometheus metrics, including the click pipeline counters, are exposed at
  ``/metrics``.
"""

__all__ = ["app"]

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortlink.config import get_settings
from shortlink.database import init_db
from shortlink.dependencies import _service_manager
from shortlink.exceptions import ShortlinkError
from shortlink.routes import APP_VERSION, router

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()


app = FastAPI(
    title=settings.APP_NAME,
    version=APP_VERSION,
    description="Short link redirect service with asynchronous click tracking",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)


@app.exception_handler(ShortlinkError)
async def shortlink_exception_handler(request: Request, exc: ShortlinkError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_error_info()})


app.include_router(router)
