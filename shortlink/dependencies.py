"""Dependency injection with a singleton service manager.

Everything the redirect path and the click pipeline share (cache, stores,
queue, resolver, worker) is built once at startup by ``ServiceManager`` and
handed to the routes through small dependency functions.

Startup / Shutdown Order
========================
::
    initialize()                         cleanup()
    ├─ settings + logging                ├─ close click queue
    ├─ cache (Redis or NullCache)        ├─ await worker drain
    ├─ stores (shared session factory)   ├─ await pending cache refills
    ├─ click queue                       ├─ close cache
    ├─ resolver                          └─ dispose engine
    └─ worker task started
"""

import asyncio
from typing import Optional

from fastapi import Depends, Request

from shortlink.cache import CacheService, build_cache
from shortlink.config import Settings, get_settings
from shortlink.database import async_session, close_db
from shortlink.exceptions import BadRequestError
from shortlink.logging_config import configure_logging
from shortlink.metrics import PrometheusMetrics
from shortlink.queue import ClickQueue
from shortlink.repositories import SqlDomainRepository, SqlLinkRepository, SqlStatsRepository
from shortlink.resolver import RedirectResolver
from shortlink.worker import ClickWorker

__all__ = [
    "ServiceManager",
    "extract_domain",
    "get_cache",
    "get_click_queue",
    "get_request_domain",
    "get_resolver",
    "get_service_manager",
]


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton owner of the shared resources.

    Prometheus counters live on the process-wide registry, so they are created
    once and survive ``cleanup()``; everything else is rebuilt by
    ``initialize()``.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False
    _metrics: PrometheusMetrics | None = None

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        """Build shared resources once and start the click worker."""
        if self._initialized:
            return

        self.settings: Settings = get_settings()
        self.logger = configure_logging(self.settings.LOG_LEVEL, self.settings.LOG_FORMAT)
        self.logger.info(f"Configuration loaded: {self.settings.summary()}")

        self.metrics = self._setup_metrics()
        self.cache: CacheService = await build_cache(self.settings)

        self.domains = SqlDomainRepository(async_session)
        self.links = SqlLinkRepository(async_session)
        self.stats = SqlStatsRepository(async_session)

        self.click_queue = ClickQueue(self.settings.CLICK_QUEUE_CAPACITY, self.metrics)
        self.resolver = RedirectResolver(self.cache, self.domains, self.links, self.click_queue, self.metrics)
        self.worker = ClickWorker(
            self.click_queue,
            self.domains,
            self.links,
            self.stats,
            self.metrics,
            concurrency=self.settings.CLICK_WORKER_CONCURRENCY,
            retry_attempts=self.settings.CLICK_RETRY_ATTEMPTS,
            retry_base_delay=self.settings.retry_base_delay_seconds,
        )
        self.worker_task: asyncio.Task = self.worker.start()

        self._initialized = True
        self.logger.info("Service manager initialized")

    def _setup_metrics(self) -> PrometheusMetrics:
        if ServiceManager._metrics is None:
            ServiceManager._metrics = PrometheusMetrics()
        return ServiceManager._metrics

    async def cleanup(self) -> None:
        """Drain the click pipeline, then release cache and database handles."""
        if not self._initialized:
            return

        self.logger.info(f"Shutting down, {self.click_queue.qsize()} click events pending")
        await self.worker.shutdown()
        await self.resolver.aclose()
        await self.cache.close()
        await close_db()
        self._initialized = False
        self.logger.info("Service manager stopped")


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# HOST HEADER
# ============================================================================


def extract_domain(host: str | None) -> str:
    """Domain name from a Host header value, without the port.

    Bracketed IPv6 literals keep their brackets: ``[::1]:8080`` -> ``[::1]``.

    Raises:
        BadRequestError: If the header is missing or empty.
    """
    if not host:
        raise BadRequestError("Missing Host header")

    if host.startswith("["):
        end = host.find("]")
        return host[: end + 1] if end != -1 else host
    return host.split(":", 1)[0]


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_resolver(manager: ServiceManager = Depends(get_service_manager)) -> RedirectResolver:
    return manager.resolver


async def get_click_queue(manager: ServiceManager = Depends(get_service_manager)) -> ClickQueue:
    return manager.click_queue


async def get_cache(manager: ServiceManager = Depends(get_service_manager)) -> CacheService:
    return manager.cache


def get_request_domain(request: Request) -> str:
    return extract_domain(request.headers.get("host"))
