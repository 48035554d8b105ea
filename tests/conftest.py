"""Shared pytest fixtures: in-memory stores, metrics, queue and API client."""

from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from prometheus_client import CollectorRegistry

from shortlink.database import get_db
from shortlink.dependencies import get_cache, get_click_queue, get_resolver
from shortlink.main import app
from shortlink.metrics import PrometheusMetrics
from shortlink.queue import ClickQueue
from shortlink.resolver import RedirectResolver
from tests.fakes import (
    DOMAIN,
    FakeCache,
    FakeDomainRepository,
    FakeLinkRepository,
    FakeStatsRepository,
    RecordingSleep,
)


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def metrics() -> PrometheusMetrics:
    return PrometheusMetrics(CollectorRegistry())


@pytest.fixture
def domains() -> FakeDomainRepository:
    repo = FakeDomainRepository()
    repo.add(DOMAIN, 1)
    return repo


@pytest.fixture
def links() -> FakeLinkRepository:
    return FakeLinkRepository()


@pytest.fixture
def stats() -> FakeStatsRepository:
    return FakeStatsRepository()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest_asyncio.fixture
async def click_queue(metrics: PrometheusMetrics) -> ClickQueue:
    return ClickQueue(100, metrics)


@pytest.fixture
def cache() -> FakeCache:
    return FakeCache()


@pytest_asyncio.fixture
async def resolver(
    cache: FakeCache,
    domains: FakeDomainRepository,
    links: FakeLinkRepository,
    click_queue: ClickQueue,
    metrics: PrometheusMetrics,
) -> AsyncGenerator[RedirectResolver, None]:
    resolver = RedirectResolver(cache, domains, links, click_queue, metrics)
    yield resolver
    await resolver.aclose()


@pytest.fixture
def db_session() -> AsyncMock:
    session = AsyncMock()
    session.execute.return_value = None
    return session


@pytest_asyncio.fixture
async def client(
    resolver: RedirectResolver,
    click_queue: ClickQueue,
    cache: FakeCache,
    db_session: AsyncMock,
) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[Any, None]:
        yield db_session

    async def override_get_resolver() -> RedirectResolver:
        return resolver

    async def override_get_click_queue() -> ClickQueue:
        return click_queue

    async def override_get_cache() -> FakeCache:
        return cache

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_resolver] = override_get_resolver
    app.dependency_overrides[get_click_queue] = override_get_click_queue
    app.dependency_overrides[get_cache] = override_get_cache

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=f"http://{DOMAIN}") as ac:
        yield ac

    app.dependency_overrides.clear()
