"""Tests for the click worker pool.

Retry tests inject a recording sleep, so backoff never waits on the wall clock.
"""

import asyncio

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from shortlink.enums import ClickState
from shortlink.exceptions import StorageError, TransientStorageError
from shortlink.metrics import (
    CLICK_DROPPED,
    CLICK_FAILED,
    CLICK_PROCESSED,
    CLICK_RECEIVED,
    CLICK_RETRIED,
    PrometheusMetrics,
)
from shortlink.queue import ClickQueue
from shortlink.schemas import ClickEvent
from shortlink.worker import ClickWorker
from tests.fakes import DOMAIN, FakeDomainRepository, FakeLinkRepository, FakeStatsRepository, RecordingSleep

# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def link_id(links: FakeLinkRepository) -> int:
    return links.add("abc123", 1, "https://example.com").id


@pytest.fixture
def worker_factory(
    click_queue: ClickQueue,
    domains: FakeDomainRepository,
    links: FakeLinkRepository,
    stats: FakeStatsRepository,
    metrics: PrometheusMetrics,
    recording_sleep: RecordingSleep,
):
    def factory(concurrency: int = 4, **kwargs) -> ClickWorker:
        return ClickWorker(
            click_queue, domains, links, stats, metrics, concurrency=concurrency, sleep=recording_sleep, **kwargs
        )

    return factory


def make_event(code: str = "abc123", **kwargs) -> ClickEvent:
    return ClickEvent(domain=DOMAIN, code=code, **kwargs)


# ============================================================================
# PROCESS(): PER-EVENT OUTCOMES
# ============================================================================


class TestProcess:
    @pytest.mark.asyncio
    async def test_persists_click(self, worker_factory, stats, metrics, link_id):
        """A resolvable event is stored with the request metadata."""
        worker = worker_factory()

        state = await worker.process(make_event(ip="10.0.0.1", user_agent="curl/8", referer="https://ref.example"))

        assert state is ClickState.PERSISTED
        assert len(stats.clicks) == 1
        click = stats.clicks[0]
        assert (click.link_id, click.ip, click.user_agent, click.referer) == (
            link_id,
            "10.0.0.1",
            "curl/8",
            "https://ref.example",
        )
        assert metrics.value(CLICK_PROCESSED) == 1
        assert metrics.value(CLICK_DROPPED) == 0

    @pytest.mark.asyncio
    async def test_unknown_domain_is_dropped_without_retry(self, worker_factory, stats, metrics, recording_sleep):
        worker = worker_factory()

        state = await worker.process(ClickEvent(domain="unknown.example.com", code="abc123"))

        assert state is ClickState.DROPPED
        assert stats.calls == 0
        assert recording_sleep.delays == []
        assert metrics.value(CLICK_DROPPED) == 1
        assert metrics.value(CLICK_FAILED) == 0
        assert metrics.value(CLICK_RETRIED) == 0

    @pytest.mark.asyncio
    async def test_unknown_code_is_dropped_without_retry(self, worker_factory, metrics, link_id):
        worker = worker_factory()

        state = await worker.process(make_event("missing"))

        assert state is ClickState.DROPPED
        assert metrics.value(CLICK_DROPPED) == 1
        assert metrics.value(CLICK_RETRIED) == 0

    @pytest.mark.asyncio
    async def test_transient_failures_then_success(self, worker_factory, stats, metrics, recording_sleep, link_id):
        """Five transient failures followed by success persist the click after five retries."""
        stats.failures = [TransientStorageError("connection reset") for _ in range(5)]
        worker = worker_factory()

        state = await worker.process(make_event())

        assert state is ClickState.PERSISTED
        assert stats.calls == 6
        assert len(stats.clicks) == 1
        assert metrics.value(CLICK_RETRIED) == 5
        assert metrics.value(CLICK_PROCESSED) == 1
        assert metrics.value(CLICK_FAILED) == 0
        assert recording_sleep.delays == pytest.approx([0.1, 0.2, 0.4, 0.8, 1.6])

    @pytest.mark.asyncio
    async def test_transient_domain_lookup_retries_whole_operation(
        self, worker_factory, domains, stats, metrics, recording_sleep, link_id
    ):
        """A domain store that drops the connection twice is retried, then the click is stored."""
        domains.failures = [TransientStorageError("connection reset") for _ in range(2)]
        worker = worker_factory()

        state = await worker.process(make_event())

        assert state is ClickState.PERSISTED
        assert domains.calls == 3
        assert len(stats.clicks) == 1
        assert metrics.value(CLICK_RETRIED) == 2
        assert metrics.value(CLICK_PROCESSED) == 1
        assert recording_sleep.delays == pytest.approx([0.1, 0.2])

    @pytest.mark.asyncio
    async def test_transient_link_lookup_restarts_from_domain(
        self, worker_factory, domains, links, stats, metrics, link_id
    ):
        """A retry after a failed link lookup resolves the domain again before persisting."""
        links.failures = [OperationalError("SELECT", {}, ConnectionError("server closed the connection"))]
        worker = worker_factory()

        state = await worker.process(make_event())

        assert state is ClickState.PERSISTED
        assert domains.calls == 2
        assert links.calls == 2
        assert stats.calls == 1
        assert metrics.value(CLICK_RETRIED) == 1

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, worker_factory, stats, metrics, link_id):
        """A store that always fails transiently is tried exactly six times."""
        stats.always_fail = OperationalError("INSERT", {}, ConnectionError("server closed the connection"))
        worker = worker_factory()

        state = await worker.process(make_event())

        assert state is ClickState.DROPPED
        assert stats.calls == 6
        assert metrics.value(CLICK_RETRIED) == 5
        assert metrics.value(CLICK_FAILED) == 1
        assert metrics.value(CLICK_DROPPED) == 1
        assert metrics.value(CLICK_PROCESSED) == 0

    @pytest.mark.asyncio
    async def test_non_transient_storage_error_is_not_retried(self, worker_factory, stats, metrics, link_id):
        stats.failures = [StorageError("constraint violated")]
        worker = worker_factory()

        state = await worker.process(make_event())

        assert state is ClickState.DROPPED
        assert stats.calls == 1
        assert metrics.value(CLICK_DROPPED) == 1
        assert metrics.value(CLICK_FAILED) == 0

    @pytest.mark.asyncio
    async def test_integrity_error_is_permanent(self, worker_factory, stats, metrics, link_id):
        stats.failures = [IntegrityError("INSERT", {}, Exception("fk violation"))]
        worker = worker_factory()

        assert await worker.process(make_event()) is ClickState.DROPPED
        assert stats.calls == 1

    @pytest.mark.asyncio
    async def test_custom_retry_attempts(self, worker_factory, stats, metrics, link_id):
        stats.always_fail = TransientStorageError("down")
        worker = worker_factory(retry_attempts=2)

        await worker.process(make_event())

        assert stats.calls == 2
        assert metrics.value(CLICK_RETRIED) == 1


# ============================================================================
# RUN(): DRAIN LOOP, CONCURRENCY, SHUTDOWN
# ============================================================================


class TestRun:
    def test_concurrency_must_be_positive(self, worker_factory):
        with pytest.raises(ValueError):
            worker_factory(concurrency=0)

    @pytest.mark.asyncio
    async def test_drains_queue_then_stops(self, worker_factory, click_queue, stats, metrics, link_id):
        for _ in range(10):
            click_queue.try_send(make_event())
        worker = worker_factory()

        worker.start()
        await asyncio.wait_for(worker.shutdown(), timeout=5)

        assert len(stats.clicks) == 10
        assert metrics.value(CLICK_RECEIVED) == 10
        assert metrics.value(CLICK_PROCESSED) == 10
        assert worker.in_flight == 0

    @pytest.mark.asyncio
    async def test_in_flight_never_exceeds_concurrency(self, worker_factory, click_queue, stats, link_id):
        """With 20 queued events and 3 permits, at most 3 stores overlap."""
        stats.gate = asyncio.Event()
        for _ in range(20):
            click_queue.try_send(make_event())
        worker = worker_factory(concurrency=3)

        worker.start()
        for _ in range(10):
            await asyncio.sleep(0)

        assert stats.active == 3
        assert worker.in_flight == 3
        assert click_queue.qsize() == 16

        stats.gate.set()
        await asyncio.wait_for(worker.shutdown(), timeout=5)

        assert stats.max_active == 3
        assert len(stats.clicks) == 20

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_events_in_backoff(
        self, click_queue, domains, links, stats, metrics, link_id
    ):
        """Closing the queue mid-backoff still lets the retry finish."""
        backoff_started = asyncio.Event()
        release_backoff = asyncio.Event()

        async def slow_sleep(delay: float) -> None:
            backoff_started.set()
            await release_backoff.wait()

        stats.failures = [TransientStorageError("connection reset")]
        worker = ClickWorker(click_queue, domains, links, stats, metrics, concurrency=2, sleep=slow_sleep)
        click_queue.try_send(make_event())
        worker.start()
        await asyncio.wait_for(backoff_started.wait(), timeout=5)

        shutdown = asyncio.create_task(worker.shutdown())
        await asyncio.sleep(0)
        assert not shutdown.done()

        release_backoff.set()
        await asyncio.wait_for(shutdown, timeout=5)

        assert len(stats.clicks) == 1
        assert metrics.value(CLICK_RETRIED) == 1
        assert metrics.value(CLICK_PROCESSED) == 1

    @pytest.mark.asyncio
    async def test_shutdown_during_third_attempt_backoff_persists_after_recovery(
        self, click_queue, domains, links, stats, metrics, link_id
    ):
        """Shutdown while attempt 3 of 6 is backing off waits for storage to recover."""
        third_backoff = asyncio.Event()
        release_backoff = asyncio.Event()
        delays: list[float] = []

        async def blocking_sleep(delay: float) -> None:
            delays.append(delay)
            if len(delays) == 3:
                third_backoff.set()
                await release_backoff.wait()

        stats.always_fail = TransientStorageError("database unavailable")
        worker = ClickWorker(click_queue, domains, links, stats, metrics, concurrency=2, sleep=blocking_sleep)
        click_queue.try_send(make_event())
        worker.start()
        await asyncio.wait_for(third_backoff.wait(), timeout=5)

        shutdown = asyncio.create_task(worker.shutdown())
        await asyncio.sleep(0)
        assert not shutdown.done()
        assert stats.calls == 3

        stats.always_fail = None
        release_backoff.set()
        await asyncio.wait_for(shutdown, timeout=5)

        assert stats.calls == 4
        assert len(stats.clicks) == 1
        assert delays == pytest.approx([0.1, 0.2, 0.4])
        assert metrics.value(CLICK_RETRIED) == 3
        assert metrics.value(CLICK_PROCESSED) == 1
        assert metrics.value(CLICK_FAILED) == 0
        assert worker.in_flight == 0

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_the_loop(self, worker_factory, click_queue, stats, metrics, link_id):
        stats.failures = [StorageError("bad row")]
        click_queue.try_send(make_event("missing"))
        click_queue.try_send(make_event())
        click_queue.try_send(make_event())
        worker = worker_factory()

        worker.start()
        await asyncio.wait_for(worker.shutdown(), timeout=5)

        assert metrics.value(CLICK_RECEIVED) == 3
        assert metrics.value(CLICK_DROPPED) == 2
        assert metrics.value(CLICK_PROCESSED) == 1
