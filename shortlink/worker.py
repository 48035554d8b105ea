"""Click worker pool - drains the click queue into the stats store.

Flow Diagram — run()
====================
::
    ┌──────────────┐
    │ queue.recv() │◄──────────────────────────┐
    └──────┬───────┘                           │
   None?   │                                   │
    ┌──────┴──────┐                            │
    │ YES          │ NO                        │
    ▼              ▼                           │
┌──────────┐  ┌──────────────┐  ┌───────────┐  │
│ await    │  │ received += 1│─►│ acquire   │──┤ spawn process(event)
│ in-flight│  └──────────────┘  │ 1 of N    │  │ (permit released when
│ tasks    │                    │ permits   │  │  the task finishes)
└────┬─────┘                    └───────────┘  │
     ▼
   return

Per-event States — process()
============================
::
    RECEIVED ─► RESOLVING ─► PERSISTING ─► PERSISTED
                   │              │
                   └──────┬───────┘
                          ▼
                       DROPPED   (permanent error, or retries exhausted)

Key Behaviours
===============
- At most ``concurrency`` events are processed at once; the drain loop stops
  reading while every permit is taken, so the queue absorbs bursts.
- Transient storage errors retry the whole resolve-then-persist operation
  with exponential backoff (100 ms base, doubling, 6 attempts in total).
- Permanent errors (unknown domain or code, non-transient storage errors) are
  dropped without retrying.
- ``process`` never raises; the outcome is visible only in logs and counters.
- Shutdown drains: closing the queue lets ``run`` finish every queued and
  in-flight event, including those sleeping between retries.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from shortlink.enums import ClickState
from shortlink.exceptions import NotFoundError, is_transient_error
from shortlink.metrics import (
    CLICK_DROPPED,
    CLICK_FAILED,
    CLICK_PROCESSED,
    CLICK_RECEIVED,
    CLICK_RETRIED,
    MetricsSink,
)
from shortlink.queue import ClickQueue
from shortlink.repositories import DomainRepository, LinkRepository, StatsRepository
from shortlink.retry import retry_if
from shortlink.schemas import ClickEvent, NewClick

__all__ = ["ClickWorker"]

logger = logging.getLogger(__name__)


class ClickWorker:
    """Bounded-concurrency consumer of a ClickQueue.

    Args:
        queue: Source of click events; closing it is the shutdown signal.
        domains / links / stats: Stores used to resolve and persist clicks.
        metrics: Sink for the ``click_worker_*`` counters.
        concurrency: Maximum number of events processed at the same time.
        retry_attempts: Total attempts per event, including the first.
        retry_base_delay: Backoff after the first failure, in seconds.
        sleep: Awaitable sleep used between retries.
    """

    def __init__(
        self,
        queue: ClickQueue,
        domains: DomainRepository,
        links: LinkRepository,
        stats: StatsRepository,
        metrics: MetricsSink,
        concurrency: int = 4,
        retry_attempts: int = 6,
        retry_base_delay: float = 0.1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if concurrency < 1:
            raise ValueError(f"Click worker concurrency must be at least 1, got {concurrency}")
        if retry_attempts < 1:
            raise ValueError(f"Click worker retry attempts must be at least 1, got {retry_attempts}")
        self._queue = queue
        self._domains = domains
        self._links = links
        self._stats = stats
        self._metrics = metrics
        self._retry_attempts = retry_attempts
        self._retry_base_delay = retry_base_delay
        self._sleep = sleep
        self._permits = asyncio.Semaphore(concurrency)
        self._in_flight: set[asyncio.Task] = set()
        self._runner: asyncio.Task | None = None
        self.concurrency = concurrency

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def start(self) -> asyncio.Task:
        """Run the drain loop in a background task and return that task."""
        if self._runner is None:
            self._runner = asyncio.create_task(self.run(), name="click-worker")
        return self._runner

    async def shutdown(self) -> None:
        """Close the queue and wait until every pending event has been handled."""
        self._queue.close()
        if self._runner is not None:
            await self._runner

    async def run(self) -> None:
        logger.info(f"Click worker started (concurrency={self.concurrency})")

        while True:
            event = await self._queue.recv()
            if event is None:
                break
            self._metrics.increment(CLICK_RECEIVED)
            await self._permits.acquire()
            task = asyncio.create_task(self._process_with_permit(event))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

        if self._in_flight:
            logger.info(f"Click worker draining {len(self._in_flight)} in-flight events")
            await asyncio.gather(*self._in_flight, return_exceptions=True)

        logger.info("Click worker stopped")

    async def _process_with_permit(self, event: ClickEvent) -> None:
        try:
            await self.process(event)
        finally:
            self._permits.release()

    # ========================================================================
    # PER-EVENT PROCESSING
    # ========================================================================

    async def process(self, event: ClickEvent) -> ClickState:
        """Persist one click, retrying transient failures. Returns the final state."""
        logger.debug(f"Click {event.domain}:{event.code} {ClickState.RECEIVED}")

        def on_retry(attempt: int, exc: BaseException) -> None:
            self._metrics.increment(CLICK_RETRIED)
            logger.warning(
                f"Transient error recording click for {event.domain}:{event.code} "
                f"(attempt {attempt}/{self._retry_attempts}), retrying: {exc}"
            )

        try:
            await retry_if(
                lambda: self._record(event),
                is_retryable=is_transient_error,
                attempts=self._retry_attempts,
                base_delay=self._retry_base_delay,
                on_retry=on_retry,
                sleep=self._sleep,
            )
        except Exception as exc:
            self._metrics.increment(CLICK_DROPPED)
            if is_transient_error(exc):
                self._metrics.increment(CLICK_FAILED)
                logger.error(
                    f"Failed to record click for {event.domain}:{event.code} "
                    f"after {self._retry_attempts} attempts: {exc}"
                )
            else:
                logger.warning(f"Dropping click for {event.domain}:{event.code}: {exc}")
            logger.debug(f"Click {event.domain}:{event.code} {ClickState.DROPPED}")
            return ClickState.DROPPED

        self._metrics.increment(CLICK_PROCESSED)
        logger.debug(f"Click {event.domain}:{event.code} {ClickState.PERSISTED}")
        return ClickState.PERSISTED

    async def _record(self, event: ClickEvent) -> None:
        logger.debug(f"Click {event.domain}:{event.code} {ClickState.RESOLVING}")
        domain = await self._domains.find_by_name(event.domain)
        if domain is None:
            raise NotFoundError(f"Domain not found: {event.domain}", {"domain": event.domain})

        link = await self._links.find_by_code(event.code, domain.id)
        if link is None:
            raise NotFoundError(
                f"Link not found: {event.code}", {"code": event.code, "domain_id": domain.id}
            )

        logger.debug(f"Click {event.domain}:{event.code} {ClickState.PERSISTING}")
        await self._stats.record_click(NewClick.from_event(event, link.id))
