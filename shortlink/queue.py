"""Bounded click event queue between the redirect path and the worker pool.

Flow Diagram — try_send() / recv()
==================================
::
    redirect handlers (many)             worker drain loop (one)
    ┌─────────────┐                      ┌─────────────┐
    │ try_send()  │                      │   recv()    │
    └──────┬──────┘                      └──────┬──────┘
           ▼                                    ▼
    ┌─────────────┐   FULL/CLOSED        ┌─────────────┐  EMPTY+CLOSED
    │ put_nowait  │ ─────────────► drop  │ get_nowait  │ ─────────────► None
    └──────┬──────┘   (counted)          └──────┬──────┘
           ▼                                    ▼  EMPTY+OPEN
    ┌─────────────┐                      ┌─────────────┐
    │ wake reader │                      │ wait for    │
    └─────────────┘                      │ send/close  │
                                         └─────────────┘

Key Behaviours
===============
- Producers never wait: a full queue drops the event and bumps
  ``click_queue_dropped_total``.
- ``close()`` is the only termination signal for the consumer. Events already
  queued are still delivered before ``recv()`` returns None.
- Capacity is the pipeline's only backpressure knob and must be at least 100.
"""

import asyncio
import logging

from shortlink.metrics import QUEUE_DROPPED, MetricsSink
from shortlink.schemas import ClickEvent

__all__ = ["ClickQueue", "MIN_QUEUE_CAPACITY"]

logger = logging.getLogger(__name__)

MIN_QUEUE_CAPACITY = 100


class ClickQueue:
    """Multi-producer, single-consumer bounded FIFO of ClickEvents.

    Must be used from a single event loop.
    """

    def __init__(self, capacity: int, metrics: MetricsSink):
        if capacity < MIN_QUEUE_CAPACITY:
            raise ValueError(f"Click queue capacity must be at least {MIN_QUEUE_CAPACITY}, got {capacity}")
        self._queue: asyncio.Queue[ClickEvent] = asyncio.Queue(maxsize=capacity)
        self._metrics = metrics
        self._wakeup = asyncio.Event()
        self._closed = False
        self.capacity = capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    def try_send(self, event: ClickEvent) -> bool:
        if self._closed:
            logger.debug(f"Click queue closed, dropping event for {event.domain}:{event.code}")
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._metrics.increment(QUEUE_DROPPED)
            logger.debug(f"Click queue full, dropping event for {event.domain}:{event.code}")
            return False
        self._wakeup.set()
        return True

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._wakeup.set()
            logger.info(f"Click queue closed with {self.qsize()} pending events")

    async def recv(self) -> ClickEvent | None:
        """Next event, or None once the queue is closed and drained."""
        while True:
            if not self._queue.empty():
                return self._queue.get_nowait()
            if self._closed:
                return None
            self._wakeup.clear()
            await self._wakeup.wait()
