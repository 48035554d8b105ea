"""Redirect resolver - cache-first lookup that feeds the click pipeline.

Flow Diagram — resolve()
========================
::
    ┌─────────────────┐
    │ resolve(domain, │
    │ code, ...)      │
    └────────┬────────┘
             ▼
    ┌─────────────────┐
    │ cache.get       │
    │ "domain:code"   │
    └────────┬────────┘
      HIT?   │
    ┌────────┴────────┐
    │ YES             │ NO (miss or cache error)
    ▼                 ▼
┌──────────┐   ┌──────────────┐
│ decode   │   │ find domain  │──► NotFoundError
│ "1:"/"0:"│   │ find link    │──► NotFoundError
└────┬─────┘   │ deleted?     │──► GoneError(deleted)
     │         │ expired?     │──► GoneError(expired)
     │         └──────┬───────┘
     │                ▼
     │         ┌──────────────┐
     │         │ spawn refill │  (fire-and-forget cache.set)
     │         └──────┬───────┘
     └───────┬────────┘
             ▼
    ┌─────────────────┐
    │ queue.try_send  │  (full → dropped, never waits)
    │ (ClickEvent)    │
    └────────┬────────┘
             ▼
    ResolvedRedirect(url, permanent)

Cache Value Encoding
====================
::
    "1:https://example.com"   → permanent (301)
    "0:https://example.com"   → temporary (307)
    "https://example.com"     → legacy entry, temporary (307)

Key Behaviours
===============
- A cache hit never touches the stores.
- Deleted is reported before expired when both apply.
- Cached entries for links with an expiry live at most until that expiry
  (minimum 1 second).
- Only successful resolutions produce a click event.
- The refill task owns copies of its key, value and TTL, so the request that
  spawned it may finish first; ``aclose()`` waits for outstanding refills.
"""

import asyncio
import datetime
import logging
from typing import NamedTuple

from shortlink.cache import CacheService
from shortlink.enums import GoneReason
from shortlink.exceptions import GoneError, NotFoundError
from shortlink.metrics import CACHE_HITS, CACHE_MISSES, MetricsSink
from shortlink.models import Link, utcnow
from shortlink.queue import ClickQueue
from shortlink.repositories import DomainRepository, LinkRepository
from shortlink.schemas import ClickEvent

__all__ = [
    "PERMANENT_PREFIX",
    "RedirectResolver",
    "ResolvedRedirect",
    "TEMPORARY_PREFIX",
    "cache_key",
    "encode_cached_value",
    "parse_cached_value",
]

logger = logging.getLogger(__name__)

PERMANENT_PREFIX = "1:"
TEMPORARY_PREFIX = "0:"


class ResolvedRedirect(NamedTuple):
    url: str
    permanent: bool


def cache_key(domain: str, code: str) -> str:
    return f"{domain}:{code}"


def encode_cached_value(url: str, permanent: bool) -> str:
    return f"{PERMANENT_PREFIX if permanent else TEMPORARY_PREFIX}{url}"


def parse_cached_value(value: str) -> ResolvedRedirect:
    if value.startswith(PERMANENT_PREFIX):
        return ResolvedRedirect(value[len(PERMANENT_PREFIX) :], True)
    if value.startswith(TEMPORARY_PREFIX):
        return ResolvedRedirect(value[len(TEMPORARY_PREFIX) :], False)
    return ResolvedRedirect(value, False)


def _ttl_until(expires_at: datetime.datetime | None, now: datetime.datetime | None = None) -> int | None:
    """Seconds until expiry, floored at 1; None means the backend default."""
    if expires_at is None:
        return None
    remaining = (expires_at - (now or utcnow())).total_seconds()
    return max(1, int(remaining))


class RedirectResolver:
    """Resolves (domain, code) pairs to redirects and emits click events.

    The resolver is shared by every request. The cache, the stores and the
    queue are all safe for concurrent use, so it holds no locks; the only
    mutable state is the set of pending refill tasks.

    Example:
        >>> resolver = RedirectResolver(cache, domains, links, queue, metrics)
        >>> redirect = await resolver.resolve("s.example.com", "abc123")
        >>> redirect.permanent
        False
    """

    def __init__(
        self,
        cache: CacheService,
        domains: DomainRepository,
        links: LinkRepository,
        queue: ClickQueue,
        metrics: MetricsSink,
    ):
        self._cache = cache
        self._domains = domains
        self._links = links
        self._queue = queue
        self._metrics = metrics
        self._refills: set[asyncio.Task] = set()

    async def resolve(
        self,
        domain: str,
        code: str,
        *,
        ip: str | None = None,
        user_agent: str | None = None,
        referer: str | None = None,
    ) -> ResolvedRedirect:
        """Resolve a short code on a domain.

        Raises:
            NotFoundError: Unknown domain, or unknown code on that domain.
            GoneError: The link was deleted or has expired.
        """
        key = cache_key(domain, code)
        cached = await self._lookup_cache(key)

        if cached is not None:
            self._metrics.increment(CACHE_HITS)
            logger.debug(f"Cache hit for {key}")
            redirect = parse_cached_value(cached)
        else:
            self._metrics.increment(CACHE_MISSES)
            logger.debug(f"Cache miss for {key}")
            link = await self._load_link(domain, code)
            redirect = ResolvedRedirect(link.long_url, link.permanent)
            self._schedule_refill(key, encode_cached_value(link.long_url, link.permanent), _ttl_until(link.expires_at))

        self._queue.try_send(ClickEvent(domain=domain, code=code, ip=ip, user_agent=user_agent, referer=referer))
        return redirect

    async def invalidate(self, domain: str, code: str) -> None:
        """Drop the cached entry after the link was updated or deleted."""
        await self._cache.invalidate(cache_key(domain, code))

    async def aclose(self) -> None:
        """Wait for every pending cache refill to finish."""
        if self._refills:
            await asyncio.gather(*self._refills, return_exceptions=True)

    @property
    def pending_refills(self) -> int:
        return len(self._refills)

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _lookup_cache(self, key: str) -> str | None:
        try:
            return await self._cache.get(key)
        except Exception as exc:
            # Backends are fail-open already; anything that still escapes is a miss.
            logger.error(f"Cache error for {key}: {exc}")
            return None

    async def _load_link(self, domain: str, code: str) -> Link:
        domain_row = await self._domains.find_by_name(domain)
        if domain_row is None:
            raise NotFoundError("Domain not found", {"domain": domain})

        link = await self._links.find_by_code(code, domain_row.id)
        if link is None:
            raise NotFoundError("Short link not found", {"code": code})

        if link.is_deleted():
            raise GoneError(GoneReason.DELETED, {"code": code})
        if link.is_expired():
            raise GoneError(GoneReason.EXPIRED, {"code": code})
        return link

    def _schedule_refill(self, key: str, value: str, ttl_seconds: int | None) -> None:
        task = asyncio.create_task(self._refill(key, value, ttl_seconds))
        self._refills.add(task)
        task.add_done_callback(self._refills.discard)

    async def _refill(self, key: str, value: str, ttl_seconds: int | None) -> None:
        try:
            await self._cache.set(key, value, ttl_seconds)
        except Exception as exc:
            logger.error(f"Failed to cache {key}: {exc}")
