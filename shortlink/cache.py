"""Redirect cache: a fail-open key -> string store with TTL.

This module provides the cache port used on the redirect hot path together
with its two backends: a Redis backend that reuses one pooled client, and a
no-op backend used when caching is disabled or Redis is unreachable at startup.

Flow Diagram — build_cache()
============================
::
    ┌─────────────┐
    │ build_cache │
    │ (settings)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ REDIS_URL   │
    │ set?        │
    └──────┬──────┘
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│NullCache│  │ connect │
│         │  │ + PING  │
└─────────┘  └────┬────┘
            OK?   │
          ┌───────┴───────┐
          │ NO             │ YES
          ▼                ▼
     ┌─────────┐      ┌──────────┐
     │NullCache│      │RedisCache│
     └─────────┘      └──────────┘

How to Use
===========
**Step 1 — Build once at startup**::
    cache = await build_cache(settings)

**Step 2 — Use anywhere, no try/except needed**::
    cached = await cache.get("s.example.com:abc123")
    await cache.set("s.example.com:abc123", "0:https://example.com", ttl_seconds=60)

**Step 3 — Invalidate after a link is updated or deleted**::
    await cache.invalidate("s.example.com:abc123")

Key Behaviours
===============
- Every operation is fail-open: backend errors are logged, never raised.
- ``get`` returns None on miss and on error alike.
- ``invalidate`` is idempotent.
- Keys are namespaced with the ``url:`` prefix inside Redis.

Classes:
    CacheService:  Protocol shared by both backends.
    RedisCache:  redis.asyncio-backed implementation.
    NullCache:  Always misses, always succeeds.

Functions:
    build_cache():  Pick a backend from settings.
"""

import logging
from typing import Protocol

import redis.asyncio as redis

from shortlink.config import Settings, mask_connection_string
from shortlink.exceptions import CacheError

__all__ = ["CacheService", "DEFAULT_CACHE_TTL_SECONDS", "NullCache", "RedisCache", "build_cache"]

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 3600  # 1 hour
KEY_PREFIX = "url:"


class CacheService(Protocol):
    default_ttl: int

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    async def invalidate(self, key: str) -> None: ...

    async def health_check(self) -> bool: ...

    async def close(self) -> None: ...


class RedisCache:
    """Redis-backed cache that never propagates backend errors.

    Args:
        client: A ``redis.asyncio.Redis`` created with ``decode_responses=True``.
            The client owns a connection pool; one instance is shared by every
            request and every background task.
        default_ttl: TTL applied when ``set`` is called without one.
    """

    def __init__(self, client: redis.Redis, default_ttl: int = DEFAULT_CACHE_TTL_SECONDS):
        self._client = client
        self.default_ttl = default_ttl

    @classmethod
    async def connect(cls, redis_url: str, default_ttl: int = DEFAULT_CACHE_TTL_SECONDS) -> "RedisCache":
        """Create the client and validate it with PING.

        Raises:
            CacheError: If the URL is invalid or the server does not answer.
        """
        logger.info(f"Connecting to Redis at {mask_connection_string(redis_url)}")
        try:
            client = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
            await client.ping()
        except Exception as exc:
            raise CacheError(f"Failed to connect to Redis: {exc}") from exc
        logger.info("Connected to Redis")
        return cls(client, default_ttl)

    @staticmethod
    def _build_key(key: str) -> str:
        return f"{KEY_PREFIX}{key}"

    async def get(self, key: str) -> str | None:
        try:
            value = await self._client.get(self._build_key(key))
        except Exception as exc:
            logger.error(f"Redis GET error for {key}: {exc}")
            return None

        if value is None:
            logger.debug(f"Cache MISS: {key}")
        else:
            logger.debug(f"Cache HIT: {key}")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        try:
            await self._client.set(self._build_key(key), value, ex=ttl)
        except Exception as exc:
            logger.warning(f"Redis SET error for {key}: {exc}")
            return
        logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")

    async def invalidate(self, key: str) -> None:
        try:
            deleted = await self._client.delete(self._build_key(key))
        except Exception as exc:
            logger.warning(f"Redis DEL error for {key}: {exc}")
            return
        if deleted:
            logger.debug(f"Cache INVALIDATE: {key}")

    async def health_check(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception as exc:
            logger.warning(f"Redis health check failed: {exc}")
            return False

    async def close(self) -> None:
        await self._client.aclose()


class NullCache:
    """Cache that stores nothing; the rest of the service cannot tell it apart."""

    def __init__(self, default_ttl: int = DEFAULT_CACHE_TTL_SECONDS):
        self.default_ttl = default_ttl
        logger.debug("Using NullCache (caching disabled)")

    async def get(self, key: str) -> str | None:
        return None

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        return None

    async def invalidate(self, key: str) -> None:
        return None

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None


async def build_cache(settings: Settings) -> CacheService:
    if not settings.is_cache_enabled:
        logger.info("Cache disabled (NullCache)")
        return NullCache(settings.CACHE_TTL_SECONDS)

    try:
        cache = await RedisCache.connect(settings.REDIS_URL, settings.CACHE_TTL_SECONDS)
    except CacheError as exc:
        logger.warning(f"{exc}. Using NullCache.")
        return NullCache(settings.CACHE_TTL_SECONDS)

    logger.info("Cache enabled (Redis)")
    return cache
