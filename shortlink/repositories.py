"""Domain, link and click stores.

Each store is a ``typing.Protocol`` port plus a SQLAlchemy implementation built
from an ``async_sessionmaker``. Every call opens its own short-lived session,
so one repository instance can be shared by the redirect path and all worker
tasks at once.

Error Translation
=================
::
    SQLAlchemyError / OSError
            │
            ▼
    is_transient_error(exc)?
    ┌───────┴───────┐
    │ YES            │ NO
    ▼                ▼
 TransientStorageError   StorageError

Key Behaviours
===============
- ``find_by_name`` and ``find_by_code`` return soft-deleted rows too; the
  caller decides what a deleted row means.
- ``find_by_long_url`` ignores soft-deleted links.
- Absence is ``None``, never an exception.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Protocol
from urllib.parse import urlsplit, urlunsplit

import validators
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlink.exceptions import StorageError, TransientStorageError, is_transient_error
from shortlink.models import Click, Domain, Link
from shortlink.schemas import NewClick

__all__ = [
    "DomainRepository",
    "LinkRepository",
    "SqlDomainRepository",
    "SqlLinkRepository",
    "SqlStatsRepository",
    "StatsRepository",
    "normalize_url",
]

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}


# ============================================================================
# PORTS
# ============================================================================


class DomainRepository(Protocol):
    async def find_by_name(self, name: str) -> Domain | None: ...


class LinkRepository(Protocol):
    async def find_by_code(self, code: str, domain_id: int) -> Link | None: ...

    async def find_by_long_url(self, normalized_url: str, domain_id: int) -> Link | None: ...


class StatsRepository(Protocol):
    async def record_click(self, click: NewClick) -> Click: ...


# ============================================================================
# HELPERS
# ============================================================================


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (SQLAlchemyError, OSError) as exc:
        if is_transient_error(exc):
            raise TransientStorageError(f"{operation} failed: {exc}", {"operation": operation}) from exc
        raise StorageError(f"{operation} failed: {exc}", {"operation": operation}) from exc


def normalize_url(url: str) -> str:
    """Canonical form of an http(s) URL, used to deduplicate links.

    Nothing in the redirect path calls this. It is the key format expected by
    ``find_by_long_url``, for link-management callers outside this package.

    The scheme and host are lower-cased, the default port and the fragment are
    dropped, and an empty path becomes ``/``. Query and path keep their case.

    Raises:
        ValueError: If the URL is malformed or not http/https.
    """
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError as exc:
        raise ValueError(f"Invalid URL format: {url}") from exc

    if parts.scheme not in DEFAULT_PORTS:
        raise ValueError("Only HTTP and HTTPS protocols are allowed")
    if not parts.hostname:
        raise ValueError(f"Invalid URL format: {url}")

    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != DEFAULT_PORTS[parts.scheme]:
        host = f"{host}:{port}"
    userinfo, _, _ = parts.netloc.rpartition("@")
    netloc = f"{userinfo}@{host}" if userinfo else host

    normalized = urlunsplit((parts.scheme, netloc, parts.path or "/", parts.query, ""))
    if not validators.url(normalized):
        raise ValueError(f"Invalid URL format: {url}")
    return normalized


# ============================================================================
# SQLALCHEMY IMPLEMENTATIONS
# ============================================================================


class SqlDomainRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_by_name(self, name: str) -> Domain | None:
        with _storage_errors("find_domain_by_name"):
            async with self._session_factory() as session:
                result = await session.execute(select(Domain).where(Domain.domain == name))
                return result.scalar_one_or_none()


class SqlLinkRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_by_code(self, code: str, domain_id: int) -> Link | None:
        with _storage_errors("find_link_by_code"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Link).where(Link.code == code, Link.domain_id == domain_id)
                )
                return result.scalar_one_or_none()

    async def find_by_long_url(self, normalized_url: str, domain_id: int) -> Link | None:
        with _storage_errors("find_link_by_long_url"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Link)
                    .where(
                        Link.long_url == normalized_url,
                        Link.domain_id == domain_id,
                        Link.deleted_at.is_(None),
                    )
                    .order_by(Link.id)
                    .limit(1)
                )
                return result.scalar_one_or_none()


class SqlStatsRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record_click(self, click: NewClick) -> Click:
        with _storage_errors("record_click"):
            async with self._session_factory() as session:
                row = Click(link_id=click.link_id, referer=click.referer, user_agent=click.user_agent, ip=click.ip)
                session.add(row)
                await session.commit()
                await session.refresh(row)
                logger.debug(f"Recorded click {row.id} for link {row.link_id}")
                return row
