"""Error taxonomy for the redirect resolver and the click pipeline.

Permanent errors (``NotFoundError``, ``GoneError``, plain ``StorageError``) are
never retried. Transient errors are infrastructure faults: a lost connection,
an exhausted pool, an I/O failure or a timeout. Only those are worth retrying,
and ``is_transient_error`` is the single place that decides it.
"""

from typing import Any

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from shortlink.enums import GoneReason

__all__ = [
    "BadRequestError",
    "CacheError",
    "GoneError",
    "NotFoundError",
    "ShortlinkError",
    "StorageError",
    "TransientStorageError",
    "is_transient_error",
]


class ShortlinkError(Exception):
    """Base class for errors raised by this package."""

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_error_info(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFoundError(ShortlinkError):
    """Domain or link does not exist."""

    code = "not_found"
    status_code = 404


class BadRequestError(ShortlinkError):
    """Request cannot be served as sent, e.g. a missing Host header."""

    code = "bad_request"
    status_code = 400


class GoneError(ShortlinkError):
    """Link exists but was deleted or has expired."""

    code = "gone"
    status_code = 410

    def __init__(self, reason: GoneReason, details: dict[str, Any] | None = None):
        message = "This link has been deleted" if reason is GoneReason.DELETED else "This link has expired"
        super().__init__(message, details)
        self.reason = reason


class StorageError(ShortlinkError):
    """Storage failure that retrying will not fix."""

    code = "storage_error"


class TransientStorageError(StorageError):
    """Storage failure caused by connectivity, pool exhaustion, I/O or timeouts."""

    code = "storage_unavailable"
    status_code = 503

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, {"retryable": True, **(details or {})})


class CacheError(ShortlinkError):
    """Cache backend failure. Raised only while connecting; never escapes the cache port."""


_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    TransientStorageError,
    OperationalError,
    InterfaceError,
    PoolTimeoutError,
    ConnectionError,
    TimeoutError,
    OSError,
)


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, NotFoundError):
        return False
    if isinstance(exc, _TRANSIENT_TYPES):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False
