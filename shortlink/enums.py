"""Shared enums for the shortlink service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["CheckStatus", "ClickState", "GoneReason", "HealthStatus"]


class HealthStatus(StrEnum):
    """Overall health reported by ``GET /api/health``."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"

    @classmethod
    def from_checks(cls, *checks: "CheckStatus") -> "HealthStatus":
        """HEALTHY only when every component check is OK."""
        if all(check is CheckStatus.OK for check in checks):
            return cls.HEALTHY
        return cls.DEGRADED


class CheckStatus(StrEnum):
    """Status of a single component health check."""

    OK = "ok"
    ERROR = "error"


class ClickState(StrEnum):
    """Lifecycle of one click event inside the worker pool."""

    RECEIVED = "received"
    RESOLVING = "resolving"
    PERSISTING = "persisting"
    PERSISTED = "persisted"
    DROPPED = "dropped"


class GoneReason(StrEnum):
    """Why a link that exists can no longer be served."""

    DELETED = "deleted"
    EXPIRED = "expired"
