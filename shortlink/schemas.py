"""Pydantic schemas for click events, click records and API responses.

Schema Hierarchy
=================
::
    ClickEvent (in-memory, resolver -> worker)
    ├─ domain: str
    ├─ code: str
    ├─ ip / user_agent / referer: str | None

    NewClick (worker -> stats store)
    ├─ link_id: int
    └─ ip / user_agent / referer: str | None

    HealthResponse (GET /api/health)
    ├─ status: HealthStatus
    └─ checks: HealthChecks (database, click_queue, cache)

Key Behaviours
===============
- ClickEvent is frozen: it is shared across task boundaries without copying.
- ClickEvent carries the domain name and code, not a link id, because a cache
  hit never touches the database.

Classes:
    ClickEvent:  Lightweight click fact produced per resolved redirect.
    NewClick:  Click record to persist once the link id is known.
    ComponentCheck / HealthChecks / HealthResponse:  Health endpoint output.
"""

from pydantic import BaseModel, ConfigDict, Field

from shortlink.enums import CheckStatus, HealthStatus

__all__ = [
    "ClickEvent",
    "ComponentCheck",
    "HealthChecks",
    "HealthResponse",
    "NewClick",
]


class ClickEvent(BaseModel):
    """Click fact handed from the redirect path to the worker pool."""

    model_config = ConfigDict(frozen=True)

    domain: str = Field(..., description="Domain serving the short link, e.g. 's.example.com'")
    code: str = Field(..., description="Short code that was accessed, e.g. 'abc123'")
    ip: str | None = None
    user_agent: str | None = None
    referer: str | None = None


class NewClick(BaseModel):
    link_id: int
    user_agent: str | None = None
    referer: str | None = None
    ip: str | None = None

    @classmethod
    def from_event(cls, event: ClickEvent, link_id: int) -> "NewClick":
        return cls(link_id=link_id, user_agent=event.user_agent, referer=event.referer, ip=event.ip)


class ComponentCheck(BaseModel):
    status: CheckStatus
    message: str | None = None


class HealthChecks(BaseModel):
    database: ComponentCheck
    click_queue: ComponentCheck
    cache: ComponentCheck


class HealthResponse(BaseModel):
    status: HealthStatus
    version: str
    checks: HealthChecks
