"""SQLAlchemy ORM models for the shortlink service.

This module defines the database schema using SQLAlchemy declarative models
for domains, short links and recorded clicks.

Data Model Layout
=================
::
    domains table
    ├─ id (BIGSERIAL PRIMARY KEY)
    ├─ domain (VARCHAR(255) UNIQUE)
    ├─ is_default / is_active (BOOLEAN)
    ├─ description (TEXT NULL)
    ├─ created_at / updated_at (TIMESTAMPTZ)
    └─ deleted_at (TIMESTAMPTZ NULL, soft delete)

    links table
    ├─ id (BIGSERIAL PRIMARY KEY)
    ├─ code (VARCHAR(64)), UNIQUE with domain_id
    ├─ long_url (TEXT NOT NULL)
    ├─ domain_id (FK domains.id)
    ├─ created_at (TIMESTAMPTZ)
    ├─ expires_at (TIMESTAMPTZ NULL)
    ├─ permanent (BOOLEAN, 301 vs 307)
    └─ deleted_at (TIMESTAMPTZ NULL, soft delete)

    link_clicks table
    ├─ id (BIGSERIAL PRIMARY KEY)
    ├─ link_id (FK links.id ON DELETE CASCADE)
    ├─ clicked_at (TIMESTAMPTZ, DEFAULT NOW())
    └─ referer / user_agent / ip (TEXT NULL)

How to Use
===========
**Step 1 — Import**::
    from shortlink.models import Link

**Step 2 — Check whether a link can be served**::
    if link.is_deleted() or link.is_expired():
        ...

Key Behaviours
===============
- Nothing is hard-deleted by this service; ``deleted_at`` marks soft deletes.
- ``is_expired`` compares against an aware UTC "now" unless one is given.
- (code, domain_id) is unique, so the same code can exist on several domains.

Classes:
    Domain:  A hostname that serves short links.
    Link:  A short code mapped to a destination URL.
    Click:  One recorded redirect.
"""

import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from shortlink.database import Base

__all__ = ["Click", "Domain", "Link", "utcnow"]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Domain(Base):
    __tablename__ = "domains"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    domain: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    deleted_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return f"<Domain(id={self.id}, domain='{self.domain}', default={self.is_default})>"


class Link(Base):
    __tablename__ = "links"
    __table_args__ = (UniqueConstraint("code", "domain_id", name="links_code_domain_key"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    long_url: Mapped[str] = mapped_column(Text, nullable=False)
    domain_id: Mapped[int] = mapped_column(ForeignKey("domains.id"), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    permanent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def __repr__(self) -> str:
        return f"<Link(id={self.id}, code='{self.code}', domain_id={self.domain_id})>"


class Click(Base):
    __tablename__ = "link_clicks"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    link_id: Mapped[int] = mapped_column(ForeignKey("links.id", ondelete="CASCADE"), index=True, nullable=False)
    clicked_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    referer: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Click(id={self.id}, link_id={self.link_id})>"
