"""SQLAlchemy ORM models for the shortlinks application.

This module defines the database schema using SQLAlchemy declarative models
with proper indexing and timestamp management for links and their visits.

Data Model Layout
=================
::
    short_links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ short_code (VARCHAR(20) UNIQUE, INDEXED)
    ├─ original_url (TEXT NOT NULL)
    ├─ custom_alias (BOOLEAN DEFAULT FALSE)
    ├─ owner_id (VARCHAR(64), INDEXED)
    ├─ title / description (nullable)
    ├─ is_active (BOOLEAN DEFAULT TRUE)
    ├─ expires_at (TIMESTAMPTZ, nullable)
    ├─ password_hash (VARCHAR(128), nullable)
    ├─ visit_count (BIGINT DEFAULT 0)
    ├─ image_ref (VARCHAR(255), nullable)
    ├─ created_at / updated_at (TIMESTAMPTZ)
    └─ deleted_at (TIMESTAMPTZ, nullable, soft delete)

    visit_events table (append-only)
    ├─ id (SERIAL PRIMARY KEY)
    ├─ link_id (FK short_links.id, INDEXED)
    ├─ short_code / owner_id (denormalized, INDEXED)
    ├─ ip_address / user_agent / referer
    ├─ country / country_code / region / city / timezone / isp / latitude / longitude
    ├─ browser / browser_version / operating_system / os_version
    ├─ device_type / is_mobile / is_bot
    └─ timestamp (TIMESTAMPTZ, INDEXED)

How to Use
===========
**Step 1 — Import**::
    from shortlinks.models import ShortLink, VisitEvent

**Step 2 — Create a link**::
    link = ShortLink(short_code="abc1234", original_url="https://example.com", owner_id="u1")
    db.add(link)
    await db.commit()

**Step 3 — Query**::
    result = await db.execute(select(ShortLink).where(ShortLink.short_code == "abc1234"))
    link = result.scalar_one_or_none()

Key Behaviours
===============
- short_code is unique across active, inactive and soft-deleted rows, so a code
  is never handed out twice.
- Expiry is evaluated at read time; nothing flips is_active when a link expires.
- visit_events rows are never updated or deleted.

Classes:
    ShortLink:  A short code mapped to a target address.
    VisitEvent:  One enriched, successfully authorized visit.
"""

import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shortlinks.database import Base

__all__ = ["ShortLink", "VisitEvent"]


class ShortLink(Base):
    __tablename__ = "short_links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    custom_alias: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    title: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    visit_count: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), default=0, nullable=False)
    image_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    deleted_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_password_protected(self) -> bool:
        return self.password_hash is not None

    def __repr__(self) -> str:
        return f"<ShortLink(id={self.id}, short_code='{self.short_code}', visits={self.visit_count})>"


class VisitEvent(Base):
    __tablename__ = "visit_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    link_id: Mapped[int] = mapped_column(ForeignKey("short_links.id"), index=True, nullable=False)
    short_code: Mapped[str] = mapped_column(String(20), index=True, nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    referer: Mapped[str | None] = mapped_column(Text, nullable=True)

    country: Mapped[str] = mapped_column(String(100), nullable=False)
    country_code: Mapped[str] = mapped_column(String(8), nullable=False)
    region: Mapped[str] = mapped_column(String(100), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    isp: Mapped[str] = mapped_column(String(255), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    browser: Mapped[str] = mapped_column(String(64), nullable=False)
    browser_version: Mapped[str] = mapped_column(String(32), nullable=False)
    operating_system: Mapped[str] = mapped_column(String(64), nullable=False)
    os_version: Mapped[str] = mapped_column(String(32), nullable=False)
    device_type: Mapped[str] = mapped_column(String(16), nullable=False)
    is_mobile: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_bot: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    timestamp: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)

    def __repr__(self) -> str:
        return f"<VisitEvent(id={self.id}, short_code='{self.short_code}', device={self.device_type})>"
