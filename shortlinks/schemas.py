"""Pydantic schemas for request/response validation and internal snapshots.

This module defines Pydantic models for API input validation and output serialization,
plus the immutable snapshots that travel through the cache and the click recorder.

Schema Hierarchy
=================
::
    LinkCreate (Input)
    ├─ url: str (validated URL)
    ├─ custom_alias: str | None (checked by the allocator)
    ├─ title / description: str | None
    ├─ expires_at: datetime | None
    └─ password: str | None

    LinkUpdate (Input, all optional)
    └─ url / title / description / expires_at / is_active / password / remove_password / remove_expiry

    PasswordVerify (Input)
    └─ password: str

    LinkResponse / PreviewResponse / VerifyResponse / HealthResponse / ErrorResponse (Output)

    CachedLink (Internal)
    └─ frozen snapshot of a ShortLink row, the only shape the cache serves

    RawVisit -> VisitRecord (Internal)
    └─ request metadata captured on the redirect path, enriched off it

How to Use
===========
**Step 1 — Input validation**::
    @router.post("/api/links")
    async def create_link(payload: LinkCreate):
        ...

**Step 2 — Snapshot a row for the cache**::
    snapshot = CachedLink.model_validate(orm_link)
    snapshot.is_expired()

Key Behaviours
===============
- Target URL validation uses the validators library for RFC compliance.
- All datetimes are normalized to timezone-aware UTC; naive values are read as UTC.
- CachedLink and VisitRecord are frozen so a cached value cannot be mutated in place.

Classes:
    LinkCreate, LinkUpdate, PasswordVerify:  Input schemas.
    LinkResponse, PreviewResponse, VerifyResponse, HealthResponse, ErrorResponse:  Output schemas.
    CachedLink:  Cache payload for a resolved link.
    RawVisit, VisitRecord:  Click-recording payloads.
"""

import datetime

import validators
from pydantic import BaseModel, ConfigDict, Field, field_validator

from shortlinks.enums import HealthStatus

__all__ = [
    "LinkCreate",
    "LinkUpdate",
    "PasswordVerify",
    "LinkResponse",
    "PreviewResponse",
    "VerifyResponse",
    "HealthResponse",
    "ErrorResponse",
    "CachedLink",
    "RawVisit",
    "VisitRecord",
    "as_utc",
]


def as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


BCRYPT_MAX_PASSWORD_BYTES = 72


def _check_password(v: str | None) -> str | None:
    if v is not None and len(v.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes")
    return v


def _check_url(v: str) -> str:
    if not validators.url(v):
        raise ValueError("Invalid URL provided")
    return v


class LinkCreate(BaseModel):
    url: str
    custom_alias: str | None = None
    title: str | None = Field(None, max_length=100)
    description: str | None = Field(None, max_length=500)
    expires_at: datetime.datetime | None = None
    password: str | None = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _check_url(v)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str | None) -> str | None:
        return _check_password(v)

    @field_validator("expires_at")
    @classmethod
    def normalize_expiry(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        return as_utc(v)


class LinkUpdate(BaseModel):
    url: str | None = None
    title: str | None = Field(None, max_length=100)
    description: str | None = Field(None, max_length=500)
    expires_at: datetime.datetime | None = None
    is_active: bool | None = None
    password: str | None = None
    remove_password: bool = False
    remove_expiry: bool = False

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        return None if v is None else _check_url(v)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str | None) -> str | None:
        return _check_password(v)

    @field_validator("expires_at")
    @classmethod
    def normalize_expiry(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        return as_utc(v)


class PasswordVerify(BaseModel):
    password: str = Field(..., min_length=1)


class LinkResponse(BaseModel):
    id: int
    short_code: str
    original_url: str
    short_url: str
    custom_alias: bool
    owner_id: str | None
    is_active: bool
    is_password_protected: bool
    expires_at: datetime.datetime | None
    visit_count: int
    image_ref: str | None
    created_at: datetime.datetime
    updated_at: datetime.datetime


class PreviewResponse(BaseModel):
    short_code: str
    original_url: str
    title: str
    description: str
    is_password_protected: bool
    visit_count: int
    created_at: datetime.datetime


class VerifyResponse(BaseModel):
    redirect_url: str


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class ErrorResponse(BaseModel):
    status: int
    error: str
    message: str
    path: str
    timestamp: datetime.datetime = Field(default_factory=_utcnow)


class CachedLink(BaseModel):
    """Immutable snapshot of a ShortLink, shared between the cache backends and the access gate."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    short_code: str
    original_url: str
    custom_alias: bool = False
    owner_id: str | None = None
    title: str | None = None
    description: str | None = None
    is_active: bool = True
    expires_at: datetime.datetime | None = None
    password_hash: str | None = None
    visit_count: int = 0
    image_ref: str | None = None
    created_at: datetime.datetime
    updated_at: datetime.datetime

    @field_validator("expires_at", "created_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        return as_utc(v)

    @property
    def is_password_protected(self) -> bool:
        return self.password_hash is not None

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or _utcnow()) > self.expires_at


class RawVisit(BaseModel):
    """Request metadata captured synchronously on the redirect path."""

    model_config = ConfigDict(frozen=True)

    ip_address: str | None = None
    user_agent: str | None = None
    referer: str | None = None
    timestamp: datetime.datetime = Field(default_factory=_utcnow)


class VisitRecord(BaseModel):
    """A fully enriched visit, ready for any sink."""

    model_config = ConfigDict(frozen=True)

    link_id: int
    short_code: str
    owner_id: str | None
    ip_address: str | None
    user_agent: str | None
    referer: str | None
    country: str
    country_code: str
    region: str
    city: str
    timezone: str
    isp: str
    latitude: float
    longitude: float
    browser: str
    browser_version: str
    operating_system: str
    os_version: str
    device_type: str
    is_mobile: bool
    is_bot: bool
    timestamp: datetime.datetime
