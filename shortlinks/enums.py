"""Shared enums for the shortlinks application.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = [
    "HealthStatus",
    "RequestStatus",
    "CacheBackend",
    "CodeStrategy",
    "VisitSinkKind",
    "DeviceType",
    "BucketKind",
]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    DENIED = "denied"
    NOT_FOUND = "not_found"


class CacheBackend(StrEnum):
    """Where resolved links are cached."""

    MEMORY = "memory"
    REDIS = "redis"


class CodeStrategy(StrEnum):
    """How generated short codes are drawn."""

    RANDOM = "random"
    SEQUENTIAL = "sequential"


class VisitSinkKind(StrEnum):
    """Destination for enriched visit events."""

    DATABASE = "database"
    KAFKA = "kafka"


class DeviceType(StrEnum):
    """Coarse client classification, in precedence order Bot > Tablet > Mobile > Desktop."""

    BOT = "Bot"
    TABLET = "Tablet"
    MOBILE = "Mobile"
    DESKTOP = "Desktop"
    UNKNOWN = "Unknown"


class BucketKind(StrEnum):
    """Independent rate-limit bucket families."""

    GENERAL = "general"
    STRICT = "strict"
    REDIRECT = "redirect"
