"""Configuration management for the shortlinks redirect service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortlinks.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    db_url = settings.DATABASE_URL

**Step 3 — Access values**::
    print(f"Redirect bucket: {settings.REDIRECT_RATE_LIMIT}/{settings.REDIRECT_RATE_PERIOD_SECONDS}s")

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- Rate limits, cache bounds and recorder back-pressure are all tunable here.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from shortlinks.enums import CacheBackend, CodeStrategy, VisitSinkKind


class Settings(BaseSettings):
    APP_NAME: str = "shortlinks"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://shortlinks:shortlinks@db:5432/shortlinks"

    # Redis (shared cache backend and sequential code counter)
    REDIS_URL: str = "redis://redis:6379/0"

    # Short code allocation
    SHORT_CODE_LENGTH: int = 7
    SEQUENTIAL_CODE_MIN_WIDTH: int = 6
    CODE_STRATEGY: CodeStrategy = CodeStrategy.RANDOM
    CODE_MAX_ATTEMPTS: int = 10
    ID_ALLOCATOR_KEY: str = "id_allocator:links"
    DEFAULT_EXPIRATION_DAYS: int = 30

    # Resolution cache
    CACHE_BACKEND: CacheBackend = CacheBackend.MEMORY
    CACHE_TTL_SECONDS: int = 3600
    CACHE_MAX_ENTRIES: int = 100_000
    CACHE_LOCK_TTL_SECONDS: int = 3
    CACHE_LOCK_RETRY_COUNT: int = 3
    CACHE_LOCK_RETRY_DELAY_SECONDS: float = 0.05

    # Admission control
    RATE_LIMIT_PER_MINUTE: int = 60
    RATE_LIMIT_PER_HOUR: int = 1000
    STRICT_RATE_LIMIT: int = 10
    STRICT_RATE_PERIOD_SECONDS: int = 60
    REDIRECT_RATE_LIMIT: int = 100
    REDIRECT_RATE_PERIOD_SECONDS: int = 10
    RATE_LIMIT_MAX_CLIENTS: int = 50_000

    # Click recording
    RECORDER_WORKERS: int = 2
    RECORDER_QUEUE_SIZE: int = 10_000
    VISIT_SINK: VisitSinkKind = VisitSinkKind.DATABASE

    # Geolocation enrichment (ip-api.com compatible)
    GEO_API_ENABLED: bool = True
    GEO_API_URL: str = "http://ip-api.com/json/"
    GEO_API_TIMEOUT_SECONDS: float = 2.0
    GEO_CACHE_SIZE: int = 10_000

    # Kafka visit sink
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:9092"
    KAFKA_VISIT_TOPIC: str = "visit_events"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
