"""Dependency injection with a singleton service manager.

This module provides a centralized way to inject database sessions and the
long-lived redirect components (cache, rate limiters, access gate, click
recorder) with consistent naming across all API endpoints.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlinks.access import AccessGate
from shortlinks.allocator import RedisSequence
from shortlinks.cache import MemoryLinkCache, RedisLinkCache, ResolutionCache
from shortlinks.config import Settings, get_settings
from shortlinks.database import async_session, get_db
from shortlinks.enums import CacheBackend, CodeStrategy, VisitSinkKind
from shortlinks.exceptions import RateLimitExceeded
from shortlinks.geo import GeoLocator
from shortlinks.kafka import close_kafka, init_kafka
from shortlinks.link_service import LinkService
from shortlinks.ratelimit import RateLimiters, resolve_client_ip
from shortlinks.recorder import ClickRecorder, DatabaseVisitSink, KafkaVisitSink, VisitSink
from shortlinks.redis import close_redis, get_redis
from shortlinks.schemas import RawVisit
from shortlinks.store import LinkStore


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton owner of every process-wide resource on the redirect path.

    The cache map and rate-limit buckets live here rather than in module
    globals, so their lifetime is exactly start-up to shutdown.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        visit_sink: VisitSink | None = None,
        geo: GeoLocator | None = None,
    ) -> None:
        """Initialize shared resources once at startup."""
        if self._initialized:
            return

        self.settings = get_settings()
        self.logger = self._setup_logger()
        self.session_factory = session_factory or async_session
        self.cache_writer: redis.Redis | None = None
        if self.settings.CACHE_BACKEND is CacheBackend.REDIS or self.settings.CODE_STRATEGY is CodeStrategy.SEQUENTIAL:
            self.cache_writer = await get_redis()

        self.cache = self._setup_cache()
        self.sequence = (
            RedisSequence(self.cache_writer, self.settings.ID_ALLOCATOR_KEY)
            if self.settings.CODE_STRATEGY is CodeStrategy.SEQUENTIAL
            else None
        )
        self.gate = AccessGate()
        self.rate_limiters = RateLimiters.from_settings(self.settings)
        self.geo = geo or GeoLocator(
            enabled=self.settings.GEO_API_ENABLED,
            api_url=self.settings.GEO_API_URL,
            timeout_seconds=self.settings.GEO_API_TIMEOUT_SECONDS,
            cache_size=self.settings.GEO_CACHE_SIZE,
        )
        self.recorder = ClickRecorder(
            visit_sink or await self._setup_sink(),
            self.geo,
            on_recorded=self._count_visit,
            workers=self.settings.RECORDER_WORKERS,
            queue_size=self.settings.RECORDER_QUEUE_SIZE,
        )
        await self.recorder.start()
        self._initialized = True
        self.logger.info(
            f"Service manager ready (cache={self.settings.CACHE_BACKEND}, "
            f"codes={self.settings.CODE_STRATEGY}, sink={self.settings.VISIT_SINK})"
        )

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("shortlinks")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(self.settings.LOG_LEVEL)
        return logger

    def _setup_cache(self) -> ResolutionCache:
        if self.settings.CACHE_BACKEND is CacheBackend.REDIS:
            return RedisLinkCache(
                self.cache_writer,
                ttl_seconds=self.settings.CACHE_TTL_SECONDS,
                lock_ttl_seconds=self.settings.CACHE_LOCK_TTL_SECONDS,
                lock_retry_count=self.settings.CACHE_LOCK_RETRY_COUNT,
                lock_retry_delay_seconds=self.settings.CACHE_LOCK_RETRY_DELAY_SECONDS,
            )
        return MemoryLinkCache(
            ttl_seconds=self.settings.CACHE_TTL_SECONDS,
            max_entries=self.settings.CACHE_MAX_ENTRIES,
        )

    async def _setup_sink(self) -> VisitSink:
        if self.settings.VISIT_SINK is VisitSinkKind.KAFKA:
            await init_kafka()
            return KafkaVisitSink()
        return DatabaseVisitSink(self.session_factory)

    async def _count_visit(self, short_code: str) -> None:
        async with self.session_factory() as session:
            await LinkStore(session).increment_visits(short_code)
        await self.cache.invalidate(short_code)

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if not self._initialized:
            return
        await self.recorder.stop()
        await self.geo.close()
        if self.settings.VISIT_SINK is VisitSinkKind.KAFKA:
            await close_kafka()
        if self.cache_writer is not None:
            await close_redis()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request context with tracking and shared resource access.

    Attributes:
        database: Async database session (only per-request resource)
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        client_ip: Client address resolved through proxy headers
        user_agent: Client user agent string
        referer: Referer header, if any
        owner_id: Caller identity supplied by the upstream auth layer
        start_time: Request start timestamp
        tags: Request tags for categorization
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    owner_id: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())
    tags: list[str] = field(default_factory=list)

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger carrying this request's identifiers."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
                "tags": ",".join(self.tags),
            },
        )

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000

    def raw_visit(self) -> RawVisit:
        return RawVisit(ip_address=self.client_ip, user_agent=self.user_agent, referer=self.referer)


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        database=db,
        service_manager=manager,
        request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        client_ip=resolve_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
        owner_id=request.headers.get("x-owner-id"),
    )


def get_link_service(ctx: RequestContext = Depends(get_request_context)) -> LinkService:
    return LinkService.from_context(ctx)


async def require_redirect_quota(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> None:
    """Redirect-path bucket, independent of the general per-client bucket."""
    decision = manager.rate_limiters.redirect.try_acquire(resolve_client_ip(request))
    if not decision.allowed:
        raise RateLimitExceeded(decision.retry_after_seconds)


async def require_strict_quota(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> None:
    """Tighter bucket for link-mutating actions."""
    decision = manager.rate_limiters.strict.try_acquire(resolve_client_ip(request))
    if not decision.allowed:
        raise RateLimitExceeded(decision.retry_after_seconds)
