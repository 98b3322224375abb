"""Read-through resolution cache in front of link storage.

Flow Diagram — resolve(code, loader)
====================================
::
    ┌─────────────┐
    │ resolve()   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check entry │
    └──────┬──────┘
    HIT?  │
    ┌─────┴──────┐
    │ NO          │ YES
    ▼             ▼
┌──────────┐  ┌─────────┐
│ Per-key  │  │ Return  │
│ lock     │  │ snapshot│
└────┬─────┘  └─────────┘
     ▼
┌──────────┐
│ Re-check │── hit ──▶ return
└────┬─────┘
     ▼
┌──────────┐
│ loader() │── None ──▶ LinkNotFound
└────┬─────┘
     ▼
┌──────────┐
│ Populate │ (skipped if invalidated meanwhile)
└──────────┘

How to Use
===========
**Step 1 — Build a backend**::
    cache = MemoryLinkCache(ttl_seconds=3600, max_entries=100_000)

**Step 2 — Resolve with a storage loader**::
    link = await cache.resolve("abc1234", loader)

**Step 3 — Invalidate on every mutation**::
    await store.save(row)
    await cache.invalidate(row.short_code)

Key Behaviours
===============
- Invalidation clears the entry; the next read repopulates it lazily.
- Concurrent misses for one code share a single storage read.
- Not-found results are never cached.
- The memory backend is LRU-bounded with a TTL; the Redis backend relies on SETEX.

Classes:
    ResolutionCache:  Backend interface.
    MemoryLinkCache:  In-process backend (default).
    RedisLinkCache:  Redis backend for multi-instance deployments.
"""

import abc
import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import redis.asyncio as redis
from prometheus_client import Counter

from shortlinks.exceptions import LinkNotFound
from shortlinks.schemas import CachedLink

__all__ = ["Loader", "ResolutionCache", "MemoryLinkCache", "RedisLinkCache"]

logger = logging.getLogger("shortlinks")

Loader = Callable[[str], Awaitable[CachedLink | None]]

CACHE_HITS_TOTAL = Counter(
    "shortlinks_cache_hits_total",
    "Total cache hits for link lookups",
    ["backend"],
)
CACHE_MISSES_TOTAL = Counter(
    "shortlinks_cache_misses_total",
    "Total cache misses for link lookups",
    ["backend"],
)
CACHE_INVALIDATIONS_TOTAL = Counter(
    "shortlinks_cache_invalidations_total",
    "Total cache invalidations caused by link mutations",
    ["backend"],
)


class ResolutionCache(abc.ABC):
    backend: str = "abstract"

    @abc.abstractmethod
    async def resolve(self, short_code: str, loader: Loader) -> CachedLink:
        """Return the cached link or load it through ``loader``; raise LinkNotFound if absent."""

    @abc.abstractmethod
    async def invalidate(self, short_code: str) -> None:
        """Drop the entry for ``short_code``."""

    async def ping(self) -> bool:
        return True


@dataclass
class _Inflight:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    waiters: int = 0
    invalidated: bool = False


class MemoryLinkCache(ResolutionCache):
    backend = "memory"

    def __init__(
        self,
        ttl_seconds: float = 3600,
        max_entries: int = 100_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        assert max_entries > 0, f"max_entries must be positive, got {max_entries!r}"
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, CachedLink]] = OrderedDict()
        self._inflight: dict[str, _Inflight] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def resolve(self, short_code: str, loader: Loader) -> CachedLink:
        cached = self._get(short_code)
        if cached is not None:
            CACHE_HITS_TOTAL.labels(backend=self.backend).inc()
            return cached

        CACHE_MISSES_TOTAL.labels(backend=self.backend).inc()
        inflight = self._inflight.setdefault(short_code, _Inflight())
        inflight.waiters += 1
        try:
            async with inflight.lock:
                cached = self._get(short_code)
                if cached is not None:
                    return cached

                inflight.invalidated = False
                link = await loader(short_code)
                if link is None:
                    raise LinkNotFound(short_code)
                if not inflight.invalidated:
                    self._put(short_code, link)
                return link
        finally:
            inflight.waiters -= 1
            if inflight.waiters == 0:
                self._inflight.pop(short_code, None)

    async def invalidate(self, short_code: str) -> None:
        self._entries.pop(short_code, None)
        inflight = self._inflight.get(short_code)
        if inflight is not None:
            # a load that started before this mutation must not repopulate
            inflight.invalidated = True
        CACHE_INVALIDATIONS_TOTAL.labels(backend=self.backend).inc()

    def _get(self, short_code: str) -> CachedLink | None:
        entry = self._entries.get(short_code)
        if entry is None:
            return None
        stored_at, link = entry
        if self._clock() - stored_at >= self._ttl:
            del self._entries[short_code]
            return None
        self._entries.move_to_end(short_code)
        return link

    def _put(self, short_code: str, link: CachedLink) -> None:
        self._entries[short_code] = (self._clock(), link)
        self._entries.move_to_end(short_code)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)


class RedisLinkCache(ResolutionCache):
    """Shared cache for deployments running more than one instance.

    Uses a short-lived ``SET NX`` lock per code so that only one instance
    reloads a cold key while the others poll briefly for the result.
    """

    backend = "redis"

    def __init__(
        self,
        cache: redis.Redis,
        ttl_seconds: int = 3600,
        lock_ttl_seconds: int = 3,
        lock_retry_count: int = 3,
        lock_retry_delay_seconds: float = 0.05,
    ) -> None:
        self._cache = cache
        self._ttl = ttl_seconds
        self._lock_ttl = lock_ttl_seconds
        self._lock_retry_count = lock_retry_count
        self._lock_retry_delay = lock_retry_delay_seconds

    @staticmethod
    def _key(short_code: str) -> str:
        return f"link:{short_code}"

    @staticmethod
    def _lock_key(short_code: str) -> str:
        return f"lock:link:{short_code}"

    async def resolve(self, short_code: str, loader: Loader) -> CachedLink:
        cached = await self._lookup(short_code)
        if cached is not None:
            CACHE_HITS_TOTAL.labels(backend=self.backend).inc()
            return cached

        CACHE_MISSES_TOTAL.labels(backend=self.backend).inc()
        lock_acquired = await self._acquire_lock(short_code)
        if not lock_acquired:
            for _ in range(self._lock_retry_count):
                await asyncio.sleep(self._lock_retry_delay)
                cached = await self._lookup(short_code)
                if cached is not None:
                    return cached

        try:
            link = await loader(short_code)
            if link is None:
                raise LinkNotFound(short_code)
            await self._cache.setex(self._key(short_code), self._ttl, link.model_dump_json())
            return link
        finally:
            if lock_acquired:
                await self._cache.delete(self._lock_key(short_code))

    async def invalidate(self, short_code: str) -> None:
        await self._cache.delete(self._key(short_code))
        CACHE_INVALIDATIONS_TOTAL.labels(backend=self.backend).inc()

    async def ping(self) -> bool:
        return bool(await self._cache.ping())

    async def _lookup(self, short_code: str) -> CachedLink | None:
        raw = await self._cache.get(self._key(short_code))
        if not raw:
            return None
        try:
            return CachedLink.model_validate_json(raw)
        except ValueError as exc:
            logger.error(f"Cache deserialization error for {short_code}: {exc}")
            await self._cache.delete(self._key(short_code))
            return None

    async def _acquire_lock(self, short_code: str) -> bool:
        locked = await self._cache.set(self._lock_key(short_code), "1", ex=self._lock_ttl, nx=True)
        return bool(locked)
