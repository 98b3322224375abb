"""Resolution cache behaviour for the memory and Redis backends."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from shortlinks.cache import MemoryLinkCache, RedisLinkCache
from shortlinks.exceptions import LinkNotFound


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class CountingLoader:
    def __init__(self, link=None, delay: float = 0.0) -> None:
        self.link = link
        self.delay = delay
        self.calls = 0

    async def __call__(self, short_code: str):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.link


@pytest.mark.asyncio
async def test_second_resolve_is_served_from_cache(make_link) -> None:
    cache = MemoryLinkCache()
    loader = CountingLoader(make_link())

    first = await cache.resolve("abc1234", loader)
    second = await cache.resolve("abc1234", loader)

    assert first == second
    assert loader.calls == 1
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_missing_code_raises_and_is_not_cached() -> None:
    cache = MemoryLinkCache()
    loader = CountingLoader(None)

    for _ in range(2):
        with pytest.raises(LinkNotFound):
            await cache.resolve("nope123", loader)

    assert loader.calls == 2
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_invalidate_forces_reload(make_link) -> None:
    cache = MemoryLinkCache()
    loader = CountingLoader(make_link())
    await cache.resolve("abc1234", loader)

    await cache.invalidate("abc1234")
    loader.link = make_link(original_url="https://example.com/new")
    link = await cache.resolve("abc1234", loader)

    assert link.original_url == "https://example.com/new"
    assert loader.calls == 2


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_load(make_link) -> None:
    cache = MemoryLinkCache()
    loader = CountingLoader(make_link(), delay=0.01)

    results = await asyncio.gather(*(cache.resolve("abc1234", loader) for _ in range(10)))

    assert loader.calls == 1
    assert all(r.short_code == "abc1234" for r in results)


@pytest.mark.asyncio
async def test_invalidation_during_load_is_not_overwritten(make_link) -> None:
    cache = MemoryLinkCache()
    loader = CountingLoader(make_link(), delay=0.02)

    task = asyncio.create_task(cache.resolve("abc1234", loader))
    await asyncio.sleep(0.005)
    await cache.invalidate("abc1234")
    await task

    assert len(cache) == 0


@pytest.mark.asyncio
async def test_entries_expire_after_ttl(make_link) -> None:
    clock = FakeClock()
    cache = MemoryLinkCache(ttl_seconds=60, clock=clock)
    loader = CountingLoader(make_link())

    await cache.resolve("abc1234", loader)
    clock.now += 61
    await cache.resolve("abc1234", loader)

    assert loader.calls == 2


@pytest.mark.asyncio
async def test_least_recently_used_entry_is_evicted(make_link) -> None:
    cache = MemoryLinkCache(max_entries=2)

    for code in ("aaa", "bbb"):
        await cache.resolve(code, CountingLoader(make_link(short_code=code)))
    # touch "aaa" so "bbb" becomes the oldest
    await cache.resolve("aaa", CountingLoader(None))
    await cache.resolve("ccc", CountingLoader(make_link(short_code="ccc")))

    reload = CountingLoader(make_link(short_code="bbb"))
    await cache.resolve("bbb", reload)
    assert reload.calls == 1
    assert len(cache) == 2


@pytest.mark.asyncio
async def test_redis_backend_hit_skips_loader(make_link) -> None:
    link = make_link()
    redis_mock = AsyncMock()
    redis_mock.get.return_value = link.model_dump_json()
    cache = RedisLinkCache(redis_mock)
    loader = CountingLoader(None)

    result = await cache.resolve("abc1234", loader)

    assert result == link
    assert loader.calls == 0
    redis_mock.get.assert_awaited_once_with("link:abc1234")


@pytest.mark.asyncio
async def test_redis_backend_miss_populates_with_ttl(make_link) -> None:
    link = make_link()
    redis_mock = AsyncMock()
    redis_mock.get.return_value = None
    redis_mock.set.return_value = True
    cache = RedisLinkCache(redis_mock, ttl_seconds=120)

    result = await cache.resolve("abc1234", CountingLoader(link))

    assert result == link
    redis_mock.setex.assert_awaited_once_with("link:abc1234", 120, link.model_dump_json())
    redis_mock.delete.assert_awaited_with("lock:link:abc1234")


@pytest.mark.asyncio
async def test_redis_backend_drops_corrupt_entry(make_link) -> None:
    redis_mock = AsyncMock()
    redis_mock.get.return_value = "{not json"
    redis_mock.set.return_value = True
    cache = RedisLinkCache(redis_mock)
    loader = CountingLoader(make_link())

    await cache.resolve("abc1234", loader)

    assert loader.calls == 1
    redis_mock.delete.assert_any_await("link:abc1234")


@pytest.mark.asyncio
async def test_redis_backend_invalidate_deletes_key() -> None:
    redis_mock = AsyncMock()
    cache = RedisLinkCache(redis_mock)

    await cache.invalidate("abc1234")

    redis_mock.delete.assert_awaited_once_with("link:abc1234")
