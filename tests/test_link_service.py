"""Service-layer tests for LinkService against a real SQLite store.

Covers the operations that have no HTTP route of their own, plus the
cache-coherence guarantees of every mutation.
"""

import datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.access import AccessGate
from shortlinks.allocator import CodeAllocator
from shortlinks.cache import MemoryLinkCache
from shortlinks.exceptions import Forbidden, LinkDeactivated, LinkNotFound, PasswordIncorrect, PasswordRequired
from shortlinks.geo import GeoLocator
from shortlinks.link_service import LinkService
from shortlinks.recorder import ClickRecorder, MemoryVisitSink
from shortlinks.schemas import LinkCreate, LinkUpdate, RawVisit
from shortlinks.store import LinkStore

# ============================================================================
# TEST FIXTURES
# ============================================================================


@pytest.fixture
def mock_logger() -> MagicMock:
    return MagicMock()


@pytest.fixture
def cache() -> MemoryLinkCache:
    return MemoryLinkCache()


@pytest.fixture
def sink() -> MemoryVisitSink:
    return MemoryVisitSink()


@pytest.fixture
def link_service(db_session: AsyncSession, cache, sink, mock_logger) -> LinkService:
    store = LinkStore(db_session)
    return LinkService(
        store=store,
        cache=cache,
        gate=AccessGate(),
        allocator=CodeAllocator(store.exists_by_code),
        recorder=ClickRecorder(sink, GeoLocator(enabled=False)),
        logger=mock_logger,
        default_expiration_days=30,
    )


# ============================================================================
# CREATION
# ============================================================================


@pytest.mark.asyncio
async def test_create_applies_default_expiry(link_service: LinkService) -> None:
    link = await link_service.create_link(LinkCreate(url="https://example.com"), owner_id="alice")

    expected = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(days=30)
    snapshot = await link_service.lookup(link.short_code)
    assert abs((snapshot.expires_at - expected).total_seconds()) < 60


@pytest.mark.asyncio
async def test_create_keeps_explicit_expiry(link_service: LinkService) -> None:
    expires = datetime.datetime(2099, 1, 1, tzinfo=datetime.timezone.utc)
    link = await link_service.create_link(LinkCreate(url="https://example.com", expires_at=expires))

    snapshot = await link_service.lookup(link.short_code)
    assert snapshot.expires_at == expires


@pytest.mark.asyncio
async def test_password_is_stored_hashed(link_service: LinkService) -> None:
    link = await link_service.create_link(LinkCreate(url="https://example.com", password="pw"))

    assert link.password_hash != "pw"
    assert link.password_hash.startswith("$2")
    assert await link_service.is_password_protected(link.short_code)


# ============================================================================
# RESOLUTION
# ============================================================================


@pytest.mark.asyncio
async def test_redirect_queues_visit(link_service: LinkService, sink: MemoryVisitSink) -> None:
    link = await link_service.create_link(LinkCreate(url="https://example.com/a"))

    target = await link_service.redirect(link.short_code, RawVisit(ip_address="203.0.113.5"))
    await link_service._recorder.stop()

    assert target == "https://example.com/a"
    assert len(sink.events) == 1


@pytest.mark.asyncio
async def test_unknown_code(link_service: LinkService) -> None:
    with pytest.raises(LinkNotFound):
        await link_service.redirect("missing", RawVisit())


# ============================================================================
# MUTATIONS AND CACHE COHERENCE
# ============================================================================


@pytest.mark.asyncio
async def test_update_invalidates_cached_snapshot(link_service: LinkService, cache: MemoryLinkCache) -> None:
    link = await link_service.create_link(LinkCreate(url="https://example.com", custom_alias="flip"), owner_id="alice")
    await link_service.lookup("flip")
    assert len(cache) == 1

    await link_service.update_link("flip", LinkUpdate(is_active=False), owner_id="alice")

    assert len(cache) == 0
    with pytest.raises(LinkDeactivated):
        await link_service.resolve_target(link.short_code)


@pytest.mark.asyncio
async def test_update_requires_owner(link_service: LinkService) -> None:
    await link_service.create_link(LinkCreate(url="https://example.com", custom_alias="theirs"), owner_id="alice")

    with pytest.raises(Forbidden):
        await link_service.update_link("theirs", LinkUpdate(title="hijack"), owner_id="mallory")
    with pytest.raises(Forbidden):
        await link_service.delete_link("theirs", owner_id=None)


@pytest.mark.asyncio
async def test_is_owned_by(link_service: LinkService) -> None:
    await link_service.create_link(LinkCreate(url="https://example.com", custom_alias="owned"), owner_id="alice")

    assert await link_service.is_owned_by("owned", "alice")
    assert not await link_service.is_owned_by("owned", "bob")
    assert not await link_service.is_owned_by("ghost", "alice")
    assert not await link_service.is_owned_by("owned", None)


@pytest.mark.asyncio
async def test_unowned_link_has_no_owner(link_service: LinkService) -> None:
    await link_service.create_link(LinkCreate(url="https://example.com", custom_alias="nobody"))

    assert not await link_service.is_owned_by("nobody", None)
    with pytest.raises(Forbidden):
        await link_service.update_link("nobody", LinkUpdate(url="https://evil.example.com"), owner_id=None)
    with pytest.raises(Forbidden):
        await link_service.delete_link("nobody", owner_id=None)
    assert (await link_service.lookup("nobody")).original_url == "https://example.com"


@pytest.mark.asyncio
async def test_assign_image_reference(link_service: LinkService) -> None:
    await link_service.create_link(LinkCreate(url="https://example.com", custom_alias="pic"))
    await link_service.lookup("pic")

    updated = await link_service.assign_image_reference("pic", "images/pic.png")

    assert updated.image_ref == "images/pic.png"
    assert (await link_service.lookup("pic")).image_ref == "images/pic.png"


@pytest.mark.asyncio
async def test_assign_image_reference_unknown_code(link_service: LinkService) -> None:
    with pytest.raises(LinkNotFound):
        await link_service.assign_image_reference("ghost", "images/x.png")


@pytest.mark.asyncio
async def test_delete_hides_link_but_keeps_code_reserved(link_service: LinkService) -> None:
    await link_service.create_link(LinkCreate(url="https://example.com", custom_alias="bye"), owner_id="alice")
    await link_service.lookup("bye")

    await link_service.delete_link("bye", owner_id="alice")

    with pytest.raises(LinkNotFound):
        await link_service.lookup("bye")
    assert await link_service._store.exists_by_code("bye")


@pytest.mark.asyncio
async def test_remove_expiry_clears_deadline(link_service: LinkService) -> None:
    await link_service.create_link(LinkCreate(url="https://example.com", custom_alias="dated"), owner_id="alice")
    await link_service.lookup("dated")

    updated = await link_service.update_link("dated", LinkUpdate(remove_expiry=True), owner_id="alice")

    assert updated.expires_at is None
    assert (await link_service.lookup("dated")).expires_at is None


@pytest.mark.asyncio
async def test_wrong_password_is_reported_as_incorrect(link_service: LinkService) -> None:
    await link_service.create_link(LinkCreate(url="https://example.com", custom_alias="pw", password="p1"))

    with pytest.raises(PasswordRequired):
        await link_service.resolve_target("pw")
    with pytest.raises(PasswordIncorrect) as exc_info:
        await link_service.resolve_target("pw", password="p2")
    assert exc_info.value.message == "Password incorrect"
    _, target = await link_service.resolve_target("pw", password="p1")
    assert target == "https://example.com"
