"""Shared pytest fixtures for API, database, and component tests."""

import os

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("CODE_STRATEGY", "random")
os.environ.setdefault("VISIT_SINK", "database")
os.environ.setdefault("GEO_API_ENABLED", "false")
os.environ.setdefault("DEFAULT_EXPIRATION_DAYS", "0")

import datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from shortlinks.database import Base, get_db
from shortlinks.dependencies import ServiceManager, _service_manager
from shortlinks.main import app
from shortlinks.schemas import CachedLink


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shortlinks.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def manager(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[ServiceManager, None]:
    await _service_manager.initialize(session_factory=session_factory)
    yield _service_manager
    await _service_manager.cleanup()


@pytest_asyncio.fixture(scope="function")
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    manager: ServiceManager,
) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_link():
    """Build a CachedLink snapshot without touching storage."""

    def _make(**overrides) -> CachedLink:
        now = datetime.datetime.now(datetime.timezone.utc)
        fields = {
            "id": 1,
            "short_code": "abc1234",
            "original_url": "https://example.com/landing",
            "created_at": now,
            "updated_at": now,
        }
        fields.update(overrides)
        return CachedLink(**fields)

    return _make
