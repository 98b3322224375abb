"""Durable storage for short links, backed by SQLAlchemy async sessions.

The store is the authority on code uniqueness: ``insert`` surfaces a unique
constraint violation as ``CodeCollision`` instead of overwriting, and the
allocator treats that as a signal to draw another code.

Deleted links are soft-deleted. The row keeps its short code forever so the
code can never be handed out again, but ``find_by_code`` no longer sees it.
"""

import datetime

from prometheus_client import Counter
from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.exceptions import CodeCollision
from shortlinks.models import ShortLink

__all__ = ["LinkStore"]

DATABASE_READS_TOTAL = Counter(
    "shortlinks_database_reads_total",
    "Total database read operations",
)
DATABASE_WRITES_TOTAL = Counter(
    "shortlinks_database_writes_total",
    "Total database write operations",
)


class LinkStore:
    def __init__(self, db: AsyncSession) -> None:
        assert db is not None, "db must not be None"
        self._db = db

    async def find_by_code(self, short_code: str) -> ShortLink | None:
        result = await self._db.execute(
            select(ShortLink).where(ShortLink.short_code == short_code, ShortLink.deleted_at.is_(None))
        )
        DATABASE_READS_TOTAL.inc()
        return result.scalar_one_or_none()

    async def exists_by_code(self, short_code: str) -> bool:
        """True for any row holding the code, deleted or not."""
        result = await self._db.execute(select(exists().where(ShortLink.short_code == short_code)))
        DATABASE_READS_TOTAL.inc()
        return bool(result.scalar())

    async def is_owned_by(self, short_code: str, owner_id: str | None) -> bool:
        link = await self.find_by_code(short_code)
        if link is None or owner_id is None or link.owner_id is None:
            return False
        return link.owner_id == owner_id

    async def insert(self, link: ShortLink) -> ShortLink:
        self._db.add(link)
        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            raise CodeCollision(link.short_code) from exc
        DATABASE_WRITES_TOTAL.inc()
        await self._db.refresh(link)
        return link

    async def save(self, link: ShortLink) -> ShortLink:
        """Persist in-place changes to an already loaded link."""
        self._db.add(link)
        await self._db.commit()
        DATABASE_WRITES_TOTAL.inc()
        await self._db.refresh(link)
        return link

    async def soft_delete(self, short_code: str) -> bool:
        result = await self._db.execute(
            update(ShortLink)
            .where(ShortLink.short_code == short_code, ShortLink.deleted_at.is_(None))
            .values(deleted_at=datetime.datetime.now(datetime.timezone.utc), is_active=False)
        )
        await self._db.commit()
        DATABASE_WRITES_TOTAL.inc()
        return result.rowcount > 0

    async def increment_visits(self, short_code: str, delta: int = 1) -> None:
        assert isinstance(delta, int) and delta > 0, f"delta must be positive int, got {delta!r}"
        await self._db.execute(
            update(ShortLink)
            .where(ShortLink.short_code == short_code)
            .values(visit_count=ShortLink.visit_count + delta)
        )
        await self._db.commit()
        DATABASE_WRITES_TOTAL.inc()
