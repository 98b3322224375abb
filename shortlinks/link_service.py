"""Link Service Layer - Core Business Logic

This module ties allocation, caching, access control and click recording
together behind the operations the HTTP routes (and any embedding
collaborator) call.

Architecture Overview
=====================
::
    ┌──────────────────────────────────────────────────────────────────┐
    │                          LinkService                             │
    │  ┌──────────────┐ ┌──────────────┐ ┌────────────┐ ┌────────────┐ │
    │  │CodeAllocator │ │ResolutionCache│ │ AccessGate │ │ClickRecorder│ │
    │  │ • random     │ │ • memory/redis│ │ • active   │ │ • queue     │ │
    │  │ • alias      │ │ • invalidate  │ │ • expiry   │ │ • enrich    │ │
    │  │ • sequential │ │               │ │ • password │ │ • sink      │ │
    │  └──────┬───────┘ └──────┬───────┘ └────────────┘ └────────────┘ │
    └─────────┼────────────────┼───────────────────────────────────────┘
              ▼                ▼
    ┌─────────────────────────────────┐
    │  LinkStore (PostgreSQL)         │
    └─────────────────────────────────┘

Redirect Flow
-------------
::
    ┌─────────────┐
    │ GET /r/:code│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ cache       │── miss ──▶ LinkStore.find_by_code
    │ resolve     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ AccessGate  │── denial ──▶ 400 / 410 / 403
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ recorder    │ (queued, not awaited)
    │ .record()   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ 302 Location│
    └─────────────┘

Mutation Flow
-------------
::
    load row ─▶ ownership check ─▶ apply ─▶ commit ─▶ cache.invalidate ─▶ return

Usage Examples
==============
```python
@router.get("/r/{short_code}")
async def redirect_to_target(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> RedirectResponse:
    target = await service.redirect(short_code, ctx.raw_visit())
    return RedirectResponse(url=target, status_code=302)
```
"""

import datetime
import time
from typing import TYPE_CHECKING

from prometheus_client import Counter, Histogram

from shortlinks.access import AccessGate, hash_password
from shortlinks.allocator import CodeAllocator
from shortlinks.cache import ResolutionCache
from shortlinks.enums import RequestStatus
from shortlinks.exceptions import Forbidden, LinkNotFound, ShortLinkError
from shortlinks.models import ShortLink
from shortlinks.recorder import ClickRecorder
from shortlinks.schemas import CachedLink, LinkCreate, LinkUpdate, PreviewResponse, RawVisit
from shortlinks.store import LinkStore

if TYPE_CHECKING:
    from shortlinks.dependencies import RequestContext

__all__ = ["LinkService"]


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

LINK_CREATION_REQUESTS_TOTAL = Counter(
    "shortlinks_creation_requests_total",
    "Total link creation requests",
    ["status"],
)
REDIRECT_REQUESTS_TOTAL = Counter(
    "shortlinks_redirect_requests_total",
    "Total redirect resolutions by outcome",
    ["status", "reason"],
)
LOOKUP_DURATION = Histogram(
    "shortlinks_lookup_duration_seconds",
    "Time taken to resolve and authorize a short code",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)


# ============================================================================
# CORE SERVICE CLASS
# ============================================================================


class LinkService:
    """Redirect resolution, code allocation and cache-safe link mutations.

    Example:
        >>> service = LinkService.from_context(ctx)
        >>> link = await service.create_link(LinkCreate(url="https://example.com"), owner_id="u1")
        >>> await service.redirect(link.short_code, RawVisit(ip_address="203.0.113.7"))
        'https://example.com'
    """

    def __init__(
        self,
        store: LinkStore,
        cache: ResolutionCache,
        gate: AccessGate,
        allocator: CodeAllocator,
        recorder: ClickRecorder,
        logger,
        default_expiration_days: int = 0,
    ) -> None:
        self._store = store
        self._cache = cache
        self._gate = gate
        self._allocator = allocator
        self._recorder = recorder
        self._logger = logger
        self._default_expiration_days = default_expiration_days

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "LinkService":
        """Build a service bound to the request's database session and the shared components."""
        store = LinkStore(ctx.database)
        manager = ctx.service_manager
        allocator = CodeAllocator(
            store.exists_by_code,
            strategy=ctx.settings.CODE_STRATEGY,
            length=ctx.settings.SHORT_CODE_LENGTH,
            min_width=ctx.settings.SEQUENTIAL_CODE_MIN_WIDTH,
            max_attempts=ctx.settings.CODE_MAX_ATTEMPTS,
            sequence=manager.sequence,
        )
        return cls(
            store=store,
            cache=manager.cache,
            gate=manager.gate,
            allocator=allocator,
            recorder=manager.recorder,
            logger=ctx.logger,
            default_expiration_days=ctx.settings.DEFAULT_EXPIRATION_DAYS,
        )

    # ========================================================================
    # RESOLUTION
    # ========================================================================

    async def lookup(self, short_code: str) -> CachedLink:
        return await self._cache.resolve(short_code, self._load)

    async def resolve_target(self, short_code: str, password: str | None = None) -> tuple[CachedLink, str]:
        """Resolve a code and run the access policy; raises a ShortLinkError on any denial."""
        start_time = time.perf_counter()
        try:
            link = await self.lookup(short_code)
            target = self._gate.authorize(link, password)
        except ShortLinkError as exc:
            status = RequestStatus.NOT_FOUND if isinstance(exc, LinkNotFound) else RequestStatus.DENIED
            REDIRECT_REQUESTS_TOTAL.labels(status=status, reason=type(exc).__name__).inc()
            self._logger.info(f"Resolution denied for {short_code}: {exc.message}")
            raise
        finally:
            LOOKUP_DURATION.observe(time.perf_counter() - start_time)

        REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, reason="").inc()
        return link, target

    async def redirect(self, short_code: str, visit: RawVisit, password: str | None = None) -> str:
        """Resolve, authorize and queue the visit. The visit is recorded after this returns."""
        link, target = await self.resolve_target(short_code, password)
        self._recorder.record(link, visit)
        self._logger.info(f"Redirecting {short_code} to {target}")
        return target

    async def is_password_protected(self, short_code: str) -> bool:
        link = await self.lookup(short_code)
        return link.is_password_protected

    async def preview(self, short_code: str) -> PreviewResponse:
        """Link details without authorization or visit recording."""
        link = await self.lookup(short_code)
        return PreviewResponse(
            short_code=link.short_code,
            original_url=link.original_url,
            title=link.title or "",
            description=link.description or "",
            is_password_protected=link.is_password_protected,
            visit_count=link.visit_count,
            created_at=link.created_at,
        )

    async def is_owned_by(self, short_code: str, owner_id: str | None) -> bool:
        return await self._store.is_owned_by(short_code, owner_id)

    # ========================================================================
    # ALLOCATION
    # ========================================================================

    async def create_link(self, payload: LinkCreate, owner_id: str | None = None) -> ShortLink:
        expires_at = payload.expires_at
        if expires_at is None and self._default_expiration_days > 0:
            expires_at = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(
                days=self._default_expiration_days
            )
        password_hash = hash_password(payload.password) if payload.password else None

        async def insert(short_code: str) -> ShortLink:
            return await self._store.insert(
                ShortLink(
                    short_code=short_code,
                    original_url=payload.url,
                    custom_alias=bool(payload.custom_alias),
                    owner_id=owner_id,
                    title=payload.title,
                    description=payload.description,
                    is_active=True,
                    expires_at=expires_at,
                    password_hash=password_hash,
                    visit_count=0,
                )
            )

        try:
            link = await self._allocator.claim(payload.custom_alias, insert)
        except ShortLinkError as exc:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR).inc()
            self._logger.warning(f"Link creation failed: {exc.message}")
            raise

        LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Link created: {link.short_code} -> {link.original_url} by owner: {owner_id}")
        return link

    # ========================================================================
    # MUTATIONS (each one invalidates before returning)
    # ========================================================================

    async def update_link(self, short_code: str, payload: LinkUpdate, owner_id: str | None) -> ShortLink:
        link = await self._owned_row(short_code, owner_id)

        if payload.url is not None:
            link.original_url = payload.url
        if payload.title is not None:
            link.title = payload.title
        if payload.description is not None:
            link.description = payload.description
        if payload.expires_at is not None:
            link.expires_at = payload.expires_at
        if payload.remove_expiry:
            link.expires_at = None
        if payload.is_active is not None:
            link.is_active = payload.is_active
        if payload.password:
            link.password_hash = hash_password(payload.password)
        if payload.remove_password:
            link.password_hash = None

        try:
            link = await self._store.save(link)
        finally:
            await self._cache.invalidate(short_code)
        self._logger.info(f"Link updated: {short_code} by owner: {owner_id}")
        return link

    async def delete_link(self, short_code: str, owner_id: str | None) -> None:
        await self._owned_row(short_code, owner_id)
        try:
            await self._store.soft_delete(short_code)
        finally:
            await self._cache.invalidate(short_code)
        self._logger.info(f"Link deleted: {short_code} by owner: {owner_id}")

    async def assign_image_reference(self, short_code: str, image_ref: str) -> ShortLink:
        link = await self._store.find_by_code(short_code)
        if link is None:
            raise LinkNotFound(short_code)
        link.image_ref = image_ref
        try:
            link = await self._store.save(link)
        finally:
            await self._cache.invalidate(short_code)
        return link

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _load(self, short_code: str) -> CachedLink | None:
        row = await self._store.find_by_code(short_code)
        return CachedLink.model_validate(row) if row is not None else None

    async def _owned_row(self, short_code: str, owner_id: str | None) -> ShortLink:
        link = await self._store.find_by_code(short_code)
        if link is None:
            raise LinkNotFound(short_code)
        # unowned links and anonymous callers never match
        if owner_id is None or link.owner_id is None or link.owner_id != owner_id:
            raise Forbidden("You don't have permission to access this link")
        return link
