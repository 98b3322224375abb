"""FastAPI route definitions for the shortlinks REST API.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   /api/links                 [strict bucket]
        ├─ LinkCreate (request body), X-Owner-Id header
        └─ LinkResponse (201) or 400/409/422/429/503

    PATCH  /api/links/:code           [strict bucket]
        └─ LinkResponse (200) or 403/404

    DELETE /api/links/:code           [strict bucket]
        └─ 204 or 403/404

    GET    /r/:code                   [redirect bucket]
        └─ 302 Location or 400/403/404/410

    POST   /r/:code/verify            [redirect bucket]
        ├─ PasswordVerify (request body)
        └─ VerifyResponse (200) or 400/403/404/410

    GET    /r/:code/preview
        └─ PreviewResponse (200) or 404

Request Flow Diagram
====================
::
    ┌─────────────┐
    │  HTTP       │
    │  Request    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Admission   │── denied ──▶ 429
    │ middleware  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Route bucket│── denied ──▶ 429
    │ dependency  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ LinkService │── ShortLinkError ──▶ exception handler
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ HTTP        │
    │ Response    │
    └─────────────┘

Key Behaviours
===============
- Every domain error is raised as a ShortLinkError and rendered by one handler.
- Redirects are 302 so every visit comes back through the service.
- The password verification endpoint returns the target as JSON instead of
  redirecting, for client-side navigation.
- Owner identity comes from the X-Owner-Id header set by the upstream auth layer.
"""

from fastapi import APIRouter, Depends, Response
from fastapi.responses import RedirectResponse
from sqlalchemy import text

from shortlinks.dependencies import (
    RequestContext,
    ServiceManager,
    get_link_service,
    get_request_context,
    get_service_manager,
    require_redirect_quota,
    require_strict_quota,
)
from shortlinks.enums import HealthStatus
from shortlinks.link_service import LinkService
from shortlinks.models import ShortLink
from shortlinks.schemas import (
    HealthResponse,
    LinkCreate,
    LinkResponse,
    LinkUpdate,
    PasswordVerify,
    PreviewResponse,
    VerifyResponse,
)

__all__ = ["router"]

router = APIRouter()


def _link_response(link: ShortLink, base_url: str) -> LinkResponse:
    return LinkResponse(
        id=link.id,
        short_code=link.short_code,
        original_url=link.original_url,
        short_url=f"{base_url}/r/{link.short_code}",
        custom_alias=link.custom_alias,
        owner_id=link.owner_id,
        is_active=link.is_active,
        is_password_protected=link.is_password_protected,
        expires_at=link.expires_at,
        visit_count=link.visit_count,
        image_ref=link.image_ref,
        created_at=link.created_at,
        updated_at=link.updated_at,
    )


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    ctx: RequestContext = Depends(get_request_context),
    manager: ServiceManager = Depends(get_service_manager),
) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await ctx.database.execute(text("SELECT 1"))
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        if not await manager.cache.ping():
            cache_status = HealthStatus.UNHEALTHY
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post(
    "/api/links",
    response_model=LinkResponse,
    status_code=201,
    tags=["links"],
    dependencies=[Depends(require_strict_quota)],
)
async def create_link(
    payload: LinkCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    ctx.add_tag("link_creation")
    link = await service.create_link(payload, owner_id=ctx.owner_id)
    ctx.logger.info(
        f"Link created: {link.short_code}",
        extra={"operation": "create_link", "short_code": link.short_code, "duration_ms": ctx.get_duration()},
    )
    return _link_response(link, ctx.settings.BASE_URL)


@router.patch(
    "/api/links/{short_code}",
    response_model=LinkResponse,
    tags=["links"],
    dependencies=[Depends(require_strict_quota)],
)
async def update_link(
    short_code: str,
    payload: LinkUpdate,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    link = await service.update_link(short_code, payload, owner_id=ctx.owner_id)
    return _link_response(link, ctx.settings.BASE_URL)


@router.delete(
    "/api/links/{short_code}",
    status_code=204,
    tags=["links"],
    dependencies=[Depends(require_strict_quota)],
)
async def delete_link(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> Response:
    await service.delete_link(short_code, owner_id=ctx.owner_id)
    return Response(status_code=204)


@router.get("/r/{short_code}", tags=["redirect"], dependencies=[Depends(require_redirect_quota)])
async def redirect_to_target(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> RedirectResponse:
    ctx.add_tag("redirect")
    target = await service.redirect(short_code, ctx.raw_visit())
    ctx.logger.info(
        f"Redirect successful: {short_code} -> {target}",
        extra={"operation": "redirect", "short_code": short_code, "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(url=target, status_code=302)


@router.post(
    "/r/{short_code}/verify",
    response_model=VerifyResponse,
    tags=["redirect"],
    dependencies=[Depends(require_redirect_quota)],
)
async def verify_and_redirect(
    short_code: str,
    payload: PasswordVerify,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> VerifyResponse:
    ctx.add_tag("verify")
    target = await service.redirect(short_code, ctx.raw_visit(), password=payload.password)
    return VerifyResponse(redirect_url=target)


@router.get("/r/{short_code}/preview", response_model=PreviewResponse, tags=["redirect"])
async def preview_link(
    short_code: str,
    service: LinkService = Depends(get_link_service),
) -> PreviewResponse:
    return await service.preview(short_code)
