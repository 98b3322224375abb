"""FastAPI application entry point for the shortlinks redirect service.

This module configures the FastAPI application with middleware, lifecycle
management, error rendering and route registration.

Application Lifecycle Diagram
=============================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ init_db()    │
    │ ServiceManager│
    │ .initialize()│
    └──────┬───────┘
           ▼
    ┌─────────────┐
    │ Admission   │ general bucket per client IP
    │ middleware  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Routes      │
    └──────┬──────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ shutdown:    │
    │ drain visits │
    │ close_db()   │
    └──────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortlinks.main:app --host 0.0.0.0 --port 8000

**Step 2 — Make API calls**::
    curl -X POST http://localhost:8000/api/links \
         -H "Content-Type: application/json" -H "X-Owner-Id: alice" \
         -d '{"url": "https://example.com", "custom_alias": "my-link"}'

    curl -i http://localhost:8000/r/my-link

Key Behaviours
===============
- Every response outside the exempt paths carries X-Rate-Limit-Remaining.
- A denied request gets 429 with X-Rate-Limit-Retry-After-Seconds and Retry-After.
- Domain errors render as ErrorResponse {status, error, message, path, timestamp}.
- Pending visits are drained before the process exits.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortlinks.config import get_settings
from shortlinks.database import close_db, init_db
from shortlinks.dependencies import _service_manager, get_service_manager
from shortlinks.exceptions import RateLimitExceeded, ShortLinkError
from shortlinks.ratelimit import resolve_client_ip
from shortlinks.routes import router
from shortlinks.schemas import ErrorResponse

settings = get_settings()

RATE_LIMIT_EXEMPT_PATHS = ("/docs", "/redoc", "/openapi.json", "/metrics", "/health")


def _retry_headers(retry_after_seconds: int) -> dict[str, str]:
    return {
        "X-Rate-Limit-Retry-After-Seconds": str(retry_after_seconds),
        "Retry-After": str(retry_after_seconds),
    }


def _error_body(status: int, error: str, message: str, path: str) -> dict:
    return ErrorResponse(status=status, error=error, message=message, path=path).model_dump(mode="json")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Short link redirect service",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def admission_control(request: Request, call_next):
    if request.url.path.startswith(RATE_LIMIT_EXEMPT_PATHS):
        return await call_next(request)

    manager = await get_service_manager()
    decision = manager.rate_limiters.general.try_acquire(resolve_client_ip(request))
    if not decision.allowed:
        manager.logger.warning(f"Rate limit exceeded for {resolve_client_ip(request)} on {request.url.path}")
        return JSONResponse(
            status_code=429,
            content=_error_body(
                429,
                RateLimitExceeded.error,
                "Too many requests. Please try again later.",
                request.url.path,
            ),
            headers=_retry_headers(decision.retry_after_seconds),
        )

    response = await call_next(request)
    response.headers["X-Rate-Limit-Remaining"] = str(decision.remaining)
    return response


@app.exception_handler(ShortLinkError)
async def handle_short_link_error(request: Request, exc: ShortLinkError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = _retry_headers(exc.retry_after_seconds)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.status_code, exc.error, exc.message, request.url.path),
        headers=headers,
    )


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
