"""
api/main.py -- FastAPI application entry point for MissionGuard.

Exposes the access-control and resource-governance guards over HTTP. Every
route composes the guards from auth/, access/, quota/, and ratelimit/ as an
ordered FastAPI dependency chain; each guard either passes or raises one
GuardError, which the handler below renders as the standard error envelope.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-IP route limits from api.limiter

Lifespan handles startup (stores, background writer, rate limiter, sweep
task) and shutdown (cancel sweep task, drain writer, close stores)
symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from access.teams import TeamStore
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.projects import router as projects_router
from api.routes.v1.quotas import router as quotas_router
from api.routes.v1.resources import router as resources_router
from api.routes.v1.sessions import router as sessions_router
from auth.dependencies import get_caller
from auth.models import CallerContext
from auth.store import UserStore
from core.background import BackgroundWriter
from core.config import get_settings
from core.errors import GuardError
from quota.store import QuotaStore
from ratelimit.limiter import RateLimiter
from ratelimit.store import RateLimitCache, RateLimitStore
from resources.store import ResourceStore

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("missionguard.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


def _sweep_once(app: FastAPI) -> None:
    """Evict stale rate-limit windows from the cache and purge old durable rows."""
    rate_limiter: RateLimiter = app.state.rate_limiter
    evicted = rate_limiter.sweep()
    purged = rate_limiter.purge_durable(_settings.rate_limit_retention_seconds)
    if evicted or purged:
        logger.info("Rate limit sweep: %d cached windows evicted, %d durable rows purged", evicted, purged)


async def _sweep_loop(app: FastAPI) -> None:
    """Run the rate-limit sweep every rate_limit_sweep_interval_seconds.

    Started in lifespan startup. CancelledError from task.cancel() during
    shutdown propagates out of asyncio.sleep and unwinds the coroutine. A
    failed sweep is logged and retried on the next tick.
    """
    while True:
        await asyncio.sleep(_settings.rate_limit_sweep_interval_seconds)
        try:
            await asyncio.to_thread(_sweep_once, app)
        except Exception:
            logger.exception("Rate limit sweep failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order:
      1. Stores -- every guard reads app.state.<store>.
      2. Background writer -- the rate limiter and API-key usage tracking
         hand writes to it.
      3. Rate limiter -- owns the in-process window cache.
      4. Sweep task last -- references app.state.rate_limiter.
    """
    logger.info("MissionGuard API starting up")
    db_url = _settings.database_url
    app.state.user_store = UserStore(db_url)
    app.state.resources = ResourceStore(db_url)
    app.state.teams = TeamStore(db_url)
    app.state.quotas = QuotaStore(db_url)
    app.state.rate_limit_store = RateLimitStore(db_url)
    logger.info("Stores initialized")

    app.state.background = BackgroundWriter(max_workers=_settings.background_workers)
    app.state.rate_limiter = RateLimiter(
        RateLimitCache(),
        durable=app.state.rate_limit_store,
        writer=app.state.background,
    )
    app.state.sweep_task = asyncio.create_task(_sweep_loop(app))

    yield

    # Shutdown
    app.state.sweep_task.cancel()
    app.state.background.shutdown(wait=True)
    app.state.rate_limit_store.close()
    app.state.quotas.close()
    app.state.teams.close()
    app.state.resources.close()
    app.state.user_store.close()
    logger.info("MissionGuard API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="MissionGuard API",
    description="Role resolution, ownership and team access, quotas, rate limits, and API keys.",
    version=__version__,
    lifespan=lifespan,
    # Disable built-in /docs and /redoc so we can add auth protection.
    # Auth-protected equivalents are registered below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(quotas_router, prefix="/api/v1", tags=["Quotas"])
app.include_router(sessions_router, prefix="/api/v1", tags=["Sessions"])
app.include_router(resources_router, prefix="/api/v1", tags=["Resources"])
app.include_router(projects_router, prefix="/api/v1", tags=["Projects"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(caller: CallerContext = Depends(get_caller)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="MissionGuard API")


@app.get("/redoc", include_in_schema=False)
async def redoc(caller: CallerContext = Depends(get_caller)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="MissionGuard API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {"error": {...}} envelope so API clients can
# parse errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(GuardError)
async def guard_error_handler(request: Request, exc: GuardError) -> JSONResponse:
    """Render any guard failure. Status, code, extra body fields, and headers travel on the exception."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.to_detail()},
        headers=exc.headers or None,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a per-IP slowapi route limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions.

    A dict detail is used directly as the error field; headers are passed through.
    """
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit applied.
# ---------------------------------------------------------------------------


def _database_ok(request: Request) -> bool:
    try:
        with request.app.state.user_store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Health check database probe failed: %s", exc)
        return False
    return True


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, current version, and a database probe."""
    database = "ok" if _database_ok(request) else "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=__version__,
        components={"app": "ok", "database": database},
    )
