"""
api/main.py -- FastAPI application entry point for the Orbit access service.

Exposes the CLI login flow, room tokens, waitlist status, room presence, and
the operator waitlist routes over HTTP.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (blob store, directory, session store, provider,
sweep task) and shutdown (cancel sweep task, close the blob store)
symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.cli_auth import router as cli_auth_router
from api.routes.v1.orbit import router as orbit_router
from auth.flow import CLIAuthorizationFlow
from auth.provider import GitHubProvider
from auth.sessions import InMemoryAuthSessionStore
from core.config import get_settings
from core.errors import BackendError, OrbitError, UpstreamError
from directory.rooms import RoomSessionTracker
from directory.store import UserDirectory
from storage.keys import KeyLayout
from storage.sql import SqlBlobStore

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("orbit.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval: float) -> None:
    """Drop expired CLI authorization sessions every `interval` seconds.

    Expiry is also enforced lazily on read, so a missed sweep only delays
    memory reclamation. CancelledError from task.cancel() during shutdown
    propagates out of asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        removed = await app.state.auth_sessions.sweep()
        if removed:
            logger.info("Swept %d expired CLI auth session(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Blob store first -- the directory and room tracker wrap it.
      2. Session store and provider -- the flow needs both, plus the directory.
      3. Sweep task last -- references app.state.auth_sessions.
    """
    logger.info("Orbit API starting up")
    app.state.blob_store = SqlBlobStore(_settings.blob_store_url)
    keys = KeyLayout(prefix=_settings.blob_key_prefix)
    app.state.directory = UserDirectory(app.state.blob_store, keys=keys)
    app.state.rooms = RoomSessionTracker(app.state.blob_store, keys=keys)
    logger.info("Blob store initialized (prefix=%s)", keys.prefix)

    app.state.auth_sessions = InMemoryAuthSessionStore(ttl_seconds=_settings.cli_session_ttl_seconds)
    app.state.provider = GitHubProvider.from_settings(_settings)
    app.state.signup_provider = GitHubProvider.from_settings(_settings, redirect_uri=_settings.signup_callback_url)
    if not app.state.provider.configured:
        logger.warning("GITHUB_CLIENT_ID/SECRET not set -- CLI login will fail at token exchange")
    app.state.cli_flow = CLIAuthorizationFlow(
        app.state.auth_sessions,
        app.state.provider,
        directory=app.state.directory,
    )
    app.state.sweep_task = asyncio.create_task(_sweep_loop(app, _settings.cli_session_sweep_seconds))

    yield

    app.state.sweep_task.cancel()
    app.state.blob_store.close()
    logger.info("Orbit API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Orbit API",
    description="CLI login, waitlist, room presence, and room tokens for Orbit collaboration.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-Admin-Secret"],
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

app.include_router(cli_auth_router, prefix="/api/v1", tags=["CLI Auth"])
app.include_router(orbit_router, prefix="/api/v1", tags=["Orbit"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly. The CLI start/token routes build their flat OAuth errors
# themselves and never reach these handlers for protocol errors.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error and Retry-After."""
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


@app.exception_handler(OrbitError)
async def orbit_error_handler(request: Request, exc: OrbitError) -> JSONResponse:
    """Map the domain taxonomy onto HTTP.

    Backend and upstream failures answer with their class-level generic
    message; the specific cause goes to the log only.
    """
    if isinstance(exc, (BackendError, UpstreamError)):
        logger.error("%s on %s %s", exc.__class__.__name__, request.method, request.url.path, exc_info=exc)
        message = type(exc).message
    else:
        message = exc.message
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=message)).model_dump(exclude_none=True),
    )


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
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a {"code", "message"} dict as
    detail; use it directly as the error field.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
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


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
