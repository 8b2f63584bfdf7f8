"""
api/main.py -- FastAPI application entry point for authcore.

Exposes the credential core over HTTP: registration, login, token refresh,
logout, password change and session revocation.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan validates settings and builds the stores, codec, credential service,
audit sink and AuthFlows on app.state at startup, and closes the stores on
shutdown. Invalid settings (missing or shared secrets) abort startup.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.audit import LoggingAuditSink
from auth.errors import AuthError, ErrorKind
from auth.flows import AuthFlows
from auth.passwords import CredentialService
from auth.ports import AuditSink
from auth.store import RefreshTokenStore, UserStore
from auth.tokens import TokenCodec, utc_now
from core.config import Settings, get_settings

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authcore.api")


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def init_state(
    app: FastAPI,
    settings: Settings,
    user_store: UserStore,
    refresh_store: RefreshTokenStore,
    audit: AuditSink | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> None:
    """Attach the auth collaborators to app.state.

    Routes and dependencies read everything from app.state, so tests call
    this with in-memory stores and a MemoryAuditSink instead of running the
    production lifespan.
    """
    app.state.settings = settings
    app.state.user_store = user_store
    app.state.refresh_store = refresh_store
    app.state.codec = TokenCodec.from_settings(settings, clock=clock)
    app.state.credentials = CredentialService(cost=settings.password_hash_cost)
    app.state.audit = audit if audit is not None else LoggingAuditSink()
    app.state.flows = AuthFlows(
        users=user_store,
        refresh_tokens=refresh_store,
        credentials=app.state.credentials,
        codec=app.state.codec,
        audit=app.state.audit,
    )


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Settings first -- a bad secret configuration must stop the process
         before any store is opened.
      2. Stores second -- both create their tables on first connect.
      3. Flows last -- they hold references to everything above.
    """
    # Startup
    logger.info("authcore API starting up")
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    user_store = UserStore(db_url=settings.database_url)
    refresh_store = RefreshTokenStore(db_url=settings.database_url)
    init_state(app, settings, user_store, refresh_store)
    purged = refresh_store.purge_expired()
    logger.info(
        "Auth initialized (access_ttl=%ds, refresh_ttl=%ds, expired refresh tokens purged=%d)",
        settings.access_token_ttl,
        settings.refresh_token_ttl,
        purged,
    )
    if not user_store.has_users():
        logger.warning("No users exist yet -- create an admin with: python main.py create-user --role ADMIN")

    yield

    # Shutdown
    refresh_store.close()
    user_store.close()
    logger.info("authcore API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="authcore API",
    description="Identity credential issue, verification, rotation and revocation.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette (FastAPI's foundation) wraps middleware in reverse registration
# order at the ASGI level, but add_middleware() calls are applied outermost-
# first from the caller's perspective. Register in the order you want the
# request to encounter them: CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time is captured around call_next so latency is
# reported on every response.
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
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render a typed auth failure.

    code is the AuthReason value; the message comes from the error itself and
    is safe to show. Internal errors are logged with traceback and replaced by
    the generic 500 body.
    """
    if exc.kind is ErrorKind.INTERNAL:
        logger.error("Internal auth error on %s %s", request.method, request.url.path, exc_info=exc)
        return _error_response(500, "internal_error", "An unexpected error occurred.")

    response = _error_response(exc.status_code, exc.reason.value, exc.message)
    if exc.kind is ErrorKind.UNAUTHENTICATED:
        response.headers["WWW-Authenticate"] = "Bearer"
        response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with structured error when a request body or parameter fails validation."""
    return _error_response(400, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Store failures surface as a generic 500; the request is not retried."""
    logger.error("Store failure on %s %s", request.method, request.url.path, exc_info=exc)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body. The client receives only a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    components = {"app": "ok", "database": "ok"}
    try:
        request.app.state.user_store.ping()
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable", exc_info=True)
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=API_VERSION, components=components)
