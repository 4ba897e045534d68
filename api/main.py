"""
api/main.py -- FastAPI application entry point for Newsdesk.

Run with:      python main.py serve
               uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (stores, media uploader, one AuthGate per account
kind) and shutdown (close DB engines) symmetrically.
"""

from __future__ import annotations

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
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.accounts import PATH_BY_KIND, build_account_router
from api.routes.v1.categories import router as categories_router
from api.routes.v1.news import router as news_router
from auth.dependencies import require_admin
from auth.gate import AuthGate
from auth.lockout import LockoutPolicy
from auth.models import AccountKind
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from cms.errors import Conflict, ContentError, EntityNotFound
from cms.store import ContentStore
from core.config import get_settings
from media.uploader import MediaUploader, MediaUploadError

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("newsdesk.api")

_settings = get_settings()


def build_gates(store: AccountStore, issuer: TokenIssuer, policy: LockoutPolicy) -> dict[AccountKind, AuthGate]:
    """One gate per account kind, sharing the store, issuer and lockout policy."""
    return {kind: AuthGate(store, issuer, policy, kind) for kind in AccountKind}


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.

    Startup order matters: the account store must exist before the gates
    that wrap it.
    """
    logger.info("Newsdesk API starting up")
    app.state.account_store = AccountStore(_settings.database_url)
    app.state.content = ContentStore(_settings.database_url)
    app.state.media = MediaUploader.from_settings(_settings)
    policy = LockoutPolicy.from_settings(_settings)
    app.state.gates = build_gates(app.state.account_store, TokenIssuer.from_settings(_settings), policy)
    logger.info(
        "Auth initialized (lockout after %d failures for %s, admin present=%s)",
        policy.threshold,
        policy.duration,
        app.state.account_store.has_accounts(AccountKind.admin),
    )

    yield

    app.state.account_store.close()
    app.state.content.close()
    logger.info("Newsdesk API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Newsdesk API",
    description="Content management for news: admins, authors, users, categories and news posts.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced below by admin-only equivalents.
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
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler; latency is measured around call_next.
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

for _kind, _path in PATH_BY_KIND.items():
    app.include_router(build_account_router(_kind), prefix=f"/api/v1/{_path}", tags=[_path.capitalize()])
app.include_router(categories_router, prefix="/api/v1", tags=["Categories"])
app.include_router(news_router, prefix="/api/v1", tags=["News"])


# ---------------------------------------------------------------------------
# Admin-only API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False, dependencies=[Depends(require_admin)])
async def docs():
    """Swagger UI -- requires an admin token."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Newsdesk API")


@app.get("/redoc", include_in_schema=False, dependencies=[Depends(require_admin)])
async def redoc():
    """ReDoc UI -- requires an admin token."""
    return get_redoc_html(openapi_url="/openapi.json", title="Newsdesk API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

_MEDIA_STATUS = {
    "unsupported_media_type": 415,
    "file_too_large": 413,
    "empty_file": 400,
    "media_unavailable": 503,
    "upload_failed": 502,
}


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(ContentError)
async def content_error_handler(request: Request, exc: ContentError) -> JSONResponse:
    """Map store-level category / news errors: not found 404, conflict 409, invalid 400."""
    if isinstance(exc, EntityNotFound):
        status = 404
    elif isinstance(exc, Conflict):
        status = 409
    else:
        status = 400
    return _error_response(status, exc.code, exc.message)


@app.exception_handler(MediaUploadError)
async def media_error_handler(request: Request, exc: MediaUploadError) -> JSONResponse:
    return _error_response(_MEDIA_STATUS.get(exc.code, 400), exc.code, exc.message)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail=ErrorDetail(...).model_dump()
    (a dict). When detail is already a structured dict, use it directly as the
    error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    response = _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit applied -- health checks from load balancers and monitoring
# systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Return API liveness, version and database reachability (503 if the DB is down)."""
    try:
        request.app.state.account_store.ping()
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        body = HealthResponse(status="degraded", version=VERSION, database="unavailable")
        return JSONResponse(status_code=503, content=body.model_dump())
    return JSONResponse(content=HealthResponse(version=VERSION).model_dump())
