"""
api/main.py -- FastAPI application entry point for the BLT API.

Read-mostly JSON API over the BLT bug-tracker database: issues, domains,
organizations, hunts, users, leaderboards and platform statistics.

Run with:      uvicorn api.main:app --reload
Configure via: DATABASE_URL, DEBUG, ALLOWED_ORIGINS, RATE_LIMIT_* (see core/config.py)

Request path (outermost to innermost):
  1. CORSMiddleware      -- CORS headers for allowed browser origins
  2. log_requests        -- access log line with latency
  3. admit_requests      -- per-client rate limit; rejects with 429 before any
                            credential lookup or query runs
                            (CORS preflights are answered above and not counted)
  4. route dependencies  -- optional or mandatory token resolution
  5. route handler       -- repository calls, ranking, pagination envelope

Lifespan creates the tracker store, credential store and admission
controller on startup and disposes the engines on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException

from api.limiter import Admission, AdmissionController, client_id_from
from api.models import ApiIndexResponse, ErrorDetail, ErrorResponse, HealthResponse
from api.routes.domains import router as domains_router
from api.routes.hunts import router as hunts_router
from api.routes.issues import router as issues_router
from api.routes.leaderboard import router as leaderboard_router
from api.routes.organizations import router as organizations_router
from api.routes.stats import router as stats_router
from api.routes.users import router as users_router
from auth.store import CredentialStore
from core.config import get_settings
from core.errors import ApiError, RateLimitError
from tracker.store import TrackerStore

API_NAME = "BLT API"
API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("bltapi.api")

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. Engines connect lazily, so startup never blocks on the database.
    """
    settings = get_settings()
    logger.info("BLT API starting up")
    app.state.store = TrackerStore(settings.database_url)
    app.state.credential_store = CredentialStore(settings.database_url)
    app.state.limiter = AdmissionController(
        max_requests=settings.rate_limit_max_requests,
        window_ms=settings.rate_limit_window_ms,
    )
    logger.info(
        "Admission control: %d requests per %d ms",
        settings.rate_limit_max_requests,
        settings.rate_limit_window_ms,
    )

    yield

    app.state.store.close()
    app.state.credential_store.close()
    logger.info("BLT API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title=API_NAME,
    description="Bug reports, hunts, organizations and leaderboards from the BLT platform.",
    version=API_VERSION,
    lifespan=lifespan,
)


def _error_body(code: str, message: str, detail: str | None = None) -> dict:
    return ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump()


def _rate_limit_headers(decision: Admission) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_epoch),
    }


# ---------------------------------------------------------------------------
# Admission control middleware
#
# Registered before log_requests, so it runs inside it: rejected requests are
# still logged. A rejection returns here; no credential lookup or store query
# happens for it.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def admit_requests(request: Request, call_next):
    limiter: AdmissionController = request.app.state.limiter
    decision = limiter.admit(client_id_from(request))
    headers = _rate_limit_headers(decision)
    if not decision.allowed:
        headers["Retry-After"] = str(decision.retry_after(limiter.now()))
        exc = RateLimitError("Too many requests.", decision.reset_at, f"Limit resets at {decision.reset_epoch}.")
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.code, exc.message, exc.detail),
            headers=headers,
        )
    response = await call_next(request)
    response.headers.update(headers)
    return response


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
        client_id_from(request),
    )
    return response


# ---------------------------------------------------------------------------
# CORS
#
# add_middleware() wraps everything registered so far, so CORS is added last
# to sit outermost: 429 rejections carry CORS headers too.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().origins,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
    max_age=3600,
)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(issues_router, prefix="/api/issues", tags=["Issues"])
app.include_router(users_router, prefix="/api/users", tags=["Users"])
app.include_router(domains_router, prefix="/api/domains", tags=["Domains"])
app.include_router(organizations_router, prefix="/api/organizations", tags=["Organizations"])
app.include_router(hunts_router, prefix="/api/hunts", tags=["Hunts"])
app.include_router(leaderboard_router, prefix="/api/leaderboard", tags=["Leaderboard"])
app.include_router(stats_router, prefix="/api/stats", tags=["Stats"])

ENDPOINTS = {
    "issues": "/api/issues",
    "users": "/api/users",
    "domains": "/api/domains",
    "organizations": "/api/organizations",
    "hunts": "/api/hunts",
    "leaderboard": "/api/leaderboard",
    "stats": "/api/stats",
}

# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the same ErrorResponse envelope so API clients can
# parse errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.code, exc.message, exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are a 400, not FastAPI's default 422."""
    return JSONResponse(
        status_code=400,
        content=_error_body("bad_request", "Request validation failed.", str(exc.errors())),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Framework-raised HTTP errors (unknown route, wrong method) in the shared envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(f"http_{exc.status_code}", str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Database failures: full detail to the log, a generic message to the client."""
    logger.exception("Store error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=_error_body("internal_error", "An unexpected error occurred."),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=_error_body("internal_error", "An unexpected error occurred."),
    )


# ---------------------------------------------------------------------------
# Service endpoints
# ---------------------------------------------------------------------------


@app.get("/", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    try:
        reachable = await run_in_threadpool(request.app.state.store.ping)
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        reachable = False
    return HealthResponse(name=API_NAME, version=API_VERSION, database="ok" if reachable else "unavailable")


@app.get("/api", tags=["Health"])
async def api_index() -> ApiIndexResponse:
    """List the resource collections this API serves."""
    return ApiIndexResponse(version=API_VERSION, endpoints=ENDPOINTS)
