"""
api/main.py -- FastAPI application entry point for the mediashare identity service.

Exposes registration and session management over HTTP. All business rules
live in auth/service.py; this module only assembles collaborators and maps
errors onto the JSON envelope.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for allowed browser origins
  2. log_requests       -- method, path, status, latency per request

Lifespan builds the object graph once at startup: Settings -> Engine ->
UserStore + RefreshTokenStore -> TokenIssuer + PasswordHasher + PasswordPolicy
-> SessionService. The signing secret goes straight from Settings into the
TokenIssuer constructor; nothing else holds it.

The expired-session sweep is not scheduled here. Run `python main.py
purge-sessions` from cron or a job scheduler.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError
from auth.events import LoggingEventPublisher
from auth.passwords import PasswordHasher, PasswordPolicy
from auth.service import SessionService
from auth.store import RefreshTokenStore, UserStore, open_engine
from auth.tokens import TokenIssuer
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("mediashare.api")


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def build_session_service(settings: Settings, engine=None) -> SessionService:
    """Wire a SessionService from settings.

    engine may be passed in to share an existing database (tests, CLI);
    otherwise one is opened from settings.database_url.
    """
    if engine is None:
        engine = open_engine(settings.database_url, timeout=settings.database_timeout_seconds)
    policy = PasswordPolicy(
        min_length=settings.password_min_length,
        max_length=settings.password_max_length,
        require_upper=settings.password_require_upper,
        require_lower=settings.password_require_lower,
        require_digit=settings.password_require_digit,
        require_symbol=settings.password_require_symbol,
    )
    return SessionService(
        users=UserStore(engine),
        refresh_tokens=RefreshTokenStore(engine),
        issuer=TokenIssuer(
            settings.secret_key,
            access_ttl=settings.access_token_ttl,
            refresh_ttl=settings.refresh_token_ttl,
        ),
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        policy=policy,
        publisher=LoggingEventPublisher() if settings.log_session_events else None,
    )


# ---------------------------------------------------------------------------
# Lifespan -- build the object graph once, release the engine on exit
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the session service on startup; dispose the engine on shutdown."""
    logger.info("mediashare identity API starting up")
    service = build_session_service(get_settings())
    app.state.session_service = service
    logger.info("Auth initialized (users=%d)", service.users.count())

    yield

    service.users.engine.dispose()
    logger.info("mediashare identity API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="mediashare identity API",
    description="Registration, login, and revocable sessions for the media-sharing backend.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Logs method, path, status, and latency. Never logs headers or bodies --
# they carry passwords and tokens.
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


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves as the same ErrorResponse envelope: clients branch on
# error.code and never need the status code to pick a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth error taxonomy onto HTTP.

    exc.detail (e.g. which token check failed) stays server-side; only
    WeakPassword exposes its rule name, which the client needs to fix input.
    """
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=exc.code,
                message=exc.message,
                detail=getattr(exc, "rule", None),
            )
        ).model_dump(),
    )
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body fails validation.

    Only field locations and messages are echoed back -- never the submitted
    input, which may be a password.
    """
    fields = ", ".join(".".join(str(p) for p in err.get("loc", ())) for err in exc.errors())
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=fields or None,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it -- str(dict) produces a Python repr,
    not JSON.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors (including database failures).

    The raw exception goes to the server log only, never to the response body.
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
# Lives on the app rather than the auth router; it reports on the database
# the whole service depends on, not on any one route group.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    components = {"app": "ok"}
    try:
        service: SessionService = request.app.state.session_service
        components["database"] = "ok" if service.users.ping() else "error"
    except SQLAlchemyError:
        logger.exception("Health check database probe failed")
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
