"""
api/main.py -- FastAPI application entry point for PrepLog accounts.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware  -- adds CORS headers for the browser front-end origins
  2. log_requests    -- one log line per request with status and latency

Lifespan reads Settings once and wires the auth components into app.state:
  app.state.settings       -- core.config.Settings
  app.state.account_store  -- auth.store.AccountStore
  app.state.auth_service   -- auth.service.AuthService
Route handlers and dependencies only ever reach these through request.app.
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
from auth.errors import (
    AccountNotFoundError,
    AuthError,
    DeliveryError,
    DuplicateAccountError,
    EncodingError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    InvalidSessionError,
    PasswordMismatchError,
    ResetTokenExpiredError,
    ResetTokenMismatchError,
    SessionExpiredError,
    ValidationError,
)
from auth.passwords import PasswordHasher
from auth.service import AuthService, Mailer
from auth.store import AccountStore, CredentialStore
from auth.tokens import Clock, ResetTokenCodec, SessionIssuer, utcnow
from core.config import Settings, get_settings
from mailer.smtp import build_mailer

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("preplog.api")

# ---------------------------------------------------------------------------
# Error class -> HTTP status
#
# Looked up along the exception's MRO, so a subclass inherits its parent's
# status unless it has its own entry.
# ---------------------------------------------------------------------------

_ERROR_STATUS: dict[type[AuthError], int] = {
    ValidationError: 400,
    PasswordMismatchError: 400,
    InvalidOrExpiredTokenError: 400,
    ResetTokenMismatchError: 400,
    ResetTokenExpiredError: 400,
    InvalidCredentialsError: 401,
    InvalidSessionError: 401,
    SessionExpiredError: 401,
    AccountNotFoundError: 404,
    DuplicateAccountError: 409,
    EncodingError: 500,
    DeliveryError: 502,
    AuthError: 400,
}


def _status_for(exc: AuthError) -> int:
    for cls in type(exc).__mro__:
        if cls in _ERROR_STATUS:
            return _ERROR_STATUS[cls]
    return 500


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


def build_auth_service(
    settings: Settings,
    store: CredentialStore,
    mailer: Mailer,
    clock: Clock = utcnow,
) -> AuthService:
    """Assemble an AuthService from settings and the two external collaborators.

    Shared by the lifespan below and by the test fixtures, so tests exercise
    the same wiring as production.
    """
    return AuthService(
        store=store,
        mailer=mailer,
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        reset_codec=ResetTokenCodec(window_seconds=settings.reset_token_expire_seconds, clock=clock),
        sessions=SessionIssuer(
            secret_key=settings.secret_key,
            expire_seconds=settings.session_expire_seconds,
            clock=clock,
        ),
        clock=clock,
        reset_email_subject=settings.reset_email_subject,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the account store and AuthService on startup; close the store on shutdown."""
    logger.info("PrepLog API starting up")
    settings = get_settings()
    app.state.settings = settings
    app.state.account_store = AccountStore(settings.database_url)
    app.state.auth_service = build_auth_service(settings, app.state.account_store, build_mailer(settings))
    logger.info(
        "Auth initialized (session_expire=%ss, reset_window=%ss)",
        settings.session_expire_seconds,
        settings.reset_token_expire_seconds,
    )

    yield

    app.state.account_store.close()
    logger.info("PrepLog API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="PrepLog API",
    description="Accounts, sessions and self-service password reset for PrepLog.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


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


app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render a domain failure from auth/ with its mapped status code."""
    status = _status_for(exc)
    if status >= 500:
        logger.error("%s on %s %s", type(exc).__name__, request.method, request.url.path)
    response = JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or path params fail validation."""
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

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
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

    The raw exception goes to the log only, never to the response body.
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
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    try:
        database = "ok" if request.app.state.account_store.ping() else "error"
    except SQLAlchemyError:
        logger.exception("Health check database ping failed")
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=VERSION,
        components={"app": "ok", "database": database},
    )
