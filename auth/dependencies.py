"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. Session cookie ("token") -- set by register/login/reset/password-update.
  2. Authorization: Bearer <token> header -- API clients.

Both converge on an Account after AuthService.authenticate() succeeds.

get_current_account() raises HTTP 401 if unauthenticated,
distinguishing an expired session from a missing or forged one.

Layer rule: no imports from api/, core/, or mailer/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import InvalidSessionError, SessionExpiredError
from auth.models import Account
from auth.service import AuthService
from auth.tokens import SESSION_COOKIE_NAME


def _extract_token(request: Request) -> str | None:
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def get_current_account(request: Request) -> Account:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/me")
        def route(account: Account = Depends(get_current_account)): ...
    """
    token = _extract_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Login first to access this resource."},
        )
    service: AuthService = request.app.state.auth_service
    try:
        return service.authenticate(token)
    except (InvalidSessionError, SessionExpiredError) as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": exc.code, "message": exc.message},
        ) from exc
