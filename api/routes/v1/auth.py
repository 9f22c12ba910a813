"""
api/routes/v1/auth.py -- Account, session and password-reset REST endpoints.

Routes:
  POST /api/v1/register                -- create account; sets session cookie
  POST /api/v1/login                   -- password login; sets session cookie
  GET  /api/v1/logout                  -- expires the session cookie
  POST /api/v1/password/forgot         -- email a reset link
  PUT  /api/v1/password/reset/{token}  -- redeem reset token; sets session cookie
  GET  /api/v1/me                      -- current account (requires auth)
  PUT  /api/v1/password/update         -- change password (requires auth); new cookie
  PUT  /api/v1/me/update               -- change name/email (requires auth)
  PUT  /api/v1/questions/{item_id}     -- toggle a completed question (requires auth)

Handlers that hash or send mail are plain `def` so FastAPI runs them in its
threadpool and bcrypt / SMTP never block the event loop.

Domain failures (auth.errors.AuthError) are not caught here. They propagate
to the exception handler in api/main.py, which maps each class to a status
code and the shared error envelope.

Security:
  login() and reset_password() use AuthService, which returns one error for
  unknown email and wrong password, and one for bad and expired tokens.
  Cache-Control: no-store on every response that carries a session token.
  The raw reset token only ever appears in the emailed link.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    AccountResponse,
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    PasswordUpdateRequest,
    ProfileResponse,
    ProfileUpdateRequest,
    RegisterRequest,
    ResetPasswordRequest,
    ToggleResponse,
)
from auth.dependencies import get_current_account
from auth.models import Account, AuthResult, ToggleOutcome
from auth.service import AuthService
from auth.tokens import clear_session_cookie, set_session_cookie
from core.config import Settings

# Auth policy:
# - POST /register, /login, /password/forgot, PUT /password/reset/{token}: public
# - GET  /logout: public -- expiring a cookie needs no prior auth
# - GET  /me, PUT /password/update, /me/update, /questions/{id}: get_current_account
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _session_response(request: Request, result: AuthResult, status_code: int = 200) -> JSONResponse:
    """Serialize an AuthResult and attach the session cookie."""
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse.build(result.account, result.session).model_dump(),
    )
    set_session_cookie(resp, result.session, secure=_settings(request).secure_cookies)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and log it in. 409 if the email is already registered."""
    result = _service(request).register(body.name, body.email, body.password)
    return _session_response(request, result, status_code=201)


@router.post("/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Unknown email and wrong password both produce 401 invalid_credentials with
    the same message.
    """
    result = _service(request).login(body.email, body.password)
    return _session_response(request, result)


@router.get("/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Expire the session cookie. Sessions are stateless, so nothing server-side changes."""
    _service(request).logout()
    resp = JSONResponse(content=MessageResponse(message="Logged out").model_dump())
    clear_session_cookie(resp, secure=_settings(request).secure_cookies)
    return resp


@router.post("/password/forgot", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Email a password-reset link to the account.

    The link base is PUBLIC_BASE_URL when configured, otherwise the base URL
    this request arrived on. 404 for an unknown email; 502 if the mail could
    not be sent (the pending token is rolled back in that case).
    """
    base_url = _settings(request).public_base_url or str(request.base_url)
    sent_to = _service(request).request_password_reset(body.email, base_url)
    return MessageResponse(message=f"Email sent to {sent_to}")


@router.put("/password/reset/{token}", response_model=AuthResponse)
def reset_password(request: Request, token: str, body: ResetPasswordRequest) -> JSONResponse:
    """Redeem a reset token, set the new password and log the account in."""
    result = _service(request).confirm_password_reset(token, body.password, body.confirmPassword)
    return _session_response(request, result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/me", response_model=ProfileResponse)
def me(account: Account = Depends(get_current_account)) -> ProfileResponse:
    """Return the currently authenticated account."""
    return ProfileResponse(user=AccountResponse.from_account(account))


@router.put("/password/update", response_model=AuthResponse)
def update_password(
    request: Request,
    body: PasswordUpdateRequest,
    account: Account = Depends(get_current_account),
) -> JSONResponse:
    """Change the password after checking the old one; returns a fresh session.

    Sessions issued before the change stay valid until they expire.
    """
    result = _service(request).change_password(account.id, body.oldPassword, body.password)
    return _session_response(request, result)


@router.put("/me/update", response_model=ProfileResponse)
def update_profile(
    request: Request,
    body: ProfileUpdateRequest,
    account: Account = Depends(get_current_account),
) -> ProfileResponse:
    """Update name and email. The session is not reissued."""
    updated = _service(request).update_profile(account.id, body.name, body.email)
    return ProfileResponse(user=AccountResponse.from_account(updated))


@router.put("/questions/{item_id}", response_model=ToggleResponse)
def toggle_question(
    request: Request,
    item_id: str,
    account: Account = Depends(get_current_account),
) -> ToggleResponse:
    """Mark a question done, or undone if it already was."""
    outcome = _service(request).toggle_completed_item(account.id, item_id)
    if outcome is ToggleOutcome.ADDED:
        message = "You have done the question"
    else:
        message = "You have undone the question"
    return ToggleResponse(status=outcome.value, message=message)
