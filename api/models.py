"""
API request and response models for PrepLog REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Input validation lives here: a request that fails these models never reaches
AuthService and is answered with a 422 validation_error envelope.
"""

from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from auth.models import Account, SessionToken

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt ignores everything past 72 bytes; reject longer input up front so a
# user is never surprised by two different passwords both working.
PASSWORD_MAX_BYTES = 72


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"password must be at most {PASSWORD_MAX_BYTES} bytes")
    return value


# Annotated type applied to every new-password field.
_NewPassword = Annotated[str, Field(min_length=6), AfterValidator(_check_password_bytes)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=30)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: _NewPassword


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /api/v1/password/forgot."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)


class ResetPasswordRequest(BaseModel):
    """Request body for PUT /api/v1/password/reset/{token}.

    Equality of the two fields is checked by AuthService, not here, so the
    mismatch surfaces as the typed password_mismatch error.
    """

    password: _NewPassword
    confirmPassword: str = Field(min_length=1)


class PasswordUpdateRequest(BaseModel):
    """Request body for PUT /api/v1/password/update."""

    oldPassword: str = Field(min_length=1, max_length=255)
    password: _NewPassword


class ProfileUpdateRequest(BaseModel):
    """Request body for PUT /api/v1/me/update."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=30)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an Account. Never includes password or reset-token data."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    questions: list[str]
    created_at: str

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            name=account.name,
            email=account.email,
            questions=list(account.completed_items),
            created_at=account.created_at,
        )


class AuthResponse(BaseModel):
    """Response for every endpoint that issues a session (register, login, reset, update)."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    token: str
    token_type: str = "bearer"
    expires_at: str
    user: AccountResponse

    @classmethod
    def build(cls, account: Account, session: SessionToken) -> "AuthResponse":
        return cls(
            token=session.value,
            expires_at=session.expires_at.isoformat(),
            user=AccountResponse.from_account(account),
        )


class ProfileResponse(BaseModel):
    """Response for GET /api/v1/me."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    user: AccountResponse


class ToggleResponse(BaseModel):
    """Response for PUT /api/v1/questions/{item_id}."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    status: str  # "added" | "removed"
    message: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
