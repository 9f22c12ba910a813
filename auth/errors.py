"""
auth/errors.py -- Typed failures raised by the auth core.

Every error carries a stable machine-readable ``code`` and a human-readable
``message``. The core never decides HTTP status codes; api/main.py owns the
error-class -> status mapping and renders the shared error envelope.

Disclosure policy:
  InvalidCredentialsError uses one message for "no such account" and
  "wrong password" so login cannot be used to enumerate accounts.

  InvalidOrExpiredTokenError likewise conflates "wrong token" and "expired
  token" so the reset endpoint is not an oracle.

  AccountNotFoundError is deliberately explicit for password-reset requests,
  matching the existing product behaviour for that flow.

Layer rule: no imports from api/, core/, or mailer/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all auth-core failures."""

    code: str = "auth_error"
    message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed input that slipped past the transport layer's validation."""

    code = "validation_error"
    message = "Invalid input."


class DuplicateAccountError(AuthError):
    code = "duplicate_account"
    message = "An account with that email already exists."


class AccountNotFoundError(AuthError):
    code = "account_not_found"
    message = "User not found with this email."


class InvalidCredentialsError(AuthError):
    code = "invalid_credentials"
    message = "Invalid email or password."


class PasswordMismatchError(AuthError):
    code = "password_mismatch"
    message = "Passwords do not match."


class InvalidOrExpiredTokenError(AuthError):
    code = "invalid_or_expired_token"
    message = "Password reset token is invalid or has expired."


class DeliveryError(AuthError):
    """The mailer could not hand the message to the mail server."""

    code = "delivery_failed"
    message = "Email could not be sent."


class EncodingError(AuthError):
    """Internal fault inside a cryptographic primitive. Not retried."""

    code = "encoding_error"
    message = "Internal credential encoding failure."


# ---------------------------------------------------------------------------
# Component-level failures (ResetTokenCodec / SessionIssuer)
#
# AuthService folds the reset-token pair into InvalidOrExpiredTokenError.
# The session pair reaches the HTTP layer as 401s.
# ---------------------------------------------------------------------------


class ResetTokenMismatchError(AuthError):
    code = "reset_token_mismatch"
    message = "Reset token does not match."


class ResetTokenExpiredError(AuthError):
    code = "reset_token_expired"
    message = "Reset token has expired."


class InvalidSessionError(AuthError):
    code = "invalid_session"
    message = "Session token is invalid."


class SessionExpiredError(AuthError):
    code = "session_expired"
    message = "Session has expired. Please log in again."
