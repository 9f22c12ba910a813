"""
auth/tokens.py -- Session JWTs, password-reset tokens, and the session cookie.

Security design decisions:
  Sessions: python-jose with HS256. Tokens carry the account id (sub), iat,
       exp and a random jti, signed with the configured secret key. The key
       is passed in by the caller and never derived from user data.
       validate() checks the signature before looking at any claim, then
       checks exp against the injected clock, so a forged token can never
       produce an "expired" answer (or any answer other than invalid).

  Reset tokens: secrets.token_hex(32) gives 256 bits of entropy. Only the
       SHA-256 hex digest is persisted. A fast hash is enough here: the raw
       token space is far too large to brute-force and tokens expire within
       the hour, so bcrypt's slowness buys nothing. A database leak exposes
       no usable reset link.

  Cookie: httpOnly (JS cannot read it), samesite=lax, secure when
       SECURE_COOKIES=true, and expiring together with the JWT.

Layer rule: no imports from api/, core/, or mailer/. Settings values are
handed in by api/main.py. fastapi is imported only for the Response type of
the cookie helpers.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from fastapi import Response
from jose import JWTError, jwt

from auth.errors import (
    InvalidSessionError,
    ResetTokenExpiredError,
    ResetTokenMismatchError,
    SessionExpiredError,
)
from auth.models import IssuedResetToken, SessionToken

Clock = Callable[[], datetime]

SESSION_COOKIE_NAME = "token"
DEFAULT_RESET_WINDOW_SECONDS = 3600
DEFAULT_SESSION_SECONDS = 7 * 24 * 3600

_ALGORITHM = "HS256"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Password-reset tokens
# ---------------------------------------------------------------------------


class ResetTokenCodec:
    """Generate, hash and check single-use password-reset tokens."""

    def __init__(self, window_seconds: int = DEFAULT_RESET_WINDOW_SECONDS, clock: Clock = utcnow) -> None:
        self.window = timedelta(seconds=window_seconds)
        self._clock = clock

    @staticmethod
    def hash_token(raw_token: str) -> str:
        """Deterministic SHA-256 hex digest, used both to persist and to look up."""
        return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()

    def generate(self, now: datetime | None = None) -> IssuedResetToken:
        now = now or self._clock()
        raw = secrets.token_hex(32)
        return IssuedResetToken(raw=raw, token_hash=self.hash_token(raw), expires_at=now + self.window)

    def verify(
        self,
        raw_token: str,
        stored_hash: str | None,
        stored_expiry: datetime | None,
        now: datetime | None = None,
    ) -> None:
        """Raise unless raw_token matches stored_hash and stored_expiry is in the future.

        The hash comparison runs first and is constant-time. Expiry is checked
        independently: a matching hash past its expiry still fails.
        A missing stored hash or expiry fails closed as a mismatch.
        """
        if stored_hash is None or stored_expiry is None:
            raise ResetTokenMismatchError()
        if not hmac.compare_digest(self.hash_token(raw_token), stored_hash):
            raise ResetTokenMismatchError()
        now = now or self._clock()
        if stored_expiry <= now:
            raise ResetTokenExpiredError()


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


class SessionIssuer:
    """Mint and check stateless session JWTs.

    Usage:
        issuer = SessionIssuer(secret_key=settings.secret_key)
        session = issuer.issue(account.id)
        account_id = issuer.validate(session.value)
    """

    def __init__(
        self,
        secret_key: str,
        expire_seconds: int = DEFAULT_SESSION_SECONDS,
        clock: Clock = utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("SessionIssuer requires a non-empty secret key")
        self._secret_key = secret_key
        self.lifetime = timedelta(seconds=expire_seconds)
        self._clock = clock

    def issue(self, account_id: int) -> SessionToken:
        # JWT timestamps have one-second resolution; truncate so the
        # SessionToken fields agree with the encoded claims.
        issued_at = self._clock().replace(microsecond=0)
        expires_at = issued_at + self.lifetime
        payload = {
            "sub": str(account_id),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": secrets.token_hex(8),
        }
        value = jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        return SessionToken(value=value, subject=account_id, issued_at=issued_at, expires_at=expires_at)

    def validate(self, token: str) -> int:
        """Return the account id carried by token.

        Raises InvalidSessionError for anything structurally or
        cryptographically wrong, SessionExpiredError for a genuine token whose
        exp has passed.
        """
        try:
            # exp is checked below against the injected clock, not jose's.
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidSessionError() from exc

        try:
            account_id = int(payload["sub"])
            expires = int(payload["exp"])
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidSessionError() from exc

        if expires <= int(self._clock().timestamp()):
            raise SessionExpiredError()
        return account_id


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response: Response, session: SessionToken, secure: bool = False) -> None:
    """Write the session JWT as an httpOnly cookie on a Starlette response.

    max_age and expires both match the JWT expiry so cookie and token die
    together.
    """
    max_age = int((session.expires_at - session.issued_at).total_seconds())
    response.set_cookie(
        SESSION_COOKIE_NAME,
        value=session.value,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
        expires=session.expires_at.astimezone(timezone.utc),
    )


def clear_session_cookie(response: Response, secure: bool = False) -> None:
    """Expire the session cookie immediately (logout)."""
    response.delete_cookie(SESSION_COOKIE_NAME, httponly=True, samesite="lax", secure=secure)
