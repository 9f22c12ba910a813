"""
auth/models.py -- Domain dataclasses for accounts, sessions and reset tokens.

Pattern: Data class (pure data container). The store and the service do the
work; the only logic here is the reset-field pairing check, because an
Account with a hash but no expiry (or the reverse) must never exist.

Layer rule: no imports from api/, core/, or mailer/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


def normalize_email(email: str) -> str:
    """Strip surrounding whitespace and lowercase; emails are stored this way."""
    return email.strip().lower()


@dataclass
class Account:
    """A registered PrepLog user.

    reset_token_hash / reset_token_expires_at are set together on a reset
    request and cleared together on confirm or delivery failure.

    completed_items is an ordered set of opaque ids (practice-question ids in
    the current product). Order is insertion order.

    id is None before the record is written to the database.
    """

    email: str
    name: str
    password_hash: str
    id: int | None = None
    reset_token_hash: str | None = None
    reset_token_expires_at: datetime | None = None
    completed_items: list[str] = field(default_factory=list)
    created_at: str = ""  # ISO 8601, set by store on insert

    def __post_init__(self) -> None:
        if (self.reset_token_hash is None) != (self.reset_token_expires_at is None):
            raise ValueError("reset_token_hash and reset_token_expires_at must be set together")

    @property
    def has_pending_reset(self) -> bool:
        return self.reset_token_hash is not None


@dataclass(frozen=True)
class SessionToken:
    """A signed bearer credential. Never persisted server-side.

    value is the compact JWT handed to the client (cookie or Bearer header).
    """

    value: str
    subject: int
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class IssuedResetToken:
    """Output of ResetTokenCodec.generate().

    raw goes into the emailed link and nowhere else. Only token_hash and
    expires_at are written to the Account.
    """

    raw: str
    token_hash: str
    expires_at: datetime

    def __repr__(self) -> str:
        return f"IssuedResetToken(token_hash={self.token_hash!r}, expires_at={self.expires_at!r})"


@dataclass(frozen=True)
class AuthResult:
    """Account plus the freshly issued session, returned by credential flows."""

    account: Account
    session: SessionToken


class ToggleOutcome(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
