"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than a passlib wrapper: passlib's wrap-bug
detection feeds bcrypt a password longer than 72 bytes, which current bcrypt
releases reject with an explicit error.

bcrypt only uses the first 72 bytes of its input and recent releases raise
ValueError for anything longer, so input is encoded and capped at 72 bytes
before hashing and before verifying. Both sides apply the same cap, so a
password always verifies against its own hash.

Timing equalization: burn() runs a full bcrypt check against a dummy digest.
AuthService.login() calls it when the email is unknown, so response time does
not reveal whether an account exists.

Layer rule: no imports from api/, core/, or mailer/.
"""

from __future__ import annotations

import logging

import bcrypt

from auth.errors import EncodingError

logger = logging.getLogger("preplog.auth.passwords")

BCRYPT_MAX_BYTES = 72
DEFAULT_ROUNDS = 12


def _encode(plaintext: str) -> bytes:
    return plaintext.encode("utf-8")[:BCRYPT_MAX_BYTES]


class PasswordHasher:
    """Salted, slow one-way hashing for stored credentials.

    Usage:
        hasher = PasswordHasher(rounds=12)
        digest = hasher.hash("hunter2")
        hasher.verify("hunter2", digest)  # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        self._dummy_hash: str | None = None

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt digest of plaintext. A fresh salt is drawn per call."""
        try:
            digest = bcrypt.hashpw(_encode(plaintext), bcrypt.gensalt(rounds=self.rounds))
        except (ValueError, TypeError) as exc:
            logger.error("bcrypt hashing failed: %s", type(exc).__name__)
            raise EncodingError() from exc
        return digest.decode("utf-8")

    def verify(self, plaintext: str, digest: str) -> bool:
        """Return True if plaintext matches digest.

        checkpw compares in constant time. A malformed digest is treated as a
        mismatch rather than an error.
        """
        if not digest:
            return False
        try:
            return bcrypt.checkpw(_encode(plaintext), digest.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def burn(self, plaintext: str) -> None:
        """Spend one bcrypt verification's worth of CPU and discard the result."""
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("preplog_timing_dummy")
        self.verify(plaintext, self._dummy_hash)
