"""Unit tests for auth/passwords.py -- bcrypt hashing and verification.

Covers:
- hash() output verifies against the same password and not a different one
- hash() is salted: two digests of one password differ, both verify
- verify() returns False (never raises) for malformed or empty digests
- passwords longer than bcrypt's 72-byte limit hash and verify consistently
- hash() wraps bcrypt faults in EncodingError
"""

import bcrypt
import pytest

from auth.errors import EncodingError
from auth.passwords import PasswordHasher


class TestHashAndVerify:
    def test_round_trip(self, hasher: PasswordHasher) -> None:
        digest = hasher.hash("pw123")
        assert hasher.verify("pw123", digest)

    def test_wrong_password_rejected(self, hasher: PasswordHasher) -> None:
        digest = hasher.hash("pw123")
        assert not hasher.verify("pw124", digest)
        assert not hasher.verify("", digest)

    def test_digests_are_salted(self, hasher: PasswordHasher) -> None:
        first = hasher.hash("same-password")
        second = hasher.hash("same-password")
        assert first != second
        assert hasher.verify("same-password", first)
        assert hasher.verify("same-password", second)

    def test_digest_records_cost_factor(self) -> None:
        digest = PasswordHasher(rounds=5).hash("pw")
        assert digest.startswith("$2b$05$")

    def test_unicode_password(self, hasher: PasswordHasher) -> None:
        digest = hasher.hash("pässwörd-ключ")
        assert hasher.verify("pässwörd-ключ", digest)
        assert not hasher.verify("passwort-ключ", digest)


class TestVerifyNeverRaises:
    @pytest.mark.parametrize("digest", ["", "not-a-bcrypt-hash", "$2b$04$tooshort"])
    def test_malformed_digest_is_mismatch(self, hasher: PasswordHasher, digest: str) -> None:
        assert hasher.verify("pw123", digest) is False

    def test_burn_returns_nothing_and_does_not_raise(self, hasher: PasswordHasher) -> None:
        assert hasher.burn("anything") is None


class TestLongPasswords:
    def test_over_72_bytes_round_trips(self, hasher: PasswordHasher) -> None:
        long_pw = "x" * 100
        digest = hasher.hash(long_pw)
        assert hasher.verify(long_pw, digest)

    def test_prefix_within_72_bytes_still_distinguishes(self, hasher: PasswordHasher) -> None:
        digest = hasher.hash("a" * 71 + "b")
        assert not hasher.verify("a" * 71 + "c", digest)


def test_bcrypt_fault_becomes_encoding_error(hasher: PasswordHasher, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_hashpw(password: bytes, salt: bytes) -> bytes:
        raise ValueError("invalid salt")

    monkeypatch.setattr(bcrypt, "hashpw", broken_hashpw)
    with pytest.raises(EncodingError):
        hasher.hash("pw123")
