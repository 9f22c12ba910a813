"""Unit tests for core/config.py -- the SECRET_KEY and SMTP_HOST policies and defaults."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings


def test_debug_mode_generates_secret_key() -> None:
    settings = Settings(debug=True, secret_key="")
    assert len(settings.secret_key) >= 32


def test_production_mode_requires_secret_key() -> None:
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="", smtp_host="mail.example.com")


def test_production_mode_requires_smtp_host() -> None:
    """Without a relay, reset links would only ever reach the server log."""
    with pytest.raises(ValidationError, match="SMTP_HOST is required"):
        Settings(debug=False, secret_key="k" * 40, smtp_host="")


def test_debug_mode_allows_missing_smtp_host() -> None:
    assert Settings(debug=True, smtp_host="").smtp_host == ""


def test_short_secret_key_rejected() -> None:
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(debug=True, secret_key="too-short")


def test_defaults() -> None:
    settings = Settings(debug=False, secret_key="k" * 32, smtp_host="mail.example.com")
    assert settings.session_expire_seconds == 7 * 24 * 3600
    assert settings.reset_token_expire_seconds == 3600
    assert settings.reset_email_subject == "PrepLog Password Recovery"
    assert settings.bcrypt_rounds == 12


def test_values_read_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SECRET_KEY", "e" * 40)
    monkeypatch.setenv("RESET_TOKEN_EXPIRE_SECONDS", "900")
    monkeypatch.setenv("SMTP_HOST", "mail.example.com")
    settings = Settings()
    assert settings.secret_key == "e" * 40
    assert settings.reset_token_expire_seconds == 900
    assert settings.smtp_host == "mail.example.com"


@pytest.mark.parametrize("rounds", [3, 32])
def test_bcrypt_rounds_bounds(rounds: int) -> None:
    with pytest.raises(ValidationError):
        Settings(debug=True, bcrypt_rounds=rounds)
