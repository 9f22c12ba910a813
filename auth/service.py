"""
auth/service.py -- AuthService: registration, login, password change and the
password-reset flow.

AuthService owns no state of its own. Every collaborator (store, mailer,
hasher, reset codec, session issuer, clock) is passed in at construction,
so tests can swap any of them and nothing reads process globals.

Reset state machine, per account:

    NoPendingReset --request_password_reset--> PendingReset
    PendingReset   --confirm_password_reset--> NoPendingReset
    PendingReset   --delivery failure-------> previous state (compensating write)
    PendingReset   --expiry-----------------> NoPendingReset (at next read)

A new request overwrites any pending token, so at most one is live.

Known limitation: sessions are stateless JWTs. change_password() and
confirm_password_reset() issue a fresh session but cannot revoke older ones;
those stay valid until their own expiry.

Layer rule: no imports from api/, core/, or mailer/. SQLAlchemyError is caught
only around the delivery-failure rollback so the DeliveryError survives.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import (
    AccountNotFoundError,
    DeliveryError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    InvalidSessionError,
    PasswordMismatchError,
    ResetTokenExpiredError,
    ResetTokenMismatchError,
    ValidationError,
)
from auth.models import Account, AuthResult, ToggleOutcome, normalize_email
from auth.passwords import PasswordHasher
from auth.store import CredentialStore
from auth.tokens import Clock, ResetTokenCodec, SessionIssuer, utcnow

logger = logging.getLogger("preplog.auth.service")

RESET_EMAIL_SUBJECT = "PrepLog Password Recovery"
_RESET_EMAIL_TEMPLATE = (
    "Your password reset token is as follows:\n\n{url}\n\n"
    "This link expires in {minutes} minutes.\n"
    "If you have not requested this email, then ignore it."
)


class Mailer(Protocol):
    def send(self, to_address: str, subject: str, body: str) -> None:
        """Deliver a message or raise auth.errors.DeliveryError."""
        ...


def _require(value: str, field: str) -> None:
    if not value or not value.strip():
        raise ValidationError(f"{field} must not be empty.")


class AuthService:
    def __init__(
        self,
        store: CredentialStore,
        mailer: Mailer,
        hasher: PasswordHasher,
        reset_codec: ResetTokenCodec,
        sessions: SessionIssuer,
        clock: Clock = utcnow,
        reset_email_subject: str = RESET_EMAIL_SUBJECT,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.hasher = hasher
        self.reset_codec = reset_codec
        self.sessions = sessions
        self._clock = clock
        self.reset_email_subject = reset_email_subject

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(self, name: str, email: str, password: str) -> AuthResult:
        """Create an account and log it in.

        Raises DuplicateAccountError (from the store) if the email is taken.
        """
        _require(name, "name")
        _require(email, "email")
        _require(password, "password")
        account = self.store.create(
            Account(email=normalize_email(email), name=name.strip(), password_hash=self.hasher.hash(password))
        )
        logger.info("Registered account %s", account.id)
        return AuthResult(account=account, session=self.sessions.issue(account.id))

    def login(self, email: str, password: str) -> AuthResult:
        """Authenticate with email and password.

        Unknown email and wrong password raise the same InvalidCredentialsError,
        and both paths run one bcrypt verification so timing does not tell
        them apart either.
        """
        account = self.store.find_by_email(email)
        if account is None:
            self.hasher.burn(password)
            logger.info("Failed login (credentials rejected)")
            raise InvalidCredentialsError()
        if not self.hasher.verify(password, account.password_hash):
            logger.info("Failed login (credentials rejected)")
            raise InvalidCredentialsError()
        return AuthResult(account=account, session=self.sessions.issue(account.id))

    def logout(self) -> datetime:
        """Return the instant at which the client must drop its session (now).

        There is no server-side session registry, so nothing is mutated.
        """
        return self._clock()

    def authenticate(self, token: str) -> Account:
        """Resolve a session token to its account.

        Raises InvalidSessionError / SessionExpiredError from the issuer, and
        InvalidSessionError if the account no longer exists.
        """
        account_id = self.sessions.validate(token)
        account = self.store.find_by_id(account_id)
        if account is None:
            raise InvalidSessionError()
        return account

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str, base_url: str) -> str:
        """Issue a reset token and mail `{base_url}/password/reset/{raw}` to the account.

        Returns the address the link was sent to. The raw token itself never
        leaves this method except inside the email body.

        Raises AccountNotFoundError for an unknown email (nothing is written).
        If the mailer raises DeliveryError, the account's reset fields are put
        back to their pre-call values before the error propagates, unless a
        newer request replaced the token in the meantime.
        """
        account = self.store.find_by_email(email)
        if account is None:
            raise AccountNotFoundError()

        previous = (account.reset_token_hash, account.reset_token_expires_at)
        issued = self.reset_codec.generate(self._clock())
        self.store.set_reset_token(account.id, issued.token_hash, issued.expires_at)

        url = f"{base_url.rstrip('/')}/password/reset/{issued.raw}"
        minutes = int(self.reset_codec.window.total_seconds() // 60)
        body = _RESET_EMAIL_TEMPLATE.format(url=url, minutes=minutes)
        try:
            self.mailer.send(account.email, self.reset_email_subject, body)
        except DeliveryError as exc:
            self._roll_back_reset(account.id, issued.token_hash, previous, exc)
            raise

        logger.info("Password reset requested for account %s", account.id)
        return account.email

    def _roll_back_reset(
        self,
        account_id: int,
        issued_hash: str,
        previous: tuple[str | None, datetime | None],
        delivery_error: DeliveryError,
    ) -> None:
        """Undo set_reset_token() after a failed send.

        The earlier pair is restored only while our own token is still the
        pending one; a newer request that landed in between is kept. A store
        failure here is logged and chained onto delivery_error, which the
        caller re-raises.
        """
        prev_hash, prev_expiry = previous
        try:
            restored = self.store.restore_reset_token(account_id, issued_hash, prev_hash, prev_expiry)
        except SQLAlchemyError as store_exc:
            logger.error("Reset email for account %s not delivered; rolling back the pending token failed", account_id)
            raise delivery_error from store_exc
        if restored:
            logger.warning("Reset email for account %s not delivered; pending token rolled back", account_id)
        else:
            logger.warning("Reset email for account %s not delivered; a newer token is pending, kept it", account_id)

    def confirm_password_reset(self, raw_token: str, new_password: str, confirm_password: str) -> AuthResult:
        """Redeem a reset token, set the new password and log the account in.

        Raises PasswordMismatchError before touching the store if the two
        passwords differ, and InvalidOrExpiredTokenError for a wrong, expired,
        or already-used token.
        """
        if new_password != confirm_password:
            raise PasswordMismatchError()
        _require(new_password, "password")

        now = self._clock()
        token_hash = self.reset_codec.hash_token(raw_token)
        account = self.store.find_by_reset_token_hash(token_hash, now)
        if account is None:
            raise InvalidOrExpiredTokenError()
        try:
            self.reset_codec.verify(raw_token, account.reset_token_hash, account.reset_token_expires_at, now)
        except (ResetTokenMismatchError, ResetTokenExpiredError) as exc:
            raise InvalidOrExpiredTokenError() from exc

        new_hash = self.hasher.hash(new_password)
        if not self.store.consume_reset_token(account.id, token_hash, new_hash, now):
            # Consumed or replaced by a concurrent request since the lookup.
            raise InvalidOrExpiredTokenError()

        account = self.store.find_by_id(account.id)
        if account is None:
            raise InvalidOrExpiredTokenError()
        logger.info("Password reset completed for account %s", account.id)
        return AuthResult(account=account, session=self.sessions.issue(account.id))

    # ------------------------------------------------------------------
    # Authenticated account operations
    # ------------------------------------------------------------------

    def get_profile(self, account_id: int) -> Account:
        account = self.store.find_by_id(account_id)
        if account is None:
            raise AccountNotFoundError()
        return account

    def change_password(self, account_id: int, old_password: str, new_password: str) -> AuthResult:
        """Replace the password after re-checking the current one; issues a fresh session."""
        account = self.get_profile(account_id)
        if not self.hasher.verify(old_password, account.password_hash):
            raise InvalidCredentialsError("Old password is incorrect.")
        _require(new_password, "password")
        # Compare-and-set on the hash old_password was checked against: if the
        # password changed in between, old_password is no longer current.
        if not self.store.set_password_hash(account_id, self.hasher.hash(new_password), account.password_hash):
            raise InvalidCredentialsError("Old password is incorrect.")
        account = self.get_profile(account_id)
        logger.info("Password changed for account %s", account.id)
        return AuthResult(account=account, session=self.sessions.issue(account.id))

    def update_profile(self, account_id: int, name: str, email: str) -> Account:
        """Update name and email. Never touches credentials; no new session."""
        _require(name, "name")
        _require(email, "email")
        return self.store.update_profile(account_id, name.strip(), normalize_email(email))

    def toggle_completed_item(self, account_id: int, item_id: str) -> ToggleOutcome:
        """Mark item_id done if it is not, undone if it is."""
        added = self.store.toggle_completed_item(account_id, item_id)
        return ToggleOutcome.ADDED if added else ToggleOutcome.REMOVED
