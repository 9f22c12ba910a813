"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. The service and route code never touch SQL.

CredentialStore is the narrow interface AuthService depends on. AccountStore
is the shipped implementation; tests and alternative backends only need to
satisfy the Protocol.

Atomicity:
  Every public method runs in a single transaction (engine.begin()), so each
  call is an atomic read-modify-write of one account. consume_reset_token()
  is a conditional UPDATE (compare-and-set on the stored hash and expiry):
  when two confirms race with the same token, exactly one of them updates a
  row and the other sees rowcount == 0.

  AuthService only uses the narrow writes (update_profile, set_password_hash,
  the reset-token methods). Each one sets just the columns it owns, so a
  concurrent write to another column is never overwritten with a stale value.
  set_password_hash() and restore_reset_token() are compare-and-set on the
  value the caller last saw. update() rewrites the whole record and is meant
  for callers that hold the only copy (admin tooling, migrations).

Invariants enforced here:
  - email is stored normalized (stripped + lowercased) and UNIQUE.
  - reset_token_hash and reset_token_expires_at are written and cleared by
    the same statement, never one without the other.
  - completed items are unique per account; insertion order is kept via the
    autoincrement id of the child table.

Timestamps are stored as ISO 8601 UTC strings with microsecond precision.
The fixed width keeps string comparison in SQL equal to time comparison.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/, core/, or mailer/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import AccountNotFoundError, DuplicateAccountError
from auth.models import Account, normalize_email

logger = logging.getLogger("preplog.auth.store")

# ---------------------------------------------------------------------------
# Interface consumed by AuthService
# ---------------------------------------------------------------------------


class CredentialStore(Protocol):
    def find_by_email(self, email: str) -> Account | None: ...

    def find_by_id(self, account_id: int) -> Account | None: ...

    def find_by_reset_token_hash(self, token_hash: str, now: datetime) -> Account | None: ...

    def create(self, account: Account) -> Account: ...

    def update(self, account: Account) -> Account: ...

    def update_profile(self, account_id: int, name: str, email: str) -> Account: ...

    def set_password_hash(self, account_id: int, new_password_hash: str, expected_hash: str) -> bool: ...

    def set_reset_token(self, account_id: int, token_hash: str, expires_at: datetime) -> bool: ...

    def clear_reset_token(self, account_id: int) -> bool: ...

    def restore_reset_token(
        self,
        account_id: int,
        expected_hash: str,
        token_hash: str | None,
        expires_at: datetime | None,
    ) -> bool: ...

    def consume_reset_token(self, account_id: int, token_hash: str, new_password_hash: str, now: datetime) -> bool: ...

    def toggle_completed_item(self, account_id: int, item_id: str) -> bool: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("reset_token_hash", String(64), index=True),  # SHA-256 hex
    Column("reset_token_expires_at", String(32)),  # ISO 8601 UTC
    Column("created_at", String(32), nullable=False),
)

_completed_items = Table(
    "completed_items",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),  # preserves insertion order
    Column("account_id", Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
    Column("item_id", String(255), nullable=False),
    UniqueConstraint("account_id", "item_id", name="uq_completed_item"),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new SQLite connection.

    SQLite PRAGMAs are per-connection and are not inherited from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _now_iso() -> str:
    return _to_iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """SQLAlchemy-backed CredentialStore.

    Usage:
        store = AccountStore("sqlite:///preplog_accounts.db")
        account = store.create(Account(email="a@x.com", name="Alice", password_hash=digest))
        store.find_by_email("A@X.com")  # same account
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///preplog_accounts.db") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == normalize_email(email))).fetchone()
            return self._load(conn, row)

    def find_by_id(self, account_id: int) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
            return self._load(conn, row)

    def find_by_reset_token_hash(self, token_hash: str, now: datetime) -> Account | None:
        """Return the account holding token_hash whose expiry is still in the future.

        Expired tokens are filtered here, so a stale hash that was never
        cleared behaves exactly like an unknown one.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select().where(
                    (_accounts.c.reset_token_hash == token_hash) & (_accounts.c.reset_token_expires_at > _to_iso(now))
                )
            ).fetchone()
            return self._load(conn, row)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, account: Account) -> Account:
        """Insert a new account and return it as stored.

        Raises DuplicateAccountError if the normalized email already exists.
        The UNIQUE constraint is the source of truth, so two concurrent
        registrations for the same email cannot both succeed.
        """
        if not account.password_hash:
            raise ValueError("Account.password_hash must not be empty")
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _accounts.insert().values(
                        email=normalize_email(account.email),
                        name=account.name,
                        password_hash=account.password_hash,
                        reset_token_hash=account.reset_token_hash,
                        reset_token_expires_at=(
                            _to_iso(account.reset_token_expires_at) if account.reset_token_expires_at else None
                        ),
                        created_at=_now_iso(),
                    )
                )
                account_id = result.inserted_primary_key[0]
                for item_id in dict.fromkeys(account.completed_items):
                    conn.execute(_completed_items.insert().values(account_id=account_id, item_id=item_id))
                row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
                return self._load(conn, row)
        except IntegrityError as exc:
            raise DuplicateAccountError() from exc

    def update(self, account: Account) -> Account:
        """Write name, email, password hash and reset fields of an existing account.

        completed_items is not written here; use toggle_completed_item().
        Raises AccountNotFoundError if the id does not exist and
        DuplicateAccountError if the new email belongs to another account.
        """
        if account.id is None:
            raise ValueError("Cannot update an account that has not been created")
        if not account.password_hash:
            raise ValueError("Account.password_hash must not be empty")
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _accounts.update()
                    .where(_accounts.c.id == account.id)
                    .values(
                        email=normalize_email(account.email),
                        name=account.name,
                        password_hash=account.password_hash,
                        reset_token_hash=account.reset_token_hash,
                        reset_token_expires_at=(
                            _to_iso(account.reset_token_expires_at) if account.reset_token_expires_at else None
                        ),
                    )
                )
                if result.rowcount == 0:
                    raise AccountNotFoundError()
                row = conn.execute(_accounts.select().where(_accounts.c.id == account.id)).fetchone()
                return self._load(conn, row)
        except IntegrityError as exc:
            raise DuplicateAccountError() from exc

    def update_profile(self, account_id: int, name: str, email: str) -> Account:
        """Set name and email only. Credentials and reset fields are left as stored.

        Raises AccountNotFoundError for an unknown id and DuplicateAccountError
        if the email belongs to another account.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _accounts.update()
                    .where(_accounts.c.id == account_id)
                    .values(name=name, email=normalize_email(email))
                )
                if result.rowcount == 0:
                    raise AccountNotFoundError()
                row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
                return self._load(conn, row)
        except IntegrityError as exc:
            raise DuplicateAccountError() from exc

    def set_password_hash(self, account_id: int, new_password_hash: str, expected_hash: str) -> bool:
        """Replace the password hash if it still equals expected_hash.

        Returns False when the account is gone or its password was changed
        since the caller read expected_hash.
        """
        if not new_password_hash:
            raise ValueError("new_password_hash must not be empty")
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.password_hash == expected_hash))
                .values(password_hash=new_password_hash)
            )
        return result.rowcount > 0

    def set_reset_token(self, account_id: int, token_hash: str, expires_at: datetime) -> bool:
        """Store a pending reset token, overwriting any previous one."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(reset_token_hash=token_hash, reset_token_expires_at=_to_iso(expires_at))
            )
        return result.rowcount > 0

    def clear_reset_token(self, account_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(reset_token_hash=None, reset_token_expires_at=None)
            )
        return result.rowcount > 0

    def restore_reset_token(
        self,
        account_id: int,
        expected_hash: str,
        token_hash: str | None,
        expires_at: datetime | None,
    ) -> bool:
        """Put back an earlier reset pair, but only while expected_hash is still pending.

        Passing None for both token_hash and expires_at clears the fields.
        Returns False when a newer request has replaced expected_hash (or it
        was consumed), in which case nothing is written.
        """
        if (token_hash is None) != (expires_at is None):
            raise ValueError("token_hash and expires_at must be given together")
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.reset_token_hash == expected_hash))
                .values(
                    reset_token_hash=token_hash,
                    reset_token_expires_at=_to_iso(expires_at) if expires_at is not None else None,
                )
            )
        return result.rowcount > 0

    def consume_reset_token(self, account_id: int, token_hash: str, new_password_hash: str, now: datetime) -> bool:
        """Atomically redeem a reset token.

        Sets the new password hash and clears both reset fields, but only if
        the row still carries token_hash with an expiry after now. Returns
        False when another request already consumed or replaced the token.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(
                    (_accounts.c.id == account_id)
                    & (_accounts.c.reset_token_hash == token_hash)
                    & (_accounts.c.reset_token_expires_at > _to_iso(now))
                )
                .values(password_hash=new_password_hash, reset_token_hash=None, reset_token_expires_at=None)
            )
        return result.rowcount > 0

    def toggle_completed_item(self, account_id: int, item_id: str) -> bool:
        """Add item_id if absent, remove it if present. Returns True if it was added.

        Raises AccountNotFoundError for an unknown account.
        """
        with self.engine.begin() as conn:
            exists = conn.execute(select(_accounts.c.id).where(_accounts.c.id == account_id)).first()
            if exists is None:
                raise AccountNotFoundError()
            removed = conn.execute(
                _completed_items.delete().where(
                    (_completed_items.c.account_id == account_id) & (_completed_items.c.item_id == item_id)
                )
            )
            if removed.rowcount > 0:
                return False
            conn.execute(_completed_items.insert().values(account_id=account_id, item_id=item_id))
            return True

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def _load(self, conn: Connection, row) -> Account | None:
        if row is None:
            return None
        items = conn.execute(
            select(_completed_items.c.item_id)
            .where(_completed_items.c.account_id == row.id)
            .order_by(_completed_items.c.id)
        ).scalars()
        return _row_to_account(row, list(items))


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row, completed_items: list[str]) -> Account:
    expires_at = _from_iso(row.reset_token_expires_at)
    token_hash = row.reset_token_hash
    # Rows are always written with both fields or neither; a torn pair from
    # manual DB edits is read back as "no pending reset".
    if (token_hash is None) != (expires_at is None):
        logger.warning("Account %s has a half-set reset token; ignoring it", row.id)
        token_hash, expires_at = None, None
    return Account(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=row.password_hash,
        reset_token_hash=token_hash,
        reset_token_expires_at=expires_at,
        completed_items=completed_items,
        created_at=row.created_at,
    )
