"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper (same as cms/store.py).
AccountStore is the repository; _row_to_account / _row_to_login are the
mappers. Route, gate and dependency code never touches SQL directly.

All three account kinds (admin, author, user) share one `accounts` table with
a `kind` column. Email and phone are unique per kind, including soft-deleted
records, so a deleted account's email cannot be silently re-registered.

Lockout counters are only changed through SQL expressions
(login_attempts = login_attempts + 1) inside a transaction, never by writing
back a value read earlier. Concurrent failed logins therefore cannot lose an
increment.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps are stored as ISO 8601 strings and mapped back to aware datetimes.

Layer rule: no imports from api/, cms/, or media/.
"""

from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import Account, AccountKind, LoginRecord
from core.clock import from_iso, to_iso, utc_now
from core.db import make_engine

_DEFAULT_DB_URL = "sqlite:///newsdesk.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("kind", String(10), nullable=False),  # "admin", "author", "user"
    Column("email", String(255), nullable=False),
    Column("phone", String(20), nullable=False),
    Column("first_name", String(50), nullable=False),
    Column("last_name", String(50), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False),
    Column("password_changed_at", String(32)),
    Column("login_attempts", Integer, nullable=False, server_default="0"),
    Column("lock_until", String(32)),
    Column("refresh_token", Text),
    Column("last_active", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("is_deleted", Integer, nullable=False, server_default="0"),
    Column("deleted_at", String(32)),
    Column("avatar", Text, nullable=False, server_default=""),
    Column("cover_image", Text, nullable=False, server_default=""),
    Column("bio", Text, nullable=False, server_default=""),
    Column("social_links", Text),  # JSON object serialized as text
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("kind", "email", name="uq_account_email"),
    UniqueConstraint("kind", "phone", name="uq_account_phone"),
)

_login_history = Table(
    "login_history",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False, index=True),
    Column("device", Text, nullable=False),
    Column("ip_address", String(45), nullable=False),
    Column("timestamp", String(32), nullable=False),
)

# Columns that list_accounts() may sort by. Validated before building ORDER BY.
_SORTABLE = {
    "first_name": _accounts.c.first_name,
    "last_name": _accounts.c.last_name,
    "email": _accounts.c.email,
    "created_at": _accounts.c.created_at,
    "updated_at": _accounts.c.updated_at,
}

_BOOL_FIELDS = {"is_active", "is_verified", "is_deleted"}
_DATETIME_FIELDS = {"password_changed_at", "lock_until", "last_active", "deleted_at"}


def _now_iso() -> str:
    return utc_now().isoformat()


def _to_columns(fields: dict) -> dict:
    """Convert dataclass-typed values to their column representation."""
    values = dict(fields)
    for key in _BOOL_FIELDS & values.keys():
        values[key] = 1 if values[key] else 0
    for key in _DATETIME_FIELDS & values.keys():
        values[key] = to_iso(values[key])
    if "social_links" in values:
        values["social_links"] = json.dumps(values["social_links"] or {})
    if "kind" in values:
        values["kind"] = AccountKind(values["kind"]).value
    if "email" in values:
        values["email"] = values["email"].strip().lower()
    return values


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account and LoginRecord entities.

    Usage:
        store = AccountStore("sqlite:///newsdesk.db")
        account_id = store.create(Account(kind=AccountKind.user, ...))
        account = store.find_by_email(AccountKind.user, "a@example.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_id(self, account_id: int) -> Account | None:
        """Look up an account by primary key, deleted or not."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_email(self, kind: AccountKind, email: str) -> Account | None:
        """Look up an account of one kind by email (case-insensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select().where(
                    (_accounts.c.kind == AccountKind(kind).value) & (_accounts.c.email == email.strip().lower())
                )
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def email_or_phone_taken(
        self, kind: AccountKind, email: str | None, phone: str | None, exclude_id: int | None = None
    ) -> str | None:
        """Return "email" or "phone" if either is already used by another account of this kind."""
        checks = []
        if email:
            checks.append(("email", _accounts.c.email == email.strip().lower()))
        if phone:
            checks.append(("phone", _accounts.c.phone == phone))
        with self.engine.connect() as conn:
            for name, condition in checks:
                query = select(_accounts.c.id).where((_accounts.c.kind == AccountKind(kind).value) & condition)
                if exclude_id is not None:
                    query = query.where(_accounts.c.id != exclude_id)
                if conn.execute(query).first() is not None:
                    return name
        return None

    def has_accounts(self, kind: AccountKind) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_accounts).where(_accounts.c.kind == AccountKind(kind).value)
            ).scalar()
        return (result or 0) > 0

    def list_accounts(
        self,
        kind: AccountKind,
        search: str | None = None,
        role: str | None = None,
        is_active: bool | None = None,
        is_verified: bool | None = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> tuple[list[Account], int]:
        """Return one page of non-deleted accounts and the total match count.

        Raises ValueError for an unknown sort_by column (whitelisted, never
        interpolated).
        """
        if sort_by not in _SORTABLE:
            raise ValueError(f"Unknown sort column: {sort_by!r}")
        conditions = [_accounts.c.kind == AccountKind(kind).value, _accounts.c.is_deleted == 0]
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    _accounts.c.first_name.ilike(pattern),
                    _accounts.c.last_name.ilike(pattern),
                    _accounts.c.email.ilike(pattern),
                )
            )
        if role:
            conditions.append(_accounts.c.role == role)
        if is_active is not None:
            conditions.append(_accounts.c.is_active == (1 if is_active else 0))
        if is_verified is not None:
            conditions.append(_accounts.c.is_verified == (1 if is_verified else 0))

        column = _SORTABLE[sort_by]
        order = column.desc() if sort_order == "desc" else column.asc()
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_accounts).where(*conditions)).scalar() or 0
            rows = conn.execute(
                _accounts.select()
                .where(*conditions)
                .order_by(order, _accounts.c.id)
                .offset((page - 1) * limit)
                .limit(limit)
            ).fetchall()
        return [_row_to_account(r) for r in rows], total

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, account: Account) -> int:
        """Insert a new account and return its ID.

        account.hashed_password must already be a bcrypt hash. Stamps
        password_changed_at (unless given), created_at and updated_at.
        Raises sqlalchemy.exc.IntegrityError on a duplicate email/phone.
        """
        now = utc_now()
        values = _to_columns(
            {
                "kind": account.kind,
                "email": account.email,
                "phone": account.phone,
                "first_name": account.first_name,
                "last_name": account.last_name,
                "hashed_password": account.hashed_password,
                "role": account.role,
                "password_changed_at": account.password_changed_at or now,
                "is_active": account.is_active,
                "is_verified": account.is_verified,
                "avatar": account.avatar,
                "cover_image": account.cover_image,
                "bio": account.bio,
                "social_links": account.social_links,
            }
        )
        values["created_at"] = values["updated_at"] = now.isoformat()
        with self.engine.begin() as conn:
            result = conn.execute(_accounts.insert().values(**values))
            return result.inserted_primary_key[0]

    def update(self, account_id: int, **fields) -> bool:
        """Update mutable fields on an account. Stamps updated_at.

        Accepts Account attribute names with their dataclass types (bool,
        datetime, dict for social_links); conversion to column types happens
        here. Returns True if a row was updated.
        """
        if not fields:
            return False
        values = _to_columns(fields)
        values["updated_at"] = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
        return result.rowcount > 0

    def save(self, account: Account) -> bool:
        """Write every mutable field of an in-memory Account back to its row.

        Lockout counters are excluded -- they only change through
        register_failed_attempt() / reset_lockout().
        """
        return self.update(
            account.id,
            email=account.email,
            phone=account.phone,
            first_name=account.first_name,
            last_name=account.last_name,
            role=account.role,
            avatar=account.avatar,
            cover_image=account.cover_image,
            bio=account.bio,
            social_links=account.social_links,
            is_active=account.is_active,
            is_verified=account.is_verified,
            last_active=account.last_active,
        )

    def set_password(self, account_id: int, hashed_password: str, changed_at: datetime) -> bool:
        """Replace the password hash, stamp password_changed_at, end the session."""
        return self.update(
            account_id,
            hashed_password=hashed_password,
            password_changed_at=changed_at,
            refresh_token=None,
        )

    def soft_delete(self, account_id: int, deleted_at: datetime) -> bool:
        """Flag an account deleted. Returns False if missing or already deleted."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.is_deleted == 0))
                .values(is_deleted=1, deleted_at=deleted_at.isoformat(), refresh_token=None, updated_at=_now_iso())
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Lockout counters (atomic)
    # ------------------------------------------------------------------

    @staticmethod
    def _increment(conn: Connection, account_id: int) -> int:
        conn.execute(
            _accounts.update()
            .where(_accounts.c.id == account_id)
            .values(login_attempts=_accounts.c.login_attempts + 1)
        )
        return conn.execute(select(_accounts.c.login_attempts).where(_accounts.c.id == account_id)).scalar() or 0

    @staticmethod
    def _lock(conn: Connection, account_id: int, until: datetime, threshold: int) -> bool:
        result = conn.execute(
            _accounts.update()
            .where((_accounts.c.id == account_id) & (_accounts.c.login_attempts >= threshold))
            .values(lock_until=until.isoformat())
        )
        return result.rowcount > 0

    def increment_login_attempts(self, account_id: int) -> int:
        """Atomically add one failed attempt and return the new count."""
        with self.engine.begin() as conn:
            return self._increment(conn, account_id)

    def set_lock(self, account_id: int, until: datetime, threshold: int) -> bool:
        """Set lock_until only if the stored counter has reached threshold."""
        with self.engine.begin() as conn:
            return self._lock(conn, account_id, until, threshold)

    def register_failed_attempt(self, account_id: int, threshold: int, until: datetime) -> tuple[int, bool]:
        """Increment-and-compare in one transaction. Returns (attempts, locked)."""
        with self.engine.begin() as conn:
            attempts = self._increment(conn, account_id)
            locked = attempts >= threshold and self._lock(conn, account_id, until, threshold)
        return attempts, locked

    def reset_lockout(self, account_id: int) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _accounts.update().where(_accounts.c.id == account_id).values(login_attempts=0, lock_until=None)
            )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def record_login(self, account_id: int, device: str, ip_address: str, at: datetime) -> None:
        """Append a login history entry and stamp last_active."""
        with self.engine.begin() as conn:
            conn.execute(
                _login_history.insert().values(
                    account_id=account_id, device=device, ip_address=ip_address, timestamp=at.isoformat()
                )
            )
            conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(last_active=at.isoformat()))

    def get_login_history(self, account_id: int, limit: int = 50) -> list[LoginRecord]:
        """Return the most recent login entries, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _login_history.select()
                .where(_login_history.c.account_id == account_id)
                .order_by(_login_history.c.timestamp.desc(), _login_history.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_login(r) for r in rows]

    def set_refresh_token(self, account_id: int, token: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(refresh_token=token))

    def clear_refresh_token(self, account_id: int, at: datetime) -> bool:
        """Drop the stored refresh token and stamp last_active.

        Returns True if the account exists, whether or not a token was stored.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(refresh_token=None, last_active=at.isoformat())
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        kind=AccountKind(row.kind),
        email=row.email,
        phone=row.phone,
        first_name=row.first_name,
        last_name=row.last_name,
        hashed_password=row.hashed_password,
        role=row.role,
        password_changed_at=from_iso(row.password_changed_at),
        login_attempts=row.login_attempts,
        lock_until=from_iso(row.lock_until),
        refresh_token=row.refresh_token,
        last_active=from_iso(row.last_active),
        is_active=bool(row.is_active),
        is_verified=bool(row.is_verified),
        is_deleted=bool(row.is_deleted),
        deleted_at=from_iso(row.deleted_at),
        avatar=row.avatar or "",
        cover_image=row.cover_image or "",
        bio=row.bio or "",
        social_links=json.loads(row.social_links) if row.social_links else {},
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_login(row) -> LoginRecord:
    return LoginRecord(
        id=row.id,
        account_id=row.account_id,
        device=row.device,
        ip_address=row.ip_address,
        timestamp=from_iso(row.timestamp),
    )
