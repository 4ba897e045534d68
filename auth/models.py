"""
auth/models.py -- Domain dataclasses for account entities.

Pattern: Data class (pure data container, zero logic). Credential, lockout and
token behaviour lives in auth/tokens.py, auth/lockout.py and auth/gate.py --
the dataclass only owns the shape shared by the three account kinds.

Layer rule: no imports from api/, cms/, or media/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class AccountKind(str, Enum):
    admin = "admin"
    author = "author"
    user = "user"


# Roles each account kind may carry. The first entry is the default.
ROLES_BY_KIND: dict[AccountKind, tuple[str, ...]] = {
    AccountKind.admin: ("admin",),
    AccountKind.author: ("author", "admin"),
    AccountKind.user: ("user", "admin", "moderator"),
}

SOCIAL_LINK_KEYS = ("facebook", "twitter", "instagram", "linkedin")


@dataclass
class Account:
    """An admin, author or user identity.

    hashed_password and refresh_token never leave the service layer; use
    AccountView.from_account() for anything returned to a client.

    login_attempts / lock_until are the lockout state. lock_until in the past
    means the account is unlocked again; the counter is only zeroed by a
    successful login.

    id is None before the record is written to the database.
    """

    kind: AccountKind
    email: str
    phone: str
    first_name: str
    last_name: str
    hashed_password: str
    role: str = ""
    id: int | None = None
    password_changed_at: datetime | None = None
    login_attempts: int = 0
    lock_until: datetime | None = None
    refresh_token: str | None = None
    last_active: datetime | None = None
    is_active: bool = True
    is_verified: bool = False
    is_deleted: bool = False
    deleted_at: datetime | None = None
    avatar: str = ""
    cover_image: str = ""
    bio: str = ""
    social_links: dict[str, str] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass
class LoginRecord:
    """Append-only login history entry. Never updated or deleted."""

    account_id: int
    device: str
    ip_address: str
    timestamp: datetime
    id: int | None = None


@dataclass(frozen=True)
class AccountView:
    """Client-safe projection of an Account.

    Excludes hashed_password, refresh_token, login_attempts and lock_until.
    """

    id: int
    kind: str
    email: str
    phone: str
    first_name: str
    last_name: str
    full_name: str
    role: str
    avatar: str
    cover_image: str
    bio: str
    social_links: dict[str, str]
    is_active: bool
    is_verified: bool
    last_active: str | None
    created_at: str
    updated_at: str

    @classmethod
    def from_account(cls, account: Account) -> AccountView:
        return cls(
            id=account.id,
            kind=account.kind.value,
            email=account.email,
            phone=account.phone,
            first_name=account.first_name,
            last_name=account.last_name,
            full_name=account.full_name,
            role=account.role,
            avatar=account.avatar,
            cover_image=account.cover_image,
            bio=account.bio,
            social_links=dict(account.social_links),
            is_active=account.is_active,
            is_verified=account.is_verified,
            last_active=account.last_active.isoformat() if account.last_active else None,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


@dataclass(frozen=True)
class LoginResult:
    """Outcome of a successful login or refresh."""

    account: AccountView
    access_token: str
    refresh_token: str
