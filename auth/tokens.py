"""
auth/tokens.py -- Password hashing, JWT issuance/verification, and cookie helpers.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper). The cost factor comes from
       Settings.bcrypt_rounds (default 12, production refuses less). The
       _DUMMY_HASH constant enables timing equalization in the auth gate so
       response time does not reveal whether an email exists [C1].

  JWT: python-jose with HS256. Two token kinds signed with two different
       secrets, so an access token can never verify as a refresh token or
       vice versa:
         access  -- sub, email, role, kind, typ="access", iat, exp
         refresh -- sub, kind, typ="refresh", iat, exp, jti
       TokenIssuer.verify() raises a typed AuthError rather than returning
       None, because the gate must distinguish expired / malformed / bad
       signature.

  Cookies: httpOnly, samesite="lax", secure when SECURE_COOKIES=true.

Layer rule: no imports from api/, cms/, or media/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from enum import Enum

import bcrypt
from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.errors import TokenExpired, TokenMalformed, TokenSignatureInvalid
from auth.models import Account
from core.clock import Clock, utc_now
from core.config import Settings, get_settings

logger = logging.getLogger("newsdesk.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


class TokenKind(str, Enum):
    access = "access"
    refresh = "refresh"


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer caps
    password length at 72 characters so inputs stay below the threshold.
    """
    salt = bcrypt.gensalt(rounds=rounds if rounds is not None else _settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. A malformed stored hash is a
    mismatch, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first unknown-email login is not measurably slower than later ones.
_DUMMY_HASH: str = hash_password("newsdesk_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run one bcrypt verification against the dummy hash and discard it."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Token issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Mints and verifies access and refresh tokens.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        token = issuer.issue_access(account)
        claims = issuer.verify(token, TokenKind.access)
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl_seconds: int,
        refresh_ttl_seconds: int,
        clock: Clock = utc_now,
    ) -> None:
        self._secrets = {TokenKind.access: access_secret, TokenKind.refresh: refresh_secret}
        self.access_ttl = timedelta(seconds=access_ttl_seconds)
        self.refresh_ttl = timedelta(seconds=refresh_ttl_seconds)
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> TokenIssuer:
        return cls(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            access_ttl_seconds=settings.access_token_ttl_seconds,
            refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
            clock=clock,
        )

    def issue_access(self, account: Account) -> str:
        now = self._clock()
        claims = {
            "sub": str(account.id),
            "email": account.email,
            "role": account.role,
            "kind": account.kind.value,
            "typ": TokenKind.access.value,
            "iat": now,
            "exp": now + self.access_ttl,
        }
        return jwt.encode(claims, self._secrets[TokenKind.access], algorithm=_ALGORITHM)

    def issue_refresh(self, account: Account) -> str:
        now = self._clock()
        claims = {
            "sub": str(account.id),
            "kind": account.kind.value,
            "typ": TokenKind.refresh.value,
            "iat": now,
            "exp": now + self.refresh_ttl,
            # Two refresh tokens minted in the same second must still differ,
            # otherwise rotation could not revoke the previous one.
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(claims, self._secrets[TokenKind.refresh], algorithm=_ALGORITHM)

    def verify(self, token: str, kind: TokenKind) -> dict:
        """Verify a token of the given kind and return its claims.

        Raises:
            TokenMalformed         -- not a JWT, wrong typ, or missing claims.
            TokenExpired           -- signature fine, exp in the past.
            TokenSignatureInvalid  -- parseable, but not signed by our key.
        """
        try:
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenMalformed() from exc

        # exp is checked below against the injected clock rather than by jose,
        # which only knows the wall clock.
        try:
            claims = jwt.decode(
                token,
                self._secrets[kind],
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTClaimsError as exc:
            raise TokenMalformed(str(exc)) from exc
        except JWTError as exc:
            raise TokenSignatureInvalid() from exc

        if claims.get("typ") != kind.value or not {"sub", "iat", "exp"} <= claims.keys():
            raise TokenMalformed()
        if claims["exp"] <= self._clock().timestamp():
            raise TokenExpired()
        try:
            claims["account_id"] = int(claims["sub"])
        except (TypeError, ValueError) as exc:
            raise TokenMalformed() from exc
        return claims


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response, access_token: str, refresh_token: str, issuer: TokenIssuer) -> None:
    """Write both tokens as httpOnly cookies on the response.

    max_age of each cookie matches its token's TTL so cookie and token expire
    together. The refresh cookie is scoped to the API prefix.
    """
    response.set_cookie(
        ACCESS_COOKIE,
        value=access_token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=int(issuer.access_ttl.total_seconds()),
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=refresh_token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=int(issuer.refresh_ttl.total_seconds()),
        path="/api/v1",
    )


def clear_auth_cookies(response) -> None:
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE, path="/api/v1")
