"""
auth/gate.py -- The authentication gate: login, authorize, logout, refresh,
change_password.

One AuthGate instance serves one account kind (admin, author or user). The
API layer builds three of them at startup and keeps them on app.state.

Every rejection raises an AuthError subclass (auth/errors.py) and is logged
here with its internal reason. Passwords and tokens are never logged.

login() gates, first failure wins:
    1. account exists and is not soft-deleted   -> AccountNotFound
    2. account is not locked                     -> AccountLocked
    3. password matches                          -> InvalidCredentials
    4. account is active                         -> AccountInactive
    5. account is verified                       -> AccountUnverified

A locked account is rejected before bcrypt runs. An unknown email still pays
for one bcrypt check against a dummy hash [C1].

authorize() never mutates the store.

Layer rule: no imports from api/, cms/, or media/.
"""

from __future__ import annotations

import hmac
import logging

from auth.errors import (
    AccountDeleted,
    AccountInactive,
    AccountLocked,
    AccountNotFound,
    AccountUnverified,
    AuthError,
    InvalidCredentials,
    PasswordChangedSinceIssue,
    TokenMissing,
    TokenRevoked,
)
from auth.lockout import LockoutPolicy
from auth.models import Account, AccountKind, AccountView, LoginResult
from auth.store import AccountStore
from auth.tokens import TokenIssuer, TokenKind, burn_password_check, hash_password, verify_password
from core.clock import Clock, utc_now

logger = logging.getLogger("newsdesk.auth")


class AuthGate:
    """Credential and token checks for one account kind.

    Usage:
        gate = AuthGate(store, TokenIssuer.from_settings(settings), LockoutPolicy(), AccountKind.user)
        result = gate.login("a@example.com", "secret", "Mozilla/5.0", "10.0.0.1")
        account = gate.authorize(result.access_token)
    """

    def __init__(
        self,
        store: AccountStore,
        issuer: TokenIssuer,
        policy: LockoutPolicy,
        kind: AccountKind,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.issuer = issuer
        self.policy = policy
        self.kind = AccountKind(kind)
        self._clock = clock

    # ------------------------------------------------------------------
    # login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, device_info: str, ip_address: str) -> LoginResult:
        now = self._clock()
        account = self.store.find_by_email(self.kind, email)

        if account is None or account.is_deleted:
            burn_password_check(password)
            logger.warning("Login failed for %s %r from %s: no such account", self.kind.value, email, ip_address)
            raise AccountNotFound()

        until = self.policy.locked_until(account, now)
        if until is not None:
            logger.warning(
                "Login refused for %s %s from %s: locked until %s",
                self.kind.value,
                account.id,
                ip_address,
                until.isoformat(),
            )
            raise AccountLocked(until)

        if not verify_password(password, account.hashed_password):
            attempts, locked_until = self.policy.register_failure(self.store, account, now)
            logger.warning(
                "Login failed for %s %s from %s: bad password (attempt %d of %d)",
                self.kind.value,
                account.id,
                ip_address,
                attempts,
                self.policy.threshold,
            )
            raise InvalidCredentials()

        self.policy.register_success(self.store, account)

        if not account.is_active:
            logger.warning("Login refused for %s %s: account inactive", self.kind.value, account.id)
            raise AccountInactive()
        if not account.is_verified:
            logger.warning("Login refused for %s %s: account unverified", self.kind.value, account.id)
            raise AccountUnverified()

        self.store.record_login(account.id, device_info or "unknown", ip_address or "unknown", now)
        result = self._issue_pair(account)
        logger.info("Login succeeded for %s %s from %s", self.kind.value, account.id, ip_address)
        return result

    # ------------------------------------------------------------------
    # authorize
    # ------------------------------------------------------------------

    def authorize(self, token: str | None) -> Account:
        """Resolve an access token to its account. Raises AuthError on any failure."""
        if not token:
            raise TokenMissing()

        claims = self.issuer.verify(token, TokenKind.access)
        account = self._load(claims)

        if account.password_changed_at is not None and claims["iat"] < int(account.password_changed_at.timestamp()):
            logger.info("Rejected access token for %s %s: password changed since issue", self.kind.value, account.id)
            raise PasswordChangedSinceIssue()
        return account

    # ------------------------------------------------------------------
    # logout / refresh
    # ------------------------------------------------------------------

    def logout(self, account_id: int) -> None:
        """Drop the stored refresh token. Succeeds even if none is stored."""
        self.store.clear_refresh_token(account_id, self._clock())
        logger.info("Logout for %s %s", self.kind.value, account_id)

    def revoke_refresh(self, refresh_token: str | None) -> bool:
        """Logout by refresh token, for callers whose access token has expired.

        Only clears the stored token when it is the one presented. Returns
        True if a session was ended.
        """
        if not refresh_token:
            return False
        try:
            account = self._load(self.issuer.verify(refresh_token, TokenKind.refresh))
        except AuthError as exc:
            logger.info("Refresh token not revoked for %s: %s", self.kind.value, exc.code)
            return False
        if not account.refresh_token or not hmac.compare_digest(account.refresh_token, refresh_token):
            return False
        self.logout(account.id)
        return True

    def refresh(self, refresh_token: str | None) -> LoginResult:
        """Exchange a valid refresh token for a new token pair (rotation)."""
        if not refresh_token:
            raise TokenMissing()

        claims = self.issuer.verify(refresh_token, TokenKind.refresh)
        account = self._load(claims)

        if not account.is_active:
            logger.warning("Refresh refused for %s %s: account inactive", self.kind.value, account.id)
            raise AccountInactive()
        if not account.is_verified:
            logger.warning("Refresh refused for %s %s: account unverified", self.kind.value, account.id)
            raise AccountUnverified()
        if not account.refresh_token or not hmac.compare_digest(account.refresh_token, refresh_token):
            logger.warning("Refresh refused for %s %s: token revoked or rotated", self.kind.value, account.id)
            raise TokenRevoked()

        return self._issue_pair(account)

    # ------------------------------------------------------------------
    # change_password
    # ------------------------------------------------------------------

    def change_password(self, account_id: int, current_password: str, new_password: str) -> None:
        """Re-hash the password and end the current session.

        Access tokens issued before this call are rejected by authorize()
        from the next second onward.
        """
        account = self.store.get_by_id(account_id)
        if account is None or account.kind != self.kind or account.is_deleted:
            raise AccountNotFound()
        if not verify_password(current_password, account.hashed_password):
            logger.warning("Password change refused for %s %s: current password wrong", self.kind.value, account_id)
            raise InvalidCredentials("Current password is incorrect.")

        self.store.set_password(account_id, hash_password(new_password), self._clock())
        logger.info("Password changed for %s %s", self.kind.value, account_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, claims: dict) -> Account:
        if claims.get("kind") != self.kind.value:
            logger.warning("Token for kind %r presented to %s gate", claims.get("kind"), self.kind.value)
            raise AccountNotFound()
        account = self.store.get_by_id(claims["account_id"])
        if account is None or account.kind != self.kind:
            logger.warning("Token subject %s not found for %s", claims["account_id"], self.kind.value)
            raise AccountNotFound()
        if account.is_deleted:
            logger.warning("Token subject %s is deleted (%s)", account.id, self.kind.value)
            raise AccountDeleted()
        return account

    def _issue_pair(self, account: Account) -> LoginResult:
        access_token = self.issuer.issue_access(account)
        refresh_token = self.issuer.issue_refresh(account)
        self.store.set_refresh_token(account.id, refresh_token)
        fresh = self.store.get_by_id(account.id)
        return LoginResult(
            account=AccountView.from_account(fresh),
            access_token=access_token,
            refresh_token=refresh_token,
        )
