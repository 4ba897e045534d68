"""
auth/lockout.py -- Login-attempt lockout policy.

State machine per account:

    Unlocked --failure, attempts+1 <  threshold--> Unlocked   (count only)
    Unlocked --failure, attempts+1 >= threshold--> Locked(now + duration)
    Locked(until) --now >= until--> Unlocked                  (lazy, no sweep)
    *        --successful login-->  Unlocked, attempts = 0

Attempts do not decay when a lock expires: the next failure after expiry
re-locks immediately.

The counter is never read-modified-written here. register_failure() asks the
store for an atomic increment and an atomic conditional lock, so concurrent
failed logins cannot lose an increment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from core.config import Settings

if TYPE_CHECKING:
    from auth.models import Account
    from auth.store import AccountStore

logger = logging.getLogger("newsdesk.auth")

DEFAULT_MAX_LOGIN_ATTEMPTS = 5
DEFAULT_LOCK_DURATION_MS = 2 * 60 * 60 * 1000


def _configured_or_default(value: int | None, default: int) -> int:
    """Use value only if it is actually configured and positive.

    None, 0 and negatives all fall back. A zero threshold would lock every
    account on its first failure, and a zero duration would make the lock a
    no-op.
    """
    if value is None or value <= 0:
        return default
    return value


@dataclass(frozen=True)
class LockoutPolicy:
    threshold: int = DEFAULT_MAX_LOGIN_ATTEMPTS
    duration: timedelta = timedelta(milliseconds=DEFAULT_LOCK_DURATION_MS)

    @classmethod
    def from_settings(cls, settings: Settings) -> LockoutPolicy:
        threshold = _configured_or_default(settings.max_login_attempts, DEFAULT_MAX_LOGIN_ATTEMPTS)
        duration_ms = _configured_or_default(settings.lock_duration_ms, DEFAULT_LOCK_DURATION_MS)
        return cls(threshold=threshold, duration=timedelta(milliseconds=duration_ms))

    def locked_until(self, account: Account, now: datetime) -> datetime | None:
        """Return the lock expiry if the account is locked at `now`, else None."""
        if account.lock_until is not None and account.lock_until > now:
            return account.lock_until
        return None

    def is_locked(self, account: Account, now: datetime) -> bool:
        return self.locked_until(account, now) is not None

    def register_failure(self, store: AccountStore, account: Account, now: datetime) -> tuple[int, datetime | None]:
        """Record one failed attempt. Returns (attempts, lock_until or None).

        lock_until is only returned when this failure is the one that locked
        the account.
        """
        until = now + self.duration
        attempts, locked = store.register_failed_attempt(account.id, self.threshold, until)
        if locked:
            logger.warning(
                "Account %s locked after %d failed attempts (until %s)", account.id, attempts, until.isoformat()
            )
            return attempts, until
        return attempts, None

    def register_success(self, store: AccountStore, account: Account) -> None:
        if account.login_attempts or account.lock_until is not None:
            logger.info("Clearing lockout state for account %s", account.id)
        store.reset_lockout(account.id)
