"""
auth/errors.py -- Authentication failure taxonomy.

Every gate failure is a distinct AuthError subclass with a stable `code`.
The gate raises them; the API layer (api/routes/v1/accounts.py and
auth/dependencies.py) decides which HTTP status each code becomes. Nothing in
auth/ picks a status code.

AccountNotFound and InvalidCredentials are separate here so logs can tell
them apart. The API layer deliberately collapses them (and AccountLocked)
into one "bad_credentials" response so login never reveals whether an email
is registered.
"""

from __future__ import annotations

from datetime import datetime


class AuthError(Exception):
    code = "auth_error"
    message = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class AccountNotFound(AuthError):
    code = "account_not_found"
    message = "No such account."


class AccountLocked(AuthError):
    code = "account_locked"
    message = "Account is temporarily locked."

    def __init__(self, until: datetime) -> None:
        super().__init__(f"Account is locked until {until.isoformat()}.")
        self.until = until


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    message = "Invalid email or password."


class AccountInactive(AuthError):
    code = "account_inactive"
    message = "Account is inactive."


class AccountUnverified(AuthError):
    code = "account_unverified"
    message = "Please verify your account first."


class AccountDeleted(AuthError):
    code = "account_deleted"
    message = "Account has been deleted."


class TokenMissing(AuthError):
    code = "token_missing"
    message = "No token provided."


class TokenExpired(AuthError):
    code = "token_expired"
    message = "Token expired."


class TokenMalformed(AuthError):
    code = "token_malformed"
    message = "Invalid token."


class TokenSignatureInvalid(AuthError):
    code = "token_signature_invalid"
    message = "Token signature verification failed."


class TokenRevoked(AuthError):
    code = "token_revoked"
    message = "Refresh token is no longer valid."


class PasswordChangedSinceIssue(AuthError):
    code = "password_changed_since_issue"
    message = "Password changed recently. Please log in again."
