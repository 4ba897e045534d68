"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. "access_token" cookie -- set by the login and refresh endpoints.
An explicit header wins over a cookie left behind by an earlier login.

The token is handed to the AuthGate of each permitted account kind
(request.app.state.gates). A token minted for another kind fails that gate
with AccountNotFound and the next permitted kind is tried.

auth_http_error() is the single place where an AuthError becomes an HTTP
status. The gate itself never picks one.

Layer rule: no imports from api/, cms/, or media/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.errors import AccountNotFound, AuthError, TokenMissing
from auth.gate import AuthGate
from auth.models import Account, AccountKind
from auth.tokens import ACCESS_COOKIE

# Login failures that must look identical on the wire so a client cannot
# tell an unknown email from a wrong password or a locked account.
_CREDENTIAL_CODES = {"account_not_found", "invalid_credentials", "account_locked"}

_FORBIDDEN_CODES = {"account_inactive", "account_unverified"}


def auth_http_error(exc: AuthError, login: bool = False) -> HTTPException:
    """Translate an AuthError into the HTTPException the API returns.

    login=True collapses the credential failures into one bad_credentials
    response.
    """
    if login and exc.code in _CREDENTIAL_CODES:
        return HTTPException(
            status_code=401,
            detail={"code": "bad_credentials", "message": "Invalid email or password."},
        )
    status = 403 if exc.code in _FORBIDDEN_CODES else 401
    return HTTPException(status_code=status, detail={"code": exc.code, "message": exc.message})


def get_gate(request: Request, kind: AccountKind) -> AuthGate:
    return request.app.state.gates[AccountKind(kind)]


def extract_access_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer ") and auth_header[7:]:
        return auth_header[7:]
    return request.cookies.get(ACCESS_COOKIE) or None


def authorize_request(request: Request, kinds: tuple[AccountKind, ...]) -> Account:
    """Authorize the request against the gates for `kinds`, in order.

    Raises HTTPException (401/403) if no gate accepts the token.
    """
    token = extract_access_token(request)
    if token is None:
        raise auth_http_error(TokenMissing())

    not_found: AuthError = AccountNotFound()
    for kind in kinds:
        try:
            return get_gate(request, kind).authorize(token)
        except AccountNotFound as exc:
            not_found = exc
        except AuthError as exc:
            raise auth_http_error(exc) from exc
    raise auth_http_error(not_found)


def current_account(*kinds: AccountKind) -> Callable[[Request], Account]:
    """Build a dependency that requires a token of one of `kinds`.

    Usage:
        @router.get("/me")
        def me(account: Account = Depends(current_account(AccountKind.user))): ...
    """

    def dependency(request: Request) -> Account:
        return authorize_request(request, kinds)

    dependency.__name__ = "current_" + "_or_".join(k.value for k in kinds)
    return dependency


def try_get_current_account(request: Request, *kinds: AccountKind) -> Account | None:
    """Soft variant: the authorized account, or None. Never raises."""
    try:
        return authorize_request(request, kinds)
    except HTTPException:
        return None


def require_admin(request: Request) -> Account:
    """Require an admin token. Raises HTTP 401 if absent or invalid."""
    return authorize_request(request, (AccountKind.admin,))


def require_staff(request: Request) -> Account:
    """Require an admin or author token -- the accounts allowed to write content."""
    return authorize_request(request, (AccountKind.admin, AccountKind.author))
