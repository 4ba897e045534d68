"""
api/routes/v1/accounts.py -- Login, session and account management routes.

build_account_router(kind) returns one router per account kind; api/main.py
mounts them at /api/v1/admins, /api/v1/authors and /api/v1/users.

Routes (per kind, in registration order to avoid path capture conflicts):
  POST   /login                 -- email + password; sets token cookies
  POST   /logout                -- clears the stored refresh token and cookies
  POST   /refresh               -- rotates the token pair using the refresh cookie
  GET    /me                    -- current account
  POST   /me/password           -- change own password; ends the session
  POST   /                      -- create account (multipart: avatar, cover_image)
  GET    /                      -- list accounts (search, filters, pagination)
  GET    /{account_id}          -- account detail
  PATCH  /{account_id}          -- update profile (multipart)
  PATCH  /{account_id}/status   -- set is_active / is_verified
  DELETE /{account_id}          -- soft delete
  GET    /{account_id}/login-history

Auth policy:
  - login / logout / refresh: public (logout is a no-op without a token).
  - /me, /me/password: a token of this kind.
  - create: admin; on /users also anonymous sign-up when
    SELF_REGISTRATION_ENABLED (role forced to "user", unverified).
  - list, status, delete: admin.
  - get, update, login-history: admin, or the account itself.

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  [C1] AuthGate.login() provides timing equalization for unknown emails.
  [M4] Admins cannot deactivate or delete their own account.
  [M5] Cache-Control: no-store on login and refresh responses.
  Unknown email, wrong password and locked account all return the same
  401 bad_credentials.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import EmailStr
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    PHONE_PATTERN,
    AccountListResponse,
    AccountResponse,
    AccountStatusUpdate,
    ErrorDetail,
    LoginHistoryRow,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    Pagination,
    PasswordChange,
    SortOrderEnum,
)
from api.uploads import replace_media, upload_optional
from auth.dependencies import (
    auth_http_error,
    authorize_request,
    current_account,
    get_gate,
    require_admin,
    try_get_current_account,
)
from auth.errors import AuthError
from auth.models import ROLES_BY_KIND, SOCIAL_LINK_KEYS, Account, AccountKind, AccountView
from auth.store import AccountStore
from auth.tokens import REFRESH_COOKIE, clear_auth_cookies, hash_password, set_auth_cookies
from core.clock import utc_now
from core.config import get_settings

logger = logging.getLogger("newsdesk.api")

_settings = get_settings()


def _login_rate_limit() -> str:
    return _settings.login_rate_limit


PATH_BY_KIND = {
    AccountKind.admin: "admins",
    AccountKind.author: "authors",
    AccountKind.user: "users",
}

_SORT_PATTERN = r"^(first_name|last_name|email|created_at|updated_at)$"


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail=ErrorDetail(code=code, message=message).model_dump())


def _token_response(request: Request, kind: AccountKind, result) -> JSONResponse:
    gate = get_gate(request, kind)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            account=AccountResponse.from_view(result.account),
            access_token=result.access_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=int(gate.issuer.access_ttl.total_seconds()),
        ).model_dump(),
    )
    set_auth_cookies(resp, result.access_token, result.refresh_token, gate.issuer)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _social_links(**links: Optional[str]) -> dict[str, str]:
    return {key: value for key, value in links.items() if key in SOCIAL_LINK_KEYS and value}


def build_account_router(kind: AccountKind) -> APIRouter:
    """Return the router for one account kind."""
    kind = AccountKind(kind)
    router = APIRouter()
    self_or_admin = (AccountKind.admin,) if kind is AccountKind.admin else (AccountKind.admin, kind)

    def load(request: Request, account_id: int) -> Account:
        store: AccountStore = request.app.state.account_store
        account = store.get_by_id(account_id)
        if account is None or account.kind is not kind or account.is_deleted:
            raise _error(404, "not_found", f"{kind.value.capitalize()} {account_id} not found.")
        return account

    def require_self_or_admin(request: Request, account_id: int) -> Account:
        actor = authorize_request(request, self_or_admin)
        if actor.kind is not AccountKind.admin and actor.id != account_id:
            raise _error(403, "forbidden", "You can only access your own account.")
        return actor

    # -----------------------------------------------------------------------
    # Session endpoints
    # -----------------------------------------------------------------------

    def login(request: Request, body: LoginRequest) -> JSONResponse:
        """Authenticate with email and password; set access and refresh cookies.

        Returns the same generic error for an unknown email, a wrong password
        and a locked account ("bad_credentials").
        """
        gate = get_gate(request, kind)
        device = request.headers.get("User-Agent", "unknown")
        ip_address = request.client.host if request.client else "unknown"
        try:
            result = gate.login(body.email, body.password, device, ip_address)
        except AuthError as exc:
            err = auth_http_error(exc, login=True)
            resp = JSONResponse(status_code=err.status_code, content={"error": err.detail})
            resp.headers["Cache-Control"] = "no-store"  # [M5]
            return resp
        return _token_response(request, kind, result)

    # slowapi keys limits by endpoint name; each kind needs its own counter.
    # The route must be the limiter's wrapper: the middleware skips decorated
    # endpoints and leaves enforcement to it.
    login.__name__ = f"{kind.value}_login"
    router.post("/login", response_model=LoginResponse)(limiter.limit(_login_rate_limit)(login))  # [H2]

    @router.post("/logout", response_model=MessageResponse)
    def logout(request: Request) -> JSONResponse:
        """Invalidate the stored refresh token and clear cookies.

        The session is found from the access token, or from the refresh cookie
        when the access token has expired.
        """
        gate = get_gate(request, kind)
        account = try_get_current_account(request, kind)
        if account is not None:
            gate.logout(account.id)
        else:
            gate.revoke_refresh(request.cookies.get(REFRESH_COOKIE))
        resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
        clear_auth_cookies(resp)
        return resp

    @router.post("/refresh", response_model=LoginResponse)
    def refresh(request: Request) -> JSONResponse:
        """Exchange the refresh cookie for a new token pair. The old refresh token stops working."""
        try:
            result = get_gate(request, kind).refresh(request.cookies.get(REFRESH_COOKIE))
        except AuthError as exc:
            raise auth_http_error(exc) from exc
        return _token_response(request, kind, result)

    @router.get("/me", response_model=AccountResponse)
    def me(account: Account = Depends(current_account(kind))) -> AccountResponse:
        return AccountResponse.from_view(AccountView.from_account(account))

    @router.post("/me/password", response_model=MessageResponse)
    def change_password(
        request: Request,
        body: PasswordChange,
        account: Account = Depends(current_account(kind)),
    ) -> JSONResponse:
        """Change the caller's password. Every session must log in again afterwards."""
        try:
            get_gate(request, kind).change_password(account.id, body.current_password, body.new_password)
        except AuthError as exc:
            raise auth_http_error(exc) from exc
        resp = JSONResponse(content=MessageResponse(message="Password updated. Please log in again.").model_dump())
        clear_auth_cookies(resp)
        return resp

    # -----------------------------------------------------------------------
    # Management endpoints
    # -----------------------------------------------------------------------

    @router.post("", response_model=AccountResponse, status_code=201)
    def create_account(
        request: Request,
        email: EmailStr = Form(...),
        phone: str = Form(..., pattern=PHONE_PATTERN),
        first_name: str = Form(..., min_length=1, max_length=50),
        last_name: str = Form(..., min_length=1, max_length=50),
        password: str = Form(..., min_length=8, max_length=72),
        role: Optional[str] = Form(None),
        bio: str = Form("", max_length=500),
        is_verified: bool = Form(True),
        facebook: Optional[str] = Form(None, max_length=255),
        twitter: Optional[str] = Form(None, max_length=255),
        instagram: Optional[str] = Form(None, max_length=255),
        linkedin: Optional[str] = Form(None, max_length=255),
        avatar: Optional[UploadFile] = File(None),
        cover_image: Optional[UploadFile] = File(None),
    ) -> AccountResponse:
        """Create an account of this kind.

        Admin callers may pick the role and verification state. Anonymous
        sign-up (users only) always gets the default role and starts
        unverified.
        """
        store: AccountStore = request.app.state.account_store
        actor = try_get_current_account(request, AccountKind.admin)
        if actor is None:
            if kind is not AccountKind.user or not _settings.self_registration_enabled:
                actor = require_admin(request)  # raises the precise 401
            else:
                role, is_verified = None, False

        roles = ROLES_BY_KIND[kind]
        if role is not None and role not in roles:
            raise _error(400, "invalid_role", f"role must be one of: {', '.join(roles)}")

        taken = store.email_or_phone_taken(kind, email, phone)
        if taken is not None:
            raise _error(409, f"{taken}_taken", f"{taken.capitalize()} is already taken.")

        account = Account(
            kind=kind,
            email=email,
            phone=phone,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            hashed_password=hash_password(password),
            role=role or roles[0],
            is_verified=is_verified,
            bio=bio,
            social_links=_social_links(facebook=facebook, twitter=twitter, instagram=instagram, linkedin=linkedin),
            avatar=upload_optional(request, avatar) or "",
            cover_image=upload_optional(request, cover_image) or "",
        )
        try:
            account_id = store.create(account)
        except IntegrityError as exc:
            # Lost a race with a concurrent create of the same email or phone.
            raise _error(409, "conflict", "Email or phone is already taken.") from exc

        logger.info(
            "%s %s created by %s", kind.value.capitalize(), account_id, f"admin {actor.id}" if actor else "sign-up"
        )
        return AccountResponse.from_view(AccountView.from_account(store.get_by_id(account_id)))

    @router.get("", response_model=AccountListResponse, dependencies=[Depends(require_admin)])
    def list_accounts(
        request: Request,
        search: Optional[str] = Query(None, max_length=100),
        role: Optional[str] = Query(None),
        is_active: Optional[bool] = Query(None),
        is_verified: Optional[bool] = Query(None),
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        sort_by: str = Query("created_at", pattern=_SORT_PATTERN),
        sort_order: SortOrderEnum = Query(SortOrderEnum.desc),
    ) -> AccountListResponse:
        store: AccountStore = request.app.state.account_store
        accounts, total = store.list_accounts(
            kind,
            search=search,
            role=role,
            is_active=is_active,
            is_verified=is_verified,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order.value,
        )
        return AccountListResponse(
            items=[AccountResponse.from_view(AccountView.from_account(a)) for a in accounts],
            pagination=Pagination.build(total, page, limit),
        )

    @router.get("/{account_id}", response_model=AccountResponse)
    def get_account(request: Request, account_id: int) -> AccountResponse:
        require_self_or_admin(request, account_id)
        return AccountResponse.from_view(AccountView.from_account(load(request, account_id)))

    @router.patch("/{account_id}", response_model=AccountResponse)
    def update_account(
        request: Request,
        account_id: int,
        email: Optional[EmailStr] = Form(None),
        phone: Optional[str] = Form(None, pattern=PHONE_PATTERN),
        first_name: Optional[str] = Form(None, min_length=1, max_length=50),
        last_name: Optional[str] = Form(None, min_length=1, max_length=50),
        role: Optional[str] = Form(None),
        bio: Optional[str] = Form(None, max_length=500),
        facebook: Optional[str] = Form(None, max_length=255),
        twitter: Optional[str] = Form(None, max_length=255),
        instagram: Optional[str] = Form(None, max_length=255),
        linkedin: Optional[str] = Form(None, max_length=255),
        avatar: Optional[UploadFile] = File(None),
        cover_image: Optional[UploadFile] = File(None),
    ) -> AccountResponse:
        """Update profile fields. Only admins may change the role."""
        actor = require_self_or_admin(request, account_id)
        store: AccountStore = request.app.state.account_store
        account = load(request, account_id)

        if role is not None:
            if actor.kind is not AccountKind.admin:
                raise _error(403, "forbidden", "Only an admin can change roles.")
            if role not in ROLES_BY_KIND[kind]:
                raise _error(400, "invalid_role", f"role must be one of: {', '.join(ROLES_BY_KIND[kind])}")
            account.role = role

        taken = store.email_or_phone_taken(kind, email, phone, exclude_id=account_id)
        if taken is not None:
            raise _error(409, f"{taken}_taken", f"{taken.capitalize()} is already taken.")

        if email is not None:
            account.email = email
        if phone is not None:
            account.phone = phone
        if first_name is not None:
            account.first_name = first_name.strip()
        if last_name is not None:
            account.last_name = last_name.strip()
        if bio is not None:
            account.bio = bio
        links = _social_links(facebook=facebook, twitter=twitter, instagram=instagram, linkedin=linkedin)
        if links:
            account.social_links = {**account.social_links, **links}

        old_avatar, old_cover = account.avatar, account.cover_image
        account.avatar = upload_optional(request, avatar) or account.avatar
        account.cover_image = upload_optional(request, cover_image) or account.cover_image

        try:
            store.save(account)
        except IntegrityError as exc:
            raise _error(409, "conflict", "Email or phone is already taken.") from exc
        replace_media(request, old_avatar, account.avatar)
        replace_media(request, old_cover, account.cover_image)

        logger.info("%s %s updated by %s %s", kind.value.capitalize(), account_id, actor.kind.value, actor.id)
        return AccountResponse.from_view(AccountView.from_account(store.get_by_id(account_id)))

    @router.patch("/{account_id}/status", response_model=AccountResponse)
    def update_status(
        request: Request,
        account_id: int,
        body: AccountStatusUpdate,
        actor: Account = Depends(require_admin),
    ) -> AccountResponse:
        """Activate / deactivate or verify / unverify an account."""
        store: AccountStore = request.app.state.account_store
        load(request, account_id)
        if actor.id == account_id and body.is_active is False:  # [M4]
            raise _error(400, "self_deactivation", "You cannot deactivate your own account.")

        changes = body.model_dump(exclude_none=True)
        if changes:
            if False in changes.values():
                # Deactivated or unverified accounts lose their session.
                store.update(account_id, refresh_token=None, **changes)
            else:
                store.update(account_id, **changes)
            logger.info("%s %s status set to %s by admin %s", kind.value, account_id, changes, actor.id)
        return AccountResponse.from_view(AccountView.from_account(store.get_by_id(account_id)))

    @router.delete("/{account_id}", response_model=MessageResponse)
    def delete_account(
        request: Request,
        account_id: int,
        actor: Account = Depends(require_admin),
    ) -> MessageResponse:
        """Soft delete. The record stays, but can no longer log in or be listed."""
        store: AccountStore = request.app.state.account_store
        load(request, account_id)
        if actor.id == account_id:  # [M4]
            raise _error(400, "self_deletion", "You cannot delete your own account.")
        store.soft_delete(account_id, utc_now())
        logger.info("%s %s deleted by admin %s", kind.value.capitalize(), account_id, actor.id)
        return MessageResponse(message=f"{kind.value.capitalize()} deleted.")

    @router.get("/{account_id}/login-history", response_model=list[LoginHistoryRow])
    def login_history(
        request: Request,
        account_id: int,
        limit: int = Query(50, ge=1, le=200),
    ) -> list[LoginHistoryRow]:
        require_self_or_admin(request, account_id)
        load(request, account_id)
        store: AccountStore = request.app.state.account_store
        return [LoginHistoryRow.from_record(r) for r in store.get_login_history(account_id, limit=limit)]

    return router
