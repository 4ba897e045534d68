"""
tests/test_api_routes.py -- Integration tests for account, category and news routes.

These tests exercise the full stack: FastAPI routing -> auth dependency injection
-> AuthGate / AccountStore / ContentStore -> response model serialization.
Unit testing individual route functions would miss middleware, dependency
injection, and response model validation -- integration tests are the right
tool here.

Coverage:
  - Auth failures: 401 without a token, 401 for a token of the wrong kind
  - Login: success sets cookies, rate limit (429), identical bad_credentials for unknown email
    and wrong password, 403 for unverified accounts, Cache-Control: no-store
  - Refresh rotation and revocation, logout, password change
  - Account management: self sign-up, admin create / list / status / delete
  - Categories: create with image upload, duplicate title, with-news-count
  - News: create, filter, status, posts with unique positions

Fixtures used (from conftest.py):
  - api_client: (client, token, admin_id) -- TestClient with an admin access token.
    The admin is admin@example.com / adminpass123.
  - make_account: inserts an active, verified account directly into a store.

Tests in one module share a database, so each test uses its own emails/phones.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

import api.routes.v1.accounts as account_routes
from api.limiter import limiter
from auth.models import AccountKind
from core.config import get_settings

PNG = ("picture.png", b"\x89PNG\r\n\x1a\nfake-image-bytes", "image/png")


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _login(client: TestClient, path: str, email: str, password: str):
    resp = client.post(f"/api/v1/{path}/login", json={"email": email, "password": password})
    return resp


def _signup(client: TestClient, email: str, phone: str, password: str = "password123"):
    return client.post(
        "/api/v1/users",
        data={"email": email, "phone": phone, "first_name": "New", "last_name": "Reader", "password": password},
    )


class TestApiAuthFailure:
    """Unauthenticated requests to protected API routes must return 401."""

    def test_get_me_unauthenticated(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        client.cookies.clear()
        resp = client.get("/api/v1/admins/me")
        assert resp.status_code == 401, f"Expected 401, got {resp.status_code}"
        assert resp.json()["error"]["code"] == "token_missing"

    def test_list_users_unauthenticated(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        client.cookies.clear()
        assert client.get("/api/v1/users").status_code == 401

    def test_create_author_unauthenticated(self, api_client: tuple[TestClient, str, int]) -> None:
        """Only /users allows anonymous sign-up."""
        client, _token, _uid = api_client
        client.cookies.clear()
        resp = client.post(
            "/api/v1/authors",
            data={
                "email": "anon-author@example.com",
                "phone": "5554000001",
                "first_name": "Anon",
                "last_name": "Author",
                "password": "password123",
            },
        )
        assert resp.status_code == 401, f"Expected 401, got {resp.status_code}: {resp.text}"

    def test_create_category_unauthenticated(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        client.cookies.clear()
        resp = client.post("/api/v1/categories", data={"title": "Nope"}, files={"image": PNG})
        assert resp.status_code == 401

    def test_garbage_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/admins/me", headers=_auth("not-a-token"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_malformed"

    def test_docs_require_admin(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        client.cookies.clear()
        assert client.get("/docs").status_code == 401
        assert client.get("/docs", headers=_auth(token)).status_code == 200


class TestLogin:
    """POST /api/v1/{kind}/login behaviour."""

    def test_admin_login_sets_cookies(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, uid = api_client
        resp = _login(client, "admins", "admin@example.com", "adminpass123")
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["account"]["id"] == uid
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 3600
        assert "hashed_password" not in data["account"], "password hash must never be serialized"
        assert "refresh_token" not in data, "refresh token travels only as a cookie"
        assert resp.headers["Cache-Control"] == "no-store"
        assert "access_token" in resp.cookies
        assert "refresh_token" in resp.cookies

        me = client.get("/api/v1/admins/me", headers=_auth(data["access_token"]))
        assert me.status_code == 200
        assert me.json()["email"] == "admin@example.com"
        client.cookies.clear()

    def test_bad_credentials_are_indistinguishable(self, api_client: tuple[TestClient, str, int]) -> None:
        """Unknown email and wrong password return the same status and body."""
        client, _token, _uid = api_client
        wrong_password = _login(client, "admins", "admin@example.com", "not-the-password")
        unknown_email = _login(client, "admins", "ghost@example.com", "not-the-password")
        assert wrong_password.status_code == unknown_email.status_code == 401
        assert wrong_password.json() == unknown_email.json()
        assert wrong_password.json()["error"]["code"] == "bad_credentials"
        assert wrong_password.headers["Cache-Control"] == "no-store"

    def test_locked_account_looks_like_bad_credentials(self, api_client, make_account) -> None:
        client, _token, _uid = api_client
        store = client.app.state.account_store
        make_account(store, AccountKind.author, "locked@example.com", "5554000002", password="password123")
        for _ in range(5):
            assert _login(client, "authors", "locked@example.com", "wrong-password").status_code == 401

        resp = _login(client, "authors", "locked@example.com", "password123")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"
        assert store.find_by_email(AccountKind.author, "locked@example.com").lock_until is not None

    def test_login_is_scoped_to_kind(self, api_client: tuple[TestClient, str, int]) -> None:
        """Admin credentials do not work on the users endpoint."""
        client, _token, _uid = api_client
        resp = _login(client, "users", "admin@example.com", "adminpass123")
        assert resp.status_code == 401

    def test_invalid_body(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/users/login", json={"email": "not-an-email", "password": "x"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_login_is_rate_limited(self, api_client, monkeypatch) -> None:
        client, _token, _uid = api_client
        low = get_settings().model_copy(update={"login_rate_limit": "3/minute"})
        monkeypatch.setattr(account_routes, "_settings", low)
        limiter.reset()
        try:
            codes = [_login(client, "authors", "nobody@example.com", "wrong-password").status_code for _ in range(3)]
            assert codes == [401, 401, 401]

            resp = _login(client, "authors", "nobody@example.com", "wrong-password")
            assert resp.status_code == 429
            assert resp.json()["error"]["code"] == "rate_limited"
            assert "Retry-After" in resp.headers
        finally:
            limiter.reset()


class TestUserLifecycle:
    """Self sign-up -> verification -> login -> refresh -> password change -> delete."""

    def test_signup_starts_unverified(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        client.cookies.clear()
        resp = _signup(client, "reader@example.com", "5554100001")
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["role"] == "user"
        assert data["is_verified"] is False
        assert data["kind"] == "user"

        login = _login(client, "users", "reader@example.com", "password123")
        assert login.status_code == 403
        assert login.json()["error"]["code"] == "account_unverified"

        verify = client.patch(f"/api/v1/users/{data['id']}/status", json={"is_verified": True}, headers=_auth(token))
        assert verify.status_code == 200
        assert verify.json()["is_verified"] is True
        assert _login(client, "users", "reader@example.com", "password123").status_code == 200
        client.cookies.clear()

    def test_signup_duplicate_email(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        client.cookies.clear()
        assert _signup(client, "dupe@example.com", "5554100002").status_code == 201
        resp = _signup(client, "DUPE@example.com", "5554100003")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "email_taken"
        resp = _signup(client, "other@example.com", "5554100002")
        assert resp.json()["error"]["code"] == "phone_taken"

    def test_signup_ignores_role(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        client.cookies.clear()
        resp = client.post(
            "/api/v1/users",
            data={
                "email": "sneaky@example.com",
                "phone": "5554100004",
                "first_name": "Sne",
                "last_name": "Aky",
                "password": "password123",
                "role": "admin",
            },
        )
        assert resp.status_code == 201
        assert resp.json()["role"] == "user"

    def test_signup_with_avatar(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        client.cookies.clear()
        resp = client.post(
            "/api/v1/users",
            data={
                "email": "avatar@example.com",
                "phone": "5554100005",
                "first_name": "Ava",
                "last_name": "Tar",
                "password": "password123",
            },
            files={"avatar": PNG},
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["avatar"].startswith("https://res.cloudinary.com/")

    def test_refresh_rotates_and_revokes(self, api_client, make_account) -> None:
        client, _token, _uid = api_client
        make_account(client.app.state.account_store, AccountKind.user, "rotate@example.com", "5554100006")
        client.cookies.clear()
        login = _login(client, "users", "rotate@example.com", "password123")
        old_refresh = login.cookies.get("refresh_token")
        assert old_refresh

        rotated = client.post("/api/v1/users/refresh")
        assert rotated.status_code == 200, rotated.text
        assert rotated.headers["Cache-Control"] == "no-store"

        client.cookies.clear()
        replay = client.post("/api/v1/users/refresh", headers={"Cookie": f"refresh_token={old_refresh}"})
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "token_revoked"

    def test_refresh_without_cookie(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        client.cookies.clear()
        resp = client.post("/api/v1/users/refresh")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_missing"

    def test_logout(self, api_client, make_account) -> None:
        client, _token, _uid = api_client
        account_id = make_account(client.app.state.account_store, AccountKind.user, "bye@example.com", "5554100007")
        client.cookies.clear()
        login = _login(client, "users", "bye@example.com", "password123").json()

        resp = client.post("/api/v1/users/logout", headers=_auth(login["access_token"]))
        assert resp.status_code == 200
        assert client.app.state.account_store.get_by_id(account_id).refresh_token is None

        client.cookies.clear()
        assert client.post("/api/v1/users/logout").status_code == 200, "logout without a session succeeds"

    def test_logout_with_only_refresh_cookie(self, api_client, make_account) -> None:
        """An expired access token still lets the refresh cookie end the session."""
        client, _token, _uid = api_client
        store = client.app.state.account_store
        account_id = make_account(store, AccountKind.user, "lapsed@example.com", "5554900002")
        client.cookies.clear()
        refresh = _login(client, "users", "lapsed@example.com", "password123").cookies.get("refresh_token")

        client.cookies.clear()
        resp = client.post("/api/v1/users/logout", headers={"Cookie": f"refresh_token={refresh}"})
        assert resp.status_code == 200
        assert store.get_by_id(account_id).refresh_token is None

    def test_change_password(self, api_client, make_account) -> None:
        client, _token, _uid = api_client
        make_account(client.app.state.account_store, AccountKind.user, "pw@example.com", "5554100008")
        client.cookies.clear()
        login = _login(client, "users", "pw@example.com", "password123")
        access = login.json()["access_token"]
        old_refresh = login.cookies.get("refresh_token")

        wrong = client.post(
            "/api/v1/users/me/password",
            json={"current_password": "nope-nope", "new_password": "newpassword456"},
            headers=_auth(access),
        )
        assert wrong.status_code == 401
        assert wrong.json()["error"]["code"] == "invalid_credentials"

        resp = client.post(
            "/api/v1/users/me/password",
            json={"current_password": "password123", "new_password": "newpassword456"},
            headers=_auth(access),
        )
        assert resp.status_code == 200, resp.text

        client.cookies.clear()
        replay = client.post("/api/v1/users/refresh", headers={"Cookie": f"refresh_token={old_refresh}"})
        assert replay.status_code == 401, "password change must end the refresh session"
        assert _login(client, "users", "pw@example.com", "password123").status_code == 401
        assert _login(client, "users", "pw@example.com", "newpassword456").status_code == 200
        client.cookies.clear()

    def test_new_password_too_short(self, api_client, make_account) -> None:
        client, _token, _uid = api_client
        make_account(client.app.state.account_store, AccountKind.user, "short@example.com", "5554100009")
        client.cookies.clear()
        access = _login(client, "users", "short@example.com", "password123").json()["access_token"]
        resp = client.post(
            "/api/v1/users/me/password",
            json={"current_password": "password123", "new_password": "short"},
            headers=_auth(access),
        )
        assert resp.status_code == 422
        client.cookies.clear()


class TestAccountManagement:
    """Admin-only account routes and self-access rules."""

    def test_admin_creates_author_with_role(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post(
            "/api/v1/authors",
            data={
                "email": "editor@example.com",
                "phone": "5554200001",
                "first_name": "Ed",
                "last_name": "Itor",
                "password": "password123",
                "role": "admin",
                "twitter": "https://twitter.com/editor",
            },
            headers=_auth(token),
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["role"] == "admin"
        assert data["is_verified"] is True
        assert data["social_links"] == {"twitter": "https://twitter.com/editor"}

    def test_invalid_role(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post(
            "/api/v1/authors",
            data={
                "email": "badrole@example.com",
                "phone": "5554200002",
                "first_name": "Bad",
                "last_name": "Role",
                "password": "password123",
                "role": "moderator",
            },
            headers=_auth(token),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_role"

    def test_list_users(self, api_client, make_account) -> None:
        client, token, _uid = api_client
        make_account(client.app.state.account_store, AccountKind.user, "listme@example.com", "5554200003")
        resp = client.get("/api/v1/users", params={"search": "listme", "limit": 5}, headers=_auth(token))
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert [a["email"] for a in data["items"]] == ["listme@example.com"]
        assert data["pagination"] == {"total": 1, "page": 1, "limit": 5, "pages": 1}

    def test_list_rejects_unknown_sort(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.get("/api/v1/users", params={"sort_by": "hashed_password"}, headers=_auth(token))
        assert resp.status_code == 422

    def test_user_token_cannot_list(self, api_client, make_account) -> None:
        client, _token, _uid = api_client
        make_account(client.app.state.account_store, AccountKind.user, "plain@example.com", "5554200004")
        client.cookies.clear()
        access = _login(client, "users", "plain@example.com", "password123").json()["access_token"]
        assert client.get("/api/v1/users", headers=_auth(access)).status_code == 401
        client.cookies.clear()

    def test_self_access_only(self, api_client, make_account) -> None:
        client, _token, _uid = api_client
        store = client.app.state.account_store
        me = make_account(store, AccountKind.user, "self@example.com", "5554200005")
        other = make_account(store, AccountKind.user, "other-self@example.com", "5554200006")
        client.cookies.clear()
        access = _login(client, "users", "self@example.com", "password123").json()["access_token"]

        assert client.get(f"/api/v1/users/{me}", headers=_auth(access)).status_code == 200
        resp = client.get(f"/api/v1/users/{other}", headers=_auth(access))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"
        history = client.get(f"/api/v1/users/{me}/login-history", headers=_auth(access))
        assert history.status_code == 200
        assert len(history.json()) == 1
        client.cookies.clear()

    def test_update_profile(self, api_client, make_account) -> None:
        client, _token, _uid = api_client
        me = make_account(client.app.state.account_store, AccountKind.user, "profile@example.com", "5554200007")
        client.cookies.clear()
        access = _login(client, "users", "profile@example.com", "password123").json()["access_token"]

        resp = client.patch(f"/api/v1/users/{me}", data={"bio": "Reads a lot", "first_name": "Pro"}, headers=_auth(access))
        assert resp.status_code == 200, resp.text
        assert resp.json()["bio"] == "Reads a lot"
        assert resp.json()["full_name"] == "Pro User"

        resp = client.patch(f"/api/v1/users/{me}", data={"role": "moderator"}, headers=_auth(access))
        assert resp.status_code == 403, "only admins change roles"
        client.cookies.clear()

    def test_admin_deletes_user(self, api_client, make_account) -> None:
        client, token, _uid = api_client
        victim = make_account(client.app.state.account_store, AccountKind.user, "gone@example.com", "5554200008")
        resp = client.delete(f"/api/v1/users/{victim}", headers=_auth(token))
        assert resp.status_code == 200
        assert client.get(f"/api/v1/users/{victim}", headers=_auth(token)).status_code == 404
        login = _login(client, "users", "gone@example.com", "password123")
        assert login.json()["error"]["code"] == "bad_credentials"
        # Deleted emails stay reserved.
        assert _signup(client, "gone@example.com", "5554200099").status_code == 409

    def test_admin_cannot_delete_or_deactivate_self(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, uid = api_client
        resp = client.delete(f"/api/v1/admins/{uid}", headers=_auth(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "self_deletion"
        resp = client.patch(f"/api/v1/admins/{uid}/status", json={"is_active": False}, headers=_auth(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "self_deactivation"

    def test_deactivated_user_cannot_login(self, api_client, make_account) -> None:
        client, token, _uid = api_client
        account_id = make_account(client.app.state.account_store, AccountKind.user, "idle@example.com", "5554200009")
        client.patch(f"/api/v1/users/{account_id}/status", json={"is_active": False}, headers=_auth(token))
        resp = _login(client, "users", "idle@example.com", "password123")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "account_inactive"

    def test_unverify_ends_session(self, api_client, make_account) -> None:
        client, token, _uid = api_client
        store = client.app.state.account_store
        account_id = make_account(store, AccountKind.user, "demoted@example.com", "5554900003")
        client.cookies.clear()
        assert _login(client, "users", "demoted@example.com", "password123").status_code == 200

        resp = client.patch(f"/api/v1/users/{account_id}/status", json={"is_verified": False}, headers=_auth(token))
        assert resp.status_code == 200
        assert store.get_by_id(account_id).refresh_token is None

        refreshed = client.post("/api/v1/users/refresh")
        assert refreshed.status_code == 403
        assert refreshed.json()["error"]["code"] == "account_unverified"
        client.cookies.clear()

    def test_unknown_account(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        assert client.get("/api/v1/authors/99999", headers=_auth(token)).status_code == 404


class TestCategoryRoutes:
    def test_create_and_get(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, uid = api_client
        resp = client.post(
            "/api/v1/categories", data={"title": "culture", "order": "2"}, files={"image": PNG}, headers=_auth(token)
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["title"] == "Culture"
        assert data["slug"] == "culture"
        assert data["author_id"] == uid
        assert data["image"].startswith("https://res.cloudinary.com/")

        detail = client.get(f"/api/v1/categories/{data['id']}")
        assert detail.status_code == 200, "category reads are public"

    def test_create_requires_image(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post("/api/v1/categories", data={"title": "No image"}, headers=_auth(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_value"

    def test_duplicate_title(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        first = client.post("/api/v1/categories", data={"title": "Travel"}, files={"image": PNG}, headers=_auth(token))
        assert first.status_code == 201
        resp = client.post("/api/v1/categories", data={"title": "TRAVEL"}, files={"image": PNG}, headers=_auth(token))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_unsupported_image_type(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post(
            "/api/v1/categories",
            data={"title": "Executables"},
            files={"image": ("evil.exe", b"MZ", "application/x-msdownload")},
            headers=_auth(token),
        )
        assert resp.status_code == 415
        assert resp.json()["error"]["code"] == "unsupported_media_type"

    def test_author_can_write(self, api_client, make_account) -> None:
        client, _token, _uid = api_client
        make_account(client.app.state.account_store, AccountKind.author, "writer@example.com", "5554300001")
        client.cookies.clear()
        access = _login(client, "authors", "writer@example.com", "password123").json()["access_token"]
        resp = client.post("/api/v1/categories", data={"title": "Opinion"}, files={"image": PNG}, headers=_auth(access))
        assert resp.status_code == 201, resp.text
        client.cookies.clear()

    def test_update_replaces_image(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        created = client.post("/api/v1/categories", data={"title": "Weather"}, files={"image": PNG}, headers=_auth(token))
        category_id = created.json()["id"]
        resp = client.patch(
            f"/api/v1/categories/{category_id}",
            data={"title": "weather and climate", "is_active": "false"},
            headers=_auth(token),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["slug"] == "weather-and-climate"
        assert resp.json()["is_active"] is False

    def test_delete(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        created = client.post("/api/v1/categories", data={"title": "Obsolete"}, files={"image": PNG}, headers=_auth(token))
        category_id = created.json()["id"]
        assert client.delete(f"/api/v1/categories/{category_id}", headers=_auth(token)).status_code == 200
        resp = client.get(f"/api/v1/categories/{category_id}")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_list(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/categories", params={"limit": 2})
        assert resp.status_code == 200
        data = resp.json()
        assert len(data["items"]) <= 2
        assert data["pagination"]["limit"] == 2


class TestNewsRoutes:
    def _category(self, client: TestClient, token: str, title: str) -> int:
        resp = client.post("/api/v1/categories", data={"title": title}, files={"image": PNG}, headers=_auth(token))
        assert resp.status_code == 201, resp.text
        return resp.json()["id"]

    def test_news_flow(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        category_id = self._category(client, token, "Technology")

        resp = client.post(
            "/api/v1/news",
            json={"title": "Chip shortage", "content": "Supply is tight.", "category_id": category_id, "tags": ["Chips"]},
            headers=_auth(token),
        )
        assert resp.status_code == 201, resp.text
        news = resp.json()
        assert news["status"] == "Draft"
        assert news["tags"] == ["chips"]

        published = client.patch(f"/api/v1/news/{news['id']}/status", json={"status": "Published"}, headers=_auth(token))
        assert published.status_code == 200
        assert published.json()["status"] == "Published"

        listed = client.get("/api/v1/news", params={"category_id": category_id, "status": "Published"})
        assert [n["id"] for n in listed.json()["items"]] == [news["id"]]
        assert client.get("/api/v1/news", params={"tag": "chips"}).json()["pagination"]["total"] >= 1

        counts = {c["id"]: c["news_count"] for c in client.get("/api/v1/categories/with-news-count").json()}
        assert counts[category_id] == 1

    def test_news_requires_existing_category(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post(
            "/api/v1/news", json={"title": "Orphan", "content": "Body", "category_id": 99999}, headers=_auth(token)
        )
        assert resp.status_code == 400

    def test_invalid_status(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        category_id = self._category(client, token, "Gaming")
        news = client.post(
            "/api/v1/news", json={"title": "Patch notes", "content": "Body", "category_id": category_id}, headers=_auth(token)
        ).json()
        resp = client.patch(f"/api/v1/news/{news['id']}/status", json={"status": "Archived"}, headers=_auth(token))
        assert resp.status_code == 422

    def test_posts(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, uid = api_client
        category_id = self._category(client, token, "Live")
        news = client.post(
            "/api/v1/news", json={"title": "Match day", "content": "Live updates", "category_id": category_id}, headers=_auth(token)
        ).json()

        first = client.post(
            f"/api/v1/news/{news['id']}/posts",
            data={"content": "Kick-off", "position": "1"},
            files={"media": PNG},
            headers=_auth(token),
        )
        assert first.status_code == 201, first.text
        assert first.json()["author_id"] == uid
        assert first.json()["media"].startswith("https://res.cloudinary.com/")

        clash = client.post(
            f"/api/v1/news/{news['id']}/posts", data={"content": "Again", "position": "1"}, headers=_auth(token)
        )
        assert clash.status_code == 409

        detail = client.get(f"/api/v1/news/{news['id']}").json()
        assert [p["position"] for p in detail["posts"]] == [1]
        assert client.get(f"/api/v1/categories/{category_id}").json()["post_count"] == 1

    def test_update_and_delete(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        category_id = self._category(client, token, "Health")
        news = client.post(
            "/api/v1/news", json={"title": "Flu season", "content": "Body", "category_id": category_id}, headers=_auth(token)
        ).json()
        resp = client.patch(f"/api/v1/news/{news['id']}", json={"featured": True}, headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json()["featured"] is True
        assert resp.json()["title"] == "Flu season"

        assert client.delete(f"/api/v1/news/{news['id']}", headers=_auth(token)).status_code == 200
        assert client.get(f"/api/v1/news/{news['id']}").status_code == 404

    def test_news_write_requires_staff(self, api_client, make_account) -> None:
        client, _token, _uid = api_client
        make_account(client.app.state.account_store, AccountKind.user, "fan@example.com", "5554400001")
        client.cookies.clear()
        access = _login(client, "users", "fan@example.com", "password123").json()["access_token"]
        resp = client.post(
            "/api/v1/news", json={"title": "Fan post", "content": "Body", "category_id": 1}, headers=_auth(access)
        )
        assert resp.status_code == 401
        client.cookies.clear()
