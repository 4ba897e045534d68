"""
tests/conftest.py -- Shared test fixtures for Newsdesk integration tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for accounts + content
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus an admin bearer token for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any auth/core import:
  DEBUG=true             -- get_settings() auto-generates the token secrets
  BCRYPT_ROUNDS=4        -- keeps hashing fast; only allowed in debug mode
  LOGIN_RATE_LIMIT       -- high enough that login tests never hit 429
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

# CRITICAL: Set these before any auth/core import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import cloudinary.uploader
import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_gates
from auth.lockout import LockoutPolicy
from auth.models import Account, AccountKind
from auth.store import AccountStore
from auth.tokens import TokenIssuer, hash_password
from cms.store import ContentStore
from core.config import get_settings
from media.uploader import MediaUploader

UPLOADED_URL = "https://res.cloudinary.com/demo/image/upload/v1712345678/newsdesk/uploaded.png"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[AccountStore, ContentStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'health').
    """
    accounts_url = f"sqlite:///file:test_accounts_{db_suffix}?mode=memory&cache=shared&uri=true"
    content_url = f"sqlite:///file:test_content_{db_suffix}?mode=memory&cache=shared&uri=true"
    return AccountStore(db_url=accounts_url), ContentStore(db_url=content_url)


def patch_cloudinary(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make cloudinary.uploader calls succeed without touching the network."""
    monkeypatch.setattr(cloudinary.uploader, "upload", MagicMock(return_value={"secure_url": UPLOADED_URL}))
    monkeypatch.setattr(cloudinary.uploader, "destroy", MagicMock(return_value={"result": "ok"}))


def _patch_lifespan(account_store: AccountStore, content: ContentStore, media: MediaUploader):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database. The media uploader
    is configured but the cloudinary.uploader calls are patched by api_client.
    """
    settings = get_settings()

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = account_store
        app.state.content = content
        app.state.media = media
        app.state.gates = build_gates(
            account_store, TokenIssuer.from_settings(settings), LockoutPolicy.from_settings(settings)
        )
        yield

    return test_lifespan


def create_account(
    store: AccountStore,
    kind: AccountKind,
    email: str,
    phone: str,
    password: str = "password123",
    **overrides,
) -> int:
    """Insert an active, verified account directly through the store."""
    values = {
        "first_name": "Test",
        "last_name": kind.value.capitalize(),
        "role": kind.value,
        "is_active": True,
        "is_verified": True,
    }
    values.update(overrides)
    return store.create(
        Account(kind=kind, email=email, phone=phone, hashed_password=hash_password(password, rounds=4), **values)
    )


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, admin_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores.
    The admin (admin@example.com / adminpass123) is created before the client
    starts and an access token is minted for Authorization headers.
    """
    account_store, content = _make_test_stores(request.module.__name__.rsplit(".", 1)[-1])
    media = MediaUploader("demo", "key", "secret")

    admin_id = create_account(
        account_store, AccountKind.admin, "admin@example.com", "5550000000", password="adminpass123"
    )
    token = TokenIssuer.from_settings(get_settings()).issue_access(account_store.get_by_id(admin_id))

    app.router.lifespan_context = _patch_lifespan(account_store, content, media)
    limiter.reset()

    with pytest.MonkeyPatch.context() as mp:
        patch_cloudinary(mp)
        with TestClient(app, raise_server_exceptions=True) as client:
            yield client, token, admin_id

    account_store.close()
    content.close()


@pytest.fixture
def make_account():
    """Return create_account() so tests can insert accounts directly."""
    return create_account
