"""
tests/conftest.py -- Shared test fixtures for the identity service tests.

This module provides:
  - store: fresh in-memory AccountStore per test (unit tests)
  - _make_test_store(): named shared-memory AccountStore for TestClient tests
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - api_client: TestClient plus an admin account and its bearer token

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for TestClient because route handlers run in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment must be set before any api/core import: get_settings() is cached
on first call and read at import time by api/main.py and the auth routes.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

# CRITICAL: set before any api/core import.
# DEBUG lets get_settings() auto-generate SECRET_KEY instead of raising.
os.environ.setdefault("DEBUG", "true")
# Cheapest bcrypt cost the settings allow; the tests hash a lot.
os.environ.setdefault("BCRYPT_ROUNDS", "4")
# One IP (the TestClient) makes every request; keep the limiter out of the way.
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
# Enables the google provider so the federated callback route is reachable.
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-google-client")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-google-secret")

import pytest
from fastapi.testclient import TestClient

from api.main import app, attach_identity_services
from auth.credentials import hash_password
from auth.models import AccountDraft, Role
from auth.store import AccountStore
from core.config import get_settings

ADMIN_EMAIL = "admin@rentally.test"
ADMIN_PASSWORD = "adminpass123"


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    """Fresh single-connection in-memory store for unit tests."""
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> AccountStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'deps').
    """
    return AccountStore(db_url=f"sqlite:///file:test_accounts_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(store: AccountStore):
    """Return an async context manager that replaces the real lifespan.

    Uses the same attach_identity_services() wiring as production, around the
    test store. The OAuth registry is a MagicMock so tests can hand out fake
    provider clients without network calls.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        attach_identity_services(app, store, get_settings())
        app.state.oauth = MagicMock()
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, admin_token, admin_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store. The
    admin is created directly in the store since registration cannot grant
    the admin role.
    """
    store = _make_test_store("api")
    admin = store.create(
        AccountDraft(
            name="Test Admin",
            email=ADMIN_EMAIL,
            role=Role.admin,
            password_hash=hash_password(ADMIN_PASSWORD, rounds=4),
            is_verified=True,
        )
    )

    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        token = client.app.state.token_service.issue(admin.id).token
        yield client, token, admin.id

    store.close()
