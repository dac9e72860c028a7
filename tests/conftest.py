"""
tests/conftest.py -- Shared test fixtures for MissionGuard integration tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory stores behind one named DB
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: (client, stores) -- TestClient over the real app and guards
  - auth_headers: factory for JWT Authorization headers
  - make_user / make_api_key: factories that seed users and API keys

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync dependencies in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Background writes run inline (InlineWriter) so tests can assert on API key
usage counts and durable rate-limit rows right after a request.

DEBUG and AUTHENTIK_PROXY_SECRET must be set before any auth/core import so
get_settings() sees them on first (cached) construction.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set env before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("AUTHENTIK_PROXY_SECRET", "test-proxy-secret")

import pytest
from fastapi.testclient import TestClient

from access.teams import TeamStore
from api.limiter import limiter
from api.main import app
from auth.models import ApiKey, Identity, User
from auth.store import UserStore
from auth.tokens import create_identity_token, generate_api_key
from quota.store import QuotaStore
from ratelimit.limiter import RateLimiter
from ratelimit.store import RateLimitCache, RateLimitStore
from resources.store import ResourceStore

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


@dataclass
class Stores:
    user_store: UserStore
    resources: ResourceStore
    teams: TeamStore
    quotas: QuotaStore
    rate_limit_store: RateLimitStore

    def close(self) -> None:
        self.user_store.close()
        self.resources.close()
        self.teams.close()
        self.quotas.close()
        self.rate_limit_store.close()


class InlineWriter:
    """Stand-in for core.background.BackgroundWriter that runs writes synchronously.

    Failures are recorded rather than raised, matching the best-effort contract.
    """

    def __init__(self) -> None:
        self.failures: list[tuple[str, Exception]] = []

    def submit(self, fn, *args, label: str = "background write"):
        try:
            fn(*args)
        except Exception as exc:
            self.failures.append((label, exc))
        return None

    def shutdown(self, wait: bool = False) -> None:
        return None


def _make_test_stores(db_suffix: str) -> Stores:
    """Create isolated stores sharing one named shared-memory SQLite DB.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'routes', 'keys').
    """
    url = f"sqlite:///file:test_missionguard_{db_suffix}?mode=memory&cache=shared&uri=true"
    return Stores(
        user_store=UserStore(db_url=url),
        resources=ResourceStore(db_url=url),
        teams=TeamStore(db_url=url),
        quotas=QuotaStore(db_url=url),
        rate_limit_store=RateLimitStore(db_url=url),
    )


def _patch_lifespan(stores: Stores):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the production database. The sweep_task is
    a long-sleeping coroutine (a real asyncio.Task is required for .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        writer = InlineWriter()
        app.state.user_store = stores.user_store
        app.state.resources = stores.resources
        app.state.teams = stores.teams
        app.state.quotas = stores.quotas
        app.state.rate_limit_store = stores.rate_limit_store
        app.state.background = writer
        app.state.rate_limiter = RateLimiter(RateLimitCache(), durable=stores.rate_limit_store, writer=writer)
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, Stores], None, None]:
    """Yield (client, stores) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers and guards but use isolated in-memory
    stores. The per-IP slowapi counters are reset so modules don't starve
    each other of API key creations.
    """
    stores = _make_test_stores(request.module.__name__.rsplit(".", 1)[-1])
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(stores)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, stores

    stores.close()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    """Return a factory: auth_headers(user_id, groups=()) -> Authorization header dict."""

    def _headers(user_id: str, groups: tuple[str, ...] = (), email: str | None = None) -> dict[str, str]:
        identity = Identity(
            id=user_id,
            email=email or f"{user_id}@example.test",
            name=user_id,
            username=user_id,
            groups=tuple(groups),
        )
        return {"Authorization": f"Bearer {create_identity_token(identity, expire_seconds=3600)}"}

    return _headers


@pytest.fixture
def make_user() -> Callable[..., User]:
    """Return a factory: make_user(store, user_id, role, team_id=None, is_active=True) -> User.

    Existing users are returned unchanged so module-scoped stores can be
    seeded from several tests.
    """

    def _make(
        store: UserStore,
        user_id: str,
        role: str | None = "USER",
        team_id: str | None = None,
        is_active: bool = True,
    ) -> User:
        existing = store.get_by_id(user_id)
        if existing is not None:
            return existing
        store.create_user(
            User(
                id=user_id,
                email=f"{user_id}@example.test",
                name=user_id,
                username=user_id,
                role=role,
                team_id=team_id,
                is_active=is_active,
            )
        )
        return store.get_by_id(user_id)

    return _make


@pytest.fixture
def make_api_key() -> Callable[..., tuple[str, int]]:
    """Return a factory: make_api_key(store, user_id, **fields) -> (raw_key, key_id)."""

    def _make(store: UserStore, user_id: str, name: str = "test key", **fields) -> tuple[str, int]:
        generated = generate_api_key()
        key_id = store.create_api_key(
            ApiKey(
                user_id=user_id,
                name=name,
                key_hash=generated.key_hash,
                key_prefix=generated.key_prefix,
                **fields,
            )
        )
        return generated.key, key_id

    return _make
