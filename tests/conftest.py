"""
tests/conftest.py -- Shared test fixtures for TinyTasks integration tests.

This module provides:
  - make_stores(): engine + principal/credential/task stores on an isolated DB
  - fake_google_transport(): httpx.MockTransport standing in for Google
  - make_federation(): a real GoogleFederation wired to the fake provider
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus a logged-in principal's token, per test module
  - second_principal: another principal with its own token (isolation tests)

Design: each database is a SQLite file under pytest's tmp dir. TestClient
runs sync handlers in a thread pool and the gate validates tokens there too,
so every thread must see the same schema; a file database gives that with
the same pool behaviour as production.

DEBUG and CALLBACK_RATE_LIMIT must be set before any api/auth/core import:
get_settings() is cached on first use, and production mode would refuse to
start without Google credentials.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from urllib.parse import parse_qs

# CRITICAL: set before importing the app so the cached Settings see them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("CALLBACK_RATE_LIMIT", "20/minute")

import httpx
import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.federation import GoogleFederation
from auth.models import FederatedIdentity
from auth.store import CredentialStore, PrincipalStore
from auth.tokens import TokenService
from core.config import get_settings
from core.database import create_db_engine
from tasks.store import TaskStore

# The limit the callback route was decorated with at import.
CALLBACK_RATE_LIMIT = get_settings().callback_rate_limit

# ---------------------------------------------------------------------------
# Fake identity provider
# ---------------------------------------------------------------------------

FAKE_AUTHORIZE_URL = "https://idp.test/o/oauth2/auth"
FAKE_TOKEN_URL = "https://idp.test/token"
FAKE_USERINFO_URL = "https://idp.test/userinfo"

# Authorization code -> userinfo payload the provider returns for it.
FAKE_PROFILES: dict[str, dict] = {
    "code-alice": {
        "id": "google-alice",
        "email": "alice@example.com",
        "verified_email": True,
        "name": "Alice Example",
        "picture": "https://img.test/alice.png",
    },
    "code-bob": {
        "id": "google-bob",
        "email": "bob@example.com",
        "verified_email": True,
        "name": "Bob Example",
    },
    "code-oidc": {
        "sub": "google-oidc",
        "email": "oidc@example.com",
        "email_verified": True,
    },
    "code-unverified": {
        "id": "google-mallory",
        "email": "mallory@example.com",
        "verified_email": False,
        "name": "Mallory",
    },
    "code-no-email": {"id": "google-noemail", "name": "No Email"},
}

# Codes with special provider behaviour:
#   no-token       -> token endpoint answers 200 with an empty body
#   profile-fails  -> token issued, userinfo answers 500
#   anything else  -> token endpoint answers 400 invalid_grant


def fake_google_transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if request.method == "POST" and url.startswith(FAKE_TOKEN_URL):
            form = parse_qs(request.content.decode())
            code = form.get("code", [""])[0]
            if code == "no-token":
                return httpx.Response(200, json={})
            if code in FAKE_PROFILES or code == "profile-fails":
                return httpx.Response(
                    200,
                    json={"access_token": f"at-{code}", "token_type": "Bearer", "expires_in": 3600},
                )
            return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Bad code"})

        if request.method == "GET" and url.startswith(FAKE_USERINFO_URL):
            auth = request.headers.get("Authorization", "")
            code = auth.removeprefix("Bearer at-")
            if code in FAKE_PROFILES:
                return httpx.Response(200, json=FAKE_PROFILES[code])
            return httpx.Response(500, json={"error": "backend_error"})

        return httpx.Response(404)

    return httpx.MockTransport(handler)


def make_federation() -> GoogleFederation:
    return GoogleFederation(
        client_id="test-client-id",
        client_secret="test-client-secret",
        redirect_uri="http://testserver/auth/google/callback",
        authorize_url=FAKE_AUTHORIZE_URL,
        token_url=FAKE_TOKEN_URL,
        userinfo_url=FAKE_USERINFO_URL,
        transport=fake_google_transport(),
    )


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_stores(db_path) -> tuple:
    """Return (engine, principal_store, credential_store, task_store) on a fresh SQLite file."""
    engine = create_db_engine(f"sqlite:///{db_path}")
    return engine, PrincipalStore(engine), CredentialStore(engine), TaskStore(engine)


def _patch_lifespan(engine, principal_store, credential_store, task_store, federation):
    """Return an async context manager that replaces the real lifespan.

    Mirrors api.main.lifespan but uses pre-built test stores and the fake
    provider, so routes and the request gate see isolated state.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.principal_store = principal_store
        app.state.credential_store = credential_store
        app.state.task_store = task_store
        app.state.token_service = TokenService(principal_store, credential_store)
        app.state.federation = federation
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> Generator[None, None, None]:
    """Every test starts with fresh per-IP counters; the callback limit is shared process-wide."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def stores(tmp_path):
    engine, principals, credentials, tasks = make_stores(tmp_path / "unit.db")
    yield principals, credentials, tasks
    engine.dispose()


@pytest.fixture
def token_service(stores) -> TokenService:
    principals, credentials, _tasks = stores
    return TokenService(principals, credentials)


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, token, principal_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan, so
    requests go through the full middleware stack including the request
    gate. The principal is provisioned and given a token before the client
    starts. follow_redirects=False so login redirects can be asserted on.
    """
    db_path = tmp_path_factory.mktemp("api") / "tinytasks.db"
    engine, principals, credentials, tasks = make_stores(db_path)

    service = TokenService(principals, credentials)
    principal = service.provision_principal(
        FederatedIdentity(federated_id="fixture-owner", email="owner@example.com", name="Fixture Owner")
    )
    token = service.issue(principal.id, "fixture login")

    app.router.lifespan_context = _patch_lifespan(engine, principals, credentials, tasks, make_federation())

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, token, principal.id

    engine.dispose()


@pytest.fixture
def second_principal(api_client) -> tuple[str, str]:
    """Provision another principal on the api_client database. Returns (token, principal_id)."""
    client, _token, _pid = api_client
    service: TokenService = client.app.state.token_service
    other = service.provision_principal(
        FederatedIdentity(federated_id="fixture-other", email="other@example.com", name="Other Person")
    )
    return service.issue(other.id, "fixture login"), other.id


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
