"""
tests/test_auth_routes.py -- Integration tests for /auth/* routes.

Full stack: request gate -> route -> GoogleFederation (authlib client on the
fake provider transport) -> TokenService -> SQLite. Login tests drive the
real callback with codes the fake provider understands (see conftest.py).

Coverage:
  - /auth/google redirects to the provider with a decodable state
  - Callback response shape for macos, mcp and web clients
  - Web redirect target: followed when allowed, JSON fallback otherwise
  - Provider failures map to 400/500 {"error": ...} and store nothing
  - Re-login refreshes the profile and mints an additional token
  - /auth/me, /auth/tokens (camelCase, no token values), revoke, revoke-all,
    DELETE /auth/tokens/{id} including cross-principal 404
  - Callback rate limit answers 429 with Retry-After
"""

from __future__ import annotations

import base64
import json
from urllib.parse import parse_qs, urlparse

import pytest
from conftest import CALLBACK_RATE_LIMIT, FAKE_PROFILES, auth_headers
from fastapi.testclient import TestClient
from limits import parse

from auth.federation import decode_state, encode_state
from auth.models import ClientType


def _login(client: TestClient, code: str, client_type: ClientType = ClientType.MACOS, redirect_uri: str | None = None):
    return client.get("/auth/google/callback", params={"code": code, "state": encode_state(client_type, redirect_uri)})


# ---------------------------------------------------------------------------
# Login start
# ---------------------------------------------------------------------------


class TestLoginStart:
    def test_redirects_to_provider_with_state(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _pid = api_client
        resp = client.get("/auth/google", params={"client_type": "mcp"})
        assert resp.status_code == 302
        location = urlparse(resp.headers["location"])
        assert location.netloc == "idp.test"
        state = decode_state(parse_qs(location.query)["state"][0])
        assert state.client_type is ClientType.MCP
        assert state.custom_redirect_uri is None

    def test_defaults_to_web_client(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _pid = api_client
        resp = client.get("/auth/google")
        state = decode_state(parse_qs(urlparse(resp.headers["location"]).query)["state"][0])
        assert state.client_type is ClientType.WEB

    def test_rejects_non_http_redirect_uri(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _pid = api_client
        resp = client.get("/auth/google", params={"redirect_uri": "javascript:alert(1)"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "redirect_uri is not allowed"}

    def test_unknown_client_type_is_422(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _pid = api_client
        resp = client.get("/auth/google", params={"client_type": "toaster"})
        assert resp.status_code == 422
        assert "error" in resp.json()


# ---------------------------------------------------------------------------
# Callback
# ---------------------------------------------------------------------------


class TestCallback:
    def test_macos_response(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _pid = api_client
        resp = _login(client, "code-alice", ClientType.MACOS)
        assert resp.status_code == 200, resp.text
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["success"] is True
        assert data["client_type"] == "macos"
        assert data["message"] == "Authentication successful for macOS app"
        assert data["instructions"] == "Copy this token to your macOS app for authentication"
        assert data["user"]["email"] == "alice@example.com"
        assert len(data["token"]) == 64
        assert "access_token" not in data

        me = client.get("/auth/me", headers=auth_headers(data["token"]))
        assert me.status_code == 200
        assert me.json()["user"] == data["user"]

    def test_mcp_response(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _pid = api_client
        data = _login(client, "code-alice", ClientType.MCP).json()
        assert data["client_type"] == "mcp"
        assert data["message"] == "OAuth authentication successful for MCP client"
        assert data["access_token"] == data["token"]
        assert data["token_type"] == "Bearer"
        assert "instructions" not in data

    def test_web_without_redirect_returns_json(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _pid = api_client
        data = _login(client, "code-bob", ClientType.WEB).json()
        assert data["client_type"] == "web"
        assert data["message"] == "Authentication successful"
        assert data["user"]["name"] == "Bob Example"

    def test_web_redirect_carries_token_and_user(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _pid = api_client
        resp = _login(client, "code-bob", ClientType.WEB, "https://app.test/after-login?tab=inbox")
        assert resp.status_code == 302
        assert resp.headers["cache-control"] == "no-store"
        location = urlparse(resp.headers["location"])
        query = parse_qs(location.query)
        assert (location.netloc, location.path) == ("app.test", "/after-login")
        assert query["tab"] == ["inbox"]
        user = json.loads(query["user"][0])
        assert user["email"] == "bob@example.com"
        assert client.get("/auth/me", headers=auth_headers(query["token"][0])).status_code == 200

    def test_web_redirect_to_non_http_target_falls_back_to_json(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _pid = api_client
        resp = _login(client, "code-bob", ClientType.WEB, "javascript:alert(document.cookie)")
        assert resp.status_code == 200
        assert resp.json()["client_type"] == "web"

    def test_garbage_state_defaults_to_web(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _pid = api_client
        resp = client.get("/auth/google/callback", params={"code": "code-bob", "state": "!!not-state!!"})
        assert resp.status_code == 200
        assert resp.json()["client_type"] == "web"

    def test_deeply_nested_state_defaults_to_web(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _pid = api_client
        state = base64.b64encode(b"[" * 5000).decode()
        resp = client.get("/auth/google/callback", params={"code": "code-bob", "state": state})
        assert resp.status_code == 200
        assert resp.json()["client_type"] == "web"

    def test_relogin_refreshes_profile_and_adds_token(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _pid = api_client
        first = _login(client, "code-oidc").json()
        original = FAKE_PROFILES["code-oidc"].copy()
        FAKE_PROFILES["code-oidc"]["name"] = "Renamed At Google"
        try:
            second = _login(client, "code-oidc").json()
        finally:
            FAKE_PROFILES["code-oidc"] = original

        assert second["user"]["id"] == first["user"]["id"]
        assert second["user"]["name"] == "Renamed At Google"
        assert second["token"] != first["token"]
        headers = auth_headers(second["token"])
        assert client.get("/auth/me", headers=auth_headers(first["token"])).status_code == 200
        labels = [t["name"] for t in client.get("/auth/tokens", headers=headers).json()["tokens"]]
        assert labels.count("macOS app login") >= 2

    @pytest.mark.parametrize(
        "params, status, message",
        [
            ({}, 400, "Authorization code not provided"),
            ({"code": "bad-code"}, 400, "Failed to get access token"),
            ({"code": "no-token"}, 400, "Failed to get access token"),
            ({"code": "profile-fails"}, 500, "Authentication failed"),
            ({"code": "code-unverified"}, 500, "Authentication failed"),
        ],
    )
    def test_provider_failures(self, api_client: tuple[TestClient, str, str], params, status, message) -> None:
        client, _token, _pid = api_client
        principals = client.app.state.principal_store
        before = principals.count()
        resp = client.get("/auth/google/callback", params=params)
        assert resp.status_code == status
        assert resp.json() == {"error": message}
        assert principals.count() == before

    def test_rate_limited(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _pid = api_client
        allowed = parse(CALLBACK_RATE_LIMIT).amount
        statuses = [client.get("/auth/google/callback", params={"code": "bad-code"}).status_code for _ in range(allowed)]
        assert statuses == [400] * allowed

        resp = client.get("/auth/google/callback", params={"code": "bad-code"})
        assert resp.status_code == 429
        assert resp.json() == {"error": "Too many requests."}
        assert "retry-after" in resp.headers

        # Counters are per route; other endpoints stay reachable.
        assert client.get("/health").status_code == 200


# ---------------------------------------------------------------------------
# Credential management
# ---------------------------------------------------------------------------


class TestCredentialRoutes:
    def test_me(self, api_client: tuple[TestClient, str, str]) -> None:
        client, token, pid = api_client
        resp = client.get("/auth/me", headers=auth_headers(token))
        assert resp.json() == {"user": {"id": pid, "email": "owner@example.com", "name": "Fixture Owner"}}

    def test_list_tokens_uses_camel_case_and_hides_values(self, api_client: tuple[TestClient, str, str]) -> None:
        client, token, _pid = api_client
        resp = client.get("/auth/tokens", headers=auth_headers(token))
        assert resp.status_code == 200
        tokens = resp.json()["tokens"]
        assert tokens, "the fixture token must be listed"
        for entry in tokens:
            assert set(entry) == {"id", "name", "createdAt", "lastUsedAt"}
        assert token not in resp.text

    def test_revoke_current_token(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, pid = api_client
        service = client.app.state.token_service
        token = service.issue(pid, "web login")
        sibling = service.issue(pid, "MCP client login")
        resp = client.post("/auth/revoke", headers=auth_headers(token))
        assert resp.status_code == 200
        assert resp.json() == {"message": "Token revoked successfully"}
        assert client.get("/auth/me", headers=auth_headers(token)).status_code == 401
        # Only the presenting credential is revoked.
        assert client.get("/auth/me", headers=auth_headers(sibling)).status_code == 200

    def test_revoke_all(self, api_client: tuple[TestClient, str, str], second_principal: tuple[str, str]) -> None:
        client, fixture_token, _pid = api_client
        other_token, other_id = second_principal
        service = client.app.state.token_service
        extra = service.issue(other_id, "MCP client login")

        resp = client.post("/auth/revoke-all", headers=auth_headers(other_token))
        assert resp.status_code == 200
        assert resp.json()["revoked"] >= 2
        assert client.get("/auth/me", headers=auth_headers(other_token)).status_code == 401
        assert client.get("/auth/me", headers=auth_headers(extra)).status_code == 401
        # Someone else's credentials are untouched.
        assert client.get("/auth/me", headers=auth_headers(fixture_token)).status_code == 200

    def test_delete_token_by_id(self, api_client: tuple[TestClient, str, str]) -> None:
        client, token, pid = api_client
        doomed = client.app.state.token_service.issue(pid, "doomed login")
        listing = client.get("/auth/tokens", headers=auth_headers(token)).json()["tokens"]
        doomed_id = next(t["id"] for t in listing if t["name"] == "doomed login")

        resp = client.delete(f"/auth/tokens/{doomed_id}", headers=auth_headers(token))
        assert resp.status_code == 204
        assert client.get("/auth/me", headers=auth_headers(doomed)).status_code == 401

        again = client.delete(f"/auth/tokens/{doomed_id}", headers=auth_headers(token))
        assert again.status_code == 404
        assert again.json() == {"error": "Token not found"}

    def test_cannot_delete_someone_elses_token(
        self, api_client: tuple[TestClient, str, str], second_principal: tuple[str, str]
    ) -> None:
        client, token, pid = api_client
        other_token, _other_id = second_principal
        victim = client.app.state.token_service.issue(pid, "victim login")
        victim_id = next(
            t["id"]
            for t in client.get("/auth/tokens", headers=auth_headers(token)).json()["tokens"]
            if t["name"] == "victim login"
        )

        resp = client.delete(f"/auth/tokens/{victim_id}", headers=auth_headers(other_token))
        assert resp.status_code == 404
        assert client.get("/auth/me", headers=auth_headers(victim)).status_code == 200
