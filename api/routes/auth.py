"""
api/routes/auth.py -- Federated login and credential management endpoints.

Routes:
  GET    /auth/google                 -- start Google login (302 to provider)
  GET    /auth/google/callback        -- finish login; issue an opaque token
  GET    /auth/me                     -- current principal (requires auth)
  GET    /auth/tokens                 -- list caller's active credentials (requires auth)
  DELETE /auth/tokens/{token_id}      -- revoke one of the caller's credentials (requires auth)
  POST   /auth/revoke                 -- revoke the credential making this request (requires auth)
  POST   /auth/revoke-all             -- revoke every credential of the caller (requires auth)

Auth policy: /auth/google and /auth/google/callback are public through the
request gate allow-list (auth/gate.py). Everything else here is gated before
the handler runs; handlers only read the resolved principal.

Security:
  The callback is rate-limited per client IP (CALLBACK_RATE_LIMIT).
  Login responses carry Cache-Control: no-store -- they contain a token.
  Web redirects are only followed to http(s) targets passing
  is_allowed_redirect(); anything else falls back to the JSON response.
  IDOR guard: DELETE /auth/tokens/{id} passes principal.id to the store.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import (
    CredentialResponse,
    LoginResponse,
    MeResponse,
    MessageResponse,
    RevokeAllResponse,
    TokenListResponse,
    UserInfo,
)
from auth.errors import InvalidCredentialError
from auth.federation import (
    CLIENT_LABELS,
    GoogleFederation,
    build_client_redirect,
    decode_state,
    encode_state,
    is_allowed_redirect,
)
from auth.gate import get_bearer_token, get_current_principal
from auth.models import ClientType, Principal
from auth.tokens import TokenService
from core.config import get_settings
from core.errors import NotFoundError

logger = logging.getLogger("tinytasks.api.auth")

router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints -- federation
# ---------------------------------------------------------------------------


@router.get("/auth/google", status_code=302)
async def google_login(
    request: Request,
    client_type: ClientType = ClientType.WEB,
    redirect_uri: Optional[str] = None,
) -> RedirectResponse:
    """Redirect to Google's consent screen, carrying the client context in `state`.

    redirect_uri only matters for web clients; it is checked here so a bad
    target fails fast, and checked again in the callback because `state`
    comes back from the browser and may have been tampered with.
    """
    if redirect_uri and not is_allowed_redirect(redirect_uri, get_settings().allowed_redirect_hosts):
        raise HTTPException(status_code=400, detail="redirect_uri is not allowed")

    federation: GoogleFederation = request.app.state.federation
    state = encode_state(client_type, redirect_uri)
    return RedirectResponse(federation.authorization_url(state), status_code=302)


# Read once at import: SlowAPIMiddleware only enforces static route limits.
@limiter.limit(get_settings().callback_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.get("/auth/google/callback", response_model=LoginResponse, response_model_exclude_none=True)
async def google_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
) -> Response:
    """Exchange the authorization code, provision the principal, and issue a token.

    Flow:
      1. Decode `state` (never fails -- defaults to the web client).
      2. Exchange code -> identity. ExternalAuthError propagates to the
         handler in api/main.py as 400/500 {"error": ...}; nothing is stored.
      3. Upsert the principal, mint one new credential for this login.
      4. Respond in the shape the client type expects.
    """
    fed_state = decode_state(state)
    federation: GoogleFederation = request.app.state.federation
    identity = await federation.exchange(code)

    token_service: TokenService = request.app.state.token_service
    principal = await run_in_threadpool(token_service.provision_principal, identity)
    token = await run_in_threadpool(token_service.issue, principal.id, CLIENT_LABELS[fed_state.client_type])
    user = UserInfo.from_principal(principal)
    logger.info("Login completed for principal %s via %s client", principal.id, fed_state.client_type.value)

    if fed_state.client_type is ClientType.MACOS:
        body = LoginResponse(
            token=token,
            user=user,
            client_type=ClientType.MACOS.value,
            message="Authentication successful for macOS app",
            instructions="Copy this token to your macOS app for authentication",
        )
    elif fed_state.client_type is ClientType.MCP:
        body = LoginResponse(
            token=token,
            user=user,
            client_type=ClientType.MCP.value,
            message="OAuth authentication successful for MCP client",
            access_token=token,
            token_type="Bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        )
    else:
        target = fed_state.custom_redirect_uri
        if target:
            if is_allowed_redirect(target, get_settings().allowed_redirect_hosts):
                resp = RedirectResponse(build_client_redirect(target, token, user.model_dump()), status_code=302)
                resp.headers["Cache-Control"] = "no-store"
                return resp
            logger.warning("Ignoring disallowed redirect target in federation state")
        body = LoginResponse(
            token=token,
            user=user,
            client_type=ClientType.WEB.value,
            message="Authentication successful",
        )

    resp = JSONResponse(content=body.model_dump(exclude_none=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(principal: Principal = Depends(get_current_principal)) -> MeResponse:
    """Return identity information for the principal behind the bearer token."""
    return MeResponse(user=UserInfo.from_principal(principal))


@router.get("/auth/tokens", response_model=TokenListResponse)
def list_tokens(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> TokenListResponse:
    """List the caller's active credentials, newest first. Token values are never returned."""
    token_service: TokenService = request.app.state.token_service
    return TokenListResponse(tokens=[CredentialResponse.from_summary(s) for s in token_service.list_active(principal.id)])


@router.delete("/auth/tokens/{token_id}", status_code=204)
def revoke_token_by_id(
    request: Request,
    token_id: str,
    principal: Principal = Depends(get_current_principal),
) -> Response:
    """Revoke one of the caller's credentials by its listing id [IDOR guard].

    Returns 404 for ids that are unknown, already revoked, or owned by
    someone else -- the three cases are not distinguished.
    """
    token_service: TokenService = request.app.state.token_service
    if not token_service.revoke_by_id(token_id, principal.id):
        raise NotFoundError("Token not found")
    return Response(status_code=204)


@router.post("/auth/revoke", response_model=MessageResponse)
def revoke_current_token(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    token: str = Depends(get_bearer_token),
) -> MessageResponse:
    """Revoke the credential that authenticated this request (logout for one client)."""
    token_service: TokenService = request.app.state.token_service
    if not token_service.revoke(token, principal.id):
        # Revoked concurrently between the gate and here.
        raise InvalidCredentialError()
    return MessageResponse(message="Token revoked successfully")


@router.post("/auth/revoke-all", response_model=RevokeAllResponse)
def revoke_all_tokens(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> RevokeAllResponse:
    """Revoke every active credential of the caller, this one included (global logout)."""
    token_service: TokenService = request.app.state.token_service
    count = token_service.revoke_all(principal.id)
    return RevokeAllResponse(message="All tokens revoked successfully", revoked=count)
