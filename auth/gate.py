"""
auth/gate.py -- The request gate: one authentication checkpoint for every route.

RequestGate is plain ASGI middleware installed once on the application in
api/main.py. It runs before routing, so a route is protected unless its path
is listed in the allow-list below -- forgetting a dependency on a new handler
cannot make it public.

Per request:
  1. Allow-listed path?      -> pass through untouched.
  2. "Authorization: Bearer <token>" present?  No -> 401 "Token not provided".
     The scheme match is literal and case-sensitive; nothing is looked up.
  3. TokenService.validate(token) in the threadpool.  None -> 401 "Invalid token"
     (unknown, revoked and inactive-principal cases look identical).
  4. Store the principal in the request-scoped ASGI state and call the app.

WebSocket handshakes go through the same steps; a rejected handshake is
closed with code 1008 (policy violation) instead of a 401 body.

Routes read the principal back with Depends(get_current_principal).

Layer rule: no imports from api/ or tasks/. fastapi/starlette imports are
allowed because this module is the HTTP edge of the auth package.
"""

from __future__ import annotations

import logging

from fastapi import Request
from starlette.requests import HTTPConnection
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.types import ASGIApp, Receive, Scope, Send
from starlette.websockets import WebSocketClose

from auth.errors import AuthError, InvalidCredentialError, UnauthenticatedError
from auth.models import Principal

logger = logging.getLogger("tinytasks.auth.gate")

_BEARER_PREFIX = "Bearer "

# ---------------------------------------------------------------------------
# Allow-list
#
# Exact paths match only themselves. Prefixes match the path itself and
# anything below it on a "/" boundary: "/auth/google" covers
# "/auth/google/callback" but not "/auth/googlex". Adding an entry here is
# the only way to make a route public.
# ---------------------------------------------------------------------------

PUBLIC_PATHS: frozenset[str] = frozenset(
    {
        "/",  # root status message
        "/health",  # liveness probe
        "/tasks/status",  # public service status probe
    }
)

PUBLIC_PREFIXES: tuple[str, ...] = ("/auth/google",)  # federation start + callback


def is_public_path(
    path: str,
    public_paths: frozenset[str] = PUBLIC_PATHS,
    public_prefixes: tuple[str, ...] = PUBLIC_PREFIXES,
) -> bool:
    """Return True if path bypasses authentication."""
    if path in public_paths:
        return True
    return any(path == prefix or path.startswith(prefix + "/") for prefix in public_prefixes)


def extract_bearer_token(authorization: str | None) -> str:
    """Return the token from an Authorization header value.

    Raises:
        UnauthenticatedError: header missing, scheme is not exactly "Bearer ",
            or nothing follows the scheme.
    """
    if not authorization or not authorization.startswith(_BEARER_PREFIX):
        raise UnauthenticatedError()
    token = authorization[len(_BEARER_PREFIX) :]
    if not token:
        raise UnauthenticatedError()
    return token


def auth_error_response(exc: AuthError) -> JSONResponse:
    """Render an AuthError as the uniform {"error": message} envelope."""
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class RequestGate:
    """ASGI middleware that resolves the bearer credential before any handler runs.

    The token service is looked up on app.state at request time, so tests
    can swap stores in a patched lifespan without rebuilding the middleware
    stack.
    """

    def __init__(
        self,
        app: ASGIApp,
        public_paths: frozenset[str] = PUBLIC_PATHS,
        public_prefixes: tuple[str, ...] = PUBLIC_PREFIXES,
    ) -> None:
        self.app = app
        self.public_paths = public_paths
        self.public_prefixes = public_prefixes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        gated = scope["type"] in ("http", "websocket")
        if not gated or is_public_path(scope["path"], self.public_paths, self.public_prefixes):
            await self.app(scope, receive, send)
            return

        conn = HTTPConnection(scope)
        try:
            token = extract_bearer_token(conn.headers.get("Authorization"))
            token_service = conn.app.state.token_service
            principal = await run_in_threadpool(token_service.validate, token)
            if principal is None:
                raise InvalidCredentialError()
        except AuthError as exc:
            logger.info("Rejected %s %s: %s", scope.get("method", "WEBSOCKET"), scope["path"], exc.message)
            if scope["type"] == "websocket":
                await WebSocketClose(code=1008, reason=exc.message)(scope, receive, send)
            else:
                await auth_error_response(exc)(scope, receive, send)
            return

        # conn.state is backed by scope["state"], which is per connection.
        conn.state.principal = principal
        await self.app(scope, receive, send)


# ---------------------------------------------------------------------------
# Route dependencies
# ---------------------------------------------------------------------------


def get_current_principal(conn: HTTPConnection) -> Principal:
    """Return the principal the gate attached to this request.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...

    Raises InvalidCredentialError if the gate did not run for this path,
    which only happens when a public route wrongly asks for a principal.
    """
    principal = getattr(conn.state, "principal", None)
    if principal is None:
        raise InvalidCredentialError()
    return principal


def get_bearer_token(request: Request) -> str:
    """Return the raw bearer token of the current request (used by /auth/revoke)."""
    return extract_bearer_token(request.headers.get("Authorization"))
