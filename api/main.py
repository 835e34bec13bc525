"""
api/main.py -- FastAPI application entry point for TinyTasks.

Exposes task management over HTTP to three kinds of client (macOS app, MCP
client, browser), all authenticating with opaque bearer tokens obtained
through Google login.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- one access-log line per request, rejections included
  2. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  3. CORSMiddleware        -- adds CORS headers, also on 401s from the gate
  4. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  5. RequestGate           -- resolves the bearer token; everything not on the
                              allow-list in auth/gate.py needs one

Lifespan builds the engine, the stores and the services on startup and
disposes of the engine on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.tasks import router as tasks_router
from api.routes.users import router as users_router
from auth.errors import AuthError
from auth.federation import GoogleFederation
from auth.gate import RequestGate, auth_error_response
from auth.store import CredentialStore, PrincipalStore
from auth.tokens import TokenService
from core.config import get_settings
from core.database import create_db_engine
from core.errors import NotFoundError
from tasks.store import TaskStore

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tinytasks.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create shared resources on startup and release them on shutdown.

    Everything lives on app.state; routes and the request gate look it up per
    request, which is also how tests substitute their own stores.
    """
    logger.info("TinyTasks API starting up")
    engine = create_db_engine(settings.database_url)
    app.state.engine = engine
    app.state.principal_store = PrincipalStore(engine)
    app.state.credential_store = CredentialStore(engine)
    app.state.task_store = TaskStore(engine)
    app.state.token_service = TokenService(app.state.principal_store, app.state.credential_store)
    app.state.federation = GoogleFederation.from_settings(settings)
    logger.info("Database ready (%d principals)", app.state.principal_store.count())

    yield

    engine.dispose()
    logger.info("TinyTasks API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="TinyTasks API",
    description="Personal task management with Google login and revocable bearer tokens.",
    version="1.0.0",
    lifespan=lifespan,
    # The built-in /docs is replaced below by a route of our own. Both it and
    # /openapi.json sit behind the request gate like any other path.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps each add_middleware() call around everything registered
# before it, so the LAST one added sees the request FIRST. Register from the
# inside out: RequestGate -> SlowAPI -> CORS -> TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(RequestGate)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

# SlowAPIMiddleware looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, tags=["Auth"])
app.include_router(users_router, tags=["Users"])
app.include_router(tasks_router, tags=["Tasks"])


# ---------------------------------------------------------------------------
# API documentation -- gated like every non-public path
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs():
    """Swagger UI. Reaching this handler means the gate accepted the token."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="TinyTasks API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the same {"error": message} envelope, the same body
# the request gate writes for its own 401s.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Provider failures from the callback (400/500) and late credential failures (401)."""
    return auth_error_response(exc)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error(exc.status_code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "Too many requests.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 naming the first offending field."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        loc = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{loc}: {first.get('msg', 'invalid value')}" if loc else str(first.get("msg", "invalid value"))
    else:
        message = "Request validation failed."
    return _error(422, message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTPException (FastAPI's subclass included) in the uniform envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=str(exc.detail)).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is logged with its traceback, never
    written to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Public probes
#
# Defined directly in main.py so they are reachable regardless of router
# registration. Both paths are on the gate's allow-list. No rate limit --
# monitoring must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    return {"message": "TinyTasks API is running"}


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness and database reachability."""
    db_ok = request.app.state.task_store.ping()
    return HealthResponse(
        timestamp=datetime.now(timezone.utc).isoformat(),
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
