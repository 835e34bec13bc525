"""
auth/federation.py -- Google authorization-code exchange and `state` codec.

TinyTasks federates with exactly one identity provider. GoogleFederation
builds the provider redirect and turns the authorization code that comes back
into a normalized FederatedIdentity using authlib's httpx OAuth 2.0 client:

  1. POST the code to the token endpoint (client_secret_post).
  2. GET the userinfo profile with the resulting access token.
  3. Normalize {id, email, name, picture} into FederatedIdentity.

Nothing here touches storage. Provisioning and token issuance happen in
auth/tokens.py only after exchange() returns, so a failed exchange can never
create a principal or a credential.

Security notes:
  Provider error bodies are logged at WARNING and never copied into the
  ExternalAuthError a client sees.

  The profile is rejected when Google explicitly reports the email as
  unverified. An unverified address could belong to someone else.

  `state` is a convenience bundle (client type, redirect target, timestamp),
  not a CSRF token. decode_state() never raises: a missing or corrupt bundle
  falls back to the web client. A forged bundle cannot mint a token -- that
  needs a real provider round-trip -- but it can steer the response format,
  which is why web redirects are additionally checked by is_allowed_redirect().

Layer rule: no imports from api/ or tasks/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import json
import logging
import time
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri

from auth.errors import ExternalAuthError
from auth.models import ClientType, FederatedIdentity, FederationState
from core.config import Settings

logger = logging.getLogger("tinytasks.auth.federation")

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 -- URL, not a password
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_SCOPE = "openid email profile"

# Credential labels shown in GET /auth/tokens, one per client type.
CLIENT_LABELS: dict[ClientType, str] = {
    ClientType.MACOS: "macOS app login",
    ClientType.MCP: "MCP client login",
    ClientType.WEB: "web login",
}


# ---------------------------------------------------------------------------
# state codec
# ---------------------------------------------------------------------------


def encode_state(
    client_type: ClientType | str = ClientType.WEB,
    custom_redirect_uri: str | None = None,
    timestamp: int | None = None,
) -> str:
    """Pack the client context into a base64 JSON `state` value.

    timestamp defaults to the current time in milliseconds.
    """
    payload = {
        "client_type": ClientType(client_type).value,
        "custom_redirect_uri": custom_redirect_uri or None,
        "timestamp": timestamp if timestamp is not None else int(time.time() * 1000),
    }
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def decode_state(state: str | None) -> FederationState:
    """Unpack a `state` value, falling back to defaults instead of raising.

    Each field is recovered independently: an unknown client_type still
    keeps a valid redirect URI and timestamp. The raw value is never logged.
    """
    if not state:
        return FederationState()
    try:
        # A literal "+" that was not percent-encoded arrives as a space.
        raw = base64.b64decode(state.replace(" ", "+"), validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (ValueError, RecursionError):
        # binascii.Error, UnicodeDecodeError and JSONDecodeError are all ValueErrors;
        # deeply nested JSON exhausts the parser stack instead.
        logger.warning("Unreadable federation state (%d chars); defaulting to web client", len(state))
        return FederationState()
    if not isinstance(data, dict):
        logger.warning("Federation state is not a JSON object; defaulting to web client")
        return FederationState()

    try:
        client_type = ClientType(data.get("client_type") or ClientType.WEB.value)
    except ValueError:
        logger.warning("Unknown client_type in federation state; defaulting to web client")
        client_type = ClientType.WEB

    redirect = data.get("custom_redirect_uri")
    if not isinstance(redirect, str) or not redirect:
        redirect = None

    timestamp = data.get("timestamp")
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        timestamp = None

    return FederationState(client_type=client_type, custom_redirect_uri=redirect, timestamp=timestamp)


# ---------------------------------------------------------------------------
# Client redirect helpers
# ---------------------------------------------------------------------------


def is_allowed_redirect(uri: str, allowed_hosts: list[str]) -> bool:
    """Return True if a web client may be sent to uri after login.

    Only absolute http(s) URLs qualify. When allowed_hosts is non-empty the
    URL's host must be in it; an empty list accepts any host.
    """
    parts = urlsplit(uri)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return False
    if allowed_hosts:
        return parts.hostname.lower() in {h.lower() for h in allowed_hosts}
    return True


def build_client_redirect(uri: str, token: str, user: dict) -> str:
    """Append token and JSON-encoded user to uri, keeping any existing query params."""
    parts = urlsplit(uri)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("token", token))
    query.append(("user", json.dumps(user, separators=(",", ":"))))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


# ---------------------------------------------------------------------------
# Profile normalization
# ---------------------------------------------------------------------------


def normalize_profile(profile: dict) -> FederatedIdentity:
    """Map a Google userinfo payload (v2 or OIDC shape) onto FederatedIdentity.

    Raises:
        ExternalAuthError: subject id or email missing, or email explicitly unverified.
    """
    subject = profile.get("id") or profile.get("sub")
    email = profile.get("email")
    if not subject or not email:
        logger.warning("Provider profile is missing id or email (keys: %s)", sorted(profile))
        raise ExternalAuthError()
    if profile.get("verified_email") is False or profile.get("email_verified") is False:
        logger.warning("Provider reports an unverified email; login rejected")
        raise ExternalAuthError()
    return FederatedIdentity(
        federated_id=str(subject),
        email=email,
        name=profile.get("name") or email,
        avatar_url=profile.get("picture") or None,
    )


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------


class GoogleFederation:
    """Authorization-code exchange against Google.

    Stateless apart from its configuration, so a single instance on
    app.state serves concurrent logins. Each exchange opens its own
    AsyncOAuth2Client; the two provider calls are sequential and have no
    timeout beyond the transport's own.

    transport is handed to the underlying httpx client. Tests pass an
    httpx.MockTransport to stand in for Google.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        authorize_url: str = GOOGLE_AUTHORIZE_URL,
        token_url: str = GOOGLE_TOKEN_URL,
        userinfo_url: str = GOOGLE_USERINFO_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.userinfo_url = userinfo_url
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> GoogleFederation:
        return cls(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.google_redirect_uri,
        )

    def authorization_url(self, state: str) -> str:
        """Provider authorization endpoint URL for the redirect that starts a login."""
        return prepare_grant_uri(
            self.authorize_url,
            client_id=self.client_id,
            response_type="code",
            redirect_uri=self.redirect_uri,
            scope=GOOGLE_SCOPE,
            state=state,
        )

    def _client(self) -> AsyncOAuth2Client:
        kwargs: dict = {}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return AsyncOAuth2Client(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            scope=GOOGLE_SCOPE,
            token_endpoint_auth_method="client_secret_post",  # noqa: S106 -- auth method name
            **kwargs,
        )

    async def exchange(self, code: str | None) -> FederatedIdentity:
        """Turn an authorization code into a normalized identity.

        Raises:
            ExternalAuthError: 400 when the code is missing or the provider
                issues no access token; 500 when the profile fetch fails or
                the profile is unusable.
        """
        if not code:
            raise ExternalAuthError("Authorization code not provided", status_code=400)

        async with self._client() as client:
            try:
                token = await client.fetch_token(self.token_url, code=code, grant_type="authorization_code")
            except (AuthlibBaseError, httpx.HTTPError, ValueError) as exc:
                logger.warning("Token exchange with provider failed: %s", exc)
                raise ExternalAuthError("Failed to get access token", status_code=400) from exc

            if not token or not token.get("access_token"):
                logger.warning("Token endpoint response carried no access_token")
                raise ExternalAuthError("Failed to get access token", status_code=400)

            try:
                resp = await client.get(self.userinfo_url)
                resp.raise_for_status()
                profile = resp.json()
            except (AuthlibBaseError, httpx.HTTPError, ValueError) as exc:
                logger.warning("Profile fetch from provider failed: %s", exc)
                raise ExternalAuthError() from exc

        if not isinstance(profile, dict):
            logger.warning("Provider profile is not a JSON object")
            raise ExternalAuthError()
        return normalize_profile(profile)
