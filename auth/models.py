"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Mirrors the
approach in tasks/models.py -- dataclasses own domain shape; stores and the
token service do the work.

Layer rule: no imports from api/ or tasks/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class LifecycleState(str, Enum):
    """Soft-delete state shared by principals and credentials.

    Principals can move both ways (an operator may reactivate an account).
    Credentials only ever move ACTIVE -> INACTIVE: revocation is terminal and
    no store method flips a credential back.
    """

    ACTIVE = "active"
    INACTIVE = "inactive"


class ClientType(str, Enum):
    """The integration that started a federated login."""

    MACOS = "macos"
    MCP = "mcp"
    WEB = "web"


@dataclass
class Principal:
    """The local user record derived from a federated identity.

    federated_id is the provider's stable subject id. It is unique across all
    principals and never changes after creation; email, name and avatar_url
    are refreshed from the provider on every login.

    Principals are never hard-deleted. Deactivation flips state to INACTIVE,
    which makes every credential the principal owns fail validation even
    though the credential rows themselves stay ACTIVE.
    """

    federated_id: str
    email: str
    name: str
    id: str | None = None
    avatar_url: str | None = None
    state: LifecycleState = LifecycleState.ACTIVE
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.state is LifecycleState.ACTIVE


@dataclass
class Credential:
    """One opaque bearer token bound to one principal.

    Security design:
    - token is 256 bits from secrets.token_hex(32). It is the sole lookup key
      for validation and is returned to the client exactly once, in the login
      response. Listing endpoints use CredentialSummary, which has no token.
    - name labels the issuing client ("web login", "macOS app login") so a
      principal can tell their sessions apart.
    - Revocation sets state to INACTIVE; rows are kept for audit history.
    """

    principal_id: str
    token: str
    name: str
    id: str | None = None
    state: LifecycleState = LifecycleState.ACTIVE
    created_at: str | None = None
    last_used_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.state is LifecycleState.ACTIVE


@dataclass
class CredentialSummary:
    """Listing projection of a Credential. Carries no token value by construction."""

    id: str
    name: str
    created_at: str
    last_used_at: str | None = None


@dataclass
class FederatedIdentity:
    """A provider profile normalized by the federation exchange."""

    federated_id: str
    email: str
    name: str
    avatar_url: str | None = None


@dataclass
class FederationState:
    """Decoded `state` bundle carried through the provider redirect.

    timestamp is milliseconds since the epoch at the time the redirect was
    issued, or None when the bundle was missing or unreadable.
    """

    client_type: ClientType = ClientType.WEB
    custom_redirect_uri: str | None = None
    timestamp: int | None = None
