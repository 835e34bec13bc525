"""
auth/tokens.py -- Opaque bearer token lifecycle and principal provisioning.

Security design decisions:
  Tokens: secrets.token_hex(32) gives 256 bits of entropy -- brute-force is
       computationally infeasible. Tokens carry no claims; all authority comes
       from the server-side lookup in the credential store. The raw value is
       returned once by issue() and never re-listed afterwards.

  Validation: validate() returns None for every expected failure (unknown
       token, revoked credential, inactive principal). Returning None rather
       than raising keeps callers simple: the request gate turns None into a
       uniform 401. The last_used_at touch is best-effort telemetry -- any
       failure there is logged and does not fail the request.

  Provisioning: lookup-then-create/update on the federated id. A concurrent
       first login for the same subject loses the UNIQUE race with
       IntegrityError; we re-read and update instead, so one subject always
       maps to exactly one principal.

Logging: token values never reach a log line. Credentials are identified
by id and principals by id.

Layer rule: no imports from api/ or tasks/.
"""

from __future__ import annotations

import logging
import secrets

from sqlalchemy.exc import IntegrityError

from auth.models import Credential, CredentialSummary, FederatedIdentity, LifecycleState, Principal
from auth.store import CredentialRepository, PrincipalRepository

logger = logging.getLogger("tinytasks.auth")

_TOKEN_BYTES = 32


def generate_token() -> str:
    """Generate a new opaque token: 64 hex chars, 256 bits of entropy."""
    return secrets.token_hex(_TOKEN_BYTES)


class TokenService:
    """The authentication state machine over the principal and credential stores.

    Holds no mutable state of its own; every method is a short sequence of
    point operations against the repositories, so one instance is shared by
    all concurrent requests.
    """

    def __init__(self, principals: PrincipalRepository, credentials: CredentialRepository) -> None:
        self.principals = principals
        self.credentials = credentials

    # ------------------------------------------------------------------
    # Principals
    # ------------------------------------------------------------------

    def provision_principal(self, identity: FederatedIdentity) -> Principal:
        """Create or refresh the principal for a federated identity (logical upsert).

        New subject: creates an ACTIVE principal.
        Known subject: overwrites email, name and avatar_url with the
        provider's current values. The lifecycle state is left alone, so a
        deactivated principal stays deactivated after logging in again.
        """
        existing = self.principals.get_by_federated_id(identity.federated_id)
        if existing is None:
            try:
                created = self.principals.create(
                    Principal(
                        federated_id=identity.federated_id,
                        email=identity.email,
                        name=identity.name,
                        avatar_url=identity.avatar_url,
                    )
                )
                logger.info("Provisioned new principal %s", created.id)
                return created
            except IntegrityError:
                # Lost the race to a concurrent first login for the same subject.
                existing = self.principals.get_by_federated_id(identity.federated_id)
                if existing is None:
                    raise

        self.principals.update_profile(
            existing.id,
            email=identity.email,
            name=identity.name,
            avatar_url=identity.avatar_url,
        )
        refreshed = self.principals.get_by_id(existing.id)
        return refreshed if refreshed is not None else existing

    def deactivate_principal(self, principal_id: str) -> bool:
        """Soft-delete a principal. Its credentials stay ACTIVE but stop validating."""
        changed = self.principals.set_state(principal_id, LifecycleState.INACTIVE)
        if changed:
            logger.info("Deactivated principal %s", principal_id)
        return changed

    def reactivate_principal(self, principal_id: str) -> bool:
        """Undo deactivate_principal(). Credentials that were never revoked validate again."""
        changed = self.principals.set_state(principal_id, LifecycleState.ACTIVE)
        if changed:
            logger.info("Reactivated principal %s", principal_id)
        return changed

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def issue(self, principal_id: str, label: str) -> str:
        """Mint a new credential for the principal and return the raw token value.

        One credential per login event; existing credentials are never reused.
        The return value is the only time the token is handed out.
        """
        credential = self.credentials.create(Credential(principal_id=principal_id, token=generate_token(), name=label))
        logger.info("Issued credential %s (%s) for principal %s", credential.id, label, principal_id)
        return credential.token

    def validate(self, token: str) -> Principal | None:
        """Resolve a token to its ACTIVE principal, or None.

        None covers: empty token, no ACTIVE credential with this exact value,
        owning principal missing or INACTIVE. On success last_used_at is
        touched best-effort.
        """
        if not token:
            return None
        credential = self.credentials.get_active_by_token(token)
        if credential is None:
            return None
        principal = self.principals.get_by_id(credential.principal_id)
        if principal is None or not principal.is_active:
            return None
        try:
            self.credentials.touch(credential.id)
        except Exception:
            # Usage is telemetry; any repository failure here is non-fatal.
            logger.warning("Could not record usage for credential %s", credential.id, exc_info=True)
        return principal

    def revoke(self, token: str, principal_id: str) -> bool:
        """Revoke exactly the ACTIVE credential with this value owned by principal_id."""
        revoked = self.credentials.revoke(token, principal_id)
        if revoked:
            logger.info("Revoked a credential of principal %s", principal_id)
        return revoked

    def revoke_by_id(self, credential_id: str, principal_id: str) -> bool:
        """Revoke one of the principal's own credentials by its listing id."""
        revoked = self.credentials.revoke_by_id(credential_id, principal_id)
        if revoked:
            logger.info("Revoked credential %s of principal %s", credential_id, principal_id)
        return revoked

    def revoke_all(self, principal_id: str) -> int:
        """Revoke every ACTIVE credential of the principal (global logout)."""
        count = self.credentials.revoke_all(principal_id)
        logger.info("Revoked %d credential(s) of principal %s", count, principal_id)
        return count

    def list_active(self, principal_id: str) -> list[CredentialSummary]:
        """ACTIVE credentials of the principal, newest first, without token values."""
        return self.credentials.list_active(principal_id)
