"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as tasks/store.py).
PrincipalStore and CredentialStore are the repositories; _row_to_principal /
_row_to_credential are the mappers. The token service and route code never
touch SQL directly, and the token service only sees the two Protocols below,
so any storage engine that satisfies them can be swapped in.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Token values are looked up by exact match on a UNIQUE column. Nothing in
  this module logs or returns a token value except get_active_by_token(),
  whose caller already holds it.

  Nothing is ever deleted. Revocation and deactivation are UPDATEs of the
  state column so audit history survives.

Layer rule: no imports from api/ or tasks/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Column, ForeignKey, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from auth.models import Credential, CredentialSummary, LifecycleState, Principal
from core.database import metadata

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_ACTIVE = LifecycleState.ACTIVE.value
_INACTIVE = LifecycleState.INACTIVE.value

principals = Table(
    "principals",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("federated_id", String(255), nullable=False, unique=True),  # provider subject id
    Column("email", String(320), nullable=False),
    Column("name", String(255), nullable=False),
    Column("avatar_url", Text),
    Column("state", String(16), nullable=False, server_default=_ACTIVE),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

credentials = Table(
    "credentials",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("token", String(128), nullable=False, unique=True),
    Column("principal_id", String(36), ForeignKey("principals.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("name", String(100), nullable=False),  # issuing client label, e.g. "web login"
    Column("state", String(16), nullable=False, server_default=_ACTIVE),
    Column("created_at", String(32), nullable=False),
    Column("last_used_at", String(32)),
)


# ---------------------------------------------------------------------------
# Repository interfaces
# ---------------------------------------------------------------------------


class PrincipalRepository(Protocol):
    def get_by_id(self, principal_id: str) -> Principal | None: ...

    def get_by_federated_id(self, federated_id: str) -> Principal | None: ...

    def create(self, principal: Principal) -> Principal: ...

    def update_profile(self, principal_id: str, /, **fields) -> bool: ...

    def set_state(self, principal_id: str, state: LifecycleState) -> bool: ...

    def count(self) -> int: ...


class CredentialRepository(Protocol):
    def create(self, credential: Credential) -> Credential: ...

    def get_active_by_token(self, token: str) -> Credential | None: ...

    def touch(self, credential_id: str) -> None: ...

    def revoke(self, token: str, principal_id: str) -> bool: ...

    def revoke_by_id(self, credential_id: str, principal_id: str) -> bool: ...

    def revoke_all(self, principal_id: str) -> int: ...

    def list_active(self, principal_id: str) -> list[CredentialSummary]: ...

    def count_active(self, principal_id: str) -> int: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Principal repository
# ---------------------------------------------------------------------------


class PrincipalStore:
    """SQLAlchemy repository for Principal records.

    Usage:
        engine = create_db_engine("sqlite:///tinytasks.db")
        store = PrincipalStore(engine)
        principal = store.create(Principal(federated_id="1234", email="a@b.c", name="A"))
        store.set_state(principal.id, LifecycleState.INACTIVE)
    """

    # Mutable profile columns. federated_id is deliberately absent: it is the
    # identity key and never changes after creation.
    _PROFILE_FIELDS: set = {"email", "name", "avatar_url"}

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(engine)

    def create(self, principal: Principal) -> Principal:
        """Insert a new principal and return it with id and timestamps filled in.

        Raises sqlalchemy.exc.IntegrityError if the federated_id already
        exists. TokenService.provision_principal() catches that as the signal
        that a concurrent login created the record first.
        """
        now = _now_iso()
        principal_id = principal.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                principals.insert().values(
                    id=principal_id,
                    federated_id=principal.federated_id,
                    email=principal.email,
                    name=principal.name,
                    avatar_url=principal.avatar_url,
                    state=principal.state.value,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return Principal(
            id=principal_id,
            federated_id=principal.federated_id,
            email=principal.email,
            name=principal.name,
            avatar_url=principal.avatar_url,
            state=principal.state,
            created_at=now,
            updated_at=now,
        )

    def get_by_id(self, principal_id: str) -> Principal | None:
        """Look up a principal by primary key, regardless of state. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(principals.select().where(principals.c.id == principal_id)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def get_by_federated_id(self, federated_id: str) -> Principal | None:
        """Look up a principal by provider subject id. O(1) via UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(principals.select().where(principals.c.federated_id == federated_id)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def update_profile(self, principal_id: str, /, **fields) -> bool:
        """Update mutable profile fields and stamp updated_at.

        Accepted fields: email, name, avatar_url. Unknown keys raise
        ValueError rather than being silently ignored.

        Returns True if a row was updated, False if principal_id was not found.
        """
        unknown = set(fields) - self._PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown principal fields: {unknown!r}")
        with self.engine.connect() as conn:
            result = conn.execute(
                principals.update().where(principals.c.id == principal_id).values(updated_at=_now_iso(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def set_state(self, principal_id: str, state: LifecycleState) -> bool:
        """Move a principal to the given lifecycle state. Returns True if the row exists."""
        with self.engine.connect() as conn:
            result = conn.execute(
                principals.update()
                .where(principals.c.id == principal_id)
                .values(state=state.value, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def count(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(principals)).scalar()
        return result or 0


# ---------------------------------------------------------------------------
# Credential repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """SQLAlchemy repository for Credential records.

    Every mutating query is scoped by a unique key -- the token value, or
    (credential id, principal id) -- so no operation needs a transaction
    spanning more than one statement.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(engine)

    def create(self, credential: Credential) -> Credential:
        """Insert a new ACTIVE credential. last_used_at starts equal to created_at."""
        now = _now_iso()
        credential_id = credential.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                credentials.insert().values(
                    id=credential_id,
                    token=credential.token,
                    principal_id=credential.principal_id,
                    name=credential.name,
                    state=_ACTIVE,
                    created_at=now,
                    last_used_at=now,
                )
            )
            conn.commit()
        return Credential(
            id=credential_id,
            token=credential.token,
            principal_id=credential.principal_id,
            name=credential.name,
            state=LifecycleState.ACTIVE,
            created_at=now,
            last_used_at=now,
        )

    def get_active_by_token(self, token: str) -> Credential | None:
        """Look up an ACTIVE credential by exact token value. O(1) via UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(
                credentials.select().where((credentials.c.token == token) & (credentials.c.state == _ACTIVE))
            ).fetchone()
        return _row_to_credential(row) if row is not None else None

    def touch(self, credential_id: str) -> None:
        """Stamp last_used_at after a successful validation. Last writer wins."""
        with self.engine.connect() as conn:
            conn.execute(credentials.update().where(credentials.c.id == credential_id).values(last_used_at=_now_iso()))
            conn.commit()

    def revoke(self, token: str, principal_id: str) -> bool:
        """Deactivate the ACTIVE credential matching both token and owner.

        principal_id is part of the WHERE clause so a caller cannot revoke
        another principal's credential even if it knows the token value.

        Returns True if a credential was revoked, False if not found, wrong
        owner, or already revoked.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                credentials.update()
                .where(
                    (credentials.c.token == token)
                    & (credentials.c.principal_id == principal_id)
                    & (credentials.c.state == _ACTIVE)
                )
                .values(state=_INACTIVE)
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_by_id(self, credential_id: str, principal_id: str) -> bool:
        """Deactivate one of the principal's ACTIVE credentials by its listing id (IDOR guard)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                credentials.update()
                .where(
                    (credentials.c.id == credential_id)
                    & (credentials.c.principal_id == principal_id)
                    & (credentials.c.state == _ACTIVE)
                )
                .values(state=_INACTIVE)
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_all(self, principal_id: str) -> int:
        """Deactivate every ACTIVE credential of a principal. Returns the number revoked."""
        with self.engine.connect() as conn:
            result = conn.execute(
                credentials.update()
                .where((credentials.c.principal_id == principal_id) & (credentials.c.state == _ACTIVE))
                .values(state=_INACTIVE)
            )
            conn.commit()
        return result.rowcount

    def list_active(self, principal_id: str) -> list[CredentialSummary]:
        """Return the principal's ACTIVE credentials, newest first, without token values.

        The token column is never selected, so the value cannot leak through
        this path even by accident in a mapper.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(
                    credentials.c.id,
                    credentials.c.name,
                    credentials.c.created_at,
                    credentials.c.last_used_at,
                )
                .where((credentials.c.principal_id == principal_id) & (credentials.c.state == _ACTIVE))
                .order_by(credentials.c.created_at.desc())
            ).fetchall()
        return [
            CredentialSummary(id=r.id, name=r.name, created_at=r.created_at, last_used_at=r.last_used_at)
            for r in rows
        ]

    def count_active(self, principal_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(credentials)
                .where((credentials.c.principal_id == principal_id) & (credentials.c.state == _ACTIVE))
            ).scalar()
        return result or 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_principal(row) -> Principal:
    return Principal(
        id=row.id,
        federated_id=row.federated_id,
        email=row.email,
        name=row.name,
        avatar_url=row.avatar_url,
        state=LifecycleState(row.state),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_credential(row) -> Credential:
    return Credential(
        id=row.id,
        token=row.token,
        principal_id=row.principal_id,
        name=row.name,
        state=LifecycleState(row.state),
        created_at=row.created_at,
        last_used_at=row.last_used_at,
    )
