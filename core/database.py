"""
core/database.py -- Shared SQLAlchemy engine factory and schema metadata.

Every store registers its tables on the single `metadata` object so foreign
keys between auth/ and tasks/ tables resolve inside one database. Stores call
metadata.create_all() on construction, which is idempotent.

SQLAlchemy Core (not ORM): the dataclasses in auth/models.py and
tasks/models.py stay the authoritative domain representation. Swapping SQLite
for PostgreSQL is a connection string change.
"""

from __future__ import annotations

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine

metadata = MetaData()


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journaling and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys is OFF by default in SQLite,
    so ON DELETE CASCADE does nothing without it.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    """Build an Engine for db_url with SQLite-specific connection setup."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine
