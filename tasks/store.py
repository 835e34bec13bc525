"""
tasks/store.py -- SQLAlchemy-backed persistence layer for TinyTasks tasks.

Uses SQLAlchemy Core (not ORM) so the dataclasses in tasks/models.py remain
the authoritative domain representation.

Pattern: Repository + Data Mapper. TaskStore is the repository; _row_to_task
is the mapper. Route handlers never touch SQL directly.

Ownership: every read, update, toggle and delete takes owner_id and puts it
in the WHERE clause next to the task id. A task owned by someone else is
indistinguishable from a task that does not exist -- both come back as None.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = TaskStore(create_db_engine("sqlite:///tinytasks.db"))
    task = store.create(Task(title="Write docs", owner_id=principal.id))
    store.toggle(task.id, principal.id)
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, ForeignKey, Integer, String, Table, Text, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.store import principals
from core.database import metadata
from tasks.models import Priority, Task, TaskStats

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_tasks = Table(
    "tasks",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("title", String(255), nullable=False),
    Column("detail", Text),
    Column("priority", String(50), nullable=False, server_default=Priority.MEDIUM.value),
    Column("is_done", Integer, nullable=False, server_default="0"),  # boolean stored as 0/1
    Column("owner_id", String(36), ForeignKey(principals.c.id, ondelete="CASCADE"), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Columns a PATCH may change. owner_id and timestamps are never client-writable.
_UPDATABLE_FIELDS = {"title", "detail", "priority", "is_done"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _owned(task_id: str, owner_id: str):
    return (_tasks.c.id == task_id) & (_tasks.c.owner_id == owner_id)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TaskStore:
    """Repository for Task records, always scoped to one owner per call."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by status probes."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    def create(self, task: Task) -> Task:
        """Insert a task and return the stored record."""
        now = _now_iso()
        task_id = task.id or str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(
                _tasks.insert().values(
                    id=task_id,
                    title=task.title,
                    detail=task.detail,
                    priority=Priority(task.priority).value,
                    is_done=1 if task.is_done else 0,
                    owner_id=task.owner_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return Task(
            id=task_id,
            title=task.title,
            detail=task.detail,
            priority=Priority(task.priority),
            is_done=task.is_done,
            owner_id=task.owner_id,
            created_at=now,
            updated_at=now,
        )

    def get(self, task_id: str, owner_id: str) -> Optional[Task]:
        """Return the task if it exists and belongs to owner_id, else None."""
        with self.engine.connect() as conn:
            row = conn.execute(_tasks.select().where(_owned(task_id, owner_id))).fetchone()
        return _row_to_task(row) if row is not None else None

    def list_tasks(self, owner_id: str, status: Optional[str] = None) -> list[Task]:
        """Return the owner's tasks, newest first.

        status="completed" keeps done tasks, status="pending" keeps open ones;
        any other value (including None) returns everything.
        """
        query = _tasks.select().where(_tasks.c.owner_id == owner_id)
        if status == "completed":
            query = query.where(_tasks.c.is_done == 1)
        elif status == "pending":
            query = query.where(_tasks.c.is_done == 0)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_tasks.c.created_at.desc())).fetchall()
        return [_row_to_task(r) for r in rows]

    def update(self, task_id: str, owner_id: str, /, **fields) -> Optional[Task]:
        """Apply a partial update. Returns the updated task, or None if not owned/not found.

        Accepted fields: title, detail, priority, is_done. Unknown keys raise
        ValueError rather than silently ignoring them.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown task fields: {unknown!r}")
        if "priority" in fields:
            fields["priority"] = Priority(fields["priority"]).value
        if "is_done" in fields:
            fields["is_done"] = 1 if fields["is_done"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_tasks.update().where(_owned(task_id, owner_id)).values(updated_at=_now_iso(), **fields))
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get(task_id, owner_id)

    def toggle(self, task_id: str, owner_id: str) -> Optional[Task]:
        """Flip is_done in a single UPDATE. Returns the updated task, or None."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _tasks.update()
                .where(_owned(task_id, owner_id))
                .values(is_done=1 - _tasks.c.is_done, updated_at=_now_iso())
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get(task_id, owner_id)

    def delete(self, task_id: str, owner_id: str) -> Optional[Task]:
        """Permanently delete an owned task. Returns the deleted record, or None."""
        task = self.get(task_id, owner_id)
        if task is None:
            return None
        with self.engine.connect() as conn:
            result = conn.execute(_tasks.delete().where(_owned(task_id, owner_id)))
            conn.commit()
        return task if result.rowcount > 0 else None

    def delete_all(self, owner_id: str) -> int:
        """Delete every task of an owner. Returns the number removed (operator cleanup)."""
        with self.engine.connect() as conn:
            result = conn.execute(_tasks.delete().where(_tasks.c.owner_id == owner_id))
            conn.commit()
        return result.rowcount

    def stats(self, owner_id: str) -> TaskStats:
        """Return total / completed / pending counts and the completion percentage."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(
                    func.count().label("total"),
                    func.coalesce(func.sum(_tasks.c.is_done), 0).label("completed"),
                ).where(_tasks.c.owner_id == owner_id)
            ).one()
        total = int(row.total or 0)
        completed = int(row.completed or 0)
        rate = int(completed * 100 / total + 0.5) if total > 0 else 0  # half-up rounding
        return TaskStats(total=total, completed=completed, pending=total - completed, completion_rate=rate)


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_task(row) -> Task:
    return Task(
        id=row.id,
        title=row.title,
        detail=row.detail,
        priority=Priority(row.priority),
        is_done=bool(row.is_done),
        owner_id=row.owner_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
