"""
tasks/models.py -- Domain dataclasses for TinyTasks tasks.

Pure data containers. Ownership filtering and statistics live in
tasks/store.py; the authenticated principal is supplied by auth/.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class Task:
    """A to-do item owned by exactly one principal.

    owner_id is set from the authenticated principal on creation and never
    changes. id is None before the record is written to the database.
    """

    title: str
    owner_id: str
    detail: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    is_done: bool = False
    id: Optional[str] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class TaskStats:
    total: int
    completed: int
    pending: int
    completion_rate: int  # whole percent, 0 when there are no tasks
