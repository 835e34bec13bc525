"""
api/routes/tasks.py -- Task CRUD routes for the TinyTasks REST API.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /tasks/status            -- public service status probe
  GET    /tasks/stats             -- counts + completion rate
  GET    /tasks                   -- list, optional ?status=completed|pending
  POST   /tasks                   -- create
  GET    /tasks/{task_id}         -- detail
  PATCH  /tasks/{task_id}         -- partial update
  PATCH  /tasks/{task_id}/toggle  -- flip completion
  DELETE /tasks/{task_id}         -- delete, returns the removed task

Ownership: the owner is always the principal resolved by the request gate.
Every store call passes principal.id, so a task id belonging to someone else
gets the same 404 as one that does not exist.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request

from api.models import (
    ServiceStatusResponse,
    TaskCreate,
    TaskResponse,
    TaskStatsResponse,
    TaskStatusFilter,
    TaskUpdate,
)
from auth.gate import get_current_principal
from auth.models import Principal
from core.errors import NotFoundError
from tasks.models import Priority, Task
from tasks.store import TaskStore

router = APIRouter()


def _not_found(task_id: str) -> NotFoundError:
    return NotFoundError(f"Task with ID {task_id} not found")


# ---------------------------------------------------------------------------
# Static paths -- registered before /tasks/{task_id}
# ---------------------------------------------------------------------------


@router.get("/tasks/status", response_model=ServiceStatusResponse)
def service_status(request: Request) -> ServiceStatusResponse:
    """Public probe: reports whether the task database answers."""
    store: TaskStore = request.app.state.task_store
    return ServiceStatusResponse(
        status="connected" if store.ping() else "error",
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/tasks/stats", response_model=TaskStatsResponse)
def task_stats(request: Request, principal: Principal = Depends(get_current_principal)) -> TaskStatsResponse:
    store: TaskStore = request.app.state.task_store
    return TaskStatsResponse.from_stats(store.stats(principal.id))


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


@router.get("/tasks", response_model=list[TaskResponse])
def list_tasks(
    request: Request,
    status: Optional[TaskStatusFilter] = None,
    principal: Principal = Depends(get_current_principal),
) -> list[TaskResponse]:
    """List the caller's tasks, newest first."""
    store: TaskStore = request.app.state.task_store
    tasks = store.list_tasks(principal.id, status.value if status else None)
    return [TaskResponse.from_task(t) for t in tasks]


@router.post("/tasks", response_model=TaskResponse, status_code=201)
def create_task(
    request: Request,
    body: TaskCreate,
    principal: Principal = Depends(get_current_principal),
) -> TaskResponse:
    store: TaskStore = request.app.state.task_store
    task = store.create(
        Task(
            title=body.title,
            detail=body.detail,
            priority=Priority(body.priority.value),
            owner_id=principal.id,
        )
    )
    return TaskResponse.from_task(task)


# ---------------------------------------------------------------------------
# Single task
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(
    request: Request,
    task_id: str,
    principal: Principal = Depends(get_current_principal),
) -> TaskResponse:
    store: TaskStore = request.app.state.task_store
    task = store.get(task_id, principal.id)
    if task is None:
        raise _not_found(task_id)
    return TaskResponse.from_task(task)


@router.patch("/tasks/{task_id}", response_model=TaskResponse)
def update_task(
    request: Request,
    task_id: str,
    body: TaskUpdate,
    principal: Principal = Depends(get_current_principal),
) -> TaskResponse:
    """Apply a partial update.

    Only fields present in the body are written. detail may be sent as null
    to clear it; a null title, priority or isDone is ignored.
    """
    fields = body.model_dump(exclude_unset=True)
    fields = {k: v for k, v in fields.items() if v is not None or k == "detail"}
    if "priority" in fields:
        fields["priority"] = fields["priority"].value

    store: TaskStore = request.app.state.task_store
    if fields:
        task = store.update(task_id, principal.id, **fields)
    else:
        task = store.get(task_id, principal.id)
    if task is None:
        raise _not_found(task_id)
    return TaskResponse.from_task(task)


@router.patch("/tasks/{task_id}/toggle", response_model=TaskResponse)
def toggle_task(
    request: Request,
    task_id: str,
    principal: Principal = Depends(get_current_principal),
) -> TaskResponse:
    store: TaskStore = request.app.state.task_store
    task = store.toggle(task_id, principal.id)
    if task is None:
        raise _not_found(task_id)
    return TaskResponse.from_task(task)


@router.delete("/tasks/{task_id}", response_model=TaskResponse)
def delete_task(
    request: Request,
    task_id: str,
    principal: Principal = Depends(get_current_principal),
) -> TaskResponse:
    """Permanently delete a task and return it as it was."""
    store: TaskStore = request.app.state.task_store
    task = store.delete(task_id, principal.id)
    if task is None:
        raise _not_found(task_id)
    return TaskResponse.from_task(task)
