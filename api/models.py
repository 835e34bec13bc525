"""
API request and response models for TinyTasks REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
tasks/models.py, which own the internal domain representation. Route handlers
map between the two.

Wire format: resource payloads use camelCase keys (isDone, createdAt,
lastUsedAt) through an alias generator; Python attribute names stay
snake_case. The login payload keeps its historical snake_case keys
(client_type, access_token, token_type) and so does not use the generator.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import CredentialSummary, Principal
from tasks.models import Task, TaskStats


class _CamelModel(BaseModel):
    """Base for models serialized with camelCase keys. Accepts either spelling on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PriorityEnum(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class TaskStatusFilter(str, Enum):
    completed = "completed"
    pending = "pending"


# ---------------------------------------------------------------------------
# Errors and probes
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Uniform error envelope returned by every exception handler and the request gate."""

    error: str


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: str
    message: str = "TinyTasks API is running successfully"
    components: dict[str, str]


class ServiceStatusResponse(BaseModel):
    """Body of the public GET /tasks/status probe."""

    message: str = "Service status"
    mode: str = "database"
    status: str  # "connected" | "error"
    timestamp: str


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class UserInfo(BaseModel):
    """The minimal principal view handed to clients: id, email, name."""

    id: str
    email: str
    name: str

    @classmethod
    def from_principal(cls, principal: Principal) -> "UserInfo":
        return cls(id=principal.id, email=principal.email, name=principal.name)


class LoginResponse(BaseModel):
    """JSON body returned by the federation callback.

    Optional fields are client-type specific and dropped when None:
      macos -- instructions
      mcp   -- access_token (alias of token) and token_type
    """

    success: bool = True
    token: str
    user: UserInfo
    client_type: str
    message: str
    instructions: Optional[str] = None
    access_token: Optional[str] = None
    token_type: Optional[str] = None


class MeResponse(BaseModel):
    user: UserInfo


class CredentialResponse(_CamelModel):
    """One active credential in GET /auth/tokens. Never carries the token value."""

    id: str
    name: str
    created_at: str
    last_used_at: Optional[str] = None

    @classmethod
    def from_summary(cls, summary: CredentialSummary) -> "CredentialResponse":
        return cls(
            id=summary.id,
            name=summary.name,
            created_at=summary.created_at,
            last_used_at=summary.last_used_at,
        )


class TokenListResponse(BaseModel):
    tokens: list[CredentialResponse]


class RevokeAllResponse(BaseModel):
    message: str
    revoked: int


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class ProfileResponse(_CamelModel):
    id: str
    email: str
    name: str
    avatar_url: Optional[str] = None
    is_active: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_principal(cls, principal: Principal) -> "ProfileResponse":
        return cls(
            id=principal.id,
            email=principal.email,
            name=principal.name,
            avatar_url=principal.avatar_url,
            is_active=principal.is_active,
            created_at=principal.created_at or "",
            updated_at=principal.updated_at or "",
        )


class ProfileUpdate(BaseModel):
    """PATCH /users/profile body. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskCreate(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=255)
    detail: Optional[str] = None
    priority: PriorityEnum = PriorityEnum.medium


class TaskUpdate(_CamelModel):
    """PATCH /tasks/{id} body. Omitted fields are left unchanged."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    detail: Optional[str] = None
    priority: Optional[PriorityEnum] = None
    is_done: Optional[bool] = None


class TaskResponse(_CamelModel):
    id: str
    title: str
    detail: Optional[str] = None
    priority: str
    is_done: bool
    user_id: str
    created_at: str
    updated_at: str

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        """Factory Method -- the mapping lives next to the output model."""
        return cls(
            id=task.id,
            title=task.title,
            detail=task.detail,
            priority=task.priority.value,
            is_done=task.is_done,
            user_id=task.owner_id,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )


class TaskStatsResponse(_CamelModel):
    total: int
    completed: int
    pending: int
    completion_rate: int

    @classmethod
    def from_stats(cls, stats: TaskStats) -> "TaskStatsResponse":
        return cls(
            total=stats.total,
            completed=stats.completed,
            pending=stats.pending,
            completion_rate=stats.completion_rate,
        )
