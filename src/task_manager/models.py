from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, TypedDict

from .errors import ValidationError

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 1000


# PUBLIC_INTERFACE
class Status(str, Enum):
    """Lifecycle state of a task."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# PUBLIC_INTERFACE
class Priority(str, Enum):
    """Task priority, ordered LOW < MEDIUM < HIGH < URGENT."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANKS[self]


_PRIORITY_RANKS = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.URGENT: 4,
}


# PUBLIC_INTERFACE
class Role(str, Enum):
    """User role."""

    USER = "USER"
    ADMIN = "ADMIN"


# PUBLIC_INTERFACE
class TaskFields(TypedDict):
    """
    Task record as handed to the Store for insertion (no id yet).

    Fields:
    - title: 1..200 chars after trimming
    - description: optional, at most 1000 chars
    - status / priority: enum values, default PENDING / MEDIUM
    - due_date: optional deadline
    - completed_at: set iff status is COMPLETED
    - created_at / updated_at: stamped by the services
    - owner_id: id of the owning user, never reassigned
    """

    title: str
    description: Optional[str]
    status: Status
    priority: Priority
    due_date: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    owner_id: int


# PUBLIC_INTERFACE
class TaskEntity(TaskFields):
    """A stored task; `id` is assigned by the Store and immutable."""

    id: int


# PUBLIC_INTERFACE
class UserFields(TypedDict):
    """
    User record as handed to the Store for insertion (no id yet).

    `password_hash` is the only credential ever stored; plaintext passwords
    never reach the Store.
    """

    username: str
    email: str
    password_hash: str
    first_name: Optional[str]
    last_name: Optional[str]
    role: Role
    enabled: bool
    created_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class UserEntity(UserFields):
    """A stored user."""

    id: int


# PUBLIC_INTERFACE
def apply_status(task: TaskFields, status: Status, now: datetime) -> None:
    """
    Set `status` on a task record in place, keeping completed_at consistent.

    Completing stamps completed_at only if it is not already set, so repeated
    completion keeps the first instant. Any other status clears it.
    """
    if status is Status.COMPLETED:
        if task.get("completed_at") is None:
            task["completed_at"] = now
    elif status in (Status.PENDING, Status.IN_PROGRESS, Status.CANCELLED):
        task["completed_at"] = None
    else:  # pragma: no cover - closed enum
        raise ValidationError("status", f"unknown status {status!r}")
    task["status"] = status


# PUBLIC_INTERFACE
def is_overdue(task: TaskFields, now: datetime) -> bool:
    """True when the task has a due date in the past and is not completed."""
    due = task.get("due_date")
    if due is None:
        return False
    return now > due and task["status"] is not Status.COMPLETED


def full_name(user: UserFields) -> str:
    parts = [user.get("first_name") or "", user.get("last_name") or ""]
    return " ".join(parts).strip()


# PUBLIC_INTERFACE
def validate_title(value: Optional[str]) -> str:
    """Trim and check a task title; raise ValidationError when invalid."""
    if value is None:
        raise ValidationError("title", "title is required")
    s = value.strip()
    if not s:
        raise ValidationError("title", "title must not be blank")
    if len(s) > TITLE_MAX_LENGTH:
        raise ValidationError("title", f"title must be at most {TITLE_MAX_LENGTH} characters")
    return s


# PUBLIC_INTERFACE
def validate_description(value: Optional[str]) -> Optional[str]:
    """Check the optional description length; raise ValidationError when too long."""
    if value is None:
        return None
    if len(value) > DESCRIPTION_MAX_LENGTH:
        raise ValidationError(
            "description", f"description must be at most {DESCRIPTION_MAX_LENGTH} characters"
        )
    return value


def require_text(field: str, value: Optional[str]) -> str:
    """Return `value` trimmed, or raise ValidationError if it is missing or blank."""
    if value is None or not value.strip():
        raise ValidationError(field, f"{field} is required")
    return value.strip()
