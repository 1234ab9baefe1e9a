from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import Priority, Role, Status, TaskEntity, UserEntity, full_name, is_overdue

# Incoming timestamps may be a date, datetime, or ISO8601 string
DateTimeInput = Union[date, datetime, str]


def _to_naive_local(value: datetime) -> datetime:
    # Offsets are converted to local wall time; stored timestamps are always naive
    if value.tzinfo is None or value.utcoffset() is None:
        return value
    try:
        return value.astimezone().replace(tzinfo=None)
    except (OverflowError, OSError) as e:
        raise ValueError(f"Timestamp {value.isoformat()} is out of range") from e


def parse_datetime(value: Optional[DateTimeInput], field: str = "due_date") -> Optional[datetime]:
    """
    Normalize a timestamp input into a naive local datetime.
    - If value is a string, attempt datetime.fromisoformat; a bare date becomes 00:00.
    - If value is a date (not datetime), convert to datetime at 00:00.
    - If value is a datetime, return it, converting any UTC offset to local time.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return _to_naive_local(value)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, 0, 0, 0)

    if isinstance(value, str):
        s = value.strip()
        # fromisoformat only accepts a trailing Z from Python 3.11 on
        if s.endswith(("Z", "z")):
            s = s[:-1] + "+00:00"
        try:
            return _to_naive_local(datetime.fromisoformat(s))
        except ValueError:
            try:
                d = date.fromisoformat(s)
                return datetime(d.year, d.month, d.day, 0, 0, 0)
            except ValueError as e:
                raise ValueError(
                    f"Invalid {field} format. Use ISO8601 date or datetime string "
                    "(e.g., '2025-01-31' or '2025-01-31T13:45:00')."
                ) from e

    raise ValueError(f"Invalid type for {field}; expected date, datetime, or ISO8601 string.")


# PUBLIC_INTERFACE
class TaskCreate(BaseModel):
    """
    Schema for creating a new task. Status and priority fall back to
    PENDING / MEDIUM when omitted.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Write report",
                "description": "Quarterly numbers",
                "priority": "HIGH",
                "due_date": "2025-02-01",
                "user_id": 1,
            }
        }
    )

    title: str = Field(..., description="Short title, 1..200 characters")
    description: Optional[str] = Field(default=None, description="Optional description, up to 1000 characters")
    status: Optional[Status] = Field(default=None, description="Initial status (default PENDING)")
    priority: Optional[Priority] = Field(default=None, description="Priority (default MEDIUM)")
    due_date: Optional[datetime] = Field(
        default=None,
        description="Due date/time. Accepts ISO8601 date or datetime; dates are set to 00:00",
    )
    user_id: Optional[int] = Field(default=None, description="Owner id; required by the HTTP create endpoint")

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DateTimeInput]) -> Optional[datetime]:
        return parse_datetime(v)


# PUBLIC_INTERFACE
class TaskUpdate(BaseModel):
    """
    Schema for replacing the editable fields of a task. This is a full
    replace: omitted description/due_date become null, omitted status and
    priority fall back to PENDING / MEDIUM.
    """

    title: str = Field(..., description="Short title, 1..200 characters")
    description: Optional[str] = Field(default=None, description="Optional description")
    status: Status = Field(default=Status.PENDING, description="Task status")
    priority: Priority = Field(default=Priority.MEDIUM, description="Task priority")
    due_date: Optional[datetime] = Field(default=None, description="Due date/time")

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DateTimeInput]) -> Optional[datetime]:
        return parse_datetime(v)


class TaskStatusRequest(BaseModel):
    status: Status


class TaskPriorityRequest(BaseModel):
    priority: Priority


# PUBLIC_INTERFACE
class TaskOut(BaseModel):
    """
    Schema returned by the API for a task. `overdue` is derived at
    serialization time and never stored.
    """

    id: int = Field(..., description="Unique identifier of the task")
    title: str
    description: Optional[str] = None
    status: Status
    priority: Priority
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    owner_id: int = Field(..., description="Id of the owning user")
    overdue: bool = Field(..., description="Due date passed and not completed")

    @classmethod
    def from_entity(cls, task: TaskEntity, now: Optional[datetime] = None) -> "TaskOut":
        return cls(**task, overdue=is_overdue(task, now or datetime.now()))


class TaskSummaryOut(BaseModel):
    total_tasks: int
    completed_tasks: int
    pending_tasks: int
    in_progress_tasks: int
    overdue_tasks: int


# PUBLIC_INTERFACE
class UserCreate(BaseModel):
    """Schema for registering a user. The password is hashed before storage."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "username": "alice",
                "email": "alice@example.com",
                "password": "s3cret-pass",
                "first_name": "Alice",
                "last_name": "Smith",
            }
        }
    )

    username: str
    email: str
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[Role] = Field(default=None, description="Role (default USER)")


# PUBLIC_INTERFACE
class UserUpdate(BaseModel):
    """Schema for updating a user's profile fields. Never touches the password."""

    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Role = Role.USER
    enabled: bool = True


class PasswordChangeRequest(BaseModel):
    new_password: str


class UserStatusRequest(BaseModel):
    enabled: bool


class CredentialsRequest(BaseModel):
    username_or_email: str
    password: str


# PUBLIC_INTERFACE
class UserOut(BaseModel):
    """Schema returned by the API for a user; the password hash is never exposed."""

    id: int
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: str
    role: Role
    enabled: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, user: UserEntity) -> "UserOut":
        return cls(
            id=user["id"],
            username=user["username"],
            email=user["email"],
            first_name=user["first_name"],
            last_name=user["last_name"],
            full_name=full_name(user),
            role=user["role"],
            enabled=user["enabled"],
            created_at=user["created_at"],
            updated_at=user["updated_at"],
        )
