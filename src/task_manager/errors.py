from __future__ import annotations

from typing import Any


class TaskManagerError(Exception):
    """Base class for every error the core raises."""

    kind = "InternalError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


# PUBLIC_INTERFACE
class NotFoundError(TaskManagerError):
    """A referenced User or Task id does not exist."""

    kind = "NotFoundError"

    def __init__(self, entity: str, id: Any) -> None:
        super().__init__(f"{entity} not found with id: {id}")
        self.entity = entity
        self.id = id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["detail"] = {"entity": self.entity, "id": self.id}
        return data


# PUBLIC_INTERFACE
class ValidationError(TaskManagerError):
    """Structurally invalid input: blank title, oversized text, missing field."""

    kind = "ValidationError"

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["detail"] = {"field": self.field, "reason": self.reason}
        return data


# PUBLIC_INTERFACE
class ConflictError(TaskManagerError):
    """A uniqueness or referential constraint would be violated."""

    kind = "ConflictError"

    def __init__(self, field: str, value: Any, message: str | None = None) -> None:
        super().__init__(message or f"{field} already exists: {value}")
        self.field = field
        self.value = value

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["detail"] = {"field": self.field, "value": self.value}
        return data


# PUBLIC_INTERFACE
class InternalError(TaskManagerError):
    """Store or PasswordHasher failure unrelated to the other kinds."""

    kind = "InternalError"
