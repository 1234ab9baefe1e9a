from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from .errors import NotFoundError, TaskManagerError
from .models import (
    Priority,
    Status,
    TaskEntity,
    TaskFields,
    apply_status,
    validate_description,
    validate_title,
)
from .repositories import Store
from .schemas import TaskCreate, TaskUpdate

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class TaskLifecycle:
    """
    Creates, edits, transitions and deletes tasks under a single owner.

    Any status may be set from any status. Every status write goes through
    `apply_status`, so completed_at is set exactly when the task is COMPLETED.
    """

    def __init__(self, store: Store, clock: Callable[[], datetime] = datetime.now) -> None:
        self._store = store
        self._clock = clock

    def _mutate(self, task_id: int, mutate: Callable[[TaskEntity], None]) -> TaskEntity:
        updated = self._store.tasks.update(task_id, mutate)
        if updated is None:
            raise NotFoundError("Task", task_id)
        return updated

    def create(self, data: TaskCreate, owner_id: int) -> TaskEntity:
        """
        Create a task for an existing user.

        Raises:
            NotFoundError: `owner_id` is not a known user.
            ValidationError: blank/oversized title or oversized description.
        """
        if not self._store.users.exists(owner_id):
            raise NotFoundError("User", owner_id)

        now = self._clock()
        fields: TaskFields = {
            "title": validate_title(data.title),
            "description": validate_description(data.description),
            "status": Status.PENDING,
            "priority": data.priority or Priority.MEDIUM,
            "due_date": data.due_date,
            "completed_at": None,
            "created_at": now,
            "updated_at": now,
            "owner_id": owner_id,
        }
        apply_status(fields, data.status or Status.PENDING, now)
        task = self._store.tasks.create(fields)
        logger.info("Created task id=%s for user id=%s", task["id"], owner_id)
        return task

    def update(self, task_id: int, data: TaskUpdate) -> TaskEntity:
        """Replace title, description, status, priority and due date wholesale."""
        if not self._store.tasks.exists(task_id):
            raise NotFoundError("Task", task_id)
        title = validate_title(data.title)
        description = validate_description(data.description)
        now = self._clock()

        def apply(task: TaskEntity) -> None:
            task["title"] = title
            task["description"] = description
            apply_status(task, data.status, now)
            task["priority"] = data.priority
            task["due_date"] = data.due_date
            task["updated_at"] = now

        task = self._mutate(task_id, apply)
        logger.info("Updated task id=%s", task_id)
        return task

    def change_status(self, task_id: int, status: Status) -> TaskEntity:
        now = self._clock()

        def apply(task: TaskEntity) -> None:
            apply_status(task, status, now)
            task["updated_at"] = now

        task = self._mutate(task_id, apply)
        logger.info("Task id=%s status -> %s", task_id, status.value)
        return task

    def complete(self, task_id: int) -> TaskEntity:
        return self.change_status(task_id, Status.COMPLETED)

    def change_priority(self, task_id: int, priority: Priority) -> TaskEntity:
        now = self._clock()

        def apply(task: TaskEntity) -> None:
            task["priority"] = priority
            task["updated_at"] = now

        task = self._mutate(task_id, apply)
        logger.info("Task id=%s priority -> %s", task_id, priority.value)
        return task

    def delete(self, task_id: int) -> None:
        if not self._store.tasks.delete(task_id):
            raise NotFoundError("Task", task_id)
        logger.info("Deleted task id=%s", task_id)

    def is_owned_by(self, task_id: int, user_id: int) -> bool:
        """True iff the task exists and belongs to `user_id`; never raises."""
        try:
            task = self._store.tasks.get(task_id)
        except TaskManagerError as e:
            logger.warning("Ownership check for task id=%s failed with %s", task_id, type(e).__name__)
            return False
        return task is not None and task["owner_id"] == user_id
