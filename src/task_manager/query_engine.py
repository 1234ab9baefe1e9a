from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from .errors import NotFoundError, ValidationError
from .models import Priority, Role, Status, TaskEntity, UserEntity, is_overdue
from .repositories import Store

logger = logging.getLogger(__name__)

DEFAULT_DUE_SOON_DAYS = 7


# Sort fields accepted by QueryEngine.by_owner; prefix with '-' for descending
_SORT_KEYS: Dict[str, Callable[[TaskEntity], Any]] = {
    "created_at": lambda t: t["created_at"],
    "updated_at": lambda t: t["updated_at"],
    "due_date": lambda t: t["due_date"],
    "priority": lambda t: t["priority"].rank,
}


def sort_tasks(tasks: List[TaskEntity], sort: Optional[str]) -> List[TaskEntity]:
    """
    Order tasks by a sort expression such as "created_at" or "-priority".

    Ties keep insertion order. Tasks without a due date always come last
    when sorting by due date, in either direction.
    """
    if not sort:
        return tasks
    key = sort.strip().lower()
    reverse = key.startswith("-")
    field = key.lstrip("-")
    if field not in _SORT_KEYS:
        raise ValidationError("sort", f"unsupported sort field {field!r}; use one of {sorted(_SORT_KEYS)}")
    if field == "due_date":
        dated = [t for t in tasks if t["due_date"] is not None]
        undated = [t for t in tasks if t["due_date"] is None]
        return sorted(dated, key=lambda t: t["due_date"], reverse=reverse) + undated
    return sorted(tasks, key=_SORT_KEYS[field], reverse=reverse)


# PUBLIC_INTERFACE
class QueryEngine:
    """
    Read-only views over tasks and users.

    Every call recomputes from the current Store contents. Results come back
    in insertion order unless a sort is requested. Methods taking `now` fall
    back to the engine clock when it is omitted.
    """

    def __init__(self, store: Store, clock: Callable[[], datetime] = datetime.now) -> None:
        self._store = store
        self._clock = clock

    # Tasks

    def all_tasks(self) -> List[TaskEntity]:
        return self._store.tasks.list_all()

    def get_task(self, task_id: int) -> TaskEntity:
        task = self._store.tasks.get(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    def by_owner(self, owner_id: int, sort: Optional[str] = None) -> List[TaskEntity]:
        return sort_tasks(self._store.tasks.find_by_owner(owner_id), sort)

    def by_status(self, status: Status) -> List[TaskEntity]:
        return self._store.tasks.find_by_status(status)

    def by_priority(self, priority: Priority) -> List[TaskEntity]:
        return self._store.tasks.find_by_priority(priority)

    def by_owner_and_status(self, owner_id: int, status: Status) -> List[TaskEntity]:
        return self._store.tasks.find_by_owner_and_status(owner_id, status)

    def completed_by_owner(self, owner_id: int) -> List[TaskEntity]:
        return self.by_owner_and_status(owner_id, Status.COMPLETED)

    def pending_by_owner(self, owner_id: int) -> List[TaskEntity]:
        return self.by_owner_and_status(owner_id, Status.PENDING)

    def in_progress_by_owner(self, owner_id: int) -> List[TaskEntity]:
        return self.by_owner_and_status(owner_id, Status.IN_PROGRESS)

    def overdue(self, now: Optional[datetime] = None) -> List[TaskEntity]:
        now = now or self._clock()
        return [t for t in self._store.tasks.list_all() if is_overdue(t, now)]

    def overdue_by_owner(self, owner_id: int, now: Optional[datetime] = None) -> List[TaskEntity]:
        now = now or self._clock()
        return [t for t in self._store.tasks.find_by_owner(owner_id) if is_overdue(t, now)]

    def due_soon(
        self,
        owner_id: int,
        days: int = DEFAULT_DUE_SOON_DAYS,
        now: Optional[datetime] = None,
    ) -> List[TaskEntity]:
        """
        Tasks of one owner due within (now, now + days], excluding completed
        ones. A negative `days` gives an empty window.
        """
        if days < 0:
            return []
        now = now or self._clock()
        try:
            horizon = now + timedelta(days=days)
        except OverflowError:
            horizon = datetime.max
        logger.debug("Due-soon window for user id=%s: (%s, %s]", owner_id, now, horizon)
        return [
            t
            for t in self._store.tasks.find_by_owner(owner_id)
            if t["due_date"] is not None
            and now < t["due_date"] <= horizon
            and t["status"] is not Status.COMPLETED
        ]

    def title_contains(self, text: str) -> List[TaskEntity]:
        return self._store.tasks.find_title_containing(text)

    def description_contains(self, text: str) -> List[TaskEntity]:
        return self._store.tasks.find_description_containing(text)

    def search_by_owner(self, text: str, owner_id: int) -> List[TaskEntity]:
        return self._store.tasks.search_by_owner(text, owner_id)

    def created_between(self, start: datetime, end: datetime) -> List[TaskEntity]:
        if start > end:
            return []
        return self._store.tasks.find_created_between(start, end)

    def due_between(self, start: datetime, end: datetime) -> List[TaskEntity]:
        if start > end:
            return []
        return self._store.tasks.find_due_between(start, end)

    # Users

    def all_users(self) -> List[UserEntity]:
        return self._store.users.list_all()

    def get_user(self, user_id: int) -> UserEntity:
        user = self._store.users.get(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def get_user_by_username(self, username: str) -> UserEntity:
        user = self._store.users.get_by_username(username)
        if user is None:
            raise NotFoundError("User", username)
        return user

    def get_user_by_email(self, email: str) -> UserEntity:
        user = self._store.users.get_by_email(email)
        if user is None:
            raise NotFoundError("User", email)
        return user

    def get_user_by_username_or_email(self, value: str) -> UserEntity:
        user = self._store.users.get_by_username_or_email(value)
        if user is None:
            raise NotFoundError("User", value)
        return user

    def users_by_role(self, role: Role) -> List[UserEntity]:
        return self._store.users.find_by_role(role)

    def users_by_enabled(self, enabled: bool) -> List[UserEntity]:
        return self._store.users.find_by_enabled(enabled)

    def active_users(self) -> List[UserEntity]:
        return self.users_by_enabled(True)

    def search_users(self, text: str) -> List[UserEntity]:
        return self._store.users.search(text)

    def users_with_tasks(self) -> List[UserEntity]:
        owners = self._store.tasks.owner_ids()
        return [u for u in self._store.users.list_all() if u["id"] in owners]

    def users_without_tasks(self) -> List[UserEntity]:
        owners = self._store.tasks.owner_ids()
        return [u for u in self._store.users.list_all() if u["id"] not in owners]

    def username_exists(self, username: str) -> bool:
        return self._store.users.exists_by_username(username)

    def email_exists(self, email: str) -> bool:
        return self._store.users.exists_by_email(email)
