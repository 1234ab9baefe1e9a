from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from threading import RLock
from typing import Callable, Dict, Iterable, List, Optional, Set

from .errors import ConflictError
from .models import Priority, Role, Status, TaskEntity, TaskFields, UserEntity, UserFields, full_name
from .settings import get_settings
from .utils import contains_ignore_case, group_counts

logger = logging.getLogger(__name__)

TaskMutation = Callable[[TaskEntity], None]
UserMutation = Callable[[UserEntity], None]


# PUBLIC_INTERFACE
class TaskRepository(ABC):
    """
    Store contract for tasks.

    Every lookup returns copies in insertion (id) order. `update` applies a
    mutation to a fresh copy of one record and writes it back atomically.
    """

    @abstractmethod
    def create(self, fields: TaskFields) -> TaskEntity:
        """Insert a task and return it with its assigned id."""

    @abstractmethod
    def get(self, task_id: int) -> Optional[TaskEntity]:
        """Return a task by id, or None if not found."""

    @abstractmethod
    def update(self, task_id: int, mutate: TaskMutation) -> Optional[TaskEntity]:
        """Atomically apply `mutate` to the stored task. Return the result or None if not found."""

    @abstractmethod
    def delete(self, task_id: int) -> bool:
        """Delete a task by id. Return True if deleted, False if not found."""

    def exists(self, task_id: int) -> bool:
        return self.get(task_id) is not None

    @abstractmethod
    def list_all(self) -> List[TaskEntity]:
        """Return every task."""

    @abstractmethod
    def find_by_owner(self, owner_id: int) -> List[TaskEntity]:
        """Return the tasks owned by one user."""

    @abstractmethod
    def find_by_status(self, status: Status) -> List[TaskEntity]:
        """Return the tasks in one status."""

    @abstractmethod
    def find_by_priority(self, priority: Priority) -> List[TaskEntity]:
        """Return the tasks with one priority."""

    @abstractmethod
    def find_by_owner_and_status(self, owner_id: int, status: Status) -> List[TaskEntity]:
        """Return one owner's tasks in one status."""

    @abstractmethod
    def find_title_containing(self, text: str) -> List[TaskEntity]:
        """Case-insensitive substring match on title."""

    @abstractmethod
    def find_description_containing(self, text: str) -> List[TaskEntity]:
        """Case-insensitive substring match on description."""

    @abstractmethod
    def search_by_owner(self, text: str, owner_id: int) -> List[TaskEntity]:
        """Case-insensitive substring match on title or description, scoped to one owner."""

    @abstractmethod
    def find_created_between(self, start: datetime, end: datetime) -> List[TaskEntity]:
        """Tasks with start <= created_at <= end."""

    @abstractmethod
    def find_due_between(self, start: datetime, end: datetime) -> List[TaskEntity]:
        """Tasks with start <= due_date <= end."""

    @abstractmethod
    def count_by_status(self) -> Dict[Status, int]:
        """Grouped task counts; statuses with no tasks are omitted."""

    @abstractmethod
    def count_by_priority(self) -> Dict[Priority, int]:
        """Grouped task counts; priorities with no tasks are omitted."""

    @abstractmethod
    def count_by_owner(self, owner_id: int) -> int:
        """Number of tasks owned by one user."""

    @abstractmethod
    def count_by_owner_and_status(self, owner_id: int, status: Status) -> int:
        """Number of one owner's tasks in one status."""

    @abstractmethod
    def owner_ids(self) -> Set[int]:
        """Ids of every user owning at least one task."""


# PUBLIC_INTERFACE
class UserRepository(ABC):
    """
    Store contract for users.

    `create` and `update` enforce unique usernames and emails atomically and
    raise ConflictError on a collision with a different user.
    """

    @abstractmethod
    def create(self, fields: UserFields) -> UserEntity:
        """Insert a user and return it with its assigned id."""

    @abstractmethod
    def get(self, user_id: int) -> Optional[UserEntity]:
        """Return a user by id, or None if not found."""

    @abstractmethod
    def update(self, user_id: int, mutate: UserMutation) -> Optional[UserEntity]:
        """Atomically apply `mutate` to the stored user. Return the result or None if not found."""

    @abstractmethod
    def delete(self, user_id: int) -> bool:
        """Delete a user by id. Return True if deleted, False if not found."""

    def exists(self, user_id: int) -> bool:
        return self.get(user_id) is not None

    @abstractmethod
    def list_all(self) -> List[UserEntity]:
        """Return every user."""

    @abstractmethod
    def get_by_username(self, username: str) -> Optional[UserEntity]:
        """Exact username lookup."""

    @abstractmethod
    def get_by_email(self, email: str) -> Optional[UserEntity]:
        """Exact email lookup."""

    def get_by_username_or_email(self, value: str) -> Optional[UserEntity]:
        return self.get_by_username(value) or self.get_by_email(value)

    def exists_by_username(self, username: str) -> bool:
        return self.get_by_username(username) is not None

    def exists_by_email(self, email: str) -> bool:
        return self.get_by_email(email) is not None

    @abstractmethod
    def find_by_role(self, role: Role) -> List[UserEntity]:
        """Return the users with one role."""

    @abstractmethod
    def find_by_enabled(self, enabled: bool) -> List[UserEntity]:
        """Return the enabled (or disabled) users."""

    @abstractmethod
    def search(self, text: str) -> List[UserEntity]:
        """Case-insensitive substring match on username, email or full name."""

    @abstractmethod
    def count_by_role(self) -> Dict[Role, int]:
        """Grouped user counts; roles with no users are omitted."""


class InMemoryTaskRepository(TaskRepository):
    """
    Thread-safe in-memory task store suitable for testing and default runtime.

    Tasks live in an id-keyed arena; secondary indexes map owner id, status
    and priority to task ids.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[int, TaskEntity] = {}
        self._by_owner: Dict[int, List[int]] = {}
        self._by_status: Dict[Status, Set[int]] = {}
        self._by_priority: Dict[Priority, Set[int]] = {}
        self._next_id = 1

    def _allocate_id(self) -> int:
        with self._lock:
            i = self._next_id
            self._next_id += 1
            return i

    def _index(self, task: TaskEntity) -> None:
        self._by_owner.setdefault(task["owner_id"], []).append(task["id"])
        self._by_status.setdefault(task["status"], set()).add(task["id"])
        self._by_priority.setdefault(task["priority"], set()).add(task["id"])

    def _unindex(self, task: TaskEntity) -> None:
        owned = self._by_owner.get(task["owner_id"], [])
        if task["id"] in owned:
            owned.remove(task["id"])
        if not owned:
            self._by_owner.pop(task["owner_id"], None)
        self._by_status.get(task["status"], set()).discard(task["id"])
        self._by_priority.get(task["priority"], set()).discard(task["id"])

    def _copies(self, ids: Iterable[int]) -> List[TaskEntity]:
        return [self._items[i].copy() for i in sorted(ids)]

    def _scan(self, predicate: Callable[[TaskEntity], bool]) -> List[TaskEntity]:
        with self._lock:
            return [t.copy() for _, t in sorted(self._items.items()) if predicate(t)]

    def create(self, fields: TaskFields) -> TaskEntity:
        entity: TaskEntity = {**fields, "id": self._allocate_id()}  # type: ignore[typeddict-item]
        with self._lock:
            self._items[entity["id"]] = entity
            self._index(entity)
        return entity.copy()

    def get(self, task_id: int) -> Optional[TaskEntity]:
        with self._lock:
            item = self._items.get(task_id)
            return None if item is None else item.copy()

    def update(self, task_id: int, mutate: TaskMutation) -> Optional[TaskEntity]:
        with self._lock:
            existing = self._items.get(task_id)
            if existing is None:
                return None
            updated = existing.copy()
            mutate(updated)
            # id and owner are immutable
            updated["id"] = existing["id"]
            updated["owner_id"] = existing["owner_id"]
            self._unindex(existing)
            self._items[task_id] = updated
            self._index(updated)
            return updated.copy()

    def delete(self, task_id: int) -> bool:
        with self._lock:
            existing = self._items.pop(task_id, None)
            if existing is None:
                return False
            self._unindex(existing)
            return True

    def list_all(self) -> List[TaskEntity]:
        with self._lock:
            return self._copies(self._items.keys())

    def find_by_owner(self, owner_id: int) -> List[TaskEntity]:
        with self._lock:
            return self._copies(self._by_owner.get(owner_id, []))

    def find_by_status(self, status: Status) -> List[TaskEntity]:
        with self._lock:
            return self._copies(self._by_status.get(status, set()))

    def find_by_priority(self, priority: Priority) -> List[TaskEntity]:
        with self._lock:
            return self._copies(self._by_priority.get(priority, set()))

    def find_by_owner_and_status(self, owner_id: int, status: Status) -> List[TaskEntity]:
        with self._lock:
            ids = set(self._by_owner.get(owner_id, [])) & self._by_status.get(status, set())
            return self._copies(ids)

    def find_title_containing(self, text: str) -> List[TaskEntity]:
        return self._scan(lambda t: contains_ignore_case(t["title"], text))

    def find_description_containing(self, text: str) -> List[TaskEntity]:
        return self._scan(lambda t: contains_ignore_case(t["description"], text))

    def search_by_owner(self, text: str, owner_id: int) -> List[TaskEntity]:
        def matches(t: TaskEntity) -> bool:
            return contains_ignore_case(t["title"], text) or contains_ignore_case(t["description"], text)

        return [t for t in self.find_by_owner(owner_id) if matches(t)]

    def find_created_between(self, start: datetime, end: datetime) -> List[TaskEntity]:
        return self._scan(lambda t: start <= t["created_at"] <= end)

    def find_due_between(self, start: datetime, end: datetime) -> List[TaskEntity]:
        return self._scan(lambda t: t["due_date"] is not None and start <= t["due_date"] <= end)

    def count_by_status(self) -> Dict[Status, int]:
        with self._lock:
            return group_counts(t["status"] for t in self._items.values())

    def count_by_priority(self) -> Dict[Priority, int]:
        with self._lock:
            return group_counts(t["priority"] for t in self._items.values())

    def count_by_owner(self, owner_id: int) -> int:
        with self._lock:
            return len(self._by_owner.get(owner_id, []))

    def count_by_owner_and_status(self, owner_id: int, status: Status) -> int:
        with self._lock:
            return len(set(self._by_owner.get(owner_id, [])) & self._by_status.get(status, set()))

    def owner_ids(self) -> Set[int]:
        with self._lock:
            return set(self._by_owner.keys())


class InMemoryUserRepository(UserRepository):
    """
    Thread-safe in-memory user store. Unique indexes on username and email
    are checked and written under the same lock as the record.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[int, UserEntity] = {}
        self._by_username: Dict[str, int] = {}
        self._by_email: Dict[str, int] = {}
        self._next_id = 1

    def _allocate_id(self) -> int:
        with self._lock:
            i = self._next_id
            self._next_id += 1
            return i

    def _check_unique(self, user: UserFields, user_id: Optional[int]) -> None:
        holder = self._by_username.get(user["username"])
        if holder is not None and holder != user_id:
            raise ConflictError("username", user["username"])
        holder = self._by_email.get(user["email"])
        if holder is not None and holder != user_id:
            raise ConflictError("email", user["email"])

    def _scan(self, predicate: Callable[[UserEntity], bool]) -> List[UserEntity]:
        with self._lock:
            return [u.copy() for _, u in sorted(self._items.items()) if predicate(u)]

    def create(self, fields: UserFields) -> UserEntity:
        with self._lock:
            self._check_unique(fields, None)
            entity: UserEntity = {**fields, "id": self._allocate_id()}  # type: ignore[typeddict-item]
            self._items[entity["id"]] = entity
            self._by_username[entity["username"]] = entity["id"]
            self._by_email[entity["email"]] = entity["id"]
            return entity.copy()

    def get(self, user_id: int) -> Optional[UserEntity]:
        with self._lock:
            item = self._items.get(user_id)
            return None if item is None else item.copy()

    def update(self, user_id: int, mutate: UserMutation) -> Optional[UserEntity]:
        with self._lock:
            existing = self._items.get(user_id)
            if existing is None:
                return None
            updated = existing.copy()
            mutate(updated)
            updated["id"] = existing["id"]
            self._check_unique(updated, user_id)
            del self._by_username[existing["username"]]
            del self._by_email[existing["email"]]
            self._items[user_id] = updated
            self._by_username[updated["username"]] = user_id
            self._by_email[updated["email"]] = user_id
            return updated.copy()

    def delete(self, user_id: int) -> bool:
        with self._lock:
            existing = self._items.pop(user_id, None)
            if existing is None:
                return False
            del self._by_username[existing["username"]]
            del self._by_email[existing["email"]]
            return True

    def list_all(self) -> List[UserEntity]:
        return self._scan(lambda u: True)

    def get_by_username(self, username: str) -> Optional[UserEntity]:
        with self._lock:
            user_id = self._by_username.get(username)
            return None if user_id is None else self._items[user_id].copy()

    def get_by_email(self, email: str) -> Optional[UserEntity]:
        with self._lock:
            user_id = self._by_email.get(email)
            return None if user_id is None else self._items[user_id].copy()

    def find_by_role(self, role: Role) -> List[UserEntity]:
        return self._scan(lambda u: u["role"] is role)

    def find_by_enabled(self, enabled: bool) -> List[UserEntity]:
        return self._scan(lambda u: u["enabled"] == enabled)

    def search(self, text: str) -> List[UserEntity]:
        def matches(u: UserEntity) -> bool:
            return (
                contains_ignore_case(full_name(u), text)
                or contains_ignore_case(u["username"], text)
                or contains_ignore_case(u["email"], text)
            )

        return self._scan(matches)

    def count_by_role(self) -> Dict[Role, int]:
        with self._lock:
            return group_counts(u["role"] for u in self._items.values())


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Store:
    """The pair of repositories every service is built from."""

    tasks: TaskRepository
    users: UserRepository


def create_store(backend: str = "memory", sqlite_db_path: Optional[str] = None) -> Store:
    """
    Build a Store for the given backend.
    - memory: InMemoryTaskRepository + InMemoryUserRepository
    - sqlite: SQLiteTaskRepository + SQLiteUserRepository sharing one database file
    """
    if backend == "sqlite":
        from .db import SQLiteTaskRepository, SQLiteUserRepository

        path = sqlite_db_path or get_settings().sqlite_db_path
        logger.info("Using SQLite store at %s", path)
        return Store(tasks=SQLiteTaskRepository(path), users=SQLiteUserRepository(path))
    logger.info("Using in-memory store")
    return Store(tasks=InMemoryTaskRepository(), users=InMemoryUserRepository())


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_store() -> Store:
    """Return the process-wide Store configured by settings."""
    settings = get_settings()
    return create_store(settings.persistence_backend, settings.sqlite_db_path)
