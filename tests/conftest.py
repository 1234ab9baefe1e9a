from __future__ import annotations

import os
from datetime import datetime, timedelta
from typing import Callable, Optional

import pytest
from fastapi.testclient import TestClient

# Default to the memory backend so importing the app never touches the filesystem
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")

from task_manager.deps import get_clock, get_password_hasher  # noqa: E402
from task_manager.main import app  # noqa: E402
from task_manager.models import Priority, Status  # noqa: E402
from task_manager.query_engine import QueryEngine  # noqa: E402
from task_manager.repositories import Store, create_store, get_store  # noqa: E402
from task_manager.schemas import TaskCreate, UserCreate  # noqa: E402
from task_manager.security import BcryptPasswordHasher  # noqa: E402
from task_manager.statistics import StatisticsAggregator  # noqa: E402
from task_manager.task_lifecycle import TaskLifecycle  # noqa: E402
from task_manager.user_registry import UserRegistry  # noqa: E402

START = datetime(2025, 1, 15, 12, 0, 0)


class FakeClock:
    """Deterministic, manually advanced clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture(scope="session")
def hasher() -> BcryptPasswordHasher:
    # Lowest bcrypt cost keeps the suite fast
    return BcryptPasswordHasher(rounds=4)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path) -> Store:
    return create_store(request.param, str(tmp_path / "tasks.db"))


@pytest.fixture()
def registry(store, hasher, clock) -> UserRegistry:
    return UserRegistry(store, hasher, clock)


@pytest.fixture()
def lifecycle(store, clock) -> TaskLifecycle:
    return TaskLifecycle(store, clock)


@pytest.fixture()
def queries(store, clock) -> QueryEngine:
    return QueryEngine(store, clock)


@pytest.fixture()
def stats(store, clock) -> StatisticsAggregator:
    return StatisticsAggregator(store, clock)


@pytest.fixture()
def make_user(registry) -> Callable[..., dict]:
    def _make(username: str = "alice", email: Optional[str] = None, **kwargs):
        return registry.create(
            UserCreate(
                username=username,
                email=email or f"{username}@x.com",
                password=kwargs.pop("password", "secret-pass"),
                **kwargs,
            )
        )

    return _make


@pytest.fixture()
def make_task(lifecycle) -> Callable[..., dict]:
    def _make(
        owner_id: int,
        title: str = "Write report",
        status: Optional[Status] = None,
        priority: Optional[Priority] = None,
        due_date: Optional[datetime] = None,
        description: Optional[str] = None,
    ):
        return lifecycle.create(
            TaskCreate(
                title=title,
                description=description,
                status=status,
                priority=priority,
                due_date=due_date,
            ),
            owner_id,
        )

    return _make


@pytest.fixture()
def client(clock, hasher):
    """TestClient over a fresh in-memory store with the fake clock and fast hasher."""
    api_store = create_store("memory")
    app.dependency_overrides[get_store] = lambda: api_store
    app.dependency_overrides[get_password_hasher] = lambda: hasher
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()
