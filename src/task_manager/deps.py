from __future__ import annotations

from datetime import datetime
from functools import lru_cache
from typing import Callable

from fastapi import Depends

from .query_engine import QueryEngine
from .repositories import Store, get_store
from .security import BcryptPasswordHasher, PasswordHasher
from .settings import get_settings
from .statistics import StatisticsAggregator
from .task_lifecycle import TaskLifecycle
from .user_registry import UserRegistry

Clock = Callable[[], datetime]


def get_clock() -> Clock:
    """Dependency returning the wall clock; tests override it with a fake."""
    return datetime.now


@lru_cache(maxsize=1)
def get_password_hasher() -> PasswordHasher:
    return BcryptPasswordHasher(rounds=get_settings().bcrypt_rounds)


# Services hold no state; one is built per request

def get_user_registry(
    store: Store = Depends(get_store),
    hasher: PasswordHasher = Depends(get_password_hasher),
    clock: Clock = Depends(get_clock),
) -> UserRegistry:
    return UserRegistry(store, hasher, clock)


def get_task_lifecycle(store: Store = Depends(get_store), clock: Clock = Depends(get_clock)) -> TaskLifecycle:
    return TaskLifecycle(store, clock)


def get_query_engine(store: Store = Depends(get_store), clock: Clock = Depends(get_clock)) -> QueryEngine:
    return QueryEngine(store, clock)


def get_statistics(store: Store = Depends(get_store), clock: Clock = Depends(get_clock)) -> StatisticsAggregator:
    return StatisticsAggregator(store, clock)
