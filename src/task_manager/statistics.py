from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from .errors import NotFoundError
from .models import Priority, Role, Status
from .query_engine import QueryEngine
from .repositories import Store

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class TaskSummary:
    """
    Per-owner task counts.

    CANCELLED tasks count towards `total` but have no bucket of their own, so
    completed + pending + in_progress may be less than total.
    """

    total: int
    completed: int
    pending: int
    in_progress: int
    overdue: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


# PUBLIC_INTERFACE
class StatisticsAggregator:
    """Grouped counts and per-user summaries built from Store and QueryEngine primitives."""

    def __init__(self, store: Store, clock: Callable[[], datetime] = datetime.now) -> None:
        self._store = store
        self._queries = QueryEngine(store, clock)
        self._clock = clock

    def count_by_status(self) -> Dict[Status, int]:
        return self._store.tasks.count_by_status()

    def count_by_priority(self) -> Dict[Priority, int]:
        return self._store.tasks.count_by_priority()

    def count_by_role(self) -> Dict[Role, int]:
        return self._store.users.count_by_role()

    def count_with_status(self, status: Status) -> int:
        return self.count_by_status().get(status, 0)

    def count_with_role(self, role: Role) -> int:
        return self.count_by_role().get(role, 0)

    def count_by_owner(self, owner_id: int) -> int:
        if not self._store.users.exists(owner_id):
            raise NotFoundError("User", owner_id)
        return self._store.tasks.count_by_owner(owner_id)

    def user_summary(self, owner_id: int, now: Optional[datetime] = None) -> TaskSummary:
        """Return total / per-status / overdue counts for one user."""
        total = self.count_by_owner(owner_id)
        tasks = self._store.tasks
        summary = TaskSummary(
            total=total,
            completed=tasks.count_by_owner_and_status(owner_id, Status.COMPLETED),
            pending=tasks.count_by_owner_and_status(owner_id, Status.PENDING),
            in_progress=tasks.count_by_owner_and_status(owner_id, Status.IN_PROGRESS),
            overdue=len(self._queries.overdue_by_owner(owner_id, now or self._clock())),
        )
        logger.debug("Summary for user id=%s: %s", owner_id, summary)
        return summary
