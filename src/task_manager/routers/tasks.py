from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..deps import Clock, get_clock, get_query_engine, get_statistics, get_task_lifecycle
from ..errors import ValidationError
from ..models import Priority, Status, TaskEntity
from ..query_engine import QueryEngine
from ..schemas import (
    TaskCreate,
    TaskOut,
    TaskPriorityRequest,
    TaskStatusRequest,
    TaskSummaryOut,
    TaskUpdate,
    parse_datetime,
)
from ..settings import get_settings
from ..statistics import StatisticsAggregator
from ..task_lifecycle import TaskLifecycle

router = APIRouter(
    prefix="/api/tasks",
    tags=["tasks"],
)


def _out(tasks: List[TaskEntity], clock: Clock) -> List[TaskOut]:
    now = clock()
    return [TaskOut.from_entity(t, now) for t in tasks]


def _bound(value: str, field: str) -> datetime:
    try:
        parsed = parse_datetime(value, field)
    except ValueError as e:
        raise ValidationError(field, str(e)) from e
    assert parsed is not None
    return parsed


# PUBLIC_INTERFACE
@router.get("/", response_model=List[TaskOut], summary="List Tasks")
def list_tasks(queries: QueryEngine = Depends(get_query_engine), clock: Clock = Depends(get_clock)):
    """Return every task in creation order."""
    return _out(queries.all_tasks(), clock)


# PUBLIC_INTERFACE
@router.get("/status/{task_status}", response_model=List[TaskOut], summary="Tasks by status")
def tasks_by_status(
    task_status: Status,
    queries: QueryEngine = Depends(get_query_engine),
    clock: Clock = Depends(get_clock),
):
    return _out(queries.by_status(task_status), clock)


# PUBLIC_INTERFACE
@router.get("/priority/{priority}", response_model=List[TaskOut], summary="Tasks by priority")
def tasks_by_priority(
    priority: Priority,
    queries: QueryEngine = Depends(get_query_engine),
    clock: Clock = Depends(get_clock),
):
    return _out(queries.by_priority(priority), clock)


# PUBLIC_INTERFACE
@router.get("/overdue", response_model=List[TaskOut], summary="Overdue tasks")
def overdue_tasks(queries: QueryEngine = Depends(get_query_engine), clock: Clock = Depends(get_clock)):
    """Tasks whose due date has passed and that are not completed."""
    return _out(queries.overdue(clock()), clock)


# PUBLIC_INTERFACE
@router.get("/search/title", response_model=List[TaskOut], summary="Search by title")
def search_title(
    q: str = Query(..., description="Case-insensitive substring of the title"),
    queries: QueryEngine = Depends(get_query_engine),
    clock: Clock = Depends(get_clock),
):
    return _out(queries.title_contains(q), clock)


# PUBLIC_INTERFACE
@router.get("/search/description", response_model=List[TaskOut], summary="Search by description")
def search_description(
    q: str = Query(..., description="Case-insensitive substring of the description"),
    queries: QueryEngine = Depends(get_query_engine),
    clock: Clock = Depends(get_clock),
):
    return _out(queries.description_contains(q), clock)


# PUBLIC_INTERFACE
@router.get("/created-between", response_model=List[TaskOut], summary="Tasks created in a range")
def created_between(
    start: str = Query(..., description="Inclusive ISO8601 start"),
    end: str = Query(..., description="Inclusive ISO8601 end"),
    queries: QueryEngine = Depends(get_query_engine),
    clock: Clock = Depends(get_clock),
):
    return _out(queries.created_between(_bound(start, "start"), _bound(end, "end")), clock)


# PUBLIC_INTERFACE
@router.get("/due-between", response_model=List[TaskOut], summary="Tasks due in a range")
def due_between(
    start: str = Query(..., description="Inclusive ISO8601 start"),
    end: str = Query(..., description="Inclusive ISO8601 end"),
    queries: QueryEngine = Depends(get_query_engine),
    clock: Clock = Depends(get_clock),
):
    return _out(queries.due_between(_bound(start, "start"), _bound(end, "end")), clock)


# PUBLIC_INTERFACE
@router.get("/statistics/status", response_model=Dict[Status, int], summary="Task counts per status")
def statistics_by_status(stats: StatisticsAggregator = Depends(get_statistics)):
    return stats.count_by_status()


# PUBLIC_INTERFACE
@router.get("/statistics/priority", response_model=Dict[Priority, int], summary="Task counts per priority")
def statistics_by_priority(stats: StatisticsAggregator = Depends(get_statistics)):
    return stats.count_by_priority()


# PUBLIC_INTERFACE
@router.get("/count/status/{task_status}", response_model=int, summary="Count tasks in a status")
def count_by_status(task_status: Status, stats: StatisticsAggregator = Depends(get_statistics)):
    return stats.count_with_status(task_status)


# PUBLIC_INTERFACE
@router.get("/count/user/{user_id}", response_model=int, summary="Count a user's tasks")
def count_by_user(user_id: int, stats: StatisticsAggregator = Depends(get_statistics)):
    return stats.count_by_owner(user_id)


# PUBLIC_INTERFACE
@router.get("/user/{user_id}", response_model=List[TaskOut], summary="Tasks of a user")
def tasks_by_user(
    user_id: int,
    sort: Optional[str] = Query(
        None,
        description="created_at, updated_at, due_date or priority; prefix '-' for descending",
    ),
    queries: QueryEngine = Depends(get_query_engine),
    clock: Clock = Depends(get_clock),
):
    return _out(queries.by_owner(user_id, sort), clock)


# PUBLIC_INTERFACE
@router.get("/user/{user_id}/status/{task_status}", response_model=List[TaskOut], summary="User tasks by status")
def tasks_by_user_and_status(
    user_id: int,
    task_status: Status,
    queries: QueryEngine = Depends(get_query_engine),
    clock: Clock = Depends(get_clock),
):
    return _out(queries.by_owner_and_status(user_id, task_status), clock)


# PUBLIC_INTERFACE
@router.get("/user/{user_id}/completed", response_model=List[TaskOut], summary="Completed tasks of a user")
def completed_by_user(
    user_id: int, queries: QueryEngine = Depends(get_query_engine), clock: Clock = Depends(get_clock)
):
    return _out(queries.completed_by_owner(user_id), clock)


# PUBLIC_INTERFACE
@router.get("/user/{user_id}/pending", response_model=List[TaskOut], summary="Pending tasks of a user")
def pending_by_user(
    user_id: int, queries: QueryEngine = Depends(get_query_engine), clock: Clock = Depends(get_clock)
):
    return _out(queries.pending_by_owner(user_id), clock)


# PUBLIC_INTERFACE
@router.get("/user/{user_id}/in-progress", response_model=List[TaskOut], summary="In-progress tasks of a user")
def in_progress_by_user(
    user_id: int, queries: QueryEngine = Depends(get_query_engine), clock: Clock = Depends(get_clock)
):
    return _out(queries.in_progress_by_owner(user_id), clock)


# PUBLIC_INTERFACE
@router.get("/user/{user_id}/overdue", response_model=List[TaskOut], summary="Overdue tasks of a user")
def overdue_by_user(
    user_id: int, queries: QueryEngine = Depends(get_query_engine), clock: Clock = Depends(get_clock)
):
    return _out(queries.overdue_by_owner(user_id, clock()), clock)


# PUBLIC_INTERFACE
@router.get("/user/{user_id}/due-soon", response_model=List[TaskOut], summary="Tasks due soon")
def due_soon(
    user_id: int,
    days: Optional[int] = Query(None, description="Window size in days (default from DUE_SOON_DAYS)"),
    queries: QueryEngine = Depends(get_query_engine),
    clock: Clock = Depends(get_clock),
):
    """Non-completed tasks due within the next `days` days."""
    window = get_settings().due_soon_days if days is None else days
    return _out(queries.due_soon(user_id, window, clock()), clock)


# PUBLIC_INTERFACE
@router.get("/user/{user_id}/search", response_model=List[TaskOut], summary="Search a user's tasks")
def search_user_tasks(
    user_id: int,
    q: str = Query(..., description="Case-insensitive substring of title or description"),
    queries: QueryEngine = Depends(get_query_engine),
    clock: Clock = Depends(get_clock),
):
    return _out(queries.search_by_owner(q, user_id), clock)


# PUBLIC_INTERFACE
@router.get("/user/{user_id}/summary", response_model=TaskSummaryOut, summary="Task summary of a user")
def user_summary(
    user_id: int, stats: StatisticsAggregator = Depends(get_statistics), clock: Clock = Depends(get_clock)
):
    summary = stats.user_summary(user_id, clock())
    return TaskSummaryOut(
        total_tasks=summary.total,
        completed_tasks=summary.completed,
        pending_tasks=summary.pending,
        in_progress_tasks=summary.in_progress,
        overdue_tasks=summary.overdue,
    )


# PUBLIC_INTERFACE
@router.get("/{task_id}/belongs-to/{user_id}", response_model=bool, summary="Check task ownership")
def belongs_to(task_id: int, user_id: int, lifecycle: TaskLifecycle = Depends(get_task_lifecycle)):
    return lifecycle.is_owned_by(task_id, user_id)


# PUBLIC_INTERFACE
@router.get(
    "/{task_id}",
    response_model=TaskOut,
    summary="Get Task",
    responses={404: {"description": "Task not found"}},
)
def get_task(task_id: int, queries: QueryEngine = Depends(get_query_engine), clock: Clock = Depends(get_clock)):
    return TaskOut.from_entity(queries.get_task(task_id), clock())


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TaskOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Task",
    responses={
        201: {"description": "Task created successfully"},
        400: {"description": "Validation error"},
        404: {"description": "Owner not found"},
    },
)
def create_task(
    payload: TaskCreate,
    lifecycle: TaskLifecycle = Depends(get_task_lifecycle),
    clock: Clock = Depends(get_clock),
):
    """Create a task for the user named by `user_id`."""
    if payload.user_id is None:
        raise ValidationError("user_id", "user_id is required")
    return TaskOut.from_entity(lifecycle.create(payload, payload.user_id), clock())


# PUBLIC_INTERFACE
@router.put(
    "/{task_id}",
    response_model=TaskOut,
    summary="Replace Task",
    description="Replace title, description, status, priority and due date of a task.",
    responses={404: {"description": "Task not found"}},
)
def update_task(
    task_id: int,
    payload: TaskUpdate,
    lifecycle: TaskLifecycle = Depends(get_task_lifecycle),
    clock: Clock = Depends(get_clock),
):
    return TaskOut.from_entity(lifecycle.update(task_id, payload), clock())


# PUBLIC_INTERFACE
@router.put("/{task_id}/status", response_model=TaskOut, summary="Change Task status")
def change_status(
    task_id: int,
    payload: TaskStatusRequest,
    lifecycle: TaskLifecycle = Depends(get_task_lifecycle),
    clock: Clock = Depends(get_clock),
):
    return TaskOut.from_entity(lifecycle.change_status(task_id, payload.status), clock())


# PUBLIC_INTERFACE
@router.put("/{task_id}/complete", response_model=TaskOut, summary="Complete Task")
def complete_task(
    task_id: int, lifecycle: TaskLifecycle = Depends(get_task_lifecycle), clock: Clock = Depends(get_clock)
):
    return TaskOut.from_entity(lifecycle.complete(task_id), clock())


# PUBLIC_INTERFACE
@router.put("/{task_id}/priority", response_model=TaskOut, summary="Change Task priority")
def change_priority(
    task_id: int,
    payload: TaskPriorityRequest,
    lifecycle: TaskLifecycle = Depends(get_task_lifecycle),
    clock: Clock = Depends(get_clock),
):
    return TaskOut.from_entity(lifecycle.change_priority(task_id, payload.priority), clock())


# PUBLIC_INTERFACE
@router.delete(
    "/{task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Task",
    responses={204: {"description": "Task deleted"}, 404: {"description": "Task not found"}},
)
def delete_task(task_id: int, lifecycle: TaskLifecycle = Depends(get_task_lifecycle)) -> None:
    lifecycle.delete(task_id)
    return None
