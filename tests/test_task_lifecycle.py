from datetime import timedelta

import pytest

from task_manager.errors import NotFoundError, ValidationError
from task_manager.models import Priority, Status, is_overdue
from task_manager.schemas import TaskCreate, TaskUpdate


@pytest.fixture()
def alice(make_user):
    return make_user("alice", email="a@x.com", password="secret")


class TestCreate:
    def test_defaults(self, lifecycle, alice, clock):
        task = lifecycle.create(TaskCreate(title="Write report"), alice["id"])
        assert task["status"] is Status.PENDING
        assert task["priority"] is Priority.MEDIUM
        assert task["owner_id"] == alice["id"]
        assert task["completed_at"] is None
        assert task["created_at"] == clock.now == task["updated_at"]

    def test_title_is_trimmed(self, make_task, alice):
        assert make_task(alice["id"], title="  Buy milk ")["title"] == "Buy milk"

    def test_created_completed_gets_completed_at(self, make_task, alice, clock):
        task = make_task(alice["id"], status=Status.COMPLETED)
        assert task["completed_at"] == clock.now

    def test_unknown_owner(self, lifecycle, queries):
        with pytest.raises(NotFoundError) as exc:
            lifecycle.create(TaskCreate(title="Orphan"), 999)
        assert exc.value.entity == "User"
        assert queries.all_tasks() == []

    @pytest.mark.parametrize("title", ["", "   ", "x" * 201])
    def test_invalid_title(self, lifecycle, alice, title):
        with pytest.raises(ValidationError) as exc:
            lifecycle.create(TaskCreate(title=title), alice["id"])
        assert exc.value.field == "title"

    def test_oversized_description(self, lifecycle, alice):
        with pytest.raises(ValidationError) as exc:
            lifecycle.create(TaskCreate(title="ok", description="d" * 1001), alice["id"])
        assert exc.value.field == "description"

    def test_ids_are_distinct(self, make_task, alice):
        ids = {make_task(alice["id"], title=f"t{i}")["id"] for i in range(5)}
        assert len(ids) == 5


class TestScenarios:
    def test_scenario_a_task_without_due_date_is_not_overdue(self, lifecycle, alice, clock):
        task = lifecycle.create(TaskCreate(title="Write report"), alice["id"])
        assert task["due_date"] is None
        assert is_overdue(task, clock.now) is False
        assert is_overdue(task, clock.now + timedelta(days=3650)) is False

    def test_scenario_b_completing_clears_overdue(self, lifecycle, make_task, alice, clock):
        task = make_task(alice["id"], due_date=clock.now - timedelta(days=1))
        assert task["status"] is Status.PENDING
        assert is_overdue(task, clock.now) is True

        done = lifecycle.complete(task["id"])
        assert is_overdue(done, clock.now) is False
        assert done["completed_at"] == clock.now

    def test_completed_at_tracks_status_after_every_mutation(self, lifecycle, queries, make_task, alice, clock):
        def consistent(t):
            return (t["status"] is Status.COMPLETED) == (t["completed_at"] is not None)

        task = make_task(alice["id"])
        steps = [
            lambda: lifecycle.change_status(task["id"], Status.IN_PROGRESS),
            lambda: lifecycle.complete(task["id"]),
            lambda: lifecycle.change_priority(task["id"], Priority.LOW),
            lambda: lifecycle.update(task["id"], TaskUpdate(title="t", status=Status.CANCELLED)),
            lambda: lifecycle.update(task["id"], TaskUpdate(title="t", status=Status.COMPLETED)),
            lambda: lifecycle.change_status(task["id"], Status.PENDING),
        ]
        assert consistent(task)
        for step in steps:
            clock.advance(minutes=1)
            assert consistent(step())
            assert all(consistent(t) for t in queries.all_tasks())


class TestStatusTransitions:
    def test_complete_then_reopen(self, lifecycle, alice, clock):
        task = lifecycle.create(TaskCreate(title="Write report", priority=Priority.HIGH), alice["id"])
        assert task["status"] is Status.PENDING
        assert task["priority"] is Priority.HIGH
        assert task["completed_at"] is None

        clock.advance(hours=1)
        t1 = clock.now
        done = lifecycle.change_status(task["id"], Status.COMPLETED)
        assert done["status"] is Status.COMPLETED
        assert done["completed_at"] == t1

        clock.advance(hours=1)
        reopened = lifecycle.change_status(task["id"], Status.IN_PROGRESS)
        assert reopened["status"] is Status.IN_PROGRESS
        assert reopened["completed_at"] is None

    def test_complete_is_idempotent(self, lifecycle, make_task, alice, clock):
        task = make_task(alice["id"])
        first = lifecycle.complete(task["id"])
        clock.advance(days=1)
        second = lifecycle.complete(task["id"])
        assert second["status"] is Status.COMPLETED
        assert second["completed_at"] == first["completed_at"]
        assert second["updated_at"] == clock.now

    def test_any_status_may_follow_cancelled(self, lifecycle, make_task, alice):
        task = make_task(alice["id"], status=Status.CANCELLED)
        assert lifecycle.change_status(task["id"], Status.PENDING)["status"] is Status.PENDING

    def test_scenario_e_change_status_on_missing_task(self, lifecycle):
        with pytest.raises(NotFoundError):
            lifecycle.change_status(404, Status.COMPLETED)

    def test_change_priority(self, lifecycle, make_task, alice, clock):
        task = make_task(alice["id"])
        clock.advance(minutes=1)
        updated = lifecycle.change_priority(task["id"], Priority.URGENT)
        assert updated["priority"] is Priority.URGENT
        assert updated["status"] is Status.PENDING
        assert updated["updated_at"] == clock.now


class TestUpdate:
    def test_full_replace(self, lifecycle, make_task, alice, clock):
        due = clock.now + timedelta(days=2)
        task = make_task(alice["id"], description="old", due_date=due)
        updated = lifecycle.update(task["id"], TaskUpdate(title="New title"))
        assert updated["title"] == "New title"
        assert updated["description"] is None
        assert updated["due_date"] is None
        assert updated["status"] is Status.PENDING
        assert updated["priority"] is Priority.MEDIUM
        assert updated["owner_id"] == alice["id"]
        assert updated["created_at"] == task["created_at"]

    def test_update_to_completed_stamps_completed_at(self, lifecycle, make_task, alice, clock):
        task = make_task(alice["id"])
        clock.advance(hours=2)
        updated = lifecycle.update(task["id"], TaskUpdate(title="Done", status=Status.COMPLETED))
        assert updated["completed_at"] == clock.now

    def test_update_away_from_completed_clears_completed_at(self, lifecycle, make_task, alice):
        task = make_task(alice["id"], status=Status.COMPLETED)
        updated = lifecycle.update(task["id"], TaskUpdate(title="Again", status=Status.PENDING))
        assert updated["completed_at"] is None

    def test_update_missing_task_reports_not_found(self, lifecycle, queries):
        with pytest.raises(NotFoundError):
            lifecycle.update(999, TaskUpdate(title="x"))
        with pytest.raises(NotFoundError):
            lifecycle.update(999, TaskUpdate(title=""))
        assert queries.all_tasks() == []

    def test_invalid_title_leaves_task_untouched(self, lifecycle, queries, make_task, alice):
        task = make_task(alice["id"], title="Keep me")
        with pytest.raises(ValidationError):
            lifecycle.update(task["id"], TaskUpdate(title="  "))
        assert queries.get_task(task["id"])["title"] == "Keep me"


class TestDeleteAndOwnership:
    def test_ownership(self, lifecycle, make_user, make_task, alice):
        bob = make_user("bob")
        task = make_task(alice["id"])
        assert lifecycle.is_owned_by(task["id"], alice["id"]) is True
        assert lifecycle.is_owned_by(task["id"], bob["id"]) is False
        assert lifecycle.is_owned_by(999, alice["id"]) is False

    def test_delete(self, lifecycle, queries, make_task, alice):
        task = make_task(alice["id"])
        lifecycle.delete(task["id"])
        with pytest.raises(NotFoundError):
            queries.get_task(task["id"])
        assert queries.by_owner(alice["id"]) == []

    def test_delete_unknown_task(self, lifecycle):
        with pytest.raises(NotFoundError):
            lifecycle.delete(999)
