from datetime import timedelta

import pytest

from task_manager.errors import NotFoundError, ValidationError
from task_manager.models import Priority, Role, Status


@pytest.fixture()
def alice(make_user):
    return make_user("alice", email="alice@x.com", first_name="Alice", last_name="Smith")


@pytest.fixture()
def bob(make_user):
    return make_user("bob", email="bob@y.org", first_name="Bob", last_name="Jones")


def ids(tasks):
    return [t["id"] for t in tasks]


class TestTaskFilters:
    def test_by_owner_keeps_insertion_order(self, queries, make_task, alice, bob):
        a1 = make_task(alice["id"], title="a1")
        make_task(bob["id"], title="b1")
        a2 = make_task(alice["id"], title="a2")
        assert ids(queries.by_owner(alice["id"])) == [a1["id"], a2["id"]]
        assert queries.by_owner(999) == []

    def test_by_status_and_priority(self, queries, make_task, alice):
        low = make_task(alice["id"], priority=Priority.LOW)
        done = make_task(alice["id"], status=Status.COMPLETED)
        assert ids(queries.by_status(Status.COMPLETED)) == [done["id"]]
        assert ids(queries.by_priority(Priority.LOW)) == [low["id"]]
        assert queries.by_priority(Priority.URGENT) == []

    def test_status_shortcuts(self, queries, make_task, alice, bob):
        p = make_task(alice["id"])
        w = make_task(alice["id"], status=Status.IN_PROGRESS)
        c = make_task(alice["id"], status=Status.COMPLETED)
        make_task(bob["id"], status=Status.COMPLETED)
        assert ids(queries.pending_by_owner(alice["id"])) == [p["id"]]
        assert ids(queries.in_progress_by_owner(alice["id"])) == [w["id"]]
        assert ids(queries.completed_by_owner(alice["id"])) == [c["id"]]

    def test_status_index_follows_transitions(self, queries, lifecycle, make_task, alice):
        task = make_task(alice["id"])
        lifecycle.complete(task["id"])
        assert queries.pending_by_owner(alice["id"]) == []
        assert ids(queries.completed_by_owner(alice["id"])) == [task["id"]]

    def test_get_task_not_found(self, queries):
        with pytest.raises(NotFoundError):
            queries.get_task(1)


class TestOverdueAndDueSoon:
    def test_overdue_excludes_completed(self, queries, make_task, alice, bob, clock):
        past = clock.now - timedelta(days=1)
        late = make_task(alice["id"], due_date=past)
        make_task(alice["id"], due_date=past, status=Status.COMPLETED)
        make_task(alice["id"], due_date=clock.now + timedelta(days=1))
        other = make_task(bob["id"], due_date=past)
        assert ids(queries.overdue()) == [late["id"], other["id"]]
        assert ids(queries.overdue_by_owner(alice["id"])) == [late["id"]]

    def test_overdue_is_evaluated_against_now(self, queries, make_task, alice, clock):
        make_task(alice["id"], due_date=clock.now + timedelta(hours=1))
        assert queries.overdue() == []
        assert len(queries.overdue(now=clock.now + timedelta(hours=2))) == 1
        clock.advance(hours=2)
        assert len(queries.overdue()) == 1

    def test_due_soon_window_bounds(self, queries, make_task, alice, clock):
        now = clock.now
        make_task(alice["id"], title="due now", due_date=now)
        inside = make_task(alice["id"], title="tomorrow", due_date=now + timedelta(days=1))
        edge = make_task(alice["id"], title="edge", due_date=now + timedelta(days=7))
        make_task(alice["id"], title="beyond", due_date=now + timedelta(days=7, seconds=1))
        make_task(alice["id"], title="done", due_date=now + timedelta(days=1), status=Status.COMPLETED)
        make_task(alice["id"], title="undated")
        assert ids(queries.due_soon(alice["id"], 7)) == [inside["id"], edge["id"]]

    def test_due_soon_default_window(self, queries, make_task, alice, clock):
        task = make_task(alice["id"], due_date=clock.now + timedelta(days=6))
        assert ids(queries.due_soon(alice["id"])) == [task["id"]]

    def test_due_soon_zero_and_negative_days(self, queries, make_task, alice, clock):
        make_task(alice["id"], due_date=clock.now + timedelta(hours=1))
        make_task(alice["id"], due_date=clock.now - timedelta(hours=1))
        assert queries.due_soon(alice["id"], 0) == []
        assert queries.due_soon(alice["id"], -3) == []

    def test_due_soon_extreme_windows(self, queries, make_task, alice, clock):
        far = make_task(alice["id"], due_date=clock.now + timedelta(days=3650))
        assert queries.due_soon(alice["id"], -1000000) == []
        assert ids(queries.due_soon(alice["id"], 5000000)) == [far["id"]]


class TestSearchAndRanges:
    def test_title_and_description_contains(self, queries, make_task, alice):
        a = make_task(alice["id"], title="Write REPORT", description="numbers")
        b = make_task(alice["id"], title="Groceries", description="milk and Report binder")
        make_task(alice["id"], title="Gym")
        assert ids(queries.title_contains("report")) == [a["id"]]
        assert ids(queries.description_contains("REPORT")) == [b["id"]]

    def test_search_by_owner(self, queries, make_task, alice, bob):
        a = make_task(alice["id"], title="Report", description=None)
        b = make_task(alice["id"], title="Other", description="needs report")
        make_task(bob["id"], title="Report")
        assert ids(queries.search_by_owner("rep", alice["id"])) == [a["id"], b["id"]]

    def test_empty_search_matches_everything_with_text(self, queries, make_task, alice):
        make_task(alice["id"], title="one")
        make_task(alice["id"], title="two")
        assert len(queries.title_contains("")) == 2

    def test_created_between_is_inclusive(self, queries, make_task, alice, clock):
        start = clock.now
        first = make_task(alice["id"], title="first")
        clock.advance(days=1)
        second = make_task(alice["id"], title="second")
        clock.advance(days=1)
        make_task(alice["id"], title="third")
        assert ids(queries.created_between(start, start + timedelta(days=1))) == [first["id"], second["id"]]

    def test_inverted_range_is_empty(self, queries, make_task, alice, clock):
        make_task(alice["id"], due_date=clock.now)
        assert queries.created_between(clock.now + timedelta(days=1), clock.now - timedelta(days=1)) == []
        assert queries.due_between(clock.now + timedelta(days=1), clock.now - timedelta(days=1)) == []

    def test_due_between_skips_undated(self, queries, make_task, alice, clock):
        dated = make_task(alice["id"], due_date=clock.now + timedelta(days=2))
        make_task(alice["id"])
        result = queries.due_between(clock.now, clock.now + timedelta(days=3))
        assert ids(result) == [dated["id"]]


class TestSorting:
    def test_sort_by_priority_rank(self, queries, make_task, alice):
        low = make_task(alice["id"], priority=Priority.LOW)
        urgent = make_task(alice["id"], priority=Priority.URGENT)
        medium = make_task(alice["id"], priority=Priority.MEDIUM)
        high = make_task(alice["id"], priority=Priority.HIGH)
        assert ids(queries.by_owner(alice["id"], "-priority")) == [urgent["id"], high["id"], medium["id"], low["id"]]
        assert ids(queries.by_owner(alice["id"], "priority")) == [low["id"], medium["id"], high["id"], urgent["id"]]

    def test_sort_by_due_date_puts_undated_last(self, queries, make_task, alice, clock):
        undated = make_task(alice["id"])
        later = make_task(alice["id"], due_date=clock.now + timedelta(days=3))
        sooner = make_task(alice["id"], due_date=clock.now + timedelta(days=1))
        assert ids(queries.by_owner(alice["id"], "due_date")) == [sooner["id"], later["id"], undated["id"]]
        assert ids(queries.by_owner(alice["id"], "-due_date")) == [later["id"], sooner["id"], undated["id"]]

    def test_unknown_sort_field(self, queries, alice):
        with pytest.raises(ValidationError) as exc:
            queries.by_owner(alice["id"], "title")
        assert exc.value.field == "sort"


class TestUserQueries:
    def test_lookup_by_username_and_email(self, queries, alice):
        assert queries.get_user_by_username("alice")["id"] == alice["id"]
        assert queries.get_user_by_email("alice@x.com")["id"] == alice["id"]
        assert queries.get_user_by_username_or_email("alice@x.com")["id"] == alice["id"]
        with pytest.raises(NotFoundError):
            queries.get_user_by_username("nobody")

    def test_exists_checks(self, queries, alice):
        assert queries.username_exists("alice") is True
        assert queries.email_exists("alice@x.com") is True
        assert queries.username_exists("carol") is False

    def test_search_users_matches_full_name(self, queries, alice, bob):
        assert ids(queries.search_users("alice smith")) == [alice["id"]]
        assert ids(queries.search_users("Y.ORG")) == [bob["id"]]
        assert queries.search_users("zzz") == []

    def test_roles_and_enabled(self, queries, registry, make_user, alice):
        admin = make_user("root", role=Role.ADMIN)
        registry.set_enabled(alice["id"], False)
        assert ids(queries.users_by_role(Role.ADMIN)) == [admin["id"]]
        assert ids(queries.active_users()) == [admin["id"]]
        assert ids(queries.users_by_enabled(False)) == [alice["id"]]

    def test_users_with_and_without_tasks(self, queries, make_task, alice, bob):
        make_task(alice["id"])
        assert ids(queries.users_with_tasks()) == [alice["id"]]
        assert ids(queries.users_without_tasks()) == [bob["id"]]
