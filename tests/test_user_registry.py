import pytest

from task_manager.errors import ConflictError, NotFoundError, ValidationError
from task_manager.models import Role
from task_manager.schemas import UserCreate, UserUpdate


def _update(user, **overrides):
    data = {
        "username": user["username"],
        "email": user["email"],
        "first_name": user["first_name"],
        "last_name": user["last_name"],
        "role": user["role"],
        "enabled": user["enabled"],
    }
    data.update(overrides)
    return UserUpdate(**data)


class TestCreate:
    def test_create_defaults(self, make_user, clock):
        user = make_user("alice", first_name="Alice", last_name="Smith")
        assert isinstance(user["id"], int)
        assert user["role"] is Role.USER
        assert user["enabled"] is True
        assert user["created_at"] == clock.now
        assert user["updated_at"] == clock.now

    def test_password_is_hashed(self, make_user):
        user = make_user("alice", password="plain-text")
        assert user["password_hash"] != "plain-text"
        assert user["password_hash"].startswith("$2")

    def test_scenario_c_second_bob_conflicts(self, make_user, queries):
        bob = make_user("bob", email="bob@x.com")
        with pytest.raises(ConflictError) as exc:
            make_user("bob", email="bob2@x.com")
        assert exc.value.field == "username"
        assert [u["id"] for u in queries.all_users()] == [bob["id"]]

    def test_duplicate_username_is_rejected(self, make_user, queries):
        make_user("alice", email="alice@x.com")
        with pytest.raises(ConflictError) as exc:
            make_user("alice", email="other@x.com")
        assert exc.value.field == "username"
        assert exc.value.value == "alice"
        assert len(queries.all_users()) == 1

    def test_duplicate_email_is_rejected(self, make_user):
        make_user("alice", email="shared@x.com")
        with pytest.raises(ConflictError) as exc:
            make_user("bob", email="shared@x.com")
        assert exc.value.field == "email"
        assert exc.value.value == "shared@x.com"

    @pytest.mark.parametrize("field", ["username", "email", "password"])
    def test_blank_required_fields(self, registry, field):
        data = {"username": "alice", "email": "alice@x.com", "password": "secret"}
        data[field] = "   " if field != "password" else ""
        with pytest.raises(ValidationError) as exc:
            registry.create(UserCreate(**data))
        assert exc.value.field == field

    def test_explicit_role(self, make_user):
        assert make_user("root", role=Role.ADMIN)["role"] is Role.ADMIN


class TestUpdate:
    def test_update_profile(self, registry, make_user, clock):
        user = make_user("alice")
        clock.advance(minutes=10)
        updated = registry.update(user["id"], _update(user, first_name="Alicia", role=Role.ADMIN))
        assert updated["first_name"] == "Alicia"
        assert updated["role"] is Role.ADMIN
        assert updated["created_at"] == user["created_at"]
        assert updated["updated_at"] == clock.now
        assert updated["password_hash"] == user["password_hash"]

    def test_keeping_own_username_is_not_a_conflict(self, registry, make_user):
        user = make_user("alice")
        updated = registry.update(user["id"], _update(user, last_name="Smith"))
        assert updated["username"] == "alice"

    def test_taking_another_users_username(self, registry, make_user):
        make_user("alice")
        bob = make_user("bob")
        with pytest.raises(ConflictError) as exc:
            registry.update(bob["id"], _update(bob, username="alice"))
        assert exc.value.field == "username"

    def test_taking_another_users_email(self, registry, make_user):
        make_user("alice", email="a@x.com")
        bob = make_user("bob")
        with pytest.raises(ConflictError):
            registry.update(bob["id"], _update(bob, email="a@x.com"))

    def test_unknown_user(self, registry):
        with pytest.raises(NotFoundError):
            registry.update(999, UserUpdate(username="ghost", email="ghost@x.com"))


class TestPasswordAndStatus:
    def test_change_password(self, registry, make_user):
        user = make_user("alice", password="old-pass")
        updated = registry.change_password(user["id"], "new-pass")
        assert updated["password_hash"] != user["password_hash"]
        assert registry.validate_credentials("alice", "new-pass") is True
        assert registry.validate_credentials("alice", "old-pass") is False

    def test_empty_new_password(self, registry, make_user):
        user = make_user("alice")
        with pytest.raises(ValidationError):
            registry.change_password(user["id"], "")

    def test_change_password_unknown_user(self, registry):
        with pytest.raises(NotFoundError):
            registry.change_password(42, "whatever")

    def test_set_enabled(self, registry, make_user):
        user = make_user("alice")
        assert registry.set_enabled(user["id"], False)["enabled"] is False
        assert registry.set_enabled(user["id"], True)["enabled"] is True

    def test_set_enabled_unknown_user(self, registry):
        with pytest.raises(NotFoundError):
            registry.set_enabled(42, False)


class TestDelete:
    def test_delete_user_without_tasks(self, registry, make_user, queries):
        user = make_user("alice")
        registry.delete(user["id"])
        with pytest.raises(NotFoundError):
            queries.get_user(user["id"])

    def test_delete_unknown_user(self, registry):
        with pytest.raises(NotFoundError):
            registry.delete(123)

    def test_delete_is_blocked_while_user_owns_tasks(self, registry, make_user, make_task, lifecycle, queries):
        user = make_user("alice")
        task = make_task(user["id"])
        with pytest.raises(ConflictError) as exc:
            registry.delete(user["id"])
        assert exc.value.field == "tasks"
        assert queries.get_user(user["id"])["username"] == "alice"

        lifecycle.delete(task["id"])
        registry.delete(user["id"])
        assert queries.all_users() == []


class TestValidateCredentials:
    def test_credentials_by_username_or_email(self, registry, make_user):
        make_user("alice", email="a@x.com", password="secret")
        assert registry.validate_credentials("alice", "secret") is True
        assert registry.validate_credentials("a@x.com", "secret") is True
        assert registry.validate_credentials("alice", "wrong") is False

    def test_disabled_user_cannot_log_in(self, registry, make_user):
        user = make_user("alice", password="secret")
        registry.set_enabled(user["id"], False)
        assert registry.validate_credentials("alice", "secret") is False

    def test_unknown_user_is_false(self, registry):
        assert registry.validate_credentials("nobody", "secret") is False

    def test_corrupt_hash_is_false(self, store, registry, make_user):
        user = make_user("alice", password="secret")

        def corrupt(u):
            u["password_hash"] = "not-a-bcrypt-hash"

        store.users.update(user["id"], corrupt)
        assert registry.validate_credentials("alice", "secret") is False
