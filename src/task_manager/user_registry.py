from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from .errors import ConflictError, InternalError, NotFoundError, TaskManagerError, ValidationError
from .models import Role, UserEntity, UserFields, require_text
from .repositories import Store
from .schemas import UserCreate, UserUpdate
from .security import PasswordHasher

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class UserRegistry:
    """
    Creates and mutates users while keeping usernames and emails unique.

    The registry holds no state of its own; everything lives in the Store.
    Uniqueness is checked here for a clear error and enforced again by the
    Store, which is the only place it can be made atomic.
    """

    def __init__(
        self,
        store: Store,
        hasher: PasswordHasher,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._clock = clock

    def _hash(self, plaintext: Optional[str]) -> str:
        if not plaintext:
            raise ValidationError("password", "password is required")
        try:
            return self._hasher.hash(plaintext)
        except Exception as e:
            raise InternalError("Password hashing failed") from e

    def _require(self, user_id: int) -> UserEntity:
        user = self._store.users.get(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def _mutate(self, user_id: int, mutate: Callable[[UserEntity], None]) -> UserEntity:
        updated = self._store.users.update(user_id, mutate)
        if updated is None:
            raise NotFoundError("User", user_id)
        return updated

    def create(self, data: UserCreate) -> UserEntity:
        """
        Register a user.

        Raises:
            ValidationError: blank username, email or password.
            ConflictError: username or email already taken.
        """
        username = require_text("username", data.username)
        email = require_text("email", data.email)

        if self._store.users.exists_by_username(username):
            logger.info("Rejected user creation: username %r already exists", username)
            raise ConflictError("username", username)
        if self._store.users.exists_by_email(email):
            logger.info("Rejected user creation: email %r already registered", email)
            raise ConflictError("email", email)

        now = self._clock()
        fields: UserFields = {
            "username": username,
            "email": email,
            "password_hash": self._hash(data.password),
            "first_name": data.first_name,
            "last_name": data.last_name,
            "role": data.role or Role.USER,
            "enabled": True,
            "created_at": now,
            "updated_at": now,
        }
        user = self._store.users.create(fields)
        logger.info("Created user id=%s username=%r", user["id"], user["username"])
        return user

    def update(self, user_id: int, data: UserUpdate) -> UserEntity:
        """
        Overwrite username, email, display names, role and enabled flag.

        Uniqueness is re-checked only for fields that actually change.
        """
        existing = self._require(user_id)
        username = require_text("username", data.username)
        email = require_text("email", data.email)

        if username != existing["username"] and self._store.users.exists_by_username(username):
            raise ConflictError("username", username)
        if email != existing["email"] and self._store.users.exists_by_email(email):
            raise ConflictError("email", email)

        now = self._clock()

        def apply(user: UserEntity) -> None:
            user["username"] = username
            user["email"] = email
            user["first_name"] = data.first_name
            user["last_name"] = data.last_name
            user["role"] = data.role
            user["enabled"] = data.enabled
            user["updated_at"] = now

        user = self._mutate(user_id, apply)
        logger.info("Updated user id=%s", user_id)
        return user

    def change_password(self, user_id: int, new_password: str) -> UserEntity:
        self._require(user_id)
        hashed = self._hash(new_password)
        now = self._clock()

        def apply(user: UserEntity) -> None:
            user["password_hash"] = hashed
            user["updated_at"] = now

        user = self._mutate(user_id, apply)
        logger.info("Changed password for user id=%s", user_id)
        return user

    def set_enabled(self, user_id: int, enabled: bool) -> UserEntity:
        now = self._clock()

        def apply(user: UserEntity) -> None:
            user["enabled"] = enabled
            user["updated_at"] = now

        user = self._mutate(user_id, apply)
        logger.info("User id=%s %s", user_id, "enabled" if enabled else "disabled")
        return user

    def delete(self, user_id: int) -> None:
        """
        Delete a user.

        Deletion is refused while the user still owns tasks; tasks are never
        cascaded or orphaned.

        Raises:
            NotFoundError: unknown user id.
            ConflictError: the user still owns tasks (field "tasks").
        """
        if not self._store.users.exists(user_id):
            raise NotFoundError("User", user_id)
        owned = self._store.tasks.count_by_owner(user_id)
        if owned:
            logger.info("Refused to delete user id=%s owning %d task(s)", user_id, owned)
            raise ConflictError(
                "tasks", user_id, f"User {user_id} still owns {owned} task(s); delete them first"
            )
        if not self._store.users.delete(user_id):
            raise NotFoundError("User", user_id)
        logger.info("Deleted user id=%s", user_id)

    def validate_credentials(self, username_or_email: str, password: str) -> bool:
        """
        Check a login attempt. Returns False for an unknown user, a disabled
        user or a wrong password alike, and never raises.
        """
        try:
            user = self._store.users.get_by_username_or_email(username_or_email)
            if user is None or not user["enabled"]:
                return False
            return self._hasher.verify(password, user["password_hash"])
        except (TaskManagerError, ValueError) as e:
            logger.warning("Credential check failed with %s", type(e).__name__)
            return False
