from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Generator, List, Optional, Sequence, Set

from .errors import ConflictError, InternalError
from .models import Priority, Role, Status, TaskEntity, TaskFields, UserEntity, UserFields
from .repositories import TaskMutation, TaskRepository, UserMutation, UserRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _TaskCols:
    table: str = "tasks"
    id: str = "id"
    title: str = "title"
    description: str = "description"
    status: str = "status"
    priority: str = "priority"
    due_date: str = "due_date"
    completed_at: str = "completed_at"
    created_at: str = "created_at"
    updated_at: str = "updated_at"
    owner_id: str = "owner_id"


@dataclass(frozen=True)
class _UserCols:
    table: str = "users"
    id: str = "id"
    username: str = "username"
    email: str = "email"
    password_hash: str = "password_hash"
    first_name: str = "first_name"
    last_name: str = "last_name"
    role: str = "role"
    enabled: str = "enabled"
    created_at: str = "created_at"
    updated_at: str = "updated_at"


_T = _TaskCols()
_U = _UserCols()


def _dt_out(value: Optional[datetime]) -> Optional[str]:
    # Fixed-width text keeps lexical order equal to chronological order
    return None if value is None else value.isoformat(timespec="microseconds")


def _dt_in(value: Optional[str]) -> Optional[datetime]:
    return None if value is None else datetime.fromisoformat(value)


def _py_lower(value: Optional[str]) -> Optional[str]:
    return None if value is None else value.lower()


class _SQLiteBase:
    """Connection handling shared by the SQLite repositories."""

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._init_db()

    @contextmanager
    def _conn(self, immediate: bool = False) -> Generator[sqlite3.Connection, None, None]:
        """
        Open a connection for one operation. With `immediate`, the write lock
        is taken up front so a read-modify-write cannot interleave with
        another writer.
        """
        try:
            conn = sqlite3.connect(self._db_path, timeout=30)
        except sqlite3.Error as e:
            raise InternalError(f"Could not open database {self._db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.create_function("py_lower", 1, _py_lower, deterministic=True)
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise self._integrity_error(e) from e
        except sqlite3.Error as e:
            logger.error("SQLite failure on %s: %s", self._db_path, e)
            raise InternalError(f"Database error: {e}") from e
        finally:
            conn.close()

    def _integrity_error(self, error: sqlite3.IntegrityError) -> Exception:
        return InternalError(f"Integrity error: {error}")

    def _init_db(self) -> None:
        raise NotImplementedError


class SQLiteTaskRepository(_SQLiteBase, TaskRepository):
    """
    SQLite task store implementing the TaskRepository contract.
    """

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_T.table} (
                    {_T.id} INTEGER PRIMARY KEY AUTOINCREMENT,
                    {_T.title} TEXT NOT NULL,
                    {_T.description} TEXT NULL,
                    {_T.status} TEXT NOT NULL,
                    {_T.priority} TEXT NOT NULL,
                    {_T.due_date} TEXT NULL,
                    {_T.completed_at} TEXT NULL,
                    {_T.created_at} TEXT NOT NULL,
                    {_T.updated_at} TEXT NOT NULL,
                    {_T.owner_id} INTEGER NOT NULL
                )
                """
            )
            for col in (_T.owner_id, _T.status, _T.priority, _T.due_date, _T.created_at):
                conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{_T.table}_{col} ON {_T.table}({col})")

    def _row_to_entity(self, row: sqlite3.Row) -> TaskEntity:
        return {
            "id": int(row[_T.id]),
            "title": str(row[_T.title]),
            "description": row[_T.description],
            "status": Status(row[_T.status]),
            "priority": Priority(row[_T.priority]),
            "due_date": _dt_in(row[_T.due_date]),
            "completed_at": _dt_in(row[_T.completed_at]),
            "created_at": _dt_in(row[_T.created_at]),  # type: ignore[typeddict-item]
            "updated_at": _dt_in(row[_T.updated_at]),  # type: ignore[typeddict-item]
            "owner_id": int(row[_T.owner_id]),
        }

    def _select(self, where_sql: str = "", params: Sequence[Any] = ()) -> List[TaskEntity]:
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM {_T.table} {where_sql} ORDER BY {_T.id} ASC", params
            ).fetchall()
            return [self._row_to_entity(r) for r in rows]

    def _count(self, where_sql: str, params: Sequence[Any]) -> int:
        with self._conn() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS cnt FROM {_T.table} {where_sql}", params).fetchone()
            return int(row["cnt"]) if row else 0

    def _group(self, column: str) -> Dict[str, int]:
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT {column} AS grp, COUNT(*) AS cnt FROM {_T.table} GROUP BY {column}"
            ).fetchall()
            return {r["grp"]: int(r["cnt"]) for r in rows}

    def create(self, fields: TaskFields) -> TaskEntity:
        with self._conn() as conn:
            cur = conn.execute(
                f"""
                INSERT INTO {_T.table} ({_T.title}, {_T.description}, {_T.status}, {_T.priority},
                    {_T.due_date}, {_T.completed_at}, {_T.created_at}, {_T.updated_at}, {_T.owner_id})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    fields["title"],
                    fields["description"],
                    fields["status"].value,
                    fields["priority"].value,
                    _dt_out(fields["due_date"]),
                    _dt_out(fields["completed_at"]),
                    _dt_out(fields["created_at"]),
                    _dt_out(fields["updated_at"]),
                    fields["owner_id"],
                ),
            )
            row = conn.execute(f"SELECT * FROM {_T.table} WHERE {_T.id} = ?", (cur.lastrowid,)).fetchone()
            assert row is not None
            return self._row_to_entity(row)

    def get(self, task_id: int) -> Optional[TaskEntity]:
        with self._conn() as conn:
            row = conn.execute(f"SELECT * FROM {_T.table} WHERE {_T.id} = ?", (task_id,)).fetchone()
            return self._row_to_entity(row) if row else None

    def update(self, task_id: int, mutate: TaskMutation) -> Optional[TaskEntity]:
        with self._conn(immediate=True) as conn:
            row = conn.execute(f"SELECT * FROM {_T.table} WHERE {_T.id} = ?", (task_id,)).fetchone()
            if not row:
                return None
            updated = self._row_to_entity(row)
            mutate(updated)
            # id and owner are immutable, so neither is written back
            conn.execute(
                f"""
                UPDATE {_T.table}
                SET {_T.title} = ?, {_T.description} = ?, {_T.status} = ?, {_T.priority} = ?,
                    {_T.due_date} = ?, {_T.completed_at} = ?, {_T.updated_at} = ?
                WHERE {_T.id} = ?
                """,
                (
                    updated["title"],
                    updated["description"],
                    updated["status"].value,
                    updated["priority"].value,
                    _dt_out(updated["due_date"]),
                    _dt_out(updated["completed_at"]),
                    _dt_out(updated["updated_at"]),
                    task_id,
                ),
            )
            row2 = conn.execute(f"SELECT * FROM {_T.table} WHERE {_T.id} = ?", (task_id,)).fetchone()
            assert row2 is not None
            return self._row_to_entity(row2)

    def delete(self, task_id: int) -> bool:
        with self._conn() as conn:
            cur = conn.execute(f"DELETE FROM {_T.table} WHERE {_T.id} = ?", (task_id,))
            return cur.rowcount > 0

    def list_all(self) -> List[TaskEntity]:
        return self._select()

    def find_by_owner(self, owner_id: int) -> List[TaskEntity]:
        return self._select(f"WHERE {_T.owner_id} = ?", (owner_id,))

    def find_by_status(self, status: Status) -> List[TaskEntity]:
        return self._select(f"WHERE {_T.status} = ?", (status.value,))

    def find_by_priority(self, priority: Priority) -> List[TaskEntity]:
        return self._select(f"WHERE {_T.priority} = ?", (priority.value,))

    def find_by_owner_and_status(self, owner_id: int, status: Status) -> List[TaskEntity]:
        return self._select(f"WHERE {_T.owner_id} = ? AND {_T.status} = ?", (owner_id, status.value))

    def find_title_containing(self, text: str) -> List[TaskEntity]:
        return self._select(f"WHERE instr(py_lower({_T.title}), py_lower(?)) > 0", (text,))

    def find_description_containing(self, text: str) -> List[TaskEntity]:
        return self._select(f"WHERE instr(py_lower({_T.description}), py_lower(?)) > 0", (text,))

    def search_by_owner(self, text: str, owner_id: int) -> List[TaskEntity]:
        return self._select(
            f"""
            WHERE {_T.owner_id} = ? AND (
                instr(py_lower({_T.title}), py_lower(?)) > 0
                OR instr(py_lower({_T.description}), py_lower(?)) > 0
            )
            """,
            (owner_id, text, text),
        )

    def find_created_between(self, start: datetime, end: datetime) -> List[TaskEntity]:
        return self._select(f"WHERE {_T.created_at} BETWEEN ? AND ?", (_dt_out(start), _dt_out(end)))

    def find_due_between(self, start: datetime, end: datetime) -> List[TaskEntity]:
        return self._select(f"WHERE {_T.due_date} BETWEEN ? AND ?", (_dt_out(start), _dt_out(end)))

    def count_by_status(self) -> Dict[Status, int]:
        return {Status(k): v for k, v in self._group(_T.status).items()}

    def count_by_priority(self) -> Dict[Priority, int]:
        return {Priority(k): v for k, v in self._group(_T.priority).items()}

    def count_by_owner(self, owner_id: int) -> int:
        return self._count(f"WHERE {_T.owner_id} = ?", (owner_id,))

    def count_by_owner_and_status(self, owner_id: int, status: Status) -> int:
        return self._count(f"WHERE {_T.owner_id} = ? AND {_T.status} = ?", (owner_id, status.value))

    def owner_ids(self) -> Set[int]:
        with self._conn() as conn:
            rows = conn.execute(f"SELECT DISTINCT {_T.owner_id} AS oid FROM {_T.table}").fetchall()
            return {int(r["oid"]) for r in rows}


class SQLiteUserRepository(_SQLiteBase, UserRepository):
    """
    SQLite user store. Usernames and emails carry UNIQUE constraints, so a
    duplicate insert or update fails atomically with ConflictError.
    """

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_U.table} (
                    {_U.id} INTEGER PRIMARY KEY AUTOINCREMENT,
                    {_U.username} TEXT NOT NULL UNIQUE,
                    {_U.email} TEXT NOT NULL UNIQUE,
                    {_U.password_hash} TEXT NOT NULL,
                    {_U.first_name} TEXT NULL,
                    {_U.last_name} TEXT NULL,
                    {_U.role} TEXT NOT NULL,
                    {_U.enabled} INTEGER NOT NULL DEFAULT 1,
                    {_U.created_at} TEXT NOT NULL,
                    {_U.updated_at} TEXT NOT NULL
                )
                """
            )
            conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{_U.table}_{_U.role} ON {_U.table}({_U.role})")

    def _integrity_error(self, error: sqlite3.IntegrityError) -> Exception:
        message = str(error)
        for column in (_U.username, _U.email):
            if f"{_U.table}.{column}" in message:
                return ConflictError(column, None)
        return super()._integrity_error(error)

    @staticmethod
    def _with_value(error: ConflictError, user: UserFields) -> ConflictError:
        return ConflictError(error.field, user.get(error.field))  # type: ignore[misc]

    def _row_to_entity(self, row: sqlite3.Row) -> UserEntity:
        return {
            "id": int(row[_U.id]),
            "username": str(row[_U.username]),
            "email": str(row[_U.email]),
            "password_hash": str(row[_U.password_hash]),
            "first_name": row[_U.first_name],
            "last_name": row[_U.last_name],
            "role": Role(row[_U.role]),
            "enabled": bool(row[_U.enabled]),
            "created_at": _dt_in(row[_U.created_at]),  # type: ignore[typeddict-item]
            "updated_at": _dt_in(row[_U.updated_at]),  # type: ignore[typeddict-item]
        }

    def _select(self, where_sql: str = "", params: Sequence[Any] = ()) -> List[UserEntity]:
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM {_U.table} {where_sql} ORDER BY {_U.id} ASC", params
            ).fetchall()
            return [self._row_to_entity(r) for r in rows]

    def _select_one(self, where_sql: str, params: Sequence[Any]) -> Optional[UserEntity]:
        found = self._select(where_sql, params)
        return found[0] if found else None

    def _values(self, user: UserFields) -> tuple:
        return (
            user["username"],
            user["email"],
            user["password_hash"],
            user["first_name"],
            user["last_name"],
            user["role"].value,
            1 if user["enabled"] else 0,
            _dt_out(user["created_at"]),
            _dt_out(user["updated_at"]),
        )

    def create(self, fields: UserFields) -> UserEntity:
        try:
            with self._conn() as conn:
                cur = conn.execute(
                    f"""
                    INSERT INTO {_U.table} ({_U.username}, {_U.email}, {_U.password_hash}, {_U.first_name},
                        {_U.last_name}, {_U.role}, {_U.enabled}, {_U.created_at}, {_U.updated_at})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    self._values(fields),
                )
                row = conn.execute(f"SELECT * FROM {_U.table} WHERE {_U.id} = ?", (cur.lastrowid,)).fetchone()
                assert row is not None
                return self._row_to_entity(row)
        except ConflictError as e:
            raise self._with_value(e, fields) from e

    def get(self, user_id: int) -> Optional[UserEntity]:
        return self._select_one(f"WHERE {_U.id} = ?", (user_id,))

    def update(self, user_id: int, mutate: UserMutation) -> Optional[UserEntity]:
        updated: Optional[UserEntity] = None
        try:
            with self._conn(immediate=True) as conn:
                row = conn.execute(f"SELECT * FROM {_U.table} WHERE {_U.id} = ?", (user_id,)).fetchone()
                if not row:
                    return None
                updated = self._row_to_entity(row)
                mutate(updated)
                conn.execute(
                    f"""
                    UPDATE {_U.table}
                    SET {_U.username} = ?, {_U.email} = ?, {_U.password_hash} = ?, {_U.first_name} = ?,
                        {_U.last_name} = ?, {_U.role} = ?, {_U.enabled} = ?, {_U.created_at} = ?,
                        {_U.updated_at} = ?
                    WHERE {_U.id} = ?
                    """,
                    (*self._values(updated), user_id),
                )
                row2 = conn.execute(f"SELECT * FROM {_U.table} WHERE {_U.id} = ?", (user_id,)).fetchone()
                assert row2 is not None
                return self._row_to_entity(row2)
        except ConflictError as e:
            if updated is None:
                raise
            raise self._with_value(e, updated) from e

    def delete(self, user_id: int) -> bool:
        with self._conn() as conn:
            cur = conn.execute(f"DELETE FROM {_U.table} WHERE {_U.id} = ?", (user_id,))
            return cur.rowcount > 0

    def list_all(self) -> List[UserEntity]:
        return self._select()

    def get_by_username(self, username: str) -> Optional[UserEntity]:
        return self._select_one(f"WHERE {_U.username} = ?", (username,))

    def get_by_email(self, email: str) -> Optional[UserEntity]:
        return self._select_one(f"WHERE {_U.email} = ?", (email,))

    def find_by_role(self, role: Role) -> List[UserEntity]:
        return self._select(f"WHERE {_U.role} = ?", (role.value,))

    def find_by_enabled(self, enabled: bool) -> List[UserEntity]:
        return self._select(f"WHERE {_U.enabled} = ?", (1 if enabled else 0,))

    def search(self, text: str) -> List[UserEntity]:
        full_name_sql = f"trim(coalesce({_U.first_name}, '') || ' ' || coalesce({_U.last_name}, ''))"
        return self._select(
            f"""
            WHERE instr(py_lower({full_name_sql}), py_lower(?)) > 0
               OR instr(py_lower({_U.username}), py_lower(?)) > 0
               OR instr(py_lower({_U.email}), py_lower(?)) > 0
            """,
            (text, text, text),
        )

    def count_by_role(self) -> Dict[Role, int]:
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT {_U.role} AS grp, COUNT(*) AS cnt FROM {_U.table} GROUP BY {_U.role}"
            ).fetchall()
            return {Role(r["grp"]): int(r["cnt"]) for r in rows}
