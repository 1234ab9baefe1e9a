from __future__ import annotations

from typing import Dict, List

from fastapi import APIRouter, Depends, Query, status

from ..deps import get_query_engine, get_statistics, get_user_registry
from ..models import Role, UserEntity
from ..query_engine import QueryEngine
from ..schemas import (
    CredentialsRequest,
    PasswordChangeRequest,
    UserCreate,
    UserOut,
    UserStatusRequest,
    UserUpdate,
)
from ..statistics import StatisticsAggregator
from ..user_registry import UserRegistry

router = APIRouter(
    prefix="/api/users",
    tags=["users"],
)


def _out(users: List[UserEntity]) -> List[UserOut]:
    return [UserOut.from_entity(u) for u in users]


# PUBLIC_INTERFACE
@router.get("/", response_model=List[UserOut], summary="List Users")
def list_users(queries: QueryEngine = Depends(get_query_engine)):
    return _out(queries.all_users())


# PUBLIC_INTERFACE
@router.get("/username/{username}", response_model=UserOut, summary="Get User by username")
def get_by_username(username: str, queries: QueryEngine = Depends(get_query_engine)):
    return UserOut.from_entity(queries.get_user_by_username(username))


# PUBLIC_INTERFACE
@router.get("/email/{email}", response_model=UserOut, summary="Get User by email")
def get_by_email(email: str, queries: QueryEngine = Depends(get_query_engine)):
    return UserOut.from_entity(queries.get_user_by_email(email))


# PUBLIC_INTERFACE
@router.get("/role/{role}", response_model=List[UserOut], summary="Users by role")
def users_by_role(role: Role, queries: QueryEngine = Depends(get_query_engine)):
    return _out(queries.users_by_role(role))


# PUBLIC_INTERFACE
@router.get("/active", response_model=List[UserOut], summary="Enabled users")
def active_users(queries: QueryEngine = Depends(get_query_engine)):
    return _out(queries.active_users())


# PUBLIC_INTERFACE
@router.get("/with-tasks", response_model=List[UserOut], summary="Users owning at least one task")
def users_with_tasks(queries: QueryEngine = Depends(get_query_engine)):
    return _out(queries.users_with_tasks())


# PUBLIC_INTERFACE
@router.get("/without-tasks", response_model=List[UserOut], summary="Users owning no task")
def users_without_tasks(queries: QueryEngine = Depends(get_query_engine)):
    return _out(queries.users_without_tasks())


# PUBLIC_INTERFACE
@router.get("/search", response_model=List[UserOut], summary="Search users")
def search_users(
    q: str = Query(..., description="Case-insensitive substring of username, email or full name"),
    queries: QueryEngine = Depends(get_query_engine),
):
    return _out(queries.search_users(q))


# PUBLIC_INTERFACE
@router.get("/exists/username/{username}", response_model=bool, summary="Username taken?")
def username_exists(username: str, queries: QueryEngine = Depends(get_query_engine)):
    return queries.username_exists(username)


# PUBLIC_INTERFACE
@router.get("/exists/email/{email}", response_model=bool, summary="Email taken?")
def email_exists(email: str, queries: QueryEngine = Depends(get_query_engine)):
    return queries.email_exists(email)


# PUBLIC_INTERFACE
@router.get("/statistics", response_model=Dict[Role, int], summary="User counts per role")
def user_statistics(stats: StatisticsAggregator = Depends(get_statistics)):
    return stats.count_by_role()


# PUBLIC_INTERFACE
@router.get("/count/role/{role}", response_model=int, summary="Count users with a role")
def count_by_role(role: Role, stats: StatisticsAggregator = Depends(get_statistics)):
    return stats.count_with_role(role)


# PUBLIC_INTERFACE
@router.post("/validate", response_model=bool, summary="Check credentials")
def validate_credentials(payload: CredentialsRequest, registry: UserRegistry = Depends(get_user_registry)):
    """Return true only for an enabled user whose password matches."""
    return registry.validate_credentials(payload.username_or_email, payload.password)


# PUBLIC_INTERFACE
@router.get(
    "/{user_id}",
    response_model=UserOut,
    summary="Get User",
    responses={404: {"description": "User not found"}},
)
def get_user(user_id: int, queries: QueryEngine = Depends(get_query_engine)):
    return UserOut.from_entity(queries.get_user(user_id))


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=UserOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create User",
    responses={
        201: {"description": "User created successfully"},
        400: {"description": "Validation error or duplicate username/email"},
    },
)
def create_user(payload: UserCreate, registry: UserRegistry = Depends(get_user_registry)):
    return UserOut.from_entity(registry.create(payload))


# PUBLIC_INTERFACE
@router.put("/{user_id}", response_model=UserOut, summary="Update User")
def update_user(user_id: int, payload: UserUpdate, registry: UserRegistry = Depends(get_user_registry)):
    return UserOut.from_entity(registry.update(user_id, payload))


# PUBLIC_INTERFACE
@router.put("/{user_id}/password", response_model=UserOut, summary="Change password")
def change_password(
    user_id: int, payload: PasswordChangeRequest, registry: UserRegistry = Depends(get_user_registry)
):
    return UserOut.from_entity(registry.change_password(user_id, payload.new_password))


# PUBLIC_INTERFACE
@router.put("/{user_id}/status", response_model=UserOut, summary="Enable or disable User")
def set_enabled(user_id: int, payload: UserStatusRequest, registry: UserRegistry = Depends(get_user_registry)):
    return UserOut.from_entity(registry.set_enabled(user_id, payload.enabled))


# PUBLIC_INTERFACE
@router.delete(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete User",
    responses={
        204: {"description": "User deleted"},
        400: {"description": "User still owns tasks"},
        404: {"description": "User not found"},
    },
)
def delete_user(user_id: int, registry: UserRegistry = Depends(get_user_registry)) -> None:
    registry.delete(user_id)
    return None
