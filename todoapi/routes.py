"""
HTTP routes for the todo service.

Handlers stay thin: authentication and ownership come from dependencies,
persistence from the relationship resolver, and every domain error is turned
into a response by the handlers registered in ``todoapi.app``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from todoapi.auth import login, require_user
from todoapi.config import Settings
from todoapi.db import DbClient
from todoapi.dependencies import get_app_settings, get_db_client, get_resolver
from todoapi.errors import AuthError
from todoapi.models import TodoRecord, TodoStatus, UserRecord
from todoapi.permissions import owned_todo, require_roles
from todoapi.relations import RelationshipResolver
from todoapi.schemas import (
    AccountDeletedResponse,
    AuthResponse,
    HealthResponse,
    LoginRequest,
    MessageResponse,
    PasswordChangeRequest,
    RegisterRequest,
    TodoCreateRequest,
    TodoListResponse,
    TodoResponse,
    TodoStatusRequest,
    TodoUpdateRequest,
    UserResponse,
)
from todoapi.security import issue_token

logger = logging.getLogger(__name__)

router = APIRouter()


def _user_response(user: UserRecord) -> UserResponse:
    return UserResponse(**user.as_dict())


def _todo_response(todo: TodoRecord) -> TodoResponse:
    return TodoResponse(**todo.as_dict())


def _todo_list(todos: list[TodoRecord]) -> TodoListResponse:
    return TodoListResponse(todos=[_todo_response(t) for t in todos], count=len(todos))


def _auth_response(user: UserRecord, settings: Settings) -> AuthResponse:
    return AuthResponse(
        user=_user_response(user),
        token=issue_token(user.id, settings),
        expires_in=settings.jwt_expires_in,
    )


@router.get("/health", response_model=HealthResponse)
def health(db: DbClient = Depends(get_db_client)):
    reachable = db.ping()
    return HealthResponse(
        success=reachable, database=db.storage_engine.value, reachable=reachable
    )


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    payload: RegisterRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_app_settings),
):
    user = db.users.create(payload.model_dump())
    logger.info("Registered user %s", user.id)
    return _auth_response(user, settings)


@router.post("/auth/login", response_model=AuthResponse)
def login_user(
    payload: LoginRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_app_settings),
):
    user = login(db.users, payload.email, payload.password)
    return _auth_response(user, settings)


@router.get("/auth/profile", response_model=UserResponse)
def profile(user: UserRecord = Depends(require_user)):
    return _user_response(user)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(user: UserRecord = Depends(require_user)):
    # Tokens are stateless; the client discards its copy.
    return MessageResponse(message="Logged out")


@router.put("/auth/password", response_model=UserResponse)
def change_password(
    payload: PasswordChangeRequest,
    user: UserRecord = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    if not db.users.verify_password(user, payload.current_password):
        raise AuthError("Invalid credentials", error_code="INVALID_CREDENTIALS")
    updated = db.users.update(user.id, {"password": payload.new_password})
    return _user_response(updated)


@router.delete("/auth/account", response_model=AccountDeletedResponse)
def delete_account(
    user: UserRecord = Depends(require_user),
    resolver: RelationshipResolver = Depends(get_resolver),
):
    removed = resolver.delete_user(user.id)
    return AccountDeletedResponse(message="Account deleted", todos_removed=removed)


@router.get("/todos", response_model=TodoListResponse)
def list_todos(
    user: UserRecord = Depends(require_user),
    resolver: RelationshipResolver = Depends(get_resolver),
):
    return _todo_list(resolver.todos_for(user.id))


@router.get("/todos/status/{status}", response_model=TodoListResponse)
def list_todos_by_status(
    status: TodoStatus,
    user: UserRecord = Depends(require_user),
    resolver: RelationshipResolver = Depends(get_resolver),
):
    return _todo_list(resolver.todos_for(user.id, status=status))


@router.get("/todos/overdue", response_model=TodoListResponse)
def list_overdue_todos(
    user: UserRecord = Depends(require_user),
    resolver: RelationshipResolver = Depends(get_resolver),
):
    return _todo_list(resolver.overdue_for(user.id))


@router.get("/todos/{todo_id}", response_model=TodoResponse)
def get_todo(todo: TodoRecord = Depends(owned_todo)):
    return _todo_response(todo)


@router.post("/todos", response_model=TodoResponse, status_code=201)
def create_todo(
    payload: TodoCreateRequest,
    user: UserRecord = Depends(require_user),
    resolver: RelationshipResolver = Depends(get_resolver),
):
    todo = resolver.create_todo(user.id, payload.model_dump())
    return _todo_response(todo)


@router.put("/todos/{todo_id}", response_model=TodoResponse)
def update_todo(
    payload: TodoUpdateRequest,
    todo: TodoRecord = Depends(owned_todo),
    resolver: RelationshipResolver = Depends(get_resolver),
):
    updated = resolver.todos.update(todo.id, payload.model_dump(exclude_unset=True))
    return _todo_response(updated)


@router.patch("/todos/{todo_id}/status", response_model=TodoResponse)
def update_todo_status(
    payload: TodoStatusRequest,
    todo: TodoRecord = Depends(owned_todo),
    resolver: RelationshipResolver = Depends(get_resolver),
):
    updated = resolver.todos.update(todo.id, {"status": payload.status})
    return _todo_response(updated)


@router.delete("/todos/{todo_id}", response_model=MessageResponse)
def delete_todo(
    todo: TodoRecord = Depends(owned_todo),
    resolver: RelationshipResolver = Depends(get_resolver),
):
    resolver.todos.delete(todo.id)
    return MessageResponse(message="Todo deleted")


@router.get("/admin/todos/overdue", response_model=TodoListResponse)
def list_all_overdue_todos(
    admin: UserRecord = Depends(require_roles("admin")),
    resolver: RelationshipResolver = Depends(get_resolver),
):
    return _todo_list(resolver.overdue_for_all())
