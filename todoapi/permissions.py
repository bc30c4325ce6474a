"""
Authorization checks layered after authentication: roles and ownership.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Optional

from fastapi import Depends

from todoapi.auth import require_user
from todoapi.dependencies import get_resolver
from todoapi.errors import AuthError, AuthorizationError, NotFoundError
from todoapi.identity import equals
from todoapi.models import DEFAULT_ROLE, TodoRecord, UserRecord
from todoapi.relations import RelationshipResolver


def check_roles(user: Optional[UserRecord], allowed: Iterable[str] | None) -> None:
    allowed = set(allowed or ())
    if not allowed:
        return
    if user is None:
        raise AuthError("Authentication required", error_code="AUTHENTICATION_REQUIRED")
    if (user.role or DEFAULT_ROLE) not in allowed:
        raise AuthorizationError(
            "Insufficient permissions", error_code="INSUFFICIENT_PERMISSIONS"
        )


def check_ownership(user: Optional[UserRecord], owner_id: Any) -> None:
    if user is None:
        raise AuthError("Authentication required", error_code="AUTHENTICATION_REQUIRED")
    if not equals(user.id, owner_id):
        raise AuthorizationError("Access denied", error_code="ACCESS_DENIED")


def require_roles(*roles: str) -> Callable[..., UserRecord]:
    """Build a dependency that lets through only users holding one of ``roles``."""
    allowed = frozenset(roles)

    def dependency(user: UserRecord = Depends(require_user)) -> UserRecord:
        check_roles(user, allowed)
        return user

    return dependency


def owned_todo(
    todo_id: str,
    user: UserRecord = Depends(require_user),
    resolver: RelationshipResolver = Depends(get_resolver),
) -> TodoRecord:
    """Load a todo the authenticated user owns (404 if missing or orphaned, 403 if foreign)."""
    todo = resolver.todos.get(todo_id)
    if resolver.owner_of(todo) is None:
        raise NotFoundError("todo", todo.id)
    check_ownership(user, todo.owner_id)
    return todo
