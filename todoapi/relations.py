"""
User -> Todo relationship rules, independent of the active backend.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from todoapi.db import DbClient
from todoapi.errors import NotFoundError, ReferentialError
from todoapi.identity import encode
from todoapi.models import TodoRecord, TodoStatus, UserRecord

logger = logging.getLogger(__name__)


class RelationshipResolver:
    """
    Keeps every readable todo pointing at a live user.

    The relational backend also enforces this with a foreign key; the document
    backend does not, so every todo write goes through :meth:`create_todo`.
    """

    def __init__(self, db: DbClient):
        self.users = db.users
        self.todos = db.todos

    def resolve_owner(self, owner_id: Any) -> Optional[UserRecord]:
        if not encode(owner_id):
            return None
        return self.users.find_by_unique_field("id", owner_id)

    def create_todo(self, owner_id: Any, fields: dict) -> TodoRecord:
        owner = self.resolve_owner(owner_id)
        if owner is None:
            raise ReferentialError(f"owner {encode(owner_id) or '<empty>'} does not exist")
        return self.todos.create({**fields, "owner_id": owner.id})

    def delete_user(self, user_id: Any) -> int:
        """Delete a user after its todos; returns how many todos were removed."""
        user = self.resolve_owner(user_id)
        if user is None:
            raise NotFoundError("user", encode(user_id))
        removed = 0
        for todo in self.todos.find_by_owner(user.id):
            self.todos.delete(todo.id)
            removed += 1
        # The store removes anything created since the scan in the same step.
        removed += self.users.delete(user.id)
        logger.info("User %s removed with %d todos", user.id, removed)
        return removed

    def todos_for(
        self, owner_id: Any, status: TodoStatus | str | None = None
    ) -> list[TodoRecord]:
        if status is None:
            return self.todos.find_by_owner(owner_id)
        return self.todos.find_by_status(status, owner_id=owner_id)

    def overdue_for(self, owner_id: Any) -> list[TodoRecord]:
        return self.todos.find_overdue(owner_id=owner_id)

    def owner_of(self, todo: TodoRecord) -> Optional[UserRecord]:
        return self.resolve_owner(todo.owner_id)

    def overdue_for_all(self) -> list[TodoRecord]:
        """Overdue todos of every owner, skipping any whose owner no longer exists."""
        live: dict[str, bool] = {}
        overdue = []
        for todo in self.todos.find_overdue():
            if todo.owner_id not in live:
                live[todo.owner_id] = self.owner_of(todo) is not None
            if live[todo.owner_id]:
                overdue.append(todo)
            else:
                logger.warning("Skipping todo %s with missing owner %s", todo.id, todo.owner_id)
        return overdue
