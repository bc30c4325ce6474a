"""
Storage interfaces shared by the relational and document backends.

Route handlers, the relationship resolver and the auth gates only ever see
these protocols; the concrete classes live in ``sql_store`` and
``mongo_store``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from todoapi.engine import StorageEngine
from todoapi.models import TodoRecord, TodoStatus, UserRecord


class UserStore(Protocol):
    """Interface for user persistence."""

    def create(self, fields: dict) -> UserRecord:
        ...

    def find_by_unique_field(self, field: str, value: Any) -> Optional[UserRecord]:
        ...

    def update(self, id: Any, fields: dict) -> UserRecord:
        ...

    def delete(self, id: Any) -> int:
        """Delete the user and its todos; returns the number of todos removed."""
        ...

    def verify_password(self, user: UserRecord, plaintext: str) -> bool:
        ...


class TodoStore(Protocol):
    """Interface for todo persistence."""

    def create(self, fields: dict) -> TodoRecord:
        ...

    def get(self, id: Any) -> TodoRecord:
        ...

    def find_by_unique_field(self, field: str, value: Any) -> Optional[TodoRecord]:
        ...

    def find_by_owner(self, owner_id: Any) -> list[TodoRecord]:
        ...

    def find_by_status(
        self, status: TodoStatus | str, owner_id: Any = None
    ) -> list[TodoRecord]:
        ...

    def find_overdue(
        self, owner_id: Any = None, now: Optional[datetime] = None
    ) -> list[TodoRecord]:
        ...

    def update(self, id: Any, fields: dict) -> TodoRecord:
        ...

    def delete(self, id: Any) -> None:
        ...


class DbClient(Protocol):
    """A storage backend: one user store and one todo store over one connection."""

    storage_engine: StorageEngine
    users: UserStore
    todos: TodoStore

    def ping(self) -> bool:
        ...

    def close(self) -> None:
        ...
