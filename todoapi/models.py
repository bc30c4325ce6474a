"""
Backend-independent records and field validation for users and todos.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from todoapi.errors import ValidationError

USERNAME_RE = re.compile(r"^[A-Za-z0-9_]+$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")

USER_UNIQUE_FIELDS = ("id", "username", "email")
USER_UPDATABLE_FIELDS = ("username", "email", "password", "role")
TODO_UPDATABLE_FIELDS = ("title", "description", "status", "due_date")

DEFAULT_ROLE = "user"


class TodoStatus(str, enum.Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Storage form: naive UTC (both SQLite and BSON drop the offset)."""
    if value is None:
        return None
    return as_utc(value).replace(tzinfo=None)


def next_timestamp(
    previous: Optional[datetime], resolution: timedelta = timedelta(microseconds=1)
) -> datetime:
    """Naive UTC "now", strictly later than ``previous`` at the store's resolution."""
    now = to_naive_utc(utcnow())
    if resolution >= timedelta(milliseconds=1):
        now = now.replace(microsecond=now.microsecond // 1000 * 1000)
    if previous is not None:
        previous = to_naive_utc(previous)
        if now <= previous:
            now = previous + resolution
    return now


@dataclass
class UserRecord:
    id: str
    username: str
    email: str
    password_hash: str = field(repr=False)
    role: str = DEFAULT_ROLE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class TodoRecord:
    id: str
    title: str
    owner_id: str
    description: Optional[str] = None
    status: TodoStatus = TodoStatus.TODO
    due_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        if self.due_date is None or self.status == TodoStatus.DONE:
            return False
        return as_utc(self.due_date) < as_utc(now or utcnow())

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "due_date": self.due_date,
            "owner_id": self.owner_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _require_str(fields: dict, name: str) -> str:
    value = fields.get(name)
    if value is None:
        raise ValidationError(f"{name} is required", field=name)
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string", field=name)
    return value


def validate_username(value: Any) -> str:
    username = _require_str({"username": value}, "username").strip()
    if not 3 <= len(username) <= 50:
        raise ValidationError("username must be 3-50 characters", field="username")
    if not USERNAME_RE.match(username):
        raise ValidationError(
            "username may only contain letters, digits and underscores",
            field="username",
        )
    return username


def normalize_email(value: Any) -> str:
    email = _require_str({"email": value}, "email").strip().lower()
    if len(email) > 255 or not EMAIL_RE.match(email):
        raise ValidationError("email is not a valid address", field="email")
    return email


def validate_password(value: Any) -> str:
    password = _require_str({"password": value}, "password")
    if not 6 <= len(password) <= 255:
        raise ValidationError("password must be 6-255 characters", field="password")
    return password


def validate_role(value: Any) -> str:
    role = _require_str({"role": value}, "role").strip()
    if not role:
        raise ValidationError("role must not be empty", field="role")
    return role


def validate_title(value: Any) -> str:
    title = _require_str({"title": value}, "title").strip()
    if not 1 <= len(title) <= 255:
        raise ValidationError("title must be 1-255 characters", field="title")
    return title


def validate_description(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("description must be a string", field="description")
    return value.strip()


def validate_status(value: Any) -> TodoStatus:
    if value is None:
        return TodoStatus.TODO
    try:
        return TodoStatus(value)
    except ValueError:
        raise ValidationError(
            "status must be one of TODO, IN_PROGRESS, DONE", field="status"
        ) from None


def parse_status(value: Any) -> TodoStatus:
    if value is None:
        raise ValidationError("status is required", field="status")
    return validate_status(value)


def validate_due_date(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(
                "due_date must be an ISO 8601 date", field="due_date"
            ) from None
    if not isinstance(value, datetime):
        raise ValidationError("due_date must be a datetime", field="due_date")
    return as_utc(value)


def _reject_unknown(fields: dict, allowed: tuple[str, ...]) -> None:
    unknown = sorted(set(fields) - set(allowed))
    if unknown:
        raise ValidationError(f"unsupported fields: {', '.join(unknown)}")


def validate_new_user(fields: dict) -> dict:
    _reject_unknown(fields, USER_UPDATABLE_FIELDS)
    return {
        "username": validate_username(fields.get("username")),
        "email": normalize_email(fields.get("email")),
        "password": validate_password(fields.get("password")),
        "role": validate_role(fields.get("role") or DEFAULT_ROLE),
    }


def validate_user_changes(fields: dict) -> dict:
    _reject_unknown(fields, USER_UPDATABLE_FIELDS)
    validators = {
        "username": validate_username,
        "email": normalize_email,
        "password": validate_password,
        "role": validate_role,
    }
    return {name: validators[name](value) for name, value in fields.items()}


def validate_new_todo(fields: dict) -> dict:
    _reject_unknown(fields, TODO_UPDATABLE_FIELDS)
    return {
        "title": validate_title(fields.get("title")),
        "description": validate_description(fields.get("description")),
        "status": validate_status(fields.get("status")),
        "due_date": validate_due_date(fields.get("due_date")),
    }


def validate_todo_changes(fields: dict) -> dict:
    _reject_unknown(fields, TODO_UPDATABLE_FIELDS)
    changes: dict = {}
    for name, value in fields.items():
        if name == "title":
            changes[name] = validate_title(value)
        elif name == "description":
            changes[name] = validate_description(value)
        elif name == "status":
            changes[name] = parse_status(value)
        elif name == "due_date":
            changes[name] = validate_due_date(value)
    return changes
