"""
Pydantic schemas for the todo service.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from todoapi.models import TodoStatus

_PASSWORD_STRENGTH_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_]+$")
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=6, max_length=255)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        if not _PASSWORD_STRENGTH_RE.match(value):
            raise ValueError(
                "password needs a lowercase letter, an uppercase letter and a digit"
            )
        return value


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=1)


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=255)


class UserResponse(BaseModel):
    id: str
    username: str
    email: str
    role: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AuthResponse(BaseModel):
    user: UserResponse
    token: str
    token_type: str = "Bearer"
    expires_in: int


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class AccountDeletedResponse(MessageResponse):
    todos_removed: int


class TodoCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: TodoStatus = TodoStatus.TODO
    due_date: Optional[datetime] = None


class TodoUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[TodoStatus] = None
    due_date: Optional[datetime] = None


class TodoStatusRequest(BaseModel):
    status: TodoStatus


class TodoResponse(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    status: TodoStatus
    due_date: Optional[datetime] = None
    owner_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TodoListResponse(BaseModel):
    todos: list[TodoResponse]
    count: int


class HealthResponse(BaseModel):
    success: bool
    database: str
    reachable: bool
