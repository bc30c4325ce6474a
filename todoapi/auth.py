"""
Bearer-token authentication.

Per request: no credential -> ``TOKEN_MISSING``; a credential is verified
(signature and expiry) and its subject resolved to a live user, otherwise
``INVALID_TOKEN`` / ``TOKEN_EXPIRED``. Any other fault during verification
surfaces as ``SERVER_ERROR``.
"""

from __future__ import annotations

import logging
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from todoapi.config import Settings
from todoapi.db import DbClient, UserStore
from todoapi.dependencies import get_app_settings, get_db_client
from todoapi.errors import AuthError, TodoApiError
from todoapi.identity import encode
from todoapi.models import UserRecord
from todoapi.security import decode_token

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def authenticate(
    token: Optional[str], users: UserStore, settings: Settings
) -> UserRecord:
    """Resolve a bearer token to the user it was issued for."""
    if not token:
        raise AuthError("Access token required", error_code="TOKEN_MISSING")

    try:
        claims = decode_token(token, settings)
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired", error_code="TOKEN_EXPIRED") from None
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token", error_code="INVALID_TOKEN") from None
    except Exception as exc:
        logger.exception("Token verification failed")
        raise TodoApiError("Token verification failed") from exc

    subject = encode(claims.get("sub"))
    if not subject:
        raise AuthError("Invalid token", error_code="INVALID_TOKEN")

    try:
        user = users.find_by_unique_field("id", subject)
    except TodoApiError:
        raise
    except Exception as exc:
        logger.exception("User lookup failed during token verification")
        raise TodoApiError("Token verification failed") from exc

    if user is None:
        # Valid signature, but the user was deleted after the token was issued.
        raise AuthError("Invalid token", error_code="INVALID_TOKEN")
    return user


def login(users: UserStore, email: str, password: str) -> UserRecord:
    """Check email/password credentials; never reveals which one was wrong."""
    user = users.find_by_unique_field("email", email)
    if user is None or not users.verify_password(user, password):
        logger.info("Rejected login attempt")
        raise AuthError("Invalid credentials", error_code="INVALID_CREDENTIALS")
    return user


def require_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_app_settings),
) -> UserRecord:
    """FastAPI dependency: the request must carry a valid bearer token."""
    token = credentials.credentials if credentials else None
    user = authenticate(token, db.users, settings)
    request.state.user = user
    return user


def optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_app_settings),
) -> Optional[UserRecord]:
    """FastAPI dependency: attach the user when the token checks out, never reject."""
    request.state.user = None
    if credentials is None:
        return None
    try:
        user = authenticate(credentials.credentials, db.users, settings)
    except TodoApiError as exc:
        logger.debug("Ignoring credential in optional auth: %s", exc.error_code)
        return None
    request.state.user = user
    return user
