"""
Password hashing and bearer token helpers.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import bcrypt
import jwt

from todoapi.config import Settings
from todoapi.identity import encode

DEFAULT_ROUNDS = 12
# bcrypt only looks at the first 72 bytes of the secret.
_BCRYPT_MAX_BYTES = 72


def _secret_bytes(plaintext: str) -> bytes:
    return plaintext.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class CredentialHasher:
    """One-way salted password hashing with a fixed cost factor."""

    def __init__(self, rounds: int = DEFAULT_ROUNDS):
        self.rounds = rounds

    def hash(self, plaintext: str) -> str:
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(_secret_bytes(plaintext), salt).decode("utf-8")

    def verify(self, plaintext: str, digest: str) -> bool:
        if not plaintext or not digest:
            return False
        try:
            return bcrypt.checkpw(_secret_bytes(plaintext), digest.encode("utf-8"))
        except ValueError:
            # Not a bcrypt digest.
            return False


def issue_token(user_id: Any, settings: Settings) -> str:
    """Create a signed JWT whose subject is the user's canonical id."""
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "sub": encode(user_id),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=settings.jwt_expires_in)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> Dict[str, Any]:
    """
    Verify signature and expiry and return the claims.

    Raises ``jwt.ExpiredSignatureError`` or ``jwt.InvalidTokenError``; callers
    map those onto error codes.
    """
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        options={"require": ["sub", "exp"]},
    )
