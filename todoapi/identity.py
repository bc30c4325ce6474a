"""
Canonical string tokens for backend-native identifiers.

Relational rows use UUID strings, documents use ``ObjectId``; both cross the
HTTP boundary (token subjects, URL segments, owner references) as the token
produced by :func:`encode`.
"""

from __future__ import annotations

import re
import uuid
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId

_OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")
_UUID_HEX_RE = re.compile(r"^[0-9a-fA-F]{32}$")
_DIGITS_RE = re.compile(r"^[0-9]+$")


def encode(native_id: Any) -> str:
    """Return the canonical token for ``native_id`` ("" for empty values)."""
    if native_id is None or isinstance(native_id, bool):
        return ""
    if isinstance(native_id, int):
        return str(native_id)
    if isinstance(native_id, uuid.UUID):
        return str(native_id)
    if isinstance(native_id, ObjectId):
        return str(native_id)

    value = str(native_id).strip()
    if not value:
        return ""
    if _OBJECT_ID_RE.match(value):
        return value.lower()
    if _UUID_HEX_RE.match(value):
        return str(uuid.UUID(value))
    if _DIGITS_RE.match(value):
        return str(int(value))
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return value


def equals(token_a: Any, token_b: Any) -> bool:
    a = encode(token_a)
    return bool(a) and a == encode(token_b)


def decode_uuid(token: Any) -> Optional[str]:
    value = encode(token)
    if not value:
        return None
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return None


def decode_object_id(token: Any) -> Optional[ObjectId]:
    if isinstance(token, ObjectId):
        return token
    value = encode(token)
    if not _OBJECT_ID_RE.match(value):
        return None
    try:
        return ObjectId(value)
    except InvalidId:
        return None


def new_uuid() -> str:
    return str(uuid.uuid4())
