"""
MongoDB-backed stores using pymongo.

Documents get generated ``ObjectId`` identifiers and todos point at their
owner through an ``ownerId`` reference field. MongoDB does not enforce that
reference, so user deletion removes the owned todos before the user document
itself; owner existence on todo creation is checked by the relationship
resolver.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Iterator, Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from todoapi.engine import StorageEngine
from todoapi.errors import (
    NotFoundError,
    ReferentialError,
    StorageFault,
    UniquenessError,
    ValidationError,
)
from todoapi.identity import decode_object_id, encode
from todoapi.models import (
    USER_UNIQUE_FIELDS,
    TodoRecord,
    TodoStatus,
    UserRecord,
    as_utc,
    next_timestamp,
    parse_status,
    to_naive_utc,
    validate_new_todo,
    validate_new_user,
    validate_todo_changes,
    validate_user_changes,
)
from todoapi.security import CredentialHasher

logger = logging.getLogger(__name__)

# BSON dates keep millisecond precision.
_RESOLUTION = timedelta(milliseconds=1)

_USER_FIELD_NAMES = {"password_hash": "passwordHash"}
_TODO_FIELD_NAMES = {"due_date": "dueDate"}


@contextmanager
def _storage_faults(action: str) -> Iterator[None]:
    try:
        yield
    except DuplicateKeyError:
        raise
    except PyMongoError as exc:
        logger.exception("Storage error during %s", action)
        raise StorageFault(f"Storage error during {action}") from exc


def _bson_datetime(value: Optional[datetime]) -> Optional[datetime]:
    value = to_naive_utc(value)
    if value is None:
        return None
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def _now() -> datetime:
    return next_timestamp(None, _RESOLUTION)


def _to_user_record(doc: dict) -> UserRecord:
    return UserRecord(
        id=encode(doc["_id"]),
        username=doc["username"],
        email=doc["email"],
        password_hash=doc["passwordHash"],
        role=doc.get("role", "user"),
        created_at=as_utc(doc.get("createdAt")),
        updated_at=as_utc(doc.get("updatedAt")),
    )


def _to_todo_record(doc: dict) -> TodoRecord:
    return TodoRecord(
        id=encode(doc["_id"]),
        title=doc["title"],
        description=doc.get("description"),
        status=TodoStatus(doc.get("status", TodoStatus.TODO.value)),
        due_date=as_utc(doc.get("dueDate")),
        owner_id=encode(doc["ownerId"]),
        created_at=as_utc(doc.get("createdAt")),
        updated_at=as_utc(doc.get("updatedAt")),
    )


class MongoUserStore:
    def __init__(
        self, users: Collection, todos: Collection, hasher: CredentialHasher
    ):
        self.collection = users
        self.todos = todos
        self.hasher = hasher

    def _check_unique(
        self,
        *,
        username: str | None = None,
        email: str | None = None,
        exclude_id: ObjectId | None = None,
    ) -> None:
        for field, value in (("username", username), ("email", email)):
            if value is None:
                continue
            query: dict = {field: value}
            if exclude_id is not None:
                query["_id"] = {"$ne": exclude_id}
            if self.collection.find_one(query, {"_id": 1}):
                raise UniquenessError(field, value)

    @staticmethod
    def _uniqueness_from(exc: DuplicateKeyError) -> UniquenessError:
        details = exc.details or {}
        key = details.get("keyPattern") or details.get("keyValue") or {}
        if "email" in key or "email" in str(exc):
            return UniquenessError("email")
        return UniquenessError("username")

    def create(self, fields: dict) -> UserRecord:
        values = validate_new_user(fields)
        now = _now()
        doc = {
            "username": values["username"],
            "email": values["email"],
            "passwordHash": self.hasher.hash(values["password"]),
            "role": values["role"],
            "createdAt": now,
            "updatedAt": now,
        }
        with _storage_faults("user create"):
            self._check_unique(username=values["username"], email=values["email"])
            try:
                result = self.collection.insert_one(doc)
            except DuplicateKeyError as exc:
                raise self._uniqueness_from(exc) from exc
        doc["_id"] = result.inserted_id
        return _to_user_record(doc)

    def find_by_unique_field(self, field: str, value: Any) -> Optional[UserRecord]:
        if field not in USER_UNIQUE_FIELDS:
            raise ValidationError(f"{field} is not a unique user field", field=field)
        if field == "id":
            oid = decode_object_id(value)
            if oid is None:
                return None
            query: dict = {"_id": oid}
        else:
            if not isinstance(value, str) or not value.strip():
                return None
            lookup = value.strip().lower() if field == "email" else value.strip()
            query = {field: lookup}
        with _storage_faults("user lookup"):
            doc = self.collection.find_one(query)
        return _to_user_record(doc) if doc else None

    def update(self, id: Any, fields: dict) -> UserRecord:
        changes = validate_user_changes(fields)
        if "password" in changes:
            changes["password_hash"] = self.hasher.hash(changes.pop("password"))
        oid = decode_object_id(id)
        with _storage_faults("user update"):
            current = self.collection.find_one({"_id": oid}) if oid else None
            if not current:
                raise NotFoundError("user", encode(id))
            self._check_unique(
                username=changes.get("username"),
                email=changes.get("email"),
                exclude_id=oid,
            )
            update = {_USER_FIELD_NAMES.get(k, k): v for k, v in changes.items()}
            update["updatedAt"] = next_timestamp(current.get("updatedAt"), _RESOLUTION)
            try:
                doc = self.collection.find_one_and_update(
                    {"_id": oid},
                    {"$set": update},
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError as exc:
                raise self._uniqueness_from(exc) from exc
        if not doc:
            raise NotFoundError("user", encode(id))
        return _to_user_record(doc)

    def delete(self, id: Any) -> int:
        oid = decode_object_id(id)
        with _storage_faults("user delete"):
            if not oid or not self.collection.find_one({"_id": oid}, {"_id": 1}):
                raise NotFoundError("user", encode(id))
            # Todos first: a reader must never see a todo whose owner is gone.
            removed = self.todos.delete_many({"ownerId": oid}).deleted_count
            self.collection.delete_one({"_id": oid})
        logger.info("Deleted user %s and %d owned todos", oid, removed)
        return removed

    def verify_password(self, user: UserRecord, plaintext: str) -> bool:
        return self.hasher.verify(plaintext, user.password_hash)


class MongoTodoStore:
    def __init__(self, todos: Collection):
        self.collection = todos

    def create(self, fields: dict) -> TodoRecord:
        fields = dict(fields)
        owner = fields.pop("owner_id", None)
        values = validate_new_todo(fields)
        owner_oid = decode_object_id(owner)
        if owner_oid is None:
            raise ReferentialError(f"owner {encode(owner) or '<empty>'} does not exist")
        now = _now()
        doc = {
            "title": values["title"],
            "description": values["description"],
            "status": values["status"].value,
            "dueDate": _bson_datetime(values["due_date"]),
            "ownerId": owner_oid,
            "createdAt": now,
            "updatedAt": now,
        }
        with _storage_faults("todo create"):
            result = self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return _to_todo_record(doc)

    def find_by_unique_field(self, field: str, value: Any) -> Optional[TodoRecord]:
        if field != "id":
            raise ValidationError(f"{field} is not a unique todo field", field=field)
        oid = decode_object_id(value)
        if oid is None:
            return None
        with _storage_faults("todo lookup"):
            doc = self.collection.find_one({"_id": oid})
        return _to_todo_record(doc) if doc else None

    def get(self, id: Any) -> TodoRecord:
        todo = self.find_by_unique_field("id", id)
        if not todo:
            raise NotFoundError("todo", encode(id))
        return todo

    def _find(self, query: dict) -> list[TodoRecord]:
        with _storage_faults("todo query"):
            cursor = self.collection.find(query).sort([("createdAt", ASCENDING), ("_id", ASCENDING)])
            return [_to_todo_record(doc) for doc in cursor]

    def find_by_owner(self, owner_id: Any) -> list[TodoRecord]:
        oid = decode_object_id(owner_id)
        if oid is None:
            return []
        return self._find({"ownerId": oid})

    def find_by_status(
        self, status: TodoStatus | str, owner_id: Any = None
    ) -> list[TodoRecord]:
        query: dict = {"status": parse_status(status).value}
        if owner_id is not None:
            oid = decode_object_id(owner_id)
            if oid is None:
                return []
            query["ownerId"] = oid
        return self._find(query)

    def find_overdue(
        self, owner_id: Any = None, now: Optional[datetime] = None
    ) -> list[TodoRecord]:
        cutoff = to_naive_utc(now) if now else _now()
        query: dict = {
            "dueDate": {"$ne": None, "$lt": cutoff},
            "status": {"$ne": TodoStatus.DONE.value},
        }
        if owner_id is not None:
            oid = decode_object_id(owner_id)
            if oid is None:
                return []
            query["ownerId"] = oid
        return self._find(query)

    def update(self, id: Any, fields: dict) -> TodoRecord:
        changes = validate_todo_changes(fields)
        oid = decode_object_id(id)
        with _storage_faults("todo update"):
            current = self.collection.find_one({"_id": oid}) if oid else None
            if not current:
                raise NotFoundError("todo", encode(id))
            update: dict = {}
            for name, value in changes.items():
                if name == "status":
                    value = value.value
                elif name == "due_date":
                    value = _bson_datetime(value)
                update[_TODO_FIELD_NAMES.get(name, name)] = value
            update["updatedAt"] = next_timestamp(current.get("updatedAt"), _RESOLUTION)
            doc = self.collection.find_one_and_update(
                {"_id": oid},
                {"$set": update},
                return_document=ReturnDocument.AFTER,
            )
        if not doc:
            raise NotFoundError("todo", encode(id))
        return _to_todo_record(doc)

    def delete(self, id: Any) -> None:
        oid = decode_object_id(id)
        with _storage_faults("todo delete"):
            result = self.collection.delete_one({"_id": oid}) if oid else None
        if not result or not result.deleted_count:
            raise NotFoundError("todo", encode(id))


class MongoDbClient:
    """
    Document backend: ``users`` and ``todos`` collections of one database.

    The client is passed in so callers own its lifetime; :meth:`from_uri`
    builds one from a connection string.
    """

    storage_engine = StorageEngine.MONGODB

    def __init__(
        self,
        client: MongoClient,
        database_name: str,
        hasher: CredentialHasher | None = None,
    ):
        self.client = client
        self.database = client[database_name]
        users = self.database["users"]
        todos = self.database["todos"]
        with _storage_faults("index creation"):
            users.create_index([("username", ASCENDING)], unique=True)
            users.create_index([("email", ASCENDING)], unique=True)
            todos.create_index([("ownerId", ASCENDING)])
            todos.create_index([("status", ASCENDING)])
            todos.create_index([("dueDate", ASCENDING)])
        self.users = MongoUserStore(users, todos, hasher or CredentialHasher())
        self.todos = MongoTodoStore(todos)

    @classmethod
    def from_uri(
        cls,
        uri: str,
        database_name: str,
        hasher: CredentialHasher | None = None,
        timeout_ms: int = 5000,
    ) -> "MongoDbClient":
        client = MongoClient(uri, serverSelectionTimeoutMS=timeout_ms)
        return cls(client, database_name, hasher)

    def ping(self) -> bool:
        try:
            self.client.admin.command("ping")
            return True
        except PyMongoError:
            logger.warning("Document backend ping failed", exc_info=True)
            return False

    def close(self) -> None:
        self.client.close()
