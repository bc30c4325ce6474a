"""
SQLAlchemy-backed stores. Accepts any SQLAlchemy URL (Postgres in production,
SQLite for local runs and tests).

Todos reference users through a hard foreign key with ``ON DELETE CASCADE``;
user deletion additionally removes the todos explicitly inside the same
transaction so the cascade never depends on the dialect.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    String,
    Text,
    create_engine,
    delete,
    event,
    select,
    text,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from todoapi.engine import StorageEngine
from todoapi.errors import (
    NotFoundError,
    ReferentialError,
    StorageFault,
    UniquenessError,
    ValidationError,
)
from todoapi.identity import decode_uuid, encode, new_uuid
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

Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    username = Column(String(50), nullable=False, unique=True)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False, default="user")
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class TodoRow(Base):
    __tablename__ = "todos"
    __table_args__ = (
        CheckConstraint(
            "status IN ('TODO', 'IN_PROGRESS', 'DONE')", name="ck_todos_status"
        ),
    )

    id = Column(String(36), primary_key=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default="TODO", index=True)
    due_date = Column(DateTime, nullable=True, index=True)
    owner_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


@contextmanager
def _storage_faults(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Storage error during %s", action)
        raise StorageFault(f"Storage error during {action}") from exc


def _to_user_record(row: UserRow) -> UserRecord:
    return UserRecord(
        id=encode(row.id),
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        role=row.role,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _to_todo_record(row: TodoRow) -> TodoRecord:
    return TodoRecord(
        id=encode(row.id),
        title=row.title,
        description=row.description,
        status=TodoStatus(row.status),
        due_date=as_utc(row.due_date),
        owner_id=encode(row.owner_id),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


class SqlUserStore:
    def __init__(self, session_factory: sessionmaker, hasher: CredentialHasher):
        self.Session = session_factory
        self.hasher = hasher

    def _check_unique(
        self,
        session: Session,
        *,
        username: str | None = None,
        email: str | None = None,
        exclude_id: str | None = None,
    ) -> None:
        for field, value in (("username", username), ("email", email)):
            if value is None:
                continue
            column = getattr(UserRow, field)
            existing = session.execute(
                select(UserRow.id).where(column == value)
            ).scalar_one_or_none()
            if existing and existing != exclude_id:
                raise UniquenessError(field, value)

    @staticmethod
    def _uniqueness_from(exc: IntegrityError) -> UniquenessError:
        message = str(exc.orig).lower()
        return UniquenessError("email" if "email" in message else "username")

    def create(self, fields: dict) -> UserRecord:
        values = validate_new_user(fields)
        password_hash = self.hasher.hash(values["password"])
        now = next_timestamp(None)
        with _storage_faults("user create"), self.Session() as session:
            self._check_unique(
                session, username=values["username"], email=values["email"]
            )
            row = UserRow(
                id=new_uuid(),
                username=values["username"],
                email=values["email"],
                password_hash=password_hash,
                role=values["role"],
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise self._uniqueness_from(exc) from exc
            return _to_user_record(row)

    def find_by_unique_field(self, field: str, value: Any) -> Optional[UserRecord]:
        if field not in USER_UNIQUE_FIELDS:
            raise ValidationError(f"{field} is not a unique user field", field=field)
        with _storage_faults("user lookup"), self.Session() as session:
            if field == "id":
                user_id = decode_uuid(value)
                row = session.get(UserRow, user_id) if user_id else None
            else:
                if not isinstance(value, str) or not value.strip():
                    return None
                lookup = value.strip().lower() if field == "email" else value.strip()
                column = getattr(UserRow, field)
                row = session.execute(
                    select(UserRow).where(column == lookup)
                ).scalar_one_or_none()
            return _to_user_record(row) if row else None

    def update(self, id: Any, fields: dict) -> UserRecord:
        changes = validate_user_changes(fields)
        if "password" in changes:
            changes["password_hash"] = self.hasher.hash(changes.pop("password"))
        user_id = decode_uuid(id)
        with _storage_faults("user update"), self.Session() as session:
            row = session.get(UserRow, user_id) if user_id else None
            if not row:
                raise NotFoundError("user", encode(id))
            self._check_unique(
                session,
                username=changes.get("username"),
                email=changes.get("email"),
                exclude_id=row.id,
            )
            for name, value in changes.items():
                setattr(row, name, value)
            row.updated_at = next_timestamp(row.updated_at)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise self._uniqueness_from(exc) from exc
            return _to_user_record(row)

    def delete(self, id: Any) -> int:
        user_id = decode_uuid(id)
        with _storage_faults("user delete"), self.Session() as session:
            row = session.get(UserRow, user_id) if user_id else None
            if not row:
                raise NotFoundError("user", encode(id))
            result = session.execute(
                delete(TodoRow).where(TodoRow.owner_id == row.id)
            )
            session.delete(row)
            session.commit()
            removed = result.rowcount or 0
        logger.info("Deleted user %s and %d owned todos", user_id, removed)
        return removed

    def verify_password(self, user: UserRecord, plaintext: str) -> bool:
        return self.hasher.verify(plaintext, user.password_hash)


class SqlTodoStore:
    def __init__(self, session_factory: sessionmaker):
        self.Session = session_factory

    def create(self, fields: dict) -> TodoRecord:
        fields = dict(fields)
        owner = fields.pop("owner_id", None)
        values = validate_new_todo(fields)
        owner_id = decode_uuid(owner)
        if not owner_id:
            raise ReferentialError(f"owner {encode(owner) or '<empty>'} does not exist")
        now = next_timestamp(None)
        with _storage_faults("todo create"), self.Session() as session:
            row = TodoRow(
                id=new_uuid(),
                title=values["title"],
                description=values["description"],
                status=values["status"].value,
                due_date=to_naive_utc(values["due_date"]),
                owner_id=owner_id,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ReferentialError(f"owner {owner_id} does not exist") from exc
            return _to_todo_record(row)

    def find_by_unique_field(self, field: str, value: Any) -> Optional[TodoRecord]:
        if field != "id":
            raise ValidationError(f"{field} is not a unique todo field", field=field)
        todo_id = decode_uuid(value)
        if not todo_id:
            return None
        with _storage_faults("todo lookup"), self.Session() as session:
            row = session.get(TodoRow, todo_id)
            return _to_todo_record(row) if row else None

    def get(self, id: Any) -> TodoRecord:
        todo = self.find_by_unique_field("id", id)
        if not todo:
            raise NotFoundError("todo", encode(id))
        return todo

    def _select(self, *criteria) -> list[TodoRecord]:
        with _storage_faults("todo query"), self.Session() as session:
            stmt = select(TodoRow).where(*criteria).order_by(TodoRow.created_at.asc())
            return [_to_todo_record(row) for row in session.execute(stmt).scalars()]

    def find_by_owner(self, owner_id: Any) -> list[TodoRecord]:
        owner = decode_uuid(owner_id)
        if not owner:
            return []
        return self._select(TodoRow.owner_id == owner)

    def find_by_status(
        self, status: TodoStatus | str, owner_id: Any = None
    ) -> list[TodoRecord]:
        criteria = [TodoRow.status == parse_status(status).value]
        if owner_id is not None:
            owner = decode_uuid(owner_id)
            if not owner:
                return []
            criteria.append(TodoRow.owner_id == owner)
        return self._select(*criteria)

    def find_overdue(
        self, owner_id: Any = None, now: Optional[datetime] = None
    ) -> list[TodoRecord]:
        cutoff = to_naive_utc(now) if now else next_timestamp(None)
        criteria = [
            TodoRow.due_date.is_not(None),
            TodoRow.due_date < cutoff,
            TodoRow.status != TodoStatus.DONE.value,
        ]
        if owner_id is not None:
            owner = decode_uuid(owner_id)
            if not owner:
                return []
            criteria.append(TodoRow.owner_id == owner)
        return self._select(*criteria)

    def update(self, id: Any, fields: dict) -> TodoRecord:
        changes = validate_todo_changes(fields)
        todo_id = decode_uuid(id)
        with _storage_faults("todo update"), self.Session() as session:
            row = session.get(TodoRow, todo_id) if todo_id else None
            if not row:
                raise NotFoundError("todo", encode(id))
            for name, value in changes.items():
                if name == "status":
                    value = value.value
                elif name == "due_date":
                    value = to_naive_utc(value)
                setattr(row, name, value)
            row.updated_at = next_timestamp(row.updated_at)
            session.commit()
            return _to_todo_record(row)

    def delete(self, id: Any) -> None:
        todo_id = decode_uuid(id)
        with _storage_faults("todo delete"), self.Session() as session:
            row = session.get(TodoRow, todo_id) if todo_id else None
            if not row:
                raise NotFoundError("todo", encode(id))
            session.delete(row)
            session.commit()


def _engine_for_url(database_url: str) -> StorageEngine:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        if url.database in (None, "", ":memory:"):
            return StorageEngine.MEMORY
        return StorageEngine.SQLITE
    return StorageEngine.POSTGRESQL


class SqlDbClient:
    """
    Relational backend: one SQLAlchemy engine shared by the user and todo stores.
    """

    def __init__(
        self,
        database_url: str,
        hasher: CredentialHasher | None = None,
        storage_engine: StorageEngine | None = None,
    ):
        if not database_url:
            raise ValueError("database_url is required for SqlDbClient")
        self.storage_engine = storage_engine or _engine_for_url(database_url)

        engine_kwargs: dict = {"future": True, "pool_pre_ping": True}
        if make_url(database_url).get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if self.storage_engine is StorageEngine.MEMORY:
                # One shared connection, otherwise every session sees an empty database.
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

        self.users = SqlUserStore(self.Session, hasher or CredentialHasher())
        self.todos = SqlTodoStore(self.Session)

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.warning("Relational backend ping failed", exc_info=True)
            return False

    def close(self) -> None:
        self.engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
