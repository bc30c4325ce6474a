import unittest
from datetime import datetime, timedelta, timezone

import mongomock
from bson import ObjectId

from todoapi.engine import StorageEngine
from todoapi.errors import (
    NotFoundError,
    ReferentialError,
    UniquenessError,
    ValidationError,
)
from todoapi.identity import encode, new_uuid
from todoapi.models import TodoStatus
from todoapi.mongo_store import MongoDbClient
from todoapi.security import CredentialHasher
from todoapi.sql_store import SqlDbClient


class StoreContractMixin:
    """
    Behaviour both backends must share. Subclasses provide ``make_client``.
    """

    def make_client(self):
        raise NotImplementedError

    def unknown_id(self) -> str:
        raise NotImplementedError

    def setUp(self):
        self.db = self.make_client()
        self.users = self.db.users
        self.todos = self.db.todos

    def tearDown(self):
        self.db.close()

    def create_user(self, username="alice", email=None, password="Secret1x"):
        return self.users.create(
            {
                "username": username,
                "email": email or f"{username}@example.com",
                "password": password,
            }
        )

    def create_todo(self, owner, **fields):
        fields.setdefault("title", "Write report")
        return self.todos.create({**fields, "owner_id": owner.id})

    # Users

    def test_create_user_hashes_password(self):
        user = self.create_user()
        self.assertTrue(user.id)
        self.assertEqual(encode(user.id), user.id)
        self.assertNotEqual(user.password_hash, "Secret1x")
        self.assertTrue(self.users.verify_password(user, "Secret1x"))
        self.assertFalse(self.users.verify_password(user, "Secret1y"))
        self.assertEqual(user.role, "user")
        self.assertIsNotNone(user.created_at)
        self.assertIsNotNone(user.updated_at)
        self.assertNotIn("password_hash", user.as_dict())

    def test_email_is_case_normalized(self):
        user = self.create_user(email="Alice@Example.COM")
        self.assertEqual(user.email, "alice@example.com")
        found = self.users.find_by_unique_field("email", "ALICE@example.com")
        self.assertIsNotNone(found)
        self.assertEqual(found.id, user.id)

    def test_duplicate_username_rejected_without_partial_write(self):
        self.create_user()
        with self.assertRaises(UniquenessError) as ctx:
            self.create_user(email="other@example.com")
        self.assertEqual(ctx.exception.error_code, "USERNAME_EXISTS")
        self.assertIsNone(self.users.find_by_unique_field("email", "other@example.com"))

    def test_duplicate_email_rejected_without_partial_write(self):
        self.create_user()
        with self.assertRaises(UniquenessError) as ctx:
            self.create_user(username="alice2", email="ALICE@example.com")
        self.assertEqual(ctx.exception.error_code, "EMAIL_EXISTS")
        self.assertIsNone(self.users.find_by_unique_field("username", "alice2"))

    def test_user_field_validation(self):
        invalid = [
            {"username": "al", "email": "al@example.com", "password": "Secret1x"},
            {"username": "bad name", "email": "b@example.com", "password": "Secret1x"},
            {"username": "bob", "email": "not-an-email", "password": "Secret1x"},
            {"username": "bob", "email": "bob@example.com", "password": "short"},
            {"username": "bob", "email": "bob@example.com"},
        ]
        for fields in invalid:
            with self.subTest(fields=fields):
                with self.assertRaises(ValidationError):
                    self.users.create(fields)
        self.assertIsNone(self.users.find_by_unique_field("username", "bob"))

    def test_find_by_unique_field_misses(self):
        user = self.create_user()
        self.assertEqual(self.users.find_by_unique_field("id", user.id).username, "alice")
        self.assertEqual(self.users.find_by_unique_field("username", "alice").id, user.id)
        self.assertIsNone(self.users.find_by_unique_field("id", self.unknown_id()))
        self.assertIsNone(self.users.find_by_unique_field("id", ""))
        self.assertIsNone(self.users.find_by_unique_field("id", "garbage"))
        self.assertIsNone(self.users.find_by_unique_field("username", "nobody"))
        with self.assertRaises(ValidationError):
            self.users.find_by_unique_field("role", "user")

    def test_password_update_rehashes(self):
        user = self.create_user()
        updated = self.users.update(user.id, {"password": "NewSecret2"})
        self.assertNotEqual(updated.password_hash, user.password_hash)
        self.assertNotEqual(updated.password_hash, "NewSecret2")
        self.assertTrue(self.users.verify_password(updated, "NewSecret2"))
        self.assertFalse(self.users.verify_password(updated, "Secret1x"))
        self.assertGreater(updated.updated_at, user.updated_at)
        self.assertEqual(updated.created_at, user.created_at)

    def test_user_update_conflicts_and_misses(self):
        self.create_user()
        bob = self.create_user("bob")
        with self.assertRaises(UniquenessError):
            self.users.update(bob.id, {"username": "alice"})
        with self.assertRaises(UniquenessError):
            self.users.update(bob.id, {"email": "alice@example.com"})
        self.assertEqual(self.users.update(bob.id, {"username": "bob"}).username, "bob")
        with self.assertRaises(NotFoundError):
            self.users.update(self.unknown_id(), {"role": "admin"})

    # Todos

    def test_create_todo_defaults(self):
        alice = self.create_user()
        todo = self.create_todo(alice)
        self.assertEqual(todo.title, "Write report")
        self.assertEqual(todo.status, TodoStatus.TODO)
        self.assertEqual(todo.owner_id, alice.id)
        self.assertIsNone(todo.due_date)
        self.assertIsNotNone(todo.created_at)
        fetched = self.todos.get(todo.id)
        self.assertEqual(fetched.id, todo.id)
        self.assertEqual(fetched.owner_id, alice.id)

    def test_todo_field_validation(self):
        alice = self.create_user()
        with self.assertRaises(ValidationError):
            self.create_todo(alice, title="")
        with self.assertRaises(ValidationError):
            self.create_todo(alice, title="x" * 256)
        with self.assertRaises(ValidationError):
            self.create_todo(alice, status="ARCHIVED")
        with self.assertRaises(ValidationError):
            self.create_todo(alice, due_date="tomorrow")
        with self.assertRaises(ReferentialError):
            self.todos.create({"title": "Orphan", "owner_id": "garbage"})
        self.assertEqual(self.todos.find_by_owner(alice.id), [])

    def test_find_by_owner_and_status(self):
        alice = self.create_user()
        bob = self.create_user("bob")
        first = self.create_todo(alice, title="one")
        self.create_todo(alice, title="two", status="DONE")
        self.create_todo(bob, title="three", status=TodoStatus.DONE)

        self.assertEqual([t.title for t in self.todos.find_by_owner(alice.id)], ["one", "two"])
        self.assertEqual(self.todos.find_by_owner(self.unknown_id()), [])
        self.assertEqual(self.todos.find_by_owner("garbage"), [])

        self.assertEqual(len(self.todos.find_by_status("DONE")), 2)
        done_for_alice = self.todos.find_by_status(TodoStatus.DONE, owner_id=alice.id)
        self.assertEqual([t.title for t in done_for_alice], ["two"])
        todo_for_alice = self.todos.find_by_status("TODO", owner_id=alice.id)
        self.assertEqual([t.id for t in todo_for_alice], [first.id])
        with self.assertRaises(ValidationError):
            self.todos.find_by_status("LATER")

    def test_find_overdue(self):
        alice = self.create_user()
        bob = self.create_user("bob")
        now = datetime.now(timezone.utc)
        late = self.create_todo(alice, title="late", due_date=now - timedelta(days=1))
        self.create_todo(alice, title="late but done", due_date=now - timedelta(days=1), status="DONE")
        self.create_todo(alice, title="future", due_date=now + timedelta(days=1))
        self.create_todo(alice, title="no due date")
        bobs = self.create_todo(bob, title="bob late", due_date=now - timedelta(hours=1), status="IN_PROGRESS")

        overdue = self.todos.find_overdue()
        self.assertEqual({t.id for t in overdue}, {late.id, bobs.id})
        for todo in overdue:
            self.assertTrue(todo.is_overdue())

        mine = self.todos.find_overdue(owner_id=alice.id)
        self.assertEqual([t.id for t in mine], [late.id])

        earlier = self.todos.find_overdue(now=now - timedelta(days=2))
        self.assertEqual(earlier, [])

    def test_status_update_is_idempotent(self):
        alice = self.create_user()
        todo = self.create_todo(alice)
        first = self.todos.update(todo.id, {"status": "DONE"})
        second = self.todos.update(todo.id, {"status": "DONE"})
        self.assertEqual(first.status, TodoStatus.DONE)
        self.assertEqual(second.status, TodoStatus.DONE)
        self.assertEqual(second.title, first.title)
        self.assertEqual(second.created_at, first.created_at)
        self.assertGreater(second.updated_at, first.updated_at)

    def test_partial_update(self):
        alice = self.create_user()
        due = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
        todo = self.create_todo(alice, description="draft", due_date=due)
        updated = self.todos.update(todo.id, {"description": "final"})
        self.assertEqual(updated.title, "Write report")
        self.assertEqual(updated.description, "final")
        self.assertEqual(updated.due_date, due)
        cleared = self.todos.update(todo.id, {"due_date": None})
        self.assertIsNone(cleared.due_date)
        self.assertEqual(self.todos.get(todo.id).description, "final")

    def test_update_rejections(self):
        alice = self.create_user()
        todo = self.create_todo(alice)
        with self.assertRaises(ValidationError):
            self.todos.update(todo.id, {"status": "NOPE"})
        with self.assertRaises(ValidationError):
            self.todos.update(todo.id, {"owner_id": alice.id})
        with self.assertRaises(NotFoundError) as ctx:
            self.todos.update(self.unknown_id(), {"title": "x"})
        self.assertEqual(ctx.exception.error_code, "TODO_NOT_FOUND")
        self.assertEqual(self.todos.get(todo.id).status, TodoStatus.TODO)

    def test_delete_todo(self):
        alice = self.create_user()
        todo = self.create_todo(alice)
        self.todos.delete(todo.id)
        self.assertIsNone(self.todos.find_by_unique_field("id", todo.id))
        with self.assertRaises(NotFoundError):
            self.todos.get(todo.id)
        with self.assertRaises(NotFoundError):
            self.todos.delete(todo.id)
        with self.assertRaises(NotFoundError):
            self.todos.delete("garbage")

    def test_delete_user_cascades_to_todos(self):
        alice = self.create_user()
        bob = self.create_user("bob")
        self.create_todo(alice, title="one")
        self.create_todo(alice, title="two")
        bobs = self.create_todo(bob, title="three")

        removed = self.users.delete(alice.id)
        self.assertEqual(removed, 2)
        self.assertIsNone(self.users.find_by_unique_field("id", alice.id))
        self.assertEqual(self.todos.find_by_owner(alice.id), [])
        self.assertEqual([t.id for t in self.todos.find_by_owner(bob.id)], [bobs.id])
        with self.assertRaises(NotFoundError) as ctx:
            self.users.delete(alice.id)
        self.assertEqual(ctx.exception.error_code, "USER_NOT_FOUND")


class SqlStoreTests(StoreContractMixin, unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the relational stores.
    """

    def make_client(self):
        return SqlDbClient("sqlite+pysqlite:///:memory:", CredentialHasher(rounds=4))

    def unknown_id(self) -> str:
        return new_uuid()

    def test_engine_inferred_from_url(self):
        self.assertIs(self.db.storage_engine, StorageEngine.MEMORY)
        self.assertTrue(self.db.ping())

    def test_foreign_key_rejects_unknown_owner(self):
        with self.assertRaises(ReferentialError):
            self.todos.create({"title": "Orphan", "owner_id": new_uuid()})


class MongoStoreTests(StoreContractMixin, unittest.TestCase):
    def make_client(self):
        return MongoDbClient(
            mongomock.MongoClient(), "todo_test", CredentialHasher(rounds=4)
        )

    def unknown_id(self) -> str:
        return str(ObjectId())

    def test_documents_use_reference_fields(self):
        alice = self.create_user()
        todo = self.create_todo(alice)
        raw = self.db.database["todos"].find_one({"_id": ObjectId(todo.id)})
        self.assertEqual(raw["ownerId"], ObjectId(alice.id))
        self.assertIs(self.db.storage_engine, StorageEngine.MONGODB)

    def test_unique_indexes_exist(self):
        info = self.db.database["users"].index_information()
        unique_keys = {
            index["key"][0][0] for index in info.values() if index.get("unique")
        }
        self.assertEqual(unique_keys, {"username", "email"})


if __name__ == "__main__":
    unittest.main()
