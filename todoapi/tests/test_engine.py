import unittest

from todoapi import engine
from todoapi.config import Settings
from todoapi.engine import StorageEngine
from todoapi.errors import ConfigurationError


class StorageEngineSelectionTests(unittest.TestCase):
    def setUp(self):
        engine._reset_selection()
        self.addCleanup(engine._reset_selection)

    def test_known_values(self):
        self.assertIs(engine.parse_storage_engine("memory"), StorageEngine.MEMORY)
        self.assertIs(engine.parse_storage_engine(" MongoDB "), StorageEngine.MONGODB)
        self.assertEqual(StorageEngine.POSTGRESQL.family, engine.RELATIONAL)
        self.assertEqual(StorageEngine.MONGODB.family, engine.DOCUMENT)

    def test_unknown_value_fails_fast(self):
        with self.assertRaises(ConfigurationError):
            engine.select_storage_engine("cassandra")
        with self.assertRaises(ConfigurationError):
            engine.current_storage_engine()

    def test_selection_is_fixed_for_the_process(self):
        self.assertIs(engine.select_storage_engine("sqlite"), StorageEngine.SQLITE)
        self.assertIs(engine.select_storage_engine("sqlite"), StorageEngine.SQLITE)
        self.assertIs(engine.current_storage_engine(), StorageEngine.SQLITE)
        with self.assertRaises(ConfigurationError):
            engine.select_storage_engine("mongodb")

    def test_database_urls(self):
        settings = Settings(
            sqlite_path="/tmp/todo.sqlite3",
            database_url=None,
            db_host="db",
            db_port=5433,
            db_name="todos",
            db_user="app",
            db_password="pw",
        )
        self.assertEqual(
            engine.database_url_for(StorageEngine.MEMORY, settings),
            "sqlite+pysqlite:///:memory:",
        )
        self.assertEqual(
            engine.database_url_for(StorageEngine.SQLITE, settings),
            "sqlite+pysqlite:////tmp/todo.sqlite3",
        )
        self.assertEqual(
            engine.database_url_for(StorageEngine.POSTGRESQL, settings),
            "postgresql+psycopg2://app:pw@db:5433/todos",
        )
        with self.assertRaises(ConfigurationError):
            engine.database_url_for(StorageEngine.MONGODB, settings)


if __name__ == "__main__":
    unittest.main()
