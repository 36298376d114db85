"""
WhatsApp Command Bot - Permission Store Tests

JSON store against a temporary directory; PostgreSQL store against a mocked
database.
"""

import json
import os
import tempfile
import unittest
from contextlib import contextmanager
from unittest.mock import MagicMock, patch

from wabot.storage.permission_store import (
    JsonPermissionStore,
    PermissionStoreIOError,
    PostgresPermissionStore,
    create_permission_store,
)

from tests.fixtures import GROUP_JID, USER_JID, MemoryPermissionStore, make_settings


class TestJsonPermissionStore(unittest.IsolatedAsyncioTestCase):
    """Tests for the JSON file backend."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmpdir.name, "data", "permissions.json")
        self.store = JsonPermissionStore(self.path)

    def tearDown(self):
        self.tmpdir.cleanup()

    def _read_file(self):
        with open(self.path, encoding="utf-8") as f:
            return json.load(f)

    async def test_missing_file_loads_empty(self):
        self.store.load()
        self.assertTrue(self.store.is_loaded)
        self.assertEqual(self.store.all(), {})

    async def test_grant_then_revoke(self):
        """Granting then revoking leaves the identity without the command."""
        self.store.load()

        self.assertTrue(await self.store.add(USER_JID, "Sticker"))
        self.assertTrue(self.store.has(USER_JID, "sticker"))
        self.assertEqual(self._read_file(), {USER_JID: ["sticker"]})

        self.assertTrue(await self.store.remove(USER_JID, "sticker"))
        self.assertFalse(self.store.has(USER_JID, "sticker"))
        self.assertEqual(self._read_file(), {})

    async def test_duplicate_add_and_missing_remove(self):
        self.store.load()
        await self.store.add(USER_JID, "a")

        self.assertFalse(await self.store.add(USER_JID, "a"))
        self.assertFalse(await self.store.remove(USER_JID, "b"))
        self.assertFalse(await self.store.remove_all(GROUP_JID))

    async def test_persists_across_instances(self):
        self.store.load()
        await self.store.add(USER_JID, "b")
        await self.store.add(USER_JID, "a")
        await self.store.add(GROUP_JID, "c")

        reloaded = JsonPermissionStore(self.path)
        reloaded.load()

        self.assertEqual(reloaded.get(USER_JID), ["a", "b"])
        self.assertTrue(reloaded.has(GROUP_JID, "c"))

    async def test_remove_all(self):
        self.store.load()
        await self.store.add(USER_JID, "a")
        await self.store.add(USER_JID, "b")

        self.assertTrue(await self.store.remove_all(USER_JID))
        self.assertEqual(self.store.get(USER_JID), [])

    async def test_corrupt_file_raises(self):
        os.makedirs(os.path.dirname(self.path))
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("{not json")

        with self.assertRaises(PermissionStoreIOError):
            self.store.load()

    async def test_failed_write_leaves_memory_unchanged(self):
        self.store.load()
        await self.store.add(USER_JID, "a")

        with patch("wabot.storage.permission_store.os.replace", side_effect=OSError("read-only")):
            with self.assertRaises(PermissionStoreIOError):
                await self.store.add(USER_JID, "b")

        self.assertEqual(self.store.get(USER_JID), ["a"])
        self.assertEqual(self._read_file(), {USER_JID: ["a"]})
        # No temp files left behind
        self.assertEqual(os.listdir(os.path.dirname(self.path)), ["permissions.json"])


class TestPermissionStoreBase(unittest.IsolatedAsyncioTestCase):
    """Behaviour shared by every backend."""

    async def test_read_your_writes(self):
        store = MemoryPermissionStore({USER_JID: {"a"}})
        store.load()

        await store.add(USER_JID, "b")

        self.assertEqual(store.get(USER_JID), ["a", "b"])
        self.assertEqual(store.writes[-1], {USER_JID: {"a", "b"}})

    async def test_failed_write_rolls_back(self):
        store = MemoryPermissionStore()
        store.load()
        store.fail_writes = True

        with self.assertRaises(PermissionStoreIOError):
            await store.add(USER_JID, "a")

        self.assertFalse(store.has(USER_JID, "a"))

    async def test_has_without_identity(self):
        store = MemoryPermissionStore()
        store.load()
        self.assertFalse(store.has(None, "a"))


def mock_database(rows=None):
    database = MagicMock()
    database.execute_query.return_value = rows or []
    cursor = MagicMock()
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor

    @contextmanager
    def get_db_connection():
        yield conn

    database.get_db_connection = get_db_connection
    return database, cursor


class TestPostgresPermissionStore(unittest.IsolatedAsyncioTestCase):
    """Tests for the PostgreSQL backend."""

    async def test_load_groups_rows_by_identity(self):
        database, _ = mock_database([
            {"identity": USER_JID, "command": "a"},
            {"identity": USER_JID, "command": "b"},
            {"identity": GROUP_JID, "command": "c"},
        ])
        store = PostgresPermissionStore(database)

        store.load()

        database.ensure_schema.assert_called_once()
        self.assertEqual(store.all(), {USER_JID: ["a", "b"], GROUP_JID: ["c"]})

    @patch("wabot.storage.permission_store.execute_values")
    async def test_add_rewrites_table(self, mock_execute_values):
        database, cursor = mock_database()
        store = PostgresPermissionStore(database)
        store.load()

        await store.add(USER_JID, "a")

        cursor.execute.assert_called_once_with("DELETE FROM command_permissions")
        args = mock_execute_values.call_args[0]
        self.assertIs(args[0], cursor)
        self.assertEqual(args[2], [(USER_JID, "a")])

    async def test_database_error_raises_store_error(self):
        database, _ = mock_database()
        database.execute_query.side_effect = RuntimeError("connection refused")
        store = PostgresPermissionStore(database)

        with self.assertRaises(PermissionStoreIOError):
            store.load()

    def test_close_releases_connection_pool(self):
        database, _ = mock_database()
        store = PostgresPermissionStore(database)

        store.close()

        database.close_connection_pool.assert_called_once()


class TestCreatePermissionStore(unittest.TestCase):

    def test_json_by_default(self):
        store = create_permission_store(make_settings(permissions_file="x.json"))
        self.assertIsInstance(store, JsonPermissionStore)
        self.assertEqual(store.path, "x.json")

    def test_postgres_when_database_url_set(self):
        store = create_permission_store(make_settings(database_url="postgresql://localhost/bot"))
        self.assertIsInstance(store, PostgresPermissionStore)
        self.assertEqual(store.database.database_url, "postgresql://localhost/bot")

    def test_pool_size_comes_from_settings(self):
        store = create_permission_store(make_settings(
            database_url="postgresql://localhost/bot", db_pool_min_conn=2, db_pool_max_conn=7,
        ))
        self.assertEqual((store.database.min_conn, store.database.max_conn), (2, 7))


if __name__ == "__main__":
    unittest.main()
