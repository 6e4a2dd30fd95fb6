import os
import sqlite3
import tempfile
import unittest

from dmchat.errors import TransientStoreFailure
from dmchat.sqlite_backend import SCHEMA_VERSION, SQLiteBackend
from dmchat.sqlite_sessions import SQLiteSessionStore
from dmchat.sqlite_storage import SQLiteStorage


class FakeClock:
    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.current = start_ms

    def now(self) -> int:
        return self.current

    def advance(self, delta_ms: int) -> None:
        self.current += delta_ms


class SQLitePersistenceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmpdir.name, "nested", "chat.db")

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def test_state_survives_restart(self):
        backend = SQLiteBackend(self.db_path)
        storage = SQLiteStorage(backend)
        alice = storage.create_user("alice", "h", "Alice", "", 1)
        bob = storage.create_user("bob", "h", "Bob", "", 1)
        kept = storage.create_message(alice.id, bob.id, "kept", 10)
        gone = storage.create_message(bob.id, alice.id, "gone", 11)
        storage.mark_read([kept.id])
        storage.soft_delete(gone.id)
        storage.update_settings(alice.id, {"darkMode": True})
        storage.set_online(bob.id, True)
        backend.close()

        backend = SQLiteBackend(self.db_path)
        try:
            storage = SQLiteStorage(backend)
            listed = storage.list_conversation(bob.id, alice.id)
            self.assertEqual([m.id for m in listed], [kept.id])
            self.assertTrue(listed[0].is_read)
            self.assertTrue(storage.get_message(gone.id).is_deleted)
            self.assertTrue(storage.get_user(alice.id).settings.dark_mode)
            self.assertTrue(storage.get_user(bob.id).is_online)
            self.assertEqual(backend.connection.execute("PRAGMA user_version").fetchone()[0], SCHEMA_VERSION)
        finally:
            backend.close()

    def test_unknown_schema_version_is_rejected(self):
        os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA user_version = 99")
        conn.close()
        with self.assertRaises(ValueError):
            SQLiteBackend(self.db_path)

    def test_closed_connection_surfaces_store_failure(self):
        backend = SQLiteBackend(self.db_path)
        storage = SQLiteStorage(backend)
        backend.close()
        with self.assertRaises(TransientStoreFailure):
            storage.list_users()


class SQLiteSessionStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.backend = SQLiteBackend(":memory:")
        self.user = SQLiteStorage(self.backend).create_user("alice", "h", "Alice", "", self.clock.now())
        self.sessions = SQLiteSessionStore(self.backend, ttl_ms=60_000, now_func=self.clock.now)

    def tearDown(self) -> None:
        self.backend.close()

    def test_create_and_get(self):
        session = self.sessions.create(self.user.id)
        self.assertTrue(session.session_token.startswith("st_"))
        self.assertEqual(self.sessions.get(session.session_token), session)
        self.assertIsNone(self.sessions.get("st_unknown"))

    def test_session_expires(self):
        session = self.sessions.create(self.user.id)
        self.clock.advance(60_000)
        self.assertIsNone(self.sessions.get(session.session_token))
        self.clock.advance(-60_000)
        self.assertIsNone(self.sessions.get(session.session_token))

    def test_invalidate_user(self):
        first = self.sessions.create(self.user.id)
        second = self.sessions.create(self.user.id)
        self.assertEqual(self.sessions.invalidate_user(self.user.id), 2)
        self.assertIsNone(self.sessions.get(first.session_token))
        self.assertIsNone(self.sessions.get(second.session_token))


if __name__ == "__main__":
    unittest.main()
