from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, List, Mapping

from .errors import NotFoundReference, TransientStoreFailure, ValidationError
from .models import Message, User, UserSettings
from .sqlite_backend import SQLiteBackend
from .storage import Storage

logger = logging.getLogger(__name__)

_USER_COLUMNS = "id, username, password_hash, display_name, avatar, is_online, last_active_ms, settings_json"
_MESSAGE_COLUMNS = "id, sender_id, receiver_id, content, timestamp_ms, is_read, is_deleted"

# SQLite INTEGER is a signed 64-bit value; larger ids cannot name a row.
_MAX_ROW_ID = 2**63 - 1


def _storable(row_id: int) -> bool:
    return -_MAX_ROW_ID - 1 <= row_id <= _MAX_ROW_ID


def _user_from_row(row: sqlite3.Row) -> User:
    return User(
        id=row[0],
        username=row[1],
        password_hash=row[2],
        display_name=row[3],
        avatar=row[4],
        is_online=bool(row[5]),
        last_active_ms=row[6],
        settings=UserSettings.from_dict(json.loads(row[7])),
    )


def _message_from_row(row: sqlite3.Row) -> Message:
    return Message(
        id=row[0],
        sender_id=row[1],
        receiver_id=row[2],
        content=row[3],
        timestamp_ms=row[4],
        is_read=bool(row[5]),
        is_deleted=bool(row[6]),
    )


class SQLiteStorage(Storage):
    """Durable storage backed by SQLite."""

    def __init__(self, backend: SQLiteBackend) -> None:
        self._backend = backend

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        with self._backend.lock:
            try:
                yield self._backend.connection
            except sqlite3.Error as exc:
                logger.error("sqlite operation failed: %s", exc)
                raise TransientStoreFailure("Storage operation failed") from exc

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except Exception:
                conn.rollback()
                raise
            conn.commit()

    def close(self) -> None:
        self._backend.close()

    def create_user(
        self,
        username: str,
        password_hash: str,
        display_name: str,
        avatar: str,
        now_ms: int,
    ) -> User:
        settings_json = json.dumps(UserSettings().to_dict())
        with self._backend.lock:
            conn = self._backend.connection
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (username, password_hash, display_name, avatar, is_online, last_active_ms, settings_json)
                    VALUES (?, ?, ?, ?, 0, ?, ?)
                    """,
                    (username, password_hash, display_name, avatar, now_ms, settings_json),
                )
            except sqlite3.IntegrityError as exc:
                raise ValidationError("Username already exists") from exc
            except sqlite3.Error as exc:
                raise TransientStoreFailure("Storage operation failed") from exc
            user_id = cursor.lastrowid
        return User(
            id=user_id,
            username=username,
            password_hash=password_hash,
            display_name=display_name,
            avatar=avatar,
            is_online=False,
            last_active_ms=now_ms,
            settings=UserSettings(),
        )

    def get_user(self, user_id: int) -> User | None:
        if not _storable(user_id):
            return None
        with self._connection() as conn:
            row = conn.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id=?", (user_id,)).fetchone()
        return _user_from_row(row) if row is not None else None

    def get_user_by_username(self, username: str) -> User | None:
        with self._connection() as conn:
            row = conn.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE username=?", (username,)).fetchone()
        return _user_from_row(row) if row is not None else None

    def list_users(self) -> List[User]:
        with self._connection() as conn:
            rows = conn.execute(f"SELECT {_USER_COLUMNS} FROM users ORDER BY id ASC").fetchall()
        return [_user_from_row(row) for row in rows]

    def set_online(self, user_id: int, is_online: bool) -> None:
        with self._connection() as conn:
            conn.execute("UPDATE users SET is_online=? WHERE id=?", (int(is_online), user_id))

    def touch_last_active(self, user_id: int, now_ms: int) -> None:
        with self._connection() as conn:
            conn.execute("UPDATE users SET last_active_ms=? WHERE id=?", (now_ms, user_id))

    def update_settings(self, user_id: int, partial: Mapping[str, Any]) -> User:
        with self._transaction() as conn:
            row = conn.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id=?", (user_id,)).fetchone()
            if row is None:
                raise NotFoundReference("User not found")
            user = _user_from_row(row)
            user.settings = user.settings.merged(partial)
            conn.execute(
                "UPDATE users SET settings_json=? WHERE id=?",
                (json.dumps(user.settings.to_dict()), user_id),
            )
        return user

    def create_message(self, sender_id: int, receiver_id: int, content: str, now_ms: int) -> Message:
        with self._connection() as conn:
            cursor = conn.execute(
                "INSERT INTO messages (sender_id, receiver_id, content, timestamp_ms) VALUES (?, ?, ?, ?)",
                (sender_id, receiver_id, content, now_ms),
            )
            message_id = cursor.lastrowid
        return Message(
            id=message_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            timestamp_ms=now_ms,
        )

    def get_message(self, message_id: int) -> Message | None:
        if not _storable(message_id):
            return None
        with self._connection() as conn:
            row = conn.execute(f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id=?", (message_id,)).fetchone()
        return _message_from_row(row) if row is not None else None

    def list_conversation(self, user_a: int, user_b: int) -> List[Message]:
        if not (_storable(user_a) and _storable(user_b)):
            return []
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE ((sender_id=? AND receiver_id=?) OR (sender_id=? AND receiver_id=?))
                  AND is_deleted=0
                ORDER BY timestamp_ms ASC, id ASC
                """,
                (user_a, user_b, user_b, user_a),
            ).fetchall()
        return [_message_from_row(row) for row in rows]

    def mark_read(self, message_ids: Iterable[int], reader_id: int | None = None) -> List[int]:
        ids = sorted(m for m in set(message_ids) if _storable(m))
        if not ids or (reader_id is not None and not _storable(reader_id)):
            return []
        placeholders = ",".join("?" for _ in ids)
        query = f"SELECT id FROM messages WHERE id IN ({placeholders}) AND is_read=0"
        params: list[object] = list(ids)
        if reader_id is not None:
            query += " AND receiver_id=?"
            params.append(reader_id)
        with self._transaction() as conn:
            flipped = [row[0] for row in conn.execute(query + " ORDER BY id ASC", params).fetchall()]
            if flipped:
                flip_placeholders = ",".join("?" for _ in flipped)
                conn.execute(f"UPDATE messages SET is_read=1 WHERE id IN ({flip_placeholders})", flipped)
        return flipped

    def soft_delete(self, message_id: int) -> bool:
        if not _storable(message_id):
            return False
        with self._connection() as conn:
            cursor = conn.execute("UPDATE messages SET is_deleted=1 WHERE id=? AND is_deleted=0", (message_id,))
            return cursor.rowcount > 0

    def list_unread_inbound(self, receiver_id: int) -> List[Message]:
        if not _storable(receiver_id):
            return []
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE receiver_id=? AND is_read=0 AND is_deleted=0
                ORDER BY timestamp_ms ASC, id ASC
                """,
                (receiver_id,),
            ).fetchall()
        return [_message_from_row(row) for row in rows]
