from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping

from .errors import NotFoundReference, ValidationError
from .models import Message, User, UserSettings, conversation_key


class Storage:
    """Persistence contract shared by the in-memory and SQLite backends."""

    def create_user(
        self,
        username: str,
        password_hash: str,
        display_name: str,
        avatar: str,
        now_ms: int,
    ) -> User:
        raise NotImplementedError

    def get_user(self, user_id: int) -> User | None:
        raise NotImplementedError

    def get_user_by_username(self, username: str) -> User | None:
        raise NotImplementedError

    def list_users(self) -> List[User]:
        raise NotImplementedError

    def set_online(self, user_id: int, is_online: bool) -> None:
        raise NotImplementedError

    def touch_last_active(self, user_id: int, now_ms: int) -> None:
        raise NotImplementedError

    def update_settings(self, user_id: int, partial: Mapping[str, Any]) -> User:
        raise NotImplementedError

    def create_message(self, sender_id: int, receiver_id: int, content: str, now_ms: int) -> Message:
        raise NotImplementedError

    def get_message(self, message_id: int) -> Message | None:
        raise NotImplementedError

    def list_conversation(self, user_a: int, user_b: int) -> List[Message]:
        raise NotImplementedError

    def mark_read(self, message_ids: Iterable[int], reader_id: int | None = None) -> List[int]:
        raise NotImplementedError

    def soft_delete(self, message_id: int) -> bool:
        raise NotImplementedError

    def list_unread_inbound(self, receiver_id: int) -> List[Message]:
        raise NotImplementedError

    def close(self) -> None:
        return None


class MemoryStorage(Storage):
    """Process-local storage used by tests and when no database is configured.

    Records are copied on the way in and out so callers never alias the
    stored state.
    """

    def __init__(self) -> None:
        self._users: Dict[int, User] = {}
        self._usernames: Dict[str, int] = {}
        self._messages: Dict[int, Message] = {}
        self._next_user_id = 1
        self._next_message_id = 1

    def create_user(
        self,
        username: str,
        password_hash: str,
        display_name: str,
        avatar: str,
        now_ms: int,
    ) -> User:
        if username in self._usernames:
            raise ValidationError("Username already exists")
        user = User(
            id=self._next_user_id,
            username=username,
            password_hash=password_hash,
            display_name=display_name,
            avatar=avatar,
            is_online=False,
            last_active_ms=now_ms,
            settings=UserSettings(),
        )
        self._next_user_id += 1
        self._users[user.id] = user
        self._usernames[username] = user.id
        return replace(user)

    def get_user(self, user_id: int) -> User | None:
        user = self._users.get(user_id)
        return replace(user) if user is not None else None

    def get_user_by_username(self, username: str) -> User | None:
        user_id = self._usernames.get(username)
        if user_id is None:
            return None
        return self.get_user(user_id)

    def list_users(self) -> List[User]:
        return [replace(self._users[user_id]) for user_id in sorted(self._users)]

    def set_online(self, user_id: int, is_online: bool) -> None:
        user = self._users.get(user_id)
        if user is not None:
            user.is_online = is_online

    def touch_last_active(self, user_id: int, now_ms: int) -> None:
        user = self._users.get(user_id)
        if user is not None:
            user.last_active_ms = now_ms

    def update_settings(self, user_id: int, partial: Mapping[str, Any]) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise NotFoundReference("User not found")
        user.settings = user.settings.merged(partial)
        return replace(user)

    def create_message(self, sender_id: int, receiver_id: int, content: str, now_ms: int) -> Message:
        message = Message(
            id=self._next_message_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            timestamp_ms=now_ms,
        )
        self._next_message_id += 1
        self._messages[message.id] = message
        return replace(message)

    def get_message(self, message_id: int) -> Message | None:
        message = self._messages.get(message_id)
        return replace(message) if message is not None else None

    def list_conversation(self, user_a: int, user_b: int) -> List[Message]:
        key = conversation_key(user_a, user_b)
        matches = [
            replace(message)
            for message in self._messages.values()
            if not message.is_deleted and message.conversation_key == key
        ]
        matches.sort(key=Message.sort_key)
        return matches

    def mark_read(self, message_ids: Iterable[int], reader_id: int | None = None) -> List[int]:
        flipped: List[int] = []
        for message_id in sorted(set(message_ids)):
            message = self._messages.get(message_id)
            if message is None or message.is_read:
                continue
            if reader_id is not None and message.receiver_id != reader_id:
                continue
            message.is_read = True
            flipped.append(message_id)
        return flipped

    def soft_delete(self, message_id: int) -> bool:
        message = self._messages.get(message_id)
        if message is None or message.is_deleted:
            return False
        message.is_deleted = True
        return True

    def list_unread_inbound(self, receiver_id: int) -> List[Message]:
        matches = [
            replace(message)
            for message in self._messages.values()
            if message.receiver_id == receiver_id and not message.is_read and not message.is_deleted
        ]
        matches.sort(key=Message.sort_key)
        return matches
