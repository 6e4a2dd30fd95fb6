from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Mapping


_SETTINGS_FIELDS = {
    "darkMode": "dark_mode",
    "notifications": "notifications",
    "sound": "sound",
    "language": "language",
}


@dataclass(frozen=True)
class UserSettings:
    dark_mode: bool = False
    notifications: bool = True
    sound: bool = True
    language: str = "en"

    def merged(self, partial: Mapping[str, Any]) -> UserSettings:
        """Return a copy where only the keys present in ``partial`` change.

        ``partial`` uses the wire names (``darkMode`` ...); unknown keys are
        ignored.
        """

        changes = {attr: partial[key] for key, attr in _SETTINGS_FIELDS.items() if key in partial}
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {key: getattr(self, attr) for key, attr in _SETTINGS_FIELDS.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> UserSettings:
        return cls().merged(data or {})


@dataclass
class User:
    id: int
    username: str
    password_hash: str
    display_name: str
    avatar: str
    is_online: bool = False
    last_active_ms: int = 0
    settings: UserSettings = field(default_factory=UserSettings)


@dataclass
class Message:
    id: int
    sender_id: int
    receiver_id: int
    content: str
    timestamp_ms: int
    is_read: bool = False
    is_deleted: bool = False

    @property
    def conversation_key(self) -> tuple[int, int]:
        return conversation_key(self.sender_id, self.receiver_id)

    def sort_key(self) -> tuple[int, int]:
        return (self.timestamp_ms, self.id)


def conversation_key(a: int, b: int) -> tuple[int, int]:
    """The unordered pair identifying a conversation."""

    return (a, b) if a <= b else (b, a)


def iso_from_ms(ts_ms: int) -> str:
    stamp = datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def public_user(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "displayName": user.display_name,
        "avatar": user.avatar,
    }


def contact_entry(user: User) -> dict[str, Any]:
    entry = public_user(user)
    entry["isOnline"] = user.is_online
    entry["lastActive"] = iso_from_ms(user.last_active_ms)
    return entry


def message_payload(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "senderId": message.sender_id,
        "receiverId": message.receiver_id,
        "content": message.content,
        "timestamp": iso_from_ms(message.timestamp_ms),
        "isRead": message.is_read,
        "isDeleted": message.is_deleted,
    }


def settings_payload(settings: UserSettings) -> dict[str, Any]:
    return settings.to_dict()
