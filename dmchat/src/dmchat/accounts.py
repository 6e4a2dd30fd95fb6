from __future__ import annotations

import logging
import secrets
from typing import Any, Callable, List, Mapping

from werkzeug.security import check_password_hash, generate_password_hash

from .errors import NotFoundReference, ValidationError
from .models import User, UserSettings
from .sessions import _now_ms
from .storage import Storage

logger = logging.getLogger(__name__)

PASSWORD_METHOD = "scrypt"


def hash_password(password: str, *, method: str = PASSWORD_METHOD) -> str:
    """Return a salted one-way hash in werkzeug's ``method$salt$hash`` form."""

    return generate_password_hash(password, method=method)


def verify_password(password: str, encoded: str) -> bool:
    try:
        return check_password_hash(encoded, password)
    except ValueError:
        # Unknown method or unparsable parameters in a stored hash.
        return False


# Compared against when the username is unknown so both paths cost a hash.
_DUMMY_HASH = hash_password(secrets.token_urlsafe(16))


class Accounts:
    def __init__(self, storage: Storage, *, now_func: Callable[[], int] = _now_ms) -> None:
        self._storage = storage
        self._now = now_func

    def register(self, username: str, password: str, display_name: str, avatar: str = "") -> User:
        if not username:
            raise ValidationError("Username is required")
        if not password:
            raise ValidationError("Password is required")
        if not display_name:
            raise ValidationError("Display name is required")
        user = self._storage.create_user(username, hash_password(password), display_name, avatar, self._now())
        logger.info("created user id=%s username=%s", user.id, user.username)
        return user

    def authenticate(self, username: str, password: str) -> User | None:
        user = self._storage.get_user_by_username(username)
        if user is None:
            verify_password(password, _DUMMY_HASH)
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user

    def get(self, user_id: int) -> User | None:
        return self._storage.get_user(user_id)

    def contacts_for(self, user_id: int) -> List[User]:
        return [user for user in self._storage.list_users() if user.id != user_id]

    def get_settings(self, user_id: int) -> UserSettings:
        user = self._storage.get_user(user_id)
        if user is None:
            raise NotFoundReference("User not found")
        return user.settings

    def update_settings(self, user_id: int, partial: Mapping[str, Any]) -> UserSettings:
        return self._storage.update_settings(user_id, partial).settings
