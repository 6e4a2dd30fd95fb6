"""Two-party direct messaging service: storage, presence, typing and HTTP API."""

from .accounts import Accounts, hash_password, verify_password
from .errors import ChatError, Forbidden, NotFoundReference, TransientStoreFailure, Unauthorized, ValidationError
from .http_api import RUNTIME_KEY, create_app
from .messages import MessageEngine
from .models import Message, User, UserSettings
from .presence import PresenceConfig, PresenceTracker
from .server import main
from .storage import MemoryStorage, Storage
from .typing_status import TypingConfig, TypingTracker

__all__ = [
    "Accounts",
    "ChatError",
    "Forbidden",
    "MemoryStorage",
    "Message",
    "MessageEngine",
    "NotFoundReference",
    "PresenceConfig",
    "PresenceTracker",
    "RUNTIME_KEY",
    "Storage",
    "TransientStoreFailure",
    "TypingConfig",
    "TypingTracker",
    "Unauthorized",
    "User",
    "UserSettings",
    "ValidationError",
    "create_app",
    "hash_password",
    "main",
    "verify_password",
]
