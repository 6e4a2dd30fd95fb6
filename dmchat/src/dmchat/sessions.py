from __future__ import annotations

import secrets
import time
from dataclasses import dataclass

DEFAULT_SESSION_TTL_MS = 24 * 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_token() -> str:
    return f"st_{secrets.token_urlsafe(24)}"


@dataclass
class Session:
    user_id: int
    session_token: str
    expires_at_ms: int


class SessionStore:
    """Tracks authenticated sessions keyed by session token."""

    def __init__(self, ttl_ms: int = DEFAULT_SESSION_TTL_MS, *, now_func=_now_ms) -> None:
        self._ttl_ms = ttl_ms
        self._now = now_func
        self._by_token: dict[str, Session] = {}

    def create(self, user_id: int) -> Session:
        session = Session(
            user_id=user_id,
            session_token=_new_token(),
            expires_at_ms=self._now() + self._ttl_ms,
        )
        self._by_token[session.session_token] = session
        return session

    def get(self, session_token: str) -> Session | None:
        session = self._by_token.get(session_token)
        if session is None:
            return None
        if session.expires_at_ms <= self._now():
            self.invalidate(session)
            return None
        return session

    def invalidate(self, session: Session) -> None:
        self._by_token.pop(session.session_token, None)

    def invalidate_user(self, user_id: int) -> int:
        tokens = [token for token, session in self._by_token.items() if session.user_id == user_id]
        for token in tokens:
            self._by_token.pop(token, None)
        return len(tokens)
