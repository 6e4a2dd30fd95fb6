from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from .sessions import _now_ms


@dataclass
class TypingConfig:
    # None means a flag stays set until its sender clears it.
    ttl_seconds: float | None = None


class TypingTracker:
    """Ephemeral "I am typing to X" flags keyed by (sender, receiver).

    Keying on the pair lets the receiver look the flag up without knowing
    anything about the sender's session.
    """

    def __init__(self, config: TypingConfig | None = None, *, now_func: Callable[[], int] = _now_ms) -> None:
        self.config = config or TypingConfig()
        self._now = now_func
        self._flags: Dict[Tuple[int, int], int] = {}

    def set_typing(self, sender_id: int, receiver_id: int, is_typing: bool) -> None:
        key = (sender_id, receiver_id)
        if is_typing:
            self._flags[key] = self._now()
        else:
            self._flags.pop(key, None)

    def is_typing(self, sender_id: int, receiver_id: int) -> bool:
        set_at_ms = self._flags.get((sender_id, receiver_id))
        if set_at_ms is None:
            return False
        if self._is_stale(set_at_ms):
            self._flags.pop((sender_id, receiver_id), None)
            return False
        return True

    def clear_sender(self, sender_id: int) -> None:
        for key in [key for key in self._flags if key[0] == sender_id]:
            self._flags.pop(key, None)

    def _is_stale(self, set_at_ms: int) -> bool:
        ttl = self.config.ttl_seconds
        return ttl is not None and self._now() - set_at_ms >= ttl * 1000
