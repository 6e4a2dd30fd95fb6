from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List

from .sessions import _now_ms
from .storage import Storage

logger = logging.getLogger(__name__)


@dataclass
class PresenceConfig:
    # None keeps users ONLINE until an explicit logout, however stale.
    offline_after_seconds: int | None = None
    sweeper_interval_seconds: float = 5.0


class PresenceTracker:
    """Maps users to ONLINE/OFFLINE and refreshes their last-active stamp."""

    def __init__(
        self,
        storage: Storage,
        config: PresenceConfig | None = None,
        *,
        now_func: Callable[[], int] = _now_ms,
    ) -> None:
        self.config = config or PresenceConfig()
        self._storage = storage
        self._now = now_func
        self._sweeper_task: asyncio.Task | None = None

    def login(self, user_id: int) -> None:
        self._storage.set_online(user_id, True)
        self._storage.touch_last_active(user_id, self._now())

    def ping(self, user_id: int) -> None:
        self._storage.touch_last_active(user_id, self._now())
        self._storage.set_online(user_id, True)

    def touch(self, user_id: int) -> None:
        self._storage.touch_last_active(user_id, self._now())

    def logout(self, user_id: int) -> None:
        self._storage.set_online(user_id, False)

    def expire(self) -> List[int]:
        """Demote ONLINE users whose last activity is older than the window."""

        if self.config.offline_after_seconds is None:
            return []
        cutoff_ms = self._now() - self.config.offline_after_seconds * 1000
        demoted: List[int] = []
        for user in self._storage.list_users():
            if user.is_online and user.last_active_ms <= cutoff_ms:
                self._storage.set_online(user.id, False)
                demoted.append(user.id)
        if demoted:
            logger.info("presence expiry demoted %d users", len(demoted))
        return demoted

    def start_sweeper(self) -> None:
        if self.config.offline_after_seconds is None:
            return
        if self._sweeper_task is None:
            self._sweeper_task = asyncio.create_task(self._sweep())

    async def stop_sweeper(self) -> None:
        if self._sweeper_task is None:
            return
        self._sweeper_task.cancel()
        try:
            await self._sweeper_task
        except asyncio.CancelledError:
            pass
        self._sweeper_task = None

    async def _sweep(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.config.sweeper_interval_seconds)
                self.expire()
        except asyncio.CancelledError:
            return
