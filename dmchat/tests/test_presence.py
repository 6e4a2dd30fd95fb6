import asyncio
import unittest

from dmchat.presence import PresenceConfig, PresenceTracker
from dmchat.storage import MemoryStorage


class FakeClock:
    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.current = start_ms

    def now(self) -> int:
        return self.current

    def advance(self, delta_ms: int) -> None:
        self.current += delta_ms


class PresenceTrackerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.storage = MemoryStorage()
        self.user = self.storage.create_user("alice", "h", "Alice", "", self.clock.now())

    def _tracker(self, **config) -> PresenceTracker:
        return PresenceTracker(self.storage, PresenceConfig(**config), now_func=self.clock.now)

    def _online(self) -> bool:
        return self.storage.get_user(self.user.id).is_online

    def test_new_user_is_offline(self):
        self.assertFalse(self._online())

    def test_login_sets_online_and_last_active(self):
        tracker = self._tracker()
        self.clock.advance(5_000)
        tracker.login(self.user.id)
        self.assertTrue(self._online())
        self.assertEqual(self.storage.get_user(self.user.id).last_active_ms, self.clock.now())

    def test_logout_sets_offline(self):
        tracker = self._tracker()
        tracker.login(self.user.id)
        tracker.logout(self.user.id)
        self.assertFalse(self._online())

    def test_ping_refreshes_last_active_and_restores_online(self):
        tracker = self._tracker()
        tracker.login(self.user.id)
        tracker.logout(self.user.id)
        self.clock.advance(30_000)
        tracker.ping(self.user.id)
        user = self.storage.get_user(self.user.id)
        self.assertTrue(user.is_online)
        self.assertEqual(user.last_active_ms, self.clock.now())

    def test_touch_does_not_change_state(self):
        tracker = self._tracker()
        self.clock.advance(1_000)
        tracker.touch(self.user.id)
        user = self.storage.get_user(self.user.id)
        self.assertFalse(user.is_online)
        self.assertEqual(user.last_active_ms, self.clock.now())

    def test_missed_pings_do_not_demote_by_default(self):
        tracker = self._tracker()
        tracker.login(self.user.id)
        self.clock.advance(31_000)
        self.assertEqual(tracker.expire(), [])
        self.assertTrue(self._online())
        self.clock.advance(24 * 60 * 60 * 1000)
        self.assertEqual(tracker.expire(), [])
        self.assertTrue(self._online())

    def test_opt_in_expiry_demotes_stale_users(self):
        tracker = self._tracker(offline_after_seconds=90)
        tracker.login(self.user.id)
        self.clock.advance(89_000)
        self.assertEqual(tracker.expire(), [])
        self.clock.advance(1_000)
        self.assertEqual(tracker.expire(), [self.user.id])
        self.assertFalse(self._online())

    def test_expiry_skips_offline_users(self):
        tracker = self._tracker(offline_after_seconds=10)
        self.clock.advance(60_000)
        self.assertEqual(tracker.expire(), [])

    def test_ping_keeps_user_online_under_expiry(self):
        tracker = self._tracker(offline_after_seconds=60)
        tracker.login(self.user.id)
        for _ in range(5):
            self.clock.advance(30_000)
            tracker.ping(self.user.id)
            self.assertEqual(tracker.expire(), [])
        self.assertTrue(self._online())


class PresenceSweeperTests(unittest.IsolatedAsyncioTestCase):
    async def test_sweeper_is_disabled_without_window(self):
        tracker = PresenceTracker(MemoryStorage(), PresenceConfig())
        tracker.start_sweeper()
        self.assertIsNone(tracker._sweeper_task)
        await tracker.stop_sweeper()

    async def test_sweeper_demotes_in_background(self):
        clock = FakeClock()
        storage = MemoryStorage()
        user = storage.create_user("alice", "h", "Alice", "", clock.now())
        tracker = PresenceTracker(
            storage,
            PresenceConfig(offline_after_seconds=1, sweeper_interval_seconds=0.01),
            now_func=clock.now,
        )
        tracker.login(user.id)
        tracker.start_sweeper()
        try:
            clock.advance(2_000)
            for _ in range(100):
                if not storage.get_user(user.id).is_online:
                    break
                await asyncio.sleep(0.01)
            self.assertFalse(storage.get_user(user.id).is_online)
        finally:
            await tracker.stop_sweeper()
        self.assertIsNone(tracker._sweeper_task)


if __name__ == "__main__":
    unittest.main()
