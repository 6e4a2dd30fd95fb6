import unittest

from dmchat.accounts import Accounts, hash_password, verify_password
from dmchat.errors import NotFoundReference, ValidationError
from dmchat.models import UserSettings
from dmchat.storage import MemoryStorage

FAST_HASH = "pbkdf2:sha256:1000"


class PasswordHashTests(unittest.TestCase):
    def test_hash_is_salted(self):
        first = hash_password("secret", method=FAST_HASH)
        second = hash_password("secret", method=FAST_HASH)
        self.assertNotEqual(first, second)
        self.assertNotIn("secret", first)
        self.assertTrue(first.startswith("pbkdf2:sha256:1000$"))

    def test_default_method_is_scrypt(self):
        self.assertTrue(hash_password("secret").startswith("scrypt:"))

    def test_verify(self):
        encoded = hash_password("secret", method=FAST_HASH)
        self.assertTrue(verify_password("secret", encoded))
        self.assertFalse(verify_password("Secret", encoded))
        self.assertFalse(verify_password("", encoded))

    def test_verify_rejects_malformed_encoding(self):
        self.assertFalse(verify_password("secret", "secret"))
        self.assertFalse(verify_password("secret", "md5$salt$00"))
        self.assertFalse(verify_password("secret", "pbkdf2:sha256:x$salt$00"))


class SettingsMergeTests(unittest.TestCase):
    def test_partial_merge_keeps_unmentioned_keys(self):
        current = UserSettings(dark_mode=False, notifications=True, sound=True, language="en")
        merged = current.merged({"darkMode": True})
        self.assertEqual(merged, UserSettings(dark_mode=True, notifications=True, sound=True, language="en"))
        self.assertFalse(current.dark_mode)

    def test_unknown_keys_are_ignored(self):
        merged = UserSettings().merged({"fontSize": 14, "language": "de"})
        self.assertEqual(merged.to_dict(), {"darkMode": False, "notifications": True, "sound": True, "language": "de"})

    def test_from_dict_fills_defaults(self):
        self.assertEqual(UserSettings.from_dict(None), UserSettings())
        self.assertEqual(UserSettings.from_dict({"sound": False}).sound, False)


class AccountsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.storage = MemoryStorage()
        self.accounts = Accounts(self.storage, now_func=lambda: 1_700_000_000_000)

    def test_register_and_authenticate(self):
        user = self.accounts.register("alice", "pw", "Alice", "a.png")
        self.assertEqual(user.display_name, "Alice")
        self.assertNotEqual(user.password_hash, "pw")
        self.assertEqual(user.last_active_ms, 1_700_000_000_000)

        self.assertEqual(self.accounts.authenticate("alice", "pw").id, user.id)
        self.assertIsNone(self.accounts.authenticate("alice", "wrong"))
        self.assertIsNone(self.accounts.authenticate("ALICE", "pw"))
        self.assertIsNone(self.accounts.authenticate("nobody", "pw"))

    def test_register_validates_fields(self):
        cases = [
            (("", "pw", "A"), "Username is required"),
            (("a", "", "A"), "Password is required"),
            (("a", "pw", ""), "Display name is required"),
        ]
        for args, message in cases:
            with self.subTest(message=message):
                with self.assertRaises(ValidationError) as ctx:
                    self.accounts.register(*args)
                self.assertEqual(ctx.exception.message, message)

    def test_register_rejects_duplicate_username(self):
        self.accounts.register("alice", "pw", "Alice")
        with self.assertRaises(ValidationError):
            self.accounts.register("alice", "other", "Alice Two")

    def test_contacts_exclude_caller(self):
        alice = self.accounts.register("alice", "pw", "Alice")
        bob = self.accounts.register("bob", "pw", "Bob")
        carol = self.accounts.register("carol", "pw", "Carol")
        self.assertEqual([u.id for u in self.accounts.contacts_for(alice.id)], [bob.id, carol.id])

    def test_settings_roundtrip(self):
        alice = self.accounts.register("alice", "pw", "Alice")
        self.assertEqual(self.accounts.get_settings(alice.id), UserSettings())
        updated = self.accounts.update_settings(alice.id, {"darkMode": True})
        self.assertTrue(updated.dark_mode)
        updated = self.accounts.update_settings(alice.id, {"language": "es"})
        self.assertTrue(updated.dark_mode)
        self.assertEqual(updated.language, "es")

    def test_settings_for_unknown_user(self):
        with self.assertRaises(NotFoundReference):
            self.accounts.get_settings(404)


if __name__ == "__main__":
    unittest.main()
