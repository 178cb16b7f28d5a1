import time
import unittest

from academic_chat.errors import AuthenticationError, ConflictError, ValidationError
from academic_chat.tests.utils import build_services


class AccountServiceTests(unittest.TestCase):
    def setUp(self):
        self.services = build_services()
        self.accounts = self.services.accounts

    def test_create_account_normalizes_email_and_hashes_password(self):
        account = self.accounts.create_account(" Ada@Example.EDU ", "s3cret-pass", "Ada")
        self.assertEqual(account.email, "ada@example.edu")

        stored = self.services.db.get_document("accounts", account.account_id)
        self.assertNotEqual(stored["passwordHash"], "s3cret-pass")
        self.assertTrue(stored["passwordHash"].startswith("$argon2"))

    def test_duplicate_email_rejected(self):
        self.accounts.create_account("ada@example.edu", "s3cret-pass", "Ada")
        with self.assertRaises(ConflictError):
            self.accounts.create_account("ADA@example.edu", "another-pass", "Ada 2")

    def test_short_password_rejected(self):
        with self.assertRaises(ValidationError):
            self.accounts.create_account("ada@example.edu", "short", "Ada")

    def test_session_lifecycle(self):
        account = self.accounts.create_account("ada@example.edu", "s3cret-pass", "Ada")
        session = self.accounts.create_email_password_session("ada@example.edu", "s3cret-pass")
        self.assertEqual(self.accounts.get_account(session.token).account_id, account.account_id)
        self.assertGreater(session.max_age, 0)

        # Only a digest of the token is stored.
        stored_ids = self.services.db.collections["sessions"].keys()
        self.assertNotIn(session.token, stored_ids)

        self.accounts.delete_session(session.token)
        with self.assertRaises(AuthenticationError):
            self.accounts.get_account(session.token)
        # Deleting twice is harmless.
        self.accounts.delete_session(session.token)

    def test_wrong_password_and_unknown_email(self):
        self.accounts.create_account("ada@example.edu", "s3cret-pass", "Ada")
        with self.assertRaises(AuthenticationError):
            self.accounts.create_email_password_session("ada@example.edu", "wrong-pass")
        with self.assertRaises(AuthenticationError):
            self.accounts.create_email_password_session("bob@example.edu", "s3cret-pass")

    def test_expired_session_rejected(self):
        self.accounts.create_account("ada@example.edu", "s3cret-pass", "Ada")
        self.services.settings.session_ttl_seconds = -1
        session = self.accounts.create_email_password_session("ada@example.edu", "s3cret-pass")
        self.assertLess(session.expires_at, time.time())
        with self.assertRaises(AuthenticationError):
            self.accounts.get_account(session.token)

    def test_delete_account_removes_sessions(self):
        account = self.accounts.create_account("ada@example.edu", "s3cret-pass", "Ada")
        session = self.accounts.create_email_password_session("ada@example.edu", "s3cret-pass")
        self.accounts.delete_account(account.account_id)
        self.assertEqual(self.services.db.collections["sessions"], {})
        with self.assertRaises(AuthenticationError):
            self.accounts.get_account(session.token)


if __name__ == "__main__":
    unittest.main()
