import unittest
from unittest.mock import patch

from academic_chat.tests.utils import build_services
from scripts.seed_institutions import main


class SeedInstitutionsTests(unittest.TestCase):
    def setUp(self):
        self.services = build_services()
        patcher = patch("scripts.seed_institutions.get_db_client", return_value=self.services.db)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_seeds_institutions_and_admin(self):
        exit_code = main(
            [
                "-i", "Northfield University:NFU",
                "-i", "Southgate College:SGC",
                "--admin-email", "root@example.edu",
                "--admin-password", "correct horse battery",
                "--admin-institution", "NFU",
            ]
        )
        self.assertEqual(exit_code, 0)

        codes = sorted(i.code for i in self.services.institutions.list_institutions())
        self.assertEqual(codes, ["NFU", "SGC"])
        self.assertIsNotNone(self.services.chat.get_announcement_group(
            self.services.institutions.get_institution_by_code("SGC").institution_id
        ))

        admin, = self.services.users.get_all_users()
        self.assertEqual(admin.role, "admin")
        self.assertEqual(admin.status, "approved")
        self.assertEqual(self.services.db.collections["sessions"], {})

    def test_rerun_skips_existing(self):
        self.assertEqual(main(["-i", "Northfield University:NFU"]), 0)
        self.assertEqual(main(["-i", "Northfield University:NFU"]), 0)
        self.assertEqual(len(self.services.institutions.list_institutions()), 1)

    def test_admin_with_unknown_institution_fails(self):
        exit_code = main(
            [
                "--admin-email", "root@example.edu",
                "--admin-password", "correct horse battery",
                "--admin-institution", "NOPE",
            ]
        )
        self.assertEqual(exit_code, 1)


if __name__ == "__main__":
    unittest.main()
