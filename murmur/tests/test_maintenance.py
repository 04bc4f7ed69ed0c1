import time
import unittest

from murmur.db import (
    ANONYMIZED_ORIGIN,
    AccountRecord,
    GrantRecord,
    InMemoryDbClient,
    MessageRecord,
    new_id,
)
from murmur.groups import GroupService
from murmur.maintenance import main


class FailingDb(InMemoryDbClient):
    def anonymize_messages_older_than(self, *args, **kwargs):
        raise RuntimeError("connection reset")


class MaintenanceCliTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.owner = new_id()
        self.db.create_account(
            AccountRecord(
                account_id=self.owner,
                email="owner@example.com",
                password_hash="",
                name="Owner",
            )
        )

    def test_anonymize_origins_once(self):
        message = MessageRecord(
            message_id=new_id(),
            group_id="g",
            content="old",
            sender_origin="10.0.0.9",
            created_at=time.time() - 10 * 86400,
        )
        self.db.create_message(message)
        code = main(["--once", "anonymize-origins", "--retention-days", "7"], db=self.db)
        self.assertEqual(code, 0)
        self.assertEqual(self.db.get_message(message.message_id).sender_origin, ANONYMIZED_ORIGIN)

    def test_cleanup_grants_once(self):
        self.db.create_grant(
            GrantRecord(
                grant_id=new_id(),
                group_id="g",
                invited_by=self.owner,
                email="f@example.com",
                token="t",
                expires_at=time.time() - 1,
            )
        )
        self.assertEqual(main(["--once", "cleanup-grants"], db=self.db), 0)
        self.assertEqual(self.db.grants, {})

    def test_unexpected_job_error_is_logged_and_fails(self):
        with self.assertLogs("murmur.maintenance", level="ERROR") as logs:
            code = main(["--once", "anonymize-origins"], db=FailingDb())
        self.assertEqual(code, 1)
        self.assertIn("connection reset", logs.output[0])

    def test_reconcile_counters(self):
        GroupService(self.db).create_group(self.owner, "Inbox")
        self.db.accounts[self.owner].active_group_count = 7
        self.assertEqual(main(["--once", "reconcile-counters"], db=self.db), 0)
        self.assertEqual(self.db.get_account(self.owner).active_group_count, 1)

    def test_reconcile_unknown_account_fails(self):
        code = main(
            ["--once", "reconcile-counters", "--account-id", "missing"], db=self.db
        )
        self.assertEqual(code, 1)

    def test_set_plan(self):
        self.assertEqual(main(["set-plan", self.owner, "premium"], db=self.db), 0)
        self.assertTrue(self.db.get_account(self.owner).is_premium)
        self.assertEqual(main(["set-plan", "missing", "premium"], db=self.db), 1)


if __name__ == "__main__":
    unittest.main()
