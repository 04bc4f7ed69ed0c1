import os
import tempfile
import time
import unittest

from sqlalchemy import event

from murmur.db import (
    AccountRecord,
    EmailTaken,
    GrantRecord,
    GroupRecord,
    LimitReached,
    MessageRecord,
    PostgresDbClient,
    SlugTaken,
    new_id,
)


class PostgresDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    def setUp(self):
        self.db = PostgresDbClient("sqlite+pysqlite:///:memory:")
        self.owner = self._account()

    def _account(self, plan="free"):
        record = AccountRecord(
            account_id=new_id(),
            email=f"{new_id()}@example.com",
            password_hash="hash",
            name="Owner",
            plan=plan,
        )
        return self.db.create_account(record).account_id

    def _group(self, slug, archived=False):
        return GroupRecord(
            group_id=new_id(),
            owner_id=self.owner,
            name=slug,
            slug=slug,
            is_archived=archived,
        )

    def test_ping(self):
        self.assertTrue(self.db.ping())

    def test_account_roundtrip_and_unique_email(self):
        account = self.db.get_account(self.owner)
        self.assertEqual(account.plan, "free")
        self.assertEqual(self.db.get_account_by_email(account.email).account_id, self.owner)

        duplicate = AccountRecord(
            account_id=new_id(), email=account.email, password_hash="", name="Dup"
        )
        with self.assertRaises(EmailTaken):
            self.db.create_account(duplicate)
        self.assertEqual(self.db.list_account_ids(), [self.owner])

    def test_save_account_leaves_counters_alone(self):
        self.db.create_group(self._group("inbox"), group_limit=3)
        account = self.db.get_account(self.owner)
        account.active_group_count = 0
        account.message_count = 99
        account.plan = "premium"
        account.name = "Renamed"
        account.notify_settings = {"push": True}
        self.db.save_account(account)

        stored = self.db.get_account(self.owner)
        self.assertEqual(stored.name, "Renamed")
        self.assertEqual(stored.notify_settings, {"push": True})
        self.assertEqual(stored.active_group_count, 1)
        self.assertEqual(stored.message_count, 0)
        self.assertEqual(stored.plan, "free")

    def test_create_group_bumps_counter_atomically(self):
        for slug in ("a", "b", "c"):
            self.db.create_group(self._group(slug), group_limit=3)
        with self.assertRaises(LimitReached):
            self.db.create_group(self._group("d"), group_limit=3)
        self.assertIsNone(self.db.get_group_by_slug("d"))
        self.assertEqual(self.db.get_account(self.owner).active_group_count, 3)
        self.assertEqual(self.db.count_active_groups(self.owner), 3)

    def test_duplicate_slug_raises_slug_taken(self):
        self.db.create_group(self._group("taken"), group_limit=3)
        with self.assertRaises(SlugTaken):
            self.db.create_group(self._group("taken"), group_limit=3)
        # The failed insert must not leave the counter bumped.
        self.assertEqual(self.db.get_account(self.owner).active_group_count, 1)
        self.assertFalse(self.db.is_slug_available("taken"))
        self.assertTrue(self.db.is_slug_available("free-slug"))

    def test_set_group_archived_is_conditional(self):
        group = self.db.create_group(self._group("inbox"), group_limit=3)
        self.assertTrue(self.db.set_group_archived(group.group_id, True))
        self.assertFalse(self.db.set_group_archived(group.group_id, True))
        self.assertEqual(self.db.get_account(self.owner).active_group_count, 0)

        for slug in ("a", "b", "c"):
            self.db.create_group(self._group(slug), group_limit=3)
        with self.assertRaises(LimitReached):
            self.db.set_group_archived(group.group_id, False, group_limit=3)
        self.assertTrue(self.db.get_group(group.group_id).is_archived)
        self.assertFalse(self.db.set_group_archived("missing", True))

    def test_counter_never_goes_negative(self):
        self.assertFalse(self.db.decrement_active_groups(self.owner))
        self.assertTrue(self.db.increment_active_groups(self.owner))
        self.assertTrue(self.db.decrement_active_groups(self.owner))
        self.assertEqual(self.db.get_account(self.owner).active_group_count, 0)

    def test_messages_pagination_and_delete(self):
        group = self.db.create_group(self._group("inbox"), group_limit=3)
        now = time.time()
        for index in range(3):
            self.db.create_message(
                MessageRecord(
                    message_id=new_id(),
                    group_id=group.group_id,
                    content=f"m{index}",
                    created_at=now + index,
                    updated_at=now + index,
                )
            )
        first_page = self.db.list_messages(group.group_id, page=1, page_size=2)
        self.assertEqual([m.content for m in first_page], ["m2", "m1"])

        message = first_page[0]
        message.is_favorite = True
        message.content = "edited"
        self.db.save_message(message)
        stored = self.db.get_message(message.message_id)
        self.assertTrue(stored.is_favorite)
        self.assertEqual(stored.content, "m2")

        self.assertTrue(self.db.delete_message(message.message_id))
        self.assertFalse(self.db.delete_message(message.message_id))

    def test_grants(self):
        group = self.db.create_group(self._group("inbox"), group_limit=3)
        now = time.time()
        live = self.db.create_grant(
            GrantRecord(
                grant_id=new_id(),
                group_id=group.group_id,
                invited_by=self.owner,
                email="f@example.com",
                token="live-token",
                expires_at=now + 3600,
            )
        )
        self.db.create_grant(
            GrantRecord(
                grant_id=new_id(),
                group_id=group.group_id,
                invited_by=self.owner,
                email="g@example.com",
                token="old-token",
                expires_at=now - 1,
            )
        )
        self.assertEqual(self.db.get_grant_by_token("live-token").grant_id, live.grant_id)
        self.assertEqual(len(self.db.list_grants(group.group_id)), 2)

        self.assertTrue(self.db.revoke_grant(live.grant_id))
        self.assertFalse(self.db.get_grant(live.grant_id).is_active)
        self.assertEqual(self.db.delete_expired_grants(), 1)
        self.assertIsNone(self.db.get_grant_by_token("old-token"))

    def test_delete_account_cascades(self):
        group = self.db.create_group(self._group("inbox"), group_limit=3)
        self.db.create_message(
            MessageRecord(message_id=new_id(), group_id=group.group_id, content="hi")
        )
        self.assertTrue(self.db.delete_account(self.owner))
        self.assertIsNone(self.db.get_group(group.group_id))
        self.assertEqual(self.db.list_messages(group.group_id), [])
        self.assertFalse(self.db.delete_account(self.owner))

    def test_update_plan(self):
        self.assertTrue(self.db.update_plan(self.owner, "premium"))
        self.assertTrue(self.db.get_account(self.owner).is_premium)
        self.assertFalse(self.db.update_plan("missing", "premium"))


class SharedFileDbTests(unittest.TestCase):
    """Two clients on one SQLite file, standing in for two API workers."""

    def setUp(self):
        handle, self.path = tempfile.mkstemp(suffix=".db")
        os.close(handle)
        url = f"sqlite+pysqlite:///{self.path}"
        self.first = PostgresDbClient(url)
        self.second = PostgresDbClient(url)
        self.owner = new_id()
        self.first.create_account(
            AccountRecord(
                account_id=self.owner,
                email="owner@example.com",
                password_hash="",
                name="Owner",
            )
        )

    def tearDown(self):
        self.first.engine.dispose()
        self.second.engine.dispose()
        os.remove(self.path)

    def _create(self, client, slug):
        return client.create_group(
            GroupRecord(group_id=new_id(), owner_id=self.owner, name=slug, slug=slug),
            group_limit=3,
        )

    def _assert_counter_matches(self):
        counter = self.first.get_account(self.owner).active_group_count
        self.assertEqual(counter, self.first.count_active_groups(self.owner))
        self.assertLessEqual(counter, 3)

    def test_archive_landing_mid_delete_is_not_counted_twice(self):
        one = self._create(self.first, "one")
        self._create(self.first, "two")
        self._create(self.first, "three")

        fired = []

        def archive_from_second_worker(conn, cursor, statement, parameters, context, executemany):
            if fired or not statement.lstrip().upper().startswith(("UPDATE", "DELETE")):
                return
            fired.append(statement)
            self.assertTrue(self.second.set_group_archived(one.group_id, True))

        event.listen(self.first.engine, "before_cursor_execute", archive_from_second_worker)
        try:
            self.assertTrue(self.first.delete_group(one.group_id))
        finally:
            event.remove(self.first.engine, "before_cursor_execute", archive_from_second_worker)

        self.assertEqual(len(fired), 1)
        self._assert_counter_matches()
        self.assertEqual(self.first.get_account(self.owner).active_group_count, 2)

        self._create(self.second, "four")
        with self.assertRaises(LimitReached):
            self._create(self.first, "five")
        self._assert_counter_matches()


if __name__ == "__main__":
    unittest.main()
