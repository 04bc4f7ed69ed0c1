import time
import unittest

from murmur.db import AccountRecord, InMemoryDbClient, new_id
from murmur.errors import (
    NotFoundError,
    PermissionDeniedError,
    UnauthorizedError,
    ValidationError,
)
from murmur.groups import GroupService
from murmur.messages import MessageService
from murmur.sharing import SharingService


def _make_account(db):
    account_id = new_id()
    db.create_account(
        AccountRecord(
            account_id=account_id,
            email=f"{account_id}@example.com",
            password_hash="",
            name="Owner",
        )
    )
    return account_id


class SharingServiceTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.owner = _make_account(self.db)
        self.group = GroupService(self.db).create_group(self.owner, "Team Inbox")
        MessageService(self.db).submit("team-inbox", "first")
        MessageService(self.db).submit("team-inbox", "second")
        self.sharing = SharingService(self.db)

    def test_grant_gives_read_access(self):
        grant = self.sharing.create_grant(
            self.owner, self.group.group_id, "Friend@Example.com"
        )
        self.assertEqual(grant.email, "friend@example.com")
        self.assertTrue(grant.is_active)

        messages = self.sharing.shared_messages(grant.token)
        self.assertEqual([m.content for m in messages], ["second", "first"])

    def test_revoked_grant_is_refused(self):
        grant = self.sharing.create_grant(self.owner, self.group.group_id, "f@example.com")
        self.sharing.revoke_grant(self.owner, self.group.group_id, grant.grant_id)
        with self.assertRaises(UnauthorizedError):
            self.sharing.shared_messages(grant.token)
        listed = self.sharing.list_grants(self.owner, self.group.group_id)
        self.assertFalse(listed[0].is_active)

    def test_expired_grant_is_refused_and_cleaned_up(self):
        grant = self.sharing.create_grant(
            self.owner, self.group.group_id, "f@example.com", expires_at=time.time() + 60
        )
        self.assertTrue(grant.is_usable())
        self.assertFalse(grant.is_usable(now=grant.expires_at))

        # Simulate the clock passing the expiry.
        self.db.grants[grant.grant_id].expires_at = time.time() - 1
        with self.assertRaises(UnauthorizedError):
            self.sharing.resolve_grant(grant.token)

        self.assertEqual(self.sharing.cleanup_expired(), 1)
        with self.assertRaises(NotFoundError):
            self.sharing.resolve_grant(grant.token)

    def test_expiry_must_be_in_future(self):
        with self.assertRaises(ValidationError):
            self.sharing.create_grant(
                self.owner, self.group.group_id, "f@example.com", expires_at=time.time() - 5
            )

    def test_only_owner_can_share(self):
        stranger = _make_account(self.db)
        with self.assertRaises(PermissionDeniedError):
            self.sharing.create_grant(stranger, self.group.group_id, "f@example.com")
        with self.assertRaises(PermissionDeniedError):
            self.sharing.list_grants(stranger, self.group.group_id)

    def test_revoke_checks_group(self):
        other = GroupService(self.db).create_group(self.owner, "Other")
        grant = self.sharing.create_grant(self.owner, self.group.group_id, "f@example.com")
        with self.assertRaises(NotFoundError):
            self.sharing.revoke_grant(self.owner, other.group_id, grant.grant_id)

    def test_unknown_token(self):
        with self.assertRaises(NotFoundError):
            self.sharing.shared_messages("nope")


if __name__ == "__main__":
    unittest.main()
