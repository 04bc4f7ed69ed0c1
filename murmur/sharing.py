"""
Shared access to a group's inbox.

The owner invites someone by email and hands them a bearer token. The token
grants read-only access to the inbox until it is revoked or expires.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Optional

from murmur.db import DbClient, GrantRecord, MessageRecord, new_id
from murmur.errors import NotFoundError, UnauthorizedError, ValidationError
from murmur.groups import GroupService
from murmur.messages import normalize_page

logger = logging.getLogger(__name__)


class SharingService:
    def __init__(self, db: DbClient, groups: Optional[GroupService] = None):
        self.db = db
        self.groups = groups or GroupService(db)

    def create_grant(
        self,
        account_id: str,
        group_id: str,
        email: str,
        expires_at: Optional[float] = None,
    ) -> GrantRecord:
        self.groups.get_owned_group(account_id, group_id)
        now = time.time()
        if expires_at is not None and expires_at <= now:
            raise ValidationError("Expiry must be in the future")
        grant = self.db.create_grant(
            GrantRecord(
                grant_id=new_id(),
                group_id=group_id,
                invited_by=account_id,
                email=(email or "").strip().lower(),
                token=secrets.token_urlsafe(32),
                expires_at=expires_at,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info("Shared group %s with a new grant %s", group_id, grant.grant_id)
        return grant

    def list_grants(self, account_id: str, group_id: str) -> list[GrantRecord]:
        self.groups.get_owned_group(account_id, group_id)
        return self.db.list_grants(group_id)

    def revoke_grant(self, account_id: str, group_id: str, grant_id: str) -> None:
        self.groups.get_owned_group(account_id, group_id)
        grant = self.db.get_grant(grant_id)
        if not grant or grant.group_id != group_id:
            raise NotFoundError("Shared access not found")
        self.db.revoke_grant(grant_id)

    def resolve_grant(self, token: str) -> GrantRecord:
        grant = self.db.get_grant_by_token(token) if token else None
        if not grant:
            raise NotFoundError("Shared access not found")
        if not grant.is_active:
            raise UnauthorizedError("Shared access has been revoked")
        if grant.is_expired():
            raise UnauthorizedError("Shared access has expired")
        return grant

    def shared_messages(
        self, token: str, page: Optional[int] = 1, page_size: Optional[int] = None
    ) -> list[MessageRecord]:
        grant = self.resolve_grant(token)
        page, page_size = normalize_page(page, page_size)
        return self.db.list_messages(grant.group_id, page=page, page_size=page_size)

    def cleanup_expired(self) -> int:
        count = self.db.delete_expired_grants()
        logger.info("Removed %d expired grants", count)
        return count
