"""
Group lifecycle: create, update, archive, unarchive and delete.

A group is either active or archived. Only active groups count toward the
owner's plan quota, so every transition between the two states moves the
owner's ``active_group_count`` in the same storage call that flips the flag.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from murmur import quota
from murmur.db import (
    AccountRecord,
    DbClient,
    GroupRecord,
    LimitReached,
    SlugTaken,
    new_id,
)
from murmur.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    QuotaExceededError,
    ValidationError,
)
from murmur.slugs import SlugAllocator

logger = logging.getLogger(__name__)

MAX_SLUG_ATTEMPTS = 20


def _quota_error(account: AccountRecord) -> QuotaExceededError:
    limit = quota.group_limit(account)
    return QuotaExceededError(
        "User has reached the maximum number of active groups",
        quota_type="groups",
        limit=limit,
    )


def _clean_settings(settings: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if settings is None:
        return {}
    if not isinstance(settings, dict):
        raise ValidationError("settings must be an object")
    for key in ("icebreakers", "banned_words"):
        value = settings.get(key)
        if value is not None and (
            not isinstance(value, list) or not all(isinstance(v, str) for v in value)
        ):
            raise ValidationError(f"settings.{key} must be a list of strings")
    return dict(settings)


class GroupService:
    def __init__(self, db: DbClient, slugs: Optional[SlugAllocator] = None):
        self.db = db
        self.slugs = slugs or SlugAllocator(db)

    def _account(self, account_id: str) -> AccountRecord:
        account = self.db.get_account(account_id)
        if not account:
            raise NotFoundError("User not found")
        return account

    def get_owned_group(self, account_id: str, group_id: str) -> GroupRecord:
        group = self.db.get_group(group_id)
        if not group:
            raise NotFoundError("Group not found")
        if group.owner_id != account_id:
            raise PermissionDeniedError("You don't have permission to access this group")
        return group

    def list_groups(self, account_id: str, include_archived: bool = False) -> list[GroupRecord]:
        return self.db.list_groups_by_owner(account_id, include_archived=include_archived)

    def get_public_group(self, slug: str) -> GroupRecord:
        group = self.db.get_group_by_slug(slug)
        if not group or group.is_archived:
            raise NotFoundError("Group not found")
        return group

    def create_group(
        self,
        account_id: str,
        name: str,
        description: str = "",
        is_public: bool = False,
        settings: Optional[Dict[str, Any]] = None,
    ) -> GroupRecord:
        account = self._account(account_id)
        if not quota.can_create_group(account):
            raise _quota_error(account)

        name = (name or "").strip()
        if not name:
            raise ValidationError("Group name is required")
        settings = _clean_settings(settings)

        lost: set[str] = set()
        for _ in range(MAX_SLUG_ATTEMPTS):
            slug = self.slugs.allocate(name, skip=lost)
            now = time.time()
            record = GroupRecord(
                group_id=new_id(),
                owner_id=account.account_id,
                name=name,
                slug=slug,
                description=description or "",
                is_public=is_public,
                settings=settings,
                created_at=now,
                updated_at=now,
            )
            try:
                group = self.db.create_group(record, group_limit=quota.group_limit(account))
            except LimitReached:
                raise _quota_error(account)
            except SlugTaken:
                logger.info("Slug %s taken at insert, retrying", slug)
                lost.add(slug)
                continue
            logger.info("Created group %s (%s) for %s", group.group_id, group.slug, account_id)
            return group

        raise ConflictError("Could not allocate a unique slug", details={"name": name})

    def update_group(
        self,
        account_id: str,
        group_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_public: Optional[bool] = None,
        settings: Optional[Dict[str, Any]] = None,
    ) -> GroupRecord:
        group = self.get_owned_group(account_id, group_id)
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Group name is required")
            group.name = name
        if description is not None:
            group.description = description
        if is_public is not None:
            group.is_public = is_public
        if settings is not None:
            group.settings = _clean_settings(settings)
        self.db.save_group(group)
        return group

    def archive_group(self, account_id: str, group_id: str) -> GroupRecord:
        group = self.get_owned_group(account_id, group_id)
        if group.is_archived:
            return group
        if self.db.set_group_archived(group_id, True):
            logger.info("Archived group %s", group_id)
        group.is_archived = True
        return group

    def unarchive_group(self, account_id: str, group_id: str) -> GroupRecord:
        group = self.get_owned_group(account_id, group_id)
        if group.is_active:
            return group
        account = self._account(account_id)
        if not quota.can_create_group(account):
            raise _quota_error(account)
        try:
            if self.db.set_group_archived(
                group_id, False, group_limit=quota.group_limit(account)
            ):
                logger.info("Unarchived group %s", group_id)
        except LimitReached:
            raise _quota_error(account)
        group.is_archived = False
        return group

    def delete_group(self, account_id: str, group_id: str) -> None:
        self.get_owned_group(account_id, group_id)
        if not self.db.delete_group(group_id):
            raise NotFoundError("Group not found")
        logger.info("Deleted group %s", group_id)
