"""
Anonymous message intake and owner-side moderation.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Optional

from murmur import quota
from murmur.db import DbClient, GroupRecord, MessageRecord, new_id
from murmur.errors import (
    GroupArchivedError,
    NotFoundError,
    PermissionDeniedError,
    QuotaExceededError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def normalize_page(page: Optional[int], page_size: Optional[int]) -> tuple[int, int]:
    page = page or 1
    page_size = page_size or DEFAULT_PAGE_SIZE
    if page < 1:
        page = 1
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        page_size = DEFAULT_PAGE_SIZE
    return page, page_size


def find_banned_word(content: str, banned_words: list[str]) -> Optional[str]:
    lowered = content.lower()
    for word in banned_words:
        word = word.strip().lower()
        if word and re.search(rf"(?<!\w){re.escape(word)}(?!\w)", lowered):
            return word
    return None


class MessageService:
    def __init__(
        self,
        db: DbClient,
        enforce_message_limit: bool = False,
        max_length: int = 2000,
    ):
        self.db = db
        self.enforce_message_limit = enforce_message_limit
        self.max_length = max_length

    def submit(
        self,
        slug: str,
        content: str,
        sender_id: Optional[str] = None,
        reveal: bool = False,
        origin: str = "",
    ) -> MessageRecord:
        group = self.db.get_group_by_slug(slug) if slug else None
        if not group:
            raise NotFoundError("Group not found")
        if group.is_archived:
            raise GroupArchivedError()

        content = (content or "").strip()
        if not content:
            raise ValidationError("Message content is required")
        if len(content) > self.max_length:
            raise ValidationError(
                "Message is too long", details={"max_length": self.max_length}
            )
        if find_banned_word(content, group.banned_words()):
            raise ValidationError("Message contains words not allowed in this group")

        if self.enforce_message_limit:
            owner = self.db.get_account(group.owner_id)
            if owner and not quota.can_send_message(owner):
                raise QuotaExceededError(
                    "This inbox has reached its message limit",
                    quota_type="messages",
                    limit=quota.message_limit(owner),
                )

        sender_id = (sender_id or "").strip() or None
        revealed = bool(reveal and sender_id)
        now = time.time()
        message = self.db.create_message(
            MessageRecord(
                message_id=new_id(),
                group_id=group.group_id,
                content=content,
                sender_origin=origin or "",
                sender_id=sender_id if revealed else None,
                is_revealed=revealed,
                created_at=now,
                updated_at=now,
            )
        )

        try:
            self.db.increment_message_count(group.owner_id)
        except Exception:
            # The message is stored; a lost increment is not recounted.
            logger.exception("Failed to increment message count for %s", group.owner_id)

        return message

    def _owned_message(self, account_id: str, message_id: str) -> MessageRecord:
        message = self.db.get_message(message_id)
        if not message:
            raise NotFoundError("Message not found")
        group = self.db.get_group(message.group_id)
        if not group or group.owner_id != account_id:
            raise PermissionDeniedError("You don't have permission to access this message")
        return message

    def list_messages(
        self,
        group: GroupRecord,
        page: Optional[int] = 1,
        page_size: Optional[int] = DEFAULT_PAGE_SIZE,
    ) -> list[MessageRecord]:
        page, page_size = normalize_page(page, page_size)
        return self.db.list_messages(group.group_id, page=page, page_size=page_size)

    def update_message(
        self,
        account_id: str,
        message_id: str,
        is_read: Optional[bool] = None,
        is_favorite: Optional[bool] = None,
    ) -> MessageRecord:
        message = self._owned_message(account_id, message_id)
        if is_read is not None:
            message.is_read = is_read
        if is_favorite is not None:
            message.is_favorite = is_favorite
        self.db.save_message(message)
        return message

    def delete_message(self, account_id: str, message_id: str) -> None:
        self._owned_message(account_id, message_id)
        self.db.delete_message(message_id)

    def anonymize_origins(self, retention_days: int) -> int:
        count = self.db.anonymize_messages_older_than(retention_days * 86400)
        logger.info("Anonymized origins on %d messages", count)
        return count
