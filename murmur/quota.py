"""
Plan-based limits.

Free accounts may keep 3 groups active and receive 50 messages over their
lifetime. Premium accounts are unlimited; a limit of ``None`` means unlimited.
The functions only read the account; callers enforce the result.
"""

from __future__ import annotations

from typing import Optional

from murmur.db import AccountRecord

FREE_GROUP_LIMIT = 3
FREE_MESSAGE_LIMIT = 50


def group_limit(account: AccountRecord) -> Optional[int]:
    if account.is_premium:
        return None
    return FREE_GROUP_LIMIT


def message_limit(account: AccountRecord) -> Optional[int]:
    if account.is_premium:
        return None
    return FREE_MESSAGE_LIMIT


def can_create_group(account: AccountRecord) -> bool:
    limit = group_limit(account)
    return limit is None or account.active_group_count < limit


def can_send_message(account: AccountRecord) -> bool:
    limit = message_limit(account)
    return limit is None or account.message_count < limit
