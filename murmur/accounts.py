"""
Account registration, login and profile management.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from murmur.db import PLANS, AccountRecord, DbClient, EmailTaken, new_id
from murmur.errors import (
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from murmur.passwords import PasswordHasher
from murmur.tokens import TokenService

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def _check_password(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )


class AccountService:
    def __init__(self, db: DbClient, hasher: PasswordHasher, tokens: TokenService):
        self.db = db
        self.hasher = hasher
        self.tokens = tokens

    def get_account(self, account_id: str) -> AccountRecord:
        account = self.db.get_account(account_id)
        if not account:
            raise NotFoundError("User not found")
        return account

    def register(self, email: str, password: str, name: str) -> AccountRecord:
        email = (email or "").strip().lower()
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")
        _check_password(password)
        if self.db.get_account_by_email(email):
            raise ConflictError("User with this email already exists")

        now = time.time()
        record = AccountRecord(
            account_id=new_id(),
            email=email,
            password_hash=self.hasher.hash(password),
            name=name,
            created_at=now,
            updated_at=now,
        )
        try:
            account = self.db.create_account(record)
        except EmailTaken:
            raise ConflictError("User with this email already exists")
        logger.info("Registered account %s", account.account_id)
        return account

    def login(self, email: str, password: str) -> str:
        account = self.db.get_account_by_email((email or "").strip().lower())
        if not account or not self.hasher.verify(password, account.password_hash):
            raise UnauthorizedError("Invalid email or password")
        return self.tokens.issue_token(account)

    def refresh(self, token: str) -> str:
        return self.tokens.refresh_token(token)

    def update_profile(
        self, account_id: str, name: str, avatar_url: Optional[str] = None
    ) -> AccountRecord:
        account = self.get_account(account_id)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")
        account.name = name
        if avatar_url is not None:
            account.avatar_url = avatar_url
        self.db.save_account(account)
        return account

    def change_password(
        self, account_id: str, current_password: str, new_password: str
    ) -> None:
        account = self.get_account(account_id)
        if not self.hasher.verify(current_password, account.password_hash):
            raise ValidationError("Current password is incorrect")
        _check_password(new_password)
        account.password_hash = self.hasher.hash(new_password)
        self.db.save_account(account)

    def update_notifications(
        self, account_id: str, notify_settings: Dict[str, Any]
    ) -> AccountRecord:
        if not isinstance(notify_settings, dict):
            raise ValidationError("Notification settings must be an object")
        account = self.get_account(account_id)
        account.notify_settings = dict(notify_settings)
        self.db.save_account(account)
        return account

    def update_plan(self, account_id: str, plan: str) -> AccountRecord:
        if plan not in PLANS:
            raise ValidationError("Invalid plan", details={"allowed": list(PLANS)})
        if not self.db.update_plan(account_id, plan):
            raise NotFoundError("User not found")
        logger.info("Account %s moved to plan %s", account_id, plan)
        return self.get_account(account_id)

    def verify(self, account_id: str) -> AccountRecord:
        account = self.get_account(account_id)
        account.is_verified = True
        self.db.save_account(account)
        return account

    def delete_account(self, account_id: str) -> None:
        if not self.db.delete_account(account_id):
            raise NotFoundError("User not found")
        logger.info("Deleted account %s", account_id)

    def reconcile_counters(self, account_id: str) -> int:
        """Recompute ``active_group_count`` from the stored groups."""
        count = self.db.reconcile_active_groups(account_id)
        if count is None:
            raise NotFoundError("User not found")
        return count
