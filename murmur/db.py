"""
Database abstraction for Postgres and an in-memory test implementation.

Counters on the account row are only ever changed with storage-side atomic
updates. Compound operations that touch a counter and another row (creating,
archiving, unarchiving and deleting a group) run as one unit: a transaction in
the SQL client, a lock in the in-memory client.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from murmur.errors import StorageUnavailableError

logger = logging.getLogger(__name__)

ANONYMIZED_ORIGIN = "anonymized"
PLANS = ("free", "premium")
SLUG_MAX_LENGTH = 100


class SlugTaken(Exception):
    """Raised when an insert hits the unique constraint on the group slug."""

    def __init__(self, slug: str):
        super().__init__(f"slug already in use: {slug}")
        self.slug = slug


class EmailTaken(Exception):
    def __init__(self, email: str):
        super().__init__(f"email already registered: {email}")
        self.email = email


class LimitReached(Exception):
    """Raised when a conditional counter increment finds the limit reached."""

    def __init__(self, account_id: str, limit: Optional[int]):
        super().__init__(f"active group limit {limit} reached for {account_id}")
        self.account_id = account_id
        self.limit = limit


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class AccountRecord:
    account_id: str
    email: str
    password_hash: str
    name: str
    avatar_url: str = ""
    is_verified: bool = False
    plan: str = "free"
    message_count: int = 0
    active_group_count: int = 0
    notify_settings: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    @property
    def is_premium(self) -> bool:
        return self.plan == "premium"

    def as_dict(self) -> dict:
        return {
            "id": self.account_id,
            "email": self.email,
            "name": self.name,
            "avatar_url": self.avatar_url,
            "is_verified": self.is_verified,
            "plan": self.plan,
            "message_count": self.message_count,
            "active_groups": self.active_group_count,
            "notify_settings": self.notify_settings,
            "created_at": self.created_at,
        }


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


@dataclass
class GroupRecord:
    group_id: str
    owner_id: str
    name: str
    slug: str
    description: str = ""
    is_public: bool = False
    is_archived: bool = False
    settings: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    @property
    def is_active(self) -> bool:
        return not self.is_archived

    def icebreakers(self) -> List[str]:
        return _string_list((self.settings or {}).get("icebreakers"))

    def banned_words(self) -> List[str]:
        settings = self.settings or {}
        # Older clients wrote the camelCase key.
        return _string_list(settings.get("banned_words", settings.get("bannedWords")))

    def as_dict(self) -> dict:
        return {
            "id": self.group_id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "is_public": self.is_public,
            "is_archived": self.is_archived,
            "settings": self.settings,
            "created_at": self.created_at,
        }


@dataclass
class MessageRecord:
    message_id: str
    group_id: str
    content: str
    sender_origin: str = ""
    sender_id: Optional[str] = None
    is_read: bool = False
    is_favorite: bool = False
    is_revealed: bool = False
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "id": self.message_id,
            "content": self.content,
            "is_read": self.is_read,
            "is_favorite": self.is_favorite,
            "is_revealed": self.is_revealed,
            "sender_id": self.sender_id,
            "created_at": self.created_at,
        }


@dataclass
class GrantRecord:
    grant_id: str
    group_id: str
    invited_by: str
    email: str
    token: str
    is_active: bool = True
    expires_at: Optional[float] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at

    def is_usable(self, now: Optional[float] = None) -> bool:
        return self.is_active and not self.is_expired(now)

    def as_dict(self) -> dict:
        return {
            "id": self.grant_id,
            "group_id": self.group_id,
            "email": self.email,
            "token": self.token,
            "is_active": self.is_active,
            "expires_at": self.expires_at,
            "created_at": self.created_at,
        }


class DbClient(Protocol):
    """Interface for database access."""

    # accounts
    def get_account(self, account_id: str) -> Optional[AccountRecord]:
        ...

    def get_account_by_email(self, email: str) -> Optional[AccountRecord]:
        ...

    def create_account(self, record: AccountRecord) -> AccountRecord:
        ...

    def save_account(self, record: AccountRecord) -> None:
        """Persist profile fields. Counters and plan are never written here."""
        ...

    def delete_account(self, account_id: str) -> bool:
        ...

    def increment_message_count(self, account_id: str) -> None:
        ...

    def increment_active_groups(
        self, account_id: str, limit: Optional[int] = None
    ) -> bool:
        ...

    def decrement_active_groups(self, account_id: str) -> bool:
        ...

    def reconcile_active_groups(self, account_id: str) -> Optional[int]:
        ...

    def update_plan(self, account_id: str, plan: str) -> bool:
        ...

    def list_account_ids(self) -> List[str]:
        ...

    # groups
    def get_group(self, group_id: str) -> Optional[GroupRecord]:
        ...

    def get_group_by_slug(self, slug: str) -> Optional[GroupRecord]:
        ...

    def list_groups_by_owner(
        self, owner_id: str, include_archived: bool = True
    ) -> list[GroupRecord]:
        ...

    def create_group(
        self, record: GroupRecord, group_limit: Optional[int] = None
    ) -> GroupRecord:
        ...

    def save_group(self, record: GroupRecord) -> None:
        ...

    def set_group_archived(
        self, group_id: str, archived: bool, group_limit: Optional[int] = None
    ) -> bool:
        ...

    def delete_group(self, group_id: str) -> bool:
        ...

    def count_active_groups(self, owner_id: str) -> int:
        ...

    def is_slug_available(self, slug: str) -> bool:
        ...

    # messages
    def create_message(self, record: MessageRecord) -> MessageRecord:
        ...

    def get_message(self, message_id: str) -> Optional[MessageRecord]:
        ...

    def list_messages(
        self, group_id: str, page: int = 1, page_size: int = 20
    ) -> list[MessageRecord]:
        ...

    def save_message(self, record: MessageRecord) -> None:
        ...

    def delete_message(self, message_id: str) -> bool:
        ...

    def anonymize_messages_older_than(self, older_than_seconds: float) -> int:
        ...

    # shared access
    def create_grant(self, record: GrantRecord) -> GrantRecord:
        ...

    def get_grant(self, grant_id: str) -> Optional[GrantRecord]:
        ...

    def get_grant_by_token(self, token: str) -> Optional[GrantRecord]:
        ...

    def list_grants(self, group_id: str) -> list[GrantRecord]:
        ...

    def revoke_grant(self, grant_id: str) -> bool:
        ...

    def delete_expired_grants(self, now: Optional[float] = None) -> int:
        ...

    def ping(self) -> bool:
        ...


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.accounts: Dict[str, AccountRecord] = {}
        self.groups: Dict[str, GroupRecord] = {}
        self.messages: Dict[str, MessageRecord] = {}
        self.grants: Dict[str, GrantRecord] = {}
        self.lock = threading.RLock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self.lock:
            self.accounts.clear()
            self.groups.clear()
            self.messages.clear()
            self.grants.clear()

    def ping(self) -> bool:
        return True

    # accounts

    def get_account(self, account_id: str) -> Optional[AccountRecord]:
        with self.lock:
            return copy.deepcopy(self.accounts.get(account_id))

    def get_account_by_email(self, email: str) -> Optional[AccountRecord]:
        with self.lock:
            for account in self.accounts.values():
                if account.email == email:
                    return copy.deepcopy(account)
        return None

    def create_account(self, record: AccountRecord) -> AccountRecord:
        with self.lock:
            if any(a.email == record.email for a in self.accounts.values()):
                raise EmailTaken(record.email)
            self.accounts[record.account_id] = copy.deepcopy(record)
            return copy.deepcopy(record)

    def save_account(self, record: AccountRecord) -> None:
        with self.lock:
            stored = self.accounts.get(record.account_id)
            if not stored:
                return
            stored.name = record.name
            stored.avatar_url = record.avatar_url
            stored.password_hash = record.password_hash
            stored.is_verified = record.is_verified
            stored.notify_settings = copy.deepcopy(record.notify_settings)
            stored.updated_at = time.time()

    def delete_account(self, account_id: str) -> bool:
        with self.lock:
            if self.accounts.pop(account_id, None) is None:
                return False
            owned = [g.group_id for g in self.groups.values() if g.owner_id == account_id]
            for group_id in owned:
                self._drop_group(group_id)
            return True

    def increment_message_count(self, account_id: str) -> None:
        with self.lock:
            account = self.accounts.get(account_id)
            if account:
                account.message_count += 1

    def increment_active_groups(
        self, account_id: str, limit: Optional[int] = None
    ) -> bool:
        with self.lock:
            account = self.accounts.get(account_id)
            if not account:
                return False
            if limit is not None and account.active_group_count >= limit:
                return False
            account.active_group_count += 1
            account.updated_at = time.time()
            return True

    def decrement_active_groups(self, account_id: str) -> bool:
        with self.lock:
            account = self.accounts.get(account_id)
            if not account or account.active_group_count <= 0:
                return False
            account.active_group_count -= 1
            account.updated_at = time.time()
            return True

    def reconcile_active_groups(self, account_id: str) -> Optional[int]:
        with self.lock:
            account = self.accounts.get(account_id)
            if not account:
                return None
            account.active_group_count = self.count_active_groups(account_id)
            return account.active_group_count

    def update_plan(self, account_id: str, plan: str) -> bool:
        with self.lock:
            account = self.accounts.get(account_id)
            if not account:
                return False
            account.plan = plan
            account.updated_at = time.time()
            return True

    def list_account_ids(self) -> List[str]:
        with self.lock:
            return list(self.accounts)

    # groups

    def get_group(self, group_id: str) -> Optional[GroupRecord]:
        with self.lock:
            return copy.deepcopy(self.groups.get(group_id))

    def get_group_by_slug(self, slug: str) -> Optional[GroupRecord]:
        with self.lock:
            for group in self.groups.values():
                if group.slug == slug:
                    return copy.deepcopy(group)
        return None

    def list_groups_by_owner(
        self, owner_id: str, include_archived: bool = True
    ) -> list[GroupRecord]:
        with self.lock:
            groups = [
                copy.deepcopy(g)
                for g in self.groups.values()
                if g.owner_id == owner_id and (include_archived or g.is_active)
            ]
        return sorted(groups, key=lambda g: g.created_at, reverse=True)

    def create_group(
        self, record: GroupRecord, group_limit: Optional[int] = None
    ) -> GroupRecord:
        with self.lock:
            if not self.is_slug_available(record.slug):
                raise SlugTaken(record.slug)
            if not record.is_archived:
                if not self.increment_active_groups(record.owner_id, group_limit):
                    raise LimitReached(record.owner_id, group_limit)
            self.groups[record.group_id] = copy.deepcopy(record)
            return copy.deepcopy(record)

    def save_group(self, record: GroupRecord) -> None:
        with self.lock:
            stored = self.groups.get(record.group_id)
            if not stored:
                return
            stored.name = record.name
            stored.description = record.description
            stored.is_public = record.is_public
            stored.settings = copy.deepcopy(record.settings)
            stored.updated_at = time.time()

    def set_group_archived(
        self, group_id: str, archived: bool, group_limit: Optional[int] = None
    ) -> bool:
        with self.lock:
            group = self.groups.get(group_id)
            if not group or group.is_archived == archived:
                return False
            if archived:
                self.decrement_active_groups(group.owner_id)
            elif not self.increment_active_groups(group.owner_id, group_limit):
                raise LimitReached(group.owner_id, group_limit)
            group.is_archived = archived
            group.updated_at = time.time()
            return True

    def delete_group(self, group_id: str) -> bool:
        with self.lock:
            group = self.groups.get(group_id)
            if not group:
                return False
            if group.is_active:
                self.decrement_active_groups(group.owner_id)
            self._drop_group(group_id)
            return True

    def _drop_group(self, group_id: str) -> None:
        self.groups.pop(group_id, None)
        for message_id in [m.message_id for m in self.messages.values() if m.group_id == group_id]:
            del self.messages[message_id]
        for grant_id in [g.grant_id for g in self.grants.values() if g.group_id == group_id]:
            del self.grants[grant_id]

    def count_active_groups(self, owner_id: str) -> int:
        with self.lock:
            return sum(
                1 for g in self.groups.values() if g.owner_id == owner_id and g.is_active
            )

    def is_slug_available(self, slug: str) -> bool:
        with self.lock:
            return all(g.slug != slug for g in self.groups.values())

    # messages

    def create_message(self, record: MessageRecord) -> MessageRecord:
        with self.lock:
            self.messages[record.message_id] = copy.deepcopy(record)
            return copy.deepcopy(record)

    def get_message(self, message_id: str) -> Optional[MessageRecord]:
        with self.lock:
            return copy.deepcopy(self.messages.get(message_id))

    def list_messages(
        self, group_id: str, page: int = 1, page_size: int = 20
    ) -> list[MessageRecord]:
        with self.lock:
            matching = [m for m in self.messages.values() if m.group_id == group_id]
        # Newest first; on equal timestamps the later insert wins.
        ordered = sorted(reversed(matching), key=lambda m: m.created_at, reverse=True)
        offset = (page - 1) * page_size
        return [copy.deepcopy(m) for m in ordered[offset : offset + page_size]]

    def save_message(self, record: MessageRecord) -> None:
        with self.lock:
            stored = self.messages.get(record.message_id)
            if not stored:
                return
            stored.is_read = record.is_read
            stored.is_favorite = record.is_favorite
            stored.updated_at = time.time()

    def delete_message(self, message_id: str) -> bool:
        with self.lock:
            return self.messages.pop(message_id, None) is not None

    def anonymize_messages_older_than(self, older_than_seconds: float) -> int:
        cutoff = time.time() - older_than_seconds
        count = 0
        with self.lock:
            for message in self.messages.values():
                if message.created_at < cutoff and message.sender_origin != ANONYMIZED_ORIGIN:
                    message.sender_origin = ANONYMIZED_ORIGIN
                    count += 1
        return count

    # shared access

    def create_grant(self, record: GrantRecord) -> GrantRecord:
        with self.lock:
            self.grants[record.grant_id] = copy.deepcopy(record)
            return copy.deepcopy(record)

    def get_grant(self, grant_id: str) -> Optional[GrantRecord]:
        with self.lock:
            return copy.deepcopy(self.grants.get(grant_id))

    def get_grant_by_token(self, token: str) -> Optional[GrantRecord]:
        with self.lock:
            for grant in self.grants.values():
                if grant.token == token:
                    return copy.deepcopy(grant)
        return None

    def list_grants(self, group_id: str) -> list[GrantRecord]:
        with self.lock:
            grants = [copy.deepcopy(g) for g in self.grants.values() if g.group_id == group_id]
        return sorted(grants, key=lambda g: g.created_at)

    def revoke_grant(self, grant_id: str) -> bool:
        with self.lock:
            grant = self.grants.get(grant_id)
            if not grant:
                return False
            grant.is_active = False
            grant.updated_at = time.time()
            return True

    def delete_expired_grants(self, now: Optional[float] = None) -> int:
        now = now if now is not None else time.time()
        with self.lock:
            expired = [g.grant_id for g in self.grants.values() if g.is_expired(now)]
            for grant_id in expired:
                del self.grants[grant_id]
        return len(expired)


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str, connect_timeout: Optional[int] = None):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        connect_args: Dict[str, Any] = {}
        if connect_timeout and database_url.startswith("postgresql"):
            connect_args["connect_timeout"] = connect_timeout
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
            connect_args=connect_args,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.Session() as session:
                yield session
        except IntegrityError:
            raise
        except DBAPIError as exc:
            logger.error("Storage call failed: %s", exc)
            raise StorageUnavailableError(details={"error": type(exc).__name__}) from exc

    def ping(self) -> bool:
        with self._session() as session:
            session.execute(select(1))
        return True

    # accounts

    def _to_account(self, row: "AccountRow") -> AccountRecord:
        return AccountRecord(
            account_id=row.account_id,
            email=row.email,
            password_hash=row.password_hash,
            name=row.name,
            avatar_url=row.avatar_url or "",
            is_verified=row.is_verified,
            plan=row.plan,
            message_count=row.message_count,
            active_group_count=row.active_group_count,
            notify_settings=row.notify_settings or {},
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def get_account(self, account_id: str) -> Optional[AccountRecord]:
        with self._session() as session:
            row = session.get(AccountRow, account_id)
            return self._to_account(row) if row else None

    def get_account_by_email(self, email: str) -> Optional[AccountRecord]:
        with self._session() as session:
            stmt = select(AccountRow).where(AccountRow.email == email)
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_account(row) if row else None

    def create_account(self, record: AccountRecord) -> AccountRecord:
        with self._session() as session:
            row = AccountRow(
                account_id=record.account_id,
                email=record.email,
                password_hash=record.password_hash,
                name=record.name,
                avatar_url=record.avatar_url,
                is_verified=record.is_verified,
                plan=record.plan,
                message_count=record.message_count,
                active_group_count=record.active_group_count,
                notify_settings=record.notify_settings,
                created_at=record.created_at,
                updated_at=record.updated_at,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise EmailTaken(record.email) from exc
            return self._to_account(row)

    def save_account(self, record: AccountRecord) -> None:
        with self._session() as session:
            session.execute(
                update(AccountRow)
                .where(AccountRow.account_id == record.account_id)
                .values(
                    name=record.name,
                    avatar_url=record.avatar_url,
                    password_hash=record.password_hash,
                    is_verified=record.is_verified,
                    notify_settings=record.notify_settings,
                    updated_at=time.time(),
                )
                .execution_options(synchronize_session=False)
            )
            session.commit()

    def delete_account(self, account_id: str) -> bool:
        with self._session() as session:
            group_ids = (
                session.execute(
                    select(GroupRow.group_id).where(GroupRow.owner_id == account_id)
                )
                .scalars()
                .all()
            )
            if group_ids:
                self._drop_groups(session, list(group_ids))
            result = session.execute(
                delete(AccountRow).where(AccountRow.account_id == account_id)
            )
            session.commit()
            return bool(result.rowcount)

    def _bump_active_groups(
        self, session: Session, account_id: str, limit: Optional[int]
    ) -> bool:
        stmt = update(AccountRow).where(AccountRow.account_id == account_id)
        if limit is not None:
            stmt = stmt.where(AccountRow.active_group_count < limit)
        result = session.execute(
            stmt.values(
                active_group_count=AccountRow.active_group_count + 1,
                updated_at=time.time(),
            ).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _drop_active_groups(self, session: Session, account_id: str) -> bool:
        result = session.execute(
            update(AccountRow)
            .where(
                AccountRow.account_id == account_id,
                AccountRow.active_group_count > 0,
            )
            .values(
                active_group_count=AccountRow.active_group_count - 1,
                updated_at=time.time(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def increment_message_count(self, account_id: str) -> None:
        with self._session() as session:
            session.execute(
                update(AccountRow)
                .where(AccountRow.account_id == account_id)
                .values(message_count=AccountRow.message_count + 1)
                .execution_options(synchronize_session=False)
            )
            session.commit()

    def increment_active_groups(
        self, account_id: str, limit: Optional[int] = None
    ) -> bool:
        with self._session() as session:
            changed = self._bump_active_groups(session, account_id, limit)
            session.commit()
            return changed

    def decrement_active_groups(self, account_id: str) -> bool:
        with self._session() as session:
            changed = self._drop_active_groups(session, account_id)
            session.commit()
            return changed

    def reconcile_active_groups(self, account_id: str) -> Optional[int]:
        with self._session() as session:
            active = (
                select(func.count(GroupRow.group_id))
                .where(
                    GroupRow.owner_id == account_id,
                    GroupRow.is_archived.is_(False),
                )
                .scalar_subquery()
            )
            result = session.execute(
                update(AccountRow)
                .where(AccountRow.account_id == account_id)
                .values(active_group_count=active, updated_at=time.time())
                .execution_options(synchronize_session=False)
            )
            session.commit()
            if not result.rowcount:
                return None
            row = session.get(AccountRow, account_id, populate_existing=True)
            return row.active_group_count if row else None

    def update_plan(self, account_id: str, plan: str) -> bool:
        with self._session() as session:
            result = session.execute(
                update(AccountRow)
                .where(AccountRow.account_id == account_id)
                .values(plan=plan, updated_at=time.time())
                .execution_options(synchronize_session=False)
            )
            session.commit()
            return bool(result.rowcount)

    def list_account_ids(self) -> List[str]:
        with self._session() as session:
            return list(session.execute(select(AccountRow.account_id)).scalars().all())

    # groups

    def _to_group(self, row: "GroupRow") -> GroupRecord:
        return GroupRecord(
            group_id=row.group_id,
            owner_id=row.owner_id,
            name=row.name,
            slug=row.slug,
            description=row.description or "",
            is_public=row.is_public,
            is_archived=row.is_archived,
            settings=row.settings or {},
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def get_group(self, group_id: str) -> Optional[GroupRecord]:
        with self._session() as session:
            row = session.get(GroupRow, group_id)
            return self._to_group(row) if row else None

    def get_group_by_slug(self, slug: str) -> Optional[GroupRecord]:
        with self._session() as session:
            stmt = select(GroupRow).where(GroupRow.slug == slug)
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_group(row) if row else None

    def list_groups_by_owner(
        self, owner_id: str, include_archived: bool = True
    ) -> list[GroupRecord]:
        with self._session() as session:
            stmt = select(GroupRow).where(GroupRow.owner_id == owner_id)
            if not include_archived:
                stmt = stmt.where(GroupRow.is_archived.is_(False))
            rows = session.execute(stmt.order_by(GroupRow.created_at.desc())).scalars().all()
            return [self._to_group(row) for row in rows]

    def create_group(
        self, record: GroupRecord, group_limit: Optional[int] = None
    ) -> GroupRecord:
        with self._session() as session:
            if not record.is_archived:
                if not self._bump_active_groups(session, record.owner_id, group_limit):
                    session.rollback()
                    raise LimitReached(record.owner_id, group_limit)
            row = GroupRow(
                group_id=record.group_id,
                owner_id=record.owner_id,
                name=record.name,
                slug=record.slug,
                description=record.description,
                is_public=record.is_public,
                is_archived=record.is_archived,
                settings=record.settings,
                created_at=record.created_at,
                updated_at=record.updated_at,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                if not self.is_slug_available(record.slug):
                    raise SlugTaken(record.slug) from exc
                raise
            return self._to_group(row)

    def save_group(self, record: GroupRecord) -> None:
        with self._session() as session:
            session.execute(
                update(GroupRow)
                .where(GroupRow.group_id == record.group_id)
                .values(
                    name=record.name,
                    description=record.description,
                    is_public=record.is_public,
                    settings=record.settings,
                    updated_at=time.time(),
                )
                .execution_options(synchronize_session=False)
            )
            session.commit()

    def set_group_archived(
        self, group_id: str, archived: bool, group_limit: Optional[int] = None
    ) -> bool:
        with self._session() as session:
            result = session.execute(
                update(GroupRow)
                .where(GroupRow.group_id == group_id, GroupRow.is_archived.is_(not archived))
                .values(is_archived=archived, updated_at=time.time())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            owner_id = session.execute(
                select(GroupRow.owner_id).where(GroupRow.group_id == group_id)
            ).scalar_one()
            if archived:
                self._drop_active_groups(session, owner_id)
            elif not self._bump_active_groups(session, owner_id, group_limit):
                session.rollback()
                raise LimitReached(owner_id, group_limit)
            session.commit()
            return True

    def delete_group(self, group_id: str) -> bool:
        with self._session() as session:
            # Counter follows the flag of the row as it was deleted.
            removed = session.execute(
                delete(GroupRow)
                .where(GroupRow.group_id == group_id)
                .returning(GroupRow.owner_id, GroupRow.is_archived)
                .execution_options(synchronize_session=False)
            ).first()
            if removed is None:
                session.rollback()
                return False
            if not removed.is_archived:
                self._drop_active_groups(session, removed.owner_id)
            self._drop_groups(session, [group_id])
            session.commit()
            return True

    def _drop_groups(self, session: Session, group_ids: List[str]) -> None:
        session.execute(delete(MessageRow).where(MessageRow.group_id.in_(group_ids)))
        session.execute(
            delete(SharedAccessRow).where(SharedAccessRow.group_id.in_(group_ids))
        )
        session.execute(
            delete(GroupRow)
            .where(GroupRow.group_id.in_(group_ids))
            .execution_options(synchronize_session=False)
        )

    def count_active_groups(self, owner_id: str) -> int:
        with self._session() as session:
            stmt = select(func.count(GroupRow.group_id)).where(
                GroupRow.owner_id == owner_id, GroupRow.is_archived.is_(False)
            )
            return session.execute(stmt).scalar_one()

    def is_slug_available(self, slug: str) -> bool:
        with self._session() as session:
            stmt = select(GroupRow.group_id).where(GroupRow.slug == slug).limit(1)
            return session.execute(stmt).first() is None

    # messages

    def _to_message(self, row: "MessageRow") -> MessageRecord:
        return MessageRecord(
            message_id=row.message_id,
            group_id=row.group_id,
            content=row.content,
            sender_origin=row.sender_origin or "",
            sender_id=row.sender_id,
            is_read=row.is_read,
            is_favorite=row.is_favorite,
            is_revealed=row.is_revealed,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def create_message(self, record: MessageRecord) -> MessageRecord:
        with self._session() as session:
            row = MessageRow(
                message_id=record.message_id,
                group_id=record.group_id,
                content=record.content,
                sender_origin=record.sender_origin,
                sender_id=record.sender_id,
                is_read=record.is_read,
                is_favorite=record.is_favorite,
                is_revealed=record.is_revealed,
                created_at=record.created_at,
                updated_at=record.updated_at,
            )
            session.add(row)
            session.commit()
            return self._to_message(row)

    def get_message(self, message_id: str) -> Optional[MessageRecord]:
        with self._session() as session:
            row = session.get(MessageRow, message_id)
            return self._to_message(row) if row else None

    def list_messages(
        self, group_id: str, page: int = 1, page_size: int = 20
    ) -> list[MessageRecord]:
        with self._session() as session:
            stmt = (
                select(MessageRow)
                .where(MessageRow.group_id == group_id)
                .order_by(MessageRow.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            return [self._to_message(row) for row in session.execute(stmt).scalars().all()]

    def save_message(self, record: MessageRecord) -> None:
        with self._session() as session:
            session.execute(
                update(MessageRow)
                .where(MessageRow.message_id == record.message_id)
                .values(
                    is_read=record.is_read,
                    is_favorite=record.is_favorite,
                    updated_at=time.time(),
                )
                .execution_options(synchronize_session=False)
            )
            session.commit()

    def delete_message(self, message_id: str) -> bool:
        with self._session() as session:
            result = session.execute(
                delete(MessageRow).where(MessageRow.message_id == message_id)
            )
            session.commit()
            return bool(result.rowcount)

    def anonymize_messages_older_than(self, older_than_seconds: float) -> int:
        cutoff = time.time() - older_than_seconds
        with self._session() as session:
            result = session.execute(
                update(MessageRow)
                .where(
                    MessageRow.created_at < cutoff,
                    MessageRow.sender_origin != ANONYMIZED_ORIGIN,
                )
                .values(sender_origin=ANONYMIZED_ORIGIN)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            return result.rowcount or 0

    # shared access

    def _to_grant(self, row: "SharedAccessRow") -> GrantRecord:
        return GrantRecord(
            grant_id=row.grant_id,
            group_id=row.group_id,
            invited_by=row.invited_by,
            email=row.email,
            token=row.token,
            is_active=row.is_active,
            expires_at=row.expires_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def create_grant(self, record: GrantRecord) -> GrantRecord:
        with self._session() as session:
            row = SharedAccessRow(
                grant_id=record.grant_id,
                group_id=record.group_id,
                invited_by=record.invited_by,
                email=record.email,
                token=record.token,
                is_active=record.is_active,
                expires_at=record.expires_at,
                created_at=record.created_at,
                updated_at=record.updated_at,
            )
            session.add(row)
            session.commit()
            return self._to_grant(row)

    def get_grant(self, grant_id: str) -> Optional[GrantRecord]:
        with self._session() as session:
            row = session.get(SharedAccessRow, grant_id)
            return self._to_grant(row) if row else None

    def get_grant_by_token(self, token: str) -> Optional[GrantRecord]:
        with self._session() as session:
            stmt = select(SharedAccessRow).where(SharedAccessRow.token == token)
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_grant(row) if row else None

    def list_grants(self, group_id: str) -> list[GrantRecord]:
        with self._session() as session:
            stmt = (
                select(SharedAccessRow)
                .where(SharedAccessRow.group_id == group_id)
                .order_by(SharedAccessRow.created_at.asc())
            )
            return [self._to_grant(row) for row in session.execute(stmt).scalars().all()]

    def revoke_grant(self, grant_id: str) -> bool:
        with self._session() as session:
            result = session.execute(
                update(SharedAccessRow)
                .where(SharedAccessRow.grant_id == grant_id)
                .values(is_active=False, updated_at=time.time())
                .execution_options(synchronize_session=False)
            )
            session.commit()
            return bool(result.rowcount)

    def delete_expired_grants(self, now: Optional[float] = None) -> int:
        now = now if now is not None else time.time()
        with self._session() as session:
            result = session.execute(
                delete(SharedAccessRow).where(
                    SharedAccessRow.expires_at.is_not(None),
                    SharedAccessRow.expires_at <= now,
                )
            )
            session.commit()
            return result.rowcount or 0


Base = declarative_base()


class AccountRow(Base):
    __tablename__ = "accounts"

    account_id = Column(String(32), primary_key=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    avatar_url = Column(String(255), nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    plan = Column(String(50), nullable=False, default="free")
    message_count = Column(Integer, nullable=False, default=0)
    active_group_count = Column(Integer, nullable=False, default=0)
    notify_settings = Column(JSON, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class GroupRow(Base):
    __tablename__ = "message_groups"

    group_id = Column(String(32), primary_key=True)
    owner_id = Column(String(32), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(SLUG_MAX_LENGTH), nullable=False, unique=True, index=True)
    description = Column(String(500), nullable=True)
    is_public = Column(Boolean, nullable=False, default=False)
    is_archived = Column(Boolean, nullable=False, default=False)
    settings = Column(JSON, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class MessageRow(Base):
    __tablename__ = "messages"

    message_id = Column(String(32), primary_key=True)
    group_id = Column(String(32), nullable=False, index=True)
    content = Column(Text, nullable=False)
    sender_origin = Column(String(50), nullable=True)
    sender_id = Column(String(255), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    is_favorite = Column(Boolean, nullable=False, default=False)
    is_revealed = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False, index=True)
    updated_at = Column(Float, nullable=False)


class SharedAccessRow(Base):
    __tablename__ = "shared_access"

    grant_id = Column(String(32), primary_key=True)
    group_id = Column(String(32), nullable=False, index=True)
    invited_by = Column(String(32), nullable=False)
    email = Column(String(255), nullable=False)
    token = Column(String(100), nullable=False, unique=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)
