"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from murmur.accounts import AccountService
from murmur.config import get_settings
from murmur.db import DbClient, InMemoryDbClient, PostgresDbClient
from murmur.errors import UnauthorizedError
from murmur.groups import GroupService
from murmur.health import RedisProbe
from murmur.messages import MessageService
from murmur.passwords import PasswordHasher
from murmur.sharing import SharingService
from murmur.tokens import TokenClaims, TokenService

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_db_client: DbClient | None = None
_redis_probe: RedisProbe | None = None
_token_service: TokenService | None = None
_password_hasher: PasswordHasher | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        logger.info("Using in-memory storage")
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(
            settings.database_url, connect_timeout=settings.database_connect_timeout
        )
    return _db_client


def get_redis_probe() -> Optional[RedisProbe]:
    global _redis_probe
    if _redis_probe:
        return _redis_probe

    settings = get_settings()
    if settings.redis_url:
        _redis_probe = RedisProbe(url=settings.redis_url)
    return _redis_probe


def get_token_service() -> TokenService:
    global _token_service
    if _token_service:
        return _token_service

    settings = get_settings()
    _token_service = TokenService(
        secret=settings.jwt_secret,
        expiry_minutes=settings.jwt_expiry_minutes,
        issuer=settings.jwt_issuer,
    )
    return _token_service


def get_password_hasher() -> PasswordHasher:
    global _password_hasher
    if _password_hasher:
        return _password_hasher

    _password_hasher = PasswordHasher(rounds=get_settings().bcrypt_rounds)
    return _password_hasher


def get_account_service(
    db: DbClient = Depends(get_db_client),
    hasher: PasswordHasher = Depends(get_password_hasher),
    tokens: TokenService = Depends(get_token_service),
) -> AccountService:
    return AccountService(db, hasher, tokens)


def get_group_service(db: DbClient = Depends(get_db_client)) -> GroupService:
    return GroupService(db)


def get_message_service(db: DbClient = Depends(get_db_client)) -> MessageService:
    settings = get_settings()
    return MessageService(
        db,
        enforce_message_limit=settings.enforce_message_limit,
        max_length=settings.max_message_length,
    )


def get_sharing_service(
    db: DbClient = Depends(get_db_client),
    groups: GroupService = Depends(get_group_service),
) -> SharingService:
    return SharingService(db, groups)


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    tokens: TokenService = Depends(get_token_service),
) -> TokenClaims:
    """Resolve the caller from the ``Authorization: Bearer`` header."""
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Authorization header must be 'Bearer <token>'")
    return tokens.validate_token(credentials.credentials.strip())
