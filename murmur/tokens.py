"""
Session token issuing and validation.

Tokens are HS256 JWTs carrying the account id and email. They are stateless:
there is no revocation list, and an expired token cannot be refreshed.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

import jwt

from murmur.errors import UnauthorizedError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


class TokenSubject(Protocol):
    account_id: str
    email: str


@dataclass(frozen=True)
class TokenClaims:
    account_id: str
    email: str
    issued_at: float
    expires_at: float


class TokenService:
    def __init__(
        self,
        secret: str,
        expiry_minutes: int = 60,
        issuer: str = "murmur-api",
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("a signing secret is required")
        self.secret = secret
        self.ttl_seconds = expiry_minutes * 60
        self.issuer = issuer
        self.clock = clock

    def _encode(self, account_id: str, email: str, expires_at: float | None = None) -> str:
        now = self.clock()
        payload = {
            "user_id": account_id,
            "email": email,
            "sub": account_id,
            "iss": self.issuer,
            "iat": now,
            "nbf": now,
            "exp": expires_at if expires_at is not None else now + self.ttl_seconds,
        }
        return jwt.encode(payload, self.secret, algorithm=ALGORITHM)

    def issue_token(self, account: TokenSubject) -> str:
        return self._encode(account.account_id, account.email)

    def validate_token(self, token: str) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[ALGORITHM],
                issuer=self.issuer,
                options={"require": ["exp", "iat", "nbf", "sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise UnauthorizedError("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            logger.info("Rejected token: %s", exc)
            raise UnauthorizedError("Invalid token") from exc

        account_id = payload.get("user_id")
        email = payload.get("email")
        if not isinstance(account_id, str) or not isinstance(email, str):
            raise UnauthorizedError("Invalid token")
        return TokenClaims(
            account_id=account_id,
            email=email,
            issued_at=float(payload["iat"]),
            expires_at=float(payload["exp"]),
        )

    def refresh_token(self, token: str) -> str:
        claims = self.validate_token(token)
        expires_at = self.clock() + self.ttl_seconds
        if expires_at <= claims.expires_at:
            expires_at = claims.expires_at + 0.001
        return self._encode(claims.account_id, claims.email, expires_at)
