"""
One-way password hashing.
"""

from __future__ import annotations

from passlib.context import CryptContext


class PasswordHasher:
    """Thin wrapper around a bcrypt ``CryptContext``."""

    def __init__(self, rounds: int = 12):
        self.context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__default_rounds=rounds,
        )

    def hash(self, password: str) -> str:
        return self.context.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        if not password_hash:
            return False
        try:
            return self.context.verify(password, password_hash)
        except ValueError:
            # Unrecognised or corrupt hash in storage.
            return False
