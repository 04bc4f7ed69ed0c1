"""
Error taxonomy for the murmur service.

Every failure a caller can observe is one of these exceptions. The HTTP layer
renders them with the status code and error code they carry.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class MurmurError(Exception):
    """Base exception for the service."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ValidationError(MurmurError):
    """Malformed input. Rejected, never retried."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=400,
            error_code="validation_error",
            details=details,
        )


class UnauthorizedError(MurmurError):
    """Missing, invalid or expired credentials."""

    def __init__(self, message: str = "Invalid or expired token") -> None:
        super().__init__(
            message=message,
            status_code=401,
            error_code="unauthorized",
        )


class PermissionDeniedError(MurmurError):
    """Authenticated, but not the owner of the resource."""

    def __init__(self, message: str = "You don't have permission to access this resource") -> None:
        super().__init__(
            message=message,
            status_code=403,
            error_code="permission_denied",
        )


class GroupArchivedError(MurmurError):
    """The group exists but no longer accepts messages."""

    def __init__(self, message: str = "This group is no longer accepting messages") -> None:
        super().__init__(
            message=message,
            status_code=403,
            error_code="group_archived",
        )


class NotFoundError(MurmurError):
    def __init__(self, message: str = "Not found") -> None:
        super().__init__(
            message=message,
            status_code=404,
            error_code="not_found",
        )


class ConflictError(MurmurError):
    """A unique field (email, slug) is already taken."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=409,
            error_code="conflict",
            details=details,
        )


class QuotaExceededError(MurmurError):
    """The account's plan limit is reached."""

    def __init__(
        self,
        message: str = "Plan limit reached",
        quota_type: str = "groups",
        limit: Optional[int] = None,
    ) -> None:
        details: Dict[str, Any] = {"quota_type": quota_type}
        if limit is not None:
            details["limit"] = limit
        super().__init__(
            message=message,
            status_code=429,
            error_code="quota_exceeded",
            details=details,
        )


class StorageUnavailableError(MurmurError):
    """The storage collaborator failed. Surfaced, not retried."""

    def __init__(self, message: str = "Storage unavailable", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=503,
            error_code="storage_unavailable",
            details=details,
        )
