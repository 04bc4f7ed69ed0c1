"""
Pydantic schemas for the murmur API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)
    name: str = Field(..., min_length=1, max_length=100)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    token: str


class TokenResponse(BaseModel):
    token: str


class AccountResponse(BaseModel):
    id: str
    email: str
    name: str
    avatar_url: str = ""
    is_verified: bool
    plan: str
    message_count: int
    active_groups: int
    notify_settings: Dict[str, Any] = Field(default_factory=dict)
    created_at: float


class ProfileUpdateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    avatar_url: Optional[str] = Field(default=None, max_length=255)


class PasswordUpdateRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6, max_length=72)


class StatusResponse(BaseModel):
    message: str


class GroupCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    is_public: bool = False
    settings: Optional[Dict[str, Any]] = None


class GroupUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    is_public: Optional[bool] = None
    settings: Optional[Dict[str, Any]] = None


class GroupResponse(BaseModel):
    id: str
    name: str
    slug: str
    description: str
    is_public: bool
    is_archived: bool
    settings: Dict[str, Any] = Field(default_factory=dict)
    created_at: float


class GroupListResponse(BaseModel):
    groups: List[GroupResponse]


class PublicGroupResponse(BaseModel):
    name: str
    slug: str
    description: str
    icebreakers: List[str]


class SendMessageRequest(BaseModel):
    content: str = Field(..., min_length=1)
    sender_id: Optional[str] = Field(default=None, max_length=255)
    reveal_name: bool = False


class MessageResponse(BaseModel):
    id: str
    content: str
    is_read: bool
    is_favorite: bool
    is_revealed: bool
    sender_id: Optional[str] = None
    created_at: float


class MessageListResponse(BaseModel):
    messages: List[MessageResponse]
    page: int
    page_size: int


class MessageUpdateRequest(BaseModel):
    is_read: Optional[bool] = None
    is_favorite: Optional[bool] = None


class ShareRequest(BaseModel):
    email: EmailStr
    expires_at: Optional[datetime] = None


class GrantResponse(BaseModel):
    id: str
    group_id: str
    email: str
    token: str
    is_active: bool
    expires_at: Optional[float] = None
    created_at: float


class GrantListResponse(BaseModel):
    shared_access: List[GrantResponse]


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    checks: Dict[str, str]

