"""
HTTP routes for the murmur API.
"""

from __future__ import annotations

from datetime import timezone

from fastapi import APIRouter, Depends, Query, Request

from murmur.accounts import AccountService
from murmur.db import AccountRecord, GrantRecord, GroupRecord, MessageRecord
from murmur.dependencies import (
    get_account_service,
    get_current_principal,
    get_db_client,
    get_group_service,
    get_message_service,
    get_redis_probe,
    get_sharing_service,
)
from murmur.groups import GroupService
from murmur.health import check_health
from murmur.messages import DEFAULT_PAGE_SIZE, MessageService, normalize_page
from murmur.schemas import (
    AccountResponse,
    GrantListResponse,
    GrantResponse,
    GroupCreateRequest,
    GroupListResponse,
    GroupResponse,
    GroupUpdateRequest,
    HealthResponse,
    LoginRequest,
    MessageListResponse,
    MessageResponse,
    MessageUpdateRequest,
    PasswordUpdateRequest,
    ProfileUpdateRequest,
    PublicGroupResponse,
    RefreshRequest,
    RegisterRequest,
    SendMessageRequest,
    ShareRequest,
    StatusResponse,
    TokenResponse,
)
from murmur.sharing import SharingService
from murmur.tokens import TokenClaims

router = APIRouter()


def _account_out(account: AccountRecord) -> AccountResponse:
    return AccountResponse(**account.as_dict())


def _group_out(group: GroupRecord) -> GroupResponse:
    return GroupResponse(**group.as_dict())


def _message_out(message: MessageRecord) -> MessageResponse:
    return MessageResponse(**message.as_dict())


def _grant_out(grant: GrantRecord) -> GrantResponse:
    return GrantResponse(**grant.as_dict())


# auth


@router.post("/auth/register", response_model=AccountResponse, status_code=201)
def register(
    payload: RegisterRequest,
    accounts: AccountService = Depends(get_account_service),
):
    account = accounts.register(payload.email, payload.password, payload.name)
    return _account_out(account)


@router.post("/auth/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    accounts: AccountService = Depends(get_account_service),
):
    return TokenResponse(token=accounts.login(payload.email, payload.password))


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(
    payload: RefreshRequest,
    accounts: AccountService = Depends(get_account_service),
):
    return TokenResponse(token=accounts.refresh(payload.token))


# public


@router.post("/public/send/{slug}", response_model=StatusResponse, status_code=201)
def send_anonymous_message(
    slug: str,
    payload: SendMessageRequest,
    request: Request,
    messages: MessageService = Depends(get_message_service),
):
    origin = request.client.host if request.client else ""
    messages.submit(
        slug,
        payload.content,
        sender_id=payload.sender_id,
        reveal=payload.reveal_name,
        origin=origin,
    )
    return StatusResponse(message="message sent successfully")


@router.get("/public/groups/{slug}", response_model=PublicGroupResponse)
def public_group(slug: str, groups: GroupService = Depends(get_group_service)):
    group = groups.get_public_group(slug)
    return PublicGroupResponse(
        name=group.name,
        slug=group.slug,
        description=group.description,
        icebreakers=group.icebreakers(),
    )


# user


@router.get("/user/profile", response_model=AccountResponse)
def get_profile(
    principal: TokenClaims = Depends(get_current_principal),
    accounts: AccountService = Depends(get_account_service),
):
    return _account_out(accounts.get_account(principal.account_id))


@router.put("/user/profile", response_model=AccountResponse)
def update_profile(
    payload: ProfileUpdateRequest,
    principal: TokenClaims = Depends(get_current_principal),
    accounts: AccountService = Depends(get_account_service),
):
    account = accounts.update_profile(principal.account_id, payload.name, payload.avatar_url)
    return _account_out(account)


@router.put("/user/password", response_model=StatusResponse)
def update_password(
    payload: PasswordUpdateRequest,
    principal: TokenClaims = Depends(get_current_principal),
    accounts: AccountService = Depends(get_account_service),
):
    accounts.change_password(
        principal.account_id, payload.current_password, payload.new_password
    )
    return StatusResponse(message="password updated successfully")


@router.put("/user/notifications", response_model=AccountResponse)
def update_notifications(
    payload: dict,
    principal: TokenClaims = Depends(get_current_principal),
    accounts: AccountService = Depends(get_account_service),
):
    return _account_out(accounts.update_notifications(principal.account_id, payload))


@router.delete("/user", response_model=StatusResponse)
def delete_user(
    principal: TokenClaims = Depends(get_current_principal),
    accounts: AccountService = Depends(get_account_service),
):
    accounts.delete_account(principal.account_id)
    return StatusResponse(message="account deleted successfully")


# groups


@router.get("/groups", response_model=GroupListResponse)
def list_groups(
    include_archived: bool = False,
    principal: TokenClaims = Depends(get_current_principal),
    groups: GroupService = Depends(get_group_service),
):
    records = groups.list_groups(principal.account_id, include_archived=include_archived)
    return GroupListResponse(groups=[_group_out(g) for g in records])


@router.post("/groups", response_model=GroupResponse, status_code=201)
def create_group(
    payload: GroupCreateRequest,
    principal: TokenClaims = Depends(get_current_principal),
    groups: GroupService = Depends(get_group_service),
):
    group = groups.create_group(
        principal.account_id,
        payload.name,
        description=payload.description,
        is_public=payload.is_public,
        settings=payload.settings,
    )
    return _group_out(group)


@router.get("/groups/{group_id}", response_model=GroupResponse)
def get_group(
    group_id: str,
    principal: TokenClaims = Depends(get_current_principal),
    groups: GroupService = Depends(get_group_service),
):
    return _group_out(groups.get_owned_group(principal.account_id, group_id))


@router.put("/groups/{group_id}", response_model=GroupResponse)
def update_group(
    group_id: str,
    payload: GroupUpdateRequest,
    principal: TokenClaims = Depends(get_current_principal),
    groups: GroupService = Depends(get_group_service),
):
    group = groups.update_group(
        principal.account_id,
        group_id,
        name=payload.name,
        description=payload.description,
        is_public=payload.is_public,
        settings=payload.settings,
    )
    return _group_out(group)


@router.delete("/groups/{group_id}", response_model=StatusResponse)
def archive_or_delete_group(
    group_id: str,
    permanent: bool = False,
    principal: TokenClaims = Depends(get_current_principal),
    groups: GroupService = Depends(get_group_service),
):
    """Archive the group, or remove it for good with ``?permanent=true``."""
    if permanent:
        groups.delete_group(principal.account_id, group_id)
        return StatusResponse(message="group deleted successfully")
    groups.archive_group(principal.account_id, group_id)
    return StatusResponse(message="group archived successfully")


@router.post("/groups/{group_id}/unarchive", response_model=StatusResponse)
def unarchive_group(
    group_id: str,
    principal: TokenClaims = Depends(get_current_principal),
    groups: GroupService = Depends(get_group_service),
):
    groups.unarchive_group(principal.account_id, group_id)
    return StatusResponse(message="group unarchived successfully")


# messages


@router.get("/groups/{group_id}/messages", response_model=MessageListResponse)
def list_messages(
    group_id: str,
    page: int = Query(1),
    page_size: int = Query(DEFAULT_PAGE_SIZE),
    principal: TokenClaims = Depends(get_current_principal),
    groups: GroupService = Depends(get_group_service),
    messages: MessageService = Depends(get_message_service),
):
    group = groups.get_owned_group(principal.account_id, group_id)
    page, page_size = normalize_page(page, page_size)
    records = messages.list_messages(group, page=page, page_size=page_size)
    return MessageListResponse(
        messages=[_message_out(m) for m in records], page=page, page_size=page_size
    )


@router.put("/messages/{message_id}", response_model=MessageResponse)
def update_message(
    message_id: str,
    payload: MessageUpdateRequest,
    principal: TokenClaims = Depends(get_current_principal),
    messages: MessageService = Depends(get_message_service),
):
    message = messages.update_message(
        principal.account_id,
        message_id,
        is_read=payload.is_read,
        is_favorite=payload.is_favorite,
    )
    return _message_out(message)


@router.delete("/messages/{message_id}", response_model=StatusResponse)
def delete_message(
    message_id: str,
    principal: TokenClaims = Depends(get_current_principal),
    messages: MessageService = Depends(get_message_service),
):
    messages.delete_message(principal.account_id, message_id)
    return StatusResponse(message="message deleted successfully")


# shared access


@router.post("/groups/{group_id}/share", response_model=GrantResponse, status_code=201)
def create_shared_access(
    group_id: str,
    payload: ShareRequest,
    principal: TokenClaims = Depends(get_current_principal),
    sharing: SharingService = Depends(get_sharing_service),
):
    expires_at = None
    if payload.expires_at is not None:
        value = payload.expires_at
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        expires_at = value.timestamp()
    grant = sharing.create_grant(
        principal.account_id, group_id, payload.email, expires_at=expires_at
    )
    return _grant_out(grant)


@router.get("/groups/{group_id}/shared", response_model=GrantListResponse)
def list_shared_access(
    group_id: str,
    principal: TokenClaims = Depends(get_current_principal),
    sharing: SharingService = Depends(get_sharing_service),
):
    grants = sharing.list_grants(principal.account_id, group_id)
    return GrantListResponse(shared_access=[_grant_out(g) for g in grants])


@router.delete("/groups/{group_id}/share/{share_id}", response_model=StatusResponse)
def revoke_shared_access(
    group_id: str,
    share_id: str,
    principal: TokenClaims = Depends(get_current_principal),
    sharing: SharingService = Depends(get_sharing_service),
):
    sharing.revoke_grant(principal.account_id, group_id, share_id)
    return StatusResponse(message="shared access revoked successfully")


@router.get("/shared/{token}/messages", response_model=MessageListResponse)
def shared_messages(
    token: str,
    page: int = Query(1),
    page_size: int = Query(DEFAULT_PAGE_SIZE),
    sharing: SharingService = Depends(get_sharing_service),
):
    page, page_size = normalize_page(page, page_size)
    records = sharing.shared_messages(token, page=page, page_size=page_size)
    return MessageListResponse(
        messages=[_message_out(m) for m in records], page=page, page_size=page_size
    )


# health


@router.get("/healthz", response_model=HealthResponse)
def healthz():
    return check_health(get_db_client(), get_redis_probe())
