"""
HTTP and websocket routes for the academic chat API.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    Response,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.concurrency import run_in_threadpool

from academic_chat.chat import ChatService
from academic_chat.config import Settings, get_settings
from academic_chat.dependencies import (
    get_chat_service,
    get_institution_service,
    get_optional_user,
    get_presence_service,
    get_realtime_hub,
    get_session_token,
    get_user_service,
    require_admin,
    require_approved_user,
    require_user,
)
from academic_chat.errors import DocumentNotFoundError, NotFoundError, ValidationError
from academic_chat.institutions import InstitutionService
from academic_chat.models import Group, Message, MessageType, User
from academic_chat.presence import PresenceService
from academic_chat.realtime import RealtimeEvent, RealtimeHub, collection_channel
from academic_chat.schemas import (
    AddMemberRequest,
    CreateGroupRequest,
    CreateInstitutionRequest,
    DirectMessageThreadResponse,
    GroupMemberResponse,
    GroupResponse,
    InstitutionResponse,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    SendMessageRequest,
    SessionUserResponse,
    StatusResponse,
    UpdateGroupRequest,
    UpdateMemberRoleRequest,
    UpdateProfileRequest,
    UpdateRoleRequest,
    UserResponse,
)
from academic_chat.users import UserService, landing_path

logger = logging.getLogger(__name__)

router = APIRouter()

# Websocket close code for policy violations (RFC 6455).
WS_POLICY_VIOLATION = 1008


def _set_session_cookie(response: Response, token: str, max_age: int) -> None:
    settings = get_settings()
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=max_age,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
    )


def _session_payload(user: User) -> dict:
    return {"user": user.as_dict(), "landing": landing_path(user)}


def _load_group(
    chat: ChatService, group_id: str, user: User, manage: bool = False
) -> Group:
    group = chat.get_group(group_id)
    if manage:
        if not chat.can_manage_group(user, group):
            raise HTTPException(status_code=403, detail="Group admin access required")
    elif not chat.can_view_group(user, group):
        raise HTTPException(status_code=403, detail="Not a member of this group")
    return group


def _load_user(users: UserService, user_id: str) -> User:
    try:
        return users.get_user(user_id)
    except DocumentNotFoundError:
        raise NotFoundError("User not found")


def _load_message(chat: ChatService, message_id: str, user: User) -> Message:
    message = chat.get_message(message_id)
    if message.type == MessageType.DIRECT.value:
        visible = user.user_id in (message.sender_id, message.recipient_id)
    else:
        visible = chat.can_view_group(user, chat.get_group(message.group_id or ""))
    if not visible:
        raise HTTPException(status_code=404, detail="Message not found")
    return message


@router.get("/health", response_model=StatusResponse)
def health():
    return StatusResponse(status="ok")


# ===== Auth =====


@router.post("/auth/register", response_model=SessionUserResponse, status_code=201)
def register(
    payload: RegisterRequest,
    response: Response,
    token: Optional[str] = Depends(get_session_token),
    users: UserService = Depends(get_user_service),
):
    user, session = users.register_user(
        payload.username,
        payload.email,
        payload.password,
        payload.institution_code,
        current_token=token,
    )
    _set_session_cookie(response, session.token, session.max_age)
    return _session_payload(user)


@router.post("/auth/login", response_model=SessionUserResponse)
def login(
    payload: LoginRequest,
    response: Response,
    token: Optional[str] = Depends(get_session_token),
    users: UserService = Depends(get_user_service),
):
    user, session = users.login_user(payload.email, payload.password, current_token=token)
    _set_session_cookie(response, session.token, session.max_age)
    return _session_payload(user)


@router.post("/auth/logout", response_model=StatusResponse)
def logout(
    response: Response,
    token: Optional[str] = Depends(get_session_token),
    user: Optional[User] = Depends(get_optional_user),
    users: UserService = Depends(get_user_service),
):
    users.logout_user(token, user)
    response.delete_cookie(get_settings().session_cookie_name)
    return StatusResponse(status="ok")


@router.get("/auth/me", response_model=SessionUserResponse)
def me(user: User = Depends(require_user)):
    return _session_payload(user)


@router.patch("/auth/me", response_model=UserResponse)
def update_profile(
    payload: UpdateProfileRequest,
    user: User = Depends(require_user),
    users: UserService = Depends(get_user_service),
):
    return users.update_user_profile(user.user_id, payload.username).as_dict()


# ===== Admin =====


@router.get("/admin/users/pending", response_model=list[UserResponse])
def pending_users(
    _: User = Depends(require_admin),
    users: UserService = Depends(get_user_service),
):
    return [user.as_dict() for user in users.get_pending_users()]


@router.get("/admin/users", response_model=list[UserResponse])
def all_users(
    _: User = Depends(require_admin),
    users: UserService = Depends(get_user_service),
):
    return [user.as_dict() for user in users.get_all_users()]


@router.post("/admin/users/{user_id}/approve", response_model=UserResponse)
def approve_user(
    user_id: str,
    _: User = Depends(require_admin),
    users: UserService = Depends(get_user_service),
):
    return users.approve_user(user_id).as_dict()


@router.patch("/admin/users/{user_id}/role", response_model=UserResponse)
def update_user_role(
    user_id: str,
    payload: UpdateRoleRequest,
    _: User = Depends(require_admin),
    users: UserService = Depends(get_user_service),
):
    return users.update_user_role(user_id, payload.role).as_dict()


@router.delete("/admin/users/{user_id}", response_model=StatusResponse)
def delete_user(
    user_id: str,
    admin: User = Depends(require_admin),
    users: UserService = Depends(get_user_service),
):
    if user_id == admin.user_id:
        raise ValidationError("Admins cannot delete their own account")
    users.delete_user(user_id)
    return StatusResponse(status="ok")


@router.get("/admin/institutions", response_model=list[InstitutionResponse])
def list_institutions(
    _: User = Depends(require_admin),
    institutions: InstitutionService = Depends(get_institution_service),
):
    return [institution.as_dict() for institution in institutions.list_institutions()]


@router.post("/admin/institutions", response_model=InstitutionResponse, status_code=201)
def create_institution(
    payload: CreateInstitutionRequest,
    _: User = Depends(require_admin),
    institutions: InstitutionService = Depends(get_institution_service),
):
    return institutions.create_institution(payload.name, payload.code).as_dict()


# ===== Groups =====


@router.get("/groups", response_model=list[GroupResponse])
def list_groups(
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    return [group.as_dict() for group in chat.get_user_groups(user.user_id)]


@router.post("/groups", response_model=GroupResponse, status_code=201)
def create_group(
    payload: CreateGroupRequest,
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    group = chat.create_group(
        payload.name,
        user.institution_id,
        user.user_id,
        description=payload.description,
        is_private=payload.is_private,
    )
    return group.as_dict()


@router.patch("/groups/{group_id}", response_model=GroupResponse)
def update_group(
    group_id: str,
    payload: UpdateGroupRequest,
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    _load_group(chat, group_id, user, manage=True)
    group = chat.update_group(
        group_id,
        name=payload.name,
        description=payload.description,
        is_private=payload.is_private,
    )
    return group.as_dict()


@router.delete("/groups/{group_id}", response_model=StatusResponse)
def delete_group(
    group_id: str,
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    _load_group(chat, group_id, user, manage=True)
    chat.delete_group(group_id)
    return StatusResponse(status="ok")


@router.get("/groups/{group_id}/messages", response_model=list[MessageResponse])
def group_messages(
    group_id: str,
    limit: Optional[int] = Query(default=None, ge=1, le=200),
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    _load_group(chat, group_id, user)
    messages = chat.get_group_messages(group_id, user.user_id, limit)
    return [message.as_dict() for message in messages]


@router.post(
    "/groups/{group_id}/messages", response_model=MessageResponse, status_code=201
)
def send_group_message(
    group_id: str,
    payload: SendMessageRequest,
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    _load_group(chat, group_id, user)
    message = chat.send_message(
        user.user_id,
        user.username,
        payload.content,
        MessageType.GROUP.value,
        group_id=group_id,
        user_role=user.role,
    )
    return message.as_dict()


@router.get("/groups/{group_id}/members", response_model=list[GroupMemberResponse])
def group_members(
    group_id: str,
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    _load_group(chat, group_id, user)
    return [member.as_dict() for member in chat.get_group_members(group_id)]


@router.post(
    "/groups/{group_id}/members", response_model=GroupMemberResponse, status_code=201
)
def add_group_member(
    group_id: str,
    payload: AddMemberRequest,
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
    users: UserService = Depends(get_user_service),
):
    group = _load_group(chat, group_id, user, manage=True)
    if group.is_announcement:
        raise ValidationError("Announcement groups do not have members")
    target = _load_user(users, payload.user_id)
    if target.is_pending or target.institution_id != group.institution_id:
        raise ValidationError("User cannot be added to this group")
    member = chat.add_group_member(group_id, target.user_id, target.username, payload.role)
    return member.as_dict()


@router.delete("/groups/{group_id}/members/{member_user_id}", response_model=StatusResponse)
def remove_group_member(
    group_id: str,
    member_user_id: str,
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    # Members may always leave; removing someone else needs group admin rights.
    _load_group(chat, group_id, user, manage=member_user_id != user.user_id)
    chat.remove_group_member(group_id, member_user_id)
    return StatusResponse(status="ok")


@router.patch("/groups/{group_id}/members/{member_user_id}", response_model=StatusResponse)
def update_member_role(
    group_id: str,
    member_user_id: str,
    payload: UpdateMemberRoleRequest,
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    _load_group(chat, group_id, user, manage=True)
    chat.update_member_role(group_id, member_user_id, payload.role)
    return StatusResponse(status="ok")


@router.get("/announcements", response_model=GroupResponse)
def announcements(
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    group = chat.get_announcement_group(user.institution_id)
    if group is None:
        raise HTTPException(status_code=404, detail="No announcement group")
    return group.as_dict()


# ===== Direct messages =====


@router.get("/dm/threads", response_model=list[DirectMessageThreadResponse])
def dm_threads(
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    return [thread.as_dict() for thread in chat.get_user_dm_threads(user.user_id)]


@router.get("/dm/{other_user_id}/messages", response_model=list[MessageResponse])
def direct_messages(
    other_user_id: str,
    limit: Optional[int] = Query(default=None, ge=1, le=200),
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    messages = chat.get_direct_messages(user.user_id, other_user_id, user.user_id, limit)
    return [message.as_dict() for message in messages]


@router.post(
    "/dm/{other_user_id}/messages", response_model=MessageResponse, status_code=201
)
def send_direct_message(
    other_user_id: str,
    payload: SendMessageRequest,
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
    users: UserService = Depends(get_user_service),
):
    if other_user_id == user.user_id:
        raise ValidationError("You cannot message yourself")
    recipient = _load_user(users, other_user_id)
    message = chat.send_message(
        user.user_id,
        user.username,
        payload.content,
        MessageType.DIRECT.value,
        recipient_id=recipient.user_id,
        user_role=user.role,
    )
    return message.as_dict()


# ===== Messages =====


@router.post("/messages/{message_id}/read", response_model=StatusResponse)
def mark_read(
    message_id: str,
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    _load_message(chat, message_id, user)
    chat.mark_message_as_read(message_id, user.user_id)
    return StatusResponse(status="ok")


@router.post("/messages/{message_id}/delete-for-me", response_model=StatusResponse)
def delete_for_me(
    message_id: str,
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    _load_message(chat, message_id, user)
    chat.delete_message_for_me(message_id, user.user_id)
    return StatusResponse(status="ok")


@router.post("/messages/{message_id}/delete-for-everyone", response_model=MessageResponse)
def delete_for_everyone(
    message_id: str,
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    _load_message(chat, message_id, user)
    return chat.delete_message_for_everyone(message_id, user.user_id).as_dict()


# ===== Users =====


@router.get("/users", response_model=list[UserResponse])
def institution_users(
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    return [u.as_dict() for u in chat.get_institution_users(user.institution_id)]


@router.get("/users/search", response_model=list[UserResponse])
def search_users(
    q: str = Query(default="", max_length=64),
    user: User = Depends(require_approved_user),
    chat: ChatService = Depends(get_chat_service),
):
    return [u.as_dict() for u in chat.search_users(user.institution_id, q)]


@router.get("/users/{user_id}/status")
def user_status(
    user_id: str,
    _: User = Depends(require_approved_user),
    presence: PresenceService = Depends(get_presence_service),
):
    status = presence.get_user_status(user_id)
    if status is None:
        raise HTTPException(status_code=404, detail="No status for user")
    return status.as_dict()


# ===== Realtime =====


def _channel_allowed(channel: str, settings: Settings, user: User) -> bool:
    collections = {
        settings.messages_collection_id,
        settings.groups_collection_id,
        settings.group_members_collection_id,
        settings.dm_threads_collection_id,
        settings.user_status_collection_id,
    }
    if user.is_admin:
        collections.add(settings.users_collection_id)
    for collection in collections:
        base = collection_channel(settings.database_id, collection)
        if channel == base or channel.startswith(base + "."):
            return True
    return False


def _group_visible(
    group_id: str, user: User, chat: ChatService, group_access: dict[str, bool]
) -> bool:
    if group_id not in group_access:
        try:
            group_access[group_id] = chat.can_view_group(user, chat.get_group(group_id))
        except NotFoundError:
            group_access[group_id] = False
    return group_access[group_id]


def _event_visible(
    event: RealtimeEvent,
    user: User,
    chat: ChatService,
    settings: Settings,
    group_access: dict[str, bool],
) -> bool:
    payload = event.payload
    collection = payload.get("$collectionId")
    if collection == settings.dm_threads_collection_id:
        return user.user_id in (payload.get("participant1Id"), payload.get("participant2Id"))

    if collection == settings.groups_collection_id:
        group = Group.from_document(payload)
        if group.created_by == user.user_id:
            return True
        if event.action == "delete":
            return group_access.pop(group.group_id, False) or user.is_admin
        # Group fields may have changed, so recheck rather than trust the cache.
        group_access[group.group_id] = chat.can_view_group(user, group)
        return group_access[group.group_id]

    if collection == settings.group_members_collection_id:
        group_id = payload.get("groupId") or ""
        if payload.get("userId") == user.user_id:
            # Own membership changed; later group events are rechecked.
            group_access.pop(group_id, None)
            return True
        return _group_visible(group_id, user, chat, group_access)

    if collection != settings.messages_collection_id:
        return True

    message = Message.from_document(payload)
    if message.type == MessageType.DIRECT.value:
        return user.user_id in (message.sender_id, message.recipient_id)
    return _group_visible(message.group_id or "", user, chat, group_access)


@router.websocket("/realtime")
async def realtime_feed(
    websocket: WebSocket,
    channels: list[str] = Query(default=[]),
    user: Optional[User] = Depends(get_optional_user),
    hub: RealtimeHub = Depends(get_realtime_hub),
    chat: ChatService = Depends(get_chat_service),
    presence: PresenceService = Depends(get_presence_service),
):
    """
    Forward store change events for the requested channels until the client
    disconnects. One subscription per connection, torn down on close.
    """
    settings = get_settings()
    if user is None or user.is_pending:
        await websocket.close(code=WS_POLICY_VIOLATION)
        return
    if not channels or not all(_channel_allowed(c, settings, user) for c in channels):
        await websocket.close(code=WS_POLICY_VIOLATION)
        return

    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[RealtimeEvent] = asyncio.Queue()
    group_access: dict[str, bool] = {}

    def on_event(event: RealtimeEvent) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, event)

    unsubscribe = hub.subscribe(channels, on_event)
    await run_in_threadpool(presence.set_user_status, user.user_id, user.username, True)
    logger.info("Realtime subscription opened for %s on %s", user.user_id, channels)

    async def forward_events() -> None:
        while True:
            event = await queue.get()
            visible = await run_in_threadpool(
                _event_visible, event, user, chat, settings, group_access
            )
            if visible:
                await websocket.send_json(event.as_dict())

    async def read_client() -> None:
        while True:
            text = await websocket.receive_text()
            if text.strip().lower() == "ping":
                await websocket.send_text("pong")

    tasks = [asyncio.create_task(forward_events()), asyncio.create_task(read_client())]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("Realtime connection for %s ended: %s", user.user_id, exc)
    finally:
        unsubscribe()
        await run_in_threadpool(presence.set_user_status, user.user_id, user.username, False)
        logger.info("Realtime subscription closed for %s", user.user_id)
