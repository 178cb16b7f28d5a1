"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException
from starlette.requests import HTTPConnection

from academic_chat.accounts import AccountService
from academic_chat.chat import ChatService
from academic_chat.config import get_settings
from academic_chat.db import DbClient, InMemoryDbClient, PostgresDbClient
from academic_chat.institutions import InstitutionService
from academic_chat.models import User
from academic_chat.presence import PresenceService
from academic_chat.realtime import InMemoryRealtimeHub, RealtimeHub, RedisRealtimeHub
from academic_chat.users import UserService

_db_client: DbClient | None = None
_realtime_hub: RealtimeHub | None = None


def get_realtime_hub() -> RealtimeHub:
    """
    Return a singleton realtime hub so every request publishes to, and every
    websocket listens on, the same feed.
    """
    global _realtime_hub
    if _realtime_hub:
        return _realtime_hub

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _realtime_hub = RedisRealtimeHub(
            url=settings.redis_url,
            channel_prefix=settings.redis_channel_prefix,
        )
    else:
        _realtime_hub = InMemoryRealtimeHub()
    return _realtime_hub


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so documents persist across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    hub = get_realtime_hub()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient(database_id=settings.database_id, publisher=hub)
    else:
        _db_client = PostgresDbClient(
            settings.database_url,
            database_id=settings.database_id,
            publisher=hub,
        )
    return _db_client


def get_account_service(db: DbClient = Depends(get_db_client)) -> AccountService:
    return AccountService(db, get_settings())


def get_chat_service(db: DbClient = Depends(get_db_client)) -> ChatService:
    return ChatService(db, get_settings())


def get_presence_service(db: DbClient = Depends(get_db_client)) -> PresenceService:
    return PresenceService(db, get_settings())


def get_institution_service(
    db: DbClient = Depends(get_db_client),
    chat: ChatService = Depends(get_chat_service),
) -> InstitutionService:
    return InstitutionService(db, get_settings(), chat)


def get_user_service(
    db: DbClient = Depends(get_db_client),
    accounts: AccountService = Depends(get_account_service),
    institutions: InstitutionService = Depends(get_institution_service),
    presence: PresenceService = Depends(get_presence_service),
) -> UserService:
    return UserService(db, get_settings(), accounts, institutions, presence)


def get_session_token(connection: HTTPConnection) -> Optional[str]:
    """Session token from the session cookie, or an `Authorization: Bearer` header."""
    settings = get_settings()
    token = connection.cookies.get(settings.session_cookie_name)
    if token:
        return token
    authorization = connection.headers.get("authorization", "")
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


def get_optional_user(
    token: Optional[str] = Depends(get_session_token),
    users: UserService = Depends(get_user_service),
) -> Optional[User]:
    return users.get_current_user(token)


def require_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def require_approved_user(user: User = Depends(require_user)) -> User:
    if user.is_pending:
        raise HTTPException(status_code=403, detail="Account pending approval")
    return user


def require_admin(user: User = Depends(require_approved_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
