"""
Shared builders for service-level tests.
"""

from __future__ import annotations

from dataclasses import dataclass

from argon2 import PasswordHasher

from academic_chat.accounts import AccountService
from academic_chat.chat import ChatService
from academic_chat.config import Settings
from academic_chat.db import InMemoryDbClient
from academic_chat.institutions import InstitutionService
from academic_chat.models import User
from academic_chat.presence import PresenceService
from academic_chat.realtime import InMemoryRealtimeHub
from academic_chat.users import UserService

# Cheap Argon2 parameters keep the suite fast.
FAST_HASHER = PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


@dataclass
class Services:
    settings: Settings
    hub: InMemoryRealtimeHub
    db: InMemoryDbClient
    accounts: AccountService
    chat: ChatService
    institutions: InstitutionService
    presence: PresenceService
    users: UserService


def build_services() -> Services:
    settings = Settings(use_in_memory_backends=True, _env_file=None)
    hub = InMemoryRealtimeHub()
    db = InMemoryDbClient(database_id=settings.database_id, publisher=hub)
    accounts = AccountService(db, settings, hasher=FAST_HASHER)
    chat = ChatService(db, settings)
    institutions = InstitutionService(db, settings, chat)
    presence = PresenceService(db, settings)
    users = UserService(db, settings, accounts, institutions, presence)
    return Services(settings, hub, db, accounts, chat, institutions, presence, users)


def make_user(
    services: Services,
    username: str,
    institution_code: str = "NFU",
    role: str = "student",
    approved: bool = True,
) -> User:
    """Register a user through the service and optionally approve/promote it."""
    if services.institutions.get_institution_by_code(institution_code) is None:
        services.institutions.create_institution("Northfield University", institution_code)
    user, _ = services.users.register_user(
        username,
        f"{username}@example.edu",
        "correct horse battery",
        institution_code,
    )
    if approved:
        user = services.users.approve_user(user.user_id)
    if role != "student":
        user = services.users.update_user_role(user.user_id, role)
    return user
