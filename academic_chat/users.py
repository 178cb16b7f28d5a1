"""
User registration, login, approval and administration.

User documents live in the users collection and are linked to their
credentials account by email. New users start as `student` / `pending` and
must be approved by an admin before they can use the chat.
"""

from __future__ import annotations

import logging
from typing import Optional

from academic_chat.accounts import Account, AccountService, AccountSession
from academic_chat.config import INSTITUTION_NAME_MAX_LENGTH, USERNAME_MIN_LENGTH, Settings
from academic_chat.db import DbClient, utc_now_iso
from academic_chat.errors import (
    AuthenticationError,
    ServiceError,
    StoreError,
    ValidationError,
)
from academic_chat.institutions import InstitutionService
from academic_chat.models import User, UserApprovalStatus, UserRole
from academic_chat.presence import PresenceService
from academic_chat.query import equal, order_desc

logger = logging.getLogger(__name__)

PENDING_PATH = "/pending"
ADMIN_PATH = "/admin"
DASHBOARD_PATH = "/dashboard"
LOGIN_PATH = "/login"


def landing_path(user: Optional[User]) -> str:
    """Where a user lands after login, registration or visiting the index."""
    if user is None:
        return LOGIN_PATH
    if user.is_pending:
        return PENDING_PATH
    if user.is_admin:
        return ADMIN_PATH
    return DASHBOARD_PATH


class UserService:
    def __init__(
        self,
        db: DbClient,
        settings: Settings,
        accounts: AccountService,
        institutions: InstitutionService,
        presence: PresenceService,
    ):
        self.db = db
        self.settings = settings
        self.accounts = accounts
        self.institutions = institutions
        self.presence = presence

    @property
    def _users(self) -> str:
        return self.settings.users_collection_id

    def _find_user_by_email(self, email: str) -> Optional[User]:
        result = self.db.list_documents(self._users, [equal("email", email)])
        if not result.documents:
            return None
        return User.from_document(result.documents[0])

    def register_user(
        self,
        username: str,
        email: str,
        password: str,
        institution_code: str,
        current_token: Optional[str] = None,
    ) -> tuple[User, AccountSession]:
        account: Optional[Account] = None
        try:
            institution = self.institutions.get_institution_by_code(institution_code)
            if institution is None:
                raise ValidationError("Invalid institution code")

            self.accounts.delete_session(current_token)
            account = self.accounts.create_account(email, password, username)
            session = self.accounts.create_email_password_session(email, password)

            timestamp = utc_now_iso()
            user_doc = self.db.create_document(
                self._users,
                {
                    "username": username,
                    "email": account.email,
                    "role": UserRole.STUDENT.value,
                    "status": UserApprovalStatus.PENDING.value,
                    "createdAt": timestamp,
                    "lastLogin": timestamp,
                    "institutionId": institution.institution_id,
                    "institutionName": institution.institution_name[
                        :INSTITUTION_NAME_MAX_LENGTH
                    ],
                },
            )
        except (StoreError, ServiceError, ValueError):
            logger.exception("Registration error")
            if account is not None:
                self._discard_account(account)
            raise ServiceError("Registration failed")

        user = User.from_document(user_doc)
        logger.info("Registered user %s (pending approval)", user.user_id)
        return user, session

    def _discard_account(self, account: Account) -> None:
        try:
            self.accounts.delete_account(account.account_id)
        except StoreError:
            logger.exception("Failed to discard account %s", account.account_id)

    def login_user(
        self, email: str, password: str, current_token: Optional[str] = None
    ) -> tuple[User, AccountSession]:
        try:
            self.accounts.delete_session(current_token)
            session = self.accounts.create_email_password_session(email, password)
            account = self.accounts.get_account(session.token)
            user = self._find_user_by_email(account.email)
            if user is None:
                self.accounts.delete_session(session.token)
                raise AuthenticationError("User document not found")
            updated = self.db.update_document(
                self._users, user.user_id, {"lastLogin": utc_now_iso()}
            )
        except (StoreError, ServiceError):
            logger.exception("Login error")
            raise AuthenticationError("Login failed")

        user = User.from_document(updated)
        self.presence.set_user_status(user.user_id, user.username, True)
        return user, session

    def get_current_user(self, token: Optional[str]) -> Optional[User]:
        if not token:
            return None
        try:
            account = self.accounts.get_account(token)
            return self._find_user_by_email(account.email)
        except AuthenticationError:
            return None
        except StoreError:
            logger.exception("Get current user error")
            return None

    def logout_user(self, token: Optional[str], user: Optional[User] = None) -> None:
        try:
            self.accounts.delete_session(token)
        except StoreError:
            logger.exception("Logout error")
        if user is not None:
            self.presence.set_user_status(user.user_id, user.username, False)

    def get_user(self, user_id: str) -> User:
        return User.from_document(self.db.get_document(self._users, user_id))

    def get_pending_users(self) -> list[User]:
        try:
            result = self.db.list_documents(
                self._users, [equal("status", UserApprovalStatus.PENDING.value)]
            )
        except StoreError:
            logger.exception("Error fetching pending users")
            return []
        return [User.from_document(doc) for doc in result.documents]

    def get_all_users(self) -> list[User]:
        try:
            result = self.db.list_documents(self._users, [order_desc("createdAt")])
        except StoreError:
            logger.exception("Error fetching all users")
            return []
        return [User.from_document(doc) for doc in result.documents]

    def approve_user(self, user_id: str) -> User:
        try:
            doc = self.db.update_document(
                self._users, user_id, {"status": UserApprovalStatus.APPROVED.value}
            )
        except StoreError:
            logger.exception("Approve user error")
            raise ServiceError("Failed to approve user")
        logger.info("Approved user %s", user_id)
        return User.from_document(doc)

    def update_user_role(self, user_id: str, role: str) -> User:
        try:
            role = UserRole(role).value
            doc = self.db.update_document(self._users, user_id, {"role": role})
        except (StoreError, ValueError):
            logger.exception("Update user role error")
            raise ServiceError("Failed to update user role")
        return User.from_document(doc)

    def delete_user(self, user_id: str) -> None:
        try:
            user = self.get_user(user_id)
            self.db.delete_document(self._users, user_id)
            account = self.accounts.find_account_by_email(user.email)
            if account is not None:
                self.accounts.delete_account(account.account_id)
        except StoreError:
            logger.exception("Delete user error")
            raise ServiceError("Failed to delete user")
        logger.info("Deleted user %s", user_id)

    def update_user_profile(self, user_id: str, username: str) -> User:
        username = (username or "").strip()
        if len(username) < USERNAME_MIN_LENGTH:
            raise ValidationError(
                f"Username must be at least {USERNAME_MIN_LENGTH} characters long"
            )
        try:
            doc = self.db.update_document(self._users, user_id, {"username": username})
        except StoreError:
            logger.exception("Update user profile error")
            raise ServiceError("Failed to update profile")
        return User.from_document(doc)
