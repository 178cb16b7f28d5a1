"""
Account and session lifecycle.

Accounts hold credentials (email + Argon2id password hash); sessions are
opaque bearer tokens handed to the browser as a cookie. Only a SHA-256
digest of each token is stored, as the session document id.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from academic_chat.config import PASSWORD_MIN_LENGTH, Settings
from academic_chat.db import DbClient
from academic_chat.errors import (
    AuthenticationError,
    ConflictError,
    DocumentNotFoundError,
    ValidationError,
)
from academic_chat.query import equal

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass
class Account:
    account_id: str
    email: str
    name: str

    @classmethod
    def from_document(cls, doc: dict) -> "Account":
        return cls(account_id=doc["$id"], email=doc["email"], name=doc.get("name") or "")


@dataclass
class AccountSession:
    token: str
    account_id: str
    expires_at: float

    @property
    def max_age(self) -> int:
        return max(0, int(self.expires_at - time.time()))


class AccountService:
    """Credential checks and session bookkeeping on top of the document store."""

    def __init__(
        self,
        db: DbClient,
        settings: Settings,
        hasher: Optional[PasswordHasher] = None,
    ):
        self.db = db
        self.settings = settings
        self._hasher = hasher or PasswordHasher()

    @property
    def _accounts(self) -> str:
        return self.settings.accounts_collection_id

    @property
    def _sessions(self) -> str:
        return self.settings.sessions_collection_id

    def find_account_by_email(self, email: str) -> Optional[Account]:
        result = self.db.list_documents(
            self._accounts, [equal("email", normalize_email(email))]
        )
        if not result.documents:
            return None
        return Account.from_document(result.documents[0])

    def create_account(self, email: str, password: str, name: str) -> Account:
        email = normalize_email(email)
        if not email or "@" not in email:
            raise ValidationError("A valid email address is required")
        if not password or len(password) < PASSWORD_MIN_LENGTH:
            raise ValidationError(
                f"Password must be at least {PASSWORD_MIN_LENGTH} characters long"
            )
        if self.find_account_by_email(email) is not None:
            raise ConflictError("An account with this email already exists")
        doc = self.db.create_document(
            self._accounts,
            {
                "email": email,
                "name": name,
                "passwordHash": self._hasher.hash(password),
            },
        )
        logger.info("Created account %s", doc["$id"])
        return Account.from_document(doc)

    def _verify_password(self, password_hash: str, password: str) -> bool:
        try:
            return self._hasher.verify(password_hash, password)
        except (VerifyMismatchError, InvalidHashError, VerificationError):
            return False

    def create_email_password_session(self, email: str, password: str) -> AccountSession:
        result = self.db.list_documents(
            self._accounts, [equal("email", normalize_email(email))]
        )
        if not result.documents:
            raise AuthenticationError("Invalid credentials")
        account_doc = result.documents[0]
        if not self._verify_password(account_doc.get("passwordHash") or "", password or ""):
            raise AuthenticationError("Invalid credentials")

        token = secrets.token_urlsafe(32)
        expires_at = time.time() + self.settings.session_ttl_seconds
        self.db.create_document(
            self._sessions,
            {"accountId": account_doc["$id"], "expiresAt": expires_at},
            document_id=_token_digest(token),
        )
        return AccountSession(token=token, account_id=account_doc["$id"], expires_at=expires_at)

    def get_account(self, token: Optional[str]) -> Account:
        if not token:
            raise AuthenticationError("Not authenticated")
        try:
            session_doc = self.db.get_document(self._sessions, _token_digest(token))
        except DocumentNotFoundError:
            raise AuthenticationError("Not authenticated")
        if float(session_doc.get("expiresAt") or 0) < time.time():
            self.delete_session(token)
            raise AuthenticationError("Session expired")
        try:
            account_doc = self.db.get_document(self._accounts, session_doc["accountId"])
        except DocumentNotFoundError:
            raise AuthenticationError("Not authenticated")
        return Account.from_document(account_doc)

    def delete_session(self, token: Optional[str]) -> None:
        if not token:
            return
        try:
            self.db.delete_document(self._sessions, _token_digest(token))
        except DocumentNotFoundError:
            pass

    def delete_account(self, account_id: str) -> None:
        sessions = self.db.list_documents(self._sessions, [equal("accountId", account_id)])
        for session_doc in sessions.documents:
            self.db.delete_document(self._sessions, session_doc["$id"])
        self.db.delete_document(self._accounts, account_id)
        logger.info("Deleted account %s", account_id)
