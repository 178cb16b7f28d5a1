"""
Record types mapped from store documents.

Each record knows how to build itself from a stored document
(`from_document`) and how to render itself with the `$id` style keys the
front-end expects (`as_dict`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class UserRole(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


class UserApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"


class MessageType(str, Enum):
    GROUP = "group"
    DIRECT = "direct"


class MemberRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


def _system_times(doc: dict) -> dict:
    return {
        "$createdAt": doc.get("$createdAt"),
        "$updatedAt": doc.get("$updatedAt"),
    }


@dataclass
class User:
    user_id: str
    username: str
    email: str
    role: str
    status: str
    institution_id: str
    institution_name: Optional[str]
    created_at: str
    last_login: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def is_pending(self) -> bool:
        return self.status == UserApprovalStatus.PENDING.value

    @classmethod
    def from_document(cls, doc: dict) -> "User":
        # Older documents used `name` and only carried the system timestamp.
        created_at = (
            doc.get("createdAt")
            or doc.get("$createdAt")
            or datetime.now(timezone.utc).isoformat()
        )
        return cls(
            user_id=doc["$id"],
            username=doc.get("username") or doc.get("name") or "",
            email=doc.get("email") or "",
            role=doc.get("role") or UserRole.STUDENT.value,
            status=doc.get("status") or UserApprovalStatus.PENDING.value,
            institution_id=doc.get("institutionId") or "",
            institution_name=doc.get("institutionName"),
            created_at=created_at,
            last_login=doc.get("lastLogin"),
        )

    def as_dict(self) -> dict:
        return {
            "$id": self.user_id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "status": self.status,
            "institutionId": self.institution_id,
            "institutionName": self.institution_name,
            "createdAt": self.created_at,
            "lastLogin": self.last_login,
        }


@dataclass
class Institution:
    institution_id: str
    institution_name: str
    code: str

    @classmethod
    def from_document(cls, doc: dict) -> "Institution":
        name = doc.get("institutionName") or doc.get("name") or ""
        if not name:
            raise ValueError("Institution is missing a name attribute")
        return cls(institution_id=doc["$id"], institution_name=name, code=doc.get("code") or "")

    def as_dict(self) -> dict:
        return {
            "$id": self.institution_id,
            "institutionName": self.institution_name,
            "code": self.code,
        }


@dataclass
class Message:
    message_id: str
    sender_id: str
    sender_username: str
    content: str
    type: str
    created_at: str
    group_id: Optional[str] = None
    recipient_id: Optional[str] = None
    read_by: list[str] = field(default_factory=list)
    deleted_by: list[str] = field(default_factory=list)
    deleted_for_everyone: bool = False
    system_times: dict = field(default_factory=dict)

    @classmethod
    def from_document(cls, doc: dict) -> "Message":
        return cls(
            message_id=doc["$id"],
            sender_id=doc.get("senderId") or "",
            sender_username=doc.get("senderUsername") or "",
            content=doc.get("content") or "",
            type=doc.get("type") or MessageType.GROUP.value,
            created_at=doc.get("createdAt") or doc.get("$createdAt") or "",
            group_id=doc.get("groupId"),
            recipient_id=doc.get("recipientId"),
            read_by=list(doc.get("readBy") or []),
            deleted_by=list(doc.get("deletedBy") or []),
            deleted_for_everyone=bool(doc.get("deletedForEveryone", False)),
            system_times=_system_times(doc),
        )

    def as_dict(self) -> dict:
        data = {
            "$id": self.message_id,
            "senderId": self.sender_id,
            "senderUsername": self.sender_username,
            "content": self.content,
            "type": self.type,
            "createdAt": self.created_at,
            "groupId": self.group_id,
            "recipientId": self.recipient_id,
            "readBy": list(self.read_by),
            "deletedBy": list(self.deleted_by),
            "deletedForEveryone": self.deleted_for_everyone,
        }
        data.update(self.system_times)
        return data


@dataclass
class Group:
    group_id: str
    name: str
    institution_id: str
    created_by: str
    created_at: str
    description: str = ""
    is_private: bool = False
    is_announcement: bool = False
    system_times: dict = field(default_factory=dict)

    @classmethod
    def from_document(cls, doc: dict) -> "Group":
        return cls(
            group_id=doc["$id"],
            name=doc.get("name") or "",
            institution_id=doc.get("institutionId") or "",
            created_by=doc.get("createdBy") or "",
            created_at=doc.get("createdAt") or doc.get("$createdAt") or "",
            description=doc.get("description") or "",
            is_private=bool(doc.get("isPrivate", False)),
            is_announcement=bool(doc.get("isAnnouncement", False)),
            system_times=_system_times(doc),
        )

    def as_dict(self) -> dict:
        data = {
            "$id": self.group_id,
            "name": self.name,
            "description": self.description,
            "institutionId": self.institution_id,
            "createdBy": self.created_by,
            "createdAt": self.created_at,
            "isPrivate": self.is_private,
            "isAnnouncement": self.is_announcement,
        }
        data.update(self.system_times)
        return data


@dataclass
class GroupMember:
    member_id: str
    group_id: str
    user_id: str
    username: str
    role: str
    joined_at: str
    system_times: dict = field(default_factory=dict)

    @classmethod
    def from_document(cls, doc: dict) -> "GroupMember":
        return cls(
            member_id=doc["$id"],
            group_id=doc.get("groupId") or "",
            user_id=doc.get("userId") or "",
            username=doc.get("username") or "",
            role=doc.get("role") or MemberRole.MEMBER.value,
            joined_at=doc.get("joinedAt") or doc.get("$createdAt") or "",
            system_times=_system_times(doc),
        )

    def as_dict(self) -> dict:
        data = {
            "$id": self.member_id,
            "groupId": self.group_id,
            "userId": self.user_id,
            "username": self.username,
            "role": self.role,
            "joinedAt": self.joined_at,
        }
        data.update(self.system_times)
        return data


@dataclass
class DirectMessageThread:
    thread_id: str
    participant1_id: str
    participant1_username: str
    participant2_id: str
    participant2_username: str
    last_message_at: str
    last_message_content: Optional[str] = None
    system_times: dict = field(default_factory=dict)

    @classmethod
    def from_document(cls, doc: dict) -> "DirectMessageThread":
        return cls(
            thread_id=doc["$id"],
            participant1_id=doc.get("participant1Id") or "",
            participant1_username=doc.get("participant1Username") or "",
            participant2_id=doc.get("participant2Id") or "",
            participant2_username=doc.get("participant2Username") or "",
            last_message_at=doc.get("lastMessageAt") or "",
            last_message_content=doc.get("lastMessageContent"),
            system_times=_system_times(doc),
        )

    def as_dict(self) -> dict:
        data = {
            "$id": self.thread_id,
            "participant1Id": self.participant1_id,
            "participant1Username": self.participant1_username,
            "participant2Id": self.participant2_id,
            "participant2Username": self.participant2_username,
            "lastMessageAt": self.last_message_at,
            "lastMessageContent": self.last_message_content,
        }
        data.update(self.system_times)
        return data


@dataclass
class UserStatus:
    status_id: str
    user_id: str
    username: str
    is_online: bool
    last_seen: str

    @classmethod
    def from_document(cls, doc: dict) -> "UserStatus":
        return cls(
            status_id=doc["$id"],
            user_id=doc.get("userId") or "",
            username=doc.get("username") or "",
            is_online=bool(doc.get("isOnline", False)),
            last_seen=doc.get("lastSeen") or "",
        )

    def as_dict(self) -> dict:
        return {
            "$id": self.status_id,
            "userId": self.user_id,
            "username": self.username,
            "isOnline": self.is_online,
            "lastSeen": self.last_seen,
        }
