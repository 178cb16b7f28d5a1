"""
Messaging: group and direct messages, groups and their members, DM threads
and the institution user directory.
"""

from __future__ import annotations

import logging
from typing import Optional

from academic_chat.config import DM_PREVIEW_MAX_LENGTH, Settings
from academic_chat.db import DbClient, utc_now_iso
from academic_chat.errors import (
    ConflictError,
    DocumentNotFoundError,
    NotFoundError,
    PermissionDeniedError,
    ServiceError,
    StoreError,
    ValidationError,
)
from academic_chat.models import (
    DirectMessageThread,
    Group,
    GroupMember,
    MemberRole,
    Message,
    MessageType,
    User,
    UserApprovalStatus,
)
from academic_chat.query import and_, equal, limit, or_, order_desc, search

logger = logging.getLogger(__name__)

ANNOUNCEMENT_GROUP_NAME = "Announcements"
ANNOUNCEMENT_GROUP_DESCRIPTION = "Official announcements from administration"
SYSTEM_CREATOR = "system"

# Roles allowed to post into announcement groups. "Admin" is the legacy
# capitalised spelling still present on some user documents.
ANNOUNCEMENT_POSTER_ROLES = {"Admin", "admin", "teacher"}


def message_belongs_to_chat(
    message: Message,
    chat_type: str,
    chat_id: str,
    current_user_id: str,
    recipient_id: Optional[str] = None,
) -> bool:
    """True when a realtime message event concerns the open chat view."""
    if chat_type == MessageType.GROUP.value:
        return message.group_id == chat_id
    if chat_type == MessageType.DIRECT.value:
        return (
            message.sender_id == current_user_id and message.recipient_id == recipient_id
        ) or (
            message.sender_id == recipient_id and message.recipient_id == current_user_id
        )
    return False


def _visible_to(messages: list[Message], user_id: str) -> list[Message]:
    return [message for message in messages if user_id not in message.deleted_by]


class ChatService:
    def __init__(self, db: DbClient, settings: Settings):
        self.db = db
        self.settings = settings

    @property
    def _messages(self) -> str:
        return self.settings.messages_collection_id

    @property
    def _groups(self) -> str:
        return self.settings.groups_collection_id

    @property
    def _members(self) -> str:
        return self.settings.group_members_collection_id

    @property
    def _threads(self) -> str:
        return self.settings.dm_threads_collection_id

    @property
    def _users(self) -> str:
        return self.settings.users_collection_id

    # ===== Messages =====

    def send_message(
        self,
        sender_id: str,
        sender_username: str,
        content: str,
        message_type: str,
        group_id: Optional[str] = None,
        recipient_id: Optional[str] = None,
        user_role: Optional[str] = None,
    ) -> Message:
        if not content or not content.strip():
            raise ValidationError("Message cannot be empty")
        if message_type == MessageType.GROUP.value and not group_id:
            raise ValidationError("A group is required for group messages")
        if message_type == MessageType.DIRECT.value and not recipient_id:
            raise ValidationError("A recipient is required for direct messages")
        if message_type not in (MessageType.GROUP.value, MessageType.DIRECT.value):
            raise ValidationError(f"Unknown message type: {message_type}")

        try:
            message_data = {
                "senderId": sender_id,
                "senderUsername": sender_username,
                "content": content,
                "type": message_type,
                "createdAt": utc_now_iso(),
                "readBy": [sender_id],
                "deletedBy": [],
                "deletedForEveryone": False,
            }
            if message_type == MessageType.GROUP.value:
                group = Group.from_document(self.db.get_document(self._groups, group_id))
                if group.is_announcement and user_role not in ANNOUNCEMENT_POSTER_ROLES:
                    raise PermissionDeniedError(
                        "Only administrators and teachers can send messages in announcements"
                    )
                message_data["groupId"] = group_id
            else:
                message_data["recipientId"] = recipient_id
                self._update_dm_thread(sender_id, sender_username, recipient_id, content)

            doc = self.db.create_document(self._messages, message_data)
        except StoreError:
            logger.exception("Error sending message")
            raise ServiceError("Failed to send message")
        return Message.from_document(doc)

    def get_message(self, message_id: str) -> Message:
        try:
            return Message.from_document(self.db.get_document(self._messages, message_id))
        except DocumentNotFoundError:
            raise NotFoundError("Message not found")

    def get_group_messages(
        self, group_id: str, user_id: str, limit_count: Optional[int] = None
    ) -> list[Message]:
        try:
            result = self.db.list_documents(
                self._messages,
                [
                    equal("groupId", group_id),
                    equal("type", MessageType.GROUP.value),
                    order_desc("createdAt"),
                    limit(limit_count or self.settings.message_page_limit),
                ],
            )
        except StoreError:
            logger.exception("Error fetching group messages")
            return []
        messages = _visible_to([Message.from_document(d) for d in result.documents], user_id)
        messages.reverse()
        return messages

    def get_direct_messages(
        self,
        user_id1: str,
        user_id2: str,
        current_user_id: str,
        limit_count: Optional[int] = None,
    ) -> list[Message]:
        try:
            result = self.db.list_documents(
                self._messages,
                [
                    equal("type", MessageType.DIRECT.value),
                    or_(
                        [
                            and_([equal("senderId", user_id1), equal("recipientId", user_id2)]),
                            and_([equal("senderId", user_id2), equal("recipientId", user_id1)]),
                        ]
                    ),
                    order_desc("createdAt"),
                    limit(limit_count or self.settings.message_page_limit),
                ],
            )
        except StoreError:
            logger.exception("Error fetching direct messages")
            return []
        messages = _visible_to(
            [Message.from_document(d) for d in result.documents], current_user_id
        )
        messages.reverse()
        return messages

    def mark_message_as_read(self, message_id: str, user_id: str) -> None:
        try:
            doc = self.db.get_document(self._messages, message_id)
            read_by = list(doc.get("readBy") or [])
            if user_id not in read_by:
                read_by.append(user_id)
                self.db.update_document(self._messages, message_id, {"readBy": read_by})
        except StoreError:
            logger.exception("Error marking message as read")

    def delete_message_for_me(self, message_id: str, user_id: str) -> None:
        try:
            doc = self.db.get_document(self._messages, message_id)
            deleted_by = list(doc.get("deletedBy") or [])
            if user_id not in deleted_by:
                deleted_by.append(user_id)
                self.db.update_document(
                    self._messages, message_id, {"deletedBy": deleted_by}
                )
        except StoreError:
            logger.exception("Error deleting message for user")
            raise ServiceError("Failed to delete message for you")

    def delete_message_for_everyone(self, message_id: str, user_id: str) -> Message:
        try:
            doc = self.db.get_document(self._messages, message_id)
            if doc.get("senderId") != user_id:
                raise PermissionDeniedError(
                    "Only the sender can delete this message for everyone"
                )
            updated = self.db.update_document(
                self._messages,
                message_id,
                {"deletedForEveryone": True, "content": ""},
            )
        except StoreError:
            logger.exception("Error deleting message for everyone")
            raise ServiceError("Failed to delete message for everyone")
        return Message.from_document(updated)

    # ===== Groups =====

    def get_group(self, group_id: str) -> Group:
        try:
            return Group.from_document(self.db.get_document(self._groups, group_id))
        except DocumentNotFoundError:
            raise NotFoundError("Group not found")

    def create_group(
        self,
        name: str,
        institution_id: str,
        created_by: str,
        description: Optional[str] = None,
        is_private: bool = False,
    ) -> Group:
        if not name or not name.strip():
            raise ValidationError("Group name is required")
        try:
            doc = self.db.create_document(
                self._groups,
                {
                    "name": name.strip(),
                    "description": description or "",
                    "institutionId": institution_id,
                    "createdBy": created_by,
                    "createdAt": utc_now_iso(),
                    "isPrivate": is_private,
                    "isAnnouncement": False,
                },
            )
            creator = self.db.get_document(self._users, created_by)
            self.add_group_member(
                doc["$id"],
                created_by,
                creator.get("username") or creator.get("name") or "",
                MemberRole.ADMIN.value,
            )
        except (StoreError, ServiceError):
            logger.exception("Error creating group")
            raise ServiceError("Failed to create group")
        logger.info("Created group %s in %s", doc["$id"], institution_id)
        return Group.from_document(doc)

    def create_announcement_group(self, institution_id: str) -> Group:
        try:
            existing = self.get_announcement_group(institution_id, raise_errors=True)
            if existing is not None:
                return existing
            doc = self.db.create_document(
                self._groups,
                {
                    "name": ANNOUNCEMENT_GROUP_NAME,
                    "description": ANNOUNCEMENT_GROUP_DESCRIPTION,
                    "institutionId": institution_id,
                    "createdBy": SYSTEM_CREATOR,
                    "createdAt": utc_now_iso(),
                    "isPrivate": False,
                    "isAnnouncement": True,
                },
            )
        except StoreError:
            logger.exception("Error creating announcement group")
            raise ServiceError("Failed to create announcement group")
        return Group.from_document(doc)

    def get_announcement_group(
        self, institution_id: str, raise_errors: bool = False
    ) -> Optional[Group]:
        try:
            result = self.db.list_documents(
                self._groups,
                [equal("institutionId", institution_id), equal("isAnnouncement", True)],
            )
        except StoreError:
            if raise_errors:
                raise
            logger.exception("Error fetching announcement group")
            return None
        if not result.documents:
            return None
        return Group.from_document(result.documents[0])

    def get_user_groups(self, user_id: str) -> list[Group]:
        try:
            memberships = self.db.list_documents(self._members, [equal("userId", user_id)])
            groups: list[Group] = []
            for membership in memberships.documents:
                group_id = membership.get("groupId")
                try:
                    groups.append(
                        Group.from_document(self.db.get_document(self._groups, group_id))
                    )
                except StoreError:
                    logger.exception("Error fetching group %s", group_id)

            user_doc = self.db.get_document(self._users, user_id)
            announcements = self.db.list_documents(
                self._groups,
                [
                    equal("institutionId", user_doc.get("institutionId")),
                    equal("isAnnouncement", True),
                ],
            )
        except StoreError:
            logger.exception("Error fetching user groups")
            return []

        known = {group.group_id for group in groups}
        for doc in announcements.documents:
            if doc["$id"] not in known:
                groups.append(Group.from_document(doc))
                known.add(doc["$id"])
        return groups

    def update_group(
        self,
        group_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_private: Optional[bool] = None,
    ) -> Group:
        data: dict = {}
        if name is not None:
            if not name.strip():
                raise ValidationError("Group name is required")
            data["name"] = name.strip()
        if description is not None:
            data["description"] = description
        if is_private is not None:
            data["isPrivate"] = is_private
        try:
            doc = self.db.update_document(self._groups, group_id, data)
        except StoreError:
            logger.exception("Error updating group")
            raise ServiceError("Failed to update group")
        return Group.from_document(doc)

    def delete_group(self, group_id: str) -> None:
        try:
            members = self.db.list_documents(self._members, [equal("groupId", group_id)])
            for member in members.documents:
                self.db.delete_document(self._members, member["$id"])
            self.db.delete_document(self._groups, group_id)
        except StoreError:
            logger.exception("Error deleting group")
            raise ServiceError("Failed to delete group")
        logger.info("Deleted group %s", group_id)

    # ===== Group members =====

    def get_group_member(self, group_id: str, user_id: str) -> Optional[GroupMember]:
        result = self.db.list_documents(
            self._members, [equal("groupId", group_id), equal("userId", user_id)]
        )
        if not result.documents:
            return None
        return GroupMember.from_document(result.documents[0])

    def add_group_member(
        self,
        group_id: str,
        user_id: str,
        username: str,
        role: str = MemberRole.MEMBER.value,
    ) -> GroupMember:
        try:
            role = MemberRole(role).value
        except ValueError:
            raise ValidationError(f"Unknown member role: {role}")
        try:
            if self.get_group_member(group_id, user_id) is not None:
                raise ConflictError("User is already a member of this group")
            doc = self.db.create_document(
                self._members,
                {
                    "groupId": group_id,
                    "userId": user_id,
                    "username": username,
                    "role": role,
                    "joinedAt": utc_now_iso(),
                },
            )
        except StoreError:
            logger.exception("Error adding group member")
            raise ServiceError("Failed to add group member")
        return GroupMember.from_document(doc)

    def remove_group_member(self, group_id: str, user_id: str) -> None:
        try:
            member = self.get_group_member(group_id, user_id)
            if member is not None:
                self.db.delete_document(self._members, member.member_id)
        except StoreError:
            logger.exception("Error removing group member")
            raise ServiceError("Failed to remove group member")

    def get_group_members(self, group_id: str) -> list[GroupMember]:
        try:
            result = self.db.list_documents(self._members, [equal("groupId", group_id)])
        except StoreError:
            logger.exception("Error fetching group members")
            return []
        return [GroupMember.from_document(doc) for doc in result.documents]

    def update_member_role(self, group_id: str, user_id: str, role: str) -> None:
        try:
            role = MemberRole(role).value
        except ValueError:
            raise ValidationError(f"Unknown member role: {role}")
        try:
            member = self.get_group_member(group_id, user_id)
            if member is not None:
                self.db.update_document(self._members, member.member_id, {"role": role})
        except StoreError:
            logger.exception("Error updating member role")
            raise ServiceError("Failed to update member role")

    # ===== Access checks =====

    def can_view_group(self, user: User, group: Group) -> bool:
        if user.is_admin:
            return True
        if group.is_announcement:
            return group.institution_id == user.institution_id
        return self.get_group_member(group.group_id, user.user_id) is not None

    def can_manage_group(self, user: User, group: Group) -> bool:
        if user.is_admin:
            return True
        if group.is_announcement:
            return False
        member = self.get_group_member(group.group_id, user.user_id)
        return member is not None and member.role == MemberRole.ADMIN.value

    # ===== Direct message threads =====

    def _update_dm_thread(
        self, user_id1: str, username1: str, user_id2: str, last_message_content: str
    ) -> None:
        """Upsert the thread for a user pair. Failures are logged only."""
        try:
            participant1_id, participant2_id = sorted([user_id1, user_id2])
            user2 = self.db.get_document(self._users, user_id2)
            username2 = user2.get("username") or user2.get("name") or ""

            existing = self.db.list_documents(
                self._threads,
                [
                    equal("participant1Id", participant1_id),
                    equal("participant2Id", participant2_id),
                ],
            )
            last_message_at = utc_now_iso()
            preview = last_message_content[:DM_PREVIEW_MAX_LENGTH]

            if existing.documents:
                self.db.update_document(
                    self._threads,
                    existing.documents[0]["$id"],
                    {"lastMessageAt": last_message_at, "lastMessageContent": preview},
                )
            else:
                self.db.create_document(
                    self._threads,
                    {
                        "participant1Id": participant1_id,
                        "participant1Username": (
                            username1 if participant1_id == user_id1 else username2
                        ),
                        "participant2Id": participant2_id,
                        "participant2Username": (
                            username2 if participant2_id == user_id2 else username1
                        ),
                        "lastMessageAt": last_message_at,
                        "lastMessageContent": preview,
                    },
                )
        except StoreError:
            logger.exception("Error updating DM thread")

    def get_user_dm_threads(self, user_id: str) -> list[DirectMessageThread]:
        try:
            result = self.db.list_documents(
                self._threads,
                [
                    or_([equal("participant1Id", user_id), equal("participant2Id", user_id)]),
                    order_desc("lastMessageAt"),
                ],
            )
        except StoreError:
            logger.exception("Error fetching DM threads")
            return []
        return [DirectMessageThread.from_document(doc) for doc in result.documents]

    # ===== User directory =====

    def search_users(self, institution_id: str, search_term: str) -> list[User]:
        try:
            result = self.db.list_documents(
                self._users,
                [
                    equal("institutionId", institution_id),
                    equal("status", UserApprovalStatus.APPROVED.value),
                    search("username", search_term or ""),
                    limit(self.settings.user_search_limit),
                ],
            )
        except StoreError:
            logger.exception("Error searching users")
            return []
        return [User.from_document(doc) for doc in result.documents]

    def get_institution_users(self, institution_id: str) -> list[User]:
        try:
            result = self.db.list_documents(
                self._users,
                [
                    equal("institutionId", institution_id),
                    equal("status", UserApprovalStatus.APPROVED.value),
                    limit(self.settings.institution_users_limit),
                ],
            )
        except StoreError:
            logger.exception("Error fetching institution users")
            return []
        return [User.from_document(doc) for doc in result.documents]
