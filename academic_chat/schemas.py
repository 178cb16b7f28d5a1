"""
Pydantic schemas for the academic chat API.

Response models use the `$id` style keys of the stored documents via
field aliases.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _DocumentModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="$id")


class UserResponse(_DocumentModel):
    username: str
    email: str
    role: str
    status: str
    institutionId: str
    institutionName: Optional[str] = None
    createdAt: str
    lastLogin: Optional[str] = None


class InstitutionResponse(_DocumentModel):
    institutionName: str
    code: str


class MessageResponse(_DocumentModel):
    senderId: str
    senderUsername: str
    content: str
    type: Literal["group", "direct"]
    createdAt: str
    groupId: Optional[str] = None
    recipientId: Optional[str] = None
    readBy: list[str] = Field(default_factory=list)
    deletedBy: list[str] = Field(default_factory=list)
    deletedForEveryone: bool = False
    createdAtSystem: Optional[str] = Field(default=None, alias="$createdAt")
    updatedAtSystem: Optional[str] = Field(default=None, alias="$updatedAt")


class GroupResponse(_DocumentModel):
    name: str
    description: str = ""
    institutionId: str
    createdBy: str
    createdAt: str
    isPrivate: bool = False
    isAnnouncement: bool = False


class GroupMemberResponse(_DocumentModel):
    groupId: str
    userId: str
    username: str
    role: Literal["admin", "member"]
    joinedAt: str


class DirectMessageThreadResponse(_DocumentModel):
    participant1Id: str
    participant1Username: str
    participant2Id: str
    participant2Username: str
    lastMessageAt: str
    lastMessageContent: Optional[str] = None


class SessionUserResponse(BaseModel):
    user: UserResponse
    landing: str


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    email: str = Field(..., max_length=254)
    password: str = Field(..., max_length=256)
    institution_code: str = Field(..., max_length=64)


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=254)
    password: str = Field(..., max_length=256)


class UpdateProfileRequest(BaseModel):
    username: str = Field(..., max_length=64)


class UpdateRoleRequest(BaseModel):
    role: Literal["student", "teacher", "admin"]


class CreateInstitutionRequest(BaseModel):
    name: str = Field(..., max_length=128)
    code: str = Field(..., max_length=64)


class CreateGroupRequest(BaseModel):
    name: str = Field(..., max_length=128)
    description: Optional[str] = Field(default=None, max_length=1024)
    is_private: bool = False


class UpdateGroupRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=128)
    description: Optional[str] = Field(default=None, max_length=1024)
    is_private: Optional[bool] = None


class SendMessageRequest(BaseModel):
    content: str = Field(..., max_length=4096)


class AddMemberRequest(BaseModel):
    user_id: str
    role: Literal["admin", "member"] = "member"


class UpdateMemberRoleRequest(BaseModel):
    role: Literal["admin", "member"]


class StatusResponse(BaseModel):
    status: Literal["ok"]
