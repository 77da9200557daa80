"""Messenger schemas for tree records and request payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .base import BaseSchema, TreeRecord


class ChatType(str, Enum):
    """Chat type enumeration."""

    DIRECT = "direct"
    GROUP = "group"
    COMPANY = "company"
    SITE = "site"
    DEPARTMENT = "department"
    ROLE = "role"

    @property
    def is_scoped(self) -> bool:
        return self in SCOPED_CHAT_TYPES


SCOPED_CHAT_TYPES = frozenset({ChatType.COMPANY, ChatType.SITE, ChatType.DEPARTMENT, ChatType.ROLE})

# Values used as a single tree key: non-empty, no path separator
TreeKey = Annotated[str, Field(min_length=1, pattern=r"^[^/]+$")]


class MessageStatus(str, Enum):
    """Delivery status enumeration."""

    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class AttachmentType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    FILE = "file"


class PresenceStatus(str, Enum):
    ONLINE = "online"
    AWAY = "away"
    BUSY = "busy"
    OFFLINE = "offline"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class ContactType(str, Enum):
    SAVED = "saved"
    WORK = "work"


class NotificationLevel(str, Enum):
    ALL = "all"
    MENTIONS = "mentions"
    NONE = "none"


class ScopeContext(BaseModel):
    """Tenant scope every company-scoped read and write runs under."""

    model_config = ConfigDict(frozen=True)

    company_id: str = Field(..., min_length=1)
    site_id: str | None = None
    subsite_id: str | None = None
    department_id: str | None = None
    role_id: str | None = None

    @property
    def company_path(self) -> str:
        return f"companies/{self.company_id}"

    @property
    def state_path(self) -> str:
        """Storage prefix including the selected site and subsite."""
        path = self.company_path
        if self.site_id:
            path += f"/sites/{self.site_id}"
            if self.subsite_id:
                path += f"/subsites/{self.subsite_id}"
        return path


# Tree records


class LastMessage(TreeRecord):
    """Denormalized summary of a chat's most recent message."""

    id: str
    text: str = ""
    timestamp: datetime
    sender_id: str
    sender_name: str = ""


class ChatFeatureSettings(TreeRecord):
    allow_file_sharing: bool = True
    allow_mentions: bool = True
    is_muted: bool = False


class Chat(TreeRecord):
    """A conversation container."""

    id: str = ""
    name: str = ""
    type: ChatType = ChatType.DIRECT
    participants: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None
    company_id: str | None = None
    site_id: str | None = None
    subsite_id: str | None = None
    department_id: str | None = None
    role_id: str | None = None
    category_id: str | None = None
    description: str | None = None
    is_private: bool = False
    is_archived: bool = False
    last_message: LastMessage | None = None
    pinned_messages: list[str] = Field(default_factory=list)
    settings: ChatFeatureSettings | None = None

    @property
    def scope_id(self) -> str | None:
        if self.type == ChatType.COMPANY:
            return self.company_id
        if self.type == ChatType.SITE:
            return self.subsite_id or self.site_id
        if self.type == ChatType.DEPARTMENT:
            return self.department_id
        if self.type == ChatType.ROLE:
            return self.role_id
        return None


class Attachment(TreeRecord):
    id: str
    type: AttachmentType = AttachmentType.FILE
    url: str
    name: str
    size: int = 0
    mime_type: str = "application/octet-stream"
    metadata: dict = Field(default_factory=dict)


class ReplyReference(TreeRecord):
    id: str
    text: str = ""


class ForwardReference(TreeRecord):
    chat_id: str
    message_id: str
    sender_id: str | None = None
    sender_name: str | None = None


class EditHistoryEntry(TreeRecord):
    text: str
    timestamp: datetime


class Message(TreeRecord):
    """A message belonging to exactly one chat."""

    id: str = ""
    chat_id: str
    text: str = ""
    timestamp: datetime | None = None
    sender_id: str
    sender_name: str = ""
    status: MessageStatus = MessageStatus.SENT
    read_by: list[str] = Field(default_factory=list)
    attachments: list[Attachment] | None = None
    mentions: list[str] | None = None
    reactions: dict[str, list[str]] = Field(default_factory=dict)
    reply_to: ReplyReference | None = None
    forwarded_from: ForwardReference | None = None
    is_edited: bool = False
    edited_at: datetime | None = None
    edit_history: list[EditHistoryEntry] = Field(default_factory=list)
    is_deleted: bool = False
    is_pinned: bool = False


class UserChatIndexEntry(TreeRecord):
    """Per-user pointer to a chat the user participates in."""

    joined_at: datetime
    role: str = "member"


class ChatCategory(TreeRecord):
    id: str = ""
    company_id: str
    name: str
    color: str | None = None
    icon: str | None = None
    order: int = 0
    is_default: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UserStatus(TreeRecord):
    """Presence record, overwritten on each update."""

    user_id: str = ""
    status: PresenceStatus = PresenceStatus.OFFLINE
    last_active: datetime | None = None
    custom_status: str | None = None


class ContactInvitation(TreeRecord):
    id: str = ""
    from_user_id: str
    to_user_id: str
    message: str = ""
    status: InvitationStatus = InvitationStatus.PENDING
    sent_at: datetime | None = None
    accepted_at: datetime | None = None
    declined_at: datetime | None = None


class Contact(TreeRecord):
    id: str = ""
    user_id: str
    contact_user_id: str
    type: ContactType = ContactType.SAVED
    status: InvitationStatus = InvitationStatus.ACCEPTED
    is_favorite: bool = False
    nickname: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ChatSettings(TreeRecord):
    """Per-viewer preferences for one chat."""

    user_id: str
    chat_id: str
    is_muted: bool = False
    is_starred: bool = False
    is_pinned: bool = False
    notification_level: NotificationLevel = NotificationLevel.ALL


class DraftMessage(TreeRecord):
    chat_id: str
    user_id: str
    text: str = ""
    attachments: list[Attachment] | None = None
    last_updated: datetime | None = None


class ChatNotification(TreeRecord):
    id: str = ""
    chat_id: str
    message_id: str | None = None
    text: str = ""
    sender_id: str | None = None
    is_read: bool = False
    created_at: datetime | None = None


class UserBasicDetails(TreeRecord):
    uid: str
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    photo_url: str | None = None
    company_ids: list[str] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# Request schemas


class ChatCreateRequest(BaseSchema):
    """Schema for creating a chat."""

    name: str = Field(..., min_length=1, max_length=255, description="Chat display name")
    participants: list[TreeKey] = Field(default_factory=list, description="Participant user IDs")
    type: ChatType = Field(default=ChatType.DIRECT, description="Chat type")
    description: str | None = Field(None, max_length=2000)
    category_id: str | None = None
    is_private: bool = False


class ChatUpdateRequest(BaseSchema):
    """Schema for patching chat details."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    category_id: str | None = None
    is_private: bool | None = None
    is_archived: bool | None = None
    settings: ChatFeatureSettings | None = None


class ParticipantRequest(BaseSchema):
    user_id: TreeKey


class MessageSendRequest(BaseSchema):
    """Schema for sending a message."""

    text: str = Field(..., min_length=1, max_length=10000, description="Message text")
    reply_to_message_id: str | None = Field(None, description="Message being replied to")
    reply_to_text: str | None = Field(None, description="Snapshot of the replied-to text")
    attachments: list[Attachment] | None = None
    mentions: list[TreeKey] | None = None


class MessageEditRequest(BaseSchema):
    text: str = Field(..., min_length=1, max_length=10000)


class ReactionRequest(BaseSchema):
    emoji: str = Field(..., min_length=1, max_length=32, pattern=r"^[^/]+$")


class ForwardRequest(BaseSchema):
    target_chat_ids: list[str] = Field(..., min_length=1)


class StatusUpdateRequest(BaseSchema):
    status: PresenceStatus
    custom_status: str | None = Field(None, max_length=140)


class DraftRequest(BaseSchema):
    text: str = Field(default="", max_length=10000)
    attachments: list[Attachment] | None = None


class ChatSettingsUpdate(BaseSchema):
    is_muted: bool | None = None
    is_starred: bool | None = None
    is_pinned: bool | None = None
    notification_level: NotificationLevel | None = None


class CategoryCreateRequest(BaseSchema):
    name: str = Field(..., min_length=1, max_length=100)
    color: str | None = None
    icon: str | None = None
    order: int = 0
    is_default: bool = False


class CategoryUpdateRequest(BaseSchema):
    name: str | None = Field(None, min_length=1, max_length=100)
    color: str | None = None
    icon: str | None = None
    order: int | None = None
    is_default: bool | None = None


class InvitationCreateRequest(BaseSchema):
    to_user_id: str = Field(..., min_length=1)
    message: str | None = Field(None, max_length=500)


class ContactUpdateRequest(BaseSchema):
    is_favorite: bool | None = None
    nickname: str | None = Field(None, max_length=100)
