"""Messenger business rules on top of the repository."""

import logging
import time
from collections.abc import Awaitable, Callable
from pathlib import PurePath
from typing import Any

from app.core.config import settings
from app.domains.messenger.interfaces import BlobStorage
from app.domains.messenger.repository import MessengerRepository, sort_by_timestamp, utcnow
from app.exceptions.base import AppPermissionError, NotFoundError
from app.exceptions.messenger import (
    AuthenticationRequiredError,
    ChatNotFoundError,
    InvalidMessengerOperationError,
    InvitationNotFoundError,
    InvitationPermissionError,
    MessageNotFoundError,
    MessagePermissionError,
)
from app.schemas.messenger import (
    Attachment,
    AttachmentType,
    Chat,
    ChatCategory,
    ChatFeatureSettings,
    ChatNotification,
    ChatSettings,
    ChatType,
    Contact,
    ContactInvitation,
    ContactType,
    DraftMessage,
    ForwardReference,
    InvitationStatus,
    Message,
    MessageStatus,
    PresenceStatus,
    ReplyReference,
    ScopeContext,
    UserBasicDetails,
    UserStatus,
)
from app.store.tree import Unsubscribe


logger = logging.getLogger(__name__)

SCOPE_FIELDS = ("site_id", "subsite_id", "department_id", "role_id")


def attachment_type_for(mime_type: str) -> AttachmentType:
    """Infer the attachment kind from a MIME type."""
    mime_type = (mime_type or "").lower()
    if mime_type.startswith("image/"):
        return AttachmentType.IMAGE
    if mime_type.startswith("video/"):
        return AttachmentType.VIDEO
    if mime_type.startswith("audio/"):
        return AttachmentType.AUDIO
    if any(marker in mime_type for marker in ("pdf", "document", "sheet")):
        return AttachmentType.DOCUMENT
    return AttachmentType.FILE


def require_user(user_id: str | None) -> str:
    if not user_id:
        raise AuthenticationRequiredError()
    return user_id


def require_key(value: str | None, label: str) -> str:
    """Reject values that cannot be stored as a single tree key."""
    if not value or "/" in value:
        raise InvalidMessengerOperationError(f"Invalid {label}: {value!r}")
    return value


class MessengerService:
    """Service class for messenger operations."""

    def __init__(self, repository: MessengerRepository, blob_storage: BlobStorage | None = None):
        """Initialize messenger service.

        Args:
            repository: Data access for messenger records.
            blob_storage: Storage for attachment uploads, if any.
        """
        self.repository = repository
        self.blob_storage = blob_storage

    # ===== Chats =====

    async def create_chat(
        self,
        scope: ScopeContext,
        user_id: str | None,
        name: str,
        participants: list[str] | None = None,
        chat_type: ChatType | str = ChatType.DIRECT,
        **options: Any,
    ) -> Chat:
        """Create a chat, or join the existing one for a scoped chat type.

        Company, site, department and role chats are unique per scope: when
        one already exists the caller is added to it instead of creating a
        duplicate.

        Args:
            scope: Tenant scope
            user_id: Creating user
            name: Chat display name
            participants: Other participant user IDs
            chat_type: Chat type
            **options: site_id, subsite_id, department_id, role_id,
                description, category_id, is_private

        Returns:
            The created or reused chat
        """
        user_id = require_user(user_id)
        chat_type = ChatType(chat_type)

        members = [require_key(p, "participant id") for p in dict.fromkeys(participants or [])]
        if user_id not in members:
            members.append(user_id)

        chat = Chat(
            name=name,
            type=chat_type,
            participants=members,
            created_by=user_id,
            company_id=scope.company_id,
            description=options.get("description"),
            category_id=options.get("category_id"),
            is_private=options.get("is_private", False),
            settings=ChatFeatureSettings(),
            **{field: options.get(field) or getattr(scope, field) for field in SCOPE_FIELDS},
        )

        if chat_type.is_scoped:
            if not chat.scope_id:
                raise InvalidMessengerOperationError(f"A {chat_type.value} chat requires a {chat_type.value} scope")
            existing = await self._find_scoped_chat(scope, chat_type, chat.scope_id)
            if existing is not None:
                logger.info(f"Reusing {chat_type.value} chat {existing.id} for user {user_id}")
                return await self._join_scoped_chat(scope, existing, user_id, name)

        return await self.repository.create_chat(scope, chat)

    async def _find_scoped_chat(self, scope: ScopeContext, chat_type: ChatType, scope_id: str) -> Chat | None:
        chats = await self.repository.get_scoped_chats(scope, chat_type, scope_id)
        if not chats:
            return None
        return min(chats, key=lambda c: (c.created_at or utcnow(), c.id))

    async def _join_scoped_chat(self, scope: ScopeContext, chat: Chat, user_id: str, name: str) -> Chat:
        if user_id not in chat.participants:
            chat = await self.repository.add_participant(scope, chat.id, user_id) or chat
        elif chat.id not in await self.repository.get_user_chat_ids(scope, user_id):
            await self.repository.set_user_chat_index(scope, user_id, chat.id)

        # Company chats follow the company's current name
        if chat.type == ChatType.COMPANY and name and chat.name != name:
            chat = await self.repository.update_chat(scope, chat.id, {"name": name}) or chat
        return chat

    async def fetch_user_chats(self, scope: ScopeContext, user_id: str | None) -> list[Chat]:
        """Return the user's chats, most recently updated first.

        When the user's index is empty, every chat in the company is scanned
        for ones the user belongs to (as participant, or via the company
        chat) and the missing index entries are written back.
        """
        user_id = require_user(user_id)
        chats = await self.repository.get_user_chats(scope, user_id)

        if not chats:
            found = {
                chat.id: chat
                for chat in await self.repository.get_all_chats(scope)
                if user_id in chat.participants
                or (chat.type == ChatType.COMPANY and chat.company_id == scope.company_id)
            }
            chats = list(found.values())
            if chats:
                logger.info(f"Recovered {len(chats)} chats for user {user_id} without index entries")
                try:
                    await self.repository.set_user_chat_indexes(scope, user_id, list(found))
                except Exception as e:
                    logger.warning(f"Failed to backfill chat index for user {user_id}: {str(e)}")

        return sorted(chats, key=lambda c: c.updated_at or c.created_at or utcnow(), reverse=True)

    async def _fetch_scoped(self, scope: ScopeContext, chat_type: ChatType, scope_id: str | None) -> list[Chat]:
        if not scope_id:
            return []
        try:
            return await self.repository.get_scoped_chats(scope, chat_type, scope_id)
        except Exception as e:
            logger.error(f"Error fetching {chat_type.value} chats for {scope_id}: {str(e)}")
            return []

    async def fetch_company_chats(self, scope: ScopeContext) -> list[Chat]:
        return await self._fetch_scoped(scope, ChatType.COMPANY, scope.company_id)

    async def fetch_site_chats(self, scope: ScopeContext, site_id: str | None = None) -> list[Chat]:
        return await self._fetch_scoped(scope, ChatType.SITE, site_id or scope.subsite_id or scope.site_id)

    async def fetch_department_chats(self, scope: ScopeContext, department_id: str | None = None) -> list[Chat]:
        return await self._fetch_scoped(scope, ChatType.DEPARTMENT, department_id or scope.department_id)

    async def fetch_role_chats(self, scope: ScopeContext, role_id: str | None = None) -> list[Chat]:
        return await self._fetch_scoped(scope, ChatType.ROLE, role_id or scope.role_id)

    async def get_chat(self, scope: ScopeContext, chat_id: str) -> Chat:
        chat = await self.repository.get_chat(scope, chat_id)
        if chat is None:
            raise ChatNotFoundError(f"Chat {chat_id} not found")
        return chat

    async def update_chat_details(
        self, scope: ScopeContext, user_id: str | None, chat_id: str, **fields: Any
    ) -> Chat:
        require_user(user_id)
        chat = await self.repository.update_chat(scope, chat_id, fields)
        if chat is None:
            raise ChatNotFoundError(f"Chat {chat_id} not found")
        return chat

    async def delete_chat(self, scope: ScopeContext, user_id: str | None, chat_id: str) -> None:
        require_user(user_id)
        if not await self.repository.delete_chat(scope, chat_id):
            raise ChatNotFoundError(f"Chat {chat_id} not found")

    async def add_participant(
        self, scope: ScopeContext, user_id: str | None, chat_id: str, participant_id: str
    ) -> Chat:
        require_user(user_id)
        require_key(participant_id, "participant id")
        chat = await self.repository.add_participant(scope, chat_id, participant_id)
        if chat is None:
            raise ChatNotFoundError(f"Chat {chat_id} not found")
        return chat

    async def remove_participant(
        self, scope: ScopeContext, user_id: str | None, chat_id: str, participant_id: str
    ) -> Chat:
        require_user(user_id)
        chat = await self.get_chat(scope, chat_id)
        if participant_id == chat.created_by:
            raise InvalidMessengerOperationError("The chat creator cannot be removed")
        return await self.repository.remove_participant(scope, chat_id, participant_id) or chat

    async def listen_to_chat_list(
        self, scope: ScopeContext, user_id: str, callback: Callable[[], Awaitable[None] | None]
    ) -> Unsubscribe:
        return await self.repository.subscribe_to_chat_list(scope, user_id, callback)

    # ===== Messages =====

    async def send_message(
        self,
        scope: ScopeContext,
        user_id: str | None,
        chat_id: str,
        text: str,
        reply_to: ReplyReference | None = None,
        attachments: list[Attachment] | None = None,
        mentions: list[str] | None = None,
        forwarded_from: ForwardReference | None = None,
        sender_name: str | None = None,
    ) -> Message:
        """Send a message to a chat.

        Args:
            scope: Tenant scope
            user_id: Sending user
            chat_id: Target chat
            text: Message text
            reply_to: Message being replied to
            attachments: Uploaded attachments
            mentions: Mentioned user IDs
            forwarded_from: Origin of a forwarded message
            sender_name: Display name; looked up from the profile when omitted

        Returns:
            The stored message
        """
        user_id = require_user(user_id)
        for mentioned in mentions or []:
            require_key(mentioned, "mention")
        await self.get_chat(scope, chat_id)

        if sender_name is None:
            details = await self.repository.get_user_details(user_id)
            sender_name = (details.display_name if details else "") or "Unknown User"

        message = Message(
            chat_id=chat_id,
            text=text,
            sender_id=user_id,
            sender_name=sender_name,
            status=MessageStatus.SENT,
            read_by=[user_id],
            attachments=attachments or None,
            mentions=mentions or None,
            reply_to=reply_to,
            forwarded_from=forwarded_from,
        )
        message = await self.repository.send_message(scope, message)

        try:
            await self.repository.delete_draft(user_id, chat_id)
        except Exception as e:
            logger.warning(f"Failed to clear draft of user {user_id} in chat {chat_id}: {str(e)}")

        await self._notify_mentions(message)
        return message

    async def _notify_mentions(self, message: Message) -> None:
        for mentioned in dict.fromkeys(message.mentions or []):
            if mentioned == message.sender_id:
                continue
            notification = ChatNotification(
                chat_id=message.chat_id,
                message_id=message.id,
                text=f"{message.sender_name} mentioned you: {message.text}",
                sender_id=message.sender_id,
            )
            try:
                await self.repository.create_notification(mentioned, notification)
            except Exception as e:
                logger.warning(f"Failed to notify {mentioned} of message {message.id}: {str(e)}")

    async def forward_message(
        self,
        scope: ScopeContext,
        user_id: str | None,
        chat_id: str,
        message_id: str,
        target_chat_ids: list[str],
    ) -> list[Message]:
        """Copy a message into each target chat, recording where it came from."""
        user_id = require_user(user_id)
        source = await self.get_message(scope, chat_id, message_id)
        for target_chat_id in target_chat_ids:
            await self.get_chat(scope, target_chat_id)

        origin = ForwardReference(
            chat_id=chat_id,
            message_id=message_id,
            sender_id=source.sender_id,
            sender_name=source.sender_name,
        )
        forwarded = []
        for target_chat_id in target_chat_ids:
            forwarded.append(
                await self.send_message(
                    scope,
                    user_id,
                    target_chat_id,
                    source.text,
                    attachments=source.attachments,
                    forwarded_from=origin,
                )
            )
        return forwarded

    async def get_message(self, scope: ScopeContext, chat_id: str, message_id: str) -> Message:
        message = await self.repository.get_message(scope, chat_id, message_id)
        if message is None:
            raise MessageNotFoundError(f"Message {message_id} not found in chat {chat_id}")
        return message

    async def fetch_messages(self, scope: ScopeContext, chat_id: str, limit: int | None = None) -> list[Message]:
        return sort_by_timestamp(await self.repository.get_messages(scope, chat_id, limit))

    async def listen_to_messages(
        self,
        scope: ScopeContext,
        chat_id: str,
        callback: Callable[[list[Message]], Awaitable[None] | None],
    ) -> Unsubscribe:
        return await self.repository.subscribe_to_messages(scope, chat_id, callback)

    async def mark_as_read(self, scope: ScopeContext, user_id: str | None, chat_id: str, message_id: str) -> Message:
        user_id = require_user(user_id)
        message = await self.repository.mark_message_as_read(scope, chat_id, message_id, user_id)
        if message is None:
            raise MessageNotFoundError(f"Message {message_id} not found in chat {chat_id}")
        return message

    async def add_reaction(
        self, scope: ScopeContext, user_id: str | None, chat_id: str, message_id: str, emoji: str
    ) -> Message:
        user_id = require_user(user_id)
        require_key(emoji, "reaction")
        message = await self.repository.add_reaction(scope, chat_id, message_id, emoji, user_id)
        if message is None:
            raise MessageNotFoundError(f"Message {message_id} not found in chat {chat_id}")
        return message

    async def remove_reaction(
        self, scope: ScopeContext, user_id: str | None, chat_id: str, message_id: str, emoji: str
    ) -> Message:
        user_id = require_user(user_id)
        require_key(emoji, "reaction")
        message = await self.repository.remove_reaction(scope, chat_id, message_id, emoji, user_id)
        if message is None:
            raise MessageNotFoundError(f"Message {message_id} not found in chat {chat_id}")
        return message

    async def _authored_message(self, scope: ScopeContext, user_id: str, chat_id: str, message_id: str) -> Message:
        message = await self.get_message(scope, chat_id, message_id)
        if message.sender_id != user_id:
            raise MessagePermissionError()
        return message

    async def edit_message(
        self, scope: ScopeContext, user_id: str | None, chat_id: str, message_id: str, text: str
    ) -> Message:
        """Edit a message's text; only its sender may do so.

        Raises:
            MessageNotFoundError: If the message does not exist
            MessagePermissionError: If the user did not send the message
        """
        user_id = require_user(user_id)
        message = await self._authored_message(scope, user_id, chat_id, message_id)
        if message.is_deleted:
            raise InvalidMessengerOperationError("Deleted messages cannot be edited")

        updated = await self.repository.edit_message(scope, chat_id, message_id, text, user_id)
        if updated is None:
            raise MessageNotFoundError(f"Message {message_id} not found in chat {chat_id}")
        await self.repository.patch_last_message(scope, chat_id, message_id, text)
        return updated

    async def delete_message(self, scope: ScopeContext, user_id: str | None, chat_id: str, message_id: str) -> Message:
        """Soft-delete a message; only its sender may do so."""
        user_id = require_user(user_id)
        await self._authored_message(scope, user_id, chat_id, message_id)

        deleted = await self.repository.soft_delete_message(scope, chat_id, message_id, user_id)
        if deleted is None:
            raise MessageNotFoundError(f"Message {message_id} not found in chat {chat_id}")
        await self.repository.patch_last_message(scope, chat_id, message_id, settings.deleted_message_text)
        return deleted

    async def pin_message(self, scope: ScopeContext, user_id: str | None, chat_id: str, message_id: str) -> Message:
        require_user(user_id)
        await self.get_message(scope, chat_id, message_id)
        await self.repository.pin_message(scope, chat_id, message_id)
        return await self.get_message(scope, chat_id, message_id)

    async def unpin_message(self, scope: ScopeContext, user_id: str | None, chat_id: str, message_id: str) -> Message:
        require_user(user_id)
        await self.get_message(scope, chat_id, message_id)
        await self.repository.unpin_message(scope, chat_id, message_id)
        return await self.get_message(scope, chat_id, message_id)

    async def search_messages(
        self, scope: ScopeContext, user_id: str | None, query: str, chat_id: str | None = None
    ) -> list[Message]:
        user_id = require_user(user_id)
        if not query.strip():
            return []
        return await self.repository.search_messages(scope, query.strip(), user_id, chat_id)

    # ===== Categories =====

    async def create_category(
        self, scope: ScopeContext, user_id: str | None, name: str, **fields: Any
    ) -> ChatCategory:
        require_user(user_id)
        category = ChatCategory(company_id=scope.company_id, name=name, **fields)
        return await self.repository.create_category(category)

    async def fetch_categories(self, scope: ScopeContext) -> list[ChatCategory]:
        return await self.repository.get_categories(scope.company_id)

    async def update_category(
        self, scope: ScopeContext, user_id: str | None, category_id: str, **fields: Any
    ) -> ChatCategory:
        require_user(user_id)
        category = await self.repository.update_category(scope.company_id, category_id, fields)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found")
        return category

    async def delete_category(self, scope: ScopeContext, user_id: str | None, category_id: str) -> None:
        require_user(user_id)
        if not await self.repository.delete_category(scope, category_id):
            raise NotFoundError(f"Category {category_id} not found")

    # ===== Presence and users =====

    async def set_user_status(
        self,
        scope: ScopeContext,
        user_id: str | None,
        status: PresenceStatus | str,
        custom_status: str | None = None,
    ) -> UserStatus:
        user_id = require_user(user_id)
        record = UserStatus(user_id=user_id, status=PresenceStatus(status), custom_status=custom_status)
        return await self.repository.set_user_status(scope, record)

    async def fetch_user_status(self, scope: ScopeContext, user_id: str) -> UserStatus | None:
        return await self.repository.get_user_status(scope, user_id)

    async def fetch_user_statuses(self, scope: ScopeContext) -> dict[str, UserStatus]:
        return await self.repository.get_user_statuses(scope)

    async def listen_to_user_status(
        self,
        scope: ScopeContext,
        user_id: str,
        callback: Callable[[UserStatus | None], Awaitable[None] | None],
    ) -> Unsubscribe:
        return await self.repository.subscribe_to_user_status(scope, user_id, callback)

    async def fetch_user_details(self, user_id: str) -> UserBasicDetails | None:
        return await self.repository.get_user_details(user_id)

    async def fetch_company_users(self, scope: ScopeContext) -> list[UserBasicDetails]:
        return await self.repository.get_company_users(scope.company_id)

    # ===== Chat settings and drafts =====

    async def fetch_chat_settings(self, user_id: str | None, chat_id: str) -> ChatSettings:
        return await self.repository.get_chat_settings(require_user(user_id), chat_id)

    async def update_chat_settings(self, user_id: str | None, chat_id: str, **fields: Any) -> ChatSettings:
        return await self.repository.update_chat_settings(require_user(user_id), chat_id, fields)

    async def save_draft(
        self,
        user_id: str | None,
        chat_id: str,
        text: str,
        attachments: list[Attachment] | None = None,
    ) -> DraftMessage:
        user_id = require_user(user_id)
        draft = DraftMessage(chat_id=chat_id, user_id=user_id, text=text, attachments=attachments or None)
        return await self.repository.save_draft(draft)

    async def get_draft(self, user_id: str | None, chat_id: str) -> DraftMessage | None:
        return await self.repository.get_draft(require_user(user_id), chat_id)

    async def delete_draft(self, user_id: str | None, chat_id: str) -> None:
        await self.repository.delete_draft(require_user(user_id), chat_id)

    # ===== Notifications =====

    async def fetch_notifications(self, user_id: str | None) -> list[ChatNotification]:
        return await self.repository.get_user_notifications(require_user(user_id))

    async def mark_notification_as_read(self, user_id: str | None, notification_id: str) -> None:
        if not await self.repository.mark_notification_as_read(require_user(user_id), notification_id):
            raise NotFoundError(f"Notification {notification_id} not found")

    async def mark_all_notifications_as_read(self, user_id: str | None) -> int:
        return await self.repository.mark_all_notifications_as_read(require_user(user_id))

    async def listen_to_notifications(
        self, user_id: str, callback: Callable[[list[ChatNotification]], Awaitable[None] | None]
    ) -> Unsubscribe:
        return await self.repository.subscribe_to_notifications(user_id, callback)

    # ===== Contacts =====

    async def fetch_user_contacts(self, user_id: str | None) -> list[Contact]:
        return await self.repository.get_user_contacts(require_user(user_id))

    async def fetch_contact_invitations(self, user_id: str | None) -> list[ContactInvitation]:
        """Pending invitations the user has received."""
        user_id = require_user(user_id)
        return [
            invitation
            for invitation in await self.repository.get_invitations()
            if invitation.to_user_id == user_id and invitation.status == InvitationStatus.PENDING
        ]

    async def send_contact_invitation(
        self, user_id: str | None, to_user_id: str, message: str | None = None
    ) -> ContactInvitation | None:
        """Invite another user to become a contact.

        Returns:
            The new invitation, or None when a pending invitation from the
            same sender to the same recipient already exists
        """
        user_id = require_user(user_id)
        if to_user_id == user_id:
            raise InvalidMessengerOperationError("You cannot invite yourself")

        for invitation in await self.repository.get_invitations():
            if (
                invitation.from_user_id == user_id
                and invitation.to_user_id == to_user_id
                and invitation.status == InvitationStatus.PENDING
            ):
                logger.warning(f"Invitation from {user_id} to {to_user_id} already pending")
                return None

        invitation = ContactInvitation(from_user_id=user_id, to_user_id=to_user_id, message=message or "")
        return await self.repository.create_invitation(invitation)

    async def _pending_invitation_for(self, user_id: str, invitation_id: str) -> ContactInvitation:
        invitation = await self.repository.get_invitation(invitation_id)
        if invitation is None:
            raise InvitationNotFoundError(f"Invitation {invitation_id} not found")
        if invitation.to_user_id != user_id:
            raise InvitationPermissionError()
        if invitation.status != InvitationStatus.PENDING:
            raise InvalidMessengerOperationError(f"Invitation is already {invitation.status.value}")
        return invitation

    async def _resolve_invitation(
        self, invitation_id: str, status: InvitationStatus, stamp_field: str
    ) -> ContactInvitation:
        invitation = await self.repository.transition_invitation(
            invitation_id,
            InvitationStatus.PENDING.value,
            {"status": status, stamp_field: utcnow()},
        )
        if invitation is None:
            raise InvitationNotFoundError(f"Invitation {invitation_id} not found")
        if invitation.status != status:
            raise InvalidMessengerOperationError(f"Invitation is already {invitation.status.value}")
        return invitation

    async def accept_contact_invitation(self, user_id: str | None, invitation_id: str) -> list[Contact]:
        """Accept an invitation, creating a contact on each side.

        Returns:
            The two created contacts (inviter's first)
        """
        user_id = require_user(user_id)
        await self._pending_invitation_for(user_id, invitation_id)
        invitation = await self._resolve_invitation(invitation_id, InvitationStatus.ACCEPTED, "accepted_at")

        contacts = await self.repository.add_contacts(
            [
                Contact(
                    user_id=invitation.from_user_id,
                    contact_user_id=invitation.to_user_id,
                    type=ContactType.SAVED,
                    status=InvitationStatus.ACCEPTED,
                ),
                Contact(
                    user_id=invitation.to_user_id,
                    contact_user_id=invitation.from_user_id,
                    type=ContactType.SAVED,
                    status=InvitationStatus.ACCEPTED,
                ),
            ]
        )
        logger.info(f"Invitation {invitation_id} accepted by {user_id}")
        return contacts

    async def decline_contact_invitation(self, user_id: str | None, invitation_id: str) -> ContactInvitation:
        user_id = require_user(user_id)
        await self._pending_invitation_for(user_id, invitation_id)
        return await self._resolve_invitation(invitation_id, InvitationStatus.DECLINED, "declined_at")

    async def _own_contact(self, user_id: str, contact_id: str) -> Contact:
        contact = await self.repository.get_contact(contact_id)
        if contact is None:
            raise NotFoundError(f"Contact {contact_id} not found")
        if contact.user_id != user_id:
            raise AppPermissionError("You can only manage your own contacts")
        return contact

    async def remove_contact(self, user_id: str | None, contact_id: str) -> None:
        user_id = require_user(user_id)
        await self._own_contact(user_id, contact_id)
        await self.repository.delete_contact(contact_id)

    async def update_contact(self, user_id: str | None, contact_id: str, **fields: Any) -> Contact:
        user_id = require_user(user_id)
        contact = await self._own_contact(user_id, contact_id)
        return await self.repository.update_contact(contact_id, fields) or contact

    # ===== Attachments =====

    async def upload_attachment(
        self,
        chat_id: str,
        user_id: str | None,
        filename: str,
        data: bytes,
        mime_type: str,
    ) -> Attachment:
        """Upload a file and describe it as a message attachment.

        Raises:
            InvalidMessengerOperationError: If no storage is configured or
                the file is too large
        """
        user_id = require_user(user_id)
        if self.blob_storage is None:
            raise InvalidMessengerOperationError("Attachment storage is not configured")
        if len(data) > settings.max_attachment_size:
            raise InvalidMessengerOperationError(
                f"Attachment exceeds the {settings.max_attachment_size} byte limit"
            )

        name = PurePath(filename).name or "file"
        timestamp = int(time.time() * 1000)
        try:
            url = await self.blob_storage.upload(
                f"attachments/{chat_id}/{user_id}_{timestamp}_{name}", data, mime_type
            )
        except Exception as e:
            logger.error(f"Error uploading attachment {name!r} to chat {chat_id}: {str(e)}")
            raise

        return Attachment(
            id=f"{user_id}_{timestamp}",
            type=attachment_type_for(mime_type),
            url=url,
            name=name,
            size=len(data),
            mime_type=mime_type or "application/octet-stream",
            metadata={},
        )
