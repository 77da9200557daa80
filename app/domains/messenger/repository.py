"""Messenger data access against the tree store.

Company-scoped records live under ``companies/{companyId}``; categories,
contacts, invitations, profiles, per-user chat settings, drafts and
notifications live at the tree root.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from pydantic.alias_generators import to_camel
from pydantic_core import to_jsonable_python

from app.core.config import settings
from app.schemas.messenger import (
    Chat,
    ChatCategory,
    ChatNotification,
    ChatSettings,
    ChatType,
    Contact,
    ContactInvitation,
    DraftMessage,
    LastMessage,
    Message,
    ScopeContext,
    UserBasicDetails,
    UserChatIndexEntry,
    UserStatus,
)
from app.store.tree import ABORT, TreeStore, Unsubscribe, join_path


logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_tree_value(value: Any) -> Any:
    """Convert models, enums and datetimes to the JSON form stored in the tree."""
    return to_jsonable_python(value, by_alias=True, exclude_none=True)


def to_tree_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Camel-case snake_case field names and convert their values for a patch."""
    return {to_camel(name): to_tree_value(value) for name, value in fields.items()}


def sort_by_timestamp(messages: list[Message]) -> list[Message]:
    return sorted(messages, key=lambda m: (m.timestamp or _EPOCH, m.id))


class MessengerRepository:
    """Reads, writes and subscriptions for messenger records."""

    def __init__(self, store: TreeStore):
        """Initialize repository with the tree store.

        Args:
            store: Tree store holding messenger data.
        """
        self.store = store

    # ===== Paths =====

    @staticmethod
    def _chat_path(scope: ScopeContext, chat_id: str) -> str:
        return f"{scope.company_path}/chats/{chat_id}"

    @staticmethod
    def _messages_path(scope: ScopeContext, chat_id: str) -> str:
        return f"{scope.company_path}/messages/{chat_id}"

    @staticmethod
    def _message_path(scope: ScopeContext, chat_id: str, message_id: str) -> str:
        return f"{scope.company_path}/messages/{chat_id}/{message_id}"

    @staticmethod
    def _user_index_path(scope: ScopeContext, user_id: str) -> str:
        return f"{scope.company_path}/users/{user_id}/chats"

    @staticmethod
    def _scope_index_key(chat_type: ChatType, scope_id: str, chat_id: str) -> str:
        return f"scopeIndex/{chat_type.value}/{scope_id}/{chat_id}"

    # ===== Chats =====

    async def create_chat(self, scope: ScopeContext, chat: Chat) -> Chat:
        """Create a chat with its index entries in one atomic write.

        Args:
            scope: Tenant scope the chat belongs to
            chat: Chat to create; id and timestamps are assigned here

        Returns:
            The stored chat
        """
        now = utcnow()
        chat = chat.model_copy(
            update={
                "id": self.store.push_key(),
                "created_at": now,
                "updated_at": now,
                "company_id": chat.company_id or scope.company_id,
            }
        )

        entry = UserChatIndexEntry(joined_at=now).to_tree()
        updates: dict[str, Any] = {f"chats/{chat.id}": chat.to_tree()}
        for participant in chat.participants:
            updates[f"users/{participant}/chats/{chat.id}"] = entry
        if chat.type.is_scoped and chat.scope_id:
            updates[self._scope_index_key(chat.type, chat.scope_id, chat.id)] = True

        try:
            await self.store.update(scope.company_path, updates)
        except Exception as e:
            logger.error(f"Error creating chat {chat.name!r}: {str(e)}")
            raise

        logger.info(f"Created {chat.type.value} chat {chat.id} in company {scope.company_id}")
        return chat

    async def get_chat(self, scope: ScopeContext, chat_id: str) -> Chat | None:
        data = await self.store.get(self._chat_path(scope, chat_id))
        return Chat.from_tree(data, id=chat_id)

    async def get_user_chat_ids(self, scope: ScopeContext, user_id: str) -> list[str]:
        index = await self.store.get(self._user_index_path(scope, user_id))
        return list(index) if isinstance(index, dict) else []

    async def get_user_chats(self, scope: ScopeContext, user_id: str) -> list[Chat]:
        """Resolve the user's chat index to chats, skipping dangling entries."""
        chats = []
        for chat_id in await self.get_user_chat_ids(scope, user_id):
            chat = await self.get_chat(scope, chat_id)
            if chat is None:
                logger.warning(f"Chat {chat_id} in index of user {user_id} no longer exists")
                continue
            chats.append(chat)
        return chats

    async def get_all_chats(self, scope: ScopeContext) -> list[Chat]:
        data = await self.store.get(f"{scope.company_path}/chats")
        if not isinstance(data, dict):
            return []
        return [Chat.from_tree(value, id=chat_id) for chat_id, value in data.items() if isinstance(value, dict)]

    async def get_scoped_chats(self, scope: ScopeContext, chat_type: ChatType, scope_id: str) -> list[Chat]:
        """Return chats of a scoped type for one scope id.

        Uses the scope index, falling back to a filtered scan of every chat
        when the index holds nothing (data written before the index existed).
        """
        index = await self.store.get(f"{scope.company_path}/scopeIndex/{chat_type.value}/{scope_id}")
        if isinstance(index, dict) and index:
            chats = []
            for chat_id in index:
                chat = await self.get_chat(scope, chat_id)
                if chat is not None:
                    chats.append(chat)
            return chats

        return [
            chat
            for chat in await self.get_all_chats(scope)
            if chat.type == chat_type and chat.scope_id == scope_id
        ]

    async def get_company_chats(self, scope: ScopeContext, company_id: str | None = None) -> list[Chat]:
        return await self.get_scoped_chats(scope, ChatType.COMPANY, company_id or scope.company_id)

    async def get_site_chats(self, scope: ScopeContext, site_id: str) -> list[Chat]:
        return await self.get_scoped_chats(scope, ChatType.SITE, site_id)

    async def get_department_chats(self, scope: ScopeContext, department_id: str) -> list[Chat]:
        return await self.get_scoped_chats(scope, ChatType.DEPARTMENT, department_id)

    async def get_role_chats(self, scope: ScopeContext, role_id: str) -> list[Chat]:
        return await self.get_scoped_chats(scope, ChatType.ROLE, role_id)

    async def update_chat(self, scope: ScopeContext, chat_id: str, fields: dict[str, Any]) -> Chat | None:
        """Merge ``fields`` (snake_case names) into a chat and stamp ``updatedAt``.

        Returns:
            The updated chat, or None when it does not exist
        """
        path = self._chat_path(scope, chat_id)
        if await self.store.get(path) is None:
            return None

        patch = to_tree_fields(fields)
        patch["updatedAt"] = to_tree_value(utcnow())
        try:
            await self.store.update(path, patch)
        except Exception as e:
            logger.error(f"Error updating chat {chat_id}: {str(e)}")
            raise
        return await self.get_chat(scope, chat_id)

    async def delete_chat(self, scope: ScopeContext, chat_id: str) -> bool:
        """Remove a chat, its messages and every index entry in one atomic write."""
        chat = await self.get_chat(scope, chat_id)
        if chat is None:
            return False

        updates: dict[str, Any] = {
            f"chats/{chat_id}": None,
            f"messages/{chat_id}": None,
        }
        for participant in chat.participants:
            updates[f"users/{participant}/chats/{chat_id}"] = None
        if chat.type.is_scoped and chat.scope_id:
            updates[self._scope_index_key(chat.type, chat.scope_id, chat_id)] = None

        try:
            await self.store.update(scope.company_path, updates)
        except Exception as e:
            logger.error(f"Error deleting chat {chat_id}: {str(e)}")
            raise

        logger.info(f"Deleted chat {chat_id} from company {scope.company_id}")
        return True

    async def set_user_chat_index(
        self,
        scope: ScopeContext,
        user_id: str,
        chat_id: str,
        entry: UserChatIndexEntry | None = None,
    ) -> None:
        entry = entry or UserChatIndexEntry(joined_at=utcnow())
        await self.store.set(f"{self._user_index_path(scope, user_id)}/{chat_id}", entry.to_tree())

    async def set_user_chat_indexes(self, scope: ScopeContext, user_id: str, chat_ids: list[str]) -> None:
        """Write index entries for several chats in one write."""
        if not chat_ids:
            return
        entry = UserChatIndexEntry(joined_at=utcnow()).to_tree()
        await self.store.update(self._user_index_path(scope, user_id), {chat_id: entry for chat_id in chat_ids})

    async def remove_user_chat_index(self, scope: ScopeContext, user_id: str, chat_id: str) -> None:
        await self.store.remove(f"{self._user_index_path(scope, user_id)}/{chat_id}")

    async def add_participant(self, scope: ScopeContext, chat_id: str, user_id: str) -> Chat | None:
        """Append a participant and write their index entry."""
        path = self._chat_path(scope, chat_id)

        def append(participants):
            participants = participants if isinstance(participants, list) else []
            if user_id in participants:
                return ABORT
            return [*participants, user_id]

        if await self.store.get(path) is None:
            return None
        await self.store.transaction(f"{path}/participants", append)
        await self.store.update(
            scope.company_path,
            {
                f"chats/{chat_id}/updatedAt": to_tree_value(utcnow()),
                f"users/{user_id}/chats/{chat_id}": UserChatIndexEntry(joined_at=utcnow()).to_tree(),
            },
        )
        return await self.get_chat(scope, chat_id)

    async def remove_participant(self, scope: ScopeContext, chat_id: str, user_id: str) -> Chat | None:
        """Drop a participant and their index entry."""
        path = self._chat_path(scope, chat_id)

        def drop(participants):
            if not isinstance(participants, list) or user_id not in participants:
                return ABORT
            return [p for p in participants if p != user_id]

        if await self.store.get(path) is None:
            return None
        await self.store.transaction(f"{path}/participants", drop)
        await self.store.update(
            scope.company_path,
            {
                f"chats/{chat_id}/updatedAt": to_tree_value(utcnow()),
                f"users/{user_id}/chats/{chat_id}": None,
            },
        )
        return await self.get_chat(scope, chat_id)

    async def subscribe_to_chat_list(
        self,
        scope: ScopeContext,
        user_id: str,
        callback: Callable[[], Awaitable[None] | None],
    ) -> Unsubscribe:
        """Invoke ``callback`` whenever the user's index or the chat collection changes.

        Returns:
            A single callable tearing down both underlying subscriptions
        """
        unsubscribe_index = await self.store.subscribe(
            self._user_index_path(scope, user_id), lambda _snapshot: callback()
        )
        unsubscribe_chats = await self.store.subscribe(
            f"{scope.company_path}/chats", lambda _snapshot: callback()
        )

        def unsubscribe() -> None:
            unsubscribe_index()
            unsubscribe_chats()

        return unsubscribe

    # ===== Messages =====

    async def send_message(self, scope: ScopeContext, message: Message) -> Message:
        """Store a message and refresh the chat's last-message mirror.

        The message and the mirror are two separate writes.
        """
        now = utcnow()
        message = message.model_copy(update={"id": self.store.push_key(), "timestamp": now})

        try:
            await self.store.set(self._message_path(scope, message.chat_id, message.id), message.to_tree())
            last_message = LastMessage(
                id=message.id,
                text=message.text,
                timestamp=now,
                sender_id=message.sender_id,
                sender_name=message.sender_name,
            )
            await self.store.update(
                self._chat_path(scope, message.chat_id),
                {"lastMessage": last_message.to_tree(), "updatedAt": to_tree_value(now)},
            )
        except Exception as e:
            logger.error(f"Error sending message to chat {message.chat_id}: {str(e)}")
            raise

        return message

    async def get_message(self, scope: ScopeContext, chat_id: str, message_id: str) -> Message | None:
        data = await self.store.get(self._message_path(scope, chat_id, message_id))
        return Message.from_tree(data, id=message_id, chat_id=chat_id)

    async def get_messages(self, scope: ScopeContext, chat_id: str, limit: int | None = None) -> list[Message]:
        """Return the newest ``limit`` messages of a chat in key order."""
        limit = limit or settings.message_page_size
        data = await self.store.get_last_children(self._messages_path(scope, chat_id), limit)
        return [
            Message.from_tree(value, id=message_id, chat_id=chat_id)
            for message_id, value in data.items()
            if isinstance(value, dict)
        ]

    async def get_chat_messages(self, scope: ScopeContext, chat_id: str) -> list[Message]:
        data = await self.store.get(self._messages_path(scope, chat_id))
        if not isinstance(data, dict):
            return []
        return [
            Message.from_tree(value, id=message_id, chat_id=chat_id)
            for message_id, value in data.items()
            if isinstance(value, dict)
        ]

    async def subscribe_to_messages(
        self,
        scope: ScopeContext,
        chat_id: str,
        callback: Callable[[list[Message]], Awaitable[None] | None],
    ) -> Unsubscribe:
        """Deliver every message of the chat, sorted by timestamp, on each change."""

        def on_snapshot(snapshot):
            messages = []
            if isinstance(snapshot, dict):
                messages = [
                    Message.from_tree(value, id=message_id, chat_id=chat_id)
                    for message_id, value in snapshot.items()
                    if isinstance(value, dict)
                ]
            return callback(sort_by_timestamp(messages))

        return await self.store.subscribe(self._messages_path(scope, chat_id), on_snapshot)

    async def _transform_message(
        self,
        scope: ScopeContext,
        chat_id: str,
        message_id: str,
        transform: Callable[[dict], Any],
    ) -> Message | None:
        path = self._message_path(scope, chat_id, message_id)

        def guarded(current):
            if not isinstance(current, dict):
                return ABORT
            return transform(current)

        _, value = await self.store.transaction(path, guarded)
        return Message.from_tree(value, id=message_id, chat_id=chat_id)

    async def mark_message_as_read(
        self, scope: ScopeContext, chat_id: str, message_id: str, user_id: str
    ) -> Message | None:
        def mark(current):
            read_by = current.get("readBy") or []
            if user_id in read_by:
                return ABORT
            current["readBy"] = [*read_by, user_id]
            return current

        return await self._transform_message(scope, chat_id, message_id, mark)

    async def add_reaction(
        self, scope: ScopeContext, chat_id: str, message_id: str, emoji: str, user_id: str
    ) -> Message | None:
        def add(current):
            reactions = current.get("reactions") or {}
            users = reactions.get(emoji) or []
            if user_id in users:
                return ABORT
            reactions[emoji] = [*users, user_id]
            current["reactions"] = reactions
            return current

        return await self._transform_message(scope, chat_id, message_id, add)

    async def remove_reaction(
        self, scope: ScopeContext, chat_id: str, message_id: str, emoji: str, user_id: str
    ) -> Message | None:
        def remove(current):
            reactions = current.get("reactions") or {}
            users = reactions.get(emoji) or []
            if user_id not in users:
                return ABORT
            remaining = [u for u in users if u != user_id]
            if remaining:
                reactions[emoji] = remaining
            else:
                reactions.pop(emoji)
            if reactions:
                current["reactions"] = reactions
            else:
                current.pop("reactions", None)
            return current

        return await self._transform_message(scope, chat_id, message_id, remove)

    async def edit_message(
        self, scope: ScopeContext, chat_id: str, message_id: str, text: str, sender_id: str
    ) -> Message | None:
        """Replace the text of a message authored by ``sender_id``.

        The previous text is appended to the edit history, stamped with the
        time it was written: the last edit, or the original send time.
        Messages by any other sender are left untouched.
        """
        edited_at = to_tree_value(utcnow())

        def edit(current):
            if current.get("senderId") != sender_id:
                return ABORT
            history = current.get("editHistory") or []
            history.append(
                {
                    "text": current.get("text", ""),
                    "timestamp": current.get("editedAt") or current.get("timestamp"),
                }
            )
            current.update(text=text, isEdited=True, editedAt=edited_at, editHistory=history)
            return current

        return await self._transform_message(scope, chat_id, message_id, edit)

    async def soft_delete_message(
        self, scope: ScopeContext, chat_id: str, message_id: str, sender_id: str
    ) -> Message | None:
        """Tombstone a message authored by ``sender_id``, clearing its attachments."""

        def tombstone(current):
            if current.get("senderId") != sender_id:
                return ABORT
            current.update(text=settings.deleted_message_text, isDeleted=True)
            current.pop("attachments", None)
            return current

        return await self._transform_message(scope, chat_id, message_id, tombstone)

    async def patch_last_message(self, scope: ScopeContext, chat_id: str, message_id: str, text: str) -> bool:
        """Rewrite the last-message mirror text when it mirrors ``message_id``."""

        def patch(current):
            if not isinstance(current, dict) or current.get("id") != message_id:
                return ABORT
            current["text"] = text
            return current

        committed, _ = await self.store.transaction(f"{self._chat_path(scope, chat_id)}/lastMessage", patch)
        return committed

    async def pin_message(self, scope: ScopeContext, chat_id: str, message_id: str) -> None:
        await self._set_pinned(scope, chat_id, message_id, True)

    async def unpin_message(self, scope: ScopeContext, chat_id: str, message_id: str) -> None:
        await self._set_pinned(scope, chat_id, message_id, False)

    async def _set_pinned(self, scope: ScopeContext, chat_id: str, message_id: str, pinned: bool) -> None:
        def toggle(pinned_ids):
            pinned_ids = pinned_ids if isinstance(pinned_ids, list) else []
            if pinned == (message_id in pinned_ids):
                return ABORT
            if pinned:
                return [*pinned_ids, message_id]
            return [p for p in pinned_ids if p != message_id] or None

        try:
            await self.store.transaction(f"{self._chat_path(scope, chat_id)}/pinnedMessages", toggle)
            await self.store.set(f"{self._message_path(scope, chat_id, message_id)}/isPinned", pinned)
        except Exception as e:
            logger.error(f"Error {'pinning' if pinned else 'unpinning'} message {message_id}: {str(e)}")
            raise

    async def search_messages(
        self, scope: ScopeContext, query: str, user_id: str, chat_id: str | None = None
    ) -> list[Message]:
        """Case-insensitive substring search over one chat or every indexed chat of the user.

        Tombstoned messages never match. Results are newest first.
        """
        needle = query.lower()
        chat_ids = [chat_id] if chat_id else await self.get_user_chat_ids(scope, user_id)

        results = []
        for current_chat_id in chat_ids:
            for message in await self.get_chat_messages(scope, current_chat_id):
                if not message.is_deleted and needle in message.text.lower():
                    results.append(message)

        results = sort_by_timestamp(results)
        results.reverse()
        return results[: settings.search_result_limit]

    # ===== Categories =====

    async def create_category(self, category: ChatCategory) -> ChatCategory:
        now = utcnow()
        category = category.model_copy(
            update={"id": self.store.push_key(), "created_at": now, "updated_at": now}
        )
        await self.store.set(f"categories/{category.company_id}/{category.id}", category.to_tree())
        return category

    async def get_category(self, company_id: str, category_id: str) -> ChatCategory | None:
        data = await self.store.get(f"categories/{company_id}/{category_id}")
        return ChatCategory.from_tree(data, id=category_id)

    async def get_categories(self, company_id: str) -> list[ChatCategory]:
        data = await self.store.get(f"categories/{company_id}")
        if not isinstance(data, dict):
            return []
        categories = [
            ChatCategory.from_tree(value, id=category_id)
            for category_id, value in data.items()
            if isinstance(value, dict)
        ]
        return sorted(categories, key=lambda c: (c.order, c.name))

    async def update_category(
        self, company_id: str, category_id: str, fields: dict[str, Any]
    ) -> ChatCategory | None:
        path = f"categories/{company_id}/{category_id}"
        if await self.store.get(path) is None:
            return None
        patch = to_tree_fields(fields)
        patch["updatedAt"] = to_tree_value(utcnow())
        await self.store.update(path, patch)
        return await self.get_category(company_id, category_id)

    async def delete_category(self, scope: ScopeContext, category_id: str) -> bool:
        """Delete a category and detach it from every chat in one atomic write."""
        if await self.get_category(scope.company_id, category_id) is None:
            return False

        now = to_tree_value(utcnow())
        updates: dict[str, Any] = {f"categories/{scope.company_id}/{category_id}": None}
        for chat in await self.get_all_chats(scope):
            if chat.category_id == category_id:
                chat_path = self._chat_path(scope, chat.id)
                updates[f"{chat_path}/categoryId"] = None
                updates[f"{chat_path}/updatedAt"] = now

        try:
            await self.store.update("", updates)
        except Exception as e:
            logger.error(f"Error deleting category {category_id}: {str(e)}")
            raise
        return True

    # ===== Presence =====

    async def set_user_status(self, scope: ScopeContext, status: UserStatus) -> UserStatus:
        status = status.model_copy(update={"last_active": utcnow()})
        await self.store.set(f"{scope.company_path}/userStatus/{status.user_id}", status.to_tree())
        return status

    async def get_user_status(self, scope: ScopeContext, user_id: str) -> UserStatus | None:
        data = await self.store.get(f"{scope.company_path}/userStatus/{user_id}")
        return UserStatus.from_tree(data, user_id=user_id)

    async def get_user_statuses(self, scope: ScopeContext) -> dict[str, UserStatus]:
        data = await self.store.get(f"{scope.company_path}/userStatus")
        if not isinstance(data, dict):
            return {}
        return {
            user_id: UserStatus.from_tree(value, user_id=user_id)
            for user_id, value in data.items()
            if isinstance(value, dict)
        }

    async def subscribe_to_user_status(
        self,
        scope: ScopeContext,
        user_id: str,
        callback: Callable[[UserStatus | None], Awaitable[None] | None],
    ) -> Unsubscribe:
        return await self.store.subscribe(
            f"{scope.company_path}/userStatus/{user_id}",
            lambda snapshot: callback(UserStatus.from_tree(snapshot, user_id=user_id)),
        )

    # ===== Users =====

    async def get_user_details(self, user_id: str) -> UserBasicDetails | None:
        data = await self.store.get(f"users/{user_id}/profile")
        return UserBasicDetails.from_tree(data, uid=user_id)

    async def save_user_details(self, details: UserBasicDetails) -> None:
        await self.store.set(f"users/{details.uid}/profile", details.to_tree())

    async def get_company_users(self, company_id: str) -> list[UserBasicDetails]:
        data = await self.store.get("users")
        if not isinstance(data, dict):
            return []
        users = []
        for user_id, record in data.items():
            profile = record.get("profile") if isinstance(record, dict) else None
            if isinstance(profile, dict) and company_id in (profile.get("companyIds") or []):
                users.append(UserBasicDetails.from_tree(profile, uid=user_id))
        return users

    # ===== Chat settings =====

    async def get_chat_settings(self, user_id: str, chat_id: str) -> ChatSettings:
        data = await self.store.get(f"users/{user_id}/chatSettings/{chat_id}")
        return ChatSettings.from_tree(data, user_id=user_id, chat_id=chat_id) or ChatSettings(
            user_id=user_id, chat_id=chat_id
        )

    async def update_chat_settings(self, user_id: str, chat_id: str, fields: dict[str, Any]) -> ChatSettings:
        current = await self.get_chat_settings(user_id, chat_id)
        updated = ChatSettings.model_validate({**current.model_dump(), **fields})
        await self.store.set(f"users/{user_id}/chatSettings/{chat_id}", updated.to_tree())
        return updated

    # ===== Drafts =====

    async def save_draft(self, draft: DraftMessage) -> DraftMessage:
        draft = draft.model_copy(update={"last_updated": utcnow()})
        await self.store.set(f"users/{draft.user_id}/drafts/{draft.chat_id}", draft.to_tree())
        return draft

    async def get_draft(self, user_id: str, chat_id: str) -> DraftMessage | None:
        data = await self.store.get(f"users/{user_id}/drafts/{chat_id}")
        return DraftMessage.from_tree(data, user_id=user_id, chat_id=chat_id)

    async def delete_draft(self, user_id: str, chat_id: str) -> None:
        await self.store.remove(f"users/{user_id}/drafts/{chat_id}")

    # ===== Notifications =====

    @staticmethod
    def _parse_notifications(data: Any) -> list[ChatNotification]:
        if not isinstance(data, dict):
            return []
        notifications = [
            ChatNotification.from_tree(value, id=notification_id)
            for notification_id, value in data.items()
            if isinstance(value, dict)
        ]
        return sorted(notifications, key=lambda n: n.created_at or _EPOCH, reverse=True)

    async def create_notification(self, user_id: str, notification: ChatNotification) -> ChatNotification:
        notification = notification.model_copy(
            update={"id": self.store.push_key(), "created_at": utcnow()}
        )
        await self.store.set(f"notifications/{user_id}/messages/{notification.id}", notification.to_tree())
        return notification

    async def get_user_notifications(self, user_id: str) -> list[ChatNotification]:
        return self._parse_notifications(await self.store.get(f"notifications/{user_id}/messages"))

    async def mark_notification_as_read(self, user_id: str, notification_id: str) -> bool:
        path = f"notifications/{user_id}/messages/{notification_id}"
        if await self.store.get(path) is None:
            return False
        await self.store.set(f"{path}/isRead", True)
        return True

    async def mark_all_notifications_as_read(self, user_id: str) -> int:
        path = f"notifications/{user_id}/messages"
        unread = [n.id for n in await self.get_user_notifications(user_id) if not n.is_read]
        if unread:
            await self.store.update(path, {f"{notification_id}/isRead": True for notification_id in unread})
        return len(unread)

    async def subscribe_to_notifications(
        self,
        user_id: str,
        callback: Callable[[list[ChatNotification]], Awaitable[None] | None],
    ) -> Unsubscribe:
        return await self.store.subscribe(
            f"notifications/{user_id}/messages",
            lambda snapshot: callback(self._parse_notifications(snapshot)),
        )

    # ===== Contacts =====

    async def get_user_contacts(self, user_id: str) -> list[Contact]:
        data = await self.store.get("contacts")
        if not isinstance(data, dict):
            return []
        return [
            Contact.from_tree(value, id=contact_id)
            for contact_id, value in data.items()
            if isinstance(value, dict) and value.get("userId") == user_id
        ]

    async def get_contact(self, contact_id: str) -> Contact | None:
        return Contact.from_tree(await self.store.get(f"contacts/{contact_id}"), id=contact_id)

    async def add_contact(self, contact: Contact) -> Contact:
        now = utcnow()
        contact = contact.model_copy(update={"id": self.store.push_key(), "created_at": now, "updated_at": now})
        await self.store.set(f"contacts/{contact.id}", contact.to_tree())
        return contact

    async def add_contacts(self, contacts: list[Contact]) -> list[Contact]:
        """Create several contacts in one atomic write."""
        now = utcnow()
        created = [
            contact.model_copy(update={"id": self.store.push_key(), "created_at": now, "updated_at": now})
            for contact in contacts
        ]
        await self.store.update("contacts", {contact.id: contact.to_tree() for contact in created})
        return created

    async def update_contact(self, contact_id: str, fields: dict[str, Any]) -> Contact | None:
        path = f"contacts/{contact_id}"
        if await self.store.get(path) is None:
            return None
        patch = to_tree_fields(fields)
        patch["updatedAt"] = to_tree_value(utcnow())
        await self.store.update(path, patch)
        return await self.get_contact(contact_id)

    async def delete_contact(self, contact_id: str) -> None:
        await self.store.remove(f"contacts/{contact_id}")

    async def get_invitations(self) -> list[ContactInvitation]:
        data = await self.store.get("contactInvitations")
        if not isinstance(data, dict):
            return []
        return [
            ContactInvitation.from_tree(value, id=invitation_id)
            for invitation_id, value in data.items()
            if isinstance(value, dict)
        ]

    async def get_invitation(self, invitation_id: str) -> ContactInvitation | None:
        data = await self.store.get(f"contactInvitations/{invitation_id}")
        return ContactInvitation.from_tree(data, id=invitation_id)

    async def create_invitation(self, invitation: ContactInvitation) -> ContactInvitation:
        invitation = invitation.model_copy(update={"id": self.store.push_key(), "sent_at": utcnow()})
        await self.store.set(f"contactInvitations/{invitation.id}", invitation.to_tree())
        return invitation

    async def update_invitation(self, invitation_id: str, fields: dict[str, Any]) -> ContactInvitation | None:
        path = f"contactInvitations/{invitation_id}"
        if await self.store.get(path) is None:
            return None
        await self.store.update(path, to_tree_fields(fields))
        return await self.get_invitation(invitation_id)

    async def transition_invitation(
        self,
        invitation_id: str,
        expected_status: str,
        fields: dict[str, Any],
    ) -> ContactInvitation | None:
        """Apply ``fields`` only while the invitation still has ``expected_status``.

        Returns:
            The invitation after the attempt, or None when it does not exist.
        """
        patch = to_tree_fields(fields)

        def transition(current):
            if not isinstance(current, dict) or current.get("status") != expected_status:
                return ABORT
            current.update(patch)
            return current

        _, value = await self.store.transaction(join_path("contactInvitations", invitation_id), transition)
        return ContactInvitation.from_tree(value, id=invitation_id)
