"""Keeps an in-process messenger state in step with the tree store.

``MessengerSync`` owns two live subscriptions: the current user's chat list
and the messages of the active chat. Intents never raise; failures are
logged, recorded in ``state.error`` and reported as ``False``, ``None`` or
an empty list.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from app.core.config import settings
from app.domains.messenger.interfaces import AllowAllPermissions, PermissionOracle, SessionProvider
from app.domains.messenger.service import MessengerService
from app.domains.messenger.state import Action, ActionType, MessengerState, messenger_reducer
from app.exceptions.messenger import InvalidMessengerOperationError
from app.schemas.messenger import (
    Attachment,
    Chat,
    ChatCategory,
    ChatType,
    Contact,
    ContactType,
    DraftMessage,
    Message,
    PresenceStatus,
    ReplyReference,
    ScopeContext,
    UserBasicDetails,
)
from app.store.tree import Unsubscribe


logger = logging.getLogger(__name__)

T = TypeVar("T")

StateListener = Callable[[MessengerState], None]


class MessengerSync:
    """Reducer-backed messenger state with live subscriptions."""

    def __init__(
        self,
        service: MessengerService,
        session: SessionProvider,
        permissions: PermissionOracle | None = None,
    ):
        self.service = service
        self.session = session
        self.permissions = permissions or AllowAllPermissions()

        self._state = MessengerState()
        self._state_listeners: list[StateListener] = []
        self._scope: ScopeContext | None = None
        self._last_trigger_key: str | None = None
        self._unsubscribe_chat_list: Unsubscribe | None = None
        self._unsubscribe_messages: Unsubscribe | None = None
        self._active_chat_id: str | None = None

    @property
    def state(self) -> MessengerState:
        return self._state

    @property
    def scope(self) -> ScopeContext | None:
        return self._scope

    @property
    def user_id(self) -> str | None:
        return self.session.current_user_id

    # ===== State plumbing =====

    def dispatch(self, action: Action) -> MessengerState:
        self._state = messenger_reducer(self._state, action)
        for listener in list(self._state_listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"State listener failed on {action.type.value}: {str(e)}")
        return self._state

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)

        def remove() -> None:
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

        return remove

    def _fail(self, operation: str, error: Exception) -> None:
        message = getattr(error, "message", None) or str(error)
        logger.error(f"Error {operation}: {message}")
        self.dispatch(Action(type=ActionType.SET_ERROR, payload=message))

    async def _attempt(self, operation: str, call: Callable[[], Awaitable[T]], default: Any = None) -> T | Any:
        try:
            return await call()
        except Exception as e:
            self._fail(operation, e)
            return default

    def _require_scope(self) -> ScopeContext:
        if self._scope is None:
            raise InvalidMessengerOperationError("No company selected")
        return self._scope

    # ===== Lifecycle =====

    async def set_scope(self, scope: ScopeContext) -> bool:
        """Switch to ``scope``.

        The chat list is reloaded and re-subscribed only when the
        combination of storage path and user differs from the last one
        that triggered a reload.

        Returns:
            True when a reload was triggered
        """
        self._scope = scope
        base_path = scope.state_path
        if base_path != self._state.base_path:
            self.dispatch(Action(type=ActionType.SET_BASE_PATH, payload=base_path))

        user_id = self.user_id
        if not user_id:
            return False

        trigger_key = f"{base_path}-{user_id}"
        if trigger_key == self._last_trigger_key:
            return False
        self._last_trigger_key = trigger_key

        logger.info(f"Loading messenger data for {trigger_key}")
        await self._teardown_messages()
        self._active_chat_id = None
        self.dispatch(Action(type=ActionType.SET_ACTIVE_CHAT, payload=None))
        await self._subscribe_chat_list(scope, user_id)
        await self.refresh_categories()
        await self.refresh_contacts()
        return True

    async def start(self, scope: ScopeContext) -> bool:
        return await self.set_scope(scope)

    async def close(self) -> None:
        if self._unsubscribe_chat_list is not None:
            self._unsubscribe_chat_list()
            self._unsubscribe_chat_list = None
        await self._teardown_messages()
        self._active_chat_id = None
        self._last_trigger_key = None

    async def _subscribe_chat_list(self, scope: ScopeContext, user_id: str) -> None:
        if self._unsubscribe_chat_list is not None:
            self._unsubscribe_chat_list()
            self._unsubscribe_chat_list = None
        try:
            self._unsubscribe_chat_list = await self.service.listen_to_chat_list(scope, user_id, self.refresh_chats)
        except Exception as e:
            self._fail("subscribing to chat list", e)

    async def _teardown_messages(self) -> None:
        if self._unsubscribe_messages is not None:
            self._unsubscribe_messages()
            self._unsubscribe_messages = None

    # ===== Chats =====

    async def refresh_chats(self) -> list[Chat]:
        if self._scope is None or not self.user_id:
            return []
        self.dispatch(Action(type=ActionType.SET_LOADING, payload=True))
        try:
            chats = await self.service.fetch_user_chats(self._scope, self.user_id)
            previous = self._state.active_chat
            self.dispatch(Action(type=ActionType.SET_CHATS, payload=chats))
            if previous is not None and self._state.active_chat is None and self._active_chat_id == previous.id:
                logger.info(f"Active chat {previous.id} is gone, closing its message subscription")
                await self._teardown_messages()
                self._active_chat_id = None
            return chats
        except Exception as e:
            self._fail("refreshing chats", e)
            return []
        finally:
            self.dispatch(Action(type=ActionType.SET_LOADING, payload=False))

    async def set_active_chat(self, chat_id: str | None) -> bool:
        """Make ``chat_id`` the active chat, replacing any previous message subscription.

        The newest page of messages is loaded immediately; the live
        subscription then keeps the full message list current.
        """
        await self._teardown_messages()
        self._active_chat_id = chat_id
        if chat_id is None:
            self.dispatch(Action(type=ActionType.SET_ACTIVE_CHAT, payload=None))
            return True

        try:
            scope = self._require_scope()
            chat = next((c for c in self._state.chats if c.id == chat_id), None)
            if chat is None:
                chat = await self.service.get_chat(scope, chat_id)
            self.dispatch(Action(type=ActionType.SET_ACTIVE_CHAT, payload=chat))

            messages = await self.service.fetch_messages(scope, chat_id, settings.message_page_size)
            if self._active_chat_id != chat_id:
                return False
            self.dispatch(Action(type=ActionType.SET_MESSAGES, payload={"chat_id": chat_id, "messages": messages}))

            def on_messages(live: list[Message]) -> None:
                self.dispatch(Action(type=ActionType.SET_MESSAGES, payload={"chat_id": chat_id, "messages": live}))

            unsubscribe = await self.service.listen_to_messages(scope, chat_id, on_messages)
            if self._active_chat_id != chat_id:
                # Another chat was activated while subscribing
                unsubscribe()
                return False
            self._unsubscribe_messages = unsubscribe
            return True
        except Exception as e:
            self._fail(f"opening chat {chat_id}", e)
            return False

    async def create_chat(
        self,
        name: str,
        participants: list[str] | None = None,
        chat_type: ChatType | str = ChatType.DIRECT,
        **options: Any,
    ) -> Chat | None:
        async def call():
            chat = await self.service.create_chat(
                self._require_scope(), self.user_id, name, participants, chat_type, **options
            )
            self.dispatch(Action(type=ActionType.UPSERT_CHAT, payload=chat))
            return chat

        return await self._attempt("creating chat", call)

    async def update_chat_details(self, chat_id: str, **fields: Any) -> bool:
        async def call():
            chat = await self.service.update_chat_details(self._require_scope(), self.user_id, chat_id, **fields)
            self.dispatch(Action(type=ActionType.UPSERT_CHAT, payload=chat))
            return True

        return await self._attempt("updating chat", call, False)

    async def delete_chat(self, chat_id: str) -> bool:
        async def call():
            await self.service.delete_chat(self._require_scope(), self.user_id, chat_id)
            if self._active_chat_id == chat_id:
                await self.set_active_chat(None)
            self.dispatch(Action(type=ActionType.REMOVE_CHAT, payload=chat_id))
            return True

        return await self._attempt("deleting chat", call, False)

    # ===== Messages =====

    async def send_message(
        self,
        chat_id: str,
        text: str,
        reply_to: ReplyReference | None = None,
        attachments: list[Attachment] | None = None,
        mentions: list[str] | None = None,
    ) -> Message | None:
        async def call():
            message = await self.service.send_message(
                self._require_scope(),
                self.user_id,
                chat_id,
                text,
                reply_to=reply_to,
                attachments=attachments,
                mentions=mentions,
            )
            self.dispatch(Action(type=ActionType.UPSERT_MESSAGE, payload=message))
            self.dispatch(Action(type=ActionType.REMOVE_DRAFT, payload=chat_id))
            return message

        return await self._attempt("sending message", call)

    async def forward_message(self, chat_id: str, message_id: str, target_chat_ids: list[str]) -> bool:
        async def call():
            await self.service.forward_message(
                self._require_scope(), self.user_id, chat_id, message_id, target_chat_ids
            )
            return True

        return await self._attempt("forwarding message", call, False)

    async def _message_intent(self, operation: str, method, *args: Any) -> bool:
        async def call():
            message = await method(self._require_scope(), self.user_id, *args)
            self.dispatch(Action(type=ActionType.UPSERT_MESSAGE, payload=message))
            return True

        return await self._attempt(operation, call, False)

    async def edit_message(self, chat_id: str, message_id: str, text: str) -> bool:
        return await self._message_intent("editing message", self.service.edit_message, chat_id, message_id, text)

    async def delete_message(self, chat_id: str, message_id: str) -> bool:
        return await self._message_intent("deleting message", self.service.delete_message, chat_id, message_id)

    async def pin_message(self, chat_id: str, message_id: str) -> bool:
        return await self._message_intent("pinning message", self.service.pin_message, chat_id, message_id)

    async def unpin_message(self, chat_id: str, message_id: str) -> bool:
        return await self._message_intent("unpinning message", self.service.unpin_message, chat_id, message_id)

    async def mark_as_read(self, chat_id: str, message_id: str) -> bool:
        return await self._message_intent("marking message as read", self.service.mark_as_read, chat_id, message_id)

    async def add_reaction(self, chat_id: str, message_id: str, emoji: str) -> bool:
        return await self._message_intent(
            "adding reaction", self.service.add_reaction, chat_id, message_id, emoji
        )

    async def remove_reaction(self, chat_id: str, message_id: str, emoji: str) -> bool:
        return await self._message_intent(
            "removing reaction", self.service.remove_reaction, chat_id, message_id, emoji
        )

    async def search_messages(self, query: str, chat_id: str | None = None) -> list[Message]:
        self.dispatch(Action(type=ActionType.SET_SEARCHING, payload=True))
        try:
            results = await self.service.search_messages(self._require_scope(), self.user_id, query, chat_id)
            self.dispatch(Action(type=ActionType.SET_SEARCH_RESULTS, payload=results))
            return results
        except Exception as e:
            self._fail("searching messages", e)
            return []
        finally:
            self.dispatch(Action(type=ActionType.SET_SEARCHING, payload=False))

    # ===== Presence =====

    async def set_user_status(self, status: PresenceStatus | str, custom_status: str | None = None) -> bool:
        async def call():
            record = await self.service.set_user_status(self._require_scope(), self.user_id, status, custom_status)
            self.dispatch(Action(type=ActionType.SET_USER_STATUS, payload=record))
            return True

        return await self._attempt("updating status", call, False)

    # ===== Contacts =====

    async def refresh_contacts(self) -> bool:
        async def call():
            scope = self._require_scope()
            contacts = await self.service.fetch_user_contacts(self.user_id)
            invitations = await self.service.fetch_contact_invitations(self.user_id)
            users = await self.service.fetch_company_users(scope)
            self.dispatch(Action(type=ActionType.SET_CONTACTS, payload=contacts))
            self.dispatch(Action(type=ActionType.SET_CONTACT_INVITATIONS, payload=invitations))
            self.dispatch(Action(type=ActionType.SET_USERS, payload=users))
            return True

        return await self._attempt("refreshing contacts", call, False)

    async def send_contact_invitation(self, to_user_id: str, message: str | None = None) -> bool:
        async def call():
            invitation = await self.service.send_contact_invitation(self.user_id, to_user_id, message)
            if invitation is None:
                self.dispatch(
                    Action(type=ActionType.SET_ERROR, payload="An invitation to this user is already pending")
                )
                return False
            return True

        return await self._attempt("sending contact invitation", call, False)

    async def accept_contact_invitation(self, invitation_id: str) -> bool:
        async def call():
            await self.service.accept_contact_invitation(self.user_id, invitation_id)
            await self.refresh_contacts()
            return True

        return await self._attempt("accepting contact invitation", call, False)

    async def decline_contact_invitation(self, invitation_id: str) -> bool:
        async def call():
            await self.service.decline_contact_invitation(self.user_id, invitation_id)
            await self.refresh_contacts()
            return True

        return await self._attempt("declining contact invitation", call, False)

    async def remove_contact(self, contact_id: str) -> bool:
        async def call():
            await self.service.remove_contact(self.user_id, contact_id)
            await self.refresh_contacts()
            return True

        return await self._attempt("removing contact", call, False)

    async def update_contact(self, contact_id: str, **fields: Any) -> bool:
        async def call():
            await self.service.update_contact(self.user_id, contact_id, **fields)
            await self.refresh_contacts()
            return True

        return await self._attempt("updating contact", call, False)

    def get_work_contacts(self) -> list[UserBasicDetails]:
        """Users sharing the active company, excluding the current user."""
        if self._scope is None:
            return []
        company_id = self._scope.company_id
        return [u for u in self._state.users if company_id in u.company_ids and u.uid != self.user_id]

    def get_saved_contacts(self) -> list[Contact]:
        return [c for c in self._state.contacts if c.type == ContactType.SAVED]

    # ===== Categories =====

    async def refresh_categories(self) -> list[ChatCategory]:
        async def call():
            categories = await self.service.fetch_categories(self._require_scope())
            self.dispatch(Action(type=ActionType.SET_CATEGORIES, payload=categories))
            return categories

        return await self._attempt("refreshing categories", call, [])

    async def create_category(self, name: str, **fields: Any) -> ChatCategory | None:
        async def call():
            category = await self.service.create_category(self._require_scope(), self.user_id, name, **fields)
            self.dispatch(Action(type=ActionType.UPSERT_CATEGORY, payload=category))
            return category

        return await self._attempt("creating category", call)

    async def update_category(self, category_id: str, **fields: Any) -> bool:
        async def call():
            category = await self.service.update_category(self._require_scope(), self.user_id, category_id, **fields)
            self.dispatch(Action(type=ActionType.UPSERT_CATEGORY, payload=category))
            return True

        return await self._attempt("updating category", call, False)

    async def delete_category(self, category_id: str) -> bool:
        async def call():
            await self.service.delete_category(self._require_scope(), self.user_id, category_id)
            self.dispatch(Action(type=ActionType.REMOVE_CATEGORY, payload=category_id))
            return True

        return await self._attempt("deleting category", call, False)

    # ===== Settings, drafts, notifications =====

    async def update_chat_settings(self, chat_id: str, **fields: Any) -> bool:
        async def call():
            chat_settings = await self.service.update_chat_settings(self.user_id, chat_id, **fields)
            self.dispatch(Action(type=ActionType.SET_CHAT_SETTINGS, payload=chat_settings))
            return True

        return await self._attempt("updating chat settings", call, False)

    async def save_draft(self, chat_id: str, text: str, attachments: list[Attachment] | None = None) -> bool:
        async def call():
            draft = await self.service.save_draft(self.user_id, chat_id, text, attachments)
            self.dispatch(Action(type=ActionType.SET_DRAFT, payload=draft))
            return True

        return await self._attempt("saving draft", call, False)

    async def get_draft(self, chat_id: str) -> DraftMessage | None:
        async def call():
            draft = await self.service.get_draft(self.user_id, chat_id)
            if draft is not None:
                self.dispatch(Action(type=ActionType.SET_DRAFT, payload=draft))
            return draft

        return await self._attempt("loading draft", call)

    async def refresh_notifications(self) -> bool:
        async def call():
            notifications = await self.service.fetch_notifications(self.user_id)
            self.dispatch(Action(type=ActionType.SET_NOTIFICATIONS, payload=notifications))
            return True

        return await self._attempt("refreshing notifications", call, False)

    async def upload_attachment(self, chat_id: str, filename: str, data: bytes, mime_type: str) -> Attachment | None:
        return await self._attempt(
            "uploading attachment",
            lambda: self.service.upload_attachment(chat_id, self.user_id, filename, data, mime_type),
        )

    # ===== Permissions =====

    def can_view(self) -> bool:
        return self.permissions.has_permission("messenger", "chat", "view")

    def can_edit(self) -> bool:
        return self.permissions.has_permission("messenger", "chat", "edit")

    def can_delete(self) -> bool:
        return self.permissions.has_permission("messenger", "chat", "delete")

    def is_owner(self) -> bool:
        return self.permissions.is_owner()
