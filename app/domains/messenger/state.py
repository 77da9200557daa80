"""In-process messenger state and the reducer that evolves it."""

from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from app.schemas.messenger import (
    Chat,
    ChatCategory,
    ChatNotification,
    ChatSettings,
    Contact,
    ContactInvitation,
    DraftMessage,
    Message,
    UserBasicDetails,
    UserStatus,
)


class MessengerState(BaseModel):
    """Snapshot of everything the messenger UI renders."""

    chats: list[Chat] = Field(default_factory=list)
    messages: dict[str, list[Message]] = Field(default_factory=dict)
    active_chat: Chat | None = None
    contacts: list[Contact] = Field(default_factory=list)
    contact_invitations: list[ContactInvitation] = Field(default_factory=list)
    users: list[UserBasicDetails] = Field(default_factory=list)
    categories: list[ChatCategory] = Field(default_factory=list)
    user_statuses: dict[str, UserStatus] = Field(default_factory=dict)
    chat_settings: dict[str, ChatSettings] = Field(default_factory=dict)
    drafts: dict[str, DraftMessage] = Field(default_factory=dict)
    notifications: list[ChatNotification] = Field(default_factory=list)
    search_results: list[Message] = Field(default_factory=list)
    is_loading: bool = False
    is_searching: bool = False
    error: str | None = None
    base_path: str = ""


class ActionType(str, Enum):
    SET_LOADING = "SET_LOADING"
    SET_ERROR = "SET_ERROR"
    SET_BASE_PATH = "SET_BASE_PATH"
    SET_CHATS = "SET_CHATS"
    UPSERT_CHAT = "UPSERT_CHAT"
    REMOVE_CHAT = "REMOVE_CHAT"
    SET_ACTIVE_CHAT = "SET_ACTIVE_CHAT"
    SET_MESSAGES = "SET_MESSAGES"
    UPSERT_MESSAGE = "UPSERT_MESSAGE"
    SET_CONTACTS = "SET_CONTACTS"
    SET_CONTACT_INVITATIONS = "SET_CONTACT_INVITATIONS"
    SET_USERS = "SET_USERS"
    SET_CATEGORIES = "SET_CATEGORIES"
    UPSERT_CATEGORY = "UPSERT_CATEGORY"
    REMOVE_CATEGORY = "REMOVE_CATEGORY"
    SET_USER_STATUS = "SET_USER_STATUS"
    SET_CHAT_SETTINGS = "SET_CHAT_SETTINGS"
    SET_DRAFT = "SET_DRAFT"
    REMOVE_DRAFT = "REMOVE_DRAFT"
    SET_NOTIFICATIONS = "SET_NOTIFICATIONS"
    SET_SEARCHING = "SET_SEARCHING"
    SET_SEARCH_RESULTS = "SET_SEARCH_RESULTS"
    RESET = "RESET"


class Action(BaseModel):
    type: ActionType
    payload: Any = None


def _upsert(items: list, item, key: str = "id") -> list:
    item_key = getattr(item, key)
    if any(getattr(existing, key) == item_key for existing in items):
        return [item if getattr(existing, key) == item_key else existing for existing in items]
    return [*items, item]


def _set_chats(state: MessengerState, chats: list[Chat]) -> dict:
    update: dict[str, Any] = {"chats": list(chats)}
    if state.active_chat is not None:
        # A refresh without the active chat means it was deleted or left
        update["active_chat"] = next((c for c in chats if c.id == state.active_chat.id), None)
    return update


def _upsert_chat(state: MessengerState, chat: Chat) -> dict:
    update: dict[str, Any] = {"chats": _upsert(state.chats, chat)}
    if state.active_chat is not None and state.active_chat.id == chat.id:
        update["active_chat"] = chat
    return update


def _remove_chat(state: MessengerState, chat_id: str) -> dict:
    messages = {key: value for key, value in state.messages.items() if key != chat_id}
    update: dict[str, Any] = {"chats": [c for c in state.chats if c.id != chat_id], "messages": messages}
    if state.active_chat is not None and state.active_chat.id == chat_id:
        update["active_chat"] = None
    return update


def _set_messages(state: MessengerState, payload: dict) -> dict:
    return {"messages": {**state.messages, payload["chat_id"]: list(payload["messages"])}}


def _upsert_message(state: MessengerState, message: Message) -> dict:
    messages = {**state.messages, message.chat_id: _upsert(state.messages.get(message.chat_id, []), message)}
    search_results = [message if m.id == message.id else m for m in state.search_results]
    return {"messages": messages, "search_results": search_results}


_HANDLERS: dict[ActionType, Callable[[MessengerState, Any], dict]] = {
    ActionType.SET_LOADING: lambda state, loading: {"is_loading": bool(loading)},
    ActionType.SET_ERROR: lambda state, error: {"error": error},
    ActionType.SET_BASE_PATH: lambda state, path: {"base_path": path},
    ActionType.SET_CHATS: _set_chats,
    ActionType.UPSERT_CHAT: _upsert_chat,
    ActionType.REMOVE_CHAT: _remove_chat,
    ActionType.SET_ACTIVE_CHAT: lambda state, chat: {"active_chat": chat},
    ActionType.SET_MESSAGES: _set_messages,
    ActionType.UPSERT_MESSAGE: _upsert_message,
    ActionType.SET_CONTACTS: lambda state, contacts: {"contacts": list(contacts)},
    ActionType.SET_CONTACT_INVITATIONS: lambda state, invitations: {"contact_invitations": list(invitations)},
    ActionType.SET_USERS: lambda state, users: {"users": list(users)},
    ActionType.SET_CATEGORIES: lambda state, categories: {"categories": list(categories)},
    ActionType.UPSERT_CATEGORY: lambda state, category: {"categories": _upsert(state.categories, category)},
    ActionType.REMOVE_CATEGORY: lambda state, category_id: {
        "categories": [c for c in state.categories if c.id != category_id]
    },
    ActionType.SET_USER_STATUS: lambda state, status: {
        "user_statuses": {**state.user_statuses, status.user_id: status}
    },
    ActionType.SET_CHAT_SETTINGS: lambda state, chat_settings: {
        "chat_settings": {**state.chat_settings, chat_settings.chat_id: chat_settings}
    },
    ActionType.SET_DRAFT: lambda state, draft: {"drafts": {**state.drafts, draft.chat_id: draft}},
    ActionType.REMOVE_DRAFT: lambda state, chat_id: {
        "drafts": {key: value for key, value in state.drafts.items() if key != chat_id}
    },
    ActionType.SET_NOTIFICATIONS: lambda state, notifications: {"notifications": list(notifications)},
    ActionType.SET_SEARCHING: lambda state, searching: {"is_searching": bool(searching)},
    ActionType.SET_SEARCH_RESULTS: lambda state, results: {"search_results": list(results)},
}


def messenger_reducer(state: MessengerState, action: Action) -> MessengerState:
    """Return the state that results from applying ``action``; ``state`` is not modified."""
    if action.type == ActionType.RESET:
        return MessengerState(base_path=state.base_path)
    return state.model_copy(update=_HANDLERS[action.type](state, action.payload))
