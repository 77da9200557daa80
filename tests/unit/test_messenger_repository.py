"""
Unit tests for MessengerRepository.

Exercises persisted layout and query behaviour against a real tree store.
"""

import pytest

from app.schemas.messenger import (
    ChatCategory,
    ChatNotification,
    ChatSettings,
    ChatType,
    NotificationLevel,
)
from tests.factories import ChatFactory, MessageFactory


class TestChatPersistence:
    """Test cases for chat records and indexes."""

    @pytest.mark.asyncio
    async def test_create_chat_writes_indexes(self, repository, tree_store, scope):
        """Test every participant gets an index entry in the same write."""
        chat = await repository.create_chat(scope, ChatFactory(participants=["u1", "u2"]))

        assert chat.id
        assert chat.created_at is not None
        stored = await tree_store.get(f"companies/acme/chats/{chat.id}")
        assert stored["participants"] == ["u1", "u2"]
        assert stored["companyId"] == "acme"
        for user in ["u1", "u2"]:
            entry = await tree_store.get(f"companies/acme/users/{user}/chats/{chat.id}")
            assert entry["role"] == "member"
            assert "joinedAt" in entry

    @pytest.mark.asyncio
    async def test_create_scoped_chat_writes_scope_index(self, repository, tree_store, scope):
        """Test scoped chats are registered in the scope index."""
        chat = await repository.create_chat(
            scope, ChatFactory(type=ChatType.DEPARTMENT, department_id="ops", participants=["u1"])
        )

        assert await tree_store.get(f"companies/acme/scopeIndex/department/ops/{chat.id}") is True

    @pytest.mark.asyncio
    async def test_get_user_chats_skips_dangling_entries(self, repository, tree_store, scope):
        """Test index entries pointing at missing chats are ignored."""
        chat = await repository.create_chat(scope, ChatFactory(participants=["u1"]))
        await tree_store.set("companies/acme/users/u1/chats/ghost", {"joinedAt": "2024-01-01T00:00:00Z"})

        chats = await repository.get_user_chats(scope, "u1")

        assert [c.id for c in chats] == [chat.id]

    @pytest.mark.asyncio
    async def test_scoped_lookup_falls_back_to_scan(self, repository, tree_store, scope):
        """Test chats written without a scope index entry are still found."""
        await tree_store.set(
            "companies/acme/chats/legacy",
            {"name": "Acme", "type": "company", "companyId": "acme", "participants": ["u1"]},
        )

        chats = await repository.get_company_chats(scope)

        assert [c.id for c in chats] == ["legacy"]

    @pytest.mark.asyncio
    async def test_update_chat_stamps_updated_at(self, repository, scope):
        """Test patches merge fields and refresh updatedAt."""
        chat = await repository.create_chat(scope, ChatFactory())

        updated = await repository.update_chat(scope, chat.id, {"description": "Ops room"})

        assert updated.description == "Ops room"
        assert updated.name == chat.name
        assert updated.updated_at >= chat.updated_at

    @pytest.mark.asyncio
    async def test_update_missing_chat_returns_none(self, repository, scope):
        """Test updating a missing chat does not create it."""
        assert await repository.update_chat(scope, "missing", {"name": "x"}) is None
        assert await repository.get_chat(scope, "missing") is None

    @pytest.mark.asyncio
    async def test_delete_chat_removes_everything(self, repository, tree_store, scope):
        """Test chat, messages, user indexes and scope index are removed together."""
        chat = await repository.create_chat(
            scope, ChatFactory(type=ChatType.ROLE, role_id="manager", participants=["u1", "u2"])
        )
        await repository.send_message(scope, MessageFactory(chat_id=chat.id, sender_id="u1"))

        assert await repository.delete_chat(scope, chat.id) is True

        assert await tree_store.get(f"companies/acme/chats/{chat.id}") is None
        assert await tree_store.get(f"companies/acme/messages/{chat.id}") is None
        assert await tree_store.get("companies/acme/users") is None
        assert await tree_store.get("companies/acme/scopeIndex") is None

    @pytest.mark.asyncio
    async def test_delete_missing_chat(self, repository, scope):
        """Test deleting a missing chat reports False."""
        assert await repository.delete_chat(scope, "missing") is False

    @pytest.mark.asyncio
    async def test_scopes_are_isolated(self, repository, scope):
        """Test chats of one company are invisible to another."""
        from app.schemas.messenger import ScopeContext

        await repository.create_chat(scope, ChatFactory(participants=["u1"]))

        assert await repository.get_user_chats(ScopeContext(company_id="globex"), "u1") == []


class TestMessagePersistence:
    """Test cases for messages."""

    @pytest.mark.asyncio
    async def test_send_message_updates_last_message(self, repository, scope):
        """Test the chat mirrors the newest message."""
        chat = await repository.create_chat(scope, ChatFactory())

        message = await repository.send_message(scope, MessageFactory(chat_id=chat.id, text="hello"))

        stored = await repository.get_chat(scope, chat.id)
        assert stored.last_message.id == message.id
        assert stored.last_message.text == "hello"
        assert stored.updated_at == message.timestamp

    @pytest.mark.asyncio
    async def test_get_messages_returns_newest_window(self, repository, scope):
        """Test only the newest messages are returned, oldest first."""
        chat = await repository.create_chat(scope, ChatFactory())
        for n in range(5):
            await repository.send_message(scope, MessageFactory(chat_id=chat.id, text=f"m{n}"))

        messages = await repository.get_messages(scope, chat.id, limit=3)

        assert [m.text for m in messages] == ["m2", "m3", "m4"]

    @pytest.mark.asyncio
    async def test_subscribe_to_messages_sorted(self, repository, scope):
        """Test subscribers receive the full list sorted by timestamp."""
        chat = await repository.create_chat(scope, ChatFactory())
        deliveries = []

        unsubscribe = await repository.subscribe_to_messages(scope, chat.id, deliveries.append)
        await repository.send_message(scope, MessageFactory(chat_id=chat.id, text="first"))
        await repository.send_message(scope, MessageFactory(chat_id=chat.id, text="second"))
        unsubscribe()

        assert deliveries[0] == []
        assert [m.text for m in deliveries[-1]] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_pin_and_unpin(self, repository, scope):
        """Test pinning updates both the chat list and the message flag."""
        chat = await repository.create_chat(scope, ChatFactory())
        message = await repository.send_message(scope, MessageFactory(chat_id=chat.id))

        await repository.pin_message(scope, chat.id, message.id)
        await repository.pin_message(scope, chat.id, message.id)

        assert (await repository.get_chat(scope, chat.id)).pinned_messages == [message.id]
        assert (await repository.get_message(scope, chat.id, message.id)).is_pinned is True

        await repository.unpin_message(scope, chat.id, message.id)

        assert (await repository.get_chat(scope, chat.id)).pinned_messages == []
        assert (await repository.get_message(scope, chat.id, message.id)).is_pinned is False

    @pytest.mark.asyncio
    async def test_transform_missing_message_returns_none(self, repository, tree_store, scope):
        """Test transforms never create messages that do not exist."""
        result = await repository.add_reaction(scope, "chat", "missing", "👍", "u1")

        assert result is None
        assert await tree_store.get("companies/acme/messages") is None


class TestCategories:
    """Test cases for chat categories."""

    @pytest.mark.asyncio
    async def test_categories_sorted_by_order(self, repository):
        """Test categories come back ordered."""
        await repository.create_category(ChatCategory(company_id="acme", name="Later", order=2))
        await repository.create_category(ChatCategory(company_id="acme", name="First", order=1))

        categories = await repository.get_categories("acme")

        assert [c.name for c in categories] == ["First", "Later"]

    @pytest.mark.asyncio
    async def test_delete_category_detaches_chats(self, repository, scope):
        """Test chats referencing a deleted category lose the reference."""
        category = await repository.create_category(ChatCategory(company_id="acme", name="Ops"))
        chat = await repository.create_chat(scope, ChatFactory(category_id=category.id))
        other = await repository.create_chat(scope, ChatFactory(category_id="another"))

        assert await repository.delete_category(scope, category.id) is True

        assert (await repository.get_chat(scope, chat.id)).category_id is None
        assert (await repository.get_chat(scope, other.id)).category_id == "another"
        assert await repository.get_categories("acme") == []


class TestUserData:
    """Test cases for per-user records."""

    @pytest.mark.asyncio
    async def test_chat_settings_defaults(self, repository):
        """Test missing settings read as defaults."""
        chat_settings = await repository.get_chat_settings("u1", "c1")

        assert chat_settings == ChatSettings(user_id="u1", chat_id="c1")
        assert chat_settings.notification_level == NotificationLevel.ALL

    @pytest.mark.asyncio
    async def test_update_chat_settings_merges(self, repository):
        """Test updates keep fields that were not changed."""
        await repository.update_chat_settings("u1", "c1", {"is_muted": True})
        updated = await repository.update_chat_settings("u1", "c1", {"is_starred": True})

        assert updated.is_muted is True
        assert updated.is_starred is True
        assert updated.is_pinned is False

    @pytest.mark.asyncio
    async def test_mark_all_notifications_as_read(self, repository):
        """Test every unread notification is marked read."""
        for n in range(3):
            await repository.create_notification("u1", ChatNotification(chat_id="c1", text=f"n{n}"))

        assert await repository.mark_all_notifications_as_read("u1") == 3

        notifications = await repository.get_user_notifications("u1")
        assert len(notifications) == 3
        assert all(n.is_read for n in notifications)
        assert await repository.mark_all_notifications_as_read("u1") == 0

    @pytest.mark.asyncio
    async def test_company_users_filtered_by_company(self, repository):
        """Test only profiles listing the company are returned."""
        from tests.factories import UserBasicDetailsFactory

        await repository.save_user_details(UserBasicDetailsFactory(uid="u1", company_ids=["acme"]))
        await repository.save_user_details(UserBasicDetailsFactory(uid="u2", company_ids=["globex"]))

        users = await repository.get_company_users("acme")

        assert [u.uid for u in users] == ["u1"]
