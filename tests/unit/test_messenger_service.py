"""
Unit tests for MessengerService.

Covers chat lifecycle, message rules, contacts and attachments end to end
against a real tree store.
"""

from unittest.mock import AsyncMock

import pytest

from app.core.config import settings
from app.domains.messenger.service import MessengerService, attachment_type_for
from app.exceptions.base import AppPermissionError, NotFoundError
from app.exceptions.messenger import (
    AuthenticationRequiredError,
    ChatNotFoundError,
    InvalidMessengerOperationError,
    InvitationPermissionError,
    MessageNotFoundError,
    MessagePermissionError,
)
from app.schemas.messenger import (
    AttachmentType,
    ChatType,
    ContactType,
    InvitationStatus,
    ReplyReference,
    ScopeContext,
)
from tests.factories import AttachmentFactory


@pytest.fixture
def company_scope():
    return ScopeContext(company_id="acme")


async def make_group(service, scope, user_id, other_user_id):
    return await service.create_chat(scope, user_id, "Project", [other_user_id], ChatType.GROUP)


class TestChatCreation:
    """Test cases for creating and joining chats."""

    @pytest.mark.asyncio
    async def test_creator_is_always_participant(self, service, scope, user_id, other_user_id):
        """Test the creator is added even when not listed."""
        chat = await service.create_chat(scope, user_id, "Pair", [other_user_id, other_user_id])

        assert chat.participants == [other_user_id, user_id]
        assert chat.created_by == user_id
        assert chat.type == ChatType.DIRECT

    @pytest.mark.asyncio
    async def test_create_requires_user(self, service, scope):
        """Test creating a chat while signed out fails."""
        with pytest.raises(AuthenticationRequiredError):
            await service.create_chat(scope, None, "Nobody")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("participant", ["a/b", ""])
    async def test_invalid_participant_ids_rejected(self, service, repository, scope, user_id, participant):
        """Test participant ids that would escape the user index are rejected."""
        with pytest.raises(InvalidMessengerOperationError):
            await service.create_chat(scope, user_id, "Broken", [participant], ChatType.GROUP)

        assert await repository.get_all_chats(scope) == []

    @pytest.mark.asyncio
    async def test_invalid_added_participant_rejected(self, service, scope, user_id, other_user_id):
        """Test adding a participant id containing a separator fails."""
        chat = await make_group(service, scope, user_id, other_user_id)

        with pytest.raises(InvalidMessengerOperationError):
            await service.add_participant(scope, user_id, chat.id, "a/b")

        assert (await service.get_chat(scope, chat.id)).participants == [other_user_id, user_id]

    @pytest.mark.asyncio
    async def test_scoped_creation_is_idempotent(self, service, repository, scope, user_id):
        """Test creating the same department chat twice yields one chat."""
        first = await service.create_chat(scope, user_id, "Ops", chat_type=ChatType.DEPARTMENT)
        second = await service.create_chat(scope, user_id, "Ops", chat_type=ChatType.DEPARTMENT)

        assert second.id == first.id
        assert second.participants == [user_id]
        assert len(await repository.get_all_chats(scope)) == 1

    @pytest.mark.asyncio
    async def test_second_user_joins_company_chat(
        self, service, repository, company_scope, user_id, other_user_id
    ):
        """Test a second user creating the company chat joins the existing one."""
        first = await service.create_chat(company_scope, user_id, "Acme", chat_type=ChatType.COMPANY)
        joined = await service.create_chat(company_scope, other_user_id, "Acme", chat_type=ChatType.COMPANY)

        assert joined.id == first.id
        assert joined.participants == [user_id, other_user_id]
        assert len(await repository.get_all_chats(company_scope)) == 1
        assert [c.id for c in await service.fetch_user_chats(company_scope, other_user_id)] == [first.id]

    @pytest.mark.asyncio
    async def test_company_chat_follows_company_name(self, service, company_scope, user_id, other_user_id):
        """Test joining a company chat under a new name renames it."""
        await service.create_chat(company_scope, user_id, "Acme", chat_type=ChatType.COMPANY)

        joined = await service.create_chat(company_scope, other_user_id, "Acme Corp", chat_type=ChatType.COMPANY)

        assert joined.name == "Acme Corp"

    @pytest.mark.asyncio
    async def test_scoped_chat_requires_scope_id(self, service, company_scope, user_id):
        """Test a department chat cannot be created without a department."""
        with pytest.raises(InvalidMessengerOperationError):
            await service.create_chat(company_scope, user_id, "Ops", chat_type=ChatType.DEPARTMENT)

    @pytest.mark.asyncio
    async def test_scoped_chats_fetched_by_scope(self, service, scope, user_id):
        """Test scoped fetches return the chat for the current scope."""
        site_chat = await service.create_chat(scope, user_id, "London", chat_type=ChatType.SITE)
        role_chat = await service.create_chat(scope, user_id, "Managers", chat_type=ChatType.ROLE)

        assert [c.id for c in await service.fetch_site_chats(scope)] == [site_chat.id]
        assert [c.id for c in await service.fetch_role_chats(scope)] == [role_chat.id]
        assert await service.fetch_department_chats(scope) == []
        assert await service.fetch_department_chats(ScopeContext(company_id="acme")) == []

    @pytest.mark.asyncio
    async def test_scoped_fetch_is_best_effort(self, service, repository, scope, monkeypatch):
        """Test a failing scoped fetch returns an empty list."""
        monkeypatch.setattr(repository, "get_scoped_chats", AsyncMock(side_effect=RuntimeError("down")))

        assert await service.fetch_company_chats(scope) == []


class TestChatList:
    """Test cases for listing and managing chats."""

    @pytest.mark.asyncio
    async def test_chats_sorted_by_activity(self, service, scope, user_id, other_user_id):
        """Test the most recently active chat comes first."""
        older = await make_group(service, scope, user_id, other_user_id)
        newer = await make_group(service, scope, user_id, other_user_id)
        await service.send_message(scope, user_id, older.id, "bump")

        chats = await service.fetch_user_chats(scope, user_id)

        assert [c.id for c in chats] == [older.id, newer.id]

    @pytest.mark.asyncio
    async def test_missing_index_is_rebuilt(self, service, repository, tree_store, scope, user_id):
        """Test chats found by scanning are written back to the user's index."""
        await tree_store.set(
            "companies/acme/chats/orphan",
            {"name": "Orphan", "type": "group", "participants": [user_id], "companyId": "acme"},
        )

        chats = await service.fetch_user_chats(scope, user_id)

        assert [c.id for c in chats] == ["orphan"]
        assert await repository.get_user_chat_ids(scope, user_id) == ["orphan"]

    @pytest.mark.asyncio
    async def test_company_chat_found_without_membership(self, service, tree_store, scope, user_id):
        """Test the company chat is recovered for users not yet listed in it."""
        await tree_store.set(
            "companies/acme/chats/everyone",
            {"name": "Acme", "type": "company", "participants": ["someone"], "companyId": "acme"},
        )

        chats = await service.fetch_user_chats(scope, user_id)

        assert [c.id for c in chats] == ["everyone"]

    @pytest.mark.asyncio
    async def test_update_chat_details(self, service, scope, user_id, other_user_id):
        """Test chat details can be patched."""
        chat = await make_group(service, scope, user_id, other_user_id)

        updated = await service.update_chat_details(scope, user_id, chat.id, name="Renamed", is_archived=True)

        assert updated.name == "Renamed"
        assert updated.is_archived is True

    @pytest.mark.asyncio
    async def test_update_missing_chat(self, service, scope, user_id):
        """Test patching a missing chat raises ChatNotFoundError."""
        with pytest.raises(ChatNotFoundError):
            await service.update_chat_details(scope, user_id, "missing", name="x")

    @pytest.mark.asyncio
    async def test_delete_chat(self, service, scope, user_id, other_user_id):
        """Test a deleted chat disappears from every participant's list."""
        chat = await make_group(service, scope, user_id, other_user_id)

        await service.delete_chat(scope, user_id, chat.id)

        assert await service.fetch_user_chats(scope, other_user_id) == []
        with pytest.raises(ChatNotFoundError):
            await service.delete_chat(scope, user_id, chat.id)

    @pytest.mark.asyncio
    async def test_participants(self, service, repository, scope, user_id, other_user_id):
        """Test participants can be added and removed."""
        chat = await make_group(service, scope, user_id, other_user_id)

        added = await service.add_participant(scope, user_id, chat.id, "user-carol")
        assert added.participants == [other_user_id, user_id, "user-carol"]
        assert chat.id in await repository.get_user_chat_ids(scope, "user-carol")

        removed = await service.remove_participant(scope, user_id, chat.id, "user-carol")
        assert "user-carol" not in removed.participants
        assert await repository.get_user_chat_ids(scope, "user-carol") == []

    @pytest.mark.asyncio
    async def test_creator_cannot_be_removed(self, service, scope, user_id, other_user_id):
        """Test removing the chat creator is rejected."""
        chat = await make_group(service, scope, user_id, other_user_id)

        with pytest.raises(InvalidMessengerOperationError):
            await service.remove_participant(scope, other_user_id, chat.id, user_id)


class TestSendMessage:
    """Test cases for sending messages."""

    @pytest.mark.asyncio
    async def test_sender_name_from_profile(self, service, scope, user_id, other_user_id, profiles):
        """Test the sender name is taken from the stored profile."""
        chat = await make_group(service, scope, user_id, other_user_id)

        message = await service.send_message(scope, user_id, chat.id, "Hi")

        assert message.sender_name == "Alice Smith"
        assert message.read_by == [user_id]

    @pytest.mark.asyncio
    async def test_sender_without_profile(self, service, scope, user_id, other_user_id):
        """Test senders without a profile are named Unknown User."""
        chat = await make_group(service, scope, user_id, other_user_id)

        message = await service.send_message(scope, user_id, chat.id, "Hi")

        assert message.sender_name == "Unknown User"

    @pytest.mark.asyncio
    async def test_send_to_missing_chat(self, service, scope, user_id):
        """Test sending to a missing chat raises ChatNotFoundError."""
        with pytest.raises(ChatNotFoundError):
            await service.send_message(scope, user_id, "missing", "Hi")

    @pytest.mark.asyncio
    async def test_send_clears_draft(self, service, scope, user_id, other_user_id):
        """Test a successful send removes the chat draft."""
        chat = await make_group(service, scope, user_id, other_user_id)
        await service.save_draft(user_id, chat.id, "half written")

        await service.send_message(scope, user_id, chat.id, "fully written")

        assert await service.get_draft(user_id, chat.id) is None

    @pytest.mark.asyncio
    async def test_draft_failure_does_not_fail_send(
        self, service, repository, scope, user_id, other_user_id, monkeypatch
    ):
        """Test a failing draft cleanup is only logged."""
        chat = await make_group(service, scope, user_id, other_user_id)
        monkeypatch.setattr(repository, "delete_draft", AsyncMock(side_effect=RuntimeError("down")))

        message = await service.send_message(scope, user_id, chat.id, "Hi")

        assert message.id

    @pytest.mark.asyncio
    async def test_reply_and_attachments_stored(self, service, scope, user_id, other_user_id):
        """Test reply references and attachments are persisted."""
        chat = await make_group(service, scope, user_id, other_user_id)
        original = await service.send_message(scope, other_user_id, chat.id, "Question?")
        attachment = AttachmentFactory()

        reply = await service.send_message(
            scope,
            user_id,
            chat.id,
            "Answer",
            reply_to=ReplyReference(id=original.id, text=original.text),
            attachments=[attachment],
        )

        stored = await service.get_message(scope, chat.id, reply.id)
        assert stored.reply_to.id == original.id
        assert stored.attachments == [attachment]

    @pytest.mark.asyncio
    async def test_mentions_notify_others(self, service, repository, scope, user_id, other_user_id, profiles):
        """Test mentioned users other than the sender are notified."""
        chat = await make_group(service, scope, user_id, other_user_id)

        message = await service.send_message(
            scope, user_id, chat.id, "@Bob look", mentions=[other_user_id, user_id]
        )

        notifications = await service.fetch_notifications(other_user_id)
        assert len(notifications) == 1
        assert notifications[0].message_id == message.id
        assert notifications[0].text == "Alice Smith mentioned you: @Bob look"
        assert await service.fetch_notifications(user_id) == []

    @pytest.mark.asyncio
    async def test_forward_message(self, service, scope, user_id, other_user_id):
        """Test forwarding copies the text and records the origin."""
        source_chat = await make_group(service, scope, user_id, other_user_id)
        target_chat = await make_group(service, scope, user_id, other_user_id)
        original = await service.send_message(scope, other_user_id, source_chat.id, "Worth sharing")

        [forwarded] = await service.forward_message(
            scope, user_id, source_chat.id, original.id, [target_chat.id]
        )

        assert forwarded.chat_id == target_chat.id
        assert forwarded.text == "Worth sharing"
        assert forwarded.sender_id == user_id
        assert forwarded.forwarded_from.message_id == original.id
        assert forwarded.forwarded_from.sender_id == other_user_id

    @pytest.mark.asyncio
    async def test_fetch_messages_in_order(self, service, scope, user_id, other_user_id):
        """Test fetched messages are oldest first."""
        chat = await make_group(service, scope, user_id, other_user_id)
        for text in ["one", "two", "three"]:
            await service.send_message(scope, user_id, chat.id, text)

        messages = await service.fetch_messages(scope, chat.id)

        assert [m.text for m in messages] == ["one", "two", "three"]


class TestMessageActions:
    """Test cases for reactions, edits, deletes and pins."""

    @pytest.mark.asyncio
    async def test_mark_as_read_is_idempotent(self, service, scope, user_id, other_user_id):
        """Test reading twice records the reader once."""
        chat = await make_group(service, scope, user_id, other_user_id)
        message = await service.send_message(scope, user_id, chat.id, "Hi")

        await service.mark_as_read(scope, other_user_id, chat.id, message.id)
        updated = await service.mark_as_read(scope, other_user_id, chat.id, message.id)

        assert updated.read_by == [user_id, other_user_id]

    @pytest.mark.asyncio
    async def test_reactions(self, service, repository, scope, user_id, other_user_id):
        """Test reactions are idempotent and emptied keys disappear."""
        chat = await make_group(service, scope, user_id, other_user_id)
        message = await service.send_message(scope, user_id, chat.id, "Hi")

        await service.add_reaction(scope, user_id, chat.id, message.id, "👍")
        await service.add_reaction(scope, user_id, chat.id, message.id, "👍")
        updated = await service.add_reaction(scope, other_user_id, chat.id, message.id, "👍")
        assert updated.reactions == {"👍": [user_id, other_user_id]}

        await service.remove_reaction(scope, user_id, chat.id, message.id, "👍")
        updated = await service.remove_reaction(scope, other_user_id, chat.id, message.id, "👍")
        assert updated.reactions == {}
        assert await repository.store.get(f"companies/acme/messages/{chat.id}/{message.id}/reactions") is None

    @pytest.mark.asyncio
    async def test_reaction_on_missing_message(self, service, scope, user_id, other_user_id):
        """Test reacting to a missing message raises MessageNotFoundError."""
        chat = await make_group(service, scope, user_id, other_user_id)

        with pytest.raises(MessageNotFoundError):
            await service.add_reaction(scope, user_id, chat.id, "missing", "👍")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("emoji", ["a/b", ""])
    async def test_reaction_key_must_be_single_segment(self, service, scope, user_id, other_user_id, emoji):
        """Test reactions that cannot be stored as one key are rejected."""
        chat = await make_group(service, scope, user_id, other_user_id)
        message = await service.send_message(scope, user_id, chat.id, "Hi")

        with pytest.raises(InvalidMessengerOperationError):
            await service.add_reaction(scope, user_id, chat.id, message.id, emoji)
        with pytest.raises(InvalidMessengerOperationError):
            await service.remove_reaction(scope, user_id, chat.id, message.id, emoji)

        stored = await service.get_message(scope, chat.id, message.id)
        assert stored.reactions == {}

    @pytest.mark.asyncio
    async def test_edit_records_history(self, service, scope, user_id, other_user_id):
        """Test each edit appends the previous text with the time it was written."""
        chat = await make_group(service, scope, user_id, other_user_id)
        message = await service.send_message(scope, user_id, chat.id, "first")

        once = await service.edit_message(scope, user_id, chat.id, message.id, "second")
        twice = await service.edit_message(scope, user_id, chat.id, message.id, "third")

        assert twice.text == "third"
        assert twice.is_edited is True
        assert [entry.text for entry in twice.edit_history] == ["first", "second"]
        assert twice.edit_history[0].timestamp == message.timestamp
        assert twice.edit_history[1].timestamp == once.edited_at

    @pytest.mark.asyncio
    async def test_edit_by_other_user_rejected(self, service, scope, user_id, other_user_id):
        """Test only the sender may edit, and the message is left unchanged."""
        chat = await make_group(service, scope, user_id, other_user_id)
        message = await service.send_message(scope, user_id, chat.id, "mine")

        with pytest.raises(MessagePermissionError):
            await service.edit_message(scope, other_user_id, chat.id, message.id, "hijacked")
        with pytest.raises(MessagePermissionError):
            await service.delete_message(scope, other_user_id, chat.id, message.id)

        stored = await service.get_message(scope, chat.id, message.id)
        assert stored.text == "mine"
        assert stored.is_edited is False
        assert stored.is_deleted is False

    @pytest.mark.asyncio
    async def test_edit_updates_mirror_only_for_last_message(self, service, scope, user_id, other_user_id):
        """Test the chat summary follows edits of the message it mirrors."""
        chat = await make_group(service, scope, user_id, other_user_id)
        older = await service.send_message(scope, user_id, chat.id, "older")
        newer = await service.send_message(scope, user_id, chat.id, "newer")

        await service.edit_message(scope, user_id, chat.id, older.id, "older edited")
        assert (await service.get_chat(scope, chat.id)).last_message.text == "newer"

        await service.edit_message(scope, user_id, chat.id, newer.id, "newer edited")
        last_message = (await service.get_chat(scope, chat.id)).last_message
        assert last_message.id == newer.id
        assert last_message.text == "newer edited"

    @pytest.mark.asyncio
    async def test_soft_delete_keeps_record(self, service, scope, user_id, other_user_id):
        """Test deleting tombstones the text and drops attachments only."""
        chat = await make_group(service, scope, user_id, other_user_id)
        message = await service.send_message(
            scope, user_id, chat.id, "secret", attachments=[AttachmentFactory()]
        )
        await service.add_reaction(scope, other_user_id, chat.id, message.id, "😮")

        deleted = await service.delete_message(scope, user_id, chat.id, message.id)

        assert deleted.is_deleted is True
        assert deleted.text == settings.deleted_message_text
        assert deleted.attachments is None
        assert deleted.sender_id == user_id
        assert deleted.timestamp == message.timestamp
        assert deleted.reactions == {"😮": [other_user_id]}
        assert (await service.get_chat(scope, chat.id)).last_message.text == settings.deleted_message_text

    @pytest.mark.asyncio
    async def test_deleted_message_cannot_be_edited(self, service, scope, user_id, other_user_id):
        """Test editing a tombstoned message is rejected."""
        chat = await make_group(service, scope, user_id, other_user_id)
        message = await service.send_message(scope, user_id, chat.id, "gone soon")
        await service.delete_message(scope, user_id, chat.id, message.id)

        with pytest.raises(InvalidMessengerOperationError):
            await service.edit_message(scope, user_id, chat.id, message.id, "back")

    @pytest.mark.asyncio
    async def test_pin_and_unpin(self, service, scope, user_id, other_user_id):
        """Test pinning marks the message and lists it on the chat."""
        chat = await make_group(service, scope, user_id, other_user_id)
        message = await service.send_message(scope, user_id, chat.id, "Important")

        pinned = await service.pin_message(scope, other_user_id, chat.id, message.id)
        assert pinned.is_pinned is True
        assert (await service.get_chat(scope, chat.id)).pinned_messages == [message.id]

        unpinned = await service.unpin_message(scope, other_user_id, chat.id, message.id)
        assert unpinned.is_pinned is False

    @pytest.mark.asyncio
    async def test_search(self, service, scope, user_id, other_user_id):
        """Test search is case-insensitive, newest first and skips deleted messages."""
        chat = await make_group(service, scope, user_id, other_user_id)
        first = await service.send_message(scope, user_id, chat.id, "Hello world")
        removed = await service.send_message(scope, user_id, chat.id, "hello there")
        latest = await service.send_message(scope, other_user_id, chat.id, "Oh HELLO again")
        await service.send_message(scope, user_id, chat.id, "bye")
        await service.delete_message(scope, user_id, chat.id, removed.id)

        results = await service.search_messages(scope, user_id, "hello")

        assert [m.id for m in results] == [latest.id, first.id]
        assert await service.search_messages(scope, user_id, "   ") == []


class TestContacts:
    """Test cases for invitations and contacts."""

    @pytest.mark.asyncio
    async def test_accept_creates_two_contacts(self, service, repository, user_id, other_user_id):
        """Test accepting an invitation creates exactly one contact per side."""
        invitation = await service.send_contact_invitation(user_id, other_user_id, "Hi Bob")

        contacts = await service.accept_contact_invitation(other_user_id, invitation.id)

        assert [(c.user_id, c.contact_user_id) for c in contacts] == [
            (user_id, other_user_id),
            (other_user_id, user_id),
        ]
        assert all(c.type == ContactType.SAVED for c in contacts)
        assert len(await service.fetch_user_contacts(user_id)) == 1
        assert len(await service.fetch_user_contacts(other_user_id)) == 1
        stored = await repository.get_invitation(invitation.id)
        assert stored.status == InvitationStatus.ACCEPTED
        assert stored.accepted_at is not None

    @pytest.mark.asyncio
    async def test_accept_twice_rejected(self, service, user_id, other_user_id):
        """Test an invitation can only be answered once."""
        invitation = await service.send_contact_invitation(user_id, other_user_id)
        await service.accept_contact_invitation(other_user_id, invitation.id)

        with pytest.raises(InvalidMessengerOperationError):
            await service.accept_contact_invitation(other_user_id, invitation.id)
        assert len(await service.fetch_user_contacts(other_user_id)) == 1

    @pytest.mark.asyncio
    async def test_only_invitee_can_answer(self, service, user_id, other_user_id):
        """Test the inviter cannot accept their own invitation."""
        invitation = await service.send_contact_invitation(user_id, other_user_id)

        with pytest.raises(InvitationPermissionError):
            await service.accept_contact_invitation(user_id, invitation.id)

    @pytest.mark.asyncio
    async def test_duplicate_invitation(self, service, user_id, other_user_id):
        """Test a second pending invitation to the same user is not created."""
        await service.send_contact_invitation(user_id, other_user_id)

        assert await service.send_contact_invitation(user_id, other_user_id) is None
        assert len(await service.fetch_contact_invitations(other_user_id)) == 1

    @pytest.mark.asyncio
    async def test_cannot_invite_self(self, service, user_id):
        """Test inviting yourself is rejected."""
        with pytest.raises(InvalidMessengerOperationError):
            await service.send_contact_invitation(user_id, user_id)

    @pytest.mark.asyncio
    async def test_decline(self, service, user_id, other_user_id):
        """Test declining stamps the invitation and creates no contacts."""
        invitation = await service.send_contact_invitation(user_id, other_user_id)

        declined = await service.decline_contact_invitation(other_user_id, invitation.id)

        assert declined.status == InvitationStatus.DECLINED
        assert declined.declined_at is not None
        assert await service.fetch_user_contacts(other_user_id) == []
        assert await service.fetch_contact_invitations(other_user_id) == []

    @pytest.mark.asyncio
    async def test_manage_own_contacts_only(self, service, user_id, other_user_id):
        """Test contacts can be updated and removed by their owner only."""
        invitation = await service.send_contact_invitation(user_id, other_user_id)
        mine, _ = await service.accept_contact_invitation(other_user_id, invitation.id)

        updated = await service.update_contact(user_id, mine.id, is_favorite=True, nickname="Bobby")
        assert updated.is_favorite is True
        assert updated.nickname == "Bobby"

        with pytest.raises(AppPermissionError):
            await service.remove_contact(other_user_id, mine.id)

        await service.remove_contact(user_id, mine.id)
        with pytest.raises(NotFoundError):
            await service.remove_contact(user_id, mine.id)


class TestUserData:
    """Test cases for settings, drafts, presence and categories."""

    @pytest.mark.asyncio
    async def test_presence(self, service, scope, user_id):
        """Test status updates are stamped and readable."""
        status = await service.set_user_status(scope, user_id, "busy", "In a meeting")

        stored = await service.fetch_user_status(scope, user_id)
        assert stored.status.value == "busy"
        assert stored.custom_status == "In a meeting"
        assert stored.last_active == status.last_active
        assert list(await service.fetch_user_statuses(scope)) == [user_id]

    @pytest.mark.asyncio
    async def test_categories(self, service, scope, user_id):
        """Test categories can be created, updated and deleted."""
        category = await service.create_category(scope, user_id, "Projects", color="#ff0000")

        updated = await service.update_category(scope, user_id, category.id, name="Work")
        assert updated.name == "Work"
        assert updated.color == "#ff0000"

        await service.delete_category(scope, user_id, category.id)
        assert await service.fetch_categories(scope) == []
        with pytest.raises(NotFoundError):
            await service.delete_category(scope, user_id, category.id)

    @pytest.mark.asyncio
    async def test_company_users(self, service, scope, profiles):
        """Test company users come from stored profiles."""
        users = await service.fetch_company_users(scope)

        assert sorted(u.display_name for u in users) == ["Alice Smith", "Bob Jones"]

    @pytest.mark.asyncio
    async def test_notifications_marked_read(self, service, scope, user_id, other_user_id):
        """Test notifications can be marked read individually."""
        chat = await make_group(service, scope, user_id, other_user_id)
        await service.send_message(scope, user_id, chat.id, "ping", mentions=[other_user_id])
        [notification] = await service.fetch_notifications(other_user_id)

        await service.mark_notification_as_read(other_user_id, notification.id)

        assert (await service.fetch_notifications(other_user_id))[0].is_read is True
        with pytest.raises(NotFoundError):
            await service.mark_notification_as_read(other_user_id, "missing")


class TestAttachments:
    """Test cases for attachment uploads."""

    @pytest.mark.parametrize(
        "mime_type,expected",
        [
            ("image/png", AttachmentType.IMAGE),
            ("video/mp4", AttachmentType.VIDEO),
            ("audio/mpeg", AttachmentType.AUDIO),
            ("application/pdf", AttachmentType.DOCUMENT),
            ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", AttachmentType.DOCUMENT),
            ("application/zip", AttachmentType.FILE),
            ("", AttachmentType.FILE),
        ],
    )
    def test_attachment_type_for(self, mime_type, expected):
        """Test attachment kinds are inferred from MIME types."""
        assert attachment_type_for(mime_type) == expected

    @pytest.mark.asyncio
    async def test_upload(self, service, blob_storage, user_id):
        """Test uploads are stored and described."""
        attachment = await service.upload_attachment("chat-1", user_id, "report.pdf", b"%PDF-1.4", "application/pdf")

        assert attachment.id.startswith(f"{user_id}_")
        assert attachment.type == AttachmentType.DOCUMENT
        assert attachment.size == 8
        assert attachment.url == f"/files/attachments/chat-1/{attachment.id}_report.pdf"
        stored = blob_storage.root / "attachments" / "chat-1" / f"{attachment.id}_report.pdf"
        assert stored.read_bytes() == b"%PDF-1.4"

    @pytest.mark.asyncio
    async def test_upload_strips_directories(self, service, user_id):
        """Test directory components of the filename are discarded."""
        attachment = await service.upload_attachment("chat-1", user_id, "../../etc/passwd", b"x", "text/plain")

        assert attachment.name == "passwd"

    @pytest.mark.asyncio
    async def test_upload_too_large(self, service, user_id, monkeypatch):
        """Test oversized uploads are rejected."""
        monkeypatch.setattr(settings, "max_attachment_size", 4)

        with pytest.raises(InvalidMessengerOperationError):
            await service.upload_attachment("chat-1", user_id, "big.bin", b"12345", "application/octet-stream")

    @pytest.mark.asyncio
    async def test_upload_without_storage(self, repository, user_id):
        """Test uploads fail when no storage is configured."""
        service = MessengerService(repository)

        with pytest.raises(InvalidMessengerOperationError):
            await service.upload_attachment("chat-1", user_id, "a.txt", b"x", "text/plain")

    @pytest.mark.asyncio
    async def test_upload_requires_user(self, service):
        """Test uploads while signed out fail."""
        with pytest.raises(AuthenticationRequiredError):
            await service.upload_attachment("chat-1", None, "a.txt", b"x", "text/plain")
