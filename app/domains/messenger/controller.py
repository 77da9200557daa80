"""Messenger API controller with FastAPI endpoints."""

import logging

from fastapi import APIRouter, Depends, File, Path, Query, UploadFile

from app.core.config import settings
from app.core.dependencies import get_current_user_id, get_messenger_service, get_scope, validate_token
from app.domains.messenger.service import MessengerService
from app.exceptions.messenger import DuplicateInvitationError, InvalidMessengerOperationError
from app.schemas.base import ResponseSchema, TreeRecord
from app.schemas.messenger import (
    CategoryCreateRequest,
    CategoryUpdateRequest,
    ChatCreateRequest,
    ChatSettingsUpdate,
    ChatType,
    ChatUpdateRequest,
    ContactUpdateRequest,
    DraftRequest,
    ForwardRequest,
    InvitationCreateRequest,
    MessageEditRequest,
    MessageSendRequest,
    ParticipantRequest,
    ReactionRequest,
    ReplyReference,
    ScopeContext,
    StatusUpdateRequest,
)


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/messenger",
    tags=["messenger"],
    dependencies=[Depends(validate_token)],
)


def _dump(record):
    if record is None:
        return None
    if isinstance(record, list):
        return [_dump(item) for item in record]
    if isinstance(record, dict):
        return {key: _dump(value) for key, value in record.items()}
    if isinstance(record, TreeRecord):
        return record.to_tree()
    return record


def _success(message: str, data=None) -> ResponseSchema:
    return ResponseSchema(status="success", message=message, data=_dump(data))


# ===== Chats =====


@router.post("/chats", response_model=ResponseSchema, status_code=201)
async def create_chat(
    chat_data: ChatCreateRequest,
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    """Create a chat, or join the existing chat for a company, site, department or role."""
    chat = await service.create_chat(
        scope,
        user_id,
        chat_data.name,
        chat_data.participants,
        chat_data.type,
        description=chat_data.description,
        category_id=chat_data.category_id,
        is_private=chat_data.is_private,
    )
    return _success("Chat created successfully", chat)


@router.get("/chats", response_model=ResponseSchema)
async def list_chats(
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    """Get the current user's chats, most recently active first."""
    chats = await service.fetch_user_chats(scope, user_id)
    return _success("Chats retrieved successfully", chats)


@router.get("/chats/scoped/{chat_type}", response_model=ResponseSchema)
async def list_scoped_chats(
    chat_type: ChatType = Path(..., description="company, site, department or role"),
    scope_id: str | None = Query(None, description="Scope ID; defaults to the request scope"),
    scope: ScopeContext = Depends(get_scope),
    service: MessengerService = Depends(get_messenger_service),
):
    """Get the chats attached to an organizational scope."""
    if chat_type == ChatType.COMPANY:
        chats = await service.fetch_company_chats(scope)
    elif chat_type == ChatType.SITE:
        chats = await service.fetch_site_chats(scope, scope_id)
    elif chat_type == ChatType.DEPARTMENT:
        chats = await service.fetch_department_chats(scope, scope_id)
    elif chat_type == ChatType.ROLE:
        chats = await service.fetch_role_chats(scope, scope_id)
    else:
        raise InvalidMessengerOperationError(f"{chat_type.value} chats are not scoped")
    return _success("Chats retrieved successfully", chats)


@router.get("/chats/{chat_id}", response_model=ResponseSchema)
async def get_chat(
    chat_id: str = Path(..., description="Chat ID"),
    scope: ScopeContext = Depends(get_scope),
    service: MessengerService = Depends(get_messenger_service),
):
    chat = await service.get_chat(scope, chat_id)
    return _success("Chat retrieved successfully", chat)


@router.patch("/chats/{chat_id}", response_model=ResponseSchema)
async def update_chat(
    chat_data: ChatUpdateRequest,
    chat_id: str = Path(..., description="Chat ID"),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    # Nested settings stay models so they serialize with tree field names
    fields = {name: getattr(chat_data, name) for name in chat_data.model_fields_set}
    chat = await service.update_chat_details(scope, user_id, chat_id, **fields)
    return _success("Chat updated successfully", chat)


@router.delete("/chats/{chat_id}", response_model=ResponseSchema)
async def delete_chat(
    chat_id: str = Path(..., description="Chat ID"),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    """Delete a chat together with its messages and index entries."""
    await service.delete_chat(scope, user_id, chat_id)
    return _success("Chat deleted successfully")


@router.post("/chats/{chat_id}/participants", response_model=ResponseSchema)
async def add_participant(
    participant: ParticipantRequest,
    chat_id: str = Path(..., description="Chat ID"),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    chat = await service.add_participant(scope, user_id, chat_id, participant.user_id)
    return _success("Participant added successfully", chat)


@router.delete("/chats/{chat_id}/participants/{participant_id}", response_model=ResponseSchema)
async def remove_participant(
    chat_id: str = Path(..., description="Chat ID"),
    participant_id: str = Path(..., description="Participant user ID"),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    chat = await service.remove_participant(scope, user_id, chat_id, participant_id)
    return _success("Participant removed successfully", chat)


# ===== Messages =====


@router.get("/chats/{chat_id}/messages", response_model=ResponseSchema)
async def list_messages(
    chat_id: str = Path(..., description="Chat ID"),
    limit: int | None = Query(None, ge=1, le=500, description="Newest messages to return"),
    scope: ScopeContext = Depends(get_scope),
    service: MessengerService = Depends(get_messenger_service),
):
    messages = await service.fetch_messages(scope, chat_id, limit)
    return _success("Messages retrieved successfully", messages)


@router.post("/chats/{chat_id}/messages", response_model=ResponseSchema, status_code=201)
async def send_message(
    message_data: MessageSendRequest,
    chat_id: str = Path(..., description="Chat ID"),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    """Send a message to a chat.

    Args:
        message_data: Message text with optional reply, attachments and mentions
        chat_id: Target chat
        scope: Tenant scope from request headers
        user_id: Current authenticated user
        service: Messenger service

    Returns:
        The stored message
    """
    reply_to = None
    if message_data.reply_to_message_id:
        reply_to = ReplyReference(id=message_data.reply_to_message_id, text=message_data.reply_to_text or "")

    message = await service.send_message(
        scope,
        user_id,
        chat_id,
        message_data.text,
        reply_to=reply_to,
        attachments=message_data.attachments,
        mentions=message_data.mentions,
    )
    return _success("Message sent successfully", message)


@router.patch("/chats/{chat_id}/messages/{message_id}", response_model=ResponseSchema)
async def edit_message(
    message_data: MessageEditRequest,
    chat_id: str = Path(..., description="Chat ID"),
    message_id: str = Path(..., description="Message ID"),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    message = await service.edit_message(scope, user_id, chat_id, message_id, message_data.text)
    return _success("Message updated successfully", message)


@router.delete("/chats/{chat_id}/messages/{message_id}", response_model=ResponseSchema)
async def delete_message(
    chat_id: str = Path(..., description="Chat ID"),
    message_id: str = Path(..., description="Message ID"),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    message = await service.delete_message(scope, user_id, chat_id, message_id)
    return _success("Message deleted successfully", message)


@router.post("/chats/{chat_id}/messages/{message_id}/read", response_model=ResponseSchema)
async def mark_message_read(
    chat_id: str = Path(..., description="Chat ID"),
    message_id: str = Path(..., description="Message ID"),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    message = await service.mark_as_read(scope, user_id, chat_id, message_id)
    return _success("Message marked as read", message)


@router.post("/chats/{chat_id}/messages/{message_id}/reactions", response_model=ResponseSchema)
async def add_reaction(
    reaction: ReactionRequest,
    chat_id: str = Path(..., description="Chat ID"),
    message_id: str = Path(..., description="Message ID"),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    message = await service.add_reaction(scope, user_id, chat_id, message_id, reaction.emoji)
    return _success("Reaction added", message)


@router.delete("/chats/{chat_id}/messages/{message_id}/reactions/{emoji}", response_model=ResponseSchema)
async def remove_reaction(
    chat_id: str = Path(..., description="Chat ID"),
    message_id: str = Path(..., description="Message ID"),
    emoji: str = Path(..., description="Reaction emoji"),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    message = await service.remove_reaction(scope, user_id, chat_id, message_id, emoji)
    return _success("Reaction removed", message)


@router.post("/chats/{chat_id}/messages/{message_id}/pin", response_model=ResponseSchema)
async def pin_message(
    chat_id: str = Path(..., description="Chat ID"),
    message_id: str = Path(..., description="Message ID"),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    message = await service.pin_message(scope, user_id, chat_id, message_id)
    return _success("Message pinned", message)


@router.delete("/chats/{chat_id}/messages/{message_id}/pin", response_model=ResponseSchema)
async def unpin_message(
    chat_id: str = Path(..., description="Chat ID"),
    message_id: str = Path(..., description="Message ID"),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    message = await service.unpin_message(scope, user_id, chat_id, message_id)
    return _success("Message unpinned", message)


@router.post("/chats/{chat_id}/messages/{message_id}/forward", response_model=ResponseSchema, status_code=201)
async def forward_message(
    forward: ForwardRequest,
    chat_id: str = Path(..., description="Chat ID"),
    message_id: str = Path(..., description="Message ID"),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    messages = await service.forward_message(scope, user_id, chat_id, message_id, forward.target_chat_ids)
    return _success("Message forwarded successfully", messages)


@router.get("/messages/search", response_model=ResponseSchema)
async def search_messages(
    q: str = Query(..., min_length=1, description="Text to search for"),
    chat_id: str | None = Query(None, description="Restrict the search to one chat"),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    messages = await service.search_messages(scope, user_id, q, chat_id)
    return _success(f"Found {len(messages)} messages", messages)


@router.post("/chats/{chat_id}/attachments", response_model=ResponseSchema, status_code=201)
async def upload_attachment(
    chat_id: str = Path(..., description="Chat ID"),
    file: UploadFile = File(...),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    """Upload a file to attach to a later message."""
    await service.get_chat(scope, chat_id)
    if file.size is not None and file.size > settings.max_attachment_size:
        raise InvalidMessengerOperationError(f"Attachment exceeds the {settings.max_attachment_size} byte limit")
    # Read at most one byte past the limit
    content = await file.read(settings.max_attachment_size + 1)
    attachment = await service.upload_attachment(
        chat_id,
        user_id,
        file.filename or "file",
        content,
        file.content_type or "application/octet-stream",
    )
    return _success("Attachment uploaded successfully", attachment)


# ===== Chat settings and drafts =====


@router.get("/chats/{chat_id}/settings", response_model=ResponseSchema)
async def get_chat_settings(
    chat_id: str = Path(..., description="Chat ID"),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    chat_settings = await service.fetch_chat_settings(user_id, chat_id)
    return _success("Chat settings retrieved successfully", chat_settings)


@router.patch("/chats/{chat_id}/settings", response_model=ResponseSchema)
async def update_chat_settings(
    settings_data: ChatSettingsUpdate,
    chat_id: str = Path(..., description="Chat ID"),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    chat_settings = await service.update_chat_settings(
        user_id, chat_id, **settings_data.model_dump(exclude_none=True)
    )
    return _success("Chat settings updated successfully", chat_settings)


@router.get("/chats/{chat_id}/draft", response_model=ResponseSchema)
async def get_draft(
    chat_id: str = Path(..., description="Chat ID"),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    draft = await service.get_draft(user_id, chat_id)
    return _success("Draft retrieved successfully" if draft else "No draft saved", draft)


@router.put("/chats/{chat_id}/draft", response_model=ResponseSchema)
async def save_draft(
    draft_data: DraftRequest,
    chat_id: str = Path(..., description="Chat ID"),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    draft = await service.save_draft(user_id, chat_id, draft_data.text, draft_data.attachments)
    return _success("Draft saved successfully", draft)


@router.delete("/chats/{chat_id}/draft", response_model=ResponseSchema)
async def delete_draft(
    chat_id: str = Path(..., description="Chat ID"),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    await service.delete_draft(user_id, chat_id)
    return _success("Draft deleted successfully")


# ===== Presence and users =====


@router.put("/status", response_model=ResponseSchema)
async def set_status(
    status_data: StatusUpdateRequest,
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    record = await service.set_user_status(scope, user_id, status_data.status, status_data.custom_status)
    return _success("Status updated successfully", record)


@router.get("/status", response_model=ResponseSchema)
async def list_statuses(
    scope: ScopeContext = Depends(get_scope),
    service: MessengerService = Depends(get_messenger_service),
):
    statuses = await service.fetch_user_statuses(scope)
    return _success("Statuses retrieved successfully", statuses)


@router.get("/status/{user_id}", response_model=ResponseSchema)
async def get_status(
    user_id: str = Path(..., description="User ID"),
    scope: ScopeContext = Depends(get_scope),
    service: MessengerService = Depends(get_messenger_service),
):
    record = await service.fetch_user_status(scope, user_id)
    return _success("Status retrieved successfully", record)


@router.get("/users", response_model=ResponseSchema)
async def list_company_users(
    scope: ScopeContext = Depends(get_scope),
    service: MessengerService = Depends(get_messenger_service),
):
    users = await service.fetch_company_users(scope)
    return _success("Users retrieved successfully", users)


# ===== Categories =====


@router.get("/categories", response_model=ResponseSchema)
async def list_categories(
    scope: ScopeContext = Depends(get_scope),
    service: MessengerService = Depends(get_messenger_service),
):
    categories = await service.fetch_categories(scope)
    return _success("Categories retrieved successfully", categories)


@router.post("/categories", response_model=ResponseSchema, status_code=201)
async def create_category(
    category_data: CategoryCreateRequest,
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    fields = category_data.model_dump(exclude={"name"})
    category = await service.create_category(scope, user_id, category_data.name, **fields)
    return _success("Category created successfully", category)


@router.patch("/categories/{category_id}", response_model=ResponseSchema)
async def update_category(
    category_data: CategoryUpdateRequest,
    category_id: str = Path(..., description="Category ID"),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    category = await service.update_category(
        scope, user_id, category_id, **category_data.model_dump(exclude_unset=True)
    )
    return _success("Category updated successfully", category)


@router.delete("/categories/{category_id}", response_model=ResponseSchema)
async def delete_category(
    category_id: str = Path(..., description="Category ID"),
    scope: ScopeContext = Depends(get_scope),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    await service.delete_category(scope, user_id, category_id)
    return _success("Category deleted successfully")


# ===== Notifications =====


@router.get("/notifications", response_model=ResponseSchema)
async def list_notifications(
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    notifications = await service.fetch_notifications(user_id)
    return _success("Notifications retrieved successfully", notifications)


@router.post("/notifications/read-all", response_model=ResponseSchema)
async def mark_all_notifications_read(
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    count = await service.mark_all_notifications_as_read(user_id)
    return _success(f"Marked {count} notifications as read", {"count": count})


@router.post("/notifications/{notification_id}/read", response_model=ResponseSchema)
async def mark_notification_read(
    notification_id: str = Path(..., description="Notification ID"),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    await service.mark_notification_as_read(user_id, notification_id)
    return _success("Notification marked as read")


# ===== Contacts and invitations =====


@router.get("/contacts", response_model=ResponseSchema)
async def list_contacts(
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    contacts = await service.fetch_user_contacts(user_id)
    return _success("Contacts retrieved successfully", contacts)


@router.patch("/contacts/{contact_id}", response_model=ResponseSchema)
async def update_contact(
    contact_data: ContactUpdateRequest,
    contact_id: str = Path(..., description="Contact ID"),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    contact = await service.update_contact(user_id, contact_id, **contact_data.model_dump(exclude_unset=True))
    return _success("Contact updated successfully", contact)


@router.delete("/contacts/{contact_id}", response_model=ResponseSchema)
async def remove_contact(
    contact_id: str = Path(..., description="Contact ID"),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    await service.remove_contact(user_id, contact_id)
    return _success("Contact removed successfully")


@router.get("/invitations", response_model=ResponseSchema)
async def list_invitations(
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    """Get pending invitations the current user has received."""
    invitations = await service.fetch_contact_invitations(user_id)
    return _success("Invitations retrieved successfully", invitations)


@router.post("/invitations", response_model=ResponseSchema, status_code=201)
async def send_invitation(
    invitation_data: InvitationCreateRequest,
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    invitation = await service.send_contact_invitation(user_id, invitation_data.to_user_id, invitation_data.message)
    if invitation is None:
        logger.info(f"Duplicate invitation from {user_id} to {invitation_data.to_user_id}")
        raise DuplicateInvitationError()
    return _success("Invitation sent successfully", invitation)


@router.post("/invitations/{invitation_id}/accept", response_model=ResponseSchema)
async def accept_invitation(
    invitation_id: str = Path(..., description="Invitation ID"),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    contacts = await service.accept_contact_invitation(user_id, invitation_id)
    return _success("Invitation accepted", contacts)


@router.post("/invitations/{invitation_id}/decline", response_model=ResponseSchema)
async def decline_invitation(
    invitation_id: str = Path(..., description="Invitation ID"),
    user_id: str = Depends(get_current_user_id),
    service: MessengerService = Depends(get_messenger_service),
):
    invitation = await service.decline_contact_invitation(user_id, invitation_id)
    return _success("Invitation declined", invitation)
