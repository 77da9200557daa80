"""Messenger-related exceptions."""

from typing import Any

from .base import AppPermissionError, BaseAppException, ConflictError, NotFoundError


class AuthenticationRequiredError(BaseAppException):
    """Raised when a mutating operation runs without a current user."""

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message=message, status_code=401, error_code="AUTHENTICATION_REQUIRED")


class ChatNotFoundError(NotFoundError):
    """Raised when a chat is not found."""

    def __init__(self, message: str = "Chat not found", details: dict[str, Any] | None = None):
        super().__init__(message=message, details=details, error_code="CHAT_NOT_FOUND")


class MessageNotFoundError(NotFoundError):
    """Raised when a message is not found."""

    def __init__(self, message: str = "Message not found", details: dict[str, Any] | None = None):
        super().__init__(message=message, details=details, error_code="MESSAGE_NOT_FOUND")


class InvitationNotFoundError(NotFoundError):
    """Raised when a contact invitation is not found."""

    def __init__(self, message: str = "Invitation not found", details: dict[str, Any] | None = None):
        super().__init__(message=message, details=details, error_code="INVITATION_NOT_FOUND")


class MessagePermissionError(AppPermissionError):
    """Raised when someone other than the sender edits or deletes a message."""

    def __init__(self, message: str = "Only the author can modify this message"):
        super().__init__(message=message, error_code="MESSAGE_PERMISSION_DENIED")


class InvitationPermissionError(AppPermissionError):
    """Raised when someone other than the invitee answers an invitation."""

    def __init__(self, message: str = "Only the invited user can answer this invitation"):
        super().__init__(message=message, error_code="INVITATION_PERMISSION_DENIED")


class DuplicateInvitationError(ConflictError):
    """Raised over HTTP when a pending invitation to the same user exists."""

    def __init__(self, message: str = "An invitation to this user is already pending"):
        super().__init__(message=message, error_code="INVITATION_PENDING")


class InvalidMessengerOperationError(BaseAppException):
    """Raised when an invalid operation is performed on a chat, message or contact."""

    def __init__(self, message: str = "Invalid messenger operation"):
        super().__init__(message=message, status_code=400, error_code="INVALID_MESSENGER_OPERATION")


class StoreUnavailableError(BaseAppException):
    """Raised when the tree store fails to read or write."""

    def __init__(self, message: str = "Tree store unavailable", details: dict[str, Any] | None = None):
        super().__init__(
            message=message, status_code=503, error_code="STORE_UNAVAILABLE", details=details
        )
