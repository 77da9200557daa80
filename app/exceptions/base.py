# ruff: noqa: D107
"""Base exception classes.

Every application error is an ``HTTPException`` whose detail carries a
message, a machine readable error code and optional details; the handler in
``app.main`` renders that detail into the error envelope.
"""

from typing import Any

from fastapi import HTTPException


class BaseAppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}

        super().__init__(
            status_code=status_code,
            detail={"message": message, "error_code": error_code, "details": self.details},
        )

    def __str__(self) -> str:
        return self.message


class NotFoundError(BaseAppException):
    """A chat, message, contact or other record does not exist."""

    def __init__(
        self,
        message: str = "Resource not found",
        details: dict[str, Any] | None = None,
        error_code: str = "NOT_FOUND",
    ):
        super().__init__(message=message, status_code=404, error_code=error_code, details=details)


class AppPermissionError(BaseAppException):
    """The current user may not touch the record."""

    def __init__(
        self,
        message: str = "Permission denied",
        details: dict[str, Any] | None = None,
        error_code: str = "PERMISSION_DENIED",
    ):
        super().__init__(message=message, status_code=403, error_code=error_code, details=details)


class ConflictError(BaseAppException):
    """The write collides with existing state, e.g. a pending invitation."""

    def __init__(
        self,
        message: str = "Resource already exists",
        details: dict[str, Any] | None = None,
        error_code: str = "CONFLICT",
    ):
        super().__init__(message=message, status_code=409, error_code=error_code, details=details)
