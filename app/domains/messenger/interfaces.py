"""Collaborators the messenger depends on but does not own."""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from app.core.config import settings


logger = logging.getLogger(__name__)


class SessionProvider(ABC):
    """Source of the current user's identity."""

    @property
    @abstractmethod
    def current_user_id(self) -> str | None:
        """Id of the signed-in user, or None when signed out."""

    @property
    def is_authenticated(self) -> bool:
        return self.current_user_id is not None


class StaticSession(SessionProvider):
    """Session bound to a fixed user id, as resolved from a bearer token."""

    def __init__(self, user_id: str | None):
        self._user_id = user_id

    @property
    def current_user_id(self) -> str | None:
        return self._user_id


class PermissionOracle(ABC):
    """Answers permission questions for the current user."""

    @abstractmethod
    def is_owner(self) -> bool:
        pass

    @abstractmethod
    def has_permission(self, module: str, page: str, action: str) -> bool:
        """Check an action ("view", "edit", "delete") on a module page."""


class AllowAllPermissions(PermissionOracle):
    def is_owner(self) -> bool:
        return True

    def has_permission(self, module: str, page: str, action: str) -> bool:
        return True


class BlobStorage(ABC):
    """Binary storage for message attachments."""

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``path`` and return a download URL."""


class LocalBlobStorage(BlobStorage):
    """Stores attachments on the local filesystem."""

    def __init__(self, root: str | None = None, base_url: str | None = None):
        self.root = Path(root or settings.attachment_storage_dir)
        self.base_url = (base_url or settings.attachment_base_url).rstrip("/")

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        target = self.root / path
        if self.root.resolve() not in target.resolve().parents:
            raise ValueError(f"Attachment path escapes storage root: {path}")

        def write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(write)
        logger.info(f"Stored {len(data)} bytes ({content_type}) at {target}")
        return f"{self.base_url}/{path}"
