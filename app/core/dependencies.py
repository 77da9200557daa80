# app/core/dependencies.py
import logging

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings
from app.core.security import TokenDecoder
from app.database import get_tree_store
from app.domains.messenger.interfaces import LocalBlobStorage
from app.domains.messenger.repository import MessengerRepository
from app.domains.messenger.service import MessengerService
from app.schemas.messenger import ScopeContext
from app.store.tree import TreeStore

logger = logging.getLogger(__name__)

security = HTTPBearer()
decoder = TokenDecoder()


async def validate_token(token: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    """Validate and decode the bearer token.

    Returns:
        dict: Decoded token payload

    Raises:
        HTTPException: If token is invalid
    """
    if not token or not token.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication token is required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decoder.verify_token(token.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


async def get_current_user_id(request: Request, payload: dict = Depends(validate_token)) -> str:
    """Get the authenticated user's id from the token subject.

    Raises:
        HTTPException: If the token carries no subject
    """
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload - missing user ID",
        )

    # Add user info to request state for logging
    request.state.user_id = user_id
    return user_id


async def get_scope(
    x_company_id: str | None = Header(None),
    x_site_id: str | None = Header(None),
    x_subsite_id: str | None = Header(None),
    x_department_id: str | None = Header(None),
    x_role_id: str | None = Header(None),
) -> ScopeContext:
    """Build the tenant scope from request headers."""
    return ScopeContext(
        company_id=x_company_id or settings.default_company_id,
        site_id=x_site_id,
        subsite_id=x_subsite_id,
        department_id=x_department_id,
        role_id=x_role_id,
    )


async def get_messenger_service(store: TreeStore = Depends(get_tree_store)) -> MessengerService:
    return MessengerService(MessengerRepository(store), LocalBlobStorage())
