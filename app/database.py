# python
"""Database engine and tree store wiring.

This module sets up the asynchronous database engine and session factory the
tree store persists through, and exposes the process-wide ``TreeStore``.
"""
import os

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core.config import settings
from app.store.tree import TreeStore

# For testing, prioritize TEST_DATABASE_URL
if os.getenv("TESTING") == "true":
    DB_URL = os.getenv("TEST_DATABASE_URL") or settings.test_database_url or settings.database_url
else:
    DB_URL = settings.database_url

DB_URL = (DB_URL or "").strip()
if not DB_URL:
    raise RuntimeError(
        "DATABASE_URL is not configured. Set it in the environment or .env file "
        "(e.g., DATABASE_URL=sqlite+aiosqlite:///./messenger.db)."
    )

engine = create_async_engine(
    DB_URL,
    echo=settings.debug,
)

AsyncSessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)

tree_store = TreeStore(AsyncSessionLocal)


def get_tree_store() -> TreeStore:
    return tree_store
