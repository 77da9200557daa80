# tests/conftest.py
import os

# Set up test environment variables BEFORE any other imports
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("DATABASE_URL", os.environ["TEST_DATABASE_URL"])
os.environ.setdefault("LOG_FORMAT", "simple")

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core.dependencies import get_messenger_service
from app.domains.messenger.interfaces import LocalBlobStorage
from app.domains.messenger.repository import MessengerRepository
from app.domains.messenger.service import MessengerService
from app.main import app
from app.schemas.messenger import ScopeContext, UserBasicDetails
from app.store.tree import TreeStore
from models import Base


@pytest_asyncio.fixture
async def tree_store(tmp_path):
    """Create a tree store backed by a fresh SQLite database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tree.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield TreeStore(async_sessionmaker(engine, expire_on_commit=False))

    await engine.dispose()


@pytest.fixture
def repository(tree_store):
    return MessengerRepository(tree_store)


@pytest.fixture
def blob_storage(tmp_path):
    return LocalBlobStorage(root=str(tmp_path / "blobs"), base_url="/files")


@pytest.fixture
def service(repository, blob_storage):
    return MessengerService(repository, blob_storage)


@pytest.fixture
def scope():
    return ScopeContext(company_id="acme", site_id="london", department_id="ops", role_id="manager")


@pytest.fixture
def user_id():
    return "user-alice"


@pytest.fixture
def other_user_id():
    return "user-bob"


@pytest_asyncio.fixture
async def profiles(repository, user_id, other_user_id):
    """Store profiles for the two test users."""
    alice = UserBasicDetails(uid=user_id, first_name="Alice", last_name="Smith", company_ids=["acme"])
    bob = UserBasicDetails(uid=other_user_id, first_name="Bob", last_name="Jones", company_ids=["acme"])
    await repository.save_user_details(alice)
    await repository.save_user_details(bob)
    return {user_id: alice, other_user_id: bob}


TEST_TOKEN_SECRET = "messenger-test-secret-key-0123456789abcdef"


def make_token(sub: str) -> str:
    return jwt.encode({"sub": sub, "email": f"{sub}@example.com"}, TEST_TOKEN_SECRET, algorithm="HS256")


@pytest.fixture
def auth_headers(user_id):
    return {"Authorization": f"Bearer {make_token(user_id)}", "X-Company-ID": "acme"}


@pytest.fixture
def other_auth_headers(other_user_id):
    return {"Authorization": f"Bearer {make_token(other_user_id)}", "X-Company-ID": "acme"}


@pytest_asyncio.fixture
async def client(service):
    """Create a test client wired to the per-test messenger service."""
    app.dependency_overrides[get_messenger_service] = lambda: service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
