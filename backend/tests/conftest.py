import pytest
import pytest_asyncio
import uuid
from typing import AsyncGenerator

from httpx import AsyncClient
from httpx import ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from quotagate.main import app
from quotagate.database import get_db
from quotagate.core.dependencies import get_current_user
from quotagate.models.base import Base
from quotagate.models.user import ROLE_ADMIN, ROLE_MEMBER, User
from quotagate.schemas.organization import OrganizationCreate
from quotagate.services import organization_service, plan_service
from quotagate.storage.blob_store import LocalBlobStore, get_blob_store

# In-memory SQLite; StaticPool keeps every session on the one connection that holds the schema.
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Creates a database session for the test.
    This is the SINGLE source of truth for the database session.
    """
    session_factory = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,  # CRITICAL: Prevents DetachedInstanceError
    )
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def plans(db_session: AsyncSession) -> dict:
    """The default catalogue (Free, Pro, Enterprise) keyed by name."""
    seeded = await plan_service.seed_default_plans(db_session)
    return {plan.name: plan for plan in seeded}


@pytest_asyncio.fixture
async def organization(db_session: AsyncSession, plans):
    """An organization on the Free plan."""
    return await organization_service.create_organization(db_session, OrganizationCreate(name="Acme Corp"))


async def _add_user(db_session: AsyncSession, organization, email: str, role: str) -> User:
    user = User(
        supabase_auth_id=uuid.uuid4(),
        organization_id=organization.id,
        email=email,
        role=role,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession, organization) -> User:
    return await _add_user(db_session, organization, "owner@acme.io", ROLE_ADMIN)


@pytest_asyncio.fixture
async def member_user(db_session: AsyncSession, organization) -> User:
    return await _add_user(db_session, organization, "member@acme.io", ROLE_MEMBER)


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs")


@pytest_asyncio.fixture(scope="function")
async def test_client(db_session: AsyncSession, blob_store: LocalBlobStore) -> AsyncGenerator[AsyncClient, None]:
    """
    Creates an HTTP client with the database and blob store dependencies overridden.
    Authentication is left in place; tests log in with `login_as`.
    """
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def login_as():
    """Override the auth dependency so requests run as the given user."""
    def _login(user: User) -> None:
        async def override_get_user():
            return user
        app.dependency_overrides[get_current_user] = override_get_user
    return _login
