"""
Shared fixtures for integration tests.

Integration tests run the FastAPI app against an in-memory SQLite database.

All integration tests in this project MUST:
1. Use async tests with @pytest.mark.asyncio
2. Use the `client` fixture (AsyncClient) - NOT TestClient
3. Use the `test_db` fixture (AsyncSession) - NOT sync Session
4. Prefix all routes with API_PREFIX

Example:
    @pytest.mark.asyncio
    async def test_something(client, owner_headers, organisation):
        response = await client.get(
            f"{API_PREFIX}/organisations/{organisation.id}/datasources",
            headers=owner_headers,
        )
        assert response.status_code == 200
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.core.database import get_db
from app.main import app
from app.models import Base, Membership, Organisation, Role, User


# Using aiosqlite for async SQLite support
SQLALCHEMY_TEST_URL = "sqlite+aiosqlite:///:memory:"

# All API routes are prefixed with this
API_PREFIX = settings.API_V1_PREFIX


@pytest_asyncio.fixture(scope="function")
async def test_db():
    """
    Create a fresh async in-memory database for each test.

    Tables are created before the test and dropped afterwards.
    """
    engine = create_async_engine(
        SQLALCHEMY_TEST_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def client(test_db):
    """Async test client with the app's get_db dependency pointed at test_db."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# =============================================================================
# Authentication Helpers
# =============================================================================


def create_access_token(user_id: str, token_type: str = "access") -> str:
    """Mint a token the way the identity service does."""
    payload = {
        "sub": user_id,
        "type": token_type,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=30),
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def get_auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


async def add_member(db, organisation, role: Role, email: str) -> User:
    user = User(id=str(uuid.uuid4()), name=email.split("@")[0], email=email)
    db.add(user)
    await db.flush()

    db.add(
        Membership(
            id=str(uuid.uuid4()),
            user_id=user.id,
            organisation_id=organisation.id,
            role=role,
        )
    )
    await db.commit()
    await db.refresh(user)
    return user


# =============================================================================
# Test Data Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def organisation(test_db):
    organisation = Organisation(id=str(uuid.uuid4()), name="Acme")
    test_db.add(organisation)
    await test_db.commit()
    await test_db.refresh(organisation)
    return organisation


@pytest_asyncio.fixture
async def owner(test_db, organisation):
    return await add_member(test_db, organisation, Role.OWNER, "owner@example.com")


@pytest_asyncio.fixture
async def viewer(test_db, organisation):
    return await add_member(test_db, organisation, Role.VIEWER, "viewer@example.com")


@pytest_asyncio.fixture
async def outsider(test_db):
    user = User(id=str(uuid.uuid4()), name="Outsider", email="outsider@example.com")
    test_db.add(user)
    await test_db.commit()
    await test_db.refresh(user)
    return user


@pytest_asyncio.fixture
async def owner_headers(owner):
    return get_auth_headers(owner)


@pytest_asyncio.fixture
async def viewer_headers(viewer):
    return get_auth_headers(viewer)
