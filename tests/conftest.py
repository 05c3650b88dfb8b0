"""Global test configuration and fixtures for FactCheck API."""

import os

# Settings are read from the environment on first use, so pin them before
# anything from src is imported.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-key-for-testing-only")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("ENVIRONMENT", "TEST")

from collections.abc import AsyncGenerator
from typing import Callable

import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.api.core.constants import JWT_ALGORITHM
from src.database.models import Base, User
from src.modules.billing.points.service import PointsService
from src.services.auth.rate_limiting import InMemoryCounterStore, RateLimiter
from src.utils.settings.auth import AuthSettings

from tests.factories import PointTransactionFactory, UserFactory
from tests.utils.fakes import VALID_VIDEO_ANSWER, ScriptedModelClient

BASE_URL = "http://test-factcheck-api"


@pytest.fixture
def user_factory():
    return UserFactory


@pytest.fixture
def transaction_factory():
    return PointTransactionFactory


@pytest_asyncio.fixture
async def async_engine(tmp_path):
    """File-backed SQLite so concurrent sessions really contend for rows."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'factcheck.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=async_engine, class_=AsyncSession, expire_on_commit=False
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def points_service(db_session: AsyncSession) -> PointsService:
    return PointsService(db_session)


@pytest.fixture
def model_client() -> ScriptedModelClient:
    return ScriptedModelClient([VALID_VIDEO_ANSWER])


@pytest_asyncio.fixture
async def app(session_factory, model_client) -> AsyncGenerator[FastAPI, None]:
    """FastAPI application wired to the test database and a scripted model."""
    from src.main import app

    app.state.session_factory = session_factory
    app.state.model_client = model_client
    app.state.rate_limiter = RateLimiter(InMemoryCounterStore())

    async with LifespanManager(app):
        yield app

    app.state.session_factory = None
    app.state.model_client = None
    app.state.rate_limiter = None


# Test Data Fixtures
@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession, user_factory) -> User:
    return await user_factory.create_async(db_session, points_balance=100)


# JWT Token Fixtures
@pytest.fixture()
def jwt_token_factory() -> Callable[..., str]:
    """Factory for creating JWT tokens for test users."""
    auth_settings = AuthSettings()

    def create_token(user_id: str, email: str | None = None) -> str:
        payload = {"sub": user_id, "email": email, "role": "authenticated"}
        return jwt.encode(payload, auth_settings.JWT_SECRET, algorithm=JWT_ALGORITHM)

    return create_token


@pytest.fixture
def user_token(test_user: User, jwt_token_factory) -> str:
    return jwt_token_factory(test_user.id, test_user.email)


# HTTP Client Fixtures
@pytest_asyncio.fixture
async def public_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create HTTP client for testing public endpoints."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url=BASE_URL) as ac:
        yield ac


@pytest_asyncio.fixture
async def authorized_client(
    app: FastAPI, user_token: str
) -> AsyncGenerator[AsyncClient, None]:
    """Create HTTP client with JWT authorization headers."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url=BASE_URL,
        headers={"Authorization": f"Bearer {user_token}"},
    ) as ac:
        yield ac


@pytest.fixture
def client_factory(app: FastAPI, jwt_token_factory):
    """Factory for creating HTTP clients for arbitrary user ids."""

    def create_client(user_id: str, email: str | None = None, **kwargs) -> AsyncClient:
        token = jwt_token_factory(user_id, email)
        return AsyncClient(
            transport=ASGITransport(app=app, **kwargs),
            base_url=BASE_URL,
            headers={"Authorization": f"Bearer {token}"},
        )

    return create_client
