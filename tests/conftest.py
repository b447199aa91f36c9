"""Pytest configuration and fixtures."""
import os
import uuid
from datetime import UTC, datetime, timedelta

# Settings are cached on first import, so the environment must be set first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "development"
os.environ["SECRET_KEY"] = "test-access-secret-key-0123456789abcdef0123"
os.environ["REFRESH_SECRET_KEY"] = "test-refresh-secret-key-fedcba9876543210fed"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["CLEANUP_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from session_guard.config import get_token_config
from session_guard.database import Base
import session_guard.models  # noqa: F401  registers tables on Base.metadata
from session_guard.models.base import UserRole
from session_guard.services.token_issuer import TokenIssuer
from session_guard.services.user_service import UserService

DEFAULT_PASSWORD = "TestPassword123!"


class FrozenClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime.now(UTC).replace(microsecond=0)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
async def test_engine(tmp_path):
    """Fresh file-backed SQLite database per test.

    A file (rather than :memory:) lets concurrent sessions use separate connections.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'session_guard_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def token_config():
    return get_token_config()


@pytest.fixture
def issuer(token_config, clock):
    return TokenIssuer(token_config, clock=clock)


@pytest.fixture
async def user_factory(db_session):
    """Factory for creating users with default credentials."""
    user_service = UserService(db_session)

    async def _create_user(
        username: str | None = None,
        password: str = DEFAULT_PASSWORD,
        role: UserRole = UserRole.USER,
    ):
        if username is None:
            username = f"user_{uuid.uuid4().hex[:8]}"
        return await user_service.create_user(username, password, role)

    return _create_user


@pytest.fixture
async def test_app(session_factory, issuer):
    """Create test app with database and issuer overrides."""
    from session_guard.main import app
    from session_guard.database import get_db
    from session_guard.dependencies import get_token_issuer

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            finally:
                await session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_token_issuer] = lambda: issuer
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(test_app):
    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as ac:
        yield ac
