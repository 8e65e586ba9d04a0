"""
Pytest configuration and fixtures for testing
"""
import os

# Must be set before config.settings is imported
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-pytest")
os.environ.setdefault("AUTH_BACKEND", "local")
os.environ.setdefault("SESSION_REVALIDATE_SECONDS", "0")

from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from services.identity_provider import LocalIdentityProvider
from services.session_store import SessionStore

# Create in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

STRONG_PASSWORD = "StrongPass123!"

# Create test engine; one shared connection so every session sees the same database
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    future=True,
    poolclass=StaticPool,
)

# Create test session factory
TestAsyncSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class FixedClock:
    """Callable clock that tests can move by hand"""

    def __init__(self, now=None):
        self.now = now or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
async def session_factory():
    """
    Creates all tables before the test and drops them afterwards.
    Yields the session factory bound to the in-memory engine.
    """
    async with test_engine.begin() as conn:
        # Import models to ensure they're registered with Base
        import database_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)

    yield TestAsyncSessionLocal

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def test_db(session_factory):
    """Isolated AsyncSession on a freshly created schema"""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@pytest.fixture
async def provider(session_factory):
    provider = LocalIdentityProvider(session_factory)
    yield provider
    await provider.close()


@pytest.fixture
async def store(provider):
    store = SessionStore(provider)
    await store.start()
    yield store
    await store.close()


@pytest.fixture
def clock():
    return FixedClock()
