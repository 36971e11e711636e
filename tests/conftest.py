"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fixtures for testing:
- SQLite-backed async database sessions (schema created from the ORM models)
- A scriptable in-memory payment provider
- The packaged product catalog and a seeded user
- API test client with dependency overrides
"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

# Set required environment variables BEFORE importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_fulfillment.db")
os.environ.setdefault("STRIPE_API_KEY", "sk_test_fake_key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_fake_secret")
os.environ.setdefault(
    "SUCCESS_URL", "http://localhost:3000/purchase/success?sessionId={CHECKOUT_SESSION_ID}"
)
os.environ.setdefault("CANCEL_URL", "http://localhost:5173/")
os.environ.setdefault("PURCHASE_COMPLETE_URL", "http://localhost:5173/purchase-complete")
os.environ.setdefault("TRACING_ENABLED", "false")

from app.db.models import Base
from app.models.api import UserSeed
from app.services.catalog import DEFAULT_CATALOG_PATH, ProductCatalog
from app.services.locks import KeyedLock
from app.services.users import UserService
from tests.fakes import FakePaymentProvider

TEST_USER = UserSeed(id="1", name="Kyle", email="kyle@example.com")


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with the full schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fulfillment.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A single database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seeded_user(session_factory: async_sessionmaker[AsyncSession]) -> UserSeed:
    """The default user, present in the users table."""
    async with session_factory() as session:
        await UserService(session).seed_users([TEST_USER])
    return TEST_USER


# ============================================================================
# Service Collaborators
# ============================================================================


@pytest.fixture
def provider() -> FakePaymentProvider:
    """Fresh fake payment provider."""
    return FakePaymentProvider()


@pytest.fixture
def catalog() -> ProductCatalog:
    """The packaged product catalog."""
    return ProductCatalog.from_json(DEFAULT_CATALOG_PATH)


@pytest.fixture
def locks() -> KeyedLock:
    """Isolated lock registry."""
    return KeyedLock()


# ============================================================================
# API Client
# ============================================================================


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    provider: FakePaymentProvider,
    catalog: ProductCatalog,
    seeded_user: UserSeed,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with database, provider and catalog overridden."""
    from app.api.dependencies import get_payment_provider
    from app.db.session import get_db
    from app.main import app
    from app.services.catalog import get_catalog

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_provider] = lambda: provider
    app.dependency_overrides[get_catalog] = lambda: catalog

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
