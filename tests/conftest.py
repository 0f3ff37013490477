"""Pytest configuration and fixtures."""

import os

# Keep the application engine off the filesystem during tests
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_ENABLED", "false")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from identity_service.domain.services.reconciliation_service import ReconciliationService
from identity_service.infrastructure.identity_lock import IdentityLock
from identity_service.infrastructure.rate_limiter import in_memory_limiter
from identity_service.persistence.database import Base, get_db
from identity_service.persistence.models import *  # noqa: F401, F403
from identity_service.persistence.repositories.contact_repository import ContactRepository


@pytest.fixture
async def db_session():
    """Create a test database session."""
    # Use in-memory SQLite for testing
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def contact_repo(db_session):
    """Contact repository bound to the test session."""
    return ContactRepository(db_session)


@pytest.fixture
def service(db_session):
    """Reconciliation service with its own in-process lock."""
    return ReconciliationService(db_session, lock=IdentityLock())


@pytest.fixture
async def client(db_session):
    """Create a test HTTP client against the FastAPI app."""
    from identity_service.main import app

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    in_memory_limiter.reset()

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()
