"""Pytest configuration and fixtures."""

import os

# Settings are read once and cached; set them before anything imports hms.
os.environ["JWT_SECRET"] = "test-signing-secret-not-for-production"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["RATE_LIMIT_ENABLED"] = "false"

import uuid
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from hms.auth import generate_token
from hms.database import Base, get_db
from hms.main import app
from hms.roles import Role
from hms.services.account_service import account_service

TEST_PASSWORD = "password123"


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def session_maker() -> AsyncGenerator:
    """Fresh in-memory database per test, shared by every session in it."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def client(session_maker) -> AsyncGenerator:
    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def create_account(session_maker):
    """Factory: create a user of the given role and return (user, access token)."""

    async def _create(role: Role = Role.PATIENT, email: str = None, **profile):
        suffix = uuid.uuid4().hex[:8]
        doctor = patient = None
        if role == Role.DOCTOR:
            doctor = {
                "specialization": profile.pop("specialization", "Cardiology"),
                "license_number": profile.pop("license_number", f"LIC-{suffix}"),
            }
        elif role == Role.PATIENT:
            patient = profile

        async with session_maker() as db:
            user = await account_service.create_account(
                db,
                email=email or f"{role.value.lower()}-{suffix}@example.com",
                password=TEST_PASSWORD,
                first_name="Test",
                last_name=role.value.title(),
                role=role,
                doctor=doctor,
                patient=patient,
            )
            await db.commit()
        return user, generate_token(user)

    return _create
