"""
Pytest configuration and fixtures for testing.

Provides:
- Database fixtures (a throwaway SQLite file per test, one connection per session)
- Staff and requester users covering every role
- An httpx client bound to the ASGI app with the session dependency overridden

User and request fixtures are expunged from the session that created them,
so a rolled-back operation in a test does not expire them.

Usage:
    pytest tests/ -v
"""

import os

# Settings are read at import time; configure them before importing the app.
os.environ.setdefault("SECURITY_SECRET_KEY", "test-secret-key-request-desk-0123456789abcdef")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("MONITORING_ENABLE_METRICS", "false")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "100000")
os.environ.setdefault("NOTIFY_ENABLED", "false")
os.environ.setdefault("LOG_ENABLE_FILE_LOGGING", "false")

from typing import AsyncGenerator, Callable, Dict

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

import db.models  # noqa: F401  register table metadata
from core.config import settings
from core.database import get_session
from core.rate_limit import write_rate_limiter
from core.security import create_access_token
from db.enums import RequestType, UserRole
from db.models import ServiceRequest, User
from services.activity_dispatcher import ActivityDispatcher
from services.assignment_service import AssignmentService
from services.request_service import RequestService
from tests.factories import IT_SUPPORT, WEB_SUPPORT, UserFactory


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a SQLite engine on a fresh database file.

    NullPool gives every session its own connection, so concurrent sessions
    see each other's commits the way they would on PostgreSQL.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'request_desk.db'}",
        poolclass=NullPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_maker() as session:
        yield session


# ============================================================================
# Global state
# ============================================================================

@pytest.fixture(autouse=True)
def reset_write_quota():
    """Every test starts with an empty write quota at the configured limit."""
    write_rate_limiter.configure(settings.rate_limit.write_limit_string)
    write_rate_limiter.reset()
    yield
    write_rate_limiter.configure(settings.rate_limit.write_limit_string)
    write_rate_limiter.reset()


@pytest_asyncio.fixture(autouse=True)
async def reset_dispatcher():
    yield
    await ActivityDispatcher.close()


# ============================================================================
# Users
# ============================================================================

async def _persist(db_session: AsyncSession, user: User) -> User:
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    db_session.expunge(user)
    return user


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> User:
    return await _persist(db_session, UserFactory.create(role=UserRole.ADMIN, department=None))


@pytest_asyncio.fixture
async def it_lead(db_session: AsyncSession) -> User:
    return await _persist(db_session, UserFactory.create(role=UserRole.DEPT_LEAD, department=IT_SUPPORT))


@pytest_asyncio.fixture
async def web_lead(db_session: AsyncSession) -> User:
    return await _persist(db_session, UserFactory.create(role=UserRole.DEPT_LEAD, department=WEB_SUPPORT))


@pytest_asyncio.fixture
async def employee_e1(db_session: AsyncSession) -> User:
    return await _persist(db_session, UserFactory.create(role=UserRole.EMPLOYEE, department=IT_SUPPORT))


@pytest_asyncio.fixture
async def employee_e2(db_session: AsyncSession) -> User:
    return await _persist(db_session, UserFactory.create(role=UserRole.EMPLOYEE, department=IT_SUPPORT))


@pytest_asyncio.fixture
async def web_employee(db_session: AsyncSession) -> User:
    return await _persist(db_session, UserFactory.create(role=UserRole.EMPLOYEE, department=WEB_SUPPORT))


@pytest_asyncio.fixture
async def requester(db_session: AsyncSession) -> User:
    return await _persist(db_session, UserFactory.create(role=UserRole.USER))


@pytest_asyncio.fixture
async def other_requester(db_session: AsyncSession) -> User:
    return await _persist(db_session, UserFactory.create(role=UserRole.USER))


# ============================================================================
# Requests
# ============================================================================

@pytest_asyncio.fixture
async def pending_request(db_session: AsyncSession, requester: User) -> ServiceRequest:
    """A technical request created by the requester, routed to IT Support."""
    request = await RequestService.create_request(
        db_session, requester, request_type=RequestType.TECHNICAL, title="Laptop does not boot"
    )
    db_session.expunge(request)
    return request


@pytest_asyncio.fixture
async def assigned_request(
    db_session: AsyncSession, pending_request: ServiceRequest, admin: User, employee_e1: User
) -> ServiceRequest:
    """The pending request assigned by the admin to E1 in IT Support."""
    result = await AssignmentService.assign(
        db_session,
        pending_request.id,
        admin,
        assignee_id=employee_e1.id,
        department=IT_SUPPORT,
        expected_assigned_to=None,
    )
    db_session.expunge(result.request)
    return result.request


# ============================================================================
# API client
# ============================================================================

@pytest.fixture
def app(session_maker):
    """FastAPI app whose request sessions come from the test database."""
    from app import create_app

    application = create_app()

    async def override_get_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            try:
                yield session
                if session.in_transaction():
                    await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_session] = override_get_session
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers() -> Callable[[User], Dict[str, str]]:
    """Build an Authorization header for a user."""

    def _headers(user: User) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user)}"}

    return _headers
