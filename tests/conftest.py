"""
Shared pytest fixtures for all tests.

Provides an in-memory SQLite database, a controllable clock, service
instances wired to the SQLAlchemy repositories and an HTTP client for the
FastAPI application.
"""

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Ensure test environment before the settings are loaded
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.pop("CASE_SERVICE_URL", None)
os.environ.pop("SLA_POLICY_SEED_PATH", None)

from fleetdesk.infrastructure.database import Base, get_session  # noqa: E402
from fleetdesk.sla.application.services import (  # noqa: E402
    PolicyWindowResolver,
    SlaConfigurationService,
    SLAReportService,
    TicketLifecycleService,
)
from fleetdesk.sla.infrastructure import models  # noqa: E402,F401
from fleetdesk.sla.infrastructure.repositories import (  # noqa: E402
    SQLAlchemyAuditLogRepository,
    SQLAlchemyMaintenanceWindowRepository,
    SQLAlchemySlaPolicyRepository,
    SQLAlchemyTicketEventRepository,
    SQLAlchemyTicketRepository,
)
from tests.helpers import TENANT, FakeClock, RecordingCaseGateway, at  # noqa: E402


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def async_engine():
    """In-memory SQLite engine shared by every connection of the test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(async_engine) -> async_sessionmaker:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(at(8))


@pytest.fixture
def ticket_repo(db_session) -> SQLAlchemyTicketRepository:
    return SQLAlchemyTicketRepository(db_session)


@pytest.fixture
def event_repo(db_session) -> SQLAlchemyTicketEventRepository:
    return SQLAlchemyTicketEventRepository(db_session)


@pytest.fixture
def policy_repo(db_session) -> SQLAlchemySlaPolicyRepository:
    return SQLAlchemySlaPolicyRepository(db_session)


@pytest.fixture
def window_repo(db_session) -> SQLAlchemyMaintenanceWindowRepository:
    return SQLAlchemyMaintenanceWindowRepository(db_session)


@pytest.fixture
def audit_repo(db_session) -> SQLAlchemyAuditLogRepository:
    return SQLAlchemyAuditLogRepository(db_session)


@pytest.fixture
def lifecycle_service(ticket_repo, event_repo, policy_repo, window_repo, audit_repo, clock):
    return TicketLifecycleService(
        ticket_repo,
        event_repo,
        PolicyWindowResolver(policy_repo, window_repo),
        audit_repository=audit_repo,
        clock=clock,
    )


@pytest.fixture
def config_service(policy_repo, window_repo, audit_repo) -> SlaConfigurationService:
    return SlaConfigurationService(policy_repo, window_repo, audit_repo)


@pytest.fixture
def report_service(ticket_repo) -> SLAReportService:
    return SLAReportService(ticket_repo)


# ============================================================================
# HTTP FIXTURES
# ============================================================================


@pytest.fixture
def case_gateway() -> RecordingCaseGateway:
    return RecordingCaseGateway()


@pytest_asyncio.fixture
async def client(session_factory, case_gateway) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the app, bound to the test database."""
    from fleetdesk.main import app
    from fleetdesk.sla.interfaces.controllers import get_case_gateway_dependency

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_case_gateway_dependency] = lambda: case_gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def tenant_headers() -> dict:
    return {"X-Tenant-ID": TENANT, "X-Actor-ID": "user-1"}
