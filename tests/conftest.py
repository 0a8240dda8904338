"""
Test configuration and fixtures for the Jornada test suite.
Provides database setup, HTTP client, tokens and a data factory.
"""

import pytest
import pytest_asyncio
from typing import AsyncGenerator, Optional
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from jornada.main import app
from jornada.core.journey_workflow import SALES_ORDER_STATE_MACHINE
from jornada.core.presence_workflow import PRESENCE_STATE_MACHINE
from jornada.core.security import create_jwt_token
from jornada.db.base import Base
from jornada.db.session import enable_sqlite_savepoints, get_db

# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on a fresh in-memory database."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    enable_sqlite_savepoints(test_engine)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # The router commits mid-request, so loaded rows must survive commit
    TestSessionLocal = async_sessionmaker(
        autoflush=False,
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def bearer(user_id: str) -> dict:
    token = create_jwt_token(user_id, expires_in=3600)
    return {"Authorization": f"Bearer {token}"}


async def count_rows(session: AsyncSession, model, **filters) -> int:
    stmt = select(func.count()).select_from(model)
    for name, value in filters.items():
        stmt = stmt.where(getattr(model, name) == value)
    res = await session.execute(stmt)
    return res.scalar_one()


class TestDataFactory:
    """Factory class for creating test data."""

    @staticmethod
    async def create_tenant(session: AsyncSession, name: str = "Test Tenant"):
        from jornada.db.models import Tenant

        tenant = Tenant(name=name)
        session.add(tenant)
        await session.flush()
        return tenant

    @staticmethod
    async def create_journey(session: AsyncSession, key: str = "sales_order", state_machine: Optional[dict] = None):
        from jornada.db.models import Journey

        if state_machine is None:
            state_machine = PRESENCE_STATE_MACHINE if key == "presence" else SALES_ORDER_STATE_MACHINE
        journey = Journey(key=key, name=key.replace("_", " ").title(), default_state_machine_json=state_machine)
        session.add(journey)
        await session.flush()
        return journey

    @staticmethod
    async def enable_journey(session: AsyncSession, tenant_id: int, journey_id: int, config: Optional[dict] = None, enabled: bool = True):
        from jornada.db.models import TenantJourney

        link = TenantJourney(tenant_id=tenant_id, journey_id=journey_id, enabled=enabled, config_json=config or {})
        session.add(link)
        await session.flush()
        return link

    @staticmethod
    async def create_instance(
        session: AsyncSession,
        tenant_id: int,
        zapi_instance_id: str = "inst-1",
        secret: str = "s3cret",
        default_journey_id: Optional[int] = None,
    ):
        from jornada.db.models import WaInstance

        instance = WaInstance(
            tenant_id=tenant_id,
            zapi_instance_id=zapi_instance_id,
            webhook_secret=secret,
            default_journey_id=default_journey_id,
        )
        session.add(instance)
        await session.flush()
        return instance

    @staticmethod
    async def create_employee(
        session: AsyncSession,
        tenant_id: int,
        user_id: str = "user-1",
        role: str = "employee",
        time_zone: Optional[str] = None,
    ):
        from jornada.db.models import Employee

        employee = Employee(tenant_id=tenant_id, user_id=user_id, display_name=user_id, role=role, time_zone=time_zone)
        session.add(employee)
        await session.flush()
        return employee

    @staticmethod
    async def create_geofence(
        session: AsyncSession,
        tenant_id: int,
        latitude: float = -23.5614,
        longitude: float = -46.6559,
        radius_meters: int = 100,
        allow_outside_radius: bool = True,
        outside_radius_state: str = "PENDENTE_JUSTIFICATIVA",
        break_required: bool = True,
    ):
        from jornada.db.models import PresenceLocation, PresencePolicy

        location = PresenceLocation(tenant_id=tenant_id, name="Matriz", latitude=latitude, longitude=longitude)
        session.add(location)
        await session.flush()
        policy = PresencePolicy(
            tenant_id=tenant_id,
            location_id=location.id,
            radius_meters=radius_meters,
            allow_outside_radius=allow_outside_radius,
            outside_radius_state=outside_radius_state,
            break_required=break_required,
        )
        session.add(policy)
        await session.flush()
        return policy


@pytest.fixture
def test_factory():
    """Provide access to test data factory."""
    return TestDataFactory


@pytest.fixture
def rows():
    """Row counter: `await rows(session, Model, tenant_id=1)`."""
    return count_rows


@pytest.fixture
def auth_headers():
    """Bearer header builder: `auth_headers("user-1")`."""
    return bearer


@pytest_asyncio.fixture
async def sales_setup(db_session: AsyncSession):
    """Tenant with an instance whose default journey is sales_order."""
    tenant = await TestDataFactory.create_tenant(db_session)
    journey = await TestDataFactory.create_journey(db_session, "sales_order")
    instance = await TestDataFactory.create_instance(db_session, tenant.id, default_journey_id=journey.id)
    await db_session.commit()
    return {"tenant": tenant, "journey": journey, "instance": instance}


@pytest_asyncio.fixture
async def presence_setup(db_session: AsyncSession):
    """Tenant with presence enabled, one employee and one manager."""
    tenant = await TestDataFactory.create_tenant(db_session)
    journey = await TestDataFactory.create_journey(db_session, "presence")
    await TestDataFactory.enable_journey(
        db_session, tenant.id, journey.id,
        config={"presence": {"time_zone": "America/Sao_Paulo", "planned_minutes": 480}, "flags": {"presence_enabled": True}},
    )
    employee = await TestDataFactory.create_employee(db_session, tenant.id, user_id="emp-1")
    manager = await TestDataFactory.create_employee(db_session, tenant.id, user_id="mgr-1", role="manager")
    await db_session.commit()
    return {"tenant": tenant, "journey": journey, "employee": employee, "manager": manager}
