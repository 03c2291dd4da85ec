"""Shared fixtures: environment, an in-memory database and a seeded fleet."""
import os
import uuid
from types import SimpleNamespace

# Set test environment before any application module is imported
os.environ["INTERNAL_JWT_SECRET"] = "test-secret-that-is-at-least-32-characters-long"
os.environ["INTERNAL_JWT_ISSUER"] = "fleet-gateway"
os.environ["INTERNAL_JWT_AUDIENCE"] = "fleet-core"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
for _var in ("REDIS_URL", "EVENTBRIDGE_BUS_NAME", "ROUTEXL_USERNAME", "ROUTEXL_PASSWORD",
             "DISPATCH_TIMEOUT_SECONDS"):
    os.environ.pop(_var, None)

import pytest

from models.db_models import Customer, Journey, JourneyStop, JourneyStopStatus, Member, Workspace
from services.command_dispatcher import CommandDispatcher
from services.database import create_session_maker
from services.identity_context import IdentityContext
from tests.helpers import new_engine, seed


@pytest.fixture
async def engine():
    engine = await new_engine()
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_maker(engine)


@pytest.fixture
def dispatcher(session_factory):
    return CommandDispatcher(
        identity=IdentityContext(session_factory=session_factory, cache=None),
        session_factory=session_factory,
    )


@pytest.fixture
async def fleet(session_factory):
    """
    Two workspaces worth of data.

    Tenant 7: journey 42 with stop 5 for customer 9, a driver, a dispatcher,
    an admin and a driver-less member with no roles.
    Tenant 3: a dispatcher only.
    Tenant 4: journey 142 with stop 105 for customer 109.
    """
    f = SimpleNamespace(
        driver=Member(id=uuid.uuid4(), tenant_id=7, email="driver@seven.test",
                      full_name="Ayşe Sürücü", is_driver=True),
        dispatcher=Member(id=uuid.uuid4(), tenant_id=7, email="dispatch@seven.test",
                          is_dispatcher=True),
        admin=Member(id=uuid.uuid4(), tenant_id=7, email="admin@seven.test",
                     full_name="Admin Seven", is_admin=True),
        nobody=Member(id=uuid.uuid4(), tenant_id=7, email="nobody@seven.test"),
        deleted=Member(id=uuid.uuid4(), tenant_id=7, email="gone@seven.test",
                       is_dispatcher=True, is_deleted=True),
        dispatcher_3=Member(id=uuid.uuid4(), tenant_id=3, email="dispatch@three.test",
                            is_dispatcher=True),
        dispatcher_4=Member(id=uuid.uuid4(), tenant_id=4, email="dispatch@four.test",
                            is_dispatcher=True),
        driver_4=Member(id=uuid.uuid4(), tenant_id=4, email="driver@four.test",
                        is_driver=True),
        super_admin=Member(id=uuid.uuid4(), tenant_id=3, email="root@three.test",
                           is_super_admin=True),
    )

    await seed(
        session_factory,
        Workspace(id=3, name="Three"),
        Workspace(id=4, name="Four"),
        Workspace(id=7, name="Seven", default_service_time=15),
    )
    await seed(
        session_factory,
        f.driver, f.dispatcher, f.admin, f.nobody, f.deleted,
        f.dispatcher_3, f.dispatcher_4, f.driver_4, f.super_admin,
        Customer(id=9, tenant_id=7, name="Customer Nine", address="Old Street 1",
                 latitude=41.0, longitude=29.0),
        Customer(id=10, tenant_id=7, name="Customer Ten", address="Other Street 2",
                 latitude=41.2, longitude=29.2),
        Customer(id=109, tenant_id=4, name="Customer 109", address="Four Street",
                 latitude=40.0, longitude=28.0),
        Journey(id=42, tenant_id=7, name="Morning run", start_latitude=41.05,
                start_longitude=29.05, end_latitude=41.05, end_longitude=29.05),
        Journey(id=142, tenant_id=4, name="Four run", start_latitude=40.1,
                start_longitude=28.1, end_latitude=40.1, end_longitude=28.1),
    )
    await seed(
        session_factory,
        JourneyStop(id=5, tenant_id=7, journey_id=42, customer_id=9, order=1,
                    latitude=41.0, longitude=29.0, address="Old Street 1"),
        JourneyStop(id=6, tenant_id=7, journey_id=42, customer_id=10, order=2,
                    latitude=41.2, longitude=29.2, service_time=5,
                    arrive_between_start=30, arrive_between_end=90),
        JourneyStop(id=7, tenant_id=7, journey_id=42, customer_id=9, order=3,
                    latitude=41.0, longitude=29.0, status=JourneyStopStatus.completed),
        JourneyStop(id=105, tenant_id=4, journey_id=142, customer_id=109, order=1,
                    latitude=40.0, longitude=28.0),
    )
    return f
