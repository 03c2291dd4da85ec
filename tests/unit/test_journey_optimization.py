"""Tests for journey optimization: optimizer input, result mapping and the command."""
import uuid

import httpx
import pytest
from sqlalchemy import update
from sqlmodel import select

from models.db_models import Journey, JourneyStop, JourneyStopStatus
from models.optimization import OptimizationResult, OptimizerResponse
from models.principal import Principal, Role
from services import optimizer_client as optimizer_module
from services.command_dispatcher import DispatchStatus, ExecutionContext
from services.errors import OptimizerFatalError
from services.journey_optimization import (
    JourneyOptimizer,
    OptimizeJourneyCommand,
    apply_result,
    build_locations,
)
from services.optimizer_client import ExternalOptimizerClient
from services.tenant_scope import TenantScope, tenant_session
from tests.helpers import seed

ROUTE_BODY = {
    "id": "tour-1",
    "count": 4,
    "feasible": True,
    "route": {
        "0": {"name": "start", "arrival": 0, "distance": 0},
        "1": {"name": "6", "arrival": 31.4, "distance": 4.2},
        "2": {"name": "5", "arrival": 58, "distance": 9.9},
        "3": {"name": "end", "arrival": 80, "distance": 14.0},
    },
}


def journey() -> Journey:
    return Journey(id=42, tenant_id=7, name="Morning run", start_latitude=41.05,
                   start_longitude=29.05, end_latitude=41.1, end_longitude=29.1)


def stops() -> list[JourneyStop]:
    return [
        JourneyStop(id=5, tenant_id=7, journey_id=42, customer_id=9, order=1,
                    latitude=41.0, longitude=29.0),
        JourneyStop(id=6, tenant_id=7, journey_id=42, customer_id=10, order=2,
                    latitude=41.2, longitude=29.2, service_time=5,
                    arrive_between_start=30, arrive_between_end=90),
    ]


def result_of(body: dict) -> OptimizationResult:
    return OptimizationResult.from_response(OptimizerResponse.model_validate(body))


def dispatcher_principal() -> Principal:
    return Principal(user_id=uuid.uuid4(), tenant_id=7, roles=Role.DISPATCHER,
                     email="dispatch@seven.test")


class TestBuildLocations:

    def test_start_stops_end(self):
        locations = build_locations(journey(), stops(), default_service_time=15)

        assert [location.address for location in locations] == ["start", "5", "6", "end"]
        assert (locations[0].lat, locations[0].lng) == (41.05, 29.05)
        assert (locations[-1].lat, locations[-1].lng) == (41.1, 29.1)

    def test_service_time_falls_back_to_workspace_default(self):
        locations = build_locations(journey(), stops(), default_service_time=15)

        assert locations[1].servicetime == 15
        assert locations[2].servicetime == 5

    def test_time_window_becomes_restrictions(self):
        locations = build_locations(journey(), stops(), default_service_time=15)

        assert locations[1].restrictions is None
        assert locations[2].restrictions.ready == 30
        assert locations[2].restrictions.due == 90


class TestApplyResult:

    def test_order_arrival_and_distance(self):
        journey_stops = stops()

        applied = apply_result(journey_stops, result_of(ROUTE_BODY))

        assert [(s.stop_id, s.order) for s in applied] == [(6, 1), (5, 2)]
        by_id = {stop.id: stop for stop in journey_stops}
        assert by_id[6].order == 1
        assert by_id[6].estimated_arrival == 31
        assert by_id[5].distance == 9.9

    def test_unknown_stop_is_skipped(self):
        body = {**ROUTE_BODY, "route": {**ROUTE_BODY["route"], "2": {"name": "999", "arrival": 1}}}

        applied = apply_result(stops(), result_of(body))

        assert [s.stop_id for s in applied] == [6]

    def test_non_numeric_name_is_fatal(self):
        body = {**ROUTE_BODY, "route": {"0": {"name": "somewhere"}}}

        with pytest.raises(OptimizerFatalError):
            apply_result(stops(), result_of(body), correlation_id="abc")


@pytest.fixture
def optimizer_endpoint(monkeypatch):
    """Process-wide optimizer client answering from a scripted endpoint."""
    calls = []
    responses = [httpx.Response(200, json=ROUTE_BODY)]

    def endpoint(request):
        calls.append(request)
        return responses.pop(0)

    client = ExternalOptimizerClient(
        api_url="https://optimizer.test/tour",
        username="fleet",
        password="s3cret",
        transport=httpx.MockTransport(endpoint),
    )
    monkeypatch.setattr(optimizer_module, "_optimizer_client", client)
    return responses, calls


async def stop_orders(session_factory, journey_id: int) -> dict:
    async with tenant_session(TenantScope.cross_tenant("test check"), session_factory) as session:
        result = await session.execute(select(JourneyStop).where(JourneyStop.journey_id == journey_id))
        return {stop.id: (stop.order, stop.estimated_arrival) for stop in result.scalars().all()}


class TestOptimizeJourneyCommand:

    @pytest.mark.asyncio
    async def test_pending_stops_are_reordered(self, dispatcher, fleet, session_factory, optimizer_endpoint):
        result = await dispatcher.dispatch(str(fleet.dispatcher.id), OptimizeJourneyCommand,
                                           {"journey_id": 42})

        assert result.ok, result.error_dict()
        assert result.body.total_distance == 14.0
        assert result.body.total_duration == 80
        assert [s.stop_id for s in result.body.stops] == [6, 5]

        orders = await stop_orders(session_factory, 42)
        assert orders[6] == (1, 31)
        assert orders[5] == (2, 58)
        assert orders[7] == (3, None)

    @pytest.mark.asyncio
    async def test_completed_stops_are_not_sent(self, dispatcher, fleet, optimizer_endpoint):
        _, calls = optimizer_endpoint

        await dispatcher.dispatch(str(fleet.dispatcher.id), OptimizeJourneyCommand, {"journey_id": 42})

        assert b"%227%22" not in calls[0].content

    @pytest.mark.asyncio
    async def test_other_tenants_journey_is_not_found(self, dispatcher, fleet, optimizer_endpoint):
        _, calls = optimizer_endpoint

        result = await dispatcher.dispatch(str(fleet.dispatcher_4.id), OptimizeJourneyCommand,
                                           {"journey_id": 42})

        assert result.code == "JOURNEY_NOT_FOUND"
        assert calls == []

    @pytest.mark.asyncio
    async def test_journey_without_pending_stops(self, dispatcher, fleet, session_factory, optimizer_endpoint):
        await seed(
            session_factory,
            Journey(id=43, tenant_id=7, start_latitude=41.0, start_longitude=29.0,
                    end_latitude=41.0, end_longitude=29.0),
        )
        await seed(
            session_factory,
            JourneyStop(id=50, tenant_id=7, journey_id=43, customer_id=9, latitude=41.0,
                        longitude=29.0, status=JourneyStopStatus.failed),
        )

        result = await dispatcher.dispatch(str(fleet.dispatcher.id), OptimizeJourneyCommand,
                                           {"journey_id": 43})

        assert result.code == "NO_STOPS_TO_OPTIMIZE"
        assert result.status_code == 400

    @pytest.mark.asyncio
    async def test_optimizer_failure_leaves_journey_unchanged(
        self, dispatcher, fleet, session_factory, optimizer_endpoint
    ):
        responses, _ = optimizer_endpoint
        responses[0] = httpx.Response(503, text="maintenance")
        before = await stop_orders(session_factory, 42)

        result = await dispatcher.dispatch(str(fleet.dispatcher.id), OptimizeJourneyCommand,
                                           {"journey_id": 42})

        assert result.status is DispatchStatus.HANDLER_FAILED
        assert result.code == "OPTIMIZER_FAILED"
        assert result.status_code == 502
        assert await stop_orders(session_factory, 42) == before

    @pytest.mark.asyncio
    async def test_no_transaction_is_open_during_optimizer_call(self, fleet, session_factory):
        in_transaction = []

        class RecordingClient:
            async def optimize(self, locations):
                in_transaction.append(session.in_transaction())
                return result_of(ROUTE_BODY)

        async with tenant_session(TenantScope.for_tenant(7), session_factory) as session:
            ctx = ExecutionContext(principal=dispatcher_principal(), scope=TenantScope.for_tenant(7),
                                   session=session, correlation_id="c-1")
            response = await JourneyOptimizer(client=RecordingClient()).optimize(ctx, 42)
            await session.commit()

        assert in_transaction == [False]
        assert [s.stop_id for s in response.stops] == [6, 5]
        assert (await stop_orders(session_factory, 42))[6] == (1, 31)

    @pytest.mark.asyncio
    async def test_stop_completed_during_optimization_is_not_reordered(self, fleet, session_factory):

        class CompletingClient:
            async def optimize(self, locations):
                async with tenant_session(TenantScope.for_tenant(7), session_factory) as other:
                    await other.execute(
                        update(JourneyStop).where(JourneyStop.id == 6)
                        .values(status=JourneyStopStatus.completed)
                    )
                    await other.commit()
                return result_of(ROUTE_BODY)

        async with tenant_session(TenantScope.for_tenant(7), session_factory) as session:
            ctx = ExecutionContext(principal=dispatcher_principal(), scope=TenantScope.for_tenant(7),
                                   session=session, correlation_id="c-2")
            response = await JourneyOptimizer(client=CompletingClient()).optimize(ctx, 42)
            await session.commit()

        assert [(s.stop_id, s.order) for s in response.stops] == [(5, 1)]
        orders = await stop_orders(session_factory, 42)
        assert orders[6] == (2, None)
        assert orders[5] == (1, 58)

    @pytest.mark.asyncio
    async def test_driver_cannot_optimize(self, dispatcher, fleet, optimizer_endpoint):
        result = await dispatcher.dispatch(str(fleet.driver.id), OptimizeJourneyCommand,
                                           {"journey_id": 42})

        assert result.status is DispatchStatus.FORBIDDEN
