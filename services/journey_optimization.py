"""Journey optimization: build optimizer input from a journey and apply the result."""
import logging
from typing import ClassVar, Optional, Sequence

from pydantic import Field
from sqlmodel import select

from models.access import AccessRequirement
from models.db_models import Journey, JourneyStop, JourneyStopStatus, Workspace
from models.optimization import (
    JourneyOptimizationResponse,
    LocationRestrictions,
    OptimizationResult,
    OptimizedJourneyStop,
    OptimizerLocation,
)
from services.command_dispatcher import Command, ExecutionContext
from services.errors import JourneyNotFound, NoStopsToOptimize, OptimizerFatalError
from services.optimizer_client import ExternalOptimizerClient, get_optimizer_client

logger = logging.getLogger(__name__)

START_KEY = "start"
END_KEY = "end"
DEFAULT_SERVICE_TIME_MINUTES = 10


def build_locations(
    journey: Journey,
    stops: Sequence[JourneyStop],
    default_service_time: int,
) -> list[OptimizerLocation]:
    """
    Translate a journey into the optimizer's location list.

    The list starts with the journey start and ends with its end. Each stop
    is keyed by its id so the optimizer's answer can be mapped back.
    Time windows are minutes after the journey start.
    """
    locations = [
        OptimizerLocation(
            address=START_KEY,
            lat=journey.start_latitude,
            lng=journey.start_longitude,
        )
    ]

    for stop in stops:
        restrictions = None
        if stop.arrive_between_start is not None or stop.arrive_between_end is not None:
            restrictions = LocationRestrictions(
                ready=stop.arrive_between_start,
                due=stop.arrive_between_end,
            )
        locations.append(
            OptimizerLocation(
                address=str(stop.id),
                lat=stop.latitude,
                lng=stop.longitude,
                servicetime=stop.service_time if stop.service_time is not None else default_service_time,
                restrictions=restrictions,
            )
        )

    locations.append(
        OptimizerLocation(
            address=END_KEY,
            lat=journey.end_latitude,
            lng=journey.end_longitude,
        )
    )
    return locations


def apply_result(
    stops: Sequence[JourneyStop],
    result: OptimizationResult,
    correlation_id: Optional[str] = None,
) -> list[OptimizedJourneyStop]:
    """Write visiting order, arrival and distance from ``result`` onto ``stops``."""
    by_id = {stop.id: stop for stop in stops}
    applied = []

    for route_stop in result.stops:
        if route_stop.name in (START_KEY, END_KEY):
            continue
        try:
            stop_id = int(route_stop.name)
        except ValueError:
            raise OptimizerFatalError(
                f"unexpected location name {route_stop.name!r}", correlation_id or ""
            )

        stop = by_id.get(stop_id)
        if stop is None:
            logger.warning(f"Optimizer returned unknown stop: stop_id={stop_id}")
            continue

        stop.order = len(applied) + 1
        stop.estimated_arrival = int(round(route_stop.arrival))
        stop.distance = route_stop.distance
        applied.append(
            OptimizedJourneyStop(
                stop_id=stop.id,
                order=stop.order,
                estimated_arrival=stop.estimated_arrival,
                distance=stop.distance,
            )
        )

    return applied


class JourneyOptimizer:
    """Loads a tenant's journey, optimizes it and stores the new order."""

    def __init__(self, client: Optional[ExternalOptimizerClient] = None):
        self._client = client

    @property
    def client(self) -> ExternalOptimizerClient:
        return self._client or get_optimizer_client()

    async def optimize(self, ctx: ExecutionContext, journey_id: int) -> JourneyOptimizationResponse:
        """
        Optimize the pending stops of ``journey_id``.

        The read transaction ends before the optimizer call, so no pooled
        connection is held while waiting for the optimizer permit. The
        result is then applied to the stops that are still pending.

        Raises:
            JourneyNotFound: If the journey is not in the caller's tenant
            NoStopsToOptimize: If the journey has no pending stops
            OptimizerFatalError: If the optimizer call fails
        """
        session = ctx.session
        tenant_id = ctx.tenant_id

        result = await session.execute(
            select(Journey).where(Journey.id == journey_id, Journey.tenant_id == tenant_id)
        )
        journey = result.scalar_one_or_none()
        if journey is None:
            raise JourneyNotFound(journey_id)

        stops = await self._pending_stops(ctx, journey_id)
        if not stops:
            raise NoStopsToOptimize(journey_id)

        result = await session.execute(
            select(Workspace.default_service_time).where(Workspace.id == tenant_id)
        )
        default_service_time = result.scalar_one_or_none() or DEFAULT_SERVICE_TIME_MINUTES

        locations = build_locations(journey, stops, default_service_time)
        logger.info(
            f"Optimizing journey: journey_id={journey_id}, tenant_id={tenant_id}, "
            f"stops={len(stops)}, correlation_id={ctx.correlation_id}"
        )

        # Nothing has been written yet; this only releases the connection
        await session.commit()

        optimization = await self.client.optimize(locations)
        stops = await self._pending_stops(ctx, journey_id)
        applied = apply_result(stops, optimization, ctx.correlation_id)
        logger.info(
            f"Journey optimized: journey_id={journey_id}, feasible={optimization.feasible}, "
            f"order={optimization.visiting_order}, correlation_id={ctx.correlation_id}"
        )
        journey.optimized = True
        session.add(journey)

        end = next((s for s in optimization.stops if s.name == END_KEY), None)
        last = end or (optimization.stops[-1] if optimization.stops else None)

        return JourneyOptimizationResponse(
            journey_id=journey_id,
            feasible=optimization.feasible,
            total_distance=last.distance if last else 0.0,
            total_duration=int(round(last.arrival)) if last else 0,
            stops=applied,
        )

    @staticmethod
    async def _pending_stops(ctx: ExecutionContext, journey_id: int) -> list[JourneyStop]:
        result = await ctx.session.execute(
            select(JourneyStop)
            .where(
                JourneyStop.journey_id == journey_id,
                JourneyStop.tenant_id == ctx.tenant_id,
                JourneyStop.status == JourneyStopStatus.pending,
            )
            .order_by(JourneyStop.order, JourneyStop.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())


class OptimizeJourneyCommand(Command):
    requirement: ClassVar[AccessRequirement] = AccessRequirement.dispatcher()

    journey_id: int = Field(..., gt=0)

    async def handle(self, ctx: ExecutionContext) -> JourneyOptimizationResponse:
        return await JourneyOptimizer().optimize(ctx, self.journey_id)
