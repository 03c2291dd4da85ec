"""
Location Update Workflow

Three-state approval workflow for field-submitted position corrections:

    Pending --approve--> Approved
    Pending --reject---> Rejected

Approved and Rejected are terminal. Transitions out of Pending are a single
conditional UPDATE on (id, tenant_id, status='Pending'), so two racing
approvals cannot both win: the database serializes them and the loser
updates zero rows.
"""

import logging
from typing import ClassVar, List, Optional

from pydantic import Field
from sqlalchemy import func, update
from sqlmodel import select

from models.access import AccessRequirement
from models.db_models import Customer, Journey, JourneyStop, JourneyStopStatus, utc_now
from models.location_update import (
    LocationUpdateRequest,
    LocationUpdateRequestDto,
    LocationUpdateRequestHistoryDto,
    LocationUpdateStatus,
    LocationUpdateTransitionResponse,
    SubmitLocationUpdateResponse,
)
from models.workflow_event import LocationUpdateEventType
from services.command_dispatcher import Command, ExecutionContext
from services.errors import JourneyNotFound, RequestNotFoundOrAlreadyProcessed, StopNotFound
from services.event_publisher import EventPublisher, get_event_publisher

logger = logging.getLogger(__name__)

_UNSET = object()


class LocationUpdateWorkflow:
    """
    Handlers for the location update approval workflow.

    Every method runs inside a dispatcher ExecutionContext and uses its
    session and tenant; nothing here commits.

    Args:
        publisher: EventBridge publisher for committed transitions;
            defaults to the configured one. Pass None to disable.
    """

    def __init__(self, publisher=_UNSET):
        self.publisher: Optional[EventPublisher] = (
            get_event_publisher() if publisher is _UNSET else publisher
        )

    async def submit(
        self,
        ctx: ExecutionContext,
        command: "SubmitLocationUpdateCommand",
    ) -> SubmitLocationUpdateResponse:
        """
        Create a Pending request for a stop of one of the tenant's journeys.

        Args:
            ctx: Execution context of the dispatch
            command: Validated submission payload

        Returns:
            SubmitLocationUpdateResponse with the new request id

        Raises:
            JourneyNotFound: If the journey does not exist in the caller's tenant
            StopNotFound: If the stop is not on that journey or is not the
                given customer's stop
        """
        session = ctx.session
        tenant_id = ctx.tenant_id

        result = await session.execute(
            select(Journey.id).where(
                Journey.id == command.journey_id,
                Journey.tenant_id == tenant_id,
            )
        )
        if result.scalar_one_or_none() is None:
            logger.info(
                f"Submit refused, journey not in tenant: journey_id={command.journey_id}, "
                f"tenant_id={tenant_id}, correlation_id={ctx.correlation_id}"
            )
            raise JourneyNotFound(command.journey_id)

        stop_result = await session.execute(
            select(JourneyStop.id).where(
                JourneyStop.id == command.stop_id,
                JourneyStop.journey_id == command.journey_id,
                JourneyStop.customer_id == command.customer_id,
                JourneyStop.tenant_id == tenant_id,
            )
        )
        if stop_result.scalar_one_or_none() is None:
            logger.info(
                f"Submit refused, stop not on journey for customer: stop_id={command.stop_id}, "
                f"journey_id={command.journey_id}, customer_id={command.customer_id}, "
                f"tenant_id={tenant_id}, correlation_id={ctx.correlation_id}"
            )
            raise StopNotFound(command.journey_id, command.stop_id, command.customer_id)

        request = LocationUpdateRequest(
            tenant_id=tenant_id,
            journey_id=command.journey_id,
            journey_stop_id=command.stop_id,
            customer_id=command.customer_id,
            current_latitude=command.current_latitude,
            current_longitude=command.current_longitude,
            current_address=command.current_address,
            requested_latitude=command.requested_latitude,
            requested_longitude=command.requested_longitude,
            requested_address=command.requested_address,
            reason=command.reason,
            status=LocationUpdateStatus.pending,
            requested_by_id=str(ctx.principal.user_id),
            requested_by_name=ctx.principal.display_name,
        )
        session.add(request)
        await session.flush()

        logger.info(
            f"Location update submitted: request_id={request.id}, tenant_id={tenant_id}, "
            f"journey_id={request.journey_id}, customer_id={request.customer_id}, "
            f"correlation_id={ctx.correlation_id}"
        )

        self._publish_after_commit(ctx, LocationUpdateEventType.SUBMITTED, request)
        return SubmitLocationUpdateResponse(request_id=request.id, status=request.status)

    async def approve(
        self,
        ctx: ExecutionContext,
        request_id: int,
        update_future_stops: bool = True,
    ) -> LocationUpdateTransitionResponse:
        """
        Approve a Pending request and apply the requested position.

        The requested coordinates are copied onto the customer. The requested
        address replaces the customer's address only when one was given.
        With ``update_future_stops`` the customer's still-pending journey
        stops in the tenant are moved as well.

        Args:
            ctx: Execution context of the dispatch
            request_id: Request to approve
            update_future_stops: Also move the customer's pending stops

        Returns:
            LocationUpdateTransitionResponse

        Raises:
            RequestNotFoundOrAlreadyProcessed: If no Pending request with this
                id exists in the caller's tenant
        """
        session = ctx.session
        tenant_id = ctx.tenant_id
        now = utc_now()

        await self._transition(
            ctx,
            request_id,
            "approve",
            status=LocationUpdateStatus.approved,
            approved_by_id=str(ctx.principal.user_id),
            approved_by_name=ctx.principal.display_name,
            processed_at=now,
            updated_at=now,
        )
        request = await self._load(ctx, request_id)

        position = {
            "latitude": request.requested_latitude,
            "longitude": request.requested_longitude,
        }
        if request.requested_address:
            position["address"] = request.requested_address

        customer_result = await session.execute(
            update(Customer)
            .where(
                Customer.id == request.customer_id,
                Customer.tenant_id == tenant_id,
            )
            .values(updated_at=now, **position)
        )
        customer_updated = customer_result.rowcount == 1
        if not customer_updated:
            logger.warning(
                f"Approved request references no customer in tenant: request_id={request_id}, "
                f"customer_id={request.customer_id}, tenant_id={tenant_id}"
            )

        moved_stops = 0
        if update_future_stops:
            stops_result = await session.execute(
                update(JourneyStop)
                .where(
                    JourneyStop.tenant_id == tenant_id,
                    JourneyStop.customer_id == request.customer_id,
                    JourneyStop.status == JourneyStopStatus.pending,
                )
                .values(**position)
            )
            moved_stops = stops_result.rowcount

        logger.info(
            f"Location update approved: request_id={request_id}, tenant_id={tenant_id}, "
            f"customer_id={request.customer_id}, moved_stops={moved_stops}, "
            f"correlation_id={ctx.correlation_id}"
        )

        self._publish_after_commit(
            ctx, LocationUpdateEventType.APPROVED, request, updated_future_stops=moved_stops
        )
        return LocationUpdateTransitionResponse(
            request_id=request_id,
            status=request.status,
            processed_at=request.processed_at,
            customer_updated=customer_updated,
            updated_future_stops=moved_stops,
        )

    async def reject(
        self,
        ctx: ExecutionContext,
        request_id: int,
        reason: str,
    ) -> LocationUpdateTransitionResponse:
        """
        Reject a Pending request. The customer record is left untouched.

        Raises:
            RequestNotFoundOrAlreadyProcessed: If no Pending request with this
                id exists in the caller's tenant
        """
        now = utc_now()

        await self._transition(
            ctx,
            request_id,
            "reject",
            status=LocationUpdateStatus.rejected,
            rejection_reason=reason,
            approved_by_id=str(ctx.principal.user_id),
            approved_by_name=ctx.principal.display_name,
            processed_at=now,
            updated_at=now,
        )
        request = await self._load(ctx, request_id)

        logger.info(
            f"Location update rejected: request_id={request_id}, tenant_id={ctx.tenant_id}, "
            f"correlation_id={ctx.correlation_id}"
        )

        self._publish_after_commit(ctx, LocationUpdateEventType.REJECTED, request)
        return LocationUpdateTransitionResponse(
            request_id=request_id,
            status=request.status,
            processed_at=request.processed_at,
        )

    async def list_pending(self, ctx: ExecutionContext) -> List[LocationUpdateRequestDto]:
        """Pending requests of the caller's tenant, newest first."""
        statement = (
            self._listing()
            .where(
                LocationUpdateRequest.tenant_id == ctx.tenant_id,
                LocationUpdateRequest.status == LocationUpdateStatus.pending,
            )
            .order_by(LocationUpdateRequest.created_at.desc(), LocationUpdateRequest.id.desc())
        )
        result = await ctx.session.execute(statement)
        return [
            _to_dto(LocationUpdateRequestDto, request, journey_name, customer_name)
            for request, journey_name, customer_name in result.all()
        ]

    async def list_history(
        self,
        ctx: ExecutionContext,
        status_filter: Optional[str] = None,
    ) -> List[LocationUpdateRequestHistoryDto]:
        """
        Processed requests of the caller's tenant.

        Args:
            ctx: Execution context of the dispatch
            status_filter: "Approved" or "Rejected", case-insensitive. Any
                other value returns both.

        Returns:
            Requests ordered by processed time (created time when missing),
            newest first, ties broken by id
        """
        statement = self._listing().where(
            LocationUpdateRequest.tenant_id == ctx.tenant_id,
            LocationUpdateRequest.status != LocationUpdateStatus.pending,
        )

        status = _parse_history_filter(status_filter)
        if status is not None:
            statement = statement.where(LocationUpdateRequest.status == status)

        statement = statement.order_by(
            func.coalesce(
                LocationUpdateRequest.processed_at,
                LocationUpdateRequest.created_at,
            ).desc(),
            LocationUpdateRequest.id.desc(),
        )
        result = await ctx.session.execute(statement)
        return [
            _to_dto(LocationUpdateRequestHistoryDto, request, journey_name, customer_name)
            for request, journey_name, customer_name in result.all()
        ]

    # --- internals ---

    async def _transition(self, ctx: ExecutionContext, request_id: int, action: str, **values) -> None:
        result = await ctx.session.execute(
            update(LocationUpdateRequest)
            .where(
                LocationUpdateRequest.id == request_id,
                LocationUpdateRequest.tenant_id == ctx.tenant_id,
                LocationUpdateRequest.status == LocationUpdateStatus.pending,
            )
            .values(**values)
        )
        if result.rowcount == 1:
            return

        # Both cases look the same to the caller; only the log differs.
        lookup = await ctx.session.execute(
            select(LocationUpdateRequest.status).where(
                LocationUpdateRequest.id == request_id,
                LocationUpdateRequest.tenant_id == ctx.tenant_id,
            )
        )
        current = lookup.scalar_one_or_none()
        if current is None:
            logger.info(
                f"Cannot {action}, request not found in tenant: request_id={request_id}, "
                f"tenant_id={ctx.tenant_id}, correlation_id={ctx.correlation_id}"
            )
        else:
            logger.info(
                f"Cannot {action}, request already processed: request_id={request_id}, "
                f"tenant_id={ctx.tenant_id}, status={current.value}, "
                f"correlation_id={ctx.correlation_id}"
            )
        raise RequestNotFoundOrAlreadyProcessed(request_id)

    @staticmethod
    async def _load(ctx: ExecutionContext, request_id: int) -> LocationUpdateRequest:
        result = await ctx.session.execute(
            select(LocationUpdateRequest)
            .where(
                LocationUpdateRequest.id == request_id,
                LocationUpdateRequest.tenant_id == ctx.tenant_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    @staticmethod
    def _listing():
        return (
            select(LocationUpdateRequest, Journey.name, Customer.name)
            .outerjoin(Journey, Journey.id == LocationUpdateRequest.journey_id)
            .outerjoin(Customer, Customer.id == LocationUpdateRequest.customer_id)
        )

    def _publish_after_commit(
        self,
        ctx: ExecutionContext,
        detail_type: str,
        request: LocationUpdateRequest,
        updated_future_stops: Optional[int] = None,
    ) -> None:
        if self.publisher is None:
            return

        publisher = self.publisher
        actor_id = str(ctx.principal.user_id)

        async def publish():
            await publisher.publish_location_update(
                detail_type, request, actor_id, ctx.correlation_id, updated_future_stops
            )

        ctx.after_commit(publish)


def _parse_history_filter(status_filter: Optional[str]) -> Optional[LocationUpdateStatus]:
    if not status_filter or not status_filter.strip():
        return None
    normalized = status_filter.strip().lower()
    for status in (LocationUpdateStatus.approved, LocationUpdateStatus.rejected):
        if status.value.lower() == normalized:
            return status
    return None


def _to_dto(dto_type, request: LocationUpdateRequest, journey_name: Optional[str], customer_name: Optional[str]):
    data = request.model_dump()
    data["journey_name"] = journey_name or f"Journey #{request.journey_id}"
    data["customer_name"] = customer_name or ""
    return dto_type.model_validate(data)


_workflow: Optional[LocationUpdateWorkflow] = None


def get_location_update_workflow() -> LocationUpdateWorkflow:
    """Get or create the process-wide workflow."""
    global _workflow

    if _workflow is None:
        _workflow = LocationUpdateWorkflow()

    return _workflow


# =============================================================================
# Commands
# =============================================================================

class SubmitLocationUpdateCommand(Command):
    """Driver reports a wrong stop position."""
    requirement: ClassVar[AccessRequirement] = AccessRequirement.driver()

    journey_id: int = Field(..., gt=0)
    stop_id: int = Field(..., gt=0)
    customer_id: int = Field(..., gt=0)
    current_latitude: float = Field(..., ge=-90, le=90)
    current_longitude: float = Field(..., ge=-180, le=180)
    current_address: str = Field(default="", max_length=1000)
    requested_latitude: float = Field(..., ge=-90, le=90)
    requested_longitude: float = Field(..., ge=-180, le=180)
    requested_address: str = Field(default="", max_length=1000)
    reason: str = Field(default="", max_length=2000)

    async def handle(self, ctx: ExecutionContext) -> SubmitLocationUpdateResponse:
        return await get_location_update_workflow().submit(ctx, self)


class ApproveLocationUpdateCommand(Command):
    requirement: ClassVar[AccessRequirement] = AccessRequirement.dispatcher()

    request_id: int = Field(..., gt=0)
    update_future_stops: bool = True

    async def handle(self, ctx: ExecutionContext) -> LocationUpdateTransitionResponse:
        return await get_location_update_workflow().approve(
            ctx, self.request_id, self.update_future_stops
        )


class RejectLocationUpdateCommand(Command):
    requirement: ClassVar[AccessRequirement] = AccessRequirement.dispatcher()

    request_id: int = Field(..., gt=0)
    reason: str = Field(default="", max_length=2000)

    async def handle(self, ctx: ExecutionContext) -> LocationUpdateTransitionResponse:
        return await get_location_update_workflow().reject(ctx, self.request_id, self.reason)


class ListPendingLocationUpdatesQuery(Command):
    requirement: ClassVar[AccessRequirement] = AccessRequirement.dispatcher()

    async def handle(self, ctx: ExecutionContext) -> List[LocationUpdateRequestDto]:
        return await get_location_update_workflow().list_pending(ctx)


class ListLocationUpdateHistoryQuery(Command):
    requirement: ClassVar[AccessRequirement] = AccessRequirement.dispatcher()

    status: Optional[str] = None

    async def handle(self, ctx: ExecutionContext) -> List[LocationUpdateRequestHistoryDto]:
        return await get_location_update_workflow().list_history(ctx, self.status)
