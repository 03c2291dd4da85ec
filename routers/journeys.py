"""
Journey router.
"""
import logging

from fastapi import APIRouter, Depends

from services.command_dispatcher import CommandDispatcher
from services.journey_optimization import OptimizeJourneyCommand
from utils.context_utils import dispatch_response, get_dispatcher, get_principal_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/journeys", tags=["journeys"])


@router.post("/{journey_id}/optimize")
async def optimize_journey(
    journey_id: int,
    principal_id: str = Depends(get_principal_id),
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    """
    Optimize the pending stops of a journey through the external optimizer
    (Dispatcher or above).

    Calls are serialized process-wide; a request may queue behind others.
    Optimizer failures return 502 with the diagnostic correlation id.
    """
    result = await dispatcher.dispatch(
        principal_id, OptimizeJourneyCommand, {"journey_id": journey_id}
    )
    return dispatch_response(result)
