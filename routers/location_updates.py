"""
Location update request router.

Thin transport for the location update workflow. Bodies are passed to the
dispatcher unvalidated; the dispatcher's validation stage owns the schema.
"""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends

from services.command_dispatcher import CommandDispatcher
from services.location_update_workflow import (
    ApproveLocationUpdateCommand,
    ListLocationUpdateHistoryQuery,
    ListPendingLocationUpdatesQuery,
    RejectLocationUpdateCommand,
    SubmitLocationUpdateCommand,
)
from utils.context_utils import dispatch_response, get_dispatcher, get_principal_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/workspace/location-update-requests", tags=["location-updates"])


@router.post("")
async def submit_location_update(
    body: dict[str, Any] = Body(...),
    principal_id: str = Depends(get_principal_id),
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    """
    Submit a position correction for a journey stop (Driver or above).

    Returns:
        ``{request_id, status}`` of the new Pending request
    """
    result = await dispatcher.dispatch(principal_id, SubmitLocationUpdateCommand, body)
    return dispatch_response(result)


@router.get("/pending")
async def list_pending_location_updates(
    principal_id: str = Depends(get_principal_id),
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    result = await dispatcher.dispatch(principal_id, ListPendingLocationUpdatesQuery, {})
    return dispatch_response(result)


@router.get("/history")
async def list_location_update_history(
    status: Optional[str] = None,
    principal_id: str = Depends(get_principal_id),
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    """
    Processed requests, newest first.

    ``status`` may be Approved or Rejected (any case); other values are ignored.
    """
    result = await dispatcher.dispatch(
        principal_id, ListLocationUpdateHistoryQuery, {"status": status}
    )
    return dispatch_response(result)


@router.post("/{request_id}/approve")
async def approve_location_update(
    request_id: int,
    body: Optional[dict[str, Any]] = Body(default=None),
    principal_id: str = Depends(get_principal_id),
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    payload = {**(body or {}), "request_id": request_id}
    result = await dispatcher.dispatch(principal_id, ApproveLocationUpdateCommand, payload)
    return dispatch_response(result)


@router.post("/{request_id}/reject")
async def reject_location_update(
    request_id: int,
    body: Optional[dict[str, Any]] = Body(default=None),
    principal_id: str = Depends(get_principal_id),
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    payload = {**(body or {}), "request_id": request_id}
    result = await dispatcher.dispatch(principal_id, RejectLocationUpdateCommand, payload)
    return dispatch_response(result)
