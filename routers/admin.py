"""
Super admin router for workspace administration.
"""
import logging
from typing import Any

from fastapi import APIRouter, Body, Depends

from services.command_dispatcher import CommandDispatcher
from services.workspace_admin import ListWorkspacesQuery, UpdateWorkspaceStatusCommand
from utils.context_utils import dispatch_response, get_dispatcher, get_principal_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/workspaces", tags=["admin"])


@router.get("")
async def list_workspaces(
    include_inactive: bool = True,
    principal_id: str = Depends(get_principal_id),
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    result = await dispatcher.dispatch(
        principal_id, ListWorkspacesQuery, {"include_inactive": include_inactive}
    )
    return dispatch_response(result)


@router.put("/{workspace_id}/status")
async def update_workspace_status(
    workspace_id: int,
    body: dict[str, Any] = Body(...),
    principal_id: str = Depends(get_principal_id),
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    """Activate or deactivate a workspace. Body: ``{"active": bool}``."""
    payload = {**body, "workspace_id": workspace_id}
    result = await dispatcher.dispatch(principal_id, UpdateWorkspaceStatusCommand, payload)
    return dispatch_response(result)
