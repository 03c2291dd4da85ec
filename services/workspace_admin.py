"""Super admin workspace administration.

These are the only commands that run without a tenant scope. Both declare
a cross-tenant SUPER_ADMIN requirement, so the dispatcher logs the scope
and never grants it to anyone else.
"""
import logging
from datetime import datetime
from typing import ClassVar, List

from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import select

from models.access import AccessRequirement
from models.db_models import Workspace
from services.command_dispatcher import Command, ExecutionContext
from services.errors import WorkspaceNotFound

logger = logging.getLogger(__name__)


class WorkspaceDto(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    active: bool
    default_service_time: int
    created_at: datetime
    updated_at: datetime


class ListWorkspacesQuery(Command):
    requirement: ClassVar[AccessRequirement] = AccessRequirement.super_admin(cross_tenant=True)

    include_inactive: bool = True

    async def handle(self, ctx: ExecutionContext) -> List[WorkspaceDto]:
        statement = select(Workspace).order_by(Workspace.id)
        if not self.include_inactive:
            statement = statement.where(Workspace.active == True)  # noqa: E712
        result = await ctx.session.execute(statement)
        return [WorkspaceDto.model_validate(w) for w in result.scalars().all()]


class UpdateWorkspaceStatusCommand(Command):
    """Activate or deactivate any workspace."""
    requirement: ClassVar[AccessRequirement] = AccessRequirement.super_admin(cross_tenant=True)

    workspace_id: int = Field(..., gt=0)
    active: bool

    async def handle(self, ctx: ExecutionContext) -> WorkspaceDto:
        workspace = await ctx.session.get(Workspace, self.workspace_id)
        if workspace is None:
            raise WorkspaceNotFound(self.workspace_id)

        if self.active:
            workspace.activate()
        else:
            workspace.deactivate()
        ctx.session.add(workspace)
        await ctx.session.flush()

        logger.warning(
            f"Workspace status changed: workspace_id={workspace.id}, active={workspace.active}, "
            f"by_user_id={ctx.principal.user_id}, correlation_id={ctx.correlation_id}"
        )
        return WorkspaceDto.model_validate(workspace)
