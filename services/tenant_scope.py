"""Tenant scoping for every persistence call a handler makes.

A ``TenantScope`` is attached to the session a handler receives. Two
SQLAlchemy session hooks then enforce it centrally:

* ``do_orm_execute`` adds ``tenant_id == <scope>`` criteria to every ORM
  SELECT, UPDATE and DELETE that touches a ``TenantScoped`` entity, and
  refuses the statement outright when the session carries no scope at all;
* ``before_flush`` refuses to persist a tenant-scoped row into another
  tenant, or to move an existing row between tenants.

Handlers still write their own ``tenant_id`` predicates; the hooks make a
forgotten predicate harmless instead of a leak.
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Callable, Optional

from sqlalchemy import event, inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, ORMExecuteState, with_loader_criteria

from models.access import AccessRequirement, RequiredRole
from models.db_models import TenantScoped
from models.principal import Principal, Role
from services.errors import Forbidden, TenantScopeViolation

logger = logging.getLogger(__name__)

SCOPE_INFO_KEY = "tenant_scope"


@dataclass(frozen=True)
class TenantScope:
    """
    Tenant a unit of work is confined to.

    Exactly one of the two forms is valid:
        - tenant-bound: ``tenant_id`` set, ``reason`` None
        - cross-tenant: ``tenant_id`` None, ``reason`` naming why

    Attributes:
        tenant_id: Workspace every query is filtered to
        reason: Why the scope spans tenants
    """
    tenant_id: Optional[int] = None
    reason: Optional[str] = None

    def __post_init__(self):
        if self.tenant_id is None and not self.reason:
            raise ValueError("A cross-tenant scope must state a reason")
        if self.tenant_id is not None and self.reason is not None:
            raise ValueError("A tenant-bound scope cannot carry a cross-tenant reason")

    @classmethod
    def for_tenant(cls, tenant_id: int) -> "TenantScope":
        return cls(tenant_id=tenant_id)

    @classmethod
    def cross_tenant(cls, reason: str) -> "TenantScope":
        return cls(tenant_id=None, reason=reason)

    @property
    def is_cross_tenant(self) -> bool:
        return self.tenant_id is None

    def __str__(self) -> str:
        if self.is_cross_tenant:
            return f"cross-tenant({self.reason})"
        return f"tenant={self.tenant_id}"


def scope(principal: Principal, requirement: AccessRequirement) -> TenantScope:
    """
    Derive the scope a command runs under.

    Tenant-scoped requirements always bind to the principal's own tenant.
    Only SUPER_ADMIN requirements that opted out of tenant scoping get a
    cross-tenant scope, and that is logged so it is never silent.

    Args:
        principal: Resolved caller
        requirement: The command's declared requirement

    Returns:
        TenantScope for the command's session

    Raises:
        Forbidden: If a cross-tenant requirement reaches here for a
            principal that is not a super admin
    """
    if requirement.tenant_scope_required:
        return TenantScope.for_tenant(principal.tenant_id)

    # AccessRequirement only allows this combination for SUPER_ADMIN
    if requirement.role is not RequiredRole.SUPER_ADMIN:
        raise Forbidden("Cross-tenant access requires super admin")

    if not principal.has_role(Role.SUPER_ADMIN):
        raise Forbidden("Cross-tenant access requires super admin")

    logger.warning(
        f"Cross-tenant scope granted: user_id={principal.user_id}, "
        f"home_tenant_id={principal.tenant_id}"
    )
    return TenantScope.cross_tenant(f"super admin {principal.user_id}")


def get_scope(session: Session | AsyncSession) -> Optional[TenantScope]:
    """Return the scope attached to ``session``, if any."""
    return session.info.get(SCOPE_INFO_KEY)


def _is_tenant_scoped(cls) -> bool:
    return isinstance(cls, type) and issubclass(cls, TenantScoped)


@event.listens_for(Session, "do_orm_execute")
def _apply_tenant_criteria(orm_execute_state: ORMExecuteState) -> None:
    if orm_execute_state.is_column_load or orm_execute_state.is_relationship_load:
        return

    scoped_mappers = [
        mapper for mapper in orm_execute_state.all_mappers
        if _is_tenant_scoped(mapper.class_)
    ]
    if not scoped_mappers:
        return

    tenant_scope = get_scope(orm_execute_state.session)
    if tenant_scope is None:
        names = ", ".join(sorted(m.class_.__name__ for m in scoped_mappers))
        logger.error(f"Unscoped query on tenant data refused: entities={names}")
        raise TenantScopeViolation(
            f"Query on tenant-scoped entities without a tenant scope: {names}"
        )

    if tenant_scope.is_cross_tenant:
        return

    if not (orm_execute_state.is_select or orm_execute_state.is_update
            or orm_execute_state.is_delete):
        return

    # Criteria per mapped class: the marker itself has no tenant_id column
    tenant_id = tenant_scope.tenant_id
    orm_execute_state.statement = orm_execute_state.statement.options(*[
        with_loader_criteria(
            mapper.class_,
            mapper.class_.tenant_id == tenant_id,
            include_aliases=True,
        )
        for mapper in scoped_mappers
    ])


@event.listens_for(Session, "before_flush")
def _check_tenant_writes(session: Session, flush_context, instances) -> None:
    tenant_scope = get_scope(session)
    pending = [obj for obj in session.new if isinstance(obj, TenantScoped)]
    changed = [obj for obj in session.dirty if isinstance(obj, TenantScoped)]
    if not pending and not changed:
        return

    if tenant_scope is None:
        raise TenantScopeViolation("Write to tenant-scoped entities without a tenant scope")

    for obj in changed:
        history = inspect(obj).attrs.tenant_id.history
        if history.deleted:
            raise TenantScopeViolation(
                f"tenant_id of {type(obj).__name__} cannot change"
            )

    if tenant_scope.is_cross_tenant:
        return

    for obj in pending:
        if obj.tenant_id != tenant_scope.tenant_id:
            logger.error(
                f"Cross-tenant insert refused: entity={type(obj).__name__}, "
                f"row_tenant_id={obj.tenant_id}, scope_tenant_id={tenant_scope.tenant_id}"
            )
            raise TenantScopeViolation(
                f"{type(obj).__name__} belongs to another tenant"
            )


@asynccontextmanager
async def tenant_session(
    tenant_scope: TenantScope,
    session_factory: Optional[Callable[[], AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Open a session confined to ``tenant_scope``.

    The caller owns the transaction: nothing is committed here. Any
    exception rolls the session back before propagating.

    Args:
        tenant_scope: Scope attached to every statement of the session
        session_factory: Session factory; defaults to the global one

    Yields:
        An AsyncSession carrying the scope.
    """
    if session_factory is None:
        from services.database import get_session_maker
        session_factory = get_session_maker()

    async with session_factory() as session:
        session.info[SCOPE_INFO_KEY] = tenant_scope
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
