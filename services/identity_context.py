"""Resolution of an authenticated principal id into a Principal.

This is the single place that establishes who is calling. Everything
downstream of the dispatcher trusts the returned Principal for the rest of
the request and never re-reads the member record.
"""
import logging
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from models.db_models import Member
from models.principal import Principal
from services.errors import PrincipalNotFound
from services.principal_cache import PrincipalCache, get_principal_cache
from services.tenant_scope import TenantScope, tenant_session

logger = logging.getLogger(__name__)

# The caller's tenant is what is being looked up, so this read is not
# tenant-bound.
_IDENTITY_SCOPE = TenantScope.cross_tenant("identity resolution")

_UNSET = object()


class IdentityContext:
    """
    Resolves principal ids against the identity store mirror.

    Args:
        session_factory: Async session factory; defaults to the global one
        cache: Principal cache; defaults to the Redis cache when configured.
            Pass None to disable caching.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        cache=_UNSET,
    ):
        self._session_factory = session_factory
        self._cache: Optional[PrincipalCache] = (
            get_principal_cache() if cache is _UNSET else cache
        )

    async def resolve(self, principal_id: str) -> Principal:
        """
        Resolve ``principal_id`` to a fully-loaded Principal.

        Args:
            principal_id: Member UUID as a string

        Returns:
            The resolved, immutable Principal

        Raises:
            PrincipalNotFound: If the id is malformed, unknown, or belongs
                to a deleted member
        """
        try:
            user_id = UUID(str(principal_id))
        except ValueError:
            logger.warning("Principal id is not a UUID")
            raise PrincipalNotFound(str(principal_id))

        if self._cache is not None:
            cached = await self._cache.get(str(user_id))
            if cached is not None:
                return cached

        async with tenant_session(_IDENTITY_SCOPE, self._session_factory) as session:
            result = await session.execute(
                select(Member).where(
                    Member.id == user_id,
                    Member.is_deleted == False,  # noqa: E712
                )
            )
            member = result.scalar_one_or_none()

        if member is None:
            logger.warning(f"Principal not found: user_id={user_id}")
            raise PrincipalNotFound(str(user_id))

        principal = Principal(
            user_id=member.id,
            tenant_id=member.tenant_id,
            roles=member.roles,
            email=member.email,
            full_name=member.full_name,
            depot_id=member.depot_id,
            assigned_vehicle_id=member.assigned_vehicle_id,
        )

        if self._cache is not None:
            await self._cache.set(principal)

        logger.debug(f"Resolved principal: user_id={user_id}, tenant_id={principal.tenant_id}")
        return principal
