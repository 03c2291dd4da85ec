"""
Authorization Gate

Evaluates the single AccessRequirement declared by an operation against a
resolved Principal. The dispatcher calls this before any handler runs; no
handler repeats the check.

Seniority is a fixed total order:
    SUPER_ADMIN > ADMIN > DISPATCHER > DRIVER > AUTHENTICATED

A principal satisfies "X-or-above" when it holds X or any senior role.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from models.access import AccessRequirement, RequiredRole
from models.principal import Principal, Role
from services.errors import Forbidden

logger = logging.getLogger(__name__)

# Role flag granting each required role, most senior first
_ROLE_FLAGS = (
    (RequiredRole.SUPER_ADMIN, Role.SUPER_ADMIN),
    (RequiredRole.ADMIN, Role.ADMIN),
    (RequiredRole.DISPATCHER, Role.DISPATCHER),
    (RequiredRole.DRIVER, Role.DRIVER),
)


@dataclass(frozen=True)
class AuthorizationDecision:
    """Outcome of an authorization check."""
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


def effective_rank(principal: Principal) -> int:
    """Rank of the most senior role the principal holds."""
    for required, flag in _ROLE_FLAGS:
        if principal.has_role(flag):
            return required.rank
    return RequiredRole.AUTHENTICATED.rank


def authorize(principal: Principal, requirement: AccessRequirement) -> AuthorizationDecision:
    """
    Check ``principal`` against ``requirement``.

    Args:
        principal: Resolved caller
        requirement: The operation's declared requirement

    Returns:
        AuthorizationDecision, denied with a reason when the role is too junior
    """
    if requirement.role is RequiredRole.AUTHENTICATED:
        return AuthorizationDecision(allowed=True)

    if effective_rank(principal) >= requirement.role.rank:
        return AuthorizationDecision(allowed=True)

    return AuthorizationDecision(
        allowed=False,
        reason=f"Requires {requirement.role.value} or above",
    )


def ensure_authorized(principal: Principal, requirement: AccessRequirement) -> None:
    """
    Raise Forbidden unless ``principal`` satisfies ``requirement``.

    Raises:
        Forbidden: If the requirement is not met
    """
    decision = authorize(principal, requirement)
    if not decision:
        logger.warning(
            f"Authorization denied: user_id={principal.user_id}, "
            f"tenant_id={principal.tenant_id}, required={requirement.role.value}"
        )
        raise Forbidden(decision.reason)
