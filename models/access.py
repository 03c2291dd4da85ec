"""
Access Requirement Data Model

Every command declares exactly one AccessRequirement: the minimum role it
needs plus whether it is confined to the caller's tenant. The role is a
closed enum, so an operation can never end up with "no requirement set".
"""

import enum
from dataclasses import dataclass


class RequiredRole(str, enum.Enum):
    """Minimum role needed by an operation, ordered by seniority."""
    AUTHENTICATED = "authenticated"
    DRIVER = "driver"
    DISPATCHER = "dispatcher"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {
    RequiredRole.AUTHENTICATED: 0,
    RequiredRole.DRIVER: 1,
    RequiredRole.DISPATCHER: 2,
    RequiredRole.ADMIN: 3,
    RequiredRole.SUPER_ADMIN: 4,
}


@dataclass(frozen=True)
class AccessRequirement:
    """
    Declared access requirement of a command or query.

    Attributes:
        role: Minimum role (X-or-above semantics)
        tenant_scope_required: When False the operation runs across tenants;
            only SUPER_ADMIN operations may opt out of tenant scoping.
    """
    role: RequiredRole
    tenant_scope_required: bool = True

    def __post_init__(self):
        if not isinstance(self.role, RequiredRole):
            raise TypeError(f"role must be a RequiredRole, got {self.role!r}")
        if not self.tenant_scope_required and self.role is not RequiredRole.SUPER_ADMIN:
            raise ValueError(
                "Only SUPER_ADMIN operations may run without tenant scope"
            )

    @classmethod
    def authenticated(cls) -> "AccessRequirement":
        return cls(RequiredRole.AUTHENTICATED)

    @classmethod
    def driver(cls) -> "AccessRequirement":
        return cls(RequiredRole.DRIVER)

    @classmethod
    def dispatcher(cls) -> "AccessRequirement":
        return cls(RequiredRole.DISPATCHER)

    @classmethod
    def admin(cls) -> "AccessRequirement":
        return cls(RequiredRole.ADMIN)

    @classmethod
    def super_admin(cls, cross_tenant: bool = False) -> "AccessRequirement":
        return cls(RequiredRole.SUPER_ADMIN, tenant_scope_required=not cross_tenant)
