"""
Principal Data Model

This module defines the resolved identity of the caller for one request.
A Principal is produced by the IdentityContext and is never mutated or
persisted by the core afterwards.
"""

import enum
from dataclasses import dataclass
from typing import Optional
from uuid import UUID


class Role(enum.Flag):
    """
    Role bitset carried by a principal.

    Roles are non-exclusive and evaluated independently; seniority between
    them is applied by the AuthorizationGate, not encoded here.
    """
    NONE = 0
    DRIVER = enum.auto()
    DISPATCHER = enum.auto()
    ADMIN = enum.auto()
    SUPER_ADMIN = enum.auto()


@dataclass(frozen=True)
class Principal:
    """
    Fully-resolved caller identity for a single request.

    Attributes:
        user_id: Member UUID from the identity store
        tenant_id: Workspace the member belongs to
        roles: Role bitset (may combine several roles)
        email: Member email, used as display fallback
        full_name: Optional display name
        depot_id: Optional assigned depot
        assigned_vehicle_id: Optional assigned vehicle (drivers)
    """
    user_id: UUID
    tenant_id: int
    roles: Role
    email: str
    full_name: Optional[str] = None
    depot_id: Optional[int] = None
    assigned_vehicle_id: Optional[int] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    def has_role(self, role: Role) -> bool:
        return bool(self.roles & role)
