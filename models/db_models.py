"""SQLModel table definitions for the tenant-scoped fleet entities.

These models mirror the tables the core reads and writes. Every table that
belongs to a workspace inherits the ``TenantScoped`` marker; the tenant scope
hook in ``services.tenant_scope`` keys off that marker to filter queries.
"""
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, Text, DateTime, Index
from typing import Optional
from datetime import datetime, timezone
from uuid import UUID, uuid4
import enum

from models.principal import Role


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TenantScoped:
    """Marker for tables whose rows belong to exactly one workspace.

    Subclasses must declare an integer ``tenant_id`` column. The value is set
    at creation and never changed.
    """


class JourneyStopStatus(str, enum.Enum):
    """Delivery status of a single journey stop."""
    pending = "pending"
    completed = "completed"
    failed = "failed"


# --- Table Models ---

class Workspace(SQLModel, table=True):
    """A tenant. All business data belongs to exactly one workspace."""
    __tablename__ = "workspaces"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    active: bool = Field(default=True)
    default_service_time: int = Field(
        default=10,
        sa_column_kwargs={"name": "default_service_time"}
    )  # minutes
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), name="created_at", nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), name="updated_at", nullable=False)
    )

    def deactivate(self) -> None:
        self.active = False
        self.updated_at = utc_now()

    def activate(self) -> None:
        self.active = True
        self.updated_at = utc_now()


class Member(TenantScoped, SQLModel, table=True):
    """Mirror of the identity store's user table.

    Owned by the external identity store; the core only reads it to
    resolve principals.
    """
    __tablename__ = "members"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    tenant_id: int = Field(foreign_key="workspaces.id", index=True)
    email: str
    full_name: Optional[str] = Field(default=None)
    is_super_admin: bool = Field(default=False)
    is_admin: bool = Field(default=False)
    is_dispatcher: bool = Field(default=False)
    is_driver: bool = Field(default=False)
    depot_id: Optional[int] = Field(default=None)
    assigned_vehicle_id: Optional[int] = Field(default=None)
    is_deleted: bool = Field(default=False)

    @property
    def roles(self) -> Role:
        roles = Role.NONE
        if self.is_driver:
            roles |= Role.DRIVER
        if self.is_dispatcher:
            roles |= Role.DISPATCHER
        if self.is_admin:
            roles |= Role.ADMIN
        if self.is_super_admin:
            roles |= Role.SUPER_ADMIN
        return roles


class Customer(TenantScoped, SQLModel, table=True):
    """Delivery customer with its geocoded position."""
    __tablename__ = "customers"

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="workspaces.id", index=True)
    name: str
    address: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    latitude: float
    longitude: float
    updated_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), name="updated_at", nullable=True)
    )


class Journey(TenantScoped, SQLModel, table=True):
    """A driver's run over an ordered set of stops."""
    __tablename__ = "journeys"

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="workspaces.id", index=True)
    name: Optional[str] = Field(default=None)
    start_latitude: float
    start_longitude: float
    end_latitude: float
    end_longitude: float
    start_time: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), name="start_time", nullable=False)
    )
    optimized: bool = Field(default=False)


class JourneyStop(TenantScoped, SQLModel, table=True):
    """One visit of a journey."""
    __tablename__ = "journey_stops"

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="workspaces.id", index=True)
    journey_id: int = Field(foreign_key="journeys.id", index=True)
    customer_id: int = Field(foreign_key="customers.id", index=True)
    order: int = Field(default=0, sa_column_kwargs={"name": "stop_order"})
    latitude: float
    longitude: float
    address: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    service_time: Optional[int] = Field(default=None)  # minutes
    arrive_between_start: Optional[int] = Field(default=None)  # minutes after journey start
    arrive_between_end: Optional[int] = Field(default=None)
    status: JourneyStopStatus = Field(default=JourneyStopStatus.pending)

    # Last optimization output
    estimated_arrival: Optional[int] = Field(default=None)  # minutes after journey start
    distance: Optional[float] = Field(default=None)  # km from journey start

    __table_args__ = (
        Index("ix_journey_stops_tenant_customer_status", "tenant_id", "customer_id", "status"),
    )
