"""Location update request model for the field-correction approval workflow.

A driver reports that a stop's geocoded position is wrong; a dispatcher
approves (copying the position onto the customer) or rejects it.

Lifecycle:
    Pending -> Approved | Rejected

Approved and Rejected are terminal. A record never changes again once it
has left Pending.
"""
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, Text, Index, DateTime, Enum as SAEnum
from typing import Optional
from datetime import datetime
import enum

from pydantic import BaseModel, ConfigDict

from models.db_models import TenantScoped, utc_now


class LocationUpdateStatus(str, enum.Enum):
    """Workflow status.

    Lifecycle: Pending -> Approved | Rejected
    """
    pending = "Pending"
    approved = "Approved"
    rejected = "Rejected"


class LocationUpdateRequest(TenantScoped, SQLModel, table=True):
    """Field correction to a stop's geocoded position.

    All queries MUST be scoped by tenant_id.

    Indexes:
        - Composite: (tenant_id, status) for pending/history listings
    """
    __tablename__ = "location_update_requests"

    id: Optional[int] = Field(default=None, primary_key=True)

    # Tenant isolation (required for all queries)
    tenant_id: int = Field(foreign_key="workspaces.id", index=True)

    journey_id: int = Field(foreign_key="journeys.id", index=True)
    journey_stop_id: int
    customer_id: int = Field(foreign_key="customers.id", index=True)

    # Position as reported by the field agent
    current_latitude: float
    current_longitude: float
    current_address: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))

    # Position the field agent asks for
    requested_latitude: float
    requested_longitude: float
    requested_address: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))

    reason: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    # Stored as "Pending", "Approved", "Rejected"
    status: LocationUpdateStatus = Field(
        default=LocationUpdateStatus.pending,
        sa_column=Column(
            SAEnum(
                LocationUpdateStatus,
                name="location_update_status",
                values_callable=lambda statuses: [s.value for s in statuses],
            ),
            nullable=False,
            index=True,
        )
    )

    requested_by_id: str
    requested_by_name: str

    # Set only on the transition out of Pending
    approved_by_id: Optional[str] = Field(default=None)
    approved_by_name: Optional[str] = Field(default=None)
    rejection_reason: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), name="created_at", nullable=False)
    )
    processed_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), name="processed_at", nullable=True)
    )
    updated_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), name="updated_at", nullable=True)
    )

    __table_args__ = (
        Index("ix_location_update_requests_tenant_status", "tenant_id", "status"),
    )


# --- Pydantic models for workflow results ---

class LocationUpdateRequestDto(BaseModel):
    """Pending request as shown to dispatchers."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    journey_id: int
    journey_name: str = ""
    journey_stop_id: int
    customer_id: int
    customer_name: str = ""
    current_latitude: float
    current_longitude: float
    current_address: str
    requested_latitude: float
    requested_longitude: float
    requested_address: str
    reason: str
    status: LocationUpdateStatus
    requested_by_name: str
    created_at: datetime


class LocationUpdateRequestHistoryDto(LocationUpdateRequestDto):
    """Processed request (Approved or Rejected)."""
    approved_by_name: Optional[str] = None
    rejection_reason: Optional[str] = None
    processed_at: Optional[datetime] = None


class SubmitLocationUpdateResponse(BaseModel):
    """Result of a successful submission."""
    request_id: int
    status: LocationUpdateStatus


class LocationUpdateTransitionResponse(BaseModel):
    """Result of a successful approve or reject."""
    request_id: int
    status: LocationUpdateStatus
    processed_at: datetime
    customer_updated: bool = False
    updated_future_stops: int = 0
