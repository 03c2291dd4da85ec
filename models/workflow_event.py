"""
Workflow Event Data Models

This module defines Pydantic models for the location update workflow events
published to EventBridge after a transition has been committed. The schema is
versioned so consumers can evolve independently.
"""

from typing import Optional
from pydantic import BaseModel, Field


class LocationUpdateEventType:
    """EventBridge detail-types emitted by the location update workflow."""
    SUBMITTED = "LocationUpdateRequestSubmitted"
    APPROVED = "LocationUpdateRequestApproved"
    REJECTED = "LocationUpdateRequestRejected"


class LocationUpdateEventData(BaseModel):
    """
    Nested data object describing the request at the time of the transition.
    """
    journey_id: int = Field(..., description="Journey the stop belongs to")
    journey_stop_id: int = Field(..., description="Stop the correction was reported for")
    customer_id: int = Field(..., description="Customer whose position is corrected")
    requested_latitude: float
    requested_longitude: float
    status: str = Field(..., description="Pending, Approved or Rejected")
    updated_future_stops: Optional[int] = Field(
        None,
        description="Number of pending stops moved on approval"
    )
    rejection_reason: Optional[str] = None


class LocationUpdateEvent(BaseModel):
    """
    Event schema for location update request transitions.

    Version 1.0 carries the request identity, the tenant and the acting user.
    """
    version: str = Field(
        default="1.0",
        description="Event schema version following semantic versioning"
    )
    request_id: int = Field(..., description="Location update request id")
    tenant_id: int = Field(..., description="Workspace the request belongs to")
    actor_id: str = Field(..., description="Member UUID who caused the transition")
    correlation_id: str = Field(..., description="Dispatch correlation id")
    timestamp: str = Field(
        ...,
        description="ISO 8601 timestamp of when the event was created"
    )
    data: LocationUpdateEventData
