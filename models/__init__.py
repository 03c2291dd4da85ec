"""Data models for the fleet operations core."""
from .principal import Principal, Role
from .access import AccessRequirement, RequiredRole
from .db_models import (
    TenantScoped,
    Workspace,
    Member,
    Customer,
    Journey,
    JourneyStop,
    JourneyStopStatus,
)
from .location_update import (
    LocationUpdateRequest,
    LocationUpdateStatus,
    LocationUpdateRequestDto,
    LocationUpdateRequestHistoryDto,
    SubmitLocationUpdateResponse,
)

__all__ = [
    # Identity
    "Principal",
    "Role",
    "AccessRequirement",
    "RequiredRole",
    # Database models
    "TenantScoped",
    "Workspace",
    "Member",
    "Customer",
    "Journey",
    "JourneyStop",
    "JourneyStopStatus",
    # Location update workflow
    "LocationUpdateRequest",
    "LocationUpdateStatus",
    "LocationUpdateRequestDto",
    "LocationUpdateRequestHistoryDto",
    "SubmitLocationUpdateResponse",
]
