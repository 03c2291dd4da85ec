"""Exception hierarchy for the fleet operations core.

Every failure a handler or pipeline stage can raise is a ``FleetOpsError``
carrying a stable machine code and the HTTP status the transport maps it to.
"""
from typing import Any, Optional


class FleetOpsError(Exception):
    """
    Base exception for the fleet operations core.

    Attributes:
        message: Human readable description
        code: Stable machine readable error code
        status_code: HTTP status the transport layer responds with
        details: Optional structured context
    """

    def __init__(
        self,
        message: str,
        code: str = "FLEET_OPS_ERROR",
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response dict."""
        result = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Pipeline Exceptions
# =============================================================================

class Forbidden(FleetOpsError):
    """Raised when a principal does not satisfy an access requirement."""

    def __init__(self, reason: str):
        super().__init__(
            message=reason,
            code="FORBIDDEN",
            status_code=403,
        )
        self.reason = reason


class PrincipalNotFound(FleetOpsError):
    """Raised when a principal id does not resolve to an active member."""

    def __init__(self, principal_id: str):
        super().__init__(
            message="Principal could not be resolved",
            code="PRINCIPAL_NOT_FOUND",
            status_code=403,
        )
        # Kept off details so the id is not echoed to the caller
        self.principal_id = principal_id


class TenantScopeViolation(FleetOpsError):
    """Raised when tenant data is touched without a tenant scope."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            code="TENANT_SCOPE_VIOLATION",
            status_code=500,
        )


class InvalidArgument(FleetOpsError):
    """Raised for caller errors detected inside a handler."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            message=message,
            code="INVALID_ARGUMENT",
            status_code=400,
            details=details,
        )


# =============================================================================
# Workflow Exceptions
# =============================================================================

class JourneyNotFound(FleetOpsError):
    """Raised when a journey id does not resolve within the caller's tenant."""

    def __init__(self, journey_id: int):
        super().__init__(
            message=f"Journey not found: {journey_id}",
            code="JOURNEY_NOT_FOUND",
            status_code=404,
            details={"journey_id": journey_id},
        )


class StopNotFound(FleetOpsError):
    """Raised when a stop is not on the journey or belongs to another customer."""

    def __init__(self, journey_id: int, stop_id: int, customer_id: int):
        super().__init__(
            message=f"Stop {stop_id} of customer {customer_id} not found on journey {journey_id}",
            code="STOP_NOT_FOUND",
            status_code=404,
            details={"journey_id": journey_id, "stop_id": stop_id, "customer_id": customer_id},
        )


class NoStopsToOptimize(FleetOpsError):
    """Raised when a journey has no pending stops left to optimize."""

    def __init__(self, journey_id: int):
        super().__init__(
            message=f"Journey has no pending stops to optimize: {journey_id}",
            code="NO_STOPS_TO_OPTIMIZE",
            status_code=400,
            details={"journey_id": journey_id},
        )


class RequestNotFoundOrAlreadyProcessed(FleetOpsError):
    """
    Raised when a location update request cannot be transitioned.

    Covers a missing id, an id from another tenant and a request that has
    already left Pending. The caller cannot tell these apart.
    """

    def __init__(self, request_id: int):
        super().__init__(
            message="Location update request not found or already processed",
            code="REQUEST_NOT_FOUND_OR_ALREADY_PROCESSED",
            status_code=409,
            details={"request_id": request_id},
        )


class WorkspaceNotFound(FleetOpsError):
    """Raised when a workspace id does not exist."""

    def __init__(self, workspace_id: int):
        super().__init__(
            message=f"Workspace not found: {workspace_id}",
            code="WORKSPACE_NOT_FOUND",
            status_code=404,
            details={"workspace_id": workspace_id},
        )


# =============================================================================
# Optimizer Exceptions
# =============================================================================

class TransientRejection(FleetOpsError):
    """Optimizer answered 429. Retried by the client, never surfaced."""

    def __init__(self, attempt: int):
        super().__init__(
            message=f"Optimizer rate limited attempt {attempt}",
            code="OPTIMIZER_RATE_LIMITED",
            status_code=429,
        )
        self.attempt = attempt


class OptimizerFatalError(FleetOpsError):
    """Non-retriable optimizer failure.

    Attributes:
        cause: Underlying exception or description
        correlation_id: Id of the diagnostic log entry
    """

    def __init__(self, cause: Any, correlation_id: str):
        super().__init__(
            message=f"Route optimization failed: {cause}",
            code="OPTIMIZER_FAILED",
            status_code=502,
            details={"correlation_id": correlation_id},
        )
        self.cause = cause
        self.correlation_id = correlation_id
