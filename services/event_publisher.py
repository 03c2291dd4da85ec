"""
Workflow Event Publisher Service

Publishes location update workflow transitions to AWS EventBridge. Events
are published only after the transition has been committed, and publishing
is best-effort from the workflow's point of view: the dispatcher logs a
failed publish without failing the command.
"""

import asyncio
import boto3
import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional
from botocore.exceptions import ClientError, NoCredentialsError

from models.location_update import LocationUpdateRequest
from models.workflow_event import LocationUpdateEvent, LocationUpdateEventData

logger = logging.getLogger(__name__)


class EventPublisher:
    """
    Service for publishing workflow events to AWS EventBridge.

    Environment Variables:
        AWS_REGION: AWS region (default: us-east-1)
        EVENTBRIDGE_BUS_NAME: Event bus name (default: default)
        EVENT_SOURCE: Event source identifier (default: com.fleetops.core)
    """

    def __init__(self):
        self.region = os.getenv("AWS_REGION", "us-east-1")
        self.bus_name = os.getenv("EVENTBRIDGE_BUS_NAME", "default")
        self.event_source = os.getenv("EVENT_SOURCE", "com.fleetops.core")

        try:
            self.client = boto3.client("events", region_name=self.region)

            logger.info(
                f"EventPublisher initialized: region={self.region}, "
                f"bus={self.bus_name}, source={self.event_source}"
            )
        except NoCredentialsError:
            logger.warning(
                "AWS credentials not found. Event publishing will be disabled. "
                "Set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY environment variables."
            )
            self.client = None
        except Exception as e:
            logger.error(f"Failed to initialize EventBridge client: {e}")
            self.client = None

    def build_location_update_event(
        self,
        request: LocationUpdateRequest,
        actor_id: str,
        correlation_id: str,
        updated_future_stops: Optional[int] = None,
    ) -> LocationUpdateEvent:
        """Build and validate the event detail for ``request``'s current state."""
        return LocationUpdateEvent(
            request_id=request.id,
            tenant_id=request.tenant_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
            data=LocationUpdateEventData(
                journey_id=request.journey_id,
                journey_stop_id=request.journey_stop_id,
                customer_id=request.customer_id,
                requested_latitude=request.requested_latitude,
                requested_longitude=request.requested_longitude,
                status=request.status.value,
                updated_future_stops=updated_future_stops,
                rejection_reason=request.rejection_reason,
            ),
        )

    def publish_event(self, detail_type: str, event: LocationUpdateEvent) -> str:
        """
        Publish one validated event to EventBridge.

        Args:
            detail_type: EventBridge detail-type, see LocationUpdateEventType
            event: Validated event detail

        Returns:
            Event ID from EventBridge

        Raises:
            RuntimeError: If the client is unavailable or EventBridge
                rejects the entry
            ClientError: On AWS API errors
        """
        if self.client is None:
            logger.warning(
                f"Event publishing disabled (no AWS credentials). "
                f"request_id={event.request_id}"
            )
            raise RuntimeError("EventBridge client not initialized")

        entry = {
            "Source": self.event_source,
            "DetailType": detail_type,
            "Detail": json.dumps(event.model_dump()),
            "EventBusName": self.bus_name
        }

        try:
            response = self.client.put_events(Entries=[entry])

            if response["FailedEntryCount"] > 0:
                failed_entry = response["Entries"][0]
                error_code = failed_entry.get("ErrorCode", "Unknown")
                error_message = failed_entry.get("ErrorMessage", "Unknown error")

                logger.error(
                    f"Event publishing failed: request_id={event.request_id}, "
                    f"error_code={error_code}, error_message={error_message}"
                )
                raise RuntimeError(f"EventBridge put_events failed: {error_code} - {error_message}")

            event_id = response["Entries"][0]["EventId"]

            logger.info(
                f"Event published successfully: request_id={event.request_id}, "
                f"tenant_id={event.tenant_id}, event_id={event_id}, "
                f"detail_type={detail_type}, correlation_id={event.correlation_id}"
            )

            return event_id

        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            error_message = e.response["Error"]["Message"]

            logger.error(
                f"AWS API error publishing event: request_id={event.request_id}, "
                f"error_code={error_code}, error_message={error_message}",
                exc_info=True
            )
            raise

    async def publish_location_update(
        self,
        detail_type: str,
        request: LocationUpdateRequest,
        actor_id: str,
        correlation_id: str,
        updated_future_stops: Optional[int] = None,
    ) -> str:
        """Build and publish a workflow event without blocking the event loop."""
        event = self.build_location_update_event(
            request, actor_id, correlation_id, updated_future_stops
        )
        return await asyncio.to_thread(self.publish_event, detail_type, event)


_event_publisher: Optional[EventPublisher] = None


def get_event_publisher() -> Optional[EventPublisher]:
    """Return the process-wide publisher, or None when EventBridge is not configured."""
    global _event_publisher

    if _event_publisher is None and os.getenv("EVENTBRIDGE_BUS_NAME"):
        _event_publisher = EventPublisher()

    return _event_publisher
