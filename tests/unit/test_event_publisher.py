"""Tests for the EventBridge workflow publisher and its event schema."""
import json
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError
from hypothesis import given, strategies as st, settings
from pydantic import ValidationError

from models.location_update import LocationUpdateRequest, LocationUpdateStatus
from models.workflow_event import LocationUpdateEvent, LocationUpdateEventType
from services.event_publisher import EventPublisher, get_event_publisher


def make_request(**overrides) -> LocationUpdateRequest:
    values = dict(
        id=12,
        tenant_id=7,
        journey_id=42,
        journey_stop_id=5,
        customer_id=9,
        current_latitude=41.0,
        current_longitude=29.0,
        requested_latitude=41.01,
        requested_longitude=29.01,
        status=LocationUpdateStatus.approved,
        requested_by_id="driver",
        requested_by_name="Driver",
    )
    values.update(overrides)
    return LocationUpdateRequest(**values)


@pytest.fixture
def events_client():
    """Patch boto3 so the publisher talks to a mock EventBridge client."""
    with patch("services.event_publisher.boto3") as boto3:
        client = MagicMock()
        client.put_events.return_value = {
            "FailedEntryCount": 0,
            "Entries": [{"EventId": "evt-1"}],
        }
        boto3.client.return_value = client
        yield client


@pytest.fixture
def publisher(events_client, monkeypatch):
    monkeypatch.setenv("EVENTBRIDGE_BUS_NAME", "fleet-bus")
    monkeypatch.setenv("EVENT_SOURCE", "com.fleetops.test")
    return EventPublisher()


class TestPublishEvent:

    def test_entry_shape(self, publisher, events_client):
        event = publisher.build_location_update_event(make_request(), "dispatcher-1", "corr-1", 2)

        event_id = publisher.publish_event(LocationUpdateEventType.APPROVED, event)

        assert event_id == "evt-1"
        entry = events_client.put_events.call_args.kwargs["Entries"][0]
        assert entry["Source"] == "com.fleetops.test"
        assert entry["DetailType"] == "LocationUpdateRequestApproved"
        assert entry["EventBusName"] == "fleet-bus"

        detail = json.loads(entry["Detail"])
        assert detail["version"] == "1.0"
        assert detail["request_id"] == 12
        assert detail["tenant_id"] == 7
        assert detail["actor_id"] == "dispatcher-1"
        assert detail["correlation_id"] == "corr-1"
        assert detail["data"]["status"] == "Approved"
        assert detail["data"]["updated_future_stops"] == 2

    def test_failed_entry_raises(self, publisher, events_client):
        events_client.put_events.return_value = {
            "FailedEntryCount": 1,
            "Entries": [{"ErrorCode": "ThrottlingException", "ErrorMessage": "slow down"}],
        }
        event = publisher.build_location_update_event(make_request(), "a", "c")

        with pytest.raises(RuntimeError, match="ThrottlingException"):
            publisher.publish_event(LocationUpdateEventType.APPROVED, event)

    def test_client_error_is_reraised(self, publisher, events_client):
        events_client.put_events.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "no"}}, "PutEvents"
        )
        event = publisher.build_location_update_event(make_request(), "a", "c")

        with pytest.raises(ClientError):
            publisher.publish_event(LocationUpdateEventType.APPROVED, event)

    def test_missing_client_raises(self, publisher):
        publisher.client = None
        event = publisher.build_location_update_event(make_request(), "a", "c")

        with pytest.raises(RuntimeError):
            publisher.publish_event(LocationUpdateEventType.REJECTED, event)

    @pytest.mark.asyncio
    async def test_publish_location_update_runs_off_loop(self, publisher, events_client):
        request = make_request(status=LocationUpdateStatus.rejected, rejection_reason="dup")

        event_id = await publisher.publish_location_update(
            LocationUpdateEventType.REJECTED, request, "dispatcher-1", "corr-2"
        )

        assert event_id == "evt-1"
        detail = json.loads(events_client.put_events.call_args.kwargs["Entries"][0]["Detail"])
        assert detail["data"]["rejection_reason"] == "dup"
        assert detail["data"]["updated_future_stops"] is None


def test_publisher_disabled_without_bus(monkeypatch):
    monkeypatch.delenv("EVENTBRIDGE_BUS_NAME", raising=False)
    monkeypatch.setattr("services.event_publisher._event_publisher", None)

    assert get_event_publisher() is None


@given(
    request_id=st.integers(min_value=1, max_value=2**31),
    tenant_id=st.integers(min_value=1, max_value=2**31),
    status=st.sampled_from(["Pending", "Approved", "Rejected"]),
    latitude=st.floats(min_value=-90, max_value=90),
    longitude=st.floats(min_value=-180, max_value=180),
)
@settings(max_examples=100)
def test_event_schema_completeness(request_id, tenant_id, status, latitude, longitude):
    """Every event serializes with all top-level and data fields present."""
    event = LocationUpdateEvent(
        request_id=request_id,
        tenant_id=tenant_id,
        actor_id="actor",
        correlation_id="corr",
        timestamp="2026-01-01T00:00:00+00:00",
        data={
            "journey_id": 1,
            "journey_stop_id": 2,
            "customer_id": 3,
            "requested_latitude": latitude,
            "requested_longitude": longitude,
            "status": status,
        },
    )

    dumped = json.loads(event.model_dump_json())

    assert set(dumped) == {
        "version", "request_id", "tenant_id", "actor_id", "correlation_id", "timestamp", "data"
    }
    assert dumped["data"]["status"] == status


def test_event_requires_request_id():
    with pytest.raises(ValidationError):
        LocationUpdateEvent(
            tenant_id=7,
            actor_id="a",
            correlation_id="c",
            timestamp="2026-01-01T00:00:00+00:00",
            data={"journey_id": 1, "journey_stop_id": 2, "customer_id": 3,
                  "requested_latitude": 0, "requested_longitude": 0, "status": "Pending"},
        )
