"""
Integration tests for the HTTP endpoints.

Requests go through the real FastAPI app, the JWT dependency and the
dispatcher, against the in-memory ``fleet`` database. The app runs in the
test's event loop via httpx's ASGI transport.
"""
import uuid
from unittest.mock import patch

import httpx
import pytest

from main import app
from services import location_update_workflow as workflow_module
from services.location_update_workflow import LocationUpdateWorkflow
from tests.helpers import auth_header
from utils.context_utils import get_dispatcher

BASE = "/api/workspace/location-update-requests"


@pytest.fixture
async def client(dispatcher, monkeypatch):
    """Async client wired to the test dispatcher."""
    monkeypatch.setattr(workflow_module, "_workflow", LocationUpdateWorkflow(publisher=None))
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()


def submission() -> dict:
    return {
        "journey_id": 42,
        "stop_id": 5,
        "customer_id": 9,
        "current_latitude": 41.0,
        "current_longitude": 29.0,
        "requested_latitude": 41.01,
        "requested_longitude": 29.01,
        "reason": "Wrong pin",
    }


class TestLocationUpdateEndpoints:

    @pytest.mark.asyncio
    async def test_full_workflow_over_http(self, client, fleet):
        response = await client.post(BASE, json=submission(), headers=auth_header(fleet.driver.id))
        assert response.status_code == 200, response.text
        assert response.headers["X-Correlation-ID"]
        request_id = response.json()["request_id"]
        assert response.json()["status"] == "Pending"

        pending = await client.get(f"{BASE}/pending", headers=auth_header(fleet.dispatcher.id))
        assert pending.status_code == 200
        assert [item["id"] for item in pending.json()] == [request_id]
        assert pending.json()[0]["journey_name"] == "Morning run"

        approved = await client.post(f"{BASE}/{request_id}/approve",
                                     headers=auth_header(fleet.dispatcher.id))
        assert approved.status_code == 200
        assert approved.json()["status"] == "Approved"
        assert approved.json()["updated_future_stops"] == 1

        rejected = await client.post(f"{BASE}/{request_id}/reject", json={"reason": "late"},
                                     headers=auth_header(fleet.dispatcher.id))
        assert rejected.status_code == 409
        assert rejected.json()["code"] == "REQUEST_NOT_FOUND_OR_ALREADY_PROCESSED"

        history = await client.get(f"{BASE}/history", params={"status": "approved"},
                                   headers=auth_header(fleet.dispatcher.id))
        assert history.status_code == 200
        assert [item["id"] for item in history.json()] == [request_id]

    @pytest.mark.asyncio
    async def test_validation_errors_are_422_with_fields(self, client, fleet):
        body = {**submission(), "requested_latitude": 123.0}
        del body["customer_id"]

        response = await client.post(BASE, json=body, headers=auth_header(fleet.driver.id))

        assert response.status_code == 422
        payload = response.json()
        assert payload["status"] == "VALIDATION_FAILED"
        assert {error["field"] for error in payload["errors"]} == {"customer_id", "requested_latitude"}

    @pytest.mark.asyncio
    async def test_driver_cannot_list_pending(self, client, fleet):
        response = await client.get(f"{BASE}/pending", headers=auth_header(fleet.driver.id))

        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_unknown_principal_is_403(self, client, fleet):
        response = await client.get(f"{BASE}/pending", headers=auth_header(uuid.uuid4()))

        assert response.status_code == 403
        assert response.json()["code"] == "PRINCIPAL_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_foreign_journey_is_404(self, client, fleet):
        body = {**submission(), "journey_id": 142}

        response = await client.post(BASE, json=body, headers=auth_header(fleet.driver.id))

        assert response.status_code == 404
        assert response.json()["code"] == "JOURNEY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, client, fleet):
        response = await client.get(f"{BASE}/pending")

        assert response.status_code == 401


class TestAdminEndpoints:

    @pytest.mark.asyncio
    async def test_super_admin_lists_all_workspaces(self, client, fleet):
        response = await client.get("/api/admin/workspaces", headers=auth_header(fleet.super_admin.id))

        assert response.status_code == 200
        assert [w["id"] for w in response.json()] == [3, 4, 7]

    @pytest.mark.asyncio
    async def test_deactivate_then_filter(self, client, fleet):
        headers = auth_header(fleet.super_admin.id)

        response = await client.put("/api/admin/workspaces/4/status", json={"active": False},
                                    headers=headers)
        assert response.status_code == 200
        assert response.json()["active"] is False

        active_only = await client.get("/api/admin/workspaces", params={"include_inactive": "false"},
                                       headers=headers)
        assert [w["id"] for w in active_only.json()] == [3, 7]

    @pytest.mark.asyncio
    async def test_unknown_workspace_is_404(self, client, fleet):
        response = await client.put("/api/admin/workspaces/999/status", json={"active": True},
                                    headers=auth_header(fleet.super_admin.id))

        assert response.status_code == 404
        assert response.json()["code"] == "WORKSPACE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_tenant_admin_is_forbidden(self, client, fleet):
        response = await client.get("/api/admin/workspaces", headers=auth_header(fleet.admin.id))

        assert response.status_code == 403


class TestHealthEndpoint:

    @pytest.mark.asyncio
    async def test_health_ok(self, client):
        with patch("main.check_database", return_value=True):
            response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "database": True}

    @pytest.mark.asyncio
    async def test_health_degraded(self, client):
        with patch("main.check_database", return_value=False):
            response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"
