"""
Integration tests for the service request API.

Tests:
- End-to-end lifecycle: create, assign, work, notes, acknowledgment, complete
- Concurrent completion (one success, one 409 with the current status)
- Error bodies: 401, 404 for unknown and out-of-scope ids, 422, 429
- Listing headers and the caller's unread state
- Administrative delete with its audit entry
- RequestsApiClient and SyncScheduler against the app
"""

import asyncio
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from client import RequestsApiClient, SyncScheduler, list_view_fetcher
from core.exceptions import ConflictError
from core.rate_limit import write_rate_limiter
from core.security import create_access_token
from db.models import ServiceRequest, User
from services.audit_service import AuditService
from tests.factories import IT_SUPPORT

API = "/api/v1/requests"


class TestLifecycleFlow:
    @pytest.mark.asyncio
    async def test_request_from_creation_to_completion(
        self,
        client: httpx.AsyncClient,
        auth_headers,
        requester: User,
        admin: User,
        employee_e1: User,
    ):
        # Requester opens a technical request
        response = await client.post(
            API,
            json={"type": "technical", "title": "VPN drops every hour", "urgency": "normal"},
            headers=auth_headers(requester),
        )
        assert response.status_code == 201
        created = response.json()
        request_id = created["id"]
        assert created["status"] == "pending"
        assert created["assignedTo"] is None
        assert created["requestNumber"] == "REQ-000001"
        assert created["department"] == IT_SUPPORT

        # Admin assigns it to E1
        response = await client.post(
            f"{API}/{request_id}/assignment",
            json={"assigneeId": str(employee_e1.id), "department": IT_SUPPORT, "expectedAssignedTo": None},
            headers=auth_headers(admin),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["request"]["assignedTo"] == str(employee_e1.id)
        assert body["request"]["status"] == "pending"
        assert body["activity"]["activityType"] == "assignment"

        # E1 starts work and leaves one internal and one external note
        response = await client.post(
            f"{API}/{request_id}/transitions",
            json={"targetStatus": "in_progress", "expectedCurrentStatus": "pending"},
            headers=auth_headers(employee_e1),
        )
        assert response.status_code == 200
        assert response.json()["request"]["status"] == "in_progress"

        for notes, internal in (("Suspect the DHCP lease", True), ("Looking into it", False)):
            response = await client.post(
                f"{API}/{request_id}/notes",
                json={"notes": notes, "isInternal": internal},
                headers=auth_headers(employee_e1),
            )
            assert response.status_code == 201

        # Requester sees assignment, status change and the external note only
        response = await client.get(f"{API}/{request_id}/unread", headers=auth_headers(requester))
        assert response.status_code == 200
        assert response.json()["unreadCount"] == 3
        assert response.json()["hasRecentActivity"] is True

        response = await client.get(f"{API}/{request_id}/activities", headers=auth_headers(requester))
        activities = response.json()
        assert [a["activityType"] for a in activities] == ["assignment", "status_change", "note"]
        assert all(a["isInternal"] is False for a in activities)

        # Opening the activity panel acknowledges
        response = await client.post(f"{API}/{request_id}/acknowledgment", headers=auth_headers(requester))
        assert response.status_code == 204
        response = await client.get(f"{API}/{request_id}/unread", headers=auth_headers(requester))
        assert response.json()["unreadCount"] == 0

        # E1 completes the request
        response = await client.post(
            f"{API}/{request_id}/transitions",
            json={"targetStatus": "completed", "expectedCurrentStatus": "in_progress", "timeSpent": 45},
            headers=auth_headers(employee_e1),
        )
        assert response.status_code == 200
        completed = response.json()["request"]
        assert completed["status"] == "completed"
        assert completed["completedAt"].endswith("Z")

        response = await client.get(f"{API}/{request_id}/unread", headers=auth_headers(requester))
        assert response.json()["unreadCount"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_completion_conflict(
        self,
        client: httpx.AsyncClient,
        auth_headers,
        assigned_request: ServiceRequest,
        employee_e1: User,
        it_lead: User,
    ):
        url = f"{API}/{assigned_request.id}/transitions"
        response = await client.post(
            url,
            json={"targetStatus": "in_progress", "expectedCurrentStatus": "pending"},
            headers=auth_headers(employee_e1),
        )
        assert response.status_code == 200

        payload = {"targetStatus": "completed", "expectedCurrentStatus": "in_progress"}
        first = await client.post(url, json=payload, headers=auth_headers(employee_e1))
        second = await client.post(url, json=payload, headers=auth_headers(it_lead))

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json() == {
            "error": "CONFLICT",
            "detail": second.json()["detail"],
            "field": "status",
            "current": "completed",
        }

        response = await client.get(f"{API}/{assigned_request.id}/activities", headers=auth_headers(it_lead))
        completions = [a for a in response.json() if a["newStatus"] == "completed"]
        assert len(completions) == 1

    @pytest.mark.asyncio
    async def test_double_assignment_conflict(
        self,
        client: httpx.AsyncClient,
        auth_headers,
        assigned_request: ServiceRequest,
        it_lead: User,
        employee_e1: User,
        employee_e2: User,
    ):
        response = await client.post(
            f"{API}/{assigned_request.id}/assignment",
            json={"assigneeId": str(employee_e2.id), "department": IT_SUPPORT, "expectedAssignedTo": None},
            headers=auth_headers(it_lead),
        )

        assert response.status_code == 409
        assert response.json()["field"] == "assignedTo"
        assert response.json()["current"] == str(employee_e1.id)


class TestErrorResponses:
    @pytest.mark.asyncio
    async def test_missing_token_is_unauthorized(self, client: httpx.AsyncClient):
        response = await client.get(API)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_token_is_unauthorized(self, client: httpx.AsyncClient):
        response = await client.get(API, headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_and_hidden_requests_look_the_same(
        self,
        client: httpx.AsyncClient,
        auth_headers,
        pending_request: ServiceRequest,
        other_requester: User,
    ):
        hidden = await client.get(f"{API}/{pending_request.id}", headers=auth_headers(other_requester))
        unknown = await client.get(f"{API}/{uuid4()}", headers=auth_headers(other_requester))

        assert hidden.status_code == unknown.status_code == 404
        assert hidden.json() == unknown.json()
        assert hidden.json()["error"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_unknown_status_is_validation_error(
        self, client: httpx.AsyncClient, auth_headers, pending_request: ServiceRequest, admin: User
    ):
        response = await client.post(
            f"{API}/{pending_request.id}/transitions",
            json={"targetStatus": "resolved", "expectedCurrentStatus": "pending"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_illegal_edge_is_validation_error(
        self, client: httpx.AsyncClient, auth_headers, pending_request: ServiceRequest, admin: User
    ):
        response = await client.post(
            f"{API}/{pending_request.id}/transitions",
            json={"targetStatus": "completed", "expectedCurrentStatus": "pending"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_requester_cannot_transition(
        self, client: httpx.AsyncClient, auth_headers, pending_request: ServiceRequest, requester: User
    ):
        response = await client.post(
            f"{API}/{pending_request.id}/transitions",
            json={"targetStatus": "cancelled", "expectedCurrentStatus": "pending"},
            headers=auth_headers(requester),
        )

        assert response.status_code == 403
        assert response.json()["error"] == "AUTHORIZATION_ERROR"

    @pytest.mark.asyncio
    async def test_write_quota_returns_retry_after(
        self, client: httpx.AsyncClient, auth_headers, pending_request: ServiceRequest, requester: User
    ):
        write_rate_limiter.configure("1/60 second")
        url = f"{API}/{pending_request.id}/notes"

        first = await client.post(url, json={"notes": "one"}, headers=auth_headers(requester))
        second = await client.post(url, json={"notes": "two"}, headers=auth_headers(requester))

        assert first.status_code == 201
        assert second.status_code == 429
        assert second.json()["error"] == "RATE_LIMITED"
        assert 1 <= int(second.headers["Retry-After"]) <= 60


class TestListing:
    @pytest.mark.asyncio
    async def test_list_headers_and_unread_state(
        self,
        client: httpx.AsyncClient,
        auth_headers,
        assigned_request: ServiceRequest,
        requester: User,
        employee_e1: User,
    ):
        response = await client.get(API, params={"perPage": 10}, headers=auth_headers(requester))

        assert response.status_code == 200
        assert response.headers["X-Total-Count"] == "1"
        assert response.headers["X-Page"] == "1"
        assert response.headers["X-Per-Page"] == "10"
        item = response.json()["requests"][0]
        assert item["id"] == str(assigned_request.id)
        assert item["unreadCount"] == 1

        mine = await client.get(API, params={"assignedToMe": "true"}, headers=auth_headers(employee_e1))
        assert [r["id"] for r in mine.json()["requests"]] == [str(assigned_request.id)]

    @pytest.mark.asyncio
    async def test_polling_does_not_acknowledge(
        self, client: httpx.AsyncClient, auth_headers, assigned_request: ServiceRequest, requester: User
    ):
        for _ in range(3):
            await client.get(API, headers=auth_headers(requester))
            await client.get(f"{API}/{assigned_request.id}", headers=auth_headers(requester))
            await client.get(f"{API}/{assigned_request.id}/activities", headers=auth_headers(requester))

        response = await client.get(f"{API}/{assigned_request.id}/unread", headers=auth_headers(requester))
        assert response.json()["unreadCount"] == 1


    @pytest.mark.asyncio
    async def test_internal_note_does_not_move_requester_timestamps(
        self,
        client: httpx.AsyncClient,
        auth_headers,
        assigned_request: ServiceRequest,
        requester: User,
        employee_e1: User,
    ):
        url = f"{API}/{assigned_request.id}"
        before = (await client.get(url, headers=auth_headers(requester))).json()

        response = await client.post(
            f"{url}/notes",
            json={"notes": "Warranty check pending", "isInternal": True},
            headers=auth_headers(employee_e1),
        )
        assert response.status_code == 201
        internal_at = response.json()["createdAt"]

        detail = (await client.get(url, headers=auth_headers(requester))).json()
        listed = (await client.get(API, headers=auth_headers(requester))).json()["requests"][0]

        assert detail["lastActivityAt"] == before["lastActivityAt"]
        assert detail["updatedAt"] == before["updatedAt"]
        assert detail["lastActivityAt"] == listed["lastActivityAt"]
        assert detail["updatedAt"] == listed["updatedAt"]
        assert detail["lastActivityAt"] != internal_at

        staff_detail = (await client.get(url, headers=auth_headers(employee_e1))).json()
        assert staff_detail["lastActivityAt"] == internal_at


class TestDelete:
    @pytest.mark.asyncio
    async def test_admin_delete_is_audited(
        self,
        client: httpx.AsyncClient,
        db_session: AsyncSession,
        auth_headers,
        assigned_request: ServiceRequest,
        admin: User,
        requester: User,
    ):
        response = await client.delete(f"{API}/{assigned_request.id}", headers=auth_headers(admin))
        assert response.status_code == 204

        response = await client.get(f"{API}/{assigned_request.id}", headers=auth_headers(requester))
        assert response.status_code == 404

        entries = await AuditService.get_entries_for_resource(
            db_session, "service_request", str(assigned_request.id)
        )
        assert [e.action for e in entries] == ["DELETE"]

    @pytest.mark.asyncio
    async def test_requester_cannot_delete(
        self, client: httpx.AsyncClient, auth_headers, pending_request: ServiceRequest, requester: User
    ):
        response = await client.delete(f"{API}/{pending_request.id}", headers=auth_headers(requester))
        assert response.status_code == 403


class TestApiClientAgainstApp:
    @pytest_asyncio.fixture
    async def api_client_for(self, app):
        clients = []

        def _make(user: User) -> RequestsApiClient:
            api_client = RequestsApiClient(
                base_url="http://test/api/v1",
                token=create_access_token(user),
                transport=httpx.ASGITransport(app=app),
            )
            clients.append(api_client)
            return api_client

        yield _make

        for api_client in clients:
            await api_client.close()

    @pytest.mark.asyncio
    async def test_conflict_round_trip(
        self, api_client_for, assigned_request: ServiceRequest, employee_e1: User, it_lead: User
    ):
        e1_client, lead_client = api_client_for(employee_e1), api_client_for(it_lead)

        await e1_client.apply_transition(assigned_request.id, "in_progress", "pending")
        await e1_client.apply_transition(assigned_request.id, "completed", "in_progress")

        with pytest.raises(ConflictError) as exc_info:
            await lead_client.apply_transition(assigned_request.id, "completed", "in_progress")
        assert exc_info.value.field == "status"
        assert exc_info.value.current == "completed"

    @pytest.mark.asyncio
    async def test_scheduler_refresh_and_acknowledge(
        self, api_client_for, assigned_request: ServiceRequest, requester: User
    ):
        api_client = api_client_for(requester)
        scheduler = SyncScheduler(api_client, interval=3600)

        view = scheduler.open_view("inbox", list_view_fetcher(api_client))
        await asyncio.sleep(0)
        assert await view._in_flight is True

        key = str(assigned_request.id)
        assert view.state.items[key].unread_count == 1

        await scheduler.acknowledge(assigned_request.id)
        assert view.state.items[key].unread_count == 0

        assert await view.tick() is True
        assert view.state.items[key].unread_count == 0

        scheduler.close()
