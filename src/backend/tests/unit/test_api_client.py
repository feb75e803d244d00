"""
Unit tests for RequestsApiClient.

Responses come from an httpx.MockTransport; error bodies use the server's
{"error": CODE, "detail": ...} shape.
"""

import json
from uuid import uuid4

import httpx
import pytest

from client.api_client import ApiError, RequestsApiClient
from core.exceptions import (
    AuthorizationDeniedError,
    ConflictError,
    NotFoundError,
    RateLimitedError,
    ValidationFailedError,
)

BASE_URL = "http://desk.test/api/v1"


def make_client(handler) -> RequestsApiClient:
    return RequestsApiClient(
        base_url=BASE_URL, token="token-123", transport=httpx.MockTransport(handler)
    )


class TestRequests:
    @pytest.mark.asyncio
    async def test_list_requests_query_and_auth(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"requests": [], "total": 0, "page": 2, "perPage": 5})

        async with make_client(handler) as client:
            page = await client.list_requests(
                request_type="technical", assigned_to_me=True, page=2, per_page=5
            )

        assert page["total"] == 0
        request = seen[0]
        assert request.url.path == "/api/v1/requests"
        assert request.url.params["type"] == "technical"
        assert request.url.params["assignedToMe"] == "true"
        assert request.url.params["page"] == "2"
        assert request.url.params["perPage"] == "5"
        assert "status" not in request.url.params
        assert request.headers["Authorization"] == "Bearer token-123"

    @pytest.mark.asyncio
    async def test_transition_payload(self):
        seen = []
        request_id = uuid4()

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"request": {}, "activity": {}})

        async with make_client(handler) as client:
            await client.apply_transition(request_id, "completed", "in_progress", notes="Done")

        assert seen[0].method == "POST"
        assert seen[0].url.path == f"/api/v1/requests/{request_id}/transitions"
        assert json.loads(seen[0].content) == {
            "targetStatus": "completed",
            "expectedCurrentStatus": "in_progress",
            "notes": "Done",
        }

    @pytest.mark.asyncio
    async def test_acknowledge_posts_without_body(self):
        seen = []
        request_id = uuid4()

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        async with make_client(handler) as client:
            assert await client.acknowledge(request_id) is None

        assert seen[0].url.path == f"/api/v1/requests/{request_id}/acknowledgment"


class TestErrors:
    @pytest.mark.asyncio
    async def test_conflict_carries_current_value(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                409,
                json={
                    "error": "CONFLICT",
                    "detail": "Request status has changed",
                    "field": "status",
                    "current": "completed",
                },
            )

        async with make_client(handler) as client:
            with pytest.raises(ConflictError) as exc_info:
                await client.apply_transition(uuid4(), "completed", "in_progress")

        assert exc_info.value.field == "status"
        assert exc_info.value.current == "completed"
        assert exc_info.value.detail == "Request status has changed"

    @pytest.mark.asyncio
    async def test_rate_limited_reads_retry_after(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                429,
                json={"error": "RATE_LIMITED", "detail": "Too many writes"},
                headers={"Retry-After": "17"},
            )

        async with make_client(handler) as client:
            with pytest.raises(RateLimitedError) as exc_info:
                await client.add_note(uuid4(), "hello")

        assert exc_info.value.retry_after == 17

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code,code,error_cls",
        [
            (404, "NOT_FOUND", NotFoundError),
            (403, "AUTHORIZATION_ERROR", AuthorizationDeniedError),
            (422, "VALIDATION_ERROR", ValidationFailedError),
        ],
    )
    async def test_error_codes_map_to_exceptions(self, status_code, code, error_cls):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, json={"error": code, "detail": "nope"})

        async with make_client(handler) as client:
            with pytest.raises(error_cls) as exc_info:
                await client.get_request(uuid4())

        assert exc_info.value.detail == "nope"

    @pytest.mark.asyncio
    async def test_unauthenticated_is_api_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"detail": "Authentication required"})

        async with make_client(handler) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.list_requests()

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Authentication required"

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>Bad gateway</html>")

        async with make_client(handler) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.get_unread(uuid4())

        assert exc_info.value.status_code == 502
        assert exc_info.value.code == "API_ERROR"
