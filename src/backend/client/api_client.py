"""
Requests API client - async httpx wrapper around the /api/v1/requests routes.

Error bodies ({"error": CODE, "detail": ...}) are turned back into the
matching core.exceptions class so client code handles the same error types
the server raises.
"""

import logging
from typing import Any, Dict, List, Optional, Type
from uuid import UUID

import httpx

from core.config import settings
from core.exceptions import (
    AuthorizationDeniedError,
    ConflictError,
    NotFoundError,
    RateLimitedError,
    RequestDeskError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)

ERROR_CLASSES: Dict[str, Type[RequestDeskError]] = {
    cls.code: cls
    for cls in (
        ValidationFailedError,
        AuthorizationDeniedError,
        NotFoundError,
        ConflictError,
        RateLimitedError,
    )
}


class ApiError(RequestDeskError):
    """Any other non-success response (401, 5xx, unknown error codes)."""

    code = "API_ERROR"

    def __init__(self, status_code: int, detail: Optional[str] = None, code: Optional[str] = None):
        super().__init__(detail)
        self.status_code = status_code
        if code:
            self.code = code


def _error_from_response(response: httpx.Response) -> RequestDeskError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    code = body.get("error")
    detail = body.get("detail")
    if not isinstance(detail, str):
        detail = str(detail) if detail is not None else response.reason_phrase

    error_cls = ERROR_CLASSES.get(code)
    if error_cls is ConflictError:
        return ConflictError(detail, field=body.get("field"), current=body.get("current"))
    if error_cls is RateLimitedError:
        retry_after = response.headers.get("Retry-After")
        return RateLimitedError(detail, retry_after=int(retry_after) if retry_after else None)
    if error_cls is not None:
        return error_cls(detail)
    return ApiError(response.status_code, detail, code)


class RequestsApiClient:
    """
    Typed access to the request lifecycle API.

    Usage:
        async with RequestsApiClient(token=token) as client:
            page = await client.list_requests(assigned_to_me=True)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.sync.api_base_url).rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout or settings.sync.request_timeout_seconds),
            transport=transport,
        )

    async def __aenter__(self) -> "RequestsApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        response = await self._client.request(method, path, **kwargs)
        if response.is_error:
            error = _error_from_response(response)
            logger.debug(f"{method} {path} failed: {response.status_code} {error.code}")
            raise error
        return response

    # ==================== Reads ====================

    async def list_requests(
        self,
        *,
        request_type: Optional[str] = None,
        status: Optional[str] = None,
        urgency: Optional[str] = None,
        department: Optional[str] = None,
        assigned_to_me: bool = False,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> Dict[str, Any]:
        """One page of visible requests; items include the caller's unread state."""
        params: Dict[str, Any] = {"page": page}
        if request_type:
            params["type"] = request_type
        if status:
            params["status"] = status
        if urgency:
            params["urgency"] = urgency
        if department:
            params["department"] = department
        if assigned_to_me:
            params["assignedToMe"] = "true"
        if per_page:
            params["perPage"] = per_page

        response = await self._request("GET", "/requests", params=params)
        return response.json()

    async def get_request(self, request_id: UUID) -> Dict[str, Any]:
        response = await self._request("GET", f"/requests/{request_id}")
        return response.json()

    async def get_activities(self, request_id: UUID) -> List[Dict[str, Any]]:
        response = await self._request("GET", f"/requests/{request_id}/activities")
        return response.json()

    async def get_unread(self, request_id: UUID) -> Dict[str, Any]:
        response = await self._request("GET", f"/requests/{request_id}/unread")
        return response.json()

    # ==================== Writes ====================

    async def acknowledge(self, request_id: UUID) -> None:
        """Mark the request's activity stream as read ("open activity panel")."""
        await self._request("POST", f"/requests/{request_id}/acknowledgment")

    async def create_request(
        self, request_type: str, title: str, urgency: str = "normal", **fields: Any
    ) -> Dict[str, Any]:
        payload = {"type": request_type, "title": title, "urgency": urgency, **fields}
        response = await self._request("POST", "/requests", json=payload)
        return response.json()

    async def apply_transition(
        self,
        request_id: UUID,
        target_status: str,
        expected_current_status: str,
        notes: Optional[str] = None,
        time_spent: Optional[int] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "targetStatus": target_status,
            "expectedCurrentStatus": expected_current_status,
        }
        if notes is not None:
            payload["notes"] = notes
        if time_spent is not None:
            payload["timeSpent"] = time_spent

        response = await self._request("POST", f"/requests/{request_id}/transitions", json=payload)
        return response.json()

    async def assign(
        self,
        request_id: UUID,
        assignee_id: UUID,
        department: str,
        expected_assigned_to: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        payload = {
            "assigneeId": str(assignee_id),
            "department": department,
            "expectedAssignedTo": str(expected_assigned_to) if expected_assigned_to else None,
        }
        response = await self._request("POST", f"/requests/{request_id}/assignment", json=payload)
        return response.json()

    async def add_note(
        self, request_id: UUID, notes: str, is_internal: bool = False
    ) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            f"/requests/{request_id}/notes",
            json={"notes": notes, "isInternal": is_internal},
        )
        return response.json()

    async def escalate(self, request_id: UUID, notes: str) -> Dict[str, Any]:
        response = await self._request(
            "POST", f"/requests/{request_id}/escalations", json={"notes": notes}
        )
        return response.json()

    async def delete_request(self, request_id: UUID) -> None:
        await self._request("DELETE", f"/requests/{request_id}")
