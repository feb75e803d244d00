"""
Service request schemas for API validation and serialization.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import Field

from core.schema_base import HTTPSchemaModel
from db.enums import ActivityType, RequestStatus, RequestType, Urgency
from db.models import RequestActivity, ServiceRequest

NOTES_MAX_LENGTH = 2000


# ============================================================================
# Requests
# ============================================================================


class RequestCreate(HTTPSchemaModel):
    """Payload for creating a service request."""

    type: RequestType
    title: str = Field(..., min_length=1, max_length=200)
    urgency: Urgency = Urgency.NORMAL
    description: Optional[str] = Field(None, max_length=10000)
    details: Optional[Dict[str, Any]] = Field(
        None, description="Type-specific form fields, stored as-is"
    )
    due_date: Optional[datetime] = None


class RequestRead(HTTPSchemaModel):
    """Service request as returned to any viewer."""

    id: UUID
    request_number: str
    type: RequestType
    status: RequestStatus
    urgency: Urgency
    title: str
    description: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    department: Optional[str] = None
    assigned_to: Optional[UUID] = None
    assigned_by: Optional[UUID] = None
    created_by: UUID
    created_at: datetime
    updated_at: datetime
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, request: ServiceRequest, **overrides: Any) -> "RequestRead":
        """Build from an ORM row; the column request_type is exposed as `type`."""
        values = {
            name: getattr(request, name)
            for name in cls.model_fields
            if name != "type" and hasattr(request, name)
        }
        values["type"] = request.request_type
        values.update(overrides)
        return cls(**values)


class RequestListItem(RequestRead):
    """List entry with the viewer's unread state."""

    unread_count: int = 0
    has_recent_activity: bool = False


class RequestListResponse(HTTPSchemaModel):
    requests: List[RequestListItem]
    total: int
    page: int
    per_page: int


# ============================================================================
# Lifecycle writes
# ============================================================================


class TransitionCreate(HTTPSchemaModel):
    """Status change guarded by the status the caller last observed."""

    target_status: RequestStatus
    expected_current_status: RequestStatus
    notes: Optional[str] = Field(None, max_length=NOTES_MAX_LENGTH)
    time_spent: Optional[int] = Field(None, ge=0, description="Minutes spent")


class AssignmentCreate(HTTPSchemaModel):
    """Assignment guarded by the assignee the caller last observed."""

    assignee_id: UUID
    department: str = Field(..., min_length=1, max_length=100)
    expected_assigned_to: Optional[UUID] = None


class NoteCreate(HTTPSchemaModel):
    notes: str = Field(..., min_length=1, max_length=NOTES_MAX_LENGTH)
    is_internal: bool = False


class EscalationCreate(HTTPSchemaModel):
    notes: str = Field(..., min_length=1, max_length=NOTES_MAX_LENGTH)


# ============================================================================
# Activities and unread state
# ============================================================================


class ActivityRead(HTTPSchemaModel):
    id: int
    request_id: UUID
    actor_id: UUID
    activity_type: ActivityType
    old_status: Optional[RequestStatus] = None
    new_status: Optional[RequestStatus] = None
    notes: Optional[str] = None
    is_internal: bool = False
    time_spent: Optional[int] = None
    assigned_to: Optional[UUID] = None
    department: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_model(cls, activity: RequestActivity) -> "ActivityRead":
        return cls.model_validate(activity)


class LifecycleResponse(HTTPSchemaModel):
    """Result of a transition, assignment or escalation."""

    request: RequestRead
    activity: ActivityRead


class UnreadSummaryRead(HTTPSchemaModel):
    request_id: UUID
    unread_count: int
    has_recent_activity: bool
    last_activity_at: Optional[datetime] = None
    last_ack_at: datetime


class ErrorResponse(HTTPSchemaModel):
    """Uniform error body."""

    error: str
    detail: str
    field: Optional[str] = None
    current: Optional[str] = None
