"""
Service Request API endpoints.

Lifecycle writes (transitions, assignment, notes, escalations) return the
updated request together with the activity they appended. Errors are raised
as core.exceptions and rendered by the application's exception handler.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.service_request import (
    ActivityRead,
    AssignmentCreate,
    ErrorResponse,
    EscalationCreate,
    LifecycleResponse,
    NoteCreate,
    RequestCreate,
    RequestListItem,
    RequestListResponse,
    RequestRead,
    TransitionCreate,
    UnreadSummaryRead,
)
from core.config import settings
from core.database import get_session
from core.dependencies import get_current_user
from db.enums import RequestStatus, RequestType, Urgency
from db.models import User
from services.acknowledgment_service import AcknowledgmentService
from services.assignment_service import AssignmentService
from services.notification_computer import NotificationComputer
from services.request_service import RequestFilters, RequestService
from services.transition_engine import LifecycleResult, TransitionEngine
from services.visibility import policy_for

router = APIRouter()

ERROR_RESPONSES = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
}


def _lifecycle_response(result: LifecycleResult) -> LifecycleResponse:
    return LifecycleResponse(
        request=RequestRead.from_model(result.request),
        activity=ActivityRead.from_model(result.activity),
    )


@router.post("", response_model=RequestRead, status_code=201, responses=ERROR_RESPONSES)
async def create_request(
    payload: RequestCreate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """
    Create a service request.

    The request starts as **pending** and unassigned, is routed to the
    department configured for its type and receives the next request number.
    """
    request = await RequestService.create_request(
        db,
        current_user,
        request_type=payload.type,
        title=payload.title,
        urgency=payload.urgency,
        description=payload.description,
        details=payload.details,
        due_date=payload.due_date,
    )
    return RequestRead.from_model(request)


@router.get("", response_model=RequestListResponse)
async def list_requests(
    response: Response,
    type: Optional[RequestType] = Query(None, description="Filter by request type"),
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    urgency: Optional[Urgency] = Query(None),
    department: Optional[str] = Query(None),
    assigned_to_me: bool = Query(False, alias="assignedToMe"),
    page: int = Query(1, ge=1),
    per_page: int = Query(
        settings.pagination.default_page_size,
        ge=1,
        le=settings.pagination.max_page_size,
        alias="perPage",
    ),
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """
    List the requests visible to the caller, newest first.

    Each item carries the caller's **unreadCount**, **hasRecentActivity** and
    **lastActivityAt**. Totals are also sent as X-Total-Count, X-Page and
    X-Per-Page headers.
    """
    result = await RequestService.list_requests(
        db,
        current_user,
        RequestFilters(
            request_type=type,
            status=status_filter,
            urgency=urgency,
            department=department,
            assigned_to_me=assigned_to_me,
        ),
        page=page,
        per_page=per_page,
    )

    policy = policy_for(current_user)
    items = []
    for request in result.items:
        summary = result.summaries[request.id]
        items.append(
            RequestListItem.from_model(
                request,
                unread_count=summary.unread_count,
                has_recent_activity=summary.has_recent_activity,
                **policy.activity_timestamps(request, summary.last_activity_at),
            )
        )

    response.headers["X-Total-Count"] = str(result.total)
    response.headers["X-Page"] = str(result.page)
    response.headers["X-Per-Page"] = str(result.per_page)

    return RequestListResponse(
        requests=items, total=result.total, page=result.page, per_page=result.per_page
    )


@router.get("/{request_id}", response_model=RequestRead, responses=ERROR_RESPONSES)
async def get_request(
    request_id: UUID,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """
    Get a request. Unknown and out-of-scope ids both return 404.

    lastActivityAt only reflects activities the caller can see.
    """
    request, timestamps = await RequestService.get_request_view(db, current_user, request_id)
    return RequestRead.from_model(request, **timestamps)


@router.post(
    "/{request_id}/transitions",
    response_model=LifecycleResponse,
    responses=ERROR_RESPONSES,
)
async def apply_transition(
    request_id: UUID,
    payload: TransitionCreate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """
    Change a request's status.

    **expectedCurrentStatus** must equal the persisted status, otherwise the
    call fails with 409 and the body carries the current status.
    """
    result = await TransitionEngine.apply_transition(
        db,
        request_id,
        current_user,
        target_status=payload.target_status,
        expected_current_status=payload.expected_current_status,
        notes=payload.notes,
        time_spent=payload.time_spent,
    )
    return _lifecycle_response(result)


@router.post(
    "/{request_id}/assignment",
    response_model=LifecycleResponse,
    responses=ERROR_RESPONSES,
)
async def assign_request(
    request_id: UUID,
    payload: AssignmentCreate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """
    Assign a request to a staff member of a department.

    **expectedAssignedTo** is the assignee the caller last observed (null
    for an unassigned request).
    """
    result = await AssignmentService.assign(
        db,
        request_id,
        current_user,
        assignee_id=payload.assignee_id,
        department=payload.department,
        expected_assigned_to=payload.expected_assigned_to,
    )
    return _lifecycle_response(result)


@router.post(
    "/{request_id}/notes",
    response_model=ActivityRead,
    status_code=201,
    responses=ERROR_RESPONSES,
)
async def add_note(
    request_id: UUID,
    payload: NoteCreate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Add a note. Internal notes are visible to staff only."""
    activity = await RequestService.add_note(
        db,
        request_id,
        current_user,
        notes=payload.notes,
        is_internal=payload.is_internal,
    )
    return ActivityRead.from_model(activity)


@router.post(
    "/{request_id}/escalations",
    response_model=LifecycleResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
)
async def escalate_request(
    request_id: UUID,
    payload: EscalationCreate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Escalate an open request; its urgency becomes urgent."""
    result = await RequestService.escalate(db, request_id, current_user, notes=payload.notes)
    return _lifecycle_response(result)


@router.post(
    "/{request_id}/acknowledgment",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERROR_RESPONSES,
)
async def acknowledge_request(
    request_id: UUID,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Mark the request's activity stream as read by the caller."""
    await AcknowledgmentService.acknowledge(db, current_user, request_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{request_id}/activities",
    response_model=List[ActivityRead],
    responses=ERROR_RESPONSES,
)
async def get_activities(
    request_id: UUID,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """
    Activity log of a request in order, filtered for the caller.

    Reading the log does not acknowledge it.
    """
    activities = await RequestService.get_activities(db, current_user, request_id)
    return [ActivityRead.from_model(a) for a in activities]


@router.get(
    "/{request_id}/unread",
    response_model=UnreadSummaryRead,
    responses=ERROR_RESPONSES,
)
async def get_unread_summary(
    request_id: UUID,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Unread count and recent-activity flag of one request for the caller."""
    summary = await NotificationComputer.get_unread_summary(db, current_user, request_id)
    return UnreadSummaryRead(
        request_id=summary.request_id,
        unread_count=summary.unread_count,
        has_recent_activity=summary.has_recent_activity,
        last_activity_at=summary.last_activity_at,
        last_ack_at=summary.last_ack_at,
    )


@router.delete(
    "/{request_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERROR_RESPONSES,
)
async def delete_request(
    request_id: UUID,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """
    Delete a request with its activity log (admins, or department leads for
    their own department). An audit entry records the deletion.
    """
    await RequestService.delete_request(db, request_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
