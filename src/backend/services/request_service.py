"""
Service request operations outside the state machine: creation with
department routing and numbering, scoped reads, notes, escalation and the
administrative delete.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.decorators import (
    critical_database_operation,
    log_database_operation,
    transactional_database_operation,
)
from core.exceptions import AuthorizationDeniedError, ValidationFailedError
from core.logging_config import LifecycleLogger
from core.metrics import track_escalation, track_note, track_rejected_write, track_request_created
from core.rate_limit import write_rate_limiter
from crud.acknowledgment_crud import AcknowledgmentCRUD
from crud.activity_crud import RequestActivityCRUD
from crud.service_request_crud import ServiceRequestCRUD
from db.enums import ActivityType, RequestStatus, RequestType, ResourceClass, Urgency
from db.models import RequestActivity, ServiceRequest, User, utc_now
from services.activity_dispatcher import ActivityDispatcher
from services.audit_service import AuditService
from services.notification_computer import NotificationComputer, UnreadSummary
from services.transition_engine import MAX_NOTES_LENGTH, LifecycleResult
from services.visibility import policy_for

logger = logging.getLogger(__name__)
lifecycle_logger = LifecycleLogger("requests")

CLOSED_STATUSES = frozenset({RequestStatus.COMPLETED, RequestStatus.CANCELLED})


@dataclass
class RequestFilters:
    request_type: Optional[RequestType] = None
    status: Optional[RequestStatus] = None
    urgency: Optional[Urgency] = None
    department: Optional[str] = None
    assigned_to_me: bool = False


@dataclass
class RequestPage:
    """One page of requests with the viewer's unread summary for each."""

    items: List[ServiceRequest]
    summaries: Dict[UUID, UnreadSummary]
    total: int
    page: int
    per_page: int


def route_department(request_type: RequestType) -> Optional[str]:
    """Department a new request of this type is routed to, if configured."""
    return settings.lifecycle.department_routing.get(RequestType(request_type).value)


def _validate_notes(notes: Optional[str], required: bool) -> Optional[str]:
    text = (notes or "").strip()
    if required and not text:
        raise ValidationFailedError("notes are required")
    if len(text) > MAX_NOTES_LENGTH:
        raise ValidationFailedError(f"Notes exceed {MAX_NOTES_LENGTH} characters")
    return text or None


class RequestService:
    """Service for request creation, reads, notes, escalation and deletion."""

    @staticmethod
    @transactional_database_operation("create_request")
    @log_database_operation("request creation", level="debug")
    async def create_request(
        db: AsyncSession,
        actor: User,
        request_type: RequestType,
        title: str,
        urgency: Urgency = Urgency.NORMAL,
        description: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        due_date: Optional[datetime] = None,
    ) -> ServiceRequest:
        """
        Create a pending, unassigned request routed to its type's department.

        Raises:
            RateLimitedError: Creation quota exhausted
            ValidationFailedError: Missing title
        """
        title = (title or "").strip()
        if not title:
            raise ValidationFailedError("title is required")

        await write_rate_limiter.check(actor.id, ResourceClass.REQUEST)

        request_number = await ServiceRequestCRUD.allocate_number(
            db,
            settings.lifecycle.request_number_prefix,
            settings.lifecycle.request_number_width,
        )
        now = utc_now()
        request = await ServiceRequestCRUD.create(
            db,
            ServiceRequest(
                request_number=request_number,
                request_type=RequestType(request_type),
                status=RequestStatus.PENDING,
                urgency=Urgency(urgency),
                title=title,
                description=description,
                details=details,
                department=route_department(request_type),
                created_by=actor.id,
                created_at=now,
                updated_at=now,
                due_date=due_date,
            ),
        )

        lifecycle_logger.request_created(
            request.request_number, request.request_type.value, actor.id, request.department
        )
        track_request_created(request.request_type.value, request.urgency.value)
        return request

    @staticmethod
    @critical_database_operation("get_request")
    async def get_request(db: AsyncSession, viewer: User, request_id: UUID) -> ServiceRequest:
        """A request the viewer may see (NOT_FOUND otherwise)."""
        return policy_for(viewer).ensure_visible(
            viewer, await ServiceRequestCRUD.find_by_id(db, request_id)
        )

    @staticmethod
    @critical_database_operation("get_request_view")
    async def get_request_view(
        db: AsyncSession, viewer: User, request_id: UUID
    ) -> Tuple[ServiceRequest, Dict[str, Optional[datetime]]]:
        """
        A request plus its activity timestamps as the viewer may see them.

        Returns:
            (request, overrides) where overrides replaces last_activity_at
            (and updated_at for non-staff) with values derived from the
            visibility-filtered activity log
        """
        policy = policy_for(viewer)
        request = policy.ensure_visible(viewer, await ServiceRequestCRUD.find_by_id(db, request_id))
        activities = await RequestActivityCRUD.find_for_request(db, request_id)
        visible = policy.project(request, activities, viewer).activities
        last_activity_at = max((a.created_at for a in visible), default=None)
        return request, policy.activity_timestamps(request, last_activity_at)

    @staticmethod
    @critical_database_operation("list_requests")
    @log_database_operation("request listing", level="debug")
    async def list_requests(
        db: AsyncSession,
        viewer: User,
        filters: RequestFilters,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> RequestPage:
        """Page through the viewer's visible requests with unread state per item."""
        per_page = min(
            per_page or settings.pagination.default_page_size,
            settings.pagination.max_page_size,
        )
        page = max(page, 1)

        items, total = await ServiceRequestCRUD.find_visible_paginated(
            db,
            scope=policy_for(viewer).scope_clause(viewer),
            page=page,
            per_page=per_page,
            request_type=filters.request_type,
            status=filters.status,
            urgency=filters.urgency,
            department=filters.department,
            assigned_to=viewer.id if filters.assigned_to_me else None,
        )
        summaries = await NotificationComputer.compute_batch(db, viewer, items)
        return RequestPage(items=items, summaries=summaries, total=total, page=page, per_page=per_page)

    @staticmethod
    @critical_database_operation("get_activities")
    async def get_activities(
        db: AsyncSession, viewer: User, request_id: UUID
    ) -> List[RequestActivity]:
        """The request's activity log in order, filtered for the viewer."""
        policy = policy_for(viewer)
        request = policy.ensure_visible(viewer, await ServiceRequestCRUD.find_by_id(db, request_id))
        activities = await RequestActivityCRUD.find_for_request(db, request_id)
        return policy.project(request, activities, viewer).activities

    @staticmethod
    async def add_note(
        db: AsyncSession,
        request_id: UUID,
        actor: User,
        notes: str,
        is_internal: bool = False,
    ) -> RequestActivity:
        """
        Append a note. Internal notes are staff-only.

        Raises:
            NotFoundError: Request outside the actor's scope
            AuthorizationDeniedError: Requester writing an internal note
            RateLimitedError: Note quota exhausted
            ValidationFailedError: Empty or oversized notes
        """
        result = await RequestService._add_note(db, request_id, actor, notes, is_internal)
        await ActivityDispatcher.dispatch(result.request, result.activity)
        return result.activity

    @staticmethod
    @transactional_database_operation("add_note")
    @log_database_operation("note creation", level="debug")
    async def _add_note(
        db: AsyncSession,
        request_id: UUID,
        actor: User,
        notes: str,
        is_internal: bool,
    ) -> LifecycleResult:
        text = _validate_notes(notes, required=True)

        policy = policy_for(actor)
        request = policy.ensure_visible(actor, await ServiceRequestCRUD.find_by_id(db, request_id))

        if is_internal and not policy.can_write_internal_notes:
            track_rejected_write("note", AuthorizationDeniedError.code)
            raise AuthorizationDeniedError("Only staff can write internal notes")

        await write_rate_limiter.check(actor.id, ResourceClass.NOTE)

        now = utc_now()
        activity = await RequestActivityCRUD.append(
            db,
            RequestActivity(
                request_id=request_id,
                actor_id=actor.id,
                activity_type=ActivityType.NOTE,
                notes=text,
                is_internal=bool(is_internal),
                created_at=now,
            ),
        )
        await ServiceRequestCRUD.record_activity(db, request_id, now)
        await db.refresh(request)

        lifecycle_logger.note_added(request.request_number, actor.id, bool(is_internal))
        track_note(bool(is_internal))
        return LifecycleResult(request=request, activity=activity)

    @staticmethod
    async def escalate(
        db: AsyncSession, request_id: UUID, actor: User, notes: str
    ) -> LifecycleResult:
        """
        Escalate an open request: appends an escalation activity and raises
        urgency to urgent.

        Raises:
            NotFoundError: Request outside the actor's scope
            AuthorizationDeniedError: Requester escalating
            RateLimitedError: Escalation quota exhausted
            ValidationFailedError: Missing notes, or request already closed
        """
        result = await RequestService._escalate(db, request_id, actor, notes)
        await ActivityDispatcher.dispatch(result.request, result.activity)
        return result

    @staticmethod
    @transactional_database_operation("escalate_request")
    @log_database_operation("request escalation", level="debug")
    async def _escalate(
        db: AsyncSession, request_id: UUID, actor: User, notes: str
    ) -> LifecycleResult:
        text = _validate_notes(notes, required=True)

        policy = policy_for(actor)
        request = policy.ensure_visible(actor, await ServiceRequestCRUD.find_by_id(db, request_id))

        if not policy.can_escalate:
            track_rejected_write("escalation", AuthorizationDeniedError.code)
            raise AuthorizationDeniedError("Only staff can escalate requests")

        await write_rate_limiter.check(actor.id, ResourceClass.ESCALATION)

        if RequestStatus(request.status) in CLOSED_STATUSES:
            raise ValidationFailedError(f"Cannot escalate a {RequestStatus(request.status).value} request")

        now = utc_now()
        activity = await RequestActivityCRUD.append(
            db,
            RequestActivity(
                request_id=request_id,
                actor_id=actor.id,
                activity_type=ActivityType.ESCALATION,
                notes=text,
                is_internal=True,
                created_at=now,
            ),
        )
        await ServiceRequestCRUD.record_activity(db, request_id, now, urgency=Urgency.URGENT)
        await db.refresh(request)

        lifecycle_logger.escalated(request.request_number, actor.id)
        track_escalation(RequestType(request.request_type).value)
        return LifecycleResult(request=request, activity=activity)

    @staticmethod
    @transactional_database_operation("delete_request")
    @log_database_operation("request deletion", level="info")
    async def delete_request(db: AsyncSession, request_id: UUID, actor: User) -> None:
        """
        Remove a request with its activity log and acknowledgment marks, and
        record who deleted it.

        Raises:
            NotFoundError: Request outside the actor's scope
            AuthorizationDeniedError: Actor may not delete this request
        """
        policy = policy_for(actor)
        request = policy.ensure_visible(actor, await ServiceRequestCRUD.find_by_id(db, request_id))

        if not policy.can_delete(actor, request):
            track_rejected_write("delete", AuthorizationDeniedError.code)
            raise AuthorizationDeniedError("You cannot delete this request")

        snapshot = {
            "requestNumber": request.request_number,
            "type": RequestType(request.request_type).value,
            "status": RequestStatus(request.status).value,
            "urgency": Urgency(request.urgency).value,
            "title": request.title,
            "department": request.department,
            "assignedTo": str(request.assigned_to) if request.assigned_to else None,
            "createdBy": str(request.created_by),
        }
        request_number = request.request_number

        await AcknowledgmentCRUD.delete_where(db, request_id=request_id)
        activity_count = await RequestActivityCRUD.delete_where(db, request_id=request_id)
        await ServiceRequestCRUD.delete_where(db, id=request_id)

        await AuditService.record(
            db,
            user_id=actor.id,
            action="DELETE",
            resource_type="service_request",
            resource_id=str(request_id),
            old_values=snapshot,
            changes_summary=f"Deleted {request_number} with {activity_count} activities",
        )
        lifecycle_logger.request_deleted(request_number, actor.id, activity_count)
