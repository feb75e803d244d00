"""
Transition Engine - the request status state machine.

Applies status changes under an optimistic-concurrency precondition: the
caller passes the status it last observed, and the write only lands if the
persisted status still equals it. The status update and its status_change
activity are committed in one transaction.

Allowed edges:
    pending     -> in_progress (needs an assignee), cancelled
    in_progress -> on_hold, completed, cancelled
    on_hold     -> in_progress, completed, cancelled
    completed   -> in_progress (reopen)
    cancelled   -> (terminal)

Cancelling is reserved for admins.
"""
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from core.decorators import log_database_operation, transactional_database_operation
from core.exceptions import AuthorizationDeniedError, ConflictError, ValidationFailedError
from core.logging_config import LifecycleLogger
from core.metrics import track_conflict, track_rejected_write, track_resolution_time, track_transition
from core.rate_limit import write_rate_limiter
from crud.activity_crud import RequestActivityCRUD
from crud.service_request_crud import ServiceRequestCRUD
from db.enums import ActivityType, RequestStatus, ResourceClass
from db.models import RequestActivity, ServiceRequest, User, utc_now
from services.activity_dispatcher import ActivityDispatcher
from services.visibility import policy_for

logger = logging.getLogger(__name__)
lifecycle_logger = LifecycleLogger("transitions")

MAX_NOTES_LENGTH = 2000

TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.IN_PROGRESS, RequestStatus.CANCELLED}),
    RequestStatus.IN_PROGRESS: frozenset(
        {RequestStatus.ON_HOLD, RequestStatus.COMPLETED, RequestStatus.CANCELLED}
    ),
    RequestStatus.ON_HOLD: frozenset(
        {RequestStatus.IN_PROGRESS, RequestStatus.COMPLETED, RequestStatus.CANCELLED}
    ),
    RequestStatus.COMPLETED: frozenset({RequestStatus.IN_PROGRESS}),
    RequestStatus.CANCELLED: frozenset(),
}


def is_allowed_edge(current: RequestStatus, target: RequestStatus) -> bool:
    return target in TRANSITIONS[current]


def coerce_status(value, field_name: str) -> RequestStatus:
    try:
        return RequestStatus(value)
    except ValueError:
        raise ValidationFailedError(f"Unknown {field_name}: {value}")


@dataclass
class LifecycleResult:
    """The request after a write together with the activity the write appended."""

    request: ServiceRequest
    activity: RequestActivity


class TransitionEngine:
    """Validates and applies request status transitions."""

    @staticmethod
    async def apply_transition(
        db: AsyncSession,
        request_id: UUID,
        actor: User,
        target_status: RequestStatus,
        expected_current_status: RequestStatus,
        notes: Optional[str] = None,
        time_spent: Optional[int] = None,
    ) -> LifecycleResult:
        """
        Move a request to `target_status`.

        Args:
            db: Database session
            request_id: Request to transition
            actor: Authenticated caller
            target_status: Desired status
            expected_current_status: Status the caller last observed
            notes: Optional comment stored on the activity (max 2000 chars)
            time_spent: Optional minutes spent (>= 0)

        Returns:
            LifecycleResult with the updated request and the new activity

        Raises:
            NotFoundError: Unknown request or outside the actor's scope
            AuthorizationDeniedError: Role may not transition, or may not cancel
            RateLimitedError: Transition quota exhausted
            ConflictError: Persisted status differs from the expected one
            ValidationFailedError: Illegal edge or malformed input
        """
        result = await TransitionEngine._apply(
            db,
            request_id,
            actor,
            target_status,
            expected_current_status,
            notes,
            time_spent,
        )
        await ActivityDispatcher.dispatch(result.request, result.activity)
        return result

    @staticmethod
    @transactional_database_operation("apply_transition")
    @log_database_operation("status transition", level="debug")
    async def _apply(
        db: AsyncSession,
        request_id: UUID,
        actor: User,
        target_status: RequestStatus,
        expected_current_status: RequestStatus,
        notes: Optional[str],
        time_spent: Optional[int],
    ) -> LifecycleResult:
        target = coerce_status(target_status, "target status")
        expected = coerce_status(expected_current_status, "expected status")

        if notes is not None and len(notes) > MAX_NOTES_LENGTH:
            raise ValidationFailedError(f"Notes exceed {MAX_NOTES_LENGTH} characters")
        if time_spent is not None and (isinstance(time_spent, bool) or not isinstance(time_spent, int) or time_spent < 0):
            raise ValidationFailedError("timeSpent must be a non-negative integer")

        policy = policy_for(actor)
        request = policy.ensure_visible(actor, await ServiceRequestCRUD.find_by_id(db, request_id))

        if not policy.can_transition:
            track_rejected_write("transition", AuthorizationDeniedError.code)
            raise AuthorizationDeniedError("Your role cannot change request status")

        await write_rate_limiter.check(actor.id, ResourceClass.TRANSITION)

        current = RequestStatus(request.status)
        if current != expected:
            TransitionEngine._conflict(request_id, expected, current)

        if not is_allowed_edge(current, target):
            track_rejected_write("transition", ValidationFailedError.code)
            raise ValidationFailedError(
                f"Cannot move a request from {current.value} to {target.value}"
            )

        if target == RequestStatus.CANCELLED and not policy.can_cancel:
            track_rejected_write("transition", AuthorizationDeniedError.code)
            raise AuthorizationDeniedError("Only administrators can cancel requests")

        if (
            current == RequestStatus.PENDING
            and target == RequestStatus.IN_PROGRESS
            and request.assigned_to is None
        ):
            raise ValidationFailedError("Request must be assigned before work can start")

        now = utc_now()
        completed_at = now if target == RequestStatus.COMPLETED else None

        applied = await ServiceRequestCRUD.compare_and_set_status(
            db, request_id, expected, target, now, completed_at
        )
        if not applied:
            values = await ServiceRequestCRUD.current_values(db, request_id)
            TransitionEngine._conflict(request_id, expected, values[0] if values else None)

        activity = await RequestActivityCRUD.append(
            db,
            RequestActivity(
                request_id=request_id,
                actor_id=actor.id,
                activity_type=ActivityType.STATUS_CHANGE,
                old_status=current,
                new_status=target,
                notes=notes,
                time_spent=time_spent,
                created_at=now,
            ),
        )
        await db.refresh(request)

        lifecycle_logger.transition_applied(
            request.request_number, actor.id, current.value, target.value, activity.id
        )
        track_transition(current.value, target.value)
        if target == RequestStatus.COMPLETED:
            track_resolution_time(
                getattr(request.request_type, "value", request.request_type),
                (now - request.created_at).total_seconds(),
            )

        return LifecycleResult(request=request, activity=activity)

    @staticmethod
    def _conflict(request_id: UUID, expected: RequestStatus, current: Optional[RequestStatus]):
        current_value = getattr(current, "value", current)
        lifecycle_logger.precondition_failed("transition", request_id, expected.value, current_value)
        track_conflict("transition")
        raise ConflictError(
            f"Request status is {current_value}, not {expected.value}",
            field="status",
            current=current,
        )
