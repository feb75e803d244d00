"""
Assignment service - routes a request to a department and an assignee.

The write is guarded by the assignee the caller last observed (usually
None), re-checked inside the UPDATE itself. Status is never touched here.
"""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from core.decorators import log_database_operation, transactional_database_operation
from core.exceptions import AuthorizationDeniedError, ConflictError, ValidationFailedError
from core.logging_config import LifecycleLogger
from core.metrics import track_assignment, track_conflict, track_rejected_write
from core.rate_limit import write_rate_limiter
from crud.activity_crud import RequestActivityCRUD
from crud.service_request_crud import ServiceRequestCRUD
from crud.user_crud import UserCRUD
from db.enums import ActivityType, RequestStatus, ResourceClass, UserRole
from db.models import RequestActivity, User, utc_now
from services.activity_dispatcher import ActivityDispatcher
from services.transition_engine import LifecycleResult
from services.visibility import policy_for

logger = logging.getLogger(__name__)
lifecycle_logger = LifecycleLogger("assignments")


class AssignmentService:
    """Validates and applies request assignment."""

    @staticmethod
    async def assign(
        db: AsyncSession,
        request_id: UUID,
        actor: User,
        assignee_id: UUID,
        department: str,
        expected_assigned_to: Optional[UUID],
    ) -> LifecycleResult:
        """
        Assign a request to a staff member of `department`.

        Raises:
            NotFoundError: Unknown request or outside the actor's scope
            AuthorizationDeniedError: Role may not assign, or not across departments
            RateLimitedError: Assignment quota exhausted
            ConflictError: Persisted assignee differs from the expected one
            ValidationFailedError: Cancelled request or ineligible assignee
        """
        result = await AssignmentService._assign(
            db, request_id, actor, assignee_id, department, expected_assigned_to
        )
        await ActivityDispatcher.dispatch(result.request, result.activity)
        return result

    @staticmethod
    @transactional_database_operation("assign_request")
    @log_database_operation("request assignment", level="debug")
    async def _assign(
        db: AsyncSession,
        request_id: UUID,
        actor: User,
        assignee_id: UUID,
        department: str,
        expected_assigned_to: Optional[UUID],
    ) -> LifecycleResult:
        department = (department or "").strip()
        if not department:
            raise ValidationFailedError("department is required")

        policy = policy_for(actor)
        request = await ServiceRequestCRUD.find_by_id(db, request_id)

        if not policy.can_assign:
            policy.ensure_visible(actor, request)
            track_rejected_write("assignment", AuthorizationDeniedError.code)
            raise AuthorizationDeniedError("Your role cannot assign requests")

        # Department leads are told "not allowed" rather than "not found" for
        # other departments' requests.
        if request is not None and not policy.can_assign_request(actor, request):
            track_rejected_write("assignment", AuthorizationDeniedError.code)
            raise AuthorizationDeniedError("You can only assign requests of your own department")

        request = policy.ensure_visible(actor, request)

        await write_rate_limiter.check(actor.id, ResourceClass.ASSIGNMENT)

        previous = request.assigned_to
        if previous != expected_assigned_to:
            AssignmentService._conflict(request_id, expected_assigned_to, previous)

        if request.status == RequestStatus.CANCELLED:
            raise ValidationFailedError("Cancelled requests cannot be assigned")

        assignee = await UserCRUD.find_by_id(db, assignee_id)
        if assignee is None or not assignee.is_active:
            raise ValidationFailedError("Assignee does not exist or is inactive")
        if not UserRole(assignee.role).is_staff:
            raise ValidationFailedError("Assignee must be a staff member")

        if not policy.can_assign_into(actor, department, assignee):
            track_rejected_write("assignment", AuthorizationDeniedError.code)
            raise AuthorizationDeniedError(
                "You can only assign to employees of your own department"
            )

        if assignee.department != department:
            raise ValidationFailedError(f"Assignee does not belong to {department}")

        now = utc_now()
        applied = await ServiceRequestCRUD.compare_and_set_assignment(
            db, request_id, expected_assigned_to, assignee.id, department, actor.id, now
        )
        if not applied:
            values = await ServiceRequestCRUD.current_values(db, request_id)
            if values and values[0] == RequestStatus.CANCELLED:
                raise ValidationFailedError("Cancelled requests cannot be assigned")
            AssignmentService._conflict(request_id, expected_assigned_to, values[1] if values else None)

        activity = await RequestActivityCRUD.append(
            db,
            RequestActivity(
                request_id=request_id,
                actor_id=actor.id,
                activity_type=ActivityType.ASSIGNMENT,
                assigned_to=assignee.id,
                department=department,
                created_at=now,
            ),
        )
        await db.refresh(request)

        lifecycle_logger.assignment_applied(
            request.request_number, actor.id, assignee.id, department, previous
        )
        track_assignment(department, reassignment=previous is not None)

        return LifecycleResult(request=request, activity=activity)

    @staticmethod
    def _conflict(request_id: UUID, expected: Optional[UUID], current: Optional[UUID]):
        lifecycle_logger.precondition_failed(
            "assignment",
            request_id,
            str(expected) if expected else None,
            str(current) if current else None,
        )
        track_conflict("assignment")
        raise ConflictError(
            "Request was assigned by someone else",
            field="assignedTo",
            current=current,
        )
