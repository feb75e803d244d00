"""
Unit tests for AssignmentService.

PERMISSION MODEL:
- Admins assign any request to a staff member of any department
- Department leads assign only their department's requests, only to its employees
- Employees and requesters cannot assign
- expectedAssignedTo must match the persisted assignee (None when unassigned)
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import (
    AuthorizationDeniedError,
    ConflictError,
    NotFoundError,
    ValidationFailedError,
)
from crud.activity_crud import RequestActivityCRUD
from db.enums import ActivityType, RequestStatus, RequestType
from db.models import ServiceRequest, User
from services.assignment_service import AssignmentService
from services.request_service import RequestService
from services.transition_engine import TransitionEngine
from tests.factories import IT_SUPPORT, WEB_SUPPORT


async def _activity_count(db: AsyncSession, request_id) -> int:
    return len(await RequestActivityCRUD.find_for_request(db, request_id))


class TestAssign:
    @pytest.mark.asyncio
    async def test_admin_assigns_unassigned_request(
        self, db_session: AsyncSession, pending_request: ServiceRequest, admin: User, employee_e1: User
    ):
        result = await AssignmentService.assign(
            db_session, pending_request.id, admin, employee_e1.id, IT_SUPPORT, None
        )

        assert result.request.assigned_to == employee_e1.id
        assert result.request.department == IT_SUPPORT
        assert result.request.assigned_by == admin.id
        assert result.request.status == RequestStatus.PENDING
        assert result.activity.activity_type == ActivityType.ASSIGNMENT
        assert result.activity.assigned_to == employee_e1.id
        assert result.activity.department == IT_SUPPORT

    @pytest.mark.asyncio
    async def test_admin_assigns_across_departments(
        self, db_session: AsyncSession, pending_request: ServiceRequest, admin: User, web_employee: User
    ):
        result = await AssignmentService.assign(
            db_session, pending_request.id, admin, web_employee.id, WEB_SUPPORT, None
        )
        assert result.request.department == WEB_SUPPORT

    @pytest.mark.asyncio
    async def test_double_assignment_is_conflict(
        self,
        db_session: AsyncSession,
        assigned_request: ServiceRequest,
        admin: User,
        employee_e1: User,
        employee_e2: User,
    ):
        with pytest.raises(ConflictError) as exc_info:
            await AssignmentService.assign(
                db_session, assigned_request.id, admin, employee_e2.id, IT_SUPPORT, None
            )

        assert exc_info.value.field == "assignedTo"
        assert exc_info.value.current == employee_e1.id
        assert await _activity_count(db_session, assigned_request.id) == 1

    @pytest.mark.asyncio
    async def test_reassignment_with_current_token(
        self,
        db_session: AsyncSession,
        assigned_request: ServiceRequest,
        it_lead: User,
        employee_e1: User,
        employee_e2: User,
    ):
        result = await AssignmentService.assign(
            db_session, assigned_request.id, it_lead, employee_e2.id, IT_SUPPORT, employee_e1.id
        )

        assert result.request.assigned_to == employee_e2.id
        assert await _activity_count(db_session, assigned_request.id) == 2

    @pytest.mark.asyncio
    async def test_lead_of_other_department_is_denied(
        self, db_session: AsyncSession, pending_request: ServiceRequest, web_lead: User, web_employee: User
    ):
        with pytest.raises(AuthorizationDeniedError):
            await AssignmentService.assign(
                db_session, pending_request.id, web_lead, web_employee.id, WEB_SUPPORT, None
            )

        assert await _activity_count(db_session, pending_request.id) == 0

    @pytest.mark.asyncio
    async def test_lead_cannot_assign_outside_department(
        self,
        db_session: AsyncSession,
        pending_request: ServiceRequest,
        it_lead: User,
        web_employee: User,
    ):
        with pytest.raises(AuthorizationDeniedError):
            await AssignmentService.assign(
                db_session, pending_request.id, it_lead, web_employee.id, WEB_SUPPORT, None
            )

        with pytest.raises(AuthorizationDeniedError):
            await AssignmentService.assign(
                db_session, pending_request.id, it_lead, web_employee.id, IT_SUPPORT, None
            )

        assert await _activity_count(db_session, pending_request.id) == 0

    @pytest.mark.asyncio
    async def test_lead_assigns_within_department(
        self, db_session: AsyncSession, pending_request: ServiceRequest, it_lead: User, employee_e2: User
    ):
        result = await AssignmentService.assign(
            db_session, pending_request.id, it_lead, employee_e2.id, IT_SUPPORT, None
        )
        assert result.request.assigned_to == employee_e2.id

    @pytest.mark.asyncio
    async def test_employee_cannot_assign(
        self,
        db_session: AsyncSession,
        assigned_request: ServiceRequest,
        employee_e1: User,
        employee_e2: User,
    ):
        with pytest.raises(AuthorizationDeniedError):
            await AssignmentService.assign(
                db_session, assigned_request.id, employee_e1, employee_e2.id, IT_SUPPORT, employee_e1.id
            )

    @pytest.mark.asyncio
    async def test_requester_outside_scope_gets_not_found(
        self,
        db_session: AsyncSession,
        pending_request: ServiceRequest,
        other_requester: User,
        employee_e1: User,
    ):
        with pytest.raises(NotFoundError):
            await AssignmentService.assign(
                db_session, pending_request.id, other_requester, employee_e1.id, IT_SUPPORT, None
            )

    @pytest.mark.asyncio
    async def test_assignee_must_be_staff(
        self, db_session: AsyncSession, pending_request: ServiceRequest, admin: User, requester: User
    ):
        with pytest.raises(ValidationFailedError):
            await AssignmentService.assign(
                db_session, pending_request.id, admin, requester.id, IT_SUPPORT, None
            )

    @pytest.mark.asyncio
    async def test_assignee_must_belong_to_department(
        self, db_session: AsyncSession, pending_request: ServiceRequest, admin: User, employee_e1: User
    ):
        with pytest.raises(ValidationFailedError):
            await AssignmentService.assign(
                db_session, pending_request.id, admin, employee_e1.id, WEB_SUPPORT, None
            )

    @pytest.mark.asyncio
    async def test_department_is_required(
        self, db_session: AsyncSession, pending_request: ServiceRequest, admin: User, employee_e1: User
    ):
        with pytest.raises(ValidationFailedError):
            await AssignmentService.assign(
                db_session, pending_request.id, admin, employee_e1.id, "   ", None
            )

    @pytest.mark.asyncio
    async def test_cancelled_request_cannot_be_assigned(
        self,
        db_session: AsyncSession,
        pending_request: ServiceRequest,
        admin: User,
        employee_e1: User,
    ):
        await TransitionEngine.apply_transition(
            db_session, pending_request.id, admin, RequestStatus.CANCELLED, RequestStatus.PENDING
        )

        with pytest.raises(ValidationFailedError):
            await AssignmentService.assign(
                db_session, pending_request.id, admin, employee_e1.id, IT_SUPPORT, None
            )

        activities = await RequestActivityCRUD.find_for_request(db_session, pending_request.id)
        assert [a.activity_type for a in activities] == [ActivityType.STATUS_CHANGE]

    @pytest.mark.asyncio
    async def test_assignment_does_not_touch_status(
        self,
        db_session: AsyncSession,
        assigned_request: ServiceRequest,
        admin: User,
        employee_e1: User,
        employee_e2: User,
    ):
        await TransitionEngine.apply_transition(
            db_session, assigned_request.id, employee_e1, RequestStatus.IN_PROGRESS, RequestStatus.PENDING
        )
        result = await AssignmentService.assign(
            db_session, assigned_request.id, admin, employee_e2.id, IT_SUPPORT, employee_e1.id
        )
        assert result.request.status == RequestStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_lead_cannot_assign_unrouted_request(
        self, db_session: AsyncSession, requester: User, it_lead: User, employee_e1: User, monkeypatch
    ):
        from core.config import settings

        monkeypatch.setattr(settings.lifecycle, "department_routing", {})
        request = await RequestService.create_request(
            db_session, requester, RequestType.EVENT, "Annual gala stage"
        )
        assert request.department is None

        with pytest.raises(AuthorizationDeniedError):
            await AssignmentService.assign(
                db_session, request.id, it_lead, employee_e1.id, IT_SUPPORT, None
            )
