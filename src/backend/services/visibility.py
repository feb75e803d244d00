"""
Role-based visibility and capability policies.

Each role has exactly one policy object. Everything that depends on who the
caller is (which requests they may see, which activities reach them, what
they may do) is answered by that object; services never branch on the role
themselves.

| Role      | Requests visible                  | Transitions      | Assignment        | Notes visible |
|-----------|-----------------------------------|------------------|-------------------|---------------|
| admin     | all                               | any edge, cancel | anywhere          | all           |
| dept_lead | own department + self-assigned    | valid edges      | own department    | all           |
| employee  | self-assigned                     | valid edges      | none              | all           |
| user      | self-created                      | none             | none              | external only |
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import or_

from core.exceptions import NotFoundError
from db.enums import ActivityType, UserRole
from db.models import RequestActivity, ServiceRequest, User


@dataclass
class Projection:
    """A request together with the activities a viewer is allowed to see."""

    request: ServiceRequest
    activities: List[RequestActivity] = field(default_factory=list)


class VisibilityPolicy:
    """Base policy. Subclasses override the capabilities their role has."""

    role: UserRole
    is_staff: bool = True
    can_transition: bool = False
    can_cancel: bool = False
    can_assign: bool = False
    can_escalate: bool = False
    can_write_internal_notes: bool = False

    def can_view(self, viewer: User, request: ServiceRequest) -> bool:
        raise NotImplementedError

    def scope_clause(self, viewer: User):
        """SQL predicate on ServiceRequest matching can_view (None: no restriction)."""
        raise NotImplementedError

    def can_assign_request(self, viewer: User, request: ServiceRequest) -> bool:
        return self.can_assign

    def can_assign_into(self, viewer: User, department: str, assignee: User) -> bool:
        return self.can_assign

    def can_delete(self, viewer: User, request: ServiceRequest) -> bool:
        return False

    def activity_visible(self, activity: RequestActivity) -> bool:
        if activity.activity_type == ActivityType.NOTE:
            return not activity.is_internal or self.is_staff
        if activity.activity_type == ActivityType.ESCALATION:
            return self.is_staff
        return True

    def activity_timestamps(
        self, request: ServiceRequest, last_activity_at: Optional[datetime]
    ) -> Dict[str, Optional[datetime]]:
        """
        lastActivityAt and updatedAt as this viewer may see them.

        `last_activity_at` is the newest activity visible to the viewer.
        Non-staff get updatedAt from that same activity; internal notes and
        escalations do not move it.
        """
        values: Dict[str, Optional[datetime]] = {"last_activity_at": last_activity_at}
        if not self.is_staff:
            values["updated_at"] = max(request.created_at, last_activity_at or request.created_at)
        return values

    def ensure_visible(self, viewer: User, request: Optional[ServiceRequest]) -> ServiceRequest:
        """Return the request, or raise NOT_FOUND exactly as for an unknown id."""
        if request is None or not self.can_view(viewer, request):
            raise NotFoundError()
        return request

    def project(
        self,
        request: ServiceRequest,
        activities: Sequence[RequestActivity],
        viewer: User,
    ) -> Projection:
        self.ensure_visible(viewer, request)
        return Projection(
            request=request,
            activities=[a for a in activities if self.activity_visible(a)],
        )


class AdminPolicy(VisibilityPolicy):
    role = UserRole.ADMIN
    can_transition = True
    can_cancel = True
    can_assign = True
    can_escalate = True
    can_write_internal_notes = True

    def can_view(self, viewer, request):
        return True

    def scope_clause(self, viewer):
        return None

    def can_delete(self, viewer, request):
        return True


class DepartmentLeadPolicy(VisibilityPolicy):
    role = UserRole.DEPT_LEAD
    can_transition = True
    can_assign = True
    can_escalate = True
    can_write_internal_notes = True

    def can_view(self, viewer, request):
        in_department = viewer.department is not None and request.department == viewer.department
        return in_department or request.assigned_to == viewer.id

    def scope_clause(self, viewer):
        if viewer.department is None:
            return ServiceRequest.assigned_to == viewer.id
        return or_(
            ServiceRequest.department == viewer.department,
            ServiceRequest.assigned_to == viewer.id,
        )

    def can_assign_request(self, viewer, request):
        return viewer.department is not None and request.department == viewer.department

    def can_assign_into(self, viewer, department, assignee):
        return department == viewer.department and assignee.department == viewer.department

    def can_delete(self, viewer, request):
        return viewer.department is not None and request.department == viewer.department


class EmployeePolicy(VisibilityPolicy):
    role = UserRole.EMPLOYEE
    can_transition = True
    can_escalate = True
    can_write_internal_notes = True

    def can_view(self, viewer, request):
        return request.assigned_to == viewer.id

    def scope_clause(self, viewer):
        return ServiceRequest.assigned_to == viewer.id


class RequesterPolicy(VisibilityPolicy):
    role = UserRole.USER
    is_staff = False

    def can_view(self, viewer, request):
        return request.created_by == viewer.id

    def scope_clause(self, viewer):
        return ServiceRequest.created_by == viewer.id


_POLICIES: Dict[UserRole, VisibilityPolicy] = {
    policy.role: policy
    for policy in (AdminPolicy(), DepartmentLeadPolicy(), EmployeePolicy(), RequesterPolicy())
}


def policy_for(viewer: User) -> VisibilityPolicy:
    """The policy for the viewer's role."""
    return _POLICIES[UserRole(viewer.role)]


def project(
    request: ServiceRequest,
    activities: Sequence[RequestActivity],
    viewer: User,
) -> Projection:
    """Filter a request's activities for a viewer (NOT_FOUND if the request is out of scope)."""
    return policy_for(viewer).project(request, activities, viewer)
