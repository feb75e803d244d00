"""
Enums for the request lifecycle.

These replace lookup tables: the value sets are fixed, never edited at
runtime, and the state machine depends on them directly.
"""
from enum import Enum


class RequestType(str, Enum):
    """Kind of service requested. Immutable after creation."""

    EVENT = "event"
    WEB = "web"
    TECHNICAL = "technical"
    GRAPHIC = "graphic"


class RequestStatus(str, Enum):
    """
    Lifecycle status of a request.

    Only the transition engine mutates it. CANCELLED is terminal.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Urgency(str, Enum):
    NORMAL = "normal"
    URGENT = "urgent"


class ActivityType(str, Enum):
    """Kind of entry in a request's activity log."""

    STATUS_CHANGE = "status_change"
    ASSIGNMENT = "assignment"
    NOTE = "note"
    ESCALATION = "escalation"


class UserRole(str, Enum):
    """
    Role supplied by the authentication collaborator.

    USER is the requester role; the other three are staff.
    """

    ADMIN = "admin"
    DEPT_LEAD = "dept_lead"
    EMPLOYEE = "employee"
    USER = "user"

    @property
    def is_staff(self) -> bool:
        return self is not UserRole.USER


class ResourceClass(str, Enum):
    """Write categories that share one rate-limit quota per actor."""

    REQUEST = "request"
    TRANSITION = "transition"
    ASSIGNMENT = "assignment"
    NOTE = "note"
    ESCALATION = "escalation"
