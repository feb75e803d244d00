"""
Request lifecycle services.
"""
from .acknowledgment_service import AcknowledgmentService
from .activity_dispatcher import ActivityDispatcher
from .assignment_service import AssignmentService
from .audit_service import AuditService
from .notification_computer import NotificationComputer
from .request_service import RequestService
from .transition_engine import TransitionEngine

__all__ = [
    "AcknowledgmentService",
    "ActivityDispatcher",
    "AssignmentService",
    "AuditService",
    "NotificationComputer",
    "RequestService",
    "TransitionEngine",
]
