"""
Database models and enums for the request lifecycle core.
"""
from .enums import (
    ActivityType,
    RequestStatus,
    RequestType,
    ResourceClass,
    Urgency,
    UserRole,
)
from .models import (
    AcknowledgmentMark,
    Audit,
    RequestActivity,
    RequestNumberSequence,
    ServiceRequest,
    TableModel,
    User,
    UUIDField,
    utc_now,
)

__all__ = [
    "ActivityType",
    "RequestStatus",
    "RequestType",
    "ResourceClass",
    "Urgency",
    "UserRole",
    "AcknowledgmentMark",
    "Audit",
    "RequestActivity",
    "RequestNumberSequence",
    "ServiceRequest",
    "TableModel",
    "User",
    "UUIDField",
    "utc_now",
]
