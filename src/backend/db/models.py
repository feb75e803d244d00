"""
Database models for the request lifecycle core.

Tables:
- users: staff directory supplied by the authentication collaborator
- service_requests: the request store (current status and assignment)
- request_activities: append-only activity log, one row per lifecycle event
- acknowledgment_marks: per (viewer, request) last-acknowledged timestamp
- request_number_sequence: allocator for human-readable request numbers
- audit_logs: administrative audit trail (deletes)
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.types import CHAR, TypeDecorator
from sqlmodel import Field, SQLModel

from db.enums import ActivityType, RequestStatus, RequestType, Urgency, UserRole


def utc_now() -> datetime:
    """
    Current time in UTC, timezone-naive, for database storage.

    All timestamps are stored as naive UTC; the API layer serializes them
    with a 'Z' suffix.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TableModel(SQLModel):
    """Base table model with common functionality."""

    pass


class UUIDField(TypeDecorator):
    """Platform-independent UUID type stored as CHAR(36)."""

    impl = CHAR(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, UUID):
            return UUID(value)
        return value


def enum_column(enum_cls, nullable: bool = False, **kwargs) -> Column:
    """String-backed enum column persisting the enum values, not names."""
    return Column(
        SAEnum(
            enum_cls,
            native_enum=False,
            length=20,
            values_callable=lambda members: [m.value for m in members],
            validate_strings=True,
        ),
        nullable=nullable,
        **kwargs,
    )


class User(TableModel, table=True):
    """Staff directory entry. Role and department drive every capability check."""

    __tablename__ = "users"

    id: Optional[UUID] = Field(
        default_factory=uuid4,
        sa_column=Column(UUIDField(), primary_key=True, nullable=False),
    )
    username: str = Field(
        sa_column=Column(String(100), unique=True, nullable=False),
        description="Login name",
    )
    full_name: Optional[str] = Field(
        default=None, sa_column=Column(String(255), nullable=True)
    )
    email: Optional[str] = Field(
        default=None, sa_column=Column(String(255), nullable=True)
    )
    role: UserRole = Field(
        default=UserRole.USER,
        sa_column=enum_column(UserRole),
        description="admin, dept_lead, employee or user (requester)",
    )
    department: Optional[str] = Field(
        default=None,
        sa_column=Column(String(100), nullable=True),
        description="Department the user belongs to (staff only)",
    )
    is_active: bool = Field(
        default=True, sa_column=Column(Boolean, default=True, nullable=False)
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now),
    )

    __table_args__ = (
        Index("ix_users_department_role", "department", "role"),
    )


class RequestNumberSequence(TableModel, table=True):
    """One row per allocated request number; the row id is the sequence value."""

    __tablename__ = "request_number_sequence"

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True),
    )
    allocated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now),
    )


class ServiceRequest(TableModel, table=True):
    """
    Request store row.

    status is written only by the transition engine and assigned_to/department
    only by the assignment service, both through compare-and-set updates.
    """

    __tablename__ = "service_requests"

    id: Optional[UUID] = Field(
        default_factory=uuid4,
        sa_column=Column(UUIDField(), primary_key=True, nullable=False),
        description="Opaque identifier",
    )
    request_number: str = Field(
        sa_column=Column(String(20), unique=True, nullable=False),
        description="Human-readable number, e.g. REQ-000042",
    )
    request_type: RequestType = Field(sa_column=enum_column(RequestType))
    status: RequestStatus = Field(
        default=RequestStatus.PENDING,
        sa_column=enum_column(RequestStatus),
    )
    urgency: Urgency = Field(
        default=Urgency.NORMAL,
        sa_column=enum_column(Urgency),
    )
    title: str = Field(sa_column=Column(String(200), nullable=False))
    description: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    details: Optional[dict] = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
        description="Type-specific form payload, opaque to the lifecycle core",
    )
    department: Optional[str] = Field(
        default=None,
        sa_column=Column(String(100), nullable=True),
        description="Department the request is routed to",
    )
    assigned_to: Optional[UUID] = Field(
        default=None,
        sa_column=Column(UUIDField(), ForeignKey("users.id"), nullable=True),
    )
    assigned_by: Optional[UUID] = Field(
        default=None,
        sa_column=Column(UUIDField(), ForeignKey("users.id"), nullable=True),
    )
    created_by: UUID = Field(
        sa_column=Column(UUIDField(), ForeignKey("users.id"), nullable=False),
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now),
    )
    due_date: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    completed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    last_activity_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=True),
        description="Timestamp of the newest activity",
    )

    __table_args__ = (
        Index("ix_service_requests_created_by", "created_by"),
        Index("ix_service_requests_assigned_to", "assigned_to"),
        Index("ix_service_requests_department_status", "department", "status"),
        Index("ix_service_requests_created_at", "created_at"),
    )


class RequestActivity(TableModel, table=True):
    """
    Activity log entry. Rows are inserted, never updated.

    Ordering within a request is (created_at, id).
    """

    __tablename__ = "request_activities"

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True),
    )
    request_id: UUID = Field(
        sa_column=Column(
            UUIDField(),
            ForeignKey("service_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    actor_id: UUID = Field(
        sa_column=Column(UUIDField(), ForeignKey("users.id"), nullable=False),
    )
    activity_type: ActivityType = Field(sa_column=enum_column(ActivityType))
    old_status: Optional[RequestStatus] = Field(
        default=None, sa_column=enum_column(RequestStatus, nullable=True)
    )
    new_status: Optional[RequestStatus] = Field(
        default=None, sa_column=enum_column(RequestStatus, nullable=True)
    )
    notes: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    is_internal: bool = Field(
        default=False, sa_column=Column(Boolean, default=False, nullable=False)
    )
    time_spent: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, nullable=True),
        description="Minutes spent, status changes only",
    )
    assigned_to: Optional[UUID] = Field(
        default=None, sa_column=Column(UUIDField(), nullable=True)
    )
    department: Optional[str] = Field(
        default=None, sa_column=Column(String(100), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now),
    )

    __table_args__ = (
        Index("ix_request_activities_request_order", "request_id", "created_at", "id"),
        Index("ix_request_activities_actor", "actor_id"),
    )


@event.listens_for(RequestActivity, "before_update")
def _reject_activity_update(mapper, connection, target):
    raise ValueError("request activities are append-only")


class AcknowledgmentMark(TableModel, table=True):
    """Last time a viewer opened a request's activity stream (last write wins)."""

    __tablename__ = "acknowledgment_marks"

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True),
    )
    viewer_id: UUID = Field(
        sa_column=Column(UUIDField(), ForeignKey("users.id"), nullable=False),
    )
    request_id: UUID = Field(
        sa_column=Column(
            UUIDField(),
            ForeignKey("service_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    last_ack_at: datetime = Field(sa_column=Column(DateTime, nullable=False))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now),
    )

    __table_args__ = (
        UniqueConstraint("viewer_id", "request_id", name="uq_ack_mark_viewer_request"),
        Index("ix_acknowledgment_marks_request", "request_id"),
    )


class Audit(TableModel, table=True):
    """Administrative audit trail, kept apart from the request activity log."""

    __tablename__ = "audit_logs"

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True),
    )
    user_id: Optional[UUID] = Field(
        default=None,
        sa_column=Column(UUIDField(), ForeignKey("users.id"), nullable=True),
        description="User who performed the action",
    )
    action: str = Field(
        sa_column=Column(String(100), nullable=False),
        description="Action performed (DELETE, ...)",
    )
    resource_type: str = Field(
        sa_column=Column(String(100), nullable=False),
        description="Type of resource affected",
    )
    resource_id: Optional[str] = Field(
        default=None, sa_column=Column(String(255), nullable=True)
    )
    old_values: Optional[dict] = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
        description="Snapshot of the resource before the change",
    )
    correlation_id: Optional[str] = Field(
        default=None, sa_column=Column(String(36), nullable=True)
    )
    changes_summary: Optional[str] = Field(
        default=None, sa_column=Column(String(1000), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now),
    )

    __table_args__ = (
        Index("ix_audit_logs_resource", "resource_type", "resource_id"),
        Index("ix_audit_logs_created_at", "created_at"),
    )
