"""
Service Request CRUD for database operations.

Status and assignment are only ever written through the compare-and-set
helpers below: each one is a single UPDATE guarded by the caller's expected
value, so of two concurrent writers holding the same token exactly one
matches a row.
"""
from datetime import datetime
from typing import Any, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crud.base_repository import BaseCRUD
from db.enums import RequestStatus, RequestType, Urgency
from db.models import RequestNumberSequence, ServiceRequest


class ServiceRequestCRUD(BaseCRUD[ServiceRequest]):
    """CRUD for ServiceRequest database operations."""

    model = ServiceRequest

    @classmethod
    async def allocate_number(
        cls, db: AsyncSession, prefix: str, width: int
    ) -> str:
        """Allocate the next request number, e.g. REQ-000042."""
        sequence = RequestNumberSequence()
        db.add(sequence)
        await db.flush()
        return f"{prefix}{sequence.id:0{width}d}"

    @classmethod
    async def current_values(
        cls, db: AsyncSession, request_id: UUID
    ) -> Optional[Tuple[RequestStatus, Optional[UUID]]]:
        """Re-read (status, assigned_to) straight from the table."""
        result = await db.execute(
            select(ServiceRequest.status, ServiceRequest.assigned_to)
            .where(ServiceRequest.id == request_id)
        )
        row = result.one_or_none()
        return (row.status, row.assigned_to) if row else None

    @classmethod
    async def compare_and_set_status(
        cls,
        db: AsyncSession,
        request_id: UUID,
        expected: RequestStatus,
        new_status: RequestStatus,
        at: datetime,
        completed_at: Optional[datetime],
    ) -> bool:
        """
        Move status from `expected` to `new_status`.

        Returns False (and writes nothing) if the persisted status no longer
        equals `expected`.
        """
        stmt = (
            update(ServiceRequest)
            .where(
                ServiceRequest.id == request_id,
                ServiceRequest.status == expected,
            )
            .values(
                status=new_status,
                completed_at=completed_at,
                updated_at=at,
                last_activity_at=at,
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1

    @classmethod
    async def compare_and_set_assignment(
        cls,
        db: AsyncSession,
        request_id: UUID,
        expected_assigned_to: Optional[UUID],
        assignee_id: UUID,
        department: str,
        assigned_by: UUID,
        at: datetime,
    ) -> bool:
        """
        Set assignee and department if the persisted assignee equals
        `expected_assigned_to` (None meaning "currently unassigned").
        """
        if expected_assigned_to is None:
            guard = ServiceRequest.assigned_to.is_(None)
        else:
            guard = ServiceRequest.assigned_to == expected_assigned_to

        stmt = (
            update(ServiceRequest)
            .where(
                ServiceRequest.id == request_id,
                guard,
                ServiceRequest.status != RequestStatus.CANCELLED,
            )
            .values(
                assigned_to=assignee_id,
                department=department,
                assigned_by=assigned_by,
                updated_at=at,
                last_activity_at=at,
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1

    @classmethod
    async def record_activity(
        cls,
        db: AsyncSession,
        request_id: UUID,
        at: datetime,
        urgency: Optional[Urgency] = None,
    ) -> None:
        """Advance last_activity_at for activities that do not touch status or assignment."""
        values: dict = {"last_activity_at": at, "updated_at": at}
        if urgency is not None:
            values["urgency"] = urgency

        await db.execute(
            update(ServiceRequest)
            .where(ServiceRequest.id == request_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    @classmethod
    async def find_visible_paginated(
        cls,
        db: AsyncSession,
        *,
        scope: Optional[Any],
        page: int,
        per_page: int,
        request_type: Optional[RequestType] = None,
        status: Optional[RequestStatus] = None,
        urgency: Optional[Urgency] = None,
        department: Optional[str] = None,
        assigned_to: Optional[UUID] = None,
    ) -> Tuple[List[ServiceRequest], int]:
        """
        Page through requests inside a visibility scope, newest first.

        Args:
            scope: SQL predicate restricting the rows the viewer may see
                (None means unrestricted)
            assigned_to: Restrict to requests assigned to this user

        Returns:
            Tuple of (requests on the page, total matching)
        """
        clauses = []
        if scope is not None:
            clauses.append(scope)
        if request_type is not None:
            clauses.append(ServiceRequest.request_type == request_type)
        if status is not None:
            clauses.append(ServiceRequest.status == status)
        if urgency is not None:
            clauses.append(ServiceRequest.urgency == urgency)
        if department is not None:
            clauses.append(ServiceRequest.department == department)
        if assigned_to is not None:
            clauses.append(ServiceRequest.assigned_to == assigned_to)

        count_stmt = select(func.count()).select_from(ServiceRequest).where(*clauses)
        total = (await db.execute(count_stmt)).scalar() or 0

        stmt = (
            select(ServiceRequest)
            .where(*clauses)
            .order_by(ServiceRequest.created_at.desc(), ServiceRequest.request_number.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all()), total
