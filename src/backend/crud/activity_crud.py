"""
Activity log CRUD. Append and read only; there is no update path.
"""
from typing import Iterable, List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crud.base_repository import BaseCRUD
from db.models import RequestActivity


class RequestActivityCRUD(BaseCRUD[RequestActivity]):
    """CRUD for the append-only request activity log."""

    model = RequestActivity

    @classmethod
    async def append(cls, db: AsyncSession, activity: RequestActivity) -> RequestActivity:
        """Insert one activity and return it with its id populated."""
        return await cls.create(db, activity)

    @classmethod
    async def find_for_request(
        cls, db: AsyncSession, request_id: UUID
    ) -> List[RequestActivity]:
        """All activities of one request in log order (created_at, id)."""
        stmt = (
            select(RequestActivity)
            .where(RequestActivity.request_id == request_id)
            .order_by(RequestActivity.created_at, RequestActivity.id)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @classmethod
    async def find_for_requests(
        cls,
        db: AsyncSession,
        request_ids: Iterable[UUID],
    ) -> List[RequestActivity]:
        """Activities for a batch of requests in one query, grouped by request."""
        ids = list(request_ids)
        if not ids:
            return []

        stmt = (
            select(RequestActivity)
            .where(RequestActivity.request_id.in_(ids))
            .order_by(RequestActivity.request_id, RequestActivity.created_at, RequestActivity.id)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())
