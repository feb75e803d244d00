"""
Acknowledgment mark CRUD.

Marks are upserted on (viewer_id, request_id); the latest write wins.
"""
from datetime import datetime
from typing import Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from crud.base_repository import BaseCRUD
from db.models import AcknowledgmentMark


class AcknowledgmentCRUD(BaseCRUD[AcknowledgmentMark]):
    """CRUD for per-viewer acknowledgment marks."""

    model = AcknowledgmentMark

    @classmethod
    async def get_last_ack(
        cls, db: AsyncSession, viewer_id: UUID, request_id: UUID
    ) -> Optional[datetime]:
        result = await db.execute(
            select(AcknowledgmentMark.last_ack_at).where(
                AcknowledgmentMark.viewer_id == viewer_id,
                AcknowledgmentMark.request_id == request_id,
            )
        )
        return result.scalar_one_or_none()

    @classmethod
    async def get_last_acks(
        cls, db: AsyncSession, viewer_id: UUID, request_ids: Iterable[UUID]
    ) -> Dict[UUID, datetime]:
        """Marks of one viewer for a batch of requests, keyed by request id."""
        ids = list(request_ids)
        if not ids:
            return {}

        result = await db.execute(
            select(AcknowledgmentMark.request_id, AcknowledgmentMark.last_ack_at).where(
                AcknowledgmentMark.viewer_id == viewer_id,
                AcknowledgmentMark.request_id.in_(ids),
            )
        )
        return {row.request_id: row.last_ack_at for row in result.all()}

    @classmethod
    async def upsert(
        cls, db: AsyncSession, viewer_id: UUID, request_id: UUID, at: datetime
    ) -> None:
        """Create or overwrite the viewer's mark for a request."""
        insert = pg_insert if db.bind.dialect.name == "postgresql" else sqlite_insert

        stmt = insert(AcknowledgmentMark).values(
            viewer_id=viewer_id,
            request_id=request_id,
            last_ack_at=at,
            created_at=at,
        ).on_conflict_do_update(
            index_elements=["viewer_id", "request_id"],
            set_={"last_ack_at": at},
        )
        await db.execute(stmt)
