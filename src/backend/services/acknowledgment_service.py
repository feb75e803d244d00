"""
Acknowledgment tracker.

Records when a viewer last opened a request's activity stream. Polling never
writes here; only the explicit "open activity panel" action does.
"""
import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from core.decorators import (
    critical_database_operation,
    log_database_operation,
    transactional_database_operation,
)
from core.logging_config import LifecycleLogger
from crud.acknowledgment_crud import AcknowledgmentCRUD
from crud.service_request_crud import ServiceRequestCRUD
from db.models import ServiceRequest, User, utc_now
from services.visibility import policy_for

logger = logging.getLogger(__name__)
lifecycle_logger = LifecycleLogger("acknowledgments")


class AcknowledgmentService:
    """Per (viewer, request) last-acknowledged timestamps, last write wins."""

    @staticmethod
    @transactional_database_operation("acknowledge_request")
    @log_database_operation("activity acknowledgment", level="debug")
    async def acknowledge(db: AsyncSession, viewer: User, request_id: UUID) -> datetime:
        """
        Mark everything currently in the request's stream as seen by the viewer.

        Returns:
            The stored acknowledgment timestamp
        """
        policy_for(viewer).ensure_visible(
            viewer, await ServiceRequestCRUD.find_by_id(db, request_id)
        )

        now = utc_now()
        await AcknowledgmentCRUD.upsert(db, viewer.id, request_id, now)
        lifecycle_logger.acknowledged(request_id, viewer.id)
        return now

    @staticmethod
    @critical_database_operation("get_last_ack")
    async def get_last_ack(db: AsyncSession, viewer: User, request: ServiceRequest) -> datetime:
        """Last acknowledgment, or the request's creation time if the viewer never opened it."""
        last_ack = await AcknowledgmentCRUD.get_last_ack(db, viewer.id, request.id)
        return last_ack or request.created_at
